# asa_console/performance.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

import psutil

SERVER_PROCESS = "ShooterGameServer"
MB = 1024 * 1024


def _server_processes() -> List[psutil.Process]:
    found = []
    for p in psutil.process_iter(["pid", "name"]):
        name = p.info.get("name") or ""
        if name.startswith(SERVER_PROCESS):
            found.append(p)
    return found


def server_usage(name: str) -> Dict[str, Any]:
    """
    CPU/RAM of every ShooterGameServer process on this host.

    The first cpu_percent() sample of a process is always 0; one short
    interval is taken per process so the numbers mean something.
    """
    vm = psutil.virtual_memory()
    out: Dict[str, Any] = {
        "serverId": name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "processes": [],
        "totalCpu": 0.0,
        "totalMemoryMB": 0.0,
        "systemCpuCount": psutil.cpu_count() or 0,
        "systemTotalMemoryMB": vm.total / MB,
    }
    procs = _server_processes()
    if not procs:
        out["note"] = f"No {SERVER_PROCESS} processes found"
        return out

    for p in procs:
        try:
            cpu = p.cpu_percent(interval=0.1)
            rss = p.memory_info().rss
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        out["processes"].append({"pid": p.pid, "cpu": cpu, "memoryMB": rss / MB})

    out["totalCpu"] = sum(u["cpu"] for u in out["processes"])
    out["totalMemoryMB"] = sum(u["memoryMB"] for u in out["processes"])
    return out
