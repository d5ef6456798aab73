# asa_console/actions.py
from __future__ import annotations

import logging
from typing import Iterable, Optional

from .commands import DESTROY_WILD_DINOS, LIST_PLAYERS
from .rcon import ConnectionTarget, RconClient
from .shutdown import DEFAULT_TOTAL, CountdownHandle, ShutdownOrchestrator

log = logging.getLogger(__name__)


class OfflineModeError(RuntimeError): ...


class Console:
    """
    Network operations on one server console, each refused in offline mode.

    ping() goes through the same first-packet client as everything else, so
    an empty answer counts as reachable: only a timeout or a socket error
    reports failure.
    """

    def __init__(self, client: Optional[RconClient] = None, offline_mode: bool = False,
                 orchestrator: Optional[ShutdownOrchestrator] = None):
        self.client = client or RconClient()
        self.offline_mode = offline_mode
        self.orchestrator = orchestrator or ShutdownOrchestrator(self.client)

    @classmethod
    def from_settings(cls, settings: dict) -> "Console":
        client = RconClient(timeout_ms=settings["timeout_ms"], strict_auth=settings["strict_auth"])
        return cls(client, offline_mode=settings["offline_mode"])

    def _guard(self, what: str) -> None:
        if self.offline_mode:
            raise OfflineModeError(f"Offline Mode enabled. Disable in settings to use {what}.")

    def shutdown_countdown(self, target: ConnectionTarget,
                           total_seconds: int = DEFAULT_TOTAL) -> CountdownHandle:
        self._guard("RCON shutdown")
        return self.orchestrator.start_countdown(target, total_seconds)

    async def wild_dino_wipe(self, target: ConnectionTarget) -> dict:
        self._guard("RCON")
        await self.client.send_to(target, DESTROY_WILD_DINOS)
        log.info("Wild dino wipe sent to %s:%s", target.host, target.port)
        return {"ok": True}

    async def ping(self, target: ConnectionTarget) -> dict:
        self._guard("RCON")
        try:
            await self.client.send_to(target, LIST_PLAYERS)
        except Exception as e:
            log.info("Ping %s:%s failed: %s", target.host, target.port, e)
            return {"ok": False, "error": str(e)}
        return {"ok": True}

    async def exec_command(self, target: ConnectionTarget, command: str) -> dict:
        self._guard("RCON")
        output = await self.client.send_to(target, command)
        return {"ok": True, "output": output}

    async def run_batch(self, target: ConnectionTarget, commands: Iterable[str]) -> list[str]:
        self._guard("RCON")
        out = []
        for c in (c.strip() for c in commands):
            if not c:
                continue
            try:
                r = await self.exec_command(target, c)
            except Exception as e:
                out.append(f"{c} => ERR {e}")
                continue
            line = f"{c} => OK"
            if r["output"]:
                line += f" output:{r['output']}"
            out.append(line)
        return out
