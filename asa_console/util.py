import logging
import os
import sys
from pathlib import Path
from typing import Optional

from .rcon import DEFAULT_TIMEOUT_MS, ConnectionTarget

HOME = Path(os.environ.get("ASACONSOLE_HOME", Path.home() / ".asa-console")).expanduser()
SERVERS = HOME / "servers"
SETTINGS = HOME / "settings.properties"
LOGS = HOME / "logs"

DEFAULT_RCON_HOST = "127.0.0.1"
DEFAULT_RCON_PORT = 27020
PROFILE_FILE = "rcon.properties"
SERVER_LOG_REL = Path("ShooterGame") / "Saved" / "Logs" / "ShooterGame.log"

SETTINGS_DEFAULTS = {
    "offline-mode": "false",
    "rcon.timeout-ms": str(DEFAULT_TIMEOUT_MS),
    "rcon.strict-auth": "false",
}


def ensure_dirs():
    SERVERS.mkdir(parents=True, exist_ok=True)

def server_dir(name: str) -> Path:
    ensure_dirs()
    return SERVERS / name

def list_servers() -> list:
    ensure_dirs()
    return [p.name for p in sorted(SERVERS.iterdir()) if (p / PROFILE_FILE).exists()]

def read_properties(path: Path) -> dict:
    props = {}
    if path.exists():
        for line in path.read_text(encoding="utf-8", errors="ignore").splitlines():
            line=line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                k,v = line.split("=",1)
                props[k.strip()]=v.strip()
    return props

def write_properties(path: Path, updates: dict):
    props = read_properties(path)
    props.update({k:str(v) for k,v in updates.items()})
    lines = [f"{k}={v}" for k,v in props.items()]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

def _truthy(v: str) -> bool:
    return str(v).strip().lower() in ("y","yes","true","1","on")

# --- settings ----------------------------------------------------------------

def load_settings() -> dict:
    props = dict(SETTINGS_DEFAULTS)
    props.update(read_properties(SETTINGS))
    return {
        "offline_mode": _truthy(props["offline-mode"]),
        "timeout_ms": int(props["rcon.timeout-ms"]),
        "strict_auth": _truthy(props["rcon.strict-auth"]),
    }

def save_settings(offline_mode: Optional[bool]=None, timeout_ms: Optional[int]=None,
                  strict_auth: Optional[bool]=None) -> dict:
    updates = {}
    if offline_mode is not None:
        updates["offline-mode"] = "true" if offline_mode else "false"
    if timeout_ms is not None:
        updates["rcon.timeout-ms"] = int(timeout_ms)
    if strict_auth is not None:
        updates["rcon.strict-auth"] = "true" if strict_auth else "false"
    if updates:
        write_properties(SETTINGS, updates)
    return load_settings()

# --- server profiles ---------------------------------------------------------

def read_profile(name: str) -> dict:
    return read_properties(server_dir(name) / PROFILE_FILE)

def load_target(name: Optional[str]=None, host: Optional[str]=None,
                port: Optional[int]=None, password: Optional[str]=None) -> ConnectionTarget:
    """CLI flag > profile > environment > default."""
    props = read_profile(name) if name else {}
    host = host or props.get("rcon.host") or os.environ.get("RCON_HOST", DEFAULT_RCON_HOST)
    port = port or props.get("rcon.port") or os.environ.get("RCON_PORT", DEFAULT_RCON_PORT)
    if password is None:
        password = props.get("rcon.password", os.environ.get("RCON_PASSWORD", ""))
    return ConnectionTarget(host, int(port), password)

def save_profile(name: str, target: ConnectionTarget, install_dir: Optional[str]=None) -> Path:
    updates = {
        "rcon.host": target.host,
        "rcon.port": str(target.port),
        "rcon.password": target.password,
    }
    if install_dir:
        updates["install.dir"] = str(Path(install_dir).expanduser())
    path = server_dir(name) / PROFILE_FILE
    write_properties(path, updates)
    return path

def server_log(name: str) -> Optional[Path]:
    install = read_profile(name).get("install.dir")
    return Path(install) / SERVER_LOG_REL if install else None

# --- logging -----------------------------------------------------------------

def setup_logging(verbose: bool=False, log_dir: Optional[Path]=None) -> logging.Logger:
    logger = logging.getLogger("asa_console")
    if logger.handlers:
        return logger
    logger.setLevel(logging.DEBUG)
    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", "%Y-%m-%d %H:%M:%S")

    log_dir = log_dir or LOGS
    log_dir.mkdir(parents=True, exist_ok=True)
    h_file = logging.FileHandler(log_dir / "app.log", encoding="utf-8")
    h_file.setLevel(logging.DEBUG)
    h_file.setFormatter(fmt)
    logger.addHandler(h_file)

    h_err = logging.StreamHandler(sys.stderr)
    h_err.setLevel(logging.DEBUG if verbose else logging.WARNING)
    h_err.setFormatter(fmt)
    logger.addHandler(h_err)
    return logger

def mb_fmt(n: float) -> str:
    return f"{n:.1f} MB"
