#!/usr/bin/env python3
from __future__ import annotations
import argparse, asyncio, logging, sys
from typing import Optional

from asa_console.actions import Console, OfflineModeError
from asa_console.commands import DEFAULT_BATCH
from asa_console.rcon import ConnectionTarget, RconError
from asa_console.util import (
    list_servers, load_settings, load_target, mb_fmt, read_profile,
    save_profile, save_settings, setup_logging,
)

log = logging.getLogger("asa_console.cli")

# --- helpers -----------------------------------------------------------------

def _target(args) -> ConnectionTarget:
    return load_target(args.name, host=args.host, port=args.port, password=args.password)

def _console() -> Console:
    return Console.from_settings(load_settings())

def _need_password(target: ConnectionTarget) -> bool:
    if not target.password:
        print("Enter RCON password (--password, profile or RCON_PASSWORD).", file=sys.stderr)
        return False
    return True

def yesno(text: str, default: bool=True) -> bool:
    d = "Y/n" if default else "y/N"
    val = input(f"{text} ({d}): ").strip().lower()
    if not val: return default
    return val in ("y","yes","true","1")

# --- list / profile / settings ----------------------------------------------

def do_list(_args):
    names = list_servers()
    if not names:
        print("No server profiles yet. Use: asacli.py profile NAME --password ...", flush=True)
        return
    for n in names:
        p = read_profile(n)
        print(f"{n}  {p.get('rcon.host', '?')}:{p.get('rcon.port', '?')}  {p.get('install.dir', '')}")

def do_profile(args):
    target = _target(args)
    path = save_profile(args.name, target, install_dir=args.install_dir)
    print(f"Connection info saved to {path}")

def do_settings(args):
    s = save_settings(offline_mode=args.offline, timeout_ms=args.timeout_ms, strict_auth=args.strict_auth)
    print(f"offline-mode: {'on' if s['offline_mode'] else 'off'}")
    print(f"rcon timeout: {s['timeout_ms']} ms")
    print(f"strict auth:  {'on' if s['strict_auth'] else 'off'}")

# --- rcon operations ---------------------------------------------------------

def do_exec(args):
    target = _target(args)
    if not _need_password(target): return 1
    r = asyncio.run(_console().exec_command(target, " ".join(args.command)))
    print(r["output"])

def do_batch(args):
    target = _target(args)
    if not _need_password(target): return 1
    cmds = args.commands or list(DEFAULT_BATCH)
    if args.file:
        with open(args.file, encoding="utf-8") as f:
            cmds = f.read().splitlines()
    cmds = [c.strip() for c in cmds if c.strip()]
    if not cmds:
        print("No commands.")
        return 1
    if not args.yes and not yesno(f"Execute {len(cmds)} command(s)?", True):
        return 0
    for line in asyncio.run(_console().run_batch(target, cmds)):
        print(line)

def do_ping(args):
    target = _target(args)
    if not _need_password(target): return 1
    r = asyncio.run(_console().ping(target))
    print("Ping OK" if r["ok"] else f"Ping Failed: {r['error']}")
    return 0 if r["ok"] else 1

def do_wipe(args):
    target = _target(args)
    if not _need_password(target): return 1
    if not args.yes and not yesno("Wipe all wild dinos now? They will respawn over time.", False):
        return 0
    asyncio.run(_console().wild_dino_wipe(target))
    print("Wild dino wipe command sent")

async def _countdown(target: ConnectionTarget, seconds: int) -> None:
    handle = _console().shutdown_countdown(target, seconds)
    print(f"Scheduled shutdown in {handle.total_seconds} seconds (Ctrl+C to abort)", flush=True)
    try:
        await handle.wait()
    except asyncio.CancelledError:
        handle.cancel()
        raise

def do_shutdown(args):
    target = _target(args)
    if not _need_password(target): return 1
    try:
        asyncio.run(_countdown(target, args.seconds))
    except KeyboardInterrupt:
        print("\nShutdown aborted.")
        return 1
    print("Shutdown sequence sent.")

def do_console(args):
    """Opens the prompt_toolkit RCON console with the server log + input bar."""
    from asa_console.rcon_ui import run_rcon_ui
    target = _target(args)
    if not _need_password(target): return 1
    console = _console()
    if console.offline_mode:
        raise OfflineModeError("Offline Mode enabled. Disable in settings to use RCON.")
    try:
        asyncio.run(run_rcon_ui(args.name, target, console.client))
    except KeyboardInterrupt:
        pass

def do_stats(args):
    from asa_console.performance import server_usage
    s = server_usage(args.name or "local")
    if s.get("note"):
        print(s["note"])
    for p in s["processes"]:
        print(f"pid {p['pid']}: CPU {p['cpu']:.0f}%  RAM {mb_fmt(p['memoryMB'])}")
    print(f"Total: CPU {s['totalCpu']:.0f}%  RAM {mb_fmt(s['totalMemoryMB'])}"
          f" / {mb_fmt(s['systemTotalMemoryMB'])} ({s['systemCpuCount']} CPUs)")

# --- argparse ----------------------------------------------------------------

def _conn_args(p, name_required: bool=False):
    if name_required:
        p.add_argument("name", help="Server profile name")
    else:
        p.add_argument("name", nargs="?", help="Server profile name (optional)")
    p.add_argument("--host")
    p.add_argument("--port", type=int)
    p.add_argument("--password")

def build_parser():
    p = argparse.ArgumentParser(prog="asacli.py", description="ARK: Survival Ascended server console.")
    p.add_argument("-v", "--verbose", action="store_true", help="Log RCON traffic to stderr")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("list", help="List server profiles").set_defaults(func=do_list)

    pp = sub.add_parser("profile", help="Save RCON connection info for a server")
    _conn_args(pp, name_required=True)
    pp.add_argument("--install-dir", help="Server install dir (for the console log view)")
    pp.set_defaults(func=do_profile)

    pst = sub.add_parser("settings", help="Show or change settings")
    pst.add_argument("--offline", action=argparse.BooleanOptionalAction, default=None)
    pst.add_argument("--timeout-ms", type=int)
    pst.add_argument("--strict-auth", action=argparse.BooleanOptionalAction, default=None)
    pst.set_defaults(func=do_settings)

    pe = sub.add_parser("exec", help="Run one RCON command")
    _conn_args(pe)
    pe.add_argument("-c", "--command", nargs="+", required=True)
    pe.set_defaults(func=do_exec)

    pb = sub.add_parser("batch", help="Run several RCON commands in order")
    _conn_args(pb)
    pb.add_argument("-c", "--commands", nargs="+")
    pb.add_argument("-f", "--file", help="One command per line")
    pb.add_argument("-y", "--yes", action="store_true")
    pb.set_defaults(func=do_batch)

    ppg = sub.add_parser("ping", help="Check the RCON port answers")
    _conn_args(ppg)
    ppg.set_defaults(func=do_ping)

    pw = sub.add_parser("wipe-dinos", help="DestroyWildDinos")
    _conn_args(pw)
    pw.add_argument("-y", "--yes", action="store_true")
    pw.set_defaults(func=do_wipe)

    psd = sub.add_parser("shutdown", help="Broadcast a countdown, save and exit")
    _conn_args(psd)
    psd.add_argument("-s", "--seconds", type=int, default=600)
    psd.set_defaults(func=do_shutdown)

    pc = sub.add_parser("console", help="Open RCON console (prompt_toolkit)")
    _conn_args(pc)
    pc.set_defaults(func=do_console)

    ps = sub.add_parser("stats", help="Show ShooterGameServer CPU/RAM")
    ps.add_argument("name", nargs="?")
    ps.set_defaults(func=do_stats)

    return p

def main(argv: Optional[list]=None):
    argv = argv if argv is not None else sys.argv[1:]
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    try:
        return args.func(args)
    except OfflineModeError as e:
        print(e, file=sys.stderr)
        return 2
    except RconError as e:
        log.debug("command %s failed", args.cmd, exc_info=True)
        print(f"[rcon error] {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

if __name__ == "__main__":
    raise SystemExit(main())
