# asa_console/rcon_ui.py
from __future__ import annotations

import asyncio
import contextlib
import os
from pathlib import Path
from typing import Optional

from prompt_toolkit.application import Application
from prompt_toolkit.document import Document
from prompt_toolkit.filters import has_focus
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout import HSplit, Layout
from prompt_toolkit.styles import Style
from prompt_toolkit.widgets import Label, TextArea

from .commands import LIST_PLAYERS
from .rcon import ConnectionTarget, RconClient
from .util import server_log

TAIL_BOOT_BYTES = 64_000  # show last ~64KB of the server log on open
TAIL_POLL = 0.25          # seconds
LOG_TRIM_LIMIT = 2_000_000  # keep last ~2MB in the in-memory text area


async def run_rcon_ui(name: Optional[str], target: ConnectionTarget, client: RconClient) -> None:
    """Fullscreen RCON console with the server log + an input bar."""
    log_path = server_log(name) if name else None

    log = TextArea(
        style="class:log",
        focusable=False,
        scrollbar=True,
        wrap_lines=False,
        read_only=False,  # programmatic inserts only
    )
    input_field = TextArea(height=1, prompt="> ", multiline=False)
    status = Label(
        text=f"RCON — {name or target.host} {target.host}:{target.port}    (Ctrl-C / Esc to exit)",
        style="class:status",
    )

    kb = KeyBindings()

    @kb.add("enter", filter=has_focus(input_field))
    async def _(event) -> None:
        cmd = (input_field.text or "").strip()
        if not cmd:
            return
        input_field.buffer.document = Document(text="")
        try:
            out = await client.send_to(target, cmd)
            _append(app, log, f"$ {cmd}\n{out}\n")
        except Exception as e:
            _append(app, log, f"[rcon error] {e}\n")

    @kb.add("c-c")
    @kb.add("escape")
    def _(event) -> None:
        event.app.exit()

    root = HSplit([status, log, input_field])
    app = Application(
        layout=Layout(root),
        key_bindings=kb,
        full_screen=True,
        style=Style.from_dict(
            {
                "log": "bg:#0e162b #d1d5db",
                "status": "reverse",
            }
        ),
    )

    async def tail(path: Path) -> None:
        # Read the last TAIL_BOOT_BYTES once, then follow. The file is
        # replaced on server restart, so a shrink resets the offset.
        offset = 0
        try:
            with path.open("rb") as f:
                f.seek(0, os.SEEK_END)
                end = f.tell()
                start = max(0, end - TAIL_BOOT_BYTES)
                f.seek(start)
                if start > 0:
                    f.readline()  # drop partial first line
                chunk = f.read()
                if chunk:
                    _append(app, log, chunk.decode("utf-8", "ignore"))
                offset = end
        except FileNotFoundError:
            pass

        while True:
            try:
                if path.stat().st_size < offset:
                    offset = 0
                with path.open("rb") as f:
                    f.seek(offset)
                    data = f.read()
                    if data:
                        offset = f.tell()
                        _append(app, log, data.decode("utf-8", "ignore"))
            except FileNotFoundError:
                # appears once the server has started
                pass
            await asyncio.sleep(TAIL_POLL)

    async def rcon_probe() -> None:
        try:
            out = await client.send_to(target, LIST_PLAYERS)
            _append(app, log, "[rcon] connected. Try: ListPlayers, Broadcast hello, SaveWorld\n")
            if out.strip():
                _append(app, log, out.strip() + "\n")
        except Exception as e:
            _append(
                app,
                log,
                f"[rcon] cannot connect: {e}\n"
                f"[hint] Check RCONEnabled=True and RCONPort ({target.port}) in GameUserSettings.ini, "
                "the admin password, and the firewall.\n",
            )

    tasks = [asyncio.create_task(rcon_probe())]
    if log_path is not None:
        tasks.append(asyncio.create_task(tail(log_path)))
    else:
        _append(app, log, "[hint] No install.dir in this profile; server log not shown.\n")

    try:
        await app.run_async()
    finally:
        for t in tasks:
            t.cancel()
        for t in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await t


def _append(app: Optional[Application], area: TextArea, text: str) -> None:
    """
    Append text to the TextArea and keep the buffer size bounded.
    """
    buf = area.buffer
    buf.insert_text(text, move_cursor=True)
    if len(buf.text) > LOG_TRIM_LIMIT:
        new_text = buf.text[-LOG_TRIM_LIMIT:]
        buf.document = Document(new_text, cursor_position=len(new_text))
    if app is not None:
        app.invalidate()
