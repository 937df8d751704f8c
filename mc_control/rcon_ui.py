# mc_control/rcon_ui.py
from __future__ import annotations

import asyncio
import contextlib
import os
from pathlib import Path
from typing import Dict, Iterable, Optional

from prompt_toolkit.application import Application
from prompt_toolkit.document import Document
from prompt_toolkit.filters import has_focus
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout import HSplit, Layout
from prompt_toolkit.styles import Style
from prompt_toolkit.widgets import Label, TextArea

from .exceptions import RconError
from .rcon import RconClient

TAIL_BOOT_BYTES = 64_000  # last ~64KB of each log on open
TAIL_POLL = 0.25          # seconds
LOG_TRIM_LIMIT = 2_000_000


async def run_console(settings) -> None:
    """Fullscreen RCON console: live server log above, command line below."""
    client = RconClient.from_settings(settings)

    log = TextArea(style="class:log", focusable=False, scrollbar=True, wrap_lines=False, read_only=False)
    input_field = TextArea(height=1, prompt="> ", multiline=False)
    status = Label(
        text=f"RCON {settings.host}:{settings.rcon_port}    (Ctrl-C / Esc to exit)",
        style="class:status",
    )

    kb = KeyBindings()

    @kb.add("enter", filter=has_focus(input_field))
    async def _(event) -> None:
        cmd = (input_field.text or "").strip()
        input_field.buffer.document = Document(text="")
        if not cmd:
            return
        # every command gets its own connection, same as any other caller
        try:
            out = await asyncio.to_thread(client.command, cmd)
            _append(app, log, f"$ {cmd}\n{out}\n")
        except (RconError, ValueError) as e:
            _append(app, log, f"[rcon error] {e}\n")

    @kb.add("c-c")
    @kb.add("escape")
    def _(event) -> None:
        event.app.exit()

    app = Application(
        layout=Layout(HSplit([status, log, input_field])),
        key_bindings=kb,
        full_screen=True,
        style=Style.from_dict({"log": "bg:#0e162b #d1d5db", "status": "reverse"}),
    )

    async def probe() -> None:
        if not settings.rcon_configured:
            _append(app, log, "[hint] no RCON password configured (enable-rcon / rcon.password "
                              "in server.properties, or RCON_PASSWORD).\n")
            return
        try:
            out = await asyncio.to_thread(client.command, "list")
            _append(app, log, "[rcon] connected. Try: list, say hello, time query daytime\n")
            if out.strip():
                _append(app, log, out.strip() + "\n")
        except RconError as e:
            _append(app, log, f"[rcon] {e}\n")

    paths = [settings.log_file, settings.server_dir / "logs" / "console.log"]
    tasks = [
        asyncio.create_task(tail_logs(paths, lambda text: _append(app, log, text))),
        asyncio.create_task(probe()),
    ]
    try:
        await app.run_async()
    finally:
        for t in tasks:
            t.cancel()
        for t in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await t


def read_tail(path: Path, limit: int = TAIL_BOOT_BYTES) -> tuple:
    """(text, end_offset) for the last `limit` bytes, starting at a line boundary."""
    with path.open("rb") as f:
        f.seek(0, os.SEEK_END)
        end = f.tell()
        start = max(0, end - limit)
        f.seek(start)
        if start > 0:
            f.readline()
        return f.read().decode("utf-8", "ignore"), end


async def tail_logs(paths: Iterable[Path], sink, poll: float = TAIL_POLL) -> None:
    paths = list(dict.fromkeys(paths))
    offsets: Dict[Path, int] = {}
    for p in paths:
        try:
            text, offsets[p] = read_tail(p)
            if text:
                sink(text)
        except FileNotFoundError:
            offsets[p] = 0

    while True:
        for p in paths:
            try:
                with p.open("rb") as f:
                    if f.seek(0, os.SEEK_END) < offsets.get(p, 0):
                        offsets[p] = 0  # rotated
                    f.seek(offsets.get(p, 0))
                    data = f.read()
                    if data:
                        offsets[p] = f.tell()
                        sink(data.decode("utf-8", "ignore"))
            except FileNotFoundError:
                pass
        await asyncio.sleep(poll)


def _append(app: Optional[Application], area: TextArea, text: str) -> None:
    buf = area.buffer
    buf.insert_text(text, move_cursor=True)
    if len(buf.text) > LOG_TRIM_LIMIT:
        new_text = buf.text[-LOG_TRIM_LIMIT:]
        buf.document = Document(new_text, cursor_position=len(new_text))
    if app is not None:
        app.invalidate()
