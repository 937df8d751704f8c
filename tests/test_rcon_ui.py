import asyncio

import pytest

from mc_control.rcon_ui import read_tail, tail_logs


def test_read_tail_starts_on_a_line_boundary(tmp_path):
    log = tmp_path / "latest.log"
    log.write_text("".join(f"line {i}\n" for i in range(100)))
    text, end = read_tail(log, limit=30)
    assert text.startswith("line ")
    assert text.endswith("line 99\n")
    assert end == log.stat().st_size


def test_tail_logs_follows_appends(tmp_path):
    log = tmp_path / "latest.log"
    log.write_text("old\n")
    seen = []

    async def scenario():
        task = asyncio.create_task(tail_logs([log, log], seen.append, poll=0.01))
        await asyncio.sleep(0.05)
        with log.open("a") as f:
            f.write("[Server thread/INFO]: Done\n")
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert seen == ["old\n", "[Server thread/INFO]: Done\n"]
