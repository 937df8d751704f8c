# mc_control/servers.py
from __future__ import annotations

import logging
import subprocess
import time
from typing import Any, Dict, Iterable, List, Optional

import psutil

from .channels import CommandChannel, SessionChannel
from .exceptions import McControlError, ProcessError

log = logging.getLogger(__name__)

KILL_WAIT = 5.0


def _cmdline(proc) -> str:
    info = getattr(proc, "info", None) or {}
    parts = info.get("cmdline")
    if parts is None:
        try:
            parts = proc.cmdline()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return ""
    return " ".join(parts or [])


def find_server_processes(signatures: Iterable[str], processes: Optional[Iterable] = None) -> List:
    """Processes whose command line mentions one of the launch signatures (like `pgrep -f`)."""
    if processes is None:
        processes = psutil.process_iter(["pid", "name", "cmdline"])
    sigs = tuple(signatures)
    found = []
    for p in processes:
        line = _cmdline(p)
        if line and any(s in line for s in sigs):
            found.append(p)
    return found


def running(settings, processes: Optional[Iterable] = None) -> bool:
    return bool(find_server_processes(settings.signatures, processes))


def launch(settings) -> Optional[subprocess.Popen]:
    """
    Hand off to the external start script. Without RCON the console is only
    reachable through screen/tmux, so the script is started in the
    `session_name` session when one of them is installed; otherwise it runs
    detached from our session with output in logs/console.log.
    Does not wait for the server to come up; the caller confirms health.
    """
    script = settings.launcher
    if not script.exists():
        raise ProcessError(f"launch script not found: {script}")
    if not settings.rcon_configured:
        session = SessionChannel(settings.session_name, settings.session_tool)
        if session.start(script, settings.server_dir):
            return None
        log.warning("no screen/tmux session available, launching detached")
    (settings.server_dir / "logs").mkdir(parents=True, exist_ok=True)
    out_path = settings.server_dir / "logs" / "console.log"
    log.info("launching %s", script)
    with open(out_path, "ab") as out:
        return subprocess.Popen(
            ["/bin/bash", str(script)],
            cwd=settings.server_dir,
            stdin=subprocess.DEVNULL,
            stdout=out,
            stderr=out,
            start_new_session=True,
        )


def stop_server(settings, channel: CommandChannel) -> str:
    """
    Ask the server to stop via the console channel, wait up to drain_timeout
    for it to exit, then SIGKILL whatever is left.
    """
    procs = find_server_processes(settings.signatures)
    if not procs:
        return "Not running."

    try:
        channel.send("stop")
        log.info("sent stop via %s", channel.name)
    except McControlError as e:
        log.warning("graceful stop via %s failed: %s", channel.name, e)

    _, alive = psutil.wait_procs(procs, timeout=settings.drain_timeout)
    if not alive:
        return "Stopped."

    log.warning("server still running after %ss, killing %s", settings.drain_timeout,
                ", ".join(str(p.pid) for p in alive))
    for p in alive:
        try:
            p.kill()
        except psutil.NoSuchProcess:
            pass
    _, alive = psutil.wait_procs(alive, timeout=KILL_WAIT)
    if alive:
        raise ProcessError(f"server process survived SIGKILL: {', '.join(str(p.pid) for p in alive)}")
    return "Killed."


def stats(settings) -> Dict[str, Any]:
    cpu = psutil.cpu_percent(interval=0.1)
    vm = psutil.virtual_memory()
    out: Dict[str, Any] = {
        "cpu": cpu,
        "ramUsed": vm.used,
        "ramTotal": vm.total,
        "running": False,
        "pid": None,
        "procRss": None,
        "uptime": None,
    }
    procs = find_server_processes(settings.signatures)
    if procs:
        p = procs[0]
        out["running"] = True
        out["pid"] = p.pid
        try:
            out["procRss"] = p.memory_info().rss
            out["uptime"] = time.time() - p.create_time()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass
    return out
