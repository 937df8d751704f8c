# mc_control/health.py
"""
Health checks for the managed server.

Nothing here keeps state: every call looks at the process table, the log
file's mtime and (maybe) the game port, and returns a fresh verdict.

    no process                          -> PROCESS_DOWN
    log written within stale_threshold  -> HEALTHY
    log stale, port answers             -> HEALTHY   (quiet but alive)
    log stale, port does not answer     -> PORT_UNREACHABLE  (hung)
    log stale, port not probed          -> HEALTHY or LOG_STALE, per
                                           settings.skipped_probe_passes
"""
from __future__ import annotations

import enum
import os
import re
import socket
import time
from collections import deque
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from .servers import find_server_processes


class HealthVerdict(enum.Enum):
    HEALTHY = "healthy"
    PROCESS_DOWN = "process-down"
    PORT_UNREACHABLE = "port-unreachable"
    LOG_STALE = "log-stale"

    @property
    def healthy(self) -> bool:
        return self is HealthVerdict.HEALTHY


def check_process(signatures: Iterable[str], processes: Optional[Iterable] = None) -> bool:
    return bool(find_server_processes(signatures, processes))


def check_port(host: str, port: Optional[int], timeout: float = 3.0, enabled: bool = True) -> Optional[bool]:
    """TCP connect probe. None means the probe was skipped."""
    if not enabled or not port:
        return None
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def log_age(log_path: Path, now: Optional[float] = None) -> Optional[float]:
    try:
        mtime = os.stat(log_path).st_mtime
    except FileNotFoundError:
        return None
    return (time.time() if now is None else now) - mtime


def check_log_activity(log_path: Path, stale_threshold: float, now: Optional[float] = None) -> bool:
    age = log_age(log_path, now)
    return age is not None and age <= stale_threshold


# --- log tail views ----------------------------------------------------------

PLAYER_RE = re.compile(r"(joined|left) the game")
ERROR_RE = re.compile(r"ERROR|SEVERE", re.IGNORECASE)
WARN_RE = re.compile(r"WARN", re.IGNORECASE)


def tail_lines(log_path: Path, count: int) -> Optional[List[str]]:
    """Last `count` lines of the log, or None if it does not exist."""
    try:
        with open(log_path, encoding="utf-8", errors="replace") as f:
            return [line.rstrip("\n") for line in deque(f, maxlen=count)]
    except FileNotFoundError:
        return None


def recent_players(log_path: Path, lines: int = 200, limit: int = 5) -> Optional[List[str]]:
    tail = tail_lines(log_path, lines)
    if tail is None:
        return None
    return [l for l in tail if PLAYER_RE.search(l)][-limit:]


def error_summary(log_path: Path, lines: int = 100, last: int = 3) -> Optional[dict]:
    """ERROR/SEVERE and WARN counts over the log tail, plus the latest errors."""
    tail = tail_lines(log_path, lines)
    if tail is None:
        return None
    errors = [l for l in tail if ERROR_RE.search(l)]
    return {
        "errors": len(errors),
        "warnings": sum(1 for l in tail if WARN_RE.search(l)),
        "last": errors[-last:],
    }


class HealthMonitor:
    """
    Composite health check. `processes`, `clock` and `port_probe` are
    injectable so the verdict can be computed against a fixed snapshot.
    """

    def __init__(
        self,
        settings,
        processes: Optional[Callable[[], Iterable]] = None,
        clock: Callable[[], float] = time.time,
        port_probe: Optional[Callable[[], Optional[bool]]] = None,
    ):
        self.settings = settings
        self._processes = processes
        self._clock = clock
        self._port_probe = port_probe

    def _snapshot(self):
        return None if self._processes is None else self._processes()

    def probe_port(self) -> Optional[bool]:
        if self._port_probe is not None:
            return self._port_probe()
        s = self.settings
        return check_port(s.host, s.game_port, timeout=min(3.0, s.rcon_timeout), enabled=s.probe_port)

    def verdict(self, process: bool, log_recent: bool, probe: Callable[[], Optional[bool]]) -> HealthVerdict:
        """Combine observations. `probe` is only called when the log is stale."""
        if not process:
            return HealthVerdict.PROCESS_DOWN
        if log_recent:
            return HealthVerdict.HEALTHY
        reachable = probe()
        if reachable is None:
            return HealthVerdict.HEALTHY if self.settings.skipped_probe_passes else HealthVerdict.LOG_STALE
        return HealthVerdict.HEALTHY if reachable else HealthVerdict.PORT_UNREACHABLE

    def check(self) -> HealthVerdict:
        s = self.settings
        return self.verdict(
            check_process(s.signatures, self._snapshot()),
            check_log_activity(s.log_file, s.stale_threshold, self._clock()),
            self.probe_port,
        )

    def report(self) -> dict:
        """Individual observations, for `mcctl.py status`, and the verdict they give."""
        s = self.settings
        process = check_process(s.signatures, self._snapshot())
        port = self.probe_port()
        age = log_age(s.log_file, self._clock())
        recent = age is not None and age <= s.stale_threshold
        return {
            "process": process,
            "port": port,
            "log_age": age,
            "verdict": self.verdict(process, recent, lambda: port),
        }
