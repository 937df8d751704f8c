# mc_control/supervisor.py
"""
Watchdog: poll health every check_interval and restart the server when it
fails, within an attempt budget.

    RUNNING ──unhealthy, budget left, not too soon──> RESTARTING
    RUNNING ──unhealthy, budget spent───────────────> EXHAUSTED
    RESTARTING ──healthy within startup_grace───────> COOLING_DOWN (count+1)
    RESTARTING ──not confirmed──────────────────────> RUNNING (count+1)
    COOLING_DOWN ──cooldown passed, all healthy─────> RUNNING (count=0)
    EXHAUSTED ──exhausted_penalty passed────────────> RUNNING (reset)

All state lives in SupervisorState and only poll_once() changes it.
"""
from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import psutil

from . import servers
from .channels import CommandChannel, select_channel
from .exceptions import McControlError, ProcessError
from .health import HealthMonitor, HealthVerdict

log = logging.getLogger(__name__)

STARTUP_POLL = 2.0


class Status(enum.Enum):
    RUNNING = "running"
    RESTARTING = "restarting"
    COOLING_DOWN = "cooling-down"
    EXHAUSTED = "exhausted"


@dataclass
class SupervisorState:
    status: Status = Status.RUNNING
    restart_count: int = 0
    last_restart_at: Optional[float] = None
    exhausted_at: Optional[float] = None


class Supervisor:
    def __init__(
        self,
        settings,
        monitor: Optional[HealthMonitor] = None,
        channel: Optional[CommandChannel] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        stop: Optional[Callable[[], str]] = None,
        launch: Optional[Callable[[], object]] = None,
    ):
        self.settings = settings
        self.monitor = monitor or HealthMonitor(settings, clock=clock)
        self.channel = channel or select_channel(settings)
        self._clock = clock
        self._sleep = sleep
        self._stop = stop or (lambda: servers.stop_server(settings, self.channel))
        self._launch = launch or (lambda: servers.launch(settings))
        self.state = SupervisorState()
        self._shutdown = threading.Event()

    # ── start / stop ──────────────────────────────────────────────────────

    def stop_server(self) -> str:
        log.info("Stopping server...")
        result = self._stop()
        log.info("Server stop: %s", result)
        return result

    def start_server(self) -> HealthVerdict:
        """Launch and wait up to startup_grace for a HEALTHY verdict."""
        log.info("Starting server...")
        try:
            self._launch()
        except OSError as e:
            raise ProcessError(f"could not run launch script: {e}") from e
        grace = self.settings.startup_grace
        deadline = self._clock() + grace
        while True:
            self._sleep(min(STARTUP_POLL, grace) if grace > 0 else 0)
            verdict = self.monitor.check()
            if verdict.healthy:
                log.info("Server started successfully")
                return verdict
            if self._clock() >= deadline:
                raise ProcessError(f"server not healthy {grace:g}s after launch ({verdict.value})")

    def restart(self) -> HealthVerdict:
        self.stop_server()
        return self.start_server()

    # ── poll loop ─────────────────────────────────────────────────────────

    def poll_once(self) -> SupervisorState:
        """One evaluate-decide-act cycle."""
        s = self.settings
        st = self.state
        now = self._clock()

        if st.status is Status.EXHAUSTED:
            if now - st.exhausted_at >= s.exhausted_penalty:
                log.info("Penalty wait of %gs over, resuming normal polling", s.exhausted_penalty)
                self.state = SupervisorState()
            return self.state

        verdict = self.monitor.check()

        if st.status is Status.COOLING_DOWN:
            if verdict.healthy:
                if now - st.last_restart_at >= s.cooldown:
                    log.info("Stable for %gs after restart, restart counter reset", s.cooldown)
                    st.status = Status.RUNNING
                    st.restart_count = 0
                return st
            log.warning("Failure during cooldown, restart count stays at %d", st.restart_count)
            st.status = Status.RUNNING

        if verdict.healthy:
            return st

        log.warning("Health check failed: %s", verdict.value)

        if st.restart_count >= s.max_attempts:
            log.error("Max restart attempts (%d) reached, waiting %gs before retry",
                      s.max_attempts, s.exhausted_penalty)
            st.status = Status.EXHAUSTED
            st.exhausted_at = now
            return st

        if st.last_restart_at is not None:
            since = now - st.last_restart_at
            if since <= s.min_restart_interval:
                log.info("Too soon to restart. Wait %ds", int(s.min_restart_interval - since))
                return st

        st.status = Status.RESTARTING
        log.info("Restart attempt %d/%d", st.restart_count + 1, s.max_attempts)
        try:
            self.restart()
        except (McControlError, OSError, psutil.Error) as e:
            log.error("Restart failed: %s", e)
        else:
            log.info("Restart successful, cooling down for %gs", s.cooldown)
            st.status = Status.COOLING_DOWN
        finally:
            # every attempt is charged, however it ended
            if st.status is Status.RESTARTING:
                st.status = Status.RUNNING
            st.restart_count += 1
            st.last_restart_at = self._clock()
        return st

    def run(self) -> None:
        s = self.settings
        log.info("Watchdog started (interval: %gs, max attempts: %d)", s.check_interval, s.max_attempts)
        while not self._shutdown.is_set():
            try:
                self.poll_once()
            except (McControlError, OSError, psutil.Error):
                log.exception("Watchdog cycle failed")
            self._shutdown.wait(s.check_interval)
        log.info("Watchdog stopped")

    def shutdown(self, *_args) -> None:
        self._shutdown.set()
