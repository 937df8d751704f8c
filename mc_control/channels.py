# mc_control/channels.py
"""
Ways to type a line into the server console.

RconChannel talks RCON; SessionChannel stuffs the line into the screen or
tmux session the server was started in. `select_channel` prefers RCON and
falls back to the session when no RCON password is configured.
"""
from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from typing import Optional

from .exceptions import ChannelError
from .rcon import RconClient

log = logging.getLogger(__name__)

SESSION_TOOLS = ("screen", "tmux")


class CommandChannel:
    name = "channel"

    def send(self, command: str) -> str:
        raise NotImplementedError


class RconChannel(CommandChannel):
    name = "rcon"

    def __init__(self, client: RconClient):
        self.client = client

    def send(self, command: str) -> str:
        return self.client.command(command)


def _run(cmd, timeout: float = 10.0) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(cmd, check=False, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise ChannelError(f"{cmd[0]} did not answer within {timeout:g}s") from e
    except (subprocess.SubprocessError, OSError) as e:
        raise ChannelError(f"{cmd[0]} failed: {e}") from e


class SessionChannel(CommandChannel):
    """Console fallback. Output is not captured; send() returns ""."""

    name = "session"

    def __init__(self, session: str = "minecraft", tool: str = "auto"):
        self.session = session
        self.tool = tool

    def _has_session(self, tool: str) -> bool:
        if shutil.which(tool) is None:
            return False
        if tool == "screen":
            r = _run(["screen", "-list"])
            return f".{self.session}\t" in r.stdout or f".{self.session} " in r.stdout
        return _run(["tmux", "has-session", "-t", self.session]).returncode == 0

    def _tools(self):
        return SESSION_TOOLS if self.tool == "auto" else (self.tool,)

    def resolve_tool(self) -> Optional[str]:
        for tool in self._tools():
            if self._has_session(tool):
                return tool
        return None

    def send(self, command: str) -> str:
        tool = self.resolve_tool()
        if tool is None:
            raise ChannelError(f"server session '{self.session}' not found (screen/tmux)")
        if tool == "screen":
            cmd = ["screen", "-S", self.session, "-p", "0", "-X", "stuff", command + "\r"]
        else:
            cmd = ["tmux", "send-keys", "-t", self.session, command, "Enter"]
        log.info("sending to %s session %s: %s", tool, self.session, command)
        r = _run(cmd)
        if r.returncode != 0:
            raise ChannelError(f"{tool} refused the command: {(r.stderr or r.stdout).strip()}")
        return ""

    def start(self, script, cwd) -> Optional[str]:
        """
        Run the launch script inside a new detached session, so send() can
        reach its console later. Returns the tool used, or None when neither
        screen nor tmux could start one.
        """
        line = f"cd {shlex.quote(str(cwd))} && exec /bin/bash {shlex.quote(str(script))}"
        for tool in self._tools():
            if shutil.which(tool) is None:
                continue
            if tool == "screen":
                cmd = ["screen", "-dmS", self.session, "bash", "-c", line]
            else:
                cmd = ["tmux", "new-session", "-d", "-s", self.session, line]
            try:
                r = _run(cmd)
            except ChannelError as e:
                log.warning("%s", e)
                continue
            if r.returncode == 0:
                log.info("started %s in %s session %s", script, tool, self.session)
                return tool
            log.warning("%s could not start session %s: %s", tool, self.session, (r.stderr or r.stdout).strip())
        return None


def select_channel(settings) -> CommandChannel:
    if settings.rcon_configured:
        return RconChannel(RconClient.from_settings(settings))
    return SessionChannel(settings.session_name, settings.session_tool)
