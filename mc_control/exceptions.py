# mc_control/exceptions.py
"""
Error hierarchy for mc-control.

    McControlError
    ├── RconError
    │   ├── RconConnectionError   exit 3  (transient, safe to retry)
    │   ├── RconAuthError         exit 4  (misconfiguration, do not retry)
    │   └── RconProtocolError     exit 5
    ├── ProcessError              exit 6
    └── ChannelError              exit 1

`exit_code` is what `mcctl.py` returns when the error reaches it, so calling
scripts can branch on it.
"""
from __future__ import annotations

from typing import Optional


class McControlError(Exception):
    exit_code = 1


class RconError(McControlError):
    """Anything that went wrong talking RCON. The client never retries."""


class RconConnectionError(RconError, ConnectionError):
    exit_code = 3

    def __init__(self, message: str, host: Optional[str] = None, port: Optional[int] = None):
        self.host = host
        self.port = port
        if host is not None and port is not None:
            message = f"{message} ({host}:{port})"
        super().__init__(message)


class RconAuthError(RconError, PermissionError):
    exit_code = 4


class RconProtocolError(RconError):
    exit_code = 5


class ProcessError(McControlError):
    """Start or stop could not be confirmed within its timeout."""
    exit_code = 6


class ChannelError(McControlError):
    """No way to deliver a console command (no RCON, no screen/tmux session)."""
