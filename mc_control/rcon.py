# mc_control/rcon.py
"""
Minecraft RCON client.

One TCP connection per logical command: connect, authenticate, execute one
command, close. Nothing here retries; every failure is raised to the caller
as one of RconConnectionError / RconAuthError / RconProtocolError.

Frame layout (all integers little-endian int32):

    length | request_id | type | payload (ASCII) | 0x00 0x00

where length counts everything after itself.
"""
from __future__ import annotations

import contextlib
import itertools
import logging
import socket
import struct
from typing import Iterable, NamedTuple, Optional

from .exceptions import RconAuthError, RconConnectionError, RconError, RconProtocolError

log = logging.getLogger(__name__)

SERVERDATA_AUTH = 3
SERVERDATA_EXECCOMMAND = 2
SERVERDATA_AUTH_RESPONSE = 2
SERVERDATA_RESPONSE_VALUE = 0
AUTH_FAILED = -1  # 0xFFFFFFFF on the wire

COMMAND_RESPONSE_TYPES = (SERVERDATA_RESPONSE_VALUE, SERVERDATA_AUTH_RESPONSE)

_LENGTH = struct.Struct("<i")
_HEADER = struct.Struct("<II")
_SIGNED_HEADER = struct.Struct("<ii")
TERMINATOR = b"\x00\x00"
MIN_LENGTH = _HEADER.size + len(TERMINATOR)
MAX_LENGTH = 1 << 20


class Packet(NamedTuple):
    request_id: int
    type: int
    payload: str


class _PeerClosed(RconProtocolError):
    """The server closed the connection before sending a single byte."""


def encode_packet(request_id: int, kind: int, payload: str) -> bytes:
    if "\x00" in payload:
        raise ValueError("RCON payload may not contain NUL characters")
    try:
        body = payload.encode("ascii")
    except UnicodeEncodeError:
        raise ValueError(f"RCON payload must be ASCII: {payload!r}") from None
    data = _HEADER.pack(request_id & 0xFFFFFFFF, kind & 0xFFFFFFFF) + body + TERMINATOR
    return _LENGTH.pack(len(data)) + data


def _parse_body(data: bytes) -> Packet:
    if len(data) < MIN_LENGTH:
        raise RconProtocolError(f"RCON packet too short ({len(data)} bytes)")
    if data[-2:] != TERMINATOR:
        raise RconProtocolError("RCON packet is missing its NUL terminator")
    req_id, kind = _SIGNED_HEADER.unpack_from(data)
    payload = data[_HEADER.size:-2].decode("utf-8", "replace")
    return Packet(req_id, kind, payload)


def _check_length(length: int) -> None:
    if length < MIN_LENGTH or length > MAX_LENGTH:
        raise RconProtocolError(f"RCON packet declares invalid length {length}")


def decode_packet(raw: bytes) -> Packet:
    """Decode one complete frame, length prefix included."""
    if len(raw) < _LENGTH.size:
        raise RconProtocolError("RCON frame shorter than its length prefix")
    (length,) = _LENGTH.unpack_from(raw)
    _check_length(length)
    data = raw[_LENGTH.size:]
    if len(data) != length:
        raise RconProtocolError(f"RCON frame declares {length} bytes but carries {len(data)}")
    return _parse_body(data)


def _recv_exact(sock: socket.socket, n: int) -> bytes:
    buf = b""
    while len(buf) < n:
        chunk = sock.recv(n - len(buf))
        if not chunk:
            if not buf:
                raise _PeerClosed("RCON connection closed by server")
            raise RconProtocolError(f"RCON short read: expected {n} bytes, got {len(buf)}")
        buf += chunk
    return buf


def read_packet(sock: socket.socket) -> Packet:
    (length,) = _LENGTH.unpack(_recv_exact(sock, _LENGTH.size))
    _check_length(length)
    try:
        data = _recv_exact(sock, length)
    except _PeerClosed:
        raise RconProtocolError(f"RCON short read: expected {length} bytes, got 0") from None
    return _parse_body(data)


class RconSession:
    """
    One authenticated RCON connection. Use as a context manager; the socket
    is shut down and closed on every exit path.
    """

    def __init__(self, sock: socket.socket, host: Optional[str] = None, port: Optional[int] = None):
        self._sock: Optional[socket.socket] = sock
        self.host = host
        self.port = port
        self.authenticated = False
        self.invalidated = False
        self._ids = itertools.count(1)

    @classmethod
    def connect(cls, host: str, port: int, timeout: float = 5.0) -> "RconSession":
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as e:
            raise RconConnectionError(f"cannot connect to RCON: {e}", host, port) from e
        sock.settimeout(timeout)
        log.debug("rcon connected to %s:%s", host, port)
        return cls(sock, host, port)

    @property
    def closed(self) -> bool:
        return self._sock is None

    def __enter__(self) -> "RconSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        sock, self._sock = self._sock, None
        if sock is None:
            return
        try:
            # peer may already be gone
            with contextlib.suppress(OSError):
                sock.shutdown(socket.SHUT_RDWR)
        finally:
            sock.close()

    def _send(self, data: bytes) -> None:
        if self._sock is None:
            raise RconConnectionError("RCON session is closed", self.host, self.port)
        try:
            self._sock.sendall(data)
        except OSError as e:
            self.close()
            raise RconConnectionError(f"RCON send failed: {e}", self.host, self.port) from e

    def _read(self, handshake: bool = False) -> Packet:
        try:
            return read_packet(self._sock)
        except _PeerClosed as e:
            self.close()
            if handshake:
                raise RconAuthError("connection dropped during RCON authentication") from e
            raise
        except RconProtocolError:
            self.close()
            raise
        except (ConnectionResetError, BrokenPipeError) as e:
            self.close()
            if handshake:
                raise RconAuthError("connection dropped during RCON authentication") from e
            raise RconConnectionError(f"RCON connection lost: {e}", self.host, self.port) from e
        except OSError as e:
            self.close()
            raise RconConnectionError(f"RCON read failed: {e}", self.host, self.port) from e

    def authenticate(self, password: str) -> None:
        if self.invalidated:
            raise RconAuthError("RCON session was rejected; open a new connection")
        req_id = next(self._ids)
        self._send(encode_packet(req_id, SERVERDATA_AUTH, password))
        reply = self._read(handshake=True)
        if reply.request_id == AUTH_FAILED:
            self.invalidated = True
            self.close()
            raise RconAuthError("RCON authentication failed: wrong password")
        if reply.request_id != req_id or reply.type != SERVERDATA_AUTH_RESPONSE:
            self.close()
            raise RconProtocolError(
                f"unexpected RCON auth reply (id={reply.request_id}, type={reply.type})"
            )
        self.authenticated = True

    def execute(self, command: str) -> str:
        if self.invalidated or not self.authenticated:
            raise RconAuthError("RCON session is not authenticated")
        packet = encode_packet(next(self._ids), SERVERDATA_EXECCOMMAND, command)
        log.debug("rcon > %s", command)
        self._send(packet)
        reply = self._read()
        if reply.type not in COMMAND_RESPONSE_TYPES:
            self.close()
            raise RconProtocolError(f"unexpected RCON response type {reply.type}")
        return reply.payload


class RconClient:
    def __init__(self, host="127.0.0.1", port: int = 25575, password: Optional[str] = None, timeout=5.0):
        self.host = host
        self.port = port
        self.password = password
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "RconClient":
        return cls(settings.host, settings.rcon_port, settings.rcon_password, settings.rcon_timeout)

    def session(self) -> RconSession:
        """Connected and authenticated session; the caller closes it."""
        if not self.password:
            raise RconAuthError("no RCON password configured")
        s = RconSession.connect(self.host, self.port, self.timeout)
        try:
            s.authenticate(self.password)
        except BaseException:
            s.close()
            raise
        return s

    def command(self, cmd: str) -> str:
        with self.session() as s:
            return s.execute(cmd)


def notify_server(client: RconClient, commands: Iterable[str]) -> bool:
    """
    Deliver maintenance notices (save-all, say ...) before touching files.
    False means the server could not be safely notified; the caller should
    abort or fall back.
    """
    for cmd in commands:
        try:
            out = client.command(cmd)
        except RconError as e:
            log.warning("server not notifiable (%s): %s", cmd, e)
            return False
        log.info("rcon %s -> %s", cmd, out.strip() or "(no output)")
    return True
