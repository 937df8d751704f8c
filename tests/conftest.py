"""Shared fixtures: settings rooted in tmp_path and an in-process RCON server."""
from __future__ import annotations

import socket

import pytest

from mc_control.util import load_settings
from tests.fake_rcon import FakeRconServer


@pytest.fixture
def rcon_server():
    started = []

    def factory(**kwargs):
        srv = FakeRconServer(**kwargs)
        started.append(srv)
        return srv

    yield factory
    for srv in started:
        srv.close()


@pytest.fixture
def free_port():
    """A port nothing listens on."""
    s = socket.socket()
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


@pytest.fixture
def settings(tmp_path):
    (tmp_path / "logs").mkdir()
    return load_settings({"MCCTL_SERVER_DIR": str(tmp_path)})
