import os
import socket
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from mc_control.health import (
    HealthMonitor,
    HealthVerdict,
    check_log_activity,
    check_port,
    check_process,
    error_summary,
    recent_players,
    tail_lines,
)

NOW = 1_700_000_000.0
SERVER = SimpleNamespace(pid=4242, info={"cmdline": ["java", "-Xmx4G", "-jar", "fabric-server-launch.jar", "nogui"]})
OTHER = SimpleNamespace(pid=1, info={"cmdline": ["/sbin/init"]})
KERNEL = SimpleNamespace(pid=2, info={"cmdline": []})


def touch(path, mtime):
    path.write_text("[Server thread/INFO]: Done\n")
    os.utime(path, (mtime, mtime))


def test_check_process_matches_launch_signature():
    sigs = ("fabric-server-launch.jar", "server.jar")
    assert check_process(sigs, [OTHER, SERVER, KERNEL])
    assert not check_process(sigs, [OTHER, KERNEL])
    assert not check_process(sigs, [])


def test_log_activity_uses_mtime(tmp_path):
    log = tmp_path / "latest.log"
    touch(log, NOW - 60)
    assert check_log_activity(log, 300, now=NOW)
    assert not check_log_activity(log, 30, now=NOW)


def test_missing_log_counts_as_stale(tmp_path):
    assert not check_log_activity(tmp_path / "nope.log", 300, now=NOW)


def test_port_probe_against_listener(free_port):
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        assert check_port("127.0.0.1", s.getsockname()[1], timeout=1) is True
    assert check_port("127.0.0.1", free_port, timeout=1) is False


def test_port_probe_skipped_without_port_or_when_disabled():
    assert check_port("127.0.0.1", None) is None
    assert check_port("127.0.0.1", 25565, enabled=False) is None


def monitor(settings, procs, probe=None):
    return HealthMonitor(settings, processes=lambda: procs, clock=lambda: NOW, port_probe=probe)


def test_process_down_regardless_of_log(settings):
    touch(settings.log_file, NOW)
    assert monitor(settings, [OTHER], lambda: True).check() is HealthVerdict.PROCESS_DOWN


def test_recent_log_is_healthy_without_probing(settings):
    touch(settings.log_file, NOW - 10)
    probe = Mock(return_value=None)
    assert monitor(settings, [SERVER], probe).check() is HealthVerdict.HEALTHY
    probe.assert_not_called()


@pytest.mark.parametrize(
    "reachable, passes, expected",
    [
        (True, True, HealthVerdict.HEALTHY),
        (False, True, HealthVerdict.PORT_UNREACHABLE),
        (None, True, HealthVerdict.HEALTHY),
        (None, False, HealthVerdict.LOG_STALE),
        (False, False, HealthVerdict.PORT_UNREACHABLE),
    ],
)
def test_stale_log_falls_back_to_port(settings, reachable, passes, expected):
    touch(settings.log_file, NOW - 3600)
    settings.skipped_probe_passes = passes
    assert monitor(settings, [SERVER], lambda: reachable).check() is expected


def test_verdict_is_recomputed_every_call(settings):
    touch(settings.log_file, NOW)
    procs = [SERVER]
    mon = monitor(settings, procs)
    assert mon.check() is HealthVerdict.HEALTHY
    procs.clear()
    assert mon.check() is HealthVerdict.PROCESS_DOWN


def test_report_lists_observations(settings):
    touch(settings.log_file, NOW - 42)
    report = monitor(settings, [SERVER], lambda: False).report()
    assert report["process"] is True
    assert report["port"] is False
    assert report["log_age"] == pytest.approx(42)
    assert report["verdict"] is HealthVerdict.HEALTHY


def test_report_verdict_comes_from_the_reported_observations(settings):
    # the server vanishes and the port flips between scans; the report must not mix them
    touch(settings.log_file, NOW - 1000)
    snapshots = iter([[SERVER], []])
    probe = Mock(side_effect=[True, False])
    m = HealthMonitor(settings, processes=lambda: next(snapshots), clock=lambda: NOW, port_probe=probe)
    report = m.report()
    assert report["process"] is True
    assert report["port"] is True
    assert report["verdict"] is HealthVerdict.HEALTHY
    assert probe.call_count == 1


def test_report_on_unreachable_port(settings):
    touch(settings.log_file, NOW - 1000)
    report = monitor(settings, [SERVER], lambda: False).report()
    assert report["verdict"] is HealthVerdict.PORT_UNREACHABLE


LATEST_LOG = """\
[10:00:00] [Server thread/INFO]: Starting minecraft server version 1.20.1
[10:00:05] [Server thread/WARN]: Can't keep up! Is the server overloaded?
[10:01:00] [Server thread/INFO]: Alex joined the game
[10:02:00] [Server thread/ERROR]: Failed to save chunk
[10:03:00] [Server thread/INFO]: Steve joined the game
[10:04:00] [Server thread/INFO]: Alex left the game
[10:05:00] [Server thread/INFO]: java.lang.Exception: SEVERE disk full
[10:06:00] [Server thread/ERROR]: Failed to save level
[10:07:00] [Server thread/error]: Could not pass event
"""


def test_tail_lines(tmp_path):
    log = tmp_path / "latest.log"
    log.write_text(LATEST_LOG)
    assert tail_lines(log, 2) == [
        "[10:06:00] [Server thread/ERROR]: Failed to save level",
        "[10:07:00] [Server thread/error]: Could not pass event",
    ]
    assert tail_lines(tmp_path / "missing.log", 10) is None


def test_recent_players_keeps_latest_join_and_leave_lines(tmp_path):
    log = tmp_path / "latest.log"
    log.write_text(LATEST_LOG)
    assert recent_players(log, limit=2) == [
        "[10:03:00] [Server thread/INFO]: Steve joined the game",
        "[10:04:00] [Server thread/INFO]: Alex left the game",
    ]
    assert len(recent_players(log)) == 3
    assert recent_players(tmp_path / "missing.log") is None


def test_error_summary_counts_the_log_tail(tmp_path):
    log = tmp_path / "latest.log"
    log.write_text(LATEST_LOG)
    summary = error_summary(log)
    assert summary["errors"] == 4
    assert summary["warnings"] == 1
    assert summary["last"] == [
        "[10:05:00] [Server thread/INFO]: java.lang.Exception: SEVERE disk full",
        "[10:06:00] [Server thread/ERROR]: Failed to save level",
        "[10:07:00] [Server thread/error]: Could not pass event",
    ]
    assert error_summary(log, lines=2)["errors"] == 2
    assert error_summary(tmp_path / "missing.log") is None
