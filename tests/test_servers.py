import subprocess
from types import SimpleNamespace
from unittest.mock import Mock, patch

import psutil
import pytest

from mc_control import channels, servers
from mc_control.exceptions import ProcessError, RconConnectionError


def proc(pid, *cmdline):
    p = Mock(spec=psutil.Process)
    p.pid = pid
    p.info = {"cmdline": list(cmdline)}
    return p


JAVA = ("java", "-jar", "server.jar", "nogui")


def test_find_server_processes_like_pgrep():
    a = proc(10, *JAVA)
    b = proc(11, "bash", "start.sh")
    found = servers.find_server_processes(("server.jar",), [a, b])
    assert found == [a]


def test_find_server_processes_skips_vanished_processes():
    gone = SimpleNamespace(pid=5, info={"cmdline": None})
    gone.cmdline = Mock(side_effect=psutil.NoSuchProcess(5))
    assert servers.find_server_processes(("server.jar",), [gone]) == []


def test_launch_requires_script(settings):
    with pytest.raises(ProcessError, match="not found"):
        servers.launch(settings)


def test_launch_detaches_script_when_rcon_is_configured(settings):
    settings.rcon_password = "secret"
    settings.launcher.write_text("#!/bin/bash\nexit 0\n")
    with patch.object(channels.shutil, "which", return_value="/usr/bin/screen"), \
         patch.object(channels, "_run") as run, \
         patch.object(servers.subprocess, "Popen") as popen:
        servers.launch(settings)
    args, kwargs = popen.call_args
    assert args[0] == ["/bin/bash", str(settings.launcher)]
    assert kwargs["cwd"] == settings.server_dir
    assert kwargs["start_new_session"] is True
    run.assert_not_called()


def test_launch_in_screen_session_without_rcon(settings):
    settings.launcher.write_text("#!/bin/bash\nexit 0\n")
    with patch.object(channels.shutil, "which", return_value="/usr/bin/screen"), \
         patch.object(channels, "_run", return_value=subprocess.CompletedProcess([], 0, "", "")) as run, \
         patch.object(servers.subprocess, "Popen") as popen:
        assert servers.launch(settings) is None
    argv = run.call_args.args[0]
    assert argv[:5] == ["screen", "-dmS", "minecraft", "bash", "-c"]
    assert str(settings.launcher) in argv[5]
    popen.assert_not_called()


def test_launch_in_tmux_session_without_rcon(settings):
    settings.launcher.write_text("#!/bin/bash\nexit 0\n")
    settings.session_name = "survival"

    def which(tool):
        return "/usr/bin/tmux" if tool == "tmux" else None

    with patch.object(channels.shutil, "which", side_effect=which), \
         patch.object(channels, "_run", return_value=subprocess.CompletedProcess([], 0, "", "")) as run, \
         patch.object(servers.subprocess, "Popen") as popen:
        servers.launch(settings)
    assert run.call_args.args[0][:5] == ["tmux", "new-session", "-d", "-s", "survival"]
    popen.assert_not_called()


def test_launch_detached_when_no_session_tool(settings):
    settings.launcher.write_text("#!/bin/bash\nexit 0\n")
    with patch.object(channels.shutil, "which", return_value=None), \
         patch.object(servers.subprocess, "Popen") as popen:
        servers.launch(settings)
    assert popen.call_args.args[0] == ["/bin/bash", str(settings.launcher)]
    assert (settings.server_dir / "logs" / "console.log").exists()


def test_stop_when_not_running(settings):
    channel = Mock()
    with patch.object(servers, "find_server_processes", return_value=[]):
        assert servers.stop_server(settings, channel) == "Not running."
    channel.send.assert_not_called()


def test_graceful_stop(settings):
    p = proc(10, *JAVA)
    channel = Mock()
    with patch.object(servers, "find_server_processes", return_value=[p]), \
         patch.object(servers.psutil, "wait_procs", return_value=([p], [])) as wait:
        assert servers.stop_server(settings, channel) == "Stopped."
    channel.send.assert_called_once_with("stop")
    wait.assert_called_once_with([p], timeout=settings.drain_timeout)
    p.kill.assert_not_called()


def test_stop_kills_after_drain_timeout_even_if_channel_fails(settings):
    p = proc(10, *JAVA)
    channel = Mock()
    channel.send.side_effect = RconConnectionError("refused")
    with patch.object(servers, "find_server_processes", return_value=[p]), \
         patch.object(servers.psutil, "wait_procs", side_effect=[([], [p]), ([p], [])]):
        assert servers.stop_server(settings, channel) == "Killed."
    p.kill.assert_called_once_with()


def test_stop_raises_when_process_survives_kill(settings):
    p = proc(10, *JAVA)
    with patch.object(servers, "find_server_processes", return_value=[p]), \
         patch.object(servers.psutil, "wait_procs", return_value=([], [p])):
        with pytest.raises(ProcessError, match="10"):
            servers.stop_server(settings, Mock())


def test_stats_without_server(settings):
    with patch.object(servers, "find_server_processes", return_value=[]):
        s = servers.stats(settings)
    assert s["running"] is False
    assert s["pid"] is None
    assert s["ramTotal"] > 0
