#!/usr/bin/env python3
from __future__ import annotations
import argparse, asyncio, logging, signal, sys
from typing import Optional

from mc_control.exceptions import (
    ChannelError, McControlError, ProcessError,
    RconAuthError, RconConnectionError, RconProtocolError,
)
from mc_control.health import HealthMonitor, error_summary, recent_players
from mc_control.rcon import RconClient, notify_server
from mc_control.servers import running, stats
from mc_control.supervisor import Supervisor
from mc_control.util import bytes_fmt, duration_fmt, load_settings

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

EXIT_CODES = """\
exit codes:
  0  success
  1  failure / server unhealthy
  2  usage error
  3  RCON connection failed (transient, safe to retry)
  4  RCON authentication failed (check rcon.password, do not retry)
  5  RCON protocol error
  6  server start/stop could not be confirmed
"""

MESSAGES = {
    RconConnectionError: "connection failed",
    RconAuthError: "authentication failed",
    RconProtocolError: "protocol error",
    ProcessError: "process error",
    ChannelError: "no command channel",
}


def describe(e: Exception) -> str:
    for cls, text in MESSAGES.items():
        if isinstance(e, cls):
            return text
    return "error"


def setup_logging(verbose: bool, logfile=None) -> None:
    handlers = [logging.StreamHandler(sys.stderr)]
    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(logfile, encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT, datefmt=LOG_DATEFMT, handlers=handlers, force=True,
    )


# --- rcon / console / notify -------------------------------------------------

def _client(args, settings) -> RconClient:
    return RconClient(
        host=args.host or settings.host,
        port=args.port or settings.rcon_port,
        password=args.password if args.password is not None else settings.rcon_password,
        timeout=args.timeout or settings.rcon_timeout,
    )

def do_rcon(args, settings):
    print(_client(args, settings).command(" ".join(args.command)))
    return 0

def do_console(args, settings):
    """Opens the prompt_toolkit RCON console with live logs + input bar."""
    from mc_control.rcon_ui import run_console
    try:
        asyncio.run(run_console(settings))
    except KeyboardInterrupt:
        pass
    return 0

def do_notify(args, settings):
    return 0 if notify_server(_client(args, settings), args.commands) else 1

# --- status / lifecycle ------------------------------------------------------

def do_status(args, settings):
    report = HealthMonitor(settings).report()
    port = {True: "listening", False: "not listening", None: "not probed"}[report["port"]]
    age = report["log_age"]
    print(f"Process: {'running' if report['process'] else 'not running'}")
    print(f"Port {settings.game_port}: {port}")
    print(f"Log activity: {'no log file' if age is None else f'{int(age)}s ago'}")
    s = stats(settings)
    if s["pid"]:
        print(f"PID: {s['pid']}")
        if s["procRss"]:
            print(f"Memory: {bytes_fmt(s['procRss'])}")
        if s["uptime"] is not None:
            print(f"Uptime: {duration_fmt(s['uptime'])}")
    print(f"CPU: {int(s['cpu'])}%  RAM: {bytes_fmt(s['ramUsed'])} / {bytes_fmt(s['ramTotal'])}")
    players = recent_players(settings.log_file)
    if players is not None:
        print("Recent player activity:")
        for line in players or ["(none)"]:
            print(f"  {line}")
    errs = error_summary(settings.log_file)
    if errs is not None:
        print(f"Errors in last 100 lines: {errs['errors']}  Warnings: {errs['warnings']}")
        for line in errs["last"]:
            print(f"  {line}")
    print(f"Verdict: {report['verdict'].value}")
    return 0 if report["verdict"].healthy else 1

def do_start(args, settings):
    if running(settings):
        print("Already running.")
        return 0
    Supervisor(settings).start_server()
    print("Started.")
    return 0

def do_stop(args, settings):
    print(Supervisor(settings).stop_server())
    return 0

def do_restart(args, settings):
    Supervisor(settings).restart()
    return 0

def do_watch(args, settings):
    sup = Supervisor(settings)
    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, sup.shutdown)
    sup.run()
    return 0

# --- argparse ----------------------------------------------------------------

def build_parser():
    p = argparse.ArgumentParser(
        prog="mcctl.py", description="Minecraft server control: RCON, health, watchdog.",
        epilog=EXIT_CODES, formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("-v", "--verbose", action="store_true")
    sub = p.add_subparsers(dest="cmd", required=True)

    conn = argparse.ArgumentParser(add_help=False)
    conn.add_argument("--host")
    conn.add_argument("--port", type=int)
    conn.add_argument("--password")
    conn.add_argument("--timeout", type=float)

    pr = sub.add_parser("rcon", parents=[conn], help="Run one RCON command and print the response")
    pr.add_argument("command", nargs="+")
    pr.set_defaults(func=do_rcon)

    pn = sub.add_parser("notify", parents=[conn], help="Send commands before maintenance; fails fast")
    pn.add_argument("commands", nargs="+", help="e.g. 'save-all' 'say Backup starting'")
    pn.set_defaults(func=do_notify)

    sub.add_parser("console", help="Interactive RCON console (prompt_toolkit)").set_defaults(func=do_console)
    sub.add_parser("status", help="Health verdict and process stats").set_defaults(func=do_status)
    sub.add_parser("start", help="Start the server and wait until healthy").set_defaults(func=do_start)
    sub.add_parser("stop", help="Stop the server (graceful, then kill)").set_defaults(func=do_stop)
    sub.add_parser("restart", help="Stop, then start").set_defaults(func=do_restart)
    sub.add_parser("watch", help="Run the watchdog (auto-restart on failure)").set_defaults(func=do_watch)
    return p

def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(sys.argv[1:] if argv is None else argv)
    try:
        settings = load_settings()
    except ValueError as e:
        print(f"mcctl: bad configuration: {e}", file=sys.stderr)
        return 2
    setup_logging(args.verbose, settings.watchdog_log if args.cmd == "watch" else None)
    try:
        return args.func(args, settings)
    except McControlError as e:
        print(f"mcctl: {describe(e)}: {e}", file=sys.stderr)
        return e.exit_code
    except ValueError as e:
        print(f"mcctl: {e}", file=sys.stderr)
        return 2

if __name__ == "__main__":
    raise SystemExit(main())
