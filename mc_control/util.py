# mc_control/util.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_SIGNATURES = ("fabric-server-launch.jar", "server.jar")
TRUE_WORDS = ("1", "true", "yes", "on")


def read_properties(path: Path) -> dict:
    props = {}
    if path.exists():
        for line in path.read_text(encoding="utf-8", errors="ignore").splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                k, v = line.split("=", 1)
                props[k.strip()] = v.strip()
    return props


@dataclass
class Settings:
    """Everything the control plane needs to find and manage one server."""

    server_dir: Path
    log_file: Path
    launcher: Path
    watchdog_log: Path
    signatures: tuple = DEFAULT_SIGNATURES
    host: str = "127.0.0.1"
    game_port: Optional[int] = 25565
    rcon_port: int = 25575
    rcon_password: Optional[str] = None
    rcon_timeout: float = 5.0
    session_name: str = "minecraft"
    session_tool: str = "auto"
    check_interval: float = 30
    max_attempts: int = 3
    min_restart_interval: float = 300
    cooldown: float = 300
    exhausted_penalty: float = 1800
    startup_grace: float = 30
    drain_timeout: float = 60
    stale_threshold: float = 300
    probe_port: bool = True
    skipped_probe_passes: bool = True

    @property
    def rcon_configured(self) -> bool:
        return bool(self.rcon_password)


def _get(env: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        val = env.get(name)
        if val is not None and val.strip() != "":
            return val.strip()
    return None


def _num(env: Mapping[str, str], name: str, default, kind=float):
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        return kind(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = _get(env, name)
    if raw is None:
        return default
    return raw.lower() in TRUE_WORDS


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from MCCTL_* environment variables, falling back to the
    server's own server.properties for ports and the RCON password.
    """
    env = os.environ if env is None else env
    d = Path(_get(env, "MCCTL_SERVER_DIR") or os.getcwd()).expanduser()
    props = read_properties(d / "server.properties")

    rcon_enabled = props.get("enable-rcon", "false").lower() == "true"
    password = _get(env, "MCCTL_RCON_PASSWORD", "RCON_PASSWORD")
    if password is None and rcon_enabled:
        password = props.get("rcon.password") or None

    rcon_port = _get(env, "MCCTL_RCON_PORT", "RCON_PORT") or props.get("rcon.port") or "25575"
    try:
        rcon_port = int(rcon_port)
    except ValueError:
        raise ValueError(f"RCON port must be a number, got {rcon_port!r}") from None

    game_port = _num(env, "MCCTL_GAME_PORT", None, int)
    if game_port is None:
        try:
            game_port = int(props.get("server-port", "25565"))
        except ValueError:
            game_port = 25565

    sigs = _get(env, "MCCTL_SIGNATURES")
    signatures = tuple(s.strip() for s in sigs.split(",") if s.strip()) if sigs else DEFAULT_SIGNATURES

    return Settings(
        server_dir=d,
        log_file=Path(_get(env, "MCCTL_LOG_FILE") or d / "logs" / "latest.log"),
        launcher=Path(_get(env, "MCCTL_LAUNCHER") or d / "start.sh"),
        watchdog_log=Path(_get(env, "MCCTL_WATCHDOG_LOG") or d / "logs" / "watchdog.log"),
        signatures=signatures,
        host=_get(env, "MCCTL_HOST") or "127.0.0.1",
        game_port=game_port or None,
        rcon_port=rcon_port,
        rcon_password=password,
        rcon_timeout=_num(env, "MCCTL_RCON_TIMEOUT", 5.0),
        session_name=_get(env, "MCCTL_SESSION") or "minecraft",
        session_tool=(_get(env, "MCCTL_SESSION_TOOL") or "auto").lower(),
        check_interval=_num(env, "MCCTL_CHECK_INTERVAL", 30),
        max_attempts=_num(env, "MCCTL_MAX_ATTEMPTS", 3, int),
        min_restart_interval=_num(env, "MCCTL_MIN_RESTART_INTERVAL", 300),
        cooldown=_num(env, "MCCTL_COOLDOWN", 300),
        exhausted_penalty=_num(env, "MCCTL_EXHAUSTED_PENALTY", 1800),
        startup_grace=_num(env, "MCCTL_STARTUP_GRACE", 30),
        drain_timeout=_num(env, "MCCTL_DRAIN_TIMEOUT", 60),
        stale_threshold=_num(env, "MCCTL_STALE_THRESHOLD", 300),
        probe_port=_flag(env, "MCCTL_PROBE_PORT", True),
        skipped_probe_passes=_flag(env, "MCCTL_SKIPPED_PROBE_PASSES", True),
    )


def bytes_fmt(n: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    x = float(n)
    while x >= 1024 and i < len(units) - 1:
        x /= 1024
        i += 1
    return f"{x:.1f} {units[i]}"


def duration_fmt(seconds: float) -> str:
    s = int(seconds)
    return f"{s // 86400}d {(s % 86400) // 3600}h {(s % 3600) // 60}m"
