"""Load and validate Woof configuration from config.yaml.

The file has a ``server`` section and a ``watches`` mapping of endpoint name
to watch settings.  Keys match case-insensitively and ignore underscores, so
the CamelCase JSON layout of older deployments (``ServerConfig``,
``Watches``, ``ListenAddress``, ``OnExpiry``...) loads unchanged; JSON is
valid YAML.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from src.common.durations import coerce_duration
from src.monitor.expiry import DEFAULT_EXEC_ARGS, DEFAULT_EXPIRY_TIMEOUT
from src.monitor.models import TriggerKind, WatchConfig
from src.monitor.watch import DEFAULT_REPLY_TIMEOUT

logger = logging.getLogger("woof")

_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "config.yaml"

DEFAULT_LISTEN_ADDRESS = "127.0.0.1:8080"
RESERVED_ENDPOINT = "api/watches"


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class ServerConfig:
    listen_address: str = DEFAULT_LISTEN_ADDRESS
    state_file: Path | None = None
    exec_args: tuple[str, ...] = DEFAULT_EXEC_ARGS
    log_level: str = "INFO"
    log_dir: Path | None = None
    reply_timeout: float = DEFAULT_REPLY_TIMEOUT
    expiry_timeout: float = DEFAULT_EXPIRY_TIMEOUT


@dataclass(frozen=True)
class WoofConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    watches: dict[str, WatchConfig] = field(default_factory=dict)


def _norm(key: object) -> str:
    return str(key).replace("_", "").lower()


def _get(data: dict[str, Any], key: str, default: Any = None) -> Any:
    """Look up ``key`` ignoring case and underscores."""
    wanted = _norm(key)
    for k, v in data.items():
        if _norm(k) == wanted:
            return v
    return default


def _section(data: dict[str, Any], *names: str) -> dict[str, Any]:
    for name in names:
        value = _get(data, name)
        if value is None:
            continue
        if not isinstance(value, dict):
            raise ConfigError(f"Config '{name}' must be a mapping.")
        return value
    return {}


def _duration(data: dict[str, Any], key: str, default: float, where: str) -> float:
    raw = _get(data, key)
    if raw is None or raw == "":
        return default
    try:
        return coerce_duration(raw)
    except ValueError as exc:
        raise ConfigError(f"{where}: {exc}") from exc


def _optional_path(value: Any) -> Path | None:
    if value is None or value == "":
        return None
    return Path(os.path.expanduser(str(value)))


def parse_server(data: dict[str, Any]) -> ServerConfig:
    exec_args = _get(data, "exec_args", DEFAULT_EXEC_ARGS)
    if isinstance(exec_args, str):
        exec_args = [exec_args]
    if not isinstance(exec_args, (list, tuple)):
        raise ConfigError("Config 'exec_args' must be a list of strings.")

    reply_timeout = _duration(data, "reply_timeout", DEFAULT_REPLY_TIMEOUT, "reply_timeout")
    expiry_timeout = _duration(data, "expiry_timeout", DEFAULT_EXPIRY_TIMEOUT, "expiry_timeout")
    for name, value in (("reply_timeout", reply_timeout), ("expiry_timeout", expiry_timeout)):
        if value <= 0:
            raise ConfigError(f"Config '{name}' must be positive.")

    return ServerConfig(
        listen_address=str(_get(data, "listen_address") or DEFAULT_LISTEN_ADDRESS),
        state_file=_optional_path(_get(data, "state_file")),
        exec_args=tuple(str(a) for a in exec_args),
        log_level=str(_get(data, "log_level") or "INFO").upper(),
        log_dir=_optional_path(_get(data, "log_dir")),
        reply_timeout=reply_timeout,
        expiry_timeout=expiry_timeout,
    )


def parse_watch(endpoint: str, data: dict[str, Any] | None) -> WatchConfig:
    # The JSON status API owns this path.
    if endpoint == RESERVED_ENDPOINT or endpoint.startswith(RESERVED_ENDPOINT + "/"):
        raise ConfigError(f"Watch '{endpoint}' clashes with the status API path.")
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Watch '{endpoint}' must be a mapping.")
    interval = _duration(data, "interval", 0.0, f"watch '{endpoint}' interval")
    if interval < 0:
        raise ConfigError(f"Watch '{endpoint}' interval must not be negative.")
    on_expiry = _get(data, "on_expiry") or ""
    return WatchConfig(
        trigger=TriggerKind.parse(_get(data, "trigger")),
        interval=interval,
        on_expiry=str(on_expiry),
    )


def parse_config(raw: Any) -> WoofConfig:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("Config must be a mapping.")
    server = parse_server(_section(raw, "server", "server_config"))
    watches = {
        str(endpoint): parse_watch(str(endpoint), settings)
        for endpoint, settings in _section(raw, "watches").items()
    }
    return WoofConfig(server=server, watches=watches)


def load_config(config_path: Path | str | None = None) -> WoofConfig:
    """Load configuration from a YAML (or JSON) file, with env-var overrides.

    Environment variable overrides (if set):
        WOOF_LISTEN_ADDRESS  -> server.listen_address
        WOOF_STATE_FILE      -> server.state_file
        WOOF_LOG_DIR         -> server.log_dir
        WOOF_LOG_LEVEL       -> server.log_level
    """
    path = Path(config_path) if config_path else _DEFAULT_CONFIG_PATH
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(path, encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Malformed config file {path}: {exc}") from exc

    if raw is not None and not isinstance(raw, dict):
        raise ConfigError("Config must be a mapping.")
    raw = dict(raw or {})
    server = dict(_section(raw, "server", "server_config"))
    raw = {k: v for k, v in raw.items() if _norm(k) not in ("server", "serverconfig")}
    raw["server"] = server

    _env_override(server, "WOOF_LISTEN_ADDRESS", "listen_address")
    _env_override(server, "WOOF_STATE_FILE", "state_file")
    _env_override(server, "WOOF_LOG_DIR", "log_dir")
    _env_override(server, "WOOF_LOG_LEVEL", "log_level")

    return parse_config(raw)


def _env_override(section: dict[str, Any], env_key: str, key: str) -> None:
    """Override a server setting from an environment variable."""
    val = os.environ.get(env_key)
    if val is None:
        return
    for k in list(section):
        if _norm(k) == _norm(key):
            del section[k]
    section[key] = val


def split_listen_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` for uvicorn.  ``:8080`` listens on every interface."""
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ConfigError(f"Invalid listen address: {address!r}")
    host = host.strip("[]") or "0.0.0.0"
    return host, int(port)


def setup_logging(server: ServerConfig) -> None:
    """Configure the woof logger: stderr + optional rotating file."""
    from logging.handlers import RotatingFileHandler

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    root = logging.getLogger("woof")
    root.setLevel(getattr(logging, server.log_level, logging.INFO))

    # stderr
    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    root.addHandler(sh)

    # rotating file
    if server.log_dir is not None:
        server.log_dir.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(server.log_dir / "woof.log", maxBytes=5_000_000, backupCount=3)
        fh.setFormatter(fmt)
        root.addHandler(fh)
