"""Client configuration loading."""

from __future__ import annotations
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from shared.log import get_logger
from shared.utils import is_valid_host, is_valid_port, parse_bool

logger = get_logger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 3000

# Environment variable -> ClientConfig field
ENV_VARS: Dict[str, str] = {
    "MATCH_SERVER_HOST": "host",
    "MATCH_SERVER_PORT": "port",
    "MATCH_SERVER_SECURE": "secure",
    "MATCH_HEARTBEAT_INTERVAL": "heartbeat_interval",
    "MATCH_RECONNECT_DELAY": "reconnect_delay",
    "MATCH_AUTO_RECONNECT": "auto_reconnect",
    "MATCH_HANDSHAKE_TIMEOUT": "handshake_timeout",
    "MATCH_OPEN_TIMEOUT": "open_timeout",
}


class ConfigError(Exception):
    """Raised when a configuration value is missing or invalid."""
    pass


@dataclass(frozen=True)
class ClientConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    secure: bool = False
    heartbeat_interval: float = 30.0
    reconnect_delay: float = 5.0
    auto_reconnect: bool = True
    handshake_timeout: float = 10.0
    open_timeout: float = 5.0

    def __post_init__(self) -> None:
        if not is_valid_host(self.host):
            raise ConfigError(f"Invalid host: {self.host!r}")
        if not is_valid_port(self.port):
            raise ConfigError(f"Invalid port: {self.port!r}")
        if self.heartbeat_interval <= 0:
            raise ConfigError("heartbeat_interval must be positive")
        if self.reconnect_delay < 0:
            raise ConfigError("reconnect_delay must not be negative")
        if self.handshake_timeout <= 0 or self.open_timeout <= 0:
            raise ConfigError("timeouts must be positive")

    @property
    def url(self) -> str:
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self.host}:{self.port}"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base: Optional["ClientConfig"] = None) -> "ClientConfig":
        """Overlay ``data`` on ``base`` (defaults when omitted), coercing value types."""
        base = base or cls()
        known = {f.name: f for f in fields(cls)}
        updates: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                logger.warning("Ignoring unknown config key: %s", key)
                continue
            updates[key] = _coerce(key, value, getattr(base, key))
        return replace(base, **updates)

    @classmethod
    def from_yaml(cls, path: Path, base: Optional["ClientConfig"] = None) -> "ClientConfig":
        """
        Load a YAML file. Accepts a flat mapping or one nested under ``client:``.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}")
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        if isinstance(data.get("client"), dict):
            data = data["client"]
        return cls.from_dict(data, base)

    @classmethod
    def from_env(cls, base: Optional["ClientConfig"] = None, environ: Optional[Mapping[str, str]] = None) -> "ClientConfig":
        environ = os.environ if environ is None else environ
        data = {name: environ[var] for var, name in ENV_VARS.items() if environ.get(var)}
        return cls.from_dict(data, base)

    @classmethod
    def load(cls, path: Optional[Path] = None, **overrides: Any) -> "ClientConfig":
        """defaults <- YAML file <- environment <- explicit overrides (None values skipped)."""
        config = cls()
        if path is not None:
            config = cls.from_yaml(path, config)
        config = cls.from_env(config)
        explicit = {k: v for k, v in overrides.items() if v is not None}
        if explicit:
            config = cls.from_dict(explicit, config)
        return config


def _coerce(key: str, value: Any, current: Any) -> Any:
    try:
        if isinstance(current, bool):
            return parse_bool(value)
        if isinstance(current, int):
            if isinstance(value, bool):
                raise ValueError("boolean is not a number")
            return int(value)
        if isinstance(current, float):
            if isinstance(value, bool):
                raise ValueError("boolean is not a number")
            return float(value)
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {key}: {value!r} ({e})")
