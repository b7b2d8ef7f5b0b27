"""Server configuration loading.

Settings are resolved in three layers: built-in defaults, an optional JSON file
(``config/relay.json`` by default), then ``WEBRELAY_*`` environment variables. CLI
flags handled in :mod:`relay_cloud.api.main` take precedence over all of them.

Example file::

    {
      "server": {"host": "0.0.0.0", "port": 8000},
      "relays": {"count": 2, "command_id_length": 16, "inflight_ttl_seconds": null},
      "device": {"status_ttl_seconds": 30},
      "logging": {"level": "INFO", "recent_capacity": 200}
    }
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .commands import MAX_COMMAND_ID_LENGTH, MIN_COMMAND_ID_LENGTH

logger = logging.getLogger(__name__)


@dataclass
class ServerSettings:
    host: str = "0.0.0.0"
    port: int = 8000


@dataclass
class RelaySettings:
    count: int = 2
    command_id_length: int = 16
    inflight_ttl_seconds: float | None = None


@dataclass
class DeviceSettings:
    status_ttl_seconds: float = 30.0


@dataclass
class LoggingSettings:
    level: str = "INFO"
    recent_capacity: int = 200


@dataclass
class RelayServerConfig:
    server: ServerSettings = field(default_factory=ServerSettings)
    relays: RelaySettings = field(default_factory=RelaySettings)
    device: DeviceSettings = field(default_factory=DeviceSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


def load_config(
    path: str | Path | None = None, environ: Mapping[str, str] | None = None
) -> RelayServerConfig:
    """Load configuration from ``path`` (if given) and apply environment overrides.

    Raises ``FileNotFoundError`` when ``path`` is given but missing, and ``ValueError``
    when the file is not a JSON object.
    """
    data: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        raw = config_path.read_text(encoding="utf-8")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in {config_path}: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ValueError(f"Configuration root in {config_path} must be an object")
        data = parsed

    cfg = RelayServerConfig()
    server = _section(data, "server")
    relays = _section(data, "relays")
    device = _section(data, "device")
    log_cfg = _section(data, "logging")

    cfg.server.host = str(server.get("host", cfg.server.host))
    cfg.server.port = _as_int(server.get("port"), cfg.server.port, "server.port")
    cfg.relays.count = max(1, _as_int(relays.get("count"), cfg.relays.count, "relays.count"))
    cfg.relays.command_id_length = _clamp_id_length(
        _as_int(
            relays.get("command_id_length"),
            cfg.relays.command_id_length,
            "relays.command_id_length",
        )
    )
    cfg.relays.inflight_ttl_seconds = _as_ttl(
        relays.get("inflight_ttl_seconds"), "relays.inflight_ttl_seconds"
    )
    cfg.device.status_ttl_seconds = _as_float(
        device.get("status_ttl_seconds"),
        cfg.device.status_ttl_seconds,
        "device.status_ttl_seconds",
    )
    cfg.logging.level = str(log_cfg.get("level", cfg.logging.level)).upper()
    cfg.logging.recent_capacity = max(
        1,
        _as_int(
            log_cfg.get("recent_capacity"),
            cfg.logging.recent_capacity,
            "logging.recent_capacity",
        ),
    )

    _apply_env_overrides(cfg, os.environ if environ is None else environ)
    return cfg


def _apply_env_overrides(cfg: RelayServerConfig, environ: Mapping[str, str]) -> None:
    host = environ.get("WEBRELAY_HOST")
    if host:
        cfg.server.host = host
    if environ.get("WEBRELAY_PORT"):
        cfg.server.port = _as_int(environ["WEBRELAY_PORT"], cfg.server.port, "WEBRELAY_PORT")
    if environ.get("WEBRELAY_RELAY_COUNT"):
        cfg.relays.count = max(
            1,
            _as_int(environ["WEBRELAY_RELAY_COUNT"], cfg.relays.count, "WEBRELAY_RELAY_COUNT"),
        )
    if "WEBRELAY_INFLIGHT_TTL" in environ:
        cfg.relays.inflight_ttl_seconds = _as_ttl(
            environ["WEBRELAY_INFLIGHT_TTL"] or None, "WEBRELAY_INFLIGHT_TTL"
        )
    level = environ.get("WEBRELAY_LOG_LEVEL")
    if level:
        cfg.logging.level = level.upper()


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        logger.warning("Ignoring config section %s: expected an object", name)
        return {}
    return value


def _as_int(value: Any, default: int, name: str) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid value for %s: %r; using %s", name, value, default)
        return default


def _as_float(value: Any, default: float, name: str) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning("Invalid value for %s: %r; using %s", name, value, default)
        return default


def _as_ttl(value: Any, name: str) -> float | None:
    if value is None:
        return None
    try:
        ttl = float(value)
    except (TypeError, ValueError):
        logger.warning("Invalid value for %s: %r; in-flight expiry disabled", name, value)
        return None
    return ttl if ttl > 0 else None


def _clamp_id_length(length: int) -> int:
    return max(MIN_COMMAND_ID_LENGTH, min(MAX_COMMAND_ID_LENGTH, length))


__all__ = [
    "DeviceSettings",
    "LoggingSettings",
    "RelayServerConfig",
    "RelaySettings",
    "ServerSettings",
    "load_config",
]
