from __future__ import annotations

import json

import pytest

from relay_cloud.api.config_loader import load_config


def test_defaults_without_file() -> None:
    cfg = load_config(None, environ={})

    assert cfg.server.host == "0.0.0.0"
    assert cfg.server.port == 8000
    assert cfg.relays.count == 2
    assert cfg.relays.command_id_length == 16
    assert cfg.relays.inflight_ttl_seconds is None
    assert cfg.device.status_ttl_seconds == 30.0
    assert cfg.logging.level == "INFO"


def test_file_values_and_clamping(tmp_path) -> None:
    path = tmp_path / "relay.json"
    path.write_text(
        json.dumps(
            {
                "server": {"host": "127.0.0.1", "port": "9001"},
                "relays": {"count": 4, "command_id_length": 99, "inflight_ttl_seconds": 120},
                "device": {"status_ttl_seconds": "oops"},
                "logging": {"level": "debug", "recent_capacity": 0},
            }
        ),
        encoding="utf-8",
    )

    cfg = load_config(path, environ={})

    assert cfg.server.host == "127.0.0.1"
    assert cfg.server.port == 9001
    assert cfg.relays.count == 4
    assert cfg.relays.command_id_length == 32
    assert cfg.relays.inflight_ttl_seconds == 120.0
    assert cfg.device.status_ttl_seconds == 30.0
    assert cfg.logging.level == "DEBUG"
    assert cfg.logging.recent_capacity == 1


def test_environment_overrides_file(tmp_path) -> None:
    path = tmp_path / "relay.json"
    path.write_text(json.dumps({"relays": {"inflight_ttl_seconds": 30}}), encoding="utf-8")

    cfg = load_config(
        path,
        environ={
            "WEBRELAY_HOST": "10.1.1.1",
            "WEBRELAY_PORT": "8100",
            "WEBRELAY_RELAY_COUNT": "3",
            "WEBRELAY_INFLIGHT_TTL": "",
            "WEBRELAY_LOG_LEVEL": "warning",
        },
    )

    assert cfg.server.host == "10.1.1.1"
    assert cfg.server.port == 8100
    assert cfg.relays.count == 3
    assert cfg.relays.inflight_ttl_seconds is None
    assert cfg.logging.level == "WARNING"


def test_invalid_json_is_rejected(tmp_path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(path, environ={})


def test_missing_file_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.json", environ={})
