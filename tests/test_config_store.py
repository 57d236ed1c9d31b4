from __future__ import annotations

import json
from pathlib import Path

import pytest

from neonbridge.config import (
    CONFIG_PATH_ENV,
    DEFAULT_ALLOWED_TOOLS,
    DEFAULT_SERVER_URL,
    ConfigError,
    ConfigStore,
    default_config_path,
    generate_device_token,
    hash_token,
    websocket_url,
)


def test_missing_file_yields_unconfigured_defaults(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "config.json")

    config = store.load()

    assert config.is_configured is False
    assert config.server_url == DEFAULT_SERVER_URL
    assert config.allowed_tools == list(DEFAULT_ALLOWED_TOOLS)
    assert store.is_configured is False


def test_save_then_load_round_trips(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "config.json"
    store = ConfigStore(path)
    store.set(agent_id="agent-1", device_token="tok", is_configured=True, allowed_tools=["Read"])
    store.save()

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert list(raw) == sorted(raw)

    reloaded = ConfigStore(path)
    config = reloaded.load()
    assert config.agent_id == "agent-1"
    assert config.allowed_tools == ["Read"]
    assert reloaded.is_configured is True
    assert reloaded.get("device_token") == "tok"


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "config.json")

    with pytest.raises(ConfigError, match="bogus"):
        store.set(bogus=1)
    with pytest.raises(ConfigError, match="bogus"):
        store.get("bogus")


def test_corrupt_file_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")

    assert ConfigStore(path).load().is_configured is False

    path.write_text('["a list"]', encoding="utf-8")
    assert ConfigStore(path).load().agent_id == ""


def test_unknown_stored_keys_are_ignored(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"agent_id": "a", "legacy_field": True}), encoding="utf-8")

    assert ConfigStore(path).load().agent_id == "a"


def test_wrongly_typed_stored_values_fall_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "agent_id": 42,
                "device_token": "tok",
                "allowed_tools": "Read",
                "is_configured": "false",
            }
        ),
        encoding="utf-8",
    )

    config = ConfigStore(path).load()

    assert config.agent_id == ""
    assert config.device_token == "tok"
    assert config.allowed_tools == list(DEFAULT_ALLOWED_TOOLS)
    assert config.is_configured is False

    path.write_text(json.dumps({"allowed_tools": ["Read", 7], "is_configured": 1}), encoding="utf-8")
    config = ConfigStore(path).load()
    assert config.allowed_tools == list(DEFAULT_ALLOWED_TOOLS)
    assert config.is_configured is False


def test_config_path_env_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv(CONFIG_PATH_ENV, str(tmp_path / "custom.json"))

    assert default_config_path() == tmp_path / "custom.json"
    assert ConfigStore().path == tmp_path / "custom.json"


def test_websocket_url_mapping() -> None:
    assert websocket_url("http://localhost:8090") == "ws://localhost:8090/ws/agent"
    assert websocket_url("https://chat.example.com/") == "wss://chat.example.com/ws/agent"
    assert websocket_url("ws://10.0.0.2:9000") == "ws://10.0.0.2:9000/ws/agent"


def test_device_tokens() -> None:
    token = generate_device_token()

    assert len(token) == 64
    assert token != generate_device_token()
    assert hash_token("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
