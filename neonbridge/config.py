"""Persistent bridge configuration: device identity, server URL and defaults."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
import hashlib
import json
import logging
import os
from pathlib import Path
import secrets
from typing import Any

CONFIG_PATH_ENV = "NEONBRIDGE_CONFIG_PATH"
DEFAULT_SERVER_URL = "http://localhost:8090"
DEFAULT_ALLOWED_TOOLS: tuple[str, ...] = ("Read", "Bash", "Write", "Edit", "Glob", "Grep")
_STRING_KEYS = ("agent_id", "device_token", "server_url", "device_name", "default_working_dir")

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised for invalid configuration updates."""


@dataclass(slots=True)
class BridgeConfig:
    agent_id: str = ""
    device_token: str = ""
    server_url: str = DEFAULT_SERVER_URL
    device_name: str = ""
    default_working_dir: str = field(default_factory=os.getcwd)
    allowed_tools: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_TOOLS))
    is_configured: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "BridgeConfig":
        """Build a config from stored JSON; wrongly typed values fall back to defaults."""
        config = cls()
        for key in _STRING_KEYS:
            if key not in raw:
                continue
            value = raw[key]
            if isinstance(value, str):
                setattr(config, key, value)
            else:
                logger.warning("Ignoring config %s: expected a string, got %s", key, type(value).__name__)
        if "allowed_tools" in raw:
            tools = raw["allowed_tools"]
            if isinstance(tools, list) and all(isinstance(tool, str) for tool in tools):
                config.allowed_tools = list(tools)
            else:
                logger.warning("Ignoring config allowed_tools: expected a list of strings")
        if "is_configured" in raw:
            if isinstance(raw["is_configured"], bool):
                config.is_configured = raw["is_configured"]
            else:
                logger.warning("Ignoring config is_configured: expected true or false")
        return config


def default_config_path() -> Path:
    override = os.environ.get(CONFIG_PATH_ENV, "").strip()
    if override:
        return Path(override)
    return Path.home() / ".config" / "neonbridge" / "config.json"


class ConfigStore:
    """JSON-file backed configuration with explicit load/save."""

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path is not None else default_config_path()
        self._config = BridgeConfig()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def config(self) -> BridgeConfig:
        return self._config

    @property
    def is_configured(self) -> bool:
        return self._config.is_configured

    def load(self) -> BridgeConfig:
        """Load from disk; a missing or unreadable file yields defaults."""
        self._config = BridgeConfig()
        if not self._path.exists():
            return self._config
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return self._config
        if not isinstance(raw, dict):
            return self._config
        self._config = BridgeConfig.from_dict(raw)
        return self._config

    def save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps(self._config.to_dict(), indent=2, ensure_ascii=True, sort_keys=True) + "\n",
            encoding="utf-8",
        )

    def get(self, key: str) -> Any:
        if key not in _CONFIG_KEYS:
            raise ConfigError(f"Unknown config key '{key}'.")
        return getattr(self._config, key)

    def set(self, **updates: Any) -> BridgeConfig:
        unknown = sorted(key for key in updates if key not in _CONFIG_KEYS)
        if unknown:
            raise ConfigError(f"Unknown config key(s): {', '.join(unknown)}")
        for key, value in updates.items():
            setattr(self._config, key, value)
        return self._config


_CONFIG_KEYS = frozenset(item.name for item in fields(BridgeConfig))


def generate_device_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def websocket_url(server_url: str) -> str:
    """Map ``http(s)://host`` to the agent WebSocket endpoint ``ws(s)://host/ws/agent``."""
    url = server_url.strip()
    if url.startswith("http"):
        url = "ws" + url[len("http"):]
    return url.rstrip("/") + "/ws/agent"
