"""Core wire models for bridge commands, responses and heartbeats."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from neonbridge.core.types import AGENT_STATUSES, COMMAND_TYPES, RESPONSE_TYPES


class CommandValidationError(ValueError):
    """Raised when an inbound command payload cannot be accepted."""

    def __init__(self, message: str, *, request_id: str = "") -> None:
        super().__init__(message)
        self.request_id = request_id


@dataclass(frozen=True, slots=True)
class Command:
    """A command received from the remote controller."""

    type: str
    request_id: str
    prompt: str = ""
    session_id: str | None = None
    working_directory: str | None = None
    allowed_tools: tuple[str, ...] | None = None
    mcp_config: dict[str, Any] | None = None
    path: str | None = None

    def __post_init__(self) -> None:
        if self.type not in COMMAND_TYPES:
            raise CommandValidationError(
                f"Unknown command type: {self.type}",
                request_id=self.request_id,
            )

    @classmethod
    def from_dict(cls, raw: Any) -> "Command":
        if not isinstance(raw, dict):
            raise CommandValidationError("Command payload must be a JSON object")
        request_id = _optional_str(raw.get("request_id")) or ""
        allowed_tools = raw.get("allowed_tools")
        if allowed_tools is not None:
            if not isinstance(allowed_tools, list) or not all(
                isinstance(tool, str) for tool in allowed_tools
            ):
                raise CommandValidationError(
                    "allowed_tools must be a list of strings",
                    request_id=request_id,
                )
            allowed_tools = tuple(allowed_tools)
        mcp_config = raw.get("mcp_config")
        if mcp_config is not None and not isinstance(mcp_config, dict):
            raise CommandValidationError(
                "mcp_config must be a JSON object",
                request_id=request_id,
            )
        return cls(
            type=str(raw.get("type", "")),
            request_id=request_id,
            prompt=str(raw.get("prompt") or ""),
            session_id=_optional_str(raw.get("session_id")),
            working_directory=_optional_str(raw.get("working_directory")),
            allowed_tools=allowed_tools,
            mcp_config=dict(mcp_config) if mcp_config is not None else None,
            path=_optional_str(raw.get("path")),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type,
            "request_id": self.request_id,
            "prompt": self.prompt,
        }
        if self.session_id is not None:
            payload["session_id"] = self.session_id
        if self.working_directory is not None:
            payload["working_directory"] = self.working_directory
        if self.allowed_tools is not None:
            payload["allowed_tools"] = list(self.allowed_tools)
        if self.mcp_config is not None:
            payload["mcp_config"] = dict(self.mcp_config)
        if self.path is not None:
            payload["path"] = self.path
        return payload


@dataclass(slots=True)
class AgentMessage:
    """Displayable message relayed to the controller."""

    role: str
    content: str
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.metadata is not None:
            payload["metadata"] = dict(self.metadata)
        return payload


@dataclass(slots=True)
class AgentResponse:
    """Outbound message correlated to a command by request_id."""

    type: str
    request_id: str
    session_id: str | None = None
    message: AgentMessage | None = None
    cost_usd: float | None = None
    duration_ms: float | None = None
    num_turns: int | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if self.type not in RESPONSE_TYPES:
            raise ValueError(f"Unsupported response type: {self.type}")

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "request_id": self.request_id}
        if self.session_id:
            payload["session_id"] = self.session_id
        if self.message is not None:
            payload["message"] = self.message.to_dict()
        if self.cost_usd is not None:
            payload["cost_usd"] = self.cost_usd
        if self.duration_ms is not None:
            payload["duration_ms"] = self.duration_ms
        if self.num_turns is not None:
            payload["num_turns"] = self.num_turns
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class SystemInfo:
    """Host snapshot attached to every heartbeat."""

    hostname: str
    os: str
    platform: str
    arch: str
    claude_code_version: str
    uptime_seconds: int
    memory_usage_mb: int
    python_version: str
    default_working_dir: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "hostname": self.hostname,
            "os": self.os,
            "platform": self.platform,
            "arch": self.arch,
            "claude_code_version": self.claude_code_version,
            "uptime_seconds": self.uptime_seconds,
            "memory_usage_mb": self.memory_usage_mb,
            "python_version": self.python_version,
            "default_working_dir": self.default_working_dir,
        }


@dataclass(slots=True)
class Heartbeat:
    """Periodic liveness report."""

    agent_id: str
    status: str
    system_info: SystemInfo
    timestamp: str
    current_session: str | None = None

    def __post_init__(self) -> None:
        if self.status not in AGENT_STATUSES:
            raise ValueError(f"Unsupported agent status: {self.status}")

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": "heartbeat",
            "agent_id": self.agent_id,
            "status": self.status,
            "system_info": self.system_info.to_dict(),
            "timestamp": self.timestamp,
        }
        if self.current_session:
            payload["current_session"] = self.current_session
        return payload


@dataclass(frozen=True, slots=True)
class FileEntry:
    name: str
    path: str
    is_directory: bool

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "path": self.path, "isDirectory": self.is_directory}


@dataclass(slots=True)
class FileBrowseResult:
    """Read-only directory listing sent back for ``file_browse``."""

    request_id: str
    path: str
    entries: list[FileEntry] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": "file_browse_result",
            "request_id": self.request_id,
            "path": self.path,
            "entries": [entry.to_dict() for entry in self.entries],
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None
