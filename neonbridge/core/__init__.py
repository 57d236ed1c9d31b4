"""Core wire models shared by the executor and connection layers."""

from neonbridge.core.models import (
    AgentMessage,
    AgentResponse,
    Command,
    CommandValidationError,
    FileBrowseResult,
    FileEntry,
    Heartbeat,
    SystemInfo,
)
from neonbridge.core.types import (
    AGENT_STATUSES,
    COMMAND_TYPES,
    RESPONSE_TYPES,
    AgentStatus,
    CommandType,
    MessageRole,
    ResponseType,
)

__all__ = [
    "AGENT_STATUSES",
    "COMMAND_TYPES",
    "RESPONSE_TYPES",
    "AgentMessage",
    "AgentResponse",
    "AgentStatus",
    "Command",
    "CommandType",
    "CommandValidationError",
    "FileBrowseResult",
    "FileEntry",
    "Heartbeat",
    "MessageRole",
    "ResponseType",
    "SystemInfo",
]
