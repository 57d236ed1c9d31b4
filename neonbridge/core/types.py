"""Type definitions for bridge wire messages."""

from typing import Literal

CommandType = Literal[
    "command",
    "resume",
    "cancel",
    "file_browse",
]

COMMAND_TYPES: tuple[str, ...] = (
    "command",
    "resume",
    "cancel",
    "file_browse",
)

AgentStatus = Literal["online", "offline", "busy", "error"]

AGENT_STATUSES: tuple[str, ...] = ("online", "offline", "busy", "error")

ResponseType = Literal["stream", "result", "error", "status"]

RESPONSE_TYPES: tuple[str, ...] = ("stream", "result", "error", "status")

MessageRole = Literal["user", "assistant", "system", "tool_use", "tool_result"]
