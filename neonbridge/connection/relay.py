"""Normalization of agent stream events into outbound responses."""

from __future__ import annotations

from typing import Any

from neonbridge.core.models import AgentMessage, AgentResponse
from neonbridge.executor.events import ExecutionResult, ExitEvent

BUSY_ERROR = "Agent is busy with another command. Cancel it first or wait."
CANCELLED_MESSAGE = "Command cancelled by user"
NOTHING_TO_CANCEL_ERROR = "No command is running."


def normalize_stream_message(event: dict[str, Any]) -> AgentMessage:
    """Flatten a stream-json event into displayable text, role and metadata.

    Assistant events carry text at ``message.content[].text``; some other
    event types put a ``content`` array at the top level. The nested array
    wins when both exist.
    """
    nested = event.get("message")
    nested = nested if isinstance(nested, dict) else {}

    content = nested.get("content") or event.get("content")
    text = ""
    if isinstance(content, list):
        text = "".join(
            str(item.get("text") or "")
            for item in content
            if isinstance(item, dict) and item.get("type") == "text"
        )

    role = nested.get("role") or event.get("role") or event.get("type") or "system"
    return AgentMessage(
        role=str(role),
        content=text,
        metadata={
            "raw_type": event.get("type"),
            "subtype": event.get("subtype"),
            "tools": event.get("tools"),
        },
    )


def stream_response(*, request_id: str, session_id: str, event: dict[str, Any]) -> AgentResponse:
    return AgentResponse(
        type="stream",
        request_id=request_id,
        session_id=session_id or None,
        message=normalize_stream_message(event),
    )


def result_response(*, request_id: str, result: ExecutionResult) -> AgentResponse:
    return AgentResponse(
        type="result",
        request_id=request_id,
        session_id=result.session_id or None,
        cost_usd=result.cost_usd,
        duration_ms=result.duration_ms,
        num_turns=result.num_turns,
        message=AgentMessage(role="assistant", content=result.result),
    )


def error_response(*, request_id: str, error: str) -> AgentResponse:
    return AgentResponse(type="error", request_id=request_id, error=error)


def exit_error_response(*, request_id: str, exit_event: ExitEvent) -> AgentResponse:
    error = f"Claude Code process exited unexpectedly with code {exit_event.returncode}"
    if exit_event.diagnostics:
        error = f"{error}\n{exit_event.diagnostics}"
    return error_response(request_id=request_id, error=error)


def cancelled_response(*, request_id: str) -> AgentResponse:
    return AgentResponse(
        type="result",
        request_id=request_id,
        message=AgentMessage(role="system", content=CANCELLED_MESSAGE),
    )
