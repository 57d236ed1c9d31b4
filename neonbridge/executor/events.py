"""Typed events produced by an agent execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union


@dataclass(slots=True)
class ExecutionResult:
    """Summary derived from the agent's terminal ``result`` line."""

    session_id: str
    result: str
    cost_usd: float
    duration_ms: float
    num_turns: int
    is_error: bool

    @classmethod
    def from_stream_event(cls, event: dict[str, Any], *, session_id: str) -> "ExecutionResult":
        return cls(
            session_id=session_id,
            result=str(event.get("result") or ""),
            cost_usd=event.get("total_cost_usd") or 0,
            duration_ms=event.get("duration_ms") or 0,
            num_turns=event.get("num_turns") or 0,
            is_error=bool(event.get("is_error") or False),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "result": self.result,
            "cost_usd": self.cost_usd,
            "duration_ms": self.duration_ms,
            "num_turns": self.num_turns,
            "is_error": self.is_error,
        }


@dataclass(slots=True)
class MessageEvent:
    """One decoded stream line with the session id known when it was read."""

    message: dict[str, Any] = field(default_factory=dict)
    session_id: str = ""


@dataclass(slots=True)
class ResultEvent:
    result: ExecutionResult


@dataclass(slots=True)
class ErrorEvent:
    error: str
    kind: Literal["timeout", "runtime"] = "runtime"


@dataclass(slots=True)
class ExitEvent:
    returncode: int | None
    diagnostics: str | None = None


ExecutorEvent = Union[MessageEvent, ResultEvent, ErrorEvent, ExitEvent]
