"""Agent process execution and event streaming."""

from neonbridge.executor.capture import (
    CaptureHandle,
    CaptureStrategy,
    DirectStreamCapture,
    SinkFilePollCapture,
    StallNotice,
    combine_diagnostics,
    select_capture_strategy,
)
from neonbridge.executor.decoder import LineDecoder, decode_stream, parse_stream_event
from neonbridge.executor.events import (
    ErrorEvent,
    ExecutionResult,
    ExecutorEvent,
    ExitEvent,
    MessageEvent,
    ResultEvent,
)
from neonbridge.executor.exceptions import ExecutorError, PreflightError, SpawnError
from neonbridge.executor.executor import (
    DEFAULT_AGENT_COMMAND,
    ClaudeCodeExecutor,
    ExecuteOptions,
    build_agent_args,
    build_agent_env,
    check_agent_binary,
)

__all__ = [
    "DEFAULT_AGENT_COMMAND",
    "CaptureHandle",
    "CaptureStrategy",
    "ClaudeCodeExecutor",
    "DirectStreamCapture",
    "ErrorEvent",
    "ExecuteOptions",
    "ExecutionResult",
    "ExecutorError",
    "ExecutorEvent",
    "ExitEvent",
    "LineDecoder",
    "MessageEvent",
    "PreflightError",
    "ResultEvent",
    "SinkFilePollCapture",
    "SpawnError",
    "StallNotice",
    "build_agent_args",
    "build_agent_env",
    "check_agent_binary",
    "combine_diagnostics",
    "decode_stream",
    "parse_stream_event",
    "select_capture_strategy",
]
