"""Claude Code subprocess executor with stream-json event decoding."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping, Sequence
import contextlib
from dataclasses import dataclass
import logging
import os
import shutil
from typing import Any

from neonbridge.executor.capture import CaptureHandle, CaptureStrategy, StallNotice, select_capture_strategy
from neonbridge.executor.decoder import LineDecoder, parse_stream_event
from neonbridge.executor.events import (
    ErrorEvent,
    ExecutionResult,
    ExecutorEvent,
    ExitEvent,
    MessageEvent,
    ResultEvent,
)
from neonbridge.executor.exceptions import ExecutorError, PreflightError, SpawnError

logger = logging.getLogger(__name__)

DEFAULT_AGENT_COMMAND: tuple[str, ...] = ("claude",)
PREFLIGHT_TIMEOUT_SECONDS = 10.0
# SIGTERM to SIGKILL escalation delay.
KILL_GRACE_SECONDS = 3.0
# Set by Claude Code inside its own sessions; a child agent refuses to start when it sees it.
NESTED_SESSION_ENV_KEYS = frozenset({"CLAUDECODE"})
_INSTALL_HINT = "Please install it from https://claude.ai/download and ensure the \"claude\" command is available."


@dataclass(slots=True)
class ExecuteOptions:
    """Per-execution invocation options."""

    prompt: str
    working_directory: str | None = None
    session_id: str | None = None
    allowed_tools: Sequence[str] | None = None
    mcp_config_path: str | None = None
    system_prompt_append: str | None = None
    timeout: float | None = None


def build_agent_args(options: ExecuteOptions) -> list[str]:
    """Build the agent argument vector; flag order is part of the wire contract."""
    args = [
        "-p",
        options.prompt,
        "--output-format",
        "stream-json",
        "--verbose",
        "--dangerously-skip-permissions",
    ]
    if options.session_id:
        args.extend(["--resume", options.session_id])
    if options.allowed_tools:
        args.extend(["--allowedTools", ",".join(options.allowed_tools)])
    if options.mcp_config_path:
        args.extend(["--mcp-config", options.mcp_config_path])
    if options.system_prompt_append:
        args.extend(["--append-system-prompt", options.system_prompt_append])
    return args


def build_agent_env(base: Mapping[str, str] | None = None) -> dict[str, str]:
    source = os.environ if base is None else base
    return {key: value for key, value in source.items() if key not in NESTED_SESSION_ENV_KEYS}


def stall_message(quiet_seconds: float) -> dict[str, Any]:
    text = (
        f"Claude Code is still running but hasn't produced output in {int(quiet_seconds)} seconds. "
        "This might indicate an issue. Check the bridge logs or try canceling and restarting."
    )
    return {
        "type": "assistant_message",
        "message": {
            "role": "assistant",
            "content": [{"type": "text", "text": text}],
        },
    }


async def check_agent_binary(
    agent_command: Sequence[str] = DEFAULT_AGENT_COMMAND,
    *,
    timeout: float = PREFLIGHT_TIMEOUT_SECONDS,
) -> str:
    """Verify the agent binary resolves and answers ``--version``."""
    if shutil.which(agent_command[0]) is None:
        raise PreflightError(f"Claude CLI not found in PATH. {_INSTALL_HINT}")

    try:
        process = await asyncio.create_subprocess_exec(
            *agent_command,
            "--version",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as error:
        raise PreflightError(
            f"Claude CLI exists but failed to run: {error}. "
            "This might indicate a corrupted installation or permission issue."
        ) from error

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as error:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()
        raise PreflightError(
            f"Claude CLI did not answer --version within {timeout:g}s."
        ) from error

    if process.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip() or f"exit code {process.returncode}"
        raise PreflightError(
            f"Claude CLI exists but failed to run: {detail}. "
            "Try reinstalling from https://claude.ai/download"
        )
    version = stdout.decode("utf-8", errors="replace").strip()
    logger.info("Claude CLI version: %s", version)
    return version


class ClaudeCodeExecutor:
    """Run one Claude Code invocation and stream its events.

    An executor owns a single subprocess. :meth:`execute` is an async
    iterator over :class:`MessageEvent` items, at most one
    :class:`ResultEvent`, an :class:`ErrorEvent` when the timeout fires, and
    a final :class:`ExitEvent`.
    """

    def __init__(
        self,
        *,
        agent_command: Sequence[str] = DEFAULT_AGENT_COMMAND,
        capture: CaptureStrategy | None = None,
        preflight: bool = True,
        kill_after: float = KILL_GRACE_SECONDS,
    ) -> None:
        if not agent_command:
            raise ValueError("agent_command cannot be empty")
        self.agent_command = tuple(agent_command)
        self.capture = capture or select_capture_strategy()
        self.preflight = preflight
        self.kill_after = kill_after
        self._handle: CaptureHandle | None = None
        self._session_id = ""
        self._started = False
        self._cancelled = False
        self._timed_out = False
        self._kill_timer: asyncio.TimerHandle | None = None

    @property
    def session_id(self) -> str:
        return self._session_id

    def current_session_id(self) -> str:
        return self._session_id

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def timed_out(self) -> bool:
        return self._timed_out

    @property
    def pid(self) -> int | None:
        if self._handle is None:
            return None
        return self._handle.process.pid

    @property
    def running(self) -> bool:
        return self._handle is not None and self._handle.process.returncode is None

    async def execute(self, options: ExecuteOptions) -> AsyncIterator[ExecutorEvent]:
        if self._started:
            raise ExecutorError("An executor runs a single execution; create a new one.")
        self._started = True

        if self.preflight:
            await check_agent_binary(self.agent_command)

        argv = [*self.agent_command, *build_agent_args(options)]
        cwd = options.working_directory or os.getcwd()
        try:
            handle = await self.capture.spawn(argv, cwd=cwd, env=build_agent_env())
        except OSError as error:
            raise SpawnError(f"Failed to start Claude Code: {error}") from error
        self._handle = handle
        logger.debug("spawned agent pid=%s capture=%s cwd=%s", handle.process.pid, self.capture.name, cwd)
        if self._cancelled:
            self._terminate()

        queue: asyncio.Queue[ExecutorEvent | None] = asyncio.Queue()
        timer: asyncio.TimerHandle | None = None
        if options.timeout:
            timer = asyncio.get_running_loop().call_later(
                options.timeout, self._expire, options.timeout, queue
            )
        pump = asyncio.create_task(self._pump(handle, queue))
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
            await pump
        finally:
            if timer is not None:
                timer.cancel()
            if not pump.done():
                pump.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pump
            if self._terminate():
                await self._reap(handle)
            if self._kill_timer is not None:
                self._kill_timer.cancel()
            await handle.close()

    def cancel(self) -> None:
        """Terminate the subprocess if it is still alive. Always safe to call."""
        self._cancelled = True
        self._terminate()

    def _terminate(self) -> bool:
        handle = self._handle
        if handle is None or handle.process.returncode is not None:
            return False
        with contextlib.suppress(ProcessLookupError):
            handle.process.terminate()
        if self._kill_timer is None:
            self._kill_timer = asyncio.get_running_loop().call_later(self.kill_after, self._kill)
        return True

    def _kill(self) -> None:
        handle = self._handle
        if handle is None or handle.process.returncode is not None:
            return
        logger.warning("agent pid=%s ignored SIGTERM for %ss, killing", handle.process.pid, self.kill_after)
        with contextlib.suppress(ProcessLookupError):
            handle.process.kill()

    async def _reap(self, handle: CaptureHandle) -> None:
        try:
            await asyncio.wait_for(handle.process.wait(), timeout=self.kill_after)
        except asyncio.TimeoutError:
            self._kill()
            await handle.process.wait()

    def _expire(self, timeout: float, queue: asyncio.Queue[ExecutorEvent | None]) -> None:
        if not self._terminate():
            return
        self._timed_out = True
        logger.warning("agent pid=%s timed out after %ss", self.pid, timeout)
        queue.put_nowait(ErrorEvent(error=f"Execution timed out after {timeout:g}s", kind="timeout"))

    async def _pump(self, handle: CaptureHandle, queue: asyncio.Queue[ExecutorEvent | None]) -> None:
        decoder = LineDecoder()
        try:
            async for chunk in handle.chunks():
                if isinstance(chunk, StallNotice):
                    logger.warning("agent pid=%s silent for %.0fs", handle.process.pid, chunk.quiet_seconds)
                    queue.put_nowait(
                        MessageEvent(message=stall_message(chunk.quiet_seconds), session_id=self._session_id)
                    )
                    continue
                for line in decoder.feed(chunk):
                    self._interpret(line, queue)
            for line in decoder.flush():
                self._interpret(line, queue)

            returncode = handle.process.returncode
            diagnostics: str | None = None
            if returncode != 0:
                diagnostics = await handle.diagnostics() or None
            logger.debug("agent pid=%s exited with code %s", handle.process.pid, returncode)
            queue.put_nowait(ExitEvent(returncode=returncode, diagnostics=diagnostics))
        finally:
            queue.put_nowait(None)

    def _interpret(self, line: str, queue: asyncio.Queue[ExecutorEvent | None]) -> None:
        event = parse_stream_event(line)
        if event is None:
            return
        session_id = event.get("session_id")
        if event.get("type") == "init" or session_id:
            if isinstance(session_id, str) and session_id:
                self._session_id = session_id
        queue.put_nowait(MessageEvent(message=event, session_id=self._session_id))
        if event.get("type") == "result":
            queue.put_nowait(
                ResultEvent(result=ExecutionResult.from_stream_event(event, session_id=self._session_id))
            )
