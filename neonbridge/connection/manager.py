"""Connection manager: transport ownership, admission, heartbeat and reconnect.

The manager accepts at most one agent execution at a time. A command that
arrives while another is running is rejected with a busy error rather than
queued. Each accepted command gets a fresh :class:`ClaudeCodeExecutor`
whose events are relayed to the controller under the command's
``request_id``; exactly one terminal response (result or error) is sent per
execution and anything the executor produces afterwards is dropped.

Messages produced while the transport is down are dropped, not buffered. A
running execution survives a reconnect and keeps relaying on the new
transport.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
import contextlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
import tempfile
from typing import Any, Literal

from neonbridge.config import ConfigStore, websocket_url
from neonbridge.connection.backoff import ReconnectBackoff
from neonbridge.connection.browse import browse_directory
from neonbridge.connection.exceptions import NotConfiguredError, TransportError
from neonbridge.connection.relay import (
    BUSY_ERROR,
    NOTHING_TO_CANCEL_ERROR,
    cancelled_response,
    error_response,
    exit_error_response,
    result_response,
    stream_response,
)
from neonbridge.connection.transport import NORMAL_CLOSURE, Transport, open_websocket
from neonbridge.core.models import AgentResponse, Command, CommandValidationError, Heartbeat
from neonbridge.executor.capture import CaptureStrategy, select_capture_strategy
from neonbridge.executor.events import ErrorEvent, ExecutorEvent, ExitEvent, MessageEvent, ResultEvent
from neonbridge.executor.exceptions import ExecutorError
from neonbridge.executor.executor import ClaudeCodeExecutor, ExecuteOptions
from neonbridge.system_info import SystemInfoProvider

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL_SECONDS = 30.0
SHUTDOWN_GRACE_SECONDS = 5.0

TransportState = Literal["disconnected", "connecting", "connected"]
TransportFactory = Callable[[str, Mapping[str, str]], Awaitable[Transport]]
ExecutorFactory = Callable[[], ClaudeCodeExecutor]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True, eq=False)
class _ActiveExecution:
    request_id: str
    executor: ClaudeCodeExecutor
    task: asyncio.Task[None] | None = None
    finished: bool = False
    temp_files: list[Path] = field(default_factory=list)


class ConnectionManager:
    """Owns the controller connection and the single active execution."""

    def __init__(
        self,
        store: ConfigStore,
        *,
        server_url: str | None = None,
        transport_factory: TransportFactory = open_websocket,
        executor_factory: ExecutorFactory | None = None,
        capture: CaptureStrategy | None = None,
        system_info_provider: SystemInfoProvider | None = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
        backoff: ReconnectBackoff | None = None,
        command_timeout: float | None = None,
    ) -> None:
        self.store = store
        self.server_url = server_url
        self.heartbeat_interval = heartbeat_interval
        self.backoff = backoff or ReconnectBackoff()
        self.command_timeout = command_timeout
        self._transport_factory = transport_factory
        # Raises ValueError for an unknown NEONBRIDGE_CAPTURE_MODE.
        self.capture = capture or select_capture_strategy()
        self._executor_factory = executor_factory or self._default_executor
        self._system_info = system_info_provider or SystemInfoProvider(
            default_working_dir=store.config.default_working_dir,
        )
        self._transport: Transport | None = None
        self._transport_state: TransportState = "disconnected"
        self._status = "online"
        self._current_session_id: str | None = None
        self._execution: _ActiveExecution | None = None
        self._live: set[_ActiveExecution] = set()
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._shutting_down = False
        self._shutdown_event = asyncio.Event()

    @property
    def status(self) -> str:
        return self._status

    @property
    def transport_state(self) -> TransportState:
        return self._transport_state

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def current_session_id(self) -> str | None:
        return self._current_session_id

    @property
    def active_request_id(self) -> str | None:
        if self._execution is None:
            return None
        return self._execution.request_id

    async def connect(self) -> None:
        """Make one connection attempt and start the heartbeat on success."""
        config = self.store.config
        if not config.is_configured:
            raise NotConfiguredError("Agent not configured. Run: neonbridge setup")
        if self._shutting_down:
            raise TransportError("connection manager is shutting down")

        url = websocket_url(self.server_url or config.server_url)
        headers = {"X-Agent-ID": config.agent_id, "X-Device-Token": config.device_token}
        self._transport_state = "connecting"
        logger.info("Connecting to %s...", url)
        try:
            transport = await self._transport_factory(url, headers)
        except TransportError:
            self._transport_state = "disconnected"
            raise
        if self._shutting_down:
            self._transport_state = "disconnected"
            await transport.close(code=NORMAL_CLOSURE, message="Agent shutting down")
            raise TransportError("connection manager is shutting down")
        self._transport = transport
        self._transport_state = "connected"
        self.backoff.reset()
        logger.info("Connected to %s", url)
        self._start_heartbeat()

    async def run(self) -> None:
        """Connect, serve and reconnect with backoff until :meth:`shutdown`."""
        while not self._shutting_down:
            try:
                await self.connect()
            except TransportError as error:
                logger.warning("Connection failed: %s", error)
            else:
                await self.serve()
            if self._shutting_down:
                break
            delay = self.backoff.next_delay()
            logger.info("Reconnecting in %gs...", delay)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay)

    async def serve(self) -> None:
        """Dispatch inbound messages until the current transport closes."""
        transport = self._transport
        if transport is None:
            return
        try:
            async for raw in transport.messages():
                await self.handle_message(raw)
        except TransportError as error:
            logger.warning("Transport error: %s", error)
        finally:
            await self._stop_heartbeat()
            if self._transport is transport:
                self._transport = None
            self._transport_state = "disconnected"
            logger.warning("Disconnected (code: %s)", transport.close_code)

    async def shutdown(self) -> None:
        """Stop timers, cancel the live execution and close the transport."""
        if self._shutting_down:
            return
        self._shutting_down = True
        self._shutdown_event.set()
        await self._stop_heartbeat()
        for slot in list(self._live):
            slot.executor.cancel()
        transport = self._transport
        if transport is not None:
            try:
                await transport.close(code=NORMAL_CLOSURE, message="Agent shutting down")
            except (TransportError, OSError) as error:
                logger.warning("Error while closing transport: %s", error)
        await self.wait_until_idle(timeout=SHUTDOWN_GRACE_SECONDS)

    async def wait_until_idle(self, timeout: float | None = None) -> None:
        """Wait for every execution task (including ones past their result) to end."""
        tasks = [slot.task for slot in self._live if slot.task is not None]
        if not tasks:
            return
        _done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def handle_message(self, raw: str | bytes) -> None:
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.error("Invalid message received")
            return
        try:
            command = Command.from_dict(payload)
        except CommandValidationError as error:
            logger.warning("Rejected command [%s]: %s", error.request_id, error)
            await self._send_response(error_response(request_id=error.request_id, error=str(error)))
            return

        logger.info("<- Command: %s [%s]", command.type, command.request_id)
        if command.type in ("command", "resume"):
            await self._start_execution(command)
        elif command.type == "cancel":
            await self._cancel_execution(command)
        elif command.type == "file_browse":
            await self._browse_files(command)

    async def _start_execution(self, command: Command) -> None:
        if self._status == "busy":
            await self._send_response(error_response(request_id=command.request_id, error=BUSY_ERROR))
            return

        try:
            executor = self._executor_factory()
        except (ExecutorError, ValueError, OSError) as error:
            logger.error("Execution [%s] could not start: %s", command.request_id, error)
            await self._send_response(error_response(request_id=command.request_id, error=str(error)))
            return

        self._status = "busy"
        slot = _ActiveExecution(request_id=command.request_id, executor=executor)
        self._execution = slot
        self._live.add(slot)
        slot.task = asyncio.create_task(self._run_execution(command, slot))

    def _default_executor(self) -> ClaudeCodeExecutor:
        return ClaudeCodeExecutor(capture=self.capture)

    async def _run_execution(self, command: Command, slot: _ActiveExecution) -> None:
        try:
            options = self._execute_options(command, slot)
            async for event in slot.executor.execute(options):
                await self._relay(slot, event)
        except ExecutorError as error:
            logger.error("Execution [%s] failed: %s", slot.request_id, error)
            await self._finish(slot, error_response(request_id=slot.request_id, error=str(error)))
        except OSError as error:
            logger.error("Execution [%s] failed: %s", slot.request_id, error)
            await self._finish(slot, error_response(request_id=slot.request_id, error=str(error)))
        except Exception as error:
            logger.exception("Execution [%s] failed unexpectedly", slot.request_id)
            await self._finish(
                slot,
                error_response(request_id=slot.request_id, error=f"Unknown execution error: {error}"),
            )
        finally:
            for path in slot.temp_files:
                with contextlib.suppress(FileNotFoundError):
                    path.unlink()
            slot.finished = True
            self._release(slot)
            self._live.discard(slot)

    def _execute_options(self, command: Command, slot: _ActiveExecution) -> ExecuteOptions:
        config = self.store.config
        if command.allowed_tools is not None:
            allowed_tools = list(command.allowed_tools)
        else:
            allowed_tools = list(config.allowed_tools)
        mcp_config_path = None
        if command.mcp_config is not None:
            mcp_config_path = _write_mcp_config(command.mcp_config)
            slot.temp_files.append(mcp_config_path)
        return ExecuteOptions(
            prompt=command.prompt,
            working_directory=command.working_directory or config.default_working_dir or None,
            session_id=command.session_id if command.type == "resume" else None,
            allowed_tools=allowed_tools,
            mcp_config_path=str(mcp_config_path) if mcp_config_path is not None else None,
            timeout=self.command_timeout,
        )

    async def _relay(self, slot: _ActiveExecution, event: ExecutorEvent) -> None:
        if slot.finished:
            return
        if isinstance(event, MessageEvent):
            await self._send_response(
                stream_response(
                    request_id=slot.request_id,
                    session_id=event.session_id,
                    event=event.message,
                )
            )
        elif isinstance(event, ResultEvent):
            if event.result.session_id:
                self._current_session_id = event.result.session_id
            await self._finish(slot, result_response(request_id=slot.request_id, result=event.result))
        elif isinstance(event, ErrorEvent):
            await self._finish(slot, error_response(request_id=slot.request_id, error=event.error))
        elif isinstance(event, ExitEvent):
            logger.warning(
                "Agent for [%s] exited with code %s before a result",
                slot.request_id,
                event.returncode,
            )
            await self._finish(slot, exit_error_response(request_id=slot.request_id, exit_event=event))

    async def _finish(self, slot: _ActiveExecution, response: AgentResponse) -> bool:
        if slot.finished:
            return False
        slot.finished = True
        self._release(slot)
        await self._send_response(response)
        return True

    def _release(self, slot: _ActiveExecution) -> None:
        if self._execution is slot:
            self._execution = None
            self._status = "online"

    async def _cancel_execution(self, command: Command) -> None:
        slot = self._execution
        if slot is None or slot.finished:
            await self._send_response(
                error_response(request_id=command.request_id, error=NOTHING_TO_CANCEL_ERROR)
            )
            return
        logger.info("Cancelling [%s]", slot.request_id)
        slot.executor.cancel()
        await self._finish(slot, cancelled_response(request_id=command.request_id))

    async def _browse_files(self, command: Command) -> None:
        config = self.store.config
        target = command.path or command.working_directory or config.default_working_dir or str(Path.home())
        result = browse_directory(request_id=command.request_id, target=target)
        if result.error:
            logger.warning("file_browse [%s] failed: %s", command.request_id, result.error)
        await self._send(result.to_dict())

    async def _send_response(self, response: AgentResponse) -> bool:
        return await self._send(response.to_dict())

    async def _send(self, payload: dict[str, Any]) -> bool:
        transport = self._transport
        if transport is None or transport.closed:
            logger.debug("Not connected; dropping %s [%s]", payload.get("type"), payload.get("request_id"))
            return False
        try:
            await transport.send_json(payload)
        except TransportError as error:
            logger.warning("Send failed: %s", error)
            return False
        logger.debug("-> %s [%s]", payload.get("type"), payload.get("request_id"))
        return True

    async def send_heartbeat(self) -> bool:
        if self._transport is None:
            return False
        try:
            system_info = await self._system_info.snapshot()
        except OSError as error:
            logger.warning("Could not collect system info: %s", error)
            return False
        heartbeat = Heartbeat(
            agent_id=self.store.config.agent_id,
            status=self._status,
            system_info=system_info,
            current_session=self._current_session_id,
            timestamp=_utc_now(),
        )
        return await self._send(heartbeat.to_dict())

    def _start_heartbeat(self) -> None:
        if self._heartbeat_task is not None and not self._heartbeat_task.done():
            self._heartbeat_task.cancel()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def _stop_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _heartbeat_loop(self) -> None:
        while True:
            await self.send_heartbeat()
            await asyncio.sleep(self.heartbeat_interval)


def _write_mcp_config(mcp_config: dict[str, Any]) -> Path:
    fd, name = tempfile.mkstemp(prefix="neonbridge-mcp-", suffix=".json")
    with os.fdopen(fd, "w", encoding="utf-8") as stream:
        json.dump(mcp_config, stream, ensure_ascii=True)
    return Path(name)
