"""Output capture strategies for agent subprocesses.

Two interchangeable ways of getting stdout bytes from a spawned agent into
the line decoder:

* ``DirectStreamCapture`` reads the subprocess pipes as data arrives.
* ``SinkFilePollCapture`` redirects stdout/stderr into temp files and polls
  the stdout sink by offset. Some native agent builds never write to pipe
  stdio on ARM64 hosts, but do write to plain files.

Both yield every stdout byte exactly once and in order, and only stop after
the process has exited and a last read found nothing new.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
import contextlib
from dataclasses import dataclass
import logging
import os
from pathlib import Path
import platform
import tempfile
from typing import Protocol

logger = logging.getLogger(__name__)

CAPTURE_MODE_ENV = "NEONBRIDGE_CAPTURE_MODE"
DEFAULT_POLL_INTERVAL_SECONDS = 0.2
DEFAULT_STALL_AFTER_SECONDS = 30.0
_READ_SIZE = 65536
_DIAGNOSTIC_HEAD_BYTES = 65536
_POLL_ARCHITECTURES = {"arm64", "aarch64"}


@dataclass(frozen=True, slots=True)
class StallNotice:
    """Advisory yielded when a live process has been silent too long."""

    quiet_seconds: float


class CaptureHandle(Protocol):
    """Per-execution view over a spawned process and its output."""

    process: asyncio.subprocess.Process

    def chunks(self) -> AsyncIterator[bytes | StallNotice]:
        """Yield stdout bytes until exit and final drain."""

    async def diagnostics(self) -> str:
        """Return stderr plus non-JSON stdout text for failure reports."""

    async def close(self) -> None:
        """Release pipes, tasks and sink files."""


class CaptureStrategy(Protocol):
    """Protocol for spawning a subprocess with a given output capture."""

    name: str

    async def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None,
        env: dict[str, str],
    ) -> CaptureHandle:
        """Start ``argv`` and return a capture handle for it."""


class DirectStreamCapture:
    """Read stdout/stderr pipes directly."""

    name = "direct"

    async def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None,
        env: dict[str, str],
    ) -> "_DirectStreamHandle":
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        return _DirectStreamHandle(process)


class _DirectStreamHandle:
    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self.process = process
        self._stdout_head = bytearray()
        self._stderr = bytearray()
        self._stderr_task = asyncio.create_task(self._collect_stderr())

    async def _collect_stderr(self) -> None:
        stream = self.process.stderr
        if stream is None:
            return
        while True:
            data = await stream.read(_READ_SIZE)
            if not data:
                return
            self._stderr.extend(data)

    async def chunks(self) -> AsyncIterator[bytes | StallNotice]:
        stream = self.process.stdout
        if stream is not None:
            while True:
                data = await stream.read(_READ_SIZE)
                if not data:
                    break
                if len(self._stdout_head) < _DIAGNOSTIC_HEAD_BYTES:
                    self._stdout_head.extend(data[: _DIAGNOSTIC_HEAD_BYTES - len(self._stdout_head)])
                yield data
        await self.process.wait()

    async def diagnostics(self) -> str:
        with contextlib.suppress(asyncio.CancelledError):
            await self._stderr_task
        return combine_diagnostics(
            stderr=self._stderr.decode("utf-8", errors="replace"),
            stdout=self._stdout_head.decode("utf-8", errors="replace"),
        )

    async def close(self) -> None:
        if not self._stderr_task.done():
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task


class SinkFilePollCapture:
    """Redirect output to sink files and poll the stdout sink by offset."""

    name = "poll"

    def __init__(
        self,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        stall_after: float | None = DEFAULT_STALL_AFTER_SECONDS,
        directory: str | Path | None = None,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.poll_interval = poll_interval
        self.stall_after = stall_after
        self.directory = Path(directory) if directory is not None else Path(tempfile.gettempdir())

    async def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None,
        env: dict[str, str],
    ) -> "_SinkFilePollHandle":
        self.directory.mkdir(parents=True, exist_ok=True)
        out_fd, out_name = tempfile.mkstemp(prefix="neonbridge-", suffix=".jsonl", dir=self.directory)
        err_fd, err_name = tempfile.mkstemp(prefix="neonbridge-", suffix=".err", dir=self.directory)
        out_path, err_path = Path(out_name), Path(err_name)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=out_fd,
                stderr=err_fd,
            )
        except BaseException:
            _remove_quietly(out_path)
            _remove_quietly(err_path)
            raise
        finally:
            os.close(out_fd)
            os.close(err_fd)
        logger.debug("agent pid=%s writing to sink %s", process.pid, out_path)
        return _SinkFilePollHandle(
            process,
            out_path=out_path,
            err_path=err_path,
            poll_interval=self.poll_interval,
            stall_after=self.stall_after,
        )


class _SinkFilePollHandle:
    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        out_path: Path,
        err_path: Path,
        poll_interval: float,
        stall_after: float | None,
    ) -> None:
        self.process = process
        self.out_path = out_path
        self.err_path = err_path
        self._poll_interval = poll_interval
        self._stall_after = stall_after
        self._offset = 0

    @property
    def offset(self) -> int:
        return self._offset

    def _read_new(self) -> bytes:
        try:
            size = os.stat(self.out_path).st_size
        except FileNotFoundError:
            return b""
        if size <= self._offset:
            return b""
        with self.out_path.open("rb") as stream:
            stream.seek(self._offset)
            data = stream.read(size - self._offset)
        self._offset += len(data)
        return data

    async def chunks(self) -> AsyncIterator[bytes | StallNotice]:
        loop = asyncio.get_running_loop()
        exited = asyncio.ensure_future(self.process.wait())
        last_output = loop.time()
        warned = False
        try:
            while not exited.done():
                data = self._read_new()
                if data:
                    last_output = loop.time()
                    warned = False
                    yield data
                elif self._stall_after is not None and not warned:
                    quiet = loop.time() - last_output
                    if quiet >= self._stall_after:
                        warned = True
                        yield StallNotice(quiet_seconds=quiet)
                await asyncio.wait({exited}, timeout=self._poll_interval)
            while True:
                data = self._read_new()
                if not data:
                    break
                yield data
        finally:
            if not exited.done():
                exited.cancel()

    async def diagnostics(self) -> str:
        try:
            stderr = self.err_path.read_text(encoding="utf-8", errors="replace")
        except OSError as error:
            stderr = f"(failed to read stderr: {error})"
        try:
            stdout = self.out_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            stdout = ""
        return combine_diagnostics(stderr=stderr, stdout=stdout)

    async def close(self) -> None:
        _remove_quietly(self.out_path)
        _remove_quietly(self.err_path)


def combine_diagnostics(*, stderr: str, stdout: str) -> str:
    """Join stderr with stdout that is not stream-json into one report."""
    parts = [stderr]
    if stdout and not stdout.strip().startswith("{"):
        parts.append(stdout)
    return "\n---\n".join(part for part in parts if part.strip())


def select_capture_strategy(mode: str | None = None) -> CaptureStrategy:
    """Pick the capture strategy for this host.

    ``mode`` (or ``$NEONBRIDGE_CAPTURE_MODE``) forces ``direct`` or ``poll``.
    """
    requested = (mode or os.environ.get(CAPTURE_MODE_ENV, "")).strip().lower()
    if requested == "direct":
        return DirectStreamCapture()
    if requested == "poll":
        return SinkFilePollCapture()
    if requested:
        raise ValueError(f"Unsupported capture mode '{requested}'. Expected 'direct' or 'poll'.")
    if platform.machine().lower() in _POLL_ARCHITECTURES:
        return SinkFilePollCapture()
    return DirectStreamCapture()


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
