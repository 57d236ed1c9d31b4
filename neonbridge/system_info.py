"""Host telemetry for heartbeats."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
import contextlib
import platform
import socket
import sys
import time

import psutil

from neonbridge.core.models import SystemInfo
from neonbridge.executor.executor import DEFAULT_AGENT_COMMAND

VERSION_PROBE_TIMEOUT_SECONDS = 3.0
UNKNOWN_VERSION = "unknown"


async def probe_agent_version(
    agent_command: Sequence[str] = DEFAULT_AGENT_COMMAND,
    *,
    timeout: float = VERSION_PROBE_TIMEOUT_SECONDS,
) -> str:
    """Return ``<agent> --version`` output, or ``unknown`` when it cannot run."""
    try:
        process = await asyncio.create_subprocess_exec(
            *agent_command,
            "--version",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError:
        return UNKNOWN_VERSION
    try:
        stdout, _stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()
        return UNKNOWN_VERSION
    if process.returncode != 0:
        return UNKNOWN_VERSION
    return stdout.decode("utf-8", errors="replace").strip() or UNKNOWN_VERSION


class SystemInfoProvider:
    """Collects the :class:`SystemInfo` snapshot sent with each heartbeat."""

    def __init__(
        self,
        *,
        agent_command: Sequence[str] = DEFAULT_AGENT_COMMAND,
        default_working_dir: str = "",
    ) -> None:
        self.agent_command = tuple(agent_command)
        self.default_working_dir = default_working_dir
        self._process = psutil.Process()
        self._agent_version: str | None = None

    async def agent_version(self) -> str:
        """Probe once; a failed probe is retried on the next heartbeat."""
        if self._agent_version is None:
            version = await probe_agent_version(self.agent_command)
            if version == UNKNOWN_VERSION:
                return version
            self._agent_version = version
        return self._agent_version

    async def snapshot(self) -> SystemInfo:
        return SystemInfo(
            hostname=socket.gethostname(),
            os=platform.system(),
            platform=sys.platform,
            arch=platform.machine(),
            claude_code_version=await self.agent_version(),
            uptime_seconds=self._uptime_seconds(),
            memory_usage_mb=self._memory_usage_mb(),
            python_version=platform.python_version(),
            default_working_dir=self.default_working_dir,
        )

    def _uptime_seconds(self) -> int:
        try:
            return int(max(0.0, time.time() - psutil.boot_time()))
        except psutil.Error:
            return 0

    def _memory_usage_mb(self) -> int:
        try:
            return round(self._process.memory_info().rss / 1024 / 1024)
        except psutil.Error:
            return 0
