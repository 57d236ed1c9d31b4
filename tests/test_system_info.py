from __future__ import annotations

import asyncio
from pathlib import Path
import sys

from neonbridge.system_info import SystemInfoProvider, probe_agent_version

FIXTURE = Path(__file__).parent / "fixtures" / "agents" / "fake_claude_code_agent.py"


def test_snapshot_reports_host_and_agent_version() -> None:
    provider = SystemInfoProvider(agent_command=(sys.executable, str(FIXTURE)), default_working_dir="/work")

    info = asyncio.run(provider.snapshot())

    assert info.claude_code_version == "9.9.9 (Claude Code)"
    assert info.default_working_dir == "/work"
    assert info.platform == sys.platform
    assert info.memory_usage_mb > 0
    assert info.uptime_seconds >= 0
    assert set(info.to_dict()) == {
        "hostname",
        "os",
        "platform",
        "arch",
        "claude_code_version",
        "uptime_seconds",
        "memory_usage_mb",
        "python_version",
        "default_working_dir",
    }


def test_missing_agent_reports_unknown_version() -> None:
    assert asyncio.run(probe_agent_version(("neonbridge-no-such-claude-binary",))) == "unknown"
