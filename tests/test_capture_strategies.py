from __future__ import annotations

import asyncio
from pathlib import Path
import sys

import pytest

from neonbridge.executor import (
    DirectStreamCapture,
    SinkFilePollCapture,
    StallNotice,
    combine_diagnostics,
    decode_stream,
    select_capture_strategy,
)
from neonbridge.executor.capture import CAPTURE_MODE_ENV
from neonbridge.executor.executor import build_agent_env

FIXTURE = Path(__file__).parent / "fixtures" / "agents" / "fake_claude_code_agent.py"


def _strategies(tmp_path: Path) -> list:
    return [
        DirectStreamCapture(),
        SinkFilePollCapture(poll_interval=0.02, stall_after=None, directory=tmp_path),
    ]


async def _capture(strategy, prompt: str) -> tuple[bytes, list[StallNotice], int | None, str]:
    handle = await strategy.spawn(
        [sys.executable, str(FIXTURE), "-p", prompt],
        cwd=None,
        env=build_agent_env(),
    )
    data = bytearray()
    notices: list[StallNotice] = []
    try:
        async for chunk in handle.chunks():
            if isinstance(chunk, StallNotice):
                notices.append(chunk)
            else:
                data.extend(chunk)
        diagnostics = await handle.diagnostics()
        return bytes(data), notices, handle.process.returncode, diagnostics
    finally:
        await handle.close()


@pytest.mark.parametrize("index", [0, 1], ids=["direct", "poll"])
def test_strategies_deliver_the_full_stream(tmp_path: Path, index: int) -> None:
    strategy = _strategies(tmp_path)[index]

    data, notices, returncode, _diagnostics = asyncio.run(_capture(strategy, "hello"))

    events = decode_stream([data])
    assert [event["type"] for event in events] == ["system", "assistant", "result"]
    assert events[-1]["result"] == "done: hello"
    assert returncode == 0
    assert notices == []


@pytest.mark.parametrize("index", [0, 1], ids=["direct", "poll"])
def test_strategies_deliver_lines_written_in_pieces(tmp_path: Path, index: int) -> None:
    strategy = _strategies(tmp_path)[index]

    data, _notices, _returncode, _diagnostics = asyncio.run(_capture(strategy, "split"))

    events = decode_stream([data])
    assert events[-1]["type"] == "result"
    assert data.count(b'"type": "result"') == 1


@pytest.mark.parametrize("index", [0, 1], ids=["direct", "poll"])
def test_strategies_report_diagnostics_on_failure(tmp_path: Path, index: int) -> None:
    strategy = _strategies(tmp_path)[index]

    data, _notices, returncode, diagnostics = asyncio.run(_capture(strategy, "fail"))

    assert returncode == 1
    assert decode_stream([data]) == []
    assert "error: authentication required" in diagnostics
    assert "fatal: not json output" in diagnostics
    assert "\n---\n" in diagnostics


def test_poll_capture_removes_sink_files_on_close(tmp_path: Path) -> None:
    strategy = SinkFilePollCapture(poll_interval=0.02, stall_after=None, directory=tmp_path)

    asyncio.run(_capture(strategy, "hello"))

    assert list(tmp_path.glob("neonbridge-*")) == []


def test_poll_capture_emits_stall_notice_while_agent_is_silent(tmp_path: Path) -> None:
    strategy = SinkFilePollCapture(poll_interval=0.02, stall_after=0.3, directory=tmp_path)

    data, notices, returncode, _diagnostics = asyncio.run(_capture(strategy, "sleep:1.2"))

    assert returncode == 0
    assert notices
    assert all(notice.quiet_seconds >= 0.3 for notice in notices)
    assert decode_stream([data])[-1]["type"] == "result"


def test_poll_capture_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError, match="poll_interval"):
        SinkFilePollCapture(poll_interval=0)


def test_combine_diagnostics_skips_stream_json_stdout() -> None:
    assert combine_diagnostics(stderr="boom\n", stdout='{"type": "system"}\n') == "boom\n"
    assert combine_diagnostics(stderr="boom", stdout="Usage: claude") == "boom\n---\nUsage: claude"
    assert combine_diagnostics(stderr="", stdout="Usage: claude") == "Usage: claude"
    assert combine_diagnostics(stderr=" \n", stdout="") == ""


def test_select_capture_strategy_honors_mode_and_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CAPTURE_MODE_ENV, raising=False)
    assert select_capture_strategy("direct").name == "direct"
    assert select_capture_strategy("poll").name == "poll"

    monkeypatch.setenv(CAPTURE_MODE_ENV, "POLL")
    assert select_capture_strategy().name == "poll"

    with pytest.raises(ValueError, match="Unsupported capture mode"):
        select_capture_strategy("pipes")


def test_select_capture_strategy_uses_polling_on_arm64(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CAPTURE_MODE_ENV, raising=False)
    monkeypatch.setattr("neonbridge.executor.capture.platform.machine", lambda: "aarch64")
    assert select_capture_strategy().name == "poll"

    monkeypatch.setattr("neonbridge.executor.capture.platform.machine", lambda: "x86_64")
    assert select_capture_strategy().name == "direct"
