"""Fixture claude-code-like agent emitting deterministic stream-json lines.

Behavior is selected by the ``-p`` prompt:

- ``fail``: diagnostic text on stderr and stdout, exit 1, no result line.
- ``sleep:<seconds>``: init line, sleep, then the normal reply.
- ``argv``: reply text is the JSON argv plus whether ``CLAUDECODE`` leaked in.
- ``split``: the result line is written in two flushed halves.
- ``late-init``: an assistant line without a session id comes before init.
- ``ignore-term``: SIGTERM is ignored after init, then the agent sleeps.
- anything else: init, one assistant message and a result.
"""

from __future__ import annotations

import json
import os
import signal
import sys
import time


def _option(args: list[str], flag: str) -> str | None:
    if flag in args:
        index = args.index(flag)
        if index + 1 < len(args):
            return args[index + 1]
    return None


def _emit(event: dict) -> None:
    sys.stdout.write(json.dumps(event, ensure_ascii=True) + "\n")
    sys.stdout.flush()


def main() -> int:
    args = sys.argv[1:]
    if args == ["--version"]:
        print("9.9.9 (Claude Code)")
        return 0

    prompt = _option(args, "-p") or ""
    session_id = _option(args, "--resume") or "fake-session-001"

    if prompt == "fail":
        sys.stdout.write("fatal: not json output\n")
        sys.stdout.flush()
        sys.stderr.write("error: authentication required\n")
        return 1

    if prompt == "late-init":
        _emit({"type": "assistant", "message": {"role": "assistant", "content": [{"type": "text", "text": "early"}]}})
        session_id = "late-session"

    if prompt == "ignore-term":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    _emit(
        {
            "type": "system",
            "subtype": "init",
            "session_id": session_id,
            "tools": ["Read", "Bash"],
        }
    )

    if prompt == "ignore-term":
        time.sleep(60)

    if prompt.startswith("sleep:"):
        time.sleep(float(prompt.split(":", 1)[1]))

    if prompt == "argv":
        text = json.dumps({"argv": args, "claudecode": "CLAUDECODE" in os.environ})
    else:
        text = f"echo: {prompt}"
    _emit(
        {
            "type": "assistant",
            "session_id": session_id,
            "message": {"role": "assistant", "content": [{"type": "text", "text": text}]},
        }
    )

    result = {
        "type": "result",
        "subtype": "success",
        "session_id": session_id,
        "result": f"done: {prompt}",
        "total_cost_usd": 0.0125,
        "duration_ms": 42,
        "num_turns": 1,
        "is_error": False,
    }
    line = json.dumps(result, ensure_ascii=True) + "\n"
    if prompt == "split":
        half = len(line) // 2
        sys.stdout.write(line[:half])
        sys.stdout.flush()
        time.sleep(0.3)
        sys.stdout.write(line[half:])
    else:
        sys.stdout.write(line)
    sys.stdout.flush()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
