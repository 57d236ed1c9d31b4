"""Incremental NDJSON line decoding for agent stream output."""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


class LineDecoder:
    """Split a growing stream into complete lines.

    The trailing fragment after the last newline stays buffered until more
    data arrives or :meth:`flush` is called at end of stream.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: bytes | str) -> list[str]:
        if isinstance(chunk, bytes):
            text = self._decoder.decode(chunk)
        else:
            text = chunk
        if not text:
            return []
        self._buffer += text
        parts = self._buffer.split("\n")
        self._buffer = parts.pop()
        return [line for line in (part.strip() for part in parts) if line]

    def flush(self) -> list[str]:
        self._buffer += self._decoder.decode(b"", final=True)
        remainder = self._buffer.strip()
        self._buffer = ""
        if not remainder:
            return []
        return [remainder]


def parse_stream_event(line: str) -> dict[str, Any] | None:
    """Parse one stream-json line, returning ``None`` for anything else."""
    stripped = line.strip()
    if not stripped:
        return None
    try:
        payload = json.loads(stripped)
    except json.JSONDecodeError:
        logger.debug("dropping non-JSON agent output line: %.200s", stripped)
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def decode_stream(chunks: list[bytes | str]) -> list[dict[str, Any]]:
    """Decode a finite sequence of chunks into parsed stream events."""
    decoder = LineDecoder()
    events: list[dict[str, Any]] = []
    for chunk in chunks:
        for line in decoder.feed(chunk):
            event = parse_stream_event(line)
            if event is not None:
                events.append(event)
    for line in decoder.flush():
        event = parse_stream_event(line)
        if event is not None:
            events.append(event)
    return events
