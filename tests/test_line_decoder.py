from __future__ import annotations

import json

from neonbridge.executor import LineDecoder, decode_stream, parse_stream_event


def _stream() -> bytes:
    events = [
        {"type": "system", "subtype": "init", "session_id": "s-1"},
        {"type": "assistant", "message": {"content": [{"type": "text", "text": "héllo ✓"}]}},
        {"type": "result", "result": "ok"},
    ]
    return "".join(json.dumps(event, ensure_ascii=False) + "\n" for event in events).encode("utf-8")


def _feed_all(decoder: LineDecoder, chunks: list[bytes]) -> list[str]:
    lines: list[str] = []
    for chunk in chunks:
        lines.extend(decoder.feed(chunk))
    lines.extend(decoder.flush())
    return lines


def test_any_two_way_split_yields_the_same_lines() -> None:
    data = _stream()
    expected = _feed_all(LineDecoder(), [data])
    assert len(expected) == 3

    for index in range(len(data) + 1):
        assert _feed_all(LineDecoder(), [data[:index], data[index:]]) == expected


def test_byte_at_a_time_feeding_preserves_multibyte_characters() -> None:
    data = _stream()
    lines = _feed_all(LineDecoder(), [data[i : i + 1] for i in range(len(data))])

    assert json.loads(lines[1])["message"]["content"][0]["text"] == "héllo ✓"


def test_trailing_fragment_waits_for_flush() -> None:
    decoder = LineDecoder()

    assert decoder.feed(b'{"type": "result"') == []
    assert decoder.pending == '{"type": "result"'
    assert decoder.feed(b', "result": "x"}') == []
    assert decoder.flush() == ['{"type": "result", "result": "x"}']
    assert decoder.pending == ""
    assert decoder.flush() == []


def test_blank_lines_are_skipped() -> None:
    decoder = LineDecoder()

    assert decoder.feed("\n\n{\"a\": 1}\n  \n") == ['{"a": 1}']


def test_parse_stream_event_drops_non_objects() -> None:
    assert parse_stream_event('{"type": "init"}') == {"type": "init"}
    assert parse_stream_event("Loading configuration...") is None
    assert parse_stream_event("[1, 2, 3]") is None
    assert parse_stream_event("   ") is None


def test_decode_stream_ignores_interleaved_diagnostic_text() -> None:
    chunks = [
        b"warning: using cached credentials\n",
        b'{"type": "system", "session_id": "s-1"}\n{"type": "res',
        b'ult", "result": "done"}',
    ]

    events = decode_stream(chunks)

    assert [event["type"] for event in events] == ["system", "result"]
    assert events[-1]["result"] == "done"
