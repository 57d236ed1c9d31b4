from __future__ import annotations

import pytest

from neonbridge.connection import ReconnectBackoff


def test_delays_double_until_capped() -> None:
    backoff = ReconnectBackoff()

    delays = [backoff.next_delay() for _ in range(7)]

    assert delays == [5.0, 10.0, 20.0, 40.0, 60.0, 60.0, 60.0]


def test_reset_restarts_sequence() -> None:
    backoff = ReconnectBackoff(base_delay=1.0, max_delay=8.0)
    backoff.next_delay()
    backoff.next_delay()
    assert backoff.current == 4.0

    backoff.reset()

    assert backoff.next_delay() == 1.0


def test_invalid_bounds_are_rejected() -> None:
    with pytest.raises(ValueError, match="base_delay"):
        ReconnectBackoff(base_delay=0)
    with pytest.raises(ValueError, match="max_delay"):
        ReconnectBackoff(base_delay=10.0, max_delay=5.0)
