"""Exponential reconnect backoff."""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_BASE_DELAY_SECONDS = 5.0
DEFAULT_MAX_DELAY_SECONDS = 60.0


@dataclass(slots=True)
class ReconnectBackoff:
    """Delay sequence ``base, 2*base, 4*base, ...`` capped at ``max_delay``."""

    base_delay: float = DEFAULT_BASE_DELAY_SECONDS
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS
    _current: float = field(init=False, default=0.0)

    def __post_init__(self) -> None:
        if self.base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        self._current = self.base_delay

    @property
    def current(self) -> float:
        return self._current

    def next_delay(self) -> float:
        delay = self._current
        self._current = min(self._current * 2, self.max_delay)
        return delay

    def reset(self) -> None:
        self._current = self.base_delay
