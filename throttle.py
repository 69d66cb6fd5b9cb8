"""
Rate limiter for progress callbacks.
"""

from __future__ import annotations

import time
from typing import Callable, Generic, Optional, TypeVar

from errors import ConfigurationError

T = TypeVar("T")


class Throttle(Generic[T]):
    """Forward at most one call per ``interval`` seconds.

    Leading edge fires immediately; calls landing inside the window are
    dropped and no trailing call is scheduled. The caller is expected to
    write the final value itself once the transfer settles.
    """

    def __init__(
        self,
        fn: Callable[[T], None],
        interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval < 0:
            raise ConfigurationError(f"throttle interval must be >= 0, got {interval}")
        self._fn = fn
        self._interval = interval
        self._clock = clock
        self._last: Optional[float] = None
        self.calls = 0
        self.dropped = 0

    def __call__(self, value: T) -> bool:
        """Deliver ``value`` if the window is open. Returns True when delivered."""
        now = self._clock()
        if self._last is not None and (now - self._last) < self._interval:
            self.dropped += 1
            return False
        self._last = now
        self.calls += 1
        self._fn(value)
        return True
