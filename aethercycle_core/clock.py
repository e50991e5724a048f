"""
Time sources for AetherCycle components.

Every component reads the current time through a zero-argument callable
returning integer epoch seconds, the equivalent of a block timestamp.
Production code uses :func:`system_clock`; tests and simulations drive a
:class:`ManualClock` forward explicitly.
"""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], int]


def system_clock() -> int:
    return int(time.time())


class ManualClock:
    """A clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000):
        self._now = int(start)

    def __call__(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Clock cannot move backwards")
        self._now += int(seconds)
        return self._now

    def set(self, timestamp: int) -> None:
        if timestamp < self._now:
            raise ValueError("Clock cannot move backwards")
        self._now = int(timestamp)
