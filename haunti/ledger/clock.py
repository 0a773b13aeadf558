"""Clocks. Everything in the ledger reads time through one of these (UNIX seconds)."""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], float]


def system_clock() -> float:
    return time.time()


class ManualClock:
    """Settable clock for tests and simulations."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = float(start)

    def __call__(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        if seconds < 0:
            raise ValueError("clock cannot go backwards")
        self._now += float(seconds)
        return self._now

    def set(self, now: float) -> None:
        if now < self._now:
            raise ValueError("clock cannot go backwards")
        self._now = float(now)


__all__ = ["Clock", "system_clock", "ManualClock"]
