"""
Minimum-interval throttle shared by all calls to one external service.
"""

from __future__ import annotations

import time
from typing import Callable


class Throttle:
    """
    Spaces consecutive calls at least ``min_interval`` seconds apart.

    The first call never waits. Clock and sleep are injectable so tests can run
    without real delays.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._last_call: float | None = None

    def wait(self) -> float:
        """Block until the next call is allowed. Returns the seconds slept."""
        slept = 0.0
        if self._last_call is not None and self.min_interval > 0:
            elapsed = self._clock() - self._last_call
            if elapsed < self.min_interval:
                slept = self.min_interval - elapsed
                self._sleep(slept)
        self._last_call = self._clock()
        return slept

    def reset(self) -> None:
        self._last_call = None
