"""Request pacing: a per-API gate enforcing a minimum interval between calls."""

from __future__ import annotations

import threading
import time
from typing import Optional, Protocol


class Clock(Protocol):
    def monotonic(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class RateGate:
    """Blocks ``acquire`` until ``interval`` seconds have passed since the
    previous ``acquire`` returned on this gate.

    One gate per remote API per logical operation; sharing a gate between
    threads serializes their calls in lock acquisition order.
    """

    def __init__(self, interval: float = 1.0, clock: Optional[Clock] = None) -> None:
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self.interval = interval
        self.clock = clock or SystemClock()
        self._last: Optional[float] = None
        self._lock = threading.Lock()

    def acquire(self) -> None:
        with self._lock:
            if self._last is not None:
                wait = self.interval - (self.clock.monotonic() - self._last)
                if wait > 0:
                    self.clock.sleep(wait)
            self._last = self.clock.monotonic()
