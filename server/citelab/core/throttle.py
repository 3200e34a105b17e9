from __future__ import annotations

import threading
import time
from collections.abc import Callable


class Throttle:
    """Spaces calls at least ``interval_seconds`` apart across threads.

    Callers reserve the next slot under the lock and sleep outside it, so a
    pool of workers sharing one throttle issues requests at a fixed rate.
    """

    def __init__(
        self,
        interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.interval_seconds = max(0.0, float(interval_seconds))
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_at = 0.0

    @classmethod
    def from_millis(cls, interval_ms: int) -> "Throttle":
        return cls(max(0, int(interval_ms)) / 1000.0)

    def wait(self) -> float:
        if self.interval_seconds <= 0:
            return 0.0
        with self._lock:
            now = self._clock()
            slot = max(now, self._next_at)
            self._next_at = slot + self.interval_seconds
        delay = slot - now
        if delay > 0:
            self._sleep(delay)
        return delay
