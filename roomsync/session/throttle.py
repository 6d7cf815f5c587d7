# roomsync/session/throttle.py
from __future__ import annotations

from typing import Callable, Optional

from roomsync.util.timeutil import monotonic_ms


class SyncThrottle:
    """
    Fixed-interval gate: at most one pass per interval, no queue.
    Calls inside the interval are refused, not deferred.
    """

    def __init__(self, interval_ms: float, clock: Optional[Callable[[], float]] = None) -> None:
        self.interval_ms = interval_ms
        self._clock = clock or monotonic_ms
        self._last: Optional[float] = None

    def ready(self) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last < self.interval_ms:
            return False
        self._last = now
        return True

    def reset(self) -> None:
        self._last = None
