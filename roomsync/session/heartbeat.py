"""Periodic liveness signal for the local participant."""

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional

from roomsync.errors import TransportUnavailable
from roomsync.store.models import PlayerEntry

HEARTBEAT_INTERVAL = 10  # seconds between last_active_at rewrites

logger = logging.getLogger(__name__)


class Heartbeat:
    """Run a beat coroutine every interval until stopped.

    A failing beat is logged and the loop keeps going.
    """

    def __init__(self, beat: Callable[[], Awaitable[None]], interval: float = HEARTBEAT_INTERVAL) -> None:
        self._beat = beat
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            self._task.cancel()
        self._task = asyncio.create_task(self._loop())

    def cancel(self) -> None:
        """Stop without waiting for the task to finish."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self._beat()
            except TransportUnavailable as e:
                logger.warning("heartbeat write failed: %s", e)
            except Exception:
                logger.exception("heartbeat beat raised")


def is_stale(player: PlayerEntry, now_ms: int, threshold_ms: int) -> bool:
    """True if the player has not signalled liveness within threshold_ms.

    Nothing prunes stale entries automatically; adapters that care call this.
    """
    if player.last_active_at is None:
        return True
    return now_ms - player.last_active_at > threshold_ms
