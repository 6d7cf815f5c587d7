# roomsync/store/base.py
"""
Contract of the remote synchronized store.

The store is a JSON tree addressed by slash-separated paths. Every call is a
coroutine the caller awaits; failures raise ``TransportUnavailable`` instead
of disappearing, so a fake store can exercise the failure paths.

Subscription callbacks are plain synchronous callables:
  - value listeners get ``callback(value)``
  - child listeners get ``callback(key, value)``
"""
from __future__ import annotations

import copy
import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional

from roomsync.store.paths import get_in, split

logger = logging.getLogger(__name__)

ValueCallback = Callable[[Any], None]
ChildCallback = Callable[[str, Any], None]

_UNSET = object()
_sub_ids = itertools.count(1)


class ValueListener:
    """Fires with the current value, then again whenever it changes."""

    def __init__(self, path: str, callback: ValueCallback) -> None:
        self.segs = split(path)
        self.callback = callback
        self._last: Any = _UNSET

    def evaluate(self, root: Any) -> None:
        value = get_in(root, self.segs)
        if self._last is not _UNSET and value == self._last:
            return
        self._last = copy.deepcopy(value)
        _safe_call(self.callback, value)


class ChildListener:
    """
    Fires once per child key that appears under the path.

    On the first evaluation existing children are either replayed (ordered,
    optionally limited to the last N) or only marked as seen. A key removed
    and later re-added fires again.
    """

    def __init__(
        self,
        path: str,
        callback: ChildCallback,
        *,
        order_by: Optional[str] = None,
        limit_to_last: Optional[int] = None,
        include_existing: bool = True,
    ) -> None:
        self.segs = split(path)
        self.callback = callback
        self.order_by = order_by
        self.limit_to_last = limit_to_last
        self.include_existing = include_existing
        self._seen: Optional[set] = None

    def _ordered(self, children: Dict[str, Any]) -> List[tuple]:
        if self.order_by is None:
            return sorted(children.items(), key=lambda kv: kv[0])

        def sort_key(kv):
            v = kv[1].get(self.order_by) if isinstance(kv[1], dict) else None
            # children missing the field sort first
            return (v is not None, v if v is not None else 0, kv[0])

        return sorted(children.items(), key=sort_key)

    def evaluate(self, root: Any) -> None:
        children = get_in(root, self.segs)
        if not isinstance(children, dict):
            children = {}

        if self._seen is None:
            self._seen = set(children)
            if not self.include_existing:
                return
            items = self._ordered(children)
            if self.limit_to_last is not None:
                items = items[-self.limit_to_last:]
        else:
            fresh = {k: v for k, v in children.items() if k not in self._seen}
            self._seen = set(children)
            items = self._ordered(fresh)

        for key, value in items:
            _safe_call(self.callback, key, value)


def _safe_call(callback: Callable[..., None], *args: Any) -> None:
    try:
        callback(*args)
    except Exception:
        logger.exception("store listener %r failed", callback)


@dataclass(eq=False)
class Subscription:
    path: str
    kind: Literal["value", "child_added"]
    listener: Any
    id: int = field(default_factory=lambda: next(_sub_ids))


class Store(ABC):
    @abstractmethod
    async def server_time_ms(self) -> int:
        """Store clock; also used as a reachability check."""

    @abstractmethod
    async def get(self, path: str) -> Any:
        ...

    @abstractmethod
    async def set(self, path: str, value: Any) -> None:
        """Replace the whole subtree at path atomically."""

    @abstractmethod
    async def set_if_absent(self, path: str, value: Any) -> bool:
        """Write only if nothing exists at path. Returns True if written."""

    @abstractmethod
    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        """
        Merge fields under path. Keys may be relative sub-paths
        ("players/p1/ready"); a None value deletes that child.
        """

    @abstractmethod
    async def remove(self, path: str) -> None:
        ...

    @abstractmethod
    async def push(self, path: str, value: Any) -> str:
        """Append a child under a generated, time-ordered key."""

    @abstractmethod
    async def on_value(self, path: str, callback: ValueCallback) -> Subscription:
        ...

    @abstractmethod
    async def on_child_added(
        self,
        path: str,
        callback: ChildCallback,
        *,
        order_by: Optional[str] = None,
        limit_to_last: Optional[int] = None,
        include_existing: bool = True,
    ) -> Subscription:
        ...

    @abstractmethod
    async def off(self, subscription: Subscription) -> None:
        ...

    @abstractmethod
    async def on_disconnect_remove(self, path: str) -> None:
        """Have the store remove path if this client drops without cleanup."""

    @abstractmethod
    async def cancel_on_disconnect(self, path: str) -> None:
        ...

    async def keepalive(self) -> None:
        """Presence refresh, for stores that detect disconnects by silence."""
        return None

    async def sweep_disconnected(self) -> int:
        """Run pending on-disconnect work of clients gone silent."""
        return 0

    async def close(self) -> None:
        return None
