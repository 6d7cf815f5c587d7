# roomsync/store/memory.py
"""
In-process store: one shared tree (``MemoryBackend``) and one connection per
participant (``MemoryStore``).

Used by tests and local hot-seat play. Listener dispatch is synchronous: by
the time a write coroutine returns, every connected client has seen it.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from roomsync.errors import TransportUnavailable
from roomsync.store.base import (
    ChildCallback,
    ChildListener,
    Store,
    Subscription,
    ValueCallback,
    ValueListener,
)
from roomsync.store.paths import (
    get_in,
    join,
    overlaps,
    resolve_server_values,
    set_in,
    split,
)
from roomsync.util.ids import PushKeyGenerator
from roomsync.util.timeutil import now_ms

logger = logging.getLogger(__name__)


class MemoryBackend:
    def __init__(self, clock: Optional[Callable[[], int]] = None) -> None:
        self.root: Dict[str, Any] = {}
        self.clock = clock or now_ms
        # (op, path) for every applied write, in order
        self.journal: List[Tuple[str, str]] = []
        self._clients: List["MemoryStore"] = []
        self._push_keys = PushKeyGenerator()
        self._client_seq = 0

    def connect(self) -> "MemoryStore":
        self._client_seq += 1
        store = MemoryStore(self, client_id=f"client-{self._client_seq}")
        self._clients.append(store)
        return store

    def snapshot(self, path: str = "") -> Any:
        return get_in(self.root, split(path))

    def writes(self, op: Optional[str] = None, path_prefix: str = "") -> List[Tuple[str, str]]:
        prefix = split(path_prefix)
        return [
            (o, p) for o, p in self.journal
            if (op is None or o == op) and split(p)[: len(prefix)] == prefix
        ]

    # ----------------------------
    # Mutation + fan-out
    # ----------------------------
    def apply(self, op: str, changes: Sequence[Tuple[str, Any]], path: Optional[str] = None) -> None:
        """
        Apply one store call atomically. It is journaled once, under path
        (a multi-field update) or under each changed path.
        """
        ts = self.clock()
        touched = []
        for change_path, value in changes:
            segs = split(change_path)
            self.root = set_in(self.root, segs, resolve_server_values(value, ts))
            touched.append(segs)
        if path is not None:
            self.journal.append((op, path))
        else:
            self.journal.extend((op, p) for p, _ in changes)
        self._notify(touched)

    def next_push_key(self) -> str:
        return self._push_keys.next_key(self.clock())

    def _notify(self, touched: List[List[str]]) -> None:
        for client in list(self._clients):
            for sub in list(client.subscriptions):
                if any(overlaps(sub.listener.segs, segs) for segs in touched):
                    sub.listener.evaluate(self.root)

    def drop(self, client: "MemoryStore") -> None:
        if client in self._clients:
            self._clients.remove(client)


class MemoryStore(Store):
    def __init__(self, backend: MemoryBackend, client_id: str) -> None:
        self.backend = backend
        self.client_id = client_id
        self.subscriptions: List[Subscription] = []
        self._on_disconnect: List[str] = []
        self._online = True
        self._closed = False

    def _check(self) -> None:
        if self._closed:
            raise TransportUnavailable(f"{self.client_id} is closed")
        if not self._online:
            raise TransportUnavailable(f"{self.client_id} cannot reach the store")

    # ----------------------------
    # Failure simulation
    # ----------------------------
    def go_offline(self) -> None:
        self._online = False

    def go_online(self) -> None:
        self._online = True

    def disconnect(self) -> None:
        """Ungraceful drop: the backend runs this client's on-disconnect work."""
        if self._closed:
            return
        self._closed = True
        self.subscriptions.clear()
        self.backend.drop(self)
        pending, self._on_disconnect = self._on_disconnect, []
        if pending:
            logger.info("%s dropped; removing %s", self.client_id, pending)
            self.backend.apply("remove", [(p, None) for p in pending])

    # ----------------------------
    # Reads / writes
    # ----------------------------
    async def server_time_ms(self) -> int:
        self._check()
        return self.backend.clock()

    async def get(self, path: str) -> Any:
        self._check()
        return self.backend.snapshot(path)

    async def set(self, path: str, value: Any) -> None:
        self._check()
        self.backend.apply("set", [(path, value)])

    async def set_if_absent(self, path: str, value: Any) -> bool:
        self._check()
        if self.backend.snapshot(path) is not None:
            return False
        self.backend.apply("set", [(path, value)])
        return True

    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        self._check()
        if not fields:
            return
        self.backend.apply("update", [(join(path, k), v) for k, v in fields.items()], path=path)

    async def remove(self, path: str) -> None:
        self._check()
        self.backend.apply("remove", [(path, None)])

    async def push(self, path: str, value: Any) -> str:
        self._check()
        key = self.backend.next_push_key()
        self.backend.apply("push", [(join(path, key), value)])
        return key

    # ----------------------------
    # Subscriptions
    # ----------------------------
    def _register(self, sub: Subscription) -> Subscription:
        self.subscriptions.append(sub)
        sub.listener.evaluate(self.backend.root)
        return sub

    async def on_value(self, path: str, callback: ValueCallback) -> Subscription:
        self._check()
        return self._register(Subscription(path=path, kind="value", listener=ValueListener(path, callback)))

    async def on_child_added(
        self,
        path: str,
        callback: ChildCallback,
        *,
        order_by: Optional[str] = None,
        limit_to_last: Optional[int] = None,
        include_existing: bool = True,
    ) -> Subscription:
        self._check()
        listener = ChildListener(
            path,
            callback,
            order_by=order_by,
            limit_to_last=limit_to_last,
            include_existing=include_existing,
        )
        return self._register(Subscription(path=path, kind="child_added", listener=listener))

    async def off(self, subscription: Subscription) -> None:
        if subscription in self.subscriptions:
            self.subscriptions.remove(subscription)

    # ----------------------------
    # Presence
    # ----------------------------
    async def on_disconnect_remove(self, path: str) -> None:
        self._check()
        if path not in self._on_disconnect:
            self._on_disconnect.append(path)

    async def cancel_on_disconnect(self, path: str) -> None:
        if path in self._on_disconnect:
            self._on_disconnect.remove(path)

    async def close(self) -> None:
        self.disconnect()
