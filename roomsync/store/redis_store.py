# roomsync/store/redis_store.py
"""
Store backed by Redis.

Layout:
  - rs:doc:<a>/<b>         STRING  JSON document for the subtree at depth 2
                                   (a room: "<prefix>_rooms/<code>")
  - rs:doc:<a>/<b>/<log>   STRING  JSON document for an append-only log of
                                   that room ("actions", "chat")
  - rs:events:<doc>        CHANNEL one message per committed write
  - rs:presence:<client>   STRING  presence flag, expires unless kept alive
  - rs:ondisconnect:<client> HASH  path -> op, run by sweep_disconnected()

Writes are read-modify-write under WATCH/MULTI and refresh the document TTL,
so a room nobody writes to (host crashed, nobody left) expires on its own.
Logs live outside the room document, so per-frame player writes do not
rewrite them.
"""
from __future__ import annotations

import asyncio
import contextlib
import copy
import json
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from roomsync.errors import TransportUnavailable
from roomsync.store.base import (
    ChildCallback,
    ChildListener,
    Store,
    Subscription,
    ValueCallback,
    ValueListener,
)
from roomsync.store.paths import get_in, resolve_server_values, set_in, split
from roomsync.util.ids import PushKeyGenerator

logger = logging.getLogger(__name__)

DOC_DEPTH = 2
# Room children kept as documents of their own.
LOG_CHILDREN = ("actions", "chat")

# A mutation gets a copy of the current document (or None) and returns the
# new one, or NO_CHANGE to leave it alone.
NO_CHANGE = object()
Mutation = Callable[[Optional[dict]], Any]


def doc_key(doc: str) -> str:
    return f"rs:doc:{doc}"


def events_channel(doc: str) -> str:
    return f"rs:events:{doc}"


def presence_key(client_id: str) -> str:
    return f"rs:presence:{client_id}"


def ondisconnect_key(client_id: str) -> str:
    return f"rs:ondisconnect:{client_id}"


def split_doc(path: str) -> Tuple[str, List[str]]:
    """
    'pacman_rooms/AB3K9Z/players/p1' -> ('pacman_rooms/AB3K9Z', ['players', 'p1'])
    'pacman_rooms/AB3K9Z/chat/-Nk1'  -> ('pacman_rooms/AB3K9Z/chat', ['-Nk1'])
    """
    segs = split(path)
    if len(segs) < DOC_DEPTH:
        raise ValueError(f"Path {path!r} is above document level")
    depth = DOC_DEPTH + 1 if len(segs) > DOC_DEPTH and segs[DOC_DEPTH] in LOG_CHILDREN else DOC_DEPTH
    return "/".join(segs[:depth]), segs[depth:]


def log_docs(doc: str) -> List[str]:
    return [f"{doc}/{child}" for child in LOG_CHILDREN]


class RedisStore(Store):
    def __init__(
        self,
        r: Redis,
        *,
        room_ttl_sec: int = 1800,
        presence_ttl_sec: int = 30,
        client_id: Optional[str] = None,
    ):
        self.r = r
        self.room_ttl_sec = room_ttl_sec
        self.presence_ttl_sec = presence_ttl_sec
        self.client_id = client_id or uuid.uuid4().hex[:12]
        self._push_keys = PushKeyGenerator()
        self._subs: Dict[str, List[Subscription]] = {}  # doc -> subscriptions
        self._pubsub = None
        self._reader: Optional[asyncio.Task] = None

    def _dec(self, x):
        """Decode redis bytes -> str; pass through str/None."""
        if isinstance(x, bytes):
            return x.decode("utf-8")
        return x

    # ----------------------------
    # Helpers
    # ----------------------------
    async def _call(self, coro):
        try:
            return await coro
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise TransportUnavailable(str(e)) from e

    async def _scan(self, match: str) -> List[str]:
        try:
            return [self._dec(k) async for k in self.r.scan_iter(match=match, count=200)]
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise TransportUnavailable(str(e)) from e

    async def _read_doc(self, doc: str) -> Optional[dict]:
        raw = await self._call(self.r.get(doc_key(doc)))
        if not raw:
            return None
        return json.loads(self._dec(raw))

    async def _mutate(self, doc: str, fn: Mutation) -> bool:
        """
        Apply fn under optimistic locking and publish the change.
        Returns False if fn returned NO_CHANGE.
        """
        key = doc_key(doc)
        try:
            async with self.r.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        current = json.loads(self._dec(raw)) if raw else None
                        new = fn(copy.deepcopy(current))
                        if new is NO_CHANGE:
                            await pipe.unwatch()
                            return False
                        pipe.multi()
                        if new:
                            pipe.set(key, json.dumps(new), ex=self.room_ttl_sec)
                        else:
                            pipe.delete(key)
                        pipe.publish(events_channel(doc), doc)
                        await pipe.execute()
                        return True
                    except WatchError:
                        logger.debug("write conflict on %s, retrying", key)
                        continue
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise TransportUnavailable(str(e)) from e

    async def _put(self, doc: str, inner: List[str], value: Any) -> bool:
        def fn(cur):
            new = set_in(cur or {}, inner, value) or None
            if new is None and cur is None:
                return NO_CHANGE
            return new

        return await self._mutate(doc, fn)

    def _split_logs(self, value: Any) -> Tuple[Any, Dict[str, Any]]:
        """Pull the log children out of a whole-room value."""
        if not isinstance(value, dict):
            return value, {child: None for child in LOG_CHILDREN}
        room = dict(value)
        return room, {child: room.pop(child, None) for child in LOG_CHILDREN}

    async def _write(self, path: str, value: Any) -> None:
        doc, inner = split_doc(path)
        resolved = resolve_server_values(value, await self.server_time_ms())
        if not inner and doc.count("/") == DOC_DEPTH - 1:
            resolved, logs = self._split_logs(resolved)
            for child, log in logs.items():
                await self._put(f"{doc}/{child}", [], log)
        await self._put(doc, inner, resolved)

    # ----------------------------
    # Reads / writes
    # ----------------------------
    async def server_time_ms(self) -> int:
        sec, usec = await self._call(self.r.time())
        return int(sec) * 1000 + int(usec) // 1000

    async def _read_room(self, doc: str) -> Optional[dict]:
        room = await self._read_doc(doc) or {}
        for child, log in zip(LOG_CHILDREN, log_docs(doc)):
            value = await self._read_doc(log)
            if value is not None:
                room[child] = value
        return room or None

    async def get(self, path: str) -> Any:
        segs = split(path)
        if len(segs) == DOC_DEPTH:
            return await self._read_room("/".join(segs))
        if len(segs) > DOC_DEPTH:
            doc, inner = split_doc(path)
            return get_in(await self._read_doc(doc), inner)
        if len(segs) == 1:
            # collection level: assemble from the per-room documents
            out: Dict[str, Any] = {}
            prefix = doc_key(segs[0] + "/")
            for k in await self._scan(doc_key(f"{segs[0]}/*")):
                name = k[len(prefix):]
                if "/" in name:
                    continue
                value = await self._read_room(f"{segs[0]}/{name}")
                if value is not None:
                    out[name] = value
            return out or None
        raise ValueError("Reading the store root is not supported")

    async def set(self, path: str, value: Any) -> None:
        await self._write(path, value)

    async def set_if_absent(self, path: str, value: Any) -> bool:
        doc, inner = split_doc(path)
        resolved = resolve_server_values(value, await self.server_time_ms())
        logs: Dict[str, Any] = {}
        if not inner and doc.count("/") == DOC_DEPTH - 1:
            resolved, logs = self._split_logs(resolved)

        def fn(cur):
            if get_in(cur, inner) is not None:
                return NO_CHANGE
            return set_in(cur or {}, inner, resolved) or None

        created = await self._mutate(doc, fn)
        if created:
            for child, log in logs.items():
                if log is not None:
                    await self._put(f"{doc}/{child}", [], log)
        return created

    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        if not fields:
            return
        ts = await self.server_time_ms()
        by_doc: Dict[str, List[Tuple[List[str], Any]]] = {}
        for k, v in fields.items():
            doc, inner = split_doc(f"{path.rstrip('/')}/{k}")
            by_doc.setdefault(doc, []).append((inner, resolve_server_values(v, ts)))

        for doc, changes in by_doc.items():
            def fn(cur, changes=changes):
                tree = cur or {}
                for segs, v in changes:
                    tree = set_in(tree, segs, v)
                return tree or None

            await self._mutate(doc, fn)

    async def remove(self, path: str) -> None:
        segs = split(path)
        if len(segs) == 1:
            for k in await self._scan(doc_key(f"{segs[0]}/*")):
                await self.remove(k[len(doc_key("")):])
            return
        await self._write(path, None)

    async def push(self, path: str, value: Any) -> str:
        key = self._push_keys.next_key(await self.server_time_ms())
        await self._write(f"{path.rstrip('/')}/{key}", value)
        return key

    # ----------------------------
    # Subscriptions
    # ----------------------------
    async def _register(self, sub: Subscription) -> Subscription:
        doc, _ = split_doc(sub.path)
        if self._pubsub is None:
            self._pubsub = self.r.pubsub()
        if doc not in self._subs:
            self._subs[doc] = []
            await self._call(self._pubsub.subscribe(events_channel(doc)))
        self._subs[doc].append(sub)
        if self._reader is None or self._reader.done():
            self._reader = asyncio.create_task(self._reader_loop())

        current = await self._read_doc(doc)
        sub.listener.evaluate(self._as_root(doc, current))
        return sub

    def _as_root(self, doc: str, value: Optional[dict]) -> dict:
        if value is None:
            return {}
        root: Any = value
        for seg in reversed(split(doc)):
            root = {seg: root}
        return root

    async def _reader_loop(self) -> None:
        while True:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except (RedisConnectionError, RedisTimeoutError):
                logger.warning("store notifications interrupted, retrying")
                await asyncio.sleep(1.0)
                continue
            if msg is None:
                continue
            doc = self._dec(msg["data"])
            subs = list(self._subs.get(doc, []))
            if not subs:
                continue
            try:
                root = self._as_root(doc, await self._read_doc(doc))
            except TransportUnavailable:
                logger.warning("could not read %s after change notification", doc)
                continue
            for sub in subs:
                sub.listener.evaluate(root)

    async def on_value(self, path: str, callback: ValueCallback) -> Subscription:
        return await self._register(Subscription(path=path, kind="value", listener=ValueListener(path, callback)))

    async def on_child_added(
        self,
        path: str,
        callback: ChildCallback,
        *,
        order_by: Optional[str] = None,
        limit_to_last: Optional[int] = None,
        include_existing: bool = True,
    ) -> Subscription:
        listener = ChildListener(
            path,
            callback,
            order_by=order_by,
            limit_to_last=limit_to_last,
            include_existing=include_existing,
        )
        return await self._register(Subscription(path=path, kind="child_added", listener=listener))

    async def off(self, subscription: Subscription) -> None:
        doc, _ = split_doc(subscription.path)
        subs = self._subs.get(doc)
        if not subs or subscription not in subs:
            return
        subs.remove(subscription)
        if not subs:
            self._subs.pop(doc, None)
            with contextlib.suppress(RedisConnectionError, RedisTimeoutError):
                await self._pubsub.unsubscribe(events_channel(doc))

    # ----------------------------
    # Presence
    # ----------------------------
    async def keepalive(self) -> None:
        await self._call(self.r.set(presence_key(self.client_id), "1", ex=self.presence_ttl_sec))

    async def on_disconnect_remove(self, path: str) -> None:
        await self._call(self.r.hset(ondisconnect_key(self.client_id), path, "remove"))
        await self.keepalive()

    async def cancel_on_disconnect(self, path: str) -> None:
        await self._call(self.r.hdel(ondisconnect_key(self.client_id), path))

    async def _run_ondisconnect(self, client_id: str) -> int:
        key = ondisconnect_key(client_id)
        ops = await self._call(self.r.hgetall(key))
        for path in ops:
            await self.remove(self._dec(path))
        await self._call(self.r.delete(key))
        return len(ops)

    async def sweep_disconnected(self) -> int:
        """Remove entries registered by clients whose presence key expired."""
        removed = 0
        prefix = ondisconnect_key("")
        for k in await self._scan(ondisconnect_key("*")):
            client_id = k[len(prefix):]
            if await self._call(self.r.exists(presence_key(client_id))):
                continue
            logger.info("client %s went silent, running its disconnect cleanup", client_id)
            removed += await self._run_ondisconnect(client_id)
        return removed

    async def close(self) -> None:
        """Closing the connection counts as a disconnect, as in the store model."""
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
            self._reader = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        self._subs.clear()
        with contextlib.suppress(TransportUnavailable):
            await self._run_ondisconnect(self.client_id)
            await self._call(self.r.delete(presence_key(self.client_id)))
