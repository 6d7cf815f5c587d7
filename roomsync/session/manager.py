# roomsync/session/manager.py
"""
Session Manager: one local participant's membership in one room.

Local state machine:
    disconnected -> connecting -> connected -> lobby <-> playing|spectating
    lobby -> disconnected (leave);  any -> error (transport failure)

lobby -> playing is driven only by the room's remote ``state`` field, so every
participant moves in lockstep off the same store notification.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from roomsync.errors import GameInProgress, RoomFull, RoomNotFound, TransportUnavailable
from roomsync.session.actions import GameAction, build_action_map, parse_action
from roomsync.session.adapter import GameAdapter
from roomsync.session.events import (
    ChatMessage,
    EventBus,
    EventCallback,
    GameEnd,
    GameStart,
    PlayersChanged,
    ReadyChanged,
    RoomCreated,
    RoomJoined,
    RoomLeft,
)
from roomsync.session.heartbeat import Heartbeat
from roomsync.session.name_store import LocalNameStore, NameStore, name_key
from roomsync.session.throttle import SyncThrottle
from roomsync.session.types import (
    IN_GAME_STATES,
    MAX_ROOM_CAPACITY,
    MODES,
    ConnectionState,
    RoomInfo,
    color_for_seat,
)
from roomsync.settings import Settings, get_settings
from roomsync.store.base import Store, Subscription
from roomsync.store.models import (
    ActionRecord,
    ChatRecord,
    Mode,
    PlayerEntry,
    Position,
    RoomDocument,
    RosterPlayer,
)
from roomsync.store.paths import SERVER_TIMESTAMP
from roomsync.store.room_keys import RK
from roomsync.store.room_repo import RoomRepo, parse_roster
from roomsync.util.ids import gen_player_id, gen_room_code

logger = logging.getLogger(__name__)

DEFAULT_PLAYER_NAME = "Player"

# Set at join or through their own operations, never by sync_state.
RESERVED_PLAYER_FIELDS = frozenset({"name", "color", "index", "is_host", "ready", "last_active_at"})


class RoomOptions(BaseModel):
    max_players: Optional[int] = None
    settings: Dict[str, Any] = Field(default_factory=dict)


def _plain(value: Any) -> Any:
    return value.model_dump() if isinstance(value, BaseModel) else value


class SessionManager:
    def __init__(
        self,
        adapter: GameAdapter,
        store: Store,
        *,
        settings: Optional[Settings] = None,
        name_store: Optional[NameStore] = None,
        player_id: Optional[str] = None,
        clock=None,
    ):
        self.adapter = adapter
        self.game_id = adapter.game_id
        self.settings = settings or get_settings()
        self.store = store
        self.config = adapter.get_game_config()
        self.repo = RoomRepo(store, self.config.room_prefix)
        self.events = EventBus()

        self._name_store = name_store or LocalNameStore(self.settings.STATE_DIR)
        self.player_id = player_id or gen_player_id(self.game_id)
        self.player_name = self._name_store.load(name_key(self.game_id)) or DEFAULT_PLAYER_NAME
        self.player_index = 0
        self.player_color = color_for_seat(0)

        self.room_code: Optional[str] = None
        self.is_host = False
        self.mode: Mode = "coop"
        self.connection_state: ConnectionState = "disconnected"
        self.players: Dict[str, RosterPlayer] = {}

        self._subs: List[Subscription] = []
        self._release_task: Optional[asyncio.Task] = None
        self._last_results: Dict[str, Any] = {}
        self._throttle = SyncThrottle(self.config.sync_rate_ms, clock=clock)
        self._heartbeat = Heartbeat(self._beat, self.settings.HEARTBEAT_INTERVAL_SEC)
        self._action_models = build_action_map(adapter.action_models())

    # ----------------------------
    # Events
    # ----------------------------
    def on(self, event: str, callback: EventCallback) -> None:
        self.events.on(event, callback)

    def off(self, event: str, callback: EventCallback) -> None:
        self.events.off(event, callback)

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.connection_state:
            logger.info("%s: %s -> %s", self.player_id, self.connection_state, state)
            self.connection_state = state

    def _call_adapter(self, hook: str, *args: Any) -> None:
        try:
            getattr(self.adapter, hook)(*args)
        except Exception:
            logger.exception("%s.%s failed", type(self.adapter).__name__, hook)

    def _rk(self) -> RK:
        return self.repo.rk(self.room_code or "")

    # ----------------------------
    # Connection
    # ----------------------------
    async def init(self) -> bool:
        """Check the store is reachable. Leaves the session in connected or error."""
        if self.connection_state not in ("disconnected", "error"):
            return True
        self._set_state("connecting")
        try:
            await self.store.server_time_ms()
        except TransportUnavailable as e:
            logger.warning("store not available: %s", e)
            self._set_state("error")
            return False
        self._set_state("connected")
        return True

    async def _ensure_connected(self) -> None:
        if not await self.init():
            raise TransportUnavailable("Store not available")

    # ----------------------------
    # Room lifecycle
    # ----------------------------
    async def create_room(
        self,
        mode: Mode = "coop",
        options: Union[RoomOptions, Mapping[str, Any], None] = None,
    ) -> str:
        if mode not in self.config.supported_modes:
            raise ValueError(f"{self.game_id} does not support mode {mode!r}")
        opts = options if isinstance(options, RoomOptions) else RoomOptions.model_validate(options or {})
        await self._ensure_connected()

        capacity = opts.max_players or self.config.capacity or MODES[mode].default_max_players
        if self.config.capacity:
            capacity = min(capacity, self.config.capacity)
        capacity = max(1, min(capacity, MAX_ROOM_CAPACITY))
        entry = self._new_entry(seat=0, is_host=True)
        doc = RoomDocument(
            game_id=self.game_id,
            host_id=self.player_id,
            mode=mode,
            capacity=capacity,
            state="waiting",
            settings=opts.settings,
            players={self.player_id: entry},
        )

        code = None
        try:
            for _ in range(self.settings.ROOM_CODE_ATTEMPTS):
                candidate = gen_room_code()
                if await self.repo.create_room(candidate, doc):
                    code = candidate
                    break
                logger.info("room code %s already taken, retrying", candidate)
        except TransportUnavailable:
            self._set_state("error")
            raise
        if code is None:
            raise TransportUnavailable("Could not allocate a free room code")

        self.room_code = code
        self.is_host = True
        self.mode = mode
        self.player_index = 0
        self.player_color = entry.color
        await self._enter_room()

        logger.info("%s created room %s (%s, cap %d)", self.player_id, code, mode, capacity)
        self.events.emit(RoomCreated(room_code=code))
        return code

    async def join_room(self, code: str) -> bool:
        code = code.strip().upper()
        await self._ensure_connected()

        try:
            doc = await self.repo.get_room(code)
        except TransportUnavailable:
            self._set_state("error")
            raise
        if doc is None:
            raise RoomNotFound(code)
        if doc.state == "playing":
            raise GameInProgress(code)
        if len(doc.players) >= doc.capacity:
            raise RoomFull(code, doc.capacity)
        # seats are never reused, so a leaver's seat stays empty
        seat = max((p.index for p in doc.players.values()), default=-1) + 1

        entry = self._new_entry(seat=seat, is_host=False)
        try:
            await self.repo.add_player(code, self.player_id, entry)
        except TransportUnavailable:
            self._set_state("error")
            raise

        self.room_code = code
        self.is_host = False
        self.mode = doc.mode
        self.player_index = seat
        self.player_color = entry.color
        await self._enter_room()

        logger.info("%s joined room %s at seat %d", self.player_id, code, seat)
        self.events.emit(RoomJoined(room_code=code))
        return True

    async def leave_room(self) -> None:
        """Safe to call repeatedly; only the first call does anything."""
        if self.room_code is None:
            return
        code, was_host = self.room_code, self.is_host
        rk = self._rk()

        await self._heartbeat.stop()
        await self._unsubscribe()
        try:
            await self.repo.remove_player(code, self.player_id)
            if was_host:
                # no host migration: the room goes with its host
                await self.repo.delete_room(code)
            elif not await self.repo.list_players(code):
                # host already gone and we were the last one in
                await self.repo.delete_room(code)
            # only once the entry is gone; until then a drop still cleans it up
            await self.store.cancel_on_disconnect(rk.player(self.player_id))
        except TransportUnavailable:
            self._reset_room()
            self._set_state("error")
            raise
        self._reset_room()

        logger.info("%s left room %s", self.player_id, code)
        self.events.emit(RoomLeft(room_code=code))

    def _new_entry(self, *, seat: int, is_host: bool) -> PlayerEntry:
        positions = self.adapter.get_start_positions()
        position = positions[seat] if seat < len(positions) else Position(x=0, y=0)
        return PlayerEntry(
            name=self.player_name,
            color=color_for_seat(seat),
            index=seat,
            position=position,
            score=0,
            is_host=is_host,
            ready=False,
        )

    async def _enter_room(self) -> None:
        rk = self._rk()
        await self.store.on_disconnect_remove(rk.player(self.player_id))
        self._set_state("lobby")
        self._throttle.reset()
        self._last_results = {}
        await self._subscribe()
        self._heartbeat.start()

    def _reset_room(self) -> None:
        self.room_code = None
        self.is_host = False
        self.players = {}
        self._last_results = {}
        self._set_state("disconnected")

    # ----------------------------
    # Game state
    # ----------------------------
    async def set_ready(self, ready: bool = True) -> None:
        if self.room_code is None:
            return
        await self.repo.update_player_fields(self.room_code, self.player_id, ready=ready)
        self.events.emit(ReadyChanged(ready=ready))

    async def start_game(self) -> None:
        """Host only. Everyone (host included) reacts to the state change."""
        if not self.is_host or self.room_code is None:
            logger.debug("%s: start_game ignored (not host)", self.player_id)
            return
        await self.repo.update_room_fields(
            self.room_code,
            state="playing",
            started_at=SERVER_TIMESTAMP,
            finished_at=None,
            results=None,
        )

    async def end_game(self, results: Optional[Dict[str, Any]] = None) -> None:
        if self.room_code is None:
            return
        await self.repo.update_room_fields(
            self.room_code,
            state="finished",
            results=results or {},
            finished_at=SERVER_TIMESTAMP,
        )

    async def return_to_lobby(self) -> None:
        """Host only: reopen a finished room for another round."""
        if not self.is_host or self.room_code is None:
            logger.debug("%s: return_to_lobby ignored (not host)", self.player_id)
            return
        await self.repo.update_room_fields(self.room_code, state="waiting", results=None)

    async def update_settings(self, settings: Dict[str, Any]) -> None:
        if not self.is_host or self.room_code is None:
            logger.debug("%s: update_settings ignored (not host)", self.player_id)
            return
        await self.repo.update_settings(self.room_code, settings)

    async def set_player_name(self, name: Optional[str]) -> None:
        self.player_name = (name or "").strip() or DEFAULT_PLAYER_NAME
        self._name_store.save(name_key(self.game_id), self.player_name)
        if self.room_code is not None:
            await self.repo.update_player_fields(self.room_code, self.player_id, name=self.player_name)

    # ----------------------------
    # Data sync
    # ----------------------------
    async def sync_state(self, state: Mapping[str, Any]) -> bool:
        """
        Merge own per-game fields into the roster entry. Call every frame:
        only playing sessions write, and at most once per sync_rate_ms.
        Returns True if a write was issued.
        """
        if self.room_code is None or self.connection_state != "playing":
            return False
        if not self._throttle.ready():
            return False
        dropped = RESERVED_PLAYER_FIELDS.intersection(state)
        if dropped:
            logger.debug("%s: sync_state ignoring reserved fields %s", self.player_id, sorted(dropped))
        fields = {k: _plain(v) for k, v in state.items() if k not in dropped}
        fields["last_active_at"] = SERVER_TIMESTAMP
        await self.repo.update_player_fields(self.room_code, self.player_id, **fields)
        return True

    async def broadcast_action(self, action_type: str, data: Any = None) -> Optional[str]:
        """Append to the room's action log. No acknowledgement."""
        if self.room_code is None:
            return None
        record = ActionRecord(type=action_type, player_id=self.player_id, data=_plain(data) or {})
        return await self.repo.append_action(self.room_code, record)

    async def send_chat(self, text: str) -> Optional[str]:
        message = (text or "").strip()
        if not message or self.room_code is None:
            return None
        record = ChatRecord(
            player_id=self.player_id,
            player_name=self.player_name,
            message=message[: self.settings.CHAT_MAX_LENGTH],
        )
        return await self.repo.append_chat(self.room_code, record)

    # ----------------------------
    # Listeners
    # ----------------------------
    async def _subscribe(self) -> None:
        rk = self._rk()
        store = self.store
        self._subs.append(await store.on_value(rk.players(), self._handle_players))
        # results before state: a finish writes both, and gameEnd carries results
        self._subs.append(await store.on_value(rk.results(), self._handle_results))
        self._subs.append(await store.on_value(rk.state(), self._handle_state))
        self._subs.append(
            await store.on_child_added(rk.actions(), self._handle_action, include_existing=False)
        )
        self._subs.append(
            await store.on_child_added(
                rk.chat(),
                self._handle_chat,
                order_by="timestamp",
                limit_to_last=self.settings.CHAT_HISTORY_LIMIT,
            )
        )

    async def _unsubscribe(self) -> None:
        subs, self._subs = self._subs, []
        for sub in subs:
            await self.store.off(sub)

    def _handle_players(self, value: Any) -> None:
        self.players = parse_roster(value)
        for pid, player in self.players.items():
            if pid != self.player_id:
                self._call_adapter("on_player_state_update", pid, player)
        roster = sorted(self.players.values(), key=lambda p: p.index)
        self.events.emit(PlayersChanged(players=roster))

    def _handle_results(self, value: Any) -> None:
        self._last_results = value if isinstance(value, dict) else {}

    def _handle_state(self, value: Any) -> None:
        if self.room_code is None:
            return
        if value is None:
            self._room_closed()
        elif value == "playing":
            if self.connection_state in IN_GAME_STATES:
                return
            watching = self.mode == "spectate" and not self.is_host
            self._set_state("spectating" if watching else "playing")
            self._throttle.reset()
            self._call_adapter("on_game_start")
            self.events.emit(GameStart())
        elif value == "finished":
            was_in_game = self.connection_state in IN_GAME_STATES
            self._set_state("lobby")
            if was_in_game:
                self._call_adapter("on_game_end", dict(self._last_results))
                self.events.emit(GameEnd(results=dict(self._last_results)))
        elif value == "waiting":
            self._set_state("lobby")

    def _room_closed(self) -> None:
        """The room was deleted under us (host left, or closed by an admin)."""
        code = self.room_code
        player_path = self._rk().player(self.player_id)
        subs, self._subs = self._subs, []
        self._heartbeat.cancel()
        self._reset_room()
        # listener callbacks are synchronous; the store-side release runs after
        self._release_task = asyncio.get_running_loop().create_task(self._release(subs, player_path))
        logger.info("%s: room %s was closed", self.player_id, code)
        self.events.emit(RoomLeft(room_code=code))

    async def _release(self, subs: List[Subscription], player_path: str) -> None:
        for sub in subs:
            await self.store.off(sub)
        try:
            await self.store.cancel_on_disconnect(player_path)
        except TransportUnavailable as e:
            logger.warning("could not cancel disconnect cleanup for %s: %s", player_path, e)

    def _handle_action(self, key: str, value: Any) -> None:
        if not isinstance(value, dict) or value.get("player_id") == self.player_id:
            return
        try:
            action = parse_action(value, self._action_models)
        except ValueError as e:
            logger.warning("dropping action %s: %s", key, e)
            return
        self._call_adapter("on_game_action", action)

    def _handle_chat(self, key: str, value: Any) -> None:
        try:
            record = ChatRecord.model_validate(value)
        except ValidationError:
            logger.warning("dropping malformed chat message %s", key)
            return
        self.events.emit(ChatMessage(key=key, **record.model_dump()))

    # ----------------------------
    # Presence
    # ----------------------------
    async def _beat(self) -> None:
        # an evicted entry must not be resurrected as a bare timestamp
        if self.room_code is None or self.player_id not in self.players:
            return
        await self.repo.touch_player(self.room_code, self.player_id)
        await self.store.keepalive()

    # ----------------------------
    # Queries
    # ----------------------------
    def get_other_players(self) -> List[RosterPlayer]:
        return [p for pid, p in self.players.items() if pid != self.player_id]

    def get_players_by_score(self) -> List[RosterPlayer]:
        return sorted(self.players.values(), key=lambda p: p.score, reverse=True)

    def all_players_ready(self) -> bool:
        return bool(self.players) and all(p.ready for p in self.players.values())

    def get_room_info(self) -> RoomInfo:
        return RoomInfo(
            room_code=self.room_code,
            game_id=self.game_id,
            mode=self.mode,
            is_host=self.is_host,
            player_count=len(self.players),
            connection_state=self.connection_state,
        )
