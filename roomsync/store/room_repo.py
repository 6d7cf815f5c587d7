# roomsync/store/room_repo.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from roomsync.store.base import Store
from roomsync.store.models import (
    ActionRecord,
    ChatRecord,
    PlayerEntry,
    RoomDocument,
    RosterPlayer,
)
from roomsync.store.paths import SERVER_TIMESTAMP
from roomsync.store.room_keys import RK

logger = logging.getLogger(__name__)


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(exclude_none=True)


def parse_roster(raw: Any) -> Dict[str, RosterPlayer]:
    """
    Validate a raw players node. Malformed entries (e.g. a lone heartbeat
    field written after the entry was removed) are skipped.
    """
    roster: Dict[str, RosterPlayer] = {}
    if not isinstance(raw, dict):
        return roster
    for pid, data in raw.items():
        if not isinstance(data, dict):
            continue
        try:
            roster[pid] = RosterPlayer.model_validate({**data, "id": pid})
        except ValidationError:
            logger.warning("ignoring malformed player entry %s", pid)
    return roster


class RoomRepo:
    """Typed room CRUD for one game's namespace."""

    def __init__(self, store: Store, room_prefix: str):
        self.store = store
        self.room_prefix = room_prefix

    def rk(self, room_code: str) -> RK:
        return RK(self.room_prefix, room_code)

    # ----------------------------
    # Room document
    # ----------------------------
    async def create_room(self, room_code: str, doc: RoomDocument) -> bool:
        """Conditional create. False means the code is taken."""
        data = _dump(doc)
        data["created_at"] = SERVER_TIMESTAMP
        for entry in data.get("players", {}).values():
            entry["last_active_at"] = SERVER_TIMESTAMP
        return await self.store.set_if_absent(self.rk(room_code).room(), data)

    async def room_exists(self, room_code: str) -> bool:
        return await self.store.get(self.rk(room_code).state()) is not None

    async def get_room(self, room_code: str) -> Optional[RoomDocument]:
        raw = await self.store.get(self.rk(room_code).room())
        if not raw:
            return None
        players = parse_roster(raw.get("players"))
        raw = {**raw, "players": {pid: p.model_dump(exclude={"id"}) for pid, p in players.items()}}
        try:
            return RoomDocument.model_validate(raw)
        except ValidationError:
            logger.warning("room %s has a malformed document", room_code)
            return None

    async def update_room_fields(self, room_code: str, **fields: Any) -> None:
        await self.store.update(self.rk(room_code).room(), fields)

    async def update_settings(self, room_code: str, settings: Dict[str, Any]) -> None:
        await self.store.update(self.rk(room_code).settings(), settings)

    async def delete_room(self, room_code: str) -> None:
        await self.store.remove(self.rk(room_code).room())

    async def list_rooms(self) -> Dict[str, RoomDocument]:
        raw = await self.store.get(RK(self.room_prefix).rooms()) or {}
        out: Dict[str, RoomDocument] = {}
        for code in sorted(raw):
            doc = await self.get_room(code)
            if doc is not None:
                out[code] = doc
        return out

    # ----------------------------
    # Players
    # ----------------------------
    async def add_player(self, room_code: str, pid: str, entry: PlayerEntry) -> None:
        data = _dump(entry)
        data["last_active_at"] = SERVER_TIMESTAMP
        await self.store.set(self.rk(room_code).player(pid), data)

    async def remove_player(self, room_code: str, pid: str) -> None:
        await self.store.remove(self.rk(room_code).player(pid))

    async def update_player_fields(self, room_code: str, pid: str, **fields: Any) -> None:
        await self.store.update(self.rk(room_code).player(pid), fields)

    async def touch_player(self, room_code: str, pid: str) -> None:
        await self.store.set(self.rk(room_code).player_field(pid, "last_active_at"), SERVER_TIMESTAMP)

    async def list_players(self, room_code: str) -> List[RosterPlayer]:
        roster = parse_roster(await self.store.get(self.rk(room_code).players()))
        # stable order: seat
        return sorted(roster.values(), key=lambda p: p.index)

    # ----------------------------
    # Logs
    # ----------------------------
    async def append_action(self, room_code: str, record: ActionRecord) -> str:
        data = _dump(record)
        data["timestamp"] = SERVER_TIMESTAMP
        return await self.store.push(self.rk(room_code).actions(), data)

    async def append_chat(self, room_code: str, record: ChatRecord) -> str:
        data = _dump(record)
        data["timestamp"] = SERVER_TIMESTAMP
        return await self.store.push(self.rk(room_code).chat(), data)
