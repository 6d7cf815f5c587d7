from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from roomsync.store.room_repo import RoomRepo

router = APIRouter(prefix="/admin", tags=["admin"])


def _repo(request: Request, prefix: str) -> RoomRepo:
    return RoomRepo(request.app.state.store, prefix)


@router.get("/rooms")
async def list_rooms(prefix: str, request: Request):
    """
    List all rooms of one game (debug/admin).
    """
    repo = _repo(request, prefix)
    rooms = []
    for code, doc in (await repo.list_rooms()).items():
        rooms.append(
            {
                "room_code": code,
                "game_id": doc.game_id,
                "mode": doc.mode,
                "state": doc.state,
                "capacity": doc.capacity,
                "players": len(doc.players),
                "host_present": doc.host_id in doc.players,
                "created_at": doc.created_at,
            }
        )
    return {"rooms": rooms}


@router.post("/rooms/{prefix}/{room_code}/close")
async def close_room(prefix: str, room_code: str, request: Request):
    """
    Force close a room (debug/admin). Connected sessions see the roster empty out.
    """
    repo = _repo(request, prefix)
    if not await repo.room_exists(room_code):
        raise HTTPException(status_code=404, detail="Room not found")
    await repo.delete_room(room_code)
    return {"ok": True, "room_code": room_code}


@router.post("/rooms/{prefix}/sweep")
async def sweep_rooms(prefix: str, request: Request):
    """
    Run pending disconnect cleanup, then delete rooms whose host entry is gone
    (host crashed without a clean leave).
    """
    store = request.app.state.store
    repo = _repo(request, prefix)
    cleaned = await store.sweep_disconnected()

    removed = []
    for code, doc in (await repo.list_rooms()).items():
        if doc.host_id not in doc.players:
            await repo.delete_room(code)
            removed.append(code)
    return {"ok": True, "disconnected_cleanups": cleaned, "removed": removed}
