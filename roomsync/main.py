# roomsync/main.py
from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from redis.asyncio import Redis

from roomsync.settings import get_settings
from roomsync.store.base import Store
from roomsync.store.redis_store import RedisStore
from roomsync.transport.admin import router as admin_router
from roomsync.util.logging import setup_logging_from_settings


def create_app(store: Optional[Store] = None) -> FastAPI:
    """
    Ops surface over a room store. Without an explicit store the app
    connects to Redis at startup.
    """
    settings = get_settings()
    app = FastAPI(title=settings.APP_NAME)
    app.state.store = store
    app.state.redis = None

    @app.on_event("startup")
    async def _startup() -> None:
        if app.state.store is not None:
            return
        setup_logging_from_settings(settings)
        r = Redis.from_url(settings.REDIS_URL, decode_responses=False)
        app.state.redis = r
        app.state.store = RedisStore(
            r,
            room_ttl_sec=settings.ROOM_TTL_SEC,
            presence_ttl_sec=settings.PRESENCE_TTL_SEC,
        )
        await r.ping()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        r: Optional[Redis] = app.state.redis
        if r is not None:
            await app.state.store.close()
            await r.aclose()

    @app.get("/health")
    async def health():
        server_time = await app.state.store.server_time_ms()
        return {"ok": True, "store": type(app.state.store).__name__, "server_time": server_time}

    app.include_router(admin_router)
    return app


app = create_app()
