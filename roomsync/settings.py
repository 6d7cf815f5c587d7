# roomsync/settings.py
from __future__ import annotations

from pydantic import BaseModel
import os


class Settings(BaseModel):
    APP_NAME: str = "roomsync"

    # Redis store
    REDIS_URL: str = "redis://localhost:6379/0"
    ROOM_TTL_SEC: int = 1800
    PRESENCE_TTL_SEC: int = 30

    # Session
    HEARTBEAT_INTERVAL_SEC: float = 10.0
    CHAT_HISTORY_LIMIT: int = 50
    CHAT_MAX_LENGTH: int = 500
    ROOM_CODE_ATTEMPTS: int = 5

    # Local durable state (cached display name)
    STATE_DIR: str = "~/.roomsync"

    # Admin server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Dev
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = ""  # empty: stdout only


def get_settings() -> Settings:
    return Settings(
        APP_NAME=os.getenv("APP_NAME", "roomsync"),
        REDIS_URL=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        ROOM_TTL_SEC=int(os.getenv("ROOM_TTL_SEC", "1800")),
        PRESENCE_TTL_SEC=int(os.getenv("PRESENCE_TTL_SEC", "30")),
        HEARTBEAT_INTERVAL_SEC=float(os.getenv("HEARTBEAT_INTERVAL_SEC", "10")),
        CHAT_HISTORY_LIMIT=int(os.getenv("CHAT_HISTORY_LIMIT", "50")),
        CHAT_MAX_LENGTH=int(os.getenv("CHAT_MAX_LENGTH", "500")),
        ROOM_CODE_ATTEMPTS=int(os.getenv("ROOM_CODE_ATTEMPTS", "5")),
        STATE_DIR=os.getenv("STATE_DIR", "~/.roomsync"),
        HOST=os.getenv("HOST", "0.0.0.0"),
        PORT=int(os.getenv("PORT", "8000")),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        LOG_DIR=os.getenv("LOG_DIR", ""),
    )
