from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_BASE_URL: str = "http://localhost:8080"
    WS_PATH: str = "/api/ws"
    REST_TIMEOUT_SECONDS: float = 15.0

    TOKEN_KEY: str = "accessToken"
    CHAT_CACHE_KEY: str = "cached_chats"

    REDIS_URL: str | None = None

    HANDSHAKE_TIMEOUT_SECONDS: float = 10.0
    HEARTBEAT_SECONDS: float = 30.0
    PONG_TIMEOUT_SECONDS: float = 60.0

    RECONNECT_BASE_DELAY_SECONDS: float = 1.0
    RECONNECT_MAX_DELAY_SECONDS: float = 30.0
    RECONNECT_MAX_ATTEMPTS: int = 5

    TYPING_TTL_SECONDS: float = 3.0

    STORE_RECONNECT_ENABLED: bool = True
    STORE_RECONNECT_DELAY_SECONDS: float = 3.0

    MESSAGES_PAGE_SIZE: int = 50

    LOG_LEVEL: str = "INFO"

    @property
    def ws_url(self) -> str:
        base = self.API_BASE_URL.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}{self.WS_PATH}"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
