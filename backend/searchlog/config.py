from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    domain: str = "localhost"
    log_level: str = "INFO"

    data_dir: Path = Path("/app/data")
    db_url: str = "sqlite:////app/data/searchlog.db"  # or postgresql+psycopg://...

    redis_url: str = "redis://localhost:6379/0"
    redis_connect_timeout_seconds: float = 3.0
    # Try CONFIG SET notify-keyspace-events on connect (managed Redis may refuse)
    redis_configure_notifications: bool = True

    # Debounce window: head expiry means "user stopped typing"
    head_ttl_seconds: int = 10
    # Must outlive head + listener processing delay
    buffer_ttl_seconds: int = 3600
    head_key_prefix: str = "search:last:"
    buffer_key_prefix: str = "search:buffer:"

    listener_enabled: bool = True

    @model_validator(mode="after")
    def _check_debounce_window(self) -> Settings:
        if self.head_ttl_seconds <= 0 or self.buffer_ttl_seconds <= 0:
            raise ValueError(
                "HEAD_TTL_SECONDS and BUFFER_TTL_SECONDS must both be > 0, got "
                f"{self.head_ttl_seconds} and {self.buffer_ttl_seconds}"
            )
        if self.buffer_ttl_seconds <= self.head_ttl_seconds:
            raise ValueError(
                "BUFFER_TTL_SECONDS must be longer than HEAD_TTL_SECONDS, otherwise "
                "the buffer expires before the expiry listener can flush it."
            )
        if not self.head_key_prefix or not self.buffer_key_prefix:
            raise ValueError("Cache key prefixes must not be empty.")
        if self.head_key_prefix == self.buffer_key_prefix:
            raise ValueError("HEAD_KEY_PREFIX and BUFFER_KEY_PREFIX must differ.")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
