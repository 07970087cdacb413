from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./fidelio.db"
    database_echo: bool = False

    # Shadow wallets
    shadow_wallet_ttl_hours: int = 72

    # Expiration worker
    expiration_worker_enabled: bool = True
    expiration_worker_interval_minutes: int = 60

    # Identity provider (Supabase-style admin API)
    identity_provider_url: str | None = None
    identity_service_key: str | None = None
    identity_timeout_seconds: float = 5.0
    identity_mock: bool = False

    # Registration webhook
    webhook_secret: str = ""

    # Per-call deadline for ingestion / conversion
    request_timeout_seconds: float = 10.0

    @field_validator("shadow_wallet_ttl_hours", "expiration_worker_interval_minutes")
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than 0")
        return value

    @field_validator("identity_provider_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: object) -> object:
        if isinstance(value, str):
            trimmed = value.strip().rstrip("/")
            return trimmed or None
        return value

    @property
    def shadow_wallet_ttl(self) -> timedelta:
        return timedelta(hours=self.shadow_wallet_ttl_hours)

    @property
    def expiration_worker_interval_seconds(self) -> int:
        return self.expiration_worker_interval_minutes * 60


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
