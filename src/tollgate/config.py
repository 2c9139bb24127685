from enum import StrEnum
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FailPolicy(StrEnum):
    OPEN = "open"
    CLOSED = "closed"


LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]


class Settings(BaseSettings):
    app_name: str = "Tollgate"
    host: str = "0.0.0.0"
    port: int = 8080

    redis_url: str = "redis://localhost:6379/0"
    redis_timeout: float = 1.0
    # Disable on stores without server-side scripting (WATCH/MULTI fallback)
    redis_scripting: bool = True
    # Safety limit for the WATCH/MULTI loop; check_timeout normally ends it first
    redis_max_attempts: int = Field(default=1000, ge=1)

    # "fixed" or "sliding"; anything else falls back to sliding
    rate_limit_mode: str = "sliding"
    rate_limit: int = Field(default=100, ge=1)
    window_seconds: int = Field(default=60, ge=1)
    check_timeout: float = Field(default=0.5, gt=0)
    fail_policy: FailPolicy = FailPolicy.CLOSED

    trust_forwarded_for: bool = False
    exempt_paths: list[str] = ["/health"]

    # Gateway mode: forward admitted requests to this upstream
    upstream_url: str | None = None
    upstream_timeout: float = 30.0

    log_level: LogLevel = "INFO"
    log_json: bool = True

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().upper()
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
