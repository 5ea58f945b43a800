"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup. If a setting has the wrong type, the app fails fast with a
clear error message.

Usage:
    from trade_engine.config import get_settings
    settings = get_settings()
    print(settings.trade_negotiation_window_seconds)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the trade negotiation engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (inventory ledger) ---
    database_url: str = (
        "postgresql+asyncpg://trades:trades_dev"
        "@localhost:5432/trade_engine"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis (duplicate-invitation index) ---
    redis_url: str = "redis://localhost:6379/0"
    pair_index_backend: Literal["memory", "redis"] = "memory"
    pair_index_ttl_seconds: int = 3600  # safety net if a process dies mid-trade

    # --- Trade Windows ---
    trade_invitation_window_seconds: float = Field(default=15.0, gt=0)
    trade_negotiation_window_seconds: float = Field(default=120.0, gt=0)
    trade_acceptance_window_seconds: float = Field(default=120.0, gt=0)
    trade_commit_timeout_seconds: float = Field(default=10.0, gt=0)
    trade_closed_history_size: int = Field(default=1000, ge=0)
    trade_one_active_per_user: bool = True

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
