"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
on first access — a malformed value fails fast with a clear error message.

Usage:
    from p2p_escrow.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the P2P escrow."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_log_level: str = "DEBUG"

    # --- Database ---
    database_url: str = (
        "postgresql+asyncpg://p2p_escrow:p2p_escrow_dev"
        "@localhost:5432/p2p_escrow"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Escrow Defaults ---
    # Seconds after deposit before the seller may reclaim; None disables the timeout.
    escrow_payment_window_seconds: float | None = Field(default=None, gt=0)

    # --- Simulation ---
    simulation_verification_fee: int = Field(default=1, gt=0)
    simulation_deposit: int = Field(default=100, gt=0)
    simulation_starting_balance: int = Field(default=1_000, gt=0)

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
