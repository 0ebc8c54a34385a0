"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly. This ensures:
1. Type validation at startup
2. Centralized configuration
3. Documentation of available settings
4. Proper defaults
"""

from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Stock ledger settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database - defaults to a local SQLite file, override via env for PostgreSQL
    database_url: str = "sqlite:///./data/stock_ledger.db"

    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # ==========================================================================
    # Atomic unit / concurrency
    # ==========================================================================
    stock_lock_timeout_ms: int = 5000  # PostgreSQL lock_timeout per atomic unit
    stock_retry_attempts: int = 3
    stock_retry_backoff_seconds: float = 0.1

    # ==========================================================================
    # Analytics defaults
    # ==========================================================================
    expiring_soon_days: int = 7
    reorder_lookback_days: int = 30
    reorder_min_days_of_stock: int = 7
    reorder_supply_days: int = 14
    transaction_history_limit: int = 100

    # Quantities and costs are stored with this many decimal places
    quantity_decimal_places: int = 4

    @field_validator(
        "stock_lock_timeout_ms",
        "stock_retry_attempts",
        "expiring_soon_days",
        "reorder_lookback_days",
        "reorder_supply_days",
        "transaction_history_limit",
    )
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v

    @field_validator("quantity_decimal_places")
    @classmethod
    def validate_decimal_places(cls, v: int) -> int:
        if not 0 <= v <= 6:
            raise ValueError("quantity_decimal_places must be between 0 and 6")
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
