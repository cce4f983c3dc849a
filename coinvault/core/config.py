"""
Application configuration.

Loads settings from environment variables and .env file.
All configuration is centralized here: fee rates, simulator cadence,
database location and price feed options.
"""

from decimal import Decimal
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment.

    Attributes:
        project_name: Display name for the API.
        version: Current API version string.
        debug: Enable debug mode. Must be False in production.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        rate_limit_enabled: Toggle slowapi limits (disabled in tests).
        rate_limit_default: Default rate limit for all endpoints.
        rate_limit_heavy: Rate limit for money-moving submissions.
        database_url: SQLAlchemy URL of the ledger database.
        admin_api_key: Shared secret expected in the X-Admin-Key header.
            Admin routes answer 503 while it is unset.
        withdrawal_fee_rate: Fraction of the withdrawal amount charged as fee.
        growth_policy: Which growth policy the scheduled growth job uses.
        tick_growth_rate: Compounding multiplier of the per-account tick.
        trading_days: APScheduler day_of_week expression for the growth gate.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    project_name: str = "CoinVault"
    version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    rate_limit_enabled: bool = True
    rate_limit_default: str = "60/minute"
    rate_limit_heavy: str = "10/minute"

    database_url: str = "sqlite:///./coinvault.db"
    database_echo: bool = False
    admin_api_key: Optional[str] = None

    # Withdrawals
    withdrawal_fee_rate: Decimal = Decimal("0.30")
    fee_currency: str = "USDT"

    # Growth simulator
    growth_policy: Literal["random_boost", "fixed_rate"] = "random_boost"
    growth_boost_min_percent: Decimal = Decimal("0.5")
    growth_boost_max_percent: Decimal = Decimal("2.5")
    growth_fixed_rate: Decimal = Decimal("0.0222")
    trading_days: str = "mon-fri"
    trading_timezone: str = "UTC"

    # Per-account tick simulator
    tick_growth_rate: Decimal = Decimal("0.095")
    tick_interval_minutes: int = 60
    tick_poll_seconds: int = 60
    tick_batch_limit: int = 200
    first_deposit_start_delay_minutes: int = 5

    # Trade retention
    trade_retention_hours: int = 48
    trade_purge_interval_hours: int = 6

    scheduler_enabled: bool = True

    # Price oracle
    price_feed_enabled: bool = False
    price_cache_ttl_seconds: float = 300.0
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    price_fetch_timeout_seconds: float = 10.0

    # Realtime
    stream_queue_size: int = 100


settings = Settings()
