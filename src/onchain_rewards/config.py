"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
rewards ledger, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

_ASYNC_DATABASE_PREFIXES = (
    "postgresql://",
    "postgresql+asyncpg://",
    "sqlite+aiosqlite://",
)


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL (asyncpg) or SQLite (aiosqlite) connection string",
    )
    pool_size: int = Field(
        default=5,
        alias="DATABASE_POOL_SIZE",
        ge=1,
        le=200,
        description="Connection pool size",
    )
    max_overflow: int = Field(
        default=10,
        alias="DATABASE_MAX_OVERFLOW",
        ge=0,
        le=200,
        description="Maximum overflow connections above pool_size",
    )
    echo: bool = Field(
        default=False,
        alias="DATABASE_ECHO",
        description="Echo SQL statements for debugging",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(_ASYNC_DATABASE_PREFIXES):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings (leaderboard snapshot cache)."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string; leaderboard is served live when unset",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class ScoringSettings(BaseSettings):
    """Per-transaction point scoring."""

    model_config = SettingsConfigDict(env_prefix="SCORING_", extra="ignore")

    base_points_per_trade: int = Field(
        default=5,
        alias="SCORING_BASE_POINTS_PER_TRADE",
        ge=1,
        le=1_000,
        description="Scaling factor for the square-root trade points model",
    )
    minting_multiplier: int = Field(
        default=3,
        alias="SCORING_MINTING_MULTIPLIER",
        ge=1,
        le=100,
        description="Points multiplier for users holding the minted NFT",
    )
    max_points_per_trade: int = Field(
        default=1_000,
        alias="SCORING_MAX_POINTS_PER_TRADE",
        ge=1,
        le=1_000_000,
        description="Hard cap on points for a single buy/sell",
    )
    base_transaction_points: int = Field(
        default=1,
        alias="SCORING_BASE_TRANSACTION_POINTS",
        ge=1,
        le=1_000,
        description="Fixed points for a base-chain transaction",
    )


class BonusSettings(BaseSettings):
    """Daily holding bonus distribution settings."""

    model_config = SettingsConfigDict(env_prefix="BONUS_", extra="ignore")

    base_points: int = Field(
        default=10,
        alias="BONUS_BASE_POINTS",
        ge=1,
        le=100_000,
        description="Bonus points on the first day of a streak",
    )
    step_points: int = Field(
        default=5,
        alias="BONUS_STEP_POINTS",
        ge=0,
        le=100_000,
        description="Additional bonus points per consecutive streak day",
    )
    max_points: int = Field(
        default=100,
        alias="BONUS_MAX_POINTS",
        ge=1,
        le=1_000_000,
        description="Cap on the daily bonus points",
    )
    tokens_per_day: Decimal = Field(
        default=Decimal("1"),
        alias="BONUS_TOKENS_PER_DAY",
        description="Token bonus per streak day",
    )
    token_cap_days: int = Field(
        default=7,
        alias="BONUS_TOKEN_CAP_DAYS",
        ge=1,
        le=3650,
        description="Streak length after which the token bonus stops growing",
    )
    min_token_balance: Decimal = Field(
        default=Decimal("0"),
        alias="BONUS_MIN_TOKEN_BALANCE",
        description="Minimum token balance for a profile to be eligible",
    )
    page_size: int = Field(
        default=500,
        alias="BONUS_PAGE_SIZE",
        ge=1,
        le=50_000,
        description="Profiles fetched per enumeration page",
    )
    concurrency: int = Field(
        default=8,
        alias="BONUS_CONCURRENCY",
        ge=1,
        le=256,
        description="Maximum users processed concurrently",
    )
    max_retries: int = Field(
        default=3,
        alias="BONUS_MAX_RETRIES",
        ge=0,
        le=10,
        description="Retries for transient store errors per user",
    )
    retry_base_delay_seconds: float = Field(
        default=0.5,
        alias="BONUS_RETRY_BASE_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Base delay for exponential backoff between retries",
    )
    timeout_seconds: float | None = Field(
        default=None,
        alias="BONUS_TIMEOUT_SECONDS",
        gt=0.0,
        description="Stop enumerating new users after this many seconds",
    )

    @field_validator("tokens_per_day", "min_token_balance")
    @classmethod
    def validate_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("token amounts must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_curve(self) -> BonusSettings:
        if self.max_points < self.base_points:
            raise ValueError("BONUS_MAX_POINTS must be >= BONUS_BASE_POINTS")
        return self


class LeaderboardSettings(BaseSettings):
    """Leaderboard projection settings."""

    model_config = SettingsConfigDict(env_prefix="LEADERBOARD_", extra="ignore")

    staleness_seconds: int = Field(
        default=300,
        alias="LEADERBOARD_STALENESS_SECONDS",
        ge=1,
        le=86_400,
        description="Maximum age of a cached leaderboard snapshot",
    )
    cache_size: int = Field(
        default=100,
        alias="LEADERBOARD_CACHE_SIZE",
        ge=1,
        le=10_000,
        description="Entries kept in the cached snapshot",
    )
    key_prefix: str = Field(
        default="rewards:leaderboard:",
        alias="LEADERBOARD_KEY_PREFIX",
        description="Redis key prefix for the snapshot",
    )
    default_top_n: int = Field(
        default=10,
        alias="LEADERBOARD_DEFAULT_TOP_N",
        ge=1,
        le=10_000,
        description="Default number of entries for leaderboard views",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from onchain_rewards.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.bonus.max_points)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scoring: ScoringSettings = Field(
        default_factory=lambda: ScoringSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    bonus: BonusSettings = Field(
        default_factory=lambda: BonusSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    leaderboard: LeaderboardSettings = Field(
        default_factory=lambda: LeaderboardSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    evaluate_achievements_on_record: bool = Field(
        default=True,
        alias="EVALUATE_ACHIEVEMENTS_ON_RECORD",
        description="Run the achievement evaluator after each recorded transaction",
    )
    platform_token_supply: Decimal = Field(
        default=Decimal("1000000"),
        alias="PLATFORM_TOKEN_SUPPLY",
        description="Total token supply reported in platform stats",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "scoring": {
                "base_points_per_trade": str(self.scoring.base_points_per_trade),
                "minting_multiplier": str(self.scoring.minting_multiplier),
                "max_points_per_trade": str(self.scoring.max_points_per_trade),
                "base_transaction_points": str(self.scoring.base_transaction_points),
            },
            "bonus": {
                "base_points": str(self.bonus.base_points),
                "step_points": str(self.bonus.step_points),
                "max_points": str(self.bonus.max_points),
                "tokens_per_day": str(self.bonus.tokens_per_day),
                "concurrency": str(self.bonus.concurrency),
                "max_retries": str(self.bonus.max_retries),
            },
            "leaderboard": {
                "staleness_seconds": str(self.leaderboard.staleness_seconds),
                "cache_size": str(self.leaderboard.cache_size),
            },
            "log_level": self.log_level,
            "evaluate_achievements_on_record": str(self.evaluate_achievements_on_record),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (tests and reloads)."""
    get_settings.cache_clear()
