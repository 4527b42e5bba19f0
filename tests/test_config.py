"""Tests for settings loading and validation."""

import logging
from decimal import Decimal

import pytest
from pydantic import ValidationError

from onchain_rewards.config import (
    BonusSettings,
    DatabaseSettings,
    LeaderboardSettings,
    RedisSettings,
    ScoringSettings,
    Settings,
    clear_settings_cache,
    get_settings,
)

SQLITE_URL = "sqlite+aiosqlite:///./rewards.db"


@pytest.fixture
def env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> pytest.MonkeyPatch:
    # Keep a developer's .env out of the picture.
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", SQLITE_URL)
    clear_settings_cache()
    yield monkeypatch
    clear_settings_cache()


class TestDatabaseSettings:
    def test_accepts_async_urls(self) -> None:
        for url in (SQLITE_URL, "postgresql://u:p@host/db", "postgresql+asyncpg://u:p@host/db"):
            assert DatabaseSettings(DATABASE_URL=url).url == url

    def test_rejects_other_schemes(self) -> None:
        with pytest.raises(ValidationError):
            DatabaseSettings(DATABASE_URL="mysql://host/db")


class TestRedisSettings:
    def test_optional(self, env: pytest.MonkeyPatch) -> None:
        env.delenv("REDIS_URL", raising=False)
        assert RedisSettings().url is None

    def test_rejects_non_redis_url(self) -> None:
        with pytest.raises(ValidationError):
            RedisSettings(REDIS_URL="http://localhost:6379")


class TestBonusSettings:
    def test_defaults(self, env: pytest.MonkeyPatch) -> None:
        settings = BonusSettings()
        assert settings.base_points == 10
        assert settings.step_points == 5
        assert settings.max_points == 100
        assert settings.tokens_per_day == Decimal("1")
        assert settings.min_token_balance == Decimal("0")
        assert settings.timeout_seconds is None

    def test_reads_environment(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("BONUS_CONCURRENCY", "3")
        env.setenv("BONUS_MIN_TOKEN_BALANCE", "2.5")
        settings = BonusSettings()
        assert settings.concurrency == 3
        assert settings.min_token_balance == Decimal("2.5")

    def test_cap_below_base_rejected(self) -> None:
        with pytest.raises(ValidationError):
            BonusSettings(BONUS_BASE_POINTS=50, BONUS_MAX_POINTS=10)

    def test_negative_tokens_rejected(self) -> None:
        with pytest.raises(ValidationError):
            BonusSettings(BONUS_TOKENS_PER_DAY="-1")


class TestSettings:
    def test_nested_groups_loaded(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("SCORING_MINTING_MULTIPLIER", "4")
        env.setenv("LEADERBOARD_CACHE_SIZE", "25")
        settings = Settings()
        assert settings.database.url == SQLITE_URL
        assert settings.scoring.minting_multiplier == 4
        assert settings.leaderboard.cache_size == 25
        assert settings.evaluate_achievements_on_record is True

    def test_logging_level(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("LOG_LEVEL", "DEBUG")
        assert Settings().get_logging_level() == logging.DEBUG

    def test_redacted_summary_hides_password(self, env: pytest.MonkeyPatch) -> None:
        env.setenv("DATABASE_URL", "postgresql+asyncpg://rewards:s3cret@db:5432/rewards")
        summary = Settings().redacted_summary()
        assert "s3cret" not in summary["database_url"]
        assert summary["database_url"] == "postgresql+asyncpg://rewards:***@db:5432/rewards"
        assert summary["redis_url"] == "(not set)"

    def test_get_settings_is_cached(self, env: pytest.MonkeyPatch) -> None:
        assert get_settings() is get_settings()

    def test_explicit_groups(self) -> None:
        settings = Settings(
            database=DatabaseSettings(DATABASE_URL=SQLITE_URL),
            redis=RedisSettings(REDIS_URL="redis://localhost:6379/0"),
            scoring=ScoringSettings(),
            bonus=BonusSettings(),
            leaderboard=LeaderboardSettings(),
        )
        assert settings.redis.url == "redis://localhost:6379/0"
