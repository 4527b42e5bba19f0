"""Pytest configuration and fixtures."""

from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from onchain_rewards.config import BonusSettings
from onchain_rewards.storage.database import DatabaseManager


class FakeClock:
    """Settable clock for services that take a ``clock`` callable."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
async def db(tmp_path) -> AsyncIterator[DatabaseManager]:
    """File-backed SQLite database with the full schema."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'rewards.db'}")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 12, 0, tzinfo=UTC))


@pytest.fixture
def bonus_settings() -> BonusSettings:
    """Sequential, no-delay bonus settings for deterministic SQLite runs."""
    return BonusSettings(
        BONUS_CONCURRENCY=1,
        BONUS_PAGE_SIZE=2,
        BONUS_RETRY_BASE_DELAY_SECONDS=0.0,
    )


@pytest.fixture
def fake_redis() -> AsyncMock:
    """Dict-backed stand-in for redis.asyncio.Redis get/set."""
    store: dict[str, str] = {}

    async def _get(key: str) -> str | None:
        return store.get(key)

    async def _set(key: str, value: str, ex: int | None = None) -> bool:
        store[key] = value
        return True

    redis = AsyncMock()
    redis.get = AsyncMock(side_effect=_get)
    redis.set = AsyncMock(side_effect=_set)
    redis.store = store
    return redis


@pytest.fixture
def alice() -> str:
    return "0x" + "a" * 40


@pytest.fixture
def bob() -> str:
    return "0x" + "b" * 40


@pytest.fixture
def carol() -> str:
    return "0x" + "c" * 40
