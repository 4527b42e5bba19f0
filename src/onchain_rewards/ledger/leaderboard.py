"""Leaderboard ranking over user profiles.

Ordering is total points descending, then earliest join date, then address,
so ranks are deterministic under ties. The Redis snapshot and the
``current_rank`` column are caches; both can be rebuilt from profiles at any
time with ``refresh``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from onchain_rewards.config import LeaderboardSettings
from onchain_rewards.errors import NotFoundError, ValidationError
from onchain_rewards.ledger.models import LeaderboardEntry
from onchain_rewards.storage.repos import UserProfileDTO, UserProfileRepository

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from onchain_rewards.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def to_entry(profile: UserProfileDTO, rank: int) -> LeaderboardEntry:
    return LeaderboardEntry(
        user_address=profile.address,
        points=profile.total_points,
        rank=rank,
        tier=profile.tier,
        transactions=profile.total_transactions,
        token_balance=profile.token_balance,
        join_date=profile.join_date,
        last_updated=profile.updated_at or profile.last_active,
    )


class LeaderboardRanker:
    """Serves ranked views of user profiles."""

    def __init__(
        self,
        db: DatabaseManager,
        *,
        redis: Redis | None = None,
        settings: LeaderboardSettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._redis = redis
        self._settings = settings or LeaderboardSettings()
        self._clock = clock

    @property
    def snapshot_key(self) -> str:
        return f"{self._settings.key_prefix}snapshot"

    async def top_n(self, n: int | None = None) -> list[LeaderboardEntry]:
        """Top ``n`` users by points.

        With Redis configured, a snapshot younger than the staleness bound is
        served when it holds enough entries; otherwise the view is computed
        live and, if it fits in the cache, a new snapshot is stored.
        """
        n = n if n is not None else self._settings.default_top_n
        if n < 1:
            raise ValidationError(f"n must be >= 1, got {n}")

        snapshot = await self._get_snapshot()
        if snapshot is not None:
            generated_at, total_users, entries = snapshot
            age = (self._clock() - generated_at).total_seconds()
            if age <= self._settings.staleness_seconds and (n <= len(entries) or len(entries) == total_users):
                return entries[:n]

        if self._redis is not None and n <= self._settings.cache_size:
            entries = await self._rebuild_snapshot()
            return entries[:n]
        return await self._live_top(n)

    async def _live_top(self, n: int) -> list[LeaderboardEntry]:
        async with self._db.get_async_session() as session:
            profiles = await UserProfileRepository(session).top_by_points(n)
        return [to_entry(p, rank) for rank, p in enumerate(profiles, start=1)]

    async def rank_of(self, address: str) -> int:
        """Live 1-based rank of one user; never reads the cached rank."""
        async with self._db.get_async_session() as session:
            rank = await UserProfileRepository(session).rank_of(address)
        if rank is None:
            raise NotFoundError(f"No profile for {address}")
        return rank

    async def refresh(self, *, now: datetime | None = None) -> int:
        """Rewrite every profile's current_rank and rebuild the snapshot.

        Returns:
            Number of ranked profiles.
        """
        now = now or self._clock()
        async with self._db.get_async_session() as session:
            repo = UserProfileRepository(session)
            addresses = await repo.ranked_addresses()
            ranked = await repo.set_ranks(
                ((address, rank) for rank, address in enumerate(addresses, start=1)), now=now
            )
        logger.info("Leaderboard ranks refreshed for %d profiles", ranked)

        if self._redis is not None:
            await self._rebuild_snapshot()
        return ranked

    async def snapshot_age(self) -> float | None:
        """Seconds since the cached snapshot was built, or None if there is none."""
        snapshot = await self._get_snapshot()
        if snapshot is None:
            return None
        return (self._clock() - snapshot[0]).total_seconds()

    async def _rebuild_snapshot(self) -> list[LeaderboardEntry]:
        async with self._db.get_async_session() as session:
            repo = UserProfileRepository(session)
            profiles = await repo.top_by_points(self._settings.cache_size)
            total_users = await repo.count()
        entries = [to_entry(p, rank) for rank, p in enumerate(profiles, start=1)]
        await self._store_snapshot(entries, total_users)
        return entries

    async def _get_snapshot(self) -> tuple[datetime, int, list[LeaderboardEntry]] | None:
        if not self._redis:
            return None
        try:
            cached = await self._redis.get(self.snapshot_key)
            if cached is None:
                return None
            data = json.loads(cached if isinstance(cached, str) else cached.decode())
            return (
                datetime.fromisoformat(data["generated_at"]),
                int(data["total_users"]),
                [LeaderboardEntry.from_dict(e) for e in data["entries"]],
            )
        except Exception as e:
            logger.warning("Failed to read leaderboard snapshot: %s", e)
            return None

    async def _store_snapshot(self, entries: list[LeaderboardEntry], total_users: int) -> None:
        if not self._redis:
            return
        try:
            payload = {
                "generated_at": self._clock().isoformat(),
                "total_users": total_users,
                "entries": [e.to_dict() for e in entries],
            }
            await self._redis.set(
                self.snapshot_key,
                json.dumps(payload),
                ex=self._settings.staleness_seconds * 2,
            )
        except Exception as e:
            logger.warning("Failed to cache leaderboard snapshot: %s", e)
