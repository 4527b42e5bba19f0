"""Tests for the leaderboard ranker."""

import json

import pytest

from onchain_rewards.config import LeaderboardSettings
from onchain_rewards.errors import NotFoundError, ValidationError
from onchain_rewards.ledger.leaderboard import LeaderboardRanker
from onchain_rewards.ledger.ledger import TransactionLedger
from onchain_rewards.storage.repos import UserProfileRepository


@pytest.fixture
def ledger(db, clock) -> TransactionLedger:
    return TransactionLedger(db, clock=clock)


@pytest.fixture
def ranker(db, clock) -> LeaderboardRanker:
    return LeaderboardRanker(db, clock=clock)


@pytest.fixture
async def populated(ledger, clock, alice, bob, carol) -> None:
    """carol 50 points; alice and bob tied on 20, alice joined first."""
    await ledger.record_transaction(alice, "buy", 16)
    clock.advance(minutes=1)
    await ledger.record_transaction(bob, "buy", 16)
    clock.advance(minutes=1)
    await ledger.record_transaction(carol, "buy", 100)


class TestLiveRanking:
    @pytest.mark.asyncio
    async def test_ordering_and_tie_break(self, ranker, populated, alice, bob, carol) -> None:
        entries = await ranker.top_n(10)

        assert [e.user_address for e in entries] == [carol, alice, bob]
        assert [e.rank for e in entries] == [1, 2, 3]
        assert [e.points for e in entries] == [50, 20, 20]
        assert entries[0].tier == "Bronze"
        assert entries[0].transactions == 1

    @pytest.mark.asyncio
    async def test_length_bounded(self, ranker, populated) -> None:
        assert len(await ranker.top_n(2)) == 2
        assert len(await ranker.top_n(100)) == 3

    @pytest.mark.asyncio
    async def test_default_size(self, db, populated) -> None:
        ranker = LeaderboardRanker(db, settings=LeaderboardSettings(LEADERBOARD_DEFAULT_TOP_N=1))
        assert len(await ranker.top_n()) == 1

    @pytest.mark.asyncio
    async def test_invalid_n(self, ranker) -> None:
        with pytest.raises(ValidationError):
            await ranker.top_n(0)

    @pytest.mark.asyncio
    async def test_empty(self, ranker) -> None:
        assert await ranker.top_n(5) == []

    @pytest.mark.asyncio
    async def test_rank_of(self, ranker, populated, alice, bob, carol) -> None:
        assert await ranker.rank_of(carol) == 1
        assert await ranker.rank_of(alice) == 2
        assert await ranker.rank_of(bob.upper().replace("0X", "0x")) == 3

    @pytest.mark.asyncio
    async def test_rank_of_unknown(self, ranker) -> None:
        with pytest.raises(NotFoundError):
            await ranker.rank_of("0x" + "9" * 40)

    @pytest.mark.asyncio
    async def test_ranks_follow_new_points(self, ledger, ranker, populated, bob) -> None:
        await ledger.record_transaction(bob, "buy", 10_000)
        assert await ranker.rank_of(bob) == 1


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_writes_current_rank(self, db, ranker, populated, alice, bob, carol) -> None:
        assert await ranker.refresh() == 3

        async with db.get_async_session() as session:
            repo = UserProfileRepository(session)
            ranks = {a: (await repo.get(a)).current_rank for a in (alice, bob, carol)}
        assert ranks == {carol: 1, alice: 2, bob: 3}

    @pytest.mark.asyncio
    async def test_refresh_on_empty_table(self, ranker) -> None:
        assert await ranker.refresh() == 0


class TestSnapshotCache:
    @pytest.fixture
    def cached_ranker(self, db, clock, fake_redis) -> LeaderboardRanker:
        settings = LeaderboardSettings(LEADERBOARD_STALENESS_SECONDS=60, LEADERBOARD_CACHE_SIZE=2)
        return LeaderboardRanker(db, redis=fake_redis, settings=settings, clock=clock)

    @pytest.mark.asyncio
    async def test_snapshot_served_within_staleness(
        self, ledger, cached_ranker, fake_redis, populated, alice, bob, carol
    ) -> None:
        first = await cached_ranker.top_n(2)
        assert [e.user_address for e in first] == [carol, alice]
        assert fake_redis.set.await_count == 1

        await ledger.record_transaction(bob, "buy", 10_000)
        cached = await cached_ranker.top_n(2)
        assert [(e.user_address, e.points) for e in cached] == [(carol, 50), (alice, 20)]
        assert fake_redis.set.await_count == 1
        assert await cached_ranker.snapshot_age() == 0

    @pytest.mark.asyncio
    async def test_stale_snapshot_recomputed(
        self, ledger, cached_ranker, clock, populated, bob
    ) -> None:
        await cached_ranker.top_n(2)
        await ledger.record_transaction(bob, "buy", 10_000)
        clock.advance(seconds=61)

        entries = await cached_ranker.top_n(2)
        assert entries[0].user_address == bob

    @pytest.mark.asyncio
    async def test_larger_than_cache_served_live(self, cached_ranker, fake_redis, populated) -> None:
        entries = await cached_ranker.top_n(3)
        assert len(entries) == 3
        assert fake_redis.set.await_count == 0

    @pytest.mark.asyncio
    async def test_refresh_rebuilds_snapshot(self, cached_ranker, fake_redis, populated, carol) -> None:
        await cached_ranker.refresh()
        payload = json.loads(fake_redis.store[cached_ranker.snapshot_key])
        assert payload["total_users"] == 3
        assert [e["user_address"] for e in payload["entries"]][0] == carol

    @pytest.mark.asyncio
    async def test_corrupt_snapshot_ignored(self, cached_ranker, fake_redis, populated, carol) -> None:
        fake_redis.store[cached_ranker.snapshot_key] = "{not json"
        entries = await cached_ranker.top_n(1)
        assert entries[0].user_address == carol

    @pytest.mark.asyncio
    async def test_no_snapshot_age_without_cache(self, ranker) -> None:
        assert await ranker.snapshot_age() is None
