"""Tests for platform stats and milestones."""

from decimal import Decimal

import pytest

from onchain_rewards.errors import ValidationError
from onchain_rewards.ledger.ledger import TransactionLedger
from onchain_rewards.ledger.stats import MilestoneType, PlatformStatsService


@pytest.fixture
def service(db, clock) -> PlatformStatsService:
    return PlatformStatsService(db, token_supply=Decimal("500000"), clock=clock)


@pytest.fixture
async def activity(db, clock, alice, bob) -> None:
    ledger = TransactionLedger(db, clock=clock)
    await ledger.record_transaction(alice, "buy", 100)
    await ledger.record_transaction(bob, "buy", 16)
    await ledger.record_transaction(bob, "sell", 10)


class TestRecalculate:
    @pytest.mark.asyncio
    async def test_aggregates(self, service, activity, clock) -> None:
        stats = await service.recalculate()

        assert stats.total_users == 2
        assert stats.total_transactions == 3
        # 50 + 20 + 15
        assert stats.total_points == 85
        assert stats.token_circulating == Decimal("106")
        assert stats.token_supply == Decimal("500000")
        assert stats.last_updated == clock.now

        stored = await service.get_stats()
        assert stored == stats

    @pytest.mark.asyncio
    async def test_empty_platform(self, service) -> None:
        assert await service.get_stats() is None
        stats = await service.recalculate()
        assert stats.total_users == 0
        assert stats.total_points == 0

    @pytest.mark.asyncio
    async def test_recalculate_overwrites(self, db, service, activity, clock, alice) -> None:
        await service.recalculate()
        await TransactionLedger(db, clock=clock).record_transaction(alice, "base_transaction", 1)
        clock.advance(hours=1)

        stats = await service.recalculate()
        assert stats.total_transactions == 4
        assert (await service.get_stats()).last_updated == clock.now


class TestMilestones:
    @pytest.mark.asyncio
    async def test_progress_and_completion(self, service, activity) -> None:
        await service.create_milestone("Two users", MilestoneType.USERS, 2)
        await service.create_milestone("Three trades", "transactions", 3)
        await service.create_milestone("Big points", MilestoneType.POINTS, 1000)

        await service.recalculate()

        milestones = {m.name: m for m in await service.list_milestones()}
        assert milestones["Two users"].completed
        assert milestones["Two users"].current == 2
        assert milestones["Three trades"].completed
        assert not milestones["Big points"].completed
        assert milestones["Big points"].current == 85

    @pytest.mark.parametrize(("kind", "target"), [("volume", 10), ("users", 0), ("points", -5)])
    @pytest.mark.asyncio
    async def test_invalid_milestone(self, service, kind, target) -> None:
        with pytest.raises(ValidationError):
            await service.create_milestone("bad", kind, target)
        assert await service.list_milestones() == []
