"""Tests for storage repositories."""

import uuid
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest

from onchain_rewards.errors import NotFoundError
from onchain_rewards.ledger.models import (
    Rarity,
    RequirementType,
    StreakBonusMetadata,
    TradeMetadata,
    TransactionType,
)
from onchain_rewards.ledger.tiers import DEFAULT_TIER_TABLE
from onchain_rewards.storage.repos import (
    AchievementDTO,
    AchievementRepository,
    TransactionDTO,
    TransactionRepository,
    UserAchievementRepository,
    UserProfileRepository,
    normalize_address,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
async def session(db):
    """One unit of work, committed when the test finishes."""
    async with db.get_async_session() as session:
        yield session


def make_tx(
    address: str,
    tx_type: TransactionType = TransactionType.BUY,
    *,
    points: int = 5,
    amount: str = "1",
    timestamp: datetime = NOW,
    tx_hash: str | None = None,
    bonus_day: date | None = None,
) -> TransactionDTO:
    return TransactionDTO(
        id=str(uuid.uuid4()),
        user_address=address,
        type=tx_type,
        amount=Decimal(amount),
        points=points,
        timestamp=timestamp,
        tx_hash=tx_hash,
        bonus_day=bonus_day,
    )


# ============================================================================
# UserProfileRepository Tests
# ============================================================================


class TestUserProfileRepository:
    def test_normalize_address(self) -> None:
        assert normalize_address("  0xABC ") == "0xabc"

    @pytest.mark.asyncio
    async def test_create_if_absent(self, session, alice) -> None:
        repo = UserProfileRepository(session)
        assert await repo.create_if_absent(alice.upper().replace("0X", "0x"), tier="Bronze", now=NOW)
        assert not await repo.create_if_absent(alice, tier="Bronze", now=NOW)

        profile = await repo.get(alice)
        assert profile.address == alice
        assert profile.total_points == 0
        assert profile.token_balance == Decimal("0")
        assert profile.achievement_ids == []
        assert profile.join_date == NOW
        assert profile.last_holding_bonus_date is None

    @pytest.mark.asyncio
    async def test_require_missing(self, session, alice) -> None:
        with pytest.raises(NotFoundError):
            await UserProfileRepository(session).require(alice)

    @pytest.mark.asyncio
    async def test_increment_totals(self, session, alice) -> None:
        repo = UserProfileRepository(session)
        await repo.create_if_absent(alice, tier="Bronze", now=NOW)

        later = NOW + timedelta(hours=1)
        total = await repo.increment_totals(
            alice, now=later, points=30, transactions=1, token_delta=Decimal("10"), earned_delta=Decimal("10")
        )
        assert total == 30
        total = await repo.increment_totals(alice, now=later, points=5, token_delta=Decimal("-25"))
        assert total == 35

        profile = await repo.get(alice)
        assert profile.token_balance == Decimal("0")
        assert profile.tokens_earned == Decimal("10")
        assert profile.total_transactions == 1
        assert profile.last_active == later

    @pytest.mark.asyncio
    async def test_increment_without_touching_activity(self, session, alice) -> None:
        repo = UserProfileRepository(session)
        await repo.create_if_absent(alice, tier="Bronze", now=NOW)
        await repo.increment_totals(alice, now=NOW + timedelta(days=1), points=1, touch_active=False)
        assert (await repo.get(alice)).last_active == NOW

    @pytest.mark.asyncio
    async def test_increment_missing_profile(self, session, alice) -> None:
        with pytest.raises(NotFoundError):
            await UserProfileRepository(session).increment_totals(alice, now=NOW, points=1)

    @pytest.mark.asyncio
    async def test_apply_tier(self, session, alice) -> None:
        repo = UserProfileRepository(session)
        await repo.create_if_absent(alice, tier="Bronze", now=NOW)
        assert await repo.apply_tier(alice, 25_000, DEFAULT_TIER_TABLE, now=NOW) == "Platinum"
        assert (await repo.get(alice)).tier == "Platinum"

    @pytest.mark.asyncio
    async def test_streak_and_flags(self, session, alice) -> None:
        repo = UserProfileRepository(session)
        await repo.create_if_absent(alice, tier="Bronze", now=NOW)
        await repo.set_streak(alice, streak=4, bonus_day=date(2026, 3, 2), now=NOW)
        await repo.set_minted(alice, now=NOW)
        await repo.set_achievement_ids(alice, ["first-trade"], now=NOW)
        assert await repo.increment_referrals(alice, now=NOW) == 1

        profile = await repo.get(alice)
        assert profile.weekly_streak == 4
        assert profile.last_holding_bonus_date == date(2026, 3, 2)
        assert profile.has_minted
        assert profile.achievement_ids == ["first-trade"]
        assert profile.referrals == 1

    @pytest.mark.asyncio
    async def test_list_page_keyset(self, session, alice, bob, carol) -> None:
        repo = UserProfileRepository(session)
        for address in (carol, alice, bob):
            await repo.create_if_absent(address, tier="Bronze", now=NOW)
        await repo.increment_totals(bob, now=NOW, token_delta=Decimal("5"))

        first = await repo.list_page(after=None, limit=2)
        second = await repo.list_page(after=first[-1].address, limit=2)
        assert [p.address for p in first] == [alice, bob]
        assert [p.address for p in second] == [carol]
        assert await repo.list_page(after=carol, limit=2) == []

        eligible = await repo.list_page(after=None, limit=10, min_token_balance=Decimal("5"))
        assert [p.address for p in eligible] == [bob]

    @pytest.mark.asyncio
    async def test_ranking_and_ranks(self, session, alice, bob, carol) -> None:
        repo = UserProfileRepository(session)
        await repo.create_if_absent(carol, tier="Bronze", now=NOW)
        await repo.create_if_absent(bob, tier="Bronze", now=NOW)
        await repo.create_if_absent(alice, tier="Bronze", now=NOW + timedelta(minutes=1))
        await repo.increment_totals(alice, now=NOW, points=10)
        await repo.increment_totals(bob, now=NOW, points=10)

        # bob and alice tie on points; bob joined first. carol has 0.
        assert await repo.ranked_addresses() == [bob, alice, carol]
        assert [p.address for p in await repo.top_by_points(2)] == [bob, alice]
        assert await repo.rank_of(alice) == 2
        assert await repo.rank_of("0x" + "9" * 40) is None

        assert await repo.set_ranks([(bob, 1), (alice, 2), (carol, 3)], now=NOW) == 3
        assert await repo.set_ranks([], now=NOW) == 0
        assert (await repo.get(carol)).current_rank == 3

    @pytest.mark.asyncio
    async def test_aggregate(self, session, alice, bob) -> None:
        repo = UserProfileRepository(session)
        assert await repo.aggregate() == (0, 0, Decimal("0"))

        for address in (alice, bob):
            await repo.create_if_absent(address, tier="Bronze", now=NOW)
            await repo.increment_totals(address, now=NOW, points=7, token_delta=Decimal("2.5"))

        assert await repo.count() == 2
        assert await repo.aggregate() == (2, 14, Decimal("5"))


# ============================================================================
# TransactionRepository Tests
# ============================================================================


class TestTransactionRepository:
    @pytest.mark.asyncio
    async def test_append_and_get(self, session, alice) -> None:
        repo = TransactionRepository(session)
        tx = make_tx(alice, tx_hash="0x" + "AB" * 32)
        tx.metadata = TradeMetadata(contract_address="0xtoken", has_minted=True)

        assert await repo.append(tx)

        stored = await repo.get(tx.id)
        assert stored.tx_hash == "0x" + "ab" * 32
        assert stored.metadata == TradeMetadata(contract_address="0xtoken", has_minted=True)
        assert (await repo.get_by_hash("0x" + "Ab" * 32)).id == tx.id

    @pytest.mark.asyncio
    async def test_duplicate_hash_ignored(self, session, alice) -> None:
        repo = TransactionRepository(session)
        tx_hash = "0x" + "1" * 64
        assert await repo.append(make_tx(alice, tx_hash=tx_hash))
        assert not await repo.append(make_tx(alice, tx_hash=tx_hash))
        assert await repo.count_all() == 1

    @pytest.mark.asyncio
    async def test_one_bonus_marker_per_day(self, session, alice, bob) -> None:
        repo = TransactionRepository(session)
        day = date(2026, 3, 2)

        def bonus(address: str, bonus_day: date) -> TransactionDTO:
            tx = make_tx(address, TransactionType.STREAK_BONUS, bonus_day=bonus_day)
            tx.metadata = StreakBonusMetadata(streak=1, token_bonus=Decimal("1"))
            return tx

        assert await repo.append(bonus(alice, day))
        assert not await repo.append(bonus(alice, day))
        assert await repo.append(bonus(bob, day))
        assert await repo.append(bonus(alice, day + timedelta(days=1)))

        marker = await repo.get_bonus_for_day(alice, day)
        assert marker.type == TransactionType.STREAK_BONUS
        assert marker.metadata.streak == 1
        assert await repo.get_bonus_for_day(alice, day - timedelta(days=1)) is None

    @pytest.mark.asyncio
    async def test_listing_and_sums(self, session, alice, bob) -> None:
        repo = TransactionRepository(session)
        old = make_tx(alice, points=3, amount="4", timestamp=NOW - timedelta(days=10))
        new = make_tx(alice, TransactionType.SELL, points=7, amount="6", timestamp=NOW)
        base = make_tx(alice, TransactionType.BASE_TRANSACTION, points=1, timestamp=NOW - timedelta(hours=1))
        other = make_tx(bob, points=100, timestamp=NOW)
        for tx in (old, new, base, other):
            await repo.append(tx)

        assert [t.id for t in await repo.list_for_user(alice)] == [new.id, base.id, old.id]
        assert len(await repo.list_for_user(alice, limit=1)) == 1
        assert len(await repo.list_recent(limit=10)) == 4

        assert await repo.sum_points(alice) == 11
        since = NOW - timedelta(days=1)
        assert await repo.sum_points_since(alice, since=since) == 8
        assert await repo.count_since(alice, since=since, types=[TransactionType.BUY, TransactionType.SELL]) == 1
        assert await repo.trade_totals(alice) == (2, Decimal("10"))
        assert await repo.trade_totals(alice, since=since) == (1, Decimal("6"))


# ============================================================================
# Achievement repositories
# ============================================================================


class TestAchievementRepositories:
    @pytest.fixture
    def definition(self) -> AchievementDTO:
        return AchievementDTO(
            id="first-trade",
            name="First Trade",
            description="Complete a trade",
            rarity=Rarity.COMMON,
            requirement_type=RequirementType.TRANSACTIONS,
            requirement_value=1,
            points_reward=10,
        )

    @pytest.mark.asyncio
    async def test_upsert_updates_definition(self, session, definition) -> None:
        repo = AchievementRepository(session)
        await repo.upsert(definition)
        definition.points_reward = 20
        await repo.upsert(definition)

        stored = await repo.get("first-trade")
        assert stored.points_reward == 20
        assert [a.id for a in await repo.list_active()] == ["first-trade"]

        await repo.set_active("first-trade", False)
        assert await repo.list_active() == []

    @pytest.mark.asyncio
    async def test_set_active_unknown(self, session) -> None:
        with pytest.raises(NotFoundError):
            await AchievementRepository(session).set_active("missing", True)

    @pytest.mark.asyncio
    async def test_unlock_once(self, session, definition, alice) -> None:
        await AchievementRepository(session).upsert(definition)
        repo = UserAchievementRepository(session)

        assert await repo.insert_if_absent(alice, "first-trade", now=NOW, progress=1)
        assert not await repo.insert_if_absent(alice, "first-trade", now=NOW + timedelta(hours=1))

        unlocks = await repo.list_for_user(alice)
        assert len(unlocks) == 1
        assert unlocks[0].unlocked_at == NOW
        assert await repo.ids_for_user(alice) == ["first-trade"]
