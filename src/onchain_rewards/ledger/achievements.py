"""Achievement catalog and evaluator.

An achievement is unlocked at most once per user. The unlock record, the
reward transaction and the point increment are written in one database
transaction, and the insert-if-absent on ``user_achievements`` guards against
double rewards when two evaluations race.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta
from decimal import Decimal

from onchain_rewards.errors import ConfigurationError, NotFoundError
from onchain_rewards.ledger.models import (
    USER_ACTIVITY_TYPES,
    AchievementRewardMetadata,
    Rarity,
    RequirementType,
    Timeframe,
    TransactionType,
)
from onchain_rewards.ledger.tiers import DEFAULT_TIER_TABLE, TierTable
from onchain_rewards.storage.database import DatabaseManager
from onchain_rewards.storage.repos import (
    AchievementDTO,
    AchievementRepository,
    TransactionDTO,
    TransactionRepository,
    UserAchievementRepository,
    UserProfileDTO,
    UserProfileRepository,
    normalize_address,
)

logger = logging.getLogger(__name__)

DEFAULT_ACHIEVEMENTS: tuple[AchievementDTO, ...] = (
    AchievementDTO(
        id="first-trade",
        name="First Trade",
        description="Complete your first transaction",
        icon="🎯",
        rarity=Rarity.COMMON,
        requirement_type=RequirementType.TRANSACTIONS,
        requirement_value=1,
        points_reward=10,
    ),
    AchievementDTO(
        id="active-trader",
        name="Active Trader",
        description="Complete 10 transactions in one day",
        icon="⚡",
        rarity=Rarity.RARE,
        requirement_type=RequirementType.TRANSACTIONS,
        requirement_value=10,
        timeframe=Timeframe.DAILY,
        points_reward=50,
    ),
    AchievementDTO(
        id="hodl-master",
        name="HODL Master",
        description="Hold tokens for 30 consecutive days",
        icon="💎",
        rarity=Rarity.EPIC,
        requirement_type=RequirementType.STREAK,
        requirement_value=30,
        points_reward=200,
    ),
    AchievementDTO(
        id="high-roller",
        name="High Roller",
        description="Hold a balance of more than 1000 tokens",
        icon="💰",
        rarity=Rarity.RARE,
        requirement_type=RequirementType.BALANCE,
        requirement_value=1000,
        points_reward=100,
    ),
    AchievementDTO(
        id="point-collector",
        name="Point Collector",
        description="Earn 1000 total points",
        icon="🏆",
        rarity=Rarity.EPIC,
        requirement_type=RequirementType.POINTS,
        requirement_value=1000,
        points_reward=150,
    ),
    AchievementDTO(
        id="tier-climber",
        name="Tier Climber",
        description="Reach Silver tier",
        icon="🥈",
        rarity=Rarity.COMMON,
        requirement_type=RequirementType.POINTS,
        requirement_value=1000,
        points_reward=25,
    ),
    AchievementDTO(
        id="golden-trader",
        name="Golden Trader",
        description="Reach Gold tier",
        icon="🥇",
        rarity=Rarity.RARE,
        requirement_type=RequirementType.POINTS,
        requirement_value=5000,
        points_reward=100,
    ),
    AchievementDTO(
        id="diamond-hands",
        name="Diamond Hands",
        description="Reach Diamond tier",
        icon="💎",
        rarity=Rarity.LEGENDARY,
        requirement_type=RequirementType.POINTS,
        requirement_value=50000,
        points_reward=500,
    ),
    AchievementDTO(
        id="streak-master",
        name="Streak Master",
        description="Maintain a 7-day holding streak",
        icon="🔥",
        rarity=Rarity.RARE,
        requirement_type=RequirementType.STREAK,
        requirement_value=7,
        points_reward=75,
    ),
    AchievementDTO(
        id="volume-trader",
        name="Volume Trader",
        description="Trade 1000 tokens in total volume",
        icon="📈",
        rarity=Rarity.EPIC,
        requirement_type=RequirementType.VOLUME,
        requirement_value=1000,
        points_reward=200,
    ),
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def validate_achievement(achievement: AchievementDTO) -> None:
    """Reject definitions that could never be evaluated sensibly."""
    if not achievement.id:
        raise ConfigurationError("Achievement id is required")
    if achievement.requirement_value <= 0:
        raise ConfigurationError(
            f"Achievement {achievement.id!r} threshold must be positive, got {achievement.requirement_value}"
        )
    if achievement.points_reward < 0:
        raise ConfigurationError(
            f"Achievement {achievement.id!r} reward must be non-negative, got {achievement.points_reward}"
        )


def window_start(timeframe: Timeframe, now: datetime) -> datetime | None:
    """Start of the evaluation window, or None for all-time counters."""
    now = now.astimezone(UTC)
    if timeframe == Timeframe.DAILY:
        return datetime.combine(now.date(), time.min, tzinfo=UTC)
    if timeframe == Timeframe.WEEKLY:
        return now - timedelta(days=7)
    if timeframe == Timeframe.MONTHLY:
        return now - timedelta(days=30)
    return None


async def seed_default_achievements(
    db: DatabaseManager,
    achievements: Iterable[AchievementDTO] = DEFAULT_ACHIEVEMENTS,
    *,
    now: datetime | None = None,
) -> int:
    """Upsert the achievement catalog. Returns the number of definitions written."""
    items = list(achievements)
    for achievement in items:
        validate_achievement(achievement)

    async with db.get_async_session() as session:
        repo = AchievementRepository(session)
        for achievement in items:
            await repo.upsert(achievement, now=now or _utcnow())

    logger.info("Seeded %d achievements", len(items))
    return len(items)


@dataclass(frozen=True)
class AchievementProgress:
    achievement_id: str
    name: str
    description: str
    icon: str
    rarity: Rarity
    progress: int
    target: int
    percentage: float
    unlocked: bool
    points_reward: int
    unlocked_at: datetime | None = None


@dataclass(frozen=True)
class AchievementSummary:
    total_achievements: int
    unlocked_count: int
    completion_percentage: float
    points_from_achievements: int
    rarest_unlocked: str | None


class AchievementEvaluator:
    """Checks active achievements against a profile and unlocks the met ones."""

    def __init__(
        self,
        db: DatabaseManager,
        *,
        tiers: TierTable = DEFAULT_TIER_TABLE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._tiers = tiers
        self._clock = clock

    async def _stat(
        self,
        txs: TransactionRepository,
        profile: UserProfileDTO,
        achievement: AchievementDTO,
        now: datetime,
    ) -> Decimal:
        kind = achievement.requirement_type
        since = window_start(achievement.timeframe, now)

        if kind == RequirementType.TRANSACTIONS:
            if since is None:
                return Decimal(profile.total_transactions)
            count = await txs.count_since(profile.address, since=since, types=USER_ACTIVITY_TYPES)
            return Decimal(count)
        if kind == RequirementType.POINTS:
            if since is None:
                return Decimal(profile.total_points)
            return Decimal(await txs.sum_points_since(profile.address, since=since))
        if kind == RequirementType.STREAK:
            return Decimal(profile.weekly_streak)
        if kind == RequirementType.BALANCE:
            return profile.token_balance
        if kind == RequirementType.VOLUME:
            _, volume = await txs.trade_totals(profile.address, since=since)
            return volume
        return Decimal(profile.referrals)

    async def evaluate(self, profile: UserProfileDTO | str, *, now: datetime | None = None) -> list[str]:
        """Unlock every active achievement whose requirement the profile meets.

        Args:
            profile: Profile snapshot or address. An address is loaded fresh.
            now: Reference time for timeframe windows.

        Returns:
            IDs unlocked by this call (empty if nothing new).

        Raises:
            NotFoundError: If an address is given and no profile exists.
            ConfigurationError: If an active definition is invalid.
        """
        now = now or self._clock()

        async with self._db.get_async_session() as session:
            if isinstance(profile, str):
                profile = await UserProfileRepository(session).require(profile)
            active = await AchievementRepository(session).list_active()
            unlocked = set(await UserAchievementRepository(session).ids_for_user(profile.address))
            txs = TransactionRepository(session)

            met: list[tuple[AchievementDTO, int]] = []
            for achievement in active:
                validate_achievement(achievement)
                if achievement.id in unlocked:
                    continue
                stat = await self._stat(txs, profile, achievement, now)
                if stat >= achievement.requirement_value:
                    met.append((achievement, int(stat)))

        newly_unlocked: list[str] = []
        for achievement, progress in met:
            if await self._unlock(profile.address, achievement, progress=progress, now=now):
                newly_unlocked.append(achievement.id)

        if newly_unlocked:
            logger.info("Unlocked %s for %s", ", ".join(newly_unlocked), profile.address)
        return newly_unlocked

    async def _unlock(
        self,
        address: str,
        achievement: AchievementDTO,
        *,
        progress: int,
        now: datetime,
    ) -> bool:
        async with self._db.get_async_session() as session:
            unlocks = UserAchievementRepository(session)
            if not await unlocks.insert_if_absent(address, achievement.id, now=now, progress=progress):
                logger.debug("%s already unlocked %s", address, achievement.id)
                return False

            profiles = UserProfileRepository(session)
            if achievement.points_reward > 0:
                await TransactionRepository(session).append(
                    TransactionDTO(
                        id=str(uuid.uuid4()),
                        user_address=address,
                        type=TransactionType.ACHIEVEMENT_REWARD,
                        amount=Decimal(0),
                        points=achievement.points_reward,
                        timestamp=now,
                        metadata=AchievementRewardMetadata(achievement_id=achievement.id),
                    )
                )
            # Always taken, so concurrent unlocks for one user serialize on the row.
            total = await profiles.increment_totals(
                address, now=now, points=achievement.points_reward, touch_active=False
            )
            await profiles.apply_tier(address, total, self._tiers, now=now)
            await profiles.set_achievement_ids(address, await unlocks.ids_for_user(address), now=now)
        return True

    async def get_achievement(self, achievement_id: str) -> AchievementDTO:
        async with self._db.get_async_session() as session:
            achievement = await AchievementRepository(session).get(achievement_id)
        if achievement is None:
            raise NotFoundError(f"No achievement {achievement_id!r}")
        return achievement

    async def list_achievements(self) -> list[AchievementDTO]:
        async with self._db.get_async_session() as session:
            return await AchievementRepository(session).list_active()

    async def progress(self, address: str, *, now: datetime | None = None) -> list[AchievementProgress]:
        """Progress toward every active achievement for one user."""
        now = now or self._clock()
        async with self._db.get_async_session() as session:
            profile = await UserProfileRepository(session).require(address)
            active = await AchievementRepository(session).list_active()
            unlocks = {
                ua.achievement_id: ua
                for ua in await UserAchievementRepository(session).list_for_user(profile.address)
            }
            txs = TransactionRepository(session)

            result = []
            for achievement in active:
                stat = int(await self._stat(txs, profile, achievement, now))
                target = achievement.requirement_value
                unlock = unlocks.get(achievement.id)
                result.append(
                    AchievementProgress(
                        achievement_id=achievement.id,
                        name=achievement.name,
                        description=achievement.description,
                        icon=achievement.icon,
                        rarity=achievement.rarity,
                        progress=stat,
                        target=target,
                        percentage=min(stat / target * 100, 100.0),
                        unlocked=unlock is not None,
                        points_reward=achievement.points_reward,
                        unlocked_at=unlock.unlocked_at if unlock else None,
                    )
                )
        return result

    async def summary(self, address: str) -> AchievementSummary:
        async with self._db.get_async_session() as session:
            active = await AchievementRepository(session).list_active()
            unlocked_ids = set(await UserAchievementRepository(session).ids_for_user(normalize_address(address)))

        unlocked = [a for a in active if a.id in unlocked_ids]
        rarest = max(unlocked, key=lambda a: a.rarity.order, default=None)
        total = len(active)
        return AchievementSummary(
            total_achievements=total,
            unlocked_count=len(unlocked),
            completion_percentage=(len(unlocked) / total * 100) if total else 0.0,
            points_from_achievements=sum(a.points_reward for a in unlocked),
            rarest_unlocked=rarest.id if rarest else None,
        )
