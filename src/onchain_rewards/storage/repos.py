"""Repository pattern implementations for data access.

This module provides data access abstractions for user profiles, the
transaction ledger, achievements, platform aggregates and bonus runs.
Counter updates are single ``UPDATE ... SET x = x + :delta`` statements so
concurrent writers for the same address never lose increments.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from onchain_rewards.errors import NotFoundError
from onchain_rewards.ledger.models import (
    Rarity,
    RequirementType,
    Timeframe,
    TransactionMetadata,
    TransactionStatus,
    TransactionType,
    metadata_from_dict,
)
from onchain_rewards.storage.models import (
    AchievementModel,
    Base,
    BonusRunModel,
    MilestoneModel,
    PlatformStatsModel,
    TransactionModel,
    UserAchievementModel,
    UserProfileModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from onchain_rewards.ledger.tiers import TierTable

logger = logging.getLogger(__name__)

PLATFORM_STATS_ID = "current"


def _as_utc(ts: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if ts is None:
        return None
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


def _insert(session: AsyncSession, model: type[Base]) -> Any:
    table = model.__table__
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(table)
    return sqlite_insert(table)


def normalize_address(address: str) -> str:
    return address.strip().lower()


# ============================================================================
# DTOs
# ============================================================================


@dataclass
class UserProfileDTO:
    """Data transfer object for user profiles."""

    address: str
    tier: str
    total_points: int
    total_transactions: int
    token_balance: Decimal
    tokens_earned: Decimal
    weekly_streak: int
    join_date: datetime
    last_active: datetime
    referrals: int = 0
    achievement_ids: list[str] = field(default_factory=list)
    has_minted: bool = False
    last_holding_bonus_date: date | None = None
    current_rank: int | None = None
    fid: int | None = None
    username: str | None = None
    display_name: str | None = None
    pfp_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: UserProfileModel) -> UserProfileDTO:
        return cls(
            address=model.address,
            tier=model.tier,
            total_points=int(model.total_points),
            total_transactions=int(model.total_transactions),
            token_balance=Decimal(model.token_balance),
            tokens_earned=Decimal(model.tokens_earned),
            weekly_streak=int(model.weekly_streak),
            join_date=_as_utc(model.join_date),
            last_active=_as_utc(model.last_active),
            referrals=int(model.referrals),
            achievement_ids=list(model.achievement_ids or []),
            has_minted=bool(model.has_minted),
            last_holding_bonus_date=model.last_holding_bonus_date,
            current_rank=model.current_rank,
            fid=model.fid,
            username=model.username,
            display_name=model.display_name,
            pfp_url=model.pfp_url,
            created_at=_as_utc(model.created_at),
            updated_at=_as_utc(model.updated_at),
        )


@dataclass
class TransactionDTO:
    """Data transfer object for ledger transactions."""

    id: str
    user_address: str
    type: TransactionType
    amount: Decimal
    points: int
    timestamp: datetime
    status: TransactionStatus = TransactionStatus.COMPLETED
    price: Decimal | None = None
    tx_hash: str | None = None
    bonus_day: date | None = None
    metadata: TransactionMetadata | None = None

    @classmethod
    def from_model(cls, model: TransactionModel) -> TransactionDTO:
        tx_type = TransactionType(model.type)
        return cls(
            id=model.id,
            user_address=model.user_address,
            type=tx_type,
            amount=Decimal(model.amount),
            points=int(model.points),
            timestamp=_as_utc(model.timestamp),
            status=TransactionStatus(model.status),
            price=Decimal(model.price) if model.price is not None else None,
            tx_hash=model.tx_hash,
            bonus_day=model.bonus_day,
            metadata=metadata_from_dict(tx_type, model.metadata_json),
        )


@dataclass
class AchievementDTO:
    """Data transfer object for achievement definitions."""

    id: str
    name: str
    description: str
    rarity: Rarity
    requirement_type: RequirementType
    requirement_value: int
    points_reward: int
    timeframe: Timeframe = Timeframe.ALL_TIME
    icon: str = ""
    is_active: bool = True
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: AchievementModel) -> AchievementDTO:
        return cls(
            id=model.id,
            name=model.name,
            description=model.description,
            rarity=Rarity(model.rarity),
            requirement_type=RequirementType(model.requirement_type),
            requirement_value=int(model.requirement_value),
            points_reward=int(model.points_reward),
            timeframe=Timeframe(model.timeframe),
            icon=model.icon,
            is_active=bool(model.is_active),
            created_at=_as_utc(model.created_at),
        )


@dataclass
class UserAchievementDTO:
    user_address: str
    achievement_id: str
    unlocked_at: datetime
    progress: int | None = None

    @classmethod
    def from_model(cls, model: UserAchievementModel) -> UserAchievementDTO:
        return cls(
            user_address=model.user_address,
            achievement_id=model.achievement_id,
            unlocked_at=_as_utc(model.unlocked_at),
            progress=model.progress,
        )


@dataclass
class PlatformStatsDTO:
    total_users: int
    total_transactions: int
    total_points: int
    token_supply: Decimal
    token_circulating: Decimal
    last_updated: datetime

    @classmethod
    def from_model(cls, model: PlatformStatsModel) -> PlatformStatsDTO:
        return cls(
            total_users=int(model.total_users),
            total_transactions=int(model.total_transactions),
            total_points=int(model.total_points),
            token_supply=Decimal(model.token_supply),
            token_circulating=Decimal(model.token_circulating),
            last_updated=_as_utc(model.last_updated),
        )


@dataclass
class MilestoneDTO:
    id: str
    name: str
    type: str
    target: int
    current: int = 0
    completed: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: MilestoneModel) -> MilestoneDTO:
        return cls(
            id=model.id,
            name=model.name,
            type=model.type,
            target=int(model.target),
            current=int(model.current),
            completed=bool(model.completed),
            created_at=_as_utc(model.created_at),
            updated_at=_as_utc(model.updated_at),
        )


@dataclass
class BonusRunDTO:
    run_id: str
    bonus_day: date
    trigger: str
    started_at: datetime
    finished_at: datetime
    processed: int
    bonused: int
    skipped: int
    failed: list[dict[str, str]]
    cancelled: bool = False
    error: str | None = None

    @classmethod
    def from_model(cls, model: BonusRunModel) -> BonusRunDTO:
        return cls(
            run_id=model.run_id,
            bonus_day=model.bonus_day,
            trigger=model.trigger,
            started_at=_as_utc(model.started_at),
            finished_at=_as_utc(model.finished_at),
            processed=model.processed,
            bonused=model.bonused,
            skipped=model.skipped,
            failed=list(model.failed_json or []),
            cancelled=bool(model.cancelled),
            error=model.error,
        )


# ============================================================================
# Repositories
# ============================================================================


class UserProfileRepository:
    """Repository for user profiles.

    ``tier`` is written only through ``apply_tier`` and ``current_rank`` only
    through ``set_ranks``.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, address: str) -> UserProfileDTO | None:
        result = await self.session.execute(
            select(UserProfileModel)
            .where(UserProfileModel.address == normalize_address(address))
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return UserProfileDTO.from_model(model) if model else None

    async def require(self, address: str) -> UserProfileDTO:
        profile = await self.get(address)
        if profile is None:
            raise NotFoundError(f"No profile for {normalize_address(address)}")
        return profile

    async def create_if_absent(self, address: str, *, tier: str, now: datetime) -> bool:
        """Create a zeroed profile; returns False if it already existed."""
        values = {
            "address": normalize_address(address),
            "tier": tier,
            "total_points": 0,
            "total_transactions": 0,
            "token_balance": Decimal(0),
            "tokens_earned": Decimal(0),
            "weekly_streak": 0,
            "referrals": 0,
            "achievement_ids": [],
            "has_minted": False,
            "join_date": now,
            "last_active": now,
            "created_at": now,
            "updated_at": now,
        }
        stmt = _insert(self.session, UserProfileModel).values(**values)
        stmt = stmt.on_conflict_do_nothing(index_elements=["address"])
        result = await self.session.execute(stmt)
        created = (result.rowcount or 0) > 0
        if created:
            logger.info("Created profile for %s", values["address"])
        return created

    async def get_or_create(self, address: str, *, tier: str, now: datetime) -> UserProfileDTO:
        await self.create_if_absent(address, tier=tier, now=now)
        return await self.require(address)

    async def increment_totals(
        self,
        address: str,
        *,
        now: datetime,
        points: int = 0,
        transactions: int = 0,
        token_delta: Decimal = Decimal(0),
        earned_delta: Decimal = Decimal(0),
        touch_active: bool = True,
    ) -> int:
        """Atomically add to the profile counters; returns the new point total.

        The token balance is floored at zero.
        """
        balance = UserProfileModel.token_balance + token_delta
        values: dict[str, Any] = {
            "total_points": UserProfileModel.total_points + points,
            "total_transactions": UserProfileModel.total_transactions + transactions,
            "token_balance": sa.case((balance < 0, Decimal(0)), else_=balance),
            "tokens_earned": UserProfileModel.tokens_earned + earned_delta,
            "updated_at": now,
        }
        if touch_active:
            values["last_active"] = now
        stmt = (
            update(UserProfileModel)
            .where(UserProfileModel.address == normalize_address(address))
            .values(**values)
            .returning(UserProfileModel.total_points)
            .execution_options(synchronize_session=False)
        )
        row = (await self.session.execute(stmt)).first()
        if row is None:
            raise NotFoundError(f"No profile for {normalize_address(address)}")
        return int(row[0])

    async def apply_tier(self, address: str, total_points: int, tiers: TierTable, *, now: datetime) -> str:
        """Recompute the tier projection from a point total."""
        name = tiers.tier_for(total_points).name
        await self.session.execute(
            update(UserProfileModel)
            .where(
                (UserProfileModel.address == normalize_address(address))
                & (UserProfileModel.tier != name)
            )
            .values(tier=name, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return name

    async def set_streak(self, address: str, *, streak: int, bonus_day: date, now: datetime) -> None:
        await self.session.execute(
            update(UserProfileModel)
            .where(UserProfileModel.address == normalize_address(address))
            .values(weekly_streak=streak, last_holding_bonus_date=bonus_day, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    async def set_achievement_ids(self, address: str, achievement_ids: list[str], *, now: datetime) -> None:
        await self.session.execute(
            update(UserProfileModel)
            .where(UserProfileModel.address == normalize_address(address))
            .values(achievement_ids=list(achievement_ids), updated_at=now)
            .execution_options(synchronize_session=False)
        )

    async def set_total_points(self, address: str, total_points: int, *, now: datetime) -> None:
        """Overwrite the point total (admin correction only)."""
        await self.session.execute(
            update(UserProfileModel)
            .where(UserProfileModel.address == normalize_address(address))
            .values(total_points=total_points, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    async def update_identity(
        self,
        address: str,
        *,
        now: datetime,
        fid: int | None = None,
        username: str | None = None,
        display_name: str | None = None,
        pfp_url: str | None = None,
    ) -> None:
        values: dict[str, Any] = {
            k: v
            for k, v in {
                "fid": fid,
                "username": username,
                "display_name": display_name,
                "pfp_url": pfp_url,
            }.items()
            if v is not None
        }
        if not values:
            return
        await self.session.execute(
            update(UserProfileModel)
            .where(UserProfileModel.address == normalize_address(address))
            .values(**values, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    async def increment_referrals(self, address: str, *, now: datetime) -> int:
        stmt = (
            update(UserProfileModel)
            .where(UserProfileModel.address == normalize_address(address))
            .values(referrals=UserProfileModel.referrals + 1, updated_at=now)
            .returning(UserProfileModel.referrals)
            .execution_options(synchronize_session=False)
        )
        row = (await self.session.execute(stmt)).first()
        if row is None:
            raise NotFoundError(f"No profile for {normalize_address(address)}")
        return int(row[0])

    async def set_minted(self, address: str, *, now: datetime) -> None:
        await self.session.execute(
            update(UserProfileModel)
            .where(UserProfileModel.address == normalize_address(address))
            .values(has_minted=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    async def list_page(
        self,
        *,
        after: str | None,
        limit: int,
        min_token_balance: Decimal = Decimal(0),
    ) -> list[UserProfileDTO]:
        """Keyset page of profiles ordered by address."""
        stmt = select(UserProfileModel).order_by(UserProfileModel.address).limit(limit)
        if after is not None:
            stmt = stmt.where(UserProfileModel.address > after)
        if min_token_balance > 0:
            stmt = stmt.where(UserProfileModel.token_balance >= min_token_balance)
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return [UserProfileDTO.from_model(m) for m in result.scalars().all()]

    @staticmethod
    def _ranking_order() -> tuple[Any, ...]:
        return (
            UserProfileModel.total_points.desc(),
            UserProfileModel.join_date.asc(),
            UserProfileModel.address.asc(),
        )

    async def top_by_points(self, limit: int) -> list[UserProfileDTO]:
        result = await self.session.execute(
            select(UserProfileModel)
            .order_by(*self._ranking_order())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [UserProfileDTO.from_model(m) for m in result.scalars().all()]

    async def ranked_addresses(self) -> list[str]:
        result = await self.session.execute(
            select(UserProfileModel.address).order_by(*self._ranking_order())
        )
        return [row[0] for row in result.all()]

    async def set_ranks(self, ranks: Iterable[tuple[str, int]], *, now: datetime) -> int:
        """Bulk-write the current_rank display cache."""
        table = UserProfileModel.__table__
        params = [{"b_address": address, "b_rank": rank, "b_now": now} for address, rank in ranks]
        if not params:
            return 0
        stmt = (
            update(table)
            .where(table.c.address == sa.bindparam("b_address"))
            .values(current_rank=sa.bindparam("b_rank"), updated_at=sa.bindparam("b_now"))
        )
        await self.session.execute(stmt, params)
        return len(params)

    async def rank_of(self, address: str) -> int | None:
        """Live 1-based rank using the leaderboard ordering."""
        profile = await self.get(address)
        if profile is None:
            return None
        p = UserProfileModel
        ahead = await self.session.execute(
            select(func.count()).select_from(p).where(
                (p.total_points > profile.total_points)
                | (
                    (p.total_points == profile.total_points)
                    & (
                        (p.join_date < profile.join_date)
                        | ((p.join_date == profile.join_date) & (p.address < profile.address))
                    )
                )
            )
        )
        return int(ahead.scalar_one()) + 1

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(UserProfileModel))
        return int(result.scalar_one())

    async def aggregate(self) -> tuple[int, int, Decimal]:
        """Return (user count, total points, total token balance)."""
        result = await self.session.execute(
            select(
                func.count(UserProfileModel.address),
                func.coalesce(func.sum(UserProfileModel.total_points), 0),
                func.coalesce(func.sum(UserProfileModel.token_balance), 0),
            )
        )
        users, points, balance = result.one()
        return int(users), int(points), Decimal(str(balance))


class TransactionRepository:
    """Repository for the append-only transaction ledger."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(self, dto: TransactionDTO) -> bool:
        """Insert a transaction unless a unique marker already exists.

        Returns False when the row conflicted with an existing tx_hash or an
        existing (user_address, bonus_day) bonus marker.
        """
        values = {
            "id": dto.id,
            "user_address": normalize_address(dto.user_address),
            "type": dto.type.value,
            "amount": dto.amount,
            "price": dto.price,
            "points": dto.points,
            "status": dto.status.value,
            "tx_hash": dto.tx_hash.lower() if dto.tx_hash else None,
            "bonus_day": dto.bonus_day,
            "metadata_json": dto.metadata.to_dict() if dto.metadata is not None else None,
            "timestamp": dto.timestamp,
        }
        stmt = _insert(self.session, TransactionModel).values(**values).on_conflict_do_nothing()
        result = await self.session.execute(stmt)
        return (result.rowcount or 0) > 0

    async def get(self, transaction_id: str) -> TransactionDTO | None:
        model = await self.session.get(TransactionModel, transaction_id)
        return TransactionDTO.from_model(model) if model else None

    async def get_by_hash(self, tx_hash: str) -> TransactionDTO | None:
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.tx_hash == tx_hash.lower())
        )
        model = result.scalar_one_or_none()
        return TransactionDTO.from_model(model) if model else None

    async def get_bonus_for_day(self, address: str, bonus_day: date) -> TransactionDTO | None:
        result = await self.session.execute(
            select(TransactionModel).where(
                (TransactionModel.user_address == normalize_address(address))
                & (TransactionModel.bonus_day == bonus_day)
            )
        )
        model = result.scalar_one_or_none()
        return TransactionDTO.from_model(model) if model else None

    async def list_for_user(self, address: str, *, limit: int = 10) -> list[TransactionDTO]:
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.user_address == normalize_address(address))
            .order_by(TransactionModel.timestamp.desc(), TransactionModel.id)
            .limit(limit)
        )
        return [TransactionDTO.from_model(m) for m in result.scalars().all()]

    async def list_recent(self, *, limit: int = 20) -> list[TransactionDTO]:
        result = await self.session.execute(
            select(TransactionModel).order_by(TransactionModel.timestamp.desc()).limit(limit)
        )
        return [TransactionDTO.from_model(m) for m in result.scalars().all()]

    async def sum_points(self, address: str) -> int:
        """Sum of points over the user's completed transactions."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(TransactionModel.points), 0)).where(
                (TransactionModel.user_address == normalize_address(address))
                & (TransactionModel.status == TransactionStatus.COMPLETED.value)
            )
        )
        return int(result.scalar_one())

    async def count_since(
        self,
        address: str,
        *,
        since: datetime,
        types: Iterable[TransactionType],
    ) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(TransactionModel).where(
                (TransactionModel.user_address == normalize_address(address))
                & (TransactionModel.status == TransactionStatus.COMPLETED.value)
                & (TransactionModel.type.in_([t.value for t in types]))
                & (TransactionModel.timestamp >= since)
            )
        )
        return int(result.scalar_one())

    async def sum_points_since(self, address: str, *, since: datetime) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(TransactionModel.points), 0)).where(
                (TransactionModel.user_address == normalize_address(address))
                & (TransactionModel.status == TransactionStatus.COMPLETED.value)
                & (TransactionModel.timestamp >= since)
            )
        )
        return int(result.scalar_one())

    async def trade_totals(self, address: str, *, since: datetime | None = None) -> tuple[int, Decimal]:
        """Return (trade count, traded token volume) for buy/sell rows, optionally from ``since``."""
        query = select(
            func.count(TransactionModel.id),
            func.coalesce(func.sum(TransactionModel.amount), 0),
        ).where(
            (TransactionModel.user_address == normalize_address(address))
            & (TransactionModel.status == TransactionStatus.COMPLETED.value)
            & (TransactionModel.type.in_([TransactionType.BUY.value, TransactionType.SELL.value]))
        )
        if since is not None:
            query = query.where(TransactionModel.timestamp >= since)
        result = await self.session.execute(query)
        count, volume = result.one()
        return int(count), Decimal(str(volume))

    async def count_all(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(TransactionModel))
        return int(result.scalar_one())


class AchievementRepository:
    """Repository for achievement definitions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, dto: AchievementDTO, *, now: datetime | None = None) -> AchievementDTO:
        values = {
            "id": dto.id,
            "name": dto.name,
            "description": dto.description,
            "icon": dto.icon,
            "rarity": dto.rarity.value,
            "requirement_type": dto.requirement_type.value,
            "requirement_value": dto.requirement_value,
            "timeframe": dto.timeframe.value,
            "points_reward": dto.points_reward,
            "is_active": dto.is_active,
            "created_at": dto.created_at or now or datetime.now(UTC),
        }
        stmt = _insert(self.session, AchievementModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "icon": stmt.excluded.icon,
                "rarity": stmt.excluded.rarity,
                "requirement_type": stmt.excluded.requirement_type,
                "requirement_value": stmt.excluded.requirement_value,
                "timeframe": stmt.excluded.timeframe,
                "points_reward": stmt.excluded.points_reward,
                "is_active": stmt.excluded.is_active,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return dto

    async def get(self, achievement_id: str) -> AchievementDTO | None:
        result = await self.session.execute(
            select(AchievementModel)
            .where(AchievementModel.id == achievement_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return AchievementDTO.from_model(model) if model else None

    async def list_active(self) -> list[AchievementDTO]:
        result = await self.session.execute(
            select(AchievementModel)
            .where(AchievementModel.is_active.is_(True))
            .order_by(AchievementModel.id)
            .execution_options(populate_existing=True)
        )
        return [AchievementDTO.from_model(m) for m in result.scalars().all()]

    async def set_active(self, achievement_id: str, active: bool) -> None:
        result = await self.session.execute(
            update(AchievementModel)
            .where(AchievementModel.id == achievement_id)
            .values(is_active=active)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            raise NotFoundError(f"No achievement {achievement_id!r}")


class UserAchievementRepository:
    """Repository for unlock records."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_if_absent(
        self,
        address: str,
        achievement_id: str,
        *,
        now: datetime,
        progress: int | None = None,
    ) -> bool:
        """Record an unlock; returns False if the pair already exists."""
        stmt = _insert(self.session, UserAchievementModel).values(
            user_address=normalize_address(address),
            achievement_id=achievement_id,
            unlocked_at=now,
            progress=progress,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["user_address", "achievement_id"])
        result = await self.session.execute(stmt)
        return (result.rowcount or 0) > 0

    async def list_for_user(self, address: str) -> list[UserAchievementDTO]:
        result = await self.session.execute(
            select(UserAchievementModel)
            .where(UserAchievementModel.user_address == normalize_address(address))
            .order_by(UserAchievementModel.unlocked_at, UserAchievementModel.achievement_id)
        )
        return [UserAchievementDTO.from_model(m) for m in result.scalars().all()]

    async def ids_for_user(self, address: str) -> list[str]:
        return [ua.achievement_id for ua in await self.list_for_user(address)]


class PlatformStatsRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self) -> PlatformStatsDTO | None:
        result = await self.session.execute(
            select(PlatformStatsModel)
            .where(PlatformStatsModel.id == PLATFORM_STATS_ID)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return PlatformStatsDTO.from_model(model) if model else None

    async def upsert(self, dto: PlatformStatsDTO) -> PlatformStatsDTO:
        values = {
            "id": PLATFORM_STATS_ID,
            "total_users": dto.total_users,
            "total_transactions": dto.total_transactions,
            "total_points": dto.total_points,
            "token_supply": dto.token_supply,
            "token_circulating": dto.token_circulating,
            "last_updated": dto.last_updated,
        }
        stmt = _insert(self.session, PlatformStatsModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "total_users": stmt.excluded.total_users,
                "total_transactions": stmt.excluded.total_transactions,
                "total_points": stmt.excluded.total_points,
                "token_supply": stmt.excluded.token_supply,
                "token_circulating": stmt.excluded.token_circulating,
                "last_updated": stmt.excluded.last_updated,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return dto


class MilestoneRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: MilestoneDTO) -> MilestoneDTO:
        model = MilestoneModel(
            id=dto.id,
            name=dto.name,
            type=dto.type,
            target=dto.target,
            current=dto.current,
            completed=dto.completed,
            created_at=dto.created_at,
            updated_at=dto.updated_at or dto.created_at,
        )
        self.session.add(model)
        await self.session.flush()
        return dto

    async def list_all(self) -> list[MilestoneDTO]:
        result = await self.session.execute(
            select(MilestoneModel)
            .order_by(MilestoneModel.created_at, MilestoneModel.id)
            .execution_options(populate_existing=True)
        )
        return [MilestoneDTO.from_model(m) for m in result.scalars().all()]

    async def update_progress(self, milestone_id: str, *, current: int, completed: bool, now: datetime) -> None:
        await self.session.execute(
            update(MilestoneModel)
            .where(MilestoneModel.id == milestone_id)
            .values(current=current, completed=completed, updated_at=now)
            .execution_options(synchronize_session=False)
        )


class BonusRunRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: BonusRunDTO) -> None:
        model = BonusRunModel(
            run_id=dto.run_id,
            bonus_day=dto.bonus_day,
            trigger=dto.trigger,
            started_at=dto.started_at,
            finished_at=dto.finished_at,
            processed=dto.processed,
            bonused=dto.bonused,
            skipped=dto.skipped,
            failed_json=list(dto.failed),
            cancelled=dto.cancelled,
            error=dto.error,
        )
        self.session.add(model)
        await self.session.flush()

    async def list_for_day(self, bonus_day: date) -> list[BonusRunDTO]:
        result = await self.session.execute(
            select(BonusRunModel)
            .where(BonusRunModel.bonus_day == bonus_day)
            .order_by(BonusRunModel.started_at)
        )
        return [BonusRunDTO.from_model(m) for m in result.scalars().all()]
