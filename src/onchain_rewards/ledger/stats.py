"""Platform-wide aggregates and milestones."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from onchain_rewards.errors import ValidationError
from onchain_rewards.storage.repos import (
    MilestoneDTO,
    MilestoneRepository,
    PlatformStatsDTO,
    PlatformStatsRepository,
    TransactionRepository,
    UserProfileRepository,
)

if TYPE_CHECKING:
    from onchain_rewards.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MilestoneType(str, Enum):
    USERS = "users"
    TRANSACTIONS = "transactions"
    POINTS = "points"


def _milestone_value(milestone_type: str, stats: PlatformStatsDTO) -> int:
    if milestone_type == MilestoneType.USERS.value:
        return stats.total_users
    if milestone_type == MilestoneType.TRANSACTIONS.value:
        return stats.total_transactions
    return stats.total_points


class PlatformStatsService:
    def __init__(
        self,
        db: DatabaseManager,
        *,
        token_supply: Decimal = Decimal("1000000"),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._token_supply = token_supply
        self._clock = clock

    async def recalculate(self, *, now: datetime | None = None) -> PlatformStatsDTO:
        """Recompute aggregates from profiles and the ledger, then update milestones."""
        now = now or self._clock()
        async with self._db.get_async_session() as session:
            users, points, circulating = await UserProfileRepository(session).aggregate()
            transactions = await TransactionRepository(session).count_all()
            stats = PlatformStatsDTO(
                total_users=users,
                total_transactions=transactions,
                total_points=points,
                token_supply=self._token_supply,
                token_circulating=circulating,
                last_updated=now,
            )
            await PlatformStatsRepository(session).upsert(stats)

            milestones = MilestoneRepository(session)
            for milestone in await milestones.list_all():
                current = _milestone_value(milestone.type, stats)
                completed = milestone.completed or current >= milestone.target
                if completed and not milestone.completed:
                    logger.info("Milestone %r reached (%d/%d)", milestone.name, current, milestone.target)
                await milestones.update_progress(milestone.id, current=current, completed=completed, now=now)

        logger.info(
            "Platform stats: users=%d transactions=%d points=%d circulating=%s",
            users,
            transactions,
            points,
            circulating,
        )
        return stats

    async def get_stats(self) -> PlatformStatsDTO | None:
        async with self._db.get_async_session() as session:
            return await PlatformStatsRepository(session).get()

    async def create_milestone(
        self,
        name: str,
        milestone_type: MilestoneType | str,
        target: int,
        *,
        now: datetime | None = None,
    ) -> MilestoneDTO:
        try:
            kind = MilestoneType(milestone_type)
        except ValueError as e:
            raise ValidationError(f"Unknown milestone type: {milestone_type!r}") from e
        if target <= 0:
            raise ValidationError(f"Milestone target must be positive, got {target}")

        now = now or self._clock()
        milestone = MilestoneDTO(
            id=str(uuid.uuid4()),
            name=name,
            type=kind.value,
            target=target,
            created_at=now,
            updated_at=now,
        )
        async with self._db.get_async_session() as session:
            await MilestoneRepository(session).insert(milestone)
        return milestone

    async def list_milestones(self) -> list[MilestoneDTO]:
        async with self._db.get_async_session() as session:
            return await MilestoneRepository(session).list_all()
