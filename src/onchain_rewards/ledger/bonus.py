"""Daily holding bonus distribution.

One run walks every eligible profile in keyset pages and, per user, writes
the ``streak_bonus`` transaction, the point/token increment and the new
streak state in one database transaction. The streak-bonus row for
(user, day) is the idempotency marker: a second run on the same day, a
retried attempt, or a concurrent run all find the marker and skip.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import TYPE_CHECKING

from onchain_rewards.config import BonusSettings
from onchain_rewards.errors import ConflictError, NotFoundError, RewardsError
from onchain_rewards.ledger.models import StreakBonusMetadata, TransactionType
from onchain_rewards.ledger.scoring import BonusCurve
from onchain_rewards.ledger.streak import decide_streak
from onchain_rewards.ledger.tiers import DEFAULT_TIER_TABLE, TierTable
from onchain_rewards.retry import RetryError, retry_async
from onchain_rewards.storage.repos import (
    BonusRunDTO,
    BonusRunRepository,
    TransactionDTO,
    TransactionRepository,
    UserProfileDTO,
    UserProfileRepository,
)

if TYPE_CHECKING:
    from onchain_rewards.ledger.achievements import AchievementEvaluator
    from onchain_rewards.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class BonusOutcome(str, Enum):
    BONUSED = "bonused"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class FailedUser:
    address: str
    reason: str


@dataclass
class DistributionResult:
    """Counters for one distribution run.

    ``processed`` always equals ``bonused + skipped + len(failed)``. ``error``
    is set when the run itself could not continue (profile enumeration failed).
    """

    bonus_day: date
    run_id: str
    processed: int = 0
    bonused: int = 0
    skipped: int = 0
    failed: list[FailedUser] = field(default_factory=list)
    cancelled: bool = False
    error: str | None = None

    @property
    def success(self) -> bool:
        return not self.failed and self.error is None

    def to_dict(self) -> dict[str, object]:
        return {
            "run_id": self.run_id,
            "bonus_day": self.bonus_day.isoformat(),
            "processed": self.processed,
            "bonused": self.bonused,
            "skipped": self.skipped,
            "failed": [{"address": f.address, "reason": f.reason} for f in self.failed],
            "cancelled": self.cancelled,
            "error": self.error,
            "success": self.success,
        }


class BonusDistributionEngine:
    """Runs the daily holding bonus over all eligible users."""

    def __init__(
        self,
        db: DatabaseManager,
        *,
        settings: BonusSettings | None = None,
        curve: BonusCurve | None = None,
        tiers: TierTable = DEFAULT_TIER_TABLE,
        evaluator: AchievementEvaluator | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._settings = settings or BonusSettings()
        self._curve = curve or BonusCurve.from_settings(self._settings)
        self._tiers = tiers
        self._evaluator = evaluator
        self._clock = clock

    @property
    def curve(self) -> BonusCurve:
        return self._curve

    async def distribute_daily_bonuses(
        self,
        *,
        today: date | None = None,
        trigger: str = "scheduled",
        cancel_event: asyncio.Event | None = None,
        timeout_seconds: float | None = None,
    ) -> DistributionResult:
        """Award today's holding bonus to every eligible profile.

        Args:
            today: UTC calendar day to process (defaults to the clock's day).
            trigger: "scheduled" or "manual"; recorded in the audit row only.
            cancel_event: When set, enumeration stops and in-flight users finish.
            timeout_seconds: Same as setting ``cancel_event`` after this long.

        Returns:
            DistributionResult with per-run counters and per-user failures.
        """
        started_at = self._clock()
        today = today or started_at.astimezone(UTC).date()
        timeout_seconds = timeout_seconds if timeout_seconds is not None else self._settings.timeout_seconds
        result = DistributionResult(bonus_day=today, run_id=str(uuid.uuid4()))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds if timeout_seconds else None

        def should_stop() -> bool:
            if cancel_event is not None and cancel_event.is_set():
                return True
            return deadline is not None and loop.time() >= deadline

        semaphore = asyncio.Semaphore(self._settings.concurrency)
        tasks: set[asyncio.Task[None]] = set()

        logger.info("Starting %s bonus run %s for %s", trigger, result.run_id, today)

        try:
            after: str | None = None
            while not result.cancelled:
                if should_stop():
                    result.cancelled = True
                    break
                try:
                    page = await self._load_page(after)
                except RetryError as e:
                    logger.error(
                        "Bonus run %s: loading profiles after %s failed: %s", result.run_id, after, e.last_exception
                    )
                    result.error = f"store unavailable: {e.last_exception}"
                    result.cancelled = True
                    break
                if not page:
                    break
                logger.debug("Bonus run %s: page of %d profiles after %s", result.run_id, len(page), after)

                for profile in page:
                    await semaphore.acquire()
                    if should_stop():
                        semaphore.release()
                        result.cancelled = True
                        break
                    result.processed += 1
                    task = asyncio.create_task(self._run_user(profile, today, result, semaphore))
                    tasks.add(task)
                    task.add_done_callback(tasks.discard)

                after = page[-1].address
                if len(page) < self._settings.page_size:
                    break
        finally:
            if tasks:
                await asyncio.gather(*tasks)

        finished_at = self._clock()
        await self._write_audit(result, trigger=trigger, started_at=started_at, finished_at=finished_at)

        log = logger.warning if result.failed or result.cancelled else logger.info
        log(
            "Bonus run %s for %s finished: processed=%d bonused=%d skipped=%d failed=%d cancelled=%s",
            result.run_id,
            today,
            result.processed,
            result.bonused,
            result.skipped,
            len(result.failed),
            result.cancelled,
        )
        return result

    async def _load_page(self, after: str | None) -> list[UserProfileDTO]:
        async def load() -> list[UserProfileDTO]:
            async with self._db.get_async_session() as session:
                return await UserProfileRepository(session).list_page(
                    after=after,
                    limit=self._settings.page_size,
                    min_token_balance=self._settings.min_token_balance,
                )

        return await retry_async(
            load,
            max_retries=self._settings.max_retries,
            base_delay=self._settings.retry_base_delay_seconds,
            label="profile page",
        )

    async def _run_user(
        self,
        profile: UserProfileDTO,
        today: date,
        result: DistributionResult,
        semaphore: asyncio.Semaphore,
    ) -> None:
        address = profile.address
        # The permit covers the award and the follow-up evaluation.
        try:
            try:
                outcome = await retry_async(
                    lambda: self.award_bonus(address, today),
                    max_retries=self._settings.max_retries,
                    base_delay=self._settings.retry_base_delay_seconds,
                    label=f"bonus for {address}",
                )
            except RetryError as e:
                logger.error("Bonus for %s failed after retries: %s", address, e.last_exception)
                result.failed.append(FailedUser(address, f"store unavailable: {e.last_exception}"))
                return
            except Exception as e:
                logger.exception("Bonus for %s failed", address)
                result.failed.append(FailedUser(address, str(e) or type(e).__name__))
                return

            if outcome == BonusOutcome.SKIPPED:
                result.skipped += 1
                return

            result.bonused += 1
            if self._evaluator is not None:
                try:
                    await self._evaluator.evaluate(address)
                except Exception:
                    logger.exception("Achievement evaluation after bonus failed for %s", address)
        finally:
            semaphore.release()

    async def award_bonus(self, address: str, today: date) -> BonusOutcome:
        """Award one user's bonus for ``today`` in a single database transaction.

        Safe to call repeatedly: state is re-read on every call and the
        (user, day) marker makes a second award a no-op.
        """
        now = self._clock()
        try:
            async with self._db.get_async_session() as session:
                profiles = UserProfileRepository(session)
                txs = TransactionRepository(session)

                profile = await profiles.get(address)
                if profile is None:
                    raise NotFoundError(f"No profile for {address}")

                decision = decide_streak(today, profile.last_holding_bonus_date, profile.weekly_streak)
                if not decision.should_award:
                    logger.debug("Bonus for %s on %s already processed", address, today)
                    return BonusOutcome.SKIPPED

                streak = decision.new_streak
                points = self._curve.bonus_points(streak)
                tokens = self._curve.token_bonus(streak)
                inserted = await txs.append(
                    TransactionDTO(
                        id=str(uuid.uuid4()),
                        user_address=address,
                        type=TransactionType.STREAK_BONUS,
                        amount=tokens,
                        points=points,
                        timestamp=now,
                        bonus_day=today,
                        metadata=StreakBonusMetadata(streak=streak, token_bonus=tokens),
                    )
                )
                if not inserted:
                    raise ConflictError(f"Bonus marker for {address} on {today} already exists")

                total = await profiles.increment_totals(
                    address,
                    now=now,
                    points=points,
                    token_delta=tokens,
                    earned_delta=tokens,
                    touch_active=False,
                )
                await profiles.set_streak(address, streak=streak, bonus_day=today, now=now)
                await profiles.apply_tier(address, total, self._tiers, now=now)
        except ConflictError:
            logger.info("Bonus for %s on %s was awarded by another run", address, today)
            return BonusOutcome.SKIPPED

        logger.debug(
            "Awarded %s: streak=%d %s (+%d points, +%s tokens)",
            address,
            streak,
            decision.outcome.value,
            points,
            tokens,
        )
        return BonusOutcome.BONUSED

    async def _write_audit(
        self,
        result: DistributionResult,
        *,
        trigger: str,
        started_at: datetime,
        finished_at: datetime,
    ) -> None:
        try:
            async with self._db.get_async_session() as session:
                await BonusRunRepository(session).insert(
                    BonusRunDTO(
                        run_id=result.run_id,
                        bonus_day=result.bonus_day,
                        trigger=trigger,
                        started_at=started_at,
                        finished_at=finished_at,
                        processed=result.processed,
                        bonused=result.bonused,
                        skipped=result.skipped,
                        failed=[{"address": f.address, "reason": f.reason} for f in result.failed],
                        cancelled=result.cancelled,
                        error=result.error,
                    )
                )
        except RewardsError:
            logger.exception("Could not write audit record for bonus run %s", result.run_id)
