"""Component wiring for the rewards ledger.

``RewardsRuntime`` builds every service from ``Settings`` and owns the
database and Redis connections. The scheduler and the CLI both go through it.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from enum import Enum
from types import TracebackType

from redis.asyncio import Redis

from onchain_rewards.config import Settings, get_settings
from onchain_rewards.ledger.achievements import AchievementEvaluator
from onchain_rewards.ledger.bonus import BonusDistributionEngine, DistributionResult
from onchain_rewards.ledger.identity import IdentityProvider, ProfileEnricher
from onchain_rewards.ledger.leaderboard import LeaderboardRanker
from onchain_rewards.ledger.ledger import TransactionLedger
from onchain_rewards.ledger.scoring import BonusCurve, ScoringRules
from onchain_rewards.ledger.stats import PlatformStatsService
from onchain_rewards.ledger.tiers import DEFAULT_TIER_TABLE, TierTable
from onchain_rewards.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


class RuntimeState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    ERROR = "error"


class RewardsRuntime:
    """Owns connections and the service graph.

    Example:
        ```python
        async with RewardsRuntime(settings) as runtime:
            await runtime.ledger.record_transaction(address, "buy", "10")
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        tiers: TierTable = DEFAULT_TIER_TABLE,
        identity_provider: IdentityProvider | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._tiers = tiers
        self._identity_provider = identity_provider
        self._state = RuntimeState.STOPPED

        self._db: DatabaseManager | None = None
        self._redis: Redis | None = None
        self.evaluator: AchievementEvaluator | None = None
        self.ledger: TransactionLedger | None = None
        self.bonus_engine: BonusDistributionEngine | None = None
        self.leaderboard: LeaderboardRanker | None = None
        self.stats: PlatformStatsService | None = None
        self.enricher: ProfileEnricher | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def state(self) -> RuntimeState:
        return self._state

    @property
    def db(self) -> DatabaseManager:
        if self._db is None:
            raise RuntimeError("Runtime is not started")
        return self._db

    async def start(self) -> None:
        if self._state == RuntimeState.RUNNING:
            raise RuntimeError("Runtime already started")

        settings = self._settings
        try:
            self._db = DatabaseManager(
                settings.database.url,
                pool_size=settings.database.pool_size,
                max_overflow=settings.database.max_overflow,
                echo=settings.database.echo,
            )
            if settings.redis.url:
                logger.debug("Initializing Redis connection...")
                self._redis = Redis.from_url(settings.redis.url)

            self.evaluator = AchievementEvaluator(self._db, tiers=self._tiers)
            self.ledger = TransactionLedger(
                self._db,
                tiers=self._tiers,
                rules=ScoringRules.from_settings(settings.scoring),
                evaluator=self.evaluator if settings.evaluate_achievements_on_record else None,
            )
            self.bonus_engine = BonusDistributionEngine(
                self._db,
                settings=settings.bonus,
                curve=BonusCurve.from_settings(settings.bonus),
                tiers=self._tiers,
                evaluator=self.evaluator,
            )
            self.leaderboard = LeaderboardRanker(
                self._db, redis=self._redis, settings=settings.leaderboard
            )
            self.stats = PlatformStatsService(self._db, token_supply=settings.platform_token_supply)
            if self._identity_provider is not None:
                self.enricher = ProfileEnricher(self._db, self._identity_provider)
        except Exception as e:
            self._state = RuntimeState.ERROR
            logger.error("Failed to start runtime: %s", e)
            await self._cleanup()
            raise

        self._state = RuntimeState.RUNNING
        logger.info("Runtime started: %s", settings.redacted_summary())

    async def stop(self) -> None:
        if self._state == RuntimeState.STOPPED:
            return
        await self._cleanup()
        self._state = RuntimeState.STOPPED
        logger.info("Runtime stopped")

    async def _cleanup(self) -> None:
        if self._db:
            await self._db.dispose_async()
            self._db = None
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def __aenter__(self) -> RewardsRuntime:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()


async def run_daily_bonus(
    runtime: RewardsRuntime,
    *,
    trigger: str = "scheduled",
    today: date | None = None,
    cancel_event: asyncio.Event | None = None,
    timeout_seconds: float | None = None,
) -> DistributionResult:
    """Entry point for the daily scheduler and the manual trigger."""
    if runtime.bonus_engine is None:
        raise RuntimeError("Runtime is not started")
    result = await runtime.bonus_engine.distribute_daily_bonuses(
        today=today,
        trigger=trigger,
        cancel_event=cancel_event,
        timeout_seconds=timeout_seconds,
    )
    if runtime.leaderboard is not None and result.bonused:
        try:
            await runtime.leaderboard.refresh()
        except Exception:
            logger.exception("Leaderboard refresh after bonus run %s failed", result.run_id)
    return result
