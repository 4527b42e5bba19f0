"""Transaction ledger: append-only point-earning records and profile totals.

Every recorded transaction is written together with its profile increment in
a single database transaction. The increment is an atomic
``UPDATE ... RETURNING`` so concurrent writers for one address cannot lose
points, and the tier projection is recomputed from the returned total before
commit.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from onchain_rewards.errors import ConflictError, NotFoundError, RewardsError, ValidationError
from onchain_rewards.ledger.models import (
    INGESTIBLE_TYPES,
    BaseChainMetadata,
    TradeMetadata,
    TransactionMetadata,
    TransactionStatus,
    TransactionType,
    check_metadata,
    coerce_transaction_type,
)
from onchain_rewards.ledger.scoring import ScoringRules, score_transaction, trade_notional, trade_points
from onchain_rewards.ledger.tiers import DEFAULT_TIER_TABLE, TierTable
from onchain_rewards.storage.repos import (
    TransactionDTO,
    TransactionRepository,
    UserProfileDTO,
    UserProfileRepository,
    normalize_address,
)

if TYPE_CHECKING:
    from onchain_rewards.ledger.achievements import AchievementEvaluator
    from onchain_rewards.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

# Numeric(38, 8) columns hold at most 30 integer digits.
MAX_AMOUNT = Decimal("1e30")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _to_decimal(value: Decimal | int | float | str, name: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{name} must be a number, got {value!r}") from e
    if not result.is_finite():
        raise ValidationError(f"{name} must be finite, got {value!r}")
    if abs(result) >= MAX_AMOUNT:
        raise ValidationError(f"{name} is out of range, got {value!r}")
    return result


@dataclass(frozen=True)
class TradeResult:
    """Outcome of a buy or sell recorded through ``execute_trade``."""

    transaction: TransactionDTO
    points_earned: int
    total_points: int
    token_balance: Decimal
    tier: str
    tier_changed: bool
    unlocked_achievements: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TradeStats:
    total_trades: int
    total_volume: Decimal
    average_trade_size: Decimal
    total_points: int
    current_streak: int
    tier: str


@dataclass(frozen=True)
class ReconcileReport:
    """Comparison of a profile's point total with its ledger."""

    address: str
    profile_points: int
    ledger_points: int
    fixed: bool = False

    @property
    def consistent(self) -> bool:
        return self.profile_points == self.ledger_points

    @property
    def drift(self) -> int:
        return self.profile_points - self.ledger_points


@dataclass(frozen=True)
class _Recorded:
    transaction: TransactionDTO
    applied: bool
    previous_tier: str
    profile: UserProfileDTO


class TransactionLedger:
    """Ingestion path for point-earning transactions."""

    def __init__(
        self,
        db: DatabaseManager,
        *,
        tiers: TierTable = DEFAULT_TIER_TABLE,
        rules: ScoringRules | None = None,
        evaluator: AchievementEvaluator | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._tiers = tiers
        self._rules = rules or ScoringRules()
        self._evaluator = evaluator
        self._clock = clock

    @property
    def tiers(self) -> TierTable:
        return self._tiers

    async def record_transaction(
        self,
        user_address: str,
        type: TransactionType | str,
        amount: Decimal | int | str,
        price: Decimal | int | str | None = None,
        metadata: TransactionMetadata | None = None,
        *,
        tx_hash: str | None = None,
        now: datetime | None = None,
    ) -> TransactionDTO:
        """Append a completed transaction and apply its points to the profile.

        The profile is created on first sight. Re-delivering a transaction
        with a known ``tx_hash`` returns the stored record unchanged.

        Raises:
            ValidationError: For an empty address, unknown or internal type,
                non-positive amount, negative price or mismatched metadata.
            TransientStoreError: If the store failed; nothing was written.
        """
        recorded = await self._record(
            user_address, type, amount, price, metadata, tx_hash=tx_hash, now=now
        )
        if recorded.applied:
            await self._evaluate(recorded.profile, now=now)
        return recorded.transaction

    async def execute_trade(
        self,
        user_address: str,
        type: TransactionType | str,
        amount: Decimal | int | str,
        price: Decimal | int | str | None = None,
        metadata: TradeMetadata | None = None,
        *,
        tx_hash: str | None = None,
        now: datetime | None = None,
    ) -> TradeResult:
        """Record a buy or sell and report the resulting profile state."""
        tx_type = coerce_transaction_type(type)
        if tx_type not in (TransactionType.BUY, TransactionType.SELL):
            raise ValidationError(f"execute_trade only accepts buy or sell, got {tx_type.value}")

        recorded = await self._record(
            user_address, tx_type, amount, price, metadata, tx_hash=tx_hash, now=now
        )
        profile = recorded.profile
        unlocked: list[str] = []
        if recorded.applied:
            unlocked = await self._evaluate(profile, now=now)
            if unlocked:
                profile = await self.get_profile(profile.address)

        return TradeResult(
            transaction=recorded.transaction,
            points_earned=recorded.transaction.points if recorded.applied else 0,
            total_points=profile.total_points,
            token_balance=profile.token_balance,
            tier=profile.tier,
            tier_changed=profile.tier != recorded.previous_tier,
            unlocked_achievements=unlocked,
        )

    def estimate_trade_points(
        self,
        amount: Decimal | int | str,
        price: Decimal | int | str | None = None,
        *,
        has_minted: bool = False,
    ) -> int:
        """Points a trade would earn, without recording it."""
        amount_d = _to_decimal(amount, "amount")
        price_d = _to_decimal(price, "price") if price is not None else None
        return trade_points(trade_notional(amount_d, price_d), has_minted=has_minted, rules=self._rules)

    async def _record(
        self,
        user_address: str,
        type: TransactionType | str,
        amount: Decimal | int | str,
        price: Decimal | int | str | None,
        metadata: TransactionMetadata | None,
        *,
        tx_hash: str | None,
        now: datetime | None,
    ) -> _Recorded:
        if not user_address or not user_address.strip():
            raise ValidationError("user_address is required")
        address = normalize_address(user_address)
        tx_type = coerce_transaction_type(type)
        if tx_type not in INGESTIBLE_TYPES:
            raise ValidationError(f"{tx_type.value} transactions cannot be recorded directly")
        amount_d = _to_decimal(amount, "amount")
        if amount_d <= 0:
            raise ValidationError(f"amount must be positive, got {amount_d}")
        price_d = _to_decimal(price, "price") if price is not None else None
        if price_d is not None and price_d < 0:
            raise ValidationError(f"price must be non-negative, got {price_d}")
        check_metadata(tx_type, metadata)
        now = now or self._clock()

        try:
            return await self._apply(address, tx_type, amount_d, price_d, metadata, tx_hash=tx_hash, now=now)
        except ConflictError:
            # Another writer stored the same tx_hash between our check and insert.
            existing = await self.get_transaction_by_hash(tx_hash) if tx_hash else None
            if existing is None:
                raise
            profile = await self.get_profile(address)
            return _Recorded(existing, applied=False, previous_tier=profile.tier, profile=profile)

    async def _apply(
        self,
        address: str,
        tx_type: TransactionType,
        amount: Decimal,
        price: Decimal | None,
        metadata: TransactionMetadata | None,
        *,
        tx_hash: str | None,
        now: datetime,
    ) -> _Recorded:
        async with self._db.get_async_session() as session:
            profiles = UserProfileRepository(session)
            txs = TransactionRepository(session)

            if tx_hash:
                existing = await txs.get_by_hash(tx_hash)
                if existing is not None:
                    logger.info("Transaction %s already recorded as %s", tx_hash, existing.id)
                    profile = await profiles.get_or_create(address, tier=self._tiers.lowest.name, now=now)
                    return _Recorded(existing, applied=False, previous_tier=profile.tier, profile=profile)

            profile = await profiles.get_or_create(address, tier=self._tiers.lowest.name, now=now)
            points = score_transaction(
                tx_type, amount, price, has_minted=profile.has_minted, rules=self._rules
            )
            if metadata is None:
                if tx_type == TransactionType.BASE_TRANSACTION:
                    metadata = BaseChainMetadata()
                else:
                    metadata = TradeMetadata(has_minted=profile.has_minted)

            tx = TransactionDTO(
                id=str(uuid.uuid4()),
                user_address=address,
                type=tx_type,
                amount=amount,
                price=price,
                points=points,
                status=TransactionStatus.COMPLETED,
                tx_hash=tx_hash.lower() if tx_hash else None,
                timestamp=now,
                metadata=metadata,
            )
            if not await txs.append(tx):
                raise ConflictError(f"Transaction {tx_hash} already recorded")

            token_delta = Decimal(0)
            earned_delta = Decimal(0)
            if tx_type == TransactionType.BUY:
                token_delta = earned_delta = amount
            elif tx_type == TransactionType.SELL:
                token_delta = -amount

            total = await profiles.increment_totals(
                address,
                now=now,
                points=points,
                transactions=1,
                token_delta=token_delta,
                earned_delta=earned_delta,
            )
            tier = await profiles.apply_tier(address, total, self._tiers, now=now)
            updated = await profiles.require(address)

        if tier != profile.tier:
            logger.info("%s moved from %s to %s (%d points)", address, profile.tier, tier, total)
        logger.debug("Recorded %s %s for %s: +%d points", tx_type.value, tx.id, address, points)
        return _Recorded(tx, applied=True, previous_tier=profile.tier, profile=updated)

    async def _evaluate(self, profile: UserProfileDTO, *, now: datetime | None) -> list[str]:
        if self._evaluator is None:
            return []
        try:
            return await self._evaluator.evaluate(profile, now=now)
        except RewardsError:
            # The transaction is committed; a later evaluation picks up the unlock.
            logger.exception("Achievement evaluation failed for %s", profile.address)
            return []

    async def get_profile(self, address: str) -> UserProfileDTO:
        async with self._db.get_async_session() as session:
            return await UserProfileRepository(session).require(address)

    async def get_transaction(self, transaction_id: str) -> TransactionDTO:
        async with self._db.get_async_session() as session:
            tx = await TransactionRepository(session).get(transaction_id)
        if tx is None:
            raise NotFoundError(f"No transaction {transaction_id!r}")
        return tx

    async def get_transaction_by_hash(self, tx_hash: str) -> TransactionDTO | None:
        async with self._db.get_async_session() as session:
            return await TransactionRepository(session).get_by_hash(tx_hash)

    async def list_transactions(self, address: str, *, limit: int = 10) -> list[TransactionDTO]:
        async with self._db.get_async_session() as session:
            return await TransactionRepository(session).list_for_user(address, limit=limit)

    async def trade_stats(self, address: str) -> TradeStats:
        async with self._db.get_async_session() as session:
            profile = await UserProfileRepository(session).require(address)
            count, volume = await TransactionRepository(session).trade_totals(profile.address)

        return TradeStats(
            total_trades=count,
            total_volume=volume,
            average_trade_size=volume / count if count else Decimal(0),
            total_points=profile.total_points,
            current_streak=profile.weekly_streak,
            tier=profile.tier,
        )

    async def reconcile(self, address: str, *, fix: bool = False, now: datetime | None = None) -> ReconcileReport:
        """Check total_points against the ledger sum, optionally correcting it.

        The correction takes the row lock before re-reading the ledger sum so
        a concurrent writer cannot slip between the two.
        """
        now = now or self._clock()
        async with self._db.get_async_session() as session:
            profiles = UserProfileRepository(session)
            txs = TransactionRepository(session)
            profile = await profiles.require(address)
            if fix:
                profile_points = await profiles.increment_totals(
                    profile.address, now=now, touch_active=False
                )
            else:
                profile_points = profile.total_points
            ledger_points = await txs.sum_points(profile.address)

            report = ReconcileReport(profile.address, profile_points, ledger_points)
            if report.consistent or not fix:
                if not report.consistent:
                    logger.warning(
                        "Point drift for %s: profile=%d ledger=%d",
                        profile.address,
                        profile_points,
                        ledger_points,
                    )
                return report

            await profiles.set_total_points(profile.address, ledger_points, now=now)
            await profiles.apply_tier(profile.address, ledger_points, self._tiers, now=now)

        logger.warning(
            "Corrected %s total_points from %d to %d", report.address, profile_points, ledger_points
        )
        return ReconcileReport(report.address, profile_points, ledger_points, fixed=True)

    async def record_referral(self, address: str, *, now: datetime | None = None) -> int:
        """Credit a referral to an existing user. Returns the new referral count."""
        now = now or self._clock()
        async with self._db.get_async_session() as session:
            profiles = UserProfileRepository(session)
            count = await profiles.increment_referrals(address, now=now)
            profile = await profiles.require(address)
        await self._evaluate(profile, now=now)
        return count

    async def mark_minted(self, address: str, *, now: datetime | None = None) -> UserProfileDTO:
        """Flag the user as an NFT holder so later trades earn the multiplier."""
        now = now or self._clock()
        async with self._db.get_async_session() as session:
            profiles = UserProfileRepository(session)
            await profiles.get_or_create(address, tier=self._tiers.lowest.name, now=now)
            await profiles.set_minted(address, now=now)
            profile = await profiles.require(address)
        logger.info("%s marked as minted", profile.address)
        return profile
