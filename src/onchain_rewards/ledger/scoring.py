"""Pure point and bonus scoring functions.

Trade points use a square-root model with diminishing returns so that large
trades cannot farm points linearly::

    points = floor(base * sqrt(notional)) * (multiplier if minted)
    points clamped to [1, max_points_per_trade]

The daily holding bonus grows linearly with the streak and is capped::

    bonus_points(streak) = min(base + step * (streak - 1), max_points)
    token_bonus(streak)  = tokens_per_day * min(streak, token_cap_days)

With the defaults a new streak earns 10 points, day two 15, and the bonus
tops out at 100 points from day 19.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal

from onchain_rewards.config import BonusSettings, ScoringSettings
from onchain_rewards.errors import ValidationError
from onchain_rewards.ledger.models import TransactionType

BASE_POINTS_PER_TRADE = 5
MINTING_MULTIPLIER = 3
MAX_POINTS_PER_TRADE = 1_000
BASE_TRANSACTION_POINTS = 1

BONUS_BASE_POINTS = 10
BONUS_STEP_POINTS = 5
BONUS_MAX_POINTS = 100
BONUS_TOKENS_PER_DAY = Decimal("1")
BONUS_TOKEN_CAP_DAYS = 7


@dataclass(frozen=True)
class ScoringRules:
    """Constants for per-transaction scoring."""

    base_points_per_trade: int = BASE_POINTS_PER_TRADE
    minting_multiplier: int = MINTING_MULTIPLIER
    max_points_per_trade: int = MAX_POINTS_PER_TRADE
    base_transaction_points: int = BASE_TRANSACTION_POINTS

    @classmethod
    def from_settings(cls, settings: ScoringSettings) -> ScoringRules:
        return cls(
            base_points_per_trade=settings.base_points_per_trade,
            minting_multiplier=settings.minting_multiplier,
            max_points_per_trade=settings.max_points_per_trade,
            base_transaction_points=settings.base_transaction_points,
        )


@dataclass(frozen=True)
class BonusCurve:
    """Constants for the daily holding bonus."""

    base_points: int = BONUS_BASE_POINTS
    step_points: int = BONUS_STEP_POINTS
    max_points: int = BONUS_MAX_POINTS
    tokens_per_day: Decimal = BONUS_TOKENS_PER_DAY
    token_cap_days: int = BONUS_TOKEN_CAP_DAYS

    @classmethod
    def from_settings(cls, settings: BonusSettings) -> BonusCurve:
        return cls(
            base_points=settings.base_points,
            step_points=settings.step_points,
            max_points=settings.max_points,
            tokens_per_day=settings.tokens_per_day,
            token_cap_days=settings.token_cap_days,
        )

    def bonus_points(self, streak: int) -> int:
        if streak < 1:
            raise ValidationError(f"Streak must be >= 1, got {streak}")
        return min(self.base_points + self.step_points * (streak - 1), self.max_points)

    def token_bonus(self, streak: int) -> Decimal:
        if streak < 1:
            raise ValidationError(f"Streak must be >= 1, got {streak}")
        return self.tokens_per_day * min(streak, self.token_cap_days)


def trade_notional(amount: Decimal, price: Decimal | None) -> Decimal:
    """Value used for trade scoring: amount * price when priced, else amount."""
    return amount * price if price is not None else amount


def trade_points(notional: Decimal, *, has_minted: bool, rules: ScoringRules) -> int:
    # Decimal throughout; the cap is applied before converting to int.
    clamped = max(Decimal(0), notional)
    raw = (rules.base_points_per_trade * clamped.sqrt()).to_integral_value(rounding=ROUND_FLOOR)
    if has_minted:
        raw *= rules.minting_multiplier
    points = int(min(raw, Decimal(rules.max_points_per_trade)))
    return max(points, 1)


def score_transaction(
    tx_type: TransactionType,
    amount: Decimal,
    price: Decimal | None,
    *,
    has_minted: bool,
    rules: ScoringRules,
) -> int:
    """Points for an ingested transaction."""
    if tx_type in (TransactionType.BUY, TransactionType.SELL):
        return trade_points(trade_notional(amount, price), has_minted=has_minted, rules=rules)
    if tx_type == TransactionType.BASE_TRANSACTION:
        return rules.base_transaction_points
    raise ValidationError(f"{tx_type.value} transactions are not scored from ingestion")
