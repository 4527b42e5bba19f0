"""Data models for the ledger module."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar

from onchain_rewards.errors import ValidationError

BASE_CHAIN_ID = 8453


class TransactionType(str, Enum):
    """Kinds of point-earning ledger records."""

    BUY = "buy"
    SELL = "sell"
    BASE_TRANSACTION = "base_transaction"
    STREAK_BONUS = "streak_bonus"
    ACHIEVEMENT_REWARD = "achievement_reward"


# Types accepted from the ingestion path; the others are written internally.
INGESTIBLE_TYPES = frozenset(
    {TransactionType.BUY, TransactionType.SELL, TransactionType.BASE_TRANSACTION}
)

# Types that count toward a profile's total_transactions.
USER_ACTIVITY_TYPES = INGESTIBLE_TYPES


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"


class Rarity(str, Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"

    @property
    def order(self) -> int:
        return list(Rarity).index(self)


class RequirementType(str, Enum):
    TRANSACTIONS = "transactions"
    POINTS = "points"
    STREAK = "streak"
    BALANCE = "balance"
    REFERRALS = "referrals"
    VOLUME = "volume"


class Timeframe(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all_time"


@dataclass(frozen=True)
class TierInfo:
    """A named point bracket.

    Attributes:
        name: Tier name (e.g. "Bronze").
        min_points: Inclusive lower bound.
        max_points: Inclusive upper bound, or None for the open-ended top tier.
        color: Foreground display color.
        bg_color: Background display color.
    """

    name: str
    min_points: int
    max_points: int | None
    color: str = ""
    bg_color: str = ""

    def contains(self, points: int) -> bool:
        if points < self.min_points:
            return False
        return self.max_points is None or points <= self.max_points


# --- Transaction metadata: one closed variant per transaction type ---


@dataclass(frozen=True)
class TradeMetadata:
    """Metadata for buy/sell transactions."""

    KIND: ClassVar[str] = "trade"

    chain_id: int = BASE_CHAIN_ID
    contract_address: str | None = None
    usd_amount: Decimal | None = None
    has_minted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.KIND,
            "chain_id": self.chain_id,
            "contract_address": self.contract_address,
            "usd_amount": str(self.usd_amount) if self.usd_amount is not None else None,
            "has_minted": self.has_minted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TradeMetadata:
        usd = data.get("usd_amount")
        return cls(
            chain_id=int(data.get("chain_id", BASE_CHAIN_ID)),
            contract_address=data.get("contract_address"),
            usd_amount=Decimal(str(usd)) if usd is not None else None,
            has_minted=bool(data.get("has_minted", False)),
        )


@dataclass(frozen=True)
class BaseChainMetadata:
    """Metadata for generic base-chain activity."""

    KIND: ClassVar[str] = "base_chain"

    chain_id: int = BASE_CHAIN_ID
    gas_used: int | None = None
    block_number: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.KIND,
            "chain_id": self.chain_id,
            "gas_used": self.gas_used,
            "block_number": self.block_number,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BaseChainMetadata:
        gas = data.get("gas_used")
        block = data.get("block_number")
        return cls(
            chain_id=int(data.get("chain_id", BASE_CHAIN_ID)),
            gas_used=int(gas) if gas is not None else None,
            block_number=int(block) if block is not None else None,
        )


@dataclass(frozen=True)
class StreakBonusMetadata:
    """Metadata for the daily holding bonus."""

    KIND: ClassVar[str] = "streak_bonus"

    streak: int
    token_bonus: Decimal = Decimal(0)
    bonus_type: str = "daily_holding"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.KIND,
            "streak": self.streak,
            "token_bonus": str(self.token_bonus),
            "bonus_type": self.bonus_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StreakBonusMetadata:
        return cls(
            streak=int(data["streak"]),
            token_bonus=Decimal(str(data.get("token_bonus", "0"))),
            bonus_type=str(data.get("bonus_type", "daily_holding")),
        )


@dataclass(frozen=True)
class AchievementRewardMetadata:
    """Metadata for points granted by an achievement unlock."""

    KIND: ClassVar[str] = "achievement_reward"

    achievement_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.KIND, "achievement_id": self.achievement_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AchievementRewardMetadata:
        return cls(achievement_id=str(data["achievement_id"]))


TransactionMetadata = TradeMetadata | BaseChainMetadata | StreakBonusMetadata | AchievementRewardMetadata

METADATA_BY_TYPE: dict[TransactionType, type] = {
    TransactionType.BUY: TradeMetadata,
    TransactionType.SELL: TradeMetadata,
    TransactionType.BASE_TRANSACTION: BaseChainMetadata,
    TransactionType.STREAK_BONUS: StreakBonusMetadata,
    TransactionType.ACHIEVEMENT_REWARD: AchievementRewardMetadata,
}


def coerce_transaction_type(value: TransactionType | str) -> TransactionType:
    """Parse a transaction type, raising ValidationError for unknown values."""
    try:
        return TransactionType(value)
    except ValueError as e:
        raise ValidationError(f"Unknown transaction type: {value!r}") from e


def check_metadata(tx_type: TransactionType, metadata: TransactionMetadata | None) -> None:
    """Ensure the metadata variant belongs to the transaction type."""
    if metadata is None:
        return
    expected = METADATA_BY_TYPE[tx_type]
    if not isinstance(metadata, expected):
        raise ValidationError(
            f"{type(metadata).__name__} is not valid metadata for {tx_type.value} transactions"
        )


def metadata_from_dict(
    tx_type: TransactionType, data: dict[str, Any] | None
) -> TransactionMetadata | None:
    """Rebuild the metadata variant for a stored transaction."""
    if not data:
        return None
    cls = METADATA_BY_TYPE[tx_type]
    if data.get("kind") != cls.KIND:
        raise ValidationError(f"Stored metadata kind {data.get('kind')!r} does not match {tx_type.value}")
    return cls.from_dict(data)


@dataclass(frozen=True)
class LeaderboardEntry:
    """Derived leaderboard row; reconstructible from user profiles."""

    user_address: str
    points: int
    rank: int
    tier: str
    transactions: int
    token_balance: Decimal
    join_date: datetime
    last_updated: datetime

    def to_dict(self) -> dict[str, object]:
        """Serialize for the Redis snapshot cache."""
        return {
            "user_address": self.user_address,
            "points": self.points,
            "rank": self.rank,
            "tier": self.tier,
            "transactions": self.transactions,
            "token_balance": str(self.token_balance),
            "join_date": self.join_date.isoformat(),
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LeaderboardEntry:
        return cls(
            user_address=str(data["user_address"]),
            points=int(data["points"]),
            rank=int(data["rank"]),
            tier=str(data["tier"]),
            transactions=int(data["transactions"]),
            token_balance=Decimal(str(data["token_balance"])),
            join_date=datetime.fromisoformat(str(data["join_date"])),
            last_updated=datetime.fromisoformat(str(data["last_updated"])),
        )
