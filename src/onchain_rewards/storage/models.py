"""SQLAlchemy models for persistent storage.

This module defines the database schema for user profiles, the transaction
ledger, achievements, platform aggregates and bonus run audit records.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class UserProfileModel(Base):
    """One row per wallet address.

    ``tier`` and ``current_rank`` are projections: they are only written by
    the tier recompute and leaderboard refresh paths.
    """

    __tablename__ = "user_profiles"

    address: Mapped[str] = mapped_column(String(42), primary_key=True)

    fid: Mapped[int | None] = mapped_column(Integer, nullable=True)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    pfp_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    tier: Mapped[str] = mapped_column(String(16), nullable=False, default="Bronze")
    total_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    current_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_transactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    token_balance: Mapped[Decimal] = mapped_column(Numeric(38, 8), nullable=False, default=Decimal(0))
    tokens_earned: Mapped[Decimal] = mapped_column(Numeric(38, 8), nullable=False, default=Decimal(0))

    weekly_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_holding_bonus_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    referrals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    achievement_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    has_minted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    join_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    last_active: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint("total_points >= 0", name="ck_user_profiles_points_non_negative"),
        CheckConstraint("token_balance >= 0", name="ck_user_profiles_balance_non_negative"),
        Index("idx_user_profiles_ranking", "total_points", "join_date"),
        Index("idx_user_profiles_fid", "fid"),
    )


class TransactionModel(Base):
    """Immutable ledger record.

    A streak-bonus row carries ``bonus_day``; the unique
    (user_address, bonus_day) pair is the once-per-day idempotency marker.
    """

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_address: Mapped[str] = mapped_column(String(42), nullable=False)
    type: Mapped[str] = mapped_column(String(24), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 8), nullable=False)
    price: Mapped[Decimal | None] = mapped_column(Numeric(38, 8), nullable=True)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)

    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    bonus_day: Mapped[date | None] = mapped_column(Date, nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("tx_hash", name="uq_transactions_tx_hash"),
        UniqueConstraint("user_address", "bonus_day", name="uq_transactions_bonus_day"),
        CheckConstraint("points >= 0", name="ck_transactions_points_non_negative"),
        Index("idx_transactions_user_ts", "user_address", "timestamp"),
        Index("idx_transactions_type", "type"),
    )


class AchievementModel(Base):
    """Admin-defined achievement."""

    __tablename__ = "achievements"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    icon: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    rarity: Mapped[str] = mapped_column(String(16), nullable=False)

    requirement_type: Mapped[str] = mapped_column(String(16), nullable=False)
    requirement_value: Mapped[int] = mapped_column(BigInteger, nullable=False)
    timeframe: Mapped[str] = mapped_column(String(16), nullable=False, default="all_time")

    points_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (Index("idx_achievements_active", "is_active"),)


class UserAchievementModel(Base):
    """Unlock record; at most one per (user, achievement)."""

    __tablename__ = "user_achievements"

    user_address: Mapped[str] = mapped_column(String(42), primary_key=True)
    achievement_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    progress: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class PlatformStatsModel(Base):
    """Aggregate counters (single row keyed 'current')."""

    __tablename__ = "platform_stats"

    id: Mapped[str] = mapped_column(String(16), primary_key=True)
    total_users: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_transactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    token_supply: Mapped[Decimal] = mapped_column(Numeric(38, 8), nullable=False, default=Decimal(0))
    token_circulating: Mapped[Decimal] = mapped_column(Numeric(38, 8), nullable=False, default=Decimal(0))
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class MilestoneModel(Base):
    """Platform-wide goal tracked against PlatformStats."""

    __tablename__ = "milestones"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # users/transactions/points
    target: Mapped[int] = mapped_column(BigInteger, nullable=False)
    current: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class BonusRunModel(Base):
    """Audit record of one daily bonus distribution run."""

    __tablename__ = "bonus_runs"

    run_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    bonus_day: Mapped[date] = mapped_column(Date, nullable=False)
    trigger: Mapped[str] = mapped_column(String(16), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed: Mapped[int] = mapped_column(Integer, nullable=False)
    bonused: Mapped[int] = mapped_column(Integer, nullable=False)
    skipped: Mapped[int] = mapped_column(Integer, nullable=False)
    failed_json: Mapped[list[dict[str, str]]] = mapped_column(JSON, nullable=False, default=list)
    cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_bonus_runs_bonus_day", "bonus_day"),)
