"""Initial rewards ledger schema.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # User profiles
    op.create_table(
        "user_profiles",
        sa.Column("address", sa.String(42), nullable=False),
        sa.Column("fid", sa.Integer(), nullable=True),
        sa.Column("username", sa.String(64), nullable=True),
        sa.Column("display_name", sa.String(128), nullable=True),
        sa.Column("pfp_url", sa.Text(), nullable=True),
        sa.Column("tier", sa.String(16), nullable=False),
        sa.Column("total_points", sa.BigInteger(), nullable=False),
        sa.Column("current_rank", sa.Integer(), nullable=True),
        sa.Column("total_transactions", sa.Integer(), nullable=False),
        sa.Column("token_balance", sa.Numeric(38, 8), nullable=False),
        sa.Column("tokens_earned", sa.Numeric(38, 8), nullable=False),
        sa.Column("weekly_streak", sa.Integer(), nullable=False),
        sa.Column("last_holding_bonus_date", sa.Date(), nullable=True),
        sa.Column("referrals", sa.Integer(), nullable=False),
        sa.Column("achievement_ids", sa.JSON(), nullable=False),
        sa.Column("has_minted", sa.Boolean(), nullable=False),
        sa.Column("join_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("address"),
        sa.CheckConstraint("total_points >= 0", name="ck_user_profiles_points_non_negative"),
        sa.CheckConstraint("token_balance >= 0", name="ck_user_profiles_balance_non_negative"),
    )
    op.create_index("idx_user_profiles_ranking", "user_profiles", ["total_points", "join_date"])
    op.create_index("idx_user_profiles_fid", "user_profiles", ["fid"])

    # Transaction ledger
    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_address", sa.String(42), nullable=False),
        sa.Column("type", sa.String(24), nullable=False),
        sa.Column("amount", sa.Numeric(38, 8), nullable=False),
        sa.Column("price", sa.Numeric(38, 8), nullable=True),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("tx_hash", sa.String(66), nullable=True),
        sa.Column("bonus_day", sa.Date(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tx_hash", name="uq_transactions_tx_hash"),
        sa.UniqueConstraint("user_address", "bonus_day", name="uq_transactions_bonus_day"),
        sa.CheckConstraint("points >= 0", name="ck_transactions_points_non_negative"),
    )
    op.create_index("idx_transactions_user_ts", "transactions", ["user_address", "timestamp"])
    op.create_index("idx_transactions_type", "transactions", ["type"])

    # Achievements
    op.create_table(
        "achievements",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("icon", sa.String(16), nullable=False),
        sa.Column("rarity", sa.String(16), nullable=False),
        sa.Column("requirement_type", sa.String(16), nullable=False),
        sa.Column("requirement_value", sa.BigInteger(), nullable=False),
        sa.Column("timeframe", sa.String(16), nullable=False),
        sa.Column("points_reward", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_achievements_active", "achievements", ["is_active"])

    op.create_table(
        "user_achievements",
        sa.Column("user_address", sa.String(42), nullable=False),
        sa.Column("achievement_id", sa.String(64), nullable=False),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("progress", sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint("user_address", "achievement_id"),
    )

    # Platform aggregates
    op.create_table(
        "platform_stats",
        sa.Column("id", sa.String(16), nullable=False),
        sa.Column("total_users", sa.Integer(), nullable=False),
        sa.Column("total_transactions", sa.Integer(), nullable=False),
        sa.Column("total_points", sa.BigInteger(), nullable=False),
        sa.Column("token_supply", sa.Numeric(38, 8), nullable=False),
        sa.Column("token_circulating", sa.Numeric(38, 8), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "milestones",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("target", sa.BigInteger(), nullable=False),
        sa.Column("current", sa.BigInteger(), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # Bonus run audit trail
    op.create_table(
        "bonus_runs",
        sa.Column("run_id", sa.String(36), nullable=False),
        sa.Column("bonus_day", sa.Date(), nullable=False),
        sa.Column("trigger", sa.String(16), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed", sa.Integer(), nullable=False),
        sa.Column("bonused", sa.Integer(), nullable=False),
        sa.Column("skipped", sa.Integer(), nullable=False),
        sa.Column("failed_json", sa.JSON(), nullable=False),
        sa.Column("cancelled", sa.Boolean(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("run_id"),
    )
    op.create_index("idx_bonus_runs_bonus_day", "bonus_runs", ["bonus_day"])


def downgrade() -> None:
    op.drop_index("idx_bonus_runs_bonus_day", table_name="bonus_runs")
    op.drop_table("bonus_runs")
    op.drop_table("milestones")
    op.drop_table("platform_stats")
    op.drop_table("user_achievements")
    op.drop_index("idx_achievements_active", table_name="achievements")
    op.drop_table("achievements")
    op.drop_index("idx_transactions_type", table_name="transactions")
    op.drop_index("idx_transactions_user_ts", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("idx_user_profiles_fid", table_name="user_profiles")
    op.drop_index("idx_user_profiles_ranking", table_name="user_profiles")
    op.drop_table("user_profiles")
