"""Storage layer - Database schemas and repositories."""

from onchain_rewards.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
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
from onchain_rewards.storage.repos import (
    AchievementDTO,
    AchievementRepository,
    BonusRunDTO,
    BonusRunRepository,
    MilestoneDTO,
    MilestoneRepository,
    PlatformStatsDTO,
    PlatformStatsRepository,
    TransactionDTO,
    TransactionRepository,
    UserAchievementDTO,
    UserAchievementRepository,
    UserProfileDTO,
    UserProfileRepository,
)

__all__ = [
    "AchievementDTO",
    "AchievementModel",
    "AchievementRepository",
    "Base",
    "BonusRunDTO",
    "BonusRunModel",
    "BonusRunRepository",
    "DatabaseManager",
    "MilestoneDTO",
    "MilestoneModel",
    "MilestoneRepository",
    "PlatformStatsDTO",
    "PlatformStatsModel",
    "PlatformStatsRepository",
    "TransactionDTO",
    "TransactionModel",
    "TransactionRepository",
    "UserAchievementDTO",
    "UserAchievementModel",
    "UserAchievementRepository",
    "UserProfileDTO",
    "UserProfileModel",
    "UserProfileRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
