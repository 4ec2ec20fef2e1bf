"""
Repository Layer for ContractEar

Exports all repository classes for dependency injection.
"""

from app.infrastructure.db.repositories.base_repository import BaseRepository
from app.infrastructure.db.repositories.analysis_repository import AnalysisRepository
from app.infrastructure.db.repositories.user_profile_repository import (
    UserProfileRepository,
)
from app.infrastructure.db.repositories.usage_log_repository import (
    UsageLogRepository,
)


__all__ = [
    # Base
    "BaseRepository",
    # Repositories
    "AnalysisRepository",
    "UserProfileRepository",
    "UsageLogRepository",
]
