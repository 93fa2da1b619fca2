"""
Gamification storage interface.

Defines the collaborator operations the engine depends on. Implementations own
persistence details; the engine only relies on the atomicity guarantees
documented on each method.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import List, Optional, Set

from goaltracker.models.gamification import (
    AchievementDefinition,
    AchievementLeaderboardEntry,
    ActivityFeedEntry,
    LeaderboardEntry,
    OverviewStats,
    UserAchievementProgress,
    UserStatsSnapshot,
)


class GamificationStore(ABC):
    """Abstract interface for gamification storage."""

    @abstractmethod
    async def get_user_stats_snapshot(self, user_id: str) -> Optional[UserStatsSnapshot]:
        """
        Get goal counts, total XP and stored streak for a user.

        Returns:
            Snapshot, or None if the user does not exist
        """

    @abstractmethod
    async def get_recent_activity_days(self, user_id: str, lookback_days: int) -> Set[date]:
        """
        Get the distinct UTC days with recorded activity.

        Args:
            user_id: User ID
            lookback_days: How many days back from today to include

        Returns:
            Set of activity days
        """

    @abstractmethod
    async def increment_user_xp(self, user_id: str, delta: int) -> Optional[int]:
        """
        Atomically add `delta` to the user's total XP.

        Must be a single atomic increment at the storage boundary, never a
        read-modify-write. Also raises the stored level to match the new total.

        Returns:
            Total XP after the increment, or None if the user does not exist
        """

    @abstractmethod
    async def save_user_streak(
        self,
        user_id: str,
        streak_count: int,
        last_activity_at: Optional[datetime],
    ) -> None:
        """Persist the derived streak on the user record."""

    @abstractmethod
    async def get_or_create_user_achievement_progress(
        self, user_id: str, achievement_id: str
    ) -> UserAchievementProgress:
        """
        Get the progress record, creating it with progress 0 if missing.
        """

    @abstractmethod
    async def list_user_achievement_progress(self, user_id: str) -> List[UserAchievementProgress]:
        """Get every stored progress record for a user."""

    @abstractmethod
    async def try_complete_user_achievement(
        self, user_id: str, achievement_id: str, completed_at: datetime
    ) -> bool:
        """
        Atomically mark an achievement completed.

        Returns:
            True if this call performed the completion, False if it was
            already completed (possibly by a concurrent caller)
        """

    @abstractmethod
    async def complete_user_achievement_with_xp(
        self,
        user_id: str,
        achievement_id: str,
        completed_at: datetime,
        xp_reward: int,
    ) -> Optional[int]:
        """
        Atomically mark an achievement completed and add its XP reward.

        The check-and-set completion and the XP increment commit together or
        not at all.

        Returns:
            Total XP after the reward if this call performed the completion,
            None if it was already completed (no XP is added then)

        Raises:
            NotFoundError: the user does not exist (nothing is written)
        """

    @abstractmethod
    async def update_user_achievement_progress(
        self, user_id: str, achievement_id: str, progress: float
    ) -> Optional[float]:
        """
        Raise stored progress to `progress`.

        Never lowers progress and never touches a completed record.

        Returns:
            Stored progress after the update (may exceed `progress`), or None
            if the record is completed
        """

    @abstractmethod
    async def list_achievement_definitions(self) -> List[AchievementDefinition]:
        """Get the achievement catalog."""

    @abstractmethod
    async def get_user_total_xp(self, user_id: str) -> Optional[int]:
        """Get the user's total XP, or None if the user does not exist."""

    @abstractmethod
    async def list_top_users_by_xp(self, limit: int = 10) -> List[LeaderboardEntry]:
        """Get users ordered by total XP (highest first), ranked from 1."""

    @abstractmethod
    async def list_top_users_by_achievements(
        self, limit: int = 10
    ) -> List[AchievementLeaderboardEntry]:
        """
        Get users ordered by completed achievement count, then by the XP
        those achievements rewarded, ranked from 1.
        """

    @abstractmethod
    async def list_recent_unlocks(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> List[ActivityFeedEntry]:
        """Get the user's completed achievements, most recent first."""

    @abstractmethod
    async def get_overview_stats(self) -> OverviewStats:
        """Get system-wide totals across all users."""
