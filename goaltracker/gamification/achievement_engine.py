"""
Achievement Engine

Evaluates every catalog achievement against a user's statistics, records
monotonic progress and unlocks achievements exactly once.

Exactly-once rests on the store's check-and-set completion, which commits
together with the achievement's XP reward: only the caller whose completion
succeeds emits the unlock, and a caller that loses the race treats the
achievement as already awarded. A failure later in the pass leaves every
earlier unlock fully paid.
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Mapping, Optional
import logging

from goaltracker.db.store import GamificationStore
from goaltracker.exceptions import ValidationError
from goaltracker.gamification import conditions
from goaltracker.gamification.catalog import AchievementCatalog
from goaltracker.gamification.xp_ledger import XPLedger
from goaltracker.models.gamification import (
    AchievementEvaluation,
    AchievementLeaderboardEntry,
    AchievementStats,
    ActivityFeedEntry,
    UserAchievementProgress,
    UserAchievementView,
    UserStatsSnapshot,
)
from goaltracker.monitoring import record_achievement_unlock, record_completion_race
from goaltracker.utils.datetime_helpers import now_utc

logger = logging.getLogger(__name__)


class AchievementEngine:
    """Decides which achievements newly complete and awards them"""

    def __init__(
        self,
        store: GamificationStore,
        ledger: XPLedger,
        catalog: Optional[AchievementCatalog] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.catalog = catalog or AchievementCatalog(store)

    async def evaluate(
        self,
        user_id: str,
        stats: UserStatsSnapshot,
        existing_progress: Mapping[str, UserAchievementProgress],
        now: Optional[datetime] = None,
    ) -> AchievementEvaluation:
        """
        Check every not-yet-completed achievement for the user

        Args:
            user_id: User ID
            stats: Statistics reflecting the latest XP and streak
            existing_progress: Stored progress keyed by achievement id
            now: Completion timestamp (defaults to now in UTC)

        Returns:
            AchievementEvaluation with newly_unlocked definitions and the
            progress records that changed

        Raises:
            ValidationError: a catalog condition has a non-positive threshold
            StorageError: propagated unchanged from the store
        """
        completed_at = now or now_utc()
        evaluation = AchievementEvaluation()

        for definition in await self.catalog.definitions():
            record = existing_progress.get(definition.id)
            if record is not None and record.is_completed:
                continue

            if record is None:
                record = await self.store.get_or_create_user_achievement_progress(
                    user_id, definition.id
                )
                if record.is_completed:
                    continue

            achieved = conditions.ratio(definition.condition, stats)

            if achieved >= 1:
                award = await self.ledger.complete_achievement(user_id, definition, completed_at)
                if award is None:
                    record_completion_race()
                    logger.info(
                        f"Achievement {definition.id} for user {user_id} "
                        f"was already completed by a concurrent evaluation"
                    )
                    continue

                record_achievement_unlock(definition.tier.value)
                logger.info(
                    f"User {user_id} unlocked achievement: {definition.id} "
                    f"({definition.name}) +{definition.xp_reward} XP"
                )
                evaluation.newly_unlocked.append(definition)
                evaluation.updated_progress.append(UserAchievementProgress(
                    user_id=user_id,
                    achievement_id=definition.id,
                    progress=1.0,
                    is_completed=True,
                    completed_at=completed_at,
                ))
                continue

            if achieved > record.progress:
                stored = await self.store.update_user_achievement_progress(
                    user_id, definition.id, achieved
                )
                # None: completed concurrently; a higher stored value wins over a stale record
                if stored is not None:
                    evaluation.updated_progress.append(
                        record.model_copy(update={"progress": max(stored, achieved)})
                    )

        return evaluation

    async def get_user_achievements(
        self,
        user_id: str,
        stats: Optional[UserStatsSnapshot] = None,
        module_id: Optional[str] = None,
    ) -> List[UserAchievementView]:
        """
        Get user's achievements with progress

        Args:
            user_id: User ID
            stats: Current statistics, used for current/target values
            module_id: Only achievements belonging to this module

        Returns:
            One view per catalog achievement, completed first, then by progress
        """
        stored = {p.achievement_id: p for p in await self.store.list_user_achievement_progress(user_id)}
        stats = stats or UserStatsSnapshot()

        views = []
        for definition in await self.catalog.definitions():
            if module_id is not None and definition.module_id != module_id:
                continue

            record = stored.get(definition.id)
            target = conditions.target_value(definition.condition)
            is_completed = bool(record and record.is_completed)
            views.append(UserAchievementView(
                achievement=definition,
                progress=1.0 if is_completed else (record.progress if record else 0.0),
                current_value=target if is_completed else min(
                    target, conditions.current_value(definition.condition, stats)
                ),
                target_value=target,
                is_completed=is_completed,
                completed_at=record.completed_at if record else None,
            ))

        views.sort(key=lambda v: (not v.is_completed, -v.progress))
        return views

    async def get_achievement_stats(self, user_id: str) -> AchievementStats:
        """Aggregate achievement statistics for a user"""
        definitions = await self.catalog.definitions()
        by_id = {d.id: d for d in definitions}
        completed = [
            by_id[p.achievement_id]
            for p in await self.store.list_user_achievement_progress(user_id)
            if p.is_completed and p.achievement_id in by_id
        ]

        by_tier: Dict[str, int] = defaultdict(int)
        for definition in completed:
            by_tier[definition.tier.value] += 1

        total = len(definitions)
        return AchievementStats(
            total_achievements=total,
            completed_achievements=len(completed),
            completion_rate=len(completed) / total if total else 0.0,
            xp_from_achievements=sum(d.xp_reward for d in completed),
            achievements_by_tier=dict(by_tier),
        )

    async def get_achievement_leaderboard(self, limit: int = 10) -> List[AchievementLeaderboardEntry]:
        """Users ranked by completed achievements, ties broken by achievement XP"""
        if limit <= 0:
            raise ValidationError("Limit must be positive", field="limit", value=limit)
        return await self.store.list_top_users_by_achievements(limit)

    async def get_activity_feed(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> List[ActivityFeedEntry]:
        """
        Recent achievement unlocks for a user, newest first

        Args:
            user_id: User ID
            limit: Page size
            offset: Entries to skip
        """
        if limit <= 0:
            raise ValidationError("Limit must be positive", field="limit", value=limit)
        if offset < 0:
            raise ValidationError("Offset cannot be negative", field="offset", value=offset)
        return await self.store.list_recent_unlocks(user_id, limit, offset)
