"""
GamificationFacade - single entry point for domain modules

Sequences streak -> XP -> achievements for one domain event. The order is
fixed: achievements keyed on XP or streak must see post-award values.
"""

import logging
from typing import Any, List, Mapping, Optional, Union

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from goaltracker.config import get_streak_lookback_days
from goaltracker.db.store import GamificationStore
from goaltracker.exceptions import NotFoundError, ValidationError
from goaltracker.gamification.achievement_engine import AchievementEngine
from goaltracker.gamification.catalog import AchievementCatalog
from goaltracker.gamification.streak_tracker import StreakTracker, compute_streak, longest_streak
from goaltracker.gamification.xp_ledger import XPConfig, XPLedger, calculate_level_info, level_for_xp
from goaltracker.models.gamification import (
    AchievementDefinition,
    AchievementLeaderboardEntry,
    ActivityFeedEntry,
    GamificationEvent,
    GamificationNotification,
    GamificationResult,
    GoalCompleted,
    LeaderboardEntry,
    LeaderboardType,
    OverviewStats,
    ProgressRecorded,
    UserGamificationProfile,
    UserStatsSnapshot,
    XPAction,
)
from goaltracker.monitoring import track_event
from goaltracker.utils.datetime_helpers import to_activity_day

logger = logging.getLogger(__name__)

STREAK_MILESTONE_DAYS = 7

EVENT_ACTIONS = {
    ProgressRecorded: XPAction.UPDATE_PROGRESS,
    GoalCompleted: XPAction.COMPLETE_GOAL,
}

_event_adapter = TypeAdapter(GamificationEvent)


def parse_event(event: Any) -> Union[ProgressRecorded, GoalCompleted]:
    """
    Validate a domain event at the facade boundary

    Accepts an event model or its dict form. Anything else, or a dict with an
    unknown event_type or difficulty, raises goaltracker's ValidationError
    instead of a KeyError or pydantic error.
    """
    if type(event) in EVENT_ACTIONS:
        return event
    if not isinstance(event, Mapping):
        raise ValidationError(
            f"Unsupported event: {type(event).__name__}",
            field="event",
            value=type(event).__name__,
        )
    try:
        return _event_adapter.validate_python(event)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid event: {e.error_count()} error(s)",
            field="event",
            value=event.get("event_type"),
            context={"errors": e.errors(include_url=False)},
            cause=e,
        ) from e


class GamificationFacade:
    """
    Facade over the ledger, streak tracker and achievement engine.

    Responsibilities:
    - Streak recomputation from activity days
    - Event XP with difficulty and streak multipliers
    - Achievement evaluation against post-award statistics
    - Level-up, unlock and streak milestone notifications
    """

    def __init__(
        self,
        store: GamificationStore,
        xp_config: Optional[XPConfig] = None,
        lookback_days: Optional[int] = None,
    ):
        self.store = store
        self.ledger = XPLedger(store, xp_config)
        self.streaks = StreakTracker(store)
        self.catalog = AchievementCatalog(store)
        self.achievements = AchievementEngine(store, self.ledger, self.catalog)
        self.lookback_days = lookback_days or get_streak_lookback_days()
        logger.debug("GamificationFacade initialized")

    async def _require_stats(self, user_id: str) -> UserStatsSnapshot:
        stats = await self.store.get_user_stats_snapshot(user_id) if user_id else None
        if stats is None:
            raise NotFoundError(
                f"User {user_id} not found",
                record_type="User",
                record_id=user_id,
                user_id=user_id,
            )
        return stats

    async def handle_event(
        self, user_id: str, event: Union[GamificationEvent, Mapping[str, Any]]
    ) -> GamificationResult:
        """
        Process gamification for a recorded progress entry or completed goal.

        Args:
            user_id: User ID
            event: ProgressRecorded or GoalCompleted, or the same as a dict

        Returns:
            GamificationResult for UI display

        Raises:
            NotFoundError: unknown user
            ValidationError: unsupported event, invalid difficulty or action
            StorageError: propagated unchanged from the store
        """
        event = parse_event(event)
        action = EVENT_ACTIONS[type(event)]

        with track_event(event.event_type):
            # 1. Current state
            await self._require_stats(user_id)
            activity_days = await self.store.get_recent_activity_days(user_id, self.lookback_days)
            activity_days = set(activity_days) | {to_activity_day(event.occurred_at)}

            # 2. Streak
            streak = await self.streaks.update(user_id, activity_days)

            # 3. Event XP, rewarded with the new streak
            xp_result = await self.ledger.award(
                user_id, action, event.difficulty, streak.current_streak
            )

            # 4. Achievements against post-award statistics
            stats = await self._require_stats(user_id)
            stats = stats.model_copy(update={
                "total_xp": max(stats.total_xp, xp_result.total_xp_after),
                "current_streak": streak.current_streak,
            })
            existing = {
                p.achievement_id: p
                for p in await self.store.list_user_achievement_progress(user_id)
            }
            evaluation = await self.achievements.evaluate(user_id, stats, existing)

        # 5. Consolidated result
        achievement_xp = sum(d.xp_reward for d in evaluation.newly_unlocked)
        total_xp = xp_result.total_xp_after + achievement_xp
        new_level = level_for_xp(total_xp)
        leveled_up = new_level > xp_result.level_before

        result = GamificationResult(
            xp_awarded=xp_result.xp_awarded,
            achievement_xp_awarded=achievement_xp,
            total_xp=total_xp,
            level_before=xp_result.level_before,
            new_level=new_level,
            leveled_up=leveled_up,
            current_streak=streak.current_streak,
            newly_unlocked_achievements=evaluation.newly_unlocked,
            notifications=self._build_notifications(
                leveled_up, new_level, evaluation.newly_unlocked, streak.current_streak
            ),
        )

        logger.info(
            f"Gamification processed for {event.event_type}: user={user_id}, "
            f"xp={result.xp_awarded}+{achievement_xp}, streak={result.current_streak}, "
            f"achievements={len(result.newly_unlocked_achievements)}"
        )
        return result

    def _build_notifications(
        self,
        leveled_up: bool,
        new_level: int,
        unlocked: List[AchievementDefinition],
        streak_count: int,
    ) -> List[GamificationNotification]:
        notifications = []

        if leveled_up:
            notifications.append(GamificationNotification(
                type="level_up",
                title="Level Up!",
                message=f"Congratulations! You've reached level {new_level}!",
                data={"new_level": new_level},
            ))

        for achievement in unlocked:
            notifications.append(GamificationNotification(
                type="achievement_unlocked",
                title="Achievement Unlocked!",
                message=f'You\'ve earned the "{achievement.name or achievement.id}" achievement!',
                data={"achievement_id": achievement.id, "xp_reward": achievement.xp_reward},
            ))

        if streak_count > 0 and streak_count % STREAK_MILESTONE_DAYS == 0:
            notifications.append(GamificationNotification(
                type="streak_milestone",
                title="Streak Milestone!",
                message=f"Amazing! You've maintained a {streak_count}-day streak!",
                data={"streak_count": streak_count},
            ))

        return notifications

    async def get_user_profile(self, user_id: str) -> UserGamificationProfile:
        """Level, streak, achievements and achievement stats for a user"""
        stats = await self._require_stats(user_id)
        activity_days = await self.store.get_recent_activity_days(user_id, self.lookback_days)

        streak = compute_streak(activity_days)
        stats = stats.model_copy(update={"current_streak": streak.current_streak})

        return UserGamificationProfile(
            user_id=user_id,
            level=calculate_level_info(stats.total_xp),
            streak=streak,
            longest_streak=longest_streak(activity_days),
            achievements=await self.achievements.get_user_achievements(user_id, stats),
            stats=await self.achievements.get_achievement_stats(user_id),
        )

    async def get_leaderboard(
        self, kind: Union[LeaderboardType, str] = LeaderboardType.XP, limit: int = 10
    ) -> Union[List[LeaderboardEntry], List[AchievementLeaderboardEntry]]:
        """
        Leaderboard by XP, level or achievements

        Raises:
            ValidationError: unknown leaderboard kind or non-positive limit
        """
        try:
            kind = LeaderboardType(kind)
        except ValueError:
            raise ValidationError(f"Unknown leaderboard: {kind}", field="kind", value=kind) from None

        if kind == LeaderboardType.ACHIEVEMENTS:
            return await self.achievements.get_achievement_leaderboard(limit)
        # The stored level is derived from total XP, so both rankings share one order
        return await self.ledger.get_xp_leaderboard(limit)

    async def get_activity_feed(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> List[ActivityFeedEntry]:
        """Recent achievement unlocks for a known user, newest first"""
        await self._require_stats(user_id)
        return await self.achievements.get_activity_feed(user_id, limit, offset)

    async def get_overview_stats(self) -> OverviewStats:
        """System-wide totals: users, XP, unlocks, average level, active streaks"""
        return await self.store.get_overview_stats()
