"""
In-memory gamification store

Implements the full GamificationStore contract with per-user asyncio locks so
the atomicity guarantees hold inside one event loop. Used by tests and local
development; nothing is persisted.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple

from goaltracker.db.store import GamificationStore
from goaltracker.exceptions import NotFoundError
from goaltracker.gamification.xp_ledger import level_for_xp
from goaltracker.models.gamification import (
    AchievementDefinition,
    AchievementLeaderboardEntry,
    ActivityFeedEntry,
    LeaderboardEntry,
    OverviewStats,
    UserAchievementProgress,
    UserStatsSnapshot,
)
from goaltracker.utils.datetime_helpers import to_activity_day, to_utc, today_utc

logger = logging.getLogger(__name__)


class InMemoryGamificationStore(GamificationStore):
    """In-memory store for users, goals, activity and achievement progress"""

    def __init__(self, achievements: Iterable[AchievementDefinition] = ()):
        self._users: Dict[str, dict] = {}
        self._goals: Dict[str, List[dict]] = defaultdict(list)
        self._activity: Dict[str, List[datetime]] = defaultdict(list)
        self._achievements: List[AchievementDefinition] = list(achievements)
        self._progress: Dict[Tuple[str, str], UserAchievementProgress] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ==========================================
    # Fixture helpers
    # ==========================================

    def add_user(
        self,
        user_id: str,
        total_xp: int = 0,
        streak_count: int = 0,
        name: Optional[str] = None,
    ) -> None:
        """Create a user record"""
        self._users[user_id] = {
            "name": name,
            "total_xp": total_xp,
            "current_level": level_for_xp(total_xp),
            "streak_count": streak_count,
            "last_activity_at": None,
        }

    def get_user(self, user_id: str) -> Optional[dict]:
        """Raw user record (copy)"""
        user = self._users.get(user_id)
        return dict(user) if user else None

    def add_goal(self, user_id: str, module_id: str, completed: bool = False) -> None:
        """Record a goal for a user"""
        self._goals[user_id].append({"module_id": module_id, "is_completed": completed})

    def record_activity(self, user_id: str, occurred_at: datetime) -> None:
        """Record a progress entry or goal completion timestamp"""
        self._activity[user_id].append(to_utc(occurred_at))

    def set_achievements(self, achievements: Iterable[AchievementDefinition]) -> None:
        """Replace the achievement catalog"""
        self._achievements = list(achievements)

    # ==========================================
    # GamificationStore
    # ==========================================

    async def get_user_stats_snapshot(self, user_id: str) -> Optional[UserStatsSnapshot]:
        user = self._users.get(user_id)
        if user is None:
            return None

        goals = self._goals.get(user_id, [])
        module_completed: Dict[str, int] = defaultdict(int)
        for goal in goals:
            if goal["is_completed"]:
                module_completed[goal["module_id"]] += 1

        return UserStatsSnapshot(
            goals_created=len(goals),
            goals_completed=sum(module_completed.values()),
            module_goals_completed=dict(module_completed),
            total_xp=user["total_xp"],
            current_streak=user["streak_count"],
        )

    async def get_recent_activity_days(self, user_id: str, lookback_days: int) -> Set[date]:
        cutoff = today_utc() - timedelta(days=lookback_days)
        return {
            day for day in (to_activity_day(ts) for ts in self._activity.get(user_id, []))
            if day >= cutoff
        }

    async def increment_user_xp(self, user_id: str, delta: int) -> Optional[int]:
        async with self._locks[user_id]:
            user = self._users.get(user_id)
            if user is None:
                return None

            # Simulates I/O latency at the storage boundary
            await asyncio.sleep(0)

            user["total_xp"] += delta
            user["current_level"] = max(user["current_level"], level_for_xp(user["total_xp"]))
            return user["total_xp"]

    async def save_user_streak(
        self,
        user_id: str,
        streak_count: int,
        last_activity_at: Optional[datetime],
    ) -> None:
        async with self._locks[user_id]:
            user = self._users.get(user_id)
            if user is None:
                return
            user["streak_count"] = streak_count
            user["last_activity_at"] = last_activity_at

    async def get_or_create_user_achievement_progress(
        self, user_id: str, achievement_id: str
    ) -> UserAchievementProgress:
        async with self._locks[user_id]:
            key = (user_id, achievement_id)
            if key not in self._progress:
                self._progress[key] = UserAchievementProgress(
                    user_id=user_id, achievement_id=achievement_id
                )
                logger.debug(f"Created progress record for {user_id}/{achievement_id}")
            return self._progress[key].model_copy()

    async def list_user_achievement_progress(self, user_id: str) -> List[UserAchievementProgress]:
        return [
            record.model_copy()
            for (owner, _), record in self._progress.items()
            if owner == user_id
        ]

    async def try_complete_user_achievement(
        self, user_id: str, achievement_id: str, completed_at: datetime
    ) -> bool:
        async with self._locks[user_id]:
            return await self._complete_locked(user_id, achievement_id, completed_at)

    async def complete_user_achievement_with_xp(
        self,
        user_id: str,
        achievement_id: str,
        completed_at: datetime,
        xp_reward: int,
    ) -> Optional[int]:
        async with self._locks[user_id]:
            user = self._users.get(user_id)
            if user is None:
                raise NotFoundError(
                    f"User {user_id} not found", record_type="User", record_id=user_id, user_id=user_id
                )
            if not await self._complete_locked(user_id, achievement_id, completed_at):
                return None

            user["total_xp"] += xp_reward
            user["current_level"] = max(user["current_level"], level_for_xp(user["total_xp"]))
            return user["total_xp"]

    async def _complete_locked(self, user_id: str, achievement_id: str, completed_at: datetime) -> bool:
        key = (user_id, achievement_id)
        record = self._progress.get(key)
        if record is not None and record.is_completed:
            return False

        await asyncio.sleep(0)

        self._progress[key] = UserAchievementProgress(
            user_id=user_id,
            achievement_id=achievement_id,
            progress=1.0,
            is_completed=True,
            completed_at=completed_at,
        )
        return True

    async def update_user_achievement_progress(
        self, user_id: str, achievement_id: str, progress: float
    ) -> Optional[float]:
        async with self._locks[user_id]:
            key = (user_id, achievement_id)
            record = self._progress.get(key)
            if record is None:
                record = UserAchievementProgress(user_id=user_id, achievement_id=achievement_id)
            if record.is_completed:
                return None
            self._progress[key] = record.model_copy(
                update={"progress": max(record.progress, progress)}
            )
            return self._progress[key].progress

    async def list_achievement_definitions(self) -> List[AchievementDefinition]:
        return list(self._achievements)

    async def get_user_total_xp(self, user_id: str) -> Optional[int]:
        user = self._users.get(user_id)
        return user["total_xp"] if user else None

    async def list_top_users_by_xp(self, limit: int = 10) -> List[LeaderboardEntry]:
        ranked = sorted(self._users.items(), key=lambda item: item[1]["total_xp"], reverse=True)
        return [
            LeaderboardEntry(
                rank=index + 1,
                user_id=user_id,
                user_name=user["name"],
                total_xp=user["total_xp"],
                current_level=user["current_level"],
            )
            for index, (user_id, user) in enumerate(ranked[:limit])
        ]


    def _completed(self, user_id: str) -> List[Tuple[UserAchievementProgress, AchievementDefinition]]:
        definitions = {d.id: d for d in self._achievements}
        return [
            (record, definitions[achievement_id])
            for (owner, achievement_id), record in self._progress.items()
            if owner == user_id and record.is_completed and achievement_id in definitions
        ]

    async def list_top_users_by_achievements(
        self, limit: int = 10
    ) -> List[AchievementLeaderboardEntry]:
        rows = []
        for user_id, user in self._users.items():
            completed = self._completed(user_id)
            rows.append((user_id, user["name"], len(completed), sum(d.xp_reward for _, d in completed)))
        rows.sort(key=lambda row: (-row[2], -row[3], row[0]))

        return [
            AchievementLeaderboardEntry(
                rank=index + 1,
                user_id=user_id,
                user_name=name,
                achievement_count=count,
                achievement_xp=xp,
            )
            for index, (user_id, name, count, xp) in enumerate(rows[:limit])
        ]

    async def list_recent_unlocks(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> List[ActivityFeedEntry]:
        user = self._users.get(user_id) or {}
        completed = sorted(
            self._completed(user_id),
            key=lambda pair: (pair[0].completed_at is not None, pair[0].completed_at),
            reverse=True,
        )
        return [
            ActivityFeedEntry(
                user_id=user_id,
                user_name=user.get("name"),
                achievement_id=definition.id,
                achievement_name=definition.name or definition.id,
                xp_earned=definition.xp_reward,
                module_id=definition.module_id,
                timestamp=record.completed_at,
            )
            for record, definition in completed[offset:offset + limit]
        ]

    async def get_overview_stats(self) -> OverviewStats:
        users = list(self._users.values())
        if not users:
            return OverviewStats()
        return OverviewStats(
            total_users=len(users),
            total_xp_awarded=sum(u["total_xp"] for u in users),
            total_achievements_unlocked=sum(1 for r in self._progress.values() if r.is_completed),
            average_level=sum(u["current_level"] for u in users) / len(users),
            active_streaks=sum(1 for u in users if u["streak_count"] > 0),
        )
