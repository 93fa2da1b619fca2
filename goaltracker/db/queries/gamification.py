"""Gamification database queries"""
import json
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, time
from typing import Any, AsyncGenerator, Dict, Iterable, List, Optional, Set

import psycopg
from psycopg_pool import PoolTimeout
from pydantic import ValidationError as PydanticValidationError

from goaltracker.db.connection import Database, db
from goaltracker.db.store import GamificationStore
from goaltracker.exceptions import ConfigurationError, NotFoundError, wrap_storage_exception
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
from goaltracker.monitoring import track_database_query
from goaltracker.utils.datetime_helpers import REFERENCE_TIMEZONE, days_ago

logger = logging.getLogger(__name__)

_PROGRESS_COLUMNS = "user_id, achievement_id, progress, is_completed, completed_at"

# Returns a row only for the caller that flipped is_completed
_COMPLETE_ACHIEVEMENT_SQL = """
    INSERT INTO user_achievements (user_id, achievement_id, progress, is_completed, completed_at)
    VALUES (%s, %s, 1, TRUE, %s)
    ON CONFLICT (user_id, achievement_id) DO UPDATE
    SET progress = 1,
        is_completed = TRUE,
        completed_at = EXCLUDED.completed_at,
        updated_at = CURRENT_TIMESTAMP
    WHERE user_achievements.is_completed = FALSE
    RETURNING id
"""

_INCREMENT_XP_SQL = """
    UPDATE users
    SET total_xp = total_xp + %s,
        updated_at = CURRENT_TIMESTAMP
    WHERE id = %s
    RETURNING total_xp
"""

_RAISE_LEVEL_SQL = """
    UPDATE users
    SET current_level = GREATEST(current_level, %s)
    WHERE id = %s
"""


class PostgresGamificationStore(GamificationStore):
    """
    PostgreSQL implementation of the gamification store.

    Atomicity lives in single statements: XP is added with
    `total_xp = total_xp + %s`, completion is a conditional upsert that only
    returns a row for the caller that flipped is_completed, and progress only
    moves through GREATEST().
    """

    def __init__(self, database: Database = db):
        self.database = database

    @asynccontextmanager
    async def _cursor(
        self,
        operation: str,
        user_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> AsyncGenerator[psycopg.AsyncCursor, None]:
        """Cursor in its own transaction, committed on success"""
        try:
            with track_database_query(operation):
                async with self.database.connection() as conn:
                    async with conn.cursor() as cur:
                        yield cur
                    await conn.commit()
        except (psycopg.Error, PoolTimeout) as e:
            raise wrap_storage_exception(
                e, operation=operation, user_id=user_id, context=context
            ) from e

    # ==========================================
    # User statistics
    # ==========================================

    async def get_user_stats_snapshot(self, user_id: str) -> Optional[UserStatsSnapshot]:
        async with self._cursor("get_user_stats_snapshot", user_id) as cur:
            await cur.execute(
                """
                SELECT u.total_xp, u.streak_count,
                       (SELECT COUNT(*) FROM goals g WHERE g.user_id = u.id) AS goals_created
                FROM users u
                WHERE u.id = %s
                """,
                (user_id,)
            )
            user = await cur.fetchone()
            if not user:
                return None

            await cur.execute(
                """
                SELECT module_id, COUNT(*) AS completed
                FROM goals
                WHERE user_id = %s AND is_completed = TRUE
                GROUP BY module_id
                """,
                (user_id,)
            )
            module_completed = {row['module_id']: row['completed'] for row in await cur.fetchall()}

        return UserStatsSnapshot(
            goals_created=user['goals_created'],
            goals_completed=sum(module_completed.values()),
            module_goals_completed=module_completed,
            total_xp=user['total_xp'],
            current_streak=user['streak_count'],
        )

    async def get_recent_activity_days(self, user_id: str, lookback_days: int) -> Set[date]:
        since = datetime.combine(days_ago(lookback_days), time.min, tzinfo=REFERENCE_TIMEZONE)

        async with self._cursor("get_recent_activity_days", user_id) as cur:
            await cur.execute(
                """
                SELECT (recorded_at AT TIME ZONE 'UTC')::date AS day
                FROM progress_entries
                WHERE user_id = %s AND recorded_at >= %s
                UNION
                SELECT (completed_at AT TIME ZONE 'UTC')::date AS day
                FROM goals
                WHERE user_id = %s AND completed_at >= %s
                """,
                (user_id, since, user_id, since)
            )
            return {row['day'] for row in await cur.fetchall()}

    async def get_user_total_xp(self, user_id: str) -> Optional[int]:
        async with self._cursor("get_user_total_xp", user_id) as cur:
            await cur.execute("SELECT total_xp FROM users WHERE id = %s", (user_id,))
            row = await cur.fetchone()
            return row['total_xp'] if row else None

    async def list_top_users_by_xp(self, limit: int = 10) -> List[LeaderboardEntry]:
        async with self._cursor("list_top_users_by_xp", context={"limit": limit}) as cur:
            await cur.execute(
                """
                SELECT id, name, total_xp, current_level
                FROM users
                ORDER BY total_xp DESC, id
                LIMIT %s
                """,
                (limit,)
            )
            rows = await cur.fetchall()

        return [
            LeaderboardEntry(
                rank=rank,
                user_id=row['id'],
                user_name=row['name'],
                total_xp=row['total_xp'],
                current_level=row['current_level'],
            )
            for rank, row in enumerate(rows, start=1)
        ]

    async def list_top_users_by_achievements(
        self, limit: int = 10
    ) -> List[AchievementLeaderboardEntry]:
        async with self._cursor("list_top_users_by_achievements", context={"limit": limit}) as cur:
            await cur.execute(
                """
                SELECT u.id, u.name,
                       COUNT(a.id) AS achievement_count,
                       COALESCE(SUM(a.xp_reward), 0) AS achievement_xp
                FROM users u
                LEFT JOIN user_achievements ua
                       ON ua.user_id = u.id AND ua.is_completed = TRUE
                LEFT JOIN achievements a ON a.id = ua.achievement_id
                GROUP BY u.id, u.name
                ORDER BY achievement_count DESC, achievement_xp DESC, u.id
                LIMIT %s
                """,
                (limit,)
            )
            rows = await cur.fetchall()

        return [
            AchievementLeaderboardEntry(
                rank=rank,
                user_id=row['id'],
                user_name=row['name'],
                achievement_count=row['achievement_count'],
                achievement_xp=row['achievement_xp'],
            )
            for rank, row in enumerate(rows, start=1)
        ]

    async def list_recent_unlocks(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> List[ActivityFeedEntry]:
        context = {"limit": limit, "offset": offset}
        async with self._cursor("list_recent_unlocks", user_id, context) as cur:
            await cur.execute(
                """
                SELECT ua.user_id, COALESCE(u.name, u.email) AS user_name,
                       ua.achievement_id, a.name AS achievement_name,
                       a.xp_reward AS xp_earned, a.module_id, ua.completed_at AS timestamp
                FROM user_achievements ua
                JOIN achievements a ON a.id = ua.achievement_id
                JOIN users u ON u.id = ua.user_id
                WHERE ua.user_id = %s AND ua.is_completed = TRUE
                ORDER BY ua.completed_at DESC, ua.achievement_id
                LIMIT %s OFFSET %s
                """,
                (user_id, limit, offset)
            )
            rows = await cur.fetchall()

        return [ActivityFeedEntry.model_validate(row) for row in rows]

    async def get_overview_stats(self) -> OverviewStats:
        async with self._cursor("get_overview_stats") as cur:
            await cur.execute(
                """
                SELECT COUNT(*) AS total_users,
                       COALESCE(SUM(total_xp), 0) AS total_xp_awarded,
                       COALESCE(AVG(current_level), 0) AS average_level,
                       COUNT(*) FILTER (WHERE streak_count > 0) AS active_streaks
                FROM users
                """
            )
            users = await cur.fetchone()
            await cur.execute(
                "SELECT COUNT(*) AS unlocked FROM user_achievements WHERE is_completed = TRUE"
            )
            unlocked = await cur.fetchone()

        return OverviewStats(
            total_users=users['total_users'],
            total_xp_awarded=users['total_xp_awarded'],
            total_achievements_unlocked=unlocked['unlocked'],
            average_level=float(users['average_level']),
            active_streaks=users['active_streaks'],
        )

    # ==========================================
    # XP and streak writes
    # ==========================================

    async def increment_user_xp(self, user_id: str, delta: int) -> Optional[int]:
        async with self._cursor("increment_user_xp", user_id, {"delta": delta}) as cur:
            return await self._increment(cur, user_id, delta)

    async def _increment(self, cur: psycopg.AsyncCursor, user_id: str, delta: int) -> Optional[int]:
        await cur.execute(_INCREMENT_XP_SQL, (delta, user_id))
        row = await cur.fetchone()
        if not row:
            return None

        # Same transaction; GREATEST keeps the level monotonic under concurrent awards
        await cur.execute(_RAISE_LEVEL_SQL, (level_for_xp(row['total_xp']), user_id))
        return row['total_xp']

    async def save_user_streak(
        self,
        user_id: str,
        streak_count: int,
        last_activity_at: Optional[datetime],
    ) -> None:
        async with self._cursor("save_user_streak", user_id) as cur:
            await cur.execute(
                """
                UPDATE users
                SET streak_count = %s,
                    last_activity_at = %s,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = %s
                """,
                (streak_count, last_activity_at, user_id)
            )

    # ==========================================
    # Achievement progress
    # ==========================================

    async def get_or_create_user_achievement_progress(
        self, user_id: str, achievement_id: str
    ) -> UserAchievementProgress:
        async with self._cursor(
            "get_or_create_user_achievement_progress", user_id, {"achievement_id": achievement_id}
        ) as cur:
            await cur.execute(
                """
                INSERT INTO user_achievements (user_id, achievement_id, progress)
                VALUES (%s, %s, 0)
                ON CONFLICT (user_id, achievement_id) DO NOTHING
                """,
                (user_id, achievement_id)
            )
            await cur.execute(
                f"""
                SELECT {_PROGRESS_COLUMNS}
                FROM user_achievements
                WHERE user_id = %s AND achievement_id = %s
                """,
                (user_id, achievement_id)
            )
            row = await cur.fetchone()

        return UserAchievementProgress.model_validate(row)

    async def list_user_achievement_progress(self, user_id: str) -> List[UserAchievementProgress]:
        async with self._cursor("list_user_achievement_progress", user_id) as cur:
            await cur.execute(
                f"""
                SELECT {_PROGRESS_COLUMNS}
                FROM user_achievements
                WHERE user_id = %s
                ORDER BY achievement_id
                """,
                (user_id,)
            )
            rows = await cur.fetchall()

        return [UserAchievementProgress.model_validate(row) for row in rows]

    async def try_complete_user_achievement(
        self, user_id: str, achievement_id: str, completed_at: datetime
    ) -> bool:
        async with self._cursor(
            "try_complete_user_achievement", user_id, {"achievement_id": achievement_id}
        ) as cur:
            await cur.execute(_COMPLETE_ACHIEVEMENT_SQL, (user_id, achievement_id, completed_at))
            performed = await cur.fetchone() is not None

        if not performed:
            logger.debug(f"Achievement {achievement_id} already completed for user {user_id}")
        return performed

    async def complete_user_achievement_with_xp(
        self,
        user_id: str,
        achievement_id: str,
        completed_at: datetime,
        xp_reward: int,
    ) -> Optional[int]:
        context = {"achievement_id": achievement_id, "xp_reward": xp_reward}
        async with self._cursor("complete_user_achievement_with_xp", user_id, context) as cur:
            await cur.execute(_COMPLETE_ACHIEVEMENT_SQL, (user_id, achievement_id, completed_at))
            if await cur.fetchone() is None:
                logger.debug(f"Achievement {achievement_id} already completed for user {user_id}")
                return None

            total_xp = await self._increment(cur, user_id, xp_reward)
            if total_xp is None:
                # Leaving the block by exception skips the commit; the completion rolls back
                raise NotFoundError(
                    f"User {user_id} not found",
                    record_type="User",
                    record_id=user_id,
                    user_id=user_id,
                    operation="complete_user_achievement_with_xp",
                )
            return total_xp

    async def update_user_achievement_progress(
        self, user_id: str, achievement_id: str, progress: float
    ) -> Optional[float]:
        async with self._cursor(
            "update_user_achievement_progress", user_id, {"achievement_id": achievement_id}
        ) as cur:
            await cur.execute(
                """
                INSERT INTO user_achievements (user_id, achievement_id, progress)
                VALUES (%s, %s, %s)
                ON CONFLICT (user_id, achievement_id) DO UPDATE
                SET progress = GREATEST(user_achievements.progress, EXCLUDED.progress),
                    updated_at = CURRENT_TIMESTAMP
                WHERE user_achievements.is_completed = FALSE
                RETURNING progress
                """,
                (user_id, achievement_id, progress)
            )
            row = await cur.fetchone()

        return row['progress'] if row else None

    # ==========================================
    # Achievement catalog
    # ==========================================

    async def list_achievement_definitions(self) -> List[AchievementDefinition]:
        async with self._cursor("list_achievement_definitions") as cur:
            await cur.execute(
                """
                SELECT id, name, description, icon, tier, module_id, xp_reward, condition
                FROM achievements
                ORDER BY sort_order, id
                """
            )
            rows = await cur.fetchall()

        try:
            return [AchievementDefinition.model_validate(row) for row in rows]
        except PydanticValidationError as e:
            raise ConfigurationError(
                f"Stored achievement catalog is malformed: {e.error_count()} error(s)",
                config_key="achievements",
                operation="list_achievement_definitions",
                context={"errors": e.errors(include_url=False)},
                cause=e,
            ) from e

    async def seed_achievements(self, definitions: Iterable[AchievementDefinition]) -> int:
        """
        Upsert achievement definitions (catalog order becomes sort order)

        Returns:
            Number of definitions written
        """
        definitions = list(definitions)

        async with self._cursor("seed_achievements") as cur:
            for sort_order, definition in enumerate(definitions):
                await cur.execute(
                    """
                    INSERT INTO achievements
                        (id, name, description, icon, tier, module_id, xp_reward, condition, sort_order)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s)
                    ON CONFLICT (id) DO UPDATE
                    SET name = EXCLUDED.name,
                        description = EXCLUDED.description,
                        icon = EXCLUDED.icon,
                        tier = EXCLUDED.tier,
                        module_id = EXCLUDED.module_id,
                        xp_reward = EXCLUDED.xp_reward,
                        condition = EXCLUDED.condition,
                        sort_order = EXCLUDED.sort_order
                    """,
                    (
                        definition.id,
                        definition.name,
                        definition.description,
                        definition.icon,
                        definition.tier.value,
                        definition.module_id,
                        definition.xp_reward,
                        json.dumps(definition.condition.model_dump(by_alias=True)),
                        sort_order,
                    )
                )

        logger.info(f"Seeded {len(definitions)} achievement definitions")
        return len(definitions)
