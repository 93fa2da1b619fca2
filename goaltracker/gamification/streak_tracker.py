"""
Streak Tracking

A streak is the number of consecutive UTC calendar days with at least one
recorded activity, ending today or yesterday. The streak is derived from the
activity days every time; nothing is incremented in place, so recomputing it
is always safe.
"""

from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Union
import logging

from goaltracker.db.store import GamificationStore
from goaltracker.models.gamification import ActivityEvent, StreakStatus
from goaltracker.utils.datetime_helpers import REFERENCE_TIMEZONE, to_activity_days, to_utc, today_utc

logger = logging.getLogger(__name__)

Activity = Iterable[Union[date, datetime, ActivityEvent]]


def _unwrap(activity: Activity) -> list:
    return [a.occurred_at if isinstance(a, ActivityEvent) else a for a in activity]


def compute_streak(activity: Activity, today: Optional[date] = None) -> StreakStatus:
    """
    Derive the current streak from activity timestamps or dates

    Logic:
    - Bucket activity into distinct UTC days
    - If the latest day is neither today nor yesterday, the streak is broken
    - Otherwise walk back day by day from the latest day until a day is missing

    Args:
        activity: Dates, datetimes or ActivityEvents, any order (naive datetimes are UTC)
        today: Reference day (defaults to today in UTC)

    Returns:
        StreakStatus
    """
    if today is None:
        today = today_utc()

    days = {d for d in to_activity_days(_unwrap(activity)) if d <= today}
    if not days:
        return StreakStatus()

    last_day = max(days)
    if last_day < today - timedelta(days=1):
        return StreakStatus(last_activity_date=last_day)

    start = last_day
    while start - timedelta(days=1) in days:
        start -= timedelta(days=1)

    return StreakStatus(
        current_streak=(last_day - start).days + 1,
        is_active=True,
        last_activity_date=last_day,
        streak_start_date=start,
    )


def longest_streak(activity: Activity) -> int:
    """Longest run of consecutive activity days in the history"""
    days = sorted(to_activity_days(_unwrap(activity)))
    best = 0
    run = 0
    previous = None
    for day in days:
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
        best = max(best, run)
        previous = day
    return best


def _last_activity_at(activity: list, status: StreakStatus) -> Optional[datetime]:
    """Latest activity timestamp on the latest activity day (midnight if only dates are known)"""
    if status.last_activity_date is None:
        return None
    timestamps = [
        to_utc(a) for a in activity
        if isinstance(a, datetime) and to_utc(a).date() == status.last_activity_date
    ]
    if timestamps:
        return max(timestamps)
    return datetime.combine(status.last_activity_date, datetime.min.time(), tzinfo=REFERENCE_TIMEZONE)


class StreakTracker:
    """Computes streaks and persists the derived value on the user record"""

    def __init__(self, store: GamificationStore):
        self.store = store

    async def update(
        self,
        user_id: str,
        activity: Activity,
        today: Optional[date] = None,
    ) -> StreakStatus:
        """
        Recompute the user's streak and save it

        Args:
            user_id: User ID
            activity: Activity days or timestamps, most recent first
            today: Reference day (defaults to today in UTC)

        Returns:
            StreakStatus with current_streak and is_active
        """
        activity = _unwrap(activity)
        status = compute_streak(activity, today)
        last_activity_at = _last_activity_at(activity, status)

        await self.store.save_user_streak(user_id, status.current_streak, last_activity_at)

        if status.is_active:
            logger.info(f"Streak for user {user_id}: {status.current_streak} days")
        else:
            logger.info(f"Streak for user {user_id} is broken (last activity {status.last_activity_date})")

        return status
