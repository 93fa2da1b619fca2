"""
Date/Time Handling Utilities

Activity is bucketed into calendar days in the reference timezone (UTC).

CRITICAL RULES:
- Always store datetimes as timezone-aware UTC (use to_utc())
- Naive datetimes are assumed to already be UTC
- Never mix naive and aware datetimes
"""

import logging
from datetime import datetime, date, timedelta
from typing import Iterable, Set, Union
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

REFERENCE_TIMEZONE = ZoneInfo("UTC")


def now_utc() -> datetime:
    """
    Get current datetime in UTC (timezone-aware)

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(REFERENCE_TIMEZONE)


def today_utc() -> date:
    """Today's calendar date in the reference timezone"""
    return now_utc().date()


def to_utc(dt: datetime) -> datetime:
    """
    Convert datetime to UTC

    Args:
        dt: Datetime to convert (naive datetimes are assumed UTC)

    Returns:
        Timezone-aware datetime in UTC
    """
    if dt.tzinfo is None:
        logger.debug(f"Received naive datetime, assuming UTC: {dt}")
        dt = dt.replace(tzinfo=REFERENCE_TIMEZONE)
    return dt.astimezone(REFERENCE_TIMEZONE)


def to_activity_day(value: Union[date, datetime]) -> date:
    """Calendar day (UTC) on which an activity happened"""
    if isinstance(value, datetime):
        return to_utc(value).date()
    return value


def to_activity_days(values: Iterable[Union[date, datetime]]) -> Set[date]:
    """Distinct UTC calendar days from a mix of dates and datetimes"""
    return {to_activity_day(v) for v in values}


def days_ago(days: int, today: date = None) -> date:
    """Date `days` before `today` (defaults to today in UTC)"""
    return (today or today_utc()) - timedelta(days=days)
