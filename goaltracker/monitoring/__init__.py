"""Monitoring infrastructure for the gamification engine"""
from goaltracker.monitoring.prometheus_metrics import (
    metrics,
    track_event,
    track_database_query,
    record_xp_award,
    record_achievement_unlock,
    record_completion_race,
)

__all__ = [
    "metrics",
    "track_event",
    "track_database_query",
    "record_xp_award",
    "record_achievement_unlock",
    "record_completion_race",
]
