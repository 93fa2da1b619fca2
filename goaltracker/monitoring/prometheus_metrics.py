"""Prometheus metrics definitions and helpers"""
import logging
import time
from contextlib import contextmanager
from prometheus_client import Counter, Histogram
from goaltracker.config import ENABLE_PROMETHEUS

logger = logging.getLogger(__name__)


class GamificationMetrics:
    """Container for all Prometheus metrics"""

    def __init__(self, enabled: bool = ENABLE_PROMETHEUS):
        self._enabled = enabled
        if not enabled:
            logger.info("Prometheus metrics disabled")
            return

        # XP Metrics
        self.xp_awarded_total = Counter(
            'gamification_xp_awarded_total',
            'Total XP awarded',
            ['source']
        )

        self.level_ups_total = Counter(
            'gamification_level_ups_total',
            'Total level-ups'
        )

        # Achievement Metrics
        self.achievements_unlocked_total = Counter(
            'gamification_achievements_unlocked_total',
            'Total achievements unlocked',
            ['tier']
        )

        self.completion_races_total = Counter(
            'gamification_completion_races_total',
            'Achievement completions lost to a concurrent evaluation'
        )

        # Latency Metrics
        self.event_duration_seconds = Histogram(
            'gamification_event_duration_seconds',
            'Time to handle one gamification event',
            ['event_type'],
            buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
        )

        self.db_query_duration_seconds = Histogram(
            'gamification_db_query_duration_seconds',
            'Gamification storage query latency',
            ['query_type'],
            buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0]
        )

        logger.info("Prometheus metrics initialized")

    @property
    def enabled(self) -> bool:
        """Check if metrics are enabled"""
        return self._enabled


# Global metrics instance
metrics = GamificationMetrics()


@contextmanager
def track_event(event_type: str):
    """Track gamification event handling latency"""
    if not metrics.enabled:
        yield
        return

    start_time = time.perf_counter()
    try:
        yield
    finally:
        metrics.event_duration_seconds.labels(event_type=event_type).observe(
            time.perf_counter() - start_time
        )


@contextmanager
def track_database_query(query_type: str):
    """Track storage query latency"""
    if not metrics.enabled:
        yield
        return

    start_time = time.perf_counter()
    try:
        yield
    finally:
        metrics.db_query_duration_seconds.labels(query_type=query_type).observe(
            time.perf_counter() - start_time
        )


def record_xp_award(source: str, amount: int, leveled_up: bool) -> None:
    """Count awarded XP and level-ups"""
    if not metrics.enabled:
        return

    metrics.xp_awarded_total.labels(source=source).inc(amount)
    if leveled_up:
        metrics.level_ups_total.inc()


def record_achievement_unlock(tier: str) -> None:
    """Count an unlocked achievement"""
    if not metrics.enabled:
        return
    metrics.achievements_unlocked_total.labels(tier=tier).inc()


def record_completion_race() -> None:
    """Count a completion already performed by a concurrent evaluation"""
    if not metrics.enabled:
        return
    metrics.completion_races_total.inc()
