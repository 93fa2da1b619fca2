"""
Achievement condition evaluation

Maps a condition and a UserStatsSnapshot to a completion ratio in [0, 1].
Every condition kind is matched explicitly; an unknown kind is an error,
never a silent zero.
"""

from typing import Tuple

from goaltracker.exceptions import ValidationError
from goaltracker.models.gamification import (
    Condition,
    GoalsCompletedCondition,
    GoalsCreatedCondition,
    ModuleGoalsCompletedCondition,
    StreakDaysCondition,
    UserStatsSnapshot,
    XpEarnedCondition,
)


def _measure(condition: Condition, stats: UserStatsSnapshot) -> Tuple[int, int, str]:
    """(current value, target value, name of the target field)"""
    if isinstance(condition, GoalsCreatedCondition):
        return stats.goals_created, condition.count, "count"
    if isinstance(condition, GoalsCompletedCondition):
        return stats.goals_completed, condition.count, "count"
    if isinstance(condition, ModuleGoalsCompletedCondition):
        return stats.module_goals_completed.get(condition.module_id, 0), condition.count, "count"
    if isinstance(condition, StreakDaysCondition):
        return stats.current_streak, condition.days, "days"
    if isinstance(condition, XpEarnedCondition):
        return stats.total_xp, condition.amount, "amount"

    raise ValidationError(
        f"Unsupported achievement condition: {type(condition).__name__}",
        field="condition",
        value=getattr(condition, "type", None),
    )


def current_value(condition: Condition, stats: UserStatsSnapshot) -> int:
    """The statistic the condition measures"""
    value, _, _ = _measure(condition, stats)
    return value


def target_value(condition: Condition) -> int:
    """The threshold the statistic must reach"""
    _, target, _ = _measure(condition, UserStatsSnapshot())
    return target


def ratio(condition: Condition, stats: UserStatsSnapshot) -> float:
    """
    Completion ratio of a condition against a stats snapshot

    Returns:
        min(1, current / target)

    Raises:
        ValidationError: unknown condition kind or non-positive target
    """
    value, target, field = _measure(condition, stats)
    if target <= 0:
        raise ValidationError(
            f"Condition {condition.type} needs a positive {field}",
            field=field,
            value=target,
        )
    return min(1.0, max(0, value) / target)
