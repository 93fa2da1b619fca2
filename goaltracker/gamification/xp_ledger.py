"""
XP Ledger

Computes XP awards, applies them as atomic increments and derives levels.

Leveling Curve:
- Cumulative XP required to reach level L is 50 * L * (L - 1)
- Level 1: 0 XP, level 2: 100 XP, level 3: 300 XP, level 4: 600 XP, level 5: 1000 XP

XP Award Rules:
- Progress update: 10 XP (base)
- Goal completion: 50 XP (base)
- Base XP is scaled by difficulty (easy 1.0, medium 1.5, hard 2.0, expert 3.0)
  and by the streak bonus: 1 + min(streak_days, 30) * 0.05
- Achievement unlocks: the achievement's own reward, no multipliers

Multipliers are Decimals so that exact halves (57.5 XP) round half-up
without binary float error.
"""

import logging
import math
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from goaltracker.db.store import GamificationStore
from goaltracker.exceptions import NotFoundError, ValidationError
from goaltracker.models.gamification import (
    AchievementDefinition,
    Difficulty,
    LeaderboardEntry,
    LevelInfo,
    XPAction,
    XPAwardResult,
)
from goaltracker.monitoring import record_xp_award

logger = logging.getLogger(__name__)

XP_PER_LEVEL_STEP = 50


def _as_decimal(value):
    # 0.05 as a float is 0.05000000000000000277; go through its repr instead
    return Decimal(repr(value)) if isinstance(value, float) else value


class XPConfig(BaseModel):
    """Tunable XP table"""
    base_xp: Dict[XPAction, int] = Field(default_factory=lambda: {
        XPAction.UPDATE_PROGRESS: 10,
        XPAction.COMPLETE_GOAL: 50,
    })
    difficulty_multipliers: Dict[Difficulty, Decimal] = Field(default_factory=lambda: {
        Difficulty.EASY: Decimal("1.0"),
        Difficulty.MEDIUM: Decimal("1.5"),
        Difficulty.HARD: Decimal("2.0"),
        Difficulty.EXPERT: Decimal("3.0"),
    })
    streak_bonus_per_day: Decimal = Decimal("0.05")
    streak_bonus_cap_days: int = 30

    @field_validator("difficulty_multipliers", mode="before")
    @classmethod
    def _multipliers_as_decimal(cls, value):
        if isinstance(value, dict):
            return {key: _as_decimal(multiplier) for key, multiplier in value.items()}
        return value

    @field_validator("streak_bonus_per_day", mode="before")
    @classmethod
    def _bonus_as_decimal(cls, value):
        return _as_decimal(value)


# ==========================================
# Level math
# ==========================================

def xp_required_for_level(level: int) -> int:
    """Cumulative XP needed to reach `level` (level 1 needs 0)"""
    if level < 1:
        raise ValidationError("Level must be at least 1", field="level", value=level)
    return XP_PER_LEVEL_STEP * level * (level - 1)


def level_for_xp(total_xp: int) -> int:
    """
    Largest level L such that 50 * L * (L - 1) <= total_xp

    L * (L - 1) is an integer, so the bound is equivalent to
    L * (L - 1) <= total_xp // 50, solved exactly with isqrt.
    """
    steps = max(0, total_xp) // XP_PER_LEVEL_STEP
    return (1 + math.isqrt(1 + 4 * steps)) // 2


def calculate_level_info(total_xp: int) -> LevelInfo:
    """
    Calculate level and progress toward the next level from total XP

    Returns:
        LevelInfo with current_level, xp_for_current_level, xp_for_next_level,
        xp_to_next_level and progress_to_next_level (0-1)
    """
    total_xp = max(0, total_xp)
    level = level_for_xp(total_xp)
    current_threshold = xp_required_for_level(level)
    next_threshold = xp_required_for_level(level + 1)

    return LevelInfo(
        current_level=level,
        total_xp=total_xp,
        xp_for_current_level=current_threshold,
        xp_for_next_level=next_threshold,
        xp_to_next_level=next_threshold - total_xp,
        progress_to_next_level=(total_xp - current_threshold) / (next_threshold - current_threshold),
    )


def _round_half_up(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


# ==========================================
# Ledger
# ==========================================

class XPLedger:
    """
    Awards XP through the store's atomic increment.

    Never reads the current total and writes back a new one; the level before
    an award is derived from the total the increment returned.
    """

    def __init__(self, store: GamificationStore, config: Optional[XPConfig] = None):
        self.store = store
        self.config = config or XPConfig()

    def _parse_action(self, action: Union[XPAction, str]) -> XPAction:
        try:
            return XPAction(action)
        except ValueError:
            raise ValidationError(f"Unknown action: {action}", field="action", value=action) from None

    def _parse_difficulty(self, difficulty: Union[Difficulty, str]) -> Difficulty:
        try:
            parsed = Difficulty(difficulty)
        except ValueError:
            parsed = None
        if parsed is None or parsed not in self.config.difficulty_multipliers:
            raise ValidationError(
                f"Unknown difficulty: {difficulty}", field="difficulty", value=difficulty
            )
        return parsed

    def streak_multiplier(self, streak_days: int) -> Decimal:
        """1 + min(streak_days, cap) * bonus_per_day"""
        if streak_days < 0:
            raise ValidationError(
                "Streak days cannot be negative", field="streak_days", value=streak_days
            )
        capped = min(streak_days, self.config.streak_bonus_cap_days)
        return 1 + capped * self.config.streak_bonus_per_day

    def calculate_xp(
        self,
        action: Union[XPAction, str],
        difficulty: Union[Difficulty, str],
        streak_days: int = 0,
    ) -> int:
        """
        XP for an action, before it is applied

        Raises:
            ValidationError: unknown action/difficulty, negative streak, or
                achievement_unlock (its XP comes from the achievement)
        """
        action = self._parse_action(action)
        if action == XPAction.ACHIEVEMENT_UNLOCK:
            raise ValidationError(
                "Achievement XP comes from the achievement's reward; use award_achievement_xp",
                field="action",
                value=action.value,
            )
        if action not in self.config.base_xp:
            raise ValidationError(f"No base XP for action: {action.value}", field="action", value=action.value)

        multiplier = self.config.difficulty_multipliers[self._parse_difficulty(difficulty)]
        raw = self.config.base_xp[action] * multiplier * self.streak_multiplier(streak_days)
        return _round_half_up(raw)

    async def award(
        self,
        user_id: str,
        action: Union[XPAction, str],
        difficulty: Union[Difficulty, str],
        current_streak_days: int = 0,
    ) -> XPAwardResult:
        """
        Award XP to user for an action and check for level up

        Args:
            user_id: User ID
            action: update_progress or complete_goal
            difficulty: easy, medium, hard or expert
            current_streak_days: Streak after this activity was counted

        Returns:
            XPAwardResult

        Raises:
            ValidationError: invalid action or difficulty
            NotFoundError: unknown user
            StorageError: propagated unchanged from the store
        """
        amount = self.calculate_xp(action, difficulty, current_streak_days)
        return await self._apply(user_id, amount, source=XPAction(action).value)

    async def award_achievement_xp(
        self, user_id: str, achievement: AchievementDefinition
    ) -> XPAwardResult:
        """Award an achievement's fixed XP reward (no multipliers)"""
        return await self._apply(
            user_id,
            achievement.xp_reward,
            source=XPAction.ACHIEVEMENT_UNLOCK.value,
        )

    async def complete_achievement(
        self,
        user_id: str,
        achievement: AchievementDefinition,
        completed_at: datetime,
    ) -> Optional[XPAwardResult]:
        """
        Mark an achievement completed and pay its reward in one store transaction

        The completion and the XP increment commit together, so a failure
        later in the same evaluation can never leave an unpaid completion.

        Returns:
            XPAwardResult, or None if the achievement was already completed
            (possibly by a concurrent caller); no XP is awarded then

        Raises:
            NotFoundError: unknown user
            StorageError: propagated unchanged from the store
        """
        if not user_id:
            raise NotFoundError("User not found", record_type="User", record_id=user_id)

        total_after = await self.store.complete_user_achievement_with_xp(
            user_id, achievement.id, completed_at, achievement.xp_reward
        )
        if total_after is None:
            return None
        return self._record(
            user_id, achievement.xp_reward, XPAction.ACHIEVEMENT_UNLOCK.value, total_after
        )

    async def _apply(self, user_id: str, amount: int, source: str) -> XPAwardResult:
        if not user_id:
            raise NotFoundError("User not found", record_type="User", record_id=user_id)
        if amount <= 0:
            raise ValidationError("XP amount must be positive", field="amount", value=amount)

        total_after = await self.store.increment_user_xp(user_id, amount)
        if total_after is None:
            raise NotFoundError(
                f"User {user_id} not found",
                record_type="User",
                record_id=user_id,
                user_id=user_id,
                operation="increment_user_xp",
            )

        return self._record(user_id, amount, source, total_after)

    def _record(self, user_id: str, amount: int, source: str, total_after: int) -> XPAwardResult:
        total_before = total_after - amount
        level_before = level_for_xp(total_before)
        level_after = level_for_xp(total_after)
        leveled_up = level_after > level_before

        logger.info(
            f"Awarded {amount} XP to user {user_id} for {source}. "
            f"Total: {total_after} XP, Level: {level_after}"
        )
        if leveled_up:
            logger.info(f"User {user_id} leveled up from {level_before} to {level_after}!")

        record_xp_award(source, amount, leveled_up)

        return XPAwardResult(
            xp_awarded=amount,
            total_xp_after=total_after,
            level_before=level_before,
            level_after=level_after,
            leveled_up=leveled_up,
        )

    async def get_user_level(self, user_id: str) -> LevelInfo:
        """Get user's current level information"""
        total_xp = await self.store.get_user_total_xp(user_id)
        if total_xp is None:
            raise NotFoundError(f"User {user_id} not found", record_type="User", record_id=user_id)
        return calculate_level_info(total_xp)

    async def get_xp_leaderboard(self, limit: int = 10) -> List[LeaderboardEntry]:
        """Top users by total XP"""
        if limit <= 0:
            raise ValidationError("Limit must be positive", field="limit", value=limit)
        return await self.store.list_top_users_by_xp(limit)
