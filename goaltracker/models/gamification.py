"""Pydantic models for the gamification engine"""
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, computed_field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Difficulty(str, Enum):
    """Goal difficulty, drives the XP multiplier"""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXPERT = "expert"


class XPAction(str, Enum):
    """Actions that earn XP"""
    UPDATE_PROGRESS = "update_progress"
    COMPLETE_GOAL = "complete_goal"
    ACHIEVEMENT_UNLOCK = "achievement_unlock"


class AchievementTier(str, Enum):
    """Achievement tiers/difficulty levels"""
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class LeaderboardType(str, Enum):
    """Ranking used by a leaderboard"""
    XP = "xp"
    LEVEL = "level"
    ACHIEVEMENTS = "achievements"


# ==========================================
# Achievement conditions
# ==========================================

class GoalsCreatedCondition(BaseModel):
    """User has created at least `count` goals"""
    model_config = ConfigDict(frozen=True)

    type: Literal["goals_created"] = "goals_created"
    count: int = Field(gt=0)


class GoalsCompletedCondition(BaseModel):
    """User has completed at least `count` goals across all modules"""
    model_config = ConfigDict(frozen=True)

    type: Literal["goals_completed"] = "goals_completed"
    count: int = Field(gt=0)


class ModuleGoalsCompletedCondition(BaseModel):
    """User has completed at least `count` goals in one module"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["module_goals_completed"] = "module_goals_completed"
    # Stored catalogs use "module"
    module_id: str = Field(alias="module")
    count: int = Field(gt=0)


class StreakDaysCondition(BaseModel):
    """User's current streak is at least `days` long"""
    model_config = ConfigDict(frozen=True)

    type: Literal["streak"] = "streak"
    days: int = Field(gt=0)


class XpEarnedCondition(BaseModel):
    """User has earned at least `amount` total XP"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["xp_earned"] = "xp_earned"
    amount: int = Field(alias="xpAmount", gt=0)


Condition = Annotated[
    Union[
        GoalsCreatedCondition,
        GoalsCompletedCondition,
        ModuleGoalsCompletedCondition,
        StreakDaysCondition,
        XpEarnedCondition,
    ],
    Field(discriminator="type"),
]


class AchievementDefinition(BaseModel):
    """Achievement catalog entry (immutable)"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""
    icon: str = ""
    tier: AchievementTier = AchievementTier.BRONZE
    module_id: Optional[str] = None
    xp_reward: int = Field(gt=0)
    condition: Condition


# ==========================================
# User state
# ==========================================

class UserStatsSnapshot(BaseModel):
    """Point-in-time user statistics supplied by the storage collaborator"""
    goals_created: int = Field(default=0, ge=0)
    goals_completed: int = Field(default=0, ge=0)
    module_goals_completed: Dict[str, int] = Field(default_factory=dict)
    total_xp: int = Field(default=0, ge=0)
    current_streak: int = Field(default=0, ge=0)


class UserAchievementProgress(BaseModel):
    """Per-user progress toward one achievement"""
    user_id: str
    achievement_id: str
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    is_completed: bool = False
    completed_at: Optional[datetime] = None


class ActivityEvent(BaseModel):
    """A single recorded activity, used only for streaks"""
    user_id: str
    occurred_at: datetime


# ==========================================
# Inbound events
# ==========================================

class ProgressRecorded(BaseModel):
    """A progress entry was recorded against a goal"""
    event_type: Literal["progress_recorded"] = "progress_recorded"
    difficulty: Difficulty = Difficulty.MEDIUM
    module_id: Optional[str] = None
    occurred_at: datetime = Field(default_factory=_utcnow)


class GoalCompleted(BaseModel):
    """A goal was marked complete"""
    event_type: Literal["goal_completed"] = "goal_completed"
    difficulty: Difficulty = Difficulty.MEDIUM
    module_id: Optional[str] = None
    occurred_at: datetime = Field(default_factory=_utcnow)


GamificationEvent = Annotated[
    Union[ProgressRecorded, GoalCompleted],
    Field(discriminator="event_type"),
]


# ==========================================
# Results
# ==========================================

class LevelInfo(BaseModel):
    """Level and progress toward the next level"""
    current_level: int
    total_xp: int
    xp_for_current_level: int
    xp_for_next_level: int
    xp_to_next_level: int
    progress_to_next_level: float


class XPAwardResult(BaseModel):
    """Outcome of a single XP award"""
    xp_awarded: int
    total_xp_after: int
    level_before: int
    level_after: int
    leveled_up: bool


class StreakStatus(BaseModel):
    """Current streak derived from activity days"""
    current_streak: int = 0
    is_active: bool = False
    last_activity_date: Optional[date] = None
    streak_start_date: Optional[date] = None


class AchievementEvaluation(BaseModel):
    """Outcome of one achievement evaluation pass"""
    newly_unlocked: List[AchievementDefinition] = Field(default_factory=list)
    updated_progress: List[UserAchievementProgress] = Field(default_factory=list)


class GamificationNotification(BaseModel):
    """User-facing notification produced by an event"""
    type: Literal["level_up", "achievement_unlocked", "streak_milestone"]
    title: str
    message: str
    data: Dict[str, Union[int, str]] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


class GamificationResult(BaseModel):
    """Consolidated result of handling one domain event"""
    xp_awarded: int
    achievement_xp_awarded: int = 0
    total_xp: int
    level_before: int
    new_level: int
    leveled_up: bool
    current_streak: int
    newly_unlocked_achievements: List[AchievementDefinition] = Field(default_factory=list)
    notifications: List[GamificationNotification] = Field(default_factory=list)


class LeaderboardEntry(BaseModel):
    """One row of the XP leaderboard"""
    rank: int
    user_id: str
    user_name: Optional[str] = None
    total_xp: int
    current_level: int


class AchievementStats(BaseModel):
    """Aggregate achievement statistics for a user"""
    total_achievements: int
    completed_achievements: int
    completion_rate: float
    xp_from_achievements: int
    achievements_by_tier: Dict[str, int] = Field(default_factory=dict)


class UserAchievementView(BaseModel):
    """Stored progress joined with its definition"""
    achievement: AchievementDefinition
    progress: float
    current_value: int
    target_value: int
    is_completed: bool
    completed_at: Optional[datetime] = None


class UserGamificationProfile(BaseModel):
    """Everything the profile page shows about a user's gamification state"""
    user_id: str
    level: LevelInfo
    streak: StreakStatus
    longest_streak: int
    achievements: List[UserAchievementView] = Field(default_factory=list)
    stats: AchievementStats


class AchievementLeaderboardEntry(BaseModel):
    """One row of the achievement leaderboard"""
    rank: int
    user_id: str
    user_name: Optional[str] = None
    achievement_count: int
    achievement_xp: int


class ActivityFeedEntry(BaseModel):
    """A completed achievement shown in a user's activity feed"""
    type: Literal["achievement_unlocked"] = "achievement_unlocked"
    user_id: str
    user_name: Optional[str] = None
    achievement_id: str
    achievement_name: str
    xp_earned: int
    module_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    @computed_field
    @property
    def description(self) -> str:
        return f'Unlocked "{self.achievement_name}" achievement'


class OverviewStats(BaseModel):
    """System-wide gamification totals"""
    total_users: int = 0
    total_xp_awarded: int = 0
    total_achievements_unlocked: int = 0
    average_level: float = 0.0
    active_streaks: int = 0
