"""
Gamification engine for the goal tracker

Turns domain events into rewards:
- XP ledger with difficulty and streak multipliers and a quadratic level curve
- Daily activity streaks
- Achievement catalog with exactly-once unlocks
- GamificationFacade: the single entry point for domain modules
"""

from goaltracker.gamification.xp_ledger import (
    XPConfig,
    XPLedger,
    calculate_level_info,
    level_for_xp,
    xp_required_for_level,
)
from goaltracker.gamification.streak_tracker import StreakTracker, compute_streak, longest_streak
from goaltracker.gamification.catalog import AchievementCatalog, load_catalog_file
from goaltracker.gamification.achievement_engine import AchievementEngine
from goaltracker.gamification.facade import GamificationFacade, parse_event

__all__ = [
    "XPConfig",
    "XPLedger",
    "calculate_level_info",
    "level_for_xp",
    "xp_required_for_level",
    "StreakTracker",
    "compute_streak",
    "longest_streak",
    "AchievementCatalog",
    "load_catalog_file",
    "AchievementEngine",
    "GamificationFacade",
    "parse_event",
]
