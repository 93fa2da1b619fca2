"""
Database queries.

Module organization:
- gamification.py: PostgreSQL implementation of the gamification store
  (XP increments, streaks, achievement progress, catalog seeding, leaderboard)
"""

from goaltracker.db.queries.gamification import PostgresGamificationStore

__all__ = ["PostgresGamificationStore"]
