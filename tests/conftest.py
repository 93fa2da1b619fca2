"""Global test fixtures and utilities for gamification tests"""
import pytest
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from goaltracker.db.memory_store import InMemoryGamificationStore
from goaltracker.db.store import GamificationStore
from goaltracker.gamification.catalog import DEFAULT_CATALOG_PATH, load_catalog_file
from goaltracker.models.gamification import (
    AchievementDefinition,
    AchievementTier,
    UserStatsSnapshot,
)


# ============================================================================
# Time Fixtures
# ============================================================================

@pytest.fixture
def today() -> date:
    """Fixed reference day for streak tests"""
    return date(2024, 3, 15)


@pytest.fixture
def fixed_now() -> datetime:
    """Fixed completion timestamp"""
    return datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# User Fixtures
# ============================================================================

@pytest.fixture
def test_user_id() -> str:
    """Standard test user ID"""
    return "user-123"


@pytest.fixture
def empty_stats() -> UserStatsSnapshot:
    """Stats for a brand new user"""
    return UserStatsSnapshot()


# ============================================================================
# Achievement Fixtures
# ============================================================================

@pytest.fixture
def seed_catalog():
    """The bundled 16-achievement catalog"""
    return load_catalog_file(DEFAULT_CATALOG_PATH)


@pytest.fixture
def make_achievement():
    """Factory for achievement definitions"""
    def _make(achievement_id: str, condition: dict, xp_reward: int = 10, **kwargs) -> AchievementDefinition:
        return AchievementDefinition.model_validate({
            "id": achievement_id,
            "name": kwargs.pop("name", achievement_id.replace("_", " ").title()),
            "tier": kwargs.pop("tier", AchievementTier.BRONZE),
            "xp_reward": xp_reward,
            "condition": condition,
            **kwargs,
        })
    return _make


# ============================================================================
# Store Fixtures
# ============================================================================

@pytest.fixture
def memory_store(test_user_id) -> InMemoryGamificationStore:
    """In-memory store with one user and no achievements"""
    store = InMemoryGamificationStore()
    store.add_user(test_user_id, name="Test User")
    return store


@pytest.fixture
def mock_store() -> AsyncMock:
    """Fully mocked store (spec'd on the storage interface)"""
    store = AsyncMock(spec=GamificationStore)
    store.list_achievement_definitions.return_value = []
    store.list_user_achievement_progress.return_value = []
    return store


@pytest.fixture
def mock_db_cursor() -> AsyncMock:
    """Mock database cursor with standard query results"""
    cursor = AsyncMock()
    cursor.fetchone = AsyncMock(return_value=None)
    cursor.fetchall = AsyncMock(return_value=[])
    cursor.execute = AsyncMock()
    return cursor


@pytest.fixture
def mock_db_connection(mock_db_cursor) -> MagicMock:
    """Mock database connection yielding mock_db_cursor"""
    conn = MagicMock()
    conn.cursor.return_value.__aenter__.return_value = mock_db_cursor
    conn.commit = AsyncMock()
    return conn


@pytest.fixture
def mock_database(mock_db_connection) -> MagicMock:
    """Mock Database whose connection() yields mock_db_connection"""
    database = MagicMock()
    database.connection.return_value.__aenter__.return_value = mock_db_connection
    return database
