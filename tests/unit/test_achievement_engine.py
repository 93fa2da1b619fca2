"""Unit tests for the Achievement Engine"""
import asyncio
import pytest
from unittest.mock import AsyncMock, patch

from goaltracker.db.memory_store import InMemoryGamificationStore
from goaltracker.exceptions import StorageError, ValidationError
from goaltracker.gamification.achievement_engine import AchievementEngine
from goaltracker.gamification.xp_ledger import XPLedger
from goaltracker.models.gamification import (
    AchievementTier,
    UserAchievementProgress,
    UserStatsSnapshot,
)


@pytest.fixture
def catalog(make_achievement):
    return [
        make_achievement("first_goal", {"type": "goals_created", "count": 1}, xp_reward=10),
        make_achievement("goal_finisher", {"type": "goals_completed", "count": 5},
                         xp_reward=75, tier=AchievementTier.SILVER),
        make_achievement("fitness_beginner",
                         {"type": "module_goals_completed", "module": "fitness", "count": 1},
                         xp_reward=25, module_id="fitness"),
    ]


@pytest.fixture
def engine(memory_store, catalog):
    memory_store.set_achievements(catalog)
    return AchievementEngine(memory_store, XPLedger(memory_store))


async def _progress_map(store, user_id):
    return {p.achievement_id: p for p in await store.list_user_achievement_progress(user_id)}


# ============================================================================
# Evaluation Tests
# ============================================================================

@pytest.mark.asyncio
async def test_evaluate_unlocks_and_records_progress(engine, memory_store, test_user_id, fixed_now):
    """Test complete conditions unlock and partial ones record progress"""
    stats = UserStatsSnapshot(goals_created=2, goals_completed=2)

    result = await engine.evaluate(test_user_id, stats, {}, now=fixed_now)

    assert [a.id for a in result.newly_unlocked] == ["first_goal"]
    stored = await _progress_map(memory_store, test_user_id)
    assert stored["first_goal"].is_completed is True
    assert stored["first_goal"].completed_at == fixed_now
    assert stored["goal_finisher"].progress == pytest.approx(0.4)
    assert stored["fitness_beginner"].progress == 0.0
    assert {p.achievement_id for p in result.updated_progress} == {"first_goal", "goal_finisher"}


@pytest.mark.asyncio
async def test_evaluate_awards_achievement_xp(engine, memory_store, test_user_id):
    """Test each unlock adds its fixed reward"""
    stats = UserStatsSnapshot(goals_created=1, goals_completed=5, module_goals_completed={"fitness": 1})

    result = await engine.evaluate(test_user_id, stats, {})

    assert len(result.newly_unlocked) == 3
    assert await memory_store.get_user_total_xp(test_user_id) == 10 + 75 + 25


@pytest.mark.asyncio
async def test_evaluate_is_idempotent(engine, memory_store, test_user_id):
    """Test a second pass with the same stats unlocks nothing and awards nothing"""
    stats = UserStatsSnapshot(goals_created=1, goals_completed=2)

    await engine.evaluate(test_user_id, stats, await _progress_map(memory_store, test_user_id))
    xp_after_first = await memory_store.get_user_total_xp(test_user_id)
    second = await engine.evaluate(test_user_id, stats, await _progress_map(memory_store, test_user_id))

    assert second.newly_unlocked == []
    assert second.updated_progress == []
    assert await memory_store.get_user_total_xp(test_user_id) == xp_after_first


@pytest.mark.asyncio
async def test_progress_never_decreases(engine, memory_store, test_user_id):
    """Test lower stats leave stored progress untouched"""
    await engine.evaluate(test_user_id, UserStatsSnapshot(goals_completed=4), {})
    existing = await _progress_map(memory_store, test_user_id)

    result = await engine.evaluate(test_user_id, UserStatsSnapshot(goals_completed=1), existing)

    stored = await _progress_map(memory_store, test_user_id)
    assert stored["goal_finisher"].progress == pytest.approx(0.8)
    assert all(p.achievement_id != "goal_finisher" for p in result.updated_progress)


@pytest.mark.asyncio
async def test_completed_achievements_are_skipped(engine, memory_store, test_user_id, fixed_now):
    """Test completed records are not re-evaluated"""
    await memory_store.try_complete_user_achievement(test_user_id, "first_goal", fixed_now)
    existing = await _progress_map(memory_store, test_user_id)

    with patch.object(memory_store, "complete_user_achievement_with_xp", AsyncMock()) as mock_complete:
        result = await engine.evaluate(test_user_id, UserStatsSnapshot(goals_created=3), existing)

    mock_complete.assert_not_called()
    assert result.newly_unlocked == []


@pytest.mark.asyncio
async def test_lost_completion_race_awards_nothing(mock_store, catalog, test_user_id):
    """Test a false check-and-set means another caller already unlocked it"""
    mock_store.list_achievement_definitions.return_value = catalog[:1]
    mock_store.get_or_create_user_achievement_progress.return_value = UserAchievementProgress(
        user_id=test_user_id, achievement_id="first_goal"
    )
    mock_store.complete_user_achievement_with_xp.return_value = None
    engine = AchievementEngine(mock_store, XPLedger(mock_store))

    with patch("goaltracker.gamification.achievement_engine.record_completion_race") as mock_race:
        result = await engine.evaluate(test_user_id, UserStatsSnapshot(goals_created=1), {})

    assert result.newly_unlocked == []
    mock_store.complete_user_achievement_with_xp.assert_awaited_once()
    mock_store.increment_user_xp.assert_not_called()
    mock_race.assert_called_once()


@pytest.mark.asyncio
async def test_concurrent_evaluations_unlock_once(engine, memory_store, test_user_id):
    """Test parallel evaluations award each achievement exactly once"""
    stats = UserStatsSnapshot(goals_created=1)

    results = await asyncio.gather(*[
        engine.evaluate(test_user_id, stats, {}) for _ in range(10)
    ])

    unlocked = [a.id for r in results for a in r.newly_unlocked]
    assert unlocked == ["first_goal"]
    assert await memory_store.get_user_total_xp(test_user_id) == 10


@pytest.mark.asyncio
async def test_storage_error_propagates(mock_store, catalog, test_user_id):
    """Test store failures are not swallowed"""
    mock_store.list_achievement_definitions.return_value = catalog
    mock_store.get_or_create_user_achievement_progress.side_effect = StorageError("down")
    engine = AchievementEngine(mock_store, XPLedger(mock_store))

    with pytest.raises(StorageError):
        await engine.evaluate(test_user_id, UserStatsSnapshot(), {})


@pytest.mark.asyncio
async def test_failure_after_unlock_keeps_reward(make_achievement, test_user_id, fixed_now):
    """Test an unlock committed before a later store failure is already paid"""
    class FailingProgressStore(InMemoryGamificationStore):
        fail_progress = True

        async def update_user_achievement_progress(self, user_id, achievement_id, progress):
            if self.fail_progress:
                raise StorageError("progress write failed")
            return await super().update_user_achievement_progress(user_id, achievement_id, progress)

    store = FailingProgressStore([
        make_achievement("first", {"type": "goals_created", "count": 1}, xp_reward=10),
        make_achievement("five", {"type": "goals_created", "count": 5}, xp_reward=50),
    ])
    store.add_user(test_user_id)
    engine = AchievementEngine(store, XPLedger(store))
    stats = UserStatsSnapshot(goals_created=1)

    with pytest.raises(StorageError):
        await engine.evaluate(test_user_id, stats, {}, now=fixed_now)

    stored = await _progress_map(store, test_user_id)
    assert stored["first"].is_completed is True
    assert await store.get_user_total_xp(test_user_id) == 10

    store.fail_progress = False
    retry = await engine.evaluate(test_user_id, stats, await _progress_map(store, test_user_id))

    assert retry.newly_unlocked == []
    assert await store.get_user_total_xp(test_user_id) == 10


@pytest.mark.asyncio
async def test_completion_and_reward_are_one_store_call(mock_store, catalog, test_user_id, fixed_now):
    """Test the unlock never goes through a separate completion and increment"""
    mock_store.list_achievement_definitions.return_value = catalog[:1]
    mock_store.get_or_create_user_achievement_progress.return_value = UserAchievementProgress(
        user_id=test_user_id, achievement_id="first_goal"
    )
    mock_store.complete_user_achievement_with_xp.return_value = 10
    engine = AchievementEngine(mock_store, XPLedger(mock_store))

    result = await engine.evaluate(test_user_id, UserStatsSnapshot(goals_created=1), {}, now=fixed_now)

    assert [a.id for a in result.newly_unlocked] == ["first_goal"]
    mock_store.complete_user_achievement_with_xp.assert_awaited_once_with(
        test_user_id, "first_goal", fixed_now, 10
    )
    mock_store.try_complete_user_achievement.assert_not_called()
    mock_store.increment_user_xp.assert_not_called()


@pytest.mark.asyncio
async def test_stale_progress_reports_stored_value(engine, memory_store, test_user_id):
    """Test a stale caller record does not hide higher stored progress"""
    await memory_store.update_user_achievement_progress(test_user_id, "goal_finisher", 0.8)
    stale = {
        "goal_finisher": UserAchievementProgress(
            user_id=test_user_id, achievement_id="goal_finisher", progress=0.2
        )
    }

    result = await engine.evaluate(test_user_id, UserStatsSnapshot(goals_completed=2), stale)

    reported = next(p for p in result.updated_progress if p.achievement_id == "goal_finisher")
    assert reported.progress == pytest.approx(0.8)


# ============================================================================
# Query Tests
# ============================================================================

@pytest.mark.asyncio
async def test_get_user_achievements_with_module_filter(engine, memory_store, test_user_id):
    """Test module filter and current/target values"""
    await engine.evaluate(test_user_id, UserStatsSnapshot(goals_completed=2), {})
    stats = UserStatsSnapshot(goals_completed=2, module_goals_completed={"fitness": 0})

    fitness = await engine.get_user_achievements(test_user_id, stats, module_id="fitness")
    everything = await engine.get_user_achievements(test_user_id, stats)

    assert [v.achievement.id for v in fitness] == ["fitness_beginner"]
    assert len(everything) == 3
    finisher = next(v for v in everything if v.achievement.id == "goal_finisher")
    assert finisher.current_value == 2
    assert finisher.target_value == 5
    assert finisher.progress == pytest.approx(0.4)


@pytest.mark.asyncio
async def test_get_user_achievements_completed_first(engine, test_user_id):
    """Test completed achievements sort ahead of in-progress ones"""
    await engine.evaluate(test_user_id, UserStatsSnapshot(goals_created=1, goals_completed=1), {})

    views = await engine.get_user_achievements(test_user_id)

    assert views[0].achievement.id == "first_goal"
    assert views[0].is_completed is True
    assert views[0].current_value == views[0].target_value


@pytest.mark.asyncio
async def test_get_achievement_stats(engine, test_user_id):
    """Test aggregate statistics"""
    await engine.evaluate(test_user_id, UserStatsSnapshot(goals_created=1, goals_completed=5), {})

    stats = await engine.get_achievement_stats(test_user_id)

    assert stats.total_achievements == 3
    assert stats.completed_achievements == 2
    assert stats.completion_rate == pytest.approx(2 / 3)
    assert stats.xp_from_achievements == 85
    assert stats.achievements_by_tier == {"bronze": 1, "silver": 1}


@pytest.mark.asyncio
async def test_get_achievement_leaderboard(engine, memory_store, test_user_id):
    """Test ranking by achievement count, then achievement XP"""
    memory_store.add_user("user-b", name="B")
    memory_store.add_user("user-c", name="C")
    await engine.evaluate(test_user_id, UserStatsSnapshot(goals_created=1, goals_completed=5), {})
    await engine.evaluate("user-b", UserStatsSnapshot(goals_created=1, module_goals_completed={"fitness": 1}), {})

    entries = await engine.get_achievement_leaderboard(limit=3)

    assert [(e.rank, e.user_id) for e in entries] == [(1, test_user_id), (2, "user-b"), (3, "user-c")]
    assert entries[0].achievement_count == 2
    assert entries[0].achievement_xp == 85
    assert entries[1].achievement_xp == 35
    assert entries[2].achievement_count == 0


@pytest.mark.asyncio
async def test_get_activity_feed_pages_newest_first(engine, memory_store, test_user_id, fixed_now):
    """Test unlocks come back newest first with limit and offset"""
    await engine.evaluate(test_user_id, UserStatsSnapshot(goals_created=1), {}, now=fixed_now)
    later = fixed_now.replace(hour=18)
    await engine.evaluate(
        test_user_id,
        UserStatsSnapshot(goals_created=1, goals_completed=5),
        await _progress_map(memory_store, test_user_id),
        now=later,
    )

    first_page = await engine.get_activity_feed(test_user_id, limit=1)
    second_page = await engine.get_activity_feed(test_user_id, limit=1, offset=1)

    assert [e.achievement_id for e in first_page] == ["goal_finisher"]
    assert first_page[0].timestamp == later
    assert first_page[0].xp_earned == 75
    assert first_page[0].type == "achievement_unlocked"
    assert first_page[0].description == 'Unlocked "Goal Finisher" achievement'
    assert [e.achievement_id for e in second_page] == ["first_goal"]


@pytest.mark.asyncio
@pytest.mark.parametrize("limit, offset", [(0, 0), (10, -1)])
async def test_get_activity_feed_rejects_bad_paging(engine, test_user_id, limit, offset):
    """Test non-positive limit and negative offset"""
    with pytest.raises(ValidationError):
        await engine.get_activity_feed(test_user_id, limit=limit, offset=offset)
