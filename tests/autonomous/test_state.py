# tests/autonomous/test_state.py
"""
Tests for preferences, performance counters, the persisted state record
and the StateManager.
"""

import pytest

from agentloop.autonomous.goals import Goal, Priority, Task, TaskStatus
from agentloop.autonomous.state import (
    AgentPreferences,
    AgentStateRecord,
    AutonomyLevel,
    PerformanceMetrics,
    StateManager,
)
from agentloop.exceptions import PersistenceError, StorageError
from agentloop.storage import MemoryStateStorage


class BrokenStorage(MemoryStateStorage):
    """Memory storage whose reads and writes can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_load = False
        self.fail_save = False

    async def load(self, agent_id):
        if self.fail_load:
            raise StorageError("disk unreadable")
        return await super().load(agent_id)

    async def save(self, agent_id, record):
        if self.fail_save:
            raise StorageError("disk full")
        await super().save(agent_id, record)


def _goal_with_tasks(count=2) -> Goal:
    goal = Goal.create("Research solar panels", Priority.HIGH)
    goal.tasks = [
        Task(id=f"{goal.id}_task_{i}", goal_id=goal.id, type="research", description=f"Step {i}")
        for i in range(count)
    ]
    return goal


# =============================================================================
# Preferences and metrics
# =============================================================================


class TestAgentPreferences:
    def test_defaults(self):
        prefs = AgentPreferences()
        assert prefs.autonomy_level == AutonomyLevel.SEMI_AUTONOMOUS
        assert prefs.to_dict()["goal_setting"] == "collaborative"

    def test_merged_coerces_strings(self):
        prefs = AgentPreferences().merged(autonomy_level="guided")
        assert prefs.autonomy_level is AutonomyLevel.GUIDED

    def test_merged_rejects_unknown_names(self):
        with pytest.raises(ValueError, match="mood"):
            AgentPreferences().merged(mood="happy")

    def test_merged_rejects_unknown_values(self):
        with pytest.raises(ValueError):
            AgentPreferences().merged(risk_tolerance="reckless")

    def test_from_dict_ignores_unknown_keys(self):
        prefs = AgentPreferences.from_dict({"risk_tolerance": "aggressive", "legacy": 1})
        assert prefs.risk_tolerance.value == "aggressive"


class TestPerformanceMetrics:
    def test_record_task(self, clock):
        metrics = PerformanceMetrics()
        metrics.record_task(True, 10.0, clock())
        metrics.record_task(False, 20.0, clock())

        assert metrics.tasks_completed == 2
        assert metrics.tasks_failed == 1
        assert metrics.average_task_duration == pytest.approx(15.0)
        assert metrics.goal_completion_rate == pytest.approx(0.5)
        assert metrics.last_updated == clock()

    def test_round_trip(self, clock):
        metrics = PerformanceMetrics(cycles=4)
        metrics.record_task(True, 3.0, clock())
        restored = PerformanceMetrics.from_dict(metrics.to_dict())
        assert restored == metrics


# =============================================================================
# State record
# =============================================================================


class TestAgentStateRecord:
    def test_capture_flattens_tasks(self, clock):
        goal = _goal_with_tasks()
        record = AgentStateRecord.capture(
            "alpha", [goal], PerformanceMetrics(), AgentPreferences(), [], {"environment": "home"}, now=clock()
        )

        assert record.goals[0]["task_ids"] == [t.id for t in goal.tasks]
        assert "tasks" not in record.goals[0]
        assert [t["id"] for t in record.tasks] == [t.id for t in goal.tasks]
        assert record.saved_at == clock()

    def test_rebuild_goals(self, clock):
        goal = _goal_with_tasks(3)
        goal.tasks[1].status = TaskStatus.COMPLETED
        record = AgentStateRecord.capture("alpha", [goal], PerformanceMetrics(), AgentPreferences(), [], {})

        restored = AgentStateRecord.from_dict(record.to_dict()).rebuild_goals()

        assert len(restored) == 1
        assert [t.id for t in restored[0].tasks] == [t.id for t in goal.tasks]
        assert restored[0].tasks[1].status == TaskStatus.COMPLETED
        assert restored[0].priority == Priority.HIGH

    def test_missing_tasks_are_dropped(self):
        goal = _goal_with_tasks(2)
        record = AgentStateRecord.capture("alpha", [goal], PerformanceMetrics(), AgentPreferences(), [], {})
        record.tasks = record.tasks[:1]

        restored = record.rebuild_goals()
        assert [t.id for t in restored[0].tasks] == [goal.tasks[0].id]

    def test_from_dict_requires_agent_id(self):
        with pytest.raises(KeyError):
            AgentStateRecord.from_dict({"goals": []})


# =============================================================================
# StateManager
# =============================================================================


class TestStateManager:
    @pytest.mark.asyncio
    async def test_save_and_load(self, clock):
        manager = StateManager(MemoryStateStorage(), agent_id="alpha", clock=clock)
        record = AgentStateRecord.capture(
            "ignored", [_goal_with_tasks()], PerformanceMetrics(), AgentPreferences(), [], {}, now=clock()
        )

        await manager.save(record)
        loaded = await manager.load()

        assert loaded.agent_id == "alpha"
        assert len(loaded.tasks) == 2
        assert manager.save_count == 1
        assert manager.last_saved_at == clock()

    @pytest.mark.asyncio
    async def test_nothing_stored(self):
        assert await StateManager(MemoryStateStorage()).load() is None

    @pytest.mark.asyncio
    async def test_unreadable_storage_starts_fresh(self):
        storage = BrokenStorage()
        storage.fail_load = True
        assert await StateManager(storage).load() is None

    @pytest.mark.asyncio
    async def test_corrupt_record_starts_fresh(self):
        storage = MemoryStateStorage()
        await storage.save("default", {"goals": "not a record"})
        assert await StateManager(storage).load() is None

    @pytest.mark.asyncio
    async def test_failed_save_raises_persistence_error(self, clock):
        storage = BrokenStorage()
        storage.fail_save = True
        manager = StateManager(storage, agent_id="alpha", clock=clock)
        record = AgentStateRecord(agent_id="alpha", saved_at=clock())

        with pytest.raises(PersistenceError):
            await manager.save(record)
        assert manager.save_count == 0

    @pytest.mark.asyncio
    async def test_reset(self, clock):
        manager = StateManager(MemoryStateStorage(), agent_id="alpha", clock=clock)
        await manager.save(AgentStateRecord(agent_id="alpha", saved_at=clock()))

        assert await manager.reset() is True
        assert await manager.load() is None
