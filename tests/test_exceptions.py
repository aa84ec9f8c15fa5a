# tests/test_exceptions.py
"""
Tests for the agentloop exception hierarchy.
"""

import pytest

from agentloop.exceptions import (
    AgentLoopError,
    CapabilityError,
    CapabilityNotFoundError,
    CapabilityTimeoutError,
    ConfigError,
    DependencyError,
    GoalNotFoundError,
    InvalidGoalStateError,
    PersistenceError,
    StorageError,
    TaskNotFoundError,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "exc",
        [
            ConfigError(),
            GoalNotFoundError("g1"),
            TaskNotFoundError("t1"),
            InvalidGoalStateError("g1"),
            DependencyError("t1", "t9"),
            CapabilityError("tts"),
            StorageError(),
        ],
    )
    def test_everything_is_an_agentloop_error(self, exc):
        assert isinstance(exc, AgentLoopError)

    def test_capability_subclasses(self):
        assert issubclass(CapabilityNotFoundError, CapabilityError)
        assert issubclass(CapabilityTimeoutError, CapabilityError)

    def test_persistence_is_a_storage_error(self):
        assert issubclass(PersistenceError, StorageError)


class TestMessages:
    def test_goal_not_found(self):
        exc = GoalNotFoundError("goal_1")
        assert exc.goal_id == "goal_1"
        assert "goal_1" in str(exc)

    def test_task_not_found_mentions_goal(self):
        exc = TaskNotFoundError("t1", "goal_1")
        assert str(exc) == "Task not found. Task ID: 't1' in goal 'goal_1'"

    def test_dependency_error(self):
        exc = DependencyError("t1", "t9")
        assert "depends on unknown task 't9'" in str(exc)

    def test_capability_timeout(self):
        exc = CapabilityTimeoutError("search", 2.5)
        assert exc.timeout == 2.5
        assert exc.capability_name == "search"
        assert "timed out" in str(exc)

    def test_persistence_error(self):
        exc = PersistenceError("alpha", "disk full")
        assert exc.agent_id == "alpha"
        assert str(exc) == "disk full Agent ID: 'alpha'"
