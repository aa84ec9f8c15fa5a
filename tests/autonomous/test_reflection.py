# tests/autonomous/test_reflection.py
"""
Tests for the reflection engine: outcome classification, insights,
action items, learning pattern updates and the periodic trend review.
"""

from datetime import timedelta

import pytest

from agentloop.autonomous.capabilities import ExecutionResult
from agentloop.autonomous.goals import Goal, Task
from agentloop.autonomous.reflection import (
    Impact,
    Outcome,
    ReflectionEngine,
    ReflectionKind,
    classify_outcome,
    update_success_rate,
)

CATEGORIES = {"tts": "voice", "tagalog_tts": "voice", "stats": "analysis"}


@pytest.fixture
def engine(clock):
    return ReflectionEngine(category_lookup=CATEGORIES.get, clock=clock)


def _ok(name, execution_time=0.2, confidence=0.9):
    return ExecutionResult(capability=name, success=True, execution_time=execution_time, confidence=confidence)


def _failed(name, error="broken", critical=False):
    return ExecutionResult(capability=name, success=False, error=error, execution_time=1.0, critical=critical)


def _voice_task():
    return Task(id="t1", goal_id="g1", type="voice", description="Say hello")


# =============================================================================
# Helpers
# =============================================================================


class TestHelpers:
    @pytest.mark.parametrize(
        "successes,total,outcome",
        [(2, 2, Outcome.SUCCESS), (1, 2, Outcome.PARTIAL), (0, 2, Outcome.FAILURE), (0, 0, Outcome.FAILURE)],
    )
    def test_classify_outcome(self, successes, total, outcome):
        assert classify_outcome(successes, total) == outcome

    def test_update_success_rate(self):
        assert update_success_rate(0.5, 2, True) == pytest.approx(0.75)
        assert update_success_rate(1.0, 2, False) == pytest.approx(0.5)
        assert update_success_rate(0.4, 0, True) == 0.4


# =============================================================================
# Goal and task reflections
# =============================================================================


class TestGoalReflection:
    def test_successful_goal(self, engine):
        goal = Goal.create("Answer the question")
        entry = engine.reflect_on_goal_completion(goal, [_ok("tts"), _ok("search", confidence=0.85)])

        assert entry.kind == ReflectionKind.GOAL
        assert entry.subject_id == goal.id
        assert entry.context.outcome == Outcome.SUCCESS
        assert entry.insights[0] == 'Successfully completed goal "Answer the question" using 2 tools'
        assert "Execution completed within expected timeframe" in entry.insights
        assert [a.description for a in entry.action_items] == ["Document and replicate successful patterns"]
        assert entry.confidence == pytest.approx(1.0)
        assert entry.impact == Impact.MEDIUM

    def test_failed_goal_creates_urgent_action(self, engine, clock):
        goal = Goal.create("Fetch the report")
        entry = engine.reflect_on_goal_completion(goal, [_failed("fetch")])

        assert entry.context.outcome == Outcome.FAILURE
        assert "Tool failures detected: fetch" in entry.insights
        item = entry.action_items[0]
        assert item.priority == "high"
        assert item.target_date == clock() + timedelta(hours=24)
        assert entry.impact == Impact.HIGH
        assert entry.confidence == pytest.approx(0.8)

    def test_slow_goal(self, engine):
        goal = Goal.create("Long job", estimated_duration=10.0)
        entry = engine.reflect_on_goal_completion(goal, [_ok("stats", execution_time=30.0)])

        assert "Execution took longer than estimated - consider optimization" in entry.insights
        assert "Optimize execution time estimation" in [a.description for a in entry.action_items]

    def test_tagalog_goal_updates_cultural_pattern(self, engine):
        goal = Goal.create("Greet in Tagalog")
        context = {"user_preferences": {"language": "tagalog"}}
        entry = engine.reflect_on_goal_completion(goal, [_ok("tagalog_tts")], context)

        assert "Successfully utilized Tagalog-specific capabilities" in entry.insights
        assert "cultural_adaptation_learning" in entry.patterns_updated


class TestTaskReflection:
    def test_voice_task_updates_voice_pattern(self, engine):
        entry = engine.reflect_on_task_execution(_voice_task(), [_ok("tts", confidence=0.95)])

        assert entry.kind == ReflectionKind.TASK
        assert "Voice interaction completed - monitor user satisfaction" in entry.insights
        assert entry.patterns_updated == ["voice_interaction_optimization"]

        pattern = {p.id: p for p in engine.get_learning_patterns()}["voice_interaction_optimization"]
        assert pattern.frequency == 1
        assert pattern.success_rate == pytest.approx(1.0)
        assert pattern.confidence == pytest.approx(0.6)

    def test_success_rate_is_an_incremental_mean(self, engine):
        engine.reflect_on_task_execution(_voice_task(), [_ok("tts")])
        engine.reflect_on_task_execution(_voice_task(), [_failed("tts")])

        pattern = {p.id: p for p in engine.get_learning_patterns()}["voice_interaction_optimization"]
        assert pattern.frequency == 2
        assert pattern.success_rate == pytest.approx(0.5)

    def test_critical_failure(self, engine):
        entry = engine.reflect_on_task_execution(_voice_task(), [_failed("tts", error="device lost", critical=True)])

        assert 'Task "Say hello" failed: device lost' in entry.insights
        assert "Critical task failure requires immediate attention" in entry.insights
        assert entry.impact == Impact.HIGH

    def test_task_without_results(self, engine):
        entry = engine.reflect_on_task_execution(_voice_task(), [])
        assert entry.context.outcome == Outcome.FAILURE
        assert entry.insights == ['Task "Say hello" failed: no capability was run']


# =============================================================================
# Periodic reflection
# =============================================================================


class TestPeriodicReflection:
    def test_improving_trend(self, engine, clock):
        engine.reflect_on_task_execution(_voice_task(), [_failed("tts")])
        clock.advance(hours=25)
        engine.reflect_on_task_execution(_voice_task(), [_ok("tts")])

        entry = engine.perform_periodic_reflection()

        assert entry.kind == ReflectionKind.PERIODIC
        assert entry.confidence == 0.8
        assert entry.impact == Impact.MEDIUM
        assert entry.patterns_updated == []
        assert "Success rate improving: 100.0%" in entry.insights
        assert entry.context.metrics["trends"]["success_rate"]["trend"] == "improving"

    def test_declining_trend_creates_action_item(self, engine, clock):
        engine.reflect_on_task_execution(_voice_task(), [_ok("tts")])
        clock.advance(hours=25)
        engine.reflect_on_task_execution(_voice_task(), [_failed("tts")])

        entry = engine.perform_periodic_reflection()

        assert any("declining" in i for i in entry.insights)
        assert "Analyze root causes of performance decline" in [a.description for a in entry.action_items]

    def test_empty_window(self, engine):
        entry = engine.perform_periodic_reflection()
        assert entry.context.outcome == Outcome.PARTIAL
        assert entry.insights == ["No reflections recorded in the current window"]

    def test_periodic_entries_are_not_counted_as_work(self, engine):
        engine.perform_periodic_reflection()
        engine.perform_periodic_reflection()
        assert engine.get_reflection_summary()["performance_metrics"] == {}


# =============================================================================
# Action items and bookkeeping
# =============================================================================


class TestActionItems:
    def test_implement_action_item(self, engine):
        entry = engine.reflect_on_goal_completion(Goal.create("Fetch"), [_failed("fetch")])
        item_id = entry.action_items[0].id

        assert engine.implement_action_item(item_id) is True
        assert engine.implement_action_item("missing") is False
        assert item_id not in [i.id for i in engine.get_pending_action_items()]

    def test_apply_improvement(self, engine):
        urgent = engine.apply_improvement("Cache search results", priority="high")
        later = engine.apply_improvement("Tune prompts")

        assert urgent.implemented is True
        assert urgent.source == "improvement"
        assert [i.id for i in engine.get_pending_action_items()] == [later.id]

    def test_capacity_evicts_implemented_items_first(self, clock):
        engine = ReflectionEngine(action_item_capacity=3, clock=clock)
        done = engine.apply_improvement("Cache search results", priority="high")
        first, second, third = (engine.apply_improvement(f"Tune step {i}") for i in range(3))

        assert done.id not in engine._action_items
        assert [i.id for i in engine.get_pending_action_items()] == [first.id, second.id, third.id]

        fourth = engine.apply_improvement("Tune step 3")
        assert [i.id for i in engine.get_pending_action_items()] == [second.id, third.id, fourth.id]

    def test_old_implemented_items_are_dropped(self, engine, clock):
        done = engine.apply_improvement("Cache search results", priority="high")
        clock.advance(hours=25)
        pending = engine.apply_improvement("Tune prompts")

        assert list(engine._action_items) == [pending.id]
        assert done.id not in engine._action_items


class TestBookkeeping:
    def test_history_is_bounded(self, clock):
        engine = ReflectionEngine(history_capacity=2, clock=clock)
        for _ in range(3):
            engine.reflect_on_task_execution(_voice_task(), [_ok("tts")])
        assert len(engine.get_reflection_history()) == 2

    def test_recent_reflections(self, engine, clock):
        engine.reflect_on_task_execution(_voice_task(), [_ok("tts")])
        clock.advance(hours=2)
        engine.reflect_on_task_execution(_voice_task(), [_ok("tts")])
        assert len(engine.get_recent_reflections(timedelta(hours=1))) == 1

    def test_summary(self, engine):
        engine.reflect_on_goal_completion(Goal.create("Fetch"), [_failed("fetch")])
        summary = engine.get_reflection_summary()

        assert summary["total_reflections"] == 1
        assert summary["learning_patterns"] == 4
        assert summary["pending_action_items"] == 1
        assert summary["performance_metrics"]["success_rate"] == 0.0

    def test_state_round_trip_clamps_values(self, engine, clock):
        engine.restore_state(
            {
                "patterns": [
                    {"id": "tool_selection_improvement", "frequency": 4, "success_rate": 1.5, "confidence": 0.7},
                    {"id": "unknown_pattern", "frequency": 9},
                ]
            }
        )
        other = ReflectionEngine(clock=clock)
        other.restore_state(engine.export_state())

        pattern = {p.id: p for p in other.get_learning_patterns()}["tool_selection_improvement"]
        assert pattern.frequency == 4
        assert pattern.success_rate == 1.0
        assert pattern.confidence == pytest.approx(0.7)
        assert len(other.get_learning_patterns()) == 4
