# tests/autonomous/test_planning.py
"""
Tests for the planning engine.

Covers goal analysis, strategy scoring, decomposition and dependency
wiring, contingencies, plan execution shapes and strategy adaptation.
"""

import asyncio
from datetime import timedelta

import pytest

from agentloop.autonomous.goals import Goal, GoalStatus, Priority, Task
from agentloop.autonomous.planning import (
    ContingencyAction,
    Plan,
    PlanningEngine,
    StrategyName,
)


@pytest.fixture
def planner(clock):
    return PlanningEngine(clock=clock)


def _goal(description="Research quantum computing basics", priority=Priority.MEDIUM, **kwargs) -> Goal:
    return Goal.create(description, priority, status=GoalStatus.PENDING, **kwargs)


# =============================================================================
# Analysis
# =============================================================================


class TestAnalysis:
    @pytest.mark.parametrize(
        "description,goal_type",
        [
            ("Research quantum computing", "research"),
            ("Build a landing page", "creation"),
            ("Evaluate the quarterly numbers", "analysis"),
            ("Respond to the customer", "communication"),
            ("Optimize the nightly job", "optimization"),
            ("Water the plants", "general"),
        ],
    )
    def test_classify_goal(self, description, goal_type):
        assert PlanningEngine.classify_goal(description) == goal_type

    def test_complexity_levels(self):
        assert PlanningEngine.complexity_level(PlanningEngine.complexity_score("Fix it")) == "low"
        long_technical = (
            "Design the database schema and then build the api integration "
            "for the optimization algorithm"
        )
        assert PlanningEngine.complexity_level(PlanningEngine.complexity_score(long_technical)) == "high"

    def test_required_capabilities_are_filtered_by_availability(self):
        needed = PlanningEngine.required_capabilities(
            "Research and write a summary", ["web_research", "creative_writing"]
        )
        assert needed == ["web_research", "creative_writing"]

    def test_risk_factors(self, planner, clock):
        goal = _goal(priority=Priority.CRITICAL, context={"deadline": (clock() + timedelta(minutes=20)).isoformat()})
        risks = planner.risk_factors(goal, {"resource_constraints": ["low_memory"]})
        assert risks == ["tight_deadline", "high_stakes", "resource_constraints"]

    def test_naive_deadline_is_utc(self, planner):
        soon = _goal(context={"deadline": "2024-03-04T10:30:00"})
        later = _goal(context={"deadline": "2024-03-05T10:00:00"})

        assert planner.risk_factors(soon, {}) == ["tight_deadline"]
        assert planner.risk_factors(later, {}) == []

    def test_unparseable_deadline_is_ignored(self, planner, caplog):
        goal = _goal(context={"deadline": "next tuesday"})

        with caplog.at_level("WARNING", logger="agentloop.autonomous.planning"):
            assert planner.risk_factors(goal, {}) == []
        assert "unparseable deadline" in caplog.text

    def test_plan_with_naive_deadline(self, planner):
        goal = _goal(context={"deadline": "2024-03-05T10:00:00"})
        assert planner.create_plan(goal, []) is not None


# =============================================================================
# Strategy selection
# =============================================================================


class TestStrategySelection:
    def test_sequential_wins_without_capabilities(self, planner):
        plan = planner.create_plan(_goal(), [])
        assert plan.strategy == StrategyName.SEQUENTIAL

    def test_deadline_favors_parallel(self, planner, clock):
        goal = _goal(context={"deadline": (clock() + timedelta(days=2)).isoformat()})
        plan = planner.create_plan(goal, ["multi_tasking"])
        assert plan.strategy == StrategyName.PARALLEL

    def test_exclude(self, planner):
        plan = planner.create_plan(_goal(), [], exclude=(StrategyName.SEQUENTIAL,))
        assert plan.strategy != StrategyName.SEQUENTIAL

    def test_reasoning_is_recorded(self, planner):
        planner.create_plan(_goal(), [])
        steps = [s.step for s in planner.get_reasoning_history()]
        assert steps == [1, 2, 3]


# =============================================================================
# Decomposition
# =============================================================================


class TestDecomposition:
    def test_research_template_sequential_chain(self, planner):
        goal = _goal()
        plan = planner.create_plan(goal, [])

        assert [t.type for t in plan.tasks] == ["research", "research", "analysis", "analysis"]
        assert plan.tasks[0].dependencies == []
        for previous, task in zip(plan.tasks, plan.tasks[1:]):
            assert task.dependencies == [previous.id]
        assert all(t.goal_id == goal.id for t in plan.tasks)
        assert plan.tasks[0].estimated_duration == 15 * 60

    def test_parallel_wiring(self, planner, clock):
        goal = _goal(context={"deadline": (clock() + timedelta(days=2)).isoformat()})
        plan = planner.create_plan(goal, ["multi_tasking"])

        gather, analyze = plan.tasks[1], plan.tasks[2]
        assert analyze.dependencies == [gather.id]
        assert plan.tasks[0].dependencies == []
        assert plan.tasks[3].dependencies == []

    def test_existing_tasks_are_kept(self, planner):
        goal = _goal()
        goal.tasks.append(Task(id="own", goal_id=goal.id, type="general", description="Own step"))

        plan = planner.create_plan(goal, [])

        assert [t.id for t in plan.tasks] == ["own"]
        assert plan.tasks[0] is goal.tasks[0]

    def test_task_priority_is_raised_to_goal_priority(self, planner):
        plan = planner.create_plan(_goal(priority=Priority.CRITICAL), [])
        assert all(t.priority == Priority.CRITICAL for t in plan.tasks)


class TestContingencies:
    def test_failure_contingencies_for_high_priority(self, planner):
        plan = planner.create_plan(_goal(), [])
        failed = [c for c in plan.contingencies if c.condition.endswith("_failed")]

        assert {c.task_id for c in failed} == {plan.tasks[2].id, plan.tasks[3].id}
        assert all(c.action == ContingencyAction.ALTERNATIVE_PLAN for c in failed)
        assert not [c for c in plan.contingencies if c.condition.endswith("_timeout")]

    def test_critical_tasks_escalate(self, planner):
        plan = planner.create_plan(_goal(priority=Priority.CRITICAL), [])
        contingency = PlanningEngine.find_contingency(plan, plan.tasks[0].id, "failed")
        assert contingency.action == ContingencyAction.ESCALATE
        assert contingency.escalation_target == "user"

    def test_long_tasks_get_timeout_retry(self, clock):
        planner = PlanningEngine(long_task_threshold=10, clock=clock)
        plan = planner.create_plan(_goal(), [])
        contingency = planner.find_contingency(plan, plan.tasks[0].id, "timeout")
        assert contingency.action == ContingencyAction.RETRY

    def test_estimated_completion(self, planner, clock):
        plan = planner.create_plan(_goal(), [])
        total = sum(t.estimated_duration for t in plan.tasks)
        assert plan.estimated_completion == clock() + timedelta(seconds=total)


# =============================================================================
# Plan execution
# =============================================================================


def _plan(strategy: StrategyName, count: int) -> Plan:
    tasks = [Task(id=f"t{i}", goal_id="g", type="general", description=f"Step {i}") for i in range(count)]
    return Plan(
        id="p",
        goal_id="g",
        tasks=tasks,
        strategy=strategy,
        confidence=0.9,
        contingencies=[],
        estimated_completion=tasks[0].created_at,
    )


class _Runner:
    """Runs tasks and tracks peak concurrency."""

    def __init__(self) -> None:
        self.done = set()
        self.active = 0
        self.peak = 0
        self.order = []

    async def run(self, task: Task) -> None:
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0)
        self.order.append(task.id)
        self.done.add(task.id)
        self.active -= 1

    def ready(self, task: Task) -> bool:
        return task.id not in self.done


class TestExecutePlan:
    @pytest.mark.asyncio
    async def test_sequential_runs_one_at_a_time(self, planner):
        runner = _Runner()
        attempts = await planner.execute_plan(_plan(StrategyName.SEQUENTIAL, 3), runner.run, runner.ready)
        assert attempts == 3
        assert runner.peak == 1
        assert runner.order == ["t0", "t1", "t2"]

    @pytest.mark.asyncio
    async def test_parallel_runs_all_ready(self, planner):
        runner = _Runner()
        await planner.execute_plan(_plan(StrategyName.PARALLEL, 5), runner.run, runner.ready)
        assert runner.peak == 5

    @pytest.mark.asyncio
    async def test_adaptive_runs_bounded_waves(self, clock):
        planner = PlanningEngine(max_concurrency=2, clock=clock)
        runner = _Runner()
        await planner.execute_plan(_plan(StrategyName.ADAPTIVE, 5), runner.run, runner.ready)
        assert runner.peak == 2
        assert len(runner.done) == 5

    @pytest.mark.asyncio
    async def test_stops_when_nothing_is_ready(self, planner):
        runner = _Runner()
        attempts = await planner.execute_plan(_plan(StrategyName.SEQUENTIAL, 3), runner.run, lambda t: False)
        assert attempts == 0


# =============================================================================
# Adaptation
# =============================================================================


class TestAdaptation:
    def test_low_completion_favors_safe_strategies(self, planner):
        planner.adapt_strategies(0.3)
        s = planner.strategies
        assert s[StrategyName.SEQUENTIAL].confidence == pytest.approx(1.0)
        assert s[StrategyName.RESEARCH_FIRST].confidence == pytest.approx(0.95)
        assert s[StrategyName.PARALLEL].confidence == pytest.approx(0.6)
        assert s[StrategyName.ADAPTIVE].confidence == pytest.approx(0.7)

    def test_high_completion_favors_efficient_strategies(self, planner):
        planner.adapt_strategies(0.9)
        s = planner.strategies
        assert s[StrategyName.PARALLEL].confidence == pytest.approx(0.75)
        assert s[StrategyName.ADAPTIVE].confidence == pytest.approx(0.85)
        assert s[StrategyName.SEQUENTIAL].confidence == pytest.approx(0.9)

    def test_confidence_floor(self, planner):
        for _ in range(20):
            planner.adapt_strategies(0.0)
        assert planner.strategies[StrategyName.PARALLEL].confidence == pytest.approx(0.1)

    def test_duration_estimates_are_clamped(self, planner):
        planner.adapt_strategies(0.7, {"research": 3600.0, "analysis": 60.0})
        assert planner.duration_estimates["research"] == pytest.approx(30.0)
        assert planner.duration_estimates["analysis"] == pytest.approx(10.0)

    def test_state_round_trip(self, planner, clock):
        planner.adapt_strategies(0.3, {"research": 1800.0})
        other = PlanningEngine(clock=clock)
        other.restore_state(planner.export_state())
        assert other.strategies[StrategyName.PARALLEL].confidence == pytest.approx(0.6)
        assert other.duration_estimates["research"] == pytest.approx(30.0)

    def test_restore_ignores_unknown_strategy(self, planner):
        planner.restore_state({"strategy_confidence": {"mystery": 0.5}})
        assert StrategyName.SEQUENTIAL in planner.strategies
