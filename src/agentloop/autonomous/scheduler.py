# src/agentloop/autonomous/scheduler.py
"""
Agent Scheduler.

The ``AgentScheduler`` owns every component of one agent and runs the
orchestration cycle. One cycle executes these stages in order:

1. context refresh (and the prediction sweep when due)
2. provider health probes (when due)
3. archive completed goals
4. plan goals that have no plan yet
5. execute ready tasks (bounded concurrency; skipped in ``guided`` mode)
6. reflection (per task, per finished goal, periodic when due) and
   strategy adaptation
7. autonomy check
8. persist the state record

A failing stage is logged and recorded in the error memory; the
remaining stages still run. Cycles are single-flight: a cycle requested
while another cycle or an explicit ``execute_goal`` is in flight is
skipped.

Example::

    scheduler = AgentScheduler(config, storage=await create_state_storage(config.persistence))
    await scheduler.integrate_provider(LocalProvider())
    scheduler.add_goal("Research quantum computing basics", "high")
    await scheduler.start()
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple

from ..config import AgentConfig
from ..exceptions import PersistenceError
from ..logging_config import log_display
from ..storage.base_state import BaseStateStorage
from .capabilities import Capability, CapabilityProvider, CapabilityRegistry, ExecutionResult
from .context import ContextTracker
from .goals import Goal, GoalManager, GoalStatus, Priority, Task, TaskStatus, utcnow
from .heartbeat import HeartbeatManager, HeartbeatTask
from .integration import ServiceIntegration, ServiceIntegrator
from .orchestrator import TaskOutcome, ToolOrchestrator
from .planning import ContingencyAction, ExecutionShape, Plan, PlanningEngine
from .reflection import ReflectionEngine
from .state import (
    AgentPreferences,
    AgentStateRecord,
    AutonomyLevel,
    PerformanceMetrics,
    RiskTolerance,
    StateManager,
)

logger = logging.getLogger(__name__)

CYCLE_JOB = "agent_cycle"


# =============================================================================
# Error memory
# =============================================================================


@dataclass
class ErrorRecord:
    source: str
    message: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "message": self.message, "timestamp": self.timestamp.isoformat()}


class ErrorMemory:
    """Bounded record of recent errors, counted over a lookback window."""

    def __init__(
        self,
        capacity: int = 200,
        lookback: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.lookback = lookback
        self._clock = clock
        self._errors: Deque[ErrorRecord] = deque(maxlen=capacity)

    def record(self, source: str, error: BaseException | str) -> ErrorRecord:
        entry = ErrorRecord(source, str(error) or type(error).__name__, self._clock())
        self._errors.append(entry)
        return entry

    def recent(self) -> List[ErrorRecord]:
        cutoff = self._clock() - self.lookback
        return [e for e in self._errors if e.timestamp > cutoff]

    def count_recent(self) -> int:
        return len(self.recent())

    def clear(self) -> None:
        self._errors.clear()

    def __len__(self) -> int:
        return len(self._errors)


@dataclass
class Escalation:
    goal_id: str
    task_id: str
    action: ContingencyAction
    target: Optional[str]
    error: Optional[str]
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "goal_id": self.goal_id,
            "task_id": self.task_id,
            "action": self.action.value,
            "target": self.target,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# AgentScheduler
# =============================================================================


class AgentScheduler:
    """
    Integration spine of one agent.

    Args:
        config: Agent configuration; defaults apply when omitted.
        storage: Initialized state backend. Without one nothing is persisted.
        initial_context: Starting context (user preferences, environment ...).
        clock: Source of the current time, shared by every component.
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        storage: Optional[BaseStateStorage] = None,
        initial_context: Optional[Dict[str, Any]] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or AgentConfig()
        self._clock = clock
        cfg = self.config

        self.goals = GoalManager(
            max_task_retries=cfg.goals.max_task_retries,
            default_task_duration=cfg.goals.default_task_duration_seconds,
            history_capacity=cfg.goals.history_capacity,
            clock=clock,
        )
        self.planner = PlanningEngine(
            long_task_threshold=cfg.planning.long_task_threshold_minutes,
            contingency_priority=cfg.planning.contingency_priority,
            missing_capability_penalty=cfg.planning.missing_capability_penalty,
            low_completion_rate=cfg.planning.low_completion_rate,
            high_completion_rate=cfg.planning.high_completion_rate,
            confidence_step=cfg.planning.confidence_step,
            efficiency_step=cfg.planning.efficiency_step,
            max_task_retries=cfg.goals.max_task_retries,
            max_concurrency=cfg.scheduler.max_concurrent_tasks,
            reasoning_capacity=cfg.planning.reasoning_history_capacity,
            clock=clock,
        )
        self.registry = CapabilityRegistry(call_timeout=cfg.tools.call_timeout_seconds)
        self.orchestrator = ToolOrchestrator(
            self.registry,
            relevance_threshold=cfg.tools.relevance_threshold,
            max_tools=cfg.tools.max_tools_per_task,
        )
        self.context = ContextTracker(
            initial_context,
            history_capacity=cfg.context.history_capacity,
            pattern_min_frequency=cfg.context.pattern_min_frequency,
            pattern_min_confidence=cfg.context.pattern_min_confidence,
            auto_apply_confidence=cfg.context.auto_apply_confidence,
            time_heuristics=cfg.context.time_heuristics,
            clock=clock,
        )
        self.reflection = ReflectionEngine(
            history_capacity=cfg.reflection.history_capacity,
            performance_capacity=cfg.reflection.performance_capacity,
            action_item_capacity=cfg.reflection.action_item_capacity,
            window=timedelta(hours=cfg.reflection.window_hours),
            relevance_threshold=cfg.reflection.pattern_relevance_threshold,
            category_lookup=self._category_of,
            clock=clock,
        )
        self.integrator = ServiceIntegrator(self.registry, clock=clock)
        self.heartbeat = HeartbeatManager(
            interval=timedelta(seconds=cfg.scheduler.tick_interval_seconds),
            clock=clock,
        )
        self.state_manager = (
            StateManager(storage, agent_id=cfg.persistence.agent_id, clock=clock)
            if storage is not None
            else None
        )

        self.preferences = AgentPreferences()
        self.performance = PerformanceMetrics()
        self.errors = ErrorMemory(
            capacity=cfg.scheduler.error_memory_capacity,
            lookback=timedelta(seconds=cfg.scheduler.error_lookback_seconds),
            clock=clock,
        )
        self.escalations: Deque[Escalation] = deque(maxlen=100)

        self._semaphore = asyncio.Semaphore(cfg.scheduler.max_concurrent_tasks)
        self._execution_lock = asyncio.Lock()
        self._skipped_cycles = 0
        self._loaded = False
        self._last_sweep: Optional[datetime] = None
        self._last_health_check: Optional[datetime] = None
        self._last_periodic_reflection: Optional[datetime] = None
        self._goal_results: Dict[str, List[ExecutionResult]] = defaultdict(list)
        self._reflected_goals: set[str] = set()
        self._observed_durations: Dict[str, List[float]] = defaultdict(list)

        self.heartbeat.register(
            HeartbeatTask(
                name=CYCLE_JOB,
                callback=self.run_cycle,
                interval=timedelta(0),
                description="Agent orchestration cycle",
            )
        )
        self.heartbeat.on_error(self._on_job_error)

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def _category_of(self, name: str) -> Optional[str]:
        if name in self.registry:
            return self.registry.descriptor(name).category.value
        return None

    def register_capability(self, capability: Capability) -> None:
        self.registry.register(capability)

    async def integrate_provider(self, provider: CapabilityProvider) -> Optional[ServiceIntegration]:
        return await self.integrator.integrate(provider)

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def add_goal(
        self,
        description: str,
        priority: Priority | str = Priority.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
    ) -> Goal:
        """Queue a pending goal; the next cycle plans and decomposes it."""
        return self.goals.add_goal(description, priority, context)

    def create_goal(
        self,
        description: str,
        priority: Priority | str = Priority.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        template_id: Optional[str] = None,
    ) -> Goal:
        """Create an active goal with template or classifier tasks."""
        return self.goals.create_goal(description, priority, context, template_id)

    async def execute_goal(self, goal_id: str) -> bool:
        """
        Plan (if needed) and run a goal to a finished state now.

        Runs regardless of autonomy level since it is an explicit request.
        A cycle in flight is waited for first, and cycles requested while
        the goal runs are skipped. Returns True when the goal ends
        ``completed``.

        Raises:
            GoalNotFoundError: For an unknown goal id.
        """
        self.goals.get_goal(goal_id)
        async with self._execution_lock:
            return await self._execute_goal(goal_id)

    async def _execute_goal(self, goal_id: str) -> bool:
        goal = self.goals.get_goal(goal_id)
        if goal.is_finished:
            return goal.status == GoalStatus.COMPLETED

        plan = self._ensure_plan(goal)
        if plan is None:
            return False

        executed: List[Tuple[Task, TaskOutcome, Dict[str, Any]]] = []

        async def run(task: Task) -> None:
            executed.append(await self._execute_task(task))

        def ready(task: Task) -> bool:
            return not goal.is_finished and self.goals.is_task_ready(goal, task)

        await self.planner.execute_plan(plan, run, ready)
        self._reflect_on_tasks(executed)
        self._reflect_on_finished_goals()
        self.integrator.record_event(
            "capability_update", "agent_delegation",
            "medium" if goal.status == GoalStatus.COMPLETED else "high",
            action="goal_executed", goal_id=goal.id, status=goal.status.value,
        )
        return goal.status == GoalStatus.COMPLETED

    def _ensure_plan(self, goal: Goal) -> Optional[Plan]:
        plan = self.planner.get_plan(goal.id)
        if plan is not None:
            return plan
        plan = self.planner.create_plan(goal, self.registry.names(), self.context.get_current_context())
        if plan is None:
            return None
        if not goal.tasks:
            self.goals.attach_tasks(goal.id, plan.tasks)
        elif goal.status == GoalStatus.PENDING:
            self.goals.update_goal_status(goal.id, GoalStatus.ACTIVE)
        return plan

    # ------------------------------------------------------------------
    # Preferences and errors
    # ------------------------------------------------------------------

    def update_preferences(self, **partial: Any) -> AgentPreferences:
        """
        Merge preference changes.

        Setting ``autonomy_level`` explicitly also clears the error memory.

        Raises:
            ValueError: For unknown preference names or values.
        """
        self.preferences = self.preferences.merged(**partial)
        if "autonomy_level" in partial:
            self.errors.clear()
        logger.info("Updated agent preferences: %s", partial)
        return self.preferences

    def record_error(self, source: str, error: BaseException | str) -> None:
        self.errors.record(source, error)
        self.performance.errors += 1

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.heartbeat.is_running

    async def load_state(self) -> bool:
        """Restore the persisted record once. Returns True if one was applied."""
        if self._loaded or self.state_manager is None:
            return False
        self._loaded = True
        record = await self.state_manager.load()
        if record is None:
            return False
        for goal in record.rebuild_goals():
            self.goals.restore_goal(goal)
        self.performance = PerformanceMetrics.from_dict(record.performance_metrics)
        self.preferences = AgentPreferences.from_dict(record.preferences)
        self.context.restore(record.current_context or self.context.get_current_context(), record.context_snapshot_tail)
        self.planner.restore_state(record.extras.get("planner", {}))
        self.reflection.restore_state(record.extras.get("reflection", {}))
        self.registry.restore_ledger(record.extras.get("ledger", {}))
        return True

    async def start(self) -> None:
        """Load persisted state (first start only) and begin ticking."""
        if self.heartbeat.is_running:
            return
        await self.load_state()
        await self.heartbeat.start()
        logger.info("Agent %s started", self.config.persistence.agent_id)

    async def stop(self) -> None:
        """Stop ticking, wait for the in-flight cycle and persist once more."""
        if not self.heartbeat.is_running:
            return
        await self.heartbeat.stop()
        await self._persist()
        logger.info("Agent %s stopped", self.config.persistence.agent_id)

    def pause(self) -> None:
        """Keep the heartbeat alive but stop starting cycles."""
        self.heartbeat.pause()
        log_display(logger, logging.INFO, "Agent %s paused", self.config.persistence.agent_id)

    def resume(self) -> None:
        """Start cycling again; also closes a tripped cycle circuit breaker."""
        job = self.heartbeat.get_job(CYCLE_JOB)
        if job is not None and job.is_circuit_broken:
            job.reset()
        self.heartbeat.resume()
        log_display(logger, logging.INFO, "Agent %s resumed", self.config.persistence.agent_id)

    async def _on_job_error(self, job_name: str, error: Exception) -> None:
        self.record_error(job_name, error)

    async def close(self) -> None:
        await self.stop()
        if self.state_manager is not None:
            await self.state_manager.close()

    # ------------------------------------------------------------------
    # The cycle
    # ------------------------------------------------------------------

    def _is_due(self, last: Optional[datetime], seconds: float) -> bool:
        return last is None or self._clock() - last >= timedelta(seconds=seconds)

    async def _stage(self, name: str, stage: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await stage()
        except Exception as e:
            logger.error("Cycle stage '%s' failed: %s", name, e, exc_info=True)
            self.record_error(name, e)
            return None

    async def run_cycle(self) -> bool:
        """
        Run one orchestration cycle.

        Returns False when skipped because a cycle or an explicit goal
        execution is already in flight.
        """
        if self._execution_lock.locked():
            self._skipped_cycles += 1
            logger.debug("Execution already in flight; skipping cycle")
            return False
        async with self._execution_lock:
            await self._stage("context", self._refresh_context)
            await self._stage("health", self._check_health)
            await self._stage("archive", self._archive_goals)
            await self._stage("planning", self._plan_goals)
            executed = await self._stage("execution", self._execute_ready_tasks) or []
            await self._stage("reflection", lambda: self._reflect_and_adapt(executed))
            await self._stage("autonomy", self._check_autonomy)
            self.performance.cycles += 1
            await self._persist()
        return True

    async def _refresh_context(self) -> None:
        self.context.refresh()
        if self._is_due(self._last_sweep, self.config.context.sweep_interval_seconds):
            self.context.sweep()
            self._last_sweep = self._clock()

    async def _check_health(self) -> None:
        if not self.integrator.get_service_capabilities():
            return
        if self._is_due(self._last_health_check, self.config.scheduler.health_check_interval_seconds):
            await self.integrator.perform_health_checks()
            self._last_health_check = self._clock()

    async def _archive_goals(self) -> None:
        for goal in self.goals.archive_completed_goals():
            self.planner.drop_plan(goal.id)
            self._goal_results.pop(goal.id, None)
        self._reflected_goals.intersection_update(g.id for g in self.goals.list_goals())

    async def _plan_goals(self) -> None:
        for goal in self.goals.list_goals():
            if goal.status not in (GoalStatus.PENDING, GoalStatus.ACTIVE, GoalStatus.IN_PROGRESS):
                continue
            if self.planner.has_plan(goal.id):
                continue
            try:
                self._ensure_plan(goal)
            except Exception as e:
                logger.error("Planning failed for goal %s: %s", goal.id, e, exc_info=True)
                self.record_error("planning", e)
                self.goals.update_goal_status(goal.id, GoalStatus.FAILED, reason=f"Planning failed: {e}")
                log_display(logger, logging.WARNING, "Goal %s failed: could not be planned (%s)", goal.id, e)

    def _select_ready_tasks(self) -> List[Task]:
        """
        Ready tasks for this cycle.

        Each goal contributes as many tasks as its plan's execution shape
        allows; the total is capped by ``max_concurrent_tasks``.
        """
        limit = self.config.scheduler.max_concurrent_tasks
        candidates = self.goals.get_next_tasks_to_execute(limit=max(self.config.goals.next_tasks_limit, limit))
        taken: Dict[str, int] = defaultdict(int)
        selected = []
        for task in candidates:
            plan = self.planner.get_plan(task.goal_id)
            shape = self.planner.strategies[plan.strategy].shape if plan else ExecutionShape.ONE_AT_A_TIME
            cap = {
                ExecutionShape.ONE_AT_A_TIME: 1,
                ExecutionShape.BOUNDED_WAVES: self.planner.max_concurrency,
                ExecutionShape.ALL_READY: limit,
            }[shape]
            if taken[task.goal_id] >= cap:
                continue
            taken[task.goal_id] += 1
            selected.append(task)
            if len(selected) >= limit:
                break
        return selected

    async def _execute_ready_tasks(self) -> List[Tuple[Task, TaskOutcome, Dict[str, Any]]]:
        if self.preferences.autonomy_level == AutonomyLevel.GUIDED:
            logger.info("Guided autonomy: not executing tasks automatically")
            return []
        tasks = self._select_ready_tasks()
        if not tasks:
            return []
        return list(await asyncio.gather(*(self._execute_task(t) for t in tasks)))

    async def _execute_task(self, task: Task) -> Tuple[Task, TaskOutcome, Dict[str, Any]]:
        """One attempt of one task, reported back to the goal manager."""
        async with self._semaphore:
            goal = self.goals.get_goal(task.goal_id)
            self.goals.update_task_status(goal.id, task.id, TaskStatus.EXECUTING)
            context = self.context.get_current_context()
            logger.info("Executing task %s: %s", task.id, task.description[:60])
            outcome = await self.orchestrator.execute_task(task, context)

        if outcome.success:
            self.goals.update_task_status(goal.id, task.id, TaskStatus.COMPLETED, result=outcome.payload)
        else:
            self.goals.record_task_failure(goal.id, task.id, outcome.error or "Task failed")
            if task.status == TaskStatus.FAILED:
                self._handle_permanent_failure(goal, task)
            elif any(r.metadata.get("timeout") for r in outcome.results):
                plan = self.planner.get_plan(goal.id)
                if plan and self.planner.find_contingency(plan, task.id, "timeout"):
                    logger.info("Task %s timed out; retry contingency applies", task.id)

        duration = task.actual_duration if task.actual_duration is not None else outcome.execution_time
        self.performance.record_task(outcome.success, duration, self._clock())
        self._goal_results[goal.id].extend(outcome.results)
        self._observed_durations[task.type].append(duration)
        return task, outcome, context

    def _handle_permanent_failure(self, goal: Goal, task: Task) -> None:
        self.record_error("task", f"Task {task.id} failed permanently: {task.error}")
        plan = self.planner.get_plan(goal.id)
        contingency = self.planner.find_contingency(plan, task.id, "failed") if plan else None
        if contingency is None:
            return
        if contingency.action in (ContingencyAction.ESCALATE, ContingencyAction.ALTERNATIVE_PLAN):
            self.escalations.append(
                Escalation(
                    goal_id=goal.id,
                    task_id=task.id,
                    action=contingency.action,
                    target=contingency.escalation_target,
                    error=task.error,
                    timestamp=self._clock(),
                )
            )
            log_display(
                logger, logging.WARNING,
                "Task %s failed permanently; %s to %s",
                task.id, contingency.action.value, contingency.escalation_target,
            )

    # ------------------------------------------------------------------
    # Reflection and adaptation
    # ------------------------------------------------------------------

    def _reflect_on_tasks(self, executed: List[Tuple[Task, TaskOutcome, Dict[str, Any]]]) -> None:
        for task, outcome, context in executed:
            self.reflection.reflect_on_task_execution(task, outcome.results, context)

    def _reflect_on_finished_goals(self) -> None:
        context = self.context.get_current_context()
        for goal in self.goals.list_goals():
            if not goal.is_finished or goal.id in self._reflected_goals:
                continue
            self._reflected_goals.add(goal.id)
            self.performance.record_goal(goal.status == GoalStatus.COMPLETED)
            if goal.status == GoalStatus.COMPLETED:
                log_display(logger, logging.INFO, "Goal %s completed: %s", goal.id, goal.description[:60])
            else:
                log_display(
                    logger, logging.WARNING, "Goal %s %s: %s",
                    goal.id, goal.status.value, goal.metadata.get("status_reason", goal.description[:60]),
                )
            self.reflection.reflect_on_goal_completion(goal, self._goal_results.get(goal.id, []), context)

    async def _reflect_and_adapt(self, executed: List[Tuple[Task, TaskOutcome, Dict[str, Any]]]) -> None:
        self._reflect_on_tasks(executed)
        self._reflect_on_finished_goals()

        if self._is_due(self._last_periodic_reflection, self.config.reflection.periodic_interval_seconds):
            self.reflection.perform_periodic_reflection()
            self._last_periodic_reflection = self._clock()

        if executed:
            self._adapt()

        if self.preferences.autonomy_level == AutonomyLevel.FULLY_AUTONOMOUS:
            for item in self.reflection.get_pending_action_items():
                if item.priority == "high":
                    self.reflection.implement_action_item(item.id)
                    logger.info("Applied improvement: %s", item.description)

    def _adapt(self) -> None:
        rate = self.performance.goal_completion_rate
        observed = {
            task_type: sum(values) / len(values)
            for task_type, values in self._observed_durations.items()
            if values
        }
        self.planner.adapt_strategies(rate, observed)
        self._observed_durations.clear()

        if rate < 0.7:
            if rate < 0.5:
                self.preferences.risk_tolerance = RiskTolerance.CONSERVATIVE
            self.performance.learning_rate = min(0.3, self.performance.learning_rate * 1.1)
        elif rate > 0.8:
            self.preferences.risk_tolerance = RiskTolerance.MODERATE
        self.performance.adaptation_score = sum(
            s.confidence for s in self.planner.strategies.values()
        ) / len(self.planner.strategies)

    async def _check_autonomy(self) -> None:
        recent = self.errors.count_recent()
        if recent > self.config.scheduler.error_threshold and self.preferences.autonomy_level != AutonomyLevel.GUIDED:
            self.preferences = self.preferences.merged(autonomy_level=AutonomyLevel.GUIDED)
            log_display(logger, logging.WARNING, "Reduced autonomy to guided after %d recent errors", recent)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> AgentStateRecord:
        return AgentStateRecord.capture(
            agent_id=self.config.persistence.agent_id,
            goals=self.goals.list_goals(),
            performance=self.performance,
            preferences=self.preferences,
            context_snapshot_tail=self.context.snapshot_tail(),
            current_context=self.context.get_current_context(),
            extras={
                "planner": self.planner.export_state(),
                "reflection": self.reflection.export_state(),
                "ledger": self.registry.ledger_snapshot(),
            },
            now=self._clock(),
        )

    async def _persist(self) -> None:
        if self.state_manager is None:
            return
        try:
            await self.state_manager.save(self.snapshot())
        except PersistenceError as e:
            self.record_error("persistence", e)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        active = [g for g in self.goals.list_goals() if not g.is_finished]
        return {
            "active": self.is_active,
            "paused": self.heartbeat.is_paused,
            "goal_count": len(active),
            "task_count": sum(1 for g in active for t in g.tasks if not t.is_finished),
            "performance_metrics": self.performance.to_dict(),
            "capabilities": self.registry.names(),
            "preferences": self.preferences.to_dict(),
            "recent_errors": [e.to_dict() for e in self.errors.recent()],
            "escalations": [e.to_dict() for e in self.escalations],
            "skipped_cycles": self._skipped_cycles,
            "integrations": self.integrator.get_integration_status(),
        }
