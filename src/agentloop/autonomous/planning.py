# src/agentloop/autonomous/planning.py
"""
Planning Engine: from goal to executable plan.

``create_plan`` runs three reasoning steps, each recorded in a bounded
reasoning history:

1. **Analyze** the goal: classify it, score its complexity, map keywords
   to required capabilities, estimate effort and list risk factors.
2. **Select a strategy** from the catalog by scoring each strategy's
   base confidence against the analysis.
3. **Decompose** the goal into tasks from the goal-type template (goals
   that already carry tasks keep them), wire dependencies according to
   the strategy and attach contingencies.

The engine also runs plans (``execute_plan``) in the concurrency shape of
the chosen strategy and adapts strategy confidences and duration
estimates from observed performance.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Deque,
    Dict,
    List,
    Optional,
    Tuple,
)

from .goals import Goal, Priority, Task, _parse_datetime, utcnow

logger = logging.getLogger(__name__)


# =============================================================================
# Enums and catalog
# =============================================================================


class StrategyName(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    ADAPTIVE = "adaptive"
    RESEARCH_FIRST = "research_first"


class ExecutionShape(str, Enum):
    """How ``execute_plan`` dispatches ready tasks."""

    ONE_AT_A_TIME = "one_at_a_time"
    ALL_READY = "all_ready"
    BOUNDED_WAVES = "bounded_waves"


class ContingencyAction(str, Enum):
    RETRY = "retry"
    SKIP = "skip"
    ESCALATE = "escalate"
    ALTERNATIVE_PLAN = "alternative_plan"


@dataclass
class PlanningStrategy:
    """A catalog entry; ``confidence`` is adapted at runtime."""

    name: StrategyName
    description: str
    confidence: float
    duration_factor: float
    risk_level: str
    required_capabilities: Tuple[str, ...]
    shape: ExecutionShape

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name.value,
            "description": self.description,
            "confidence": self.confidence,
            "duration_factor": self.duration_factor,
            "risk_level": self.risk_level,
            "required_capabilities": list(self.required_capabilities),
        }


def default_strategies() -> Dict[StrategyName, PlanningStrategy]:
    """Fresh copy of the strategy catalog, in tie-break order."""
    return {
        s.name: s
        for s in (
            PlanningStrategy(
                StrategyName.SEQUENTIAL,
                "Execute tasks one after another",
                0.9, 1.0, "low", (), ExecutionShape.ONE_AT_A_TIME,
            ),
            PlanningStrategy(
                StrategyName.PARALLEL,
                "Execute independent tasks simultaneously",
                0.7, 0.6, "medium", ("multi_tasking",), ExecutionShape.ALL_READY,
            ),
            PlanningStrategy(
                StrategyName.ADAPTIVE,
                "Adjust the approach as results come in",
                0.8, 0.8, "medium", ("self_reflection", "learning_adaptation"), ExecutionShape.BOUNDED_WAVES,
            ),
            PlanningStrategy(
                StrategyName.RESEARCH_FIRST,
                "Gather information thoroughly before acting",
                0.85, 1.2, "low", ("web_research", "data_synthesis"), ExecutionShape.ONE_AT_A_TIME,
            ),
        )
    }


# (keywords, goal type); first match wins.
GOAL_TYPE_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (("research", "find", "learn"), "research"),
    (("create", "generate", "build"), "creation"),
    (("analyze", "evaluate", "assess"), "analysis"),
    (("communicate", "respond", "interact"), "communication"),
    (("improve", "optimize", "enhance"), "optimization"),
]

CONNECTIVES = ("and", "then", "also", "additionally", "furthermore")
TECHNICAL_TERMS = ("api", "database", "integration", "algorithm", "optimization", "analysis")

# keyword -> capabilities the goal needs when the keyword appears.
CAPABILITY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "research": ("web_research", "data_synthesis"),
    "search": ("web_research",),
    "analyze": ("document_analysis", "data_synthesis"),
    "create": ("creative_writing", "image_generation"),
    "write": ("creative_writing", "natural_conversation"),
    "translate": ("language_translation",),
    "speak": ("voice_synthesis",),
    "listen": ("speech_recognition",),
    "remember": ("memory_management",),
    "learn": ("learning_adaptation",),
    "code": ("code_analysis",),
    "image": ("image_generation",),
    "vision": ("multimodal_perception",),
    "fact": ("fact_checking",),
}

COMPLEXITY_MULTIPLIER = {"low": 1, "medium": 2, "high": 4}


@dataclass(frozen=True)
class StepTemplate:
    """One decomposition step; duration in minutes."""

    description: str
    type: str
    priority: Priority
    capabilities: Tuple[str, ...]
    minutes: float


DECOMPOSITION_TEMPLATES: Dict[str, Tuple[StepTemplate, ...]] = {
    "research": (
        StepTemplate("Identify research sources and keywords", "research", Priority.MEDIUM, ("web_research",), 15),
        StepTemplate("Gather information from multiple sources", "research", Priority.MEDIUM, ("web_research", "data_synthesis"), 30),
        StepTemplate("Analyze and synthesize research findings", "analysis", Priority.HIGH, ("document_analysis", "data_synthesis"), 20),
        StepTemplate("Verify facts and cross-reference sources", "analysis", Priority.HIGH, ("fact_checking",), 15),
    ),
    "creation": (
        StepTemplate("Plan and outline the creation", "analysis", Priority.MEDIUM, ("creative_writing",), 10),
        StepTemplate("Create initial draft or prototype", "creation", Priority.MEDIUM, ("creative_writing", "image_generation"), 45),
        StepTemplate("Review and refine the draft", "analysis", Priority.HIGH, ("document_analysis",), 20),
        StepTemplate("Finalize and optimize the result", "creation", Priority.HIGH, ("creative_writing",), 15),
    ),
    "analysis": (
        StepTemplate("Gather data and materials for analysis", "research", Priority.MEDIUM, ("web_research", "document_analysis"), 20),
        StepTemplate("Perform detailed analysis", "analysis", Priority.MEDIUM, ("data_synthesis", "code_analysis"), 40),
        StepTemplate("Validate findings and conclusions", "analysis", Priority.HIGH, ("fact_checking",), 15),
    ),
    "communication": (
        StepTemplate("Understand communication context and audience", "analysis", Priority.MEDIUM, ("emotional_intelligence", "cultural_adaptation"), 10),
        StepTemplate("Craft appropriate message or response", "communication", Priority.MEDIUM, ("natural_conversation", "creative_writing"), 20),
        StepTemplate("Review and optimize communication", "communication", Priority.HIGH, ("language_translation",), 10),
    ),
    "optimization": (
        StepTemplate("Analyze current state and performance", "analysis", Priority.MEDIUM, ("data_synthesis",), 25),
        StepTemplate("Design optimization strategy", "analysis", Priority.MEDIUM, ("learning_adaptation",), 20),
        StepTemplate("Implement optimizations", "tool_use", Priority.HIGH, ("tool_orchestration",), 30),
        StepTemplate("Validate optimization results", "analysis", Priority.HIGH, ("fact_checking",), 15),
    ),
    "general": (
        StepTemplate("Analyze and understand the goal", "analysis", Priority.MEDIUM, ("natural_conversation",), 10),
        StepTemplate("Execute primary action", "tool_use", Priority.MEDIUM, ("tool_orchestration",), 30),
        StepTemplate("Review and validate results", "analysis", Priority.HIGH, ("self_reflection",), 10),
    ),
}

# Parallel wiring: tasks matching the first set wait for tasks matching the second.
PARALLEL_DOWNSTREAM = ("analyze", "review")
PARALLEL_UPSTREAM = ("gather", "create", "draft")


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class GoalAnalysis:
    goal_type: str
    complexity: str
    complexity_score: int
    required_capabilities: List[str]
    estimated_effort: float
    risk_factors: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "goal_type": self.goal_type,
            "complexity": self.complexity,
            "complexity_score": self.complexity_score,
            "required_capabilities": list(self.required_capabilities),
            "estimated_effort": self.estimated_effort,
            "risk_factors": list(self.risk_factors),
        }


@dataclass
class Contingency:
    condition: str
    task_id: str
    action: ContingencyAction
    escalation_target: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "condition": self.condition,
            "task_id": self.task_id,
            "action": self.action.value,
            "escalation_target": self.escalation_target,
        }


@dataclass
class Plan:
    """The live plan of one goal. Tasks are the goal's own ``Task`` objects."""

    id: str
    goal_id: str
    tasks: List[Task]
    strategy: StrategyName
    confidence: float
    contingencies: List[Contingency]
    estimated_completion: datetime
    analysis: Optional[GoalAnalysis] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "goal_id": self.goal_id,
            "task_ids": [t.id for t in self.tasks],
            "strategy": self.strategy.value,
            "confidence": self.confidence,
            "contingencies": [c.to_dict() for c in self.contingencies],
            "estimated_completion": self.estimated_completion.isoformat(),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class ReasoningStep:
    step: int
    thought: str
    action: str
    observation: str
    confidence: float
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "thought": self.thought,
            "action": self.action,
            "observation": self.observation,
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# PlanningEngine
# =============================================================================


class PlanningEngine:
    """
    Builds, stores and runs one live plan per goal.

    Args:
        long_task_threshold: Tasks estimated above this many minutes get
            a timeout contingency.
        contingency_priority: Tasks at or above this priority get a
            failure contingency.
        missing_capability_penalty: Score deducted per strategy
            prerequisite the agent lacks.
        max_task_retries: Retry budget for decomposed tasks.
        max_concurrency: Wave size for the adaptive shape.
        reasoning_capacity: Retained reasoning steps.
        clock: Source of the current time.
    """

    def __init__(
        self,
        long_task_threshold: float = 30.0,
        contingency_priority: Priority | str = Priority.HIGH,
        missing_capability_penalty: float = 0.2,
        low_completion_rate: float = 0.6,
        high_completion_rate: float = 0.8,
        confidence_step: float = 0.1,
        efficiency_step: float = 0.05,
        max_task_retries: int = 3,
        max_concurrency: int = 3,
        reasoning_capacity: int = 200,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.long_task_threshold = long_task_threshold
        self.contingency_priority = Priority(contingency_priority)
        self.missing_capability_penalty = missing_capability_penalty
        self.low_completion_rate = low_completion_rate
        self.high_completion_rate = high_completion_rate
        self.confidence_step = confidence_step
        self.efficiency_step = efficiency_step
        self.max_task_retries = max_task_retries
        self.max_concurrency = max_concurrency
        self._clock = clock

        self.strategies = default_strategies()
        # Estimated minutes per task type, seeded from the templates.
        self.duration_estimates: Dict[str, float] = {}
        for steps in DECOMPOSITION_TEMPLATES.values():
            for step in steps:
                self.duration_estimates.setdefault(step.type, step.minutes)

        self._plans: Dict[str, Plan] = {}
        self._reasoning: Deque[ReasoningStep] = deque(maxlen=reasoning_capacity)
        self._plans_created = 0

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    @staticmethod
    def classify_goal(description: str) -> str:
        text = description.lower()
        for keywords, goal_type in GOAL_TYPE_RULES:
            if any(k in text for k in keywords):
                return goal_type
        return "general"

    @staticmethod
    def complexity_score(description: str, resource_constraints: List[str] | None = None) -> int:
        words = description.lower().split()
        score = 0
        if len(words) > 10:
            score += 2
        elif len(words) > 5:
            score += 1
        score += sum(1 for c in CONNECTIVES if c in words)
        text = description.lower()
        score += sum(1 for t in TECHNICAL_TERMS if t in text)
        score += len(resource_constraints or [])
        return score

    @staticmethod
    def complexity_level(score: int) -> str:
        if score >= 5:
            return "high"
        if score >= 2:
            return "medium"
        return "low"

    @staticmethod
    def required_capabilities(description: str, available: List[str]) -> List[str]:
        text = description.lower()
        needed: List[str] = []
        for keyword, caps in CAPABILITY_KEYWORDS.items():
            if keyword in text:
                needed.extend(c for c in caps if c not in needed)
        return [c for c in needed if c in available]

    def risk_factors(self, goal: Goal, context: Dict[str, Any]) -> List[str]:
        risks = []
        raw_deadline = goal.context.get("deadline") or context.get("deadline")
        try:
            deadline = _parse_datetime(raw_deadline)
        except (TypeError, ValueError):
            logger.warning("Ignoring unparseable deadline %r on goal %s", raw_deadline, goal.id)
            deadline = None
        if deadline is not None and deadline < self._clock() + timedelta(hours=1):
            risks.append("tight_deadline")
        if len(self._plans) > 5:
            risks.append("high_workload")
        if goal.priority == Priority.CRITICAL:
            risks.append("high_stakes")
        if context.get("resource_constraints"):
            risks.append("resource_constraints")
        return risks

    def analyze_goal(
        self,
        goal: Goal,
        capabilities: List[str],
        context: Optional[Dict[str, Any]] = None,
    ) -> GoalAnalysis:
        context = context or {}
        constraints = list(context.get("resource_constraints", []))
        score = self.complexity_score(goal.description, constraints)
        complexity = self.complexity_level(score)
        required = self.required_capabilities(goal.description, capabilities)
        analysis = GoalAnalysis(
            goal_type=self.classify_goal(goal.description),
            complexity=complexity,
            complexity_score=score,
            required_capabilities=required,
            estimated_effort=30 * COMPLEXITY_MULTIPLIER[complexity] * max(1.0, len(required) / 2),
            risk_factors=self.risk_factors(goal, context),
        )
        self._record(
            1,
            f"Analyzing goal: {goal.description}",
            "classify_and_assess",
            f"Goal type: {analysis.goal_type}, complexity: {complexity}, "
            f"capabilities: {', '.join(required) or 'none'}",
            0.8,
        )
        return analysis

    # ------------------------------------------------------------------
    # Strategy selection
    # ------------------------------------------------------------------

    def score_strategy(
        self,
        strategy: PlanningStrategy,
        analysis: GoalAnalysis,
        capabilities: List[str],
        has_deadline: bool,
    ) -> float:
        score = strategy.confidence
        if analysis.complexity == "low" and strategy.name == StrategyName.PARALLEL:
            score += 0.2
        if analysis.complexity == "high" and strategy.name == StrategyName.SEQUENTIAL:
            score += 0.2
        if len(analysis.risk_factors) > 2 and strategy.risk_level == "low":
            score += 0.3
        if has_deadline and strategy.name == StrategyName.PARALLEL:
            score += 0.1
        missing = [c for c in strategy.required_capabilities if c not in capabilities]
        score -= self.missing_capability_penalty * len(missing)
        return score

    def select_strategy(
        self,
        goal: Goal,
        analysis: GoalAnalysis,
        capabilities: List[str],
        exclude: Tuple[StrategyName, ...] = (),
    ) -> PlanningStrategy:
        """Highest-scoring catalog strategy; ties keep catalog order."""
        has_deadline = "deadline" in goal.context
        best: Optional[PlanningStrategy] = None
        best_score = float("-inf")
        for strategy in self.strategies.values():
            if strategy.name in exclude:
                continue
            score = self.score_strategy(strategy, analysis, capabilities, has_deadline)
            if score > best_score:
                best, best_score = strategy, score
        if best is None:
            best = self.strategies[StrategyName.SEQUENTIAL]
            best_score = best.confidence
        self._record(
            2,
            f"Selecting strategy for {analysis.goal_type} goal of {analysis.complexity} complexity",
            "score_strategies",
            f"Selected {best.name.value} with score {best_score:.2f}",
            max(0.0, min(best_score, 1.0)),
        )
        return best

    # ------------------------------------------------------------------
    # Decomposition
    # ------------------------------------------------------------------

    def decompose(self, goal: Goal, goal_type: str) -> List[Task]:
        """Instantiate the goal-type template as fresh pending tasks."""
        steps = DECOMPOSITION_TEMPLATES.get(goal_type, DECOMPOSITION_TEMPLATES["general"])
        offset = len(goal.tasks)
        tasks = [
            Task(
                id=f"{goal.id}_task_{offset + i}",
                goal_id=goal.id,
                type=step.type,
                description=step.description,
                priority=max(step.priority, goal.priority, key=lambda p: p.weight),
                parameters={"goal_description": goal.description, "capabilities": list(step.capabilities)},
                estimated_duration=self.duration_estimates.get(step.type, step.minutes) * 60,
                max_retries=self.max_task_retries,
            )
            for i, step in enumerate(steps)
        ]
        self._record(
            3,
            f"Decomposing {goal_type} goal into tasks",
            "instantiate_template",
            f"Created {len(tasks)} tasks: {', '.join(t.description for t in tasks)}",
            0.8,
        )
        return tasks

    @staticmethod
    def wire_dependencies(tasks: List[Task], strategy: PlanningStrategy) -> None:
        """
        Set dependencies on freshly decomposed tasks.

        Parallel chains only review/analysis steps to gather/create/draft
        steps; every other strategy chains each task to its predecessor.
        """
        if strategy.name == StrategyName.PARALLEL:
            upstream = [t.id for t in tasks if any(w in t.description.lower() for w in PARALLEL_UPSTREAM)]
            for task in tasks:
                if any(w in task.description.lower() for w in PARALLEL_DOWNSTREAM):
                    task.dependencies = [u for u in upstream if u != task.id]
            return
        for previous, task in zip(tasks, tasks[1:]):
            task.dependencies = [previous.id]

    def build_contingencies(self, tasks: List[Task]) -> List[Contingency]:
        contingencies = []
        for task in tasks:
            if task.estimated_duration / 60 > self.long_task_threshold:
                contingencies.append(
                    Contingency(f"task_{task.id}_timeout", task.id, ContingencyAction.RETRY, "user")
                )
            if task.priority.weight >= self.contingency_priority.weight:
                action = (
                    ContingencyAction.ESCALATE
                    if task.priority == Priority.CRITICAL
                    else ContingencyAction.ALTERNATIVE_PLAN
                )
                contingencies.append(Contingency(f"task_{task.id}_failed", task.id, action, "user"))
        return contingencies

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def create_plan(
        self,
        goal: Goal,
        capabilities: List[str],
        context: Optional[Dict[str, Any]] = None,
        exclude: Tuple[StrategyName, ...] = (),
    ) -> Optional[Plan]:
        """
        Analyze, select a strategy and decompose.

        A goal that already carries tasks keeps them untouched; otherwise
        new tasks are returned in the plan for the goal manager to attach.
        Returns None when no tasks result.
        """
        analysis = self.analyze_goal(goal, capabilities, context)
        strategy = self.select_strategy(goal, analysis, capabilities, exclude)

        if goal.tasks:
            tasks = list(goal.tasks)
        else:
            tasks = self.decompose(goal, analysis.goal_type)
            self.wire_dependencies(tasks, strategy)

        if not tasks:
            logger.warning("No tasks generated for goal %s", goal.id)
            return None

        total = sum(t.estimated_duration for t in tasks) * strategy.duration_factor
        plan = Plan(
            id=f"plan_{uuid.uuid4().hex[:12]}",
            goal_id=goal.id,
            tasks=tasks,
            strategy=strategy.name,
            confidence=max(0.0, min(strategy.confidence, 1.0)),
            contingencies=self.build_contingencies(tasks),
            estimated_completion=self._clock() + timedelta(seconds=total),
            analysis=analysis,
            created_at=self._clock(),
        )
        self._plans[goal.id] = plan
        self._plans_created += 1
        logger.info(
            "Created plan %s for goal %s: %d tasks, strategy %s",
            plan.id, goal.id, len(tasks), strategy.name.value,
        )
        return plan

    def get_plan(self, goal_id: str) -> Optional[Plan]:
        return self._plans.get(goal_id)

    def has_plan(self, goal_id: str) -> bool:
        return goal_id in self._plans

    def drop_plan(self, goal_id: str) -> None:
        self._plans.pop(goal_id, None)

    def live_plans(self) -> List[Plan]:
        return list(self._plans.values())

    @staticmethod
    def find_contingency(plan: Plan, task_id: str, condition: str) -> Optional[Contingency]:
        """Contingency for ``task_<id>_<condition>``, if the plan has one."""
        wanted = f"task_{task_id}_{condition}"
        for contingency in plan.contingencies:
            if contingency.condition == wanted:
                return contingency
        return None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_plan(
        self,
        plan: Plan,
        run_task: Callable[[Task], Awaitable[Any]],
        is_ready: Callable[[Task], bool],
    ) -> int:
        """
        Run the plan's tasks in the strategy's concurrency shape.

        ``run_task`` performs one attempt and reports the outcome to the
        goal manager; ``is_ready`` says whether a task may run now. Runs
        until no task is ready. Returns the number of attempts made.
        """
        shape = self.strategies[plan.strategy].shape
        attempts = 0
        while True:
            ready = [t for t in plan.tasks if is_ready(t)]
            if not ready:
                break
            if shape == ExecutionShape.ONE_AT_A_TIME:
                wave = ready[:1]
            elif shape == ExecutionShape.BOUNDED_WAVES:
                wave = ready[: self.max_concurrency]
            else:
                wave = ready
            await asyncio.gather(*(run_task(t) for t in wave))
            attempts += len(wave)
        logger.debug("Plan %s executed with %d attempt(s)", plan.id, attempts)
        return attempts

    # ------------------------------------------------------------------
    # Adaptation
    # ------------------------------------------------------------------

    def adapt_strategies(
        self,
        completion_rate: float,
        observed_durations: Optional[Dict[str, float]] = None,
    ) -> None:
        """
        Shift strategy confidence and duration estimates toward observations.

        Below the low completion rate, risky strategies lose
        ``confidence_step`` (floor 0.1) and low-risk ones gain it (cap 1.0).
        Above the high completion rate, strategies faster than sequential
        gain ``efficiency_step``. Per task type, the estimate is multiplied
        by ``actual / estimate`` clamped to [0.5, 2.0].

        Args:
            completion_rate: Goal completion rate in [0, 1].
            observed_durations: Average actual seconds per task type.
        """
        if completion_rate < self.low_completion_rate:
            for strategy in self.strategies.values():
                if strategy.risk_level == "low":
                    strategy.confidence = min(1.0, strategy.confidence + self.confidence_step)
                else:
                    strategy.confidence = max(0.1, strategy.confidence - self.confidence_step)
        elif completion_rate > self.high_completion_rate:
            for strategy in self.strategies.values():
                if strategy.duration_factor < 1.0:
                    strategy.confidence = min(1.0, strategy.confidence + self.efficiency_step)

        for task_type, actual_seconds in (observed_durations or {}).items():
            estimate = self.duration_estimates.get(task_type)
            if not estimate or actual_seconds <= 0:
                continue
            factor = max(0.5, min(2.0, (actual_seconds / 60) / estimate))
            self.duration_estimates[task_type] = estimate * factor

        logger.debug(
            "Adapted strategies at completion rate %.2f: %s",
            completion_rate,
            {n.value: round(s.confidence, 3) for n, s in self.strategies.items()},
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def _record(self, step: int, thought: str, action: str, observation: str, confidence: float) -> None:
        self._reasoning.append(
            ReasoningStep(step, thought, action, observation, confidence, self._clock())
        )

    def get_reasoning_history(self, limit: int = 50) -> List[ReasoningStep]:
        return list(self._reasoning)[-limit:]

    def get_statistics(self) -> Dict[str, Any]:
        strategies = list(self.strategies.values())
        return {
            "total_plans": self._plans_created,
            "live_plans": len(self._plans),
            "strategies": [s.to_dict() for s in strategies],
            "average_confidence": sum(s.confidence for s in strategies) / len(strategies),
            "duration_estimates": dict(self.duration_estimates),
        }

    def export_state(self) -> Dict[str, Any]:
        return {
            "strategy_confidence": {n.value: s.confidence for n, s in self.strategies.items()},
            "duration_estimates": dict(self.duration_estimates),
        }

    def restore_state(self, data: Dict[str, Any]) -> None:
        for name, confidence in data.get("strategy_confidence", {}).items():
            try:
                self.strategies[StrategyName(name)].confidence = float(confidence)
            except (ValueError, KeyError):
                logger.warning("Ignoring unknown strategy in persisted state: %s", name)
        self.duration_estimates.update(data.get("duration_estimates", {}))
