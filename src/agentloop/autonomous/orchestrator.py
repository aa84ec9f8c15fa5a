# src/agentloop/autonomous/orchestrator.py
"""
Tool Orchestrator: choosing capabilities for a task and running them.

For each task the orchestrator

1. scores every registered capability for relevance against the task's
   keywords and type, keeping those above the relevance threshold;
2. ranks candidates by fitness (relevance, effective reliability,
   historical performance and fit with the situational context);
3. greedily selects up to ``max_tools`` under a complexity budget derived
   from task priority, one per category (``system`` excepted);
4. builds an execution strategy (sequential, parallel, conditional or
   hybrid) from declared capability dependencies and runtime gates;
5. runs the chain through the ``CapabilityRegistry``.

Example:
    orchestrator = ToolOrchestrator(registry)
    outcome = await orchestrator.execute_task(task, context)
    if outcome.success:
        ...
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .capabilities import (
    CapabilityCategory,
    CapabilityDescriptor,
    CapabilityRegistry,
    ExecutionResult,
    LatencyClass,
)
from .goals import Priority, Task

logger = logging.getLogger(__name__)

COMPLEXITY_BUDGET: Dict[Priority, int] = {
    Priority.CRITICAL: 15,
    Priority.HIGH: 12,
    Priority.MEDIUM: 8,
    Priority.LOW: 5,
}

# Categories that get a relevance bonus when they equal the task type.
TYPE_MATCH_CATEGORIES = frozenset({CapabilityCategory.VOICE, CapabilityCategory.ANALYSIS})

VOICE_TASK_CATEGORIES = frozenset({CapabilityCategory.VOICE, CapabilityCategory.SYSTEM})


def _voice_analysis_gate(context: Dict[str, Any]) -> bool:
    return context.get("user_preferences", {}).get("enable_voice_analysis") is not False


# Runtime gates: name -> predicate over the situational context.
GATES: Dict[str, Callable[[Dict[str, Any]], bool]] = {
    "voice_analysis_needed": _voice_analysis_gate,
}


# =============================================================================
# Data Models
# =============================================================================


class StrategyType(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"
    HYBRID = "hybrid"


@dataclass
class ToolSelection:
    """A capability chosen for a task, with the scores behind the choice."""

    name: str
    relevance: float
    fitness: float
    confidence: float
    reasoning: str
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionStrategy:
    """
    How a selection is run.

    Attributes:
        type: Concurrency shape.
        tools: Selected capability names, in selection order.
        groups: Dependency layers; members of a layer are independent.
        conditions: Gate name -> capability names that only run when the
            gate passes.
        optimizations: Hints for the runtime.
    """

    type: StrategyType
    tools: List[str]
    groups: List[List[str]] = field(default_factory=list)
    conditions: Dict[str, List[str]] = field(default_factory=dict)
    optimizations: List[str] = field(default_factory=list)
    confidences: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "tools": list(self.tools),
            "groups": [list(g) for g in self.groups],
            "conditions": {k: list(v) for k, v in self.conditions.items()},
            "optimizations": list(self.optimizations),
        }


@dataclass
class TaskOutcome:
    """Aggregate result of running a task's capability chain."""

    task_id: str
    success: bool
    results: List[ExecutionResult]
    strategy: Optional[ExecutionStrategy] = None
    error: Optional[str] = None

    @property
    def execution_time(self) -> float:
        return sum(r.execution_time for r in self.results)

    @property
    def payload(self) -> Any:
        """Results of the successful calls keyed by capability name."""
        return {r.capability: r.result for r in self.results if r.success}


# =============================================================================
# ToolOrchestrator
# =============================================================================


class ToolOrchestrator:
    """
    Selects and executes capabilities for tasks.

    Args:
        registry: Capability registry to select from and execute through.
        relevance_threshold: Candidates need a relevance above this.
        max_tools: Upper bound on capabilities per task.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        relevance_threshold: float = 0.3,
        max_tools: int = 5,
    ) -> None:
        self.registry = registry
        self.relevance_threshold = relevance_threshold
        self.max_tools = max_tools

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    @staticmethod
    def extract_keywords(task: Task) -> List[str]:
        """Words longer than two characters from description, type and parameter values."""
        parts = [task.description, task.type]
        parts.extend(str(v) for v in task.parameters.values())
        return [w for w in " ".join(parts).lower().split() if len(w) > 2]

    def relevance(self, descriptor: CapabilityDescriptor, keywords: List[str], task: Task) -> float:
        text = descriptor.search_text
        score = sum(1 for k in keywords if k in text) / len(keywords) if keywords else 0.0

        if descriptor.category in TYPE_MATCH_CATEGORIES and task.type == descriptor.category.value:
            score += 0.3
        if task.priority == Priority.CRITICAL and descriptor.reliability > 0.9:
            score += 0.2
        return min(score, 1.0)

    @staticmethod
    def contextual_fit(descriptor: CapabilityDescriptor, context: Dict[str, Any]) -> float:
        """Base 0.5; language specialization, mobile speed and low bandwidth raise it."""
        score = 0.5
        language = context.get("user_preferences", {}).get("language")
        if language and language in descriptor.languages:
            score += 0.4
        if context.get("environment") == "mobile" and descriptor.latency == LatencyClass.FAST:
            score += 0.2
        if context.get("connection_speed") == "slow" and descriptor.category != CapabilityCategory.WEB:
            score += 0.1
        return min(score, 1.0)

    def fitness(self, name: str, relevance: float, context: Dict[str, Any]) -> float:
        descriptor = self.registry.descriptor(name)
        return (
            relevance * 0.4
            + self.registry.effective_reliability(name) * 0.3
            + self.registry.historical_performance(name) * 0.2
            + self.contextual_fit(descriptor, context) * 0.1
        )

    def confidence(self, name: str, relevance: float, context: Dict[str, Any]) -> float:
        descriptor = self.registry.descriptor(name)
        return (
            relevance * 0.3
            + self.registry.effective_reliability(name) * 0.3
            + self.contextual_fit(descriptor, context) * 0.2
            + self.registry.historical_performance(name) * 0.2
        )

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def rank_tools(self, task: Task, context: Optional[Dict[str, Any]] = None) -> List[ToolSelection]:
        """All candidates above the relevance threshold, best fitness first."""
        context = context or {}
        keywords = self.extract_keywords(task)
        ranked: List[ToolSelection] = []
        for descriptor in self.registry.descriptors():
            if self.registry.effective_reliability(descriptor.name) <= 0.0:
                continue
            rel = self.relevance(descriptor, keywords, task)
            if descriptor.name in task.required_tools:
                rel = max(rel, 1.0)
            if rel <= self.relevance_threshold:
                continue
            ranked.append(
                ToolSelection(
                    name=descriptor.name,
                    relevance=rel,
                    fitness=self.fitness(descriptor.name, rel, context),
                    confidence=self.confidence(descriptor.name, rel, context),
                    reasoning=self._reasoning(descriptor, task),
                    parameters=dict(task.parameters),
                )
            )
        ranked.sort(key=lambda s: s.fitness, reverse=True)
        return ranked

    def select_optimal_tools(
        self, task: Task, context: Optional[Dict[str, Any]] = None
    ) -> List[ToolSelection]:
        """
        Greedy selection from the ranking.

        Stays within the priority's complexity budget, takes at most one
        capability per category except ``system``, restricts voice tasks
        to voice/system capabilities and stops at ``max_tools``.
        """
        budget = COMPLEXITY_BUDGET[task.priority]
        used = 0
        categories: set = set()
        chosen: List[ToolSelection] = []

        for selection in self.rank_tools(task, context):
            descriptor = self.registry.descriptor(selection.name)
            cost = descriptor.complexity.cost
            if used + cost > budget:
                continue
            if descriptor.category != CapabilityCategory.SYSTEM and descriptor.category in categories:
                continue
            if task.type == CapabilityCategory.VOICE.value and descriptor.category not in VOICE_TASK_CATEGORIES:
                continue
            chosen.append(selection)
            used += cost
            categories.add(descriptor.category)
            if len(chosen) >= self.max_tools:
                break

        logger.debug(
            "Selected %s for task %s (budget %d/%d)",
            [s.name for s in chosen], task.id, used, budget,
        )
        return chosen

    @staticmethod
    def _reasoning(descriptor: CapabilityDescriptor, task: Task) -> str:
        reasons = []
        if descriptor.reliability > 0.9:
            reasons.append("high reliability track record")
        if descriptor.complexity.value == "low" and task.priority == Priority.HIGH:
            reasons.append("low complexity ensures fast execution")
        if descriptor.category == CapabilityCategory.VOICE and "speak" in task.description.lower():
            reasons.append("specialized voice capabilities match task requirements")
        if descriptor.latency == LatencyClass.FAST:
            reasons.append("optimized for quick response")
        return ", ".join(reasons) or "general compatibility with task requirements"

    # ------------------------------------------------------------------
    # Strategy
    # ------------------------------------------------------------------

    def dependency_layers(self, names: List[str]) -> List[List[str]]:
        """
        Topological layers over the dependencies declared among ``names``.

        Dependencies on capabilities outside the selection are ignored; a
        cycle is broken by placing the remaining names in one final layer.
        """
        selected = set(names)
        deps = {
            n: [d for d in self.registry.descriptor(n).dependencies if d in selected and d != n]
            for n in names
        }
        placed: set = set()
        layers: List[List[str]] = []
        remaining = list(names)
        while remaining:
            layer = [n for n in remaining if all(d in placed for d in deps[n])]
            if not layer:
                layer = remaining
            layers.append(layer)
            placed.update(layer)
            remaining = [n for n in remaining if n not in placed]
        return layers

    def create_execution_strategy(
        self,
        selections: List[ToolSelection],
        task: Task,
        context: Optional[Dict[str, Any]] = None,
    ) -> ExecutionStrategy:
        """
        Decide the concurrency shape.

        A layer with two or more members makes the selection
        parallelizable: a single such layer is ``parallel``; several layers
        or a runtime gate make it ``hybrid``. A gate alone is
        ``conditional``; anything else is ``sequential``.
        """
        context = context or {}
        names = [s.name for s in selections]
        layers = self.dependency_layers(names) if names else []
        conditions = self._conditional_branches(names)

        parallelizable = any(len(layer) > 1 for layer in layers)
        if parallelizable and (conditions or len(layers) > 1):
            strategy_type = StrategyType.HYBRID
        elif parallelizable:
            strategy_type = StrategyType.PARALLEL
        elif conditions:
            strategy_type = StrategyType.CONDITIONAL
        else:
            strategy_type = StrategyType.SEQUENTIAL

        return ExecutionStrategy(
            type=strategy_type,
            tools=names,
            groups=layers,
            conditions=conditions,
            optimizations=self._optimizations(names, task, context),
            confidences={s.name: s.confidence for s in selections},
        )

    def _conditional_branches(self, names: List[str]) -> Dict[str, List[str]]:
        by_category: Dict[CapabilityCategory, List[str]] = {}
        for name in names:
            by_category.setdefault(self.registry.descriptor(name).category, []).append(name)
        branches: Dict[str, List[str]] = {}
        voice = by_category.get(CapabilityCategory.VOICE, [])
        analysis = by_category.get(CapabilityCategory.ANALYSIS, [])
        if voice and analysis:
            branches["voice_analysis_needed"] = voice + analysis
        return branches

    def _optimizations(self, names: List[str], task: Task, context: Dict[str, Any]) -> List[str]:
        descriptors = [self.registry.descriptor(n) for n in names]
        hints = []
        if descriptors and all(d.latency == LatencyClass.FAST for d in descriptors):
            hints.append("parallel_execution")
        if any(d.category == CapabilityCategory.MEMORY for d in descriptors):
            hints.append("memory_caching")
        if context.get("connection_speed") == "slow":
            hints.append("compression")
        if task.priority == Priority.CRITICAL:
            hints.append("priority_queue")
        return hints

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _run(self, name: str, task: Task, context: Dict[str, Any], strategy: ExecutionStrategy) -> ExecutionResult:
        result = await self.registry.execute(name, task, context)
        if result.success:
            result.confidence = strategy.confidences.get(name, 0.0)
        return result

    async def _run_group(
        self, names: List[str], task: Task, context: Dict[str, Any], strategy: ExecutionStrategy
    ) -> List[ExecutionResult]:
        outcomes = await asyncio.gather(
            *(self._run(n, task, context, strategy) for n in names),
            return_exceptions=True,
        )
        results = []
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                results.append(
                    ExecutionResult(
                        capability=name,
                        success=False,
                        error=str(outcome),
                        critical=self.registry.is_critical_failure(name, task),
                    )
                )
            else:
                results.append(outcome)
        return results

    def _gated_out(self, name: str, strategy: ExecutionStrategy, context: Dict[str, Any]) -> bool:
        for gate, members in strategy.conditions.items():
            if name in members and not GATES.get(gate, lambda _ctx: True)(context):
                return True
        return False

    async def execute_tool_chain(
        self,
        strategy: ExecutionStrategy,
        task: Task,
        context: Optional[Dict[str, Any]] = None,
    ) -> List[ExecutionResult]:
        """
        Run a strategy and return one result per invoked capability.

        Sequential and conditional chains stop at the first critical
        failure. Parallel runs every capability and collects every outcome.
        Hybrid runs dependency layers in order with layer members
        concurrent, stopping after a layer that produced a critical failure.
        """
        context = context or {}
        results: List[ExecutionResult] = []

        if strategy.type == StrategyType.PARALLEL:
            return await self._run_group(strategy.tools, task, context, strategy)

        if strategy.type == StrategyType.HYBRID:
            groups = strategy.groups or [[n] for n in strategy.tools]
            for group in groups:
                runnable = [n for n in group if not self._gated_out(n, strategy, context)]
                if not runnable:
                    continue
                layer_results = await self._run_group(runnable, task, context, strategy)
                results.extend(layer_results)
                if any(not r.success and r.critical for r in layer_results):
                    break
            return results

        for name in strategy.tools:
            if strategy.type == StrategyType.CONDITIONAL and self._gated_out(name, strategy, context):
                logger.debug("Gate closed, skipping %s for task %s", name, task.id)
                continue
            result = await self._run(name, task, context, strategy)
            results.append(result)
            if not result.success and result.critical:
                logger.warning("Critical failure in %s, halting chain for task %s", name, task.id)
                break
        return results

    async def execute_task(self, task: Task, context: Optional[Dict[str, Any]] = None) -> TaskOutcome:
        """
        Select, plan and run capabilities for one task.

        The task succeeds when at least one capability succeeded and no
        critical failure occurred.
        """
        context = context or {}
        selections = self.select_optimal_tools(task, context)
        if not selections:
            return TaskOutcome(
                task_id=task.id,
                success=False,
                results=[],
                error=f"No suitable capability for task type '{task.type}'",
            )

        strategy = self.create_execution_strategy(selections, task, context)
        results = await self.execute_tool_chain(strategy, task, context)

        critical = [r for r in results if not r.success and r.critical]
        succeeded = any(r.success for r in results)
        error = None
        if critical:
            error = "; ".join(f"{r.capability}: {r.error}" for r in critical)
        elif not succeeded:
            error = "; ".join(f"{r.capability}: {r.error}" for r in results) or "No capability ran"

        return TaskOutcome(
            task_id=task.id,
            success=succeeded and not critical,
            results=results,
            strategy=strategy,
            error=error,
        )
