# src/agentloop/autonomous/reflection.py
"""
Reflection and learning.

After a task finishes, after a goal finishes, and periodically, the
``ReflectionEngine`` turns raw execution results into a
``ReflectionEntry``: an outcome classification, textual insights,
derived action items, a confidence score and an impact level. Each
reflection also feeds the learning patterns, whose success rate is
maintained with one incremental-mean formula::

    rate = (rate * (frequency - 1) + (1 if success else 0)) / frequency

so it always stays in [0, 1].

The insight -> action item mapping is an ordered rule table
(``ACTION_RULES``) so each rule can be tested on its own.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from .capabilities import ExecutionResult
from .goals import Goal, Task, utcnow

logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================


class Outcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


class Impact(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ReflectionKind(str, Enum):
    GOAL = "goal"
    TASK = "task"
    PERIODIC = "periodic"


def classify_outcome(successes: int, total: int) -> Outcome:
    """All succeeded -> success, some -> partial, none -> failure."""
    if total > 0 and successes == total:
        return Outcome.SUCCESS
    if successes > 0:
        return Outcome.PARTIAL
    return Outcome.FAILURE


def update_success_rate(rate: float, frequency: int, success: bool) -> float:
    """Incremental mean; ``frequency`` already counts the new observation."""
    if frequency <= 0:
        return rate
    return (rate * (frequency - 1) + (1.0 if success else 0.0)) / frequency


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class ActionItem:
    id: str
    description: str
    priority: str
    category: str
    estimated_impact: float
    implemented: bool = False
    target_date: Optional[datetime] = None
    source: str = "reflection"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "priority": self.priority,
            "category": self.category,
            "estimated_impact": self.estimated_impact,
            "implemented": self.implemented,
            "target_date": self.target_date.isoformat() if self.target_date else None,
            "source": self.source,
        }


@dataclass
class LearningPattern:
    id: str
    name: str
    description: str
    contexts: List[str]
    frequency: int = 0
    success_rate: float = 0.0
    confidence: float = 0.5
    adaptations: List[str] = field(default_factory=list)

    def observe(self, success: bool, insights: List[str]) -> None:
        self.frequency += 1
        self.success_rate = update_success_rate(self.success_rate, self.frequency, success)
        for insight in insights:
            if insight not in self.adaptations:
                self.adaptations.append(insight)
        del self.adaptations[:-50]
        self.confidence = min(self.confidence + 0.1, 1.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "contexts": list(self.contexts),
            "frequency": self.frequency,
            "success_rate": self.success_rate,
            "confidence": self.confidence,
            "adaptations": list(self.adaptations),
        }


@dataclass
class ReflectionContext:
    outcome: Outcome
    tools_used: List[str]
    execution_time: float
    user_context: Dict[str, Any] = field(default_factory=dict)
    metrics: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ReflectionEntry:
    id: str
    kind: ReflectionKind
    subject_id: Optional[str]
    timestamp: datetime
    context: ReflectionContext
    insights: List[str]
    action_items: List[ActionItem]
    patterns_updated: List[str]
    confidence: float
    impact: Impact

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "subject_id": self.subject_id,
            "timestamp": self.timestamp.isoformat(),
            "outcome": self.context.outcome.value,
            "tools_used": list(self.context.tools_used),
            "execution_time": self.context.execution_time,
            "metrics": self.context.metrics,
            "insights": list(self.insights),
            "action_items": [a.to_dict() for a in self.action_items],
            "patterns_updated": list(self.patterns_updated),
            "confidence": self.confidence,
            "impact": self.impact.value,
        }


# =============================================================================
# Rule tables
# =============================================================================


BASE_PATTERNS: Tuple[Tuple[str, str, str, Tuple[str, ...]], ...] = (
    (
        "voice_interaction_optimization",
        "Voice Interaction Optimization",
        "Improve voice response quality from interaction outcomes",
        ("voice_requests", "emotional_responses"),
    ),
    (
        "cultural_adaptation_learning",
        "Cultural Adaptation Learning",
        "Adapt behavior to cultural and linguistic context",
        ("tagalog_interactions", "cultural_references"),
    ),
    (
        "tool_selection_improvement",
        "Tool Selection Improvement",
        "Choose better capabilities for recurring task shapes",
        ("multi_tool_tasks", "complex_goals"),
    ),
    (
        "goal_decomposition_refinement",
        "Goal Decomposition Refinement",
        "Refine how goals are broken into tasks",
        ("complex_goals", "multi_step_tasks"),
    ),
)


@dataclass(frozen=True)
class ActionRule:
    """Insight substring (case-insensitive) -> action item template."""

    trigger: str
    description: str
    priority: str
    category: str
    impact: float
    due_in: Optional[timedelta] = None


ACTION_RULES: List[ActionRule] = [
    ActionRule("tool failures", "Investigate and improve failing tool reliability", "high", "performance", 0.8, timedelta(hours=24)),
    ActionRule("longer than estimated", "Optimize execution time estimation", "medium", "strategy", 0.6),
    ActionRule("declining", "Analyze root causes of performance decline", "high", "performance", 0.9, timedelta(hours=12)),
    ActionRule("high confidence", "Document and replicate successful patterns", "low", "capability", 0.4),
]

CRITICAL_INSIGHT_WORDS = ("failure", "failed", "critical", "declining")


# =============================================================================
# ReflectionEngine
# =============================================================================


class ReflectionEngine:
    """
    Produces reflections and maintains learning patterns and action items.

    Args:
        history_capacity: Retained reflections (oldest evicted).
        performance_capacity: Retained performance samples.
        action_item_capacity: Retained action items. Implemented items older
            than ``window`` are dropped first, then the oldest implemented
            ones, then the oldest pending ones.
        window: Width of the periodic comparison window.
        relevance_threshold: Patterns update when relevance exceeds this.
        category_lookup: Maps a capability name to its category, or None.
        clock: Source of the current time.
    """

    def __init__(
        self,
        history_capacity: int = 500,
        performance_capacity: int = 100,
        action_item_capacity: int = 200,
        window: timedelta = timedelta(hours=24),
        relevance_threshold: float = 0.5,
        category_lookup: Optional[Callable[[str], Optional[str]]] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.window = window
        self.relevance_threshold = relevance_threshold
        self.action_item_capacity = action_item_capacity
        self._category_lookup = category_lookup or (lambda _name: None)
        self._clock = clock
        self._history: Deque[ReflectionEntry] = deque(maxlen=history_capacity)
        self._performance: Deque[Dict[str, Any]] = deque(maxlen=performance_capacity)
        self._action_items: Dict[str, ActionItem] = {}
        self._patterns: Dict[str, LearningPattern] = {
            pid: LearningPattern(id=pid, name=name, description=desc, contexts=list(contexts))
            for pid, name, desc, contexts in BASE_PATTERNS
        }

    # ------------------------------------------------------------------
    # Reflection entry points
    # ------------------------------------------------------------------

    def reflect_on_goal_completion(
        self,
        goal: Goal,
        results: List[ExecutionResult],
        context: Optional[Dict[str, Any]] = None,
    ) -> ReflectionEntry:
        """Reflect on a finished goal given every capability result it produced."""
        context = context or {}
        successes = sum(1 for r in results if r.success)
        execution_time = sum(r.execution_time for r in results)
        reflection_context = ReflectionContext(
            outcome=classify_outcome(successes, len(results)),
            tools_used=sorted({r.capability for r in results}),
            execution_time=execution_time,
            user_context=context,
            metrics=self._result_metrics(results, goal_tasks=len(goal.tasks)),
        )
        insights = self._goal_insights(goal, results, reflection_context)
        return self._finish(ReflectionKind.GOAL, goal.id, reflection_context, insights, extra_signals=[goal.category])

    def reflect_on_task_execution(
        self,
        task: Task,
        results: List[ExecutionResult],
        context: Optional[Dict[str, Any]] = None,
    ) -> ReflectionEntry:
        """Reflect on one task attempt."""
        context = context or {}
        successes = sum(1 for r in results if r.success)
        reflection_context = ReflectionContext(
            outcome=classify_outcome(successes, len(results)),
            tools_used=[r.capability for r in results],
            execution_time=sum(r.execution_time for r in results),
            user_context=context,
            metrics=self._result_metrics(results),
        )
        insights = self._task_insights(task, results)
        return self._finish(ReflectionKind.TASK, task.id, reflection_context, insights, extra_signals=[task.type])

    def perform_periodic_reflection(self) -> ReflectionEntry:
        """
        Compare the current window with the one before it.

        Produces trend insights ("improving"/"declining") and uses fixed
        confidence 0.8 and medium impact.
        """
        now = self._clock()
        current = [r for r in self._history if r.kind != ReflectionKind.PERIODIC and r.timestamp > now - self.window]
        previous = [
            r for r in self._history
            if r.kind != ReflectionKind.PERIODIC and now - 2 * self.window < r.timestamp <= now - self.window
        ]
        current_metrics = self._window_metrics(current)
        previous_metrics = self._window_metrics(previous)
        trends = self._trends(current_metrics, previous_metrics)

        successes = sum(1 for r in current if r.context.outcome == Outcome.SUCCESS)
        tools = sorted({t for r in current for t in r.context.tools_used})
        reflection_context = ReflectionContext(
            outcome=classify_outcome(successes, len(current)) if current else Outcome.PARTIAL,
            tools_used=tools,
            execution_time=current_metrics.get("avg_execution_time", 0.0),
            metrics={"current": current_metrics, "previous": previous_metrics, "trends": trends},
        )
        insights = self._periodic_insights(current, trends)
        entry = self._finish(
            ReflectionKind.PERIODIC,
            None,
            reflection_context,
            insights,
            confidence=0.8,
            impact=Impact.MEDIUM,
            learn=False,
        )
        logger.info("Periodic reflection: %d reflections in window, %d insights", len(current), len(insights))
        return entry

    # ------------------------------------------------------------------
    # Insight generation
    # ------------------------------------------------------------------

    @staticmethod
    def _result_metrics(results: List[ExecutionResult], goal_tasks: Optional[int] = None) -> Dict[str, Any]:
        successful = [r for r in results if r.success]
        metrics: Dict[str, Any] = {
            "total_results": len(results),
            "successful_results": len(successful),
            "average_confidence": (
                sum(r.confidence for r in successful) / len(successful) if successful else 0.0
            ),
            "average_execution_time": (
                sum(r.execution_time for r in results) / len(results) if results else 0.0
            ),
        }
        if goal_tasks is not None:
            metrics["task_count"] = goal_tasks
        return metrics

    @staticmethod
    def _tool_scores(results: List[ExecutionResult]) -> Dict[str, float]:
        counts: Dict[str, List[int]] = {}
        for r in results:
            ok, total = counts.setdefault(r.capability, [0, 0])
            counts[r.capability] = [ok + (1 if r.success else 0), total + 1]
        return {name: ok / total for name, (ok, total) in counts.items()}

    def _goal_insights(self, goal: Goal, results: List[ExecutionResult], ctx: ReflectionContext) -> List[str]:
        insights = []
        if ctx.outcome == Outcome.SUCCESS:
            insights.append(f'Successfully completed goal "{goal.description}" using {len(ctx.tools_used)} tools')
            if results and sum(1 for r in results if r.execution_time < 1.0) > len(results) * 0.7:
                insights.append("Achieved efficient execution with most tools responding quickly")
            if results and sum(1 for r in results if r.confidence > 0.8) > len(results) * 0.6:
                insights.append("High confidence levels indicate good tool-task matching")
        else:
            insights.append(f'Goal completion challenges identified in "{goal.description}"')
            failed = sorted({r.capability for r in results if not r.success})
            if failed:
                insights.append(f"Tool failures detected: {', '.join(failed)}")

        scores = self._tool_scores(results)
        if scores:
            best = max(scores, key=scores.get)
            insights.append(f"Best performing tool: {best} ({scores[best] * 100:.0f}% success)")

        estimate = goal.estimated_duration or sum(t.estimated_duration for t in goal.tasks) or 180.0
        if ctx.execution_time > estimate:
            insights.append("Execution took longer than estimated - consider optimization")
        else:
            insights.append("Execution completed within expected timeframe")

        language = ctx.user_context.get("user_preferences", {}).get("language")
        if language == "tagalog" and any("tagalog" in t for t in ctx.tools_used):
            insights.append("Successfully utilized Tagalog-specific capabilities")
        return insights

    def _task_insights(self, task: Task, results: List[ExecutionResult]) -> List[str]:
        insights = []
        if not results:
            insights.append(f'Task "{task.description}" failed: no capability was run')
            return insights
        for r in results:
            if r.success:
                insights.append(f'Task "{task.description}" completed successfully with {r.capability}')
                if r.confidence > 0.9:
                    insights.append("High confidence result indicates excellent tool-task alignment")
                if r.execution_time < task.estimated_duration:
                    insights.append("Task completed faster than estimated")
            else:
                insights.append(f'Task "{task.description}" failed: {r.error}')
                if r.critical:
                    insights.append("Critical task failure requires immediate attention")
        failed = sorted({r.capability for r in results if not r.success})
        if failed:
            insights.append(f"Tool failures detected: {', '.join(failed)}")
        categories = {self._category_lookup(r.capability) for r in results if r.success}
        if task.type == "voice" and "voice" in categories:
            insights.append("Voice interaction completed - monitor user satisfaction")
        if task.type == "analysis" and "analysis" in categories:
            insights.append("Analysis task utilized appropriate analytical tools")
        return insights

    def _periodic_insights(self, current: List[ReflectionEntry], trends: Dict[str, Dict[str, Any]]) -> List[str]:
        insights = []
        success = trends.get("success_rate")
        if success and success["trend"] == "improving":
            insights.append(f"Success rate improving: {success['current'] * 100:.1f}%")
        elif success and success["trend"] == "declining":
            insights.append(f"Success rate declining: {success['current'] * 100:.1f}% - investigation needed")

        timing = trends.get("avg_execution_time")
        if timing and timing["trend"] == "improving":
            insights.append("Execution times improving - optimization strategies working")

        categories = Counter(
            self._category_lookup(tool) or "other"
            for r in current
            for tool in r.context.tools_used
        )
        if categories:
            top, count = categories.most_common(1)[0]
            share = count / sum(categories.values()) * 100
            insights.append(f"Most utilized tool category: {top} ({share:.0f}% of executions)")

        improving = sum(1 for p in self._patterns.values() if p.frequency and p.success_rate > 0.7)
        if improving:
            insights.append(f"{improving} learning patterns showing improvement")
        if not current:
            insights.append("No reflections recorded in the current window")
        return insights

    @staticmethod
    def _window_metrics(reflections: List[ReflectionEntry]) -> Dict[str, float]:
        if not reflections:
            return {}
        n = len(reflections)
        return {
            "success_rate": sum(1 for r in reflections if r.context.outcome == Outcome.SUCCESS) / n,
            "avg_execution_time": sum(r.context.execution_time for r in reflections) / n,
            "avg_confidence": sum(r.confidence for r in reflections) / n,
            "total_reflections": float(n),
        }

    @staticmethod
    def _trends(current: Dict[str, float], previous: Dict[str, float]) -> Dict[str, Dict[str, Any]]:
        trends = {}
        for key, value in current.items():
            if key not in previous or key == "total_reflections":
                continue
            change = value - previous[key]
            # Shorter execution time is better.
            better = -change if key == "avg_execution_time" else change
            trends[key] = {
                "current": value,
                "previous": previous[key],
                "change": change,
                "trend": "improving" if better > 0 else "declining" if better < 0 else "stable",
            }
        return trends

    # ------------------------------------------------------------------
    # Scoring and bookkeeping
    # ------------------------------------------------------------------

    def derive_action_items(self, insights: List[str]) -> List[ActionItem]:
        now = self._clock()
        items = []
        for insight in insights:
            lowered = insight.lower()
            for rule in ACTION_RULES:
                if rule.trigger in lowered:
                    items.append(
                        ActionItem(
                            id=f"action_{uuid.uuid4().hex[:12]}",
                            description=rule.description,
                            priority=rule.priority,
                            category=rule.category,
                            estimated_impact=rule.impact,
                            target_date=now + rule.due_in if rule.due_in else None,
                        )
                    )
        return items

    @staticmethod
    def reflection_confidence(insights: List[str], outcome: Outcome, average_confidence: float) -> float:
        confidence = 0.5 + min(len(insights) * 0.1, 0.3)
        if outcome == Outcome.SUCCESS:
            confidence += 0.2
        if average_confidence > 0.8:
            confidence += 0.1
        return min(confidence, 1.0)

    @staticmethod
    def assess_impact(insights: List[str], items: List[ActionItem]) -> Impact:
        if any(i.estimated_impact > 0.7 for i in items) or any(
            w in insight.lower() for insight in insights for w in CRITICAL_INSIGHT_WORDS
        ):
            return Impact.HIGH
        if len(items) > 2 or len(insights) > 3:
            return Impact.MEDIUM
        return Impact.LOW

    def pattern_relevance(self, pattern: LearningPattern, signals: List[str]) -> float:
        """
        How strongly a reflection speaks to a pattern.

        A context tag matches when its leading word appears in the
        reflection's signals (tool names, categories, task types, insights);
        voice and cultural patterns get a bonus for matching tools.
        """
        text = " ".join(signals).lower()
        matches = sum(1 for c in pattern.contexts if c.split("_")[0] in text)
        relevance = matches / len(pattern.contexts) * 0.6 if pattern.contexts else 0.0
        if "voice" in pattern.id and "voice" in text:
            relevance += 0.3
        if "cultural" in pattern.id and ("tagalog" in text or "cultural" in text):
            relevance += 0.3
        return min(relevance, 1.0)

    def _finish(
        self,
        kind: ReflectionKind,
        subject_id: Optional[str],
        ctx: ReflectionContext,
        insights: List[str],
        extra_signals: Optional[List[str]] = None,
        confidence: Optional[float] = None,
        impact: Optional[Impact] = None,
        learn: bool = True,
    ) -> ReflectionEntry:
        items = self.derive_action_items(insights)
        updated: List[str] = []
        if learn:
            signals = list(ctx.tools_used) + insights + list(extra_signals or [])
            signals.extend(c for c in (self._category_lookup(t) for t in ctx.tools_used) if c)
            if len(ctx.tools_used) > 1:
                signals.append("multi tool")
            if ctx.metrics.get("task_count", 0) > 2:
                signals.append("complex multi step")
            language = ctx.user_context.get("user_preferences", {}).get("language")
            if language:
                signals.append(language)
            for pattern in self._patterns.values():
                if self.pattern_relevance(pattern, signals) > self.relevance_threshold:
                    pattern.observe(ctx.outcome == Outcome.SUCCESS, insights)
                    updated.append(pattern.id)

        entry = ReflectionEntry(
            id=f"reflection_{uuid.uuid4().hex[:12]}",
            kind=kind,
            subject_id=subject_id,
            timestamp=self._clock(),
            context=ctx,
            insights=insights,
            action_items=items,
            patterns_updated=updated,
            confidence=(
                confidence
                if confidence is not None
                else self.reflection_confidence(insights, ctx.outcome, ctx.metrics.get("average_confidence", 0.0))
            ),
            impact=impact or self.assess_impact(insights, items),
        )
        self._history.append(entry)
        for item in items:
            self._action_items[item.id] = item
        self._prune_action_items()
        self._performance.append(
            {
                "timestamp": entry.timestamp,
                "outcome": ctx.outcome.value,
                "confidence": entry.confidence,
                "execution_time": ctx.execution_time,
                "impact": entry.impact.value,
            }
        )
        logger.debug(
            "Reflection %s (%s, %s): %d insights, %d action items",
            entry.id, kind.value, ctx.outcome.value, len(insights), len(items),
        )
        return entry

    # ------------------------------------------------------------------
    # Action items
    # ------------------------------------------------------------------

    def implement_action_item(self, item_id: str) -> bool:
        item = self._action_items.get(item_id)
        if item is None:
            return False
        item.implemented = True
        item.target_date = self._clock()
        return True

    def apply_improvement(self, description: str, priority: str = "medium", category: str = "performance") -> ActionItem:
        """Register an externally proposed improvement; high priority ones are implemented at once."""
        item = ActionItem(
            id=f"improvement_{uuid.uuid4().hex[:12]}",
            description=description,
            priority=priority,
            category=category,
            estimated_impact=0.5,
            source="improvement",
        )
        self._action_items[item.id] = item
        if priority == "high":
            self.implement_action_item(item.id)
        self._prune_action_items()
        logger.info("Improvement registered: %s (%s)", description, priority)
        return item

    def _prune_action_items(self) -> None:
        cutoff = self._clock() - self.window
        stale = [
            i.id for i in self._action_items.values()
            if i.implemented and i.target_date is not None and i.target_date < cutoff
        ]
        for item_id in stale:
            del self._action_items[item_id]

        overflow = len(self._action_items) - self.action_item_capacity
        if overflow > 0:
            # Implemented first, then insertion order.
            for item in sorted(self._action_items.values(), key=lambda i: not i.implemented)[:overflow]:
                del self._action_items[item.id]

    def get_pending_action_items(self) -> List[ActionItem]:
        return [i for i in self._action_items.values() if not i.implemented]

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_learning_patterns(self) -> List[LearningPattern]:
        return list(self._patterns.values())

    def get_recent_reflections(self, window: timedelta) -> List[ReflectionEntry]:
        cutoff = self._clock() - window
        return [r for r in self._history if r.timestamp > cutoff]

    def get_reflection_history(self) -> List[ReflectionEntry]:
        return list(self._history)

    def get_reflection_summary(self) -> Dict[str, Any]:
        recent = self.get_recent_reflections(self.window)
        return {
            "total_reflections": len(self._history),
            "recent_reflections": len(recent),
            "learning_patterns": len(self._patterns),
            "pending_action_items": len(self.get_pending_action_items()),
            "average_confidence": sum(r.confidence for r in recent) / (len(recent) or 1),
            "performance_metrics": self._window_metrics(
                [r for r in recent if r.kind != ReflectionKind.PERIODIC]
            ),
        }

    def export_state(self) -> Dict[str, Any]:
        return {"patterns": [p.to_dict() for p in self._patterns.values()]}

    def restore_state(self, data: Dict[str, Any]) -> None:
        for entry in data.get("patterns", []):
            pattern = self._patterns.get(entry.get("id"))
            if pattern is None:
                continue
            pattern.frequency = int(entry.get("frequency", 0))
            pattern.success_rate = max(0.0, min(1.0, float(entry.get("success_rate", 0.0))))
            pattern.confidence = max(0.0, min(1.0, float(entry.get("confidence", 0.5))))
            pattern.adaptations = list(entry.get("adaptations", []))
