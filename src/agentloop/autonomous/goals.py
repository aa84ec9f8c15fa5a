# src/agentloop/autonomous/goals.py
"""
Goal Management for the autonomous agent.

Owns the live set of goals and their tasks:
- Goal creation from built-in templates or from rule-based analysis
  of a free-form description
- Task lifecycle with a bounded retry budget
- Progress tracking with phase milestones
- Ready-task selection honoring intra-goal dependencies
- Intake helpers that turn a user request into a goal

The goal manager is the single owner of ``Goal``/``Task`` records. The
planner may *attach* tasks to a goal, the orchestrator reports outcomes
back through ``update_task_status``/``record_task_failure``; nothing else
mutates goal state.

Example:
    from agentloop.autonomous.goals import GoalManager, Priority

    goals = GoalManager()
    goal = goals.create_goal("Research quantum computing basics", Priority.HIGH)

    for task in goals.get_next_tasks_to_execute():
        ...
        goals.update_task_status(goal.id, task.id, TaskStatus.COMPLETED, result="ok")

    progress = goals.get_goal_progress(goal.id)
"""

from __future__ import annotations

import logging
import math
import re
import uuid
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple

from ..exceptions import (
    DependencyError,
    GoalNotFoundError,
    InvalidGoalStateError,
    TaskNotFoundError,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> datetime | None:
    """
    Parse an ISO-format string or pass through a datetime.

    Naive values are taken as UTC so they compare with the agent clock.
    """
    if value is None:
        return None
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# =============================================================================
# Enums
# =============================================================================


class Priority(str, Enum):
    """Priority shared by goals and tasks."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def weight(self) -> int:
        """Numeric weight used for ordering (critical=4 ... low=1)."""
        return _PRIORITY_WEIGHTS[self]


_PRIORITY_WEIGHTS = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.CRITICAL: 4,
}


class GoalStatus(str, Enum):
    """Goal lifecycle states."""

    PENDING = "pending"
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


_LIVE_GOAL_STATES = frozenset({GoalStatus.ACTIVE, GoalStatus.IN_PROGRESS})
_RUNNABLE_TASK_STATES = frozenset({TaskStatus.PENDING, TaskStatus.RETRYING})


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class Task:
    """
    A unit of work belonging to exactly one goal.

    Attributes:
        id: Unique identifier.
        goal_id: Owning goal.
        type: Task type (``research``, ``analysis``, ``voice`` ...).
        description: Natural language description.
        priority: Scheduling priority.
        status: Lifecycle state.
        parameters: Free-form inputs handed to capabilities.
        dependencies: Ids of tasks in the same goal that must complete first.
        required_tools: Capability names the task explicitly asks for.
        estimated_duration: Estimated duration in seconds.
        retry_count: Failed attempts so far.
        max_retries: Failed attempts allowed before the task fails for good.
        result: Payload of the successful attempt.
        error: Last error message.
        actual_duration: Seconds spent in the last attempt.
    """

    id: str
    goal_id: str
    type: str
    description: str
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    parameters: Dict[str, Any] = field(default_factory=dict)
    dependencies: List[str] = field(default_factory=list)
    required_tools: List[str] = field(default_factory=list)
    estimated_duration: float = 60.0
    retry_count: int = 0
    max_retries: int = 3
    result: Any = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    actual_duration: Optional[float] = None

    @property
    def is_finished(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-safe dict."""
        return {
            "id": self.id,
            "goal_id": self.goal_id,
            "type": self.type,
            "description": self.description,
            "priority": self.priority.value,
            "status": self.status.value,
            "parameters": self.parameters,
            "dependencies": list(self.dependencies),
            "required_tools": list(self.required_tools),
            "estimated_duration": self.estimated_duration,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "result": self.result,
            "error": self.error,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "actual_duration": self.actual_duration,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Task:
        """Deserialize from a dict produced by ``to_dict``."""
        return cls(
            id=data["id"],
            goal_id=data["goal_id"],
            type=data.get("type", "general"),
            description=data.get("description", ""),
            priority=Priority(data.get("priority", "medium")),
            status=TaskStatus(data.get("status", "pending")),
            parameters=data.get("parameters", {}),
            dependencies=data.get("dependencies", []),
            required_tools=data.get("required_tools", []),
            estimated_duration=data.get("estimated_duration", 60.0),
            retry_count=data.get("retry_count", 0),
            max_retries=data.get("max_retries", 3),
            result=data.get("result"),
            error=data.get("error"),
            created_at=_parse_datetime(data.get("created_at")) or utcnow(),
            started_at=_parse_datetime(data.get("started_at")),
            completed_at=_parse_datetime(data.get("completed_at")),
            actual_duration=data.get("actual_duration"),
        )


@dataclass
class Goal:
    """
    A desired outcome owning an ordered list of tasks.

    A goal is ``completed`` exactly when it has tasks and every one of them
    is ``completed``; the goal manager keeps that true.
    """

    id: str
    description: str
    priority: Priority = Priority.MEDIUM
    status: GoalStatus = GoalStatus.PENDING
    tasks: List[Task] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    estimated_duration: float = 0.0
    category: str = "general"
    required_capabilities: List[str] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        description: str,
        priority: Priority = Priority.MEDIUM,
        **kwargs: Any,
    ) -> Goal:
        """Create a goal with a generated id."""
        return cls(
            id=f"goal_{uuid.uuid4().hex[:12]}",
            description=description,
            priority=priority,
            **kwargs,
        )

    def get_task(self, task_id: str) -> Task:
        for task in self.tasks:
            if task.id == task_id:
                return task
        raise TaskNotFoundError(task_id, self.id)

    @property
    def all_tasks_completed(self) -> bool:
        return bool(self.tasks) and all(t.status == TaskStatus.COMPLETED for t in self.tasks)

    @property
    def is_finished(self) -> bool:
        return self.status in (GoalStatus.COMPLETED, GoalStatus.FAILED)

    def to_dict(self, include_tasks: bool = True) -> Dict[str, Any]:
        """
        Serialize to a JSON-safe dict.

        With ``include_tasks=False`` only task ids are written; the state
        record stores tasks in their own list.
        """
        data = {
            "id": self.id,
            "description": self.description,
            "priority": self.priority.value,
            "status": self.status.value,
            "task_ids": [t.id for t in self.tasks],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "completed_at": _iso(self.completed_at),
            "estimated_duration": self.estimated_duration,
            "category": self.category,
            "required_capabilities": list(self.required_capabilities),
            "context": self.context,
            "metadata": self.metadata,
        }
        if include_tasks:
            data["tasks"] = [t.to_dict() for t in self.tasks]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], tasks: Iterable[Task] | None = None) -> Goal:
        """
        Deserialize a goal.

        Tasks come from the embedded ``tasks`` list when present, otherwise
        from ``tasks`` ordered by the stored ``task_ids``.
        """
        if "tasks" in data:
            goal_tasks = [Task.from_dict(t) for t in data["tasks"]]
        else:
            by_id = {t.id: t for t in (tasks or [])}
            goal_tasks = [by_id[tid] for tid in data.get("task_ids", []) if tid in by_id]
        return cls(
            id=data["id"],
            description=data.get("description", ""),
            priority=Priority(data.get("priority", "medium")),
            status=GoalStatus(data.get("status", "pending")),
            tasks=goal_tasks,
            created_at=_parse_datetime(data.get("created_at")) or utcnow(),
            updated_at=_parse_datetime(data.get("updated_at")) or utcnow(),
            completed_at=_parse_datetime(data.get("completed_at")),
            estimated_duration=data.get("estimated_duration", 0.0),
            category=data.get("category", "general"),
            required_capabilities=data.get("required_capabilities", []),
            context=data.get("context", {}),
            metadata=data.get("metadata", {}),
        )


@dataclass
class GoalMilestone:
    """A phase of a goal's task list."""

    id: str
    name: str
    description: str
    task_ids: List[str]
    target_date: datetime
    completed: bool = False
    completed_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "task_ids": list(self.task_ids),
            "target_date": _iso(self.target_date),
            "completed": self.completed,
            "completed_date": _iso(self.completed_date),
        }


@dataclass
class GoalProgress:
    """Derived progress view of one goal."""

    goal_id: str
    completed_tasks: int
    total_tasks: int
    success_rate: float
    estimated_completion: datetime
    blockers: List[str]
    milestones: List[GoalMilestone]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "goal_id": self.goal_id,
            "completed_tasks": self.completed_tasks,
            "total_tasks": self.total_tasks,
            "success_rate": self.success_rate,
            "estimated_completion": _iso(self.estimated_completion),
            "blockers": list(self.blockers),
            "milestones": [m.to_dict() for m in self.milestones],
        }


@dataclass(frozen=True)
class TaskTemplate:
    type: str
    description: str
    priority: Priority


@dataclass(frozen=True)
class GoalTemplate:
    """A reusable goal shape with a fixed task list."""

    id: str
    name: str
    description: str
    category: str
    estimated_duration: float
    complexity: str
    required_capabilities: Tuple[str, ...]
    tasks: Tuple[TaskTemplate, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "estimated_duration": self.estimated_duration,
            "complexity": self.complexity,
            "required_capabilities": list(self.required_capabilities),
            "tasks": [
                {"type": t.type, "description": t.description, "priority": t.priority.value}
                for t in self.tasks
            ],
        }


# =============================================================================
# Templates and rule tables
# =============================================================================


GOAL_TEMPLATES: Dict[str, GoalTemplate] = {
    t.id: t
    for t in (
        GoalTemplate(
            id="voice_interaction",
            name="Voice Interaction Enhancement",
            description="Improve voice-based communication capabilities",
            category="communication",
            estimated_duration=300.0,
            complexity="medium",
            required_capabilities=("voice_synthesis", "speech_analysis"),
            tasks=(
                TaskTemplate("voice", "Initialize enhanced voice service", Priority.HIGH),
                TaskTemplate("analysis", "Analyze user speech patterns", Priority.MEDIUM),
                TaskTemplate("voice", "Synthesize contextual response", Priority.HIGH),
            ),
        ),
        GoalTemplate(
            id="cultural_adaptation",
            name="Cultural Context Adaptation",
            description="Adapt to user cultural and linguistic context",
            category="personalization",
            estimated_duration=600.0,
            complexity="high",
            required_capabilities=("language_analysis", "cultural_modeling", "memory_persistence"),
            tasks=(
                TaskTemplate("analysis", "Analyze cultural communication patterns", Priority.HIGH),
                TaskTemplate("memory", "Store cultural preferences", Priority.MEDIUM),
                TaskTemplate("adaptation", "Apply cultural adaptations", Priority.HIGH),
            ),
        ),
        GoalTemplate(
            id="information_gathering",
            name="Information Research",
            description="Gather and synthesize information from multiple sources",
            category="research",
            estimated_duration=240.0,
            complexity="medium",
            required_capabilities=("web_search", "content_analysis", "synthesis"),
            tasks=(
                TaskTemplate("web", "Search for relevant information", Priority.HIGH),
                TaskTemplate("analysis", "Analyze and validate sources", Priority.HIGH),
                TaskTemplate("synthesis", "Synthesize findings", Priority.MEDIUM),
            ),
        ),
        GoalTemplate(
            id="proactive_assistance",
            name="Proactive User Assistance",
            description="Anticipate user needs and provide proactive help",
            category="assistance",
            estimated_duration=180.0,
            complexity="high",
            required_capabilities=("pattern_recognition", "predictive_modeling", "context_awareness"),
            tasks=(
                TaskTemplate("analysis", "Analyze user behavior patterns", Priority.MEDIUM),
                TaskTemplate("prediction", "Predict user needs", Priority.HIGH),
                TaskTemplate("action", "Execute proactive assistance", Priority.HIGH),
            ),
        ),
        GoalTemplate(
            id="learning_optimization",
            name="Continuous Learning",
            description="Learn from interactions to improve performance",
            category="learning",
            estimated_duration=0.0,
            complexity="high",
            required_capabilities=("experience_analysis", "model_updating", "performance_tracking"),
            tasks=(
                TaskTemplate("analysis", "Analyze interaction outcomes", Priority.LOW),
                TaskTemplate("learning", "Update internal models", Priority.MEDIUM),
                TaskTemplate("optimization", "Optimize future responses", Priority.MEDIUM),
            ),
        ),
    )
}


@dataclass(frozen=True)
class GoalCategoryRule:
    """
    One row of the custom-goal classifier.

    Rules are applied in order; every matching rule overwrites the fields
    it sets, so later rows win.
    """

    keywords: Tuple[str, ...]
    category: str
    complexity: Optional[str] = None
    estimated_duration: Optional[float] = None
    tasks: Tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        return any(k in text for k in self.keywords)


GOAL_CATEGORY_RULES: List[GoalCategoryRule] = [
    GoalCategoryRule(
        keywords=("voice", "speak"),
        category="communication",
        tasks=("Initialize voice service", "Process voice request", "Generate voice response"),
    ),
    GoalCategoryRule(
        keywords=("learn", "analyze"),
        category="learning",
        complexity="high",
        estimated_duration=300.0,
    ),
    GoalCategoryRule(
        keywords=("search", "find", "research"),
        category="research",
        estimated_duration=240.0,
        tasks=("Search for information", "Validate sources", "Synthesize results"),
    ),
    GoalCategoryRule(keywords=("help", "assist"), category="assistance"),
]

DEFAULT_CUSTOM_TASKS: Tuple[str, ...] = ("Analyze request", "Plan approach", "Execute solution")

# (keywords, task type); first match wins.
TASK_TYPE_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (("voice", "speak"), "voice"),
    (("search", "find", "research", "gather"), "research"),
    (("analyze", "analyse", "study", "validate", "verify", "synthesize", "review"), "analysis"),
    (("remember", "store"), "memory"),
    (("file", "read", "write"), "file"),
    (("learn", "adapt"), "learning"),
]


def infer_task_type(description: str) -> str:
    """Map a task description to a task type using ``TASK_TYPE_RULES``."""
    text = description.lower()
    for keywords, task_type in TASK_TYPE_RULES:
        if any(k in text for k in keywords):
            return task_type
    return "general"


def classify_goal(description: str) -> Dict[str, Any]:
    """
    Run the custom-goal classifier over a description.

    Returns:
        Dict with ``category``, ``complexity``, ``estimated_duration`` and
        ``tasks`` (task descriptions).
    """
    text = description.lower()
    analysis: Dict[str, Any] = {
        "category": "general",
        "complexity": "medium",
        "estimated_duration": 120.0,
        "tasks": DEFAULT_CUSTOM_TASKS,
    }
    for rule in GOAL_CATEGORY_RULES:
        if not rule.matches(text):
            continue
        analysis["category"] = rule.category
        if rule.complexity is not None:
            analysis["complexity"] = rule.complexity
        if rule.estimated_duration is not None:
            analysis["estimated_duration"] = rule.estimated_duration
        if rule.tasks:
            analysis["tasks"] = rule.tasks
    return analysis


# =============================================================================
# Request intake rules
# =============================================================================


AGENT_TRIGGERS: Tuple[str, ...] = (
    "help me", "can you", "please", "i need", "research", "find", "analyze",
    "create", "plan", "remind", "schedule", "learn", "teach", "explain",
)

COMPLEXITY_INDICATORS: Tuple[str, ...] = (
    "multiple", "several", "complex", "detailed", "comprehensive",
    "step by step", "and then",
)

# (keywords, template id); first match wins.
TEMPLATE_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (("voice", "speak", "say"), "voice_interaction"),
    (("research", "find", "search", "information"), "information_gathering"),
    (("learn", "improve", "better"), "learning_optimization"),
    (("help", "assist", "support"), "proactive_assistance"),
]

# (keywords, priority); first match wins, medium otherwise.
PRIORITY_RULES: List[Tuple[Tuple[str, ...], Priority]] = [
    (("urgent", "immediately", "asap", "critical"), Priority.CRITICAL),
    (("important", "quickly", "soon", "priority"), Priority.HIGH),
    (("when you have time", "eventually", "no rush", "later"), Priority.LOW),
]

_REQUEST_STARTERS = re.compile(r"^(please|can you|could you|help me|i need|i want)\s+", re.IGNORECASE)


def requires_agent(message: str, context: Optional[Dict[str, Any]] = None) -> bool:
    """
    Whether a request is worth a goal instead of a direct answer.

    True for multi-step wording, for tagalog conversations with an explicit
    request, or for any trigger phrase.
    """
    text = message.lower()
    if any(i in text for i in COMPLEXITY_INDICATORS):
        return True
    context = context or {}
    language = context.get("user_preferences", {}).get("language", context.get("language"))
    if language == "tagalog" and any(w in text for w in ("tulong", "please", "help")):
        return True
    return any(t in text for t in AGENT_TRIGGERS)


def determine_goal_template(message: str, context: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """Pick a template id for a request, or None for a custom goal."""
    text = message.lower()
    context = context or {}
    language = context.get("user_preferences", {}).get("language", context.get("language"))
    if language == "tagalog" or "tagalog" in text:
        return "cultural_adaptation"
    for keywords, template_id in TEMPLATE_RULES:
        if any(k in text for k in keywords):
            return template_id
    return None


def determine_goal_priority(message: str) -> Priority:
    text = message.lower()
    for keywords, priority in PRIORITY_RULES:
        if any(k in text for k in keywords):
            return priority
    return Priority.MEDIUM


def extract_goal_description(message: str) -> str:
    """Strip request starters, capitalize and terminate with a period."""
    text = _REQUEST_STARTERS.sub("", message.strip()).strip()
    if not text:
        return text
    text = text[0].upper() + text[1:]
    if not text.endswith((".", "!", "?")):
        text += "."
    return text


# =============================================================================
# GoalManager
# =============================================================================


class GoalManager:
    """
    In-memory registry and state machine for goals and tasks.

    All methods are synchronous; the scheduler calls them from the event
    loop between awaits, so no locking is needed.

    Args:
        max_task_retries: Retry budget assigned to newly created tasks.
        default_task_duration: Estimate (seconds) for tasks without one.
        history_capacity: Archived goals kept (oldest evicted).
        clock: Source of the current time.
    """

    def __init__(
        self,
        max_task_retries: int = 3,
        default_task_duration: float = 60.0,
        history_capacity: int = 1000,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.max_task_retries = max_task_retries
        self.default_task_duration = default_task_duration
        self._clock = clock
        self._goals: Dict[str, Goal] = {}
        self._history: Deque[Goal] = deque(maxlen=history_capacity)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_goal(
        self,
        description: str,
        priority: Priority | str = Priority.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        template_id: Optional[str] = None,
    ) -> Goal:
        """
        Create an ``active`` goal with ``pending`` tasks.

        A known ``template_id`` instantiates that template; otherwise the
        description is classified by ``GOAL_CATEGORY_RULES``.
        """
        priority = Priority(priority)
        context = dict(context or {})

        template = GOAL_TEMPLATES.get(template_id) if template_id else None
        if template_id and template is None:
            logger.warning("Unknown goal template '%s', analyzing description instead", template_id)

        if template is not None:
            goal = Goal.create(
                description or template.description,
                priority,
                status=GoalStatus.ACTIVE,
                estimated_duration=template.estimated_duration,
                category=template.category,
                required_capabilities=list(template.required_capabilities),
                context=context,
                metadata={"template_id": template.id, "complexity": template.complexity, "source": "template"},
            )
            for index, tt in enumerate(template.tasks):
                goal.tasks.append(self._new_task(goal, index, tt.type, tt.description, tt.priority))
        else:
            analysis = classify_goal(description)
            goal = Goal.create(
                description,
                priority,
                status=GoalStatus.ACTIVE,
                estimated_duration=analysis["estimated_duration"],
                category=analysis["category"],
                context=context,
                metadata={"complexity": analysis["complexity"], "source": "custom"},
            )
            for index, text in enumerate(analysis["tasks"]):
                goal.tasks.append(self._new_task(goal, index, infer_task_type(text), text, priority))

        self._goals[goal.id] = goal
        logger.info(
            "Created goal %s (%s, %d tasks): %s",
            goal.id, goal.category, len(goal.tasks), goal.description[:60],
        )
        return goal

    def add_goal(
        self,
        description: str,
        priority: Priority | str = Priority.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
    ) -> Goal:
        """Register a ``pending`` goal with no tasks; planning decomposes it."""
        goal = Goal.create(
            description,
            Priority(priority),
            status=GoalStatus.PENDING,
            context=dict(context or {}),
            metadata={"source": "request"},
        )
        self._goals[goal.id] = goal
        logger.info("Added goal %s: %s", goal.id, description[:60])
        return goal

    def restore_goal(self, goal: Goal) -> None:
        """Put a previously persisted goal back under management."""
        self._goals[goal.id] = goal

    def _new_task(
        self,
        goal: Goal,
        index: int,
        task_type: str,
        description: str,
        priority: Priority,
        **kwargs: Any,
    ) -> Task:
        kwargs.setdefault("estimated_duration", self.default_task_duration)
        return Task(
            id=f"{goal.id}_task_{index}",
            goal_id=goal.id,
            type=task_type,
            description=description,
            priority=priority,
            max_retries=self.max_task_retries,
            **kwargs,
        )

    def add_task(
        self,
        goal_id: str,
        description: str,
        task_type: Optional[str] = None,
        priority: Priority | str | None = None,
        dependencies: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> Task:
        """Append a task to an existing goal."""
        goal = self.get_goal(goal_id)
        task = self._new_task(
            goal,
            len(goal.tasks),
            task_type or infer_task_type(description),
            description,
            Priority(priority) if priority else goal.priority,
            dependencies=list(dependencies or []),
            **kwargs,
        )
        self._validate_dependencies(goal, [task])
        goal.tasks.append(task)
        self._after_task_change(goal)
        return task

    def attach_tasks(self, goal_id: str, tasks: List[Task]) -> Goal:
        """
        Adopt planner-built tasks into a goal.

        Raises:
            DependencyError: If a task depends on a task outside the goal.
        """
        goal = self.get_goal(goal_id)
        for task in tasks:
            task.goal_id = goal.id
        self._validate_dependencies(goal, tasks)
        goal.tasks.extend(tasks)
        if goal.status == GoalStatus.PENDING:
            goal.status = GoalStatus.ACTIVE
        self._after_task_change(goal)
        return goal

    @staticmethod
    def _validate_dependencies(goal: Goal, new_tasks: List[Task]) -> None:
        known = {t.id for t in goal.tasks} | {t.id for t in new_tasks}
        for task in new_tasks:
            for dep in task.dependencies:
                if dep not in known or dep == task.id:
                    raise DependencyError(task.id, dep)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_goal(self, goal_id: str) -> Goal:
        try:
            return self._goals[goal_id]
        except KeyError:
            raise GoalNotFoundError(goal_id) from None

    def get_task(self, goal_id: str, task_id: str) -> Task:
        return self.get_goal(goal_id).get_task(task_id)

    def list_goals(self) -> List[Goal]:
        return list(self._goals.values())

    def get_active_goals(self) -> List[Goal]:
        return [g for g in self._goals.values() if g.status in _LIVE_GOAL_STATES]

    def get_goals_by_priority(self, priority: Priority | str) -> List[Goal]:
        priority = Priority(priority)
        return [g for g in self._goals.values() if g.priority == priority]

    def get_goals_by_category(self, category: str) -> List[Goal]:
        return [g for g in self._goals.values() if g.category == category]

    def get_archived_goals(self) -> List[Goal]:
        return list(self._history)

    @staticmethod
    def get_available_templates() -> List[GoalTemplate]:
        return list(GOAL_TEMPLATES.values())

    # ------------------------------------------------------------------
    # Status updates
    # ------------------------------------------------------------------

    def update_goal_status(
        self, goal_id: str, status: GoalStatus | str, reason: Optional[str] = None
    ) -> Goal:
        """
        Set a goal's status.

        Raises:
            InvalidGoalStateError: When marking a goal completed while it
                still has unfinished tasks.
        """
        goal = self.get_goal(goal_id)
        status = GoalStatus(status)
        if status == GoalStatus.COMPLETED and goal.tasks and not goal.all_tasks_completed:
            raise InvalidGoalStateError(goal_id, "Goal has unfinished tasks.")

        previous = goal.status
        goal.status = status
        goal.updated_at = self._clock()
        if status == GoalStatus.COMPLETED:
            goal.completed_at = goal.updated_at
        if reason:
            goal.metadata["status_reason"] = reason
        logger.info("Goal %s: %s -> %s", goal_id, previous.value, status.value)
        return goal

    def update_task_status(
        self,
        goal_id: str,
        task_id: str,
        status: TaskStatus | str,
        result: Any = None,
        error: Optional[str] = None,
    ) -> Task:
        """
        Set a task's status and re-derive the goal's status.

        ``failed`` is routed through ``record_task_failure`` so the retry
        budget is honored.

        Raises:
            InvalidGoalStateError: When moving a completed task to another
                status.
        """
        status = TaskStatus(status)
        if status == TaskStatus.FAILED:
            return self.record_task_failure(goal_id, task_id, error or "Task failed")

        goal = self.get_goal(goal_id)
        task = goal.get_task(task_id)
        if task.status == TaskStatus.COMPLETED and status != TaskStatus.COMPLETED:
            raise InvalidGoalStateError(goal_id, f"Task {task_id} is already completed.")
        now = self._clock()
        task.status = status
        if status == TaskStatus.EXECUTING:
            task.started_at = now
            if goal.status == GoalStatus.ACTIVE:
                goal.status = GoalStatus.IN_PROGRESS
        elif status == TaskStatus.COMPLETED:
            task.completed_at = now
            task.result = result
            task.error = None
            if task.started_at is not None:
                task.actual_duration = (now - task.started_at).total_seconds()
        self._after_task_change(goal)
        return task

    def record_task_failure(self, goal_id: str, task_id: str, error: str) -> Task:
        """
        Count a failed attempt.

        The task goes to ``retrying`` while attempts remain and to ``failed``
        once ``max_retries`` attempts have failed. A failed task fails its
        goal; a task already ``failed`` is left untouched.
        """
        goal = self.get_goal(goal_id)
        task = goal.get_task(task_id)
        if task.status in (TaskStatus.FAILED, TaskStatus.COMPLETED):
            return task

        now = self._clock()
        task.error = error
        task.retry_count = min(task.retry_count + 1, task.max_retries)
        if task.started_at is not None:
            task.actual_duration = (now - task.started_at).total_seconds()

        if task.retry_count >= task.max_retries:
            task.status = TaskStatus.FAILED
            task.completed_at = now
            logger.warning(
                "Task %s failed permanently after %d attempts: %s",
                task_id, task.retry_count, error,
            )
            if not goal.is_finished:
                self.update_goal_status(goal_id, GoalStatus.FAILED, reason=f"Task {task_id} failed: {error}")
        else:
            task.status = TaskStatus.RETRYING
            logger.info(
                "Task %s attempt %d/%d failed, will retry: %s",
                task_id, task.retry_count, task.max_retries, error,
            )
        goal.updated_at = now
        return task

    def _after_task_change(self, goal: Goal) -> None:
        goal.updated_at = self._clock()
        if goal.all_tasks_completed and goal.status != GoalStatus.COMPLETED:
            goal.status = GoalStatus.COMPLETED
            goal.completed_at = goal.updated_at
            logger.info("Goal %s completed", goal.id)

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def get_goal_progress(self, goal_id: str) -> GoalProgress:
        """Compute completion counts, blockers and phase milestones."""
        goal = self.get_goal(goal_id)
        now = self._clock()
        total = len(goal.tasks)
        completed = sum(1 for t in goal.tasks if t.status == TaskStatus.COMPLETED)

        remaining = sum(t.estimated_duration for t in goal.tasks if t.status != TaskStatus.COMPLETED)
        return GoalProgress(
            goal_id=goal.id,
            completed_tasks=completed,
            total_tasks=total,
            success_rate=completed / total if total else 0.0,
            estimated_completion=now + timedelta(seconds=remaining),
            blockers=self._identify_blockers(goal),
            milestones=self._build_milestones(goal),
        )

    @staticmethod
    def _identify_blockers(goal: Goal) -> List[str]:
        failed = {t.id for t in goal.tasks if t.status == TaskStatus.FAILED}
        blockers = [f"Task failed: {t.description}" for t in goal.tasks if t.id in failed]
        for task in goal.tasks:
            if task.status in _RUNNABLE_TASK_STATES and failed.intersection(task.dependencies):
                blockers.append(f"Blocked by failed dependency: {task.description}")
        return blockers

    def _build_milestones(self, goal: Goal) -> List[GoalMilestone]:
        """Chunk tasks into at most three phases of ``ceil(n / 3)`` tasks."""
        if not goal.tasks:
            return []
        phase_size = math.ceil(len(goal.tasks) / 3)
        milestones = []
        target = goal.created_at
        for phase, start in enumerate(range(0, len(goal.tasks), phase_size)):
            chunk = goal.tasks[start:start + phase_size]
            target = target + timedelta(seconds=sum(t.estimated_duration for t in chunk))
            done = all(t.status == TaskStatus.COMPLETED for t in chunk)
            finished_at = [t.completed_at for t in chunk if t.completed_at]
            milestones.append(
                GoalMilestone(
                    id=f"{goal.id}_milestone_{phase}",
                    name=f"Phase {phase + 1}",
                    description=f"Complete {len(chunk)} task(s) of phase {phase + 1}",
                    task_ids=[t.id for t in chunk],
                    target_date=target,
                    completed=done,
                    completed_date=max(finished_at) if done and finished_at else None,
                )
            )
        return milestones

    # ------------------------------------------------------------------
    # Scheduling support
    # ------------------------------------------------------------------

    def is_task_ready(self, goal: Goal, task: Task) -> bool:
        if task.status not in _RUNNABLE_TASK_STATES:
            return False
        done = {t.id for t in goal.tasks if t.status == TaskStatus.COMPLETED}
        return all(dep in done for dep in task.dependencies)

    def get_next_tasks_to_execute(self, limit: int = 5) -> List[Task]:
        """
        Ready tasks of live goals, highest priority first.

        A task is ready when it is ``pending`` or ``retrying`` and every
        dependency is ``completed``. Ties keep goal then task order.
        """
        ready = [
            task
            for goal in self._goals.values()
            if goal.status in _LIVE_GOAL_STATES
            for task in goal.tasks
            if self.is_task_ready(goal, task)
        ]
        ready.sort(key=lambda t: t.priority.weight, reverse=True)
        return ready[:limit]

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def archive_completed_goals(self) -> List[Goal]:
        """Move completed goals to history. Returns the archived goals."""
        archived = [g for g in self._goals.values() if g.status == GoalStatus.COMPLETED]
        for goal in archived:
            del self._goals[goal.id]
            self._history.append(goal)
        if archived:
            logger.debug("Archived %d completed goal(s)", len(archived))
        return archived

    def delete_goal(self, goal_id: str) -> None:
        self.get_goal(goal_id)
        del self._goals[goal_id]
        logger.info("Deleted goal %s", goal_id)

    def get_goal_metrics(self) -> Dict[str, Any]:
        """Aggregate counts, success rate and completion time across live and archived goals."""
        everything = list(self._goals.values()) + list(self._history)
        completed = [g for g in everything if g.status == GoalStatus.COMPLETED]
        failed = [g for g in everything if g.status == GoalStatus.FAILED]
        durations = [
            (g.completed_at - g.created_at).total_seconds()
            for g in completed
            if g.completed_at is not None
        ]
        finished = len(completed) + len(failed)
        return {
            "total_goals": len(everything),
            "active_goals": len(self.get_active_goals()),
            "completed_goals": len(completed),
            "failed_goals": len(failed),
            "average_completion_time": sum(durations) / len(durations) if durations else 0.0,
            "success_rate": len(completed) / finished if finished else 0.0,
            "top_categories": dict(Counter(g.category for g in everything).most_common(5)),
        }
