# src/agentloop/autonomous/state.py
"""
Persisted agent state.

The agent keeps one record per agent id::

    {
        "agent_id": "...",
        "saved_at": "2026-01-01T00:00:00+00:00",
        "goals": [...],                 # goal dicts carrying task_ids only
        "tasks": [...],                 # every task of every goal, flat
        "performance_metrics": {...},
        "preferences": {...},
        "context_snapshot_tail": [...], # most recent context snapshots
        "current_context": {...},
        "extras": {...}                 # planner, reflection and ledger state
    }

It is written at the end of every scheduler cycle and read once when the
agent starts. ``StateManager`` handles the conversion between the record
and the storage backend; unreadable records are logged and the agent
starts fresh.

Example::

    storage = await create_state_storage(config.persistence)
    manager = StateManager(storage, agent_id="default")
    record = await manager.load()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..exceptions import PersistenceError, StorageError
from ..storage.base_state import BaseStateStorage
from .goals import Goal, Task, _iso, _parse_datetime, utcnow

logger = logging.getLogger(__name__)


# =============================================================================
# Preferences
# =============================================================================


class AutonomyLevel(str, Enum):
    """How much the agent may do without being asked. ``guided`` is the most restrictive."""

    GUIDED = "guided"
    SEMI_AUTONOMOUS = "semi_autonomous"
    FULLY_AUTONOMOUS = "fully_autonomous"


class RiskTolerance(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class LearningStyle(str, Enum):
    INCREMENTAL = "incremental"
    RAPID = "rapid"
    CAUTIOUS = "cautious"


class CommunicationFrequency(str, Enum):
    MINIMAL = "minimal"
    REGULAR = "regular"
    FREQUENT = "frequent"


class GoalSetting(str, Enum):
    USER_DRIVEN = "user_driven"
    COLLABORATIVE = "collaborative"
    AGENT_SUGGESTED = "agent_suggested"


_PREFERENCE_TYPES = {
    "autonomy_level": AutonomyLevel,
    "risk_tolerance": RiskTolerance,
    "learning_style": LearningStyle,
    "communication_frequency": CommunicationFrequency,
    "goal_setting": GoalSetting,
}


@dataclass
class AgentPreferences:
    autonomy_level: AutonomyLevel = AutonomyLevel.SEMI_AUTONOMOUS
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE
    learning_style: LearningStyle = LearningStyle.INCREMENTAL
    communication_frequency: CommunicationFrequency = CommunicationFrequency.REGULAR
    goal_setting: GoalSetting = GoalSetting.COLLABORATIVE

    def __post_init__(self) -> None:
        for name, enum_type in _PREFERENCE_TYPES.items():
            setattr(self, name, enum_type(getattr(self, name)))

    def merged(self, **partial: Any) -> AgentPreferences:
        """
        Copy with ``partial`` applied.

        Raises:
            ValueError: For an unknown preference name or value.
        """
        unknown = set(partial) - set(_PREFERENCE_TYPES)
        if unknown:
            raise ValueError(f"Unknown preference(s): {', '.join(sorted(unknown))}")
        return AgentPreferences(**{**self.to_dict(), **partial})

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name).value for name in _PREFERENCE_TYPES}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> AgentPreferences:
        known = {k: v for k, v in data.items() if k in _PREFERENCE_TYPES}
        return cls(**known)


# =============================================================================
# Performance
# =============================================================================


@dataclass
class PerformanceMetrics:
    """
    Running counters of the agent's execution record.

    ``tasks_completed`` counts finished attempts (successful or not);
    ``goal_completion_rate`` is successful attempts over attempts.
    """

    tasks_completed: int = 0
    tasks_successful: int = 0
    tasks_failed: int = 0
    goals_completed: int = 0
    goals_failed: int = 0
    average_task_duration: float = 0.0
    goal_completion_rate: float = 0.0
    learning_rate: float = 0.1
    adaptation_score: float = 0.5
    cycles: int = 0
    errors: int = 0
    last_updated: Optional[datetime] = None

    def record_task(self, success: bool, duration: float, now: Optional[datetime] = None) -> None:
        self.tasks_completed += 1
        if success:
            self.tasks_successful += 1
        else:
            self.tasks_failed += 1
        n = self.tasks_completed
        self.average_task_duration = (self.average_task_duration * (n - 1) + duration) / n
        self.goal_completion_rate = self.tasks_successful / n
        self.last_updated = now or utcnow()

    def record_goal(self, success: bool) -> None:
        if success:
            self.goals_completed += 1
        else:
            self.goals_failed += 1

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["last_updated"] = _iso(self.last_updated)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PerformanceMetrics:
        names = {f.name for f in fields(cls)}
        known = {k: v for k, v in data.items() if k in names}
        known["last_updated"] = _parse_datetime(known.get("last_updated"))
        return cls(**known)


# =============================================================================
# State record
# =============================================================================


@dataclass
class AgentStateRecord:
    agent_id: str
    saved_at: datetime
    goals: List[Dict[str, Any]] = field(default_factory=list)
    tasks: List[Dict[str, Any]] = field(default_factory=list)
    performance_metrics: Dict[str, Any] = field(default_factory=dict)
    preferences: Dict[str, Any] = field(default_factory=dict)
    context_snapshot_tail: List[Dict[str, Any]] = field(default_factory=list)
    current_context: Dict[str, Any] = field(default_factory=dict)
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def capture(
        cls,
        agent_id: str,
        goals: List[Goal],
        performance: PerformanceMetrics,
        preferences: AgentPreferences,
        context_snapshot_tail: List[Dict[str, Any]],
        current_context: Dict[str, Any],
        extras: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> AgentStateRecord:
        """Flatten live goals into the persisted layout."""
        return cls(
            agent_id=agent_id,
            saved_at=now or utcnow(),
            goals=[g.to_dict(include_tasks=False) for g in goals],
            tasks=[t.to_dict() for g in goals for t in g.tasks],
            performance_metrics=performance.to_dict(),
            preferences=preferences.to_dict(),
            context_snapshot_tail=list(context_snapshot_tail),
            current_context=dict(current_context),
            extras=dict(extras or {}),
        )

    def rebuild_goals(self) -> List[Goal]:
        """
        Reassemble goals with their tasks in recorded order.

        Task ids a goal lists but the task table lacks are dropped with a
        warning.
        """
        tasks = {}
        for data in self.tasks:
            task = Task.from_dict(data)
            tasks[task.id] = task
        goals = []
        for data in self.goals:
            ordered = []
            for task_id in data.get("task_ids", []):
                task = tasks.get(task_id)
                if task is None:
                    logger.warning("Persisted goal %s references missing task %s", data.get("id"), task_id)
                    continue
                ordered.append(task)
            goals.append(Goal.from_dict(data, tasks=ordered))
        return goals

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "saved_at": self.saved_at.isoformat(),
            "goals": self.goals,
            "tasks": self.tasks,
            "performance_metrics": self.performance_metrics,
            "preferences": self.preferences,
            "context_snapshot_tail": self.context_snapshot_tail,
            "current_context": self.current_context,
            "extras": self.extras,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> AgentStateRecord:
        if "agent_id" not in data:
            raise KeyError("agent_id")
        return cls(
            agent_id=data["agent_id"],
            saved_at=_parse_datetime(data.get("saved_at")) or utcnow(),
            goals=list(data.get("goals", [])),
            tasks=list(data.get("tasks", [])),
            performance_metrics=dict(data.get("performance_metrics", {})),
            preferences=dict(data.get("preferences", {})),
            context_snapshot_tail=list(data.get("context_snapshot_tail", [])),
            current_context=dict(data.get("current_context", {})),
            extras=dict(data.get("extras", {})),
        )


# =============================================================================
# State Manager
# =============================================================================


class StateManager:
    """
    Reads and writes an agent's ``AgentStateRecord`` through a storage backend.

    Args:
        storage: Initialized backend.
        agent_id: Key of the record.
        clock: Source of the current time.
    """

    def __init__(
        self,
        storage: BaseStateStorage,
        agent_id: str = "default",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.storage = storage
        self.agent_id = agent_id
        self._clock = clock
        self.last_saved_at: Optional[datetime] = None
        self.save_count = 0

    async def load(self) -> Optional[AgentStateRecord]:
        """
        Read the stored record.

        Returns None when nothing is stored or the stored data is
        unreadable; the latter is logged.
        """
        try:
            data = await self.storage.load(self.agent_id)
        except StorageError as exc:
            logger.warning("Could not read state for agent %s: %s; starting fresh", self.agent_id, exc)
            return None
        if data is None:
            logger.debug("No persisted state for agent %s", self.agent_id)
            return None
        try:
            record = AgentStateRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Corrupt state record for agent %s: %s; starting fresh", self.agent_id, exc)
            return None
        logger.info(
            "Loaded agent state %s: %d goals, %d tasks (saved %s)",
            self.agent_id, len(record.goals), len(record.tasks), record.saved_at.isoformat(),
        )
        return record

    async def save(self, record: AgentStateRecord) -> None:
        """
        Write the record.

        Raises:
            PersistenceError: If the backend rejects the write.
        """
        record.agent_id = self.agent_id
        try:
            await self.storage.save(self.agent_id, record.to_dict())
        except StorageError as exc:
            logger.error("Failed to persist state for agent %s: %s", self.agent_id, exc)
            raise PersistenceError(self.agent_id, str(exc)) from exc
        self.last_saved_at = record.saved_at
        self.save_count += 1
        logger.debug("Persisted state for agent %s (%d goals)", self.agent_id, len(record.goals))

    async def reset(self) -> bool:
        """Delete the stored record."""
        try:
            return await self.storage.delete(self.agent_id)
        except StorageError as exc:
            raise PersistenceError(self.agent_id, str(exc)) from exc

    async def close(self) -> None:
        await self.storage.close()
