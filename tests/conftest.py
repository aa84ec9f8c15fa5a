# tests/conftest.py
"""
Shared fixtures for agentloop tests.

Provides a controllable clock, capability factories and pre-configured
component instances.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from agentloop.autonomous.capabilities import (
    CapabilityDescriptor,
    CapabilityRegistry,
    FunctionCapability,
)
from agentloop.autonomous.goals import GoalManager, Task
from agentloop.config import AgentConfig


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 3, 4, 10, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingCapability(FunctionCapability):
    """FunctionCapability that remembers which tasks it ran."""

    def __init__(self, descriptor: CapabilityDescriptor, result: Any = "ok", error: Optional[str] = None):
        self.calls: List[str] = []
        self._result = result
        self._error = error
        super().__init__(descriptor, self._handle)

    async def _handle(self, task: Task, context: Dict[str, Any]) -> Any:
        self.calls.append(task.id)
        if self._error is not None:
            raise RuntimeError(self._error)
        return self._result


@pytest.fixture
def clock():
    """A FakeClock starting on a Monday at 10:00 UTC."""
    return FakeClock()


@pytest.fixture
def make_capability():
    """Factory building RecordingCapability instances from descriptor kwargs."""

    def _make(
        name: str,
        category: str = "analysis",
        description: str = "",
        result: Any = "ok",
        error: Optional[str] = None,
        **kwargs: Any,
    ) -> RecordingCapability:
        descriptor = CapabilityDescriptor(
            name=name,
            description=description or f"{name} capability",
            category=category,
            **kwargs,
        )
        return RecordingCapability(descriptor, result=result, error=error)

    return _make


@pytest.fixture
def registry():
    return CapabilityRegistry(call_timeout=1.0)


@pytest.fixture
def goal_manager(clock):
    return GoalManager(max_task_retries=3, clock=clock)


@pytest.fixture
def agent_config(tmp_path):
    """AgentConfig using in-memory persistence and a fast tick."""
    return AgentConfig.model_validate(
        {
            "scheduler": {"tick_interval_seconds": 0.05},
            "persistence": {"backend": "memory", "agent_id": "test-agent"},
        }
    )
