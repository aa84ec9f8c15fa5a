# src/agentloop/autonomous/capabilities.py
"""
Capability interface and registry.

A *capability* is an external service the agent can invoke for a task
(speech synthesis, web search, a memory store ...). Every capability
presents the same contract::

    descriptor: CapabilityDescriptor
    async execute(task, context) -> Any      # raise on failure

Providers group capabilities and answer discovery and health probes.

The ``CapabilityRegistry`` maps names to implementations, applies a
per-call deadline, converts outcomes into ``ExecutionResult`` records and
keeps a performance ledger per capability. Capability failures never
escape as exceptions; they come back as failed results.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

from ..exceptions import CapabilityNotFoundError, CapabilityTimeoutError
from .goals import Priority, Task

logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================


class CapabilityCategory(str, Enum):
    VOICE = "voice"
    MEMORY = "memory"
    WEB = "web"
    FILE = "file"
    ANALYSIS = "analysis"
    COMMUNICATION = "communication"
    SYSTEM = "system"


class ComplexityTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def cost(self) -> int:
        """Cost against a task's complexity budget."""
        return {"low": 1, "medium": 3, "high": 5}[self.value]


class LatencyClass(str, Enum):
    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    OFFLINE = "offline"

    @property
    def reliability_multiplier(self) -> float:
        return {"healthy": 1.0, "degraded": 0.7, "offline": 0.0}[self.value]


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class CapabilityDescriptor:
    """
    Static description of a capability.

    Attributes:
        name: Unique name used for lookup.
        description: What the capability does; used for relevance matching.
        category: Functional category.
        complexity: Cost tier against the task's complexity budget.
        latency: Expected latency class.
        reliability: Base reliability in [0, 1].
        dependencies: Names of capabilities whose output this one needs.
        languages: Languages the capability is specialized for.
        provider: Name of the provider that supplied it.
    """

    name: str
    description: str
    category: CapabilityCategory
    complexity: ComplexityTier = ComplexityTier.MEDIUM
    latency: LatencyClass = LatencyClass.MEDIUM
    reliability: float = 0.8
    dependencies: List[str] = field(default_factory=list)
    languages: List[str] = field(default_factory=list)
    provider: str = "local"

    def __post_init__(self) -> None:
        self.category = CapabilityCategory(self.category)
        self.complexity = ComplexityTier(self.complexity)
        self.latency = LatencyClass(self.latency)
        if not 0.0 <= self.reliability <= 1.0:
            raise ValueError(f"reliability must be within [0, 1], got {self.reliability}")

    @property
    def search_text(self) -> str:
        return f"{self.name} {self.description} {self.category.value}".lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "complexity": self.complexity.value,
            "latency": self.latency.value,
            "reliability": self.reliability,
            "dependencies": list(self.dependencies),
            "languages": list(self.languages),
            "provider": self.provider,
        }


@dataclass
class ExecutionResult:
    """Outcome of one capability call."""

    capability: str
    success: bool
    result: Any = None
    error: Optional[str] = None
    execution_time: float = 0.0
    confidence: float = 0.0
    critical: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "capability": self.capability,
            "success": self.success,
            "result": self.result,
            "error": self.error,
            "execution_time": self.execution_time,
            "confidence": self.confidence,
            "critical": self.critical,
            "metadata": self.metadata,
        }


@dataclass
class PerformanceRecord:
    """Ledger entry for one capability."""

    successes: int = 0
    failures: int = 0
    total_time: float = 0.0
    executions: int = 0

    @property
    def success_rate(self) -> float:
        return self.successes / self.executions if self.executions else 0.0

    @property
    def average_time(self) -> float:
        return self.total_time / self.executions if self.executions else 0.0

    def record(self, success: bool, elapsed: float) -> None:
        self.executions += 1
        self.total_time += elapsed
        if success:
            self.successes += 1
        else:
            self.failures += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successes": self.successes,
            "failures": self.failures,
            "total_time": self.total_time,
            "executions": self.executions,
            "success_rate": self.success_rate,
            "average_time": self.average_time,
        }


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class Capability(Protocol):
    """Something the agent can invoke for a task."""

    descriptor: CapabilityDescriptor

    async def execute(self, task: Task, context: Dict[str, Any]) -> Any:
        """Perform the work; raise to signal failure."""
        ...


@runtime_checkable
class CapabilityProvider(Protocol):
    """A named group of capabilities with discovery and health probes."""

    name: str

    async def describe_capabilities(self) -> List[CapabilityDescriptor]:
        ...

    async def check_health(self) -> HealthStatus:
        ...

    def get_capability(self, name: str) -> Capability:
        ...


class FunctionCapability:
    """
    Adapt an async function into a ``Capability``.

    Example:
        async def speak(task, context):
            return await tts.say(task.parameters["text"])

        registry.register(FunctionCapability(
            CapabilityDescriptor("tts", "Speak text aloud", "voice"), speak
        ))
    """

    def __init__(
        self,
        descriptor: CapabilityDescriptor,
        func: Callable[[Task, Dict[str, Any]], Awaitable[Any]],
    ) -> None:
        self.descriptor = descriptor
        self._func = func

    async def execute(self, task: Task, context: Dict[str, Any]) -> Any:
        return await self._func(task, context)

    def __repr__(self) -> str:
        return f"FunctionCapability({self.descriptor.name!r})"


# =============================================================================
# Registry
# =============================================================================


class CapabilityRegistry:
    """
    Name -> implementation map with a performance ledger.

    Args:
        call_timeout: Deadline in seconds for a single capability call.
    """

    def __init__(self, call_timeout: float = 30.0) -> None:
        self.call_timeout = call_timeout
        self._capabilities: Dict[str, Capability] = {}
        self._multipliers: Dict[str, float] = {}
        self._ledger: Dict[str, PerformanceRecord] = {}

    def register(self, capability: Capability) -> None:
        name = capability.descriptor.name
        if name in self._capabilities:
            logger.info("Replacing capability: %s", name)
        self._capabilities[name] = capability
        self._multipliers.setdefault(name, 1.0)
        self._ledger.setdefault(name, PerformanceRecord())
        logger.debug("Registered capability %s (%s)", name, capability.descriptor.category.value)

    def get(self, name: str) -> Capability:
        try:
            return self._capabilities[name]
        except KeyError:
            raise CapabilityNotFoundError(name) from None

    def descriptor(self, name: str) -> CapabilityDescriptor:
        return self.get(name).descriptor

    def descriptors(self) -> List[CapabilityDescriptor]:
        return [c.descriptor for c in self._capabilities.values()]

    def names(self) -> List[str]:
        return list(self._capabilities)

    def __contains__(self, name: object) -> bool:
        return name in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)

    # ------------------------------------------------------------------
    # Reliability and performance
    # ------------------------------------------------------------------

    def set_reliability_multiplier(self, name: str, multiplier: float) -> None:
        self._multipliers[name] = max(0.0, min(1.0, multiplier))

    def effective_reliability(self, name: str) -> float:
        """Descriptor reliability scaled by the provider health multiplier."""
        return self.descriptor(name).reliability * self._multipliers.get(name, 1.0)

    def performance(self, name: str) -> PerformanceRecord:
        return self._ledger.setdefault(name, PerformanceRecord())

    def historical_performance(self, name: str) -> float:
        """
        Score in [0, 1] from past executions.

        0.7 with no history, otherwise 70% success rate and 30% speed
        (average latency saturating at one second).
        """
        record = self._ledger.get(name)
        if record is None or record.executions == 0:
            return 0.7
        speed = 1.0 - min(record.average_time, 1.0)
        return record.success_rate * 0.7 + speed * 0.3

    def performance_insights(self) -> Dict[str, Any]:
        """Ledger summary: best and worst performers and the full table."""
        used = {n: r for n, r in self._ledger.items() if r.executions}
        ranked = sorted(used, key=lambda n: used[n].success_rate, reverse=True)
        return {
            "capabilities": {n: r.to_dict() for n, r in self._ledger.items()},
            "best_performers": ranked[:3],
            "needs_attention": [n for n in ranked if used[n].success_rate < 0.7],
            "total_executions": sum(r.executions for r in self._ledger.values()),
        }

    def ledger_snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {n: r.to_dict() for n, r in self._ledger.items()}

    def restore_ledger(self, data: Dict[str, Dict[str, Any]]) -> None:
        for name, entry in data.items():
            self._ledger[name] = PerformanceRecord(
                successes=entry.get("successes", 0),
                failures=entry.get("failures", 0),
                total_time=entry.get("total_time", 0.0),
                executions=entry.get("executions", 0),
            )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def is_critical_failure(self, name: str, task: Task) -> bool:
        """Failures of system capabilities or of critical tasks are critical."""
        category = (
            self._capabilities[name].descriptor.category
            if name in self._capabilities
            else None
        )
        return category == CapabilityCategory.SYSTEM or task.priority == Priority.CRITICAL

    async def execute(
        self,
        name: str,
        task: Task,
        context: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> ExecutionResult:
        """
        Invoke one capability under a deadline.

        Returns a failed ``ExecutionResult`` for unknown names, timeouts and
        raised exceptions; never raises for capability failures.
        """
        deadline = timeout if timeout is not None else self.call_timeout
        capability = self._capabilities.get(name)
        if capability is None:
            error = str(CapabilityNotFoundError(name))
            logger.warning(error)
            return ExecutionResult(
                capability=name,
                success=False,
                error=error,
                critical=task.priority == Priority.CRITICAL,
            )

        started = time.monotonic()
        try:
            payload = await asyncio.wait_for(capability.execute(task, context), timeout=deadline)
        except asyncio.TimeoutError:
            elapsed = time.monotonic() - started
            self.performance(name).record(False, elapsed)
            error = str(CapabilityTimeoutError(name, deadline))
            logger.warning(error)
            return ExecutionResult(
                capability=name,
                success=False,
                error=error,
                execution_time=elapsed,
                critical=self.is_critical_failure(name, task),
                metadata={"timeout": True},
            )
        except Exception as e:
            elapsed = time.monotonic() - started
            self.performance(name).record(False, elapsed)
            logger.warning("Capability %s failed for task %s: %s", name, task.id, e)
            return ExecutionResult(
                capability=name,
                success=False,
                error=str(e) or type(e).__name__,
                execution_time=elapsed,
                critical=self.is_critical_failure(name, task),
            )

        elapsed = time.monotonic() - started
        self.performance(name).record(True, elapsed)
        logger.debug("Capability %s succeeded for task %s in %.3fs", name, task.id, elapsed)
        return ExecutionResult(
            capability=name,
            success=True,
            result=payload,
            execution_time=elapsed,
        )
