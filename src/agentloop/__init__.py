# src/agentloop/__init__.py
"""
agentloop - Autonomous task-execution agent core.

Turns user goals into decomposed, dependency-ordered task plans, runs them
against a registry of pluggable capabilities under a periodic scheduler,
and learns from the outcomes through reflection and strategy adaptation.
"""

from importlib.metadata import PackageNotFoundError, version

from .api import AgentResponse, AutonomousAgent
from .autonomous import (
    AgentPreferences,
    AgentScheduler,
    AutonomyLevel,
    CapabilityCategory,
    CapabilityDescriptor,
    CapabilityRegistry,
    FunctionCapability,
    Goal,
    GoalManager,
    GoalStatus,
    HealthStatus,
    PerformanceMetrics,
    Priority,
    Task,
    TaskStatus,
)
from .builtin import LocalProvider
from .config import AgentConfig, load_agent_config
from .exceptions import (
    AgentLoopError,
    CapabilityError,
    CapabilityNotFoundError,
    CapabilityTimeoutError,
    ConfigError,
    DependencyError,
    GoalNotFoundError,
    InvalidGoalStateError,
    PersistenceError,
    StorageError,
    TaskNotFoundError,
)
from .logging_config import configure_logging
from .storage import create_state_storage

try:
    __version__ = version("agentloop")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"


__all__ = [
    # ==========================================================================
    # Core API
    # ==========================================================================
    "AutonomousAgent",
    "AgentResponse",
    "AgentScheduler",
    # ==========================================================================
    # Domain types
    # ==========================================================================
    "AgentPreferences",
    "AutonomyLevel",
    "CapabilityCategory",
    "CapabilityDescriptor",
    "CapabilityRegistry",
    "FunctionCapability",
    "Goal",
    "GoalManager",
    "GoalStatus",
    "HealthStatus",
    "PerformanceMetrics",
    "Priority",
    "Task",
    "TaskStatus",
    "LocalProvider",
    # ==========================================================================
    # Configuration, logging and storage
    # ==========================================================================
    "AgentConfig",
    "load_agent_config",
    "configure_logging",
    "create_state_storage",
    # ==========================================================================
    # Exceptions
    # ==========================================================================
    "AgentLoopError",
    "ConfigError",
    "GoalNotFoundError",
    "TaskNotFoundError",
    "InvalidGoalStateError",
    "DependencyError",
    "CapabilityError",
    "CapabilityNotFoundError",
    "CapabilityTimeoutError",
    "StorageError",
    "PersistenceError",
    "__version__",
]
