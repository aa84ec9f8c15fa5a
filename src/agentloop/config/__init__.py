# src/agentloop/config/__init__.py
"""Configuration models and loader for agentloop."""

from .agent_config import (
    AgentConfig,
    ContextConfig,
    GoalsConfig,
    PersistenceConfig,
    PlanningConfig,
    ReflectionConfig,
    SchedulerConfig,
    ToolsConfig,
    load_agent_config,
)

__all__ = [
    "AgentConfig",
    "ContextConfig",
    "GoalsConfig",
    "PersistenceConfig",
    "PlanningConfig",
    "ReflectionConfig",
    "SchedulerConfig",
    "ToolsConfig",
    "load_agent_config",
]
