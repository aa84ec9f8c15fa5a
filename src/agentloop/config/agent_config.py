# src/agentloop/config/agent_config.py
"""
Agent configuration models.

Pydantic models for every tunable of the agent core. The configuration
hierarchy:

    AgentConfig (root)
    ├── SchedulerConfig    - tick rate, concurrency, error memory
    ├── GoalsConfig        - retry budget, default task duration
    ├── PlanningConfig     - contingency thresholds, adaptation steps
    ├── ToolsConfig        - relevance filter, per-call deadline
    ├── ContextConfig      - history capacity, prediction thresholds
    ├── ReflectionConfig   - history capacity, periodic window
    ├── PersistenceConfig  - storage backend and location
    └── logging            - raw dict handed to ``configure_logging``

Usage:
    >>> from agentloop.config import AgentConfig
    >>> config = AgentConfig()
    >>> config.scheduler.max_concurrent_tasks
    3
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

# =============================================================================
# SCHEDULER CONFIGURATION
# =============================================================================


class SchedulerConfig(BaseModel):
    """
    Settings of the orchestration cycle.

    Examples:
        >>> SchedulerConfig().tick_interval_seconds
        5.0
    """

    tick_interval_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Seconds between orchestration cycles",
    )
    max_concurrent_tasks: int = Field(
        default=3,
        ge=1,
        le=64,
        description="Upper bound on tasks executing in one cycle",
    )
    error_threshold: int = Field(
        default=5,
        ge=0,
        description=(
            "More errors than this inside the lookback window forces the "
            "most restrictive autonomy level"
        ),
    )
    error_lookback_seconds: float = Field(
        default=3600.0,
        gt=0.0,
        description="Width of the error memory window",
    )
    error_memory_capacity: int = Field(
        default=200,
        ge=1,
        description="Maximum number of remembered errors",
    )
    health_check_interval_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Seconds between provider health probes",
    )


# =============================================================================
# GOALS CONFIGURATION
# =============================================================================


class GoalsConfig(BaseModel):
    """Goal and task defaults."""

    max_task_retries: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Failed attempts allowed before a task is marked failed",
    )
    default_task_duration_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Estimated duration for tasks without an estimate",
    )
    next_tasks_limit: int = Field(
        default=5,
        ge=1,
        description="Default size of the ready-task list",
    )
    history_capacity: int = Field(
        default=1000,
        ge=1,
        description="Archived goals kept in history (oldest evicted)",
    )


# =============================================================================
# PLANNING CONFIGURATION
# =============================================================================


class PlanningConfig(BaseModel):
    """Strategy selection, contingencies and adaptation."""

    long_task_threshold_minutes: float = Field(
        default=30.0,
        gt=0.0,
        description="Tasks estimated above this get a timeout contingency",
    )
    contingency_priority: Literal["low", "medium", "high", "critical"] = Field(
        default="high",
        description="Tasks at or above this priority get a failure contingency",
    )
    missing_capability_penalty: float = Field(default=0.2, ge=0.0, le=1.0)
    low_completion_rate: float = Field(default=0.6, ge=0.0, le=1.0)
    high_completion_rate: float = Field(default=0.8, ge=0.0, le=1.0)
    confidence_step: float = Field(default=0.1, gt=0.0, le=1.0)
    efficiency_step: float = Field(default=0.05, gt=0.0, le=1.0)
    reasoning_history_capacity: int = Field(default=200, ge=1)


# =============================================================================
# TOOLS CONFIGURATION
# =============================================================================


class ToolsConfig(BaseModel):
    """Capability selection and invocation."""

    relevance_threshold: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Minimum relevance for a capability to be a candidate",
    )
    max_tools_per_task: int = Field(default=5, ge=1, le=20)
    call_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Deadline applied to every capability call",
    )


# =============================================================================
# CONTEXT CONFIGURATION
# =============================================================================


class ContextConfig(BaseModel):
    """Situational context tracking."""

    history_capacity: int = Field(default=100, ge=1)
    sweep_interval_seconds: float = Field(default=300.0, gt=0.0)
    auto_apply_confidence: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Predictions above this confidence are applied by the sweep",
    )
    pattern_min_frequency: int = Field(default=3, ge=1)
    pattern_min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    time_heuristics: bool = Field(
        default=True,
        description="Emit time-of-day environment predictions",
    )


# =============================================================================
# REFLECTION CONFIGURATION
# =============================================================================


class ReflectionConfig(BaseModel):
    """Reflection and learning."""

    history_capacity: int = Field(default=500, ge=1)
    performance_capacity: int = Field(default=100, ge=1)
    action_item_capacity: int = Field(default=200, ge=1)
    periodic_interval_seconds: float = Field(default=3600.0, gt=0.0)
    window_hours: float = Field(default=24.0, gt=0.0)
    pattern_relevance_threshold: float = Field(default=0.5, ge=0.0, le=1.0)


# =============================================================================
# PERSISTENCE CONFIGURATION
# =============================================================================


class PersistenceConfig(BaseModel):
    """
    Where the agent state record lives.

    ``path`` is a JSON file for the ``json`` backend and a database file
    for ``sqlite``; it is ignored by ``memory``.
    """

    backend: Literal["json", "sqlite", "memory"] = "json"
    path: str = Field(
        default="~/.local/share/agentloop/agent_state.json",
        description="Tilde and environment variable expansion is applied.",
    )
    agent_id: str = Field(default="default", min_length=1)

    @field_validator("path")
    @classmethod
    def expand_path(cls, v: str) -> str:
        """Expand tilde and environment variables."""
        return os.path.expandvars(os.path.expanduser(v))


# =============================================================================
# ROOT CONFIGURATION
# =============================================================================


class AgentConfig(BaseModel):
    """Root configuration of an agent instance."""

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    goals: GoalsConfig = Field(default_factory=GoalsConfig)
    planning: PlanningConfig = Field(default_factory=PlanningConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    reflection: ReflectionConfig = Field(default_factory=ReflectionConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    logging: dict[str, Any] = Field(default_factory=dict)


def load_agent_config(
    config_dict: dict[str, Any] | None = None,
    config_path: str | Path | None = None,
) -> AgentConfig:
    """
    Load agent configuration from a dictionary or TOML file.

    Args:
        config_dict: Pre-parsed configuration. An ``"agent"`` key is
            unwrapped if present.
        config_path: TOML file; its ``[agent]`` table is used, and a
            top-level ``[logging]`` table fills ``logging`` when the agent
            table has none.

    Returns:
        Validated AgentConfig with defaults for unspecified settings.

    Raises:
        FileNotFoundError: If config_path does not exist.
        pydantic.ValidationError: If a value fails validation.

    Examples:
        >>> load_agent_config(config_dict={"agent": {"tools": {"max_tools_per_task": 2}}}).tools.max_tools_per_task
        2
    """
    data: dict[str, Any] = {}

    if config_path is not None:
        import tomllib

        path = Path(config_path).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, "rb") as f:
            raw = tomllib.load(f)
        data = dict(raw.get("agent", {}))
        if "logging" not in data and "logging" in raw:
            data["logging"] = raw["logging"]

    if config_dict is not None:
        data = config_dict.get("agent", config_dict)

    return AgentConfig(**data)
