# src/agentloop/autonomous/__init__.py
"""
Autonomous operation components for agentloop.

- Goals and tasks: GoalManager, Goal, Task, goal templates and intake rules
- Capabilities: CapabilityRegistry, CapabilityDescriptor, FunctionCapability
- Tool orchestration: ToolOrchestrator
- Planning: PlanningEngine, Plan, Contingency
- Context: ContextTracker
- Reflection: ReflectionEngine, LearningPattern, ActionItem
- Service integration: ServiceIntegrator
- Heartbeat: HeartbeatManager, HeartbeatTask
- State: AgentPreferences, PerformanceMetrics, StateManager
- Scheduler: AgentScheduler

Example:
    from agentloop.autonomous import AgentScheduler, FunctionCapability, CapabilityDescriptor

    scheduler = AgentScheduler()
    scheduler.register_capability(FunctionCapability(descriptor, handler))
    goal = scheduler.create_goal("Research quantum computing basics", "high")
    await scheduler.execute_goal(goal.id)
"""

from .capabilities import (
    Capability,
    CapabilityCategory,
    CapabilityDescriptor,
    CapabilityProvider,
    CapabilityRegistry,
    ComplexityTier,
    ExecutionResult,
    FunctionCapability,
    HealthStatus,
    LatencyClass,
)
from .context import ContextChange, ContextPattern, ContextPrediction, ContextSnapshot, ContextTracker
from .goals import (
    GOAL_TEMPLATES,
    Goal,
    GoalManager,
    GoalProgress,
    GoalStatus,
    GoalTemplate,
    Priority,
    Task,
    TaskStatus,
    classify_goal,
    determine_goal_priority,
    determine_goal_template,
    extract_goal_description,
    requires_agent,
)
from .heartbeat import HeartbeatManager, HeartbeatTask
from .integration import ServiceIntegration, ServiceIntegrator, can_enhance_response
from .orchestrator import ExecutionStrategy, StrategyType, TaskOutcome, ToolOrchestrator, ToolSelection
from .planning import (
    Contingency,
    ContingencyAction,
    ExecutionShape,
    Plan,
    PlanningEngine,
    PlanningStrategy,
    StrategyName,
)
from .reflection import ActionItem, Impact, LearningPattern, Outcome, ReflectionEngine, ReflectionEntry
from .scheduler import AgentScheduler, ErrorMemory, Escalation
from .state import (
    AgentPreferences,
    AgentStateRecord,
    AutonomyLevel,
    CommunicationFrequency,
    GoalSetting,
    LearningStyle,
    PerformanceMetrics,
    RiskTolerance,
    StateManager,
)

__all__ = [
    # Goals
    "Goal",
    "GoalManager",
    "GoalProgress",
    "GoalStatus",
    "GoalTemplate",
    "GOAL_TEMPLATES",
    "Priority",
    "Task",
    "TaskStatus",
    "classify_goal",
    "determine_goal_priority",
    "determine_goal_template",
    "extract_goal_description",
    "requires_agent",
    # Capabilities
    "Capability",
    "CapabilityCategory",
    "CapabilityDescriptor",
    "CapabilityProvider",
    "CapabilityRegistry",
    "ComplexityTier",
    "ExecutionResult",
    "FunctionCapability",
    "HealthStatus",
    "LatencyClass",
    # Orchestration
    "ExecutionStrategy",
    "StrategyType",
    "TaskOutcome",
    "ToolOrchestrator",
    "ToolSelection",
    # Planning
    "Contingency",
    "ContingencyAction",
    "ExecutionShape",
    "Plan",
    "PlanningEngine",
    "PlanningStrategy",
    "StrategyName",
    # Context
    "ContextChange",
    "ContextPattern",
    "ContextPrediction",
    "ContextSnapshot",
    "ContextTracker",
    # Reflection
    "ActionItem",
    "Impact",
    "LearningPattern",
    "Outcome",
    "ReflectionEngine",
    "ReflectionEntry",
    # Integration
    "ServiceIntegration",
    "ServiceIntegrator",
    "can_enhance_response",
    # Heartbeat
    "HeartbeatManager",
    "HeartbeatTask",
    # State
    "AgentPreferences",
    "AgentStateRecord",
    "AutonomyLevel",
    "CommunicationFrequency",
    "GoalSetting",
    "LearningStyle",
    "PerformanceMetrics",
    "RiskTolerance",
    "StateManager",
    # Scheduler
    "AgentScheduler",
    "ErrorMemory",
    "Escalation",
]
