# src/agentloop/exceptions.py
"""
Custom exceptions for the agentloop library.

This module defines a hierarchy of custom exception classes so callers can
tell lookup failures, invalid state transitions, capability problems and
storage problems apart.

Capability *execution* failures are not raised: they are reported as failed
``ExecutionResult`` records. The capability exceptions below are raised for
registry misuse (unknown names) and used internally to describe timeouts.
"""

class AgentLoopError(Exception):
    """Base class for all agentloop specific errors."""
    def __init__(self, message: str = "An unspecified error occurred in agentloop."):
        super().__init__(message)

class ConfigError(AgentLoopError):
    """Raised for errors related to configuration loading or validation."""
    def __init__(self, message: str = "Configuration error."):
        super().__init__(message)

class GoalNotFoundError(AgentLoopError):
    """Raised when a goal id is not known to the goal manager."""
    def __init__(self, goal_id: str, message: str = "Goal not found."):
        self.goal_id = goal_id
        super().__init__(f"{message} Goal ID: '{goal_id}'")

class TaskNotFoundError(AgentLoopError):
    """Raised when a task id is not present in the referenced goal."""
    def __init__(self, task_id: str, goal_id: str = "", message: str = "Task not found."):
        self.task_id = task_id
        self.goal_id = goal_id
        suffix = f" in goal '{goal_id}'" if goal_id else ""
        super().__init__(f"{message} Task ID: '{task_id}'{suffix}")

class InvalidGoalStateError(AgentLoopError):
    """Raised when a requested goal status transition would break goal invariants."""
    def __init__(self, goal_id: str = "", message: str = "Invalid goal state transition."):
        self.goal_id = goal_id
        super().__init__(f"{message} Goal ID: '{goal_id}'")

class DependencyError(AgentLoopError):
    """Raised when a task declares a dependency outside its own goal."""
    def __init__(self, task_id: str = "", dependency: str = "", message: str = "Invalid task dependency."):
        self.task_id = task_id
        self.dependency = dependency
        super().__init__(f"{message} Task '{task_id}' depends on unknown task '{dependency}'")

class CapabilityError(AgentLoopError):
    """Raised for errors related to a capability or its provider."""
    def __init__(self, capability_name: str = "Unknown", message: str = "Capability error."):
        self.capability_name = capability_name
        super().__init__(f"Error with capability '{capability_name}': {message}")

class CapabilityNotFoundError(CapabilityError):
    """Raised when a capability name has no registered implementation."""
    def __init__(self, capability_name: str, message: str = "Capability not registered."):
        super().__init__(capability_name, message)

class CapabilityTimeoutError(CapabilityError):
    """Raised when a capability call exceeds its deadline."""
    def __init__(self, capability_name: str = "Unknown", timeout: float = 0.0, message: str = "Capability call timed out."):
        self.timeout = timeout
        super().__init__(capability_name, f"{message} Deadline: {timeout}s")

class StorageError(AgentLoopError):
    """Base class for errors related to storage operations."""
    def __init__(self, message: str = "Storage error."):
        super().__init__(message)

class PersistenceError(StorageError):
    """Raised when the agent state record cannot be written or read."""
    def __init__(self, agent_id: str = "", message: str = "Agent state persistence failed."):
        self.agent_id = agent_id
        super().__init__(f"{message} Agent ID: '{agent_id}'")
