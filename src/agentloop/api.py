# src/agentloop/api.py
"""
Core API Facade for agentloop.

``AutonomousAgent`` is the external surface of one agent. Every method
returns an ``AgentResponse``; domain errors (unknown goals, invalid
preferences, storage failures ...) and unexpected errors alike come
back as ``AgentResponse(success=False, error=...)`` instead of being
raised.
"""

import inspect
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from pydantic import BaseModel, ValidationError

from .autonomous.capabilities import Capability, CapabilityProvider
from .autonomous.goals import (
    determine_goal_priority,
    determine_goal_template,
    extract_goal_description,
    requires_agent,
    utcnow,
)
from .autonomous.scheduler import AgentScheduler
from .builtin.local_provider import LocalProvider
from .config import AgentConfig, load_agent_config
from .exceptions import AgentLoopError, ConfigError
from .logging_config import configure_logging
from .storage import BaseStateStorage, create_state_storage

logger = logging.getLogger(__name__)


class AgentResponse(BaseModel):
    """Uniform result envelope of the facade."""

    success: bool
    data: Any = None
    error: Optional[str] = None


class AutonomousAgent:
    """
    Async facade over an ``AgentScheduler``.

    Initialize with ``await AutonomousAgent.create(...)``.
    """

    _scheduler: AgentScheduler
    _storage: BaseStateStorage

    def __init__(self) -> None:
        """Private constructor. Use `AutonomousAgent.create()` for initialization."""

    @classmethod
    async def create(
        cls,
        config: Union[AgentConfig, Dict[str, Any], None] = None,
        config_path: Optional[Union[str, Path]] = None,
        initial_context: Optional[Dict[str, Any]] = None,
        storage: Optional[BaseStateStorage] = None,
        local_workspace: Optional[Union[str, Path]] = None,
        setup_logging: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> "AutonomousAgent":
        """
        Build every component and load persisted state once.

        Args:
            config: An ``AgentConfig`` or a dict in its shape.
            config_path: TOML file whose ``[agent]`` table is loaded when
                ``config`` is not an ``AgentConfig``.
            initial_context: Starting context.
            storage: Initialized backend; built from ``config.persistence``
                when omitted.
            local_workspace: When given, the built-in local provider is
                integrated with this workspace directory.
            setup_logging: Configure console/file logging from the
                ``logging`` section.
            clock: Source of the current time.

        Raises:
            ConfigError: If the configuration is invalid.
            StorageError: If the storage backend cannot be initialized.
        """
        if isinstance(config, AgentConfig):
            agent_config = config
        else:
            try:
                agent_config = load_agent_config(config_dict=config, config_path=config_path)
            except (ValidationError, FileNotFoundError) as e:
                raise ConfigError(f"Invalid agent configuration: {e}") from e

        if setup_logging:
            configure_logging(app_name="agentloop", config=agent_config.logging or None)

        instance = cls()
        instance._storage = storage or await create_state_storage(agent_config.persistence)
        instance._scheduler = AgentScheduler(
            agent_config,
            storage=instance._storage,
            initial_context=initial_context,
            clock=clock,
        )
        if local_workspace is not None:
            await instance._scheduler.integrate_provider(LocalProvider(local_workspace))
        await instance._scheduler.load_state()
        logger.info("AutonomousAgent '%s' ready", agent_config.persistence.agent_id)
        return instance

    @property
    def scheduler(self) -> AgentScheduler:
        return self._scheduler

    async def _respond(self, operation: str, call: Callable[[], Any]) -> AgentResponse:
        try:
            data = call()
            if inspect.isawaitable(data):
                data = await data
        except (AgentLoopError, ValueError) as e:
            logger.warning("%s failed: %s", operation, e)
            return AgentResponse(success=False, error=str(e))
        except Exception as e:
            logger.error("%s failed unexpectedly: %s", operation, e, exc_info=True)
            return AgentResponse(success=False, error=f"{type(e).__name__}: {e}")
        return AgentResponse(success=True, data=data)

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    async def add_goal(self, description: str, priority: str = "medium") -> AgentResponse:
        """Queue a goal; ``data`` is its id."""
        return await self._respond(
            "add_goal", lambda: self._scheduler.add_goal(description, priority).id
        )

    async def create_goal(
        self,
        description: str,
        priority: str = "medium",
        context: Optional[Dict[str, Any]] = None,
        template_id: Optional[str] = None,
    ) -> AgentResponse:
        """Create an active goal; ``data`` is the goal as a dict."""
        return await self._respond(
            "create_goal",
            lambda: self._scheduler.create_goal(description, priority, context, template_id).to_dict(),
        )

    async def execute_goal(self, goal_id: str) -> AgentResponse:
        """Run a goal now; ``data`` is True when it completed."""
        return await self._respond("execute_goal", lambda: self._scheduler.execute_goal(goal_id))

    async def get_goal_progress(self, goal_id: str) -> AgentResponse:
        return await self._respond(
            "get_goal_progress", lambda: self._scheduler.goals.get_goal_progress(goal_id).to_dict()
        )

    async def submit_request(self, message: str, context: Optional[Dict[str, Any]] = None) -> AgentResponse:
        """
        Turn a free-form request into a goal when it calls for the agent.

        ``data`` is the created goal dict, or None when the request can be
        answered without a goal.
        """
        context = context or {}

        def intake() -> Optional[Dict[str, Any]]:
            if not requires_agent(message, context):
                return None
            goal = self._scheduler.create_goal(
                extract_goal_description(message),
                determine_goal_priority(message),
                context,
                determine_goal_template(message, context),
            )
            self._scheduler.integrator.record_event(
                "capability_update", "request_intake", "medium",
                action="goal_created", goal_id=goal.id,
            )
            return goal.to_dict()

        return await self._respond("submit_request", intake)

    # ------------------------------------------------------------------
    # Status and preferences
    # ------------------------------------------------------------------

    async def get_status(self) -> AgentResponse:
        return await self._respond("get_status", self._scheduler.get_status)

    async def update_preferences(self, **partial: Any) -> AgentResponse:
        return await self._respond(
            "update_preferences", lambda: self._scheduler.update_preferences(**partial).to_dict()
        )

    async def update_context(self, updates: Dict[str, Any], reason: str = "manual_update") -> AgentResponse:
        return await self._respond(
            "update_context",
            lambda: [c.to_dict() for c in self._scheduler.context.update_context(updates, reason)],
        )

    async def get_reflection_summary(self) -> AgentResponse:
        return await self._respond("get_reflection_summary", self._scheduler.reflection.get_reflection_summary)

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    async def register_capability(self, capability: Capability) -> AgentResponse:
        def register() -> str:
            self._scheduler.register_capability(capability)
            return capability.descriptor.name

        return await self._respond("register_capability", register)

    async def integrate_provider(self, provider: CapabilityProvider) -> AgentResponse:
        async def integrate() -> Optional[Dict[str, Any]]:
            integration = await self._scheduler.integrate_provider(provider)
            if integration is None:
                raise AgentLoopError(f"Provider '{provider.name}' could not be integrated.")
            return integration.to_dict()

        return await self._respond("integrate_provider", integrate)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> AgentResponse:
        """Run one cycle now; ``data`` is False when it was skipped."""
        return await self._respond("run_cycle", self._scheduler.run_cycle)

    async def start(self) -> AgentResponse:
        return await self._respond("start", self._scheduler.start)

    async def stop(self) -> AgentResponse:
        return await self._respond("stop", self._scheduler.stop)

    async def pause(self) -> AgentResponse:
        """Stop starting cycles without stopping the heartbeat."""
        return await self._respond("pause", self._scheduler.pause)

    async def resume(self) -> AgentResponse:
        return await self._respond("resume", self._scheduler.resume)

    async def close(self) -> None:
        """Stop the agent and release the storage backend."""
        await self._scheduler.close()
