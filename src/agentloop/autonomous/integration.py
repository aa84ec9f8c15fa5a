# src/agentloop/autonomous/integration.py
"""
Service integration.

Connects capability providers to the registry: discovery on
``integrate``, periodic health probes, and the reliability multiplier
that ranking uses (healthy 1.0, degraded 0.7, offline 0.0). Every
integration action is appended to a bounded event log.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional

from ..logging_config import log_display
from .capabilities import CapabilityProvider, CapabilityRegistry, HealthStatus
from .goals import utcnow

logger = logging.getLogger(__name__)

EVENT_LOG_CAPACITY = 1000


@dataclass
class ServiceIntegration:
    provider: str
    capabilities: List[str]
    health: HealthStatus = HealthStatus.HEALTHY
    last_check: Optional[datetime] = None
    version: str = "1.0.0"

    @property
    def reliability_multiplier(self) -> float:
        return self.health.reliability_multiplier

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "capabilities": list(self.capabilities),
            "health": self.health.value,
            "last_check": self.last_check.isoformat() if self.last_check else None,
            "reliability_multiplier": self.reliability_multiplier,
            "version": self.version,
        }


@dataclass
class IntegrationEvent:
    type: str
    provider: str
    details: Dict[str, Any] = field(default_factory=dict)
    impact: str = "low"
    id: str = field(default_factory=lambda: f"event_{uuid.uuid4().hex[:12]}")
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "provider": self.provider,
            "details": self.details,
            "impact": self.impact,
            "timestamp": self.timestamp.isoformat(),
        }


def can_enhance_response(response: str, message: str, context: Dict[str, Any]) -> bool:
    """
    Whether a follow-up enhancement goal is worth creating for a reply.

    Short replies, explanatory questions and Tagalog users receiving a
    reply without Tagalog content qualify, unless the user turned
    enhanced responses off.
    """
    prefs = context.get("user_preferences", {})
    if prefs.get("enhanced_responses") is False:
        return False
    lowered = message.lower()
    learning_query = any(word in lowered for word in ("learn", "explain", "how", "why"))
    needs_cultural = prefs.get("language") == "tagalog" and "tagalog" not in response.lower()
    return len(response) < 200 or learning_query or needs_cultural


class ServiceIntegrator:
    """
    Tracks providers and keeps registry reliability in step with their health.

    Args:
        registry: Registry that receives discovered capabilities.
        clock: Source of the current time.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.registry = registry
        self._clock = clock
        self._providers: Dict[str, CapabilityProvider] = {}
        self._integrations: Dict[str, ServiceIntegration] = {}
        self._events: Deque[IntegrationEvent] = deque(maxlen=EVENT_LOG_CAPACITY)
        self.last_health_check: Optional[datetime] = None

    def _log_event(self, type_: str, provider: str, impact: str = "low", **details: Any) -> None:
        self._events.append(
            IntegrationEvent(type=type_, provider=provider, details=details, impact=impact, timestamp=self._clock())
        )

    async def integrate(self, provider: CapabilityProvider) -> Optional[ServiceIntegration]:
        """
        Discover a provider's capabilities and register them.

        A provider whose discovery raises is logged as an error event and
        not integrated; None is returned.
        """
        try:
            descriptors = await provider.describe_capabilities()
            capabilities = [provider.get_capability(d.name) for d in descriptors]
        except Exception as e:
            logger.error("Failed to integrate provider %s: %s", provider.name, e)
            self._log_event("error", provider.name, "high", action="integration_failed", error=str(e))
            return None

        for capability in capabilities:
            capability.descriptor.provider = provider.name
            self.registry.register(capability)

        integration = ServiceIntegration(
            provider=provider.name,
            capabilities=[c.descriptor.name for c in capabilities],
            last_check=self._clock(),
        )
        self._providers[provider.name] = provider
        self._integrations[provider.name] = integration
        self._log_event(
            "initialization", provider.name, "medium",
            capabilities=list(integration.capabilities), status="success",
        )
        logger.info("Integrated provider %s with %d capabilities", provider.name, len(capabilities))
        return integration

    async def perform_health_checks(self) -> Dict[str, HealthStatus]:
        """
        Probe every provider.

        A probe that raises marks the provider offline. When the status
        changes, the multiplier of each of its capabilities is updated.
        """
        statuses = {}
        for name, provider in self._providers.items():
            integration = self._integrations[name]
            previous = integration.health
            try:
                current = HealthStatus(await provider.check_health())
            except Exception as e:
                logger.warning("Health check for provider %s failed: %s", name, e)
                self._log_event("error", name, "high", action="health_check_failed", error=str(e))
                current = HealthStatus.OFFLINE

            integration.health = current
            integration.last_check = self._clock()
            statuses[name] = current

            if current != previous:
                impact = {"healthy": "low", "degraded": "medium", "offline": "high"}[current.value]
                self._log_event(
                    "health_check", name, impact,
                    previous_status=previous.value, current_status=current.value,
                )
                for capability in integration.capabilities:
                    self.registry.set_reliability_multiplier(capability, current.reliability_multiplier)
                log_display(
                    logger,
                    logging.INFO if current == HealthStatus.HEALTHY else logging.WARNING,
                    "Provider %s health: %s -> %s", name, previous.value, current.value,
                )
        self.last_health_check = self._clock()
        return statuses

    def get_integration(self, provider: str) -> Optional[ServiceIntegration]:
        return self._integrations.get(provider)

    def get_integration_status(self) -> Dict[str, Any]:
        integrations = list(self._integrations.values())
        return {
            "total_integrations": len(integrations),
            "healthy_services": sum(1 for i in integrations if i.health == HealthStatus.HEALTHY),
            "degraded_services": sum(1 for i in integrations if i.health == HealthStatus.DEGRADED),
            "offline_services": sum(1 for i in integrations if i.health == HealthStatus.OFFLINE),
            "total_capabilities": sum(len(i.capabilities) for i in integrations),
            "recent_events": [e.to_dict() for e in list(self._events)[-10:]],
            "last_health_check": self.last_health_check.isoformat() if self.last_health_check else None,
        }

    def get_service_capabilities(self) -> Dict[str, List[str]]:
        return {name: list(i.capabilities) for name, i in self._integrations.items()}

    def get_events(self) -> List[IntegrationEvent]:
        return list(self._events)

    def record_event(self, type_: str, provider: str, impact: str = "low", **details: Any) -> None:
        """Log an event on behalf of a collaborator (goal delegation, shutdown)."""
        self._log_event(type_, provider, impact, **details)
