# tests/autonomous/test_integration.py
"""
Tests for provider integration: discovery, health checks feeding the
reliability multiplier, and the event log.
"""

import pytest

from agentloop.autonomous.capabilities import (
    CapabilityDescriptor,
    CapabilityRegistry,
    FunctionCapability,
    HealthStatus,
)
from agentloop.autonomous.integration import ServiceIntegrator, can_enhance_response


async def _noop(task, context):
    return None


class FakeProvider:
    """Provider with configurable discovery and health."""

    def __init__(self, name="speech", health=HealthStatus.HEALTHY, fail_discovery=False):
        self.name = name
        self.health = health
        self.fail_discovery = fail_discovery
        self.health_error = None
        self._capabilities = {
            "tts": FunctionCapability(CapabilityDescriptor("tts", "Speak text", "voice", reliability=0.9), _noop),
            "stt": FunctionCapability(CapabilityDescriptor("stt", "Transcribe speech", "voice"), _noop),
        }

    async def describe_capabilities(self):
        if self.fail_discovery:
            raise ConnectionError("service unreachable")
        return [c.descriptor for c in self._capabilities.values()]

    async def check_health(self):
        if self.health_error:
            raise ConnectionError(self.health_error)
        return self.health

    def get_capability(self, name):
        return self._capabilities[name]


@pytest.fixture
def integrator(registry, clock):
    return ServiceIntegrator(registry, clock=clock)


# =============================================================================
# Integration
# =============================================================================


class TestIntegrate:
    @pytest.mark.asyncio
    async def test_capabilities_are_registered(self, integrator, registry):
        integration = await integrator.integrate(FakeProvider())

        assert integration.capabilities == ["tts", "stt"]
        assert set(registry.names()) == {"tts", "stt"}
        assert registry.descriptor("tts").provider == "speech"
        assert integrator.get_service_capabilities() == {"speech": ["tts", "stt"]}
        assert integrator.get_events()[-1].type == "initialization"

    @pytest.mark.asyncio
    async def test_failed_discovery_is_not_integrated(self, integrator, registry):
        result = await integrator.integrate(FakeProvider(fail_discovery=True))

        assert result is None
        assert registry.names() == []
        event = integrator.get_events()[-1]
        assert event.type == "error"
        assert event.details["action"] == "integration_failed"


# =============================================================================
# Health
# =============================================================================


class TestHealthChecks:
    @pytest.mark.asyncio
    async def test_degraded_provider_lowers_reliability(self, integrator, registry):
        provider = FakeProvider()
        await integrator.integrate(provider)

        provider.health = HealthStatus.DEGRADED
        statuses = await integrator.perform_health_checks()

        assert statuses == {"speech": HealthStatus.DEGRADED}
        assert registry.effective_reliability("tts") == pytest.approx(0.63)
        event = integrator.get_events()[-1]
        assert event.type == "health_check"
        assert event.impact == "medium"
        assert event.details == {"previous_status": "healthy", "current_status": "degraded"}

    @pytest.mark.asyncio
    async def test_failing_health_check_marks_offline(self, integrator, registry):
        provider = FakeProvider()
        await integrator.integrate(provider)

        provider.health_error = "timeout"
        await integrator.perform_health_checks()

        assert integrator.get_integration("speech").health == HealthStatus.OFFLINE
        assert registry.effective_reliability("stt") == 0.0

    @pytest.mark.asyncio
    async def test_recovery_restores_reliability(self, integrator, registry):
        provider = FakeProvider()
        await integrator.integrate(provider)
        provider.health = HealthStatus.OFFLINE
        await integrator.perform_health_checks()

        provider.health = HealthStatus.HEALTHY
        await integrator.perform_health_checks()

        assert registry.effective_reliability("tts") == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_health_change_is_announced(self, integrator, caplog):
        provider = FakeProvider()
        await integrator.integrate(provider)
        provider.health = HealthStatus.OFFLINE

        with caplog.at_level("INFO", logger="agentloop.autonomous.integration"):
            await integrator.perform_health_checks()

        record = next(r for r in caplog.records if "health:" in r.getMessage())
        assert record.getMessage() == "Provider speech health: healthy -> offline"
        assert record.levelname == "WARNING"
        assert record.display is True

    @pytest.mark.asyncio
    async def test_unchanged_status_logs_nothing(self, integrator):
        await integrator.integrate(FakeProvider())
        before = len(integrator.get_events())
        await integrator.perform_health_checks()
        assert len(integrator.get_events()) == before

    @pytest.mark.asyncio
    async def test_status_report(self, integrator, clock):
        await integrator.integrate(FakeProvider())
        await integrator.integrate(FakeProvider(name="other", health=HealthStatus.DEGRADED))
        await integrator.perform_health_checks()

        status = integrator.get_integration_status()
        assert status["total_integrations"] == 2
        assert status["healthy_services"] == 1
        assert status["degraded_services"] == 1
        assert status["last_health_check"] == clock().isoformat()


# =============================================================================
# Events and enhancement
# =============================================================================


class TestEvents:
    def test_record_event(self, integrator):
        integrator.record_event("capability_update", "request_intake", "medium", goal_id="g1")
        event = integrator.get_events()[0]
        assert event.provider == "request_intake"
        assert event.details == {"goal_id": "g1"}

    def test_event_log_is_bounded(self, clock):
        integrator = ServiceIntegrator(CapabilityRegistry(), clock=clock)
        for i in range(1005):
            integrator.record_event("note", "p", n=i)
        events = integrator.get_events()
        assert len(events) == 1000
        assert events[0].details["n"] == 5


class TestCanEnhanceResponse:
    def test_short_reply(self):
        assert can_enhance_response("Sure.", "hi", {})

    def test_learning_query(self):
        assert can_enhance_response("x" * 300, "Explain recursion", {})

    def test_tagalog_user_without_tagalog_reply(self):
        context = {"user_preferences": {"language": "tagalog"}}
        assert can_enhance_response("x" * 300, "hello", context)

    def test_opted_out(self):
        context = {"user_preferences": {"enhanced_responses": False}}
        assert not can_enhance_response("Sure.", "Explain", context)

    def test_long_plain_reply(self):
        assert not can_enhance_response("x" * 300, "hello", {})
