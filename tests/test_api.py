# tests/test_api.py
"""
Tests for the AutonomousAgent facade.

The facade wraps every scheduler operation in an AgentResponse; these
tests check the envelope, the request intake path and creation options.
"""

import pytest
import pytest_asyncio

from agentloop import AgentResponse, AutonomousAgent
from agentloop.exceptions import ConfigError
from agentloop.storage import MemoryStateStorage


@pytest_asyncio.fixture
async def agent(agent_config, clock):
    instance = await AutonomousAgent.create(config=agent_config, clock=clock)
    yield instance
    await instance.close()


# =============================================================================
# Creation
# =============================================================================


class TestCreate:
    @pytest.mark.asyncio
    async def test_from_dict(self, clock):
        agent = await AutonomousAgent.create(
            config={"agent": {"persistence": {"backend": "memory", "agent_id": "dict-agent"}}},
            clock=clock,
        )
        assert agent.scheduler.config.persistence.agent_id == "dict-agent"
        await agent.close()

    @pytest.mark.asyncio
    async def test_invalid_config(self):
        with pytest.raises(ConfigError):
            await AutonomousAgent.create(config={"scheduler": {"tick_interval_seconds": -1}})

    @pytest.mark.asyncio
    async def test_missing_config_file(self, tmp_path):
        with pytest.raises(ConfigError):
            await AutonomousAgent.create(config_path=tmp_path / "missing.toml")

    @pytest.mark.asyncio
    async def test_local_workspace(self, agent_config, clock, tmp_path):
        agent = await AutonomousAgent.create(config=agent_config, local_workspace=tmp_path / "ws", clock=clock)
        assert set(agent.scheduler.registry.names()) == {"memory_service", "file_manager"}
        await agent.close()

    @pytest.mark.asyncio
    async def test_persisted_state_is_loaded(self, agent_config, clock):
        storage = MemoryStateStorage()
        first = await AutonomousAgent.create(config=agent_config, storage=storage, clock=clock)
        goal_id = (await first.add_goal("Research tide tables")).data
        await first.run_cycle()

        second = await AutonomousAgent.create(config=agent_config, storage=storage, clock=clock)
        progress = await second.get_goal_progress(goal_id)

        assert progress.success
        assert progress.data["total_tasks"] == 4


# =============================================================================
# Goals
# =============================================================================


class TestGoals:
    @pytest.mark.asyncio
    async def test_add_goal_returns_id(self, agent):
        response = await agent.add_goal("Research solar panels", "high")

        assert isinstance(response, AgentResponse)
        assert response.success
        assert response.data.startswith("goal_")

    @pytest.mark.asyncio
    async def test_create_goal_from_template(self, agent):
        response = await agent.create_goal("", template_id="information_gathering")

        assert response.success
        assert response.data["description"] == "Gather and synthesize information from multiple sources"
        assert len(response.data["tasks"]) == 3

    @pytest.mark.asyncio
    async def test_invalid_priority(self, agent):
        response = await agent.add_goal("Do something", "whenever")
        assert response.success is False
        assert response.error

    @pytest.mark.asyncio
    async def test_unknown_goal(self, agent):
        response = await agent.get_goal_progress("goal_missing")
        assert response.success is False
        assert "goal_missing" in response.error

        response = await agent.execute_goal("goal_missing")
        assert response.success is False


class TestSubmitRequest:
    @pytest.mark.asyncio
    async def test_request_becomes_goal(self, agent):
        response = await agent.submit_request("Please research electric bikes urgently")

        assert response.success
        goal = response.data
        assert goal["description"] == "Research electric bikes urgently."
        assert goal["priority"] == "critical"
        assert goal["metadata"]["template_id"] == "information_gathering"
        event = agent.scheduler.integrator.get_events()[-1]
        assert event.details == {"action": "goal_created", "goal_id": goal["id"]}

    @pytest.mark.asyncio
    async def test_tagalog_request_uses_cultural_template(self, agent):
        context = {"user_preferences": {"language": "tagalog"}}
        response = await agent.submit_request("Tulong, please", context)
        assert response.data["metadata"]["template_id"] == "cultural_adaptation"

    @pytest.mark.asyncio
    async def test_small_talk_needs_no_goal(self, agent):
        response = await agent.submit_request("Nice weather today")
        assert response.success
        assert response.data is None
        assert agent.scheduler.goals.list_goals() == []


# =============================================================================
# Status, preferences and context
# =============================================================================


class TestStatusAndPreferences:
    @pytest.mark.asyncio
    async def test_status(self, agent):
        await agent.add_goal("Research tide tables")
        response = await agent.get_status()

        assert response.success
        assert response.data["goal_count"] == 1
        assert response.data["active"] is False

    @pytest.mark.asyncio
    async def test_update_preferences(self, agent):
        response = await agent.update_preferences(autonomy_level="fully_autonomous")
        assert response.data["autonomy_level"] == "fully_autonomous"

    @pytest.mark.asyncio
    async def test_invalid_preferences(self, agent):
        response = await agent.update_preferences(autonomy_level="reckless")
        assert response.success is False

    @pytest.mark.asyncio
    async def test_update_context(self, agent):
        response = await agent.update_context({"environment": "mobile"}, reason="location_change")
        assert [c["field"] for c in response.data] == ["environment"]
        assert response.data[0]["reason"] == "location_change"

    @pytest.mark.asyncio
    async def test_reflection_summary(self, agent):
        response = await agent.get_reflection_summary()
        assert response.data["learning_patterns"] == 4


# =============================================================================
# Capabilities and lifecycle
# =============================================================================


class TestCapabilitiesAndLifecycle:
    @pytest.mark.asyncio
    async def test_register_and_execute(self, agent, make_capability):
        worker = make_capability("worker")
        assert (await agent.register_capability(worker)).data == "worker"

        goal_id = (await agent.add_goal("Process the batch")).data
        agent.scheduler.goals.add_task(goal_id, "Handle item", task_type="general", required_tools=["worker"])

        response = await agent.execute_goal(goal_id)

        assert response.success
        assert response.data is True
        assert len(worker.calls) == 1

    @pytest.mark.asyncio
    async def test_failed_integration(self, agent):
        class Unreachable:
            name = "remote"

            async def describe_capabilities(self):
                raise ConnectionError("refused")

            async def check_health(self):
                raise ConnectionError("refused")

            def get_capability(self, name):
                raise KeyError(name)

        response = await agent.integrate_provider(Unreachable())
        assert response.success is False
        assert "remote" in response.error

    @pytest.mark.asyncio
    async def test_run_cycle(self, agent):
        response = await agent.run_cycle()
        assert response.success
        assert response.data is True

    @pytest.mark.asyncio
    async def test_start_stop(self, agent):
        assert (await agent.start()).success
        assert agent.scheduler.is_active
        assert (await agent.stop()).success
        assert not agent.scheduler.is_active

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, agent):
        assert (await agent.pause()).success
        assert (await agent.get_status()).data["paused"] is True

        assert (await agent.resume()).success
        assert (await agent.get_status()).data["paused"] is False


class TestUnexpectedErrors:
    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_failed_response(self, agent, monkeypatch, caplog):
        def explode():
            raise RuntimeError("status table corrupted")

        monkeypatch.setattr(agent.scheduler, "get_status", explode)

        with caplog.at_level("ERROR", logger="agentloop.api"):
            response = await agent.get_status()

        assert response.success is False
        assert response.error == "RuntimeError: status table corrupted"
        assert "get_status failed unexpectedly" in caplog.text
