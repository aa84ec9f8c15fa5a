# tests/config/test_agent_config.py
"""
Tests for the agent configuration models and loader.
"""

import pytest
from pydantic import ValidationError

from agentloop.config import (
    AgentConfig,
    PersistenceConfig,
    SchedulerConfig,
    load_agent_config,
)


class TestDefaults:
    def test_defaults(self):
        config = AgentConfig()
        assert config.scheduler.tick_interval_seconds == 5.0
        assert config.scheduler.max_concurrent_tasks == 3
        assert config.scheduler.error_threshold == 5
        assert config.scheduler.error_lookback_seconds == 3600.0
        assert config.goals.max_task_retries == 3
        assert config.goals.history_capacity == 1000
        assert config.reflection.action_item_capacity == 200
        assert config.tools.relevance_threshold == 0.3
        assert config.context.auto_apply_confidence == 0.9
        assert config.persistence.backend == "json"
        assert config.logging == {}


class TestValidation:
    def test_tick_must_be_positive(self):
        with pytest.raises(ValidationError):
            SchedulerConfig(tick_interval_seconds=0)

    def test_unknown_backend(self):
        with pytest.raises(ValidationError):
            PersistenceConfig(backend="redis")

    def test_empty_agent_id(self):
        with pytest.raises(ValidationError):
            PersistenceConfig(agent_id="")

    def test_path_expansion(self, monkeypatch):
        monkeypatch.setenv("AGENTLOOP_TEST_DIR", "/srv/agent")
        config = PersistenceConfig(path="$AGENTLOOP_TEST_DIR/state.json")
        assert config.path == "/srv/agent/state.json"

    def test_tilde_expansion(self):
        assert not PersistenceConfig(path="~/state.json").path.startswith("~")


class TestLoadAgentConfig:
    def test_from_dict_unwraps_agent_key(self):
        config = load_agent_config(config_dict={"agent": {"tools": {"max_tools_per_task": 2}}})
        assert config.tools.max_tools_per_task == 2

    def test_from_plain_dict(self):
        config = load_agent_config(config_dict={"goals": {"max_task_retries": 5}})
        assert config.goals.max_task_retries == 5

    def test_no_sources_gives_defaults(self):
        assert load_agent_config() == AgentConfig()

    def test_from_toml(self, tmp_path):
        path = tmp_path / "agent.toml"
        path.write_text(
            "[agent.scheduler]\n"
            "max_concurrent_tasks = 7\n"
            "\n"
            "[agent.persistence]\n"
            'backend = "sqlite"\n'
            "\n"
            "[logging]\n"
            'console_level = "DEBUG"\n',
            encoding="utf-8",
        )

        config = load_agent_config(config_path=path)

        assert config.scheduler.max_concurrent_tasks == 7
        assert config.persistence.backend == "sqlite"
        assert config.logging == {"console_level": "DEBUG"}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_agent_config(config_path=tmp_path / "missing.toml")

    def test_invalid_value(self):
        with pytest.raises(ValidationError):
            load_agent_config(config_dict={"scheduler": {"max_concurrent_tasks": 0}})
