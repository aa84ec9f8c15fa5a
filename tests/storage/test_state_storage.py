# tests/storage/test_state_storage.py
"""
Tests for the agent state storage backends.

Every backend is exercised through the same contract; backend-specific
failure handling (corrupt files, missing paths) is tested separately.
"""

import json

import pytest
import pytest_asyncio

from agentloop.config import PersistenceConfig
from agentloop.exceptions import ConfigError, StorageError
from agentloop.storage import (
    JsonStateStorage,
    MemoryStateStorage,
    SqliteStateStorage,
    create_state_storage,
)

RECORD = {
    "agent_id": "alpha",
    "saved_at": "2024-03-04T10:00:00+00:00",
    "goals": [{"id": "goal_1", "task_ids": ["goal_1_task_0"]}],
    "tasks": [{"id": "goal_1_task_0", "goal_id": "goal_1"}],
    "preferences": {"autonomy_level": "guided"},
}


@pytest_asyncio.fixture(params=["json", "sqlite", "memory"])
async def storage(request, tmp_path):
    suffix = {"json": "state.json", "sqlite": "state.db", "memory": "unused"}[request.param]
    config = PersistenceConfig(backend=request.param, path=str(tmp_path / "nested" / suffix))
    backend = await create_state_storage(config)
    yield backend
    await backend.close()


# =============================================================================
# Shared contract
# =============================================================================


class TestStorageContract:
    @pytest.mark.asyncio
    async def test_missing_record(self, storage):
        assert await storage.load("nobody") is None

    @pytest.mark.asyncio
    async def test_save_and_load(self, storage):
        await storage.save("alpha", RECORD)
        assert await storage.load("alpha") == RECORD

    @pytest.mark.asyncio
    async def test_save_replaces(self, storage):
        await storage.save("alpha", RECORD)
        await storage.save("alpha", {**RECORD, "preferences": {}})
        loaded = await storage.load("alpha")
        assert loaded["preferences"] == {}

    @pytest.mark.asyncio
    async def test_records_are_keyed_by_agent(self, storage):
        await storage.save("beta", {"agent_id": "beta"})
        await storage.save("alpha", RECORD)

        assert await storage.list_agents() == ["alpha", "beta"]
        assert (await storage.load("beta"))["agent_id"] == "beta"

    @pytest.mark.asyncio
    async def test_delete(self, storage):
        await storage.save("alpha", RECORD)
        assert await storage.delete("alpha") is True
        assert await storage.delete("alpha") is False
        assert await storage.load("alpha") is None


# =============================================================================
# Factory
# =============================================================================


class TestFactory:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "backend,cls",
        [("json", JsonStateStorage), ("sqlite", SqliteStateStorage), ("memory", MemoryStateStorage)],
    )
    async def test_backend_selection(self, tmp_path, backend, cls):
        storage = await create_state_storage(PersistenceConfig(backend=backend, path=str(tmp_path / "s")))
        assert isinstance(storage, cls)
        await storage.close()

    @pytest.mark.asyncio
    async def test_unknown_backend(self):
        config = PersistenceConfig.model_construct(backend="redis", path="x", agent_id="a")
        with pytest.raises(ConfigError):
            await create_state_storage(config)


# =============================================================================
# Backend specifics
# =============================================================================


class TestJsonStateStorage:
    @pytest.mark.asyncio
    async def test_missing_path(self):
        with pytest.raises(ConfigError):
            await JsonStateStorage().initialize({})

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")
        storage = JsonStateStorage()
        await storage.initialize({"path": str(path)})

        with pytest.raises(StorageError):
            await storage.load("alpha")

    @pytest.mark.asyncio
    async def test_file_layout(self, tmp_path):
        path = tmp_path / "state.json"
        storage = JsonStateStorage()
        await storage.initialize({"path": str(path)})
        await storage.save("alpha", RECORD)

        assert json.loads(path.read_text(encoding="utf-8")) == {"alpha": RECORD}
        assert not (tmp_path / "state.json.tmp").exists()

    @pytest.mark.asyncio
    async def test_empty_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("", encoding="utf-8")
        storage = JsonStateStorage()
        await storage.initialize({"path": str(path)})
        assert await storage.list_agents() == []


class TestSqliteStateStorage:
    @pytest.mark.asyncio
    async def test_missing_path(self):
        with pytest.raises(ConfigError):
            await SqliteStateStorage().initialize({})

    @pytest.mark.asyncio
    async def test_use_after_close(self, tmp_path):
        storage = SqliteStateStorage()
        await storage.initialize({"path": str(tmp_path / "state.db")})
        await storage.close()

        with pytest.raises(StorageError):
            await storage.load("alpha")

    @pytest.mark.asyncio
    async def test_records_survive_reopen(self, tmp_path):
        path = str(tmp_path / "state.db")
        first = SqliteStateStorage()
        await first.initialize({"path": path})
        await first.save("alpha", RECORD)
        await first.close()

        second = SqliteStateStorage()
        await second.initialize({"path": path})
        assert await second.load("alpha") == RECORD
        await second.close()


class TestMemoryStateStorage:
    @pytest.mark.asyncio
    async def test_records_are_copied(self):
        storage = MemoryStateStorage()
        record = {"agent_id": "alpha", "goals": []}
        await storage.save("alpha", record)

        record["goals"].append("mutated")
        loaded = await storage.load("alpha")
        loaded["goals"].append("also mutated")

        assert (await storage.load("alpha"))["goals"] == []
