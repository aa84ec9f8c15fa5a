# src/agentloop/storage/json_state.py
"""
JSON file storage for agent state records.

All records live in one JSON document keyed by agent id. Writes go to a
temporary file that is renamed over the target, so a reader sees either
the previous document or the new one. File I/O uses aiofiles.
"""

import json
import logging
import os
import pathlib
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os as aios

from ..exceptions import ConfigError, StorageError
from .base_state import BaseStateStorage

logger = logging.getLogger(__name__)


class JsonStateStorage(BaseStateStorage):
    """Keeps every agent record in a single JSON file."""

    _path: pathlib.Path

    async def initialize(self, config: Dict[str, Any]) -> None:
        """
        Args:
            config: Expected keys:
                    'path': File holding the records (created on first save).

        Raises:
            ConfigError: If 'path' is missing.
            StorageError: If the parent directory cannot be created.
        """
        path_str = config.get("path")
        if not path_str:
            raise ConfigError("JSON state storage 'path' not specified in configuration.")
        self._path = pathlib.Path(os.path.expandvars(os.path.expanduser(str(path_str))))
        try:
            await aios.makedirs(self._path.parent, exist_ok=True)
        except OSError as e:
            logger.error("Failed to create state directory %s: %s", self._path.parent, e)
            raise StorageError(f"Could not create state directory: {e}")
        logger.info("JSON state storage initialized at: %s", self._path)

    @property
    def path(self) -> pathlib.Path:
        return self._path

    async def _read_all(self) -> Dict[str, Any]:
        if not await aios.path.exists(self._path):
            return {}
        try:
            async with aiofiles.open(self._path, mode="r", encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            logger.error("Error reading state file %s: %s", self._path, e)
            raise StorageError(f"Failed to read state file: {e}")
        if not content.strip():
            return {}
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error("Corrupted state file %s: %s", self._path, e)
            raise StorageError(f"Corrupted state file '{self._path}': {e}")
        if not isinstance(data, dict):
            raise StorageError(f"State file '{self._path}' does not hold a JSON object")
        return data

    async def _write_all(self, data: Dict[str, Any]) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            payload = json.dumps(data, indent=2, default=str)
        except (TypeError, ValueError) as e:
            raise StorageError(f"State record is not JSON serializable: {e}")
        try:
            async with aiofiles.open(tmp_path, mode="w", encoding="utf-8") as f:
                await f.write(payload)
            await aios.replace(tmp_path, self._path)
        except OSError as e:
            logger.error("Failed to write state file %s: %s", self._path, e)
            if await aios.path.exists(tmp_path):
                try:
                    await aios.remove(tmp_path)
                except OSError as cleanup_error:
                    logger.warning("Could not remove %s: %s", tmp_path, cleanup_error)
            raise StorageError(f"Failed to write state file: {e}")

    async def load(self, agent_id: str) -> Optional[Dict[str, Any]]:
        record = (await self._read_all()).get(agent_id)
        if record is None:
            logger.debug("No stored state for agent '%s'", agent_id)
        return record

    async def save(self, agent_id: str, record: Dict[str, Any]) -> None:
        data = await self._read_all()
        data[agent_id] = record
        await self._write_all(data)
        logger.debug("State for agent '%s' saved to %s", agent_id, self._path)

    async def delete(self, agent_id: str) -> bool:
        data = await self._read_all()
        if agent_id not in data:
            return False
        del data[agent_id]
        await self._write_all(data)
        return True

    async def list_agents(self) -> List[str]:
        return sorted(await self._read_all())

    async def close(self) -> None:
        pass
