# src/agentloop/storage/sqlite_state.py
"""
SQLite storage for agent state records using aiosqlite.

One row per agent id; the record itself is stored as JSON text.
"""

import json
import logging
import os
import pathlib
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiosqlite

from ..exceptions import ConfigError, StorageError
from .base_state import BaseStateStorage

logger = logging.getLogger(__name__)

DEFAULT_STATE_TABLE = "agent_state"


class SqliteStateStorage(BaseStateStorage):
    """Agent state records in a SQLite database file."""

    _db_path: pathlib.Path
    _conn: Optional[aiosqlite.Connection] = None
    _table: str = DEFAULT_STATE_TABLE

    async def initialize(self, config: Dict[str, Any]) -> None:
        """
        Args:
            config: Expected keys:
                    'path': Database file.
                    'table_name' (optional): Defaults to ``agent_state``.

        Raises:
            ConfigError: If 'path' is missing.
            StorageError: If the database cannot be opened or the table created.
        """
        path_str = config.get("path")
        if not path_str:
            raise ConfigError("SQLite state storage 'path' not specified in configuration.")
        self._db_path = pathlib.Path(os.path.expandvars(os.path.expanduser(str(path_str))))
        self._table = config.get("table_name", DEFAULT_STATE_TABLE)

        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(self._db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    agent_id TEXT PRIMARY KEY,
                    saved_at TEXT NOT NULL,
                    record TEXT NOT NULL
                )
            """)
            await self._conn.commit()
            logger.info("SQLite state storage initialized at: %s", self._db_path)
        except (aiosqlite.Error, OSError) as e:
            logger.error("Failed to initialize SQLite state storage at %s: %s", self._db_path, e)
            if self._conn:
                await self._conn.close()
                self._conn = None
            raise StorageError(f"Could not initialize SQLite database: {e}")

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageError("Database connection not initialized.")
        return self._conn

    async def load(self, agent_id: str) -> Optional[Dict[str, Any]]:
        conn = self._connection()
        try:
            async with conn.execute(
                f"SELECT record FROM {self._table} WHERE agent_id = ?", (agent_id,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageError(f"Database error loading state for '{agent_id}': {e}")
        if row is None:
            return None
        try:
            return json.loads(row["record"])
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupted state record for '{agent_id}': {e}")

    async def save(self, agent_id: str, record: Dict[str, Any]) -> None:
        conn = self._connection()
        try:
            payload = json.dumps(record, default=str)
        except (TypeError, ValueError) as e:
            raise StorageError(f"State record is not JSON serializable: {e}")
        saved_at = record.get("saved_at") or datetime.now(timezone.utc).isoformat()
        try:
            await conn.execute(
                f"INSERT OR REPLACE INTO {self._table} (agent_id, saved_at, record) VALUES (?, ?, ?)",
                (agent_id, str(saved_at), payload),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            logger.error("aiosqlite error saving state for '%s': %s", agent_id, e)
            try:
                await conn.rollback()
            except aiosqlite.Error as rb_e:
                logger.error("Rollback failed: %s", rb_e)
            raise StorageError(f"Database error saving state for '{agent_id}': {e}")
        logger.debug("State for agent '%s' saved to %s", agent_id, self._db_path)

    async def delete(self, agent_id: str) -> bool:
        conn = self._connection()
        try:
            cursor = await conn.execute(f"DELETE FROM {self._table} WHERE agent_id = ?", (agent_id,))
            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Database error deleting state for '{agent_id}': {e}")
        return cursor.rowcount > 0

    async def list_agents(self) -> List[str]:
        conn = self._connection()
        try:
            async with conn.execute(f"SELECT agent_id FROM {self._table} ORDER BY agent_id") as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(f"Database error listing agents: {e}")
        return [row["agent_id"] for row in rows]

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.debug("SQLite state storage closed")
