# src/agentloop/storage/base_state.py
"""
Abstract Base Class for agent state storage backends.

A backend stores one JSON-safe record per agent id. The record layout is
owned by ``agentloop.autonomous.state``; backends treat it as an opaque
dictionary.
"""

import abc
from typing import Any, Dict, List, Optional


class BaseStateStorage(abc.ABC):
    """
    Contract every agent state backend implements.

    Concrete implementations decide where the records live (a JSON file,
    a SQLite database, process memory).
    """

    @abc.abstractmethod
    async def initialize(self, config: Dict[str, Any]) -> None:
        """
        Prepare the backend (create directories, open connections).

        Args:
            config: Backend-specific settings, typically ``{"path": ...}``.

        Raises:
            ConfigError: If required settings are missing.
            StorageError: If the backend cannot be prepared.
        """
        pass

    @abc.abstractmethod
    async def load(self, agent_id: str) -> Optional[Dict[str, Any]]:
        """
        Return the stored record for ``agent_id`` or None if there is none.

        Raises:
            StorageError: If the stored data cannot be read or decoded.
        """
        pass

    @abc.abstractmethod
    async def save(self, agent_id: str, record: Dict[str, Any]) -> None:
        """
        Create or replace the record for ``agent_id``.

        Raises:
            StorageError: If the record cannot be written.
        """
        pass

    @abc.abstractmethod
    async def delete(self, agent_id: str) -> bool:
        """Remove the record; True if one existed."""
        pass

    @abc.abstractmethod
    async def list_agents(self) -> List[str]:
        """Ids of all agents with a stored record."""
        pass

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources held by the backend."""
        pass
