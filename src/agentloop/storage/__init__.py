# src/agentloop/storage/__init__.py
"""
State storage backends for agentloop.

``create_state_storage`` picks and initializes the backend named in a
``PersistenceConfig``.
"""

from typing import Dict, Type

from ..config import PersistenceConfig
from ..exceptions import ConfigError
from .base_state import BaseStateStorage
from .json_state import JsonStateStorage
from .memory_state import MemoryStateStorage
from .sqlite_state import SqliteStateStorage

STORAGE_BACKENDS: Dict[str, Type[BaseStateStorage]] = {
    "json": JsonStateStorage,
    "sqlite": SqliteStateStorage,
    "memory": MemoryStateStorage,
}


async def create_state_storage(config: PersistenceConfig) -> BaseStateStorage:
    """
    Instantiate and initialize the configured backend.

    Raises:
        ConfigError: For an unknown backend name.
        StorageError: If the backend cannot be initialized.
    """
    backend_cls = STORAGE_BACKENDS.get(config.backend)
    if backend_cls is None:
        raise ConfigError(f"Unknown state storage backend: '{config.backend}'")
    storage = backend_cls()
    await storage.initialize({"path": config.path})
    return storage


__all__ = [
    "BaseStateStorage",
    "JsonStateStorage",
    "SqliteStateStorage",
    "MemoryStateStorage",
    "STORAGE_BACKENDS",
    "create_state_storage",
]
