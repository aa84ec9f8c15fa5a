# src/agentloop/storage/memory_state.py
"""In-process state storage; records vanish with the process."""

import copy
from typing import Any, Dict, List, Optional

from .base_state import BaseStateStorage


class MemoryStateStorage(BaseStateStorage):
    """Keeps deep copies so callers cannot mutate stored records."""

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Any]] = {}

    async def initialize(self, config: Dict[str, Any]) -> None:
        pass

    async def load(self, agent_id: str) -> Optional[Dict[str, Any]]:
        record = self._records.get(agent_id)
        return copy.deepcopy(record) if record is not None else None

    async def save(self, agent_id: str, record: Dict[str, Any]) -> None:
        self._records[agent_id] = copy.deepcopy(record)

    async def delete(self, agent_id: str) -> bool:
        return self._records.pop(agent_id, None) is not None

    async def list_agents(self) -> List[str]:
        return sorted(self._records)

    async def close(self) -> None:
        pass
