# src/agentloop/builtin/local_provider.py
"""
Local capability provider.

Two capabilities that need nothing outside the process:

``memory_service``
    Key-value notes kept in memory. Task parameters::

        {"action": "store", "key": "k", "value": ...}
        {"action": "recall", "key": "k"}
        {"action": "search", "query": "text"}

    Without an action the task description is stored under the task id.

``file_manager``
    Text files inside a workspace directory. Task parameters::

        {"action": "write", "path": "notes/a.txt", "content": "..."}
        {"action": "read", "path": "notes/a.txt"}
        {"action": "list", "path": "notes"}

    Paths are relative to the workspace and may not leave it.
"""

from __future__ import annotations

import logging
import os
import pathlib
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os as aios

from ..autonomous.capabilities import (
    Capability,
    CapabilityCategory,
    CapabilityDescriptor,
    ComplexityTier,
    HealthStatus,
    LatencyClass,
)
from ..autonomous.goals import Task
from ..exceptions import CapabilityError, CapabilityNotFoundError

logger = logging.getLogger(__name__)

PROVIDER_NAME = "local"


class MemoryServiceCapability:
    def __init__(self) -> None:
        self.descriptor = CapabilityDescriptor(
            name="memory_service",
            description="Store, recall and search memory notes and learned information",
            category=CapabilityCategory.MEMORY,
            complexity=ComplexityTier.LOW,
            latency=LatencyClass.FAST,
            reliability=0.94,
            provider=PROVIDER_NAME,
        )
        self._notes: Dict[str, Any] = {}

    async def execute(self, task: Task, context: Dict[str, Any]) -> Any:
        params = task.parameters
        action = params.get("action", "store")
        if action == "store":
            key = params.get("key", task.id)
            self._notes[key] = params.get("value", task.description)
            return {"stored": key}
        if action == "recall":
            key = params.get("key")
            if key not in self._notes:
                raise CapabilityError(self.descriptor.name, f"No note stored under '{key}'")
            return {"key": key, "value": self._notes[key]}
        if action == "search":
            query = str(params.get("query", "")).lower()
            return {
                "matches": {k: v for k, v in self._notes.items() if query in str(v).lower() or query in k.lower()}
            }
        raise CapabilityError(self.descriptor.name, f"Unsupported action '{action}'")

    def __len__(self) -> int:
        return len(self._notes)


class FileManagerCapability:
    def __init__(self, workspace: pathlib.Path) -> None:
        self.workspace = workspace
        self.descriptor = CapabilityDescriptor(
            name="file_manager",
            description="Read, write and list document files in the local workspace",
            category=CapabilityCategory.FILE,
            complexity=ComplexityTier.MEDIUM,
            latency=LatencyClass.FAST,
            reliability=0.9,
            provider=PROVIDER_NAME,
        )

    def _resolve(self, relative: str) -> pathlib.Path:
        root = self.workspace.resolve()
        target = (root / relative).resolve()
        if target != root and root not in target.parents:
            raise CapabilityError(self.descriptor.name, f"Path '{relative}' leaves the workspace")
        return target

    async def execute(self, task: Task, context: Dict[str, Any]) -> Any:
        params = task.parameters
        action = params.get("action", "list")
        path = self._resolve(str(params.get("path", ".")))

        if action == "write":
            await aios.makedirs(path.parent, exist_ok=True)
            content = str(params.get("content", task.description))
            async with aiofiles.open(path, mode="w", encoding="utf-8") as f:
                await f.write(content)
            return {"path": str(path.relative_to(self.workspace.resolve())), "bytes": len(content.encode("utf-8"))}

        if action == "read":
            if not await aios.path.isfile(path):
                raise CapabilityError(self.descriptor.name, f"File not found: {params.get('path')}")
            async with aiofiles.open(path, mode="r", encoding="utf-8") as f:
                return {"path": params.get("path"), "content": await f.read()}

        if action == "list":
            if not await aios.path.isdir(path):
                return {"entries": []}
            return {"entries": sorted(await aios.listdir(path))}

        raise CapabilityError(self.descriptor.name, f"Unsupported action '{action}'")


class LocalProvider:
    """
    Provider for the built-in ``memory_service`` and ``file_manager``.

    Args:
        workspace: Directory for ``file_manager``; created on demand.
    """

    name = PROVIDER_NAME

    def __init__(self, workspace: str | os.PathLike = "~/.local/share/agentloop/workspace") -> None:
        self.workspace = pathlib.Path(os.path.expanduser(str(workspace)))
        self._capabilities: Dict[str, Capability] = {}
        for capability in (MemoryServiceCapability(), FileManagerCapability(self.workspace)):
            self._capabilities[capability.descriptor.name] = capability

    async def describe_capabilities(self) -> List[CapabilityDescriptor]:
        await aios.makedirs(self.workspace, exist_ok=True)
        return [c.descriptor for c in self._capabilities.values()]

    async def check_health(self) -> HealthStatus:
        if await aios.path.isdir(self.workspace) and os.access(self.workspace, os.W_OK):
            return HealthStatus.HEALTHY
        logger.warning("Local workspace %s is not writable", self.workspace)
        return HealthStatus.DEGRADED

    def get_capability(self, name: str) -> Capability:
        capability: Optional[Capability] = self._capabilities.get(name)
        if capability is None:
            raise CapabilityNotFoundError(name)
        return capability
