# src/agentloop/builtin/__init__.py
"""Capability providers that ship with agentloop."""

from .local_provider import FileManagerCapability, LocalProvider, MemoryServiceCapability

__all__ = ["LocalProvider", "MemoryServiceCapability", "FileManagerCapability"]
