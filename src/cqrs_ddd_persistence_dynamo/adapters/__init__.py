"""Store adapters that do not need a DynamoDB endpoint."""

from __future__ import annotations

from .memory import InMemoryKeyValueStore

__all__ = ["InMemoryKeyValueStore"]
