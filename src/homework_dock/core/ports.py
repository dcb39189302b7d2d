# src/homework_dock/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps storage backends and the remote analyze service swappable
and makes testing easier.
"""

from typing import Any, Awaitable, Callable, Protocol

from ..chat.messages import ChatMessage, ScopeKey
from ..pipeline.artifacts import Artifact


class KeyValueStore(Protocol):
    """
    Durable key/value store.

    Contract:
    - save() returns False on any failure (quota, backend error) and never raises,
    - load() returns None for missing or unreadable keys and never raises.
    """

    def save(self, key: str, value: Any) -> bool: ...
    def load(self, key: str) -> Any | None: ...
    def remove(self, key: str) -> bool: ...
    def keys(self, prefix: str = "") -> list[str]: ...


class Uploader(Protocol):
    """Remote upload/analyze endpoint: one round trip returns the storage ref and the analysis."""

    def upload(self, artifact: Artifact) -> Awaitable[dict[str, Any]]: ...


class ImageCompressor(Protocol):
    def compress(self, artifact: Artifact) -> Artifact: ...


MessageListener = Callable[[ScopeKey, list[ChatMessage]], None]
