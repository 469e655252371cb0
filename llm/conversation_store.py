"""
ConversationStateStore protocol.

Abstracts snapshot storage so the conversation service can work
with either an in-memory dict or a database backend.
"""

import copy
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class ConversationStateStore(Protocol):
    """Protocol for conversation snapshot persistence."""

    async def load(self, key: str) -> Optional[Dict[str, Any]]:
        """Get the stored snapshot, or None."""
        ...

    async def save(self, key: str, snapshot: Dict[str, Any]) -> None:
        """Replace the stored snapshot."""
        ...

    async def delete(self, key: str) -> bool:
        """Remove the snapshot. Returns whether one existed."""
        ...


class InMemoryConversationStateStore:
    """
    Process-local store.

    Snapshots are deep-copied on the way in and out so callers can never
    mutate stored state by accident.
    """

    def __init__(self):
        self._snapshots: Dict[str, Dict[str, Any]] = {}

    async def load(self, key: str) -> Optional[Dict[str, Any]]:
        snapshot = self._snapshots.get(key)
        return copy.deepcopy(snapshot) if snapshot is not None else None

    async def save(self, key: str, snapshot: Dict[str, Any]) -> None:
        self._snapshots[key] = copy.deepcopy(snapshot)

    async def delete(self, key: str) -> bool:
        return self._snapshots.pop(key, None) is not None

    def keys(self) -> List[str]:
        return list(self._snapshots)

    def __len__(self) -> int:
        return len(self._snapshots)
