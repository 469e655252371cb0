"""
Database-backed ConversationStateStore.

Implements the ConversationStateStore protocol using the repository layer.
Each call runs in its own session and commits before returning.
"""

import copy
import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.repositories import ConversationStateRepository

logger = logging.getLogger(__name__)


class DbConversationStateStore:
    """Persistent snapshot store backed by PostgreSQL or SQLite."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load(self, key: str) -> Optional[Dict[str, Any]]:
        async with self._session_factory() as session:
            row = await ConversationStateRepository(session).get_by_key(key)
            if row is None:
                return None
            return copy.deepcopy(row.snapshot_json)

    async def save(self, key: str, snapshot: Dict[str, Any]) -> None:
        async with self._session_factory() as session:
            try:
                await ConversationStateRepository(session).upsert(key, copy.deepcopy(snapshot))
                await session.commit()
            except Exception:
                await session.rollback()
                logger.error(f"Failed to save conversation state {key}")
                raise

    async def delete(self, key: str) -> bool:
        async with self._session_factory() as session:
            deleted = await ConversationStateRepository(session).delete(key)
            await session.commit()
        if deleted:
            logger.debug(f"Conversation state {key} deleted")
        return deleted
