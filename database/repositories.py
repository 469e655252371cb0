"""
Repository classes for the conversation state data access layer.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from qualification.clock import utc_now

from .models import ConversationEvent, ConversationState

logger = logging.getLogger(__name__)


def _summary(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    """Columns denormalized from a snapshot."""
    if snapshot.get("engine") == "support":
        return {
            "engine": "support",
            "stage": snapshot.get("state"),
            "phase": None,
            "score": None,
            "turn_count": snapshot.get("turn_count", 0),
        }
    lead = snapshot.get("lead") or {}
    return {
        "engine": "consultative",
        "stage": lead.get("stage"),
        "phase": (snapshot.get("phase") or {}).get("current"),
        "score": lead.get("score"),
        "turn_count": snapshot.get("turn_count", 0),
    }


class ConversationStateRepository:
    """Data access for conversation snapshots and their events."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_key(self, key: str) -> Optional[ConversationState]:
        result = await self.session.execute(
            select(ConversationState).where(ConversationState.key == key)
        )
        return result.scalar_one_or_none()

    async def upsert(self, key: str, snapshot: Dict[str, Any]) -> ConversationState:
        summary = _summary(snapshot)
        row = await self.get_by_key(key)
        if row is None:
            row = ConversationState(key=key, snapshot_json=snapshot, **summary)
            self.session.add(row)
            await self.session.flush()
            self.session.add(ConversationEvent(
                conversation_key=key,
                event_type="created",
                details_json={"engine": summary["engine"], "stage": summary["stage"]},
            ))
            await self.session.flush()
            return row

        if row.stage != summary["stage"]:
            self.session.add(ConversationEvent(
                conversation_key=key,
                event_type="stage_changed",
                details_json={"from": row.stage, "to": summary["stage"], "score": summary["score"]},
            ))
        if summary["phase"] and row.phase != summary["phase"]:
            self.session.add(ConversationEvent(
                conversation_key=key,
                event_type="phase_changed",
                details_json={"from": row.phase, "to": summary["phase"]},
            ))
        row.snapshot_json = snapshot
        for k, v in summary.items():
            setattr(row, k, v)
        row.updated_at = utc_now()
        await self.session.flush()
        return row

    async def delete(self, key: str) -> bool:
        result = await self.session.execute(
            delete(ConversationState).where(ConversationState.key == key)
        )
        await self.session.flush()
        return result.rowcount > 0

    async def list_by_stage(self, stage: str, engine: str = "consultative", limit: int = 50) -> List[ConversationState]:
        result = await self.session.execute(
            select(ConversationState)
            .where(ConversationState.engine == engine, ConversationState.stage == stage)
            .order_by(ConversationState.updated_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_events(self, key: str, limit: int = 100) -> List[ConversationEvent]:
        result = await self.session.execute(
            select(ConversationEvent)
            .where(ConversationEvent.conversation_key == key)
            .order_by(ConversationEvent.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())
