"""
Conversation API Routes.

Turns, state snapshots and qualification decisions for consultative
conversations. Domain errors are mapped to HTTP status codes by the
handlers registered in api.main.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ..middleware.metrics import record_turn
from ..services import get_services

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Request / Response Models ─────────────────────────────────────

class TurnRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)


class TurnResponse(BaseModel):
    reply: str
    phase: str
    progress: int
    bant: Dict[str, Any]
    archetype: str
    ready_for_handoff: bool
    conversation_key: str
    turn: int
    funnel_stage: str
    lead_stage: str
    score: int
    plan_source: str
    degraded_steps: List[str] = []
    check_issues: List[str] = []
    repaired: bool = False
    extracted: Dict[str, Any] = {}
    rejected_values: Dict[str, str] = {}
    advance: Optional[Dict[str, Any]] = None
    advance_signals: List[str] = []
    regression_hint: Optional[Dict[str, Any]] = None
    objection: Optional[str] = None
    can_qualify: bool = False
    disqualification_advice: Dict[str, Any] = {}
    handoff_triggered: bool = False


class DisqualifyRequest(BaseModel):
    reason: str


def _conversations():
    services = get_services()
    if not services.is_ready:
        raise HTTPException(status_code=503, detail="Conversation service not ready")
    return services.conversations


# ── Endpoints ─────────────────────────────────────────────────────

@router.post("/conversations/{key}/turns", response_model=TurnResponse)
async def process_turn(key: str, request: TurnRequest):
    """
    Process one lead message.

    1. Plan  2. Extract BANT data  3. Write  4. Check  5. Repair
    """
    try:
        result = await _conversations().process_turn(key, request.message)
    except asyncio.TimeoutError:
        logger.error(f"Turn timed out for {key}")
        raise HTTPException(status_code=504, detail="Turn timed out; conversation state unchanged")
    record_turn(result)
    return TurnResponse(**result.to_dict())


@router.get("/conversations/{key}/state")
async def get_state(key: str):
    return await _conversations().get_state(key)


@router.put("/conversations/{key}/state")
async def restore_state(key: str, snapshot: Dict[str, Any]):
    return await _conversations().restore_state(key, snapshot)


@router.delete("/conversations/{key}")
async def delete_conversation(key: str):
    deleted = await _conversations().delete(key)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Conversation {key} not found")
    return {"conversation_key": key, "deleted": True}


@router.post("/conversations/{key}/qualify")
async def qualify(key: str):
    return {"conversation_key": key, "lead": await _conversations().qualify(key)}


@router.post("/conversations/{key}/disqualify")
async def disqualify(key: str, request: DisqualifyRequest):
    return {"conversation_key": key, "lead": await _conversations().disqualify(key, request.reason)}


@router.get("/conversations/{key}/assessment")
async def assessment(key: str):
    return await _conversations().assess(key)
