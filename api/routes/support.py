"""
Support API Routes.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ..middleware.metrics import record_support_turn
from ..services import get_services

logger = logging.getLogger(__name__)

router = APIRouter()


class SupportTurnRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)


class SupportTurnResponse(BaseModel):
    reply: str
    state: str
    category: Optional[str] = None
    priority: str
    escalated: bool
    escalated_to: Optional[str] = None
    resolved: bool
    turn: int
    conversation_key: str
    analysis_source: str
    degraded_steps: list = []
    check_issues: list = []


def _support():
    services = get_services()
    if not services.is_ready:
        raise HTTPException(status_code=503, detail="Support service not ready")
    return services.support


@router.post("/support/{key}/turns", response_model=SupportTurnResponse)
async def process_support_turn(key: str, request: SupportTurnRequest):
    try:
        result = await _support().process_turn(key, request.message)
    except asyncio.TimeoutError:
        logger.error(f"Support turn timed out for {key}")
        raise HTTPException(status_code=504, detail="Turn timed out; conversation state unchanged")
    record_support_turn(result)
    return SupportTurnResponse(**result.to_dict())


@router.get("/support/{key}/state")
async def get_support_state(key: str):
    return await _support().get_state(key)
