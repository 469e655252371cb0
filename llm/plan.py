"""
Planner output model.

The planner returns JSON; it is validated into a Plan. When the call
fails or the JSON is unusable a deterministic fallback plan is used, and
PlanOutcome records which one the turn ran on.
"""

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config.agent_config import PhaseConfig


class LeadAnalysis(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str = ""
    sentiment: str = "neutral"  # positive | neutral | negative | resistant
    intent: str = "answer"  # question | answer | objection | interest
    pain_mentioned: Optional[str] = None


class PhaseDecision(BaseModel):
    model_config = ConfigDict(extra="ignore")

    should_advance: bool = False
    reason: str = ""


class WriterInstructions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    response_type: str = "exploration"
    hook: str = "Mirror what the lead just said"
    fact: str = "Validate the current situation"
    question: str = "Ask about the current scenario"
    target_field: Optional[str] = None
    tone: Optional[str] = None


class Plan(BaseModel):
    model_config = ConfigDict(extra="ignore")

    lead_analysis: LeadAnalysis = Field(default_factory=LeadAnalysis)
    phase_decision: PhaseDecision = Field(default_factory=PhaseDecision)
    extracted_data: Dict[str, Any] = Field(default_factory=dict)
    writer_instructions: WriterInstructions = Field(default_factory=WriterInstructions)
    objection: Optional[str] = None
    tone_directives: List[str] = Field(default_factory=list)
    avoid: List[str] = Field(default_factory=list)

    @field_validator("objection", mode="before")
    @classmethod
    def _objection(cls, v):
        if v is None:
            return None
        v = str(v).strip().lower()
        return None if v in ("", "null", "none") else v

    @field_validator("extracted_data", mode="before")
    @classmethod
    def _extracted(cls, v):
        return v if isinstance(v, dict) else {}

    @property
    def should_advance(self) -> bool:
        return self.phase_decision.should_advance


class PlanSource(Enum):
    LLM = "llm"
    FALLBACK = "fallback"


@dataclass
class PlanOutcome:
    plan: Plan
    source: PlanSource
    error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.source is PlanSource.FALLBACK


_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_plan(raw: str) -> Plan:
    """
    Parse planner output.

    Raises:
        ValueError: not a JSON object or not a valid plan
            (pydantic's ValidationError is a ValueError)
    """
    text = _FENCE.sub("", (raw or "").strip())
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("planner output is not a JSON object")
    return Plan.model_validate(data)


def fallback_plan(phase_config: PhaseConfig, missing_fields: List[str]) -> Plan:
    """Neutral plan: exploratory question, no advance, no extraction."""
    return Plan(
        lead_analysis=LeadAnalysis(summary="message processed"),
        phase_decision=PhaseDecision(should_advance=False, reason="planner unavailable"),
        extracted_data={},
        writer_instructions=WriterInstructions(
            target_field=missing_fields[0] if missing_fields else None,
            tone=phase_config.tone,
        ),
    )
