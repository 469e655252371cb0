"""
Lead Qualification Module.

This module provides the BANT qualification domain:
- Bounded score and ordered sales stages
- Typed per-stage data
- Lead aggregate
- Table-driven scoring rules and stage advancement
- Qualification policy (qualify, disqualify, risk)
- Archetype (tone profile) classification
- Handoff routing to a scheduling webhook
"""

from .errors import QualificationError, ValidationError, BusinessRuleError, ConversationNotFoundError
from .score import QualificationScore, ScoreLevel
from .stage import SalesStage, SpinPhase
from .stage_data import parse_stage_data, StageData
from .lead import Lead, StageRecord
from .scoring_rules import BANTScoringEngine, StageEvaluation, AdvanceResult
from .policy import QualificationPolicy, DisqualificationAdvice, RiskAssessment
from .archetypes import ArchetypeClassifier, ArchetypeProfile, ArchetypeState
from .progress import compute_progress
from .handoff import HandoffRouter, HandoffRequest

__all__ = [
    "QualificationError",
    "ValidationError",
    "BusinessRuleError",
    "ConversationNotFoundError",
    "QualificationScore",
    "ScoreLevel",
    "SalesStage",
    "SpinPhase",
    "parse_stage_data",
    "StageData",
    "Lead",
    "StageRecord",
    "BANTScoringEngine",
    "StageEvaluation",
    "AdvanceResult",
    "QualificationPolicy",
    "DisqualificationAdvice",
    "RiskAssessment",
    "ArchetypeClassifier",
    "ArchetypeProfile",
    "ArchetypeState",
    "compute_progress",
    "HandoffRouter",
    "HandoffRequest",
]
