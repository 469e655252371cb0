"""
Qualification Policy.

Decision rules over a Lead: qualify, disqualify, advisory
disqualification and risk monitoring. Only qualify/disqualify change
state; the rest are pure assessments.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from .errors import BusinessRuleError, ValidationError
from .lead import Lead
from .score import QUALIFIED_THRESHOLD
from .stage import KEY_STAGES, SalesStage

logger = logging.getLogger(__name__)


@dataclass
class DisqualificationAdvice:
    """Advisory result of should_disqualify."""
    recommended: bool
    factors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"recommended": self.recommended, "factors": self.factors}


@dataclass
class RiskAssessment:
    """Monitoring risk score (0-100)."""
    score: int
    level: str  # low | medium | high
    factors: List[str] = field(default_factory=list)
    recommendation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "level": self.level,
            "factors": self.factors,
            "recommendation": self.recommendation,
        }


@dataclass
class QualificationEvaluation:
    """Summary of where a lead stands against the qualification rules."""
    can_qualify: bool
    recommendation: str  # QUALIFY | CONTINUE_QUALIFICATION | FINAL
    score: int
    completed_stages: List[str] = field(default_factory=list)
    unmet_conditions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "can_qualify": self.can_qualify,
            "recommendation": self.recommendation,
            "score": self.score,
            "completed_stages": self.completed_stages,
            "unmet_conditions": self.unmet_conditions,
        }


class QualificationPolicy:
    """
    Qualification rules.

    A lead can be qualified when its score is at least 60 and the
    discovery, budget and authority stages are completed.
    """

    MIN_DISQUALIFY_FACTORS = 2
    CRITICAL_SCORE = 20
    LOW_SCORE = 40
    MIN_INTERACTIONS = 5

    # Risk weights
    RISK_WEIGHTS = {
        "low_score": 30,
        "incomplete_key_stages": 25,
        "low_interaction": 20,
        "inactive": 25,
    }

    def __init__(
        self,
        min_score: int = QUALIFIED_THRESHOLD,
        required_stages: Sequence[SalesStage] = KEY_STAGES,
        inactivity_disqualify_days: int = 30,
        inactivity_risk_days: int = 14,
    ):
        self.min_score = min_score
        self.required_stages = tuple(required_stages)
        self.inactivity_disqualify_days = inactivity_disqualify_days
        self.inactivity_risk_days = inactivity_risk_days

    # ── Qualify / disqualify ─────────────────────────────

    def unmet_conditions(self, lead: Lead) -> List[str]:
        """Conditions of can_qualify that do not hold (terminal state not included)."""
        unmet = []
        if lead.score.value < self.min_score:
            unmet.append(f"score {lead.score.value} is below {self.min_score}")
        for stage in self.required_stages:
            if not lead.is_stage_completed(stage):
                unmet.append(f"stage {stage.value} not completed")
        return unmet

    def can_qualify(self, lead: Lead) -> bool:
        return not self.unmet_conditions(lead)

    def qualify(self, lead: Lead, now: Optional[datetime] = None) -> Lead:
        """
        Move the lead to QUALIFIED.

        Raises:
            BusinessRuleError: listing every unmet condition; lead unchanged
        """
        unmet = self.unmet_conditions(lead)
        if lead.is_terminal:
            unmet.insert(0, f"lead is already {lead.stage.value}")
        if unmet:
            raise BusinessRuleError(
                f"Lead {lead.lead_id} cannot be qualified",
                violations=unmet,
                details={"lead_id": lead.lead_id, "score": lead.score.value},
            )
        lead.mark_qualified(now=now)
        logger.info(f"Lead {lead.lead_id} qualified with score {lead.score.value}")
        return lead

    def disqualify(self, lead: Lead, reason: str, now: Optional[datetime] = None) -> Lead:
        """
        Move the lead to DISQUALIFIED, recording reason and timestamp.

        Raises:
            ValidationError: empty reason
            BusinessRuleError: lead already terminal
        """
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError(
                "A disqualification reason is required",
                details={"kind": "missing_reason"},
            )
        lead.mark_disqualified(reason.strip(), now=now)
        logger.info(f"Lead {lead.lead_id} disqualified: {reason.strip()}")
        return lead

    @staticmethod
    def get_disqualification_reason(lead: Lead) -> Optional[str]:
        if lead.stage is not SalesStage.DISQUALIFIED:
            return None
        return lead.metadata.get("disqualification_reason")

    # ── Advisory ─────────────────────────────────────────

    def disqualification_factors(self, lead: Lead, now: Optional[datetime] = None) -> List[str]:
        factors = []
        if lead.score.value < self.CRITICAL_SCORE:
            factors.append(f"Critically low score ({lead.score.value})")
        if lead.get_stage_data(SalesStage.BUDGET).budget_confirmed is False:
            factors.append("No budget available")
        if lead.get_stage_data(SalesStage.AUTHORITY).decision_power == "none":
            factors.append("No decision authority")
        if lead.get_stage_data(SalesStage.TIMELINE).urgency == "none":
            factors.append("No implementation timeline")
        inactive = lead.days_inactive(now)
        if inactive > self.inactivity_disqualify_days:
            factors.append(f"Inactive for {int(inactive)} days")
        return factors

    def should_disqualify(self, lead: Lead, now: Optional[datetime] = None) -> DisqualificationAdvice:
        """Two or more independent negative factors recommend disqualification."""
        factors = self.disqualification_factors(lead, now)
        return DisqualificationAdvice(
            recommended=len(factors) >= self.MIN_DISQUALIFY_FACTORS,
            factors=factors,
        )

    def risk_score(self, lead: Lead, now: Optional[datetime] = None) -> RiskAssessment:
        risk, factors = 0, []
        if lead.score.value < self.LOW_SCORE:
            risk += self.RISK_WEIGHTS["low_score"]
            factors.append("Low qualification score")
        completed_key = sum(1 for s in KEY_STAGES if lead.is_stage_completed(s))
        if completed_key < 2:
            risk += self.RISK_WEIGHTS["incomplete_key_stages"]
            factors.append(f"Only {completed_key} of {len(KEY_STAGES)} key stages completed")
        if lead.interaction_count < self.MIN_INTERACTIONS:
            risk += self.RISK_WEIGHTS["low_interaction"]
            factors.append("Low engagement")
        if lead.days_inactive(now) > self.inactivity_risk_days:
            risk += self.RISK_WEIGHTS["inactive"]
            factors.append("Inactive lead")

        risk = min(100, risk)
        if risk > 60:
            level, recommendation = "high", "Consider disqualifying or re-engaging"
        elif risk > 30:
            level, recommendation = "medium", "Monitor closely"
        else:
            level, recommendation = "low", "Continue nurturing"
        return RiskAssessment(score=risk, level=level, factors=factors, recommendation=recommendation)

    def evaluate_qualification(self, lead: Lead) -> QualificationEvaluation:
        unmet = self.unmet_conditions(lead)
        if lead.is_terminal:
            unmet = []
            recommendation = "FINAL"
        elif unmet:
            recommendation = "CONTINUE_QUALIFICATION"
        else:
            recommendation = "QUALIFY"
        return QualificationEvaluation(
            can_qualify=not unmet and not lead.is_terminal,
            recommendation=recommendation,
            score=lead.score.value,
            completed_stages=[s.value for s in lead.completed_stages()],
            unmet_conditions=unmet,
        )
