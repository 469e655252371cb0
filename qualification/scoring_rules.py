"""
BANT Scoring Rules Engine.

Turns structured stage data into a completion flag and a score delta,
writes the result onto the lead, and handles stage advancement.

Re-evaluating a stage overwrites its record and only applies the
difference between the new delta and the one already applied, so
replaying identical data never moves the score twice.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import BusinessRuleError
from .lead import Lead
from .stage import SalesStage
from .stage_data import (
    AuthorityData,
    BudgetData,
    DiscoveryData,
    NeedData,
    StageData,
    TimelineData,
    parse_stage_data,
)

logger = logging.getLogger(__name__)


@dataclass
class StageEvaluation:
    """Result of evaluating one stage's data."""
    stage: SalesStage
    completed: bool
    score_delta: int
    reasons: List[str] = field(default_factory=list)
    missing_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "completed": self.completed,
            "score_delta": self.score_delta,
            "reasons": self.reasons,
            "missing_fields": self.missing_fields,
        }


@dataclass
class AdvanceResult:
    """Outcome of an advancement attempt."""
    advanced: bool
    previous_stage: SalesStage
    current_stage: SalesStage
    reason: str = ""
    evaluation: Optional[StageEvaluation] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "advanced": self.advanced,
            "previous_stage": self.previous_stage.value,
            "current_stage": self.current_stage.value,
            "reason": self.reason,
            "evaluation": self.evaluation.to_dict() if self.evaluation else None,
        }


class BANTScoringEngine:
    """
    Table-driven BANT scoring.

    Scoring Rules:
    - Discovery: pain identified +15, urgent +10, critical +15, low urgency -5
    - Budget: confirmed +20, estimated +15, no budget -20, flexible +10
    - Authority: decision maker +20, influencer +10, technical +5, none -15
    - Need: fit confirmed +15, exploring +10, not urgent -5
    - Timeline: immediate +15, 1-3 months +10, 3-6 months +5, longer 0,
      no timeline -10
    """

    SCORING_RULES = {
        "discovery": {
            "identified": 15,
            "urgent": 10,
            "critical": 15,
            "low_priority": -5,
        },
        "budget": {
            "confirmed": 20,
            "estimated": 15,
            "flexible": 10,
            "no_budget": -20,
        },
        "authority": {
            "decision_maker": 20,
            "influencer": 10,
            "technical": 5,
            "no_authority": -15,
        },
        "need": {
            "confirmed": 15,
            "exploring": 10,
            "not_urgent": -5,
        },
        "timeline": {
            "immediate": 15,
            "short_term": 10,
            "medium_term": 5,
            "long_term": 0,
            "no_timeline": -10,
        },
        "icp": {
            "icp_match": 15,
            "partial_match": 5,
            "no_match": -10,
        },
    }

    # Minimum inbound messages spent in a stage before it can be left
    STAGE_REQUIREMENTS = {
        SalesStage.DISCOVERY: {"min_interactions": 2},
        SalesStage.BUDGET: {"min_interactions": 1},
        SalesStage.AUTHORITY: {"min_interactions": 1},
        SalesStage.NEED: {"min_interactions": 1},
        SalesStage.TIMELINE: {"min_interactions": 1},
    }

    def __init__(self, rules: Optional[Dict[str, Dict[str, int]]] = None):
        self.rules = {k: dict(v) for k, v in self.SCORING_RULES.items()}
        for stage, overrides in (rules or {}).items():
            self.rules.setdefault(stage, {}).update(overrides)

    # ── Evaluation ───────────────────────────────────────

    def evaluate(self, stage, data) -> StageEvaluation:
        """
        Evaluate stage data. Pure: does not touch any lead.

        Raises:
            ValidationError: unknown/terminal stage or malformed data
        """
        parsed = parse_stage_data(stage, data)
        delta, reasons = self._EVALUATORS[type(parsed)](self, parsed)
        return StageEvaluation(
            stage=parsed.stage,
            completed=parsed.is_complete(),
            score_delta=delta,
            reasons=reasons,
            missing_fields=parsed.missing_fields(),
        )

    def _evaluate_discovery(self, data: DiscoveryData):
        rules = self.rules["discovery"]
        delta, reasons = 0, []
        if data.pain_points:
            delta += rules["identified"]
            reasons.append("Pain point identified")
        if data.urgency == "critical":
            delta += rules["critical"]
            reasons.append("Critical urgency")
        elif data.urgency == "urgent":
            delta += rules["urgent"]
            reasons.append("Urgent need")
        elif data.urgency == "low":
            delta += rules["low_priority"]
            reasons.append("Low priority pain")
        return delta, reasons

    def _evaluate_budget(self, data: BudgetData):
        rules = self.rules["budget"]
        delta, reasons = 0, []
        if data.budget_confirmed is True:
            delta += rules["confirmed"]
            reasons.append("Budget confirmed")
        elif data.budget_range:
            delta += rules["estimated"]
            reasons.append(f"Budget estimated: {data.budget_range}")
        elif data.budget_confirmed is False:
            delta += rules["no_budget"]
            reasons.append("No budget available")
        if data.flexibility == "flexible":
            delta += rules["flexible"]
            reasons.append("Flexible budget")
        return delta, reasons

    def _evaluate_authority(self, data: AuthorityData):
        rules = self.rules["authority"]
        if data.decision_maker is True or data.decision_power == "final":
            return rules["decision_maker"], ["Talking to the decision maker"]
        if data.decision_power == "influencer":
            return rules["influencer"], ["Influences the decision"]
        if data.decision_power == "technical":
            return rules["technical"], ["Technical evaluator only"]
        if data.decision_power == "none":
            return rules["no_authority"], ["No decision authority"]
        if data.decision_maker is False:
            return 0, ["Not the decision maker"]
        return 0, []

    def _evaluate_need(self, data: NeedData):
        rules = self.rules["need"]
        if data.solution_fit == "confirmed":
            return rules["confirmed"], ["Solution fit confirmed"]
        if data.solution_fit == "exploring":
            return rules["exploring"], ["Still exploring the fit"]
        if data.urgency == "not_urgent":
            return rules["not_urgent"], ["Need is not urgent"]
        if data.solution_fit == "no_fit":
            return 0, ["Solution does not fit"]
        return 0, []

    def _evaluate_timeline(self, data: TimelineData):
        rules = self.rules["timeline"]
        horizon = data.horizon()
        if horizon is None:
            if data.urgency == "none":
                return rules["no_timeline"], ["No implementation timeline"]
            return 0, []
        labels = {
            "immediate": "Immediate timeline",
            "short_term": "Short-term timeline (1-3 months)",
            "medium_term": "Medium-term timeline (3-6 months)",
            "long_term": "Long-term timeline",
        }
        return rules[horizon], [labels[horizon]]

    _EVALUATORS = {
        DiscoveryData: _evaluate_discovery,
        BudgetData: _evaluate_budget,
        AuthorityData: _evaluate_authority,
        NeedData: _evaluate_need,
        TimelineData: _evaluate_timeline,
    }

    def missing_required_fields(self, stage, data=None) -> List[str]:
        return parse_stage_data(stage, data).missing_fields()

    # ── Lead updates ─────────────────────────────────────

    def process_stage_update(
        self,
        lead: Lead,
        stage,
        data,
        now: Optional[datetime] = None,
    ) -> StageEvaluation:
        """
        Evaluate stage data and write it onto the lead.

        The stage record is overwritten and the score moves by the
        difference from the previously applied delta for that stage.

        Raises:
            ValidationError: unknown stage or malformed data (no mutation)
            BusinessRuleError: lead is terminal (no mutation)
        """
        parsed = parse_stage_data(stage, data)
        evaluation = self.evaluate(parsed.stage, parsed)

        previous = lead.stage_record(parsed.stage)
        applied = previous.score_delta if previous else 0

        lead.write_stage_record(
            parsed.stage,
            parsed,
            completed=evaluation.completed,
            score_delta=evaluation.score_delta,
            reasons=evaluation.reasons,
            now=now,
        )
        adjustment = evaluation.score_delta - applied
        if adjustment:
            lead.apply_score_delta(adjustment)

        logger.info(
            f"Stage {parsed.stage.value} evaluated for {lead.lead_id}: "
            f"completed={evaluation.completed} delta={evaluation.score_delta} "
            f"score={lead.score.value}"
        )
        return evaluation

    def advance(
        self,
        lead: Lead,
        data: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> AdvanceResult:
        """
        Process the current stage and move to the next one if allowed.

        The current stage is evaluated first (with `data`, or the stored
        record). Advancement is refused, without changing the stage, when the
        stage is not completed, when it has had too few interactions, or when
        there is no next ordinal stage.

        Raises:
            BusinessRuleError: the lead is qualified or disqualified
        """
        current = lead.stage
        if lead.is_terminal:
            raise BusinessRuleError(
                f"Cannot advance a {current.value} lead",
                violations=[f"lead is {current.value}"],
            )

        stage_input = data if data is not None else lead.stage_fields(current)
        if data is not None and lead.stage_record(current):
            stage_input = lead.get_stage_data(current).merged(
                parse_stage_data(current, data).fields()
            )
        evaluation = self.process_stage_update(lead, current, stage_input, now=now)

        def refused(reason: str) -> AdvanceResult:
            logger.info(f"Advance refused for {lead.lead_id} at {current.value}: {reason}")
            return AdvanceResult(
                advanced=False,
                previous_stage=current,
                current_stage=current,
                reason=reason,
                evaluation=evaluation,
            )

        if not evaluation.completed:
            missing = ", ".join(evaluation.missing_fields)
            return refused(f"Stage {current.value} not completed (missing {missing})")

        required = self.STAGE_REQUIREMENTS[current]["min_interactions"]
        if lead.interactions_in(current) < required:
            return refused(
                f"Stage {current.value} needs at least {required} interactions "
                f"(has {lead.interactions_in(current)})"
            )

        next_stage = current.next()
        if next_stage is None:
            return refused(f"No stage after {current.value}; use the qualification policy")

        lead.move_to_stage(next_stage, now=now)
        logger.info(f"Lead {lead.lead_id} advanced {current.value} -> {next_stage.value}")
        return AdvanceResult(
            advanced=True,
            previous_stage=current,
            current_stage=next_stage,
            reason=f"Stage {current.value} completed",
            evaluation=evaluation,
        )

    def next_stage_recommendation(self, lead: Lead) -> Dict[str, Any]:
        """Suggest what the conversation should do next for this lead."""
        if lead.is_terminal:
            return {"action": "FINAL", "stage": lead.stage.value, "missing_fields": []}

        data = lead.get_stage_data(lead.stage)
        missing = data.missing_fields()
        if missing or not lead.is_stage_completed(lead.stage):
            return {
                "action": "COMPLETE_CURRENT",
                "stage": lead.stage.value,
                "missing_fields": missing,
            }
        next_stage = lead.stage.next()
        return {
            "action": "ADVANCE" if next_stage else "QUALIFY",
            "stage": (next_stage or lead.stage).value,
            "missing_fields": [],
        }

    def icp_match(self, lead: Lead, criteria: Dict[str, Any]) -> StageEvaluation:
        """
        Score the lead's company against an ideal customer profile.

        criteria keys: sectors (list), company_size (str, optional).
        Returns a pure evaluation; the caller decides whether to apply it.
        """
        rules = self.rules["icp"]
        sectors = [s.lower() for s in criteria.get("sectors", [])]
        delta, reasons = 0, []
        if lead.sector and sectors:
            if lead.sector.lower() in sectors:
                delta += rules["icp_match"]
                reasons.append(f"Sector {lead.sector} matches ICP")
            else:
                delta += rules["no_match"]
                reasons.append(f"Sector {lead.sector} outside ICP")
        size = criteria.get("company_size")
        if size and lead.metadata.get("company_size") == size:
            delta += rules["partial_match"]
            reasons.append("Company size matches ICP")
        return StageEvaluation(
            stage=lead.stage,
            completed=bool(reasons),
            score_delta=delta,
            reasons=reasons,
        )
