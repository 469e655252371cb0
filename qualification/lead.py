"""
Lead aggregate.

Holds the qualification state of one conversation: current stage, score,
per-stage data records, counters and metadata. Stage records are keyed by
stage and overwritten on re-evaluation.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .clock import as_utc, parse_timestamp, utc_now
from .errors import BusinessRuleError, ValidationError
from .score import QualificationScore
from .stage import SalesStage
from .stage_data import StageData, model_for, parse_stage_data

logger = logging.getLogger(__name__)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"Invalid timestamp: {value!r}", details={"kind": "invalid_snapshot"}
        ) from None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class StageRecord:
    """Stored evaluation of one stage."""
    stage: SalesStage
    fields: Dict[str, Any] = field(default_factory=dict)
    completed: bool = False
    evaluated_at: Optional[datetime] = None
    score_delta: int = 0
    reasons: List[str] = field(default_factory=list)

    def data(self) -> StageData:
        return parse_stage_data(self.stage, self.fields)

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.fields,
            "completed": self.completed,
            "evaluated_at": _iso(self.evaluated_at),
            "score_delta": self.score_delta,
            "reasons": list(self.reasons),
        }

    @classmethod
    def from_dict(cls, stage: SalesStage, data: Dict[str, Any]) -> "StageRecord":
        data = dict(data)
        completed = bool(data.pop("completed", False))
        evaluated_at = _parse_dt(data.pop("evaluated_at", None))
        score_delta = int(data.pop("score_delta", 0))
        reasons = list(data.pop("reasons", []))
        fields = parse_stage_data(stage, data).fields()
        return cls(
            stage=stage,
            fields=fields,
            completed=completed,
            evaluated_at=evaluated_at,
            score_delta=score_delta,
            reasons=reasons,
        )


@dataclass
class Lead:
    """
    Aggregate root for qualification state, keyed by conversation key.

    Terminal transitions go through QualificationPolicy, which checks the
    qualification rules before calling mark_qualified/mark_disqualified.
    """
    lead_id: str
    stage: SalesStage = SalesStage.DISCOVERY
    score: QualificationScore = field(default_factory=QualificationScore)
    stage_data: Dict[SalesStage, StageRecord] = field(default_factory=dict)

    # Counters
    interaction_count: int = 0
    message_count: int = 0
    stage_interactions: Dict[SalesStage, int] = field(default_factory=dict)

    # Contact
    name: Optional[str] = None
    company: Optional[str] = None
    sector: Optional[str] = None

    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    last_interaction_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.stage.is_final

    def _touch(self, now: Optional[datetime] = None):
        self.updated_at = now or utc_now()

    def _require_open(self, action: str):
        if self.is_terminal:
            raise BusinessRuleError(
                f"Cannot {action}: lead is already {self.stage.value}",
                violations=[f"lead is {self.stage.value}"],
                details={"lead_id": self.lead_id, "stage": self.stage.value},
            )

    # ── Counters ─────────────────────────────────────────

    def record_interaction(self, now: Optional[datetime] = None):
        """Count one inbound message against the lead and its current stage."""
        now = now or utc_now()
        self.interaction_count += 1
        self.message_count += 1
        self.stage_interactions[self.stage] = self.stage_interactions.get(self.stage, 0) + 1
        self.last_interaction_at = now
        self._touch(now)

    def record_outbound_message(self, now: Optional[datetime] = None):
        self.message_count += 1
        self._touch(now)

    def interactions_in(self, stage: SalesStage) -> int:
        return self.stage_interactions.get(stage, 0)

    def days_inactive(self, now: Optional[datetime] = None) -> float:
        now = now or utc_now()
        reference = self.last_interaction_at or self.created_at
        return max(0.0, (now - reference).total_seconds() / 86400)

    # ── Stage data ───────────────────────────────────────

    def stage_record(self, stage) -> Optional[StageRecord]:
        return self.stage_data.get(SalesStage.from_value(stage))

    def stage_fields(self, stage) -> Dict[str, Any]:
        record = self.stage_record(stage)
        return dict(record.fields) if record else {}

    def get_stage_data(self, stage) -> StageData:
        """Typed view of the stored fields (empty variant if nothing stored)."""
        stage = SalesStage.from_value(stage)
        record = self.stage_data.get(stage)
        if record is None:
            return model_for(stage)()
        return record.data()

    def is_stage_completed(self, stage) -> bool:
        record = self.stage_record(stage)
        return bool(record and record.completed)

    def completed_stages(self) -> List[SalesStage]:
        return [s for s in SalesStage.ordered() if self.is_stage_completed(s)]

    def write_stage_record(
        self,
        stage,
        data: StageData,
        completed: bool,
        score_delta: int = 0,
        reasons: Optional[List[str]] = None,
        now: Optional[datetime] = None,
    ) -> StageRecord:
        """
        Store (overwrite) the record for a stage.

        Raises:
            ValidationError: unknown or terminal stage, data of another stage
            BusinessRuleError: completed requested without the required fields,
                or the lead is terminal
        """
        stage = SalesStage.from_value(stage)
        data = parse_stage_data(stage, data)
        self._require_open("update stage data")
        if completed and not data.is_complete():
            raise BusinessRuleError(
                f"Stage {stage.value} cannot be completed without its required fields",
                violations=[f"missing {name}" for name in data.missing_fields()],
                details={"stage": stage.value},
            )
        now = now or utc_now()
        record = StageRecord(
            stage=stage,
            fields=data.fields(),
            completed=completed,
            evaluated_at=now,
            score_delta=score_delta,
            reasons=list(reasons or []),
        )
        self.stage_data[stage] = record
        self._touch(now)
        return record

    def apply_score_delta(self, delta: int) -> QualificationScore:
        before = self.score
        self.score = self.score.apply(delta)
        if self.score != before:
            logger.debug(f"Lead {self.lead_id} score {before.value} -> {self.score.value} ({delta:+d})")
        return self.score

    # ── Stage transitions ────────────────────────────────

    def move_to_stage(self, stage: SalesStage, now: Optional[datetime] = None):
        """Move along the ordinal path. Only the immediate successor is allowed."""
        self._require_open("change stage")
        stage = SalesStage.from_value(stage)
        if stage is not self.stage.next():
            raise BusinessRuleError(
                f"Cannot move from {self.stage.value} to {stage.value}",
                violations=[f"{stage.value} is not the next stage after {self.stage.value}"],
            )
        self.stage = stage
        self._touch(now)

    def mark_qualified(self, now: Optional[datetime] = None):
        self._require_open("qualify")
        now = now or utc_now()
        self.metadata["previous_stage"] = self.stage.value
        self.metadata["qualified_at"] = now.isoformat()
        self.stage = SalesStage.QUALIFIED
        self._touch(now)

    def mark_disqualified(self, reason: str, now: Optional[datetime] = None):
        self._require_open("disqualify")
        now = now or utc_now()
        self.metadata["previous_stage"] = self.stage.value
        self.metadata["disqualification_reason"] = reason
        self.metadata["disqualified_at"] = now.isoformat()
        self.stage = SalesStage.DISQUALIFIED
        self._touch(now)

    # ── Serialization ────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lead_id": self.lead_id,
            "stage": self.stage.value,
            "stage_progress": self.stage.progress(),
            "score": self.score.value,
            "score_level": self.score.level.value,
            "stage_data": {s.value: r.to_dict() for s, r in self.stage_data.items()},
            "interaction_count": self.interaction_count,
            "message_count": self.message_count,
            "stage_interactions": {s.value: n for s, n in self.stage_interactions.items()},
            "name": self.name,
            "company": self.company,
            "sector": self.sector,
            "metadata": dict(self.metadata),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "last_interaction_at": _iso(self.last_interaction_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Lead":
        """
        Rebuild a lead from to_dict() output.

        Raises:
            ValidationError: unknown stages, malformed stage data, bad score
        """
        if not isinstance(data, dict) or not data.get("lead_id"):
            raise ValidationError("Lead snapshot requires a lead_id", details={"kind": "invalid_snapshot"})

        stage_data = {}
        for key, record in (data.get("stage_data") or {}).items():
            stage = SalesStage.from_value(key)
            stage_data[stage] = StageRecord.from_dict(stage, record or {})

        lead = cls(
            lead_id=str(data["lead_id"]),
            stage=SalesStage.from_value(data.get("stage", SalesStage.DISCOVERY.value)),
            score=QualificationScore(data.get("score", 0)),
            stage_data=stage_data,
            interaction_count=int(data.get("interaction_count", 0)),
            message_count=int(data.get("message_count", 0)),
            stage_interactions={
                SalesStage.from_value(k): int(v)
                for k, v in (data.get("stage_interactions") or {}).items()
            },
            name=data.get("name"),
            company=data.get("company"),
            sector=data.get("sector"),
            metadata=dict(data.get("metadata") or {}),
        )
        lead.created_at = _parse_dt(data.get("created_at")) or lead.created_at
        lead.updated_at = _parse_dt(data.get("updated_at")) or lead.updated_at
        lead.last_interaction_at = _parse_dt(data.get("last_interaction_at"))

        for stage, record in stage_data.items():
            if record.completed and not record.data().is_complete():
                raise ValidationError(
                    f"Stage {stage.value} is marked completed without its required fields",
                    details={"kind": "invalid_snapshot", "stage": stage.value},
                )
        return lead
