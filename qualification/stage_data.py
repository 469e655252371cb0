"""
Structured per-stage data.

Each ordinal sales stage has a fixed schema. Values coming from the
extraction step are loose text, so the models coerce common spellings
("yes", "decision maker", "1-3 months") into canonical values.
"""

import re
from typing import Any, ClassVar, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .stage import SalesStage

_TRUE_WORDS = {"yes", "y", "true", "confirmed", "approved", "sim", "1"}
_FALSE_WORDS = {"no", "n", "false", "none", "no budget", "not approved", "nao", "não", "0"}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if not value or value.lower() in ("null", "n/a", "unknown"):
            return None
    return value


def _coerce_bool(value: Any) -> Any:
    value = _blank_to_none(value)
    if isinstance(value, str):
        lowered = value.lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
    return value


_NEGATION = re.compile(r"(?<!\w)(?:not|no|never|without|hardly)(?!\w)|n't(?!\w)")
_CLAUSE_BREAK = re.compile(r"[,.;:!?]|(?<!\w)but(?!\w)")
_UNSURE = re.compile(
    r"(?<!\w)(?:don't know|dont know|do not know|not sure|no idea|unsure|undecided|tbd|to be defined)(?!\w)"
)


def _normalise(text: str) -> str:
    return text.lower().replace("_", " ").replace("’", "'")


def _negated(text: str, start: int) -> bool:
    """Whether a negation precedes ``start`` within the same clause."""
    clause = _CLAUSE_BREAK.split(text[:start])[-1]
    return bool(_NEGATION.search(clause))


def _match_alias(text: str, aliases: Dict[str, Tuple[str, ...]]) -> Optional[Tuple[str, bool]]:
    """Longest alias found in the text across all groups, and whether it is negated."""
    best = None
    for canonical, words in aliases.items():
        for word in words:
            match = re.search(rf"(?<!\w){re.escape(word)}(?!\w)", text)
            if match and (best is None or len(word) > best[0]):
                best = (len(word), canonical, match.start())
    if best is None:
        return None
    _, canonical, start = best
    return canonical, _negated(text, start)


def _pick(value: Any, aliases: Dict[str, Tuple[str, ...]], negative: Optional[str] = None) -> Any:
    """
    Map free text onto a canonical value using keyword aliases.

    The longest matching alias wins, so "not urgent" beats "urgent". A
    negated positive alias ("not the decision maker") maps to ``negative``;
    without one the text is returned unchanged and fails validation.
    """
    value = _blank_to_none(value)
    if not isinstance(value, str):
        return value
    lowered = _normalise(value)
    for canonical in aliases:
        if lowered == canonical.replace("_", " "):
            return canonical
    found = _match_alias(lowered, aliases)
    if found is None:
        return value
    canonical, negated = found
    if negated and canonical != negative:
        return negative if negative is not None else value
    return canonical


class StageData(BaseModel):
    """Base class for stage-data variants."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    stage: ClassVar[SalesStage]
    # Each inner tuple is a group of alternatives; one per group must be set
    completion_fields: ClassVar[Tuple[Tuple[str, ...], ...]] = ()

    def missing_fields(self) -> list:
        missing = []
        for group in self.completion_fields:
            if not any(getattr(self, name) is not None for name in group):
                missing.append(" or ".join(group))
        return missing

    def is_complete(self) -> bool:
        return not self.missing_fields()

    def merged(self, updates: Dict[str, Any]) -> "StageData":
        """Return a copy with the non-null updates applied and validated."""
        data = self.model_dump()
        data.update({k: v for k, v in updates.items() if v is not None})
        return type(self).model_validate(data)

    def fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class DiscoveryData(StageData):
    stage: ClassVar[SalesStage] = SalesStage.DISCOVERY
    completion_fields: ClassVar[Tuple[Tuple[str, ...], ...]] = (("pain_points",),)

    pain_points: Optional[str] = None
    pain_type: Optional[str] = None
    urgency: Optional[str] = None  # low | medium | urgent | critical
    impact: Optional[str] = None

    @field_validator("pain_points", "pain_type", "impact", mode="before")
    @classmethod
    def _text(cls, v):
        v = _blank_to_none(v)
        if isinstance(v, (list, tuple)):
            v = "; ".join(str(item) for item in v if item) or None
        return v

    @field_validator("urgency", mode="before")
    @classmethod
    def _urgency(cls, v):
        v = _pick(v, {
            "critical": ("critical", "emergency", "desperate"),
            "urgent": ("urgent", "asap", "right now", "high"),
            "low": ("low", "not urgent", "no rush", "someday"),
            "medium": ("medium", "moderate"),
        }, negative="low")
        if v is not None and v not in ("low", "medium", "urgent", "critical"):
            raise ValueError(f"unrecognised urgency: {v}")
        return v


class BudgetData(StageData):
    stage: ClassVar[SalesStage] = SalesStage.BUDGET
    completion_fields: ClassVar[Tuple[Tuple[str, ...], ...]] = (("budget_range", "budget_confirmed"),)

    budget_range: Optional[str] = None
    budget_confirmed: Optional[bool] = None
    flexibility: Optional[str] = None  # flexible | fixed

    @field_validator("budget_range", mode="before")
    @classmethod
    def _range(cls, v):
        v = _blank_to_none(v)
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            v = str(v)
        return v

    @field_validator("budget_confirmed", mode="before")
    @classmethod
    def _confirmed(cls, v):
        return _coerce_bool(v)

    @field_validator("flexibility", mode="before")
    @classmethod
    def _flex(cls, v):
        v = _pick(v, {
            "fixed": ("fixed", "strict", "firm", "rigid"),
            "flexible": ("flexible", "negotiable", "some room"),
        }, negative="fixed")
        if v is not None and v not in ("flexible", "fixed"):
            raise ValueError(f"unrecognised flexibility: {v}")
        return v


class AuthorityData(StageData):
    stage: ClassVar[SalesStage] = SalesStage.AUTHORITY
    completion_fields: ClassVar[Tuple[Tuple[str, ...], ...]] = (("decision_power", "decision_maker"),)

    role: Optional[str] = None
    decision_maker: Optional[bool] = None
    decision_power: Optional[str] = None  # final | influencer | technical | none

    @field_validator("role", mode="before")
    @classmethod
    def _role(cls, v):
        return _blank_to_none(v)

    @field_validator("decision_maker", mode="before")
    @classmethod
    def _maker(cls, v):
        return _coerce_bool(v)

    @field_validator("decision_power", mode="before")
    @classmethod
    def _power(cls, v):
        v = _pick(v, {
            "none": ("no", "no authority", "no say", "not involved", "nobody"),
            "technical": ("technical", "engineer", "it team", "cto"),
            "influencer": ("influencer", "recommend", "influence", "partner", "board", "committee"),
            "final": ("yes", "final", "decision maker", "i decide", "owner", "ceo", "founder", "me", "myself"),
        }, negative="none")
        if v is not None and v not in ("final", "influencer", "technical", "none"):
            raise ValueError(f"unrecognised decision power: {v}")
        return v


class NeedData(StageData):
    stage: ClassVar[SalesStage] = SalesStage.NEED
    completion_fields: ClassVar[Tuple[Tuple[str, ...], ...]] = (("solution_fit",),)

    solution_fit: Optional[str] = None  # confirmed | exploring | no_fit
    urgency: Optional[str] = None  # urgent | not_urgent
    requirements: Optional[str] = None

    @field_validator("solution_fit", mode="before")
    @classmethod
    def _fit(cls, v):
        v = _pick(v, {
            "no_fit": ("no fit", "not a fit", "doesn't fit", "does not fit"),
            "exploring": ("exploring", "maybe", "evaluating", "researching", "considering", "not sure"),
            "confirmed": ("confirmed", "yes", "fits", "exactly", "perfect", "need it"),
        }, negative="no_fit")
        if v is not None and v not in ("confirmed", "exploring", "no_fit"):
            raise ValueError(f"unrecognised solution fit: {v}")
        return v

    @field_validator("urgency", mode="before")
    @classmethod
    def _urgency(cls, v):
        v = _pick(v, {
            "not_urgent": ("not urgent", "no rush", "later", "low"),
            "urgent": ("urgent", "asap", "high", "critical"),
        }, negative="not_urgent")
        if v is not None and v not in ("urgent", "not_urgent"):
            raise ValueError(f"unrecognised need urgency: {v}")
        return v

    @field_validator("requirements", mode="before")
    @classmethod
    def _req(cls, v):
        return _blank_to_none(v)


_MONTHS = re.compile(r"(\d+)\s*(?:-\s*(\d+)\s*)?(month|week|day|year)s?(?!\w)", re.IGNORECASE)
_UNDER_A_MONTH = re.compile(r"(?:<|less than|under|within)\s*(?:1|one|a)\s*month(?!\w)")

_HORIZON_WORDS: Dict[str, Tuple[str, ...]] = {
    "immediate": ("immediate", "immediately", "asap", "right now", "right away", "this week", "this month"),
    "short_term": ("next month", "next quarter", "this quarter", "short term"),
    "medium_term": ("this semester", "half year", "medium term"),
    "long_term": ("next year", "long term", "someday"),
}


def _months(match) -> float:
    high = int(match.group(2) or match.group(1))
    unit = match.group(3).lower()
    return {"day": high / 30, "week": high / 4, "month": high, "year": high * 12}[unit]


class TimelineData(StageData):
    stage: ClassVar[SalesStage] = SalesStage.TIMELINE
    completion_fields: ClassVar[Tuple[Tuple[str, ...], ...]] = (("implementation_timeline", "urgency"),)

    implementation_timeline: Optional[str] = None
    urgency: Optional[str] = None  # immediate | short_term | medium_term | long_term | none

    @field_validator("implementation_timeline", mode="before")
    @classmethod
    def _timeline(cls, v):
        v = _blank_to_none(v)
        if isinstance(v, str):
            text = _normalise(v)
            concrete = _MONTHS.search(text) or _match_alias(text, _HORIZON_WORDS)
            if _UNSURE.search(text) and not concrete:
                raise ValueError(f"no concrete timeline: {v}")
        return v

    @field_validator("urgency", mode="before")
    @classmethod
    def _urgency(cls, v):
        v = _pick(v, {
            "none": ("no timeline", "no plans", "never", "not planning"),
            "immediate": ("immediate", "immediately", "asap", "right now", "right away", "this month"),
            "short_term": ("short term", "short_term", "next quarter"),
            "medium_term": ("medium term", "medium_term", "this semester"),
            "long_term": ("long term", "long_term", "next year"),
        })
        if v is not None and v not in ("immediate", "short_term", "medium_term", "long_term", "none"):
            raise ValueError(f"unrecognised timeline urgency: {v}")
        return v

    def horizon(self) -> Optional[str]:
        """
        Classify the timeline into immediate/short/medium/long term.

        Explicit durations ("2-3 months", "6 months from now") take
        precedence over keywords; negated keywords ("not this month")
        fall through to long term.
        """
        if self.urgency and self.urgency != "none":
            return self.urgency
        text = _normalise(self.implementation_timeline or "")
        if not text:
            return None
        if _UNDER_A_MONTH.search(text):
            return "immediate"
        match = _MONTHS.search(text)
        if match:
            months = _months(match)
            if months < 1:
                return "immediate"
            if months <= 3:
                return "short_term"
            if months <= 6:
                return "medium_term"
            return "long_term"
        found = _match_alias(text, _HORIZON_WORDS)
        if found and not found[1]:
            return found[0]
        return "long_term"


STAGE_DATA_MODELS: Dict[SalesStage, Type[StageData]] = {
    SalesStage.DISCOVERY: DiscoveryData,
    SalesStage.BUDGET: BudgetData,
    SalesStage.AUTHORITY: AuthorityData,
    SalesStage.NEED: NeedData,
    SalesStage.TIMELINE: TimelineData,
}


def model_for(stage) -> Type[StageData]:
    stage = SalesStage.from_value(stage)
    model = STAGE_DATA_MODELS.get(stage)
    if model is None:
        raise ValidationError(
            f"Stage {stage.value} does not accept stage data",
            details={"kind": "unknown_stage", "stage": stage.value},
        )
    return model


def parse_stage_data(stage, data: Optional[Dict[str, Any]]) -> StageData:
    """
    Validate raw stage fields into the stage's variant.

    Raises:
        ValidationError: unknown/terminal stage or malformed fields
    """
    model = model_for(stage)
    if isinstance(data, StageData):
        if not isinstance(data, model):
            raise ValidationError(
                f"{type(data).__name__} does not belong to stage {model.stage.value}",
                details={"kind": "malformed_stage_data", "stage": model.stage.value},
            )
        return data
    if data is not None and not isinstance(data, dict):
        raise ValidationError(
            f"Stage data must be a mapping, got {type(data).__name__}",
            details={"kind": "malformed_stage_data", "stage": model.stage.value},
        )
    try:
        return model.model_validate(data or {})
    except PydanticValidationError as e:
        raise ValidationError(
            f"Malformed {model.stage.value} data: {e.error_count()} error(s)",
            details={
                "kind": "malformed_stage_data",
                "stage": model.stage.value,
                "errors": [
                    {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                    for err in e.errors()
                ],
            },
        ) from e
