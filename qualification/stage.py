"""
Sales stages and SPIN phases.

SalesStage is the BANT funnel the lead moves through. Ordinal stages
(discovery..timeline) have a position; qualified/disqualified are terminal
and sit outside the ordering. SpinPhase is the conversational phase, and
phase ordinal i is gated on stage ordinal i.
"""

from enum import Enum
from typing import List, Optional

from .errors import ValidationError


class SalesStage(Enum):
    """BANT sales stages."""
    DISCOVERY = "discovery"
    BUDGET = "budget"
    AUTHORITY = "authority"
    NEED = "need"
    TIMELINE = "timeline"
    QUALIFIED = "qualified"
    DISQUALIFIED = "disqualified"

    @classmethod
    def from_value(cls, value) -> "SalesStage":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Unknown sales stage: {value!r}",
                details={"kind": "unknown_stage", "stage": str(value)},
            ) from None

    @classmethod
    def ordered(cls) -> List["SalesStage"]:
        return list(_ORDER)

    @property
    def ordinal(self) -> Optional[int]:
        try:
            return _ORDER.index(self)
        except ValueError:
            return None

    @property
    def is_final(self) -> bool:
        return self in (SalesStage.QUALIFIED, SalesStage.DISQUALIFIED)

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    def next(self) -> Optional["SalesStage"]:
        idx = self.ordinal
        if idx is None or idx + 1 >= len(_ORDER):
            return None
        return _ORDER[idx + 1]

    def previous(self) -> Optional["SalesStage"]:
        idx = self.ordinal
        if idx is None or idx == 0:
            return None
        return _ORDER[idx - 1]

    def is_before(self, other: "SalesStage") -> bool:
        if self.ordinal is None or other.ordinal is None:
            return False
        return self.ordinal < other.ordinal

    def is_after(self, other: "SalesStage") -> bool:
        if self.ordinal is None or other.ordinal is None:
            return False
        return self.ordinal > other.ordinal

    def progress(self) -> int:
        if self is SalesStage.QUALIFIED:
            return 100
        if self is SalesStage.DISQUALIFIED:
            return 0
        return round(self.ordinal / len(_ORDER) * 100)


_ORDER = [
    SalesStage.DISCOVERY,
    SalesStage.BUDGET,
    SalesStage.AUTHORITY,
    SalesStage.NEED,
    SalesStage.TIMELINE,
]

_DISPLAY_NAMES = {
    SalesStage.DISCOVERY: "Pain Discovery",
    SalesStage.BUDGET: "Budget",
    SalesStage.AUTHORITY: "Authority",
    SalesStage.NEED: "Need",
    SalesStage.TIMELINE: "Timeline",
    SalesStage.QUALIFIED: "Qualified",
    SalesStage.DISQUALIFIED: "Disqualified",
}

_DESCRIPTIONS = {
    SalesStage.DISCOVERY: "Identify the lead's main pain points",
    SalesStage.BUDGET: "Understand the available budget",
    SalesStage.AUTHORITY: "Identify who makes the decision",
    SalesStage.NEED: "Confirm the solution fits the need",
    SalesStage.TIMELINE: "Establish the implementation timeline",
    SalesStage.QUALIFIED: "Lead qualified for handoff",
    SalesStage.DISQUALIFIED: "Lead does not meet the criteria",
}

# Stages that must be completed before a lead can be qualified
KEY_STAGES = (SalesStage.DISCOVERY, SalesStage.BUDGET, SalesStage.AUTHORITY)


class SpinPhase(Enum):
    """SPIN conversation phases, extended with closing."""
    SITUATION = "situation"
    PROBLEM = "problem"
    IMPLICATION = "implication"
    NEED_PAYOFF = "need_payoff"
    CLOSING = "closing"

    @classmethod
    def from_value(cls, value) -> "SpinPhase":
        if isinstance(value, cls):
            return value
        key = str(value).strip()
        if key == "needPayoff":
            key = "need_payoff"
        try:
            return cls(key.lower())
        except ValueError:
            raise ValidationError(
                f"Unknown conversation phase: {value!r}",
                details={"kind": "unknown_phase", "phase": str(value)},
            ) from None

    @property
    def ordinal(self) -> int:
        return list(SpinPhase).index(self)

    def next(self) -> Optional["SpinPhase"]:
        phases = list(SpinPhase)
        idx = self.ordinal
        return phases[idx + 1] if idx + 1 < len(phases) else None

    def previous(self) -> Optional["SpinPhase"]:
        idx = self.ordinal
        return list(SpinPhase)[idx - 1] if idx > 0 else None

    @property
    def gating_stage(self) -> SalesStage:
        return _ORDER[self.ordinal]

    @property
    def funnel_label(self) -> str:
        """Coarse CRM funnel stage for this phase."""
        if self is SpinPhase.NEED_PAYOFF:
            return "proposal"
        if self is SpinPhase.CLOSING:
            return "negotiation"
        return "qualifying"
