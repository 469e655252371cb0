"""
SPIN phase state machine.

situation -> problem -> implication -> need_payoff -> closing, one step at
a time. Regression vocabularies from the agent config are only reported
as hints; the machine never moves backwards.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from config.agent_config import AgentConfig, PhaseConfig
from qualification.clock import parse_timestamp, utc_now
from qualification.errors import BusinessRuleError
from qualification.stage import SpinPhase

logger = logging.getLogger(__name__)


def find_signals(message: str, signals: List[str]) -> List[str]:
    """Return the configured phrases that occur in the message."""
    text = (message or "").lower()
    return [
        s for s in signals
        if s and re.search(rf"(?<!\w){re.escape(s.lower())}(?!\w)", text)
    ]


@dataclass
class PhaseTransition:
    from_phase: SpinPhase
    to_phase: SpinPhase
    turn: int
    reason: str = ""
    at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_phase.value,
            "to": self.to_phase.value,
            "turn": self.turn,
            "reason": self.reason,
            "at": self.at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PhaseTransition":
        return cls(
            from_phase=SpinPhase.from_value(data["from"]),
            to_phase=SpinPhase.from_value(data["to"]),
            turn=int(data.get("turn", 0)),
            reason=data.get("reason", ""),
            at=parse_timestamp(data["at"]) if data.get("at") else utc_now(),
        )


@dataclass
class RegressionHint:
    """The lead's message suggests an earlier phase would fit better."""
    target: SpinPhase
    signals: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"target": self.target.value, "signals": self.signals}


class PhaseStateMachine:
    """Tracks the current SPIN phase of one conversation."""

    def __init__(
        self,
        config: AgentConfig,
        phase: SpinPhase = SpinPhase.SITUATION,
        history: Optional[List[PhaseTransition]] = None,
    ):
        self.config = config
        self.current = phase
        self.history: List[PhaseTransition] = list(history or [])

    @property
    def current_config(self) -> PhaseConfig:
        return self.config.phase(self.current)

    @property
    def ordinal(self) -> int:
        return self.current.ordinal

    def can_advance(self) -> bool:
        return self.current.next() is not None

    def advance(self, turn: int, reason: str = "", now: Optional[datetime] = None) -> PhaseTransition:
        """
        Move to the immediate successor.

        Raises:
            BusinessRuleError: already in closing
        """
        target = self.current.next()
        if target is None:
            raise BusinessRuleError(
                f"No phase after {self.current.value}",
                violations=[f"{self.current.value} is the last phase"],
            )
        transition = PhaseTransition(
            from_phase=self.current,
            to_phase=target,
            turn=turn,
            reason=reason,
            at=now or utc_now(),
        )
        self.history.append(transition)
        self.current = target
        logger.info(f"Phase {transition.from_phase.value} -> {target.value} at turn {turn}: {reason}")
        return transition

    def detect_advance_signals(self, message: str) -> List[str]:
        return find_signals(message, self.current_config.advance_signals)

    def detect_regression(self, message: str) -> Optional[RegressionHint]:
        """Advisory only: report an earlier phase whose regression vocabulary matched."""
        transitions = self.config.transitions
        candidates = [
            (SpinPhase.SITUATION, transitions.back_to_situation),
            (SpinPhase.PROBLEM, transitions.back_to_problem),
        ]
        for target, vocabulary in candidates:
            if target.ordinal >= self.current.ordinal:
                continue
            matched = find_signals(message, vocabulary)
            if matched:
                logger.info(f"Regression hint towards {target.value}: {matched}")
                return RegressionHint(target=target, signals=matched)
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current.value,
            "history": [t.to_dict() for t in self.history],
        }

    @classmethod
    def from_dict(cls, config: AgentConfig, data: Optional[Dict[str, Any]]) -> "PhaseStateMachine":
        data = data or {}
        return cls(
            config=config,
            phase=SpinPhase.from_value(data.get("current", SpinPhase.SITUATION.value)),
            history=[PhaseTransition.from_dict(t) for t in data.get("history", [])],
        )
