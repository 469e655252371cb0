"""
Archetype classifier.

Counts keyword hits per tone profile in the user's message. The strictly
highest count wins. Weak evidence (fewer than two hits) keeps the profile
from the previous turn so the tone does not flap on short replies.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from .clock import utc_now

logger = logging.getLogger(__name__)

DEFAULT_ARCHETYPE = "balanced"
HYSTERESIS_THRESHOLD = 2
HISTORY_LIMIT = 10


@dataclass(frozen=True)
class ArchetypeProfile:
    """Tone profile consumed by the writer prompt."""
    key: str
    name: str
    tone_style: str
    voice: str
    keywords: Sequence[str] = ()
    triggers: Sequence[str] = ()
    avoid: Sequence[str] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "tone_style": self.tone_style,
            "voice": self.voice,
            "triggers": list(self.triggers),
            "avoid": list(self.avoid),
        }


DEFAULT_PROFILES: List[ArchetypeProfile] = [
    ArchetypeProfile(
        key="analytical",
        name="Analytical",
        tone_style="precise and evidence-based",
        voice="Calm, structured, uses numbers and concrete examples",
        keywords=("how does it work", "explain", "data", "methodology", "process",
                  "metrics", "numbers", "details", "proof"),
        triggers=("clear data", "logical steps", "measurable results"),
        avoid=("hype", "vague promises", "emotional pressure"),
    ),
    ArchetypeProfile(
        key="achiever",
        name="Achiever",
        tone_style="direct and results-oriented",
        voice="Short sentences, focused on outcomes and speed",
        keywords=("let's", "goal", "grow", "double", "scale", "challenge",
                  "results", "fast", "target"),
        triggers=("growth", "competitive edge", "quick wins"),
        avoid=("long explanations", "hesitation", "small talk"),
    ),
    ArchetypeProfile(
        key="relationship",
        name="Relationship",
        tone_style="warm and reassuring",
        voice="Empathetic, talks about people and safety",
        keywords=("team", "people", "help", "worried", "safe", "trust",
                  "support", "together"),
        triggers=("security", "care for the team", "partnership"),
        avoid=("aggressive closing", "cold facts only", "pressure"),
    ),
    ArchetypeProfile(
        key="explorer",
        name="Explorer",
        tone_style="curious and energetic",
        voice="Talks about possibilities, novelty and trends",
        keywords=("new", "innovation", "different", "trend", "opportunity",
                  "idea", "future", "creative"),
        triggers=("novelty", "being first", "possibilities"),
        avoid=("rigid scripts", "routine", "old-fashioned framing"),
    ),
]

BALANCED_PROFILE = ArchetypeProfile(
    key=DEFAULT_ARCHETYPE,
    name="Balanced",
    tone_style="friendly and professional",
    voice="Natural, consultative, neither pushy nor distant",
    triggers=("relevance", "clarity"),
    avoid=("jargon", "pressure"),
)


@dataclass
class ArchetypeDecision:
    """Result of classifying one message."""
    key: str
    profile: ArchetypeProfile
    scores: Dict[str, int]
    confidence: float
    retained: bool = False


@dataclass
class ArchetypeState:
    """Per-conversation archetype state kept by the engine."""
    current: str = DEFAULT_ARCHETYPE
    confidence: float = 0.0
    history: List[Dict[str, Any]] = field(default_factory=list)

    def update(self, decision: ArchetypeDecision, now: Optional[datetime] = None):
        changed = decision.key != self.current
        self.current = decision.key
        self.confidence = decision.confidence
        if changed:
            self.history.append({
                "archetype": decision.key,
                "confidence": decision.confidence,
                "at": (now or utc_now()).isoformat(),
            })
            self.history = self.history[-HISTORY_LIMIT:]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current,
            "confidence": self.confidence,
            "history": list(self.history),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ArchetypeState":
        data = data or {}
        return cls(
            current=data.get("current", DEFAULT_ARCHETYPE),
            confidence=float(data.get("confidence", 0.0)),
            history=list(data.get("history", [])),
        )


class ArchetypeClassifier:
    """Keyword-count classifier with hysteresis."""

    def __init__(
        self,
        profiles: Optional[Sequence[ArchetypeProfile]] = None,
        threshold: int = HYSTERESIS_THRESHOLD,
    ):
        self.profiles = list(profiles or DEFAULT_PROFILES)
        self.threshold = threshold
        self._by_key = {p.key: p for p in self.profiles}
        self._by_key[DEFAULT_ARCHETYPE] = BALANCED_PROFILE
        self._patterns = {
            p.key: [
                re.compile(rf"(?<!\w){re.escape(k.lower())}(?!\w)")
                for k in p.keywords
            ]
            for p in self.profiles
        }

    def profile(self, key: str) -> ArchetypeProfile:
        return self._by_key.get(key, BALANCED_PROFILE)

    def score(self, message: str) -> Dict[str, int]:
        text = (message or "").lower()
        return {
            key: sum(1 for pattern in patterns if pattern.search(text))
            for key, patterns in self._patterns.items()
        }

    def classify(self, message: str, previous: Optional[str] = None) -> ArchetypeDecision:
        scores = self.score(message)

        best_key, best_score = DEFAULT_ARCHETYPE, 0
        for key, value in scores.items():
            if value > best_score:
                best_key, best_score = key, value

        if best_score < self.threshold and previous and previous != DEFAULT_ARCHETYPE:
            return ArchetypeDecision(
                key=previous,
                profile=self.profile(previous),
                scores=scores,
                confidence=min(1.0, best_score / 3),
                retained=True,
            )

        return ArchetypeDecision(
            key=best_key,
            profile=self.profile(best_key),
            scores=scores,
            confidence=min(1.0, best_score / 3),
        )
