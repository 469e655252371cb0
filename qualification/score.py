"""
Bounded qualification score value type.
"""

from dataclasses import dataclass
from enum import Enum

from .errors import ValidationError

MIN_SCORE = 0
MAX_SCORE = 100
QUALIFIED_THRESHOLD = 60


class ScoreLevel(Enum):
    """Score buckets."""
    LOW = "low"              # < 40
    MEDIUM = "medium"        # 40-59
    HIGH = "high"            # 60-79
    VERY_HIGH = "very_high"  # >= 80


@dataclass(frozen=True)
class QualificationScore:
    """
    Immutable lead score in [0, 100].

    add/subtract never raise; results are clamped to the valid range.
    """
    value: int = 0

    def __post_init__(self):
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise ValidationError(
                f"Score must be an integer, got {self.value!r}",
                details={"kind": "invalid_score"},
            )
        if not MIN_SCORE <= self.value <= MAX_SCORE:
            raise ValidationError(
                f"Score must be between {MIN_SCORE} and {MAX_SCORE}, got {self.value}",
                details={"kind": "invalid_score"},
            )

    @classmethod
    def clamped(cls, value: int) -> "QualificationScore":
        return cls(max(MIN_SCORE, min(MAX_SCORE, int(value))))

    def add(self, points: int) -> "QualificationScore":
        return QualificationScore.clamped(self.value + points)

    def subtract(self, points: int) -> "QualificationScore":
        return QualificationScore.clamped(self.value - points)

    def apply(self, delta: int) -> "QualificationScore":
        """Add a signed delta."""
        if delta >= 0:
            return self.add(delta)
        return self.subtract(-delta)

    @property
    def level(self) -> ScoreLevel:
        if self.value >= 80:
            return ScoreLevel.VERY_HIGH
        if self.value >= QUALIFIED_THRESHOLD:
            return ScoreLevel.HIGH
        if self.value >= 40:
            return ScoreLevel.MEDIUM
        return ScoreLevel.LOW

    def is_qualified(self) -> bool:
        return self.value >= QUALIFIED_THRESHOLD

    def __int__(self) -> int:
        return self.value

    def __str__(self) -> str:
        return f"{self.value}/{MAX_SCORE}"
