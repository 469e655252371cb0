"""
Conversation progress.

Blends collected BANT weight (up to 80 points) with the phase position
(10 points per phase), capped at 100.
"""

from typing import Any, Dict, Iterable, Mapping

DATA_POINTS = 80
PHASE_POINTS = 10
DEFAULT_FIELD_WEIGHT = 10


def _is_collected(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def collected_weight(weights: Mapping[str, float], values: Mapping[str, Any]) -> float:
    return sum(w for key, w in weights.items() if _is_collected(values.get(key)))


def compute_progress(
    weights: Mapping[str, float],
    values: Mapping[str, Any],
    phase_ordinal: int,
) -> int:
    """
    progress = min(100, round(collected / total * 80) + phase_ordinal * 10)

    With a total weight of zero only the phase part counts.
    """
    total = sum(weights.values())
    phase_part = phase_ordinal * PHASE_POINTS
    if total <= 0:
        return min(100, phase_part)
    data_part = round(collected_weight(weights, values) / total * DATA_POINTS)
    return min(100, data_part + phase_part)


def field_weights(fields: Iterable[Any]) -> Dict[str, float]:
    """Map BANT field descriptors (objects with key/weight) to weights."""
    weights = {}
    for f in fields:
        weight = getattr(f, "weight", None)
        weights[f.key] = DEFAULT_FIELD_WEIGHT if weight is None else weight
    return weights
