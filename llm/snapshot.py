"""
Serializable conversation snapshots.

Validated with pydantic on restore so a malformed snapshot is rejected
before it replaces any stored state.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from qualification.errors import ValidationError

SNAPSHOT_VERSION = 1


class TurnModel(BaseModel):
    role: str = Field(pattern="^(user|assistant)$")
    text: str
    position: int = Field(ge=0)
    at: Optional[str] = None


class WindowModel(BaseModel):
    limit: int = Field(default=20, ge=1)
    next_position: int = Field(default=0, ge=0)
    turns: List[TurnModel] = Field(default_factory=list)


class PhaseModel(BaseModel):
    current: str = "situation"
    history: List[Dict[str, Any]] = Field(default_factory=list)


class ArchetypeModel(BaseModel):
    current: str = "balanced"
    confidence: float = Field(default=0.0, ge=0, le=1)
    history: List[Dict[str, Any]] = Field(default_factory=list)


class ConversationSnapshot(BaseModel):
    """State of one consultative conversation."""
    model_config = ConfigDict(extra="ignore")

    version: int = SNAPSHOT_VERSION
    engine: str = Field(default="consultative", pattern="^consultative$")
    conversation_key: str = Field(min_length=1)
    turn_count: int = Field(default=0, ge=0)
    phase: PhaseModel = Field(default_factory=PhaseModel)
    bant: Dict[str, Any] = Field(default_factory=dict)
    lead: Dict[str, Any]
    archetype: ArchetypeModel = Field(default_factory=ArchetypeModel)
    window: WindowModel = Field(default_factory=WindowModel)


class SupportSnapshot(BaseModel):
    """State of one support conversation."""
    model_config = ConfigDict(extra="ignore")

    version: int = SNAPSHOT_VERSION
    engine: str = Field(default="support", pattern="^support$")
    conversation_key: str = Field(min_length=1)
    state: str = "greeting"
    turn_count: int = Field(default=0, ge=0)
    category: Optional[str] = None
    priority: Optional[str] = None
    issue_summary: Optional[str] = None
    resolved: bool = False
    escalated: bool = False
    escalated_to: Optional[str] = None
    state_history: List[Dict[str, Any]] = Field(default_factory=list)
    window: WindowModel = Field(default_factory=WindowModel)


def validate_snapshot(model, data: Any):
    """
    Raises:
        ValidationError: wrapping pydantic's errors
    """
    if not isinstance(data, dict):
        raise ValidationError("Snapshot must be a mapping", details={"kind": "invalid_snapshot"})
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid snapshot: {e.error_count()} error(s)",
            details={
                "kind": "invalid_snapshot",
                "errors": [
                    {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                    for err in e.errors()
                ],
            },
        ) from e
