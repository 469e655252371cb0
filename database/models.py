"""
SQLAlchemy ORM models for the lead qualification engine.

Conversation state is stored as a JSON snapshot; a few columns are
denormalized from it for querying.
"""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, JSON, String
from sqlalchemy.orm import DeclarativeBase, relationship

from qualification.clock import utc_now


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class ConversationState(Base):
    __tablename__ = "conversation_states"

    key = Column(String(255), primary_key=True)
    engine = Column(String(20), nullable=False, default="consultative")  # consultative, support
    snapshot_json = Column(JSON, nullable=False, default=dict)
    stage = Column(String(20), nullable=True)  # lead stage or support state
    phase = Column(String(20), nullable=True)
    score = Column(Integer, nullable=True)
    turn_count = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    events = relationship("ConversationEvent", back_populates="conversation", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_state_engine_stage", "engine", "stage"),
    )


class ConversationEvent(Base):
    __tablename__ = "conversation_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    conversation_key = Column(
        String(255), ForeignKey("conversation_states.key", ondelete="CASCADE"), nullable=False, index=True,
    )
    event_type = Column(String(30), nullable=False)  # created, stage_changed, phase_changed
    details_json = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    conversation = relationship("ConversationState", back_populates="events")
