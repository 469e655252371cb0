"""
Bounded trailing window of conversation turns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from qualification.clock import parse_timestamp, utc_now

ROLES = ("user", "assistant")


@dataclass
class TurnRecord:
    role: str
    text: str
    position: int
    at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "text": self.text, "position": self.position, "at": self.at.isoformat()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TurnRecord":
        return cls(
            role=data["role"],
            text=data["text"],
            position=int(data["position"]),
            at=parse_timestamp(data["at"]) if data.get("at") else utc_now(),
        )


class TurnWindow:
    """
    Keeps the most recent `limit` turns.

    Positions keep increasing after the head is trimmed, so they stay
    usable as audit references.
    """

    def __init__(self, limit: int = 20, records: Optional[List[TurnRecord]] = None, next_position: int = 0):
        if limit < 1:
            raise ValueError("limit must be positive")
        self.limit = limit
        self.records: List[TurnRecord] = list(records or [])[-limit:]
        last = self.records[-1].position + 1 if self.records else 0
        self.next_position = max(next_position, last)

    def append(self, role: str, text: str, now: Optional[datetime] = None) -> TurnRecord:
        if role not in ROLES:
            raise ValueError(f"unknown role: {role}")
        record = TurnRecord(role=role, text=text, position=self.next_position, at=now or utc_now())
        self.next_position += 1
        self.records.append(record)
        if len(self.records) > self.limit:
            del self.records[: len(self.records) - self.limit]
        return record

    def recent(self, n: int) -> List[TurnRecord]:
        return self.records[-n:] if n > 0 else []

    def as_messages(self, n: int) -> List[Dict[str, str]]:
        """Last n turns as completion-service messages."""
        return [{"role": r.role, "content": r.text} for r in self.recent(n)]

    def format(self, n: int, user_label: str = "LEAD", assistant_label: str = "AGENT") -> str:
        lines = []
        for r in self.recent(n):
            label = user_label if r.role == "user" else assistant_label
            lines.append(f"{label}: {r.text}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self.records)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "limit": self.limit,
            "next_position": self.next_position,
            "turns": [r.to_dict() for r in self.records],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], limit: Optional[int] = None) -> "TurnWindow":
        data = data or {}
        return cls(
            limit=limit or int(data.get("limit", 20)),
            records=[TurnRecord.from_dict(t) for t in data.get("turns", [])],
            next_position=int(data.get("next_position", 0)),
        )
