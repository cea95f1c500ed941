"""Records held by the queue engine.

`Entity` is a ticket holder; `DepartmentQueue` is the per-department,
per-operating-period counter state. Both are plain dataclasses so the store
can copy them and the MQTT layer can turn them into JSON with `to_dict()`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from .priority import UrgencyClass


class EntityStatus(str, enum.Enum):
    WAITING = "waiting"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (EntityStatus.COMPLETED, EntityStatus.SKIPPED)


class OperationalState(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"


class Gender(str, enum.Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class VisitType(str, enum.Enum):
    WALK_IN = "walk-in"
    APPOINTMENT = "appointment"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class Entity:
    id: str
    token: str
    department: str
    name: str
    phone: str
    age: int
    gender: Gender
    urgency: UrgencyClass
    arrival_time: datetime
    status: EntityStatus = EntityStatus.WAITING
    email: str | None = None
    symptoms: str | None = None
    visit_type: VisitType = VisitType.WALK_IN
    position: int = 0
    estimated_wait_minutes: float = 0
    called_at: datetime | None = None
    completed_at: datetime | None = None
    skip_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "token": self.token,
            "department": self.department,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "age": self.age,
            "gender": self.gender.value,
            "urgency": self.urgency.value,
            "symptoms": self.symptoms,
            "visit_type": self.visit_type.value,
            "status": self.status.value,
            "arrival_time": _iso(self.arrival_time),
            "position": self.position,
            "estimated_wait_minutes": self.estimated_wait_minutes,
            "called_at": _iso(self.called_at),
            "completed_at": _iso(self.completed_at),
            "skip_reason": self.skip_reason,
        }

    def status_view(self) -> dict[str, Any]:
        """Public view for the holder of the token.

        Position and wait estimate are only meaningful while waiting.
        """
        view: dict[str, Any] = {
            "token": self.token,
            "department": self.department,
            "urgency": self.urgency.value,
            "status": self.status.value,
            "arrival_time": _iso(self.arrival_time),
            "called_at": _iso(self.called_at),
            "completed_at": _iso(self.completed_at),
        }
        if self.status is EntityStatus.WAITING:
            view["position"] = self.position
            view["estimated_wait_minutes"] = self.estimated_wait_minutes
        return view


@dataclass
class DepartmentQueue:
    """Dispatch state of one department for one operating period."""

    department: str
    period: date
    current_dispatched: str | None = None
    total_served: int = 0
    issued: int = 0
    state: OperationalState = OperationalState.ACTIVE
    # Per-department event sequence; never reset so observers can order frames
    # across a period boundary.
    seq: int = 0
    opened_at: datetime = field(default_factory=datetime.now)

    def next_period(self, period: date, now: datetime) -> DepartmentQueue:
        """Fresh counters for `period`; dispatch and operational state carry over."""
        return DepartmentQueue(
            department=self.department,
            period=period,
            current_dispatched=self.current_dispatched,
            state=self.state,
            seq=self.seq,
            opened_at=now,
        )
