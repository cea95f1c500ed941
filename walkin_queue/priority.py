from __future__ import annotations

# Priority model.
#
# Maps an entity's urgency class and how long it has been waiting to a
# comparable key. Higher keys are served first.
#
#   emergency             -> tier 1 (always ahead of everybody else)
#   high / medium / low   -> tier 0, score = weight * 100 + minutes waited
#
# Within one class an earlier arrival always has a score >= a later one, and
# exact ties are broken by arrival time by the ordering engine.

import enum
from datetime import datetime
from typing import NamedTuple, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Entity


class UrgencyClass(str, enum.Enum):
    EMERGENCY = "emergency"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


URGENCY_WEIGHTS: dict[UrgencyClass, int] = {
    UrgencyClass.EMERGENCY: 1000,
    UrgencyClass.HIGH: 100,
    UrgencyClass.MEDIUM: 10,
    UrgencyClass.LOW: 1,
}


class OrderingKey(NamedTuple):
    tier: int
    score: int


def minutes_waited(arrival_time: datetime, now: datetime) -> int:
    """Whole minutes elapsed since arrival (never negative)."""
    seconds = (now - arrival_time).total_seconds()
    if seconds <= 0:
        return 0
    return int(seconds // 60)


def ordering_key(entity: Entity, now: datetime) -> OrderingKey:
    """Return the ordering key of `entity` at instant `now`.

    Pure function: the same entity and `now` always give the same key.
    """
    urgency = UrgencyClass(entity.urgency)
    weight = URGENCY_WEIGHTS[urgency]
    if urgency is UrgencyClass.EMERGENCY:
        return OrderingKey(tier=1, score=weight * 10000)
    return OrderingKey(tier=0, score=weight * 100 + minutes_waited(entity.arrival_time, now))


def parse_urgency(value: object) -> UrgencyClass:
    """Parse a wire/user value into an `UrgencyClass` (raises ValueError)."""
    if isinstance(value, UrgencyClass):
        return value
    return UrgencyClass(str(value).strip().lower())
