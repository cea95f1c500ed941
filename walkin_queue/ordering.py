from __future__ import annotations

# Ordering engine.
#
# Given a snapshot of the waiting set of ONE department, produce the total
# order, the 1-based positions and the wait estimates. This module never
# mutates its input; `apply()` is the separate step that writes the result
# back onto the entities.

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence

from .models import Entity
from .priority import UrgencyClass, ordering_key


@dataclass(frozen=True)
class Placement:
    entity_id: str
    token: str
    urgency: UrgencyClass
    position: int
    estimated_wait_minutes: float


def estimate_wait_minutes(position: int, avg_service_minutes: float) -> float:
    """Linear estimate: everybody ahead (and you) takes the average time.

    Service-time variance and parallel servers are deliberately not modelled.
    """
    if position < 1:
        raise ValueError("position must be >= 1")
    if avg_service_minutes < 0:
        raise ValueError("avg_service_minutes must be >= 0")
    return position * avg_service_minutes


def sort_waiting(waiting: Iterable[Entity], now: datetime) -> list[Entity]:
    """Order entities by descending ordering key, earliest arrival first on ties.

    The entity id is the last tie-breaker so the order is total and stable
    across calls.
    """

    def sort_key(e: Entity):
        k = ordering_key(e, now)
        return (-k.tier, -k.score, e.arrival_time, e.id)

    return sorted(waiting, key=sort_key)


def recompute(waiting: Sequence[Entity], now: datetime, avg_service_minutes: float) -> list[Placement]:
    """Return the placements of `waiting` in service order."""
    ordered = sort_waiting(waiting, now)
    return [
        Placement(
            entity_id=e.id,
            token=e.token,
            urgency=e.urgency,
            position=i,
            estimated_wait_minutes=estimate_wait_minutes(i, avg_service_minutes),
        )
        for i, e in enumerate(ordered, start=1)
    ]


def apply(entities: Iterable[Entity], placements: Sequence[Placement]) -> list[Entity]:
    """Write placements back onto `entities`; return the entities in order."""
    by_id = {e.id: e for e in entities}
    ordered: list[Entity] = []
    for p in placements:
        e = by_id[p.entity_id]
        e.position = p.position
        e.estimated_wait_minutes = p.estimated_wait_minutes
        ordered.append(e)
    return ordered
