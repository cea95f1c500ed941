import random
from datetime import datetime, timedelta

import pytest

from walkin_queue.models import Entity, Gender
from walkin_queue.ordering import apply, estimate_wait_minutes, recompute
from walkin_queue.priority import UrgencyClass

T0 = datetime(2026, 3, 2, 9, 0)


def entity(eid: str, urgency: UrgencyClass, minute: int) -> Entity:
    return Entity(
        id=eid,
        token=f"GEN-0000-{eid}",
        department="general",
        name=eid,
        phone="1",
        age=30,
        gender=Gender.FEMALE,
        urgency=urgency,
        arrival_time=T0 + timedelta(minutes=minute),
    )


def test_scenario_emergency_first_then_fifo():
    a = entity("A", UrgencyClass.LOW, 0)
    b = entity("B", UrgencyClass.EMERGENCY, 5)
    c = entity("C", UrgencyClass.LOW, 2)

    placements = recompute([a, b, c], T0 + timedelta(minutes=5), 15)

    assert [p.entity_id for p in placements] == ["B", "A", "C"]
    assert [p.position for p in placements] == [1, 2, 3]
    assert [p.estimated_wait_minutes for p in placements] == [15, 30, 45]


def test_recompute_after_dispatch_of_top_entity():
    a = entity("A", UrgencyClass.LOW, 0)
    c = entity("C", UrgencyClass.LOW, 2)
    placements = recompute([c, a], T0 + timedelta(minutes=6), 15)
    assert [(p.entity_id, p.position) for p in placements] == [("A", 1), ("C", 2)]


def test_recompute_does_not_mutate_input_and_is_idempotent():
    waiting = [entity("A", UrgencyClass.MEDIUM, 3), entity("B", UrgencyClass.HIGH, 4)]
    now = T0 + timedelta(minutes=10)
    first = recompute(waiting, now, 12.5)
    second = recompute(waiting, now, 12.5)
    assert first == second
    assert all(e.position == 0 for e in waiting)


def test_positions_are_contiguous_and_classes_respected():
    rng = random.Random(7)
    classes = list(UrgencyClass)
    waiting = [entity(f"E{i}", rng.choice(classes), rng.randint(0, 120)) for i in range(40)]
    now = T0 + timedelta(minutes=180)

    placements = recompute(waiting, now, 10)

    assert sorted(p.position for p in placements) == list(range(1, 41))
    urgency = [p.urgency for p in placements]
    n_emergency = urgency.count(UrgencyClass.EMERGENCY)
    assert all(u is UrgencyClass.EMERGENCY for u in urgency[:n_emergency])
    assert UrgencyClass.EMERGENCY not in urgency[n_emergency:]

    # Within one class, earlier arrival always gets the better position.
    by_id = {e.id: e for e in waiting}
    for cls in classes:
        arrivals = [by_id[p.entity_id].arrival_time for p in placements if p.urgency is cls]
        assert arrivals == sorted(arrivals)


def test_equal_keys_break_on_arrival_time():
    early = entity("Z", UrgencyClass.EMERGENCY, 1)
    late = entity("A", UrgencyClass.EMERGENCY, 2)
    placements = recompute([late, early], T0 + timedelta(minutes=3), 15)
    assert [p.entity_id for p in placements] == ["Z", "A"]


def test_apply_writes_positions_back():
    a = entity("A", UrgencyClass.LOW, 0)
    b = entity("B", UrgencyClass.HIGH, 1)
    ordered = apply([a, b], recompute([a, b], T0 + timedelta(minutes=2), 15))
    assert [e.id for e in ordered] == ["B", "A"]
    assert (b.position, b.estimated_wait_minutes) == (1, 15)
    assert (a.position, a.estimated_wait_minutes) == (2, 30)


def test_estimate_wait_rejects_bad_input():
    with pytest.raises(ValueError):
        estimate_wait_minutes(0, 15)
    with pytest.raises(ValueError):
        estimate_wait_minutes(1, -1)
