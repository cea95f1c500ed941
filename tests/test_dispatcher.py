import threading
from datetime import datetime, timedelta

import pytest

from walkin_queue.dispatcher import Dispatcher
from walkin_queue.errors import ConflictError, EmptyQueueError, NotActiveError, NotFoundError, ValidationError
from walkin_queue.fanout import QUEUE_UPDATED, TOKEN_CALLED, FanOut
from walkin_queue.models import EntityStatus, OperationalState
from walkin_queue.priority import UrgencyClass
from walkin_queue.service_time import ServiceTimeTracker

T0 = datetime(2026, 3, 2, 9, 0)


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def fields(name, urgency="low", department="cardiology", **extra):
    d = {
        "name": name,
        "phone": "555-0100",
        "age": 40,
        "gender": "female",
        "department": department,
        "urgency": urgency,
    }
    d.update(extra)
    return d


def make(**kwargs):
    clock = Clock(T0)
    events = []
    fanout = FanOut()
    fanout.subscribe_all(events.append)
    return Dispatcher(fanout=fanout, clock=clock, **kwargs), clock, events


def scenario():
    """A(low, t=0), C(low, t=2), B(emergency, t=5) in one department."""
    d, clock, events = make()
    a = d.admit(fields("A"))
    clock.advance(minutes=2)
    c = d.admit(fields("C"))
    clock.advance(minutes=3)
    b = d.admit(fields("B", urgency="emergency"))
    return d, clock, events, a, b, c


def test_admit_orders_emergency_first_then_fifo():
    d, _clock, events, a, b, c = scenario()

    view = d.department_view("cardiology")
    assert [w["id"] for w in view["waiting"]] == [b.id, a.id, c.id]
    assert [w["position"] for w in view["waiting"]] == [1, 2, 3]
    assert [w["estimated_wait_minutes"] for w in view["waiting"]] == [15, 30, 45]

    # Exactly one queue:updated per admission, reflecting the post-recompute state.
    assert [e.kind for e in events] == [QUEUE_UPDATED] * 3
    assert [w["token"] for w in events[-1].payload["waiting"]] == [b.token, a.token, c.token]


def test_admit_assigns_token_and_waiting_status():
    d, _clock, _events = make()
    e = d.admit(fields("A", department="Radiology"))
    assert e.token.startswith("RAD-") and e.token.endswith("-001")
    assert e.status is EntityStatus.WAITING
    assert e.arrival_time == T0
    assert e.position == 1


def test_call_next_dispatches_top_and_recomputes_rest():
    d, _clock, events, a, b, c = scenario()
    events.clear()

    called = d.call_next("cardiology")

    assert called.id == b.id
    assert called.status is EntityStatus.DISPATCHED
    assert called.called_at == T0 + timedelta(minutes=5)
    assert [e.kind for e in events] == [TOKEN_CALLED, QUEUE_UPDATED]
    assert events[0].payload["entity"]["token"] == b.token
    update = events[1].payload
    assert update["current_token"] == b.token
    assert [(w["id"], w["position"]) for w in update["waiting"]] == [(a.id, 1), (c.id, 2)]
    assert events[0].payload["seq"] < update["seq"]


def test_call_next_rejects_while_dispatch_active():
    d, _clock, _events, *_ = scenario()
    d.call_next("cardiology")
    with pytest.raises(ConflictError):
        d.call_next("cardiology")
    assert len([e for e in d.entities(status="dispatched")]) == 1


def test_call_next_on_empty_or_inactive_department():
    d, _clock, _events = make()
    with pytest.raises(EmptyQueueError):
        d.call_next("cardiology")

    d.admit(fields("A"))
    d.set_state("cardiology", OperationalState.PAUSED)
    with pytest.raises(NotActiveError):
        d.call_next("cardiology")
    d.set_state("cardiology", "active")
    assert d.call_next("cardiology").name == "A"


def test_complete_counts_service_and_frees_department():
    d, _clock, _events, a, b, _c = scenario()
    d.call_next("cardiology")

    done = d.complete(b.id)

    assert done.status is EntityStatus.COMPLETED
    view = d.department_view("cardiology")
    assert view["total_served"] == 1
    assert view["current_token"] is None
    with pytest.raises(ConflictError):
        d.complete(b.id)
    # Department can dispatch again.
    assert d.call_next("cardiology").id == a.id


def test_complete_requires_dispatched_status():
    d, _clock, _events, a, *_ = scenario()
    with pytest.raises(ConflictError):
        d.complete(a.id)
    with pytest.raises(NotFoundError):
        d.complete("nope")


def test_skip_waiting_entity_and_reject_other_statuses():
    d, _clock, _events, a, b, c = scenario()

    skipped = d.skip(a.id)
    assert skipped.status is EntityStatus.SKIPPED
    assert skipped.skip_reason == "skipped"
    assert [w["id"] for w in d.department_view("cardiology")["waiting"]] == [b.id, c.id]
    assert [w["position"] for w in d.department_view("cardiology")["waiting"]] == [1, 2]

    with pytest.raises(ConflictError):
        d.skip(a.id)
    d.call_next("cardiology")
    with pytest.raises(ConflictError):
        d.skip(b.id)
    d.complete(b.id)
    with pytest.raises(ConflictError):
        d.skip(b.id)


def test_cancel_by_token():
    d, _clock, _events, a, *_ = scenario()
    cancelled = d.cancel(a.token)
    assert cancelled.status is EntityStatus.SKIPPED
    assert cancelled.skip_reason == "cancelled"
    with pytest.raises(NotFoundError):
        d.cancel("XXX-0000-001")


def test_admit_missing_age_changes_nothing():
    d, _clock, events = make()
    bad = fields("A")
    del bad["age"]

    with pytest.raises(ValidationError) as exc:
        d.admit(bad)

    assert exc.value.fields == ["age"]
    assert d.store.waiting("cardiology") == []
    assert events == []
    assert d.live_status() == []


@pytest.mark.parametrize(
    "override",
    [
        {"age": -1},
        {"age": "old"},
        {"age": float("inf")},
        {"age": float("nan")},
        {"gender": "robot"},
        {"urgency": "urgent"},
        {"name": "  "},
        {"department": "--"},
    ],
)
def test_admit_rejects_malformed_fields(override):
    d, _clock, _events = make()
    bad = fields("A")
    bad.update(override)
    with pytest.raises(ValidationError) as exc:
        d.admit(bad)
    assert exc.value.fields == list(override)
    assert d.live_status() == []


def test_lookup_token_shows_position_only_while_waiting():
    d, _clock, _events, a, b, _c = scenario()
    assert d.lookup_token(a.token)["position"] == 2
    d.call_next("cardiology")
    view = d.lookup_token(b.token)
    assert view["status"] == "dispatched"
    assert "position" not in view
    with pytest.raises(NotFoundError):
        d.lookup_token("nope")


def test_retriage_moves_entity_up():
    d, _clock, _events, a, b, c = scenario()
    d.retriage(c.id, "emergency")
    ids = [w["id"] for w in d.department_view("cardiology")["waiting"]]
    # Both emergencies: earlier arrival (C at t=2) first.
    assert ids == [c.id, b.id, a.id]
    with pytest.raises(ValidationError):
        d.retriage(a.id, "whenever")


def test_live_status_aggregates_departments():
    d, _clock, _events, _a, b, _c = scenario()
    d.admit(fields("D", urgency="high", department="dental"))
    d.call_next("cardiology")

    rows = {r["department"]: r for r in d.live_status()}

    assert rows["cardiology"] == {
        "department": "cardiology",
        "current_token": b.token,
        "total_waiting": 2,
        "total_served": 0,
        "emergency_count": 0,
        "state": "active",
    }
    assert rows["dental"]["total_waiting"] == 1
    assert rows["dental"]["emergency_count"] == 0


def test_department_view_unknown_department():
    d, _clock, _events = make()
    with pytest.raises(NotFoundError):
        d.department_view("nowhere")


def test_entities_filters_and_orders():
    d, _clock, _events, a, b, c = scenario()
    d.skip(c.id)
    rows = d.entities(department="cardiology")
    assert [e.id for e in rows] == [b.id, a.id, c.id]
    assert [e.id for e in d.entities(urgency=UrgencyClass.EMERGENCY)] == [b.id]
    assert [e.id for e in d.entities(status="skipped")] == [c.id]
    assert d.entities(period=(T0 - timedelta(days=1)).date()) == []


def test_subscriber_failure_does_not_undo_state():
    d, _clock, _events = make()

    def broken(event):
        raise RuntimeError("display offline")

    d.fanout.subscribe("cardiology", broken)
    e = d.admit(fields("A"))
    assert d.entity(e.id).status is EntityStatus.WAITING
    assert d.call_next("cardiology").id == e.id


def test_period_rollover_resets_counters_but_keeps_line():
    d, clock, _events = make()
    first = d.admit(fields("A"))
    clock.advance(minutes=1)
    waiting = d.admit(fields("B"))
    d.call_next("cardiology")
    d.complete(first.id)
    assert d.department_view("cardiology")["total_served"] == 1

    clock.advance(days=1)
    assert d.rollover() == ["cardiology"]
    assert d.rollover() == []

    view = d.department_view("cardiology")
    assert view["total_served"] == 0
    assert view["period"] == (T0 + timedelta(days=1)).date().isoformat()
    assert [w["id"] for w in view["waiting"]] == [waiting.id]
    assert d.store.archived("cardiology")[0].total_served == 1

    # Same time of day: token sequence restarts, but tokens never collide.
    again = d.admit(fields("C"))
    assert again.token not in (first.token, waiting.token)


def test_adaptive_service_time_feeds_estimates():
    d, clock, _events = make(service_times=ServiceTimeTracker(default_minutes=15, window=5))
    first = d.admit(fields("A"))
    clock.advance(minutes=1)
    d.admit(fields("B"))
    d.call_next("cardiology")
    clock.advance(minutes=6)
    d.complete(first.id)
    d.admit(fields("C"))
    waits = [w["estimated_wait_minutes"] for w in d.department_view("cardiology")["waiting"]]
    assert waits == [6, 12]


def test_concurrent_call_next_dispatches_exactly_once():
    d, _clock, _events = make()
    for i in range(5):
        d.admit(fields(f"E{i}"))

    barrier = threading.Barrier(8)
    results = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        try:
            got = d.call_next("cardiology")
        except (ConflictError, EmptyQueueError) as e:
            got = e
        with lock:
            results.append(got)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [r for r in results if not isinstance(r, Exception)]
    assert len(winners) == 1
    assert all(isinstance(r, ConflictError) for r in results if r not in winners)
    assert len(d.entities(status="dispatched")) == 1
    assert sorted(w["position"] for w in d.department_view("cardiology")["waiting"]) == [1, 2, 3, 4]


def test_concurrent_admissions_keep_positions_contiguous():
    d, _clock, _events = make()

    def worker(n):
        for i in range(10):
            d.admit(fields(f"W{n}-{i}", urgency=["low", "high"][i % 2]))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    view = d.department_view("cardiology")
    assert sorted(w["position"] for w in view["waiting"]) == list(range(1, 41))
    assert len({w["token"] for w in view["waiting"]}) == 40


def test_departments_sharing_a_code_never_share_tokens():
    d, _clock, _events = make()
    barrier = threading.Barrier(2)
    errors = []

    def worker(department):
        barrier.wait()
        for i in range(50):
            try:
                d.admit(fields(f"{department}-{i}", department=department))
            except Exception as e:
                errors.append(e)

    threads = [threading.Thread(target=worker, args=(dept,)) for dept in ("cardiology", "Cardio")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    tokens = [e.token for e in d.entities()]
    assert len(tokens) == 100
    assert len(set(tokens)) == 100
    assert all(t.startswith("CAR-") for t in tokens)
    for token in tokens:
        assert d.lookup_token(token)["token"] == token
    for department in ("cardiology", "Cardio"):
        waiting = d.department_view(department)["waiting"]
        assert [w["position"] for w in waiting] == list(range(1, 51))
