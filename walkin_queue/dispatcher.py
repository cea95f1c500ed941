from __future__ import annotations

# The dispatcher is the *authoritative brain* of the queue.
#
# Every operation that changes a department runs as one critical section
# under that department's lock:
#
#   1. roll the department over to the current operating period if needed
#   2. check preconditions and apply the transition
#   3. recompute positions/estimates of the remaining waiting set
#   4. save entities + department counters to the store
#   5. hand the resulting events to the fan-out
#
# Events are built from the committed state, so observers never see a
# half-updated snapshot. Fan-out failures are logged and never undo a
# transition. Departments never contend with each other.

import logging
import threading
import uuid
from datetime import date, datetime
from typing import Any, Callable, Iterable, Mapping

from .errors import ConflictError, EmptyQueueError, NotActiveError, NotFoundError, ValidationError
from .fanout import QUEUE_UPDATED, TOKEN_CALLED, Event, FanOut
from .models import DepartmentQueue, Entity, EntityStatus, Gender, OperationalState, VisitType
from .ordering import apply, recompute, sort_waiting
from .priority import UrgencyClass, parse_urgency
from .service_time import ServiceTimeTracker
from .store import InMemoryStore, QueueStore
from .tokens import department_code, generate_token, operating_period, period_bounds

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "phone", "age", "gender", "department")

SKIPPED = "skipped"
CANCELLED = "cancelled"


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def validate_admission(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Check and normalize admission fields.

    Raises:
        ValidationError: listing every missing or malformed field.
    """
    missing = [k for k in REQUIRED_FIELDS if fields.get(k) is None or (isinstance(fields.get(k), str) and not fields[k].strip())]
    if missing:
        raise ValidationError(f"missing required fields: {', '.join(missing)}", fields=missing)

    bad: list[str] = []
    out: dict[str, Any] = {}

    for key in ("name", "phone", "department"):
        text = _text(fields[key])
        if not text:
            bad.append(key)
        out[key] = text
    if out["department"]:
        try:
            department_code(out["department"])
        except ValueError:
            bad.append("department")

    age = fields["age"]
    try:
        if isinstance(age, bool):
            raise ValueError("bool is not an age")
        out["age"] = int(age)
        if out["age"] < 0 or out["age"] != float(age):
            raise ValueError("age out of range")
    except (TypeError, ValueError, OverflowError):
        bad.append("age")

    try:
        out["gender"] = Gender(_text(fields["gender"]).lower())
    except ValueError:
        bad.append("gender")

    urgency = fields.get("urgency")
    try:
        out["urgency"] = UrgencyClass.LOW if urgency in (None, "") else parse_urgency(urgency)
    except ValueError:
        bad.append("urgency")

    visit_type = fields.get("visit_type")
    try:
        out["visit_type"] = VisitType.WALK_IN if visit_type in (None, "") else VisitType(_text(visit_type).lower())
    except ValueError:
        bad.append("visit_type")

    out["email"] = _text(fields.get("email")).lower() or None
    out["symptoms"] = _text(fields.get("symptoms")) or None

    if bad:
        raise ValidationError(f"malformed fields: {', '.join(bad)}", fields=bad)
    return out


class Dispatcher:
    """Admission, ordering and dispatch for every department.

    Args:
        store: persistence collaborator (defaults to an in-memory store).
        fanout: event fan-out; observers subscribe there.
        service_times: source of the average service minutes per department.
        clock: returns "now"; injectable for tests.
    """

    def __init__(
        self,
        *,
        store: QueueStore | None = None,
        fanout: FanOut | None = None,
        service_times: ServiceTimeTracker | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store: QueueStore = store if store is not None else InMemoryStore()
        self.fanout = fanout if fanout is not None else FanOut()
        self.service_times = service_times if service_times is not None else ServiceTimeTracker()
        self._clock = clock or datetime.now

        self._locks_guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock(self, department: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(department)
            if lock is None:
                lock = self._locks[department] = threading.RLock()
            return lock

    # -------------------- operating period --------------------

    def _load_queue(self, department: str, now: datetime) -> DepartmentQueue:
        """Current-period queue of `department`, created if new (caller holds the lock)."""
        q = self._existing_queue(department, now)
        if q is None:
            return DepartmentQueue(department=department, period=operating_period(now), opened_at=now)
        return q

    def _existing_queue(self, department: str, now: datetime) -> DepartmentQueue | None:
        """Stored queue of `department`, rolled over to the current period."""
        period = operating_period(now)
        q = self.store.load_queue(department)
        if q is None:
            return None
        if q.period < period:
            self.store.archive_queue(q)
            q = q.next_period(period, now)
            self.store.save_queue(q)
            logger.info("department %s rolled over to period %s", department, period)
        return q

    def rollover(self) -> list[str]:
        """Start a fresh period for every department whose period has ended.

        Returns the departments that rolled over. Entities are untouched.
        """
        now = self._clock()
        period = operating_period(now)
        rolled: list[str] = []
        for department in self.store.departments():
            with self._lock(department):
                q = self.store.load_queue(department)
                if q is not None and q.period < period:
                    self._existing_queue(department, now)
                    rolled.append(department)
        return rolled

    # -------------------- recompute + publish --------------------

    def _recompute(self, department: str, now: datetime) -> list[Entity]:
        waiting = self.store.waiting(department)
        placements = recompute(waiting, now, self.service_times.average(department))
        ordered = apply(waiting, placements)
        self.store.save_entities(ordered)
        return ordered

    def _snapshot(self, q: DepartmentQueue, ordered: list[Entity]) -> dict[str, Any]:
        current = self.store.get_entity(q.current_dispatched) if q.current_dispatched else None
        return {
            "department": q.department,
            "period": q.period.isoformat(),
            "state": q.state.value,
            "current_token": current.token if current else None,
            "current_entity_id": current.id if current else None,
            "total_waiting": len(ordered),
            "total_served": q.total_served,
            "emergency_count": sum(1 for e in ordered if e.urgency is UrgencyClass.EMERGENCY),
            "waiting": [
                {
                    "id": e.id,
                    "token": e.token,
                    "urgency": e.urgency.value,
                    "position": e.position,
                    "estimated_wait_minutes": e.estimated_wait_minutes,
                    "arrival_time": e.arrival_time.isoformat(),
                }
                for e in ordered
            ],
        }

    def _commit(
        self,
        q: DepartmentQueue,
        now: datetime,
        *,
        called: Entity | None = None,
    ) -> list[Event]:
        """Recompute, save the department, and build its events.

        `token:called` (if any) always precedes `queue:updated`.
        """
        ordered = self._recompute(q.department, now)
        events: list[Event] = []
        if called is not None:
            q.seq += 1
            events.append(
                Event(
                    TOKEN_CALLED,
                    q.department,
                    {"seq": q.seq, "entity_id": called.id, "entity": called.status_view()},
                )
            )
        q.seq += 1
        snapshot = self._snapshot(q, ordered)
        events.append(Event(QUEUE_UPDATED, q.department, {"seq": q.seq, **snapshot}))
        self.store.save_queue(q)
        return events

    def _publish(self, events: Iterable[Event]) -> None:
        for event in events:
            try:
                self.fanout.publish(event)
            except Exception:
                logger.warning("failed to publish %s for %s", event.kind, event.department, exc_info=True)

    # -------------------- mutations --------------------

    def admit(self, fields: Mapping[str, Any]) -> Entity:
        """Register an entity, issue its token and place it in line."""
        data = validate_admission(fields)
        department = data["department"]
        with self._lock(department):
            now = self._clock()
            q = self._load_queue(department, now)

            seq = q.issued + 1
            entity_id = uuid.uuid4().hex
            token = generate_token(department, seq, now)
            # Departments sharing a code race for the same tokens; the store
            # reservation is the only system-wide check.
            while not self.store.reserve_token(token, entity_id):
                seq += 1
                token = generate_token(department, seq, now)
            q.issued = seq

            entity = Entity(
                id=entity_id,
                token=token,
                arrival_time=now,
                status=EntityStatus.WAITING,
                **data,
            )
            self.store.save_entity(entity)
            events = self._commit(q, now)
            admitted = self._get_or_404(entity.id)
            logger.info(
                "admitted %s to %s (urgency=%s, position=%s)",
                token,
                department,
                entity.urgency.value,
                admitted.position,
            )
            self._publish(events)
            return admitted

    def call_next(self, department: str) -> Entity:
        """Dispatch the top-ranked waiting entity of `department`.

        Raises:
            NotActiveError: the department is paused or closed.
            ConflictError: the department is already serving someone.
            EmptyQueueError: nobody is waiting.
        """
        with self._lock(department):
            now = self._clock()
            q = self._load_queue(department, now)
            if q.state is not OperationalState.ACTIVE:
                raise NotActiveError(f"department {department} is {q.state.value}")
            if q.current_dispatched is not None:
                current = self.store.get_entity(q.current_dispatched)
                label = current.token if current else q.current_dispatched
                raise ConflictError(f"department {department} is already serving {label}")

            waiting = self.store.waiting(department)
            if not waiting:
                raise EmptyQueueError(f"no entities waiting in {department}")

            chosen = sort_waiting(waiting, now)[0]
            chosen.status = EntityStatus.DISPATCHED
            chosen.called_at = now
            chosen.position = 0
            chosen.estimated_wait_minutes = 0
            self.store.save_entity(chosen)
            q.current_dispatched = chosen.id

            events = self._commit(q, now, called=chosen)
            logger.info("called %s in %s", chosen.token, department)
            self._publish(events)
            return chosen

    def _get_or_404(self, entity_id: str) -> Entity:
        entity = self.store.get_entity(entity_id)
        if entity is None:
            raise NotFoundError(f"unknown entity {entity_id}")
        return entity

    def complete(self, entity_id: str) -> Entity:
        """Finish the service of a dispatched entity."""
        department = self._get_or_404(entity_id).department
        with self._lock(department):
            now = self._clock()
            entity = self._get_or_404(entity_id)
            if entity.status is not EntityStatus.DISPATCHED:
                raise ConflictError(f"{entity.token} is {entity.status.value}, not dispatched")

            q = self._load_queue(department, now)
            entity.status = EntityStatus.COMPLETED
            entity.completed_at = now
            self.store.save_entity(entity)
            q.total_served += 1
            if q.current_dispatched == entity.id:
                q.current_dispatched = None
            self.service_times.record(department, called_at=entity.called_at, completed_at=now)

            events = self._commit(q, now)
            logger.info("completed %s in %s (served=%d)", entity.token, department, q.total_served)
            self._publish(events)
            return entity

    def _drop_waiting(self, entity: Entity, reason: str) -> Entity:
        department = entity.department
        with self._lock(department):
            now = self._clock()
            entity = self._get_or_404(entity.id)
            if entity.status is not EntityStatus.WAITING:
                raise ConflictError(f"{entity.token} is {entity.status.value}, not waiting")

            q = self._load_queue(department, now)
            entity.status = EntityStatus.SKIPPED
            entity.skip_reason = reason
            self.store.save_entity(entity)

            events = self._commit(q, now)
            logger.info("%s %s in %s", reason, entity.token, department)
            self._publish(events)
            return entity

    def skip(self, entity_id: str) -> Entity:
        """Take a waiting entity out of line (e.g. a no-show)."""
        return self._drop_waiting(self._get_or_404(entity_id), SKIPPED)

    def cancel(self, token: str) -> Entity:
        """Let the holder of `token` leave the line before being called."""
        entity = self.store.find_by_token(token)
        if entity is None:
            raise NotFoundError(f"unknown token {token}")
        return self._drop_waiting(entity, CANCELLED)

    def retriage(self, entity_id: str, urgency: UrgencyClass | str) -> Entity:
        """Change the urgency class of a waiting entity."""
        try:
            new_urgency = parse_urgency(urgency)
        except ValueError as e:
            raise ValidationError(f"unknown urgency {urgency!r}", fields=["urgency"]) from e

        department = self._get_or_404(entity_id).department
        with self._lock(department):
            now = self._clock()
            entity = self._get_or_404(entity_id)
            if entity.status is not EntityStatus.WAITING:
                raise ConflictError(f"{entity.token} is {entity.status.value}, not waiting")

            q = self._load_queue(department, now)
            old = entity.urgency
            entity.urgency = new_urgency
            self.store.save_entity(entity)

            events = self._commit(q, now)
            entity = self._get_or_404(entity_id)
            logger.info("retriaged %s from %s to %s", entity.token, old.value, new_urgency.value)
            self._publish(events)
            return entity

    def set_state(self, department: str, state: OperationalState | str) -> DepartmentQueue:
        """Pause, close or reactivate dispatching for `department`."""
        try:
            new_state = OperationalState(state)
        except ValueError as e:
            raise ValidationError(f"unknown state {state!r}", fields=["state"]) from e

        with self._lock(department):
            now = self._clock()
            q = self._load_queue(department, now)
            q.state = new_state
            events = self._commit(q, now)
            logger.info("department %s is now %s", department, new_state.value)
            self._publish(events)
            return q

    # -------------------- reads --------------------

    def department_view(self, department: str) -> dict[str, Any]:
        """Consistent snapshot of one department's line."""
        with self._lock(department):
            now = self._clock()
            q = self._existing_queue(department, now)
            if q is None:
                raise NotFoundError(f"unknown department {department}")
            ordered = sorted(self.store.waiting(department), key=lambda e: e.position)
            return {"seq": q.seq, **self._snapshot(q, ordered)}

    def live_status(self) -> list[dict[str, Any]]:
        """Per-department summary for live displays."""
        rows: list[dict[str, Any]] = []
        for department in self.store.departments():
            view = self.department_view(department)
            rows.append(
                {
                    "department": department,
                    "current_token": view["current_token"],
                    "total_waiting": view["total_waiting"],
                    "total_served": view["total_served"],
                    "emergency_count": view["emergency_count"],
                    "state": view["state"],
                }
            )
        return rows

    def lookup_token(self, token: str) -> dict[str, Any]:
        entity = self.store.find_by_token(token)
        if entity is None:
            raise NotFoundError(f"unknown token {token}")
        return entity.status_view()

    def entity(self, entity_id: str) -> Entity:
        return self._get_or_404(entity_id)

    def entities(
        self,
        *,
        department: str | None = None,
        status: EntityStatus | str | None = None,
        urgency: UrgencyClass | str | None = None,
        period: date | None = None,
    ) -> list[Entity]:
        """Entities admitted in `period` (default: today), filtered.

        Waiting entities come first in position order, then the rest by
        arrival time.
        """
        now = self._clock()
        try:
            want_status = EntityStatus(status) if status is not None else None
            want_urgency = parse_urgency(urgency) if urgency is not None else None
        except ValueError as e:
            raise ValidationError(str(e)) from e
        start, end = period_bounds(period or operating_period(now), now.tzinfo)

        rows = [
            e
            for e in self.store.list_entities(department)
            if start <= e.arrival_time <= end
            and (want_status is None or e.status is want_status)
            and (want_urgency is None or e.urgency is want_urgency)
        ]
        rows.sort(
            key=lambda e: (
                e.status is not EntityStatus.WAITING,
                e.position if e.status is EntityStatus.WAITING else 0,
                e.arrival_time,
            )
        )
        return rows
