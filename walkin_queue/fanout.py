from __future__ import annotations

# Notification fan-out.
#
# Events are scoped by department. Each event goes to the subscribers of its
# department and to the "all departments" channel used by live displays.
#
# Delivery is best-effort: a failing subscriber is logged and skipped, and
# nothing is retried. State changes are authoritative, events are advisory;
# observers re-pull full state (e.g. the periodic live-status broadcast) to
# heal from missed events.

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, TYPE_CHECKING

if TYPE_CHECKING:
    from .mqtt_client import MqttClient

logger = logging.getLogger(__name__)

QUEUE_UPDATED = "queue:updated"
TOKEN_CALLED = "token:called"


@dataclass(frozen=True)
class Event:
    kind: str
    department: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        return {"type": self.kind, "department": self.department, **self.payload}


Subscriber = Callable[[Event], None]


class FanOut:
    """In-process publish/subscribe keyed by department name."""

    ALL = "*"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: dict[str, dict[int, Subscriber]] = {}
        self._ids = itertools.count(1)

    def subscribe(self, department: str, callback: Subscriber) -> int:
        """Subscribe to one department. Returns a handle for `unsubscribe`."""
        handle = next(self._ids)
        with self._lock:
            self._subs.setdefault(department, {})[handle] = callback
        return handle

    def subscribe_all(self, callback: Subscriber) -> int:
        return self.subscribe(self.ALL, callback)

    def unsubscribe(self, handle: int) -> bool:
        with self._lock:
            for dept, subs in list(self._subs.items()):
                if subs.pop(handle, None) is not None:
                    if not subs:
                        del self._subs[dept]
                    return True
        return False

    def subscriber_count(self, department: str) -> int:
        with self._lock:
            return len(self._subs.get(department, {}))

    def publish(self, event: Event) -> int:
        """Deliver `event`; return how many subscribers accepted it."""
        with self._lock:
            targets = list(self._subs.get(event.department, {}).values())
            if event.department != self.ALL:
                targets += list(self._subs.get(self.ALL, {}).values())

        delivered = 0
        for cb in targets:
            try:
                cb(event)
            except Exception:
                logger.warning("subscriber failed for %s on %s", event.kind, event.department, exc_info=True)
                continue
            delivered += 1
        return delivered


class MqttSink:
    """Fan-out subscriber that forwards every event to MQTT topics.

    Per-department events go to `<ns>/departments/<dept>/events`, and a copy
    goes to `<ns>/events/all` for displays that show every department.
    """

    def __init__(self, *, mqtt: MqttClient, namespace: str) -> None:
        from .mqtt_topics import all_department_events, department_events

        self._department_events = department_events
        self._all_department_events = all_department_events
        self.mqtt = mqtt
        self.namespace = namespace

    def attach(self, fanout: FanOut) -> int:
        return fanout.subscribe_all(self)

    def __call__(self, event: Event) -> None:
        msg = event.to_message()
        self.mqtt.publish(self._department_events(event.department, self.namespace), msg)
        self.mqtt.publish(self._all_department_events(self.namespace), msg)
