from __future__ import annotations

# Queue clients.
#
# Registration desks, staff consoles and status pages all talk to the queue
# service with the same request/response protocol:
# - connect to broker
# - subscribe to a private reply topic
# - publish a request and wait for the correlated reply
#
# `watch()` is the passive side: it follows the event topics and prints every
# frame, which is what a display board does.

import time
from typing import Any, Callable

from .mqtt_client import MqttClient
from .mqtt_topics import all_department_events, department_events, live_status, queue_requests, queue_responses


class QueueClient:
    """Blocking client for the queue service."""

    def __init__(
        self,
        *,
        mqtt_host: str,
        mqtt_port: int,
        namespace: str,
        client_id: str | None = None,
        role: str | None = None,
        timeout: float = 5.0,
    ) -> None:
        # Unique client id so many desks/consoles can run concurrently.
        self.client_id = client_id or f"client-{int(time.time() * 1000)}"
        self.namespace = namespace
        self.role = role
        self.timeout = timeout
        self.mqtt = MqttClient(client_id=self.client_id, host=mqtt_host, port=mqtt_port)
        self._reply_topic = queue_responses(self.client_id, namespace)

    def __enter__(self) -> QueueClient:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()

    def start(self) -> None:
        self.mqtt.start()
        self.mqtt.subscribe(self._reply_topic)

    def stop(self) -> None:
        self.mqtt.stop()

    def request(self, message: dict[str, Any]) -> dict[str, Any]:
        msg = dict(message)
        if self.role is not None:
            msg.setdefault("role", self.role)
        return self.mqtt.request(
            request_topic=queue_requests(self.namespace),
            response_topic=self._reply_topic,
            message=msg,
            timeout=self.timeout,
        )

    # -------------------- open operations --------------------

    def admit(self, fields: dict[str, Any]) -> dict[str, Any]:
        return self.request({"type": "admit", "fields": fields})

    def lookup(self, token: str) -> dict[str, Any]:
        return self.request({"type": "lookup_token", "token": token})

    def cancel(self, token: str) -> dict[str, Any]:
        return self.request({"type": "cancel", "token": token})

    def live_status(self) -> dict[str, Any]:
        return self.request({"type": "live_status"})

    # -------------------- staff operations --------------------

    def call_next(self, department: str) -> dict[str, Any]:
        return self.request({"type": "call_next", "department": department})

    def complete(self, entity_id: str) -> dict[str, Any]:
        return self.request({"type": "complete", "entity_id": entity_id})

    def skip(self, entity_id: str) -> dict[str, Any]:
        return self.request({"type": "skip", "entity_id": entity_id})

    def retriage(self, entity_id: str, urgency: str) -> dict[str, Any]:
        return self.request({"type": "retriage", "entity_id": entity_id, "urgency": urgency})

    def set_state(self, department: str, state: str) -> dict[str, Any]:
        return self.request({"type": "set_state", "department": department, "state": state})

    def department(self, department: str) -> dict[str, Any]:
        return self.request({"type": "department", "department": department})


def format_event(msg: dict[str, Any]) -> str:
    """One-line rendering of an event or live-status frame."""
    mtype = msg.get("type")
    if mtype == "token:called":
        entity = msg.get("entity") or {}
        return f"[{msg.get('department')}] now serving {entity.get('token')}"
    if mtype == "queue:updated":
        tokens = " ".join(w["token"] for w in msg.get("waiting", [])[:5])
        return (
            f"[{msg.get('department')}] #{msg.get('seq')} serving={msg.get('current_token') or '-'} "
            f"waiting={msg.get('total_waiting')} served={msg.get('total_served')} "
            f"emergency={msg.get('emergency_count')} next: {tokens or '-'}"
        )
    if mtype == "live_status":
        parts = [
            f"{d['department']}: {d['current_token'] or '-'} ({d['total_waiting']} waiting, {d['total_served']} served)"
            for d in msg.get("departments", [])
        ]
        return "[live] " + ("; ".join(parts) or "no departments")
    return f"[?] {msg}"


def watch(
    *,
    mqtt_host: str,
    mqtt_port: int,
    namespace: str,
    department: str | None = None,
    out: Callable[[str], None] = print,
) -> None:
    """Follow events (one department, or all) until interrupted."""
    mqtt = MqttClient(client_id=f"watch-{int(time.time() * 1000)}", host=mqtt_host, port=mqtt_port)
    mqtt.add_handler(lambda topic, msg: out(format_event(msg)))
    mqtt.start()
    mqtt.subscribe(department_events(department, namespace) if department else all_department_events(namespace))
    mqtt.subscribe(live_status(namespace))
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        mqtt.stop()
