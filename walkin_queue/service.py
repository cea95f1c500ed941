from __future__ import annotations

# Queue service: MQTT adapter around the Dispatcher.
#
# IMPORTANT: the business logic lives in `dispatcher.Dispatcher` (pure Python,
# unit tested without a broker). This module only:
# 1) decodes request messages and checks the caller's role
# 2) maps them onto dispatcher operations and replies
# 3) forwards dispatcher events to MQTT topics (`fanout.MqttSink`)
# 4) broadcasts the live status periodically for observers to resync

import argparse
import logging
import threading
import time
from typing import Any, Callable, TYPE_CHECKING

from .config import Settings
from .dispatcher import Dispatcher
from .errors import ErrorResponse, ForbiddenError, QueueError
from .fanout import FanOut, MqttSink
from .logging_utils import configure_logging
from .service_time import ServiceTimeTracker

if TYPE_CHECKING:
    from .mqtt_client import MqttClient

logger = logging.getLogger(__name__)

STAFF_ROLES = frozenset({"staff", "admin", "doctor"})

Handler = Callable[[dict[str, Any]], dict[str, Any]]


def require_staff(msg: dict[str, Any]) -> None:
    role = msg.get("role")
    if not isinstance(role, str) or role.strip().lower() not in STAFF_ROLES:
        raise ForbiddenError("staff, admin or doctor role required")


def _field(msg: dict[str, Any], name: str) -> str:
    value = msg.get(name)
    if not isinstance(value, str) or not value.strip():
        raise _BadRequest(f"{name} required")
    return value.strip()


class _BadRequest(Exception):
    pass


class QueueService:
    """Request handling on top of a Dispatcher (testable without MQTT)."""

    def __init__(self, dispatcher: Dispatcher) -> None:
        self.dispatcher = dispatcher
        self._handlers: dict[str, Handler] = {
            # open to everybody
            "admit": self._admit,
            "lookup_token": self._lookup_token,
            "cancel": self._cancel,
            "live_status": self._live_status,
            # staff only
            "call_next": self._staff(self._call_next),
            "complete": self._staff(self._complete),
            "skip": self._staff(self._skip),
            "retriage": self._staff(self._retriage),
            "set_state": self._staff(self._set_state),
            "department": self._staff(self._department),
            "list_entities": self._staff(self._list_entities),
        }

    @staticmethod
    def _staff(handler: Handler) -> Handler:
        def guarded(msg: dict[str, Any]) -> dict[str, Any]:
            require_staff(msg)
            return handler(msg)

        return guarded

    def handle(self, msg: dict[str, Any]) -> dict[str, Any]:
        """Turn one request into one reply (success or error envelope)."""
        mtype = msg.get("type")
        handler = self._handlers.get(mtype) if isinstance(mtype, str) else None
        if handler is None:
            return ErrorResponse("bad_request", f"unknown request type {mtype!r}").to_message()
        try:
            return handler(msg)
        except _BadRequest as e:
            return ErrorResponse("bad_request", str(e)).to_message()
        except QueueError as e:
            logger.info("%s refused: %s (%s)", mtype, e.message, e.code)
            return e.to_response().to_message()

    # -------------------- handlers --------------------

    def _admit(self, msg: dict[str, Any]) -> dict[str, Any]:
        fields = msg.get("fields")
        if not isinstance(fields, dict):
            raise _BadRequest("fields object required")
        entity = self.dispatcher.admit(fields)
        return {"type": "admitted", "entity_id": entity.id, "entity": entity.status_view()}

    def _lookup_token(self, msg: dict[str, Any]) -> dict[str, Any]:
        return {"type": "token_status", "entity": self.dispatcher.lookup_token(_field(msg, "token"))}

    def _cancel(self, msg: dict[str, Any]) -> dict[str, Any]:
        entity = self.dispatcher.cancel(_field(msg, "token"))
        return {"type": "cancelled", "entity": entity.status_view()}

    def _live_status(self, msg: dict[str, Any]) -> dict[str, Any]:
        return {"type": "live_status", "departments": self.dispatcher.live_status()}

    def _call_next(self, msg: dict[str, Any]) -> dict[str, Any]:
        entity = self.dispatcher.call_next(_field(msg, "department"))
        return {"type": "called", "entity": entity.to_dict()}

    def _complete(self, msg: dict[str, Any]) -> dict[str, Any]:
        entity = self.dispatcher.complete(_field(msg, "entity_id"))
        return {"type": "completed", "entity": entity.to_dict()}

    def _skip(self, msg: dict[str, Any]) -> dict[str, Any]:
        entity = self.dispatcher.skip(_field(msg, "entity_id"))
        return {"type": "skipped", "entity": entity.to_dict()}

    def _retriage(self, msg: dict[str, Any]) -> dict[str, Any]:
        entity = self.dispatcher.retriage(_field(msg, "entity_id"), _field(msg, "urgency"))
        return {"type": "retriaged", "entity": entity.to_dict()}

    def _set_state(self, msg: dict[str, Any]) -> dict[str, Any]:
        q = self.dispatcher.set_state(_field(msg, "department"), _field(msg, "state"))
        return {"type": "state_changed", "department": q.department, "state": q.state.value}

    def _department(self, msg: dict[str, Any]) -> dict[str, Any]:
        return {"type": "department_view", **self.dispatcher.department_view(_field(msg, "department"))}

    def _list_entities(self, msg: dict[str, Any]) -> dict[str, Any]:
        rows = self.dispatcher.entities(
            department=msg.get("department") or None,
            status=msg.get("status") or None,
            urgency=msg.get("urgency") or None,
        )
        return {"type": "entities", "count": len(rows), "entities": [e.to_dict() for e in rows]}


class MqttQueueService:
    """MQTT adapter: request topic in, replies + event topics out."""

    def __init__(self, *, mqtt: MqttClient, namespace: str, dispatcher: Dispatcher | None = None) -> None:
        from .mqtt_topics import live_status, queue_requests

        self._live_status = live_status
        self._queue_requests = queue_requests

        self.mqtt = mqtt
        self.namespace = namespace
        self.dispatcher = dispatcher or Dispatcher(fanout=FanOut())
        self.service = QueueService(self.dispatcher)
        self.sink = MqttSink(mqtt=mqtt, namespace=namespace)

        # Background publisher thread control.
        self._stop_event = threading.Event()
        self._status_thread: threading.Thread | None = None

    def start(self, *, publish_status_every: float = 5.0) -> None:
        self.sink.attach(self.dispatcher.fanout)
        self.mqtt.subscribe(self._queue_requests(self.namespace))
        self.mqtt.add_handler(self._handle_message)

        if publish_status_every > 0:
            self._status_thread = threading.Thread(
                target=self._status_publisher_loop,
                args=(publish_status_every,),
                daemon=True,
            )
            self._status_thread.start()

    def stop(self) -> None:
        """Stop background threads. Call before disconnecting MQTT."""
        self._stop_event.set()
        t = self._status_thread
        if t and t.is_alive():
            t.join(timeout=1.0)

    def publish_live_status(self) -> None:
        """Run the period check, then broadcast every department's status."""
        self.dispatcher.rollover()
        snapshot = {"type": "live_status", "departments": self.dispatcher.live_status(), "ts": time.time()}
        self.mqtt.publish(self._live_status(self.namespace), snapshot, retain=True)

    def _status_publisher_loop(self, interval: float) -> None:
        while not self._stop_event.is_set():
            try:
                self.publish_live_status()
            except Exception:
                logger.exception("live status broadcast failed")
            self._stop_event.wait(interval)

    def _handle_message(self, topic: str, msg: dict[str, Any]) -> None:
        if topic != self._queue_requests(self.namespace):
            return
        reply_to = msg.get("reply_to") if isinstance(msg.get("reply_to"), str) else None
        if not reply_to:
            return
        corr_id = msg.get("corr_id") if isinstance(msg.get("corr_id"), str) else None

        reply = dict(self.service.handle(msg))
        if corr_id is not None:
            reply["corr_id"] = corr_id
        self.mqtt.publish(reply_to, reply)


def main() -> None:
    # Import MQTT dependencies only when running the real service.
    from .mqtt_client import MqttClient

    settings = Settings.from_env()
    parser = argparse.ArgumentParser(description="Walk-in queue service (MQTT)")
    parser.add_argument("--mqtt-host", default=settings.mqtt_host)
    parser.add_argument("--mqtt-port", type=int, default=settings.mqtt_port)
    parser.add_argument("--namespace", default=settings.namespace)
    parser.add_argument(
        "--avg-service-minutes",
        type=float,
        default=settings.avg_service_minutes,
        help="average minutes per service used for wait estimates",
    )
    parser.add_argument(
        "--service-time-window",
        type=int,
        default=settings.service_time_window,
        help="estimate from the last N completed services per department (0 = fixed average)",
    )
    parser.add_argument(
        "--publish-status-every",
        type=float,
        default=settings.publish_status_every,
        help="seconds between live status broadcasts",
    )
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args()

    configure_logging(args.log_level)

    dispatcher = Dispatcher(
        service_times=ServiceTimeTracker(default_minutes=args.avg_service_minutes, window=args.service_time_window),
    )
    mqtt_client = MqttClient(client_id="walkin-queue-service", host=args.mqtt_host, port=args.mqtt_port)
    mqtt_client.start()

    service = MqttQueueService(mqtt=mqtt_client, namespace=args.namespace, dispatcher=dispatcher)
    service.start(publish_status_every=args.publish_status_every)

    logger.info("queue service connected to MQTT %s:%s, namespace=%s", args.mqtt_host, args.mqtt_port, args.namespace)

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
        mqtt_client.stop()


if __name__ == "__main__":
    main()
