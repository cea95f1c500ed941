"""Error taxonomy and the shared wire error envelope.

Every operation of the dispatcher raises a subclass of `QueueError`. The MQTT
service turns them into `ErrorResponse` messages so that all clients see the
same shape: `{"type": "error", "code": ..., "message": ...}`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ErrorResponse:
    code: str
    message: str

    def to_message(self, *, corr_id: str | None = None) -> dict[str, Any]:
        msg: dict[str, Any] = {"type": "error", "code": self.code, "message": self.message}
        if corr_id is not None:
            msg["corr_id"] = corr_id
        return msg


class QueueError(Exception):
    """Base class for errors surfaced by queue operations."""

    code = "queue_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(self.code, self.message)


class ValidationError(QueueError):
    """Missing or malformed admission fields."""

    code = "validation_error"

    def __init__(self, message: str, *, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = list(fields or [])


class NotFoundError(QueueError):
    code = "not_found"


class EmptyQueueError(QueueError):
    code = "empty_queue"


class ConflictError(QueueError):
    """A dispatch is already active, or the entity is in an incompatible status."""

    code = "conflict"


class NotActiveError(QueueError):
    code = "not_active"


class ForbiddenError(QueueError):
    code = "forbidden"
