from __future__ import annotations

# Service time helpers.
#
# The wait estimate is linear: position * average service minutes. The
# average is either a fixed figure (15 minutes by default) or a rolling mean
# of the last N completed services of the department:
#
#   service minutes = completed_at - called_at
#
# Only the average changes; the linear model stays as it is.

import threading
from collections import deque
from datetime import datetime

DEFAULT_SERVICE_MINUTES = 15.0


def service_minutes(*, called_at: datetime, completed_at: datetime) -> float:
    """Duration of one service in minutes.

    Raises:
        ValueError: if the service completed before it was called.
    """
    seconds = (completed_at - called_at).total_seconds()
    if seconds < 0:
        raise ValueError("completed_at must not be earlier than called_at")
    return seconds / 60.0


class ServiceTimeTracker:
    """Per-department rolling average of service durations.

    With `window=0` the tracker always answers `default_minutes`.
    """

    def __init__(self, *, default_minutes: float = DEFAULT_SERVICE_MINUTES, window: int = 0) -> None:
        if default_minutes < 0:
            raise ValueError("default_minutes must be >= 0")
        if window < 0:
            raise ValueError("window must be >= 0")
        self.default_minutes = float(default_minutes)
        self.window = window
        self._lock = threading.Lock()
        self._samples: dict[str, deque[float]] = {}

    def record(self, department: str, *, called_at: datetime | None, completed_at: datetime) -> None:
        if self.window == 0 or called_at is None:
            return
        minutes = service_minutes(called_at=called_at, completed_at=completed_at)
        with self._lock:
            self._samples.setdefault(department, deque(maxlen=self.window)).append(minutes)

    def average(self, department: str) -> float:
        with self._lock:
            samples = self._samples.get(department)
            if not samples:
                return self.default_minutes
            return sum(samples) / len(samples)
