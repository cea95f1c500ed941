"""MQTT topic helpers.

We keep topic construction in one place so all components agree on naming.

Topic layout under a configurable namespace (default: `walkin/v1`):

Request/response:
- `<ns>/queue/requests`
    Admissions, staff actions and lookups, all sent to the queue service.
- `<ns>/queue/responses/<client_id>`
    Each client listens for its replies on its own topic.

Streaming/broadcast:
- `<ns>/departments/<dept>/events`
    `queue:updated` and `token:called` events of one department.
- `<ns>/events/all`
    The same events for every department (live display boards).
- `<ns>/status/live`
    Periodic live-status snapshot of all departments. Observers that missed
    events resynchronize from here.

Department names are percent-encoded so that `/`, `+` and `#` can never leak
into the topic structure.
"""

from __future__ import annotations

from urllib.parse import quote

from .config import DEFAULT_NAMESPACE


def department_segment(department: str) -> str:
    return quote(department, safe="")


def queue_requests(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/queue/requests"


def queue_responses(client_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/queue/responses/{client_id}"


def department_events(department: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/departments/{department_segment(department)}/events"


def all_department_events(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/events/all"


def live_status(namespace: str = DEFAULT_NAMESPACE) -> str:
    """Periodic aggregated status snapshots, published by the queue service."""
    return f"{namespace}/status/live"
