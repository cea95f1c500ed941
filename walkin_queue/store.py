from __future__ import annotations

# Persistence boundary.
#
# The dispatcher only needs a handful of reads and writes, captured by the
# `QueueStore` protocol. `InMemoryStore` is the implementation used by the
# service; a database-backed store can be dropped in without touching the
# dispatcher.
#
# The store hands out copies: callers must `save_*` what they changed, which
# keeps every operation a single read-modify-write.

import copy
import threading
from typing import Iterable, Protocol

from .models import DepartmentQueue, Entity, EntityStatus


class QueueStore(Protocol):
    def get_entity(self, entity_id: str) -> Entity | None: ...

    def find_by_token(self, token: str) -> Entity | None: ...

    def reserve_token(self, token: str, entity_id: str) -> bool: ...

    def save_entity(self, entity: Entity) -> None: ...

    def save_entities(self, entities: Iterable[Entity]) -> None: ...

    def list_entities(self, department: str | None = None) -> list[Entity]: ...

    def waiting(self, department: str) -> list[Entity]: ...

    def load_queue(self, department: str) -> DepartmentQueue | None: ...

    def save_queue(self, queue: DepartmentQueue) -> None: ...

    def departments(self) -> list[str]: ...

    def archive_queue(self, queue: DepartmentQueue) -> None: ...


class InMemoryStore:
    """Dict-backed store, safe to share between threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entities: dict[str, Entity] = {}
        self._tokens: dict[str, str] = {}  # token -> entity id
        self._queues: dict[str, DepartmentQueue] = {}
        self._archive: list[DepartmentQueue] = []

    # -------------------- entities --------------------

    def get_entity(self, entity_id: str) -> Entity | None:
        with self._lock:
            e = self._entities.get(entity_id)
            return copy.copy(e) if e else None

    def find_by_token(self, token: str) -> Entity | None:
        with self._lock:
            # A reserved token has no entity until the admission saves it.
            e = self._entities.get(self._tokens.get(token, ""))
            return copy.copy(e) if e else None

    def reserve_token(self, token: str, entity_id: str) -> bool:
        """Claim `token` for `entity_id`; False if someone else holds it."""
        with self._lock:
            owner = self._tokens.setdefault(token, entity_id)
            return owner == entity_id

    def save_entity(self, entity: Entity) -> None:
        self.save_entities([entity])

    def save_entities(self, entities: Iterable[Entity]) -> None:
        with self._lock:
            for e in entities:
                owner = self._tokens.get(e.token)
                if owner is not None and owner != e.id:
                    raise ValueError(f"token {e.token} already issued")
                self._entities[e.id] = copy.copy(e)
                self._tokens[e.token] = e.id

    def list_entities(self, department: str | None = None) -> list[Entity]:
        with self._lock:
            return [
                copy.copy(e)
                for e in self._entities.values()
                if department is None or e.department == department
            ]

    def waiting(self, department: str) -> list[Entity]:
        with self._lock:
            return [
                copy.copy(e)
                for e in self._entities.values()
                if e.department == department and e.status is EntityStatus.WAITING
            ]

    # -------------------- department queues --------------------

    def load_queue(self, department: str) -> DepartmentQueue | None:
        with self._lock:
            q = self._queues.get(department)
            return copy.copy(q) if q else None

    def save_queue(self, queue: DepartmentQueue) -> None:
        with self._lock:
            self._queues[queue.department] = copy.copy(queue)

    def departments(self) -> list[str]:
        with self._lock:
            return sorted(self._queues)

    def archive_queue(self, queue: DepartmentQueue) -> None:
        """Keep a closed period's counters for reporting."""
        with self._lock:
            self._archive.append(copy.copy(queue))

    def archived(self, department: str | None = None) -> list[DepartmentQueue]:
        with self._lock:
            return [
                copy.copy(q) for q in self._archive if department is None or q.department == department
            ]
