from __future__ import annotations

import logging
import threading
from typing import Any

from sqlalchemy.orm import sessionmaker

from . import crud, dependencies, ordering
from .entities import DependencyLink, LinkType, TaskRecord
from .errors import NotFoundError, ReorderError, StoreUnavailable
from .models import TaskStatus
from .progress import remember_toggle, toggle_completion
from .store import TaskStore


logger = logging.getLogger("taskline.session")


class EditingSession:
    """One client's live view of an owner collection.

    Holds the latest snapshot pushed by the store and the previous-status map
    used by the completion checkbox. When the store cannot be read the task
    list is simply empty.
    """

    def __init__(self, store: TaskStore, owner_id: int, *, notify_with: sessionmaker | None = None):
        self.store = store
        self.owner_id = int(owner_id)
        self.notify_with = notify_with
        self.previous_status: dict[int, TaskStatus] = {}
        self._lock = threading.Lock()
        self._tasks: list[TaskRecord] = []
        self._unsubscribe = None
        self._closed = False
        self._watch_lock = threading.Lock()
        self._subscribe()

    def _subscribe(self) -> bool:
        """Start following the store unless already subscribed or closed."""
        with self._watch_lock:
            if self._closed or self._unsubscribe is not None:
                return self._unsubscribe is not None
            try:
                self._unsubscribe = self.store.watch(self.owner_id, self._on_snapshot)
            except StoreUnavailable:
                logger.warning("Task store unavailable for owner %s; no live data", self.owner_id)
                return False
            return True

    def _on_snapshot(self, tasks: list[TaskRecord]) -> None:
        with self._lock:
            self._tasks = list(tasks or [])

    @property
    def tasks(self) -> list[TaskRecord]:
        # Picks the subscription back up once the store is reachable again.
        self._subscribe()
        with self._lock:
            return [t.copy() for t in self._tasks]

    def refresh(self) -> list[TaskRecord]:
        try:
            self._on_snapshot(self.store.snapshot(self.owner_id))
        except StoreUnavailable:
            logger.warning("Task store unavailable for owner %s", self.owner_id)
            self._on_snapshot([])
        return self.tasks

    def find(self, number: int) -> TaskRecord:
        for t in self.tasks:
            if int(t.number) == int(number):
                return t
        raise NotFoundError(f"Task #{number} not found")

    # ---- ordering --------------------------------------------------------------

    def reorder(self, moved_number: int, from_index: int, to_index: int) -> list[TaskRecord]:
        current = self.tasks
        try:
            result = ordering.reorder(self.store, self.owner_id, current, moved_number, from_index, to_index)
        except ReorderError:
            # Back to what is actually persisted.
            self.refresh()
            raise
        self._on_snapshot(result)
        return result

    # ---- links -----------------------------------------------------------------

    def add_link(self, source: int, target: int, link_type: LinkType | str = LinkType.finish_to_start) -> DependencyLink:
        return dependencies.add_link(self.store, self.owner_id, self.tasks, source, target, link_type)

    def remove_link(self, link_id: str) -> bool:
        return dependencies.remove_link(self.store, self.owner_id, self.tasks, link_id)

    def links_for_render(self) -> list[dict[str, str]]:
        return dependencies.links_for_render(self.tasks)

    # ---- tasks -----------------------------------------------------------------

    def create_task(self, fields: dict[str, Any]) -> TaskRecord:
        return crud.create_task(self.store, self.owner_id, fields, notify_with=self.notify_with)

    def update_task(self, number: int, incoming: dict[str, Any]) -> TaskRecord:
        return crud.update_task(
            self.store,
            self.owner_id,
            number,
            incoming,
            previous_status=self.previous_status,
            notify_with=self.notify_with,
        )

    def delete_task(self, number: int) -> int:
        return crud.delete_task(self.store, self.owner_id, number, previous_status=self.previous_status)

    def toggle_completion(self, number: int, done: bool) -> TaskRecord:
        task = self.find(number)
        fields = toggle_completion(task, bool(done), self.previous_status)
        self.store.upsert(self.owner_id, task.record_id, fields)
        remember_toggle(task, bool(done), self.previous_status)
        return self._reload(task)

    def _reload(self, task: TaskRecord) -> TaskRecord:
        fresh = self.store.get(self.owner_id, task.record_id)
        if fresh is None:
            raise NotFoundError(f"Task #{task.number} not found")
        return fresh

    def close(self) -> None:
        with self._watch_lock:
            self._closed = True
            unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
