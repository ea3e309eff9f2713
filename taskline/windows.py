from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date, timedelta

from .entities import AssigneeRef, OwnerRef, TaskRecord
from .models import TaskStatus
from .store import TaskStore
from .utils.time_utils import end_date_for, today_local


logger = logging.getLogger("taskline.windows")


class DeadlineWindow(str, enum.Enum):
    today = "today"
    tomorrow = "tomorrow"  # day-before reminder
    overdue = "overdue"


@dataclass(frozen=True)
class WindowHit:
    owner: OwnerRef
    task: TaskRecord

    @property
    def assignee(self) -> AssigneeRef:
        return AssigneeRef(user_id=self.task.assignee_user_id, display_name=self.task.assignee or "")


def in_window(task: TaskRecord, window: DeadlineWindow, as_of: date) -> bool:
    if task.is_done:
        return False
    due = task.due_date
    if window == DeadlineWindow.today:
        return due == as_of
    if window == DeadlineWindow.tomorrow:
        return due == as_of + timedelta(days=1)
    if window == DeadlineWindow.overdue:
        return due < as_of
    raise ValueError(f"Unknown window: {window!r}")


def _end_date_bounds(window: DeadlineWindow, as_of: date) -> tuple[date | None, date | None]:
    # Bounds on the stored exclusive end date: [from, before).
    if window == DeadlineWindow.today:
        return end_date_for(as_of), end_date_for(as_of) + timedelta(days=1)
    if window == DeadlineWindow.tomorrow:
        start = end_date_for(as_of + timedelta(days=1))
        return start, start + timedelta(days=1)
    return None, end_date_for(as_of)


def select(store: TaskStore, window: DeadlineWindow | str, as_of: date | None = None) -> list[WindowHit]:
    """Tasks of every owner whose due date falls in `window` relative to `as_of`.

    `as_of` defaults to today in the configured reference time zone. Store
    failures propagate so the scheduled run aborts and the next run starts
    from scratch.
    """
    w = DeadlineWindow(window)
    day = as_of or today_local()
    start, before = _end_date_bounds(w, day)

    rows = store.query_across_owners(end_date_from=start, end_date_before=before, exclude_status=TaskStatus.done)
    hits = [WindowHit(owner=owner, task=task) for owner, task in rows if in_window(task, w, day)]
    logger.info("Window %s as of %s: %s task(s)", w.value, day.isoformat(), len(hits))
    return hits
