from __future__ import annotations

import logging
from datetime import date
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session, sessionmaker

from . import dependencies
from .dispatcher import enqueue_assignment
from .entities import TaskRecord
from .errors import NotFoundError, StoreError, ValidationError
from .models import TaskPriority, TaskStatus, User, Workspace, WorkspaceKind
from .progress import PreviousStatusMap, apply_before_update
from .store import TaskStore, owner_ref
from .utils.time_utils import parse_date


logger = logging.getLogger("taskline.crud")


# ---------------------- Users ----------------------


def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.get(User, int(user_id))


def get_user_by_username(db: Session, username: str) -> Optional[User]:
    return db.query(User).filter(User.username == str(username or "").strip()).first()


def create_user(db: Session, *, username: str, display_name: str | None = None) -> User:
    uname = (username or "").strip()
    if not uname:
        raise ValidationError("Username is required")
    if get_user_by_username(db, uname):
        raise ValidationError("Username already exists")

    user = User(username=uname, display_name=(display_name or "").strip() or uname)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


# ---------------------- Owner collections ----------------------


def create_workspace(
    db: Session,
    *,
    owner: User,
    kind: WorkspaceKind | str = WorkspaceKind.personal,
    title: str | None = None,
) -> Workspace:
    try:
        k = WorkspaceKind(kind)
    except ValueError:
        raise ValidationError(f"Invalid workspace kind: {kind!r}") from None

    ws = Workspace(kind=k, title=(title or "").strip() or None, owner_user_id=int(owner.id))
    db.add(ws)
    db.commit()
    db.refresh(ws)
    return ws


def get_workspace(db: Session, workspace_id: int) -> Optional[Workspace]:
    return db.get(Workspace, int(workspace_id))


def list_workspaces(db: Session, *, user_id: int) -> list[Workspace]:
    return (
        db.query(Workspace)
        .filter(Workspace.owner_user_id == int(user_id))
        .order_by(Workspace.id.asc())
        .all()
    )


# ---------------------- Tasks ----------------------

# Fields a caller may set directly. Numbers, order and links have their own paths.
EDITABLE_FIELDS = {
    "title",
    "category",
    "assignee",
    "assignee_user_id",
    "start_date",
    "end_date",
    "status",
    "priority",
    "progress",
    "custom_fields",
}


def allocate_number(tasks: Iterable[TaskRecord]) -> int:
    """Smallest positive management number not held by a live task."""
    used = {int(t.number) for t in tasks}
    n = 1
    while n in used:
        n += 1
    return n


def _find(tasks: Iterable[TaskRecord], number: int) -> TaskRecord:
    for t in tasks:
        if int(t.number) == int(number):
            return t
    raise NotFoundError(f"Task #{number} not found")


def _check_fields(incoming: dict[str, Any]) -> dict[str, Any]:
    unknown = set(incoming) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown task field(s): {', '.join(sorted(unknown))}")

    out = dict(incoming)
    if "title" in out:
        title = str(out["title"] or "").strip()
        if not title:
            raise ValidationError("Title is required")
        out["title"] = title
    for key in ("start_date", "end_date"):
        if key in out:
            try:
                out[key] = parse_date(out[key])
            except ValueError:
                raise ValidationError(f"Invalid {key}: {out[key]!r}") from None
    if "status" in out and out["status"] is None:
        del out["status"]
    if "status" in out:
        try:
            out["status"] = TaskStatus(out["status"])
        except ValueError:
            raise ValidationError(f"Invalid status: {out['status']!r}") from None
    if "priority" in out:
        try:
            out["priority"] = TaskPriority(out["priority"])
        except ValueError:
            raise ValidationError(f"Invalid priority: {out['priority']!r}") from None
    if "assignee" in out:
        out["assignee"] = str(out["assignee"] or "").strip()
    if "category" in out:
        out["category"] = str(out["category"] or "").strip()
    if "assignee_user_id" in out and out["assignee_user_id"] is not None:
        try:
            out["assignee_user_id"] = int(out["assignee_user_id"])
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid assignee_user_id: {out['assignee_user_id']!r}") from None
    return out


def _check_dates(start: date, end: date) -> None:
    if start > end:
        raise ValidationError("start_date must not be after end_date")


def _assignee_key(task: TaskRecord) -> tuple[int | None, str]:
    return (task.assignee_user_id, (task.assignee or "").strip())


def _notify_assignment(notify_with: sessionmaker | None, task: TaskRecord) -> None:
    if notify_with is None:
        return
    # Best-effort; a failure here must not undo the write.
    try:
        db = notify_with()
        try:
            ws = get_workspace(db, task.owner_id)
            owner = owner_ref(ws) if ws is not None else None
        finally:
            db.close()
        enqueue_assignment(notify_with, task, owner)
    except Exception:
        logger.exception("Failed to queue assignment notification (task #%s, owner=%s)", task.number, task.owner_id)


def create_task(
    store: TaskStore,
    owner_id: int,
    fields: dict[str, Any],
    *,
    notify_with: sessionmaker | None = None,
) -> TaskRecord:
    """Create a task with the next free management number, placed last."""
    data = _check_fields(fields)
    for key in ("title", "start_date", "end_date"):
        if key not in data:
            raise ValidationError(f"{key} is required")
    _check_dates(data["start_date"], data["end_date"])

    # A concurrent create can take the same number; pick again on conflict.
    attempts = 3
    for i in range(attempts):
        existing = store.snapshot(owner_id)
        number = allocate_number(existing)
        draft = TaskRecord(
            record_id=0,
            owner_id=int(owner_id),
            number=number,
            title=data["title"],
            start_date=data["start_date"],
            end_date=data["end_date"],
        )
        row = apply_before_update(draft, data)
        row["number"] = number
        row["order"] = max((int(t.order) for t in existing), default=-1) + 1
        try:
            record_id = store.upsert(owner_id, None, row)
            break
        except StoreError:
            if i >= attempts - 1:
                raise
            logger.info("Management number #%s taken in owner %s; retrying", number, owner_id)

    task = store.get(owner_id, record_id)
    if task is None:
        raise StoreError(f"Created task record {record_id} is missing")
    logger.info("Created task #%s (owner=%s)", task.number, owner_id)

    if _assignee_key(task) != (None, ""):
        _notify_assignment(notify_with, task)
    return task


def update_task(
    store: TaskStore,
    owner_id: int,
    number: int,
    incoming: dict[str, Any],
    *,
    previous_status: PreviousStatusMap | None = None,
    notify_with: sessionmaker | None = None,
) -> TaskRecord:
    current = _find(store.snapshot(owner_id), number)
    data = _check_fields(incoming)
    _check_dates(data.get("start_date", current.start_date), data.get("end_date", current.end_date))

    fields = apply_before_update(current, data, previous_status)
    if fields:
        store.upsert(owner_id, current.record_id, fields)

    task = store.get(owner_id, current.record_id)
    if task is None:
        raise NotFoundError(f"Task #{number} not found")

    if _assignee_key(task) != _assignee_key(current) and _assignee_key(task) != (None, ""):
        _notify_assignment(notify_with, task)
    return task


def delete_task(
    store: TaskStore,
    owner_id: int,
    number: int,
    *,
    previous_status: PreviousStatusMap | None = None,
) -> int:
    """Delete a task and drop links pointing at it. Returns the number of links removed."""
    tasks = store.snapshot(owner_id)
    task = _find(tasks, number)
    store.delete(owner_id, task.record_id)
    if previous_status is not None:
        # The number may be handed to a new task.
        previous_status.pop(int(number), None)

    remaining = [t for t in tasks if t.record_id != task.record_id]
    removed = dependencies.on_task_deleted(store, owner_id, remaining, number)
    logger.info("Deleted task #%s (owner=%s)", number, owner_id)
    return removed
