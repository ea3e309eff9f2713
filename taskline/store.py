"""Task storage contract and its SQLAlchemy implementation.

The editing engine and the window selector depend only on `TaskStore`; they
never see ORM rows.
"""

from __future__ import annotations

import logging
import threading
from datetime import date
from typing import Any, Callable, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, sessionmaker

from .entities import OwnerRef, TaskRecord, dump_custom_fields, dump_links, record_from_row
from .errors import StoreError, StoreUnavailable, ValidationError
from .models import Task, TaskPriority, TaskStatus, Workspace
from .utils.time_utils import parse_date


logger = logging.getLogger("taskline.store")

SnapshotCallback = Callable[[list[TaskRecord]], None]


class TaskStore(Protocol):
    def watch(self, owner_id: int, callback: SnapshotCallback) -> Callable[[], None]: ...

    def snapshot(self, owner_id: int) -> list[TaskRecord]: ...

    def get(self, owner_id: int, record_id: int) -> TaskRecord | None: ...

    def upsert(self, owner_id: int, record_id: int | None, fields: dict[str, Any]) -> int: ...

    def batch_update(self, owner_id: int, updates: list[tuple[int, dict[str, Any]]]) -> None: ...

    def delete(self, owner_id: int, record_id: int) -> None: ...

    def query_across_owners(
        self,
        *,
        end_date_from: date | None = None,
        end_date_before: date | None = None,
        exclude_status: TaskStatus | None = TaskStatus.done,
    ) -> list[tuple[OwnerRef, TaskRecord]]: ...


# Record attribute -> column. `links` and `custom_fields` are serialized.
_FIELD_COLUMNS = {
    "number": "number",
    "title": "title",
    "category": "category",
    "assignee": "assignee",
    "assignee_user_id": "assignee_user_id",
    "start_date": "start_date",
    "end_date": "end_date",
    "status": "status",
    "priority": "priority",
    "progress": "progress",
    "order": "sort_order",
}


def _apply_fields(row: Task, fields: dict[str, Any]) -> None:
    for key, value in fields.items():
        if key == "links":
            row.links_json = dump_links(value)
        elif key == "custom_fields":
            row.custom_fields_json = dump_custom_fields(value)
        elif key in ("start_date", "end_date"):
            setattr(row, key, parse_date(value))
        elif key == "status":
            row.status = TaskStatus(value)
        elif key == "priority":
            row.priority = TaskPriority(value)
        elif key == "progress":
            row.progress = float(value)
        elif key == "order":
            row.sort_order = int(value)
        elif key in _FIELD_COLUMNS:
            setattr(row, _FIELD_COLUMNS[key], value)
        else:
            raise ValidationError(f"Unknown task field: {key}")


def owner_ref(ws: Workspace) -> OwnerRef:
    kind = ws.kind.value if hasattr(ws.kind, "value") else str(ws.kind)
    return OwnerRef(id=int(ws.id), kind=kind, title=ws.title, owner_user_id=int(ws.owner_user_id))


class SqlTaskStore:
    """TaskStore over the SQLAlchemy session factory.

    `watch` subscribers are notified in-process after every write made
    through this store instance. Each write runs in its own transaction, so
    concurrent writers resolve last-write-wins per row.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._lock = threading.Lock()
        self._watchers: dict[int, list[SnapshotCallback]] = {}

    # ---- reads -----------------------------------------------------------------

    def _query_owner(self, db: Session, owner_id: int):
        return db.query(Task).filter(Task.workspace_id == int(owner_id))

    def snapshot(self, owner_id: int) -> list[TaskRecord]:
        db = self._session_factory()
        try:
            rows = self._query_owner(db, owner_id).order_by(Task.sort_order.asc(), Task.number.asc()).all()
            return [record_from_row(r) for r in rows]
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to read tasks for owner {owner_id}") from e
        finally:
            db.close()

    def get(self, owner_id: int, record_id: int) -> TaskRecord | None:
        db = self._session_factory()
        try:
            row = self._query_owner(db, owner_id).filter(Task.id == int(record_id)).first()
            return record_from_row(row) if row else None
        finally:
            db.close()

    def query_across_owners(
        self,
        *,
        end_date_from: date | None = None,
        end_date_before: date | None = None,
        exclude_status: TaskStatus | None = TaskStatus.done,
    ) -> list[tuple[OwnerRef, TaskRecord]]:
        """Tasks of every owner whose stored (exclusive) end date is in range."""
        db = self._session_factory()
        try:
            q = db.query(Task).options(joinedload(Task.workspace))
            if end_date_from is not None:
                q = q.filter(Task.end_date >= end_date_from)
            if end_date_before is not None:
                q = q.filter(Task.end_date < end_date_before)
            if exclude_status is not None:
                q = q.filter(Task.status != exclude_status)
            rows = q.order_by(Task.workspace_id.asc(), Task.sort_order.asc(), Task.number.asc()).all()
            return [(owner_ref(r.workspace), record_from_row(r)) for r in rows]
        finally:
            db.close()

    # ---- writes ----------------------------------------------------------------

    def upsert(self, owner_id: int, record_id: int | None, fields: dict[str, Any]) -> int:
        db = self._session_factory()
        try:
            if record_id is None:
                row = Task(workspace_id=int(owner_id))
                db.add(row)
            else:
                row = self._query_owner(db, owner_id).filter(Task.id == int(record_id)).first()
                if row is None:
                    raise StoreError(f"Task record {record_id} not found in owner {owner_id}")
            _apply_fields(row, fields)
            db.commit()
            new_id = int(row.id)
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Failed to write task record {record_id}") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        self._emit(owner_id)
        return new_id

    def batch_update(self, owner_id: int, updates: list[tuple[int, dict[str, Any]]]) -> None:
        """Apply every update in one transaction: all rows commit, or none do."""
        if not updates:
            return
        db = self._session_factory()
        try:
            ids = [int(rid) for rid, _ in updates]
            rows = {int(r.id): r for r in self._query_owner(db, owner_id).filter(Task.id.in_(ids)).all()}
            for rid, fields in updates:
                row = rows.get(int(rid))
                if row is None:
                    raise StoreError(f"Task record {rid} not found in owner {owner_id}")
                _apply_fields(row, fields)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Batch update failed for owner {owner_id}") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        self._emit(owner_id)

    def delete(self, owner_id: int, record_id: int) -> None:
        db = self._session_factory()
        try:
            self._query_owner(db, owner_id).filter(Task.id == int(record_id)).delete(synchronize_session=False)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Failed to delete task record {record_id}") from e
        finally:
            db.close()

        self._emit(owner_id)

    # ---- subscriptions ---------------------------------------------------------

    def watch(self, owner_id: int, callback: SnapshotCallback) -> Callable[[], None]:
        """Subscribe to full snapshots of one owner's tasks.

        The current snapshot is delivered immediately. Returns an unsubscribe
        callable.
        """
        with self._lock:
            self._watchers.setdefault(int(owner_id), []).append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                subs = self._watchers.get(int(owner_id)) or []
                if callback in subs:
                    subs.remove(callback)

        try:
            callback(self.snapshot(owner_id))
        except Exception:
            _unsubscribe()
            raise
        return _unsubscribe

    def _emit(self, owner_id: int) -> None:
        with self._lock:
            subs = list(self._watchers.get(int(owner_id)) or [])
        if not subs:
            return
        try:
            snap = self.snapshot(owner_id)
        except StoreUnavailable:
            logger.exception("Failed to read snapshot for watchers of owner %s", owner_id)
            return
        for cb in subs:
            try:
                cb([t.copy() for t in snap])
            except Exception:
                logger.exception("Task snapshot subscriber failed (owner=%s)", owner_id)

