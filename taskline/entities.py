"""Typed task records shared by the editing engine and the dispatcher.

Rows are coerced into these records at the store boundary, so the engine never
handles loosely-typed link or custom-field mappings.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Iterable

from .models import TaskPriority, TaskStatus
from .utils.time_utils import due_date_for, parse_date


logger = logging.getLogger("taskline.entities")


class LinkType(str, enum.Enum):
    finish_to_start = "0"
    start_to_start = "1"
    finish_to_finish = "2"
    start_to_finish = "3"


class CustomFieldKind(str, enum.Enum):
    text = "text"
    number = "number"
    date = "date"
    select = "select"


@dataclass(frozen=True)
class DependencyLink:
    id: str
    source: int  # predecessor management number
    target: int  # successor management number
    type: LinkType = LinkType.finish_to_start

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "source": self.source, "target": self.target, "type": self.type.value}


@dataclass(frozen=True)
class CustomField:
    id: str
    name: str
    kind: CustomFieldKind
    value: str | float | date | None = None

    def to_dict(self) -> dict[str, Any]:
        v = self.value
        if isinstance(v, date):
            v = v.isoformat()
        return {"id": self.id, "name": self.name, "type": self.kind.value, "value": v}


@dataclass(frozen=True)
class OwnerRef:
    """Identity of the collection a task belongs to."""

    id: int
    kind: str
    title: str | None = None
    owner_user_id: int | None = None

    @property
    def is_project(self) -> bool:
        return self.kind == "project"


@dataclass(frozen=True)
class AssigneeRef:
    """Who a notification is for: a stable user id, a display name, or both."""

    user_id: int | None = None
    display_name: str = ""

    @property
    def is_empty(self) -> bool:
        return self.user_id is None and not self.display_name.strip()

    def __str__(self) -> str:
        if self.user_id is not None:
            return f"user:{self.user_id}"
        return self.display_name


@dataclass
class TaskRecord:
    record_id: int
    owner_id: int
    number: int
    title: str
    start_date: date
    end_date: date
    category: str = ""
    assignee: str = ""
    assignee_user_id: int | None = None
    status: TaskStatus = TaskStatus.not_started
    priority: TaskPriority = TaskPriority.medium
    progress: float = 0.0
    order: int = 0
    links: list[DependencyLink] = field(default_factory=list)
    custom_fields: list[CustomField] = field(default_factory=list)

    @property
    def due_date(self) -> date:
        return due_date_for(self.end_date)

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.done

    def copy(self) -> "TaskRecord":
        return replace(self, links=list(self.links), custom_fields=list(self.custom_fields))


def _is_missing(v: Any) -> bool:
    return v is None or (isinstance(v, str) and not v.strip())


def coerce_link(raw: Any) -> DependencyLink | None:
    """Return a typed link, or None when the raw entry is incomplete or malformed."""
    if isinstance(raw, DependencyLink):
        return raw
    if not isinstance(raw, dict):
        return None
    if any(_is_missing(raw.get(k)) for k in ("id", "source", "target", "type")):
        return None
    try:
        return DependencyLink(
            id=str(raw["id"]).strip(),
            source=int(str(raw["source"]).strip()),
            target=int(str(raw["target"]).strip()),
            type=LinkType(str(raw["type"]).strip()),
        )
    except (TypeError, ValueError):
        return None


def coerce_custom_field(raw: Any) -> CustomField | None:
    if isinstance(raw, CustomField):
        return raw
    if not isinstance(raw, dict):
        return None
    fid = str(raw.get("id") or "").strip()
    name = str(raw.get("name") or "").strip()
    try:
        kind = CustomFieldKind(str(raw.get("type") or raw.get("kind") or "text").strip().lower())
    except ValueError:
        return None
    if not fid:
        return None

    value = raw.get("value")
    try:
        if value is None or value == "":
            value = None
        elif kind == CustomFieldKind.number:
            value = float(value)
        elif kind == CustomFieldKind.date:
            value = parse_date(value)
        else:
            value = str(value)
    except (TypeError, ValueError):
        return None
    return CustomField(id=fid, name=name, kind=kind, value=value)


def _loads_list(s: str | None) -> list:
    if not s:
        return []
    try:
        obj = json.loads(s)
        return obj if isinstance(obj, list) else []
    except Exception:
        return []


def load_links(links_json: str | None) -> list[DependencyLink]:
    out: list[DependencyLink] = []
    for raw in _loads_list(links_json):
        link = coerce_link(raw)
        if link is None:
            logger.warning("Dropping incomplete dependency link: %r", raw)
            continue
        out.append(link)
    return out


def load_custom_fields(custom_fields_json: str | None) -> list[CustomField]:
    return [cf for cf in (coerce_custom_field(raw) for raw in _loads_list(custom_fields_json)) if cf is not None]


def dump_links(links: Iterable[Any]) -> str:
    typed = [coerce_link(link) for link in (links or [])]
    return json.dumps([link.to_dict() for link in typed if link is not None], separators=(",", ":"))


def dump_custom_fields(fields: Iterable[Any]) -> str:
    typed = [coerce_custom_field(cf) for cf in (fields or [])]
    return json.dumps([cf.to_dict() for cf in typed if cf is not None], separators=(",", ":"))


def record_from_row(row) -> TaskRecord:
    return TaskRecord(
        record_id=int(row.id),
        owner_id=int(row.workspace_id),
        number=int(row.number),
        title=str(row.title or ""),
        category=str(row.category or ""),
        assignee=str(row.assignee or ""),
        assignee_user_id=(int(row.assignee_user_id) if row.assignee_user_id is not None else None),
        start_date=row.start_date,
        end_date=row.end_date,
        status=TaskStatus(row.status),
        priority=TaskPriority(row.priority),
        progress=float(row.progress or 0.0),
        order=int(row.sort_order or 0),
        links=load_links(row.links_json),
        custom_fields=load_custom_fields(row.custom_fields_json),
    )
