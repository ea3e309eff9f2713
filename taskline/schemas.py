from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from .entities import TaskRecord
from .models import TaskPriority, WorkspaceKind


class WorkspaceCreate(BaseModel):
    kind: WorkspaceKind = WorkspaceKind.personal
    title: Optional[str] = Field(default=None, max_length=255)


class WorkspaceOut(BaseModel):
    id: int
    kind: WorkspaceKind
    title: Optional[str] = None
    owner_user_id: int

    class Config:
        from_attributes = True


class CustomFieldIn(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(default="", max_length=128)
    type: str = Field(default="text", description="text, number, date or select")
    value: Optional[Union[float, str]] = None


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    start_date: date
    # Exclusive: a task due on June 10 ends on June 11.
    end_date: date
    category: str = Field(default="", max_length=128)
    assignee: str = Field(default="", max_length=128)
    assignee_user_id: Optional[int] = None
    status: Optional[str] = None
    priority: TaskPriority = TaskPriority.medium
    # A fraction, a percentage (e.g. 40) or a numeric string.
    progress: Optional[Union[float, str]] = None
    custom_fields: Optional[List[CustomFieldIn]] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    category: Optional[str] = Field(default=None, max_length=128)
    assignee: Optional[str] = Field(default=None, max_length=128)
    assignee_user_id: Optional[int] = None
    status: Optional[str] = None
    priority: Optional[TaskPriority] = None
    progress: Optional[Union[float, str]] = None
    custom_fields: Optional[List[CustomFieldIn]] = None


class LinkOut(BaseModel):
    id: str
    source: str
    target: str
    type: str


class TaskOut(BaseModel):
    record_id: int
    number: int
    title: str
    category: str
    assignee: str
    assignee_user_id: Optional[int] = None
    start_date: date
    end_date: date
    due_date: date
    status: str
    priority: str
    progress: float
    order: int
    links: List[LinkOut] = Field(default_factory=list)
    custom_fields: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_record(cls, t: TaskRecord) -> "TaskOut":
        return cls(
            record_id=t.record_id,
            number=t.number,
            title=t.title,
            category=t.category,
            assignee=t.assignee,
            assignee_user_id=t.assignee_user_id,
            start_date=t.start_date,
            end_date=t.end_date,
            due_date=t.due_date,
            status=t.status.value,
            priority=t.priority.value,
            progress=t.progress,
            order=t.order,
            links=[LinkOut(id=link.id, source=str(link.source), target=str(link.target), type=link.type.value) for link in t.links],
            custom_fields=[cf.to_dict() for cf in t.custom_fields],
        )


class TaskListOut(BaseModel):
    tasks: List[TaskOut]
    # Every link of the collection, flattened for the timeline view.
    links: List[LinkOut]


class CompletionIn(BaseModel):
    done: bool


class ReorderIn(BaseModel):
    number: int = Field(..., ge=1)
    from_index: int = Field(..., ge=0)
    to_index: int = Field(..., ge=0)


class LinkCreate(BaseModel):
    source: int
    target: int
    type: str = Field(default="0", description="0 finish-to-start, 1 start-to-start, 2 finish-to-finish, 3 start-to-finish")


class TaskDeleteOut(BaseModel):
    ok: bool = True
    links_removed: int = 0


class DeviceInfoIn(BaseModel):
    user_agent: str = Field(default="", max_length=512)
    platform: str = Field(default="", max_length=64)
    language: str = Field(default="", max_length=32)


class DeviceRegister(DeviceInfoIn):
    token: str = Field(..., min_length=1)


class DeviceOut(BaseModel):
    fingerprint: str
    platform: str
    language: str
    permission_checked: bool
    updated_at: datetime

    class Config:
        from_attributes = True


class PromptStatusOut(BaseModel):
    acknowledged: bool


class NotificationEventOut(BaseModel):
    id: str
    title: str
    body: str
    received_at: datetime
    read: bool


class UnreadCountOut(BaseModel):
    unread: int
