from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def _utcnow() -> datetime:
    return datetime.utcnow().replace(tzinfo=None)


class TaskStatus(str, enum.Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    in_review = "in_review"
    done = "done"


class TaskPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"


class WorkspaceKind(str, enum.Enum):
    personal = "personal"  # one user's own task list
    project = "project"  # shared project space


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("username", name="uq_users_username"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    # Free-text name shown on tasks as the assignee. Not guaranteed unique.
    display_name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)

    devices: Mapped[list["Device"]] = relationship(
        "Device",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Workspace(Base):
    """An owner collection: a personal task list or a shared project."""

    __tablename__ = "workspaces"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(Enum(WorkspaceKind), default=WorkspaceKind.personal, nullable=False)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    owner_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)

    tasks: Mapped[list["Task"]] = relationship(
        "Task",
        back_populates="workspace",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (UniqueConstraint("workspace_id", "number", name="uq_tasks_workspace_number"),)

    # Stable storage key; never reused.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workspace_id: Mapped[int] = mapped_column(Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), index=True)

    # Human-facing management number, unique within the workspace, reused after deletion.
    number: Mapped[int] = mapped_column(Integer, nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(128), default="", nullable=False)

    assignee: Mapped[str] = mapped_column(String(128), default="", nullable=False, index=True)
    assignee_user_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    # Exclusive: the task covers [start_date, end_date).
    end_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    status: Mapped[str] = mapped_column(Enum(TaskStatus), default=TaskStatus.not_started, nullable=False, index=True)
    priority: Mapped[str] = mapped_column(Enum(TaskPriority), default=TaskPriority.medium, nullable=False)
    progress: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Outgoing dependency links (this task is the predecessor), JSON list.
    links_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    custom_fields_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    workspace: Mapped[Workspace] = relationship("Workspace", back_populates="tasks")


class Device(Base):
    """A push endpoint registered by one user on one physical device/browser."""

    __tablename__ = "devices"
    __table_args__ = (UniqueConstraint("user_id", "fingerprint", name="uq_devices_user_fingerprint"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)

    token: Mapped[str] = mapped_column(Text, nullable=False)

    user_agent: Mapped[str] = mapped_column(String(512), default="", nullable=False)
    platform: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    language: Mapped[str] = mapped_column(String(32), default="", nullable=False)

    permission_checked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    permission_checked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    user: Mapped[User] = relationship("User", back_populates="devices")


class DevicePromptAck(Base):
    """Records that the permission prompt was resolved on a device.

    Kept apart from `devices`: a declined prompt leaves no Device row, but it
    must still not be shown again.
    """

    __tablename__ = "device_prompt_acks"

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    fingerprint: Mapped[str] = mapped_column(String(64), primary_key=True)

    acknowledged_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
