"""Progress <-> status coupling applied before every task write.

Two controls drive the same `status` field: the progress value (slider or
timeline edit) and the completion checkbox. The checkbox path is reversible
through a previous-status map owned by the caller's editing session.
"""

from __future__ import annotations

from typing import Any, MutableMapping

from .entities import TaskRecord
from .errors import ValidationError
from .models import TaskStatus


PreviousStatusMap = MutableMapping[int, TaskStatus]


def normalize_progress(value: Any) -> float:
    """Return progress as a fraction in [0, 1].

    Numeric strings are parsed first. Values above 1 are percentages and are
    divided by 100; the result is then clamped, so 150 becomes 1.0.
    """
    if isinstance(value, bool):
        raise ValidationError("progress must be a number")
    if isinstance(value, str):
        raw = value.strip().rstrip("%").strip()
        try:
            value = float(raw)
        except ValueError:
            raise ValidationError(f"progress is not numeric: {value!r}") from None
    try:
        p = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"progress is not numeric: {value!r}") from None
    if p != p:  # NaN
        raise ValidationError("progress is not numeric: nan")

    if p > 1:
        p = p / 100.0
    return min(1.0, max(0.0, p))


def apply_before_update(
    task: TaskRecord,
    incoming: dict[str, Any],
    previous_status: PreviousStatusMap | None = None,
) -> dict[str, Any]:
    """Return the update to persist for `task` given the caller's `incoming` fields.

    Pure with respect to `task`; only `previous_status` may change, and only
    when a lowered progress restores a status the checkbox path remembered.
    """
    out = dict(incoming)
    if "status" in out and out["status"] is not None:
        out["status"] = TaskStatus(out["status"])

    if "progress" not in out or out["progress"] is None:
        out.pop("progress", None)
        return out

    progress = normalize_progress(out["progress"])
    out["progress"] = progress

    if progress >= 1.0:
        # Forced regardless of any supplied status. Nothing is remembered here.
        out["status"] = TaskStatus.done
        return out

    if "status" not in out and task.status == TaskStatus.done and previous_status is not None:
        remembered = previous_status.pop(int(task.number), None)
        if remembered is not None:
            out["status"] = remembered
    return out


def toggle_completion(
    task: TaskRecord,
    done: bool,
    previous_status: PreviousStatusMap,
) -> dict[str, Any]:
    """Return the status update for the completion checkbox.

    Leaves `previous_status` alone; call `remember_toggle` once the update
    has been written.
    """
    if done:
        return {"status": TaskStatus.done}
    return {"status": previous_status.get(int(task.number)) or TaskStatus.not_started}


def remember_toggle(task: TaskRecord, done: bool, previous_status: PreviousStatusMap) -> None:
    """Record the status `task` had before a check, or forget it after an uncheck.

    Checking always records the current status, Done included, so unchecking
    restores exactly what was there before.
    """
    key = int(task.number)
    if done:
        previous_status[key] = task.status
    else:
        previous_status.pop(key, None)
