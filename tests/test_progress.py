from datetime import date

import pytest

from taskline.entities import TaskRecord
from taskline.errors import ValidationError
from taskline.models import TaskStatus
from taskline.progress import apply_before_update, normalize_progress, remember_toggle, toggle_completion


def _task(status=TaskStatus.not_started, progress=0.0, number=1):
    return TaskRecord(
        record_id=10,
        owner_id=1,
        number=number,
        title="Write report",
        start_date=date(2024, 6, 1),
        end_date=date(2024, 6, 11),
        status=status,
        progress=progress,
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        (0.5, 0.5),
        (1, 1.0),
        ("40", 0.4),
        ("40%", 0.4),
        (" 0.25 ", 0.25),
        (150, 1.0),
        (-3, 0.0),
    ],
)
def test_normalize_progress(raw, expected):
    assert normalize_progress(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", ["abc", None, True, float("nan"), [1]])
def test_normalize_progress_rejects_non_numeric(raw):
    with pytest.raises(ValidationError):
        normalize_progress(raw)


def test_full_progress_forces_done_over_supplied_status():
    out = apply_before_update(_task(TaskStatus.in_progress), {"progress": 1, "status": "in_review"})
    assert out["status"] == TaskStatus.done
    assert out["progress"] == 1.0


def test_percentage_over_hundred_is_done():
    out = apply_before_update(_task(TaskStatus.in_progress), {"progress": 150})
    assert out == {"progress": 1.0, "status": TaskStatus.done}


def test_progress_path_records_no_previous_status():
    remembered = {}
    apply_before_update(_task(TaskStatus.in_review), {"progress": "100"}, remembered)
    assert remembered == {}


def test_partial_progress_keeps_status():
    out = apply_before_update(_task(TaskStatus.in_progress), {"progress": 30})
    assert out == {"progress": pytest.approx(0.3)}


def test_update_without_progress_passes_through():
    out = apply_before_update(_task(), {"title": "Renamed", "status": "in_progress"})
    assert out == {"title": "Renamed", "status": TaskStatus.in_progress}


def test_toggle_on_then_off_restores_exact_status():
    remembered = {}
    task = _task(TaskStatus.in_review)

    on = toggle_completion(task, True, remembered)
    assert on == {"status": TaskStatus.done}
    assert remembered == {}
    remember_toggle(task, True, remembered)
    assert remembered == {1: TaskStatus.in_review}

    done_task = _task(TaskStatus.done)
    off = toggle_completion(done_task, False, remembered)
    assert off == {"status": TaskStatus.in_review}
    remember_toggle(done_task, False, remembered)
    assert remembered == {}


def test_toggle_off_without_memory_defaults_to_not_started():
    assert toggle_completion(_task(TaskStatus.done), False, {}) == {"status": TaskStatus.not_started}


def test_checking_a_done_task_remembers_done():
    remembered = {1: TaskStatus.in_progress}
    done_task = _task(TaskStatus.done)

    remember_toggle(done_task, True, remembered)

    assert remembered == {1: TaskStatus.done}
    assert toggle_completion(done_task, False, remembered) == {"status": TaskStatus.done}


def test_lowering_progress_reuses_checkbox_memory():
    remembered = {}
    remember_toggle(_task(TaskStatus.in_progress), True, remembered)

    out = apply_before_update(_task(TaskStatus.done, progress=1.0), {"progress": 0.5}, remembered)
    assert out["status"] == TaskStatus.in_progress
    assert remembered == {}


def test_lowering_progress_with_explicit_status_wins():
    remembered = {1: TaskStatus.in_progress}
    out = apply_before_update(_task(TaskStatus.done, progress=1.0), {"progress": 0.5, "status": "in_review"}, remembered)
    assert out["status"] == TaskStatus.in_review
    assert remembered == {1: TaskStatus.in_progress}
