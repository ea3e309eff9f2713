from datetime import date, timedelta

import pytest

from taskline import crud
from taskline.models import WorkspaceKind
from taskline.windows import DeadlineWindow, in_window, select


AS_OF = date(2024, 6, 10)


@pytest.fixture
def spread(db, store, alice, project, make_task):
    bob = crud.create_user(db, username="bob", display_name="Bob")
    personal = crud.create_workspace(db, owner=bob, kind=WorkspaceKind.personal)

    make_task(project.id, "due today", AS_OF, assignee="Alice", status="in_progress")
    make_task(project.id, "overdue", AS_OF - timedelta(days=1), assignee="Alice")
    make_task(project.id, "due tomorrow", AS_OF + timedelta(days=1), assignee="Alice")
    make_task(project.id, "done today", AS_OF, assignee="Alice", status="done")
    make_task(personal.id, "bob today", AS_OF, assignee="Bob")
    make_task(personal.id, "long overdue", AS_OF - timedelta(days=30), assignee="Bob", progress=0.5)
    make_task(personal.id, "done overdue", AS_OF - timedelta(days=3), progress=1)
    return project, personal


def _titles(hits):
    return sorted(h.task.title for h in hits)


def test_today_spans_every_owner(store, spread):
    assert _titles(select(store, DeadlineWindow.today, AS_OF)) == ["bob today", "due today"]


def test_tomorrow_is_the_day_before_reminder(store, spread):
    assert _titles(select(store, "tomorrow", AS_OF)) == ["due tomorrow"]


def test_overdue_excludes_today_and_done(store, spread):
    assert _titles(select(store, DeadlineWindow.overdue, AS_OF)) == ["long overdue", "overdue"]


def test_hits_carry_owner_identity(store, spread):
    project, personal = spread
    owners = {h.task.title: h.owner for h in select(store, DeadlineWindow.today, AS_OF)}
    assert owners["due today"].id == project.id
    assert owners["due today"].title == "Launch"
    assert owners["due today"].is_project
    assert owners["bob today"].id == personal.id
    assert not owners["bob today"].is_project


def test_select_twice_returns_same_set(store, spread):
    first = select(store, DeadlineWindow.today, AS_OF)
    second = select(store, DeadlineWindow.today, AS_OF)
    assert [(h.owner.id, h.task.record_id) for h in first] == [(h.owner.id, h.task.record_id) for h in second]


def test_in_window_boundaries(store, spread):
    by_title = {t.title: t for t in store.snapshot(spread[0].id)}
    today = by_title["due today"]
    yesterday = by_title["overdue"]

    assert in_window(today, DeadlineWindow.today, AS_OF)
    assert not in_window(today, DeadlineWindow.overdue, AS_OF)
    assert in_window(yesterday, DeadlineWindow.overdue, AS_OF)
    assert not in_window(yesterday, DeadlineWindow.today, AS_OF)
    for window in DeadlineWindow:
        assert not in_window(by_title["done today"], window, AS_OF)


def test_due_date_is_day_before_stored_end(store, spread):
    t = next(t for t in store.snapshot(spread[0].id) if t.title == "due today")
    assert t.end_date == date(2024, 6, 11)
    assert t.due_date == AS_OF
