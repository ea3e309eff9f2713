from datetime import date

import pytest

from taskline.deps import SessionRegistry
from taskline.errors import ReorderError, StoreError, StoreUnavailable
from taskline.models import TaskStatus
from taskline.session import EditingSession


class UnreachableStore:
    def watch(self, owner_id, callback):
        raise StoreUnavailable("offline")

    def snapshot(self, owner_id):
        raise StoreUnavailable("offline")


def test_unavailable_store_gives_empty_list():
    sess = EditingSession(UnreachableStore(), 1)

    assert sess.tasks == []
    assert sess.links_for_render() == []
    assert sess.refresh() == []
    sess.close()


def test_session_follows_store_writes(store, project, make_task):
    sess = EditingSession(store, project.id)
    assert sess.tasks == []

    make_task(project.id, "First")
    make_task(project.id, "Second")

    assert [t.title for t in sess.tasks] == ["First", "Second"]
    sess.close()

    make_task(project.id, "Third")
    assert len(sess.tasks) == 2


def test_checkbox_round_trip_through_store(store, project, make_task):
    make_task(project.id, "Review PR", status="in_review")
    sess = EditingSession(store, project.id)

    assert sess.toggle_completion(1, True).status == TaskStatus.done
    assert sess.previous_status == {1: TaskStatus.in_review}
    assert sess.toggle_completion(1, False).status == TaskStatus.in_review
    assert sess.previous_status == {}


def test_progress_update_through_session(store, project, make_task):
    make_task(project.id, "Migrate", status="in_progress")
    sess = EditingSession(store, project.id)

    done = sess.update_task(1, {"progress": "100"})
    assert (done.status, done.progress) == (TaskStatus.done, 1.0)

    # Driven to done by progress: nothing remembered, so status stays done.
    lowered = sess.update_task(1, {"progress": 0.4})
    assert lowered.status == TaskStatus.done
    assert lowered.progress == pytest.approx(0.4)


def test_failed_reorder_restores_persisted_order(store, project, make_task, monkeypatch):
    for title in ("A", "B", "C"):
        make_task(project.id, title)
    sess = EditingSession(store, project.id)

    def broken_batch(owner_id, updates):
        raise StoreError("disk full")

    monkeypatch.setattr(store, "batch_update", broken_batch)
    with pytest.raises(ReorderError):
        sess.reorder(1, 0, 2)

    assert [t.number for t in sess.tasks] == [1, 2, 3]


def test_reorder_updates_live_list(store, project, make_task):
    for title in ("A", "B", "C"):
        make_task(project.id, title)
    sess = EditingSession(store, project.id)

    sess.reorder(3, 2, 0)

    assert [(t.number, t.order) for t in sess.tasks] == [(3, 0), (1, 1), (2, 2)]


def test_deleted_number_is_reused_and_forgets_memory(store, project, make_task):
    for title in ("A", "B", "C"):
        make_task(project.id, title)
    sess = EditingSession(store, project.id)
    sess.toggle_completion(2, True)

    sess.delete_task(2)
    created = sess.create_task({"title": "D", "start_date": date(2024, 6, 1), "end_date": date(2024, 6, 3)})

    assert created.number == 2
    assert 2 not in sess.previous_status
    assert sorted(t.number for t in sess.tasks) == [1, 2, 3]


class WatchFailsOnce:
    """Wraps a real store whose first subscription attempt hits an outage."""

    def __init__(self, inner, failures=1):
        self.inner = inner
        self.failures = failures

    def watch(self, owner_id, callback):
        if self.failures:
            self.failures -= 1
            raise StoreUnavailable("offline")
        return self.inner.watch(owner_id, callback)

    def __getattr__(self, name):
        return getattr(self.inner, name)


def test_session_resubscribes_after_outage(store, project):
    sess = EditingSession(WatchFailsOnce(store), project.id)

    sess.create_task({"title": "X", "start_date": date(2024, 6, 1), "end_date": date(2024, 6, 3)})

    assert [t.title for t in sess.tasks] == ["X"]
    sess.create_task({"title": "Y", "start_date": date(2024, 6, 1), "end_date": date(2024, 6, 3)})
    assert [t.title for t in sess.tasks] == ["X", "Y"]
    sess.close()


def test_failed_checkbox_write_keeps_memory_unchanged(store, project, make_task, monkeypatch):
    make_task(project.id, "Review PR", status="in_review")
    sess = EditingSession(store, project.id)

    def broken_upsert(owner_id, record_id, fields):
        raise StoreError("disk full")

    monkeypatch.setattr(store, "upsert", broken_upsert)
    with pytest.raises(StoreError):
        sess.toggle_completion(1, True)

    assert sess.previous_status == {}
    assert sess.find(1).status == TaskStatus.in_review
    sess.close()


def test_check_uncheck_on_done_task_keeps_done(store, project, make_task):
    make_task(project.id, "Shipped", status="done")
    sess = EditingSession(store, project.id)

    sess.toggle_completion(1, True)
    assert sess.toggle_completion(1, False).status == TaskStatus.done
    sess.close()


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_registry_evicts_least_recently_used(store, project, make_task):
    registry = SessionRegistry(max_sessions=2)
    first = registry.get(store, 1, project.id)
    second = registry.get(store, 2, project.id)
    assert registry.get(store, 1, project.id) is first

    registry.get(store, 3, project.id)

    assert len(registry) == 2
    make_task(project.id, "After eviction")
    assert [t.title for t in first.tasks] == ["After eviction"]
    assert second.tasks == []
    registry.close_all()


def test_registry_closes_idle_sessions(store, project):
    clock = FakeClock()
    registry = SessionRegistry(idle_seconds=60, clock=clock)
    stale = registry.get(store, 1, project.id)

    clock.now = 61.0
    fresh = registry.get(store, 1, project.id)

    assert fresh is not stale
    assert len(registry) == 1
    registry.close_all()
