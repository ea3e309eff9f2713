import pytest

from taskline.errors import ReorderError, ValidationError
from taskline.ordering import move, reorder
from taskline.store import SqlTaskStore


def _numbers(tasks):
    return [t.number for t in tasks]


def _persisted(store, owner_id):
    return [(t.number, t.order) for t in store.snapshot(owner_id)]


class HalfBatchStore(SqlTaskStore):
    """Applies the real updates, then hits a missing record before commit."""

    def batch_update(self, owner_id, updates):
        super().batch_update(owner_id, [*updates, (999999, {"order": 0})])


def test_move_splices():
    assert move(["a", "b", "c", "d"], 0, 2) == ["b", "c", "a", "d"]
    assert move(["a", "b", "c", "d"], 3, 0) == ["d", "a", "b", "c"]
    assert move(["a"], 0, 0) == ["a"]


@pytest.mark.parametrize("src, dst", [(-1, 0), (0, 4), (4, 0)])
def test_move_rejects_out_of_range(src, dst):
    with pytest.raises(ValidationError):
        move(["a", "b", "c", "d"], src, dst)


def test_reorder_persists_every_position(store, project, make_task):
    for title in ("Plan", "Build", "Test", "Ship"):
        make_task(project.id, title)
    seq = store.snapshot(project.id)
    assert _numbers(seq) == [1, 2, 3, 4]

    result = reorder(store, project.id, seq, 1, 0, 2)

    assert _numbers(result) == [2, 3, 1, 4]
    assert [t.order for t in result] == [0, 1, 2, 3]
    assert _persisted(store, project.id) == [(2, 0), (3, 1), (1, 2), (4, 3)]


def test_reorder_uses_given_sequence_even_with_gaps(store, project, make_task):
    for title in ("A", "B", "C"):
        make_task(project.id, title)
    seq = store.snapshot(project.id)
    store.batch_update(project.id, [(t.record_id, {"order": o}) for t, o in zip(seq, (5, 40, 41))])

    reorder(store, project.id, store.snapshot(project.id), 3, 2, 0)

    assert _persisted(store, project.id) == [(3, 0), (1, 1), (2, 2)]


def test_reorder_wrong_moved_task_changes_nothing(store, project, make_task):
    for title in ("A", "B", "C"):
        make_task(project.id, title)
    before = _persisted(store, project.id)

    with pytest.raises(ValidationError):
        reorder(store, project.id, store.snapshot(project.id), 3, 0, 1)
    assert _persisted(store, project.id) == before


def test_reorder_failure_leaves_previous_order(session_factory, project, make_task):
    for title in ("A", "B", "C", "D"):
        make_task(project.id, title)
    failing = HalfBatchStore(session_factory)
    before = _persisted(failing, project.id)

    with pytest.raises(ReorderError):
        reorder(failing, project.id, failing.snapshot(project.id), 1, 0, 3)

    assert _persisted(failing, project.id) == before
