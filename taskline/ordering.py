from __future__ import annotations

import logging
from typing import Sequence

from .entities import TaskRecord
from .errors import ReorderError, StoreError, ValidationError
from .store import TaskStore


logger = logging.getLogger("taskline.ordering")


def move(sequence: Sequence[TaskRecord], from_index: int, to_index: int) -> list[TaskRecord]:
    """Remove the element at `from_index` and reinsert it at `to_index`."""
    n = len(sequence)
    if not (0 <= int(from_index) < n) or not (0 <= int(to_index) < n):
        raise ValidationError(f"Reorder index out of range (from={from_index}, to={to_index}, size={n})")
    items = list(sequence)
    moved = items.pop(int(from_index))
    items.insert(int(to_index), moved)
    return items


def reorder(
    store: TaskStore,
    owner_id: int,
    sequence: Sequence[TaskRecord],
    moved_number: int,
    from_index: int,
    to_index: int,
) -> list[TaskRecord]:
    """Move one task and persist `order = position` for every task in the sequence.

    The sequence is taken as given (the caller disables drag reordering while
    a filter or alternate sort is active). All rows are written in one atomic
    batch; on failure nothing is persisted and `ReorderError` is raised.
    """
    n = len(sequence)
    if 0 <= int(from_index) < n and int(sequence[int(from_index)].number) != int(moved_number):
        raise ValidationError(
            f"Task #{moved_number} is not at position {from_index} (found #{sequence[int(from_index)].number})"
        )
    items = move(sequence, from_index, to_index)

    renumbered: list[TaskRecord] = []
    updates: list[tuple[int, dict]] = []
    for position, task in enumerate(items):
        t = task.copy()
        t.order = position
        renumbered.append(t)
        updates.append((t.record_id, {"order": position}))

    try:
        store.batch_update(owner_id, updates)
    except StoreError as e:
        logger.warning("Reorder of #%s failed for owner %s: %s", moved_number, owner_id, e)
        raise ReorderError(f"Failed to persist new order for owner {owner_id}") from e

    logger.debug("Moved #%s from %s to %s (owner=%s)", moved_number, from_index, to_index, owner_id)
    return renumbered
