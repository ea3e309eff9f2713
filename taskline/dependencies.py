"""Predecessor -> successor links between tasks of one owner collection.

Each link is persisted on its source task's record; the graph is the union of
every task's links. Cycles are allowed and nothing here assumes acyclicity.
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterable, Sequence

from .entities import DependencyLink, LinkType, TaskRecord
from .errors import ValidationError
from .store import TaskStore


logger = logging.getLogger("taskline.dependencies")


def _by_number(tasks: Iterable[TaskRecord]) -> dict[int, TaskRecord]:
    return {int(t.number): t for t in tasks}


def new_link_id() -> str:
    return uuid.uuid4().hex


def add_link(
    store: TaskStore,
    owner_id: int,
    tasks: Sequence[TaskRecord],
    source: int,
    target: int,
    link_type: LinkType | str = LinkType.finish_to_start,
    *,
    link_id: str | None = None,
) -> DependencyLink:
    """Append a link to the source task and persist only that task."""
    source = int(source)
    target = int(target)
    if source == target:
        raise ValidationError("A task cannot depend on itself")

    index = _by_number(tasks)
    if source not in index:
        raise ValidationError(f"Source task #{source} does not exist")
    if target not in index:
        raise ValidationError(f"Target task #{target} does not exist")

    try:
        lt = LinkType(link_type)
    except ValueError:
        raise ValidationError(f"Invalid link type: {link_type!r}") from None

    link = DependencyLink(id=str(link_id or new_link_id()), source=source, target=target, type=lt)
    owner_task = index[source]
    store.upsert(owner_id, owner_task.record_id, {"links": [*owner_task.links, link]})
    logger.info("Linked #%s -> #%s (owner=%s, link=%s)", source, target, owner_id, link.id)
    return link


def remove_link(store: TaskStore, owner_id: int, tasks: Sequence[TaskRecord], link_id: str) -> bool:
    """Remove a link from whichever task owns it. Returns False when already gone."""
    lid = str(link_id)
    for task in tasks:
        kept = [link for link in task.links if str(link.id) != lid]
        if len(kept) != len(task.links):
            store.upsert(owner_id, task.record_id, {"links": kept})
            logger.info("Removed link %s from #%s (owner=%s)", lid, task.number, owner_id)
            return True
    return False


def links_for_render(tasks: Iterable[TaskRecord]) -> list[dict[str, str]]:
    """Flatten every task's links into string-valued rows for the timeline view.

    Incomplete links are skipped. Links that point at deleted tasks are kept;
    the renderer decides how to show a dangling edge.
    """
    out: list[dict[str, str]] = []
    for task in tasks or []:
        for link in getattr(task, "links", None) or []:
            values = tuple(getattr(link, k, None) for k in ("id", "source", "target", "type"))
            if any(v is None or str(getattr(v, "value", v)).strip() == "" for v in values):
                continue
            lid, source, target, lt = values
            out.append(
                {
                    "id": str(lid),
                    "source": str(source),
                    "target": str(target),
                    "type": str(getattr(lt, "value", lt)),
                }
            )
    return out


def on_task_deleted(store: TaskStore, owner_id: int, tasks: Sequence[TaskRecord], deleted_number: int) -> int:
    """Drop links that reference a deleted task from the remaining tasks.

    Returns the number of links removed. Only tasks that change are written.
    """
    num = int(deleted_number)
    removed = 0
    updates: list[tuple[int, dict]] = []
    for task in tasks:
        if int(task.number) == num:
            continue
        kept = [link for link in task.links if int(link.source) != num and int(link.target) != num]
        if len(kept) != len(task.links):
            removed += len(task.links) - len(kept)
            updates.append((task.record_id, {"links": kept}))
    if updates:
        store.batch_update(owner_id, updates)
    if removed:
        logger.info("Removed %s dangling link(s) to deleted task #%s (owner=%s)", removed, num, owner_id)
    return removed
