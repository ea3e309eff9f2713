from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_editing_session
from ..errors import NotFoundError, ReorderError, StoreError, ValidationError
from ..schemas import (
    CompletionIn,
    LinkCreate,
    LinkOut,
    ReorderIn,
    TaskCreate,
    TaskDeleteOut,
    TaskListOut,
    TaskOut,
    TaskUpdate,
)
from ..session import EditingSession


router = APIRouter()


def _list_out(sess: EditingSession) -> TaskListOut:
    return TaskListOut(
        tasks=[TaskOut.from_record(t) for t in sess.tasks],
        links=[LinkOut(**row) for row in sess.links_for_render()],
    )


@router.get("/{workspace_id}/tasks", response_model=TaskListOut)
def api_list_tasks(sess: EditingSession = Depends(get_editing_session)):
    return _list_out(sess)


@router.post("/{workspace_id}/tasks", response_model=TaskOut)
def api_create_task(payload: TaskCreate, sess: EditingSession = Depends(get_editing_session)):
    try:
        task = sess.create_task(payload.model_dump(exclude_none=True))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return TaskOut.from_record(task)


@router.patch("/{workspace_id}/tasks/{number}", response_model=TaskOut)
def api_update_task(number: int, payload: TaskUpdate, sess: EditingSession = Depends(get_editing_session)):
    try:
        task = sess.update_task(number, payload.model_dump(exclude_unset=True))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Task not found")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return TaskOut.from_record(task)


@router.delete("/{workspace_id}/tasks/{number}", response_model=TaskDeleteOut)
def api_delete_task(number: int, sess: EditingSession = Depends(get_editing_session)):
    try:
        removed = sess.delete_task(number)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Task not found")
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return TaskDeleteOut(ok=True, links_removed=removed)


@router.post("/{workspace_id}/tasks/{number}/completion", response_model=TaskOut)
def api_toggle_completion(number: int, payload: CompletionIn, sess: EditingSession = Depends(get_editing_session)):
    try:
        task = sess.toggle_completion(number, payload.done)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Task not found")
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return TaskOut.from_record(task)


@router.post("/{workspace_id}/reorder", response_model=TaskListOut)
def api_reorder(payload: ReorderIn, sess: EditingSession = Depends(get_editing_session)):
    try:
        sess.reorder(payload.number, payload.from_index, payload.to_index)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ReorderError:
        raise HTTPException(status_code=409, detail="Reorder was not saved; the list was reloaded")
    return _list_out(sess)


@router.post("/{workspace_id}/links", response_model=LinkOut)
def api_add_link(payload: LinkCreate, sess: EditingSession = Depends(get_editing_session)):
    try:
        link = sess.add_link(payload.source, payload.target, payload.type)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return LinkOut(id=link.id, source=str(link.source), target=str(link.target), type=link.type.value)


@router.delete("/{workspace_id}/links/{link_id}")
def api_remove_link(link_id: str, sess: EditingSession = Depends(get_editing_session)):
    try:
        removed = sess.remove_link(link_id)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"ok": True, "removed": removed}
