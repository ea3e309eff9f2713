from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..crud import create_workspace, list_workspaces
from ..db import get_db
from ..deps import get_current_user
from ..errors import ValidationError
from ..models import User
from ..schemas import WorkspaceCreate, WorkspaceOut


router = APIRouter()


@router.get("", response_model=list[WorkspaceOut])
def api_list_workspaces(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return list_workspaces(db, user_id=int(current_user.id))


@router.post("", response_model=WorkspaceOut)
def api_create_workspace(
    payload: WorkspaceCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return create_workspace(db, owner=current_user, kind=payload.kind, title=payload.title)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
