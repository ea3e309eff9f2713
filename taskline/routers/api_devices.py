from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .. import devices
from ..db import get_db
from ..deps import get_current_user
from ..errors import ValidationError
from ..models import User
from ..schemas import DeviceInfoIn, DeviceOut, DeviceRegister, PromptStatusOut


router = APIRouter()


def _info(payload: DeviceInfoIn) -> devices.DeviceInfo:
    return devices.DeviceInfo(user_agent=payload.user_agent, platform=payload.platform, language=payload.language)


@router.get("", response_model=list[DeviceOut])
def api_list_devices(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return devices.list_devices(db, user_id=int(current_user.id))


@router.post("", response_model=DeviceOut)
def api_register_device(
    payload: DeviceRegister,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return devices.register(db, user_id=int(current_user.id), device_info=_info(payload), token=payload.token)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("")
def api_revoke_device(
    payload: DeviceInfoIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    removed = devices.revoke(db, user_id=int(current_user.id), device_info=_info(payload))
    return {"ok": True, "removed": removed}


@router.get("/prompt", response_model=PromptStatusOut)
def api_prompt_status(
    user_agent: str = Query(default=""),
    platform: str = Query(default=""),
    language: str = Query(default=""),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    info = devices.DeviceInfo(user_agent=user_agent, platform=platform, language=language)
    return PromptStatusOut(
        acknowledged=devices.has_acknowledged_permission_prompt(db, user_id=int(current_user.id), device_info=info)
    )


@router.post("/prompt", response_model=PromptStatusOut)
def api_acknowledge_prompt(
    payload: DeviceInfoIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    devices.acknowledge_permission_prompt(db, user_id=int(current_user.id), device_info=_info(payload))
    return PromptStatusOut(acknowledged=True)
