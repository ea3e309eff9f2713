"""Per-user push endpoints, one per physical device/browser.

A device is keyed by a fingerprint of its user agent, platform and language,
so re-registering the same browser overwrites its row instead of adding one.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session

from .errors import ValidationError
from .models import Device, DevicePromptAck


logger = logging.getLogger("taskline.devices")


@dataclass(frozen=True)
class DeviceInfo:
    user_agent: str = ""
    platform: str = ""
    language: str = ""


def _now_utc_naive() -> datetime:
    return datetime.utcnow().replace(tzinfo=None)


def compute_fingerprint(info: DeviceInfo) -> str:
    raw = "\n".join(
        [
            str(info.user_agent or "").strip(),
            str(info.platform or "").strip().lower(),
            str(info.language or "").strip().lower(),
        ]
    )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _get_device(db: Session, *, user_id: int, fingerprint: str) -> Device | None:
    return (
        db.query(Device)
        .filter(Device.user_id == int(user_id))
        .filter(Device.fingerprint == fingerprint)
        .first()
    )


def register(db: Session, *, user_id: int, device_info: DeviceInfo, token: str) -> Device:
    """Store the push token granted on this device, replacing any earlier one."""
    tok = str(token or "").strip()
    if not tok:
        raise ValidationError("Push token is required")

    fp = compute_fingerprint(device_info)
    now = _now_utc_naive()
    dev = _get_device(db, user_id=user_id, fingerprint=fp)
    if dev is None:
        dev = Device(user_id=int(user_id), fingerprint=fp)
        db.add(dev)

    dev.token = tok
    dev.user_agent = str(device_info.user_agent or "")[:512]
    dev.platform = str(device_info.platform or "")[:64]
    dev.language = str(device_info.language or "")[:32]
    dev.updated_at = now
    # Granting permission resolves the prompt.
    if not dev.permission_checked:
        dev.permission_checked = True
        dev.permission_checked_at = now
    _ensure_ack(db, user_id=user_id, fingerprint=fp, when=now)

    db.commit()
    db.refresh(dev)
    logger.info("Registered device %s for user %s", fp[:12], user_id)
    return dev


def revoke(db: Session, *, user_id: int, device_info: DeviceInfo) -> bool:
    """Delete this device's registration. Returns False when there was none."""
    fp = compute_fingerprint(device_info)
    n = (
        db.query(Device)
        .filter(Device.user_id == int(user_id))
        .filter(Device.fingerprint == fp)
        .delete(synchronize_session=False)
    )
    db.commit()
    if n:
        logger.info("Revoked device %s for user %s", fp[:12], user_id)
    return bool(n)


def _ensure_ack(db: Session, *, user_id: int, fingerprint: str, when: datetime) -> None:
    ack = (
        db.query(DevicePromptAck)
        .filter(DevicePromptAck.user_id == int(user_id))
        .filter(DevicePromptAck.fingerprint == fingerprint)
        .first()
    )
    if ack is None:
        db.add(DevicePromptAck(user_id=int(user_id), fingerprint=fingerprint, acknowledged_at=when))


def has_acknowledged_permission_prompt(db: Session, *, user_id: int, device_info: DeviceInfo) -> bool:
    fp = compute_fingerprint(device_info)
    row = (
        db.query(DevicePromptAck.user_id)
        .filter(DevicePromptAck.user_id == int(user_id))
        .filter(DevicePromptAck.fingerprint == fp)
        .first()
    )
    return bool(row)


def acknowledge_permission_prompt(db: Session, *, user_id: int, device_info: DeviceInfo) -> None:
    """Record that the prompt was answered (granted or declined) on this device."""
    fp = compute_fingerprint(device_info)
    now = _now_utc_naive()
    _ensure_ack(db, user_id=user_id, fingerprint=fp, when=now)

    dev = _get_device(db, user_id=user_id, fingerprint=fp)
    if dev is not None and not dev.permission_checked:
        dev.permission_checked = True
        dev.permission_checked_at = now
    db.commit()


def list_devices(db: Session, *, user_id: int) -> list[Device]:
    return (
        db.query(Device)
        .filter(Device.user_id == int(user_id))
        .order_by(Device.id.asc())
        .all()
    )


def find_by_token(db: Session, *, user_id: int, token: str) -> Device | None:
    tok = str(token or "").strip()
    if not tok:
        return None
    return (
        db.query(Device)
        .filter(Device.user_id == int(user_id))
        .filter(Device.token == tok)
        .first()
    )


def delete_devices(db: Session, *, user_id: int, fingerprints: Iterable[str]) -> int:
    """Delete several devices of one user in a single statement."""
    fps = sorted({str(f) for f in (fingerprints or [])})
    if not fps:
        return 0
    n = (
        db.query(Device)
        .filter(Device.user_id == int(user_id))
        .filter(Device.fingerprint.in_(fps))
        .delete(synchronize_session=False)
    )
    db.commit()
    return int(n or 0)
