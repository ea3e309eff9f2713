from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from ..deps import get_device_token, get_feeds
from ..feed import FeedRegistry, NotificationEvent
from ..schemas import NotificationEventOut, UnreadCountOut

router = APIRouter()


def _event_out(ev: NotificationEvent) -> NotificationEventOut:
    return NotificationEventOut(id=ev.id, title=ev.title, body=ev.body, received_at=ev.received_at, read=ev.read)


@router.get("/events", response_model=List[NotificationEventOut])
def list_events(
    token: str = Depends(get_device_token),
    feeds: FeedRegistry = Depends(get_feeds),
    limit: int = Query(50, ge=1, le=200),
    unread_only: bool = Query(False),
):
    # Listing opens the feed; pushes to this device are collected from here on.
    events = feeds.open(token).events()
    if unread_only:
        events = [ev for ev in events if not ev.read]
    return [_event_out(ev) for ev in events[: int(limit)]]


@router.get("/unread-count", response_model=UnreadCountOut)
def unread_count(token: str = Depends(get_device_token), feeds: FeedRegistry = Depends(get_feeds)):
    return UnreadCountOut(unread=feeds.open(token).unread_count())


@router.post("/events/{event_id}/read")
def mark_read(event_id: str, token: str = Depends(get_device_token), feeds: FeedRegistry = Depends(get_feeds)):
    feed = feeds.get(token)
    if feed is None or not any(ev.id == event_id for ev in feed.events()):
        raise HTTPException(status_code=404, detail="Not found")
    return {"ok": True, "changed": feed.mark_as_read(event_id)}


@router.post("/read-all")
def mark_all_read(token: str = Depends(get_device_token), feeds: FeedRegistry = Depends(get_feeds)):
    feed = feeds.get(token)
    return {"ok": True, "marked": feed.mark_all_as_read() if feed is not None else 0}


@router.delete("")
def close_feed(token: str = Depends(get_device_token), feeds: FeedRegistry = Depends(get_feeds)):
    return {"ok": True, "closed": feeds.close(token)}
