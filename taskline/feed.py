from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable


logger = logging.getLogger("taskline.feed")


@dataclass(frozen=True)
class NotificationEvent:
    id: str
    title: str
    body: str
    received_at: datetime
    read: bool = False


class NotificationFeed:
    """Notifications received while a client session is active.

    Kept in memory only and discarded with the session.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[NotificationEvent] = []
        self._listeners: list[Callable[[list[NotificationEvent]], None]] = []

    def receive(self, title: str | None, body: str | None) -> NotificationEvent:
        ev = NotificationEvent(
            id=uuid.uuid4().hex,
            title=str(title or "Notification"),
            body=str(body or ""),
            received_at=datetime.now(),
        )
        with self._lock:
            # Newest first.
            self._events.insert(0, ev)
        self._publish()
        return ev

    def events(self) -> list[NotificationEvent]:
        with self._lock:
            return list(self._events)

    def mark_as_read(self, event_id: str) -> bool:
        changed = False
        with self._lock:
            for i, ev in enumerate(self._events):
                if ev.id == event_id and not ev.read:
                    self._events[i] = replace(ev, read=True)
                    changed = True
        if changed:
            self._publish()
        return changed

    def mark_all_as_read(self) -> int:
        with self._lock:
            n = sum(1 for ev in self._events if not ev.read)
            self._events = [replace(ev, read=True) for ev in self._events]
        if n:
            self._publish()
        return n

    def unread_count(self) -> int:
        with self._lock:
            return sum(1 for ev in self._events if not ev.read)

    def subscribe(self, listener: Callable[[list[NotificationEvent]], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
            snapshot = list(self._events)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Notification feed listener failed")


class FeedRegistry:
    """Open client feeds keyed by the device's push token.

    A feed exists from the moment a client opens it until it is closed; a
    token without an open feed has no client listening right now.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._feeds: dict[str, NotificationFeed] = {}

    def open(self, token: str) -> NotificationFeed:
        key = str(token)
        with self._lock:
            feed = self._feeds.get(key)
            if feed is None:
                feed = NotificationFeed()
                self._feeds[key] = feed
                logger.info("Opened notification feed (%s open)", len(self._feeds))
            return feed

    def get(self, token: str) -> NotificationFeed | None:
        with self._lock:
            return self._feeds.get(str(token))

    def close(self, token: str) -> bool:
        with self._lock:
            return self._feeds.pop(str(token), None) is not None

    def close_all(self) -> None:
        with self._lock:
            self._feeds.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._feeds)
