"""Request dependencies shared by the API routers.

Authentication happens in front of this service; the caller's user id
arrives in the `X-User-Id` header.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from .crud import get_user, get_workspace
from .db import get_db, get_session_factory
from .devices import find_by_token
from .feed import FeedRegistry
from .models import User, Workspace, WorkspaceKind
from .session import EditingSession
from .store import SqlTaskStore


class SessionRegistry:
    """Live editing sessions, one per (user, workspace).

    Sessions idle for longer than `idle_seconds` are closed on the next
    lookup, and the least recently used one is closed once more than
    `max_sessions` are open. A closed session's checkbox memory goes with it.
    """

    def __init__(
        self,
        *,
        max_sessions: int = 256,
        idle_seconds: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_sessions = max(1, int(max_sessions))
        self.idle_seconds = float(idle_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (session, last used); oldest first.
        self._sessions: OrderedDict[tuple[int, int], tuple[EditingSession, float]] = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get(self, store: SqlTaskStore, user_id: int, workspace_id: int) -> EditingSession:
        key = (int(user_id), int(workspace_id))
        now = self._clock()
        with self._lock:
            evicted = self._evict_idle(now)
            entry = self._sessions.pop(key, None)
            sess = entry[0] if entry is not None else EditingSession(store, int(workspace_id), notify_with=get_session_factory())
            self._sessions[key] = (sess, now)
            while len(self._sessions) > self.max_sessions:
                _, (old, _) = self._sessions.popitem(last=False)
                evicted.append(old)
        for old in evicted:
            old.close()
        return sess

    def _evict_idle(self, now: float) -> list[EditingSession]:
        stale = [k for k, (_, used) in self._sessions.items() if now - used > self.idle_seconds]
        return [self._sessions.pop(k)[0] for k in stale]

    def close_all(self) -> None:
        with self._lock:
            sessions = [sess for sess, _ in self._sessions.values()]
            self._sessions.clear()
        for sess in sessions:
            sess.close()


def get_store(request: Request) -> SqlTaskStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        store = SqlTaskStore(get_session_factory())
        request.app.state.store = store
    return store


def get_sessions(request: Request) -> SessionRegistry:
    reg = getattr(request.app.state, "sessions", None)
    if reg is None:
        reg = SessionRegistry()
        request.app.state.sessions = reg
    return reg


def get_current_user(
    x_user_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    try:
        uid = int(str(x_user_id or "").strip())
    except ValueError:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = get_user(db, uid)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def get_accessible_workspace(
    workspace_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Workspace:
    ws = get_workspace(db, workspace_id)
    if ws is None:
        raise HTTPException(status_code=404, detail="Workspace not found")
    # Personal lists are private; project spaces are shared.
    if ws.kind == WorkspaceKind.personal and int(ws.owner_user_id) != int(current_user.id):
        raise HTTPException(status_code=403, detail="Not allowed")
    return ws


def get_editing_session(
    ws: Workspace = Depends(get_accessible_workspace),
    current_user: User = Depends(get_current_user),
    store: SqlTaskStore = Depends(get_store),
    sessions: SessionRegistry = Depends(get_sessions),
) -> EditingSession:
    return sessions.get(store, int(current_user.id), int(ws.id))


def get_feeds(request: Request) -> FeedRegistry:
    feeds = getattr(request.app.state, "feeds", None)
    if feeds is None:
        feeds = FeedRegistry()
        request.app.state.feeds = feeds
    return feeds


def get_device_token(
    x_device_token: str | None = Header(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> str:
    """The caller's push token, which must belong to one of their registered devices."""
    token = str(x_device_token or "").strip()
    if not token:
        raise HTTPException(status_code=400, detail="X-Device-Token header is required")
    if find_by_token(db, user_id=int(current_user.id), token=token) is None:
        raise HTTPException(status_code=404, detail="Device not registered")
    return token
