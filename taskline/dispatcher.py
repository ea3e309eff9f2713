from __future__ import annotations

import logging
import queue
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Sequence

from sqlalchemy.orm import Session, sessionmaker

from . import devices
from .config import get_settings
from .db import write_with_retry
from .entities import AssigneeRef, OwnerRef, TaskRecord
from .models import User
from .push import PushProvider, get_provider
from .store import TaskStore
from .windows import DeadlineWindow, WindowHit, select


logger = logging.getLogger("taskline.dispatcher")

# ---- Templates ---------------------------------------------------------------------

TEMPLATE_ASSIGNMENT = "assignment"
TEMPLATE_DAY_BEFORE = "day_before"
TEMPLATE_DUE_TODAY = "due_today"
TEMPLATE_OVERDUE = "overdue"

TEMPLATES = {TEMPLATE_ASSIGNMENT, TEMPLATE_DAY_BEFORE, TEMPLATE_DUE_TODAY, TEMPLATE_OVERDUE}

WINDOW_TEMPLATES = {
    DeadlineWindow.today: TEMPLATE_DUE_TODAY,
    DeadlineWindow.tomorrow: TEMPLATE_DAY_BEFORE,
    DeadlineWindow.overdue: TEMPLATE_OVERDUE,
}

UNKNOWN_PROJECT = "Unknown project"

# ---- Per-pair outcomes -------------------------------------------------------------

OUTCOME_SENT = "sent"
OUTCOME_FAILED = "failed"
OUTCOME_NO_DEVICES = "no_devices"
OUTCOME_UNRESOLVED = "unresolved"
OUTCOME_ERROR = "error"


def _truncate(s: str, n: int) -> str:
    txt = str(s or "")
    if len(txt) <= int(n):
        return txt
    return txt[: max(0, int(n) - 3)] + "..."


def _format_exception(e: Exception, *, max_len: int = 800) -> str:
    name = type(e).__name__
    try:
        msg = str(e)
    except Exception:
        msg = ""
    base = f"{name}: {msg}" if msg else name
    return _truncate(base, int(max_len))


@dataclass(frozen=True)
class DispatchPair:
    task: TaskRecord
    assignee: AssigneeRef
    owner: OwnerRef | None = None


@dataclass
class PairOutcome:
    owner_id: int
    task_number: int
    assignee: str
    status: str
    user_id: int | None = None
    delivered: int = 0
    failed: int = 0
    devices_removed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def sent(self) -> bool:
        return self.status == OUTCOME_SENT


@dataclass
class DispatchReport:
    template: str
    outcomes: list[PairOutcome] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        c = Counter(o.status for o in self.outcomes)
        return {k: int(c.get(k, 0)) for k in (OUTCOME_SENT, OUTCOME_FAILED, OUTCOME_NO_DEVICES, OUTCOME_UNRESOLVED, OUTCOME_ERROR)}

    @property
    def devices_removed(self) -> int:
        return sum(o.devices_removed for o in self.outcomes)

    def summary(self) -> str:
        parts = " ".join(f"{k}={v}" for k, v in self.counts().items())
        return f"template={self.template} pairs={len(self.outcomes)} {parts} devices_removed={self.devices_removed}"


# ---- Rendering ---------------------------------------------------------------------


def _project_label(owner: OwnerRef | None) -> str | None:
    if owner is None or not owner.is_project:
        return None
    return str(owner.title or "").strip() or UNKNOWN_PROJECT


def render_notification(template: str, task: TaskRecord, assignee_name: str, owner: OwnerRef | None = None) -> tuple[str, str]:
    """Return (title, body) for one push."""
    t = str(template or "").strip().lower()
    if t not in TEMPLATES:
        raise ValueError(f"Invalid notification template: {template!r}")

    who = str(assignee_name or "").strip() or "You"
    name = f"\"{task.title}\""
    project = _project_label(owner)
    where = f" in {project}" if project else ""
    due = task.due_date.isoformat()

    if t == TEMPLATE_ASSIGNMENT:
        return "New task assigned", f"{who}, you were assigned {name}{where} (due {due})."
    if t == TEMPLATE_DAY_BEFORE:
        return "Task due tomorrow", f"{who}, {name}{where} is due tomorrow ({due})."
    if t == TEMPLATE_DUE_TODAY:
        return "Task due today", f"{who}, {name}{where} is due today."
    return "Task overdue", f"{who}, {name}{where} was due on {due}."


# ---- Assignee resolution -----------------------------------------------------------


def resolve_assignee(db: Session, ref: AssigneeRef) -> User | None:
    """Find the user a notification is for.

    A stable user id wins. Display-name matching is the fallback; a name
    shared by several users resolves to nobody.
    """
    if ref.user_id is not None:
        return db.get(User, int(ref.user_id))

    name = str(ref.display_name or "").strip()
    if not name:
        return None
    matches = db.query(User).filter(User.display_name == name).limit(2).all()
    if len(matches) > 1:
        logger.warning("Assignee display name %r matches several users; skipping", name)
        return None
    return matches[0] if matches else None


# ---- Dispatch ----------------------------------------------------------------------


def _dispatch_one(session_factory: sessionmaker, pair: DispatchPair, template: str, provider: PushProvider) -> PairOutcome:
    task = pair.task
    out = PairOutcome(owner_id=int(task.owner_id), task_number=int(task.number), assignee=str(pair.assignee), status=OUTCOME_UNRESOLVED)

    db = session_factory()
    try:
        user = resolve_assignee(db, pair.assignee)
        if user is None:
            logger.info("No user for assignee %s (task #%s, owner=%s)", pair.assignee, task.number, task.owner_id)
            return out
        out.user_id = int(user.id)

        devs = devices.list_devices(db, user_id=int(user.id))
        if not devs:
            out.status = OUTCOME_NO_DEVICES
            return out

        title, body = render_notification(
            template,
            task,
            assignee_name=user.display_name or pair.assignee.display_name,
            owner=pair.owner,
        )
        tokens = [str(d.token) for d in devs]
        fingerprints = [str(d.fingerprint) for d in devs]
    finally:
        db.close()

    results = list(provider.send_multicast(tokens, title, body) or [])
    if len(results) != len(tokens):
        logger.warning("Push provider returned %s result(s) for %s token(s)", len(results), len(tokens))

    stale: list[str] = []
    for i, fp in enumerate(fingerprints):
        res = results[i] if i < len(results) else None
        if res is not None and res.ok:
            out.delivered += 1
            continue
        out.failed += 1
        if res is None:
            out.errors.append("missing result")
            continue
        if res.token_invalid:
            stale.append(fp)
        out.errors.append(str(res.error_code or "unknown"))
        logger.warning(
            "Push to device %s of user %s failed: %s %s",
            fp[:12],
            user.id,
            res.error_code,
            _truncate(res.detail or "", 200),
        )

    if stale:
        uid = int(user.id)
        out.devices_removed = write_with_retry(
            session_factory,
            lambda s: devices.delete_devices(s, user_id=uid, fingerprints=stale),
        )
        logger.info("Removed %s stale device(s) of user %s", out.devices_removed, uid)

    out.status = OUTCOME_SENT if out.delivered else OUTCOME_FAILED
    return out


def _safe_dispatch_one(session_factory: sessionmaker, pair: DispatchPair, template: str, provider: PushProvider) -> PairOutcome:
    try:
        return _dispatch_one(session_factory, pair, template, provider)
    except Exception as e:
        logger.exception("Dispatch failed (task #%s, owner=%s, assignee=%s)", pair.task.number, pair.task.owner_id, pair.assignee)
        return PairOutcome(
            owner_id=int(pair.task.owner_id),
            task_number=int(pair.task.number),
            assignee=str(pair.assignee),
            status=OUTCOME_ERROR,
            errors=[_format_exception(e)],
        )


def dispatch(
    session_factory: sessionmaker,
    pairs: Sequence[DispatchPair],
    template: str,
    *,
    provider: PushProvider | None = None,
    max_workers: int | None = None,
) -> DispatchReport:
    """Notify every pair independently.

    A failure on one pair is logged and recorded as an `error` outcome; the
    others still run. There is no deduplication across runs. Outcomes are
    reported in input order.
    """
    t = str(template or "").strip().lower()
    if t not in TEMPLATES:
        raise ValueError(f"Invalid notification template: {template!r}")
    prov = provider or get_provider()
    report = DispatchReport(template=t)
    items = list(pairs or [])
    if not items:
        logger.info("Dispatch: %s", report.summary())
        return report

    workers = max_workers if max_workers is not None else get_settings().notifications.max_workers
    n = max(1, min(int(workers), len(items)))
    with ThreadPoolExecutor(max_workers=n, thread_name_prefix="taskline-dispatch") as pool:
        futures = [pool.submit(_safe_dispatch_one, session_factory, p, t, prov) for p in items]
        report.outcomes = [f.result() for f in futures]

    logger.info("Dispatch: %s", report.summary())
    return report


def pairs_from_hits(hits: Iterable[WindowHit]) -> list[DispatchPair]:
    out: list[DispatchPair] = []
    for hit in hits:
        ref = hit.assignee
        if ref.is_empty:
            continue
        out.append(DispatchPair(task=hit.task, assignee=ref, owner=hit.owner))
    return out


def run_window(
    session_factory: sessionmaker,
    store: TaskStore,
    window: DeadlineWindow | str,
    *,
    as_of: date | None = None,
    provider: PushProvider | None = None,
    max_workers: int | None = None,
) -> DispatchReport:
    """Select one deadline window and notify every assignee in it."""
    w = DeadlineWindow(window)
    hits = select(store, w, as_of)
    return dispatch(session_factory, pairs_from_hits(hits), WINDOW_TEMPLATES[w], provider=provider, max_workers=max_workers)


# ---- Assignment notifications ------------------------------------------------------
#
# Sent from the task write path, so they go through a small background queue
# and never hold up the request that changed the assignee.


@dataclass(frozen=True)
class _AssignmentJob:
    session_factory: sessionmaker
    pair: DispatchPair
    provider: PushProvider | None = None


class _AssignmentQueue:
    def __init__(self, *, max_workers: int = 2, queue_size: int = 1000):
        self._q: queue.Queue[_AssignmentJob | None] = queue.Queue(maxsize=int(queue_size))
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

        for i in range(max(1, int(max_workers))):
            t = threading.Thread(target=self._worker, name=f"taskline-assign-{i}", daemon=True)
            t.start()
            self._threads.append(t)

    def submit(self, job: _AssignmentJob) -> bool:
        if self._stop.is_set():
            return False
        try:
            self._q.put(job, block=False)
            return True
        except queue.Full:
            return False

    def shutdown(self) -> None:
        self._stop.set()
        for _ in self._threads:
            try:
                self._q.put_nowait(None)
            except queue.Full:
                break

    def wait_for_idle(self, *, timeout: float = 5.0) -> bool:
        end = time.monotonic() + float(timeout)
        while time.monotonic() < end:
            if int(self._q.unfinished_tasks) == 0:
                return True
            time.sleep(0.02)
        return int(self._q.unfinished_tasks) == 0

    def _worker(self) -> None:
        while not self._stop.is_set():
            try:
                job = self._q.get(timeout=0.5)
            except queue.Empty:
                continue
            if job is None:
                self._q.task_done()
                break
            try:
                dispatch(job.session_factory, [job.pair], TEMPLATE_ASSIGNMENT, provider=job.provider, max_workers=1)
            except Exception:
                logger.exception("Unhandled exception in assignment notification worker")
            finally:
                self._q.task_done()


_QUEUE: _AssignmentQueue | None = None
_QUEUE_LOCK = threading.Lock()


def _get_queue() -> _AssignmentQueue:
    global _QUEUE
    with _QUEUE_LOCK:
        if _QUEUE is None:
            _QUEUE = _AssignmentQueue()
        return _QUEUE


def enqueue_assignment(
    session_factory: sessionmaker,
    task: TaskRecord,
    owner: OwnerRef | None = None,
    *,
    provider: PushProvider | None = None,
) -> bool:
    """Queue an assignment push for the task's current assignee."""
    ref = AssigneeRef(user_id=task.assignee_user_id, display_name=task.assignee or "")
    if ref.is_empty:
        return False
    ok = _get_queue().submit(_AssignmentJob(session_factory=session_factory, pair=DispatchPair(task=task, assignee=ref, owner=owner), provider=provider))
    if not ok:
        logger.warning("Assignment notification dropped (queue full or stopped) for task #%s", task.number)
    return ok


def shutdown_assignment_queue() -> None:
    global _QUEUE
    with _QUEUE_LOCK:
        if _QUEUE is not None:
            try:
                _QUEUE.shutdown()
            finally:
                _QUEUE = None


def wait_for_assignment_queue_idle(*, timeout: float = 5.0) -> bool:
    """Test helper: wait until queued assignment pushes are done."""
    q = _QUEUE
    if q is None:
        return True
    return bool(q.wait_for_idle(timeout=float(timeout)))
