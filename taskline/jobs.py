from __future__ import annotations

import logging

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import sessionmaker

from .config import Settings
from .dispatcher import DispatchReport, run_window
from .logging_setup import purge_old_logs
from .push import PushProvider
from .store import TaskStore
from .windows import DeadlineWindow


logger = logging.getLogger("taskline.jobs")

# (window, settings flag, job id)
REMINDER_JOBS = [
    (DeadlineWindow.tomorrow, "day_before_enabled", "reminder_day_before"),
    (DeadlineWindow.today, "due_today_enabled", "reminder_due_today"),
    (DeadlineWindow.overdue, "overdue_enabled", "reminder_overdue"),
]


def run_reminder(
    session_factory: sessionmaker,
    store: TaskStore,
    window: DeadlineWindow,
    *,
    provider: PushProvider | None = None,
    max_workers: int | None = None,
) -> DispatchReport | None:
    """One scheduled run. Any failure aborts only this run; the next one re-selects from scratch."""
    try:
        return run_window(session_factory, store, window, provider=provider, max_workers=max_workers)
    except Exception:
        logger.exception("Reminder run for window %s failed", window.value)
        return None


def _remove_job(sched: BackgroundScheduler, job_id: str) -> None:
    try:
        sched.remove_job(job_id)
    except JobLookupError:
        pass


def configure_reminder_jobs(
    sched: BackgroundScheduler,
    settings: Settings,
    *,
    session_factory: sessionmaker,
    store: TaskStore,
    provider: PushProvider | None = None,
) -> list[str]:
    """(Re)create the daily reminder jobs enabled in settings. Returns their ids."""
    cfg = settings.notifications
    added: list[str] = []
    for window, flag, job_id in REMINDER_JOBS:
        _remove_job(sched, job_id)
        if not bool(getattr(cfg, flag)):
            continue
        sched.add_job(
            run_reminder,
            "cron",
            args=[session_factory, store, window],
            kwargs={"provider": provider, "max_workers": int(cfg.max_workers)},
            hour=int(cfg.reminder_hour),
            minute=int(cfg.reminder_minute),
            id=job_id,
            replace_existing=True,
            timezone=settings.app.timezone,
        )
        added.append(job_id)
    logger.info(
        "Reminder jobs at %02d:%02d %s: %s",
        int(cfg.reminder_hour),
        int(cfg.reminder_minute),
        settings.app.timezone,
        ", ".join(added) or "none",
    )
    return added


def configure_log_retention_job(sched: BackgroundScheduler, settings: Settings) -> None:
    cfg = settings.logging
    _remove_job(sched, "log_retention")

    def _log_retention_job() -> None:
        try:
            purged = purge_old_logs(log_dir=cfg.dir, retention_days=int(cfg.retention_days))
            if purged:
                logger.info("Purged %s old log files", purged)
        except Exception:
            logger.exception("Error while purging old log files")

    # Once now, then nightly.
    _log_retention_job()
    if int(cfg.retention_days) <= 0:
        return
    sched.add_job(
        _log_retention_job,
        "cron",
        hour=0,
        minute=15,
        id="log_retention",
        replace_existing=True,
        timezone=settings.app.timezone,
    )


def build_scheduler(
    settings: Settings,
    *,
    session_factory: sessionmaker,
    store: TaskStore,
    provider: PushProvider | None = None,
) -> BackgroundScheduler:
    """A configured (not yet started) scheduler."""
    sched = BackgroundScheduler(timezone=settings.app.timezone)
    configure_reminder_jobs(sched, settings, session_factory=session_factory, store=store, provider=provider)
    try:
        configure_log_retention_job(sched, settings)
    except Exception:
        logger.exception("Failed to configure log retention job")
    return sched
