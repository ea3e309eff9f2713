from __future__ import annotations

import logging

from fastapi import FastAPI

from .config import get_settings
from .db import get_session_factory
from .deps import SessionRegistry
from .dispatcher import shutdown_assignment_queue
from .feed import FeedRegistry
from .jobs import build_scheduler
from .logging_setup import setup_logging
from .push import LocalPushProvider, provider_from_settings, set_provider
from .routers import api_devices, api_notifications, api_tasks, api_workspaces
from .store import SqlTaskStore
from .version import APP_VERSION


logger = logging.getLogger("taskline")


def create_app(*, start_scheduler: bool = True) -> FastAPI:
    settings = get_settings()
    setup_logging(settings.logging)

    app = FastAPI(title=settings.app.name, version=APP_VERSION)

    app.include_router(api_workspaces.router, prefix="/api/workspaces", tags=["workspaces"])
    app.include_router(api_tasks.router, prefix="/api/workspaces", tags=["tasks"])
    app.include_router(api_devices.router, prefix="/api/devices", tags=["devices"])
    app.include_router(api_notifications.router, prefix="/api/notifications", tags=["notifications"])

    app.state.scheduler = None
    app.state.feeds = FeedRegistry()

    @app.on_event("startup")
    def on_startup() -> None:
        session_factory = get_session_factory()
        store = SqlTaskStore(session_factory)
        app.state.store = store
        app.state.sessions = SessionRegistry(
            max_sessions=settings.app.max_sessions,
            idle_seconds=settings.app.session_idle_seconds,
        )

        # With the local provider, pushes land in the feeds clients open over the API.
        provider = provider_from_settings(settings, local=LocalPushProvider(app.state.feeds))
        set_provider(provider)

        if not start_scheduler:
            return
        try:
            sched = build_scheduler(settings, session_factory=session_factory, store=store, provider=provider)
            sched.start()
            app.state.scheduler = sched
        except Exception:
            logger.exception("Failed to start scheduler")

    @app.on_event("shutdown")
    def on_shutdown() -> None:
        sched = app.state.scheduler
        if sched is not None:
            sched.shutdown(wait=False)
            app.state.scheduler = None
        sessions = getattr(app.state, "sessions", None)
        if sessions is not None:
            sessions.close_all()
        shutdown_assignment_queue()
        app.state.feeds.close_all()
        set_provider(None)

    @app.get("/healthz", include_in_schema=False)
    def healthz():
        return {"status": "ok", "version": APP_VERSION}

    return app
