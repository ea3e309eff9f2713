from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from datetime import date

from .config import get_settings
from .crud import create_user, create_workspace
from .db import get_session_factory
from .dispatcher import run_window
from .errors import ValidationError
from .jobs import build_scheduler
from .logging_setup import setup_logging
from .models import WorkspaceKind
from .push import get_provider
from .store import SqlTaskStore
from .windows import DeadlineWindow


logger = logging.getLogger("taskline.cli")


def _cmd_init_db(args: argparse.Namespace) -> int:
    get_session_factory()
    print("ok")
    return 0


def _cmd_create_user(args: argparse.Namespace) -> int:
    with get_session_factory()() as db:
        try:
            user = create_user(db, username=args.username, display_name=args.display_name)
        except ValidationError as e:
            print(f"error: {e}", file=sys.stderr)
            return 1
        # Every user starts with a personal list.
        ws = create_workspace(db, owner=user, kind=WorkspaceKind.personal, title=None)
        print(f"user_id={user.id} workspace_id={ws.id}")
    return 0


def _cmd_dispatch(args: argparse.Namespace) -> int:
    as_of = date.fromisoformat(args.as_of) if args.as_of else None
    sf = get_session_factory()
    report = run_window(sf, SqlTaskStore(sf), DeadlineWindow(args.window), as_of=as_of, provider=get_provider())
    print(report.summary())
    return 0


def _cmd_scheduler(args: argparse.Namespace) -> int:
    settings = get_settings()
    sf = get_session_factory()
    sched = build_scheduler(settings, session_factory=sf, store=SqlTaskStore(sf), provider=get_provider())
    stop = threading.Event()

    def _stop(signum, frame) -> None:
        stop.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    sched.start()
    logger.info("Scheduler running; waiting for jobs")
    try:
        stop.wait()
    finally:
        sched.shutdown(wait=False)
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="taskline")
    sub = parser.add_subparsers(dest="command", required=True)

    p_init = sub.add_parser("init-db", help="Create database tables.")
    p_init.set_defaults(func=_cmd_init_db)

    p_user = sub.add_parser("create-user", help="Create a user with a personal task list.")
    p_user.add_argument("--username", required=True)
    p_user.add_argument(
        "--display-name",
        default=None,
        help="Name used as the task assignee (default: username).",
    )
    p_user.set_defaults(func=_cmd_create_user)

    p_dispatch = sub.add_parser("dispatch", help="Run one deadline reminder now.")
    p_dispatch.add_argument("--window", choices=[w.value for w in DeadlineWindow], required=True)
    p_dispatch.add_argument("--as-of", default=None, help="YYYY-MM-DD (default: today in app.timezone)")
    p_dispatch.set_defaults(func=_cmd_dispatch)

    p_sched = sub.add_parser("scheduler", help="Run the daily reminder jobs in the foreground.")
    p_sched.set_defaults(func=_cmd_scheduler)

    args = parser.parse_args(argv)
    setup_logging(get_settings().logging)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
