from __future__ import annotations

import threading
import time
from typing import Callable, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import get_settings


T = TypeVar("T")


class Base(DeclarativeBase):
    pass


def _sqlite_url(db_path: str) -> str:
    if db_path.startswith("sqlite:"):
        return db_path
    return f"sqlite:///{db_path}"


def make_engine(db_path: str) -> Engine:
    engine = create_engine(
        _sqlite_url(db_path),
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        # Enforce foreign key constraints for ON DELETE CASCADE.
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    # Import models so their tables are registered on Base.metadata.
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


_ENGINE: Engine | None = None
_SESSION_FACTORY: sessionmaker | None = None
_LOCK = threading.Lock()


def get_session_factory() -> sessionmaker:
    """Return the process-wide session factory, creating the engine on first use."""

    global _ENGINE, _SESSION_FACTORY
    with _LOCK:
        if _SESSION_FACTORY is None:
            settings = get_settings()
            _ENGINE = make_engine(settings.database.path)
            init_db(_ENGINE)
            _SESSION_FACTORY = make_session_factory(_ENGINE)
        return _SESSION_FACTORY


def reset_engine() -> None:
    """Drop the cached engine (tests switch settings between runs)."""

    global _ENGINE, _SESSION_FACTORY
    with _LOCK:
        if _ENGINE is not None:
            _ENGINE.dispose()
        _ENGINE = None
        _SESSION_FACTORY = None


def get_db():
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def write_with_retry(
    session_factory: sessionmaker,
    work: Callable[[Session], T],
    *,
    attempts: int = 5,
    base_sleep: float = 0.05,
) -> T:
    """Run `work` in its own transaction, retrying on SQLite lock contention.

    The whole unit of work is replayed on retry; a rolled-back session keeps
    none of the pending changes.
    """

    tries = max(1, int(attempts))
    delay = float(base_sleep)
    for i in range(tries):
        db = session_factory()
        try:
            result = work(db)
            db.commit()
            return result
        except OperationalError:
            db.rollback()
            if i >= tries - 1:
                raise
            time.sleep(delay)
            delay = min(delay * 2.0, 1.0)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
    raise RuntimeError("unreachable")
