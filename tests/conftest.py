from datetime import date, timedelta

import pytest

from taskline import crud
from taskline.config import get_settings
from taskline.db import get_session_factory, reset_engine
from taskline.models import WorkspaceKind
from taskline.push import set_provider
from taskline.dispatcher import shutdown_assignment_queue
from taskline.store import SqlTaskStore


@pytest.fixture
def settings_tmp(tmp_path, monkeypatch):
    """Isolate settings and the database per test."""
    path = tmp_path / "settings.yml"
    path.write_text(
        """
app:
  name: "Taskline"
  timezone: "Asia/Tokyo"
database:
  path: "{db}"
notifications:
  provider: "logging"
  max_workers: 4
logging:
  level: "INFO"
  dir: "{logs}"
  retention_days: 14
""".format(db=str(tmp_path / "test.db"), logs=str(tmp_path / "logs")).lstrip()
    )
    monkeypatch.setenv("TASKLINE_SETTINGS", str(path))
    for var in ("TASKLINE_TIMEZONE", "TASKLINE_FCM_ACCESS_TOKEN", "PORT", "TASKLINE_PORT"):
        monkeypatch.delenv(var, raising=False)
    get_settings.cache_clear()
    reset_engine()
    set_provider(None)
    yield path
    shutdown_assignment_queue()
    set_provider(None)
    reset_engine()
    get_settings.cache_clear()


@pytest.fixture
def session_factory(settings_tmp):
    return get_session_factory()


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def store(session_factory):
    return SqlTaskStore(session_factory)


@pytest.fixture
def alice(db):
    return crud.create_user(db, username="alice", display_name="Alice")


@pytest.fixture
def project(db, alice):
    return crud.create_workspace(db, owner=alice, kind=WorkspaceKind.project, title="Launch")


def add_task(store, owner_id, title, due, **fields):
    """Create a task due on `due` (stored end date is the day after)."""
    data = {
        "title": title,
        "start_date": due - timedelta(days=2),
        "end_date": due + timedelta(days=1),
    }
    data.update(fields)
    return crud.create_task(store, owner_id, data)


@pytest.fixture
def make_task(store):
    def _make(owner_id, title, due=date(2024, 6, 10), **fields):
        return add_task(store, owner_id, title, due, **fields)

    return _make
