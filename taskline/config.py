from __future__ import annotations

import os
import shutil
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import BaseModel, Field


DEFAULT_SETTINGS_PATH = os.environ.get("TASKLINE_SETTINGS", "/data/settings.yml")


class AppSettings(BaseModel):
    name: str = "Taskline"
    # Reference time zone for deadline windows and scheduled jobs.
    timezone: str = "UTC"
    host: str = "0.0.0.0"  # nosec B104
    port: int = 8888

    # Editing sessions kept in memory per (user, workspace).
    max_sessions: int = 256
    session_idle_seconds: int = 1800


class DatabaseSettings(BaseModel):
    path: str = "/data/taskline.db"


class NotificationSettings(BaseModel):
    # One of: local, logging, fcm.
    provider: str = "logging"

    fcm_project_id: str = ""
    fcm_access_token: str = ""
    fcm_endpoint: str = "https://fcm.googleapis.com"

    # Dispatch pairs are processed by a bounded worker pool.
    max_workers: int = 4

    # Daily reminder time, in app.timezone.
    reminder_hour: int = 9
    reminder_minute: int = 0

    day_before_enabled: bool = True
    due_today_enabled: bool = True
    overdue_enabled: bool = False


class LoggingSettings(BaseModel):
    level: str = "INFO"
    dir: str = "/data/logs"
    retention_days: int = 14


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def _ensure_settings_file(path: str) -> None:
    p = Path(path)
    if p.exists():
        return

    p.parent.mkdir(parents=True, exist_ok=True)

    # Copy sample settings into place to make first-run behavior predictable.
    sample = Path(__file__).resolve().parent.parent / "settings.sample.yml"
    if sample.exists():
        shutil.copy(sample, p)
    else:
        p.write_text(
            "app:\n  name: 'Taskline'\n  timezone: 'UTC'\n  host: '0.0.0.0'\n  port: 8888\n"
            "database:\n  path: '/data/taskline.db'\n"
            "notifications:\n  provider: 'logging'\n  max_workers: 4\n  reminder_hour: 9\n  reminder_minute: 0\n"
            "logging:\n  level: 'INFO'\n  dir: '/data/logs'\n  retention_days: 14\n"
        )


def _load_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("settings.yml must contain a YAML mapping at the root")
    return data


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings_path = os.environ.get("TASKLINE_SETTINGS", DEFAULT_SETTINGS_PATH)
    _ensure_settings_file(settings_path)
    raw = _load_yaml(settings_path)
    s = Settings.model_validate(raw)

    # Keep provider credentials out of the settings file when possible.
    fcm_token = os.environ.get("TASKLINE_FCM_ACCESS_TOKEN")
    if fcm_token:
        s.notifications.fcm_access_token = fcm_token

    tz_env = os.environ.get("TASKLINE_TIMEZONE")
    if tz_env:
        s.app.timezone = str(tz_env).strip()

    # Port override is occasionally useful in container orchestration.
    port_env = os.environ.get("PORT") or os.environ.get("TASKLINE_PORT")
    if port_env:
        try:
            s.app.port = int(port_env)
        except ValueError:
            pass

    return s
