from __future__ import annotations

import logging
import re
import threading
from datetime import date, datetime, timedelta
from pathlib import Path

from .config import LoggingSettings


LOG_PREFIX = "taskline"

_LOGFILE_RE = re.compile(rf"^{re.escape(LOG_PREFIX)}-(\d{{4}}-\d{{2}}-\d{{2}})\.log$")


def _safe_level(level: str | None, default: str = "INFO") -> int:
    raw = (level or default).strip().upper()
    lvl = getattr(logging, raw, None)
    return lvl if isinstance(lvl, int) else logging.INFO


class DailyDateFileHandler(logging.Handler):
    """Write logs to <dir>/taskline-YYYY-MM-DD.log, switching files when the local date changes."""

    def __init__(self, *, base_dir: Path, prefix: str = LOG_PREFIX, level: int = logging.INFO):
        super().__init__(level=level)
        self.base_dir = Path(base_dir)
        self.prefix = str(prefix)
        self._lock = threading.RLock()
        self._current_date = self._today()
        self._stream = None
        self._open_for_date(self._current_date)

    def _today(self) -> str:
        return datetime.now().strftime("%Y-%m-%d")

    def path_for_date(self, date_str: str) -> Path:
        return self.base_dir / f"{self.prefix}-{date_str}.log"

    def _open_for_date(self, date_str: str) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._stream = open(self.path_for_date(date_str), "a", encoding="utf-8", buffering=1)

    def _close_stream(self) -> None:
        if self._stream:
            try:
                self._stream.close()
            except OSError:
                pass
        self._stream = None

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
        except Exception:
            self.handleError(record)
            return

        with self._lock:
            try:
                today = self._today()
                if today != self._current_date or not self._stream:
                    self._close_stream()
                    self._current_date = today
                    self._open_for_date(today)
                self._stream.write(msg + "\n")
            except Exception:
                self.handleError(record)

    def close(self) -> None:
        with self._lock:
            self._close_stream()
        super().close()


_FILE_HANDLER: DailyDateFileHandler | None = None


def setup_logging(cfg: LoggingSettings) -> None:
    """Stream handler on the root logger plus a daily file under `cfg.dir`.

    Safe to call more than once. If the log directory cannot be created the
    process keeps logging to the stream only.
    """

    global _FILE_HANDLER

    lvl = _safe_level(cfg.level)
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root = logging.getLogger()
    root.setLevel(lvl)

    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        sh = logging.StreamHandler()
        sh.setLevel(lvl)
        sh.setFormatter(formatter)
        root.addHandler(sh)

    if _FILE_HANDLER is None and cfg.dir:
        try:
            fh = DailyDateFileHandler(base_dir=Path(cfg.dir), level=lvl)
        except OSError as e:
            logging.getLogger("taskline").warning("File logging disabled (%s): %s", cfg.dir, e)
        else:
            fh.setFormatter(formatter)
            root.addHandler(fh)
            _FILE_HANDLER = fh
    elif _FILE_HANDLER is not None:
        _FILE_HANDLER.setLevel(lvl)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "apscheduler"):
        logging.getLogger(name).propagate = True


def list_log_files(log_dir: Path | str) -> list[tuple[date, Path]]:
    """(date, path) for every log file in `log_dir`, newest first."""
    d = Path(log_dir)
    if not d.is_dir():
        return []
    out: list[tuple[date, Path]] = []
    for p in d.iterdir():
        m = _LOGFILE_RE.match(p.name)
        if not (m and p.is_file()):
            continue
        try:
            out.append((date.fromisoformat(m.group(1)), p))
        except ValueError:
            continue
    return sorted(out, key=lambda item: item[0], reverse=True)


def purge_old_logs(*, log_dir: Path | str, retention_days: int, today: date | None = None) -> int:
    """Delete log files whose date is more than `retention_days` days old."""
    days = int(retention_days or 0)
    if days <= 0:
        return 0
    cutoff = (today or date.today()) - timedelta(days=days)

    deleted = 0
    for day, p in list_log_files(log_dir):
        if day >= cutoff:
            continue
        try:
            p.unlink(missing_ok=True)
            deleted += 1
        except OSError:
            continue
    return deleted
