"""
Completion log: task id -> ISO timestamp of the moment it was "ausgebucht".

The log answers one question for the scan page: has this pallet already been
checked in, and when? Todoist stays the source of truth for the task itself;
the log only exists so a second scan shows the original date instead of
asking again.

Contract shared by all backends:
- get(task_id) returns the stored ISO string, or None if never completed
- set_if_absent(task_id, completed_at) keeps an existing record untouched
  (first write wins) and returns whatever is stored afterwards
- both persist synchronously before returning

Two interchangeable backends:
- JsonCompletionStore: one JSON object file, rewritten atomically
- SqliteCompletionStore: one table with task_id as primary key
"""

import json
import os
import sqlite3
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from exceptions import StorageError
from logger import get_logger

logger = get_logger(__name__)


def format_completed_at(moment: Optional[datetime] = None) -> str:
    """
    ISO 8601 UTC with milliseconds and 'Z', e.g. 2025-11-05T14:30:45.123Z.

    Naive datetimes are taken as UTC.
    """
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_completed_at(value: str) -> datetime:
    """Parse a stored timestamp back into an aware datetime."""
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CompletionStore(ABC):
    """Interface for the completion log."""

    @abstractmethod
    def get(self, task_id: Any) -> Optional[str]:
        """Return the completion timestamp, or None if never completed."""

    @abstractmethod
    def set_if_absent(self, task_id: Any, completed_at: str) -> str:
        """Record completion unless a record exists; return the stored timestamp."""

    def is_completed(self, task_id: Any) -> bool:
        return self.get(task_id) is not None


class JsonCompletionStore(CompletionStore):
    """
    File-backed completion log.

    File layout (pretty-printed, UTF-8):
        {
          "8412345678": "2025-11-05T14:30:45.123Z",
          "8412345679": "2025-11-05T14:31:02.911Z"
        }

    Every write re-reads the file, adds the entry and replaces the whole file
    through a temp file in the same directory, so readers never see a torn
    file. A process-local lock serializes read-modify-write; there is no
    cross-process lock. A damaged file reads as empty and is moved aside
    (<name>.corrupt-<stamp>) before the next write replaces it.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        logger.debug(f"JSON completion log at {self.path}")

    def _read(self) -> Tuple[Dict[str, str], bool]:
        """Return (entries, damaged); a damaged file reads as empty."""
        if not self.path.exists():
            return {}, False

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = f.read()
            data = json.loads(raw) if raw.strip() else {}
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Completion log unreadable, treating as empty: {e}")
            return {}, True

        if not isinstance(data, dict):
            logger.error(f"Completion log has unexpected format ({type(data).__name__}), treating as empty")
            return {}, True
        return data, False

    def _set_aside(self) -> Path:
        """Move a damaged log to <name>.corrupt-<utc stamp> so the rewrite cannot erase it."""
        stamp = datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%S%fZ')
        target = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        try:
            os.replace(self.path, target)
        except OSError as e:
            logger.error(f"Could not move damaged completion log aside: {e}")
            raise StorageError(f"Completion log {self.path} is damaged and could not be moved: {e}") from e

        logger.warning(f"Damaged completion log moved to {target}")
        return target

    def _write(self, data: Dict[str, str]) -> None:
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                mode='w',
                dir=self.path.parent,
                prefix='.tmp_ausbuch_',
                suffix='.json',
                delete=False,
                encoding='utf-8'
            ) as tmp_file:
                tmp_path = tmp_file.name
                json.dump(data, tmp_file, indent=2, ensure_ascii=False)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())

            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"CRITICAL: Failed to write completion log: {e}", exc_info=True)
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StorageError(f"Could not write completion log {self.path}: {e}") from e

    def get(self, task_id: Any) -> Optional[str]:
        with self._lock:
            data, _damaged = self._read()
            return data.get(str(task_id))

    def set_if_absent(self, task_id: Any, completed_at: str) -> str:
        key = str(task_id)
        with self._lock:
            data, damaged = self._read()
            existing = data.get(key)
            if existing is not None:
                logger.info(f"Task {key} already in completion log ({existing}), keeping original")
                return existing

            if damaged:
                self._set_aside()
            data[key] = completed_at
            self._write(data)

        logger.debug(f"Completion log: {key} -> {completed_at}")
        return completed_at


_SCHEMA = """
CREATE TABLE IF NOT EXISTS completion_log (
    task_id       TEXT PRIMARY KEY,
    completed_at  TEXT NOT NULL
);
"""


class SqliteCompletionStore(CompletionStore):
    """SQLite-backed completion log; one connection per call."""

    def __init__(self, path: Path):
        self._path = str(path)
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=5)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    @property
    def db_path(self) -> str:
        return self._path

    def get(self, task_id: Any) -> Optional[str]:
        sql = "SELECT completed_at FROM completion_log WHERE task_id = ?"
        try:
            with self._connect() as conn:
                row = conn.execute(sql, (str(task_id),)).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Completion log query failed: {e}")
            raise StorageError(f"Could not read completion log: {e}") from e
        return row["completed_at"] if row else None

    def set_if_absent(self, task_id: Any, completed_at: str) -> str:
        key = str(task_id)
        insert = """
            INSERT INTO completion_log (task_id, completed_at)
            VALUES (?, ?)
            ON CONFLICT (task_id) DO NOTHING
        """
        try:
            conn = self._connect()
            try:
                with conn:
                    cur = conn.execute(insert, (key, completed_at))
                    inserted = cur.rowcount == 1
                    row = conn.execute(
                        "SELECT completed_at FROM completion_log WHERE task_id = ?", (key,)
                    ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(f"CRITICAL: Failed to write completion log: {e}", exc_info=True)
            raise StorageError(f"Could not write completion log: {e}") from e

        if not inserted:
            logger.info(f"Task {key} already in completion log ({row['completed_at']}), keeping original")
        return row["completed_at"]


def create_completion_store(config) -> CompletionStore:
    """Build the backend selected by [Storage] Backend."""
    if config.storage_backend == "sqlite":
        logger.info(f"Using SQLite completion log: {config.completion_log_path}")
        return SqliteCompletionStore(config.completion_log_path)

    logger.info(f"Using JSON completion log: {config.completion_log_path}")
    return JsonCompletionStore(config.completion_log_path)
