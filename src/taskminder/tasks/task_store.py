# src/taskminder/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path

from ..core.clock import SystemClock, from_timestamp, to_timestamp
from ..core.errors import InvalidFrequency, StoreUnavailable
from ..core.ports import Clock
from .frequency import parse_frequency
from .task_models import Task

logger = logging.getLogger(__name__)


class TaskStore:
    """
    SQLite task store.

    The schema is migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Timestamps are stored as REAL epoch seconds and converted to aware UTC
    datetimes in _row_to_task, nowhere else.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3", *, clock: Clock | None = None) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock or SystemClock()
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except StoreUnavailable:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextlib.contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"cannot open task store {self._db_path}: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreUnavailable(f"task store error: {e}") from e
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._conn() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    frequency TEXT NOT NULL,
                    interval_seconds REAL NOT NULL,
                    created_at REAL NOT NULL,
                    last_completed REAL
                )
                """
            )

            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("interval_seconds", "REAL NOT NULL DEFAULT 0")
            add_col("last_completed", "REAL")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_created ON tasks(created_at)")
            conn.commit()

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        frequency = str(row["frequency"])
        # The expression is the source of truth; interval_seconds is for ad-hoc SQL only.
        interval = parse_frequency(frequency)
        return Task(
            id=str(row["id"]),
            name=str(row["name"] or ""),
            frequency=frequency,
            interval=interval,
            created_at=from_timestamp(row["created_at"] or 0.0),
            last_completed=(
                from_timestamp(row["last_completed"]) if row["last_completed"] is not None else None
            ),
        )

    # ---- public API ----

    def count_tasks(self) -> int:
        with self._conn() as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)

    def add_task(self, *, name: str, frequency: str, created_at: datetime | None = None) -> Task:
        """Validate the frequency (InvalidFrequency propagates) and insert a new task."""
        name = (name or "").strip()
        if not name:
            raise ValueError("name is required")
        frequency = (frequency or "").strip()
        interval = parse_frequency(frequency)

        created = created_at or self._clock.now()
        task = Task(
            id=uuid.uuid4().hex,
            name=name,
            frequency=frequency,
            interval=interval,
            created_at=created,
            last_completed=None,
        )

        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO tasks(id, name, frequency, interval_seconds, created_at, last_completed)
                VALUES (?, ?, ?, ?, ?, NULL)
                """,
                (task.id, task.name, task.frequency, interval.total_seconds(), to_timestamp(created)),
            )
            conn.commit()

        logger.debug("Task added id=%s name=%r frequency=%r", task.id, task.name, task.frequency)
        return task

    def get_task(self, task_id: str) -> Task | None:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (str(task_id),)).fetchone()
        if row is None:
            return None
        try:
            return self._row_to_task(row)
        except InvalidFrequency as e:
            raise StoreUnavailable(f"task {task_id} has unreadable frequency {row['frequency']!r}") from e

    def list_tasks(self) -> list[Task]:
        with self._conn() as conn:
            rows = conn.execute("SELECT * FROM tasks ORDER BY created_at ASC, id ASC").fetchall()
        tasks: list[Task] = []
        for r in rows:
            try:
                tasks.append(self._row_to_task(r))
            except InvalidFrequency:
                # One bad row must not hide every other task from the scanner.
                logger.error("Skipping task %s: stored frequency %r does not parse", r["id"], r["frequency"])
        return tasks

    def mark_completed(self, task_id: str, completed_at: datetime | None = None) -> Task | None:
        """Reset the task's timer. Returns the updated task, or None if it does not exist."""
        at = completed_at or self._clock.now()
        with self._conn() as conn:
            cur = conn.execute(
                "UPDATE tasks SET last_completed = ? WHERE id = ?",
                (to_timestamp(at), str(task_id)),
            )
            conn.commit()
            if cur.rowcount != 1:
                return None
        logger.info("Task %s marked completed at %s", task_id, at.isoformat())
        return self.get_task(task_id)

    def delete_task(self, task_id: str) -> bool:
        with self._conn() as conn:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (str(task_id),))
            conn.commit()
            return cur.rowcount == 1

    def clear_tasks(self) -> int:
        with self._conn() as conn:
            cur = conn.execute("DELETE FROM tasks")
            conn.commit()
            return int(cur.rowcount)
