# src/taskminder/workflows/run_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from ..core.errors import DuplicateRun, StoreUnavailable
from .run_models import ACTIVE_STATUSES, RunStatus, StepRecord, StepStatus, Trigger, WorkflowRun

logger = logging.getLogger(__name__)


class RunStore:
    """
    SQLite persistence for durable workflows.

    Tables:
    - workflow_runs: one row per run (status, params, resume_at, result)
    - workflow_steps: step log keyed by (run_id, step name); completed steps are
      replayed from here instead of being executed again
    - triggers: persisted periodic trigger registrations

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "workflows.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("RunStore ready db=%s", self._db_path)

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
            raise StoreUnavailable(f"cannot open run store {self._db_path}: {e}") from e
        try:
            yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            raise StoreUnavailable(f"run store error: {e}") from e
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._conn() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS workflow_runs (
                    id TEXT PRIMARY KEY,
                    workflow TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    params TEXT NOT NULL DEFAULT '{}',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    resume_at REAL,
                    correlation_key TEXT,
                    result TEXT,
                    error TEXT
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS workflow_steps (
                    run_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    output TEXT,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    wake_at REAL,
                    updated_at REAL NOT NULL,
                    PRIMARY KEY (run_id, name)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS triggers (
                    name TEXT PRIMARY KEY,
                    callback TEXT NOT NULL,
                    cron TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    last_fired_at REAL
                )
                """
            )

            cur.execute("PRAGMA table_info(workflow_runs)")
            cols = {row["name"] for row in cur.fetchall()}
            if "correlation_key" not in cols:
                cur.execute("ALTER TABLE workflow_runs ADD COLUMN correlation_key TEXT")
                logger.info("RunStore migration: added column correlation_key")

            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_runs_status_resume ON workflow_runs(status, resume_at)"
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_runs_correlation ON workflow_runs(workflow, correlation_key)"
            )
            conn.commit()

    @staticmethod
    def _dump(value: Any) -> str:
        return json.dumps(value, ensure_ascii=False)

    @staticmethod
    def _load(raw: str | None) -> Any:
        if raw is None:
            return None
        return json.loads(raw)

    def _row_to_run(self, row: sqlite3.Row) -> WorkflowRun:
        params = self._load(row["params"]) or {}
        result = self._load(row["result"])
        return WorkflowRun(
            id=str(row["id"]),
            workflow=str(row["workflow"]),
            status=RunStatus.from_db(row["status"]),
            params=params if isinstance(params, dict) else {},
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            resume_at=float(row["resume_at"]) if row["resume_at"] is not None else None,
            correlation_key=row["correlation_key"],
            result=result if isinstance(result, dict) else None,
            error=row["error"],
        )

    def _row_to_step(self, row: sqlite3.Row) -> StepRecord:
        return StepRecord(
            run_id=str(row["run_id"]),
            name=str(row["name"]),
            status=StepStatus(row["status"]),
            output=self._load(row["output"]),
            attempts=int(row["attempts"] or 0),
            wake_at=float(row["wake_at"]) if row["wake_at"] is not None else None,
            updated_at=float(row["updated_at"] or 0.0),
        )

    # ---- runs ----

    def create_run(
        self,
        *,
        run_id: str,
        workflow: str,
        params: dict[str, Any],
        correlation_key: str | None = None,
        now_ts: float | None = None,
        exclusive: bool = False,
    ) -> WorkflowRun:
        """
        Insert a pending run.

        With exclusive=True and a correlation_key, the insert only happens when no
        active run of the same workflow holds that key; otherwise the existing
        active run is returned. Check and insert share one write transaction.
        """
        now = time.time() if now_ts is None else float(now_ts)
        params_str = self._dump(params)
        try:
            with self._conn() as conn:
                if exclusive and correlation_key is not None:
                    conn.execute("BEGIN IMMEDIATE")
                    row = self._select_active(conn, workflow, correlation_key)
                    if row is not None:
                        conn.rollback()
                        return self._row_to_run(row)
                conn.execute(
                    """
                    INSERT INTO workflow_runs(
                        id, workflow, status, params, created_at, updated_at,
                        resume_at, correlation_key
                    )
                    VALUES (?, ?, 'pending', ?, ?, ?, NULL, ?)
                    """,
                    (run_id, workflow, params_str, now, now, correlation_key),
                )
                conn.commit()
        except sqlite3.IntegrityError as e:
            raise DuplicateRun(run_id) from e

        logger.debug("Run created id=%s workflow=%s key=%s", run_id, workflow, correlation_key)
        return WorkflowRun(
            id=run_id,
            workflow=workflow,
            status=RunStatus.PENDING,
            params=dict(params),
            created_at=now,
            updated_at=now,
            resume_at=None,
            correlation_key=correlation_key,
        )

    def get_run(self, run_id: str) -> WorkflowRun | None:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM workflow_runs WHERE id = ?", (run_id,)).fetchone()
            return self._row_to_run(row) if row else None

    def list_runs(
        self,
        *,
        workflow: str | None = None,
        statuses: Iterable[RunStatus] | None = None,
        limit: int = 50,
    ) -> list[WorkflowRun]:
        where: list[str] = []
        params: list[Any] = []
        if workflow is not None:
            where.append("workflow = ?")
            params.append(workflow)
        if statuses is not None:
            st = [s.value for s in statuses]
            if not st:
                return []
            where.append(f"status IN ({','.join('?' for _ in st)})")
            params.extend(st)

        sql = "SELECT * FROM workflow_runs"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY created_at DESC, id ASC LIMIT ?"
        params.append(int(limit))

        with self._conn() as conn:
            return [self._row_to_run(r) for r in conn.execute(sql, params).fetchall()]

    def list_runnable_runs(self, *, now_ts: float, limit: int = 32) -> list[WorkflowRun]:
        """
        Runs that can be executed now:
        - pending, or
        - sleeping with resume_at <= now_ts
        """
        with self._conn() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM workflow_runs
                WHERE status = 'pending'
                   OR (status = 'sleeping' AND resume_at IS NOT NULL AND resume_at <= ?)
                ORDER BY COALESCE(resume_at, created_at) ASC, created_at ASC
                    LIMIT ?
                """,
                (float(now_ts), int(limit)),
            ).fetchall()
            return [self._row_to_run(r) for r in rows]

    def try_claim_run(self, run_id: str, *, expected: Iterable[RunStatus], now_ts: float) -> bool:
        """
        Atomically transitions:
          status IN expected -> status = running

        Returns True if the row was claimed by this caller.
        """
        exp = [e.value for e in expected]
        if not exp:
            return False
        placeholders = ",".join("?" for _ in exp)
        with self._conn() as conn:
            cur = conn.execute(
                f"""
                UPDATE workflow_runs
                SET status = 'running', updated_at = ?
                WHERE id = ?
                  AND status IN ({placeholders})
                """,
                (float(now_ts), run_id, *exp),
            )
            conn.commit()
            return cur.rowcount == 1

    def mark_sleeping(self, run_id: str, *, resume_at: float, now_ts: float) -> None:
        with self._conn() as conn:
            conn.execute(
                "UPDATE workflow_runs SET status = 'sleeping', resume_at = ?, updated_at = ? WHERE id = ?",
                (float(resume_at), float(now_ts), run_id),
            )
            conn.commit()

    def mark_completed(self, run_id: str, *, result: dict[str, Any], now_ts: float) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                UPDATE workflow_runs
                SET status = 'completed', result = ?, resume_at = NULL, updated_at = ?
                WHERE id = ?
                """,
                (self._dump(result), float(now_ts), run_id),
            )
            conn.commit()

    def mark_failed(
        self,
        run_id: str,
        *,
        error: str,
        now_ts: float,
        result: dict[str, Any] | None = None,
    ) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                UPDATE workflow_runs
                SET status = 'failed', error = ?, result = ?, resume_at = NULL, updated_at = ?
                WHERE id = ?
                """,
                (error, self._dump(result) if result is not None else None, float(now_ts), run_id),
            )
            conn.commit()

    def reset_interrupted_runs(self, *, now_ts: float) -> int:
        """running -> pending for runs whose process died mid-execution."""
        with self._conn() as conn:
            cur = conn.execute(
                "UPDATE workflow_runs SET status = 'pending', updated_at = ? WHERE status = 'running'",
                (float(now_ts),),
            )
            conn.commit()
            return int(cur.rowcount)

    def active_correlation_keys(self, workflow: str) -> set[str]:
        st = [s.value for s in ACTIVE_STATUSES]
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT DISTINCT correlation_key
                FROM workflow_runs
                WHERE workflow = ?
                  AND correlation_key IS NOT NULL
                  AND status IN ({','.join('?' for _ in st)})
                """,
                (workflow, *st),
            ).fetchall()
            return {str(r["correlation_key"]) for r in rows}

    @staticmethod
    def _select_active(conn: sqlite3.Connection, workflow: str, correlation_key: str) -> sqlite3.Row | None:
        st = [s.value for s in ACTIVE_STATUSES]
        return conn.execute(
            f"""
            SELECT *
            FROM workflow_runs
            WHERE workflow = ?
              AND correlation_key = ?
              AND status IN ({','.join('?' for _ in st)})
            ORDER BY created_at ASC
                LIMIT 1
            """,
            (workflow, correlation_key, *st),
        ).fetchone()

    def active_run_params(self, workflow: str) -> list[dict[str, Any]]:
        """Params of every pending, running or sleeping run of a workflow."""
        st = [s.value for s in ACTIVE_STATUSES]
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT params FROM workflow_runs WHERE workflow = ? AND status IN ({','.join('?' for _ in st)})",
                (workflow, *st),
            ).fetchall()
        out: list[dict[str, Any]] = []
        for r in rows:
            params = self._load(r["params"])
            if isinstance(params, dict):
                out.append(params)
        return out

    def count_runs(self, *, workflow: str | None = None, statuses: Iterable[RunStatus] | None = None) -> int:
        where: list[str] = []
        params: list[Any] = []
        if workflow is not None:
            where.append("workflow = ?")
            params.append(workflow)
        if statuses is not None:
            st = [s.value for s in statuses]
            if not st:
                return 0
            where.append(f"status IN ({','.join('?' for _ in st)})")
            params.extend(st)

        sql = "SELECT COUNT(*) FROM workflow_runs"
        if where:
            sql += " WHERE " + " AND ".join(where)
        with self._conn() as conn:
            (n,) = conn.execute(sql, params).fetchone()
            return int(n)

    # ---- steps ----

    def get_steps(self, run_id: str) -> dict[str, StepRecord]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM workflow_steps WHERE run_id = ? ORDER BY updated_at ASC",
                (run_id,),
            ).fetchall()
            return {str(r["name"]): self._row_to_step(r) for r in rows}

    def save_step(
        self,
        run_id: str,
        name: str,
        *,
        status: StepStatus,
        now_ts: float,
        output: Any = None,
        attempts: int = 0,
        wake_at: float | None = None,
    ) -> StepRecord:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO workflow_steps(run_id, name, status, output, attempts, wake_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(run_id, name) DO UPDATE SET
                    status = excluded.status,
                    output = excluded.output,
                    attempts = excluded.attempts,
                    wake_at = excluded.wake_at,
                    updated_at = excluded.updated_at
                """,
                (
                    run_id,
                    name,
                    status.value,
                    self._dump(output),
                    int(attempts),
                    float(wake_at) if wake_at is not None else None,
                    float(now_ts),
                ),
            )
            conn.commit()
        return StepRecord(
            run_id=run_id,
            name=name,
            status=status,
            output=output,
            attempts=int(attempts),
            wake_at=wake_at,
            updated_at=float(now_ts),
        )

    # ---- triggers ----

    def get_trigger(self, name: str) -> Trigger | None:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM triggers WHERE name = ?", (name,)).fetchone()
        if not row:
            return None
        return Trigger(
            name=str(row["name"]),
            callback=str(row["callback"]),
            cron=str(row["cron"]),
            created_at=float(row["created_at"] or 0.0),
            last_fired_at=float(row["last_fired_at"]) if row["last_fired_at"] is not None else None,
        )

    def list_triggers(self, *, callback: str | None = None) -> list[Trigger]:
        with self._conn() as conn:
            if callback is None:
                rows = conn.execute("SELECT name FROM triggers ORDER BY created_at ASC").fetchall()
            else:
                rows = conn.execute(
                    "SELECT name FROM triggers WHERE callback = ? ORDER BY created_at ASC",
                    (callback,),
                ).fetchall()
        out: list[Trigger] = []
        for r in rows:
            trig = self.get_trigger(str(r["name"]))
            if trig is not None:
                out.append(trig)
        return out

    def register_trigger(self, *, name: str, callback: str, cron: str, now_ts: float) -> bool:
        """Insert the trigger unless one with the same name exists. Returns True if inserted."""
        with self._conn() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO triggers(name, callback, cron, created_at, last_fired_at)
                VALUES (?, ?, ?, ?, NULL)
                """,
                (name, callback, cron, float(now_ts)),
            )
            conn.commit()
            return cur.rowcount == 1

    def try_claim_trigger_fire(
        self, name: str, *, expected_last: float | None, fired_at: float
    ) -> bool:
        """
        Compare-and-set on last_fired_at, so that only one scanner fires a given cron slot.
        """
        with self._conn() as conn:
            if expected_last is None:
                cur = conn.execute(
                    "UPDATE triggers SET last_fired_at = ? WHERE name = ? AND last_fired_at IS NULL",
                    (float(fired_at), name),
                )
            else:
                cur = conn.execute(
                    "UPDATE triggers SET last_fired_at = ? WHERE name = ? AND last_fired_at = ?",
                    (float(fired_at), name, float(expected_last)),
                )
            conn.commit()
            return cur.rowcount == 1
