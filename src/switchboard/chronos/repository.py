"""Chronos job and execution-history persistence."""

from __future__ import annotations

import json
import sqlite3
import uuid
from typing import Any

from switchboard.chronos.types import ChronosExecution, ChronosJob, CreatedBy, ExecutionStatus, JobFilters, ScheduleType
from switchboard.infrastructure.clock import now_ms

# Columns a patch may set. ``None`` is a meaningful value for the nullable ones.
_PATCHABLE = frozenset({
    "prompt", "schedule_type", "schedule_expression", "cron_normalized", "timezone",
    "next_run_at", "last_run_at", "enabled", "notify_channels",
})


class ChronosRepository:
    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    # --- Jobs ---

    def create_job(
        self,
        prompt: str,
        schedule_type: ScheduleType,
        schedule_expression: str,
        cron_normalized: str | None,
        timezone: str,
        next_run_at: int,
        created_by: CreatedBy = "api",
        notify_channels: list[str] | None = None,
    ) -> ChronosJob:
        job_id = str(uuid.uuid4())
        now = now_ms()
        self._db.execute(
            """INSERT INTO chronos_jobs
               (id, prompt, schedule_type, schedule_expression, cron_normalized, timezone,
                next_run_at, last_run_at, enabled, created_at, updated_at, created_by, notify_channels)
               VALUES (?, ?, ?, ?, ?, ?, ?, NULL, 1, ?, ?, ?, ?)""",
            (
                job_id, prompt, schedule_type, schedule_expression, cron_normalized, timezone,
                next_run_at, now, now, created_by, json.dumps(notify_channels or []),
            ),
        )
        self._db.commit()
        return self._row_to_job(self._db.execute("SELECT * FROM chronos_jobs WHERE id = ?", (job_id,)).fetchone())

    def get_job(self, id: str) -> ChronosJob | None:
        row = self._db.execute("SELECT * FROM chronos_jobs WHERE id = ?", (id,)).fetchone()
        return self._row_to_job(row) if row else None

    def list_jobs(self, filters: JobFilters | None = None) -> list[ChronosJob]:
        filters = filters or JobFilters()
        query = "SELECT * FROM chronos_jobs WHERE 1=1"
        params: list[Any] = []
        if filters.enabled is not None:
            query += " AND enabled = ?"
            params.append(1 if filters.enabled else 0)
        if filters.created_by:
            query += " AND created_by = ?"
            params.append(filters.created_by)
        query += " ORDER BY created_at DESC, rowid DESC"
        return [self._row_to_job(row) for row in self._db.execute(query, params).fetchall()]

    def count_active_jobs(self) -> int:
        row = self._db.execute("SELECT COUNT(*) AS cnt FROM chronos_jobs WHERE enabled = 1").fetchone()
        return row["cnt"]

    def update_job(self, id: str, **updates: Any) -> ChronosJob | None:
        unknown = set(updates) - _PATCHABLE
        if unknown:
            raise ValueError(f"Fields not patchable: {', '.join(sorted(unknown))}")

        fields = ["updated_at = ?"]
        values: list[Any] = [now_ms()]
        for key, value in updates.items():
            if key == "enabled" and value is not None:
                value = 1 if value else 0
            elif key == "notify_channels" and value is not None:
                value = json.dumps(value)
            fields.append(f"{key} = ?")
            values.append(value)
        values.append(id)

        self._db.execute(f"UPDATE chronos_jobs SET {', '.join(fields)} WHERE id = ?", values)
        self._db.commit()
        return self.get_job(id)

    def delete_job(self, id: str) -> bool:
        self._db.execute("DELETE FROM chronos_executions WHERE job_id = ?", (id,))
        cursor = self._db.execute("DELETE FROM chronos_jobs WHERE id = ?", (id,))
        self._db.commit()
        return cursor.rowcount > 0

    def get_due_jobs(self, now: int) -> list[ChronosJob]:
        rows = self._db.execute(
            """SELECT * FROM chronos_jobs
               WHERE enabled = 1 AND next_run_at IS NOT NULL AND next_run_at <= ?
               ORDER BY next_run_at ASC""",
            (now,),
        ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def claim_job(self, id: str, next_run_at: int) -> bool:
        """Take a due job for one firing by clearing ``next_run_at``.

        The update only matches while the job still holds the ``next_run_at``
        it was selected with, so two ticks can never fire the same occurrence.
        """
        cursor = self._db.execute(
            """UPDATE chronos_jobs SET next_run_at = NULL, updated_at = ?
               WHERE id = ? AND enabled = 1 AND next_run_at = ?""",
            (now_ms(), id, next_run_at),
        )
        self._db.commit()
        return cursor.rowcount > 0

    def enable_job(self, id: str, next_run_at: int) -> ChronosJob | None:
        self._db.execute(
            "UPDATE chronos_jobs SET enabled = 1, next_run_at = ?, updated_at = ? WHERE id = ?",
            (next_run_at, now_ms(), id),
        )
        self._db.commit()
        return self.get_job(id)

    def disable_job(self, id: str) -> ChronosJob | None:
        self._db.execute(
            "UPDATE chronos_jobs SET enabled = 0, next_run_at = NULL, updated_at = ? WHERE id = ?",
            (now_ms(), id),
        )
        self._db.commit()
        return self.get_job(id)

    def reschedule_job(self, id: str, next_run_at: int, last_run_at: int) -> None:
        """Persist the next occurrence unless the job was disabled meanwhile."""
        self._db.execute(
            """UPDATE chronos_jobs SET next_run_at = ?, last_run_at = ?, updated_at = ?
               WHERE id = ? AND enabled = 1""",
            (next_run_at, last_run_at, now_ms(), id),
        )
        self._db.commit()

    def finish_once_job(self, id: str, last_run_at: int) -> None:
        self._db.execute(
            "UPDATE chronos_jobs SET enabled = 0, next_run_at = NULL, last_run_at = ?, updated_at = ? WHERE id = ?",
            (last_run_at, now_ms(), id),
        )
        self._db.commit()

    # --- Executions ---

    def insert_execution(self, job_id: str, session_id: str) -> ChronosExecution:
        execution = ChronosExecution(
            id=str(uuid.uuid4()), job_id=job_id, triggered_at=now_ms(), session_id=session_id
        )
        self._db.execute(
            """INSERT INTO chronos_executions (id, job_id, triggered_at, completed_at, status, error, session_id)
               VALUES (?, ?, ?, NULL, 'running', NULL, ?)""",
            (execution.id, job_id, execution.triggered_at, session_id),
        )
        self._db.commit()
        return execution

    def complete_execution(self, id: str, status: ExecutionStatus, error: str | None = None) -> None:
        self._db.execute(
            "UPDATE chronos_executions SET status = ?, completed_at = ?, error = ? WHERE id = ?",
            (status, now_ms(), error, id),
        )
        self._db.commit()

    def list_executions(self, job_id: str, limit: int = 50) -> list[ChronosExecution]:
        rows = self._db.execute(
            "SELECT * FROM chronos_executions WHERE job_id = ? ORDER BY triggered_at DESC, rowid DESC LIMIT ?",
            (job_id, max(1, min(limit, 100))),
        ).fetchall()
        return [ChronosExecution(**dict(row)) for row in rows]

    def prune_executions(self, job_id: str, keep: int) -> int:
        cursor = self._db.execute(
            """DELETE FROM chronos_executions
               WHERE job_id = ? AND id NOT IN (
                   SELECT id FROM chronos_executions WHERE job_id = ?
                   ORDER BY triggered_at DESC, rowid DESC LIMIT ?
               )""",
            (job_id, job_id, keep),
        )
        self._db.commit()
        return cursor.rowcount

    def _row_to_job(self, row: sqlite3.Row) -> ChronosJob:
        data = dict(row)
        data["enabled"] = bool(data["enabled"])
        try:
            data["notify_channels"] = json.loads(data.get("notify_channels") or "[]")
        except json.JSONDecodeError:
            data["notify_channels"] = []
        return ChronosJob(**data)
