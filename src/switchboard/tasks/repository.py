"""Task lifecycle persistence: creation, queries, execution claims, notification claims."""

from __future__ import annotations

import sqlite3
import uuid
from typing import Any

from switchboard.infrastructure.clock import now_ms
from switchboard.infrastructure.config import ACK_FALLBACK, NOTIFY_ACK_GRACE
from switchboard.tasks.types import (
    CHANNELS_NEEDING_ACK,
    EMPTY_ERROR,
    EMPTY_OUTPUT,
    TERMINAL_STATUSES,
    InvalidTransitionError,
    ResultFieldError,
    TaskCreateInput,
    TaskFilters,
    TaskRecord,
    TaskStats,
    UnknownFieldError,
    can_transition,
)

# Fields owned by the executing worker.
EXECUTION_FIELDS = frozenset({
    "status", "context", "output", "error", "started_at", "finished_at",
    "attempt_count", "max_attempts", "available_at", "worker_id", "ack_sent",
})
# Fields owned by the notifier.
NOTIFICATION_FIELDS = frozenset({
    "notify_status", "notify_attempts", "notify_last_error", "notified_at", "notify_after_at",
})
PATCHABLE_FIELDS = EXECUTION_FIELDS | NOTIFICATION_FIELDS

_TERMINAL_SQL = "('completed', 'failed', 'cancelled')"


class TaskRepository:
    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    # --- CRUD ---

    def create_task(self, data: TaskCreateInput) -> TaskRecord:
        now = now_ms()
        task_id = str(uuid.uuid4())
        needs_ack = data.origin_channel in CHANNELS_NEEDING_ACK
        if "notify_after_at" in data.model_fields_set:
            notify_after_at = data.notify_after_at
        else:
            notify_after_at = now + int(NOTIFY_ACK_GRACE * 1000) if needs_ack else None

        self._db.execute(
            """INSERT INTO tasks
               (id, agent, status, input, context, origin_channel, session_id, origin_message_id, origin_user_id,
                attempt_count, max_attempts, available_at, created_at, updated_at,
                notify_status, notify_attempts, notify_after_at, ack_sent, requires_approval, approval_action)
               VALUES (?, ?, 'pending', ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?, 'pending', 0, ?, ?, ?, ?)""",
            (
                task_id, data.agent, data.input, data.context,
                data.origin_channel, data.session_id, data.origin_message_id, data.origin_user_id,
                data.max_attempts, now, now, now,
                notify_after_at, 0 if needs_ack else 1,
                1 if data.requires_approval else 0, data.approval_action,
            ),
        )
        self._db.commit()
        return self._row_to_task(self._db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone())

    def get_task_by_id(self, id: str) -> TaskRecord | None:
        row = self._db.execute("SELECT * FROM tasks WHERE id = ?", (id,)).fetchone()
        if not row:
            return None
        return self._row_to_task(row)

    def find_task_by_origin_message_id(self, origin_message_id: str) -> TaskRecord | None:
        row = self._db.execute(
            "SELECT * FROM tasks WHERE origin_message_id = ? LIMIT 1", (origin_message_id,)
        ).fetchone()
        if not row:
            return None
        return self._row_to_task(row)

    def list_tasks(self, filters: TaskFilters | None = None, oldest_first: bool = False) -> list[TaskRecord]:
        filters = filters or TaskFilters()
        query = "SELECT * FROM tasks WHERE 1=1"
        params: list[Any] = []

        for column in ("status", "agent", "origin_channel", "session_id"):
            value = getattr(filters, column)
            if value is not None:
                query += f" AND {column} = ?"
                params.append(value)

        query += f" ORDER BY created_at {'ASC' if oldest_first else 'DESC'}, rowid {'ASC' if oldest_first else 'DESC'} LIMIT ?"
        params.append(filters.limit)

        rows = self._db.execute(query, params).fetchall()
        return [self._row_to_task(row) for row in rows]

    def get_stats(self) -> TaskStats:
        rows = self._db.execute("SELECT status, COUNT(*) AS cnt FROM tasks GROUP BY status").fetchall()
        stats = TaskStats()
        for row in rows:
            if row["status"] in TaskStats.model_fields and row["status"] != "total":
                setattr(stats, row["status"], row["cnt"])
            stats.total += row["cnt"]
        return stats

    def update_task(self, id: str, **updates: Any) -> TaskRecord | None:
        """Patch known fields. ``None`` values are skipped; ``updated_at`` is always refreshed.

        A status change is checked against the state machine and applied as a
        compare-and-set on the status read here, so a concurrent transition
        makes this call fail instead of overwriting it. Moving to a terminal
        status stamps ``finished_at`` and re-opens delivery exactly like the
        ``mark_*`` transitions. ``output`` belongs to completed tasks and
        ``error`` to failed ones.
        """
        unknown = set(updates) - PATCHABLE_FIELDS
        if unknown:
            raise UnknownFieldError(f"Fields not patchable: {', '.join(sorted(unknown))}")

        now = now_ms()
        changes = {key: value for key, value in updates.items() if value is not None}
        target = changes.get("status")

        current: TaskRecord | None = None
        if target is not None or "output" in changes or "error" in changes:
            current = self.get_task_by_id(id)
            if current is None:
                return None
            if target is not None and not can_transition(current.status, target):
                raise InvalidTransitionError(id, current.status, target)
            resulting = target or current.status
            if "output" in changes and resulting != "completed":
                raise ResultFieldError(f"Task {id} can only carry output when completed, not {resulting}")
            if "error" in changes and resulting != "failed":
                raise ResultFieldError(f"Task {id} can only carry an error when failed, not {resulting}")

        cleared: list[str] = []
        if target in TERMINAL_STATUSES:
            changes.setdefault("finished_at", now)
            changes["notify_status"] = "pending"
            cleared.append("notified_at")
            if target == "completed":
                changes["output"] = (changes.get("output") or "").strip() or EMPTY_OUTPUT
                cleared.append("error")
            elif target == "failed":
                changes["error"] = changes.get("error") or EMPTY_ERROR
                cleared.append("output")
            else:
                cleared.extend(("output", "error"))

        fields: list[str] = ["updated_at = ?"]
        values: list[Any] = [now]
        for key, value in changes.items():
            fields.append(f"{key} = ?")
            values.append(int(value) if isinstance(value, bool) else value)
        fields.extend(f"{key} = NULL" for key in cleared)

        where = "id = ?"
        values.append(id)
        if target is not None and current is not None:
            where += " AND status = ?"
            values.append(current.status)

        cursor = self._db.execute(f"UPDATE tasks SET {', '.join(fields)} WHERE {where}", values)
        self._db.commit()
        if target is not None and cursor.rowcount == 0:
            latest = self.get_task_by_id(id)
            raise InvalidTransitionError(id, latest.status if latest else "missing", target)
        return self.get_task_by_id(id)

    # --- Execution lifecycle ---

    def mark_ack_sent(self, ids: list[str]) -> None:
        """Unblock tasks whose queued-acknowledgement has been delivered."""
        if not ids:
            return
        placeholders = ",".join("?" * len(ids))
        self._db.execute(f"UPDATE tasks SET ack_sent = 1, updated_at = ? WHERE id IN ({placeholders})", (now_ms(), *ids))
        self._db.commit()

    def claim_next_pending(self, worker_id: str) -> TaskRecord | None:
        """Claim the oldest runnable pending task.

        Tasks that need consent move to ``awaiting_approval``; the rest move to
        ``running`` with their attempt counter bumped.
        """
        now = now_ms()
        row = self._db.execute(
            """SELECT id, requires_approval FROM tasks
               WHERE status = 'pending'
                 AND available_at <= ?
                 AND (ack_sent = 1 OR created_at <= ?)
               ORDER BY created_at ASC, rowid ASC
               LIMIT 1""",
            (now, now - int(ACK_FALLBACK * 1000)),
        ).fetchone()
        if not row:
            return None

        if row["requires_approval"]:
            cursor = self._db.execute(
                """UPDATE tasks SET status = 'awaiting_approval', worker_id = ?, updated_at = ?
                   WHERE id = ? AND status = 'pending'""",
                (worker_id, now, row["id"]),
            )
        else:
            cursor = self._db.execute(
                """UPDATE tasks
                   SET status = 'running', started_at = COALESCE(started_at, ?), updated_at = ?,
                       worker_id = ?, attempt_count = attempt_count + 1
                   WHERE id = ? AND status = 'pending'""",
                (now, now, worker_id, row["id"]),
            )
        self._db.commit()
        if cursor.rowcount == 0:
            return None
        return self.get_task_by_id(row["id"])

    def mark_awaiting_approval(self, id: str) -> bool:
        now = now_ms()
        cursor = self._db.execute(
            "UPDATE tasks SET status = 'awaiting_approval', updated_at = ? WHERE id = ? AND status = 'pending'",
            (now, id),
        )
        self._db.commit()
        return cursor.rowcount > 0

    def mark_running(self, id: str, worker_id: str | None = None) -> bool:
        now = now_ms()
        cursor = self._db.execute(
            """UPDATE tasks
               SET status = 'running', started_at = COALESCE(started_at, ?), updated_at = ?,
                   worker_id = COALESCE(?, worker_id), attempt_count = attempt_count + 1
               WHERE id = ? AND status IN ('pending', 'awaiting_approval')""",
            (now, now, worker_id, id),
        )
        self._db.commit()
        return cursor.rowcount > 0

    def mark_completed(self, id: str, output: str) -> bool:
        now = now_ms()
        normalized = (output or "").strip()
        cursor = self._db.execute(
            """UPDATE tasks
               SET status = 'completed', output = ?, error = NULL, finished_at = ?, updated_at = ?,
                   notify_status = 'pending', notified_at = NULL
               WHERE id = ? AND status = 'running'""",
            (normalized or EMPTY_OUTPUT, now, now, id),
        )
        self._db.commit()
        return cursor.rowcount > 0

    def mark_failed(self, id: str, error: str) -> bool:
        now = now_ms()
        cursor = self._db.execute(
            """UPDATE tasks
               SET status = 'failed', error = ?, output = NULL, finished_at = ?, updated_at = ?,
                   notify_status = 'pending', notified_at = NULL
               WHERE id = ? AND status IN ('running', 'awaiting_approval')""",
            (error, now, now, id),
        )
        self._db.commit()
        return cursor.rowcount > 0

    def cancel_task(self, id: str) -> bool:
        now = now_ms()
        cursor = self._db.execute(
            """UPDATE tasks
               SET status = 'cancelled', finished_at = ?, updated_at = ?,
                   notify_status = 'pending', notified_at = NULL
               WHERE id = ? AND status IN ('pending', 'awaiting_approval', 'running')""",
            (now, now, id),
        )
        self._db.commit()
        return cursor.rowcount > 0

    def requeue_for_retry(self, id: str, delay_ms: int) -> bool:
        """Give a failed attempt back to the queue. Only ever applies to running tasks."""
        now = now_ms()
        cursor = self._db.execute(
            """UPDATE tasks
               SET status = 'pending', output = NULL, updated_at = ?, available_at = ?, worker_id = NULL
               WHERE id = ? AND status = 'running'""",
            (now, now + max(0, delay_ms), id),
        )
        self._db.commit()
        return cursor.rowcount > 0

    def recover_stale_running(self, stale_ms: int) -> int:
        now = now_ms()
        cursor = self._db.execute(
            """UPDATE tasks
               SET status = 'pending', updated_at = ?, available_at = ?, worker_id = NULL
               WHERE status = 'running' AND started_at IS NOT NULL AND started_at <= ?""",
            (now, now, now - stale_ms),
        )
        self._db.commit()
        return cursor.rowcount

    # --- Notification lifecycle ---

    def claim_next_notification_candidate(self) -> TaskRecord | None:
        """Atomically move the oldest-finished deliverable task from ``pending`` to ``sending``."""
        now = now_ms()
        row = self._db.execute(
            f"""SELECT id FROM tasks
                WHERE status IN {_TERMINAL_SQL}
                  AND notify_status = 'pending'
                  AND finished_at IS NOT NULL
                  AND (notify_after_at IS NULL OR notify_after_at <= ?)
                ORDER BY finished_at ASC, rowid ASC
                LIMIT 1""",
            (now,),
        ).fetchone()
        if not row:
            return None

        cursor = self._db.execute(
            "UPDATE tasks SET notify_status = 'sending', updated_at = ? WHERE id = ? AND notify_status = 'pending'",
            (now, row["id"]),
        )
        self._db.commit()
        if cursor.rowcount == 0:
            return None
        return self.get_task_by_id(row["id"])

    def recover_notification_queue(self, max_attempts: int, stale_sending_ms: int) -> int:
        """Re-open stale ``sending`` claims and failed deliveries that still have attempts left."""
        now = now_ms()
        cursor = self._db.execute(
            f"""UPDATE tasks
                SET notify_status = 'pending',
                    notify_last_error = COALESCE(notify_last_error, 'Recovered notification queue state'),
                    updated_at = ?
                WHERE status IN {_TERMINAL_SQL}
                  AND ((notify_status = 'sending' AND updated_at <= ?)
                       OR (notify_status = 'failed' AND notify_attempts < ?))""",
            (now, now - max(0, stale_sending_ms), max(1, max_attempts)),
        )
        self._db.commit()
        return cursor.rowcount

    def mark_notification_sent(self, id: str) -> None:
        now = now_ms()
        self._db.execute(
            "UPDATE tasks SET notify_status = 'sent', notified_at = ?, updated_at = ? WHERE id = ? AND notify_status = 'sending'",
            (now, now, id),
        )
        self._db.commit()

    def mark_notification_failed(self, id: str, error: str, retry: bool) -> None:
        self._db.execute(
            """UPDATE tasks
               SET notify_status = ?, notify_attempts = notify_attempts + 1, notify_last_error = ?, updated_at = ?
               WHERE id = ? AND notify_status = 'sending'""",
            ("pending" if retry else "failed", error, now_ms(), id),
        )
        self._db.commit()

    def _row_to_task(self, row: sqlite3.Row) -> TaskRecord:
        data = dict(row)
        data["ack_sent"] = bool(data.get("ack_sent", 1))
        data["requires_approval"] = bool(data.get("requires_approval", 0))
        return TaskRecord(**data)
