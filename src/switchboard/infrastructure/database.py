"""SQLite database schema, migrations, and AppDatabase composition root."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING

from switchboard.infrastructure.config import DB_PATH
from switchboard.infrastructure.logger import logger

if TYPE_CHECKING:
    from switchboard.approvals.repository import PermissionRepository
    from switchboard.chronos.repository import ChronosRepository
    from switchboard.messaging.history import ConversationHistory
    from switchboard.tasks.repository import TaskRepository
    from switchboard.webhooks.repository import WebhookRepository


def create_schema(db: sqlite3.Connection) -> None:
    """Create all tables and indexes. Safe to call multiple times (IF NOT EXISTS)."""
    db.executescript("""
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            agent TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            input TEXT NOT NULL DEFAULT '',
            context TEXT,
            output TEXT,
            error TEXT,
            origin_channel TEXT NOT NULL DEFAULT 'api',
            session_id TEXT NOT NULL DEFAULT 'default',
            origin_message_id TEXT,
            origin_user_id TEXT,
            attempt_count INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 3,
            available_at INTEGER NOT NULL DEFAULT 0,
            created_at INTEGER NOT NULL,
            started_at INTEGER,
            finished_at INTEGER,
            updated_at INTEGER NOT NULL,
            worker_id TEXT,
            notify_status TEXT NOT NULL DEFAULT 'pending',
            notify_attempts INTEGER NOT NULL DEFAULT 0,
            notify_last_error TEXT,
            notified_at INTEGER,
            notify_after_at INTEGER,
            ack_sent INTEGER NOT NULL DEFAULT 1
        );
        CREATE INDEX IF NOT EXISTS idx_tasks_status_available_at ON tasks(status, available_at, created_at);
        CREATE INDEX IF NOT EXISTS idx_tasks_origin ON tasks(origin_channel, session_id);
        CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at DESC);
        CREATE INDEX IF NOT EXISTS idx_tasks_notify ON tasks(status, notify_status, finished_at);

        CREATE TABLE IF NOT EXISTS permissions (
            id TEXT PRIMARY KEY,
            action_type TEXT NOT NULL,
            scope TEXT NOT NULL,
            scope_id TEXT,
            granted_at INTEGER NOT NULL,
            expires_at INTEGER
        );
        CREATE INDEX IF NOT EXISTS idx_permissions_action ON permissions(action_type, scope, scope_id);

        CREATE TABLE IF NOT EXISTS approval_requests (
            id TEXT PRIMARY KEY,
            task_id TEXT NOT NULL,
            session_id TEXT NOT NULL,
            action_type TEXT NOT NULL,
            action_description TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            scope TEXT,
            created_at INTEGER NOT NULL,
            resolved_at INTEGER,
            resolved_by TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_approval_requests_session ON approval_requests(session_id, status);

        CREATE TABLE IF NOT EXISTS chronos_jobs (
            id TEXT PRIMARY KEY,
            prompt TEXT NOT NULL,
            schedule_type TEXT NOT NULL,
            schedule_expression TEXT NOT NULL,
            cron_normalized TEXT,
            timezone TEXT NOT NULL DEFAULT 'UTC',
            next_run_at INTEGER,
            last_run_at INTEGER,
            enabled INTEGER NOT NULL DEFAULT 1,
            created_at INTEGER NOT NULL,
            updated_at INTEGER NOT NULL,
            created_by TEXT NOT NULL DEFAULT 'api'
        );
        CREATE INDEX IF NOT EXISTS idx_chronos_jobs_next_run ON chronos_jobs(enabled, next_run_at);

        CREATE TABLE IF NOT EXISTS chronos_executions (
            id TEXT PRIMARY KEY,
            job_id TEXT NOT NULL,
            triggered_at INTEGER NOT NULL,
            completed_at INTEGER,
            status TEXT NOT NULL DEFAULT 'running',
            error TEXT,
            session_id TEXT NOT NULL DEFAULT ''
        );
        CREATE INDEX IF NOT EXISTS idx_chronos_executions_job ON chronos_executions(job_id, triggered_at DESC);

        CREATE TABLE IF NOT EXISTS webhooks (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            prompt TEXT NOT NULL,
            enabled INTEGER NOT NULL DEFAULT 1,
            notification_channels TEXT NOT NULL DEFAULT '["ui"]',
            created_at INTEGER NOT NULL,
            last_triggered_at INTEGER,
            trigger_count INTEGER NOT NULL DEFAULT 0
        );
        CREATE TABLE IF NOT EXISTS webhook_notifications (
            id TEXT PRIMARY KEY,
            webhook_id TEXT NOT NULL,
            webhook_name TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            payload TEXT NOT NULL,
            result TEXT,
            read INTEGER NOT NULL DEFAULT 0,
            created_at INTEGER NOT NULL,
            completed_at INTEGER,
            FOREIGN KEY (webhook_id) REFERENCES webhooks(id) ON DELETE CASCADE
        );
        CREATE INDEX IF NOT EXISTS idx_webhook_notifications_created_at ON webhook_notifications(created_at DESC);

        CREATE TABLE IF NOT EXISTS conversation_messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            type TEXT NOT NULL,
            content TEXT NOT NULL,
            created_at INTEGER NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_conversation_messages_session ON conversation_messages(session_id, id);
    """)

    _run_schema_migrations(db)


def _run_schema_migrations(db: sqlite3.Connection) -> None:
    """Run ALTER TABLE migrations. Each is wrapped in try/except for idempotency."""

    # Consent gate columns on tasks
    try:
        db.execute("ALTER TABLE tasks ADD COLUMN requires_approval INTEGER NOT NULL DEFAULT 0")
        db.execute("ALTER TABLE tasks ADD COLUMN approval_action TEXT")
        db.commit()
    except sqlite3.OperationalError:
        pass

    # Per-job notification targets (empty list = every registered adapter)
    try:
        db.execute("ALTER TABLE chronos_jobs ADD COLUMN notify_channels TEXT NOT NULL DEFAULT '[]'")
        db.commit()
    except sqlite3.OperationalError:
        pass

    # Backfill rows written before available_at was tracked
    db.execute("UPDATE tasks SET available_at = created_at WHERE available_at = 0")
    db.commit()


class AppDatabase:
    """Composition root that initializes the DB and exposes repositories."""

    def __init__(self) -> None:
        self._db: sqlite3.Connection | None = None
        self.task_repo: TaskRepository | None = None  # type: ignore[assignment]
        self.chronos_repo: ChronosRepository | None = None  # type: ignore[assignment]
        self.permission_repo: PermissionRepository | None = None  # type: ignore[assignment]
        self.webhook_repo: WebhookRepository | None = None  # type: ignore[assignment]
        self.history: ConversationHistory | None = None  # type: ignore[assignment]

    @property
    def db(self) -> sqlite3.Connection:
        assert self._db is not None, "Database not initialized. Call init() first."
        return self._db

    @property
    def initialized(self) -> bool:
        return self._db is not None

    def init(self, db_path: Path = DB_PATH) -> None:
        """Open (or create) the database file."""
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(str(db_path), timeout=5.0)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode = WAL")
        self._db.execute("PRAGMA foreign_keys = ON")
        self._init_repos()
        logger.info("Database opened", path=str(db_path))

    def _init_test(self) -> None:
        """For tests only. Creates a fresh in-memory database."""
        self._db = sqlite3.connect(":memory:")
        self._db.row_factory = sqlite3.Row
        self._init_repos()

    def close(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None

    def _init_repos(self) -> None:
        assert self._db is not None
        create_schema(self._db)

        # Import here to avoid circular imports
        from switchboard.approvals.repository import PermissionRepository
        from switchboard.chronos.repository import ChronosRepository
        from switchboard.messaging.history import ConversationHistory
        from switchboard.tasks.repository import TaskRepository
        from switchboard.webhooks.repository import WebhookRepository

        self.task_repo = TaskRepository(self._db)
        self.chronos_repo = ChronosRepository(self._db)
        self.permission_repo = PermissionRepository(self._db)
        self.webhook_repo = WebhookRepository(self._db)
        self.history = ConversationHistory(self._db)
