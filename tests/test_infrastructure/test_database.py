"""Tests for database initialization and schema."""

from switchboard.infrastructure.database import AppDatabase, create_schema
from switchboard.messaging.types import HistoryMessage
from switchboard.tasks.types import TaskCreateInput


class TestAppDatabase:
    def test_init_creates_schema(self, db):
        tables = db.db.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name").fetchall()
        table_names = {row[0] for row in tables}
        assert {
            "tasks",
            "permissions",
            "approval_requests",
            "chronos_jobs",
            "chronos_executions",
            "webhooks",
            "webhook_notifications",
            "conversation_messages",
        } <= table_names

    def test_migrated_columns_exist(self, db):
        task_columns = {row["name"] for row in db.db.execute("PRAGMA table_info(tasks)")}
        job_columns = {row["name"] for row in db.db.execute("PRAGMA table_info(chronos_jobs)")}
        assert {"requires_approval", "approval_action"} <= task_columns
        assert "notify_channels" in job_columns

    def test_repos_initialized(self, db):
        assert db.initialized
        assert db.task_repo is not None
        assert db.chronos_repo is not None
        assert db.permission_repo is not None
        assert db.webhook_repo is not None
        assert db.history is not None

    def test_schema_is_idempotent(self, db):
        db.task_repo.create_task(TaskCreateInput(agent="apoc", input="x", origin_channel="ui", session_id="S1"))
        create_schema(db.db)
        assert db.task_repo.get_stats().total == 1

    def test_file_database(self, tmp_path):
        path = tmp_path / "store" / "switchboard.db"
        app_db = AppDatabase()
        app_db.init(path)
        try:
            assert path.exists()
            assert app_db.chronos_repo.count_active_jobs() == 0
        finally:
            app_db.close()
        assert not app_db.initialized


class TestConversationHistory:
    def test_messages_are_per_session_and_ordered(self, db):
        db.history.add_message("S1", HistoryMessage(session_id="S1", type="human", content="hi"))
        db.history.add_message("S1", HistoryMessage(session_id="S1", type="ai", content="hello"))
        db.history.add_message("S2", HistoryMessage(session_id="S2", type="human", content="other"))

        assert [m.content for m in db.history.get_messages("S1")] == ["hi", "hello"]
        assert [m.content for m in db.history.get_messages("S1", limit=1)] == ["hello"]
