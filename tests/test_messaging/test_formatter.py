"""Tests for outbound message formatting."""

from switchboard.messaging.formatter import (
    format_chronos_notification,
    format_task_result,
    format_webhook_result,
    task_result_body,
    truncate,
)
from switchboard.tasks.types import EMPTY_ERROR, TaskRecord


def _task(**overrides) -> TaskRecord:
    data = dict(
        id="a1b2c3",
        agent="apoc",
        status="completed",
        input="Check disk space",
        origin_channel="telegram",
        session_id="S1",
        created_at=0,
        updated_at=0,
    )
    data.update(overrides)
    return TaskRecord(**data)


class TestTaskResult:
    def test_completed_header_and_body(self):
        text = format_task_result(_task(output="Disk is 40% full"))
        assert text.startswith("✅")
        assert "Task `A1B2C3`" in text
        assert "Agent: `APOC`" in text
        assert "Status: `COMPLETED`" in text
        assert text.endswith("Disk is 40% full")

    def test_failed_uses_error(self):
        text = format_task_result(_task(status="failed", error="permission denied"))
        assert text.startswith("❌")
        assert text.endswith("permission denied")

    def test_failed_without_error_text(self):
        assert task_result_body(_task(status="failed", error="  ")) == EMPTY_ERROR

    def test_cancelled(self):
        assert format_task_result(_task(status="cancelled")).startswith("🚫")

    def test_long_output_truncated(self):
        text = format_task_result(_task(output="x" * 5000))
        assert text.endswith("x…")
        assert len(text) < 3700


class TestTruncate:
    def test_short_text_untouched(self):
        assert truncate("hello", 10) == "hello"

    def test_long_text_marked(self):
        assert truncate("abcdef", 3) == "abc…"


class TestChronosNotification:
    def test_contains_prompt_and_response(self):
        text = format_chronos_notification("Summarize my inbox", "3 new emails")
        assert "Summarize my inbox" in text
        assert text.endswith("3 new emails")

    def test_long_prompt_shortened(self):
        text = format_chronos_notification("p" * 200, "ok")
        assert "p" * 81 not in text


class TestWebhookResult:
    def test_status_icon(self):
        assert format_webhook_result("deploy", "ok", "completed").startswith("✅ *Webhook: deploy*")
        assert format_webhook_result("deploy", "boom", "failed").startswith("❌")
