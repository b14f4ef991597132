"""Tests for task repository."""

import pytest

from switchboard.infrastructure.clock import now_ms
from switchboard.tasks.types import (
    EMPTY_ERROR,
    EMPTY_OUTPUT,
    InvalidTransitionError,
    ResultFieldError,
    TaskCreateInput,
    TaskFilters,
    UnknownFieldError,
)


@pytest.fixture
def task_repo(db):
    return db.task_repo


def _input(**overrides) -> TaskCreateInput:
    data = dict(agent="apoc", input="Check disk space", origin_channel="ui", session_id="S1")
    data.update(overrides)
    return TaskCreateInput(**data)


def _finished(task_repo, output="done", **overrides):
    task = task_repo.create_task(_input(**overrides))
    assert task_repo.mark_running(task.id, "w1")
    assert task_repo.mark_completed(task.id, output)
    return task_repo.get_task_by_id(task.id)


class TestTaskCreate:
    def test_create_and_get(self, task_repo):
        task = task_repo.create_task(_input())
        assert task.status == "pending"
        assert task.notify_status == "pending"
        assert task.attempt_count == 0
        assert task.max_attempts == 3
        assert task.output is None and task.error is None
        assert task_repo.get_task_by_id(task.id) == task

    def test_get_nonexistent(self, task_repo):
        assert task_repo.get_task_by_id("nonexistent") is None

    def test_ui_task_needs_no_ack(self, task_repo):
        task = task_repo.create_task(_input())
        assert task.ack_sent is True
        assert task.notify_after_at is None

    def test_chat_task_waits_for_ack(self, task_repo):
        task = task_repo.create_task(_input(origin_channel="telegram", origin_user_id="42"))
        assert task.ack_sent is False
        assert task.notify_after_at == task.created_at + 1000

    def test_explicit_notify_after_at_wins(self, task_repo):
        task = task_repo.create_task(_input(origin_channel="discord", notify_after_at=None))
        assert task.notify_after_at is None

    def test_find_by_origin_message_id(self, task_repo):
        task = task_repo.create_task(_input(origin_channel="webhook", origin_message_id="notif-1"))
        assert task_repo.find_task_by_origin_message_id("notif-1").id == task.id
        assert task_repo.find_task_by_origin_message_id("missing") is None


class TestTaskQueries:
    def test_list_filters_by_session_and_agent(self, task_repo):
        task_repo.create_task(_input(session_id="S1"))
        task_repo.create_task(_input(session_id="S2"))
        task_repo.create_task(_input(session_id="S1", agent="neo"))

        assert len(task_repo.list_tasks(TaskFilters(session_id="S1"))) == 2
        assert len(task_repo.list_tasks(TaskFilters(session_id="S1", agent="neo"))) == 1

    def test_list_ordering(self, task_repo):
        first = task_repo.create_task(_input(input="first"))
        second = task_repo.create_task(_input(input="second"))

        assert [t.id for t in task_repo.list_tasks()] == [second.id, first.id]
        assert [t.id for t in task_repo.list_tasks(oldest_first=True)] == [first.id, second.id]

    def test_stats(self, task_repo):
        task_repo.create_task(_input())
        _finished(task_repo)
        stats = task_repo.get_stats()
        assert stats.pending == 1
        assert stats.completed == 1
        assert stats.total == 2


class TestTaskUpdate:
    def test_unknown_field_rejected(self, task_repo):
        task = task_repo.create_task(_input())
        with pytest.raises(UnknownFieldError):
            task_repo.update_task(task.id, input="rewritten")

    def test_patch_known_field(self, task_repo):
        task = task_repo.create_task(_input())
        updated = task_repo.update_task(task.id, context="extra detail")
        assert updated.context == "extra detail"
        assert updated.updated_at >= task.updated_at

    def test_none_values_are_skipped(self, task_repo):
        task = task_repo.create_task(_input(context="keep me"))
        updated = task_repo.update_task(task.id, context=None)
        assert updated.context == "keep me"

    def test_allowed_status_change(self, task_repo):
        task = task_repo.create_task(_input())
        assert task_repo.update_task(task.id, status="cancelled").status == "cancelled"

    def test_terminal_status_never_regresses(self, task_repo):
        task = _finished(task_repo)
        with pytest.raises(InvalidTransitionError):
            task_repo.update_task(task.id, status="running")
        assert task_repo.get_task_by_id(task.id).status == "completed"

    def test_pending_cannot_jump_to_completed(self, task_repo):
        task = task_repo.create_task(_input())
        with pytest.raises(InvalidTransitionError):
            task_repo.update_task(task.id, status="completed")

    def test_completing_through_update_opens_delivery(self, task_repo):
        task = task_repo.create_task(_input())
        task_repo.update_task(task.id, status="running")
        done = task_repo.update_task(task.id, status="completed", output="  done  ")

        assert done.status == "completed"
        assert done.output == "done"
        assert done.error is None
        assert done.finished_at is not None
        assert done.notify_status == "pending"
        assert task_repo.claim_next_notification_candidate().id == task.id

    def test_failing_through_update_sets_error_only(self, task_repo):
        task = task_repo.create_task(_input())
        task_repo.update_task(task.id, status="running")
        failed = task_repo.update_task(task.id, status="failed")

        assert failed.error == EMPTY_ERROR
        assert failed.output is None
        assert failed.finished_at is not None

    def test_cancelling_through_update_is_delivered(self, task_repo):
        task = task_repo.create_task(_input())
        cancelled = task_repo.update_task(task.id, status="cancelled")
        assert cancelled.finished_at is not None
        assert task_repo.claim_next_notification_candidate().id == task.id

    def test_result_fields_need_matching_status(self, task_repo):
        task = task_repo.create_task(_input())
        with pytest.raises(ResultFieldError):
            task_repo.update_task(task.id, output="leak")
        with pytest.raises(ResultFieldError):
            task_repo.update_task(task.id, error="also")
        task_repo.update_task(task.id, status="running")
        with pytest.raises(ResultFieldError):
            task_repo.update_task(task.id, status="completed", output="done", error="also")

        unchanged = task_repo.get_task_by_id(task.id)
        assert unchanged.status == "running"
        assert unchanged.output is None and unchanged.error is None


class TestExecutionLifecycle:
    def test_claim_next_pending(self, task_repo):
        task = task_repo.create_task(_input())
        claimed = task_repo.claim_next_pending("w1")
        assert claimed.id == task.id
        assert claimed.status == "running"
        assert claimed.attempt_count == 1
        assert claimed.worker_id == "w1"
        assert claimed.started_at is not None
        assert task_repo.claim_next_pending("w2") is None

    def test_claim_waits_for_ack(self, task_repo):
        task = task_repo.create_task(_input(origin_channel="telegram"))
        assert task_repo.claim_next_pending("w1") is None
        task_repo.mark_ack_sent([task.id])
        assert task_repo.claim_next_pending("w1").id == task.id

    def test_claim_routes_to_approval(self, task_repo):
        task = task_repo.create_task(_input(requires_approval=True, approval_action="run_command"))
        claimed = task_repo.claim_next_pending("w1")
        assert claimed.id == task.id
        assert claimed.status == "awaiting_approval"
        assert claimed.attempt_count == 0

    def test_mark_awaiting_approval_only_from_pending(self, task_repo):
        task = task_repo.create_task(_input())
        assert task_repo.mark_awaiting_approval(task.id)
        assert task_repo.get_task_by_id(task.id).status == "awaiting_approval"
        assert task_repo.mark_awaiting_approval(task.id) is False

    def test_mark_completed(self, task_repo):
        task = _finished(task_repo, output="  all good  ")
        assert task.status == "completed"
        assert task.output == "all good"
        assert task.error is None
        assert task.finished_at is not None

    def test_empty_output_is_replaced(self, task_repo):
        assert _finished(task_repo, output="   ").output == EMPTY_OUTPUT

    def test_mark_failed(self, task_repo):
        task = task_repo.create_task(_input())
        task_repo.mark_running(task.id)
        assert task_repo.mark_failed(task.id, "boom")
        failed = task_repo.get_task_by_id(task.id)
        assert failed.status == "failed"
        assert failed.error == "boom"
        assert failed.output is None

    def test_mark_failed_requires_running(self, task_repo):
        task = task_repo.create_task(_input())
        assert task_repo.mark_failed(task.id, "boom") is False
        assert task_repo.get_task_by_id(task.id).status == "pending"

    def test_completion_ignored_after_cancel(self, task_repo):
        task = task_repo.create_task(_input())
        task_repo.mark_running(task.id)
        assert task_repo.cancel_task(task.id)
        assert task_repo.mark_completed(task.id, "late") is False
        cancelled = task_repo.get_task_by_id(task.id)
        assert cancelled.status == "cancelled"
        assert cancelled.output is None

    def test_cancel_terminal_task_is_noop(self, task_repo):
        task = _finished(task_repo)
        assert task_repo.cancel_task(task.id) is False

    def test_requeue_for_retry(self, task_repo):
        task = task_repo.create_task(_input())
        task_repo.claim_next_pending("w1")
        assert task_repo.requeue_for_retry(task.id, 60_000)

        requeued = task_repo.get_task_by_id(task.id)
        assert requeued.status == "pending"
        assert requeued.worker_id is None
        assert requeued.available_at > now_ms()
        assert task_repo.claim_next_pending("w1") is None

    def test_requeue_ignores_terminal(self, task_repo):
        task = _finished(task_repo)
        assert task_repo.requeue_for_retry(task.id, 0) is False

    def test_recover_stale_running(self, task_repo):
        task = task_repo.create_task(_input())
        task_repo.claim_next_pending("w1")
        assert task_repo.recover_stale_running(0) == 1
        assert task_repo.get_task_by_id(task.id).status == "pending"
        assert task_repo.claim_next_pending("w2").attempt_count == 2


class TestNotificationLifecycle:
    def test_pending_tasks_are_not_candidates(self, task_repo):
        task_repo.create_task(_input())
        assert task_repo.claim_next_notification_candidate() is None

    def test_claim_is_exclusive(self, task_repo):
        task = _finished(task_repo)
        claimed = task_repo.claim_next_notification_candidate()
        assert claimed.id == task.id
        assert claimed.notify_status == "sending"
        assert task_repo.claim_next_notification_candidate() is None

    def test_claims_oldest_finished_first(self, task_repo):
        first = _finished(task_repo, input="first")
        _finished(task_repo, input="second")
        assert task_repo.claim_next_notification_candidate().id == first.id

    def test_notify_after_at_delays_claim(self, task_repo):
        _finished(task_repo, notify_after_at=now_ms() + 60_000)
        assert task_repo.claim_next_notification_candidate() is None

    def test_cancelled_task_is_delivered(self, task_repo):
        task = task_repo.create_task(_input())
        task_repo.cancel_task(task.id)
        assert task_repo.claim_next_notification_candidate().id == task.id

    def test_mark_sent(self, task_repo):
        task = _finished(task_repo)
        task_repo.claim_next_notification_candidate()
        task_repo.mark_notification_sent(task.id)
        sent = task_repo.get_task_by_id(task.id)
        assert sent.notify_status == "sent"
        assert sent.notified_at is not None

    def test_mark_failed_with_retry(self, task_repo):
        task = _finished(task_repo)
        task_repo.claim_next_notification_candidate()
        task_repo.mark_notification_failed(task.id, "channel down", retry=True)
        retried = task_repo.get_task_by_id(task.id)
        assert retried.notify_status == "pending"
        assert retried.notify_attempts == 1
        assert retried.notify_last_error == "channel down"

    def test_mark_failed_permanently(self, task_repo):
        task = _finished(task_repo)
        task_repo.claim_next_notification_candidate()
        task_repo.mark_notification_failed(task.id, "channel down", retry=False)
        assert task_repo.get_task_by_id(task.id).notify_status == "failed"
        assert task_repo.claim_next_notification_candidate() is None

    def test_recover_stale_sending(self, db, task_repo):
        task = _finished(task_repo)
        task_repo.claim_next_notification_candidate()
        db.db.execute("UPDATE tasks SET updated_at = ? WHERE id = ?", (now_ms() - 31_000, task.id))
        db.db.commit()

        assert task_repo.recover_notification_queue(5, 30_000) == 1
        assert task_repo.claim_next_notification_candidate().id == task.id

    def test_recent_sending_is_left_alone(self, task_repo):
        _finished(task_repo)
        task_repo.claim_next_notification_candidate()
        assert task_repo.recover_notification_queue(5, 30_000) == 0

    def test_recover_reopens_failed_with_attempts_left(self, task_repo):
        task = _finished(task_repo)
        task_repo.claim_next_notification_candidate()
        task_repo.mark_notification_failed(task.id, "down", retry=False)

        assert task_repo.recover_notification_queue(5, 30_000) == 1
        assert task_repo.get_task_by_id(task.id).notify_status == "pending"
        assert task_repo.recover_notification_queue(1, 30_000) == 0
