"""Tests for Chronos job management."""

from datetime import datetime, timezone

import pytest

from switchboard.chronos.service import ChronosService
from switchboard.chronos.types import ChronosError, CreateJobInput, JobPatch, ScheduleParseError
from switchboard.infrastructure.clock import to_ms

REF = to_ms(datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc))
MINUTE = 60_000


@pytest.fixture
def service(db):
    return ChronosService(db.chronos_repo, default_timezone="UTC", max_active_jobs=2)


def _input(expression="every 30 minutes", schedule_type="interval", **overrides) -> CreateJobInput:
    return CreateJobInput(prompt="Check the build", schedule_type=schedule_type, schedule_expression=expression, **overrides)


class TestCreateJob:
    def test_interval_job(self, service):
        job = service.create_job(_input(), REF)
        assert job.cron_normalized == "*/30 * * * *"
        assert job.timezone == "UTC"
        assert job.next_run_at == REF + 30 * MINUTE
        assert job.enabled

    def test_invalid_expression_creates_nothing(self, service):
        with pytest.raises(ScheduleParseError):
            service.create_job(_input("every 10 seconds"), REF)
        assert service.list_jobs() == []

    def test_active_job_limit(self, service):
        service.create_job(_input(), REF)
        service.create_job(_input("hourly"), REF)
        with pytest.raises(ChronosError, match="Maximum active jobs"):
            service.create_job(_input("daily"), REF)

    def test_disabled_jobs_do_not_count(self, service):
        first = service.create_job(_input(), REF)
        service.create_job(_input("hourly"), REF)
        service.disable_job(first.id)
        assert service.create_job(_input("daily"), REF).enabled


class TestUpdateJob:
    def test_schedule_change_recomputes_next_run(self, service):
        job = service.create_job(_input(), REF)
        updated = service.update_job(job.id, JobPatch(schedule_expression="0 12 * * *", schedule_type="cron"), REF)
        assert updated.cron_normalized == "0 12 * * *"
        assert updated.next_run_at == to_ms(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))

    def test_prompt_only_keeps_schedule(self, service):
        job = service.create_job(_input(), REF)
        updated = service.update_job(job.id, JobPatch(prompt="Check the deploy"), REF)
        assert updated.prompt == "Check the deploy"
        assert updated.next_run_at == job.next_run_at

    def test_disable_through_patch(self, service):
        job = service.create_job(_input(), REF)
        updated = service.update_job(job.id, JobPatch(enabled=False))
        assert updated.enabled is False
        assert updated.next_run_at is None

    def test_missing_job(self, service):
        with pytest.raises(ChronosError, match="not found"):
            service.update_job("missing", JobPatch(prompt="x"))


class TestEnableDisable:
    def test_reenable_recurring_job(self, service):
        job = service.create_job(_input(), REF)
        service.disable_job(job.id)
        enabled = service.enable_job(job.id, REF + 5 * MINUTE)
        assert enabled.enabled
        assert enabled.next_run_at == REF + 30 * MINUTE

    def test_expired_once_job_cannot_be_reenabled(self, service):
        job = service.create_job(_input("2026-01-15T11:00:00Z", "once"), REF)
        service.disable_job(job.id)
        with pytest.raises(ChronosError, match="expired"):
            service.enable_job(job.id, REF + 120 * MINUTE)

    def test_once_job_in_the_future_can_be_reenabled(self, service):
        job = service.create_job(_input("2026-01-15T11:00:00Z", "once"), REF)
        service.disable_job(job.id)
        assert service.enable_job(job.id, REF).next_run_at == REF + 60 * MINUTE

    def test_missing_job(self, service):
        with pytest.raises(ChronosError, match="not found"):
            service.enable_job("missing", REF)
        with pytest.raises(ChronosError, match="not found"):
            service.disable_job("missing")


class TestPreview:
    def test_recurring_preview_lists_three_runs(self, service):
        preview = service.preview("every 2 hours", "interval", reference_ms=REF)
        assert preview.schedule.cron_normalized == "0 */2 * * *"
        assert preview.next_occurrences == [REF + 2 * 60 * MINUTE, REF + 4 * 60 * MINUTE, REF + 6 * 60 * MINUTE]

    def test_once_preview(self, service):
        preview = service.preview("in 5 minutes", "once", reference_ms=REF)
        assert preview.next_occurrences == [REF + 5 * MINUTE]

    def test_preview_persists_nothing(self, service):
        service.preview("daily", "interval", reference_ms=REF)
        assert service.list_jobs() == []
