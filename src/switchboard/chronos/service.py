"""Chronos job management, the CRUD surface behind the API, CLI and agent tools."""

from __future__ import annotations

from pydantic import BaseModel

from switchboard.chronos.parser import get_next_occurrences, parse_next_run, parse_schedule_expression
from switchboard.chronos.repository import ChronosRepository
from switchboard.chronos.types import (
    ChronosError,
    ChronosExecution,
    ChronosJob,
    CreatedBy,
    CreateJobInput,
    JobFilters,
    JobPatch,
    ParsedSchedule,
    ScheduleParseError,
    ScheduleType,
)
from switchboard.infrastructure.clock import now_ms
from switchboard.infrastructure.config import CHRONOS_MAX_ACTIVE_JOBS, TIMEZONE
from switchboard.infrastructure.logger import get_logger

log = get_logger("Chronos")

PREVIEW_COUNT = 3


class SchedulePreview(BaseModel):
    schedule: ParsedSchedule
    next_occurrences: list[int]


class ChronosService:
    def __init__(
        self,
        repo: ChronosRepository,
        default_timezone: str = TIMEZONE,
        max_active_jobs: int = CHRONOS_MAX_ACTIVE_JOBS,
    ) -> None:
        self._repo = repo
        self._default_timezone = default_timezone
        self._max_active_jobs = max_active_jobs

    # --- CRUD ---

    def create_job(self, data: CreateJobInput, reference_ms: int | None = None) -> ChronosJob:
        self._check_capacity()
        timezone = data.timezone or self._default_timezone
        parsed = parse_schedule_expression(data.schedule_expression, data.schedule_type, timezone, reference_ms)
        job = self._repo.create_job(
            prompt=data.prompt,
            schedule_type=data.schedule_type,
            schedule_expression=data.schedule_expression,
            cron_normalized=parsed.cron_normalized,
            timezone=timezone,
            next_run_at=parsed.next_run_at,
            created_by=data.created_by,
            notify_channels=data.notify_channels,
        )
        log.info("Job created", job_id=job.id, schedule=parsed.human_readable, next_run_at=job.next_run_at)
        return job

    def get_job(self, id: str) -> ChronosJob | None:
        return self._repo.get_job(id)

    def list_jobs(self, enabled: bool | None = None, created_by: CreatedBy | None = None) -> list[ChronosJob]:
        return self._repo.list_jobs(JobFilters(enabled=enabled, created_by=created_by))

    def update_job(self, id: str, patch: JobPatch, reference_ms: int | None = None) -> ChronosJob:
        job = self._require(id)
        updates: dict[str, object] = {}

        if patch.prompt is not None:
            updates["prompt"] = patch.prompt
        if patch.notify_channels is not None:
            updates["notify_channels"] = patch.notify_channels

        schedule_changed = any(
            v is not None for v in (patch.schedule_type, patch.schedule_expression, patch.timezone)
        )
        if schedule_changed:
            schedule_type = patch.schedule_type or job.schedule_type
            expression = patch.schedule_expression or job.schedule_expression
            timezone = patch.timezone or job.timezone
            parsed = parse_schedule_expression(expression, schedule_type, timezone, reference_ms)
            updates.update(
                schedule_type=schedule_type,
                schedule_expression=expression,
                timezone=timezone,
                cron_normalized=parsed.cron_normalized,
            )
            if job.enabled:
                updates["next_run_at"] = parsed.next_run_at

        if updates:
            self._repo.update_job(id, **updates)

        if patch.enabled is True and not job.enabled:
            return self.enable_job(id, reference_ms)
        if patch.enabled is False and job.enabled:
            return self.disable_job(id)

        return self._require(id)

    def delete_job(self, id: str) -> bool:
        deleted = self._repo.delete_job(id)
        if deleted:
            log.info("Job deleted", job_id=id)
        return deleted

    # --- Lifecycle ---

    def enable_job(self, id: str, reference_ms: int | None = None) -> ChronosJob:
        job = self._require(id)
        if not job.enabled:
            self._check_capacity()

        if job.schedule_type == "once":
            try:
                next_run_at = parse_schedule_expression(
                    job.schedule_expression, "once", job.timezone, reference_ms
                ).next_run_at
            except ScheduleParseError as err:
                raise ChronosError(f"Job {id} has expired and cannot be re-enabled: {err}") from err
        else:
            if job.cron_normalized is None:
                raise ChronosError(f"Job {id} has no cron expression to schedule from")
            next_run_at = parse_next_run(job.cron_normalized, job.timezone, reference_ms)

        enabled = self._repo.enable_job(id, next_run_at)
        if enabled is None:
            raise ChronosError(f"Job not found: {id}")
        log.info("Job enabled", job_id=id, next_run_at=next_run_at)
        return enabled

    def disable_job(self, id: str) -> ChronosJob:
        self._require(id)
        disabled = self._repo.disable_job(id)
        if disabled is None:
            raise ChronosError(f"Job not found: {id}")
        log.info("Job disabled", job_id=id)
        return disabled

    def list_executions(self, job_id: str, limit: int = 50) -> list[ChronosExecution]:
        return self._repo.list_executions(job_id, limit)

    # --- Preview ---

    def preview(
        self,
        expression: str,
        schedule_type: ScheduleType,
        timezone: str | None = None,
        reference_ms: int | None = None,
    ) -> SchedulePreview:
        timezone = timezone or self._default_timezone
        reference = reference_ms if reference_ms is not None else now_ms()
        parsed = parse_schedule_expression(expression, schedule_type, timezone, reference)
        if parsed.cron_normalized:
            upcoming = get_next_occurrences(parsed.cron_normalized, timezone, PREVIEW_COUNT, reference)
        else:
            upcoming = [parsed.next_run_at]
        return SchedulePreview(schedule=parsed, next_occurrences=upcoming)

    # --- Internal ---

    def _require(self, id: str) -> ChronosJob:
        job = self._repo.get_job(id)
        if not job:
            raise ChronosError(f"Job not found: {id}")
        return job

    def _check_capacity(self) -> None:
        if self._repo.count_active_jobs() >= self._max_active_jobs:
            raise ChronosError(
                f"Maximum active jobs limit ({self._max_active_jobs}) reached. Disable or delete an existing job first."
            )
