"""Chronos domain types."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

ScheduleType = Literal["once", "cron", "interval"]
ExecutionStatus = Literal["running", "success", "failed", "timeout"]
CreatedBy = Literal["ui", "telegram", "discord", "api", "oracle", "cli"]


class ScheduleParseError(ValueError):
    """A schedule expression could not be parsed or violates the schedule rules."""


class ChronosError(Exception):
    """A job-level request was refused (limit reached, job missing, expired)."""


class ParsedSchedule(BaseModel):
    type: ScheduleType
    next_run_at: int
    cron_normalized: str | None = None
    human_readable: str


class ChronosJob(BaseModel):
    id: str
    prompt: str
    schedule_type: ScheduleType
    schedule_expression: str
    cron_normalized: str | None = None
    timezone: str = "UTC"
    next_run_at: int | None = None
    last_run_at: int | None = None
    enabled: bool = True
    created_at: int
    updated_at: int
    created_by: CreatedBy = "api"
    # Empty list broadcasts to every registered adapter.
    notify_channels: list[str] = Field(default_factory=list)


class ChronosExecution(BaseModel):
    id: str
    job_id: str
    triggered_at: int
    completed_at: int | None = None
    status: ExecutionStatus = "running"
    error: str | None = None
    session_id: str = ""


class CreateJobInput(BaseModel):
    prompt: str
    schedule_type: ScheduleType
    schedule_expression: str
    timezone: str | None = None
    created_by: CreatedBy = "api"
    notify_channels: list[str] = Field(default_factory=list)


class JobPatch(BaseModel):
    prompt: str | None = None
    schedule_type: ScheduleType | None = None
    schedule_expression: str | None = None
    timezone: str | None = None
    enabled: bool | None = None
    notify_channels: list[str] | None = None


class JobFilters(BaseModel):
    enabled: bool | None = None
    created_by: CreatedBy | None = None
