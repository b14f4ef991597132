"""Task domain types and the task status state machine."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

TaskStatus = Literal["pending", "awaiting_approval", "running", "completed", "failed", "cancelled"]
TaskNotifyStatus = Literal["pending", "sending", "sent", "failed"]
TaskAgent = Literal["apoc", "neo", "trinit", "keymaker", "smith"]
OriginChannel = Literal["telegram", "discord", "ui", "api", "webhook", "cli", "chronos"]

TASK_AGENTS: tuple[str, ...] = ("apoc", "neo", "trinit", "keymaker", "smith")
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})

# Forward-only lifecycle. Terminal states have no exits.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"awaiting_approval", "running", "cancelled"}),
    "awaiting_approval": frozenset({"running", "failed", "cancelled"}),
    "running": frozenset({"completed", "failed", "cancelled"}),
    "completed": frozenset(),
    "failed": frozenset(),
    "cancelled": frozenset(),
}

# Channels whose creator gets an acknowledgement on the same path as the result.
CHANNELS_NEEDING_ACK: frozenset[str] = frozenset({"telegram", "discord"})

EMPTY_OUTPUT = "Task completed without output."
EMPTY_ERROR = "Task failed with unknown error."


class InvalidTransitionError(ValueError):
    """Raised when a task status change is not allowed by the state machine."""

    def __init__(self, task_id: str, current: str, target: str) -> None:
        super().__init__(f"Task {task_id} cannot move from {current} to {target}")
        self.task_id = task_id
        self.current = current
        self.target = target


class UnknownFieldError(ValueError):
    """Raised when patching a task field that is not patchable."""


class ResultFieldError(ValueError):
    """Raised when ``output`` or ``error`` would be set on a task in the wrong status."""


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


class TaskCreateInput(BaseModel):
    agent: TaskAgent
    input: str
    context: str | None = None
    origin_channel: OriginChannel
    session_id: str
    origin_message_id: str | None = None
    origin_user_id: str | None = None
    max_attempts: int = Field(default=3, ge=1)
    # Earliest time (ms) at which the notifier may send the result.
    notify_after_at: int | None = None
    requires_approval: bool = False
    approval_action: str | None = None


class TaskRecord(BaseModel):
    id: str
    agent: TaskAgent
    status: TaskStatus
    input: str
    context: str | None = None
    output: str | None = None
    error: str | None = None
    origin_channel: OriginChannel
    session_id: str
    origin_message_id: str | None = None
    origin_user_id: str | None = None
    attempt_count: int = 0
    max_attempts: int = 3
    available_at: int = 0
    created_at: int
    started_at: int | None = None
    finished_at: int | None = None
    updated_at: int
    worker_id: str | None = None
    notify_status: TaskNotifyStatus = "pending"
    notify_attempts: int = 0
    notify_last_error: str | None = None
    notified_at: int | None = None
    notify_after_at: int | None = None
    ack_sent: bool = True
    requires_approval: bool = False
    approval_action: str | None = None

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)


class TaskFilters(BaseModel):
    status: TaskStatus | None = None
    agent: TaskAgent | None = None
    origin_channel: OriginChannel | None = None
    session_id: str | None = None
    limit: int = 200


class TaskStats(BaseModel):
    pending: int = 0
    awaiting_approval: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    total: int = 0


class DelegationAck(BaseModel):
    task_id: str
    agent: str
    normalized_task: str
