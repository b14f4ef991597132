"""Barrel re-export of all domain types."""

from switchboard.agents.types import ConversationalAgent, SessionContext, SubagentExecutor
from switchboard.approvals.types import ApprovalError, ApprovalRequest, Permission
from switchboard.chronos.types import (
    ChronosError,
    ChronosExecution,
    ChronosJob,
    CreateJobInput,
    JobPatch,
    ParsedSchedule,
    ScheduleParseError,
)
from switchboard.messaging.types import ChannelAdapter, DeliveryError, HistoryMessage
from switchboard.tasks.types import (
    InvalidTransitionError,
    ResultFieldError,
    TaskCreateInput,
    TaskFilters,
    TaskRecord,
    TaskStats,
    UnknownFieldError,
)
from switchboard.webhooks.types import Webhook, WebhookNotification

__all__ = [
    "ApprovalError",
    "ApprovalRequest",
    "ChannelAdapter",
    "ChronosError",
    "ChronosExecution",
    "ChronosJob",
    "ConversationalAgent",
    "CreateJobInput",
    "DeliveryError",
    "HistoryMessage",
    "InvalidTransitionError",
    "JobPatch",
    "ParsedSchedule",
    "Permission",
    "ResultFieldError",
    "ScheduleParseError",
    "SessionContext",
    "SubagentExecutor",
    "TaskCreateInput",
    "TaskFilters",
    "TaskRecord",
    "TaskStats",
    "UnknownFieldError",
    "Webhook",
    "WebhookNotification",
]
