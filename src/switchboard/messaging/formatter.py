"""Outbound message formatting for task results, Chronos runs and webhook results."""

from __future__ import annotations

from switchboard.infrastructure.config import MAX_RESULT_CHARS
from switchboard.tasks.types import EMPTY_ERROR, EMPTY_OUTPUT, TaskRecord

STATUS_ICONS = {
    "completed": "✅",
    "cancelled": "🚫",
    "failed": "❌",
}

CHRONOS_PROMPT_PREVIEW = 80


def truncate(text: str, limit: int = MAX_RESULT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "…"


def task_result_body(task: TaskRecord) -> str:
    """The output (completed) or error (failed/cancelled) text, never empty."""
    if task.status == "completed":
        return task.output if task.output and task.output.strip() else EMPTY_OUTPUT
    if task.status == "cancelled":
        return task.error if task.error and task.error.strip() else "Task was cancelled."
    return task.error if task.error and task.error.strip() else EMPTY_ERROR


def format_task_result(task: TaskRecord) -> str:
    icon = STATUS_ICONS.get(task.status, "❌")
    header = (
        f"{icon}\nTask `{task.id.upper()}`\n"
        f"Agent: `{task.agent.upper()}`\n"
        f"Status: `{task.status.upper()}`"
    )
    return f"{header}\n\n{truncate(task_result_body(task))}"


def format_chronos_notification(prompt: str, response: str) -> str:
    summary = prompt[:CHRONOS_PROMPT_PREVIEW] + ("…" if len(prompt) > CHRONOS_PROMPT_PREVIEW else "")
    return f"⏰ *Chronos* — _{summary}_\n\n{response}"


def format_webhook_result(webhook_name: str, result: str, status: str) -> str:
    icon = "✅" if status == "completed" else "❌"
    return f"{icon} *Webhook: {webhook_name}*\n\n{truncate(result)}"
