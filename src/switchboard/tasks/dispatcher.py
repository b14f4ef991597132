"""Routes a finished task's result back to wherever the task came from."""

from __future__ import annotations

from switchboard.infrastructure.logger import get_logger
from switchboard.messaging.channel_registry import ChannelRegistry
from switchboard.messaging.formatter import format_task_result, format_webhook_result, task_result_body
from switchboard.messaging.history import ConversationHistory
from switchboard.messaging.types import DeliveryError, DeliveryFailure, HistoryMessage
from switchboard.tasks.types import TaskRecord
from switchboard.webhooks.repository import WebhookRepository

log = get_logger("TaskDispatcher")

# Origins with nothing to push to; callers poll the task query instead.
POLL_ONLY_CHANNELS = frozenset({"api", "cli"})


class TaskDispatcher:
    def __init__(
        self,
        registry: ChannelRegistry,
        history: ConversationHistory,
        webhook_repo: WebhookRepository,
    ) -> None:
        self._registry = registry
        self._history = history
        self._webhook_repo = webhook_repo

    async def notify_task_result(self, task: TaskRecord) -> None:
        """Deliver one terminal task. Raises ``DeliveryError`` when nobody could be reached."""
        if not task.is_terminal:
            raise DeliveryError(f"Task {task.id} is not finished (status={task.status})")

        if task.origin_channel == "webhook":
            await self._notify_webhook(task)
            return

        message = format_task_result(task)

        if task.origin_channel == "ui":
            self._history.add_message(
                task.session_id,
                HistoryMessage(session_id=task.session_id, type="ai", content=message),
            )
            log.info("Task result appended to session", task_id=task.id, session_id=task.session_id)
            return

        if task.origin_channel == "chronos":
            adapters = self._registry.get_all()
            if not adapters:
                log.warning("No channel adapters registered for chronos task result", task_id=task.id)
                return
            failures = await self._registry.broadcast(message)
            _raise_if_all_failed(failures, len(adapters), task.id)
            return

        if task.origin_channel in POLL_ONLY_CHANNELS:
            log.debug("Task result left for polling", task_id=task.id, channel=task.origin_channel)
            return

        if task.origin_user_id:
            await self._registry.send_to_user(task.origin_channel, task.origin_user_id, message)
            return

        adapter = self._registry.get(task.origin_channel)
        if not adapter:
            raise DeliveryError(f'No adapter registered for channel "{task.origin_channel}"')
        await adapter.send_message(message)

    async def _notify_webhook(self, task: TaskRecord) -> None:
        if not task.origin_message_id:
            raise DeliveryError(f"Webhook task {task.id} has no notification id")

        notification = self._webhook_repo.get_notification(task.origin_message_id)
        if not notification:
            log.warning("Webhook notification not found", task_id=task.id, notification_id=task.origin_message_id)
            return

        status = "completed" if task.status == "completed" else "failed"
        body = task_result_body(task)
        self._webhook_repo.update_notification_result(notification.id, status, body)

        webhook = self._webhook_repo.get_webhook(notification.webhook_id)
        if not webhook:
            return
        channels = [c for c in webhook.notification_channels if c != "ui"]
        if not channels:
            return

        failures = await self._registry.broadcast(format_webhook_result(webhook.name, body, status), channels)
        _raise_if_all_failed(failures, len(channels), task.id)


def _raise_if_all_failed(failures: list[DeliveryFailure], attempted: int, task_id: str) -> None:
    if attempted and len(failures) >= attempted:
        summary = "; ".join(f"{f.channel}: {f.error}" for f in failures)
        raise DeliveryError(f"Delivery failed for every recipient of task {task_id}: {summary}")
