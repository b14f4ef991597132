"""Reliable result delivery: claims finished tasks, dispatches them, retries with a bounded budget."""

from __future__ import annotations

from switchboard.infrastructure.config import (
    NOTIFIER_MAX_ATTEMPTS,
    NOTIFIER_POLL_INTERVAL,
    NOTIFY_STALE_SENDING,
    SHUTDOWN_GRACE,
)
from switchboard.infrastructure.logger import get_logger
from switchboard.infrastructure.poll_loop import PollLoop
from switchboard.tasks.dispatcher import TaskDispatcher
from switchboard.tasks.repository import TaskRepository

log = get_logger("TaskNotifier")


class TaskNotifier:
    def __init__(
        self,
        repo: TaskRepository,
        dispatcher: TaskDispatcher,
        poll_interval: float = NOTIFIER_POLL_INTERVAL,
        max_attempts: int = NOTIFIER_MAX_ATTEMPTS,
        stale_sending: float = NOTIFY_STALE_SENDING,
    ) -> None:
        self._repo = repo
        self._dispatcher = dispatcher
        self._max_attempts = max(1, max_attempts)
        self._stale_sending_ms = int(stale_sending * 1000)
        self._loop = PollLoop("TaskNotifier", poll_interval, self._deliver_next)

    @property
    def running(self) -> bool:
        return self._loop.running

    def start(self) -> None:
        if self._loop.running:
            return
        recovered = self._repo.recover_notification_queue(self._max_attempts, self._stale_sending_ms)
        if recovered:
            log.warning("Recovered notification queue", count=recovered)
        self._loop.start()

    def stop(self) -> None:
        self._loop.stop()

    async def shutdown(self, timeout: float = SHUTDOWN_GRACE) -> None:
        """Stop polling after the delivery in flight, if any, settles."""
        await self._loop.close(timeout)

    async def tick(self) -> bool:
        """Run one delivery pass. Returns False when a pass was already in flight."""
        return await self._loop.run_once()

    async def _deliver_next(self) -> None:
        task = self._repo.claim_next_notification_candidate()
        if not task:
            return

        try:
            await self._dispatcher.notify_task_result(task)
        except Exception as err:
            attempts = task.notify_attempts + 1
            retry = attempts < self._max_attempts
            error = str(err) or type(err).__name__
            self._repo.mark_notification_failed(task.id, error, retry)
            if retry:
                log.warning("Task notification failed, will retry", task_id=task.id, attempt=attempts, error=error)
            else:
                log.error("Task notification failed permanently", task_id=task.id, attempts=attempts, error=error)
            return

        self._repo.mark_notification_sent(task.id)
        log.info("Task notification sent", task_id=task.id, channel=task.origin_channel)
