"""Task execution worker: claims pending tasks and runs them through per-agent executors."""

from __future__ import annotations

import asyncio
import uuid

from switchboard.agents.types import SubagentExecutor
from switchboard.approvals.gate import ApprovalGate
from switchboard.infrastructure.config import (
    SHUTDOWN_GRACE,
    TASK_MAX_BACKOFF,
    TASK_STALE_RUNNING,
    TASK_WORKER_POLL_INTERVAL,
)
from switchboard.infrastructure.logger import get_logger
from switchboard.infrastructure.poll_loop import BackgroundTasks, PollLoop
from switchboard.tasks.context import DelegationContext
from switchboard.tasks.repository import TaskRepository
from switchboard.tasks.types import TaskFilters, TaskRecord

log = get_logger("TaskWorker")

DEFAULT_APPROVAL_ACTION = "run_command"


def retry_backoff(attempt: int, max_backoff: float = TASK_MAX_BACKOFF) -> float:
    """Seconds to wait before retrying after failed attempt number ``attempt``."""
    return min(max_backoff, 1.0 * 2 ** max(0, attempt - 1))


class TaskWorker:
    def __init__(
        self,
        repo: TaskRepository,
        executors: dict[str, SubagentExecutor],
        approval_gate: ApprovalGate | None = None,
        poll_interval: float = TASK_WORKER_POLL_INTERVAL,
        stale_running: float = TASK_STALE_RUNNING,
    ) -> None:
        self.worker_id = f"task-worker-{uuid.uuid4().hex[:8]}"
        self._repo = repo
        self._executors = executors
        self._approval_gate = approval_gate
        self._stale_running_ms = int(stale_running * 1000)
        self._loop = PollLoop("TaskWorker", poll_interval, self._run_next)
        self._approvals = BackgroundTasks("TaskWorker approvals")

    @property
    def running(self) -> bool:
        return self._loop.running

    def start(self) -> None:
        if self._loop.running:
            return
        recovered = self._repo.recover_stale_running(self._stale_running_ms)
        if recovered:
            log.warning("Recovered stale running tasks", count=recovered)
        for task in self._repo.list_tasks(TaskFilters(status="awaiting_approval"), oldest_first=True):
            self._approvals.spawn(self._run_after_approval(task), task_id=task.id)
        self._loop.start()
        log.info("Task worker started", worker_id=self.worker_id)

    def stop(self) -> None:
        self._loop.stop()
        self._approvals.cancel_all()

    async def shutdown(self, timeout: float = SHUTDOWN_GRACE) -> None:
        """Stop claiming work, give the running attempt ``timeout`` seconds, then stop waiting on approvals.

        An attempt cut short goes back to the queue; tasks still awaiting approval
        are picked up again by the next ``start``.
        """
        await self._loop.close(timeout)
        await self._approvals.close(0)

    async def tick(self) -> bool:
        return await self._loop.run_once()

    async def drain_approvals(self) -> None:
        await self._approvals.drain()

    async def _run_next(self) -> None:
        task = self._repo.claim_next_pending(self.worker_id)
        if not task:
            return
        if task.status == "awaiting_approval":
            # Human-timescale wait; must not hold the loop.
            self._approvals.spawn(self._run_after_approval(task), task_id=task.id)
            return
        await self._execute(task)

    async def _run_after_approval(self, task: TaskRecord) -> None:
        # A retry of a task that already ran was approved on its first attempt.
        if task.attempt_count == 0:
            if self._approval_gate is None:
                self._repo.mark_failed(task.id, "Task requires approval but no approval gate is configured.")
                return
            outcome = await self._approval_gate.request_approval(
                task.id,
                task.session_id,
                task.approval_action or DEFAULT_APPROVAL_ACTION,
                f"{task.agent}: {task.input}",
            )
            if outcome == "denied":
                if self._repo.mark_failed(task.id, "Approval denied."):
                    log.info("Task denied by approval gate", task_id=task.id)
                return

        if not self._repo.mark_running(task.id, self.worker_id):
            log.info("Task left awaiting_approval before it could run", task_id=task.id)
            return
        latest = self._repo.get_task_by_id(task.id)
        if latest:
            await self._execute(latest)

    async def _execute(self, task: TaskRecord) -> None:
        executor = self._executors.get(task.agent)
        if executor is None:
            self._repo.mark_failed(task.id, f"Unknown task agent: {task.agent}")
            log.error("No executor for task agent", task_id=task.id, agent=task.agent)
            return

        ctx = DelegationContext(
            origin_channel=task.origin_channel,
            session_id=task.session_id,
            origin_message_id=task.origin_message_id,
            origin_user_id=task.origin_user_id,
        )
        try:
            output = await DelegationContext.run(ctx, lambda: executor.execute(task.input, task.context, task.session_id))
        except asyncio.CancelledError:
            if self._repo.requeue_for_retry(task.id, 0):
                log.warning("Task attempt interrupted by shutdown, requeued", task_id=task.id)
            raise
        except Exception as err:
            self._handle_failure(task, str(err) or type(err).__name__)
            return

        if self._repo.mark_completed(task.id, output):
            log.info("Task completed", task_id=task.id, agent=task.agent)
        else:
            log.info("Task finished after it was cancelled", task_id=task.id)

    def _handle_failure(self, task: TaskRecord, error: str) -> None:
        latest = self._repo.get_task_by_id(task.id)
        if latest is None or latest.status != "running":
            return

        if latest.attempt_count < latest.max_attempts:
            delay = retry_backoff(latest.attempt_count)
            self._repo.requeue_for_retry(task.id, int(delay * 1000))
            log.warning(
                "Task attempt failed, retry scheduled",
                task_id=task.id,
                attempt=latest.attempt_count,
                max_attempts=latest.max_attempts,
                delay_s=delay,
                error=error,
            )
            return

        self._repo.mark_failed(task.id, error)
        log.error("Task failed", task_id=task.id, attempts=latest.attempt_count, error=error)
