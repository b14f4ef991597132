"""Chronos worker: polls for due jobs and fires them through the conversational agent."""

from __future__ import annotations

import asyncio

from switchboard.agents.types import ConversationalAgent, SessionContext
from switchboard.chronos.parser import parse_next_run
from switchboard.chronos.repository import ChronosRepository
from switchboard.chronos.types import ChronosJob, JobFilters, ScheduleParseError
from switchboard.infrastructure.clock import now_ms
from switchboard.infrastructure.config import (
    CHRONOS_CHECK_INTERVAL,
    CHRONOS_EXECUTION_HISTORY,
    CHRONOS_MIN_CHECK_INTERVAL,
    SHUTDOWN_GRACE,
)
from switchboard.infrastructure.logger import get_logger
from switchboard.infrastructure.poll_loop import BackgroundTasks, PollLoop
from switchboard.messaging.channel_registry import ChannelRegistry
from switchboard.messaging.formatter import format_chronos_notification
from switchboard.tasks.context import DEFAULT_SESSION_ID, DelegationContext

log = get_logger("Chronos")


class ChronosWorker:
    def __init__(
        self,
        repo: ChronosRepository,
        agent: ConversationalAgent,
        registry: ChannelRegistry,
        interval: float = CHRONOS_CHECK_INTERVAL,
        execution_history: int = CHRONOS_EXECUTION_HISTORY,
    ) -> None:
        self._repo = repo
        self._agent = agent
        self._registry = registry
        self._execution_history = execution_history
        self._loop = PollLoop("Chronos", max(interval, CHRONOS_MIN_CHECK_INTERVAL), self._fire_due_jobs)
        self._firings = BackgroundTasks("Chronos")

    @property
    def interval(self) -> float:
        return self._loop.interval

    @property
    def running(self) -> bool:
        return self._loop.running

    def start(self) -> None:
        if self._loop.running:
            return
        self._recover_unscheduled()
        self._loop.start()

    def stop(self) -> None:
        # Firings already dispatched run to completion.
        self._loop.stop()

    async def shutdown(self, timeout: float = SHUTDOWN_GRACE) -> None:
        """Stop polling and let dispatched firings finish their bookkeeping.

        Firings still running after ``timeout`` are cancelled and recorded as failed.
        """
        await self._loop.close(timeout)
        await self._firings.close(timeout)

    def update_interval(self, seconds: float) -> bool:
        """Hot-reload the poll period. Values under the minimum are ignored."""
        if seconds < CHRONOS_MIN_CHECK_INTERVAL:
            log.warning("Chronos interval below minimum ignored", interval_s=seconds, minimum_s=CHRONOS_MIN_CHECK_INTERVAL)
            return False
        self._loop.update_interval(seconds)
        return True

    async def tick(self) -> bool:
        return await self._loop.run_once()

    async def drain(self) -> None:
        """Wait for every fired job to finish its bookkeeping."""
        await self._firings.drain()

    async def _fire_due_jobs(self) -> None:
        due = self._repo.get_due_jobs(now_ms())
        if due:
            log.info("Found due jobs", count=len(due))
        for job in due:
            if job.next_run_at is None or not self._repo.claim_job(job.id, job.next_run_at):
                continue
            self._firings.spawn(self.execute_job(job), job_id=job.id)

    async def execute_job(self, job: ChronosJob) -> None:
        session_id = self._agent.current_session_id() or DEFAULT_SESSION_ID
        execution = self._repo.insert_execution(job.id, session_id)
        log.info("Job triggered", job_id=job.id, prompt=job.prompt[:60])

        response: str | None = None
        try:
            # Tasks the agent delegates while handling the job are broadcast on completion.
            ctx = DelegationContext(origin_channel="chronos", session_id=session_id)
            session = SessionContext(origin_channel="chronos", session_id=session_id)
            response = await DelegationContext.run(ctx, lambda: self._agent.invoke(job.prompt, session))
            self._repo.complete_execution(execution.id, "success")
            log.info("Job completed", job_id=job.id)
        except asyncio.CancelledError:
            self._repo.complete_execution(execution.id, "failed", "Interrupted by shutdown")
            log.warning("Job interrupted by shutdown", job_id=job.id)
            raise
        except Exception as err:
            error = str(err) or type(err).__name__
            self._repo.complete_execution(execution.id, "failed", error)
            log.error("Job failed", job_id=job.id, error=error)
        finally:
            self._finish(job)

        if response is not None:
            await self._notify(job, response)

    def _finish(self, job: ChronosJob) -> None:
        fired_at = now_ms()
        if job.schedule_type == "once":
            self._repo.finish_once_job(job.id, fired_at)
            log.info("Job auto-disabled", job_id=job.id)
        elif job.cron_normalized:
            try:
                next_run_at = parse_next_run(job.cron_normalized, job.timezone, fired_at)
            except ScheduleParseError as err:
                log.error("Job could not be rescheduled, disabling", job_id=job.id, error=str(err))
                self._repo.disable_job(job.id)
            else:
                self._repo.reschedule_job(job.id, next_run_at, fired_at)
                log.info("Job rescheduled", job_id=job.id, next_run_at=next_run_at)
        self._repo.prune_executions(job.id, self._execution_history)

    async def _notify(self, job: ChronosJob, response: str) -> None:
        text = format_chronos_notification(job.prompt, response)
        channels = job.notify_channels or None
        failures = await self._registry.broadcast(text, channels)
        if failures:
            log.warning("Job notification not delivered everywhere", job_id=job.id, failed=len(failures))

    def _recover_unscheduled(self) -> None:
        """Repair jobs left claimed by a process that stopped mid-firing."""
        for job in self._repo.list_jobs(JobFilters(enabled=True)):
            if job.next_run_at is not None:
                continue
            if job.schedule_type == "once":
                self._repo.disable_job(job.id)
                log.warning("Disabled one-shot job interrupted mid-firing", job_id=job.id)
            elif job.cron_normalized:
                self._repo.update_job(job.id, next_run_at=parse_next_run(job.cron_normalized, job.timezone))
                log.warning("Rescheduled job interrupted mid-firing", job_id=job.id)
