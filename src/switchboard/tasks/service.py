"""Task manager: the task creation and query surface used by tools, the CLI and the UI."""

from __future__ import annotations

from pydantic import BaseModel

from switchboard.infrastructure.config import TASK_DEFAULT_MAX_ATTEMPTS
from switchboard.infrastructure.logger import logger
from switchboard.tasks.context import DelegationContext
from switchboard.tasks.repository import TaskRepository
from switchboard.tasks.types import OriginChannel, TaskCreateInput, TaskFilters, TaskRecord, TaskStats

QUERY_MAX_LIMIT = 50


class TaskQueryResult(BaseModel):
    found: bool
    task_id: str | None = None
    session_id: str | None = None
    limit: int | None = None
    include_completed: bool = False
    tasks: list[TaskRecord] = []

    @property
    def count(self) -> int:
        return len(self.tasks)


class TaskManager:
    def __init__(self, task_repo: TaskRepository) -> None:
        self._task_repo = task_repo

    # --- CRUD ---

    def create_task(
        self,
        agent: str,
        input: str,
        origin_channel: OriginChannel,
        session_id: str,
        context: str | None = None,
        origin_message_id: str | None = None,
        origin_user_id: str | None = None,
        max_attempts: int = TASK_DEFAULT_MAX_ATTEMPTS,
        requires_approval: bool = False,
        approval_action: str | None = None,
    ) -> TaskRecord:
        task = self._task_repo.create_task(TaskCreateInput(
            agent=agent,  # type: ignore[arg-type]
            input=input,
            context=context,
            origin_channel=origin_channel,
            session_id=session_id,
            origin_message_id=origin_message_id,
            origin_user_id=origin_user_id,
            max_attempts=max_attempts,
            requires_approval=requires_approval,
            approval_action=approval_action,
        ))
        logger.info("Task created", task_id=task.id, agent=task.agent, origin_channel=task.origin_channel)
        return task

    def get(self, id: str) -> TaskRecord | None:
        return self._task_repo.get_task_by_id(id)

    def list_tasks(self, filters: TaskFilters | None = None) -> list[TaskRecord]:
        return self._task_repo.list_tasks(filters)

    def stats(self) -> TaskStats:
        return self._task_repo.get_stats()

    def query(
        self,
        task_id: str | None = None,
        session_id: str | None = None,
        limit: int = 10,
        include_completed: bool = False,
    ) -> TaskQueryResult:
        """Look up one task by id, or the latest tasks of a session.

        Without ``session_id`` the current turn's session is used. Completed
        tasks are left out unless ``include_completed`` is set.
        """
        if task_id:
            task = self._task_repo.get_task_by_id(task_id)
            return TaskQueryResult(found=task is not None, task_id=task_id, tasks=[task] if task else [])

        ctx = DelegationContext.current()
        target_session = session_id or (ctx.session_id if ctx else None)
        clamped = max(1, min(QUERY_MAX_LIMIT, limit))
        candidates = self._task_repo.list_tasks(
            TaskFilters(session_id=target_session, limit=max(clamped * 5, QUERY_MAX_LIMIT))
        )
        tasks = [t for t in candidates if include_completed or t.status != "completed"][:clamped]
        return TaskQueryResult(
            found=bool(tasks),
            session_id=target_session,
            limit=clamped,
            include_completed=include_completed,
            tasks=tasks,
        )

    # --- Lifecycle ---

    def cancel(self, id: str) -> bool:
        cancelled = self._task_repo.cancel_task(id)
        if cancelled:
            logger.info("Task cancelled", task_id=id)
        return cancelled
