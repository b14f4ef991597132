"""Delegation tool body shared by every subagent tool.

Admission outcomes (duplicate, limit reached, enqueue failure) come back as
plain strings so the calling agent can adapt its plan.
"""

from __future__ import annotations

from typing import Callable

from switchboard.agents.types import SubagentExecutor
from switchboard.infrastructure.config import ExecutionMode, agent_execution_mode
from switchboard.infrastructure.logger import get_logger
from switchboard.tasks.context import DEFAULT_ORIGIN_CHANNEL, DEFAULT_SESSION_ID, DelegationContext
from switchboard.tasks.service import TaskManager

log = get_logger("Delegator")

LIMIT_REACHED_MESSAGE = "Delegation limit reached for this user turn. Split the request or wait for current tasks."


class Delegator:
    def __init__(
        self,
        task_manager: TaskManager,
        executors: dict[str, SubagentExecutor] | None = None,
        mode_for: Callable[[str], ExecutionMode] = agent_execution_mode,
    ) -> None:
        self._task_manager = task_manager
        self._executors = executors or {}
        self._mode_for = mode_for

    async def delegate(self, agent: str, task: str, context: str | None = None) -> str:
        ctx = DelegationContext.current()

        if ctx:
            existing = ctx.find_duplicate(agent, task)
            if existing:
                log.info("Delegation deduplicated", agent=agent, task_id=existing.task_id)
                return f"Task {existing.task_id} already queued for {existing.agent} execution."

        if self._mode_for(agent) == "sync":
            return await self._run_inline(agent, task, context, ctx)

        if ctx and not ctx.can_enqueue():
            log.warning("Delegation blocked by per-turn limit", agent=agent, limit=ctx.limit)
            return LIMIT_REACHED_MESSAGE

        try:
            created = self._task_manager.create_task(
                agent=agent,
                input=task,
                context=context,
                origin_channel=ctx.origin_channel if ctx else DEFAULT_ORIGIN_CHANNEL,
                session_id=ctx.session_id if ctx else DEFAULT_SESSION_ID,
                origin_message_id=ctx.origin_message_id if ctx else None,
                origin_user_id=ctx.origin_user_id if ctx else None,
            )
        except Exception as err:
            log.exception("Delegation enqueue failed", agent=agent)
            return f"{agent} task enqueue failed: {err}"

        if ctx:
            ctx.record_ack(created.id, agent, task)
        return f"Task {created.id} queued for {agent} execution."

    async def _run_inline(self, agent: str, task: str, context: str | None, ctx: DelegationContext | None) -> str:
        executor = self._executors.get(agent)
        if executor is None:
            return f"{agent} is configured for synchronous execution but has no executor."
        if ctx:
            ctx.record_sync_delegation()
        session_id = ctx.session_id if ctx else DEFAULT_SESSION_ID
        try:
            return await executor.execute(task, context, session_id)
        except Exception as err:
            log.error("Synchronous delegation failed", agent=agent, error=str(err))
            return f"{agent} execution failed: {err}"
