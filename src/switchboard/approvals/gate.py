"""Human consent gate for privileged actions.

``request_approval`` reads like a blocking call but waits with
``asyncio.sleep`` between store checks, so the other loops keep running while
a request sits unanswered for minutes.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable

from switchboard.approvals.repository import PermissionRepository
from switchboard.approvals.types import (
    ApprovalNeeded,
    ApprovalOutcome,
    ApprovalRequest,
    ApprovalResolution,
    ApprovalScope,
)
from switchboard.infrastructure.config import APPROVAL_POLL_INTERVAL, APPROVAL_TIMEOUT
from switchboard.infrastructure.logger import get_logger
from switchboard.infrastructure.poll_loop import BackgroundTasks

log = get_logger("ApprovalGate")

ApprovalListener = Callable[[ApprovalNeeded], Any]


class ApprovalGate:
    def __init__(
        self,
        repo: PermissionRepository,
        poll_interval: float = APPROVAL_POLL_INTERVAL,
        timeout: float = APPROVAL_TIMEOUT,
    ) -> None:
        self._repo = repo
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._listeners: list[ApprovalListener] = []
        self._background = BackgroundTasks("ApprovalGate")

    def on_approval_needed(self, listener: ApprovalListener) -> Callable[[], None]:
        """Subscribe to new approval requests. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def request_approval(
        self,
        task_id: str,
        session_id: str,
        action_type: str,
        action_description: str,
        project_id: str | None = None,
    ) -> ApprovalOutcome:
        if self._repo.is_granted(action_type, session_id, project_id):
            log.info("Action covered by standing permission", task_id=task_id, action_type=action_type)
            return "approved"

        # A restarted worker resumes waiting on the request it already opened.
        request = self._repo.find_pending_request(task_id, action_type)
        if request is None:
            request = self._repo.create_approval_request(task_id, session_id, action_type, action_description)
            log.info("Approval requested", approval_id=request.id, task_id=task_id, action_type=action_type)
            self._emit(
                ApprovalNeeded(
                    approval_id=request.id,
                    task_id=task_id,
                    session_id=session_id,
                    action_type=action_type,
                    action_description=action_description,
                )
            )

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        while True:
            current = self._repo.get_approval_request(request.id)
            if current is not None and current.status != "pending":
                return _outcome(current)

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self._poll_interval, remaining))

        if self._repo.deny_if_pending(request.id):
            log.warning("Approval request timed out", approval_id=request.id, task_id=task_id)
            return "denied"

        # Resolved between the last check and the timeout write.
        current = self._repo.get_approval_request(request.id)
        return _outcome(current) if current else "denied"

    def get_pending_approvals(self, session_id: str | None = None) -> list[ApprovalRequest]:
        return self._repo.get_pending_approval_requests(session_id)

    def resolve(
        self,
        approval_id: str,
        status: ApprovalResolution,
        scope: ApprovalScope | None = None,
        resolved_by: str = "user",
    ) -> ApprovalRequest:
        request = self._repo.resolve_approval_request(approval_id, status, scope, resolved_by)
        log.info("Approval request resolved", approval_id=approval_id, status=request.status, scope=request.scope)
        return request

    def _emit(self, event: ApprovalNeeded) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
            except Exception:
                log.exception("Approval listener failed", approval_id=event.approval_id)
                continue
            if inspect.isawaitable(result):
                self._background.spawn(result, approval_id=event.approval_id)


def _outcome(request: ApprovalRequest) -> ApprovalOutcome:
    return "approved" if request.status in ("approved", "approved_always") else "denied"
