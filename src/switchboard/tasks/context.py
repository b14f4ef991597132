"""Per-turn delegation context: addressing tuple, dedup list, and the async-delegation ceiling.

A context is established once per inbound user turn with
``DelegationContext.run(ctx, fn)``. It lives in a ``ContextVar``, so every
coroutine and asyncio task spawned inside the turn sees the same object without
it being passed through each call.
"""

from __future__ import annotations

import contextvars
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

import structlog

from switchboard.infrastructure.config import DELEGATION_LIMIT
from switchboard.tasks.types import DelegationAck, OriginChannel

T = TypeVar("T")

DEFAULT_ORIGIN_CHANNEL: OriginChannel = "api"
DEFAULT_SESSION_ID = "default"

_current: contextvars.ContextVar[DelegationContext | None] = contextvars.ContextVar(
    "switchboard_delegation_context", default=None
)

_PUNCTUATION = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")


def normalize_task(text: str) -> str:
    """Case-fold, strip punctuation and collapse whitespace."""
    folded = _PUNCTUATION.sub(" ", text.casefold())
    return _WHITESPACE.sub(" ", folded).strip()


@dataclass
class DelegationContext:
    origin_channel: OriginChannel = DEFAULT_ORIGIN_CHANNEL
    session_id: str = DEFAULT_SESSION_ID
    origin_message_id: str | None = None
    origin_user_id: str | None = None
    limit: int = DELEGATION_LIMIT
    acks: list[DelegationAck] = field(default_factory=list)
    sync_delegations: int = 0

    # --- Scoping ---

    @staticmethod
    async def run(ctx: DelegationContext, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` with ``ctx`` as the current context for the whole call tree."""
        token = _current.set(ctx)
        bound = structlog.contextvars.bind_contextvars(session_id=ctx.session_id, origin_channel=ctx.origin_channel)
        try:
            return await fn()
        finally:
            structlog.contextvars.reset_contextvars(**bound)
            _current.reset(token)

    @staticmethod
    def current() -> DelegationContext | None:
        return _current.get()

    # --- Dedup / rate limit ---

    @property
    def async_delegations(self) -> int:
        return len(self.acks)

    def find_duplicate(self, agent: str, task: str) -> DelegationAck | None:
        normalized = normalize_task(task)
        return next((a for a in self.acks if a.agent == agent and a.normalized_task == normalized), None)

    def can_enqueue(self) -> bool:
        return len(self.acks) < self.limit

    def record_ack(self, task_id: str, agent: str, task: str) -> DelegationAck:
        ack = DelegationAck(task_id=task_id, agent=agent, normalized_task=normalize_task(task))
        self.acks.append(ack)
        return ack

    def record_sync_delegation(self) -> None:
        self.sync_delegations += 1
