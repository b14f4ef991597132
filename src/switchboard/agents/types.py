"""Narrow contracts for the language-model side of the system.

The orchestration core never talks to a model or provider SDK directly; it only
sees these protocols.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pydantic import BaseModel


class SessionContext(BaseModel):
    """Addressing tuple handed to the conversational agent for one invocation."""

    origin_channel: str
    session_id: str
    origin_message_id: str | None = None
    origin_user_id: str | None = None


@runtime_checkable
class ConversationalAgent(Protocol):
    """The central agent. Chronos feeds job prompts to it."""

    async def invoke(self, prompt: str, session_context: SessionContext) -> str: ...

    def current_session_id(self) -> str | None: ...


@runtime_checkable
class SubagentExecutor(Protocol):
    """Executes delegated work for one agent kind (``apoc``, ``neo``...)."""

    async def execute(self, input: str, context: str | None, session_id: str) -> str: ...
