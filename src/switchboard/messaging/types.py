"""Messaging domain types and the ChannelAdapter protocol."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol, runtime_checkable

from pydantic import BaseModel


@runtime_checkable
class ChannelAdapter(Protocol):
    """A chat transport (telegram, discord...). Adding a channel means implementing this."""

    name: str

    async def send_message(self, text: str) -> None: ...
    async def send_message_to_user(self, user_id: str, text: str) -> None: ...
    async def disconnect(self) -> None: ...


class DeliveryError(Exception):
    """A result could not be delivered to any recipient."""


@dataclass
class DeliveryFailure:
    channel: str
    error: str


class HistoryMessage(BaseModel):
    session_id: str
    type: Literal["human", "ai", "system"]
    content: str
    created_at: int = 0
    id: int | None = None
