"""Webhook domain types."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

NotificationStatus = Literal["pending", "completed", "failed"]


class Webhook(BaseModel):
    id: str
    name: str
    prompt: str
    enabled: bool = True
    notification_channels: list[str] = ["ui"]
    created_at: int
    last_triggered_at: int | None = None
    trigger_count: int = 0


class WebhookNotification(BaseModel):
    id: str
    webhook_id: str
    webhook_name: str
    status: NotificationStatus = "pending"
    payload: str
    result: str | None = None
    read: bool = False
    created_at: int
    completed_at: int | None = None
