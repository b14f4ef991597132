"""Webhook definitions and the notification records their triggers produce."""

from __future__ import annotations

import json
import sqlite3
import uuid

from switchboard.infrastructure.clock import now_ms
from switchboard.webhooks.types import NotificationStatus, Webhook, WebhookNotification


class WebhookRepository:
    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    # --- Webhooks ---

    def create_webhook(self, name: str, prompt: str, notification_channels: list[str] | None = None) -> Webhook:
        webhook_id = str(uuid.uuid4())
        self._db.execute(
            "INSERT INTO webhooks (id, name, prompt, enabled, notification_channels, created_at) VALUES (?, ?, ?, 1, ?, ?)",
            (webhook_id, name, prompt, json.dumps(notification_channels or ["ui"]), now_ms()),
        )
        self._db.commit()
        return self._row_to_webhook(self._db.execute("SELECT * FROM webhooks WHERE id = ?", (webhook_id,)).fetchone())

    def get_webhook(self, id: str) -> Webhook | None:
        row = self._db.execute("SELECT * FROM webhooks WHERE id = ?", (id,)).fetchone()
        return self._row_to_webhook(row) if row else None

    def get_webhook_by_name(self, name: str) -> Webhook | None:
        row = self._db.execute("SELECT * FROM webhooks WHERE name = ?", (name,)).fetchone()
        return self._row_to_webhook(row) if row else None

    # --- Notifications ---

    def create_notification(self, webhook: Webhook, payload: str) -> WebhookNotification:
        notification_id = str(uuid.uuid4())
        now = now_ms()
        self._db.execute(
            """INSERT INTO webhook_notifications (id, webhook_id, webhook_name, status, payload, created_at)
               VALUES (?, ?, ?, 'pending', ?, ?)""",
            (notification_id, webhook.id, webhook.name, payload, now),
        )
        self._db.execute(
            "UPDATE webhooks SET last_triggered_at = ?, trigger_count = trigger_count + 1 WHERE id = ?",
            (now, webhook.id),
        )
        self._db.commit()
        return self._row_to_notification(
            self._db.execute("SELECT * FROM webhook_notifications WHERE id = ?", (notification_id,)).fetchone()
        )

    def get_notification(self, id: str) -> WebhookNotification | None:
        row = self._db.execute("SELECT * FROM webhook_notifications WHERE id = ?", (id,)).fetchone()
        return self._row_to_notification(row) if row else None

    def update_notification_result(self, id: str, status: NotificationStatus, result: str) -> bool:
        cursor = self._db.execute(
            "UPDATE webhook_notifications SET status = ?, result = ?, completed_at = ? WHERE id = ?",
            (status, result, now_ms(), id),
        )
        self._db.commit()
        return cursor.rowcount > 0

    def _row_to_webhook(self, row: sqlite3.Row) -> Webhook:
        data = dict(row)
        data["enabled"] = bool(data["enabled"])
        try:
            data["notification_channels"] = json.loads(data["notification_channels"] or "[]")
        except json.JSONDecodeError:
            data["notification_channels"] = []
        return Webhook(**data)

    def _row_to_notification(self, row: sqlite3.Row) -> WebhookNotification:
        data = dict(row)
        data["read"] = bool(data["read"])
        return WebhookNotification(**data)
