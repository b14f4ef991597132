"""Standing permission grants and approval request records."""

from __future__ import annotations

import sqlite3
import uuid
from typing import Any

from switchboard.approvals.types import (
    ApprovalError,
    ApprovalRequest,
    ApprovalResolution,
    ApprovalScope,
    ApprovalStatus,
    Permission,
    PermissionScope,
)
from switchboard.infrastructure.clock import now_ms


class PermissionRepository:
    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    # --- Permissions ---

    def grant(
        self,
        action_type: str,
        scope: PermissionScope,
        scope_id: str | None = None,
        expires_at: int | None = None,
        commit: bool = True,
    ) -> Permission:
        if scope != "global" and not scope_id:
            raise ValueError(f"A {scope} permission needs a scope_id")
        permission = Permission(
            id=str(uuid.uuid4()),
            action_type=action_type,
            scope=scope,
            scope_id=scope_id if scope != "global" else None,
            granted_at=now_ms(),
            expires_at=expires_at,
        )
        self._db.execute(
            "INSERT INTO permissions (id, action_type, scope, scope_id, granted_at, expires_at) VALUES (?, ?, ?, ?, ?, ?)",
            (
                permission.id, permission.action_type, permission.scope,
                permission.scope_id, permission.granted_at, permission.expires_at,
            ),
        )
        if commit:
            self._db.commit()
        return permission

    def is_granted(self, action_type: str, session_id: str | None = None, project_id: str | None = None) -> bool:
        """True if an unexpired grant covers the action globally or for this session/project."""
        row = self._db.execute(
            """SELECT id FROM permissions
               WHERE action_type = ?
                 AND (expires_at IS NULL OR expires_at > ?)
                 AND (
                   scope = 'global'
                   OR (scope = 'session' AND scope_id = ?)
                   OR (scope = 'project' AND scope_id = ?)
                 )
               LIMIT 1""",
            (action_type, now_ms(), session_id, project_id),
        ).fetchone()
        return row is not None

    def revoke(self, id: str) -> bool:
        cursor = self._db.execute("DELETE FROM permissions WHERE id = ?", (id,))
        self._db.commit()
        return cursor.rowcount > 0

    def list_permissions(self, scope: PermissionScope | None = None, scope_id: str | None = None) -> list[Permission]:
        query = "SELECT * FROM permissions WHERE 1=1"
        params: list[Any] = []
        if scope:
            query += " AND scope = ?"
            params.append(scope)
        if scope_id:
            query += " AND scope_id = ?"
            params.append(scope_id)
        query += " ORDER BY granted_at DESC"
        return [Permission(**dict(row)) for row in self._db.execute(query, params).fetchall()]

    # --- Approval requests ---

    def create_approval_request(
        self, task_id: str, session_id: str, action_type: str, action_description: str
    ) -> ApprovalRequest:
        request = ApprovalRequest(
            id=str(uuid.uuid4()),
            task_id=task_id,
            session_id=session_id,
            action_type=action_type,
            action_description=action_description,
            created_at=now_ms(),
        )
        self._db.execute(
            """INSERT INTO approval_requests (id, task_id, session_id, action_type, action_description, status, created_at)
               VALUES (?, ?, ?, ?, ?, 'pending', ?)""",
            (request.id, task_id, session_id, action_type, action_description, request.created_at),
        )
        self._db.commit()
        return request

    def get_approval_request(self, id: str) -> ApprovalRequest | None:
        row = self._db.execute("SELECT * FROM approval_requests WHERE id = ?", (id,)).fetchone()
        return ApprovalRequest(**dict(row)) if row else None

    def find_pending_request(self, task_id: str, action_type: str) -> ApprovalRequest | None:
        row = self._db.execute(
            """SELECT * FROM approval_requests
               WHERE task_id = ? AND action_type = ? AND status = 'pending'
               ORDER BY created_at DESC LIMIT 1""",
            (task_id, action_type),
        ).fetchone()
        return ApprovalRequest(**dict(row)) if row else None

    def get_pending_approval_requests(self, session_id: str | None = None) -> list[ApprovalRequest]:
        query = "SELECT * FROM approval_requests WHERE status = 'pending'"
        params: list[Any] = []
        if session_id:
            query += " AND session_id = ?"
            params.append(session_id)
        query += " ORDER BY created_at ASC"
        return [ApprovalRequest(**dict(row)) for row in self._db.execute(query, params).fetchall()]

    def resolve_approval_request(
        self,
        id: str,
        status: ApprovalResolution,
        scope: ApprovalScope | None = None,
        resolved_by: str = "user",
    ) -> ApprovalRequest:
        """Move a pending request to its final status.

        Only a ``pending`` request changes; resolving an already-resolved
        request returns it untouched. ``approved_always`` creates one standing
        grant in the same transaction: global when the chosen scope is
        ``global``, otherwise scoped to the request's session.
        """
        request = self.get_approval_request(id)
        if request is None:
            raise ApprovalError(f"Approval request {id} not found")

        cursor = self._db.execute(
            """UPDATE approval_requests SET status = ?, scope = ?, resolved_at = ?, resolved_by = ?
               WHERE id = ? AND status = 'pending'""",
            (status, scope, now_ms(), resolved_by, id),
        )
        if cursor.rowcount and status == "approved_always":
            if scope == "global":
                self.grant(request.action_type, "global", commit=False)
            else:
                self.grant(request.action_type, "session", request.session_id, commit=False)
        self._db.commit()

        resolved = self.get_approval_request(id)
        if resolved is None:
            raise ApprovalError(f"Approval request {id} disappeared while resolving")
        return resolved

    def deny_if_pending(self, id: str, resolved_by: str = "timeout") -> bool:
        cursor = self._db.execute(
            """UPDATE approval_requests SET status = 'denied', resolved_at = ?, resolved_by = ?
               WHERE id = ? AND status = 'pending'""",
            (now_ms(), resolved_by, id),
        )
        self._db.commit()
        return cursor.rowcount > 0

    def list_approval_requests(
        self, session_id: str | None = None, status: ApprovalStatus | None = None
    ) -> list[ApprovalRequest]:
        query = "SELECT * FROM approval_requests WHERE 1=1"
        params: list[Any] = []
        if session_id:
            query += " AND session_id = ?"
            params.append(session_id)
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC"
        return [ApprovalRequest(**dict(row)) for row in self._db.execute(query, params).fetchall()]
