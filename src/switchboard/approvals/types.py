"""Approval and permission types."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

ActionType = Literal[
    "read_file",
    "write_file",
    "delete_file",
    "run_command",
    "git_push",
    "git_commit",
    "network_request",
    "leave_working_dir",
    "kill_process",
    "download_file",
]
PermissionScope = Literal["session", "project", "global"]
ApprovalStatus = Literal["pending", "approved", "denied", "approved_always"]
ApprovalResolution = Literal["approved", "denied", "approved_always"]
ApprovalScope = Literal["once", "session", "project", "global"]
ApprovalOutcome = Literal["approved", "denied"]


class ApprovalError(Exception):
    """Raised when resolving an approval request that does not exist."""


class Permission(BaseModel):
    id: str
    action_type: str
    scope: PermissionScope
    scope_id: str | None = None
    granted_at: int
    expires_at: int | None = None


class ApprovalRequest(BaseModel):
    id: str
    task_id: str
    session_id: str
    action_type: str
    action_description: str
    status: ApprovalStatus = "pending"
    scope: ApprovalScope | None = None
    created_at: int
    resolved_at: int | None = None
    resolved_by: str | None = None


class ApprovalNeeded(BaseModel):
    """Payload handed to ``on_approval_needed`` listeners."""

    approval_id: str
    task_id: str
    session_id: str
    action_type: str
    action_description: str
