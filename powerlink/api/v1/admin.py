"""
PowerLink — API v1: Admin user management
Every route requires an access token whose role is admin.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.orm import Session

from powerlink.api.v1.schemas import (
    APIModel,
    MessageResponse,
    PermissionsIn,
    UserMessageEnvelope,
    UserOut,
)
from powerlink.core.security import CurrentUser
from powerlink.database import get_db
from powerlink.services import accounts
from powerlink.services.rbac import require_role

router = APIRouter(prefix="/admin", tags=["admin"])
require_admin = require_role("admin")


class UsersResponse(APIModel):
    users: List[UserOut]


class GrantRequest(APIModel):
    permissions: Optional[PermissionsIn] = None
    role: Optional[str] = None


class RejectRequest(APIModel):
    reason: Optional[str] = Field(None, max_length=500)


@router.get("/users", response_model=UsersResponse)
def list_users(
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    users = accounts.list_users(db, status)
    return UsersResponse(users=[UserOut.from_user(u) for u in users])


@router.get("/users/pending", response_model=UsersResponse)
def list_pending_users(
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    users = accounts.list_users(db, "pending")
    return UsersResponse(users=[UserOut.from_user(u) for u in users])


@router.post("/users/{user_id}/approve", response_model=UserMessageEnvelope)
def approve_user(
    user_id: str,
    body: Optional[GrantRequest] = None,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    body = body or GrantRequest()
    user = accounts.approve_user(
        db,
        admin,
        user_id,
        permissions=body.permissions.flags() if body.permissions else None,
        role=body.role,
    )
    return UserMessageEnvelope(message="User approved successfully", user=UserOut.from_user(user))


@router.post("/users/{user_id}/reject", response_model=UserMessageEnvelope)
def reject_user(
    user_id: str,
    body: Optional[RejectRequest] = None,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    reason = body.reason if body else None
    user = accounts.reject_user(db, admin, user_id, reason)
    return UserMessageEnvelope(message="User rejected", user=UserOut.from_user(user))


@router.put("/users/{user_id}/permissions", response_model=UserMessageEnvelope)
def update_permissions(
    user_id: str,
    body: GrantRequest,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    user = accounts.update_permissions(
        db,
        admin,
        user_id,
        permissions=body.permissions.flags() if body.permissions else None,
        role=body.role,
    )
    return UserMessageEnvelope(message="User permissions updated", user=UserOut.from_user(user))


@router.delete("/users/{user_id}", response_model=MessageResponse)
def delete_user(
    user_id: str,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    accounts.delete_user(db, admin, user_id)
    return MessageResponse(message="User deleted successfully")
