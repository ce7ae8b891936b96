"""
PowerLink — Account lifecycle (admin only)

pending ──approve──▶ approved
   │                    │
   └──reject──▶ rejected ◀┘ (rejected accounts can still be approved later)

approve, reject and permission updates all bump the target's token version so
the next refresh fails and the user must log in again to pick up new grants.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from powerlink.core.exceptions import (
    AlreadyApprovedError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from powerlink.core.logging import get_logger
from powerlink.core.security import CurrentUser
from powerlink.models.users import ACCOUNT_STATUSES, DEFAULT_PERMISSIONS, ROLES, User
from powerlink.services.auth import bump_token_version

logger = get_logger(__name__)

DEFAULT_REJECTION_REASON = "Your account request was rejected by the administrator."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_role(role: Optional[str]) -> None:
    if role is not None and role not in ROLES:
        raise ValidationError(f"Unknown role {role!r}", details={"role": list(ROLES)})


def get_user_or_404(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", details={"id": user_id})
    return user


def list_users(db: Session, status: Optional[str] = None) -> List[User]:
    """All users newest first, optionally filtered by account status ('all' = no filter)."""
    stmt = select(User).order_by(User.created_at.desc())
    if status and status != "all":
        if status not in ACCOUNT_STATUSES:
            raise ValidationError(
                f"Unknown account status {status!r}",
                details={"status": list(ACCOUNT_STATUSES) + ["all"]},
            )
        stmt = stmt.where(User.account_status == status)
    return list(db.scalars(stmt).all())


def approve_user(
    db: Session,
    admin: CurrentUser,
    user_id: str,
    permissions: Optional[Dict[str, bool]] = None,
    role: Optional[str] = None,
) -> User:
    user = get_user_or_404(db, user_id)
    if user.account_status == "approved":
        raise AlreadyApprovedError(user_id)
    _check_role(role)

    grants = {**DEFAULT_PERMISSIONS, **(permissions or {})}
    bump_token_version(
        db,
        user.id,
        account_status="approved",
        role=role or user.role or "viewer",
        approved_by=admin.user_id,
        approved_at=_utcnow(),
        rejected_reason=None,
        **grants,
    )
    db.commit()
    db.refresh(user)
    logger.info("Admin %s approved %s as %s", admin.user_id, user.email, user.role)
    return user


def reject_user(
    db: Session,
    admin: CurrentUser,
    user_id: str,
    reason: Optional[str] = None,
) -> User:
    if user_id == admin.user_id:
        raise ForbiddenError("Cannot reject your own account")
    user = get_user_or_404(db, user_id)
    if user.role == "admin":
        raise ForbiddenError("Cannot reject admin accounts")

    bump_token_version(
        db,
        user.id,
        account_status="rejected",
        rejected_reason=(reason or "").strip() or DEFAULT_REJECTION_REASON,
        approved_by=admin.user_id,
        approved_at=_utcnow(),
    )
    db.commit()
    db.refresh(user)
    logger.info("Admin %s rejected %s", admin.user_id, user.email)
    return user


def update_permissions(
    db: Session,
    admin: CurrentUser,
    user_id: str,
    permissions: Optional[Dict[str, bool]] = None,
    role: Optional[str] = None,
) -> User:
    """Merge the given flags (and role) into the user's grants. Always revokes sessions."""
    user = get_user_or_404(db, user_id)
    _check_role(role)
    if role == "admin" and user.account_status != "approved":
        raise ForbiddenError("Only approved accounts can be promoted to admin")

    changes: Dict[str, object] = dict(permissions or {})
    if role:
        changes["role"] = role
    bump_token_version(db, user.id, **changes)
    db.commit()
    db.refresh(user)
    logger.info(
        "Admin %s updated grants of %s: %s", admin.user_id, user.email, sorted(changes)
    )
    return user


def delete_user(db: Session, admin: CurrentUser, user_id: str) -> None:
    if user_id == admin.user_id:
        raise ForbiddenError("Cannot delete your own account")
    user = get_user_or_404(db, user_id)
    if user.role == "admin":
        raise ForbiddenError("Cannot delete admin accounts")

    db.delete(user)
    db.commit()
    logger.info("Admin %s deleted user %s", admin.user_id, user_id)
