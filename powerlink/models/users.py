"""
User model for authentication, authorization and account lifecycle.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from powerlink.database import Base

ROLES = ("admin", "manager", "viewer")
ACCOUNT_STATUSES = ("pending", "approved", "rejected")

PERMISSION_FLAGS = ("can_read", "can_write", "can_delete", "can_export")

# Granted on approval when the admin does not specify a permission set
DEFAULT_PERMISSIONS: Dict[str, bool] = {
    "can_read": True,
    "can_write": False,
    "can_delete": False,
    "can_export": False,
}
ADMIN_PERMISSIONS: Dict[str, bool] = {flag: True for flag in PERMISSION_FLAGS}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    # Stored lower-cased; uniqueness is therefore case-insensitive
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    role: Mapped[str] = mapped_column(
        SAEnum(*ROLES, name="user_role_enum"), nullable=False, default="viewer"
    )
    can_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_write: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_delete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_export: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    account_status: Mapped[str] = mapped_column(
        SAEnum(*ACCOUNT_STATUSES, name="account_status_enum"),
        nullable=False,
        default="pending",
        index=True,
    )
    approved_by: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejected_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Epoch counter: bumping it revokes every refresh token issued before
    token_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    two_factor_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    two_factor_secret: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    two_factor_pending_secret: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )
    backup_code_hashes: Mapped[List[str]] = mapped_column(
        JSON, nullable=False, default=list
    )

    last_login: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_password_change: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    @property
    def permissions(self) -> Dict[str, bool]:
        return {flag: bool(getattr(self, flag)) for flag in PERMISSION_FLAGS}

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
