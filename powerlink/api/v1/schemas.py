"""
PowerLink — API v1: shared request/response schemas

The wire format is camelCase; requests may also use the snake_case field
names.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from powerlink.models.users import User


class APIModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def changes(self, clearable: Iterable[str] = ()) -> Dict[str, Any]:
        """Fields the caller sent; an explicit null only clears a `clearable` column."""
        keep = set(clearable)
        return {
            key: value
            for key, value in self.model_dump(exclude_unset=True).items()
            if value is not None or key in keep
        }


class PageMeta(APIModel):
    page: int
    page_size: int
    total: int


class MessageResponse(APIModel):
    message: str


# ── Users ─────────────────────────────────────────────────────────────────────


class PermissionsIn(APIModel):
    can_read: Optional[bool] = None
    can_write: Optional[bool] = None
    can_delete: Optional[bool] = None
    can_export: Optional[bool] = None

    def flags(self) -> Dict[str, bool]:
        """Only the flags the caller actually sent."""
        return {k: v for k, v in self.model_dump(by_alias=False).items() if v is not None}


class PermissionsOut(APIModel):
    can_read: bool
    can_write: bool
    can_delete: bool
    can_export: bool


class UserOut(APIModel):
    """Sanitized user: never carries the password hash, token version or 2FA secrets."""

    id: str
    name: str
    email: str
    role: str
    permissions: PermissionsOut
    account_status: str
    avatar: Optional[str] = None
    two_factor_enabled: bool
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_reason: Optional[str] = None
    last_login: Optional[datetime] = None
    last_password_change: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls.model_validate(user)


class UserEnvelope(APIModel):
    user: UserOut


class UserMessageEnvelope(APIModel):
    message: str
    user: UserOut
