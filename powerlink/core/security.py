"""
PowerLink — Security Layer
Password hashing, access/refresh JWT issuance and verification, and the
bearer-token dependency that authenticates every protected request.

Access tokens are verified statelessly (signature + expiry). They carry a
snapshot of role, account status, permission flags and token version taken
at issue time, so a revoked session keeps working until its access token
expires. Refresh tokens are checked against the live token version by the
session service.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from powerlink.config import get_settings
from powerlink.core.exceptions import InvalidTokenError, UnauthorizedError

settings = get_settings()

# ─── Password hashing ─────────────────────────────────────────────────────────
# pbkdf2_sha256 avoids the bcrypt 72-byte input limit
_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    """Return a salted hash of the given plain-text password."""
    return _pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Return True if the plain password matches the hash. Never raises on mismatch."""
    if not plain_password or not hashed_password:
        return False
    try:
        return _pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        # unrecognised or corrupt hash
        return False


def dummy_verify_password() -> None:
    """Spend one verify's worth of time; used when the account does not exist."""
    _pwd_context.dummy_verify()


# ─── JWT ──────────────────────────────────────────────────────────────────────

ACCESS = "access"
REFRESH = "refresh"


def _encode(payload: Dict[str, Any], secret: str, lifetime: timedelta) -> str:
    now = datetime.now(tz=timezone.utc)
    payload.update(
        {
            "iat": now,
            "exp": now + lifetime,
            "jti": uuid.uuid4().hex,
        }
    )
    return jwt.encode(payload, secret, algorithm=settings.JWT_ALGORITHM)


def create_access_token(
    subject: str,
    role: str,
    token_version: int,
    permissions: Optional[Dict[str, bool]] = None,
    account_status: str = "approved",
    expires_minutes: Optional[int] = None,
) -> str:
    """
    Create a signed short-lived access token.

    :param subject: The user id.
    :param role: admin | manager | viewer.
    :param token_version: The user's token version at issue time.
    :param permissions: Snapshot of the permission flags (can_read, ...).
    :param account_status: pending | approved | rejected.
    :param expires_minutes: Override default expiry from settings.
    """
    lifetime = timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_TTL_MINUTES)
    payload: Dict[str, Any] = {
        "sub": subject,
        "typ": ACCESS,
        "role": role,
        "status": account_status,
        "perms": dict(permissions or {}),
        "tv": token_version,
    }
    return _encode(payload, settings.JWT_ACCESS_SECRET, lifetime)


def create_refresh_token(
    subject: str,
    token_version: int,
    expires_days: Optional[int] = None,
) -> str:
    """Create a signed long-lived refresh token bound to a token version."""
    lifetime = timedelta(days=expires_days or settings.REFRESH_TOKEN_TTL_DAYS)
    payload: Dict[str, Any] = {"sub": subject, "typ": REFRESH, "tv": token_version}
    return _encode(payload, settings.JWT_REFRESH_SECRET, lifetime)


def _decode(token: str, secret: str, expected_type: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise InvalidTokenError() from exc

    if payload.get("typ") != expected_type:
        raise InvalidTokenError()
    if not payload.get("sub") or not isinstance(payload.get("tv"), int):
        raise InvalidTokenError("Token missing 'sub' or 'tv' claim")
    return payload


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate an access token (signature + expiry only).
    Raises InvalidTokenError on any failure.
    """
    payload = _decode(token, settings.JWT_ACCESS_SECRET, ACCESS)
    if not payload.get("role"):
        raise InvalidTokenError("Token missing 'role' claim")
    return payload


def decode_refresh_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a refresh token (signature + expiry only).
    The caller compares payload["tv"] with the stored token version.
    """
    return _decode(token, settings.JWT_REFRESH_SECRET, REFRESH)


# ─── FastAPI dependency ───────────────────────────────────────────────────────


class CurrentUser:
    """Represents the authenticated user extracted from the access token."""

    def __init__(
        self,
        user_id: str,
        role: str,
        token_version: int,
        permissions: Dict[str, bool],
        account_status: str,
        raw_claims: Dict[str, Any],
    ) -> None:
        self.user_id = user_id
        self.role = role
        self.token_version = token_version
        self.permissions = permissions
        self.account_status = account_status
        self.raw_claims = raw_claims

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @classmethod
    def from_claims(cls, payload: Dict[str, Any]) -> "CurrentUser":
        return cls(
            user_id=payload["sub"],
            role=payload["role"],
            token_version=payload["tv"],
            permissions=dict(payload.get("perms") or {}),
            account_status=payload.get("status", "pending"),
            raw_claims=payload,
        )

    def __repr__(self) -> str:
        return f"CurrentUser(user_id={self.user_id!r}, role={self.role!r})"


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    """
    FastAPI dependency: extracts and validates the Bearer access token,
    returning a CurrentUser. Missing or non-bearer headers are 401.
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Missing token")

    payload = decode_access_token(credentials.credentials)
    return CurrentUser.from_claims(payload)
