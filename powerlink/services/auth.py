"""
PowerLink — Session service

Registration, login, refresh-token rotation, logout and password/profile
changes. Every token_version increment is a single UPDATE statement
(token_version = token_version + 1) so concurrent flows never lose a bump.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from powerlink.core.exceptions import (
    EmailInUseError,
    InvalidCredentialsError,
    InvalidPasswordError,
    InvalidTokenError,
    InvalidTwoFactorCodeError,
    NotFoundError,
    TwoFactorRequiredError,
    UnauthorizedError,
    ValidationError,
)
from powerlink.core.logging import get_logger
from powerlink.core.security import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    dummy_verify_password,
    hash_password,
    verify_password,
)
from powerlink.models.users import ADMIN_PERMISSIONS, DEFAULT_PERMISSIONS, User
from powerlink.services import two_factor

logger = get_logger(__name__)


@dataclass
class SessionTokens:
    access_token: str
    refresh_token: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == normalize_email(email)).first()


def get_user(db: Session, user_id: str) -> User | None:
    return db.get(User, user_id)


def bump_token_version(db: Session, user_id: str, **changes: Any) -> bool:
    """
    Increment the user's token version (plus any other column changes) in one
    atomic UPDATE. Returns False if the user does not exist. Caller commits.
    """
    result = db.execute(
        update(User)
        .where(User.id == user_id)
        .values(token_version=User.token_version + 1, **changes)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


def issue_tokens(user: User) -> SessionTokens:
    """Mint an access/refresh pair bound to the user's current token version."""
    return SessionTokens(
        access_token=create_access_token(
            user.id,
            user.role,
            user.token_version,
            permissions=user.permissions,
            account_status=user.account_status,
        ),
        refresh_token=create_refresh_token(user.id, user.token_version),
    )


# ─── Register / login ─────────────────────────────────────────────────────────


def register_user(db: Session, name: str, email: str, password: str) -> User:
    """
    Create an account. The first account in an empty store becomes an approved
    admin with every permission; later accounts are pending viewers.
    """
    email = normalize_email(email)
    if get_user_by_email(db, email) is not None:
        raise EmailInUseError(email)

    is_first = (db.scalar(select(func.count()).select_from(User)) or 0) == 0
    grants = ADMIN_PERMISSIONS if is_first else DEFAULT_PERMISSIONS

    user = User(
        name=name.strip(),
        email=email,
        password_hash=hash_password(password),
        role="admin" if is_first else "viewer",
        account_status="approved" if is_first else "pending",
        approved_at=_utcnow() if is_first else None,
        token_version=0,
        **grants,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise EmailInUseError(email) from exc
    db.refresh(user)

    logger.info("Registered %s as %s (%s)", user.email, user.role, user.account_status)
    return user


def authenticate(
    db: Session,
    email: str,
    password: str,
    two_factor_token: Optional[str] = None,
) -> User:
    """
    Verify credentials and record the login. Unknown email and wrong password
    raise the same InvalidCredentialsError.
    """
    user = get_user_by_email(db, email)
    if user is None:
        dummy_verify_password()
        logger.info("Failed login for %s", normalize_email(email))
        raise InvalidCredentialsError()
    if not verify_password(password, user.password_hash):
        logger.info("Failed login for %s", user.email)
        raise InvalidCredentialsError()

    if user.two_factor_enabled:
        if not two_factor_token:
            raise TwoFactorRequiredError()
        if not two_factor.verify_second_factor(user, two_factor_token):
            logger.info("Failed second factor for %s", user.email)
            raise InvalidTwoFactorCodeError()

    user.last_login = _utcnow()
    db.commit()
    db.refresh(user)
    logger.info("Login %s", user.email)
    return user


# ─── Refresh / logout ─────────────────────────────────────────────────────────


def refresh_session(db: Session, refresh_token: Optional[str]) -> Tuple[User, SessionTokens]:
    """
    Rotate a refresh token. Rejected when the cookie is absent, the token is
    invalid or expired, the user is gone, or the token version is stale.
    """
    if not refresh_token:
        raise UnauthorizedError("Missing refresh token")
    try:
        payload = decode_refresh_token(refresh_token)
    except InvalidTokenError as exc:
        raise UnauthorizedError("Invalid refresh token") from exc

    user = get_user(db, payload["sub"])
    if user is None:
        raise UnauthorizedError("User not found")
    if payload["tv"] != user.token_version:
        logger.info(
            "Rejected refresh for %s: token version %s != %s",
            user.id,
            payload["tv"],
            user.token_version,
        )
        raise UnauthorizedError("Token expired")

    return user, issue_tokens(user)


def revoke_session(db: Session, refresh_token: Optional[str]) -> None:
    """Best effort: bump the token version of whoever the refresh token names."""
    if not refresh_token:
        return
    try:
        payload = decode_refresh_token(refresh_token)
    except InvalidTokenError:
        logger.debug("Logout with undecodable refresh token")
        return

    if bump_token_version(db, payload["sub"]):
        db.commit()
        logger.info("Logout revoked sessions for %s", payload["sub"])


# ─── Profile / password ───────────────────────────────────────────────────────


def update_profile(
    db: Session,
    user_id: str,
    name: Optional[str] = None,
    avatar: Optional[str] = None,
) -> User:
    user = get_user(db, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if name is None and avatar is None:
        raise ValidationError("Provide a name or an avatar to update")

    if name is not None:
        user.name = name.strip()
    if avatar is not None:
        # empty string removes the avatar
        user.avatar = avatar or None
    db.commit()
    db.refresh(user)
    return user


def change_password(
    db: Session,
    user_id: str,
    current_password: str,
    new_password: str,
) -> User:
    """Replace the password and revoke every outstanding refresh token."""
    user = get_user(db, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if not verify_password(current_password, user.password_hash):
        raise InvalidPasswordError()
    if current_password == new_password:
        raise ValidationError("New password must differ from the current password")

    bump_token_version(
        db,
        user.id,
        password_hash=hash_password(new_password),
        last_password_change=_utcnow(),
    )
    db.commit()
    db.refresh(user)
    logger.info("Password changed for %s; sessions revoked", user.email)
    return user
