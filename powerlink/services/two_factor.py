"""
PowerLink — TOTP two-factor authentication

Enrollment is two-step: enable() stores a pending secret and returns it with
one-shot backup codes; verify() activates it once the user proves their
authenticator produces matching codes. Backup codes are stored hashed and
consumed on use.
"""

from __future__ import annotations

import secrets
from typing import Dict, List, Union

import pyotp
from sqlalchemy.orm import Session

from powerlink.config import get_settings
from powerlink.core.exceptions import (
    AlreadyEnabledError,
    InvalidPasswordError,
    InvalidTwoFactorCodeError,
    TwoFactorNotEnabledError,
    TwoFactorSetupMissingError,
)
from powerlink.core.logging import get_logger
from powerlink.core.security import hash_password, verify_password
from powerlink.models.users import User

logger = get_logger(__name__)
settings = get_settings()

# Accept the previous and next 30s step to absorb clock drift
VALID_WINDOW = 1


def _normalize(code: str) -> str:
    return "".join(code.split()).replace("-", "").lower()


def _totp_matches(secret: str, code: str) -> bool:
    return pyotp.TOTP(secret).verify(code, valid_window=VALID_WINDOW)


def begin_enrollment(db: Session, user: User) -> Dict[str, Union[str, List[str]]]:
    if user.two_factor_enabled:
        raise AlreadyEnabledError()

    secret = pyotp.random_base32()
    backup_codes = [secrets.token_hex(4) for _ in range(settings.BACKUP_CODE_COUNT)]

    user.two_factor_pending_secret = secret
    user.backup_code_hashes = [hash_password(code) for code in backup_codes]
    db.commit()

    otpauth_url = pyotp.TOTP(secret).provisioning_uri(
        name=user.email, issuer_name=settings.TOTP_ISSUER
    )
    return {"secret": secret, "otpauth_url": otpauth_url, "backup_codes": backup_codes}


def confirm_enrollment(db: Session, user: User, code: str) -> User:
    if user.two_factor_enabled:
        raise AlreadyEnabledError()
    if not user.two_factor_pending_secret:
        raise TwoFactorSetupMissingError()
    if not _totp_matches(user.two_factor_pending_secret, _normalize(code)):
        raise InvalidTwoFactorCodeError()

    user.two_factor_secret = user.two_factor_pending_secret
    user.two_factor_pending_secret = None
    user.two_factor_enabled = True
    db.commit()
    db.refresh(user)
    logger.info("Two-factor enabled for %s", user.email)
    return user


def verify_second_factor(user: User, code: str) -> bool:
    """
    True for a current TOTP code or an unused backup code. A matched backup
    code is removed from the user; the caller commits.
    """
    code = _normalize(code)
    if not code:
        return False
    if user.two_factor_secret and _totp_matches(user.two_factor_secret, code):
        return True

    remaining = list(user.backup_code_hashes or [])
    for index, code_hash in enumerate(remaining):
        if verify_password(code, code_hash):
            del remaining[index]
            user.backup_code_hashes = remaining
            return True
    return False


def disable(db: Session, user: User, password: str, code: str) -> User:
    if not user.two_factor_enabled:
        raise TwoFactorNotEnabledError()
    if not verify_password(password, user.password_hash):
        raise InvalidPasswordError("Password is incorrect")
    if not verify_second_factor(user, code):
        raise InvalidTwoFactorCodeError()

    user.two_factor_enabled = False
    user.two_factor_secret = None
    user.two_factor_pending_secret = None
    user.backup_code_hashes = []
    db.commit()
    db.refresh(user)
    logger.info("Two-factor disabled for %s", user.email)
    return user
