"""
PowerLink — API v1: Authentication & session

The refresh token lives only in the httpOnly `pl_refresh` cookie scoped to
/api/auth; the access token travels in the response body and comes back as
a bearer header.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import EmailStr, Field
from sqlalchemy.orm import Session

from powerlink.api.v1.schemas import APIModel, MessageResponse, UserEnvelope, UserOut
from powerlink.cache.rate_limit import enforce_auth_rate_limit
from powerlink.config import get_settings
from powerlink.core.exceptions import NotFoundError
from powerlink.core.security import CurrentUser, get_current_user
from powerlink.database import get_db
from powerlink.models.users import User
from powerlink.services import auth as auth_service
from powerlink.services import two_factor

router = APIRouter(
    prefix="/auth",
    tags=["auth"],
    dependencies=[Depends(enforce_auth_rate_limit)],
)
settings = get_settings()

MAX_AVATAR_LENGTH = 2_000_000


# ── Request / Response schemas ────────────────────────────────────────────────


class RegisterRequest(APIModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=256)


class LoginRequest(APIModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    two_factor_token: Optional[str] = None


class SessionResponse(APIModel):
    user: UserOut
    access_token: str


class AccessTokenResponse(APIModel):
    access_token: str


class ProfileRequest(APIModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    avatar: Optional[str] = Field(None, max_length=MAX_AVATAR_LENGTH)


class ChangePasswordRequest(APIModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=256)


class TwoFactorSetupResponse(APIModel):
    secret: str
    otpauth_url: str
    backup_codes: List[str]


class TwoFactorVerifyRequest(APIModel):
    token: str = Field(..., min_length=1)


class TwoFactorDisableRequest(APIModel):
    password: str = Field(..., min_length=1)
    token: str = Field(..., min_length=1)


# ── Cookie helpers ────────────────────────────────────────────────────────────


def set_refresh_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=token,
        max_age=settings.refresh_cookie_max_age,
        path=settings.REFRESH_COOKIE_PATH,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )


def clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        path=settings.REFRESH_COOKIE_PATH,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )


def _load_user(db: Session, current_user: CurrentUser) -> User:
    user = auth_service.get_user(db, current_user.user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


# ── Endpoints ─────────────────────────────────────────────────────────────────


@router.post(
    "/register", response_model=SessionResponse, status_code=status.HTTP_201_CREATED
)
def register(body: RegisterRequest, response: Response, db: Session = Depends(get_db)):
    """Create an account and start a session for it."""
    user = auth_service.register_user(db, body.name, body.email, body.password)
    tokens = auth_service.issue_tokens(user)
    set_refresh_cookie(response, tokens.refresh_token)
    return SessionResponse(user=UserOut.from_user(user), access_token=tokens.access_token)


@router.post("/login", response_model=SessionResponse)
def login(body: LoginRequest, response: Response, db: Session = Depends(get_db)):
    user = auth_service.authenticate(db, body.email, body.password, body.two_factor_token)
    tokens = auth_service.issue_tokens(user)
    set_refresh_cookie(response, tokens.refresh_token)
    return SessionResponse(user=UserOut.from_user(user), access_token=tokens.access_token)


@router.post("/refresh", response_model=AccessTokenResponse)
def refresh(request: Request, response: Response, db: Session = Depends(get_db)):
    """Rotate the refresh cookie and mint a new access token. Cookie only."""
    token = request.cookies.get(settings.REFRESH_COOKIE_NAME)
    _, tokens = auth_service.refresh_session(db, token)
    set_refresh_cookie(response, tokens.refresh_token)
    return AccessTokenResponse(access_token=tokens.access_token)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(request: Request, db: Session = Depends(get_db)):
    token = request.cookies.get(settings.REFRESH_COOKIE_NAME)
    auth_service.revoke_session(db, token)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_refresh_cookie(response)
    return response


@router.get("/me", response_model=UserEnvelope)
def me(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Return the currently authenticated user's profile."""
    return UserEnvelope(user=UserOut.from_user(_load_user(db, current_user)))


@router.put("/profile", response_model=UserEnvelope)
def update_profile(
    body: ProfileRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    user = auth_service.update_profile(db, current_user.user_id, body.name, body.avatar)
    return UserEnvelope(user=UserOut.from_user(user))


@router.post("/change-password", response_model=MessageResponse)
def change_password(
    body: ChangePasswordRequest,
    response: Response,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    auth_service.change_password(
        db, current_user.user_id, body.current_password, body.new_password
    )
    clear_refresh_cookie(response)
    return MessageResponse(
        message="Password changed successfully. Please sign in again on your other devices."
    )


# ── Two-factor ────────────────────────────────────────────────────────────────


@router.post("/2fa/enable", response_model=TwoFactorSetupResponse)
def enable_two_factor(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    setup = two_factor.begin_enrollment(db, _load_user(db, current_user))
    return TwoFactorSetupResponse(**setup)


@router.post("/2fa/verify", response_model=UserEnvelope)
def verify_two_factor(
    body: TwoFactorVerifyRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    user = two_factor.confirm_enrollment(db, _load_user(db, current_user), body.token)
    return UserEnvelope(user=UserOut.from_user(user))


@router.post("/2fa/disable", response_model=UserEnvelope)
def disable_two_factor(
    body: TwoFactorDisableRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    user = two_factor.disable(db, _load_user(db, current_user), body.password, body.token)
    return UserEnvelope(user=UserOut.from_user(user))
