"""
PowerLink — Unified Custom Exceptions.
Each exception carries: message, error_code, http_status_code, optional details.
Serialized through to_dict() into the API error envelope
{"error": {"message", "code", "details"?}}.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

# ─────────────────────────────────────────────────────────────────────────────
# BASE
# ─────────────────────────────────────────────────────────────────────────────


class PowerLinkError(Exception):
    """Root exception for all PowerLink errors."""

    http_status_code: int = 400
    error_code: str = "ERROR"

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"message": self.message, "code": self.error_code}
        if self.details:
            error["details"] = self.details
        return {"error": error}


# ─────────────────────────────────────────────────────────────────────────────
# REQUEST VALIDATION
# ─────────────────────────────────────────────────────────────────────────────


class ValidationError(PowerLinkError):
    http_status_code = 400
    error_code = "VALIDATION_ERROR"


# ─────────────────────────────────────────────────────────────────────────────
# AUTHENTICATION (401)
# ─────────────────────────────────────────────────────────────────────────────


class UnauthorizedError(PowerLinkError):
    http_status_code = 401
    error_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Not authenticated", details: Optional[Any] = None) -> None:
        super().__init__(message, details)


class InvalidTokenError(UnauthorizedError):
    """Signature, expiry or claim-shape failure on an access or refresh token."""

    def __init__(self, message: str = "Invalid or expired token") -> None:
        super().__init__(message)


class InvalidCredentialsError(UnauthorizedError):
    """Same message for unknown email and wrong password."""

    error_code = "INVALID_CREDENTIALS"

    def __init__(self) -> None:
        super().__init__("Invalid credentials")


class TwoFactorRequiredError(UnauthorizedError):
    error_code = "TWO_FACTOR_REQUIRED"

    def __init__(self) -> None:
        super().__init__("Two-factor authentication code required")


# ─────────────────────────────────────────────────────────────────────────────
# AUTHORIZATION (403)
# ─────────────────────────────────────────────────────────────────────────────


class ForbiddenError(PowerLinkError):
    http_status_code = 403
    error_code = "FORBIDDEN"

    def __init__(self, message: str = "Forbidden", details: Optional[Any] = None) -> None:
        super().__init__(message, details)


class PermissionDeniedError(ForbiddenError):
    """A specific capability (write/delete/export) is missing."""

    error_code = "PERMISSION_DENIED"

    def __init__(self, capability: str, message: str) -> None:
        self.capability = capability
        super().__init__(message, details={"capability": capability})


# ─────────────────────────────────────────────────────────────────────────────
# LOOKUP / UNIQUENESS
# ─────────────────────────────────────────────────────────────────────────────


class NotFoundError(PowerLinkError):
    http_status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, message: str = "Not found", details: Optional[Any] = None) -> None:
        super().__init__(message, details)


class ConflictError(PowerLinkError):
    http_status_code = 409
    error_code = "CONFLICT"


class EmailInUseError(ConflictError):
    error_code = "EMAIL_IN_USE"

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__("Email already registered", details={"email": email})


class PhoneInUseError(ConflictError):
    error_code = "PHONE_EXISTS"

    def __init__(self, phone: str) -> None:
        self.phone = phone
        super().__init__("Phone already exists", details={"phone": phone})


# ─────────────────────────────────────────────────────────────────────────────
# DOMAIN STATE CONFLICTS (400 with specific code)
# ─────────────────────────────────────────────────────────────────────────────


class AlreadyApprovedError(PowerLinkError):
    http_status_code = 400
    error_code = "ALREADY_APPROVED"

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__("User is already approved", details={"userId": user_id})


class AlreadyEnabledError(PowerLinkError):
    http_status_code = 400
    error_code = "TWO_FACTOR_ALREADY_ENABLED"

    def __init__(self) -> None:
        super().__init__("Two-factor authentication is already enabled")


class TwoFactorNotEnabledError(PowerLinkError):
    http_status_code = 400
    error_code = "TWO_FACTOR_NOT_ENABLED"

    def __init__(self) -> None:
        super().__init__("Two-factor authentication is not enabled")


class TwoFactorSetupMissingError(PowerLinkError):
    http_status_code = 400
    error_code = "TWO_FACTOR_SETUP_MISSING"

    def __init__(self) -> None:
        super().__init__("Start two-factor setup before verifying a code")


class InvalidTwoFactorCodeError(PowerLinkError):
    http_status_code = 400
    error_code = "INVALID_TWO_FACTOR_CODE"

    def __init__(self) -> None:
        super().__init__("Invalid two-factor code")


class InvalidPasswordError(PowerLinkError):
    http_status_code = 400
    error_code = "INVALID_PASSWORD"

    def __init__(self, message: str = "Current password is incorrect") -> None:
        super().__init__(message)


# ─────────────────────────────────────────────────────────────────────────────
# INFRASTRUCTURE
# ─────────────────────────────────────────────────────────────────────────────


class RateLimitedError(PowerLinkError):
    http_status_code = 429
    error_code = "RATE_LIMITED"

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(
            "Too many requests, please try again later",
            details={"retryAfter": retry_after},
        )


class DatabaseUnavailableError(PowerLinkError):
    http_status_code = 500
    error_code = "DATABASE_UNAVAILABLE"

    def __init__(self, message: str = "Database is unreachable") -> None:
        super().__init__(message)
