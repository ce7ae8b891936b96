"""
PowerLink — Authorization guards

Two independent checks that compose as FastAPI dependencies after
get_current_user:

  require_role("admin")         coarse gate for whole route groups
  require_permission("write")   fine gate for mutations on domain resources

Reads need no capability beyond a valid access token. Admins pass every
capability check. For everyone else the capability comes from the permission
snapshot in the access token, and the account must be approved.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, Tuple

from fastapi import Depends

from powerlink.core.exceptions import ForbiddenError, PermissionDeniedError
from powerlink.core.security import CurrentUser, get_current_user

# ─── Capability matrix ────────────────────────────────────────────────────────

CAPABILITIES: Dict[str, Tuple[str, str]] = {
    "write": (
        "can_write",
        "You do not have permission to modify data. Contact your administrator.",
    ),
    "delete": (
        "can_delete",
        "You do not have permission to delete data. Contact your administrator.",
    ),
    "export": (
        "can_export",
        "You do not have permission to export data. Contact your administrator.",
    ),
}


class RBACService:
    """Checks whether an authenticated user holds a role or capability."""

    def check_role(self, user: CurrentUser, allowed_roles: Iterable[str]) -> bool:
        if user.role not in set(allowed_roles):
            raise ForbiddenError("Forbidden", details={"requiredRoles": sorted(allowed_roles)})
        return True

    def check(self, user: CurrentUser, capability: str) -> bool:
        """
        Return True if the user may exercise the capability.
        Raise PermissionDeniedError otherwise.
        """
        if capability not in CAPABILITIES:
            raise ValueError(f"Unknown capability: {capability!r}")
        flag, message = CAPABILITIES[capability]

        if user.is_admin:
            return True
        if user.account_status != "approved" or not user.permissions.get(flag, False):
            raise PermissionDeniedError(capability, message)
        return True

    def has_permission(self, user: CurrentUser, capability: str) -> bool:
        """Non-raising version of check(). Returns True/False."""
        try:
            return self.check(user, capability)
        except PermissionDeniedError:
            return False


rbac = RBACService()


def require_role(*allowed_roles: str) -> Callable[..., CurrentUser]:
    """Dependency factory: 403 unless the token's role is one of allowed_roles."""

    def _guard(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        rbac.check_role(current_user, allowed_roles)
        return current_user

    return _guard


def require_permission(capability: str) -> Callable[..., CurrentUser]:
    """Dependency factory: 403 with a capability-specific message."""
    if capability not in CAPABILITIES:
        raise ValueError(f"Unknown capability: {capability!r}")

    def _guard(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        rbac.check(current_user, capability)
        return current_user

    return _guard
