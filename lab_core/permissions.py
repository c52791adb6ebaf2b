# lab_core/permissions.py
from __future__ import annotations

from rest_framework.permissions import SAFE_METHODS, BasePermission

from .workflows.executor import user_roles


# ------------------------------------------------------------------
# Role definitions
# ------------------------------------------------------------------
WRITE_ROLES = {"ADMIN", "TECHNICIAN", "QC_INSPECTOR", "INVOICING"}
ADMIN_ROLES = {"ADMIN"}


def user_has_any_role(user, allowed_roles: set[str]) -> bool:
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    return bool(user_roles(user) & set(allowed_roles))


# ------------------------------------------------------------------
# Permission classes
# ------------------------------------------------------------------
class IsRoleAllowedOrReadOnly(BasePermission):
    """
    Read: any authenticated user
    Write: a lab role; views narrow it further with `write_roles`
    """

    message = "Write access denied. Your account has no laboratory role allowing this change."

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False

        if request.method in SAFE_METHODS:
            return True

        allowed = getattr(view, "write_roles", None) or WRITE_ROLES
        return user_has_any_role(user, allowed)


class IsLabAdmin(BasePermission):
    """
    Laboratory settings (bank accounts, lab profile, role assignments):
    reads for any authenticated user, writes for ADMIN.
    """

    message = "Only laboratory administrators can change this."

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False
        if request.method in SAFE_METHODS:
            return True
        return user_has_any_role(user, ADMIN_ROLES)
