"""
Permission classes backed by the effective permission set of a user.

``requires('view_billing', 'manage_billing')`` builds a DRF permission
class that passes when the user holds any of the listed codes or the
``admin`` code.  Views that accept several methods with different
requirements call :func:`check` for the stricter ones.
"""
from typing import List

from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import BasePermission

from clinic.services import access


def request_permissions(request) -> List[str]:
    perms = getattr(request, '_clinic_permissions', None)
    if perms is None:
        perms = access.effective_permissions(getattr(request, "user", None))
        # cached per request; views stack several of these checks
        request._clinic_permissions = perms
    return perms


def check(request, *codes: str) -> None:
    if not access.has_any_permission(request_permissions(request), codes):
        raise PermissionDenied()


class RequiresAnyPermission(BasePermission):
    """Allow access when the user holds one of ``required`` (or admin)."""
    required: tuple = ()
    message = 'You do not have permission to perform this action.'

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        if not (user and user.is_authenticated):
            return False
        return access.has_any_permission(request_permissions(request), self.required)


def requires(*codes: str):
    return type(
        'Requires_' + '_or_'.join(codes),
        (RequiresAnyPermission,),
        {'required': tuple(codes)},
    )


class IsAdmin(BasePermission):
    """Only holders of the ``admin`` code."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and access.is_admin(request_permissions(request)))
