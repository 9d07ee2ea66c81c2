"""
Permission resolution.

A user's effective permission set is the union of the permissions of
their active staff roles, the codes stored directly on the user and any
active, unexpired temporary grants.  The ``admin`` code overrides every
check.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from clinic.models import Permission, Role, StaffRoleAssignment, TemporaryPermission, User
from clinic.services.audit import log_action

ADMIN = 'admin'
CATALOG_CACHE_KEY = 'clinic:permission_catalog'


def effective_permissions(user: Optional[User]) -> List[str]:
    if user is None or not getattr(user, 'is_authenticated', False):
        return []
    direct = list(user.permissions or [])
    if ADMIN in direct or user.is_superuser:
        return [ADMIN]

    perms: List[str] = []
    assignments = (
        StaffRoleAssignment.objects
        .filter(staff__user=user, is_active=True, role__is_active=True)
        .select_related('role')
    )
    for assignment in assignments:
        perms.extend(assignment.role.permissions or [])
    perms.extend(direct)
    perms.extend(
        TemporaryPermission.objects
        .filter(user=user, is_active=True, expires_at__gt=timezone.now())
        .values_list('permission', flat=True)
    )
    # dict keeps first-seen order
    return list(dict.fromkeys(perms))


def _perms_for(user_or_perms) -> List[str]:
    if isinstance(user_or_perms, (list, tuple, set, frozenset)):
        return list(user_or_perms)
    return effective_permissions(user_or_perms)


def is_admin(user_or_perms) -> bool:
    return ADMIN in _perms_for(user_or_perms)


def has_permission(user_or_perms, code: str) -> bool:
    perms = _perms_for(user_or_perms)
    return ADMIN in perms or code in perms


def has_any_permission(user_or_perms, codes: Iterable[str]) -> bool:
    perms = _perms_for(user_or_perms)
    return ADMIN in perms or any(c in perms for c in codes)


def has_all_permissions(user_or_perms, codes: Iterable[str]) -> bool:
    perms = _perms_for(user_or_perms)
    return ADMIN in perms or all(c in perms for c in codes)


def capabilities(perms: List[str]) -> Dict[str, bool]:
    """Derived UI flags for the login payload."""
    def any_of(*codes: str) -> bool:
        return has_any_permission(perms, codes)

    return {
        'canViewDepartments': any_of('view_departments', 'manage_departments'),
        'canManageDepartments': any_of('manage_departments', 'system_configuration'),
        'canViewRoles': any_of('view_roles', 'manage_roles'),
        'canManageRoles': any_of('manage_roles', 'system_configuration'),
        'canViewPermissionAnalytics': any_of('view_permission_analytics', 'system_configuration'),
        'canViewPermissionTemplates': any_of('view_permission_templates', 'manage_permission_templates'),
        'canViewPermissionWorkflows': any_of(
            'view_permission_workflows', 'manage_permission_workflows', 'view_permission_requests',
        ),
        'canViewTemporaryPermissions': any_of('view_temporary_permissions', 'manage_temporary_permissions'),
        'canViewSystemSettings': any_of('system_configuration'),
        'canViewStaff': any_of('view_staff', 'manage_staff'),
        'canManageStaff': any_of('manage_staff', 'create_staff', 'edit_staff', 'delete_staff'),
        'canCreateStaff': any_of('create_staff', 'manage_staff'),
        'canEditStaff': any_of('edit_staff', 'manage_staff'),
        'canDeleteStaff': any_of('delete_staff', 'manage_staff'),
        'isAdmin': is_admin(perms),
    }


# ---------------------------------------------------------------------
# Direct user permissions
# ---------------------------------------------------------------------
def get_user(user_id) -> User:
    user = User.objects.filter(pk=user_id).first()
    if not user:
        raise NotFound('User not found')
    return user


def add_user_permission(user_id, code: str, *, actor=None) -> List[str]:
    user = get_user(user_id)
    perms = list(user.permissions or [])
    if code not in perms:
        perms.append(code)
        user.permissions = perms
        user.save(update_fields=['permissions'])
        log_action(user=actor, action='permission_add', object_type='user', object_id=user.pk,
                   detail={'permission': code})
    return perms


def remove_user_permission(user_id, code: str, *, actor=None) -> List[str]:
    user = get_user(user_id)
    perms = [p for p in (user.permissions or []) if p != code]
    if len(perms) != len(user.permissions or []):
        user.permissions = perms
        user.save(update_fields=['permissions'])
        log_action(user=actor, action='permission_remove', object_type='user', object_id=user.pk,
                   detail={'permission': code})
    return perms


def set_user_permissions(user_id, codes: List[str], *, actor=None) -> List[str]:
    if not isinstance(codes, list) or not all(isinstance(c, str) and c for c in codes):
        raise ValidationError({'permissions': 'Expected a list of permission codes.'})
    user = get_user(user_id)
    user.permissions = list(dict.fromkeys(codes))
    user.save(update_fields=['permissions'])
    log_action(user=actor, action='permission_set', object_type='user', object_id=user.pk,
               detail={'permissions': user.permissions})
    return user.permissions


def users_with_permission(code: str) -> List[User]:
    """Users holding ``code`` through a role, directly or temporarily."""
    ids = set()
    for role in Role.objects.filter(is_active=True):
        if code in (role.permissions or []):
            ids.update(
                StaffRoleAssignment.objects
                .filter(role=role, is_active=True)
                .values_list('staff__user_id', flat=True)
            )
    # JSON containment lookups are not portable to SQLite; filter in Python.
    for user_id, perms in User.objects.values_list('id', 'permissions'):
        if code in (perms or []):
            ids.add(user_id)
    ids.update(
        TemporaryPermission.objects
        .filter(permission=code, is_active=True, expires_at__gt=timezone.now())
        .values_list('user_id', flat=True)
    )
    return list(User.objects.filter(id__in=ids, is_active=True).order_by('username'))


# ---------------------------------------------------------------------
# Permission catalogue
# ---------------------------------------------------------------------
def _catalog() -> List[dict]:
    rows = cache.get(CATALOG_CACHE_KEY)
    if rows is None:
        rows = [
            {
                'id': p.id,
                'name': p.name,
                'displayName': p.display_name or p.name,
                'description': p.description,
                'category': p.category,
                'module': p.module,
            }
            for p in Permission.objects.filter(is_active=True).order_by('category', 'name')
        ]
        cache.set(CATALOG_CACHE_KEY, rows, getattr(settings, 'PERMISSION_CATALOG_TTL', 300))
    return rows


def invalidate_catalog() -> None:
    cache.delete(CATALOG_CACHE_KEY)


def list_permissions(category: Optional[str] = None) -> Dict[str, List[dict]]:
    grouped: Dict[str, List[dict]] = {}
    for row in _catalog():
        if category and row['category'] != category:
            continue
        grouped.setdefault(row['category'], []).append(row)
    return grouped


def permission_categories() -> List[str]:
    return sorted({row['category'] for row in _catalog()})


def permission_modules() -> List[str]:
    return sorted({row['module'] for row in _catalog() if row['module']})
