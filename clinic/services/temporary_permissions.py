"""
Time-boxed permission grants.

A grant is effective while ``is_active`` and ``expires_at`` lies in the
future.  Every state change writes a :class:`PermissionAuditEntry`;
expired grants are swept by :func:`cleanup_expired` (see the
``cleanup_expired_permissions`` management command).
"""
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from clinic.models import PermissionAuditEntry as Audit
from clinic.models import StaffMember, TemporaryPermission, User
from clinic.services import access
from clinic.services.audit import actor_name
from clinic.services.events import broadcast

logger = logging.getLogger(__name__)

MANAGE = 'manage_temporary_permissions'
GRANT = 'grant_temporary_permissions'


def describe_duration(start: datetime, end: datetime) -> str:
    days = math.ceil(abs((end - start).total_seconds()) / 86400)
    if days == 1:
        return '1 day'
    if days < 7:
        return f'{days} days'
    if days < 30:
        return f'{math.ceil(days / 7)} weeks'
    if days < 365:
        return f'{math.ceil(days / 30)} months'
    return f'{math.ceil(days / 365)} years'


def _staff_of(user) -> Optional[StaffMember]:
    return StaffMember.objects.filter(user=user).select_related('user').first() if user else None


def _require(actor, code: str, message: str) -> None:
    if not access.has_permission(actor, code):
        raise PermissionDenied(message)


def _audit(tp: TemporaryPermission, action: str, actor, reason: str = '', metadata=None) -> Audit:
    return Audit.objects.create(
        temporary_permission=tp,
        action=action,
        performed_by=actor_name(actor),
        reason=reason,
        metadata=metadata or {},
    )


def grant(*, user_pk, permission: str, expires_at: datetime, reason: str = '', actor=None) -> TemporaryPermission:
    user = User.objects.filter(pk=user_pk).first()
    if not user:
        raise NotFound(f"User with ID '{user_pk}' not found")
    _require(actor, GRANT, 'You do not have permission to grant temporary permissions')
    now = timezone.now()
    if expires_at <= now:
        raise ValidationError({'expiresAt': 'Expiration date must be in the future'})
    if TemporaryPermission.objects.filter(
        user=user, permission=permission, is_active=True, expires_at__gt=now,
    ).exists():
        raise ValidationError(f"User already has an active temporary permission for '{permission}'")

    return issue(user, permission, expires_at, reason=reason, actor=actor)


def issue(user: User, permission: str, expires_at: datetime, *, reason: str = '', actor=None,
          metadata=None) -> TemporaryPermission:
    """Create the grant and its GRANTED audit entry without any authority checks."""
    granter = _staff_of(actor)
    with transaction.atomic():
        tp = TemporaryPermission.objects.create(
            user=user, permission=permission, granted_by=granter,
            expires_at=expires_at, reason=reason or '',
        )
        _audit(tp, Audit.ACTION_GRANTED, actor, f'Temporary permission granted: {reason}', {
            'grantedBy': actor_name(actor),
            'duration': describe_duration(timezone.now(), expires_at),
            **(metadata or {}),
        })
    logger.info('granted %s to user %s until %s', permission, user.pk, expires_at.isoformat())
    return tp


def list_grants(*, user_pk=None, permission: Optional[str] = None, is_active: Optional[bool] = None,
                granted_by_pk=None) -> List[TemporaryPermission]:
    qs = TemporaryPermission.objects.select_related('user', 'granted_by__user')
    if user_pk:
        qs = qs.filter(user_id=user_pk)
    if permission:
        qs = qs.filter(permission=permission)
    if is_active is not None:
        qs = qs.filter(is_active=is_active)
    if granted_by_pk:
        qs = qs.filter(granted_by_id=granted_by_pk)
    return list(qs.order_by('-created_at', '-id'))


def get_grant(pk) -> TemporaryPermission:
    tp = TemporaryPermission.objects.select_related('user', 'granted_by__user').filter(pk=pk).first()
    if not tp:
        raise NotFound(f"Temporary permission with ID '{pk}' not found")
    return tp


def active_for_user(user_pk) -> List[TemporaryPermission]:
    return list(
        TemporaryPermission.objects
        .filter(user_id=user_pk, is_active=True, expires_at__gt=timezone.now())
        .select_related('user', 'granted_by__user')
        .order_by('expires_at')
    )


def update_grant(pk, *, actor=None, is_active: Optional[bool] = None, reason: Optional[str] = None) -> TemporaryPermission:
    tp = get_grant(pk)
    _require(actor, MANAGE, 'You do not have permission to update temporary permissions')
    fields = []
    if reason is not None:
        tp.reason = reason
        fields.append('reason')
    if is_active is not None and is_active != tp.is_active:
        tp.is_active = is_active
        fields.append('is_active')
    if fields:
        with transaction.atomic():
            tp.save(update_fields=fields + ['updated_at'])
            if 'is_active' in fields:
                action = Audit.ACTION_ACTIVATED if tp.is_active else Audit.ACTION_DEACTIVATED
                _audit(tp, action, actor, f'Permission {action.lower()}')
    return tp


def extend(pk, *, new_expires_at: datetime, reason: str = '', actor=None) -> TemporaryPermission:
    tp = get_grant(pk)
    if not tp.is_active:
        raise ValidationError('Cannot extend an inactive temporary permission')
    _require(actor, MANAGE, 'You do not have permission to extend temporary permissions')
    if new_expires_at <= tp.expires_at:
        raise ValidationError({'newExpiresAt': 'New expiration date must be after current expiration date'})
    old = tp.expires_at
    with transaction.atomic():
        tp.expires_at = new_expires_at
        tp.save(update_fields=['expires_at', 'updated_at'])
        _audit(tp, Audit.ACTION_EXTENDED, actor, f'Permission extended: {reason}', {
            'oldExpiresAt': old.isoformat(),
            'newExpiresAt': new_expires_at.isoformat(),
        })
    return tp


def revoke(pk, *, reason: str = '', actor=None) -> TemporaryPermission:
    tp = get_grant(pk)
    if not tp.is_active:
        raise ValidationError('Permission is already inactive')
    _require(actor, MANAGE, 'You do not have permission to revoke temporary permissions')
    with transaction.atomic():
        tp.is_active = False
        tp.save(update_fields=['is_active', 'updated_at'])
        _audit(tp, Audit.ACTION_REVOKED, actor, f'Permission revoked: {reason}')
    logger.info('revoked temporary permission %s (%s)', tp.pk, tp.permission)
    return tp


def delete(pk, *, actor=None) -> Dict[str, str]:
    tp = get_grant(pk)
    _require(actor, MANAGE, 'You do not have permission to delete temporary permissions')
    # audit entries cascade
    tp.delete()
    return {'message': 'Temporary permission deleted successfully'}


def audit_trail(pk) -> List[Audit]:
    return list(get_grant(pk).audit_entries.order_by('-timestamp', '-id'))


def cleanup_expired(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or timezone.now()
    expired = list(TemporaryPermission.objects.filter(is_active=True, expires_at__lte=now))
    with transaction.atomic():
        for tp in expired:
            tp.is_active = False
            tp.save(update_fields=['is_active', 'updated_at'])
            _audit(tp, Audit.ACTION_EXPIRED, None, 'Permission expired automatically')
    if expired:
        logger.info('expired %d temporary permissions', len(expired))
        broadcast('permissions.expired', {'ids': [tp.pk for tp in expired]})
    return {
        'message': f'Cleaned up {len(expired)} expired permissions',
        'count': len(expired),
    }
