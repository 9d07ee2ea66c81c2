"""
Permission request workflow.

A user asks for a permission code and names the approvers.  Each
approver records a decision; any rejection rejects the request, and it
is approved once every required approver has approved.  An admin's
decision settles the request on its own.  Approval issues a temporary
grant that lasts until the request's ``expires_at`` or, without one,
``HMS_PERMISSION_REQUEST_GRANT_HOURS``.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Count
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from clinic.exceptions import Conflict
from clinic.models import PermissionApprover, PermissionRequest, TemporaryPermission, User
from clinic.services import access
from clinic.services import temporary_permissions as temp
from clinic.services.audit import log_action
from clinic.services.events import broadcast

logger = logging.getLogger(__name__)

PENDING = PermissionRequest.STATUS_PENDING


def _qs():
    return PermissionRequest.objects.select_related('requester', 'granted_permission').prefetch_related(
        'approvers__user'
    )


def _notify(req: PermissionRequest) -> None:
    event = {'id': req.pk, 'status': req.status, 'permission': req.permission, 'requesterId': req.requester_id}
    transaction.on_commit(lambda: broadcast('permissions.request', event))


def create_request(requester: User, *, permission: str, reason: str, urgency: str = 'MEDIUM',
                   expires_at: Optional[datetime] = None, approver_ids: Iterable[int] = ()) -> PermissionRequest:
    permission = (permission or '').strip()
    if not permission:
        raise ValidationError({'permission': 'Permission is required'})
    if expires_at is not None and expires_at <= timezone.now():
        raise ValidationError({'expiresAt': 'Expiration date must be in the future'})
    if access.has_permission(requester, permission):
        raise Conflict(f"You already hold the '{permission}' permission")
    ids = list(dict.fromkeys(approver_ids))
    if requester.pk in ids:
        raise ValidationError({'approverIds': 'Requesters cannot approve their own request'})
    approvers = list(User.objects.filter(pk__in=ids, is_active=True))
    if len(approvers) != len(ids):
        raise NotFound('One or more approvers not found')

    with transaction.atomic():
        req = PermissionRequest.objects.create(
            requester=requester, permission=permission, reason=reason,
            urgency=urgency or 'MEDIUM', expires_at=expires_at,
        )
        PermissionApprover.objects.bulk_create([PermissionApprover(request=req, user=u) for u in approvers])
        log_action(user=requester, action='permission_request', object_type='permission_request', object_id=req.pk,
                   detail={'permission': permission, 'approvers': ids})
        _notify(req)
    logger.info('user %s requested %s (%d approvers)', requester.pk, permission, len(approvers))
    return get_request(req.pk)


def list_requests(*, status: Optional[str] = None, urgency: Optional[str] = None,
                  requester_pk=None, approver_pk=None) -> List[PermissionRequest]:
    qs = _qs()
    if status:
        qs = qs.filter(status=status)
    if urgency:
        qs = qs.filter(urgency=urgency)
    if requester_pk:
        qs = qs.filter(requester_id=requester_pk)
    if approver_pk:
        qs = qs.filter(approvers__user_id=approver_pk)
    return list(qs.order_by('-requested_at', '-id').distinct())


def awaiting_decision(user: User) -> List[PermissionRequest]:
    """Pending requests on which ``user`` still has to decide."""
    return list(
        _qs().filter(status=PENDING, approvers__user=user, approvers__status='PENDING')
        .order_by('requested_at', 'id').distinct()
    )


def get_request(pk) -> PermissionRequest:
    req = _qs().filter(pk=pk).first()
    if not req:
        raise NotFound(f'Permission request with ID {pk} not found')
    return req


def update_request(pk, *, actor: User, reason: Optional[str] = None, urgency: Optional[str] = None,
                   expires_at: Optional[datetime] = None) -> PermissionRequest:
    req = get_request(pk)
    if req.requester_id != actor.pk and not access.is_admin(actor):
        raise PermissionDenied('Only the requester can edit a permission request')
    if req.status != PENDING:
        raise Conflict('Only pending requests can be edited')
    fields = []
    if reason is not None:
        req.reason = reason
        fields.append('reason')
    if urgency is not None:
        req.urgency = urgency
        fields.append('urgency')
    if expires_at is not None:
        if expires_at <= timezone.now():
            raise ValidationError({'expiresAt': 'Expiration date must be in the future'})
        req.expires_at = expires_at
        fields.append('expires_at')
    if fields:
        req.save(update_fields=fields + ['updated_at'])
    return get_request(pk)


def _grant(req: PermissionRequest, actor: User) -> TemporaryPermission:
    expires_at = req.expires_at or timezone.now() + timedelta(hours=settings.HMS_PERMISSION_REQUEST_GRANT_HOURS)
    # a grant backs at most one request
    current = (
        TemporaryPermission.objects
        .filter(user_id=req.requester_id, permission=req.permission, is_active=True, expires_at__gt=timezone.now(),
                request__isnull=True)
        .order_by('-expires_at')
        .first()
    )
    if current is not None and current.expires_at >= expires_at:
        return current
    return temp.issue(
        req.requester, req.permission, expires_at,
        reason=f'Granted via permission request: {req.reason}', actor=actor,
        metadata={'permissionRequestId': req.pk},
    )


def decide(pk, actor: User, *, approve: bool, comments: str = '') -> PermissionRequest:
    is_admin = access.is_admin(actor)
    with transaction.atomic():
        req = PermissionRequest.objects.select_for_update().filter(pk=pk).first()
        if not req:
            raise NotFound(f'Permission request with ID {pk} not found')
        if req.status != PENDING:
            raise Conflict('Permission request is no longer pending')
        if req.expires_at is not None and req.expires_at <= timezone.now():
            raise Conflict('Permission request has expired')
        row = req.approvers.filter(user=actor).first()
        if row is None:
            if not is_admin:
                raise PermissionDenied('User is not an approver for this request')
            row = PermissionApprover.objects.create(request=req, user=actor, required=False)
        elif row.status != 'PENDING':
            raise Conflict('You have already decided on this request')

        row.status = 'APPROVED' if approve else 'REJECTED'
        row.comments = comments or ''
        row.decided_at = timezone.now()
        row.save(update_fields=['status', 'comments', 'decided_at'])

        statuses = list(req.approvers.values_list('status', 'required'))
        if any(s == 'REJECTED' for s, _ in statuses):
            req.status = PermissionRequest.STATUS_REJECTED
        elif (approve and is_admin) or all(s == 'APPROVED' for s, required in statuses if required):
            req.status = PermissionRequest.STATUS_APPROVED
            req.granted_permission = _grant(req, actor)

        if req.status != PENDING:
            req.save(update_fields=['status', 'granted_permission', 'updated_at'])
            _notify(req)
        log_action(user=actor, action='permission_request_decision', object_type='permission_request',
                   object_id=req.pk, detail={'decision': row.status, 'status': req.status})
    logger.info('permission request %s: %s by %s -> %s', req.pk, row.status, actor.pk, req.status)
    return get_request(pk)


def cancel(pk, actor: User) -> PermissionRequest:
    req = get_request(pk)
    if req.requester_id != actor.pk:
        raise PermissionDenied('Only the requester can cancel a permission request')
    if req.status != PENDING:
        raise Conflict('Only pending requests can be cancelled')
    req.status = PermissionRequest.STATUS_CANCELLED
    req.save(update_fields=['status', 'updated_at'])
    return req


def delete(pk) -> Dict[str, str]:
    get_request(pk).delete()
    return {'message': 'Permission request deleted successfully'}


def stats() -> Dict[str, Any]:
    counts = {code: 0 for code, _ in PermissionRequest.STATUS_CHOICES}
    for status, n in PermissionRequest.objects.values_list('status').annotate(n=Count('id')).order_by():
        counts[status] = n
    total = sum(counts.values())
    return {
        'total': total,
        'pending': counts[PENDING],
        'approved': counts[PermissionRequest.STATUS_APPROVED],
        'rejected': counts[PermissionRequest.STATUS_REJECTED],
        'byStatus': counts,
        'approvalRate': round(counts[PermissionRequest.STATUS_APPROVED] / total * 100, 2) if total else 0,
    }


def cleanup_expired_requests(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or timezone.now()
    count = PermissionRequest.objects.filter(status=PENDING, expires_at__lte=now).update(
        status=PermissionRequest.STATUS_EXPIRED, updated_at=now,
    )
    if count:
        logger.info('expired %d pending permission requests', count)
    return {'message': f'Cleaned up {count} expired permission requests', 'count': count}
