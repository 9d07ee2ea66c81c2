"""
Temporary permission grants.

Read access needs one of the temporary-permission codes; the write
services check ``grant_temporary_permissions`` or
``manage_temporary_permissions`` against the acting user themselves.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import IsAdmin, check, requires
from clinic.serializers.administration import (
    TemporaryExtendSerializer, TemporaryGrantSerializer, TemporaryListQuerySerializer, TemporaryUpdateSerializer,
)
from clinic.serializers.billing import ReasonSerializer
from clinic.services import payloads
from clinic.services import temporary_permissions as temp

VIEW_CODES = ('view_temporary_permissions', 'manage_temporary_permissions', 'grant_temporary_permissions')
CanView = requires(*VIEW_CODES)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def grant_collection(request):
    if request.method == 'GET':
        check(request, *VIEW_CODES)
        q = TemporaryListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        return Response([payloads.temporary_permission(tp) for tp in temp.list_grants(**q.validated_data)])

    s = TemporaryGrantSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    tp = temp.grant(user_pk=v['userId'], permission=v['permission'], expires_at=v['expiresAt'],
                    reason=v['reason'], actor=request.user)
    return Response(payloads.temporary_permission(tp), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def grant_detail(request, pk: int):
    if request.method == 'GET':
        check(request, *VIEW_CODES)
        return Response(payloads.temporary_permission(temp.get_grant(pk)))
    if request.method == 'DELETE':
        return Response(temp.delete(pk, actor=request.user))
    s = TemporaryUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    tp = temp.update_grant(pk, actor=request.user, is_active=s.validated_data['isActive'],
                           reason=s.validated_data['reason'])
    return Response(payloads.temporary_permission(tp))


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def grant_extend(request, pk: int):
    s = TemporaryExtendSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    tp = temp.extend(pk, new_expires_at=s.validated_data['newExpiresAt'], reason=s.validated_data['reason'],
                     actor=request.user)
    return Response(payloads.temporary_permission(tp))


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def grant_revoke(request, pk: int):
    s = ReasonSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    tp = temp.revoke(pk, reason=s.validated_data.get('reason') or '', actor=request.user)
    return Response(payloads.temporary_permission(tp))


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def grant_audit_trail(request, pk: int):
    return Response([payloads.audit_entry(e) for e in temp.audit_trail(pk)])


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def user_active_grants(request, user_pk: int):
    # users may always read their own grants
    if request.user.pk != int(user_pk):
        check(request, *VIEW_CODES)
    return Response([payloads.temporary_permission(tp) for tp in temp.active_for_user(user_pk)])


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdmin])
def cleanup_expired(request):
    return Response(temp.cleanup_expired())
