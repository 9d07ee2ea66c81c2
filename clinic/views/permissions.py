"""
Permission catalogue, direct user grants and permission checks.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import request_permissions, requires
from clinic.serializers.administration import (
    PermissionCheckSerializer, PermissionCodeSerializer, PermissionCodesSerializer,
)
from clinic.services import access

CanManage = requires('manage_permissions', 'manage_users')


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def permission_catalog(request):
    return Response(access.list_permissions(request.query_params.get('category') or None))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def permission_categories(request):
    return Response(access.permission_categories())


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def permission_modules(request):
    return Response(access.permission_modules())


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def my_permissions(request):
    perms = request_permissions(request)
    return Response({'permissions': perms, 'capabilities': access.capabilities(perms)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def check_permissions(request):
    """Evaluate ``permissions`` against the caller in ``any`` or ``all`` mode."""
    s = PermissionCheckSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    perms = request_permissions(request)
    codes = s.validated_data['permissions']
    if s.validated_data['mode'] == 'all':
        allowed = access.has_all_permissions(perms, codes)
    else:
        allowed = access.has_any_permission(perms, codes)
    return Response({'allowed': allowed, 'isAdmin': access.is_admin(perms)})


@api_view(['GET', 'PUT'])
@permission_classes([IsAuthenticated, CanManage])
def user_permissions(request, user_pk: int):
    if request.method == 'GET':
        user = access.get_user(user_pk)
        return Response({
            'userId': user.pk,
            'direct': list(user.permissions or []),
            'effective': access.effective_permissions(user),
        })
    s = PermissionCodesSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    codes = access.set_user_permissions(user_pk, s.validated_data['permissions'], actor=request.user)
    return Response({'userId': user_pk, 'direct': codes})


@api_view(['POST', 'DELETE'])
@permission_classes([IsAuthenticated, CanManage])
def user_permission_code(request, user_pk: int):
    s = PermissionCodeSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    code = s.validated_data['permission']
    if request.method == 'POST':
        codes = access.add_user_permission(user_pk, code, actor=request.user)
    else:
        codes = access.remove_user_permission(user_pk, code, actor=request.user)
    return Response({'userId': user_pk, 'direct': codes})


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanManage])
def permission_holders(request, code: str):
    return Response([
        {'id': u.id, 'username': u.username, 'name': u.get_full_name() or u.username}
        for u in access.users_with_permission(code)
    ])
