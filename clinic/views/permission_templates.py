"""
Permission templates and presets.

Reads need ``view_permission_templates`` (or the manage code); writes
need ``manage_permission_templates``.  Applying a template to a user is
a direct permission edit and needs the same codes as those edits.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import check, requires
from clinic.serializers.administration import (
    ApplyTemplateSerializer, PermissionPresetSerializer, PermissionTemplateSerializer,
)
from clinic.services import payloads
from clinic.services import permission_templates as templates

MANAGE = ('manage_permission_templates',)
CanView = requires('view_permission_templates', 'manage_permission_templates')


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, CanView])
def template_collection(request):
    if request.method == 'GET':
        return Response(templates.list_templates(request.query_params.get('category') or None))
    check(request, *MANAGE)
    s = PermissionTemplateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    template = templates.create_template(**s.validated_data, actor=request.user)
    return Response(payloads.permission_template(template), status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def template_categories(request):
    return Response(templates.template_categories())


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def template_by_name(request, name: str):
    return Response(templates.template_detail(templates.get_template_by_name(name)))


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, CanView])
def template_detail(request, pk: int):
    if request.method == 'GET':
        return Response(templates.template_detail(templates.get_template(pk)))
    check(request, *MANAGE)
    if request.method == 'DELETE':
        return Response(templates.delete_template(pk, actor=request.user))
    s = PermissionTemplateSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    data = dict(s.validated_data)
    # system flag is fixed at creation
    data.pop('is_system', None)
    return Response(payloads.permission_template(templates.update_template(pk, data, actor=request.user)))


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, CanView])
def preset_collection(request):
    if request.method == 'GET':
        return Response([payloads.permission_preset(p) for p in templates.list_presets()])
    check(request, *MANAGE)
    s = PermissionPresetSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = dict(s.validated_data)
    v.pop('is_active', None)
    preset = templates.create_preset(**v, actor=request.user)
    return Response(payloads.permission_preset(preset), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, CanView])
def preset_detail(request, pk: int):
    if request.method == 'GET':
        return Response(payloads.permission_preset(templates.get_preset(pk)))
    check(request, *MANAGE)
    if request.method == 'DELETE':
        return Response(templates.delete_preset(pk, actor=request.user))
    s = PermissionPresetSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    return Response(payloads.permission_preset(templates.update_preset(pk, s.validated_data, actor=request.user)))


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def preset_permissions(request, pk: int):
    return Response({'presetId': pk, 'permissions': templates.preset_permissions(pk)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, requires('manage_permissions', 'manage_users')])
def apply_template(request):
    s = ApplyTemplateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    codes = templates.apply_to_user(v['user_pk'], template_pk=v['template_pk'], preset_pk=v['preset_pk'],
                                    replace=v['replace'], actor=request.user)
    return Response({'userId': v['user_pk'], 'direct': codes})
