"""
Staff members, service providers and role management.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import check, requires
from clinic.serializers.administration import (
    RoleAssignmentSerializer, RoleSerializer, ServiceProviderFlagSerializer, StaffListQuerySerializer,
    StaffSerializer,
)
from clinic.services import payloads, staff

CanView = requires('view_staff', 'manage_staff')
CanViewRoles = requires('view_roles', 'manage_roles')
MANAGE_ROLES = ('manage_roles', 'system_configuration')


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, CanView])
def staff_collection(request):
    if request.method == 'GET':
        q = StaffListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        return Response(staff.list_staff(**q.validated_data))
    check(request, 'create_staff', 'manage_staff')
    s = StaffSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    member = staff.create_staff(s.validated_data, actor=request.user)
    return Response(payloads.staff(member), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, CanView])
def staff_detail(request, pk: int):
    if request.method == 'GET':
        return Response(payloads.staff(staff.get_staff(pk)))
    if request.method == 'DELETE':
        check(request, 'delete_staff', 'manage_staff')
        return Response(payloads.staff(staff.deactivate_staff(pk)))
    check(request, 'edit_staff', 'manage_staff')
    s = StaffSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    return Response(payloads.staff(staff.update_staff(pk, s.validated_data)))


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def staff_by_employee_id(request, employee_id: str):
    return Response(payloads.staff(staff.get_staff_by_employee_id(employee_id)))


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def staff_stats(request):
    return Response(staff.staff_stats())


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def staff_member_stats(request, pk: int):
    return Response(staff.member_stats(pk))


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, requires('edit_staff', 'manage_staff')])
def staff_service_provider(request, pk: int):
    s = ServiceProviderFlagSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return Response(payloads.staff(staff.set_service_provider(pk, s.validated_data['serviceProvider'])))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def service_providers(request):
    department = request.query_params.get('departmentId')
    members = staff.service_providers(
        department_pk=int(department) if department and department.isdigit() else None,
        specialization=request.query_params.get('specialization') or None,
    )
    return Response([payloads.staff(m) for m in members])


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def service_provider_stats(request):
    return Response(staff.service_provider_stats())


# ---------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, CanViewRoles])
def role_collection(request):
    if request.method == 'GET':
        raw = request.query_params.get('isActive')
        return Response(staff.list_roles(
            is_active=None if raw is None else raw.lower() in ('1', 'true', 'yes'),
            search=request.query_params.get('search') or None,
        ))
    check(request, *MANAGE_ROLES)
    s = RoleSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    role = staff.create_role(name=v['name'], description=v['description'], permissions=v['permissions'])
    return Response(payloads.role(role), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, CanViewRoles])
def role_detail(request, pk: int):
    if request.method == 'GET':
        return Response(payloads.role(staff.get_role(pk)))
    check(request, *MANAGE_ROLES)
    if request.method == 'DELETE':
        return Response(staff.delete_role(pk))
    s = RoleSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    return Response(payloads.role(staff.update_role(pk, s.validated_data)))


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, CanView])
def staff_role_collection(request, pk: int):
    if request.method == 'GET':
        return Response(staff.staff_roles(pk))
    check(request, *MANAGE_ROLES)
    s = RoleAssignmentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    assignment = staff.assign_role(pk, s.validated_data['roleId'], actor=request.user)
    return Response({'id': assignment.id, 'staffId': assignment.staff_id, 'role': payloads.role(assignment.role),
                     'assignedBy': assignment.assigned_by}, status=status.HTTP_201_CREATED)


@api_view(['DELETE'])
@permission_classes([IsAuthenticated, requires(*MANAGE_ROLES)])
def staff_role_remove(request, pk: int, role_pk: int):
    return Response(staff.remove_role(pk, role_pk, actor=request.user))
