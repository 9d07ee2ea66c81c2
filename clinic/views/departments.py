from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import check, requires
from clinic.serializers.administration import DepartmentListQuerySerializer, DepartmentSerializer
from clinic.services import departments, payloads

MANAGE = ('manage_departments', 'system_configuration')
CanView = requires('view_departments', *MANAGE)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, CanView])
def department_collection(request):
    if request.method == 'GET':
        q = DepartmentListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        v = q.validated_data
        return Response(departments.list_departments(
            is_active=v.get('isActive'), search=v.get('search'), sort_by=v.get('sortBy'),
            sort_order=v.get('sortOrder'), page=v.get('page'), limit=v.get('limit'),
        ))

    check(request, *MANAGE)
    s = DepartmentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    dept = departments.create_department(s.validated_data)
    return Response(payloads.department(dept), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, CanView])
def department_detail(request, pk: int):
    if request.method == 'GET':
        return Response(payloads.department(departments.get_department(pk)))
    check(request, *MANAGE)
    if request.method == 'DELETE':
        return Response(departments.delete_department(pk))
    s = DepartmentSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    return Response(payloads.department(departments.update_department(pk, s.validated_data)))


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def department_by_code(request, code: str):
    return Response(payloads.department(departments.get_department_by_code(code)))


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def department_stats(request, pk: int):
    return Response(departments.department_stats(pk))
