"""
Service categories and billable services.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import check, requires
from clinic.serializers.administration import (
    CategorySerializer, PriceSerializer, ServiceListQuerySerializer, ServiceSerializer,
)
from clinic.services import catalog, payloads

MANAGE = ('manage_services', 'system_configuration')
CanManage = requires(*MANAGE)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def category_collection(request):
    if request.method == 'GET':
        raw = request.query_params.get('isActive')
        is_active = None if raw is None else raw.lower() in ('1', 'true', 'yes')
        return Response(catalog.list_categories(is_active=is_active))
    check(request, *MANAGE)
    s = CategorySerializer(data=request.data)
    s.is_valid(raise_exception=True)
    cat = catalog.create_category(name=s.validated_data['name'], description=s.validated_data['description'])
    return Response(payloads.service_category(cat), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def category_detail(request, pk: int):
    if request.method == 'GET':
        return Response(payloads.service_category(catalog.get_category(pk)))
    check(request, *MANAGE)
    if request.method == 'DELETE':
        return Response(catalog.deactivate_category(pk))
    s = CategorySerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    return Response(payloads.service_category(catalog.update_category(pk, s.validated_data)))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def category_services(request, pk: int):
    return Response([payloads.service(svc) for svc in catalog.services_by_category(pk)])


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def service_collection(request):
    if request.method == 'GET':
        q = ServiceListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        return Response([payloads.service(svc) for svc in catalog.list_services(**q.validated_data)])
    check(request, *MANAGE)
    s = ServiceSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return Response(payloads.service(catalog.create_service(s.validated_data)), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def service_detail(request, pk: int):
    if request.method == 'GET':
        return Response(payloads.service(catalog.get_service(pk)))
    check(request, *MANAGE)
    if request.method == 'DELETE':
        return Response(catalog.deactivate_service(pk))
    s = ServiceSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    return Response(payloads.service(catalog.update_service(pk, s.validated_data)))


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, CanManage])
def service_price(request, pk: int):
    s = PriceSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return Response(payloads.service(catalog.update_price(pk, s.validated_data['price'])))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def services_pre_payment(request):
    return Response([payloads.service(svc) for svc in catalog.services_requiring_pre_payment()])
