"""
Treatment endpoints.

Role permissions gate the endpoints; the care-team rules live in
``clinic.services.treatments``.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import check, requires
from clinic.serializers.clinical import (
    TransferSerializer, TreatmentLinkSerializer, TreatmentListQuerySerializer, TreatmentProviderSerializer,
    TreatmentSerializer, TreatmentStatusSerializer,
)
from clinic.services import payloads
from clinic.services import treatments as svc

CanView = requires('view_treatments', 'manage_treatments')
CanManage = requires('manage_treatments')


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, CanView])
def treatment_collection(request):
    if request.method == 'GET':
        q = TreatmentListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        return Response(svc.list_treatments(**q.validated_data))

    check(request, 'manage_treatments')
    s = TreatmentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    data = dict(s.validated_data)
    extra = data.pop('additional_providers', [])
    t = svc.create_treatment(data, additional_providers=extra)
    return Response(payloads.treatment(t, detail=True), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, CanView])
def treatment_detail(request, pk: int):
    if request.method == 'GET':
        return Response(payloads.treatment(svc.get_treatment(pk), detail=True))
    check(request, 'manage_treatments')
    if request.method == 'DELETE':
        return Response(svc.delete_treatment(pk, actor=request.user))

    s = TreatmentSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    t = svc.update_treatment(pk, s.validated_data, actor=request.user)
    return Response(payloads.treatment(t, detail=True))


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, CanManage])
def treatment_status(request, pk: int):
    s = TreatmentStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return Response(payloads.treatment(svc.update_status(pk, s.validated_data['status'], actor=request.user)))


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanManage])
def treatment_add_provider(request, pk: int):
    s = TreatmentProviderSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    member = svc.add_provider(pk, s.validated_data['providerId'], s.validated_data['role'], actor=request.user)
    return Response(payloads.treatment_provider(member), status=status.HTTP_201_CREATED)


@api_view(['DELETE'])
@permission_classes([IsAuthenticated, CanManage])
def treatment_remove_provider(request, pk: int, provider_pk: int):
    return Response(svc.remove_provider(pk, provider_pk, actor=request.user))


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def treatment_links(request, pk: int):
    return Response(svc.links(pk))


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanManage])
def link_collection(request):
    s = TreatmentLinkSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    link = svc.create_link(from_pk=v['fromTreatmentId'], to_pk=v['toTreatmentId'], link_type=v['linkType'],
                           reason=v['linkReason'], notes=v['notes'], actor=request.user)
    return Response(payloads.treatment_link(link), status=status.HTTP_201_CREATED)


@api_view(['DELETE'])
@permission_classes([IsAuthenticated, CanManage])
def link_detail(request, link_pk: int):
    return Response(svc.delete_link(link_pk, actor=request.user))


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanManage])
def treatment_transfer(request, pk: int):
    s = TransferSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    t = svc.transfer(pk, v['newProviderId'], reason=v['reason'], notes=v['notes'], actor=request.user)
    return Response(payloads.treatment(t, detail=True))
