"""
Laboratory endpoints: doctors order, technicians claim and process.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.auth_views import staff_for_request
from clinic.models import StaffMember
from clinic.permissions import check, requires
from clinic.serializers.billing import ReasonSerializer
from clinic.serializers.clinical import (
    AddLabTestSerializer, LabOrderCreateSerializer, LabOrderListQuerySerializer, LabResultSerializer,
    LabTestStatusQuerySerializer,
)
from clinic.services import lab, payloads

VIEW = ('view_lab', 'order_lab_tests', 'process_lab_tests')
CanView = requires(*VIEW)
CanProcess = requires('process_lab_tests')


def _technician(request) -> StaffMember:
    member = staff_for_request(request)
    if member is None:
        raise PermissionDenied('Only staff members can process lab tests')
    return member


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, CanView])
def order_collection(request):
    if request.method == 'GET':
        q = LabOrderListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        return Response([payloads.lab_order(o) for o in lab.list_lab_orders(**q.validated_data)])

    check(request, 'order_lab_tests')
    s = LabOrderCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    if v.get('doctorId'):
        doctor = StaffMember.objects.select_related('user').filter(pk=v['doctorId']).first()
    else:
        doctor = staff_for_request(request)
    order = lab.create_lab_order(doctor, patient_pk=v['patientId'], service_ids=v['serviceIds'], notes=v['notes'])
    return Response({
        'order': payloads.lab_order(order),
        'message': f'Lab order created successfully. Total amount: ${order.total_amount}. '
                   f'Invoice: {order.invoice.invoice_number}',
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def order_detail(request, pk: int):
    return Response(payloads.lab_order(lab.get_lab_order(pk)))


@api_view(['POST'])
@permission_classes([IsAuthenticated, requires('order_lab_tests')])
def order_cancel(request, pk: int):
    s = ReasonSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return Response(payloads.lab_order(lab.cancel_lab_order(pk, s.validated_data.get('reason'))))


@api_view(['POST'])
@permission_classes([IsAuthenticated, requires('order_lab_tests')])
def order_add_test(request, pk: int):
    s = AddLabTestSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    test = lab.add_test(pk, s.validated_data['serviceId'])
    order = lab.get_lab_order(pk)
    return Response({
        'test': payloads.lab_test(test),
        'message': f'Test added successfully. New total amount: ${order.total_amount}',
    }, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated, requires('manage_billing', 'process_payments')])
def order_mark_paid(request, pk: int):
    return Response(payloads.lab_order(lab.mark_lab_order_paid(pk)))


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanProcess])
def available_tests(request):
    q = LabTestStatusQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return Response([payloads.lab_test(t) for t in lab.available_tests(q.validated_data.get('status'))])


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanProcess])
def my_tests(request):
    q = LabTestStatusQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return Response([payloads.lab_test(t) for t in lab.my_tests(_technician(request), q.validated_data.get('status'))])


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanProcess])
def test_claim(request, pk: int):
    return Response(payloads.lab_test(lab.claim_test(pk, _technician(request))))


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanProcess])
def test_start(request, pk: int):
    return Response(payloads.lab_test(lab.start_test(pk, _technician(request))))


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanProcess])
def test_complete(request, pk: int):
    s = LabResultSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return Response(payloads.lab_test(lab.complete_test(pk, _technician(request), **s.validated_data)))


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanProcess])
def test_cancel(request, pk: int):
    s = ReasonSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    test = lab.cancel_test(pk, _technician(request), s.validated_data.get('reason') or '')
    return Response(payloads.lab_test(test))


@api_view(['GET'])
@permission_classes([IsAuthenticated, requires('view_patients', *VIEW)])
def patient_results(request, patient_pk: int):
    return Response(lab.patient_results(patient_pk))
