"""
Patient registration, lookup and the patient financial views.

All handlers are thin: input is validated by the serializers in
``clinic.serializers.patients`` and the work happens in
``clinic.services.patients``.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import check, requires
from clinic.serializers.fields import DateRangeQuerySerializer
from clinic.serializers.patients import (
    PatientListQuerySerializer, PatientWriteSerializer, RegistrationFeeSerializer,
)
from clinic.services import billing, patients, payloads

CanView = requires('view_patients', 'edit_patients')
CanEdit = requires('edit_patients')


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, CanView])
def patient_collection(request):
    if request.method == 'GET':
        q = PatientListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        v = q.validated_data
        return Response(patients.list_patients(
            search=v.get('search'), is_active=v.get('isActive'),
            page=v.get('page'), limit=v.get('limit'),
            sort_by=v.get('sortBy'), sort_order=v.get('sortOrder'),
        ))

    check(request, 'edit_patients')
    s = PatientWriteSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    patient = patients.create_patient(s.validated_data, actor=request.user)
    return Response(payloads.patient(patient), status=status.HTTP_201_CREATED)

# ScopedRateThrottle looks the scope up on the wrapped view class
patient_collection.cls.throttle_scope = 'patient_write'


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, CanView])
def patient_detail(request, pk: int):
    if request.method == 'GET':
        return Response(payloads.patient(patients.get_patient(pk)))

    check(request, 'edit_patients')
    if request.method == 'DELETE':
        return Response(patients.deactivate_patient(pk, actor=request.user))

    s = PatientWriteSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    patient = patients.update_patient(pk, s.validated_data, actor=request.user)
    return Response(payloads.patient(patient))


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def patient_by_code(request, code: str):
    return Response(payloads.patient(patients.get_patient_by_code(code)))


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanEdit])
def patient_edit_form(request, pk: int):
    return Response(patients.patient_for_edit(pk))


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def patient_account(request, pk: int):
    return Response(patients.get_account_balance(pk))


@api_view(['GET'])
@permission_classes([IsAuthenticated, requires('view_patients', 'view_billing')])
def patient_financial_summary(request, pk: int):
    return Response(patients.financial_summary(pk))


@api_view(['GET'])
@permission_classes([IsAuthenticated, requires('view_patients', 'view_billing')])
def patient_outstanding(request, pk: int):
    return Response(patients.outstanding_balance(pk))


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def patient_activity(request, pk: int):
    try:
        days = max(int(request.query_params.get('days', 30)), 1)
    except ValueError:
        days = 30
    return Response(patients.recent_activity(pk, days=days))


@api_view(['GET'])
@permission_classes([IsAuthenticated, requires('view_patients', 'view_billing')])
def patient_billing_history(request, pk: int):
    q = DateRangeQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return Response(patients.billing_history(pk, q.validated_data.get('start'), q.validated_data.get('end')))


@api_view(['GET'])
@permission_classes([IsAuthenticated, requires('view_patients', 'view_billing')])
def patient_invoice_summary(request, pk: int):
    patients.get_patient(pk)
    return Response(billing.invoice_summary(pk))


@api_view(['POST'])
@permission_classes([IsAuthenticated, requires('manage_billing', 'edit_patients')])
def patient_registration_invoice(request, pk: int):
    s = RegistrationFeeSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = patients.create_registration_invoice(pk, s.validated_data.get('amount'), actor=request.user)
    return Response(result, status=status.HTTP_201_CREATED)
