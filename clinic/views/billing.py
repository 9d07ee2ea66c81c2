"""
Invoice, payment and refund endpoints.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import check, requires
from clinic.serializers.billing import (
    ChargeSerializer, InvoiceCreateSerializer, InvoiceListQuerySerializer, InvoiceUpdateSerializer,
    PaymentSerializer, ReasonSerializer, RefundSerializer,
)
from clinic.serializers.fields import DateRangeQuerySerializer
from clinic.services import billing, payloads

CanView = requires('view_billing', 'manage_billing')
CanManage = requires('manage_billing')


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, CanView])
def invoice_collection(request):
    if request.method == 'GET':
        q = InvoiceListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        return Response([payloads.invoice(i) for i in billing.list_invoices(**q.validated_data)])

    check(request, 'manage_billing')
    s = InvoiceCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    inv = billing.create_invoice(actor=request.user, **s.validated_data)
    return Response(payloads.invoice(inv, detail=True), status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH'])
@permission_classes([IsAuthenticated, CanView])
def invoice_detail(request, pk: int):
    if request.method == 'GET':
        return Response(payloads.invoice(billing.get_invoice(pk), detail=True))
    check(request, 'manage_billing')
    s = InvoiceUpdateSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    return Response(payloads.invoice(billing.update_invoice(pk, **s.validated_data), detail=True))


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def invoice_by_number(request, number: str):
    return Response(payloads.invoice(billing.get_invoice_by_number(number), detail=True))


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanManage])
def invoice_add_charge(request, pk: int):
    s = ChargeSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return Response(payloads.charge(billing.add_charge(pk, s.validated_data)), status=status.HTTP_201_CREATED)


@api_view(['DELETE'])
@permission_classes([IsAuthenticated, CanManage])
def invoice_remove_charge(request, pk: int, charge_pk: int):
    return Response(billing.remove_charge(pk, charge_pk))


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanManage])
def invoice_finalize(request, pk: int):
    return Response(payloads.invoice(billing.finalize_invoice(pk), detail=True))


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanManage])
def invoice_cancel(request, pk: int):
    s = ReasonSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    inv = billing.cancel_invoice(pk, s.validated_data.get('reason'), actor=request.user)
    return Response(payloads.invoice(inv))


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, requires('process_payments', 'view_billing')])
def invoice_payments(request, pk: int):
    if request.method == 'GET':
        return Response(billing.payment_history(pk))
    check(request, 'process_payments')
    s = PaymentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = billing.process_payment(pk, actor=request.user, **s.validated_data)
    return Response({
        'payment': payloads.payment(result['payment']),
        'invoice': payloads.invoice(result['invoice']),
        'message': result['message'],
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def invoice_payment_status(request, pk: int):
    return Response(billing.payment_status_for_service(pk))


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def payment_detail(request, pk: int):
    return Response(payloads.payment(billing.get_payment(pk)))


@api_view(['POST'])
@permission_classes([IsAuthenticated, requires('process_refunds')])
def payment_refund(request, pk: int):
    s = RefundSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = billing.process_refund(pk, actor=request.user, **s.validated_data)
    return Response({'refund': payloads.refund(result['refund']), 'message': result['message']},
                    status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, requires('view_billing_analytics', 'manage_billing')])
def analytics(request):
    q = DateRangeQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    start, end = q.validated_data.get('start'), q.validated_data.get('end')
    if not (start and end):
        raise ValidationError('startDate and endDate are required')
    return Response(billing.billing_analytics(start, end))
