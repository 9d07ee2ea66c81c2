"""
Cash office endpoints.  Every write requires the caller to be a cashier
(see ``clinic.services.cash_office.ensure_cashier``); petty cash
decisions need one of the approver roles instead.
"""
from __future__ import annotations

from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.auth_views import staff_for_request
from clinic.serializers.billing import (
    CashListQuerySerializer, CashPaymentSerializer, CashTransactionSerializer, DayQuerySerializer,
    PeriodQuerySerializer, PettyCashListQuerySerializer, PettyCashSerializer, RejectionSerializer,
)
from clinic.serializers.fields import DateRangeQuerySerializer
from clinic.services import cash_office, payloads


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def cash_transactions(request):
    cashier = cash_office.ensure_cashier(staff_for_request(request))
    if request.method == 'GET':
        q = CashListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        return Response([payloads.cash_transaction(t) for t in cash_office.list_cash_transactions(**q.validated_data)])

    s = CashTransactionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    txn = cash_office.create_cash_transaction(cashier, **s.validated_data)
    return Response(payloads.cash_transaction(txn), status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cash_invoice_payment(request):
    s = CashPaymentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = dict(s.validated_data)
    result = cash_office.process_invoice_payment(staff_for_request(request), v.pop('invoice_pk'), **v)
    return Response({
        'payment': payloads.payment(result['payment']),
        'invoice': payloads.invoice(result['invoice']),
        'cashTransaction': payloads.cash_transaction(result['cashTransaction']),
        'message': result['message'],
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def cash_summary(request):
    cash_office.ensure_cashier(staff_for_request(request))
    q = DateRangeQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return Response(cash_office.cash_summary(q.validated_data.get('start'), q.validated_data.get('end')))


# ---------------------------------------------------------------------
# Petty cash
# ---------------------------------------------------------------------
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def petty_cash_collection(request):
    member = staff_for_request(request)
    if request.method == 'GET':
        cash_office.ensure_cash_office_staff(member)
        q = PettyCashListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        return Response([payloads.petty_cash(r) for r in cash_office.list_petty_cash_requests(**q.validated_data)])

    s = PettyCashSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    req = cash_office.create_petty_cash_request(member, **s.validated_data)
    return Response(payloads.petty_cash(req), status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def petty_cash_pending(request):
    cash_office.ensure_cash_office_staff(staff_for_request(request))
    return Response([payloads.petty_cash(r) for r in cash_office.pending_petty_cash_requests()])


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def petty_cash_detail(request, pk: int):
    member = staff_for_request(request)
    req = cash_office.get_petty_cash_request(pk)
    # requesters may follow their own request
    if member is None or req.requester_id != member.pk:
        cash_office.ensure_cash_office_staff(member)
    return Response(payloads.petty_cash(req))


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def petty_cash_approve(request, pk: int):
    req = cash_office.approve_petty_cash_request(pk, staff_for_request(request))
    return Response(payloads.petty_cash(req))


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def petty_cash_reject(request, pk: int):
    s = RejectionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    req = cash_office.reject_petty_cash_request(pk, staff_for_request(request), s.validated_data['reason'])
    return Response(payloads.petty_cash(req))


# ---------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def cash_reconciliation(request):
    cash_office.ensure_cash_office_staff(staff_for_request(request))
    q = DayQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return Response(cash_office.daily_reconciliation(q.validated_data['date'] or timezone.localdate()))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def cashier_shift_report(request):
    member = cash_office.ensure_cash_office_staff(staff_for_request(request))
    q = DayQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    cashier_pk = q.validated_data.get('cashier_pk') or member.pk
    if cashier_pk != member.pk:
        # another cashier's shift is for approvers only
        cash_office.ensure_petty_cash_approver(member)
    day = q.validated_data['date'] or timezone.localdate()
    return Response(cash_office.cashier_shift_report(cashier_pk, day))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def cash_statistics(request):
    cash_office.ensure_cash_office_staff(staff_for_request(request))
    q = PeriodQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return Response(cash_office.cash_office_statistics(**q.validated_data))
