"""
Cash office: till transactions, cash payments against invoices, petty
cash requests and the daily/shift/period cash reports.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from clinic.exceptions import Conflict
from clinic.models import CashTransaction, Patient, PettyCashRequest, StaffMember
from clinic.services import access, billing, numbering, payloads
from clinic.services.audit import log_action

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')


def _holds_role(staff: StaffMember, roles) -> bool:
    allowed = {r.upper() for r in roles}
    held = staff.role_assignments.filter(is_active=True, role__is_active=True).values_list('role__name', flat=True)
    return any(name.upper() in allowed for name in held)


def ensure_cashier(staff: Optional[StaffMember]) -> StaffMember:
    """The staff member must hold a cash-handling role or be an admin."""
    if staff is None:
        raise PermissionDenied('Only staff members can handle cash transactions')
    if access.is_admin(staff.user):
        return staff
    if not _holds_role(staff, settings.HMS_CASH_ROLES):
        raise PermissionDenied('Insufficient permissions to handle cash transactions')
    return staff


def create_cash_transaction(cashier: Optional[StaffMember], *, transaction_type: str, amount,
                            description: str, patient_pk=None, invoice=None,
                            payment_method: str = 'CASH') -> CashTransaction:
    ensure_cashier(cashier)
    amount = Decimal(str(amount))
    if amount <= 0:
        raise ValidationError({'amount': 'Amount must be greater than zero'})
    patient = None
    if patient_pk is not None:
        patient = Patient.objects.filter(pk=patient_pk).first()
        if not patient:
            raise NotFound('Patient not found')
    txn = CashTransaction.objects.create(
        cashier=cashier,
        patient=patient or (invoice.patient if invoice is not None else None),
        invoice=invoice,
        transaction_type=transaction_type,
        amount=amount,
        description=description,
        reference_number=numbering.cash_reference(),
        payment_method=payment_method,
    )
    log_action(user=cashier.user, action='cash_transaction', object_type='cash_transaction', object_id=txn.pk,
               detail={'type': transaction_type, 'amount': str(amount), 'reference': txn.reference_number})
    logger.info('%s %s recorded by %s as %s', transaction_type, amount, cashier.employee_id, txn.reference_number)
    return txn


def process_invoice_payment(cashier: Optional[StaffMember], invoice_pk, *, amount, reference: str = '',
                            notes: str = '') -> Dict[str, Any]:
    """Take a cash payment and record the matching CASH_IN in one transaction."""
    ensure_cashier(cashier)
    with transaction.atomic():
        result = billing.process_payment(
            invoice_pk, amount=amount, method='CASH', reference=reference, notes=notes, actor=cashier.user,
        )
        inv = result['invoice']
        txn = create_cash_transaction(
            cashier,
            transaction_type=CashTransaction.TYPE_CASH_IN,
            amount=result['payment'].amount,
            description=f'Payment for Invoice {inv.invoice_number}',
            invoice=inv,
        )
    result['cashTransaction'] = txn
    return result


def list_cash_transactions(*, transaction_type: Optional[str] = None, cashier_pk=None,
                           start=None, end=None) -> List[CashTransaction]:
    qs = CashTransaction.objects.select_related('cashier__user', 'patient', 'invoice')
    if transaction_type:
        qs = qs.filter(transaction_type=transaction_type)
    if cashier_pk:
        qs = qs.filter(cashier_id=cashier_pk)
    if start:
        qs = qs.filter(transaction_date__gte=start)
    if end:
        qs = qs.filter(transaction_date__lte=end)
    return list(qs.order_by('-transaction_date', '-id'))


def cash_summary(start=None, end=None) -> Dict[str, Any]:
    if start is None:
        start = timezone.now().replace(hour=0, minute=0, second=0, microsecond=0)
    qs = CashTransaction.objects.filter(transaction_date__gte=start)
    if end:
        qs = qs.filter(transaction_date__lte=end)
    cash_in = qs.filter(transaction_type=CashTransaction.TYPE_CASH_IN).aggregate(s=Sum('amount'))['s'] or ZERO
    cash_out = qs.filter(transaction_type=CashTransaction.TYPE_CASH_OUT).aggregate(s=Sum('amount'))['s'] or ZERO
    return {
        'period': {'startDate': start, 'endDate': end},
        'cashIn': cash_in,
        'cashOut': cash_out,
        'net': cash_in - cash_out,
        'count': qs.count(),
    }


# ---------------------------------------------------------------------
# Petty cash
# ---------------------------------------------------------------------
def ensure_petty_cash_approver(staff: Optional[StaffMember]) -> StaffMember:
    if staff is None or not (
        access.is_admin(staff.user) or _holds_role(staff, settings.HMS_PETTY_CASH_APPROVER_ROLES)
    ):
        raise PermissionDenied('Approver not authorized to decide petty cash requests')
    return staff


def ensure_cash_office_staff(staff: Optional[StaffMember]) -> StaffMember:
    """Cashiers and petty cash approvers may read the office reports."""
    if staff is not None and _holds_role(staff, settings.HMS_PETTY_CASH_APPROVER_ROLES):
        return staff
    return ensure_cashier(staff)


def create_petty_cash_request(requester: Optional[StaffMember], *, amount, purpose: str, description: str = '',
                              expected_date: Optional[date] = None, notes: str = '') -> PettyCashRequest:
    if requester is None:
        raise PermissionDenied('Only staff members can request petty cash')
    amount = Decimal(str(amount))
    if amount <= 0:
        raise ValidationError({'amount': 'Amount must be greater than zero'})
    req = PettyCashRequest.objects.create(
        requester=requester, amount=amount, purpose=purpose, description=description or '',
        expected_date=expected_date, notes=notes or '',
    )
    log_action(user=requester.user, action='petty_cash_request', object_type='petty_cash', object_id=req.pk,
               detail={'amount': str(amount), 'purpose': purpose})
    logger.info('petty cash request %s for %s by %s', req.pk, amount, requester.employee_id)
    return req


def get_petty_cash_request(pk) -> PettyCashRequest:
    req = PettyCashRequest.objects.select_related('requester__user', 'approver__user').filter(pk=pk).first()
    if not req:
        raise NotFound('Petty cash request not found')
    return req


def _pending_request(pk) -> PettyCashRequest:
    req = PettyCashRequest.objects.select_for_update().filter(pk=pk).first()
    if not req:
        raise NotFound('Petty cash request not found')
    if req.status != PettyCashRequest.STATUS_PENDING:
        raise Conflict('Petty cash request is not in pending status')
    return req


def approve_petty_cash_request(pk, approver: Optional[StaffMember]) -> PettyCashRequest:
    ensure_petty_cash_approver(approver)
    with transaction.atomic():
        req = _pending_request(pk)
        req.status = PettyCashRequest.STATUS_APPROVED
        req.approver = approver
        req.approved_at = timezone.now()
        req.save(update_fields=['status', 'approver', 'approved_at', 'updated_at'])
        log_action(user=approver.user, action='petty_cash_approve', object_type='petty_cash', object_id=req.pk,
                   detail={'amount': str(req.amount)})
    logger.info('petty cash request %s approved by %s', req.pk, approver.employee_id)
    return get_petty_cash_request(req.pk)


def reject_petty_cash_request(pk, approver: Optional[StaffMember], reason: str) -> PettyCashRequest:
    ensure_petty_cash_approver(approver)
    if not (reason or '').strip():
        raise ValidationError({'reason': 'A rejection reason is required'})
    with transaction.atomic():
        req = _pending_request(pk)
        req.status = PettyCashRequest.STATUS_REJECTED
        req.approver = approver
        req.rejected_at = timezone.now()
        req.rejection_reason = reason
        req.save(update_fields=['status', 'approver', 'rejected_at', 'rejection_reason', 'updated_at'])
        log_action(user=approver.user, action='petty_cash_reject', object_type='petty_cash', object_id=req.pk,
                   detail={'reason': reason})
    return get_petty_cash_request(req.pk)


def list_petty_cash_requests(*, requester_pk=None, status: Optional[str] = None,
                             start=None, end=None) -> List[PettyCashRequest]:
    qs = PettyCashRequest.objects.select_related('requester__user', 'approver__user')
    if requester_pk:
        qs = qs.filter(requester_id=requester_pk)
    if status:
        qs = qs.filter(status=status)
    if start:
        qs = qs.filter(request_date__gte=start)
    if end:
        qs = qs.filter(request_date__lte=end)
    return list(qs.order_by('-request_date', '-id'))


def pending_petty_cash_requests() -> List[PettyCashRequest]:
    """Oldest first, the order approvers work through them."""
    return list(
        PettyCashRequest.objects
        .filter(status=PettyCashRequest.STATUS_PENDING)
        .select_related('requester__user')
        .order_by('request_date', 'id')
    )


# ---------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------
def _day_bounds(first: date, last: Optional[date] = None) -> Tuple[datetime, datetime]:
    """Half-open ``[start, end)`` covering whole local days."""
    start = timezone.make_aware(datetime.combine(first, time.min))
    end = timezone.make_aware(datetime.combine(last or first, time.min)) + timedelta(days=1)
    return start, end


def _transactions_between(start: datetime, end: datetime, **filters) -> List[CashTransaction]:
    return list(
        CashTransaction.objects
        .filter(transaction_date__gte=start, transaction_date__lt=end, **filters)
        .select_related('cashier__user', 'patient')
        .order_by('transaction_date', 'id')
    )


def _split(txns: List[CashTransaction]) -> Tuple[List[CashTransaction], List[CashTransaction]]:
    cash_in = [t for t in txns if t.transaction_type == CashTransaction.TYPE_CASH_IN]
    cash_out = [t for t in txns if t.transaction_type == CashTransaction.TYPE_CASH_OUT]
    return cash_in, cash_out


def _total(txns) -> Decimal:
    return sum((t.amount for t in txns), ZERO)


def _row(t: CashTransaction, *, with_cashier: bool = True) -> Dict[str, Any]:
    row = {
        'id': t.id,
        'type': t.transaction_type,
        'amount': t.amount,
        'description': t.description,
        'referenceNumber': t.reference_number,
        'patientName': f'{t.patient.first_name} {t.patient.last_name}' if t.patient else 'N/A',
        'timestamp': t.transaction_date,
    }
    if with_cashier:
        row['cashierName'] = payloads.person_name(t.cashier)
    return row


def daily_reconciliation(day: date) -> Dict[str, Any]:
    txns = _transactions_between(*_day_bounds(day))
    cash_in, cash_out = _split(txns)
    total_in, total_out = _total(cash_in), _total(cash_out)
    return {
        'date': day,
        'summary': {
            'totalCashIn': total_in,
            'totalCashOut': total_out,
            'netCash': total_in - total_out,
            'transactionCount': len(txns),
        },
        'transactions': [_row(t) for t in txns],
    }


def cashier_shift_report(cashier_pk, day: date) -> Dict[str, Any]:
    cashier = StaffMember.objects.select_related('user').filter(pk=cashier_pk).first()
    if not cashier:
        raise NotFound('Cashier not found')
    txns = _transactions_between(*_day_bounds(day), cashier=cashier)
    cash_in, cash_out = _split(txns)
    total_in, total_out = _total(cash_in), _total(cash_out)
    return {
        'cashierId': cashier.pk,
        'cashierName': payloads.person_name(cashier),
        'date': day,
        'summary': {
            'totalCashIn': total_in,
            'totalCashOut': total_out,
            'netCashFlow': total_in - total_out,
            'transactionCount': len(txns),
            'cashInCount': len(cash_in),
            'cashOutCount': len(cash_out),
        },
        'transactions': [_row(t, with_cashier=False) for t in txns],
    }


def cash_office_statistics(start_date: date, end_date: date) -> Dict[str, Any]:
    if end_date < start_date:
        raise ValidationError({'endDate': 'End date must not be before start date'})
    start, end = _day_bounds(start_date, end_date)
    txns = _transactions_between(start, end)
    cash_in, cash_out = _split(txns)
    petty = PettyCashRequest.objects.filter(request_date__gte=start, request_date__lt=end)
    approved = petty.filter(status=PettyCashRequest.STATUS_APPROVED).aggregate(s=Sum('amount'))['s'] or ZERO
    pending = petty.filter(status=PettyCashRequest.STATUS_PENDING).aggregate(s=Sum('amount'))['s'] or ZERO
    total_in, total_out = _total(cash_in), _total(cash_out)

    by_cashier: Dict[int, Dict[str, Any]] = {}
    for t in txns:
        bucket = by_cashier.setdefault(t.cashier_id, {
            'cashierId': t.cashier_id,
            'cashierName': payloads.person_name(t.cashier),
            'cashIn': ZERO,
            'cashOut': ZERO,
            'transactionCount': 0,
        })
        key = 'cashIn' if t.transaction_type == CashTransaction.TYPE_CASH_IN else 'cashOut'
        bucket[key] += t.amount
        bucket['transactionCount'] += 1

    return {
        'period': {'startDate': start_date, 'endDate': end_date},
        'summary': {
            'totalCashIn': total_in,
            'totalCashOut': total_out,
            'totalPettyCash': approved,
            'pendingPettyCash': pending,
            'netCashFlow': total_in - total_out - approved,
            'transactionCount': len(txns),
            'pettyCashCount': petty.count(),
        },
        'breakdown': {
            'byCashier': sorted(by_cashier.values(), key=lambda b: b['cashierName']),
        },
    }
