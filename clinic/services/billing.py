"""
Invoicing, payments and refunds.

Invoice lifecycle::

    DRAFT -> PENDING -> PARTIAL / PAID
    PENDING, PARTIAL -> OVERDUE (due date passed)
    anything but PAID -> CANCELLED

``balance`` is always ``total_amount - paid_amount``.  Every payment
credits the patient account and every refund debits it.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from django.db import transaction
from django.db.models import Q, Sum
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from clinic.exceptions import Conflict
from clinic.models import Charge, Invoice, Patient, Payment, Refund, Service
from clinic.services import numbering, payloads
from clinic.services.audit import actor_name, log_action
from clinic.services.events import broadcast

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')
EDITABLE_STATUSES = (Invoice.STATUS_DRAFT, Invoice.STATUS_PENDING)
ANALYTICS_STATUSES = (
    Invoice.STATUS_DRAFT, Invoice.STATUS_PENDING, Invoice.STATUS_PARTIAL, Invoice.STATUS_PAID, Invoice.STATUS_OVERDUE,
)


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal('0.01'))


def _build_charge(inv: Invoice, item: Dict[str, Any]) -> Charge:
    service = None
    if item.get('service_id') is not None:
        service = Service.objects.filter(pk=item['service_id']).first()
        if not service:
            raise NotFound(f"Service with ID {item['service_id']} not found")
    quantity = int(item.get('quantity') or 1)
    if item.get('unit_price') is not None:
        unit_price = _money(item['unit_price'])
    elif service is not None:
        unit_price = service.current_price
    else:
        raise ValidationError({'unitPrice': 'A unit price is required for charges without a service.'})
    return Charge(
        invoice=inv,
        service=service,
        description=item.get('description') or (service.name if service else ''),
        quantity=quantity,
        unit_price=unit_price,
        total_price=unit_price * quantity,
    )


def create_invoice(*, patient_pk, charges: Iterable[Dict[str, Any]] = (), status: str = Invoice.STATUS_DRAFT,
                   due_date: Optional[datetime] = None, notes: str = '', invoice_number: Optional[str] = None,
                   actor=None) -> Invoice:
    patient = Patient.objects.filter(pk=patient_pk).first()
    if not patient:
        raise NotFound('Patient not found')
    with transaction.atomic():
        inv = Invoice.objects.create(
            invoice_number=invoice_number or numbering.invoice_number(),
            patient=patient,
            status=status,
            due_date=due_date,
            notes=notes or '',
        )
        rows = [_build_charge(inv, item) for item in charges]
        Charge.objects.bulk_create(rows)
        total = sum((c.total_price for c in rows), ZERO)
        inv.total_amount = total
        inv.balance = total
        inv.save(update_fields=['total_amount', 'balance', 'updated_at'])
        log_action(user=actor, action='invoice_create', object_type='invoice', object_id=inv.pk,
                   detail={'invoiceNumber': inv.invoice_number, 'total': str(total)})
    return inv


def list_invoices(*, patient_pk=None, status: Optional[str] = None, start=None, end=None,
                  search: Optional[str] = None) -> List[Invoice]:
    qs = Invoice.objects.select_related('patient')
    if patient_pk:
        qs = qs.filter(patient_id=patient_pk)
    if status:
        qs = qs.filter(status=status)
    if start:
        qs = qs.filter(issued_date__gte=start)
    if end:
        qs = qs.filter(issued_date__lte=end)
    if search:
        qs = qs.filter(
            Q(invoice_number__icontains=search)
            | Q(patient__first_name__icontains=search)
            | Q(patient__last_name__icontains=search)
            | Q(patient__patient_id__icontains=search)
        )
    return list(qs.order_by('-created_at', '-id'))


def get_invoice(pk) -> Invoice:
    inv = Invoice.objects.select_related('patient').filter(pk=pk).first()
    if not inv:
        raise NotFound('Invoice not found')
    return inv


def get_invoice_by_number(number: str) -> Invoice:
    inv = Invoice.objects.select_related('patient').filter(invoice_number=number).first()
    if not inv:
        raise NotFound('Invoice not found')
    return inv


def update_invoice(pk, *, status: Optional[str] = None, due_date=None, notes: Optional[str] = None) -> Invoice:
    """Only status, due date and notes are editable here."""
    inv = get_invoice(pk)
    fields = []
    if status is not None:
        inv.status = status
        fields.append('status')
    if due_date is not None:
        inv.due_date = due_date
        fields.append('due_date')
    if notes is not None:
        inv.notes = notes
        fields.append('notes')
    if fields:
        inv.save(update_fields=fields + ['updated_at'])
    return inv


def add_charge(invoice_pk, item: Dict[str, Any]) -> Charge:
    with transaction.atomic():
        inv = Invoice.objects.select_for_update().filter(pk=invoice_pk).first()
        if not inv:
            raise NotFound('Invoice not found')
        if inv.status not in EDITABLE_STATUSES:
            raise Conflict('Cannot add charges to a finalized invoice')
        charge = _build_charge(inv, item)
        charge.save()
        inv.total_amount += charge.total_price
        inv.balance += charge.total_price
        inv.save(update_fields=['total_amount', 'balance', 'updated_at'])
    return charge


def remove_charge(invoice_pk, charge_pk) -> Dict[str, str]:
    with transaction.atomic():
        inv = Invoice.objects.select_for_update().filter(pk=invoice_pk).first()
        if not inv:
            raise NotFound('Invoice not found')
        charge = inv.charges.filter(pk=charge_pk).first()
        if not charge:
            raise NotFound('Charge not found')
        if inv.status not in EDITABLE_STATUSES:
            raise Conflict('Cannot remove charges from a finalized invoice')
        inv.total_amount -= charge.total_price
        inv.balance -= charge.total_price
        inv.save(update_fields=['total_amount', 'balance', 'updated_at'])
        charge.delete()
    return {'message': 'Charge removed successfully'}


def finalize_invoice(pk) -> Invoice:
    inv = get_invoice(pk)
    if inv.status != Invoice.STATUS_DRAFT:
        raise Conflict('Only draft invoices can be finalized')
    if not inv.charges.exists():
        raise Conflict('Cannot finalize invoice without charges')
    inv.status = Invoice.STATUS_PENDING
    inv.issued_date = timezone.now()
    inv.save(update_fields=['status', 'issued_date', 'updated_at'])
    return inv


def cancel_invoice(pk, reason: Optional[str] = None, *, actor=None) -> Invoice:
    inv = get_invoice(pk)
    if inv.status == Invoice.STATUS_PAID:
        raise Conflict('Cannot cancel a paid invoice')
    inv.status = Invoice.STATUS_CANCELLED
    if reason:
        inv.notes = f"{inv.notes or ''}\nCancelled: {reason}".strip()
    inv.save(update_fields=['status', 'notes', 'updated_at'])
    log_action(user=actor, action='invoice_cancel', object_type='invoice', object_id=inv.pk,
               detail={'reason': reason or ''})
    return inv


def invoice_summary(patient_pk) -> Dict[str, Any]:
    invoices = list(Invoice.objects.filter(patient_id=patient_pk).select_related('patient').order_by('-issued_date'))
    now = timezone.now()
    return {
        'invoices': [payloads.invoice(i) for i in invoices],
        'summary': {
            'totalInvoices': len(invoices),
            'totalOutstanding': sum(
                (i.balance for i in invoices if i.status in Invoice.OUTSTANDING_STATUSES), ZERO
            ),
            'totalPaid': sum((i.total_amount for i in invoices if i.status == Invoice.STATUS_PAID), ZERO),
            'pendingInvoices': sum(1 for i in invoices if i.status == Invoice.STATUS_PENDING),
            'overdueInvoices': sum(
                1 for i in invoices
                if i.status == Invoice.STATUS_OVERDUE
                or (i.status == Invoice.STATUS_PENDING and i.due_date and i.due_date < now)
            ),
        },
    }


# ---------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------
def process_payment(invoice_pk, *, amount, method: str, reference: str = '', notes: str = '',
                    actor=None) -> Dict[str, Any]:
    from clinic.services import lab, patients

    amount = _money(amount)
    with transaction.atomic():
        inv = Invoice.objects.select_for_update().filter(pk=invoice_pk).first()
        if not inv:
            raise NotFound('Invoice not found')
        if inv.status == Invoice.STATUS_PAID:
            raise Conflict('Invoice is already fully paid')
        if inv.status == Invoice.STATUS_CANCELLED:
            raise Conflict('Cannot process payment for cancelled invoice')
        if amount <= 0:
            raise ValidationError({'amount': 'Payment amount must be greater than zero'})
        if amount > inv.balance:
            raise ValidationError(
                {'amount': f'Payment amount (${amount}) exceeds remaining balance (${inv.balance})'}
            )

        payment = Payment.objects.create(
            invoice=inv,
            patient_id=inv.patient_id,
            amount=amount,
            method=method,
            reference=reference or '',
            notes=notes or '',
            processed_by=actor_name(actor),
            status=Payment.STATUS_COMPLETED,
        )
        inv.paid_amount += amount
        inv.balance = inv.total_amount - inv.paid_amount
        if inv.balance == 0:
            inv.status = Invoice.STATUS_PAID
            inv.paid_date = timezone.now()
        else:
            inv.status = Invoice.STATUS_PARTIAL
        inv.save(update_fields=['paid_amount', 'balance', 'status', 'paid_date', 'updated_at'])

        patients.adjust_account_balance(inv.patient_id, amount)
        if inv.status == Invoice.STATUS_PAID:
            lab.mark_lab_order_paid_by_invoice(inv.pk)
        log_action(user=actor, action='payment', object_type='invoice', object_id=inv.pk,
                   detail={'paymentId': payment.pk, 'amount': str(amount), 'method': method})

    logger.info('payment %s of %s recorded on %s (%s)', payment.pk, amount, inv.invoice_number, inv.status)
    event = {
        'invoiceId': inv.pk, 'invoiceNumber': inv.invoice_number,
        'status': inv.status, 'balance': str(inv.balance),
    }
    # callers such as the cash office may still roll the payment back
    transaction.on_commit(lambda: broadcast('invoice.payment', event))
    return {
        'payment': payment,
        'invoice': inv,
        'message': f'Payment processed successfully. New balance: ${inv.balance}',
    }


def payment_status_for_service(invoice_pk) -> Dict[str, Any]:
    inv = get_invoice(invoice_pk)
    if inv.status == Invoice.STATUS_PAID:
        return {'canProceed': True, 'message': 'Invoice fully paid. Service can proceed.',
                'paymentStatus': inv.status, 'balance': ZERO}
    if inv.status == Invoice.STATUS_PARTIAL:
        return {
            'canProceed': False,
            'message': f'Partial payment received. Outstanding balance: ${inv.balance}. '
                       'Full payment required before service.',
            'paymentStatus': inv.status,
            'balance': inv.balance,
        }
    if inv.status == Invoice.STATUS_PENDING:
        return {
            'canProceed': False,
            'message': f'Payment required before service. Total amount due: ${inv.total_amount}',
            'paymentStatus': inv.status,
            'balance': inv.total_amount,
        }
    return {
        'canProceed': False,
        'message': f'Invoice status: {inv.status}. Payment verification required.',
        'paymentStatus': inv.status,
        'balance': inv.balance,
    }


def payment_history(invoice_pk) -> Dict[str, Any]:
    inv = get_invoice(invoice_pk)
    payments = list(inv.payments.order_by('-processed_at'))
    return {
        'invoice': {
            'id': inv.id,
            'invoiceNumber': inv.invoice_number,
            'totalAmount': inv.total_amount,
            'paidAmount': inv.paid_amount,
            'balance': inv.balance,
            'status': inv.status,
        },
        'payments': [payloads.payment(p) for p in payments],
        'summary': {
            'totalPayments': len(payments),
            'totalAmountPaid': inv.paid_amount,
            'remainingBalance': inv.balance,
            'paymentStatus': inv.status,
        },
    }


def get_payment(pk) -> Payment:
    payment = Payment.objects.select_related('invoice').filter(pk=pk).first()
    if not payment:
        raise NotFound('Payment not found')
    return payment


def process_refund(payment_pk, *, amount, reason: str, notes: str = '', actor=None) -> Dict[str, Any]:
    from clinic.services import patients

    amount = _money(amount)
    with transaction.atomic():
        payment = Payment.objects.select_for_update().filter(pk=payment_pk).first()
        if not payment:
            raise NotFound('Payment not found')
        if payment.status != Payment.STATUS_COMPLETED:
            raise Conflict('Can only refund completed payments')
        if amount <= 0:
            raise ValidationError({'amount': 'Refund amount must be greater than zero'})
        already = (
            Refund.objects.filter(payment=payment, status='APPROVED').aggregate(s=Sum('amount'))['s'] or ZERO
        )
        refundable = payment.amount - already
        if amount > refundable:
            raise ValidationError(
                {'amount': f'Refund amount (${amount}) exceeds the refundable amount (${refundable}) '
                           'of this payment'}
            )

        refund = Refund.objects.create(
            payment=payment,
            patient_id=payment.patient_id,
            invoice_id=payment.invoice_id,
            amount=amount,
            reason=reason,
            notes=notes or '',
            status='APPROVED',
            approved_by=actor_name(actor),
            approved_at=timezone.now(),
        )
        if amount == refundable:
            payment.status = Payment.STATUS_REFUNDED
            payment.save(update_fields=['status'])

        inv = Invoice.objects.select_for_update().get(pk=payment.invoice_id)
        inv.paid_amount -= amount
        inv.balance = inv.total_amount - inv.paid_amount
        inv.status = Invoice.STATUS_PARTIAL if inv.paid_amount > 0 else Invoice.STATUS_PENDING
        inv.paid_date = None
        inv.save(update_fields=['paid_amount', 'balance', 'status', 'paid_date', 'updated_at'])

        patients.adjust_account_balance(payment.patient_id, -amount)
        log_action(user=actor, action='refund', object_type='payment', object_id=payment.pk,
                   detail={'refundId': refund.pk, 'amount': str(amount), 'reason': reason})

    logger.info('refund %s of %s on payment %s', refund.pk, amount, payment.pk)
    return {
        'refund': refund,
        'message': f'Refund processed successfully. Amount: ${amount}',
    }


def billing_analytics(start, end) -> Dict[str, Any]:
    invoices = list(
        Invoice.objects.filter(issued_date__gte=start, issued_date__lte=end)
        .exclude(status=Invoice.STATUS_CANCELLED)
        .select_related('patient')
        .order_by('-issued_date')
    )
    total_invoiced = sum((i.total_amount for i in invoices), ZERO)
    total_paid = sum((i.paid_amount for i in invoices), ZERO)
    breakdown: Dict[str, int] = dict.fromkeys(ANALYTICS_STATUSES, 0)
    for inv in invoices:
        breakdown[inv.status] = breakdown.get(inv.status, 0) + 1
    return {
        'period': {'startDate': start, 'endDate': end},
        'summary': {
            'totalInvoices': len(invoices),
            'totalInvoiced': total_invoiced,
            'totalPaid': total_paid,
            'totalOutstanding': sum((i.balance for i in invoices), ZERO),
            'collectionRate': float(total_paid / total_invoiced * 100) if total_invoiced > 0 else 0,
        },
        'statusBreakdown': breakdown,
        'invoices': [payloads.invoice(i) for i in invoices],
    }


def mark_overdue_invoices(now: Optional[datetime] = None) -> int:
    now = now or timezone.now()
    return (
        Invoice.objects
        .filter(status__in=(Invoice.STATUS_PENDING, Invoice.STATUS_PARTIAL), due_date__lt=now)
        .update(status=Invoice.STATUS_OVERDUE, updated_at=now)
    )
