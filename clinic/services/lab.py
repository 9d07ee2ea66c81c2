"""
Laboratory orders and the technician test workflow.

An order is billed on creation through a ``LAB-`` invoice carrying one
charge per test.  Tests become claimable once that invoice is paid::

    PENDING -> CLAIMED -> IN_PROGRESS -> COMPLETED
         \\________\\___________\\______-> CANCELLED

The order completes when every test that was not cancelled is complete.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied

from clinic.exceptions import Conflict
from clinic.models import Charge, Invoice, LabOrder, LabTest, Patient, Service, StaffMember
from clinic.services import access, numbering
from clinic.services.audit import log_action
from clinic.services.events import broadcast

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')


def _active_service(pk) -> Service:
    svc = Service.objects.filter(pk=pk, is_active=True).first()
    if not svc:
        raise NotFound(f'Service with ID {pk} not found or inactive')
    return svc


def _order_qs():
    return LabOrder.objects.select_related('patient', 'doctor__user', 'invoice')


def create_lab_order(doctor: Optional[StaffMember], *, patient_pk, service_ids: Iterable[int],
                     notes: str = '') -> LabOrder:
    patient = Patient.objects.filter(pk=patient_pk).first()
    if not patient:
        raise NotFound('Patient not found')
    if doctor is None:
        raise NotFound('Doctor not found')
    if not access.has_permission(doctor.user, 'order_lab_tests'):
        raise PermissionDenied('Doctor not authorized to order lab tests')
    services = [_active_service(pk) for pk in dict.fromkeys(service_ids)]
    if not services:
        raise Conflict('A lab order needs at least one test')

    with transaction.atomic():
        order = LabOrder.objects.create(patient=patient, doctor=doctor, notes=notes or '')
        tests = LabTest.objects.bulk_create([
            LabTest(order=order, service=svc, unit_price=svc.current_price, total_price=svc.current_price)
            for svc in services
        ])
        total = sum((t.total_price for t in tests), ZERO)
        inv = Invoice.objects.create(
            invoice_number=numbering.lab_invoice_number(),
            patient=patient,
            total_amount=total,
            balance=total,
            status=Invoice.STATUS_PENDING,
            due_date=timezone.now() + timedelta(days=settings.HMS_LAB_INVOICE_DUE_DAYS),
            notes=f'Lab Order #{order.pk} - {len(tests)} test(s)',
        )
        Charge.objects.bulk_create([
            Charge(invoice=inv, service=t.service, description=f'Lab Test: {t.service.name}',
                   quantity=1, unit_price=t.unit_price, total_price=t.total_price)
            for t in tests
        ])
        order.total_amount = total
        order.balance = total
        order.invoice = inv
        order.save(update_fields=['total_amount', 'balance', 'invoice', 'updated_at'])
        log_action(user=doctor.user, action='lab_order_create', object_type='lab_order', object_id=order.pk,
                   detail={'tests': len(tests), 'invoice': inv.invoice_number})
    logger.info('lab order %s created with %d tests, invoice %s', order.pk, len(tests), inv.invoice_number)
    return get_lab_order(order.pk)


def list_lab_orders(*, patient_pk=None, status: Optional[str] = None, is_paid: Optional[bool] = None,
                    doctor_pk=None) -> List[LabOrder]:
    qs = _order_qs()
    if patient_pk:
        qs = qs.filter(patient_id=patient_pk)
    if status:
        qs = qs.filter(status=status)
    if is_paid is not None:
        qs = qs.filter(is_paid=is_paid)
    if doctor_pk:
        qs = qs.filter(doctor_id=doctor_pk)
    return list(qs.order_by('-created_at', '-id'))


def get_lab_order(pk) -> LabOrder:
    order = _order_qs().filter(pk=pk).first()
    if not order:
        raise NotFound('Lab order not found')
    return order


def cancel_lab_order(pk, reason: Optional[str] = None) -> LabOrder:
    order = get_lab_order(pk)
    if order.status == 'COMPLETED':
        raise Conflict('Cannot cancel a completed lab order')
    with transaction.atomic():
        order.status = 'CANCELLED'
        if reason:
            order.notes = f"{order.notes}\nCancelled: {reason}".strip()
        order.save(update_fields=['status', 'notes', 'updated_at'])
        order.tests.exclude(status=LabTest.STATUS_COMPLETED).update(status=LabTest.STATUS_CANCELLED)
    return order


def add_test(order_pk, service_pk) -> LabTest:
    with transaction.atomic():
        order = LabOrder.objects.select_for_update().filter(pk=order_pk).first()
        if not order:
            raise NotFound('Lab order not found')
        if order.status != 'PENDING':
            raise Conflict('Can only add tests to pending lab orders')
        svc = _active_service(service_pk)
        if order.tests.filter(service=svc).exists():
            raise Conflict('This test is already included in the lab order')
        test = LabTest.objects.create(
            order=order, service=svc, unit_price=svc.current_price, total_price=svc.current_price,
        )
        order.total_amount += test.total_price
        order.balance = order.total_amount - order.paid_amount
        # the new test is unpaid until the invoice settles again
        order.is_paid = False
        order.save(update_fields=['total_amount', 'balance', 'is_paid', 'updated_at'])
        if order.invoice_id:
            inv = Invoice.objects.select_for_update().get(pk=order.invoice_id)
            Charge.objects.create(
                invoice=inv, service=svc, description=f'Lab Test: {svc.name}',
                quantity=1, unit_price=test.unit_price, total_price=test.total_price,
            )
            inv.total_amount += test.total_price
            inv.balance = inv.total_amount - inv.paid_amount
            if inv.status == Invoice.STATUS_PAID:
                inv.status = Invoice.STATUS_PARTIAL
            inv.save(update_fields=['total_amount', 'balance', 'status', 'updated_at'])
    return test


# ---------------------------------------------------------------------
# Technician workflow
# ---------------------------------------------------------------------
def _get_test(pk) -> LabTest:
    test = (
        LabTest.objects.select_related('order__invoice', 'service', 'lab_technician__user')
        .filter(pk=pk).first()
    )
    if not test:
        raise NotFound('Lab test not found')
    return test


def _changed(test: LabTest) -> None:
    broadcast('lab.test_status', {'testId': test.pk, 'orderId': test.order_id, 'status': test.status})


def available_tests(status: Optional[str] = None) -> List[LabTest]:
    """Tests of paid orders; by default the unclaimed ones."""
    return list(
        LabTest.objects.select_related('order__patient', 'service')
        .filter(order__is_paid=True, status=status or LabTest.STATUS_PENDING)
        .order_by('created_at', 'id')
    )


def claim_test(pk, technician: StaffMember) -> LabTest:
    test = _get_test(pk)
    if test.status != LabTest.STATUS_PENDING:
        raise Conflict('Test is not available for claiming')
    if not test.order.is_paid:
        raise PermissionDenied('Lab order must be paid before tests can be claimed')
    inv = test.order.invoice
    if inv is not None and inv.status != Invoice.STATUS_PAID:
        raise PermissionDenied(f'Invoice {inv.invoice_number} must be fully paid before tests can be claimed')
    test.status = LabTest.STATUS_CLAIMED
    test.lab_technician = technician
    test.claimed_at = timezone.now()
    test.save(update_fields=['status', 'lab_technician', 'claimed_at', 'updated_at'])
    _changed(test)
    return test


def _ensure_claimer(test: LabTest, technician: StaffMember, verb: str) -> None:
    if test.lab_technician_id != technician.pk:
        raise PermissionDenied(f'You can only {verb} tests that you have claimed')


def start_test(pk, technician: StaffMember) -> LabTest:
    test = _get_test(pk)
    if test.status != LabTest.STATUS_CLAIMED:
        raise Conflict('Test must be claimed before starting')
    _ensure_claimer(test, technician, 'start')
    if not test.order.is_paid:
        raise PermissionDenied('Lab order must be paid before tests can be started')
    with transaction.atomic():
        test.status = LabTest.STATUS_IN_PROGRESS
        test.started_at = timezone.now()
        test.save(update_fields=['status', 'started_at', 'updated_at'])
        LabOrder.objects.filter(pk=test.order_id, status='PENDING').update(status='IN_PROGRESS')
    _changed(test)
    return test


def complete_test(pk, technician: StaffMember, *, result_value: str = '', result_unit: str = '',
                  reference_range: str = '', is_critical: bool = False, notes: str = '') -> LabTest:
    test = _get_test(pk)
    if test.status != LabTest.STATUS_IN_PROGRESS:
        raise Conflict('Test must be in progress to complete')
    _ensure_claimer(test, technician, 'complete')
    with transaction.atomic():
        test.status = LabTest.STATUS_COMPLETED
        test.result_value = result_value or ''
        test.result_unit = result_unit or ''
        test.reference_range = reference_range or ''
        test.is_critical = bool(is_critical)
        test.notes = notes or ''
        test.completed_at = timezone.now()
        test.save()
        remaining = (
            LabTest.objects.filter(order_id=test.order_id)
            .exclude(status__in=(LabTest.STATUS_COMPLETED, LabTest.STATUS_CANCELLED))
        )
        if not remaining.exists():
            LabOrder.objects.filter(pk=test.order_id).update(status='COMPLETED', updated_at=timezone.now())
    if test.is_critical:
        logger.warning('critical result on lab test %s (order %s)', test.pk, test.order_id)
    _changed(test)
    return test


def cancel_test(pk, technician: StaffMember, reason: str = '') -> LabTest:
    test = _get_test(pk)
    _ensure_claimer(test, technician, 'cancel')
    if test.status in (LabTest.STATUS_COMPLETED, LabTest.STATUS_CANCELLED):
        raise Conflict(f'Test is already {test.status.lower()}')
    test.status = LabTest.STATUS_CANCELLED
    test.notes = f'Cancelled by technician. Reason: {reason}'
    test.save(update_fields=['status', 'notes', 'updated_at'])
    _changed(test)
    return test


def my_tests(technician: StaffMember, status: Optional[str] = None) -> List[LabTest]:
    qs = LabTest.objects.select_related('order__patient', 'service').filter(lab_technician=technician)
    if status:
        qs = qs.filter(status=status)
    else:
        qs = qs.filter(status__in=(LabTest.STATUS_CLAIMED, LabTest.STATUS_IN_PROGRESS))
    return list(qs.order_by('-claimed_at', '-id'))


# ---------------------------------------------------------------------
# Payment status
# ---------------------------------------------------------------------
def mark_lab_order_paid(pk) -> LabOrder:
    order = get_lab_order(pk)
    if order.is_paid:
        raise Conflict('Lab order is already marked as paid')
    with transaction.atomic():
        order.is_paid = True
        order.paid_amount = order.total_amount
        order.balance = ZERO
        order.save(update_fields=['is_paid', 'paid_amount', 'balance', 'updated_at'])
        if order.invoice_id:
            Invoice.objects.filter(pk=order.invoice_id).update(
                status=Invoice.STATUS_PAID,
                paid_amount=order.total_amount,
                balance=ZERO,
                paid_date=timezone.now(),
            )
    return order


def mark_lab_order_paid_by_invoice(invoice_pk) -> Optional[LabOrder]:
    """Flag the order billed by ``invoice_pk`` as paid; no-op when none."""
    order = LabOrder.objects.filter(invoice_id=invoice_pk, is_paid=False).first()
    if order is None:
        return None
    order.is_paid = True
    order.paid_amount = order.total_amount
    order.balance = ZERO
    order.save(update_fields=['is_paid', 'paid_amount', 'balance', 'updated_at'])
    logger.info('lab order %s marked paid by invoice %s', order.pk, invoice_pk)
    return order


def patient_results(patient_pk) -> List[Dict[str, Any]]:
    if not Patient.objects.filter(pk=patient_pk).exists():
        raise NotFound('Patient not found')
    tests = (
        LabTest.objects.select_related('service', 'order', 'lab_technician__user')
        .filter(order__patient_id=patient_pk, status=LabTest.STATUS_COMPLETED)
        .order_by('-completed_at')
    )
    return [
        {
            'testId': t.id,
            'orderId': t.order_id,
            'serviceName': t.service.name,
            'resultValue': t.result_value,
            'resultUnit': t.result_unit,
            'referenceRange': t.reference_range,
            'isCritical': t.is_critical,
            'completedAt': t.completed_at,
            'notes': t.notes,
        }
        for t in tests
    ]
