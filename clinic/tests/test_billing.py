from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from clinic.exceptions import Conflict
from clinic.models import Invoice, Payment
from clinic.services import billing

pytestmark = pytest.mark.django_db


@pytest.fixture
def pending(patient, lab_services):
    return billing.create_invoice(
        patient_pk=patient.pk, status=Invoice.STATUS_PENDING,
        charges=[
            {'service_id': lab_services[0].pk, 'quantity': 2},
            {'description': 'Dressing', 'unit_price': Decimal('10.00')},
        ],
    )


def test_create_invoice_prices_from_service(pending):
    assert pending.invoice_number.startswith('INV')
    assert pending.total_amount == Decimal('60.00')
    assert pending.balance == Decimal('60.00')
    descriptions = sorted(c.description for c in pending.charges.all())
    assert descriptions == ['Complete Blood Count', 'Dressing']


def test_create_invoice_unknown_service(patient):
    with pytest.raises(NotFound):
        billing.create_invoice(patient_pk=patient.pk, charges=[{'service_id': 4242}])


def test_invoice_defaults_to_draft(patient):
    assert billing.create_invoice(patient_pk=patient.pk).status == Invoice.STATUS_DRAFT


def test_add_and_remove_charge_keep_totals(pending):
    charge = billing.add_charge(pending.pk, {'description': 'Extra', 'unit_price': '5', 'quantity': 3})
    inv = Invoice.objects.get(pk=pending.pk)
    assert inv.total_amount == Decimal('75.00')
    assert inv.balance == inv.total_amount - inv.paid_amount

    billing.remove_charge(pending.pk, charge.pk)
    inv.refresh_from_db()
    assert inv.total_amount == Decimal('60.00')


def test_charges_frozen_once_paid(pending):
    billing.process_payment(pending.pk, amount=Decimal('60.00'), method='CARD')
    with pytest.raises(Conflict):
        billing.add_charge(pending.pk, {'description': 'Late', 'unit_price': '1'})


def test_finalize_rules(patient):
    empty = billing.create_invoice(patient_pk=patient.pk)
    with pytest.raises(Conflict):
        billing.finalize_invoice(empty.pk)
    billing.add_charge(empty.pk, {'description': 'Visit', 'unit_price': '30'})
    assert billing.finalize_invoice(empty.pk).status == Invoice.STATUS_PENDING
    with pytest.raises(Conflict):
        billing.finalize_invoice(empty.pk)


def test_partial_then_full_payment(pending, patient):
    first = billing.process_payment(pending.pk, amount=Decimal('20'), method='CASH', reference='R1')
    assert first['invoice'].status == Invoice.STATUS_PARTIAL
    assert first['invoice'].balance == Decimal('40.00')
    assert first['message'] == 'Payment processed successfully. New balance: $40.00'

    second = billing.process_payment(pending.pk, amount=Decimal('40'), method='CASH')
    inv = second['invoice']
    assert inv.status == Invoice.STATUS_PAID
    assert inv.paid_date is not None
    assert inv.balance == Decimal('0.00')
    patient.account.refresh_from_db()
    assert patient.account.balance == Decimal('60.00')


def test_payment_validation(pending):
    with pytest.raises(ValidationError):
        billing.process_payment(pending.pk, amount=Decimal('0'), method='CASH')
    with pytest.raises(ValidationError):
        billing.process_payment(pending.pk, amount=Decimal('60.01'), method='CASH')
    billing.cancel_invoice(pending.pk, 'duplicate')
    with pytest.raises(Conflict):
        billing.process_payment(pending.pk, amount=Decimal('1'), method='CASH')


def test_cancel_appends_reason_and_refuses_paid(pending, patient):
    inv = billing.cancel_invoice(pending.pk, 'entered twice')
    assert inv.status == Invoice.STATUS_CANCELLED
    assert inv.notes.endswith('Cancelled: entered twice')

    paid = billing.create_invoice(patient_pk=patient.pk, status=Invoice.STATUS_PENDING,
                                  charges=[{'description': 'Visit', 'unit_price': '5'}])
    billing.process_payment(paid.pk, amount=Decimal('5'), method='CASH')
    with pytest.raises(Conflict):
        billing.cancel_invoice(paid.pk)


def test_refund_full_payment(pending, patient):
    payment = billing.process_payment(pending.pk, amount=Decimal('60'), method='CASH')['payment']
    result = billing.process_refund(payment.pk, amount=Decimal('60'), reason='Service not rendered')
    assert result['refund'].status == 'APPROVED'

    payment.refresh_from_db()
    assert payment.status == Payment.STATUS_REFUNDED
    inv = Invoice.objects.get(pk=pending.pk)
    assert inv.status == Invoice.STATUS_PENDING
    assert inv.paid_amount == Decimal('0.00')
    assert inv.balance == Decimal('60.00')
    patient.account.refresh_from_db()
    assert patient.account.balance == Decimal('0.00')

    with pytest.raises(Conflict):
        billing.process_refund(payment.pk, amount=Decimal('1'), reason='again')


def test_partial_refund_leaves_partial_invoice(pending):
    payment = billing.process_payment(pending.pk, amount=Decimal('60'), method='CASH')['payment']
    with pytest.raises(ValidationError):
        billing.process_refund(payment.pk, amount=Decimal('61'), reason='too much')
    billing.process_refund(payment.pk, amount=Decimal('10'), reason='discount')
    inv = Invoice.objects.get(pk=pending.pk)
    assert inv.status == Invoice.STATUS_PARTIAL
    assert inv.balance == Decimal('10.00')
    payment.refresh_from_db()
    assert payment.status == Payment.STATUS_COMPLETED


def test_partial_refunds_cannot_exceed_payment(pending, patient):
    payment = billing.process_payment(pending.pk, amount=Decimal('60'), method='CASH')['payment']
    billing.process_refund(payment.pk, amount=Decimal('35'), reason='discount')
    with pytest.raises(ValidationError):
        billing.process_refund(payment.pk, amount=Decimal('35'), reason='second discount')

    billing.process_refund(payment.pk, amount=Decimal('25'), reason='rest')
    payment.refresh_from_db()
    assert payment.status == Payment.STATUS_REFUNDED
    inv = Invoice.objects.get(pk=pending.pk)
    assert (inv.paid_amount, inv.balance, inv.status) == (Decimal('0.00'), Decimal('60.00'), Invoice.STATUS_PENDING)
    patient.account.refresh_from_db()
    assert patient.account.balance == Decimal('0.00')
    assert payment.refunds.count() == 2


def test_payment_event_sent_after_commit(pending, monkeypatch, django_capture_on_commit_callbacks):
    sent = []
    monkeypatch.setattr(billing, 'broadcast', lambda event, data=None: sent.append((event, data)))
    with django_capture_on_commit_callbacks() as callbacks:
        billing.process_payment(pending.pk, amount=Decimal('60'), method='CASH')
        assert sent == []
    assert len(callbacks) == 1
    callbacks[0]()
    assert sent[0][0] == 'invoice.payment'
    assert sent[0][1]['status'] == Invoice.STATUS_PAID


def test_payment_status_for_service(pending):
    status = billing.payment_status_for_service(pending.pk)
    assert status['canProceed'] is False
    assert status['message'] == 'Payment required before service. Total amount due: $60.00'
    billing.process_payment(pending.pk, amount=Decimal('60'), method='CASH')
    assert billing.payment_status_for_service(pending.pk)['canProceed'] is True


def test_mark_overdue_invoices(pending, patient):
    pending.due_date = timezone.now() - timedelta(days=1)
    pending.save()
    future = billing.create_invoice(patient_pk=patient.pk, status=Invoice.STATUS_PENDING,
                                    due_date=timezone.now() + timedelta(days=3))
    assert billing.mark_overdue_invoices() == 1
    assert Invoice.objects.get(pk=pending.pk).status == Invoice.STATUS_OVERDUE
    assert Invoice.objects.get(pk=future.pk).status == Invoice.STATUS_PENDING


def test_analytics_excludes_cancelled(pending, patient):
    other = billing.create_invoice(patient_pk=patient.pk, status=Invoice.STATUS_PENDING,
                                   charges=[{'description': 'X', 'unit_price': '40'}])
    billing.cancel_invoice(other.pk)
    billing.process_payment(pending.pk, amount=Decimal('30'), method='CASH')
    now = timezone.now()
    report = billing.billing_analytics(now - timedelta(days=1), now + timedelta(days=1))
    assert report['summary']['totalInvoiced'] == Decimal('60.00')
    assert report['summary']['collectionRate'] == pytest.approx(50.0)
    assert report['statusBreakdown'] == {'DRAFT': 0, 'PENDING': 0, 'PARTIAL': 1, 'PAID': 0, 'OVERDUE': 0}


# ---------------------------------------------------------------------
# API
# ---------------------------------------------------------------------
def test_api_create_and_pay_invoice(api, make_staff, patient):
    cashier = make_staff('cashier', ['view_billing', 'manage_billing', 'process_payments'])
    api.force_authenticate(cashier.user)
    r = api.post('/api/billing/invoices', {
        'patientId': patient.pk, 'status': 'PENDING',
        'charges': [{'description': 'Consultation', 'unitPrice': '50.00'}],
    }, format='json')
    assert r.status_code == 201, r.data
    pk = r.data['id']

    r = api.post(f'/api/billing/invoices/{pk}/payments', {'amount': '50.00', 'method': 'CASH'}, format='json')
    assert r.status_code == 201, r.data
    assert r.data['invoice']['status'] == 'PAID'

    r = api.post(f'/api/billing/invoices/{pk}/payments', {'amount': '1.00'}, format='json')
    assert r.status_code == 409
    assert r.data['error']['code'] == 'conflict'


def test_api_refund_requires_permission(api, make_staff, pending):
    payment = billing.process_payment(pending.pk, amount=Decimal('60'), method='CASH')['payment']
    clerk = make_staff('clerk', ['view_billing'])
    api.force_authenticate(clerk.user)
    r = api.post(f'/api/billing/payments/{payment.pk}/refund', {'amount': '5', 'reason': 'x'}, format='json')
    assert r.status_code == 403


def test_api_analytics_requires_range(api, admin_user):
    api.force_authenticate(admin_user)
    r = api.get('/api/billing/analytics')
    assert r.status_code == 400
