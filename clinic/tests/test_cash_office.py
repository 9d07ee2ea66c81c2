from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from clinic.exceptions import Conflict
from clinic.models import CashTransaction, Invoice, Payment, PettyCashRequest
from clinic.services import billing, cash_office

pytestmark = pytest.mark.django_db


@pytest.fixture
def cashier(make_staff):
    return make_staff('till', role='CASHIER')


@pytest.fixture
def invoice(patient):
    return billing.create_invoice(patient_pk=patient.pk, status=Invoice.STATUS_PENDING,
                                  charges=[{'description': 'Consultation', 'unit_price': '80'}])


def test_only_cash_roles_may_handle_cash(make_staff):
    nurse = make_staff('nurse', role='NURSE')
    with pytest.raises(PermissionDenied):
        cash_office.create_cash_transaction(nurse, transaction_type='CASH_OUT', amount='5', description='Float')
    with pytest.raises(PermissionDenied):
        cash_office.ensure_cashier(None)


def test_admin_may_handle_cash(make_staff):
    boss = make_staff('boss', ['admin'])
    txn = cash_office.create_cash_transaction(boss, transaction_type='CASH_IN', amount='5', description='Float')
    assert txn.reference_number.startswith('CASH')


def test_invoice_cash_payment_records_cash_in(cashier, invoice):
    result = cash_office.process_invoice_payment(cashier, invoice.pk, amount=Decimal('30'))
    txn = result['cashTransaction']
    assert txn.transaction_type == CashTransaction.TYPE_CASH_IN
    assert txn.amount == Decimal('30.00')
    assert txn.description == f'Payment for Invoice {invoice.invoice_number}'
    assert txn.patient_id == invoice.patient_id
    assert result['payment'].method == 'CASH'
    assert result['invoice'].status == Invoice.STATUS_PARTIAL


def test_failed_payment_leaves_no_cash_row(cashier, invoice):
    with pytest.raises(ValidationError):
        cash_office.process_invoice_payment(cashier, invoice.pk, amount=Decimal('500'))
    assert not CashTransaction.objects.exists()


def test_rolled_back_cash_payment_sends_no_event(cashier, invoice, monkeypatch,
                                                django_capture_on_commit_callbacks):
    def fail(*args, **kwargs):
        raise RuntimeError('till offline')

    monkeypatch.setattr(cash_office, 'create_cash_transaction', fail)
    with django_capture_on_commit_callbacks() as callbacks:
        with pytest.raises(RuntimeError):
            cash_office.process_invoice_payment(cashier, invoice.pk, amount=Decimal('80'))
    assert callbacks == []
    invoice.refresh_from_db()
    assert invoice.status == Invoice.STATUS_PENDING
    assert invoice.paid_amount == Decimal('0.00')
    assert not Payment.objects.exists()


def test_summary_nets_in_and_out(cashier):
    cash_office.create_cash_transaction(cashier, transaction_type='CASH_IN', amount='100', description='a')
    cash_office.create_cash_transaction(cashier, transaction_type='CASH_OUT', amount='30', description='b')
    summary = cash_office.cash_summary()
    assert summary['cashIn'] == Decimal('100.00')
    assert summary['cashOut'] == Decimal('30.00')
    assert summary['net'] == Decimal('70.00')
    assert summary['count'] == 2
    assert len(cash_office.list_cash_transactions(transaction_type='CASH_OUT')) == 1


def test_api_cash_payment(api, cashier, invoice):
    api.force_authenticate(cashier.user)
    r = api.post('/api/cash/invoice-payment', {'invoiceId': invoice.pk, 'amount': '80.00'}, format='json')
    assert r.status_code == 201, r.data
    assert r.data['invoice']['status'] == 'PAID'


def test_api_non_cashier_is_forbidden(api, make_staff):
    nurse = make_staff('nurse', role='NURSE')
    api.force_authenticate(nurse.user)
    assert api.get('/api/cash/summary').status_code == 403


# ---------------------------------------------------------------------
# Petty cash
# ---------------------------------------------------------------------
@pytest.fixture
def approver(make_staff):
    return make_staff('fin', role='FINANCE_MANAGER')


def test_petty_cash_approval(cashier, approver):
    req = cash_office.create_petty_cash_request(cashier, amount='40', purpose='Printer paper')
    assert req.status == PettyCashRequest.STATUS_PENDING
    with pytest.raises(PermissionDenied):
        cash_office.approve_petty_cash_request(req.pk, cashier)

    done = cash_office.approve_petty_cash_request(req.pk, approver)
    assert done.status == PettyCashRequest.STATUS_APPROVED
    assert done.approver == approver and done.approved_at is not None
    with pytest.raises(Conflict):
        cash_office.reject_petty_cash_request(req.pk, approver, 'Too late')


def test_petty_cash_rejection_needs_reason(cashier, approver):
    req = cash_office.create_petty_cash_request(cashier, amount='12.50', purpose='Taxi')
    with pytest.raises(ValidationError):
        cash_office.reject_petty_cash_request(req.pk, approver, '  ')
    rejected = cash_office.reject_petty_cash_request(req.pk, approver, 'Use the purchase order process')
    assert rejected.status == PettyCashRequest.STATUS_REJECTED
    assert rejected.rejection_reason == 'Use the purchase order process'
    assert cash_office.pending_petty_cash_requests() == []
    assert [r.pk for r in cash_office.list_petty_cash_requests(status='REJECTED')] == [req.pk]


def test_petty_cash_request_validation(cashier):
    with pytest.raises(ValidationError):
        cash_office.create_petty_cash_request(cashier, amount='0', purpose='Nothing')
    with pytest.raises(PermissionDenied):
        cash_office.create_petty_cash_request(None, amount='5', purpose='Stamps')
    with pytest.raises(NotFound):
        cash_office.get_petty_cash_request(999)


# ---------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------
def test_daily_reconciliation_and_shift_report(cashier, make_staff, patient):
    other = make_staff('till2', role='CASHIER')
    paid_in = cash_office.create_cash_transaction(cashier, transaction_type='CASH_IN', amount='100',
                                                  description='Deposit', patient_pk=patient.pk)
    cash_office.create_cash_transaction(cashier, transaction_type='CASH_OUT', amount='30', description='Float')
    cash_office.create_cash_transaction(other, transaction_type='CASH_IN', amount='50', description='Deposit')
    old = cash_office.create_cash_transaction(cashier, transaction_type='CASH_IN', amount='999', description='Old')
    CashTransaction.objects.filter(pk=old.pk).update(transaction_date=timezone.now() - timedelta(days=1))
    today = timezone.localdate()

    rec = cash_office.daily_reconciliation(today)
    assert rec['summary'] == {
        'totalCashIn': Decimal('150.00'), 'totalCashOut': Decimal('30.00'),
        'netCash': Decimal('120.00'), 'transactionCount': 3,
    }
    row = next(r for r in rec['transactions'] if r['id'] == paid_in.pk)
    assert row['patientName'] == 'Ada Obi'
    assert row['cashierName'] == 'Till Staff'

    shift = cash_office.cashier_shift_report(cashier.pk, today)
    assert shift['summary'] == {
        'totalCashIn': Decimal('100.00'), 'totalCashOut': Decimal('30.00'), 'netCashFlow': Decimal('70.00'),
        'transactionCount': 2, 'cashInCount': 1, 'cashOutCount': 1,
    }
    assert all('cashierName' not in r for r in shift['transactions'])
    with pytest.raises(NotFound):
        cash_office.cashier_shift_report(999, today)


def test_office_statistics(cashier, approver, make_staff):
    other = make_staff('till2', role='CASHIER')
    cash_office.create_cash_transaction(cashier, transaction_type='CASH_IN', amount='200', description='a')
    cash_office.create_cash_transaction(cashier, transaction_type='CASH_OUT', amount='20', description='b')
    cash_office.create_cash_transaction(other, transaction_type='CASH_IN', amount='50', description='c')
    taxi = cash_office.create_petty_cash_request(cashier, amount='15', purpose='Taxi')
    cash_office.approve_petty_cash_request(taxi.pk, approver)
    cash_office.create_petty_cash_request(cashier, amount='5', purpose='Stamps')
    today = timezone.localdate()

    stats = cash_office.cash_office_statistics(today, today)
    assert stats['summary'] == {
        'totalCashIn': Decimal('250.00'), 'totalCashOut': Decimal('20.00'),
        'totalPettyCash': Decimal('15.00'), 'pendingPettyCash': Decimal('5.00'),
        'netCashFlow': Decimal('215.00'), 'transactionCount': 3, 'pettyCashCount': 2,
    }
    by_cashier = {b['cashierId']: b for b in stats['breakdown']['byCashier']}
    assert by_cashier[cashier.pk]['cashIn'] == Decimal('200.00')
    assert by_cashier[cashier.pk]['cashOut'] == Decimal('20.00')
    assert by_cashier[cashier.pk]['transactionCount'] == 2
    assert by_cashier[other.pk]['transactionCount'] == 1
    with pytest.raises(ValidationError):
        cash_office.cash_office_statistics(today, today - timedelta(days=1))


def test_api_petty_cash_flow(api, cashier, approver):
    api.force_authenticate(cashier.user)
    r = api.post('/api/cash/petty-cash', {'amount': '25.00', 'purpose': 'Printer <b>paper</b>'}, format='json')
    assert r.status_code == 201, r.data
    assert r.data['purpose'] == 'Printer paper'
    pk = r.data['id']
    assert api.post(f'/api/cash/petty-cash/{pk}/approve').status_code == 403

    api.force_authenticate(approver.user)
    assert [x['id'] for x in api.get('/api/cash/petty-cash/pending').data] == [pk]
    r = api.post(f'/api/cash/petty-cash/{pk}/reject', {'reason': 'Over budget'}, format='json')
    assert r.status_code == 200
    assert r.data['status'] == 'REJECTED'
    assert api.post(f'/api/cash/petty-cash/{pk}/approve').status_code == 409


def test_api_reports(api, cashier, make_staff):
    cash_office.create_cash_transaction(cashier, transaction_type='CASH_IN', amount='10', description='a')
    other = make_staff('till2', role='CASHIER')
    today = timezone.localdate().isoformat()
    api.force_authenticate(cashier.user)

    r = api.get('/api/cash/reconciliation', {'date': today})
    assert r.status_code == 200
    assert r.data['summary']['transactionCount'] == 1
    r = api.get('/api/cash/shift-report')
    assert r.data['cashierId'] == cashier.pk
    assert r.data['summary']['cashInCount'] == 1
    assert api.get('/api/cash/shift-report', {'cashierId': other.pk}).status_code == 403
    r = api.get('/api/cash/statistics', {'startDate': today, 'endDate': today})
    assert r.data['summary']['totalCashIn'] == Decimal('10.00')
    assert api.get('/api/cash/statistics').status_code == 400
