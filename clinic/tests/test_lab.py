from decimal import Decimal

import pytest
from rest_framework.exceptions import NotFound, PermissionDenied

from clinic.exceptions import Conflict
from clinic.models import Invoice, LabOrder, LabTest
from clinic.services import billing, lab

pytestmark = pytest.mark.django_db


@pytest.fixture
def doctor(make_staff):
    return make_staff('doctor', ['order_lab_tests'], provider=True)


@pytest.fixture
def tech(make_staff):
    return make_staff('tech', ['process_lab_tests'])


@pytest.fixture
def order(doctor, patient, lab_services):
    return lab.create_lab_order(doctor, patient_pk=patient.pk, service_ids=[s.pk for s in lab_services],
                                notes='fasting')


def pay(order):
    billing.process_payment(order.invoice_id, amount=order.invoice.balance, method='CASH')


def test_order_is_billed(order):
    assert order.total_amount == Decimal('45.00')
    inv = order.invoice
    assert inv.invoice_number.startswith('LAB-')
    assert inv.status == Invoice.STATUS_PENDING
    assert inv.total_amount == Decimal('45.00')
    assert inv.notes == f'Lab Order #{order.pk} - 2 test(s)'
    assert sorted(c.description for c in inv.charges.all()) == [
        'Lab Test: Complete Blood Count', 'Lab Test: Urinalysis',
    ]
    assert set(order.tests.values_list('status', flat=True)) == {'PENDING'}


def test_ordering_needs_permission(make_staff, patient, lab_services):
    nurse = make_staff('nurse')
    with pytest.raises(PermissionDenied):
        lab.create_lab_order(nurse, patient_pk=patient.pk, service_ids=[lab_services[0].pk])


def test_inactive_service_rejected(doctor, patient, lab_services):
    lab_services[0].is_active = False
    lab_services[0].save()
    with pytest.raises(NotFound):
        lab.create_lab_order(doctor, patient_pk=patient.pk, service_ids=[lab_services[0].pk])
    assert not LabOrder.objects.exists()


def test_add_test_updates_order_and_invoice(order, lab_category):
    from clinic.models import Service
    glucose = Service.objects.create(category=lab_category, name='Blood Glucose Test',
                                     base_price=Decimal('15'), current_price=Decimal('15'))
    lab.add_test(order.pk, glucose.pk)
    order.refresh_from_db()
    assert order.total_amount == Decimal('60.00')
    inv = Invoice.objects.get(pk=order.invoice_id)
    assert inv.total_amount == Decimal('60.00')
    assert inv.balance == Decimal('60.00')
    with pytest.raises(Conflict):
        lab.add_test(order.pk, glucose.pk)


def test_payment_marks_order_paid(order):
    pay(order)
    order.refresh_from_db()
    assert order.is_paid
    assert order.balance == Decimal('0.00')


def test_test_added_after_payment_is_billed_again(order, lab_category, tech):
    from clinic.models import Service
    pay(order)
    glucose = Service.objects.create(category=lab_category, name='Blood Glucose Test',
                                     base_price=Decimal('15'), current_price=Decimal('15'))
    added = lab.add_test(order.pk, glucose.pk)
    order.refresh_from_db()
    assert not order.is_paid
    assert order.balance == Decimal('15.00')
    inv = Invoice.objects.get(pk=order.invoice_id)
    assert inv.status == Invoice.STATUS_PARTIAL
    with pytest.raises(PermissionDenied):
        lab.claim_test(added.pk, tech)

    billing.process_payment(inv.pk, amount=inv.balance, method='CASH')
    order.refresh_from_db()
    assert order.is_paid
    assert order.paid_amount == Decimal('60.00')
    assert order.balance == Decimal('0.00')
    assert lab.claim_test(added.pk, tech).status == LabTest.STATUS_CLAIMED


def test_claim_requires_paid_order(order, tech):
    test = order.tests.first()
    with pytest.raises(PermissionDenied):
        lab.claim_test(test.pk, tech)
    assert lab.available_tests() == []


def test_full_technician_workflow(order, tech, make_staff):
    pay(order)
    first, second = order.tests.order_by('id')
    assert {t.pk for t in lab.available_tests()} == {first.pk, second.pk}

    lab.claim_test(first.pk, tech)
    with pytest.raises(Conflict):
        lab.claim_test(first.pk, tech)
    other = make_staff('other', ['process_lab_tests'])
    with pytest.raises(PermissionDenied):
        lab.start_test(first.pk, other)

    lab.start_test(first.pk, tech)
    assert LabOrder.objects.get(pk=order.pk).status == 'IN_PROGRESS'
    assert [t.pk for t in lab.my_tests(tech)] == [first.pk]

    done = lab.complete_test(first.pk, tech, result_value='13.5', result_unit='g/dL',
                             reference_range='12-16', is_critical=False)
    assert done.status == LabTest.STATUS_COMPLETED
    assert LabOrder.objects.get(pk=order.pk).status == 'IN_PROGRESS'

    lab.claim_test(second.pk, tech)
    lab.cancel_test(second.pk, tech, 'sample haemolysed')
    assert LabTest.objects.get(pk=second.pk).notes == 'Cancelled by technician. Reason: sample haemolysed'

    results = lab.patient_results(order.patient_id)
    assert [r['resultValue'] for r in results] == ['13.5']


def test_order_completes_when_last_test_completes(doctor, patient, lab_services, tech):
    order = lab.create_lab_order(doctor, patient_pk=patient.pk, service_ids=[lab_services[0].pk])
    pay(order)
    test = order.tests.get()
    lab.claim_test(test.pk, tech)
    lab.start_test(test.pk, tech)
    with pytest.raises(Conflict):
        lab.start_test(test.pk, tech)
    lab.complete_test(test.pk, tech, result_value='ok', is_critical=True)
    assert LabOrder.objects.get(pk=order.pk).status == 'COMPLETED'
    with pytest.raises(Conflict):
        lab.cancel_lab_order(order.pk)


def test_cancel_order_cancels_open_tests(order):
    lab.cancel_lab_order(order.pk, 'patient left')
    order.refresh_from_db()
    assert order.status == 'CANCELLED'
    assert order.notes.endswith('Cancelled: patient left')
    assert set(order.tests.values_list('status', flat=True)) == {'CANCELLED'}


def test_mark_paid_directly(order):
    lab.mark_lab_order_paid(order.pk)
    assert Invoice.objects.get(pk=order.invoice_id).status == Invoice.STATUS_PAID
    with pytest.raises(Conflict):
        lab.mark_lab_order_paid(order.pk)
    assert lab.mark_lab_order_paid_by_invoice(order.invoice_id) is None


# ---------------------------------------------------------------------
# API
# ---------------------------------------------------------------------
def test_api_order_and_process(api, doctor, tech, patient, lab_services):
    api.force_authenticate(doctor.user)
    r = api.post('/api/lab/orders', {'patientId': patient.pk, 'serviceIds': [lab_services[0].pk]}, format='json')
    assert r.status_code == 201, r.data
    order_id = r.data['order']['id']
    test_id = r.data['order']['tests'][0]['id']
    assert r.data['message'].startswith('Lab order created successfully. Total amount: $25.00')

    order = LabOrder.objects.get(pk=order_id)
    pay(order)

    api.force_authenticate(tech.user)
    r = api.post(f'/api/lab/tests/{test_id}/claim')
    assert r.status_code == 200, r.data
    assert r.data['status'] == 'CLAIMED'
    assert api.post(f'/api/lab/tests/{test_id}/start').status_code == 200
    r = api.post(f'/api/lab/tests/{test_id}/complete', {'resultValue': 'normal'}, format='json')
    assert r.status_code == 200, r.data
    assert r.data['status'] == 'COMPLETED'


def test_api_non_staff_cannot_claim(api, order, admin_user):
    pay(order)
    api.force_authenticate(admin_user)
    r = api.post(f'/api/lab/tests/{order.tests.first().pk}/claim')
    assert r.status_code == 403
