from datetime import timedelta
from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from clinic.models import (
    Invoice, Permission, PermissionRequest, PermissionTemplate, Role, Service, TemporaryPermission,
)
from clinic.services import access

pytestmark = pytest.mark.django_db


def run(name):
    out = StringIO()
    call_command(name, stdout=out)
    return out.getvalue().strip()


def test_seed_is_idempotent():
    first = run('seed_reference_data')
    assert first.startswith('Seeded: ')
    counts = (Permission.objects.count(), Role.objects.count(), Service.objects.count())
    assert run('seed_reference_data') == 'Seeded: 0 permissions, 0 roles, 0 templates, 0 categories, 0 services'
    assert (Permission.objects.count(), Role.objects.count(), Service.objects.count()) == counts

    card = Service.objects.get(service_code='REG001')
    assert card.name == 'Patient Medical Card' and card.requires_pre_payment
    assert Role.objects.get(name='ADMIN').permissions == ['admin']
    cashier_template = PermissionTemplate.objects.get(name='CASHIER Role')
    assert cashier_template.is_system and 'process_payments' in cashier_template.permissions
    lab_codes = {row['name'] for row in access.list_permissions('Laboratory').get('Laboratory', [])}
    assert 'process_lab_tests' in lab_codes


def test_cleanup_expired_permissions(make_staff):
    member = make_staff('temp')
    TemporaryPermission.objects.create(
        user=member.user, permission='view_billing', reason='cover',
        expires_at=timezone.now() - timedelta(minutes=1),
    )
    stale = PermissionRequest.objects.create(requester=member.user, permission='manage_billing', reason='audit',
                                             expires_at=timezone.now() - timedelta(minutes=1))
    assert run('cleanup_expired_permissions').splitlines() == [
        'Cleaned up 1 expired permissions',
        'Cleaned up 1 expired permission requests',
    ]
    assert not TemporaryPermission.objects.filter(is_active=True).exists()
    stale.refresh_from_db()
    assert stale.status == PermissionRequest.STATUS_EXPIRED


def test_mark_overdue_invoices(patient):
    Invoice.objects.create(invoice_number='INV26010001', patient=patient, status=Invoice.STATUS_PENDING,
                           total_amount=Decimal('10'), balance=Decimal('10'),
                           due_date=timezone.now() - timedelta(days=1))
    assert run('mark_overdue_invoices') == 'Marked 1 invoice(s) overdue'
    assert Invoice.objects.get().status == Invoice.STATUS_OVERDUE
