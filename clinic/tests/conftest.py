from datetime import date
from decimal import Decimal

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from clinic.models import (
    Patient, PatientAccount, Role, Service, ServiceCategory, StaffMember, StaffRoleAssignment, User,
)


@pytest.fixture(autouse=True)
def _clear_cache():
    # throttle counters and the permission catalogue live in the cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api():
    return APIClient()


@pytest.fixture
def admin_user(db):
    return User.objects.create_user(username='root', password='P@ssw0rd1', permissions=['admin'])


@pytest.fixture
def make_staff(db):
    """Factory: a staff member whose user holds ``perms`` directly, optionally via a role."""
    counter = {'n': 0}

    def make(username, perms=(), *, provider=False, role=None, department=None):
        counter['n'] += 1
        user = User.objects.create_user(
            username=username, password='P@ssw0rd1', first_name=username.title(), last_name='Staff',
            email=f'{username}@hospital.test', permissions=list(perms),
        )
        member = StaffMember.objects.create(
            user=user, employee_id=f'EMP{counter["n"]:04d}', department=department,
            is_service_provider=provider,
        )
        if role is not None:
            r, _ = Role.objects.get_or_create(name=role)
            StaffRoleAssignment.objects.create(staff=member, role=r)
        return member
    return make


@pytest.fixture
def patient(db):
    p = Patient.objects.create(
        patient_id='P26010001', first_name='Ada', last_name='Obi',
        date_of_birth=date(1990, 5, 1), gender='FEMALE', phone_number='0800000001',
    )
    PatientAccount.objects.create(patient=p, account_number='ACC26010001')
    return p


@pytest.fixture
def lab_category(db):
    return ServiceCategory.objects.create(name='Laboratory')


@pytest.fixture
def lab_services(lab_category):
    return [
        Service.objects.create(category=lab_category, name='Complete Blood Count', service_code='LAB001',
                               base_price=Decimal('25.00'), current_price=Decimal('25.00')),
        Service.objects.create(category=lab_category, name='Urinalysis', service_code='LAB003',
                               base_price=Decimal('20.00'), current_price=Decimal('20.00')),
    ]


@pytest.fixture
def medical_card(db):
    cat = ServiceCategory.objects.create(name='Registration')
    return Service.objects.create(
        category=cat, name='Patient Medical Card', service_code='REG001',
        base_price=Decimal('100.00'), current_price=Decimal('100.00'), requires_pre_payment=True,
    )
