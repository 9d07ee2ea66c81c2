from decimal import Decimal

import pytest
from rest_framework.exceptions import NotFound

from clinic.exceptions import Conflict
from clinic.models import Department, Invoice, Role, Service, ServiceCategory, StaffMember
from clinic.services import billing, catalog, departments, staff

pytestmark = pytest.mark.django_db


# ---------------------------------------------------------------------
# Departments
# ---------------------------------------------------------------------
def test_department_uniqueness_and_delete_guard(make_staff):
    cardio = departments.create_department({'name': 'Cardiology', 'code': 'CARD'})
    with pytest.raises(Conflict):
        departments.create_department({'name': 'cardiology', 'code': 'OTHER'})
    with pytest.raises(Conflict):
        departments.update_department(
            departments.create_department({'name': 'Neurology', 'code': 'NEU'}).pk, {'code': 'card'},
        )
    make_staff('heart', department=cardio)
    with pytest.raises(Conflict):
        departments.delete_department(cardio.pk)


def test_department_list_counts_and_stats(make_staff):
    a = departments.create_department({'name': 'A Ward', 'code': 'AW'})
    departments.create_department({'name': 'B Ward', 'code': 'BW', 'is_active': False})
    make_staff('one', department=a)
    page = departments.list_departments(is_active=True)
    assert page['total'] == 1
    assert page['limit'] == 10
    assert page['data'][0]['staffCount'] == 1
    assert page['counts'] == {'totalDepartments': 2, 'activeDepartments': 1}
    assert departments.department_stats(a.pk)['staffCount'] == 1
    assert departments.get_department_by_code('aw').pk == a.pk
    with pytest.raises(NotFound):
        departments.get_department(999999)


# ---------------------------------------------------------------------
# Service catalogue
# ---------------------------------------------------------------------
def test_service_create_sets_current_price():
    cat = catalog.create_category(name='Radiology')
    svc = catalog.create_service({'category_id': cat.pk, 'name': 'Chest X-Ray', 'service_code': 'RAD001',
                                  'base_price': Decimal('80.00')})
    assert svc.current_price == Decimal('80.00')
    with pytest.raises(Conflict):
        catalog.create_service({'category_id': cat.pk, 'name': 'chest x-ray', 'base_price': '1'})
    with pytest.raises(Conflict):
        catalog.create_category(name='radiology')


def test_update_price_keeps_base_price(lab_services):
    svc = catalog.update_price(lab_services[0].pk, '30.00')
    assert svc.current_price == Decimal('30.00')
    assert Service.objects.get(pk=svc.pk).base_price == Decimal('25.00')


def test_category_with_active_services_cannot_be_deactivated(lab_category, lab_services):
    with pytest.raises(Conflict):
        catalog.deactivate_category(lab_category.pk)
    for s in lab_services:
        catalog.deactivate_service(s.pk)
    catalog.deactivate_category(lab_category.pk)
    assert not ServiceCategory.objects.get(pk=lab_category.pk).is_active


def test_service_in_open_invoice_cannot_be_deactivated(patient, lab_services):
    billing.create_invoice(patient_pk=patient.pk, status=Invoice.STATUS_PENDING,
                           charges=[{'service_id': lab_services[0].pk}])
    with pytest.raises(Conflict):
        catalog.deactivate_service(lab_services[0].pk)


def test_service_filters(lab_services, medical_card):
    assert [s.pk for s in catalog.services_requiring_pre_payment()] == [medical_card.pk]
    found = catalog.list_services(search='urin')
    assert [s.name for s in found] == ['Urinalysis']
    assert len(catalog.list_services(requires_pre_payment=False)) == 2


# ---------------------------------------------------------------------
# Staff and roles
# ---------------------------------------------------------------------
def staff_data(**over):
    data = {'employee_id': 'D100', 'email': 'dr.who@hospital.test', 'first_name': 'Ngozi', 'last_name': 'Eke',
            'specialization': 'Cardiology', 'is_service_provider': True}
    data.update(over)
    return data


def test_create_staff_creates_user():
    member = staff.create_staff(staff_data())
    assert member.user.username == 'ngozi.eke'
    assert member.user.has_usable_password()
    with pytest.raises(Conflict):
        staff.create_staff(staff_data(email='other@hospital.test'))
    with pytest.raises(Conflict):
        staff.create_staff(staff_data(employee_id='D101', email='DR.WHO@hospital.test'))
    with pytest.raises(NotFound):
        staff.create_staff(staff_data(employee_id='D102', email='x@hospital.test', department_id=999999))


def test_deactivate_staff_disables_login():
    member = staff.create_staff(staff_data())
    staff.deactivate_staff(member.pk)
    member = StaffMember.objects.select_related('user').get(pk=member.pk)
    assert not member.is_active and not member.user.is_active


def test_service_provider_listing(make_staff):
    make_staff('doc', provider=True)
    make_staff('clerk')
    assert [m.user.username for m in staff.service_providers()] == ['doc']
    stats = staff.service_provider_stats()
    assert stats['totalServiceProviders'] == 1
    page = staff.list_staff(service_provider=False)
    assert page['pagination']['total'] == 1


def test_role_assignment_cycle(make_staff):
    member = make_staff('nurse')
    role = staff.create_role(name='NURSE', permissions=['view_patients'])
    staff.assign_role(member.pk, role.pk)
    with pytest.raises(Conflict):
        staff.assign_role(member.pk, role.pk)
    with pytest.raises(Conflict):
        staff.delete_role(role.pk)
    assert [r['role']['name'] for r in staff.staff_roles(member.pk)] == ['NURSE']

    staff.remove_role(member.pk, role.pk)
    with pytest.raises(NotFound):
        staff.remove_role(member.pk, role.pk)
    staff.assign_role(member.pk, role.pk)
    assert staff.member_stats(member.pk)['totalRoleAssignments'] == 1


def test_role_names_are_unique():
    staff.create_role(name='DOCTOR')
    with pytest.raises(Conflict):
        staff.create_role(name='doctor')
    assert Role.objects.count() == 1


# ---------------------------------------------------------------------
# API
# ---------------------------------------------------------------------
def test_api_department_create_uppercases_code(api, make_staff):
    manager = make_staff('mgr', ['manage_departments'])
    api.force_authenticate(manager.user)
    r = api.post('/api/departments', {'name': 'Pediatrics', 'code': 'ped'}, format='json')
    assert r.status_code == 201, r.data
    assert r.data['code'] == 'PED'
    assert Department.objects.filter(code='PED').exists()


def test_api_department_write_needs_manage(api, make_staff):
    viewer = make_staff('viewer', ['view_departments'])
    api.force_authenticate(viewer.user)
    assert api.get('/api/departments').status_code == 200
    assert api.post('/api/departments', {'name': 'X', 'code': 'X'}, format='json').status_code == 403


def test_api_staff_create(api, make_staff):
    hr = make_staff('hr', ['view_staff', 'create_staff'])
    api.force_authenticate(hr.user)
    r = api.post('/api/staff', {'employeeId': 'N200', 'email': 'nurse@hospital.test',
                                'firstName': 'Amaka', 'lastName': 'Obi', 'serviceProvider': True}, format='json')
    assert r.status_code == 201, r.data
    assert r.data['isServiceProvider'] is True
    r = api.get('/api/staff/employee/N200')
    assert r.status_code == 200
    assert r.data['email'] == 'nurse@hospital.test'


def test_api_service_price(api, make_staff, lab_services):
    admin = make_staff('svcadmin', ['manage_services'])
    api.force_authenticate(admin.user)
    r = api.patch(f'/api/services/{lab_services[1].pk}/price', {'price': '22.50'}, format='json')
    assert r.status_code == 200, r.data
    assert Service.objects.get(pk=lab_services[1].pk).current_price == Decimal('22.50')
