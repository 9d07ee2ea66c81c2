"""
Staff members, roles and role assignments.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from django.db import transaction
from django.db.models import Count, Q
from rest_framework.exceptions import NotFound

from clinic.exceptions import Conflict
from clinic.models import (
    Consultation, Department, LabOrder, Prescription, Role, StaffMember,
    StaffRoleAssignment, Surgery, User,
)
from clinic.services import numbering, payloads
from clinic.services.audit import actor_name, log_action
from clinic.services.patients import unique_username

logger = logging.getLogger(__name__)

STAFF_FIELDS = (
    'specialization', 'license_number', 'phone_number', 'is_service_provider', 'is_active', 'hire_date',
)
USER_FIELDS = ('first_name', 'last_name', 'email')


def _department(pk) -> Optional[Department]:
    if pk is None:
        return None
    dept = Department.objects.filter(pk=pk).first()
    if not dept:
        raise NotFound('Department not found')
    return dept


def _staff_qs():
    return StaffMember.objects.select_related('user', 'department').prefetch_related('role_assignments__role')


def create_staff(data: Dict[str, Any], *, actor=None) -> StaffMember:
    """Create the login user and the staff profile.

    The user gets a random password; it is expected to be reset through
    the admin before first login.
    """
    if StaffMember.objects.filter(employee_id=data['employee_id']).exists():
        raise Conflict('Staff member with this employee ID already exists')
    if User.objects.filter(email__iexact=data['email']).exists():
        raise Conflict('User with this email already exists')
    department = _department(data.get('department_id'))

    with transaction.atomic():
        user = User.objects.create_user(
            username=unique_username(data['first_name'], data['last_name']),
            email=data['email'],
            password=numbering.temporary_password(),
            first_name=data['first_name'],
            last_name=data['last_name'],
        )
        member = StaffMember.objects.create(
            user=user,
            employee_id=data['employee_id'],
            department=department,
            **{k: data[k] for k in STAFF_FIELDS if data.get(k) is not None},
        )
        log_action(user=actor, action='staff_create', object_type='staff', object_id=member.pk,
                   detail={'employeeId': member.employee_id})
    logger.info('staff member %s created (%s)', member.employee_id, user.username)
    return get_staff(member.pk)


def list_staff(*, search: Optional[str] = None, department_pk=None, is_active: Optional[bool] = None,
               service_provider: Optional[bool] = None, page: Optional[int] = None,
               limit: Optional[int] = None) -> Dict[str, Any]:
    qs = _staff_qs()
    if search:
        qs = qs.filter(
            Q(user__first_name__icontains=search) | Q(user__last_name__icontains=search)
            | Q(user__email__icontains=search) | Q(employee_id__icontains=search)
            | Q(specialization__icontains=search)
        )
    if department_pk:
        qs = qs.filter(department_id=department_pk)
    if is_active is not None:
        qs = qs.filter(is_active=is_active)
    if service_provider is not None:
        qs = qs.filter(is_service_provider=service_provider)
    items, pagination = payloads.paginate(qs.order_by('user__last_name', 'user__first_name', 'id'), page, limit)
    return {'data': [payloads.staff(s) for s in items], 'pagination': pagination}


def get_staff(pk) -> StaffMember:
    member = _staff_qs().filter(pk=pk).first()
    if not member:
        raise NotFound('Staff member not found')
    return member


def get_staff_by_employee_id(employee_id: str) -> StaffMember:
    member = _staff_qs().filter(employee_id=employee_id).first()
    if not member:
        raise NotFound('Staff member not found')
    return member


def update_staff(pk, data: Dict[str, Any]) -> StaffMember:
    member = get_staff(pk)
    employee_id = data.get('employee_id')
    if employee_id and employee_id != member.employee_id:
        if StaffMember.objects.filter(employee_id=employee_id).exclude(pk=member.pk).exists():
            raise Conflict('Staff member with this employee ID already exists')
        member.employee_id = employee_id
    email = data.get('email')
    if email and User.objects.filter(email__iexact=email).exclude(pk=member.user_id).exists():
        raise Conflict('User with this email already exists')
    if 'department_id' in data:
        member.department = _department(data['department_id'])
    with transaction.atomic():
        user_fields = [k for k in USER_FIELDS if k in data]
        for k in user_fields:
            setattr(member.user, k, data[k])
        if user_fields:
            member.user.save(update_fields=user_fields)
        for k in STAFF_FIELDS:
            if k in data:
                setattr(member, k, data[k])
        member.save()
    return get_staff(member.pk)


def deactivate_staff(pk) -> StaffMember:
    member = get_staff(pk)
    with transaction.atomic():
        member.is_active = False
        member.save(update_fields=['is_active', 'updated_at'])
        member.user.is_active = False
        member.user.save(update_fields=['is_active'])
    logger.info('staff member %s deactivated', member.employee_id)
    return member


def staff_stats() -> Dict[str, int]:
    return {
        'totalStaff': StaffMember.objects.count(),
        'activeStaff': StaffMember.objects.filter(is_active=True).count(),
        'inactiveStaff': StaffMember.objects.filter(is_active=False).count(),
        'totalDepartments': Department.objects.count(),
        'totalRoles': Role.objects.count(),
    }


def member_stats(pk) -> Dict[str, int]:
    member = get_staff(pk)
    return {
        'totalRoleAssignments': member.role_assignments.filter(is_active=True).count(),
        'totalConsultations': Consultation.objects.filter(doctor=member).count(),
        'totalLabOrders': LabOrder.objects.filter(doctor=member).count(),
        'totalPrescriptions': Prescription.objects.filter(doctor=member).count(),
        'totalSurgeries': Surgery.objects.filter(surgeon=member).count(),
    }


def set_service_provider(pk, flag: bool) -> StaffMember:
    member = get_staff(pk)
    member.is_service_provider = bool(flag)
    member.save(update_fields=['is_service_provider', 'updated_at'])
    return member


def service_providers(*, department_pk=None, specialization: Optional[str] = None) -> List[StaffMember]:
    qs = _staff_qs().filter(is_service_provider=True, is_active=True)
    if department_pk:
        qs = qs.filter(department_id=department_pk)
    if specialization:
        qs = qs.filter(specialization__icontains=specialization)
    return list(qs.order_by('user__last_name', 'user__first_name'))


def service_provider_stats() -> Dict[str, Any]:
    providers = StaffMember.objects.filter(is_service_provider=True)
    active = providers.filter(is_active=True)
    return {
        'totalServiceProviders': providers.count(),
        'activeServiceProviders': active.count(),
        'inactiveServiceProviders': providers.filter(is_active=False).count(),
        'serviceProvidersByDepartment': [
            {'departmentId': row['department_id'], 'count': row['n']}
            for row in active.values('department_id').annotate(n=Count('id')).order_by('department_id')
        ],
        'serviceProvidersBySpecialization': [
            {'specialization': row['specialization'], 'count': row['n']}
            for row in active.values('specialization').annotate(n=Count('id')).order_by('specialization')
        ],
    }


# ---------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------
def create_role(*, name: str, description: str = '', permissions: Optional[List[str]] = None) -> Role:
    if Role.objects.filter(name__iexact=name).exists():
        raise Conflict('Role with this name already exists')
    return Role.objects.create(name=name, description=description or '', permissions=list(permissions or []))


def list_roles(*, is_active: Optional[bool] = None, search: Optional[str] = None) -> List[Dict[str, Any]]:
    qs = Role.objects.annotate(staff_count=Count('assignments', filter=Q(assignments__is_active=True)))
    if is_active is not None:
        qs = qs.filter(is_active=is_active)
    if search:
        qs = qs.filter(Q(name__icontains=search) | Q(description__icontains=search))
    return [{**payloads.role(r), 'staffCount': r.staff_count} for r in qs.order_by('name')]


def get_role(pk) -> Role:
    role = Role.objects.filter(pk=pk).first()
    if not role:
        raise NotFound(f'Role with ID {pk} not found')
    return role


def update_role(pk, data: Dict[str, Any]) -> Role:
    role = get_role(pk)
    name = data.get('name')
    if name and Role.objects.filter(name__iexact=name).exclude(pk=role.pk).exists():
        raise Conflict('Role with this name already exists')
    fields = [k for k in ('name', 'description', 'permissions', 'is_active') if k in data]
    for k in fields:
        setattr(role, k, data[k])
    if fields:
        role.save(update_fields=fields + ['updated_at'])
    return role


def delete_role(pk) -> Dict[str, str]:
    role = get_role(pk)
    if role.assignments.filter(is_active=True).exists():
        raise Conflict('Cannot delete role with associated staff members')
    role.delete()
    return {'message': 'Role deleted successfully'}


def assign_role(staff_pk, role_pk, *, actor=None) -> StaffRoleAssignment:
    member = get_staff(staff_pk)
    role = get_role(role_pk)
    existing = StaffRoleAssignment.objects.filter(staff=member, role=role).first()
    if existing and existing.is_active:
        raise Conflict('Role is already assigned to this staff member')
    if existing:
        existing.is_active = True
        existing.assigned_by = actor_name(actor)
        existing.save(update_fields=['is_active', 'assigned_by'])
        assignment = existing
    else:
        assignment = StaffRoleAssignment.objects.create(staff=member, role=role, assigned_by=actor_name(actor))
    log_action(user=actor, action='role_assign', object_type='staff', object_id=member.pk,
               detail={'role': role.name})
    return assignment


def remove_role(staff_pk, role_pk, *, actor=None) -> Dict[str, str]:
    assignment = StaffRoleAssignment.objects.filter(staff_id=staff_pk, role_id=role_pk, is_active=True).first()
    if not assignment:
        raise NotFound('Role assignment not found')
    assignment.is_active = False
    assignment.save(update_fields=['is_active'])
    log_action(user=actor, action='role_remove', object_type='staff', object_id=assignment.staff_id,
               detail={'roleId': assignment.role_id})
    return {'message': 'Role removed from staff member successfully'}


def staff_roles(staff_pk) -> List[Dict[str, Any]]:
    get_staff(staff_pk)
    assignments = (
        StaffRoleAssignment.objects.filter(staff_id=staff_pk, is_active=True)
        .select_related('role').order_by('role__name')
    )
    return [
        {'id': a.id, 'assignedAt': a.assigned_at, 'assignedBy': a.assigned_by, 'role': payloads.role(a.role)}
        for a in assignments
    ]
