from __future__ import annotations

from typing import Any, Dict, Optional

from django.db.models import Count, Q

from clinic.exceptions import Conflict
from clinic.models import Consultation, Department
from clinic.services import payloads
from rest_framework.exceptions import NotFound

SORT_FIELDS = {'name': 'name', 'code': 'code', 'createdAt': 'created_at', 'updatedAt': 'updated_at'}
EDITABLE = ('name', 'code', 'description', 'is_active')


def _ensure_unique(name: Optional[str], code: Optional[str], exclude_pk=None) -> None:
    cond = Q()
    if name:
        cond |= Q(name__iexact=name)
    if code:
        cond |= Q(code__iexact=code)
    if not cond:
        return
    qs = Department.objects.filter(cond)
    if exclude_pk is not None:
        qs = qs.exclude(pk=exclude_pk)
    if qs.exists():
        raise Conflict('Department with this name or code already exists')


def create_department(data: Dict[str, Any]) -> Department:
    _ensure_unique(data.get('name'), data.get('code'))
    return Department.objects.create(**{k: data[k] for k in EDITABLE if k in data})


def list_departments(*, is_active: Optional[bool] = None, search: Optional[str] = None,
                     sort_by: Optional[str] = None, sort_order: Optional[str] = None,
                     page: Optional[int] = None, limit: Optional[int] = None) -> Dict[str, Any]:
    qs = Department.objects.annotate(
        staff_count=Count('staff', distinct=True),
        service_count=Count('services', distinct=True),
    )
    if is_active is not None:
        qs = qs.filter(is_active=is_active)
    if search:
        qs = qs.filter(Q(name__icontains=search) | Q(code__icontains=search) | Q(description__icontains=search))
    ordering = SORT_FIELDS.get(sort_by or 'name', 'name')
    if sort_order == 'desc':
        ordering = '-' + ordering
    items, pagination = payloads.paginate(qs.order_by(ordering, 'id'), page, limit, default_limit=10)
    return {
        'data': [
            {**payloads.department(d), 'staffCount': d.staff_count, 'serviceCount': d.service_count}
            for d in items
        ],
        **pagination,
        'counts': {
            'totalDepartments': Department.objects.count(),
            'activeDepartments': Department.objects.filter(is_active=True).count(),
        },
    }


def get_department(pk) -> Department:
    dept = Department.objects.filter(pk=pk).first()
    if not dept:
        raise NotFound(f'Department with ID {pk} not found')
    return dept


def get_department_by_code(code: str) -> Department:
    dept = Department.objects.filter(code__iexact=code).first()
    if not dept:
        raise NotFound(f'Department with code {code} not found')
    return dept


def update_department(pk, data: Dict[str, Any]) -> Department:
    dept = get_department(pk)
    _ensure_unique(data.get('name'), data.get('code'), exclude_pk=dept.pk)
    fields = [k for k in EDITABLE if k in data]
    for k in fields:
        setattr(dept, k, data[k])
    if fields:
        dept.save(update_fields=fields + ['updated_at'])
    return dept


def delete_department(pk) -> Dict[str, str]:
    dept = get_department(pk)
    if dept.staff.exists():
        raise Conflict('Cannot delete department with associated staff members')
    if dept.services.exists():
        raise Conflict('Cannot delete department with associated services')
    dept.delete()
    return {'message': 'Department deleted successfully'}


def department_stats(pk) -> Dict[str, Any]:
    dept = get_department(pk)
    consultations = Consultation.objects.filter(Q(department=dept) | Q(doctor__department=dept)).distinct()
    return {
        'id': dept.id,
        'name': dept.name,
        'code': dept.code,
        'staffCount': dept.staff.count(),
        'serviceCount': dept.services.count(),
        'totalConsultations': consultations.count(),
    }
