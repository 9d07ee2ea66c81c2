"""
Service catalogue: categories and the billable services inside them.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.db.models import Count, Q
from rest_framework.exceptions import NotFound, ValidationError

from clinic.exceptions import Conflict
from clinic.models import Charge, Department, Invoice, Service, ServiceCategory

SERVICE_FIELDS = ('name', 'service_code', 'description', 'requires_pre_payment', 'is_active')
OPEN_INVOICE_STATUSES = (Invoice.STATUS_DRAFT,) + Invoice.OUTSTANDING_STATUSES


# ---------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------
def create_category(*, name: str, description: str = '') -> ServiceCategory:
    if ServiceCategory.objects.filter(name__iexact=name).exists():
        raise Conflict('Service category with this name already exists')
    return ServiceCategory.objects.create(name=name, description=description or '')


def list_categories(*, is_active: Optional[bool] = None) -> List[Dict[str, Any]]:
    qs = ServiceCategory.objects.annotate(
        active_services=Count('services', filter=Q(services__is_active=True)),
    )
    if is_active is not None:
        qs = qs.filter(is_active=is_active)
    return [
        {'id': c.id, 'name': c.name, 'description': c.description,
         'isActive': c.is_active, 'serviceCount': c.active_services}
        for c in qs.order_by('name')
    ]


def get_category(pk) -> ServiceCategory:
    cat = ServiceCategory.objects.filter(pk=pk).first()
    if not cat:
        raise NotFound('Service category not found')
    return cat


def update_category(pk, data: Dict[str, Any]) -> ServiceCategory:
    cat = get_category(pk)
    name = data.get('name')
    if name and ServiceCategory.objects.filter(name__iexact=name).exclude(pk=cat.pk).exists():
        raise Conflict('Service category with this name already exists')
    fields = [k for k in ('name', 'description', 'is_active') if k in data]
    for k in fields:
        setattr(cat, k, data[k])
    if fields:
        cat.save(update_fields=fields + ['updated_at'])
    return cat


def deactivate_category(pk) -> Dict[str, str]:
    cat = get_category(pk)
    if cat.services.filter(is_active=True).exists():
        raise Conflict('Cannot delete category with active services')
    cat.is_active = False
    cat.save(update_fields=['is_active', 'updated_at'])
    return {'message': 'Service category deactivated successfully'}


# ---------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------
def _department(pk) -> Optional[Department]:
    if pk is None:
        return None
    dept = Department.objects.filter(pk=pk).first()
    if not dept:
        raise NotFound(f'Department with ID {pk} not found')
    return dept


def create_service(data: Dict[str, Any]) -> Service:
    category = get_category(data['category_id'])
    if Service.objects.filter(category=category, name__iexact=data['name']).exists():
        raise Conflict('Service with this name already exists in this category')
    code = data.get('service_code')
    if code and Service.objects.filter(service_code=code).exists():
        raise Conflict('Service with this code already exists')
    base = Decimal(str(data['base_price']))
    return Service.objects.create(
        category=category,
        department=_department(data.get('department_id')),
        base_price=base,
        current_price=base,
        **{k: data[k] for k in SERVICE_FIELDS if k in data and data[k] is not None},
    )


def list_services(*, category_pk=None, is_active: Optional[bool] = None, search: Optional[str] = None,
                  requires_pre_payment: Optional[bool] = None) -> List[Service]:
    qs = Service.objects.select_related('category')
    if category_pk:
        qs = qs.filter(category_id=category_pk)
    if is_active is not None:
        qs = qs.filter(is_active=is_active)
    if requires_pre_payment is not None:
        qs = qs.filter(requires_pre_payment=requires_pre_payment)
    if search:
        qs = qs.filter(
            Q(name__icontains=search) | Q(description__icontains=search) | Q(service_code__icontains=search)
        )
    return list(qs.order_by('category__name', 'name'))


def get_service(pk) -> Service:
    svc = Service.objects.select_related('category').filter(pk=pk).first()
    if not svc:
        raise NotFound('Service not found')
    return svc


def update_service(pk, data: Dict[str, Any]) -> Service:
    svc = get_service(pk)
    if 'category_id' in data:
        svc.category = get_category(data['category_id'])
    if 'department_id' in data:
        svc.department = _department(data['department_id'])
    name = data.get('name')
    if name and Service.objects.filter(category=svc.category, name__iexact=name).exclude(pk=svc.pk).exists():
        raise Conflict('Service with this name already exists in this category')
    for k in SERVICE_FIELDS:
        if k in data:
            setattr(svc, k, data[k])
    if 'base_price' in data:
        svc.base_price = Decimal(str(data['base_price']))
    svc.save()
    return svc


def deactivate_service(pk) -> Dict[str, str]:
    svc = get_service(pk)
    if Charge.objects.filter(service=svc, invoice__status__in=OPEN_INVOICE_STATUSES).exists():
        raise Conflict('Cannot delete service that is being used in active charges')
    svc.is_active = False
    svc.save(update_fields=['is_active', 'updated_at'])
    return {'message': 'Service deactivated successfully'}


def update_price(pk, new_price) -> Service:
    """Changes the current price only; ``base_price`` is the list price."""
    svc = get_service(pk)
    price = Decimal(str(new_price))
    if price < 0:
        raise ValidationError({'price': 'Price cannot be negative'})
    svc.current_price = price
    svc.save(update_fields=['current_price', 'updated_at'])
    return svc


def services_by_category(category_pk) -> List[Service]:
    category = get_category(category_pk)
    return list(category.services.filter(is_active=True).select_related('category').order_by('name'))


def services_requiring_pre_payment() -> List[Service]:
    return list(
        Service.objects.filter(requires_pre_payment=True, is_active=True)
        .select_related('category')
        .order_by('category__name', 'name')
    )
