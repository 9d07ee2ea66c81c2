"""
Treatments and their care teams.

Only members of the active care team (or admins) may change a
treatment; deleting it is reserved to the primary provider.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from clinic.models import Patient, StaffMember, Treatment, TreatmentLink, TreatmentNote, TreatmentProvider
from clinic.services import access, payloads

logger = logging.getLogger(__name__)

EDITABLE = ('title', 'description', 'treatment_type', 'priority', 'chief_complaint', 'diagnosis', 'end_date')


def _qs():
    return Treatment.objects.select_related('patient', 'primary_provider__user')


def _staff_of(user) -> Optional[StaffMember]:
    if user is None or not getattr(user, 'is_authenticated', False):
        return None
    return StaffMember.objects.filter(user=user).first()


def _can_update(t: Treatment, user) -> bool:
    staff = _staff_of(user)
    if staff and t.providers.filter(provider=staff, is_active=True).exists():
        return True
    return access.is_admin(user)


def _can_delete(t: Treatment, user) -> bool:
    staff = _staff_of(user)
    if staff and staff.pk == t.primary_provider_id:
        return True
    return access.is_admin(user)


def _ensure_update(t: Treatment, user, message: str = 'You do not have permission to update this treatment') -> None:
    if not _can_update(t, user):
        raise PermissionDenied(message)


def create_treatment(data: Dict[str, Any], *, additional_providers: Iterable[Dict[str, Any]] = ()) -> Treatment:
    """Create a treatment with its team; the primary provider joins as PRIMARY.

    ``additional_providers`` items carry ``provider_id`` and an optional
    ``role`` (CONSULTANT when omitted).
    """
    patient = Patient.objects.filter(pk=data['patient_id']).first()
    if not patient:
        raise NotFound('Patient not found')
    primary = StaffMember.objects.filter(pk=data['primary_provider_id']).first()
    if not primary or not primary.is_service_provider:
        raise ValidationError('Primary provider must be a service provider')

    extra = [p for p in additional_providers if int(p['provider_id']) != primary.pk]
    if extra:
        ids = {int(p['provider_id']) for p in extra}
        found = list(StaffMember.objects.filter(pk__in=ids))
        if len(found) != len(ids):
            raise ValidationError('One or more additional providers not found')
        if any(not s.is_service_provider for s in found):
            raise ValidationError('All additional providers must be service providers')

    with transaction.atomic():
        t = Treatment.objects.create(
            patient=patient,
            primary_provider=primary,
            start_date=data.get('start_date') or timezone.now(),
            **{k: data[k] for k in EDITABLE if data.get(k) is not None},
        )
        TreatmentProvider.objects.create(treatment=t, provider=primary, role=TreatmentProvider.ROLE_PRIMARY)
        seen = set()
        for p in extra:
            pid = int(p['provider_id'])
            if pid in seen:
                continue
            seen.add(pid)
            TreatmentProvider.objects.create(
                treatment=t, provider_id=pid, role=p.get('role') or TreatmentProvider.ROLE_CONSULTANT,
            )
    logger.info('treatment %s created for patient %s', t.pk, patient.patient_id)
    return get_treatment(t.pk)


def list_treatments(*, patient_pk=None, provider_pk=None, status: Optional[str] = None,
                    treatment_type: Optional[str] = None, priority: Optional[str] = None,
                    page: Optional[int] = None, limit: Optional[int] = None) -> Dict[str, Any]:
    qs = _qs()
    if patient_pk:
        qs = qs.filter(patient_id=patient_pk)
    if provider_pk:
        qs = qs.filter(providers__provider_id=provider_pk, providers__is_active=True).distinct()
    if status:
        qs = qs.filter(status=status)
    if treatment_type:
        qs = qs.filter(treatment_type=treatment_type)
    if priority:
        qs = qs.filter(priority=priority)
    items, pagination = payloads.paginate(qs.order_by('-start_date', '-id'), page, limit)
    return {'data': [payloads.treatment(t) for t in items], 'pagination': pagination}


def get_treatment(pk) -> Treatment:
    t = _qs().filter(pk=pk).first()
    if not t:
        raise NotFound('Treatment not found')
    return t


def update_treatment(pk, data: Dict[str, Any], *, actor) -> Treatment:
    t = get_treatment(pk)
    _ensure_update(t, actor)
    fields = [k for k in EDITABLE if k in data]
    for k in fields:
        setattr(t, k, data[k])
    if fields:
        t.save(update_fields=fields + ['updated_at'])
    return t


def update_status(pk, status: str, *, actor) -> Treatment:
    t = get_treatment(pk)
    _ensure_update(t, actor)
    t.status = status
    fields = ['status', 'updated_at']
    if status == Treatment.STATUS_COMPLETED and t.end_date is None:
        t.end_date = timezone.now()
        fields.append('end_date')
    t.save(update_fields=fields)
    return t


def delete_treatment(pk, *, actor) -> Dict[str, str]:
    t = get_treatment(pk)
    if not _can_delete(t, actor):
        raise PermissionDenied('You do not have permission to delete this treatment')
    t.delete()
    return {'message': 'Treatment deleted successfully'}


# ---------------------------------------------------------------------
# Care team
# ---------------------------------------------------------------------
def add_provider(pk, provider_pk, role: str = TreatmentProvider.ROLE_CONSULTANT, *, actor) -> TreatmentProvider:
    t = get_treatment(pk)
    _ensure_update(t, actor, 'You do not have permission to modify this treatment')
    provider = StaffMember.objects.filter(pk=provider_pk).first()
    if not provider or not provider.is_service_provider:
        raise ValidationError('Provider must be a service provider')
    existing = TreatmentProvider.objects.filter(treatment=t, provider=provider).first()
    if existing and existing.is_active:
        raise ValidationError('Provider is already part of this treatment')
    if existing:
        existing.is_active = True
        existing.left_at = None
        existing.role = role
        existing.save(update_fields=['is_active', 'left_at', 'role'])
        return existing
    return TreatmentProvider.objects.create(treatment=t, provider=provider, role=role)


def remove_provider(pk, provider_pk, *, actor) -> Dict[str, str]:
    t = get_treatment(pk)
    _ensure_update(t, actor, 'You do not have permission to modify this treatment')
    if t.primary_provider_id == int(provider_pk):
        raise ValidationError('Cannot remove primary provider from treatment')
    member = TreatmentProvider.objects.filter(treatment=t, provider_id=provider_pk, is_active=True).first()
    if not member:
        raise ValidationError('Provider is not part of this treatment')
    member.is_active = False
    member.left_at = timezone.now()
    member.save(update_fields=['is_active', 'left_at'])
    return {'message': 'Provider removed from treatment successfully'}


# ---------------------------------------------------------------------
# Links between treatments
# ---------------------------------------------------------------------
def create_link(*, from_pk, to_pk, link_type: str, reason: str = '', notes: str = '', actor) -> TreatmentLink:
    source = Treatment.objects.filter(pk=from_pk).first()
    if not source:
        raise NotFound('From treatment not found')
    if not Treatment.objects.filter(pk=to_pk).exists():
        raise NotFound('To treatment not found')
    if int(from_pk) == int(to_pk):
        raise ValidationError('Cannot link treatment to itself')
    _ensure_update(source, actor, 'You do not have permission to link from this treatment')

    existing = TreatmentLink.objects.filter(from_treatment_id=from_pk, to_treatment_id=to_pk,
                                            link_type=link_type).first()
    if existing and existing.is_active:
        raise ValidationError('Treatment link already exists for this type')
    if existing:
        existing.is_active = True
        existing.notes = notes or existing.notes
        existing.save(update_fields=['is_active', 'notes'])
        return existing
    return TreatmentLink.objects.create(
        from_treatment_id=from_pk, to_treatment_id=to_pk, link_type=link_type,
        reason=reason or '', notes=notes or '',
    )


def links(pk) -> Dict[str, List[Dict[str, Any]]]:
    get_treatment(pk)
    active = TreatmentLink.objects.filter(is_active=True).order_by('-created_at', '-id')
    return {
        'linkedFrom': [payloads.treatment_link(link) for link in active.filter(from_treatment_id=pk)],
        'linkedTo': [payloads.treatment_link(link) for link in active.filter(to_treatment_id=pk)],
    }


def delete_link(link_pk, *, actor) -> Dict[str, str]:
    link = TreatmentLink.objects.select_related('from_treatment').filter(pk=link_pk).first()
    if not link:
        raise NotFound('Treatment link not found')
    _ensure_update(link.from_treatment, actor, 'You do not have permission to delete this treatment link')
    link.is_active = False
    link.save(update_fields=['is_active'])
    return {'message': 'Treatment link deleted successfully'}


# ---------------------------------------------------------------------
# Transfer
# ---------------------------------------------------------------------
def transfer(pk, new_provider_pk, *, reason: str, notes: str = '', actor) -> Treatment:
    t = get_treatment(pk)
    new = StaffMember.objects.select_related('user').filter(pk=new_provider_pk).first()
    if not new:
        raise NotFound('New provider not found')
    if not new.is_service_provider:
        raise ValidationError('New provider must be a service provider')
    _ensure_update(t, actor, 'You do not have permission to transfer this treatment')
    if t.primary_provider_id == new.pk:
        raise ValidationError('Cannot transfer treatment to the same provider')

    old = t.primary_provider
    content = (
        f'Treatment transferred from {payloads.person_name(old)} to {payloads.person_name(new)}. '
        f'Reason: {reason}'
    )
    if notes:
        content += f'. Notes: {notes}'

    with transaction.atomic():
        t.primary_provider = new
        t.status = Treatment.STATUS_ACTIVE
        t.save(update_fields=['primary_provider', 'status', 'updated_at'])
        TreatmentNote.objects.create(treatment=t, provider=new, note_type='PROGRESS', content=content)
        # one row per (treatment, provider): update in place, reactivating if needed
        TreatmentProvider.objects.update_or_create(
            treatment=t, provider=old,
            defaults={'role': TreatmentProvider.ROLE_CONSULTANT, 'is_active': True, 'left_at': None},
        )
        TreatmentProvider.objects.update_or_create(
            treatment=t, provider=new,
            defaults={'role': TreatmentProvider.ROLE_PRIMARY, 'is_active': True, 'left_at': None},
        )
    logger.info('treatment %s transferred from staff %s to %s', t.pk, old.pk, new.pk)
    return get_treatment(t.pk)
