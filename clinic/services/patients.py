"""
Patient registration, lookup and the per-patient financial views.

Registration creates the patient, an optional login account and the
running :class:`~clinic.models.PatientAccount` in one transaction, then
tries to bill the medical card.  Billing the card is best effort: when
it fails the registration still stands and the failure is logged.
"""
from __future__ import annotations

import logging
import re
import time
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from clinic.exceptions import Conflict
from clinic.models import (
    Admission, CashTransaction, Charge, Consultation, Invoice, LabOrder, Patient,
    PatientAccount, Payment, Prescription, Service, Surgery, User,
)
from clinic.services import numbering, payloads
from clinic.services.audit import log_action

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')

BLOOD_GROUPS = {label: code for code, label in Patient.BLOOD_GROUP_CHOICES}
SORT_FIELDS = {
    'firstName': 'first_name',
    'lastName': 'last_name',
    'patientId': 'patient_id',
    'email': 'email',
    'phoneNumber': 'phone_number',
    'createdAt': 'created_at',
    'updatedAt': 'updated_at',
}
# request key -> model field for plain attributes
PATIENT_FIELDS = (
    'first_name', 'last_name', 'date_of_birth', 'gender', 'phone_number', 'email', 'address',
    'emergency_contact_name', 'emergency_contact_relationship', 'emergency_contact_phone',
    'allergies', 'genotype', 'height',
    'insurance_provider', 'insurance_policy_number', 'insurance_group_number',
)


def normalize_blood_group(value: Optional[str]) -> str:
    """Accept ``A+`` style labels or enum names; return the enum name."""
    if not value:
        return ''
    value = value.strip()
    if value in BLOOD_GROUPS:
        return BLOOD_GROUPS[value]
    if value.upper() in BLOOD_GROUPS.values():
        return value.upper()
    raise ValidationError({'bloodGroup': f'Unknown blood group "{value}".'})


def unique_username(first_name: str, last_name: str) -> str:
    base = re.sub(r'[^a-z0-9.]', '', f"{first_name.lower()}.{last_name.lower()}")
    username = base
    counter = 1
    while User.objects.filter(username=username).exists():
        username = f"{base}{counter}"
        counter += 1
        if counter > 100:
            return f"{base}_{int(time.time() * 1000)}"
    return username


def _ensure_contact_free(email: Optional[str], phone: Optional[str], exclude_pk=None) -> None:
    cond = Q()
    if email:
        cond |= Q(email__iexact=email)
    if phone:
        cond |= Q(phone_number=phone)
    if not cond:
        return
    qs = Patient.objects.filter(cond)
    if exclude_pk is not None:
        qs = qs.exclude(pk=exclude_pk)
    if qs.exists():
        if exclude_pk is None:
            raise Conflict('Patient with this email or phone number already exists')
        raise Conflict('Email or phone number is already used by another patient')


def create_patient(data: Dict[str, Any], *, actor=None) -> Patient:
    """Register a patient.

    ``data`` carries model field names; ``blood_group`` may be given as a
    label (``O+``) or enum name.  Returns the patient with its account.
    """
    email = data.get('email') or None
    phone = data.get('phone_number') or ''
    _ensure_contact_free(email, phone)

    with transaction.atomic():
        user = None
        if email:
            user = User.objects.create_user(
                username=unique_username(data['first_name'], data['last_name']),
                email=email,
                password=numbering.temporary_password(),
                first_name=data['first_name'],
                last_name=data['last_name'],
            )
        fields = {f: data[f] for f in PATIENT_FIELDS if data.get(f) is not None}
        fields['email'] = email
        patient = Patient.objects.create(
            patient_id=numbering.patient_code(),
            blood_group=normalize_blood_group(data.get('blood_group')),
            user=user,
            **fields,
        )
        PatientAccount.objects.create(
            patient=patient, account_number=numbering.account_number(), balance=ZERO,
        )
        log_action(user=actor, action='patient_register', object_type='patient', object_id=patient.pk,
                   detail={'patientId': patient.patient_id})

    create_medical_card_invoice(patient)
    return get_patient(patient.pk)


def create_medical_card_invoice(patient: Patient) -> Optional[Invoice]:
    """Bill the medical card; never raises."""
    from clinic.services import billing

    name = settings.HMS_MEDICAL_CARD_SERVICE
    card = Service.objects.filter(name=name, is_active=True).first()
    if not card:
        logger.warning('%s service not found. Skipping invoice creation.', name)
        return None
    try:
        with transaction.atomic():
            inv = billing.create_invoice(
                patient_pk=patient.pk,
                status=Invoice.STATUS_PENDING,
                notes='Patient Medical Card - Required for hospital service access',
                charges=[{
                    'service_id': card.pk,
                    'description': 'Patient Medical Card - Registration and card issuance',
                    'quantity': 1,
                    'unit_price': card.current_price,
                }],
            )
    except Exception:
        logger.exception('failed to create medical card invoice for patient %s', patient.patient_id)
        return None
    logger.info('medical card invoice %s created for patient %s', inv.invoice_number, patient.patient_id)
    return inv


def list_patients(*, search: Optional[str] = None, is_active: Optional[bool] = None,
                  page: Optional[int] = None, limit: Optional[int] = None,
                  sort_by: Optional[str] = None, sort_order: Optional[str] = None) -> Dict[str, Any]:
    qs = Patient.objects.select_related('account')
    if is_active is not None:
        qs = qs.filter(is_active=is_active)
    if search:
        qs = qs.filter(
            Q(first_name__icontains=search) | Q(last_name__icontains=search)
            | Q(patient_id__icontains=search) | Q(email__icontains=search)
            | Q(phone_number__icontains=search)
        )
    ordering = '-created_at'
    if sort_by in SORT_FIELDS:
        ordering = ('-' if sort_order == 'desc' else '') + SORT_FIELDS[sort_by]
    items, pagination = payloads.paginate(qs.order_by(ordering, 'id'), page, limit)
    return {'data': [payloads.patient(p) for p in items], 'pagination': pagination}


def get_patient(pk) -> Patient:
    patient = Patient.objects.select_related('account', 'user').filter(pk=pk).first()
    if not patient:
        raise NotFound('Patient not found')
    return patient


def get_patient_by_code(patient_id: str) -> Patient:
    patient = Patient.objects.select_related('account', 'user').filter(patient_id=patient_id).first()
    if not patient:
        raise NotFound('Patient not found')
    return patient


def patient_for_edit(pk) -> Dict[str, Any]:
    """Nested representation used by edit forms."""
    p = get_patient(pk)
    return {
        'id': p.id,
        'patientId': p.patient_id,
        'firstName': p.first_name,
        'lastName': p.last_name,
        'dateOfBirth': p.date_of_birth,
        'gender': p.gender,
        'phoneNumber': p.phone_number,
        'email': p.email,
        'address': p.address,
        'emergencyContact': {
            'name': p.emergency_contact_name,
            'relationship': p.emergency_contact_relationship,
            'phoneNumber': p.emergency_contact_phone,
        },
        'medicalHistory': {
            'bloodGroup': payloads.BLOOD_GROUP_LABELS.get(p.blood_group) if p.blood_group else None,
            'allergies': p.allergies,
            'genotype': p.genotype,
            'height': p.height,
        },
        'insurance': {
            'provider': p.insurance_provider,
            'policyNumber': p.insurance_policy_number,
            'groupNumber': p.insurance_group_number,
        },
        'isActive': p.is_active,
    }


def update_patient(pk, data: Dict[str, Any], *, actor=None) -> Patient:
    patient = get_patient(pk)
    if 'email' in data or 'phone_number' in data:
        _ensure_contact_free(data.get('email'), data.get('phone_number'), exclude_pk=patient.pk)
    changed = []
    for field in PATIENT_FIELDS:
        if field in data:
            setattr(patient, field, data[field])
            changed.append(field)
    if 'blood_group' in data:
        patient.blood_group = normalize_blood_group(data['blood_group'])
        changed.append('blood_group')
    if 'is_active' in data:
        patient.is_active = bool(data['is_active'])
        changed.append('is_active')
    if changed:
        patient.save(update_fields=changed + ['updated_at'])
        log_action(user=actor, action='patient_update', object_type='patient', object_id=patient.pk,
                   detail={'fields': changed})
    return patient


def deactivate_patient(pk, *, actor=None) -> Dict[str, str]:
    patient = get_patient(pk)
    patient.is_active = False
    patient.save(update_fields=['is_active', 'updated_at'])
    log_action(user=actor, action='patient_deactivate', object_type='patient', object_id=patient.pk)
    return {'message': 'Patient deactivated successfully'}


# ---------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------
def get_account_balance(pk) -> Dict[str, Any]:
    patient = get_patient(pk)
    account = getattr(patient, 'account', None)
    return {
        'patientId': patient.patient_id,
        'accountNumber': account.account_number if account else None,
        'balance': account.balance if account else ZERO,
    }


def adjust_account_balance(pk, amount: Decimal) -> PatientAccount:
    """Add ``amount`` (may be negative) to the running balance."""
    patient = get_patient(pk)
    with transaction.atomic():
        account = PatientAccount.objects.select_for_update().filter(patient=patient).first()
        if account is None:
            return PatientAccount.objects.create(
                patient=patient, account_number=numbering.account_number(), balance=amount,
            )
        account.balance += amount
        account.save(update_fields=['balance', 'updated_at'])
    return account


# ---------------------------------------------------------------------
# Aggregations
# ---------------------------------------------------------------------
def _rate(paid: Decimal, invoiced: Decimal) -> float:
    return float(paid / invoiced * 100) if invoiced > 0 else 0


def financial_summary(pk) -> Dict[str, Any]:
    patient = get_patient(pk)
    invoices = list(patient.invoices.order_by('-issued_date'))
    total_invoiced = sum((i.total_amount for i in invoices), ZERO)
    total_paid = sum((i.paid_amount for i in invoices), ZERO)
    total_outstanding = sum((i.balance for i in invoices), ZERO)
    by_status = {code: 0 for code, _ in Invoice.STATUS_CHOICES}
    for inv in invoices:
        by_status[inv.status] += 1

    recent = Payment.objects.filter(patient=patient).select_related('invoice').order_by('-processed_at')[:10]
    account = getattr(patient, 'account', None)
    return {
        'patient': {**payloads.patient_brief(patient), 'accountBalance': account.balance if account else ZERO},
        'financialSummary': {
            'totalInvoiced': total_invoiced,
            'totalPaid': total_paid,
            'totalOutstanding': total_outstanding,
            'collectionRate': _rate(total_paid, total_invoiced),
        },
        'invoicesByStatus': by_status,
        'recentPayments': [
            {
                'id': pay.id,
                'amount': pay.amount,
                'method': pay.method,
                'reference': pay.reference,
                'processedAt': pay.processed_at,
                'invoiceNumber': pay.invoice.invoice_number,
            }
            for pay in recent
        ],
        'outstandingInvoices': [
            {
                'id': inv.id,
                'invoiceNumber': inv.invoice_number,
                'totalAmount': inv.total_amount,
                'balance': inv.balance,
                'dueDate': inv.due_date,
                'issuedDate': inv.issued_date,
            }
            for inv in invoices if inv.status in Invoice.OUTSTANDING_STATUSES
        ],
    }


def outstanding_balance(pk) -> Dict[str, Any]:
    patient = get_patient(pk)
    now = timezone.now()
    invoices = list(
        patient.invoices.filter(status__in=Invoice.OUTSTANDING_STATUSES)
        .prefetch_related('charges__service')
        .order_by('due_date', 'id')
    )
    overdue = [i for i in invoices if i.due_date and i.due_date < now]
    return {
        'patient': payloads.patient_brief(patient),
        'outstandingBalance': {
            'totalOutstanding': sum((i.balance for i in invoices), ZERO),
            'totalOverdue': sum((i.balance for i in overdue), ZERO),
            'invoiceCount': len(invoices),
            'overdueCount': len(overdue),
        },
        'outstandingInvoices': [
            {
                'id': inv.id,
                'invoiceNumber': inv.invoice_number,
                'totalAmount': inv.total_amount,
                'balance': inv.balance,
                'dueDate': inv.due_date,
                'issuedDate': inv.issued_date,
                'isOverdue': bool(inv.due_date and inv.due_date < now),
                'charges': [payloads.charge(c) for c in inv.charges.all()],
            }
            for inv in invoices
        ],
    }


def recent_activity(pk, days: int = 30) -> Dict[str, Any]:
    patient = get_patient(pk)
    end = timezone.now()
    start = end - timedelta(days=days)
    window = {'patient': patient, 'created_at__gte': start}

    consultations = list(Consultation.objects.filter(**window).select_related('doctor__user').order_by('-created_at')[:10])
    lab_orders = list(LabOrder.objects.filter(**window).select_related('doctor__user').prefetch_related('tests').order_by('-created_at')[:10])
    prescriptions = list(Prescription.objects.filter(**window).select_related('doctor__user').order_by('-created_at')[:10])
    surgeries = list(Surgery.objects.filter(**window).select_related('surgeon__user').order_by('-created_at')[:10])
    admissions = list(Admission.objects.filter(**window).select_related('department').order_by('-created_at')[:10])
    invoices = list(Invoice.objects.filter(**window).prefetch_related('charges').order_by('-created_at')[:10])
    payments = list(Payment.objects.filter(patient=patient, processed_at__gte=start).order_by('-processed_at')[:10])

    return {
        'patient': payloads.patient_brief(patient),
        'period': {'startDate': start, 'endDate': end, 'days': days},
        'recentActivity': {
            'consultations': [
                {'id': c.id, 'type': 'consultation', 'date': c.created_at,
                 'doctorName': payloads.person_name(c.doctor), 'status': c.status}
                for c in consultations
            ],
            'labOrders': [
                {'id': o.id, 'type': 'lab_order', 'date': o.created_at,
                 'doctorName': payloads.person_name(o.doctor), 'status': o.status,
                 'testCount': len(o.tests.all()), 'totalAmount': o.total_amount}
                for o in lab_orders
            ],
            'prescriptions': [
                {'id': p.id, 'type': 'prescription', 'date': p.created_at,
                 'doctorName': payloads.person_name(p.doctor), 'status': p.status,
                 'medicationCount': len(p.medications or [])}
                for p in prescriptions
            ],
            'surgeries': [
                {'id': s.id, 'type': 'surgery', 'date': s.created_at,
                 'surgeonName': payloads.person_name(s.surgeon),
                 'procedureName': s.procedure_name, 'status': s.status}
                for s in surgeries
            ],
            'admissions': [
                {'id': a.id, 'type': 'admission', 'date': a.created_at,
                 'departmentName': a.department.name if a.department_id else None, 'status': a.status}
                for a in admissions
            ],
            'invoices': [
                {'id': i.id, 'type': 'invoice', 'date': i.created_at, 'invoiceNumber': i.invoice_number,
                 'totalAmount': i.total_amount, 'balance': i.balance, 'status': i.status,
                 'chargeCount': len(i.charges.all())}
                for i in invoices
            ],
            'payments': [
                {'id': p.id, 'type': 'payment', 'date': p.processed_at, 'amount': p.amount,
                 'method': p.method, 'reference': p.reference}
                for p in payments
            ],
        },
        'summary': {
            'totalConsultations': len(consultations),
            'totalLabOrders': len(lab_orders),
            'totalPrescriptions': len(prescriptions),
            'totalSurgeries': len(surgeries),
            'totalAdmissions': len(admissions),
            'totalInvoices': len(invoices),
            'totalPayments': len(payments),
        },
    }


def create_registration_invoice(pk, fee: Optional[Decimal] = None, *, actor=None) -> Dict[str, Any]:
    patient = get_patient(pk)
    fee = Decimal(fee) if fee is not None else settings.HMS_REGISTRATION_FEE
    if patient.invoices.filter(notes__contains='Registration Fee').exists():
        raise Conflict('Registration invoice already exists for this patient')

    with transaction.atomic():
        inv = Invoice.objects.create(
            invoice_number=numbering.registration_invoice_number(),
            patient=patient,
            total_amount=fee,
            balance=fee,
            status=Invoice.STATUS_PENDING,
            due_date=timezone.now() + timedelta(hours=24),
            notes='Registration Fee - New Patient',
        )
        charge = Charge.objects.create(
            invoice=inv, description='Patient Registration Fee', quantity=1,
            unit_price=fee, total_price=fee,
        )
        log_action(user=actor, action='registration_invoice', object_type='invoice', object_id=inv.pk,
                   detail={'patientId': patient.patient_id, 'fee': str(fee)})
    return {
        'invoice': payloads.invoice(inv),
        'charge': payloads.charge(charge),
        'message': f'Registration invoice created successfully. Fee: ${fee}. Invoice: {inv.invoice_number}',
    }


def billing_history(pk, start=None, end=None) -> Dict[str, Any]:
    patient = get_patient(pk)
    invoices_qs = patient.invoices.all()
    if start:
        invoices_qs = invoices_qs.filter(created_at__gte=start)
    if end:
        invoices_qs = invoices_qs.filter(created_at__lte=end)
    invoices = list(
        invoices_qs.prefetch_related('charges__service', 'payments').order_by('-created_at')
    )
    cash_qs = CashTransaction.objects.filter(patient=patient)
    if start and end:
        cash_qs = cash_qs.filter(transaction_date__gte=start, transaction_date__lte=end)
    cash = list(cash_qs.order_by('-transaction_date'))

    total_invoiced = sum((i.total_amount for i in invoices), ZERO)
    total_paid = sum((i.paid_amount for i in invoices), ZERO)
    total_outstanding = sum((i.balance for i in invoices), ZERO)

    monthly: Dict[str, Dict[str, Any]] = {}
    for inv in invoices:
        month = inv.created_at.strftime('%Y-%m')
        bucket = monthly.setdefault(month, {
            'month': month, 'invoices': 0,
            'totalAmount': ZERO, 'totalPaid': ZERO, 'totalOutstanding': ZERO,
        })
        bucket['invoices'] += 1
        bucket['totalAmount'] += inv.total_amount
        bucket['totalPaid'] += inv.paid_amount
        bucket['totalOutstanding'] += inv.balance

    return {
        'patient': payloads.patient_brief(patient),
        'period': {'startDate': start, 'endDate': end},
        'billingSummary': {
            'totalInvoiced': total_invoiced,
            'totalPaid': total_paid,
            'totalOutstanding': total_outstanding,
            'collectionRate': _rate(total_paid, total_invoiced),
            'invoiceCount': len(invoices),
            'cashTransactionCount': len(cash),
        },
        'invoices': [
            {
                'id': inv.id,
                'invoiceNumber': inv.invoice_number,
                'totalAmount': inv.total_amount,
                'paidAmount': inv.paid_amount,
                'balance': inv.balance,
                'status': inv.status,
                'issuedDate': inv.issued_date,
                'dueDate': inv.due_date,
                'charges': [payloads.charge(c) for c in inv.charges.all()],
                'payments': [
                    {'id': p.id, 'amount': p.amount, 'method': p.method,
                     'reference': p.reference, 'processedAt': p.processed_at}
                    for p in sorted(inv.payments.all(), key=lambda p: p.processed_at, reverse=True)
                ],
            }
            for inv in invoices
        ],
        'cashTransactions': [
            {'id': t.id, 'type': t.transaction_type, 'amount': t.amount, 'description': t.description,
             'referenceNumber': t.reference_number, 'transactionDate': t.transaction_date}
            for t in cash
        ],
        'monthlyTrends': [monthly[k] for k in sorted(monthly)],
    }
