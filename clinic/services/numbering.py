"""
Human readable identifiers for patients, accounts, invoices and cash
transactions.

Sequential identifiers follow ``<PREFIX><YY><MM><NNNN>`` where ``NNNN``
counts the rows already numbered this month, skipping any value that is
already taken.  Lab and registration invoices use time-stamped numbers.
"""
from __future__ import annotations

import secrets
import string
import time
from datetime import datetime
from typing import Optional, Type

from django.db import models
from django.utils import timezone

_ALNUM_UPPER = string.ascii_uppercase + string.digits
_BASE36 = string.ascii_lowercase + string.digits


def monthly_sequence(model: Type[models.Model], field: str, prefix: str, now: Optional[datetime] = None) -> str:
    now = now or timezone.now()
    stem = f"{prefix}{now:%y%m}"
    manager = model._default_manager
    seq = manager.filter(**{f"{field}__startswith": stem}).count() + 1
    while True:
        candidate = f"{stem}{seq:04d}"
        if not manager.filter(**{field: candidate}).exists():
            return candidate
        seq += 1


def patient_code(now: Optional[datetime] = None) -> str:
    from clinic.models import Patient
    return monthly_sequence(Patient, 'patient_id', 'P', now)


def account_number(now: Optional[datetime] = None) -> str:
    from clinic.models import PatientAccount
    return monthly_sequence(PatientAccount, 'account_number', 'ACC', now)


def invoice_number(now: Optional[datetime] = None) -> str:
    from clinic.models import Invoice
    return monthly_sequence(Invoice, 'invoice_number', 'INV', now)


def cash_reference(now: Optional[datetime] = None) -> str:
    from clinic.models import CashTransaction
    return monthly_sequence(CashTransaction, 'reference_number', 'CASH', now)


def _millis() -> int:
    return int(time.time() * 1000)


def lab_invoice_number() -> str:
    suffix = ''.join(secrets.choice(_ALNUM_UPPER) for _ in range(6))
    return f"LAB-{_millis()}-{suffix}"


def registration_invoice_number() -> str:
    suffix = ''.join(secrets.choice(_BASE36) for _ in range(9))
    return f"REG-INV-{_millis()}-{suffix}"


def temporary_password(length: int = 12) -> str:
    alphabet = string.ascii_letters + string.digits
    return ''.join(secrets.choice(alphabet) for _ in range(length))
