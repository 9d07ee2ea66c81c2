"""
Database models for the hospital management backend.

The models cover patients and their running accounts, the service
catalogue, invoicing (charges, payments, refunds and cash office
transactions), laboratory orders, treatments with their provider
teams, staff/department administration and the permission system
(roles, direct grants, time-boxed temporary grants, templates and
the permission request workflow).

Money is stored as ``Decimal`` with two decimal places throughout.
"""
from __future__ import annotations

from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.utils import timezone

MONEY = dict(max_digits=12, decimal_places=2, default=Decimal('0.00'))


class Department(models.Model):
    name = models.CharField(max_length=120, unique=True)
    code = models.CharField(max_length=20, unique=True)
    description = models.TextField(blank=True)
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"


class User(AbstractUser):
    """Login account.

    Besides the role-based permissions obtained through a staff profile,
    a user may carry direct permission codes in ``permissions``.  The
    code ``admin`` grants everything.
    """
    permissions = models.JSONField(default=list, blank=True)

    def __str__(self) -> str:
        return self.username


class StaffMember(models.Model):
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='staff_profile')
    employee_id = models.CharField(max_length=32, unique=True)
    department = models.ForeignKey(
        Department, null=True, blank=True, on_delete=models.SET_NULL, related_name='staff'
    )
    specialization = models.CharField(max_length=120, blank=True)
    license_number = models.CharField(max_length=64, blank=True)
    phone_number = models.CharField(max_length=32, blank=True)
    is_service_provider = models.BooleanField(default=False, db_index=True)
    is_active = models.BooleanField(default=True, db_index=True)
    hire_date = models.DateField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.user.get_full_name() or self.user.username} ({self.employee_id})"


class Role(models.Model):
    name = models.CharField(max_length=64, unique=True)
    description = models.TextField(blank=True)
    permissions = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.name


class StaffRoleAssignment(models.Model):
    staff = models.ForeignKey(StaffMember, on_delete=models.CASCADE, related_name='role_assignments')
    role = models.ForeignKey(Role, on_delete=models.CASCADE, related_name='assignments')
    assigned_by = models.CharField(max_length=150, blank=True)
    is_active = models.BooleanField(default=True)
    assigned_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ('staff', 'role')

    def __str__(self) -> str:
        return f"{self.staff_id}:{self.role.name}"


class Permission(models.Model):
    """Catalogue entry describing a permission code."""
    name = models.CharField(max_length=100, unique=True)
    display_name = models.CharField(max_length=150, blank=True)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=64, default='General', db_index=True)
    module = models.CharField(max_length=64, blank=True, db_index=True)
    is_active = models.BooleanField(default=True)

    def __str__(self) -> str:
        return self.name


class TemporaryPermission(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='temporary_permissions')
    permission = models.CharField(max_length=100, db_index=True)
    granted_by = models.ForeignKey(
        StaffMember, null=True, blank=True, on_delete=models.SET_NULL, related_name='granted_permissions'
    )
    expires_at = models.DateTimeField(db_index=True)
    reason = models.TextField(blank=True)
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['user', 'permission', 'is_active']),
        ]

    def __str__(self) -> str:
        return f"{self.permission} -> {self.user_id} until {self.expires_at:%Y-%m-%d %H:%M}"


class PermissionAuditEntry(models.Model):
    ACTION_GRANTED = 'GRANTED'
    ACTION_ACTIVATED = 'ACTIVATED'
    ACTION_DEACTIVATED = 'DEACTIVATED'
    ACTION_EXTENDED = 'EXTENDED'
    ACTION_REVOKED = 'REVOKED'
    ACTION_EXPIRED = 'EXPIRED'
    ACTION_CHOICES = (
        (ACTION_GRANTED, 'Granted'),
        (ACTION_ACTIVATED, 'Activated'),
        (ACTION_DEACTIVATED, 'Deactivated'),
        (ACTION_EXTENDED, 'Extended'),
        (ACTION_REVOKED, 'Revoked'),
        (ACTION_EXPIRED, 'Expired'),
    )
    temporary_permission = models.ForeignKey(
        TemporaryPermission, on_delete=models.CASCADE, related_name='audit_entries'
    )
    action = models.CharField(max_length=16, choices=ACTION_CHOICES)
    performed_by = models.CharField(max_length=150)
    reason = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    timestamp = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-timestamp']


class PermissionTemplate(models.Model):
    """Named bundle of permission codes; ``is_system`` templates are read-only."""
    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=64, default='General', db_index=True)
    permissions = models.JSONField(default=list)
    is_system = models.BooleanField(default=False)
    version = models.CharField(max_length=16, default='1.0.0')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.name


class PermissionPreset(models.Model):
    """A template plus ``customizations``: ``[{"action": "ADD"|"REMOVE", "permission": code}]``."""
    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True)
    template = models.ForeignKey(PermissionTemplate, on_delete=models.PROTECT, related_name='presets')
    customizations = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.name


class PermissionRequest(models.Model):
    STATUS_PENDING = 'PENDING'
    STATUS_APPROVED = 'APPROVED'
    STATUS_REJECTED = 'REJECTED'
    STATUS_CANCELLED = 'CANCELLED'
    STATUS_EXPIRED = 'EXPIRED'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_EXPIRED, 'Expired'),
    )
    URGENCY_CHOICES = (('LOW', 'Low'), ('MEDIUM', 'Medium'), ('HIGH', 'High'), ('CRITICAL', 'Critical'))

    requester = models.ForeignKey(User, on_delete=models.CASCADE, related_name='permission_requests')
    permission = models.CharField(max_length=100, db_index=True)
    reason = models.TextField()
    urgency = models.CharField(max_length=10, choices=URGENCY_CHOICES, default='MEDIUM')
    expires_at = models.DateTimeField(null=True, blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    granted_permission = models.OneToOneField(
        TemporaryPermission, null=True, blank=True, on_delete=models.SET_NULL, related_name='request'
    )
    requested_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.permission} for {self.requester_id} ({self.status})"


class PermissionApprover(models.Model):
    STATUS_CHOICES = (('PENDING', 'Pending'), ('APPROVED', 'Approved'), ('REJECTED', 'Rejected'))

    request = models.ForeignKey(PermissionRequest, on_delete=models.CASCADE, related_name='approvers')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='permission_approvals')
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='PENDING')
    required = models.BooleanField(default=True)
    comments = models.TextField(blank=True)
    decided_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        unique_together = ('request', 'user')


class Patient(models.Model):
    GENDER_CHOICES = (('MALE', 'Male'), ('FEMALE', 'Female'), ('OTHER', 'Other'))
    BLOOD_GROUP_CHOICES = (
        ('A_POSITIVE', 'A+'),
        ('A_NEGATIVE', 'A-'),
        ('B_POSITIVE', 'B+'),
        ('B_NEGATIVE', 'B-'),
        ('AB_POSITIVE', 'AB+'),
        ('AB_NEGATIVE', 'AB-'),
        ('O_POSITIVE', 'O+'),
        ('O_NEGATIVE', 'O-'),
    )

    patient_id = models.CharField(max_length=16, unique=True)
    first_name = models.CharField(max_length=80)
    last_name = models.CharField(max_length=80)
    date_of_birth = models.DateField()
    gender = models.CharField(max_length=8, choices=GENDER_CHOICES)
    phone_number = models.CharField(max_length=32, blank=True, db_index=True)
    email = models.EmailField(null=True, blank=True, db_index=True)
    address = models.TextField(blank=True)
    emergency_contact_name = models.CharField(max_length=120, blank=True)
    emergency_contact_relationship = models.CharField(max_length=64, blank=True)
    emergency_contact_phone = models.CharField(max_length=32, blank=True)
    blood_group = models.CharField(max_length=12, choices=BLOOD_GROUP_CHOICES, blank=True)
    allergies = models.TextField(blank=True)
    genotype = models.CharField(max_length=8, blank=True)
    height = models.CharField(max_length=16, blank=True)
    insurance_provider = models.CharField(max_length=120, blank=True)
    insurance_policy_number = models.CharField(max_length=64, blank=True)
    insurance_group_number = models.CharField(max_length=64, blank=True)
    user = models.OneToOneField(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='patient_profile'
    )
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.first_name} {self.last_name} ({self.patient_id})"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class PatientAccount(models.Model):
    patient = models.OneToOneField(Patient, on_delete=models.CASCADE, related_name='account')
    account_number = models.CharField(max_length=16, unique=True)
    balance = models.DecimalField(**MONEY)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.account_number


class ServiceCategory(models.Model):
    name = models.CharField(max_length=120, unique=True)
    description = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.name


class Service(models.Model):
    category = models.ForeignKey(ServiceCategory, on_delete=models.PROTECT, related_name='services')
    department = models.ForeignKey(
        Department, null=True, blank=True, on_delete=models.SET_NULL, related_name='services'
    )
    name = models.CharField(max_length=150)
    service_code = models.CharField(max_length=32, unique=True, null=True, blank=True)
    description = models.TextField(blank=True)
    base_price = models.DecimalField(**MONEY)
    current_price = models.DecimalField(**MONEY)
    requires_pre_payment = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ('category', 'name')

    def __str__(self) -> str:
        return self.name


class Invoice(models.Model):
    STATUS_DRAFT = 'DRAFT'
    STATUS_PENDING = 'PENDING'
    STATUS_PARTIAL = 'PARTIAL'
    STATUS_PAID = 'PAID'
    STATUS_OVERDUE = 'OVERDUE'
    STATUS_CANCELLED = 'CANCELLED'
    STATUS_CHOICES = (
        (STATUS_DRAFT, 'Draft'),
        (STATUS_PENDING, 'Pending'),
        (STATUS_PARTIAL, 'Partial'),
        (STATUS_PAID, 'Paid'),
        (STATUS_OVERDUE, 'Overdue'),
        (STATUS_CANCELLED, 'Cancelled'),
    )
    OUTSTANDING_STATUSES = (STATUS_PENDING, STATUS_PARTIAL, STATUS_OVERDUE)

    invoice_number = models.CharField(max_length=40, unique=True)
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='invoices')
    total_amount = models.DecimalField(**MONEY)
    paid_amount = models.DecimalField(**MONEY)
    balance = models.DecimalField(**MONEY)
    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default=STATUS_DRAFT, db_index=True)
    issued_date = models.DateTimeField(default=timezone.now, db_index=True)
    due_date = models.DateTimeField(null=True, blank=True)
    paid_date = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['patient', 'status']),
        ]

    def __str__(self) -> str:
        return f"{self.invoice_number} ({self.status})"


class Charge(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='charges')
    service = models.ForeignKey(Service, null=True, blank=True, on_delete=models.SET_NULL, related_name='charges')
    description = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(**MONEY)
    total_price = models.DecimalField(**MONEY)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.description} x{self.quantity}"


class Payment(models.Model):
    METHOD_CHOICES = (
        ('CASH', 'Cash'),
        ('CARD', 'Card'),
        ('BANK_TRANSFER', 'Bank transfer'),
        ('MOBILE_MONEY', 'Mobile money'),
        ('INSURANCE', 'Insurance'),
        ('CREDIT', 'Credit'),
    )
    STATUS_PENDING = 'PENDING'
    STATUS_PROCESSING = 'PROCESSING'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_FAILED = 'FAILED'
    STATUS_CANCELLED = 'CANCELLED'
    STATUS_REFUNDED = 'REFUNDED'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'Pending'),
        (STATUS_PROCESSING, 'Processing'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_FAILED, 'Failed'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_REFUNDED, 'Refunded'),
    )

    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name='payments')
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='payments')
    amount = models.DecimalField(**MONEY)
    method = models.CharField(max_length=16, choices=METHOD_CHOICES)
    reference = models.CharField(max_length=120, blank=True)
    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    processed_by = models.CharField(max_length=150, blank=True)
    processed_at = models.DateTimeField(default=timezone.now, db_index=True)
    notes = models.TextField(blank=True)

    def __str__(self) -> str:
        return f"{self.amount} via {self.method} ({self.status})"


class Refund(models.Model):
    STATUS_CHOICES = (('PENDING', 'Pending'), ('APPROVED', 'Approved'), ('REJECTED', 'Rejected'))

    payment = models.ForeignKey(Payment, on_delete=models.PROTECT, related_name='refunds')
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='refunds')
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name='refunds')
    amount = models.DecimalField(**MONEY)
    reason = models.TextField()
    notes = models.TextField(blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='PENDING')
    approved_by = models.CharField(max_length=150, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)


class CashTransaction(models.Model):
    TYPE_CASH_IN = 'CASH_IN'
    TYPE_CASH_OUT = 'CASH_OUT'
    TYPE_CHOICES = ((TYPE_CASH_IN, 'Cash in'), (TYPE_CASH_OUT, 'Cash out'))

    cashier = models.ForeignKey(StaffMember, on_delete=models.PROTECT, related_name='cash_transactions')
    patient = models.ForeignKey(
        Patient, null=True, blank=True, on_delete=models.SET_NULL, related_name='cash_transactions'
    )
    invoice = models.ForeignKey(
        Invoice, null=True, blank=True, on_delete=models.SET_NULL, related_name='cash_transactions'
    )
    transaction_type = models.CharField(max_length=10, choices=TYPE_CHOICES, db_index=True)
    amount = models.DecimalField(**MONEY)
    description = models.CharField(max_length=255)
    reference_number = models.CharField(max_length=32, unique=True)
    payment_method = models.CharField(max_length=16, default='CASH')
    transaction_date = models.DateTimeField(default=timezone.now, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.reference_number} {self.transaction_type} {self.amount}"


class PettyCashRequest(models.Model):
    STATUS_PENDING = 'PENDING'
    STATUS_APPROVED = 'APPROVED'
    STATUS_REJECTED = 'REJECTED'
    STATUS_CHOICES = ((STATUS_PENDING, 'Pending'), (STATUS_APPROVED, 'Approved'), (STATUS_REJECTED, 'Rejected'))

    requester = models.ForeignKey(StaffMember, on_delete=models.PROTECT, related_name='petty_cash_requests')
    approver = models.ForeignKey(
        StaffMember, null=True, blank=True, on_delete=models.SET_NULL, related_name='decided_petty_cash'
    )
    amount = models.DecimalField(**MONEY)
    purpose = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    expected_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    request_date = models.DateTimeField(default=timezone.now, db_index=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.purpose} {self.amount} ({self.status})"


class LabOrder(models.Model):
    STATUS_CHOICES = (
        ('PENDING', 'Pending'),
        ('IN_PROGRESS', 'In progress'),
        ('COMPLETED', 'Completed'),
        ('CANCELLED', 'Cancelled'),
    )

    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='lab_orders')
    doctor = models.ForeignKey(StaffMember, on_delete=models.PROTECT, related_name='ordered_lab_orders')
    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default='PENDING', db_index=True)
    total_amount = models.DecimalField(**MONEY)
    paid_amount = models.DecimalField(**MONEY)
    balance = models.DecimalField(**MONEY)
    is_paid = models.BooleanField(default=False)
    invoice = models.OneToOneField(
        Invoice, null=True, blank=True, on_delete=models.SET_NULL, related_name='lab_order'
    )
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"Lab order #{self.pk} ({self.status})"


class LabTest(models.Model):
    STATUS_PENDING = 'PENDING'
    STATUS_CLAIMED = 'CLAIMED'
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_CANCELLED = 'CANCELLED'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'Pending'),
        (STATUS_CLAIMED, 'Claimed'),
        (STATUS_IN_PROGRESS, 'In progress'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    )

    order = models.ForeignKey(LabOrder, on_delete=models.CASCADE, related_name='tests')
    service = models.ForeignKey(Service, on_delete=models.PROTECT, related_name='lab_tests')
    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    unit_price = models.DecimalField(**MONEY)
    total_price = models.DecimalField(**MONEY)
    lab_technician = models.ForeignKey(
        StaffMember, null=True, blank=True, on_delete=models.SET_NULL, related_name='lab_tests'
    )
    claimed_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    result_value = models.CharField(max_length=255, blank=True)
    result_unit = models.CharField(max_length=32, blank=True)
    reference_range = models.CharField(max_length=64, blank=True)
    is_critical = models.BooleanField(default=False)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.service.name} ({self.status})"


class Treatment(models.Model):
    TYPE_CHOICES = (
        ('CONSULTATION', 'Consultation'),
        ('FOLLOW_UP', 'Follow up'),
        ('EMERGENCY', 'Emergency'),
        ('SURGERY', 'Surgery'),
        ('THERAPY', 'Therapy'),
        ('REHABILITATION', 'Rehabilitation'),
        ('PREVENTIVE', 'Preventive'),
        ('DIAGNOSTIC', 'Diagnostic'),
    )
    STATUS_ACTIVE = 'ACTIVE'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_CHOICES = (
        (STATUS_ACTIVE, 'Active'),
        ('SUSPENDED', 'Suspended'),
        (STATUS_COMPLETED, 'Completed'),
        ('TRANSFERRED', 'Transferred'),
        ('CANCELLED', 'Cancelled'),
    )
    PRIORITY_CHOICES = (
        ('EMERGENCY', 'Emergency'),
        ('URGENT', 'Urgent'),
        ('ROUTINE', 'Routine'),
        ('FOLLOW_UP', 'Follow up'),
    )

    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='treatments')
    primary_provider = models.ForeignKey(StaffMember, on_delete=models.PROTECT, related_name='primary_treatments')
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    treatment_type = models.CharField(max_length=16, choices=TYPE_CHOICES, default='CONSULTATION')
    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True)
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default='ROUTINE')
    chief_complaint = models.TextField(blank=True)
    diagnosis = models.TextField(blank=True)
    start_date = models.DateTimeField(default=timezone.now)
    end_date = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.title} ({self.status})"


class TreatmentProvider(models.Model):
    ROLE_PRIMARY = 'PRIMARY'
    ROLE_CONSULTANT = 'CONSULTANT'
    ROLE_CHOICES = (
        (ROLE_PRIMARY, 'Primary'),
        (ROLE_CONSULTANT, 'Consultant'),
        ('SPECIALIST', 'Specialist'),
        ('ASSISTANT', 'Assistant'),
        ('SUPERVISOR', 'Supervisor'),
    )

    treatment = models.ForeignKey(Treatment, on_delete=models.CASCADE, related_name='providers')
    provider = models.ForeignKey(StaffMember, on_delete=models.CASCADE, related_name='treatment_roles')
    role = models.CharField(max_length=12, choices=ROLE_CHOICES, default=ROLE_CONSULTANT)
    is_active = models.BooleanField(default=True)
    joined_at = models.DateTimeField(default=timezone.now)
    left_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        unique_together = ('treatment', 'provider')


class TreatmentLink(models.Model):
    LINK_CHOICES = (
        ('FOLLOW_UP', 'Follow up'),
        ('REFERRAL', 'Referral'),
        ('CONTINUATION', 'Continuation'),
        ('RELATED', 'Related'),
    )

    from_treatment = models.ForeignKey(Treatment, on_delete=models.CASCADE, related_name='links_from')
    to_treatment = models.ForeignKey(Treatment, on_delete=models.CASCADE, related_name='links_to')
    link_type = models.CharField(max_length=12, choices=LINK_CHOICES)
    reason = models.TextField(blank=True)
    notes = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ('from_treatment', 'to_treatment', 'link_type')


class TreatmentNote(models.Model):
    treatment = models.ForeignKey(Treatment, on_delete=models.CASCADE, related_name='notes')
    provider = models.ForeignKey(StaffMember, null=True, blank=True, on_delete=models.SET_NULL)
    note_type = models.CharField(max_length=32, default='GENERAL')
    content = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)


# ---------------------------------------------------------------------
# Clinical records read by the patient activity feed
# ---------------------------------------------------------------------
class Consultation(models.Model):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='consultations')
    doctor = models.ForeignKey(StaffMember, null=True, blank=True, on_delete=models.SET_NULL)
    department = models.ForeignKey(
        Department, null=True, blank=True, on_delete=models.SET_NULL, related_name='consultations'
    )
    chief_complaint = models.TextField(blank=True)
    diagnosis = models.TextField(blank=True)
    status = models.CharField(max_length=16, default='SCHEDULED')
    created_at = models.DateTimeField(default=timezone.now, db_index=True)


class Prescription(models.Model):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='prescriptions')
    doctor = models.ForeignKey(StaffMember, null=True, blank=True, on_delete=models.SET_NULL)
    medications = models.JSONField(default=list, blank=True)
    instructions = models.TextField(blank=True)
    status = models.CharField(max_length=16, default='PENDING')
    created_at = models.DateTimeField(default=timezone.now, db_index=True)


class Surgery(models.Model):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='surgeries')
    surgeon = models.ForeignKey(StaffMember, null=True, blank=True, on_delete=models.SET_NULL)
    procedure_name = models.CharField(max_length=200)
    scheduled_date = models.DateTimeField(null=True, blank=True)
    status = models.CharField(max_length=16, default='SCHEDULED')
    created_at = models.DateTimeField(default=timezone.now, db_index=True)


class Admission(models.Model):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='admissions')
    department = models.ForeignKey(Department, null=True, blank=True, on_delete=models.SET_NULL)
    reason = models.TextField(blank=True)
    admission_date = models.DateTimeField(default=timezone.now)
    discharge_date = models.DateTimeField(null=True, blank=True)
    status = models.CharField(max_length=16, default='ADMITTED')
    created_at = models.DateTimeField(default=timezone.now, db_index=True)


class AuditEvent(models.Model):
    user = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='audit_events')
    action = models.CharField(max_length=64, db_index=True)
    object_type = models.CharField(max_length=64, null=True, blank=True)
    object_id = models.BigIntegerField(null=True, blank=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['object_type', 'object_id']),
        ]

    def __str__(self) -> str:
        return f"{self.action} {self.object_type}:{self.object_id}"
