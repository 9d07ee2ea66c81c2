"""
Django admin registrations for the clinic models.

Superusers use ``/admin/`` to inspect data and to enter the clinical
records (consultations, prescriptions, surgeries, admissions) that the
API only reads.
"""
from django.contrib import admin

from .models import (
    Admission, AuditEvent, CashTransaction, Consultation, Department, Invoice, LabOrder, LabTest, Patient,
    PatientAccount, Payment, Permission, PermissionPreset, PermissionRequest, PermissionTemplate, PettyCashRequest,
    Prescription, Refund, Role, Service, ServiceCategory, StaffMember, Surgery, TemporaryPermission, Treatment,
    User,
)


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'email', 'is_active', 'is_staff', 'is_superuser')
    search_fields = ('username', 'email', 'first_name', 'last_name')


@admin.register(Department)
class DepartmentAdmin(admin.ModelAdmin):
    list_display = ('code', 'name', 'is_active')
    search_fields = ('code', 'name')


@admin.register(StaffMember)
class StaffMemberAdmin(admin.ModelAdmin):
    list_display = ('employee_id', 'user', 'department', 'is_service_provider', 'is_active')
    list_filter = ('department', 'is_service_provider', 'is_active')
    search_fields = ('employee_id', 'user__username', 'user__first_name', 'user__last_name')


@admin.register(Role)
class RoleAdmin(admin.ModelAdmin):
    list_display = ('name', 'is_active', 'updated_at')
    search_fields = ('name',)


@admin.register(Permission)
class PermissionAdmin(admin.ModelAdmin):
    list_display = ('name', 'category', 'module', 'is_active')
    list_filter = ('category', 'module')
    search_fields = ('name', 'display_name')


@admin.register(TemporaryPermission)
class TemporaryPermissionAdmin(admin.ModelAdmin):
    list_display = ('user', 'permission', 'expires_at', 'is_active')
    list_filter = ('is_active',)
    search_fields = ('permission', 'user__username')


@admin.register(PermissionTemplate)
class PermissionTemplateAdmin(admin.ModelAdmin):
    list_display = ('name', 'category', 'is_system', 'version')
    list_filter = ('category', 'is_system')
    search_fields = ('name',)


admin.site.register(PermissionPreset)


@admin.register(PermissionRequest)
class PermissionRequestAdmin(admin.ModelAdmin):
    list_display = ('requester', 'permission', 'urgency', 'status', 'requested_at')
    list_filter = ('status', 'urgency')
    search_fields = ('permission', 'requester__username')


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ('patient_id', 'first_name', 'last_name', 'phone_number', 'is_active', 'created_at')
    list_filter = ('is_active', 'gender')
    search_fields = ('patient_id', 'first_name', 'last_name', 'email', 'phone_number')


@admin.register(PatientAccount)
class PatientAccountAdmin(admin.ModelAdmin):
    list_display = ('account_number', 'patient', 'balance')
    search_fields = ('account_number', 'patient__patient_id')


@admin.register(ServiceCategory)
class ServiceCategoryAdmin(admin.ModelAdmin):
    list_display = ('name', 'is_active')


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ('service_code', 'name', 'category', 'current_price', 'requires_pre_payment', 'is_active')
    list_filter = ('category', 'requires_pre_payment', 'is_active')
    search_fields = ('service_code', 'name')


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ('invoice_number', 'patient', 'total_amount', 'paid_amount', 'balance', 'status', 'due_date')
    list_filter = ('status',)
    search_fields = ('invoice_number', 'patient__patient_id')


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('id', 'invoice', 'amount', 'method', 'status', 'processed_at')
    list_filter = ('method', 'status')


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    list_display = ('id', 'payment', 'amount', 'status', 'approved_at')


@admin.register(CashTransaction)
class CashTransactionAdmin(admin.ModelAdmin):
    list_display = ('reference_number', 'transaction_type', 'amount', 'cashier', 'transaction_date')
    list_filter = ('transaction_type',)
    search_fields = ('reference_number',)


@admin.register(PettyCashRequest)
class PettyCashRequestAdmin(admin.ModelAdmin):
    list_display = ('purpose', 'amount', 'requester', 'status', 'request_date')
    list_filter = ('status',)


@admin.register(LabOrder)
class LabOrderAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'doctor', 'status', 'total_amount', 'is_paid')
    list_filter = ('status', 'is_paid')


@admin.register(LabTest)
class LabTestAdmin(admin.ModelAdmin):
    list_display = ('id', 'order', 'service', 'status', 'lab_technician', 'is_critical')
    list_filter = ('status', 'is_critical')


@admin.register(Treatment)
class TreatmentAdmin(admin.ModelAdmin):
    list_display = ('id', 'title', 'patient', 'primary_provider', 'status', 'priority', 'start_date')
    list_filter = ('status', 'treatment_type', 'priority')
    search_fields = ('title', 'patient__patient_id')


admin.site.register(Consultation)
admin.site.register(Prescription)
admin.site.register(Surgery)
admin.site.register(Admission)


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'action', 'user', 'object_type', 'object_id')
    list_filter = ('action',)
