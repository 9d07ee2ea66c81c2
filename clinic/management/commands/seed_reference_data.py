"""
Seed the permission catalogue, the default roles with a matching system
permission template each, and the service catalogue.

Safe to run repeatedly: rows are matched on their natural keys and only
missing ones are created.
"""
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction

from clinic.models import Permission, PermissionTemplate, Role, Service, ServiceCategory
from clinic.services import access

# (code, display name, category, module)
PERMISSIONS = [
    ('admin', 'Administrator', 'System', 'system'),
    ('system_configuration', 'System Configuration', 'System', 'system'),
    ('view_patients', 'View Patients', 'Patients', 'patients'),
    ('edit_patients', 'Edit Patients', 'Patients', 'patients'),
    ('view_billing', 'View Billing', 'Billing', 'billing'),
    ('manage_billing', 'Manage Billing', 'Billing', 'billing'),
    ('process_payments', 'Process Payments', 'Billing', 'billing'),
    ('process_refunds', 'Process Refunds', 'Billing', 'billing'),
    ('view_billing_analytics', 'View Billing Analytics', 'Billing', 'billing'),
    ('view_lab', 'View Lab Orders', 'Laboratory', 'lab'),
    ('order_lab_tests', 'Order Lab Tests', 'Laboratory', 'lab'),
    ('process_lab_tests', 'Process Lab Tests', 'Laboratory', 'lab'),
    ('view_treatments', 'View Treatments', 'Clinical', 'treatments'),
    ('manage_treatments', 'Manage Treatments', 'Clinical', 'treatments'),
    ('view_departments', 'View Departments', 'Administration', 'departments'),
    ('manage_departments', 'Manage Departments', 'Administration', 'departments'),
    ('manage_services', 'Manage Services', 'Administration', 'services'),
    ('view_staff', 'View Staff', 'Staff', 'staff'),
    ('manage_staff', 'Manage Staff', 'Staff', 'staff'),
    ('create_staff', 'Create Staff', 'Staff', 'staff'),
    ('edit_staff', 'Edit Staff', 'Staff', 'staff'),
    ('delete_staff', 'Delete Staff', 'Staff', 'staff'),
    ('view_roles', 'View Roles', 'Staff', 'roles'),
    ('manage_roles', 'Manage Roles', 'Staff', 'roles'),
    ('manage_users', 'Manage Users', 'Security', 'permissions'),
    ('manage_permissions', 'Manage Permissions', 'Security', 'permissions'),
    ('view_permission_analytics', 'View Permission Analytics', 'Security', 'permissions'),
    ('view_permission_templates', 'View Permission Templates', 'Security', 'permissions'),
    ('manage_permission_templates', 'Manage Permission Templates', 'Security', 'permissions'),
    ('view_permission_workflows', 'View Permission Workflows', 'Security', 'permissions'),
    ('manage_permission_workflows', 'Manage Permission Workflows', 'Security', 'permissions'),
    ('view_permission_requests', 'View Permission Requests', 'Security', 'permissions'),
    ('delete_permission_requests', 'Delete Permission Requests', 'Security', 'permissions'),
    ('view_temporary_permissions', 'View Temporary Permissions', 'Security', 'temporary_permissions'),
    ('manage_temporary_permissions', 'Manage Temporary Permissions', 'Security', 'temporary_permissions'),
    ('grant_temporary_permissions', 'Grant Temporary Permissions', 'Security', 'temporary_permissions'),
]

ROLES = {
    'ADMIN': ('Full system access', ['admin']),
    'DOCTOR': ('Clinical staff ordering tests and leading treatments', [
        'view_patients', 'edit_patients', 'view_lab', 'order_lab_tests', 'view_treatments', 'manage_treatments',
        'view_billing',
    ]),
    'NURSE': ('Ward and clinic nursing staff', ['view_patients', 'edit_patients', 'view_treatments', 'view_lab']),
    'CASHIER': ('Cash office and invoice payments', [
        'view_patients', 'view_billing', 'manage_billing', 'process_payments',
    ]),
    'MANAGER': ('Department and cash office management', [
        'view_patients', 'view_billing', 'view_billing_analytics', 'view_staff', 'view_departments',
    ]),
    'FINANCE_MANAGER': ('Approves petty cash and oversees billing', [
        'view_billing', 'manage_billing', 'view_billing_analytics', 'process_refunds',
    ]),
    'PHARMACIST': ('Dispensing', ['view_patients', 'view_treatments']),
    'LAB_TECHNICIAN': ('Processes laboratory tests', ['view_patients', 'view_lab', 'process_lab_tests']),
}

CATEGORIES = {
    'Consultation': 'Doctor consultations and assessments',
    'Laboratory': 'Laboratory tests and diagnostics',
    'Radiology': 'Imaging services',
    'Surgery': 'Surgical procedures',
    'Pharmacy': 'Medication dispensing',
    'Emergency': 'Emergency care',
    'Inpatient': 'Ward admission and bed charges',
    'Rehabilitation': 'Physiotherapy and rehabilitation',
    'Registration': 'Patient registration services',
}

# (category, name, code, price, requires pre-payment, description)
SERVICES = [
    ('Consultation', 'General Consultation', 'CON001', '50.00', False, 'General practitioner consultation'),
    ('Consultation', 'Specialist Consultation', 'CON002', '100.00', False, 'Specialist doctor consultation'),
    ('Consultation', 'Emergency Consultation', 'EMG001', '150.00', True, 'Emergency department consultation'),
    ('Laboratory', 'Complete Blood Count', 'LAB001', '25.00', False, 'Full blood count analysis'),
    ('Laboratory', 'Blood Glucose Test', 'LAB002', '15.00', False, 'Blood sugar level test'),
    ('Laboratory', 'Urinalysis', 'LAB003', '20.00', False, 'Urine analysis'),
    ('Radiology', 'Chest X-Ray', 'RAD001', '80.00', False, 'Chest radiograph'),
    ('Radiology', 'CT Scan - Head', 'RAD002', '300.00', True, 'Computed tomography of the head'),
    ('Surgery', 'Appendectomy', 'SUR001', '5000.00', True, 'Surgical removal of the appendix'),
    ('Surgery', 'Hernia Repair', 'SUR002', '3500.00', True, 'Hernia repair surgery'),
    ('Pharmacy', 'Prescription Medication', 'PHM001', '30.00', False, 'Prescription dispensing fee'),
    ('Inpatient', 'General Ward - Daily', 'INP001', '200.00', False, 'Daily general ward charge'),
    ('Registration', 'Patient Medical Card', 'REG001', '100.00', True,
     'Patient registration and medical card issuance - Required for hospital service access'),
]


class Command(BaseCommand):
    help = "Seed permissions, default roles and their templates, service categories and services (idempotent)."

    @transaction.atomic
    def handle(self, *args, **options):
        created = {'permissions': 0, 'roles': 0, 'templates': 0, 'categories': 0, 'services': 0}

        for code, display, category, module in PERMISSIONS:
            _, new = Permission.objects.get_or_create(
                name=code, defaults={'display_name': display, 'category': category, 'module': module},
            )
            created['permissions'] += int(new)

        for name, (description, perms) in ROLES.items():
            _, new = Role.objects.get_or_create(name=name, defaults={'description': description,
                                                                     'permissions': perms})
            created['roles'] += int(new)
            _, new = PermissionTemplate.objects.get_or_create(
                name=f'{name} Role', defaults={
                    'description': description, 'category': 'Roles', 'permissions': perms, 'is_system': True,
                },
            )
            created['templates'] += int(new)

        categories = {}
        for name, description in CATEGORIES.items():
            categories[name], new = ServiceCategory.objects.get_or_create(
                name=name, defaults={'description': description},
            )
            created['categories'] += int(new)

        for category, name, code, price, prepay, description in SERVICES:
            _, new = Service.objects.get_or_create(
                service_code=code,
                defaults={
                    'category': categories[category],
                    'name': name,
                    'description': description,
                    'base_price': Decimal(price),
                    'current_price': Decimal(price),
                    'requires_pre_payment': prepay,
                },
            )
            created['services'] += int(new)

        access.invalidate_catalog()
        summary = ', '.join(f"{v} {k}" for k, v in created.items())
        self.stdout.write(self.style.SUCCESS(f"Seeded: {summary}"))
