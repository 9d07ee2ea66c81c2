"""
URL mappings for the hospital management API.

Trailing slashes are omitted throughout (``APPEND_SLASH`` is off).
"""
from django.urls import include, path

from .auth_views import jwt_logout_view, jwt_refresh_view, login_view, me_view
from .views import billing, cash, catalog, departments, health, lab, patients, staff, treatments
from .views import permission_requests as perm_requests
from .views import permission_templates as perm_templates
from .views import permissions as perms
from .views import temporary_permissions as temp

urlpatterns = [
    path('metrics', include('django_prometheus.urls')),
    path('healthz', health.healthz),

    # Authentication
    path('api/auth/login', login_view),
    path('api/auth/refresh', jwt_refresh_view),
    path('api/auth/logout', jwt_logout_view),
    path('api/auth/me', me_view),

    # Patients
    path('api/patients', patients.patient_collection),
    path('api/patients/code/<str:code>', patients.patient_by_code),
    path('api/patients/<int:pk>', patients.patient_detail),
    path('api/patients/<int:pk>/edit', patients.patient_edit_form),
    path('api/patients/<int:pk>/account', patients.patient_account),
    path('api/patients/<int:pk>/financial-summary', patients.patient_financial_summary),
    path('api/patients/<int:pk>/outstanding', patients.patient_outstanding),
    path('api/patients/<int:pk>/activity', patients.patient_activity),
    path('api/patients/<int:pk>/billing-history', patients.patient_billing_history),
    path('api/patients/<int:pk>/invoice-summary', patients.patient_invoice_summary),
    path('api/patients/<int:pk>/registration-invoice', patients.patient_registration_invoice),
    path('api/patients/<int:patient_pk>/lab-results', lab.patient_results),

    # Billing
    path('api/billing/invoices', billing.invoice_collection),
    path('api/billing/invoices/number/<str:number>', billing.invoice_by_number),
    path('api/billing/invoices/<int:pk>', billing.invoice_detail),
    path('api/billing/invoices/<int:pk>/charges', billing.invoice_add_charge),
    path('api/billing/invoices/<int:pk>/charges/<int:charge_pk>', billing.invoice_remove_charge),
    path('api/billing/invoices/<int:pk>/finalize', billing.invoice_finalize),
    path('api/billing/invoices/<int:pk>/cancel', billing.invoice_cancel),
    path('api/billing/invoices/<int:pk>/payments', billing.invoice_payments),
    path('api/billing/invoices/<int:pk>/payment-status', billing.invoice_payment_status),
    path('api/billing/payments/<int:pk>', billing.payment_detail),
    path('api/billing/payments/<int:pk>/refund', billing.payment_refund),
    path('api/billing/analytics', billing.analytics),

    # Cash office
    path('api/cash/transactions', cash.cash_transactions),
    path('api/cash/invoice-payment', cash.cash_invoice_payment),
    path('api/cash/summary', cash.cash_summary),
    path('api/cash/reconciliation', cash.cash_reconciliation),
    path('api/cash/shift-report', cash.cashier_shift_report),
    path('api/cash/statistics', cash.cash_statistics),
    path('api/cash/petty-cash', cash.petty_cash_collection),
    path('api/cash/petty-cash/pending', cash.petty_cash_pending),
    path('api/cash/petty-cash/<int:pk>', cash.petty_cash_detail),
    path('api/cash/petty-cash/<int:pk>/approve', cash.petty_cash_approve),
    path('api/cash/petty-cash/<int:pk>/reject', cash.petty_cash_reject),

    # Permissions
    path('api/permissions', perms.permission_catalog),
    path('api/permissions/categories', perms.permission_categories),
    path('api/permissions/modules', perms.permission_modules),
    path('api/permissions/me', perms.my_permissions),
    path('api/permissions/check', perms.check_permissions),
    path('api/permissions/users/<int:user_pk>', perms.user_permissions),
    path('api/permissions/users/<int:user_pk>/codes', perms.user_permission_code),
    path('api/permissions/<str:code>/users', perms.permission_holders),

    # Temporary permissions
    path('api/temporary-permissions', temp.grant_collection),
    path('api/temporary-permissions/cleanup', temp.cleanup_expired),
    path('api/temporary-permissions/users/<int:user_pk>', temp.user_active_grants),
    path('api/temporary-permissions/<int:pk>', temp.grant_detail),
    path('api/temporary-permissions/<int:pk>/extend', temp.grant_extend),
    path('api/temporary-permissions/<int:pk>/revoke', temp.grant_revoke),
    path('api/temporary-permissions/<int:pk>/audit', temp.grant_audit_trail),

    # Permission templates and presets
    path('api/permission-templates', perm_templates.template_collection),
    path('api/permission-templates/categories', perm_templates.template_categories),
    path('api/permission-templates/apply', perm_templates.apply_template),
    path('api/permission-templates/name/<str:name>', perm_templates.template_by_name),
    path('api/permission-templates/presets', perm_templates.preset_collection),
    path('api/permission-templates/presets/<int:pk>', perm_templates.preset_detail),
    path('api/permission-templates/presets/<int:pk>/permissions', perm_templates.preset_permissions),
    path('api/permission-templates/<int:pk>', perm_templates.template_detail),

    # Permission requests
    path('api/permission-requests', perm_requests.request_collection),
    path('api/permission-requests/mine', perm_requests.my_requests),
    path('api/permission-requests/awaiting', perm_requests.awaiting_my_decision),
    path('api/permission-requests/stats', perm_requests.request_stats),
    path('api/permission-requests/<int:pk>', perm_requests.request_detail),
    path('api/permission-requests/<int:pk>/approve', perm_requests.request_approve),
    path('api/permission-requests/<int:pk>/reject', perm_requests.request_reject),
    path('api/permission-requests/<int:pk>/cancel', perm_requests.request_cancel),

    # Departments
    path('api/departments', departments.department_collection),
    path('api/departments/code/<str:code>', departments.department_by_code),
    path('api/departments/<int:pk>', departments.department_detail),
    path('api/departments/<int:pk>/stats', departments.department_stats),

    # Service catalogue
    path('api/services/categories', catalog.category_collection),
    path('api/services/categories/<int:pk>', catalog.category_detail),
    path('api/services/categories/<int:pk>/services', catalog.category_services),
    path('api/services', catalog.service_collection),
    path('api/services/pre-payment', catalog.services_pre_payment),
    path('api/services/<int:pk>', catalog.service_detail),
    path('api/services/<int:pk>/price', catalog.service_price),

    # Staff and roles
    path('api/staff', staff.staff_collection),
    path('api/staff/stats', staff.staff_stats),
    path('api/staff/service-providers', staff.service_providers),
    path('api/staff/service-providers/stats', staff.service_provider_stats),
    path('api/staff/employee/<str:employee_id>', staff.staff_by_employee_id),
    path('api/staff/<int:pk>', staff.staff_detail),
    path('api/staff/<int:pk>/stats', staff.staff_member_stats),
    path('api/staff/<int:pk>/service-provider', staff.staff_service_provider),
    path('api/staff/<int:pk>/roles', staff.staff_role_collection),
    path('api/staff/<int:pk>/roles/<int:role_pk>', staff.staff_role_remove),
    path('api/roles', staff.role_collection),
    path('api/roles/<int:pk>', staff.role_detail),

    # Laboratory
    path('api/lab/orders', lab.order_collection),
    path('api/lab/orders/<int:pk>', lab.order_detail),
    path('api/lab/orders/<int:pk>/cancel', lab.order_cancel),
    path('api/lab/orders/<int:pk>/tests', lab.order_add_test),
    path('api/lab/orders/<int:pk>/mark-paid', lab.order_mark_paid),
    path('api/lab/tests/available', lab.available_tests),
    path('api/lab/tests/mine', lab.my_tests),
    path('api/lab/tests/<int:pk>/claim', lab.test_claim),
    path('api/lab/tests/<int:pk>/start', lab.test_start),
    path('api/lab/tests/<int:pk>/complete', lab.test_complete),
    path('api/lab/tests/<int:pk>/cancel', lab.test_cancel),

    # Treatments
    path('api/treatments', treatments.treatment_collection),
    path('api/treatments/links', treatments.link_collection),
    path('api/treatments/links/<int:link_pk>', treatments.link_detail),
    path('api/treatments/<int:pk>', treatments.treatment_detail),
    path('api/treatments/<int:pk>/status', treatments.treatment_status),
    path('api/treatments/<int:pk>/providers', treatments.treatment_add_provider),
    path('api/treatments/<int:pk>/providers/<int:provider_pk>', treatments.treatment_remove_provider),
    path('api/treatments/<int:pk>/links', treatments.treatment_links),
    path('api/treatments/<int:pk>/transfer', treatments.treatment_transfer),
]
