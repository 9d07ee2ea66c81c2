"""
camelCase dictionaries returned by the API and the aggregate services.
"""
from __future__ import annotations

import math
from typing import Any, Dict, Optional, Tuple

from clinic import models as m

BLOOD_GROUP_LABELS = dict(m.Patient.BLOOD_GROUP_CHOICES)


def paginate(qs, page: Optional[int], limit: Optional[int], default_limit: int = 20) -> Tuple[list, Dict[str, int]]:
    page = max(int(page or 1), 1)
    limit = max(int(limit or default_limit), 1)
    total = qs.count()
    start = (page - 1) * limit
    items = list(qs[start:start + limit])
    return items, {
        'page': page,
        'limit': limit,
        'total': total,
        'totalPages': math.ceil(total / limit) if total else 0,
    }


def person_name(staff: Optional[m.StaffMember]) -> Optional[str]:
    if staff is None:
        return None
    return staff.user.get_full_name() or staff.user.username


def patient_brief(p: m.Patient) -> Dict[str, Any]:
    return {
        'id': p.id,
        'patientId': p.patient_id,
        'firstName': p.first_name,
        'lastName': p.last_name,
    }


def patient(p: m.Patient) -> Dict[str, Any]:
    account = getattr(p, 'account', None)
    return {
        **patient_brief(p),
        'dateOfBirth': p.date_of_birth,
        'gender': p.gender,
        'phoneNumber': p.phone_number,
        'email': p.email,
        'address': p.address,
        'emergencyContactName': p.emergency_contact_name,
        'emergencyContactRelationship': p.emergency_contact_relationship,
        'emergencyContactPhone': p.emergency_contact_phone,
        'bloodGroup': p.blood_group or None,
        'allergies': p.allergies,
        'genotype': p.genotype,
        'height': p.height,
        'insuranceProvider': p.insurance_provider,
        'insurancePolicyNumber': p.insurance_policy_number,
        'insuranceGroupNumber': p.insurance_group_number,
        'userId': p.user_id,
        'isActive': p.is_active,
        'account': {
            'accountNumber': account.account_number,
            'balance': account.balance,
        } if account else None,
        'createdAt': p.created_at,
        'updatedAt': p.updated_at,
    }


def charge(c: m.Charge) -> Dict[str, Any]:
    return {
        'id': c.id,
        'serviceId': c.service_id,
        'serviceName': c.service.name if c.service_id else 'Unknown Service',
        'description': c.description,
        'quantity': c.quantity,
        'unitPrice': c.unit_price,
        'totalPrice': c.total_price,
    }


def payment(pay: m.Payment) -> Dict[str, Any]:
    return {
        'id': pay.id,
        'invoiceId': pay.invoice_id,
        'amount': pay.amount,
        'method': pay.method,
        'reference': pay.reference,
        'status': pay.status,
        'processedBy': pay.processed_by,
        'processedAt': pay.processed_at,
        'notes': pay.notes,
    }


def invoice(inv: m.Invoice, *, detail: bool = False) -> Dict[str, Any]:
    data = {
        'id': inv.id,
        'invoiceNumber': inv.invoice_number,
        'patient': patient_brief(inv.patient),
        'totalAmount': inv.total_amount,
        'paidAmount': inv.paid_amount,
        'balance': inv.balance,
        'status': inv.status,
        'issuedDate': inv.issued_date,
        'dueDate': inv.due_date,
        'paidDate': inv.paid_date,
        'notes': inv.notes,
        'createdAt': inv.created_at,
    }
    if detail:
        data['charges'] = [charge(c) for c in inv.charges.select_related('service').order_by('id')]
        data['payments'] = [payment(p) for p in inv.payments.order_by('-processed_at')]
    return data


def refund(r: m.Refund) -> Dict[str, Any]:
    return {
        'id': r.id,
        'paymentId': r.payment_id,
        'invoiceId': r.invoice_id,
        'patientId': r.patient_id,
        'amount': r.amount,
        'reason': r.reason,
        'notes': r.notes,
        'status': r.status,
        'approvedBy': r.approved_by,
        'approvedAt': r.approved_at,
    }


def cash_transaction(t: m.CashTransaction) -> Dict[str, Any]:
    return {
        'id': t.id,
        'type': t.transaction_type,
        'amount': t.amount,
        'description': t.description,
        'referenceNumber': t.reference_number,
        'paymentMethod': t.payment_method,
        'transactionDate': t.transaction_date,
        'cashierId': t.cashier_id,
        'patientId': t.patient_id,
        'invoiceId': t.invoice_id,
    }


def petty_cash(r: m.PettyCashRequest) -> Dict[str, Any]:
    return {
        'id': r.id,
        'amount': r.amount,
        'purpose': r.purpose,
        'description': r.description,
        'expectedDate': r.expected_date,
        'notes': r.notes,
        'status': r.status,
        'requesterId': r.requester_id,
        'requesterName': person_name(r.requester),
        'approverId': r.approver_id,
        'approverName': person_name(r.approver),
        'requestDate': r.request_date,
        'approvedAt': r.approved_at,
        'rejectedAt': r.rejected_at,
        'rejectionReason': r.rejection_reason,
    }


def department(d: m.Department) -> Dict[str, Any]:
    return {
        'id': d.id,
        'name': d.name,
        'code': d.code,
        'description': d.description,
        'isActive': d.is_active,
        'createdAt': d.created_at,
        'updatedAt': d.updated_at,
    }


def service_category(cat: m.ServiceCategory) -> Dict[str, Any]:
    return {
        'id': cat.id,
        'name': cat.name,
        'description': cat.description,
        'isActive': cat.is_active,
    }


def service(s: m.Service) -> Dict[str, Any]:
    return {
        'id': s.id,
        'name': s.name,
        'serviceCode': s.service_code,
        'description': s.description,
        'categoryId': s.category_id,
        'categoryName': s.category.name,
        'departmentId': s.department_id,
        'basePrice': s.base_price,
        'currentPrice': s.current_price,
        'requiresPrePayment': s.requires_pre_payment,
        'isActive': s.is_active,
    }


def role(r: m.Role) -> Dict[str, Any]:
    return {
        'id': r.id,
        'name': r.name,
        'description': r.description,
        'permissions': r.permissions,
        'isActive': r.is_active,
    }


def staff(s: m.StaffMember) -> Dict[str, Any]:
    return {
        'id': s.id,
        'employeeId': s.employee_id,
        'userId': s.user_id,
        'username': s.user.username,
        'firstName': s.user.first_name,
        'lastName': s.user.last_name,
        'email': s.user.email,
        'departmentId': s.department_id,
        'departmentName': s.department.name if s.department_id else None,
        'specialization': s.specialization,
        'licenseNumber': s.license_number,
        'phoneNumber': s.phone_number,
        'isServiceProvider': s.is_service_provider,
        'isActive': s.is_active,
        'hireDate': s.hire_date,
        'roles': [
            a.role.name for a in s.role_assignments.all() if a.is_active
        ],
    }


def temporary_permission(tp: m.TemporaryPermission) -> Dict[str, Any]:
    return {
        'id': tp.id,
        'userId': tp.user_id,
        'username': tp.user.username,
        'permission': tp.permission,
        'grantedById': tp.granted_by_id,
        'grantedBy': person_name(tp.granted_by),
        'expiresAt': tp.expires_at,
        'reason': tp.reason,
        'isActive': tp.is_active,
        'createdAt': tp.created_at,
    }


def audit_entry(e: m.PermissionAuditEntry) -> Dict[str, Any]:
    return {
        'id': e.id,
        'action': e.action,
        'performedBy': e.performed_by,
        'reason': e.reason,
        'metadata': e.metadata,
        'timestamp': e.timestamp,
    }


def permission_template(t: m.PermissionTemplate) -> Dict[str, Any]:
    return {
        'id': t.id,
        'name': t.name,
        'description': t.description,
        'category': t.category,
        'permissions': list(t.permissions or []),
        'isSystem': t.is_system,
        'version': t.version,
        'createdAt': t.created_at,
        'updatedAt': t.updated_at,
    }


def permission_preset(p: m.PermissionPreset) -> Dict[str, Any]:
    return {
        'id': p.id,
        'name': p.name,
        'description': p.description,
        'templateId': p.template_id,
        'templateName': p.template.name,
        'customizations': list(p.customizations or []),
        'isActive': p.is_active,
        'createdAt': p.created_at,
    }


def permission_request(r: m.PermissionRequest) -> Dict[str, Any]:
    return {
        'id': r.id,
        'requesterId': r.requester_id,
        'requester': r.requester.get_full_name() or r.requester.username,
        'permission': r.permission,
        'reason': r.reason,
        'urgency': r.urgency,
        'status': r.status,
        'expiresAt': r.expires_at,
        'requestedAt': r.requested_at,
        'grantedPermissionId': r.granted_permission_id,
        'approvers': [
            {
                'userId': a.user_id,
                'name': a.user.get_full_name() or a.user.username,
                'status': a.status,
                'required': a.required,
                'comments': a.comments,
                'decidedAt': a.decided_at,
            }
            for a in r.approvers.all()
        ],
    }


def lab_test(t: m.LabTest) -> Dict[str, Any]:
    return {
        'id': t.id,
        'orderId': t.order_id,
        'serviceId': t.service_id,
        'serviceName': t.service.name,
        'status': t.status,
        'unitPrice': t.unit_price,
        'totalPrice': t.total_price,
        'labTechnicianId': t.lab_technician_id,
        'labTechnician': person_name(t.lab_technician),
        'claimedAt': t.claimed_at,
        'startedAt': t.started_at,
        'completedAt': t.completed_at,
        'resultValue': t.result_value,
        'resultUnit': t.result_unit,
        'referenceRange': t.reference_range,
        'isCritical': t.is_critical,
        'notes': t.notes,
    }


def lab_order(o: m.LabOrder) -> Dict[str, Any]:
    return {
        'id': o.id,
        'patient': patient_brief(o.patient),
        'doctorId': o.doctor_id,
        'doctorName': person_name(o.doctor),
        'status': o.status,
        'totalAmount': o.total_amount,
        'paidAmount': o.paid_amount,
        'balance': o.balance,
        'isPaid': o.is_paid,
        'invoiceId': o.invoice_id,
        'invoiceNumber': o.invoice.invoice_number if o.invoice_id else None,
        'notes': o.notes,
        'tests': [lab_test(t) for t in o.tests.select_related('service', 'lab_technician__user').order_by('id')],
        'createdAt': o.created_at,
    }


def treatment_provider(tp: m.TreatmentProvider) -> Dict[str, Any]:
    return {
        'id': tp.id,
        'providerId': tp.provider_id,
        'providerName': person_name(tp.provider),
        'role': tp.role,
        'isActive': tp.is_active,
        'joinedAt': tp.joined_at,
        'leftAt': tp.left_at,
    }


def treatment_link(link: m.TreatmentLink) -> Dict[str, Any]:
    return {
        'id': link.id,
        'fromTreatmentId': link.from_treatment_id,
        'toTreatmentId': link.to_treatment_id,
        'linkType': link.link_type,
        'reason': link.reason,
        'notes': link.notes,
        'isActive': link.is_active,
    }


def treatment(t: m.Treatment, *, detail: bool = False) -> Dict[str, Any]:
    data = {
        'id': t.id,
        'patient': patient_brief(t.patient),
        'primaryProviderId': t.primary_provider_id,
        'primaryProvider': person_name(t.primary_provider),
        'title': t.title,
        'description': t.description,
        'treatmentType': t.treatment_type,
        'status': t.status,
        'priority': t.priority,
        'chiefComplaint': t.chief_complaint,
        'diagnosis': t.diagnosis,
        'startDate': t.start_date,
        'endDate': t.end_date,
    }
    if detail:
        data['providers'] = [
            treatment_provider(p)
            for p in t.providers.select_related('provider__user').order_by('joined_at', 'id')
        ]
        data['notes'] = [
            {'id': n.id, 'noteType': n.note_type, 'content': n.content,
             'providerId': n.provider_id, 'createdAt': n.created_at}
            for n in t.notes.order_by('-created_at')
        ]
    return data

