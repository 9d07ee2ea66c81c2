from datetime import timedelta

import pytest
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from clinic.exceptions import Conflict
from clinic.models import PermissionAuditEntry, PermissionRequest, TemporaryPermission
from clinic.services import access
from clinic.services import permission_requests as workflow
from clinic.services import permission_templates as templates

pytestmark = pytest.mark.django_db


@pytest.fixture
def front_desk(db):
    return templates.create_template(name='Front Desk', category='Reception',
                                     permissions=['view_patients', 'edit_patients', 'view_billing'])


@pytest.fixture
def people(make_staff):
    return tuple(make_staff(name).user for name in ('asker', 'boss', 'chief'))


# ---------------------------------------------------------------------
# Templates and presets
# ---------------------------------------------------------------------
def test_template_validation(front_desk):
    with pytest.raises(ValidationError):
        templates.create_template(name='Empty', permissions=[])
    with pytest.raises(Conflict):
        templates.create_template(name='front desk', permissions=['view_lab'])

    system = templates.create_template(name='Auditor', permissions=['view_billing'], is_system=True)
    with pytest.raises(ValidationError):
        templates.update_template(system.pk, {'description': 'changed'})
    with pytest.raises(ValidationError):
        templates.delete_template(system.pk)

    updated = templates.update_template(front_desk.pk, {'permissions': ['view_patients', 'view_patients', 'view_lab']})
    assert updated.permissions == ['view_patients', 'view_lab']
    assert templates.template_categories() == ['General', 'Reception']
    assert [t['name'] for t in templates.list_templates('Reception')] == ['Front Desk']


def test_preset_customizations(front_desk):
    preset = templates.create_preset(name='Desk without billing', template_pk=front_desk.pk, customizations=[
        {'action': 'REMOVE', 'permission': 'view_billing'},
        {'action': 'ADD', 'permission': 'view_lab'},
        {'action': 'ADD', 'permission': 'view_patients'},
    ])
    assert templates.preset_permissions(preset.pk) == ['view_patients', 'edit_patients', 'view_lab']
    with pytest.raises(ValidationError):
        templates.create_preset(name='Bad', template_pk=front_desk.pk,
                                customizations=[{'action': 'SWAP', 'permission': 'view_lab'}])
    with pytest.raises(NotFound):
        templates.create_preset(name='Orphan', template_pk=999)

    with pytest.raises(Conflict):
        templates.delete_template(front_desk.pk)
    templates.update_preset(preset.pk, {'is_active': False})
    assert templates.list_presets() == []
    assert templates.delete_template(front_desk.pk) == {'message': 'Permission template deleted successfully'}


def test_apply_template_and_preset(front_desk, make_staff):
    clerk = make_staff('clerk', ['view_lab'])
    assert templates.apply_to_user(clerk.user_id, template_pk=front_desk.pk) == [
        'view_lab', 'view_patients', 'edit_patients', 'view_billing',
    ]
    preset = templates.create_preset(name='Read only desk', template_pk=front_desk.pk,
                                     customizations=[{'action': 'REMOVE', 'permission': 'edit_patients'}])
    assert templates.apply_to_user(clerk.user_id, preset_pk=preset.pk, replace=True) == [
        'view_patients', 'view_billing',
    ]
    with pytest.raises(ValidationError):
        templates.apply_to_user(clerk.user_id)


# ---------------------------------------------------------------------
# Permission requests
# ---------------------------------------------------------------------
def test_request_needs_every_required_approver(people):
    asker, boss, chief = people
    req = workflow.create_request(asker, permission='view_billing', reason='Month end close',
                                  approver_ids=[boss.pk, chief.pk])
    assert req.status == PermissionRequest.STATUS_PENDING
    assert [r.pk for r in workflow.awaiting_decision(boss)] == [req.pk]

    req = workflow.decide(req.pk, boss, approve=True)
    assert req.status == PermissionRequest.STATUS_PENDING
    assert not access.has_permission(asker, 'view_billing')
    with pytest.raises(Conflict):
        workflow.decide(req.pk, boss, approve=True)
    assert workflow.awaiting_decision(boss) == []

    req = workflow.decide(req.pk, chief, approve=True, comments='ok')
    assert req.status == PermissionRequest.STATUS_APPROVED
    grant = req.granted_permission
    assert grant.user_id == asker.pk and grant.permission == 'view_billing'
    hours = (grant.expires_at - timezone.now()).total_seconds() / 3600
    assert 23 < hours <= 24
    assert grant.audit_entries.get().action == PermissionAuditEntry.ACTION_GRANTED
    assert access.has_permission(asker, 'view_billing')
    with pytest.raises(Conflict):
        workflow.decide(req.pk, chief, approve=False)


def test_single_rejection_rejects(people):
    asker, boss, chief = people
    req = workflow.create_request(asker, permission='view_lab', reason='Cover', approver_ids=[boss.pk, chief.pk])
    req = workflow.decide(req.pk, chief, approve=False, comments='Not needed')
    assert req.status == PermissionRequest.STATUS_REJECTED
    assert req.granted_permission is None
    assert not TemporaryPermission.objects.exists()
    with pytest.raises(Conflict):
        workflow.decide(req.pk, boss, approve=True)


def test_only_named_approvers_or_admin_decide(people, admin_user):
    asker, boss, chief = people
    req = workflow.create_request(asker, permission='view_lab', reason='Cover', approver_ids=[boss.pk])
    with pytest.raises(PermissionDenied):
        workflow.decide(req.pk, chief, approve=True)

    req = workflow.decide(req.pk, admin_user, approve=True)
    assert req.status == PermissionRequest.STATUS_APPROVED
    assert {a.user_id: a.required for a in req.approvers.all()} == {boss.pk: True, admin_user.pk: False}


def test_requested_expiry_bounds_the_grant(people):
    asker, boss, _ = people
    until = timezone.now() + timedelta(hours=3)
    req = workflow.create_request(asker, permission='view_lab', reason='Cover', expires_at=until,
                                  approver_ids=[boss.pk])
    req = workflow.decide(req.pk, boss, approve=True)
    assert req.granted_permission.expires_at == until


def test_request_validation(people):
    asker, boss, _ = people
    with pytest.raises(ValidationError):
        workflow.create_request(asker, permission=' ', reason='x')
    with pytest.raises(ValidationError):
        workflow.create_request(asker, permission='view_lab', reason='x', approver_ids=[asker.pk])
    with pytest.raises(NotFound):
        workflow.create_request(asker, permission='view_lab', reason='x', approver_ids=[9999])
    with pytest.raises(ValidationError):
        workflow.create_request(asker, permission='view_lab', reason='x',
                                expires_at=timezone.now() - timedelta(hours=1))
    asker.permissions = ['view_lab']
    asker.save(update_fields=['permissions'])
    with pytest.raises(Conflict):
        workflow.create_request(asker, permission='view_lab', reason='x')


def test_cancel_and_stats(people):
    asker, boss, _ = people
    first = workflow.create_request(asker, permission='view_lab', reason='x', approver_ids=[boss.pk])
    second = workflow.create_request(asker, permission='view_billing', reason='y', approver_ids=[boss.pk])
    with pytest.raises(PermissionDenied):
        workflow.cancel(first.pk, boss)
    assert workflow.cancel(first.pk, asker).status == PermissionRequest.STATUS_CANCELLED
    with pytest.raises(Conflict):
        workflow.cancel(first.pk, asker)

    workflow.decide(second.pk, boss, approve=True)
    stats = workflow.stats()
    assert stats['total'] == 2
    assert stats['approved'] == 1 and stats['pending'] == 0
    assert stats['byStatus']['CANCELLED'] == 1
    assert stats['approvalRate'] == 50.0


def test_request_capability_flag():
    assert access.capabilities(['view_permission_requests'])['canViewPermissionWorkflows']
    assert access.capabilities(['view_permission_templates'])['canViewPermissionTemplates']


# ---------------------------------------------------------------------
# API
# ---------------------------------------------------------------------
def test_api_request_flow(api, people):
    asker, boss, _ = people
    api.force_authenticate(asker)
    r = api.post('/api/permission-requests', {
        'permission': 'view_lab', 'reason': 'Cover shift', 'urgency': 'HIGH', 'approverIds': [boss.pk],
    }, format='json')
    assert r.status_code == 201, r.data
    pk = r.data['id']
    assert api.get('/api/permission-requests').status_code == 403
    assert [x['id'] for x in api.get('/api/permission-requests/mine').data] == [pk]
    assert api.post(f'/api/permission-requests/{pk}/approve').status_code == 403

    api.force_authenticate(boss)
    assert [x['id'] for x in api.get('/api/permission-requests/awaiting').data] == [pk]
    r = api.post(f'/api/permission-requests/{pk}/approve', {'comments': 'fine'}, format='json')
    assert r.status_code == 200
    assert r.data['status'] == 'APPROVED'
    assert r.data['approvers'][0]['comments'] == 'fine'


def test_api_templates(api, make_staff, front_desk):
    viewer = make_staff('viewer', ['view_permission_templates'])
    api.force_authenticate(viewer.user)
    assert [t['name'] for t in api.get('/api/permission-templates').data] == ['Front Desk']
    r = api.post('/api/permission-templates', {'name': 'X', 'permissions': ['view_lab']}, format='json')
    assert r.status_code == 403

    security = make_staff('security', ['manage_permission_templates', 'manage_permissions'])
    api.force_authenticate(security.user)
    r = api.post('/api/permission-templates/presets', {
        'name': 'Desk lite', 'templateId': front_desk.pk,
        'customizations': [{'action': 'REMOVE', 'permission': 'view_billing'}],
    }, format='json')
    assert r.status_code == 201, r.data
    r = api.get(f"/api/permission-templates/presets/{r.data['id']}/permissions")
    assert r.data['permissions'] == ['view_patients', 'edit_patients']
    assert api.get('/api/permission-templates/name/Front%20Desk').data['presets'][0]['name'] == 'Desk lite'

    r = api.post('/api/permission-templates/apply', {'userId': viewer.user_id, 'templateId': front_desk.pk},
                 format='json')
    assert r.status_code == 200
    assert r.data['direct'] == ['view_permission_templates', 'view_patients', 'edit_patients', 'view_billing']
