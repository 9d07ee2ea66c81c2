from datetime import timedelta

import pytest
from django.core.cache import cache
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from clinic.models import Permission, PermissionAuditEntry, Role, TemporaryPermission, User
from clinic.services import access
from clinic.services import temporary_permissions as temp

pytestmark = pytest.mark.django_db


def test_effective_permissions_union(make_staff):
    Role.objects.create(name='NURSE', permissions=['view_patients', 'view_treatments'])
    nurse = make_staff('nurse', ['view_lab', 'view_patients'], role='NURSE')
    TemporaryPermission.objects.create(user=nurse.user, permission='view_billing',
                                       expires_at=timezone.now() + timedelta(hours=1))
    TemporaryPermission.objects.create(user=nurse.user, permission='manage_billing',
                                       expires_at=timezone.now() - timedelta(hours=1))
    perms = access.effective_permissions(nurse.user)
    assert perms == ['view_patients', 'view_treatments', 'view_lab', 'view_billing']


def test_inactive_role_assignments_are_ignored(make_staff):
    Role.objects.create(name='DOCTOR', permissions=['order_lab_tests'], is_active=False)
    doc = make_staff('doc', role='DOCTOR')
    assert access.effective_permissions(doc.user) == []


def test_admin_override(admin_user):
    assert access.effective_permissions(admin_user) == ['admin']
    assert access.has_permission(admin_user, 'anything')
    assert access.has_all_permissions(['admin'], ['a', 'b'])
    assert access.capabilities(['admin'])['canDeleteStaff'] is True


def test_superuser_counts_as_admin():
    su = User.objects.create_superuser(username='su', password='P@ssw0rd1')
    assert access.is_admin(su)


def test_any_and_all():
    perms = ['view_staff', 'edit_staff']
    assert access.has_any_permission(perms, ['manage_staff', 'edit_staff'])
    assert not access.has_all_permissions(perms, ['view_staff', 'delete_staff'])
    caps = access.capabilities(perms)
    assert caps['canViewStaff'] and caps['canEditStaff'] and caps['canManageStaff']
    assert not caps['canCreateStaff']
    assert not caps['isAdmin']


def test_direct_permission_editing(make_staff):
    member = make_staff('clerk')
    uid = member.user_id
    assert access.add_user_permission(uid, 'view_billing') == ['view_billing']
    assert access.add_user_permission(uid, 'view_billing') == ['view_billing']
    assert access.set_user_permissions(uid, ['a', 'b', 'a']) == ['a', 'b']
    assert access.remove_user_permission(uid, 'a') == ['b']
    with pytest.raises(ValidationError):
        access.set_user_permissions(uid, 'a')
    with pytest.raises(NotFound):
        access.add_user_permission(999999, 'x')


def test_users_with_permission(make_staff):
    Role.objects.create(name='LAB_TECHNICIAN', permissions=['process_lab_tests'])
    tech = make_staff('tech', role='LAB_TECHNICIAN')
    direct = make_staff('direct', ['process_lab_tests'])
    make_staff('other', ['view_lab'])
    names = [u.username for u in access.users_with_permission('process_lab_tests')]
    assert names == sorted([tech.user.username, direct.user.username])


def test_catalog_is_cached_until_invalidated():
    Permission.objects.create(name='view_lab', category='Laboratory', module='lab')
    assert access.permission_categories() == ['Laboratory']
    Permission.objects.create(name='view_staff', category='Staff', module='staff')
    assert access.permission_categories() == ['Laboratory']
    access.invalidate_catalog()
    assert access.permission_categories() == ['Laboratory', 'Staff']
    grouped = access.list_permissions()
    assert list(grouped) == ['Laboratory', 'Staff']
    assert cache.get(access.CATALOG_CACHE_KEY) is not None


# ---------------------------------------------------------------------
# Temporary permissions
# ---------------------------------------------------------------------
@pytest.fixture
def granter(make_staff):
    return make_staff('granter', ['grant_temporary_permissions', 'manage_temporary_permissions'])


@pytest.fixture
def grantee(make_staff):
    return make_staff('grantee')


def test_duration_text():
    now = timezone.now()
    assert temp.describe_duration(now, now + timedelta(hours=3)) == '1 day'
    assert temp.describe_duration(now, now + timedelta(days=3)) == '3 days'
    assert temp.describe_duration(now, now + timedelta(days=10)) == '2 weeks'
    assert temp.describe_duration(now, now + timedelta(days=45)) == '2 months'
    assert temp.describe_duration(now, now + timedelta(days=400)) == '2 years'


def test_grant_and_effective(granter, grantee):
    tp = temp.grant(user_pk=grantee.user_id, permission='view_billing',
                    expires_at=timezone.now() + timedelta(days=2), reason='cover', actor=granter.user)
    assert tp.granted_by == granter
    assert access.has_permission(grantee.user, 'view_billing')
    entry = tp.audit_entries.get()
    assert entry.action == PermissionAuditEntry.ACTION_GRANTED
    assert entry.metadata['duration'] == '2 days'

    with pytest.raises(ValidationError):
        temp.grant(user_pk=grantee.user_id, permission='view_billing',
                   expires_at=timezone.now() + timedelta(days=1), actor=granter.user)


def test_grant_rules(granter, grantee, make_staff):
    nobody = make_staff('nobody')
    future = timezone.now() + timedelta(days=1)
    with pytest.raises(PermissionDenied):
        temp.grant(user_pk=grantee.user_id, permission='x', expires_at=future, actor=nobody.user)
    with pytest.raises(NotFound):
        temp.grant(user_pk=999999, permission='x', expires_at=future, actor=granter.user)
    with pytest.raises(ValidationError):
        temp.grant(user_pk=grantee.user_id, permission='x', expires_at=timezone.now() - timedelta(minutes=1),
                   actor=granter.user)


def test_extend_revoke_and_audit(granter, grantee):
    expires = timezone.now() + timedelta(days=1)
    tp = temp.grant(user_pk=grantee.user_id, permission='view_lab', expires_at=expires, actor=granter.user)
    with pytest.raises(ValidationError):
        temp.extend(tp.pk, new_expires_at=expires - timedelta(hours=1), actor=granter.user)
    temp.extend(tp.pk, new_expires_at=expires + timedelta(days=1), reason='longer', actor=granter.user)
    temp.revoke(tp.pk, reason='done', actor=granter.user)
    with pytest.raises(ValidationError):
        temp.revoke(tp.pk, actor=granter.user)
    actions = [e.action for e in temp.audit_trail(tp.pk)]
    assert sorted(actions) == ['EXTENDED', 'GRANTED', 'REVOKED']
    assert temp.active_for_user(grantee.user_id) == []


def test_update_toggles_and_delete(granter, grantee):
    tp = temp.grant(user_pk=grantee.user_id, permission='view_lab',
                    expires_at=timezone.now() + timedelta(days=1), actor=granter.user)
    temp.update_grant(tp.pk, is_active=False, actor=granter.user)
    temp.update_grant(tp.pk, is_active=True, actor=granter.user)
    actions = {e.action for e in temp.audit_trail(tp.pk)}
    assert {'DEACTIVATED', 'ACTIVATED'} <= actions

    assert temp.delete(tp.pk, actor=granter.user)['message'] == 'Temporary permission deleted successfully'
    assert not PermissionAuditEntry.objects.exists()


def test_cleanup_expired(grantee):
    stale = TemporaryPermission.objects.create(user=grantee.user, permission='view_lab',
                                               expires_at=timezone.now() - timedelta(minutes=5))
    fresh = TemporaryPermission.objects.create(user=grantee.user, permission='view_staff',
                                               expires_at=timezone.now() + timedelta(days=1))
    result = temp.cleanup_expired()
    assert result == {'message': 'Cleaned up 1 expired permissions', 'count': 1}
    stale.refresh_from_db()
    fresh.refresh_from_db()
    assert not stale.is_active and fresh.is_active
    entry = stale.audit_entries.get()
    assert entry.action == 'EXPIRED' and entry.performed_by == 'SYSTEM'


# ---------------------------------------------------------------------
# API
# ---------------------------------------------------------------------
def test_api_check_and_me(api, make_staff):
    member = make_staff('checker', ['view_staff'])
    api.force_authenticate(member.user)
    r = api.post('/api/permissions/check', {'permissions': ['view_staff', 'edit_staff'], 'mode': 'all'},
                 format='json')
    assert r.status_code == 200
    assert r.data == {'allowed': False, 'isAdmin': False}
    r = api.get('/api/permissions/me')
    assert r.data['permissions'] == ['view_staff']
    assert r.data['capabilities']['canViewStaff'] is True


def test_api_user_permissions_need_manage(api, make_staff, admin_user):
    member = make_staff('plain')
    api.force_authenticate(member.user)
    assert api.get(f'/api/permissions/users/{member.user_id}').status_code == 403

    api.force_authenticate(admin_user)
    r = api.post(f'/api/permissions/users/{member.user_id}/codes', {'permission': 'view_lab'}, format='json')
    assert r.status_code == 200
    assert r.data['direct'] == ['view_lab']


def test_api_grant_flow(api, granter, grantee):
    api.force_authenticate(granter.user)
    expires = (timezone.now() + timedelta(days=3)).isoformat()
    r = api.post('/api/temporary-permissions',
                 {'userId': grantee.user_id, 'permission': 'view_billing', 'expiresAt': expires}, format='json')
    assert r.status_code == 201, r.data
    pk = r.data['id']

    api.force_authenticate(grantee.user)
    r = api.get(f'/api/temporary-permissions/users/{grantee.user_id}')
    assert r.status_code == 200
    assert [g['id'] for g in r.data] == [pk]
    assert api.get('/api/temporary-permissions').status_code == 403
