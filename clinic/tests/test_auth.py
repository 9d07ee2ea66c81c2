import pytest
from rest_framework.authtoken.models import Token

from clinic.models import AuditEvent

pytestmark = pytest.mark.django_db


def login(api, username='root', password='P@ssw0rd1'):
    return api.post('/api/auth/login', {'username': username, 'password': password}, format='json')


def test_login_issues_both_tokens(api, admin_user):
    r = login(api)
    assert r.status_code == 200, r.data
    assert r.data['ok'] is True
    assert r.data['token'] == Token.objects.get(user=admin_user).key
    assert r.data['jwt_access'] and r.data['jwt_refresh']
    assert r.data['user']['permissions'] == ['admin']
    assert r.data['user']['staffId'] is None
    assert AuditEvent.objects.filter(action='login', user=admin_user).exists()


def test_login_rejects_bad_password(api, admin_user):
    r = login(api, password='wrong')
    assert r.status_code == 400
    assert r.data == {'ok': False, 'error': {'code': 'invalid_credentials',
                                             'message': 'Invalid username or password'}}


def test_login_requires_fields(api):
    r = api.post('/api/auth/login', {'username': '  '}, format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'invalid'


def test_token_and_jwt_authenticate(api, make_staff):
    member = make_staff('nurse', ['view_patients'])
    data = login(api, 'nurse').data

    api.credentials(HTTP_AUTHORIZATION=f"Token {data['token']}")
    r = api.get('/api/auth/me')
    assert r.status_code == 200
    assert r.data['user']['staffId'] == member.pk
    assert r.data['user']['permissions'] == ['view_patients']

    api.credentials(HTTP_AUTHORIZATION=f"Bearer {data['jwt_access']}")
    assert api.get('/api/auth/me').status_code == 200


def test_refresh_and_logout(api, admin_user):
    refresh = login(api).data['jwt_refresh']
    r = api.post('/api/auth/refresh', {'refresh': refresh}, format='json')
    assert r.status_code == 200, r.data
    assert 'jwt_access' in r.data

    api.force_authenticate(admin_user)
    r = api.post('/api/auth/logout', {'refresh': refresh}, format='json')
    assert r.data == {'ok': True, 'blacklisted': 1}
    api.force_authenticate(None)
    assert api.post('/api/auth/refresh', {'refresh': refresh}, format='json').status_code == 401


def test_logout_all_sessions(api, admin_user):
    login(api)
    login(api)
    api.force_authenticate(admin_user)
    assert api.post('/api/auth/logout', {}, format='json').data['blacklisted'] == 2


def test_me_requires_auth(api):
    r = api.get('/api/auth/me')
    assert r.status_code in (401, 403)
    assert r.data['ok'] is False


def test_healthz(api):
    r = api.get('/healthz')
    assert r.status_code == 200
    assert r.json() == {'ok': True, 'db': True}
