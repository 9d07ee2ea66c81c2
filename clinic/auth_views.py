"""
Authentication views and request helpers.

The login endpoint issues both the legacy DRF token and a JWT pair, and
returns the caller's effective permissions together with the derived
capability flags so the front-end can shape its navigation without a
second round-trip.  These views live apart from
``clinic.authentication`` so DRF can load the authentication classes
without importing the services.
"""
from __future__ import annotations

import logging
from typing import Optional

from django.contrib.auth import authenticate
from rest_framework.authtoken.models import Token
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.views import TokenRefreshView

from clinic.models import StaffMember, User
from clinic.serializers.auth import LoginSerializer
from clinic.services import access
from clinic.services.audit import log_action

logger = logging.getLogger(__name__)


def get_user_for_request(request) -> Optional[User]:
    user = getattr(request, 'user', None)
    if user and getattr(user, 'is_authenticated', False):
        return user
    return None


def staff_for_request(request) -> Optional[StaffMember]:
    """The staff profile of the caller, or None for non-staff users."""
    user = get_user_for_request(request)
    if user is None:
        return None
    return StaffMember.objects.select_related('user').filter(user=user).first()


def _user_payload(user: User) -> dict:
    perms = access.effective_permissions(user)
    staff = StaffMember.objects.filter(user=user).first()
    return {
        'id': user.id,
        'username': user.username,
        'name': user.get_full_name() or user.username,
        'email': user.email,
        'staffId': staff.id if staff else None,
        'permissions': perms,
        'capabilities': access.capabilities(perms),
    }


@api_view(['POST'])
@permission_classes([AllowAny])
def login_view(request):
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    username = s.validated_data['username']
    ip = request.META.get('REMOTE_ADDR')

    user = authenticate(request, username=username, password=s.validated_data['password'])
    if not user:
        log_action(user=None, action='login', object_type='user',
                   detail={'result': 'fail', 'username': username, 'ip': ip})
        logger.info('failed login for %s', username)
        return Response({'ok': False, 'error': {'code': 'invalid_credentials',
                                                'message': 'Invalid username or password'}}, status=400)

    log_action(user=user, action='login', object_type='user', object_id=user.id,
               detail={'result': 'ok', 'ip': ip})
    token_obj, _ = Token.objects.get_or_create(user=user)
    refresh = RefreshToken.for_user(user)
    return Response({
        'ok': True,
        'token': token_obj.key,
        'jwt_access': str(refresh.access_token),
        'jwt_refresh': str(refresh),
        'user': _user_payload(user),
    })

# ScopedRateThrottle looks the scope up on the wrapped view class
login_view.cls.throttle_scope = 'login'


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def me_view(request):
    return Response({'ok': True, 'user': _user_payload(request.user)})


@api_view(['POST'])
@permission_classes([AllowAny])
def jwt_refresh_view(request):
    """Return a new access token from a refresh token."""
    resp = TokenRefreshView.as_view()(request._request)
    data = dict(resp.data)
    if 'access' in data:
        data['jwt_access'] = data.pop('access')
    return Response(data, status=resp.status_code)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def jwt_logout_view(request):
    """Blacklist the given refresh token, or every outstanding one of the user."""
    refresh = request.data.get('refresh')
    count = 0
    if refresh:
        try:
            RefreshToken(refresh).blacklist()
            count = 1
        except TokenError as e:
            return Response({'ok': False, 'error': {'code': 'token_not_valid', 'message': str(e)}}, status=400)
    else:
        for token in OutstandingToken.objects.filter(user=request.user):
            _, created = BlacklistedToken.objects.get_or_create(token=token)
            count += int(created)
    log_action(user=request.user, action='logout', object_type='user', object_id=request.user.id,
               detail={'blacklisted': count})
    return Response({'ok': True, 'blacklisted': count})
