"""
Token authentication used by the API.

Kept apart from the view modules so that Django REST framework can
import it from settings during start-up without pulling in views.
"""
from __future__ import annotations

from rest_framework import authentication


class TokenAuthentication(authentication.TokenAuthentication):
    """Legacy ``Authorization: Token <key>`` authentication.

    JWT bearer tokens issued at login are handled by simplejwt; this
    class keeps the opaque token returned alongside them usable.
    """

    keyword = 'Token'
