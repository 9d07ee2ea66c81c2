from typing import Optional, Any, Dict
from django.contrib.auth import get_user_model
from clinic.models import AuditEvent

User = get_user_model()


def log_action(*, user: Optional[User], action: str, object_type: Optional[str] = None, object_id: Optional[int] = None, detail: Optional[Dict[str, Any]] = None) -> AuditEvent:
    return AuditEvent.objects.create(
        user=user if isinstance(user, User) and getattr(user, 'pk', None) else None,
        action=action,
        object_type=object_type, object_id=object_id,
        detail=detail or {},
    )


def actor_name(user) -> str:
    """Display name stored in free-text ``processed_by``/``performed_by`` columns."""
    if user is None or not getattr(user, 'is_authenticated', False):
        return 'SYSTEM'
    return user.get_full_name() or user.username
