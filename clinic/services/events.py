"""
Push notifications to websocket clients in the ``updates`` group.
"""
import logging
from typing import Any, Dict, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)

GROUP = "updates"


def broadcast(event: str, data: Optional[Dict[str, Any]] = None) -> bool:
    """Send ``event`` to every connected client; returns False on failure."""
    layer = get_channel_layer()
    if layer is None:
        return False
    try:
        async_to_sync(layer.group_send)(GROUP, {"type": "broadcast.event", "event": event, "data": data or {}})
    except Exception:
        logger.exception("broadcast of %s failed", event)
        return False
    return True
