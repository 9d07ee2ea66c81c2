"""
ASGI entry point: Django for HTTP, Channels for the ``/ws/updates/`` feed.

The settings module is configured and Django set up before the consumer
import, since the consumer pulls in the services and through them the
models.
"""
import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "hms.settings")

import django  # noqa: E402

django.setup()

from channels.auth import AuthMiddlewareStack  # noqa: E402
from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from django.core.asgi import get_asgi_application  # noqa: E402
from django.urls import path  # noqa: E402

from clinic.realtime.consumers import UpdatesConsumer  # noqa: E402

application = ProtocolTypeRouter({
    "http": get_asgi_application(),
    "websocket": AuthMiddlewareStack(URLRouter([
        path("ws/updates/", UpdatesConsumer.as_asgi()),
    ])),
})
