import json

from channels.generic.websocket import AsyncWebsocketConsumer

from clinic.services.events import GROUP


class UpdatesConsumer(AsyncWebsocketConsumer):
    """Read-only feed of domain events (payments, lab tests, permissions)."""

    async def connect(self):
        await self.channel_layer.group_add(GROUP, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "message": "connected"}))

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(GROUP, self.channel_name)

    async def broadcast_event(self, event):
        # event: {"type": "broadcast.event", "event": "invoice.payment", "data": {...}}
        await self.send(json.dumps({"type": "event", "event": event["event"], "data": event.get("data", {})}))
