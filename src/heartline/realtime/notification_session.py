"""Notification stream — one user's live notification feed.

Learn: Any authenticated user may open it; it only ever shows their own
notifications. A fresh connection gets the durable list
(``init_notifications``); each wake-up pushes the cached recent list
(``new_notifications``) so the client can refresh its badge.
"""

import structlog

from heartline.auth.dependencies import AuthenticatedRequest
from heartline.db.models import NotificationType
from heartline.errors import ValidationError
from heartline.realtime.cache import FanoutCache
from heartline.realtime.keys import notifications_channel
from heartline.realtime.protocol import Command, ProtocolSession, Transport
from heartline.schemas.frames import (
    DeleteNotificationPayload,
    FlowersPayload,
    ReadNotificationPayload,
)
from heartline.services.notification_service import NotificationService

logger = structlog.get_logger()


class NotificationSession(ProtocolSession):

    kind = "notifications"

    def __init__(
        self,
        transport: Transport,
        identity: AuthenticatedRequest,
        *,
        notifications: NotificationService,
        cache: FanoutCache,
    ):
        super().__init__(transport, identity, cache)
        self.notifications = notifications

    @property
    def user_id(self) -> int:
        return self.identity.user_id

    async def snapshot(self) -> None:
        views = await self.notifications.get_notifications(self.user_id)
        await self.send({
            "type": "init_notifications",
            "notifications": [v.model_dump(mode="json") for v in views],
        })

    def channel(self) -> str:
        return notifications_channel(self.user_id)

    async def on_wake_up(self) -> None:
        views = await self.notifications.get_current_notifications(self.user_id)
        if views:
            await self.send({
                "type": "new_notifications",
                "notifications": [v.model_dump(mode="json") for v in views],
            })

    def commands(self) -> dict[str, Command]:
        return {
            "sendFlowers": Command(FlowersPayload, self.send_flowers, "Failed to notify"),
            "delete": Command(
                DeleteNotificationPayload, self.delete, "Failed to delete notification"
            ),
            "read": Command(
                ReadNotificationPayload, self.read, "Failed to update notification status"
            ),
        }

    # ─── Commands ────────────────────────────────────────

    async def send_flowers(self, payload: FlowersPayload) -> None:
        if payload.user_id == self.user_id:
            raise ValidationError("Cannot send flowers to yourself")
        await self.notifications.add_notification(
            payload.user_id,
            NotificationType.FLOWERS,
            f"User {self.user_id} sent you flowers!",
        )
        logger.info("heartline.notifications.flowers_sent", to=payload.user_id)
        await self.send({"type": "SentFlowersTo", "user": payload.user_id})

    async def delete(self, payload: DeleteNotificationPayload) -> None:
        await self.notifications.delete_notification(payload.notif_id, self.user_id)
        await self.send({"type": "deleted", "notif_id": payload.notif_id})

    async def read(self, payload: ReadNotificationPayload) -> None:
        await self.notifications.mark_notifications(self.user_id, payload.notif_type)
        await self.send({"type": "status_updated", "user": self.user_id})
