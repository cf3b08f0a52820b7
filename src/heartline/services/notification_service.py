"""Notification service — durable notifications plus their cached mirror.

Learn: Notifications are written to Postgres first, then copied into the
recipient's bounded Redis list, then signalled on the recipient's channel.
The list is what an open notification stream pushes on wake-up; the table is
what a fresh connection loads. If the cache write fails the notification is
still durable and shows up on the next connect.
"""

from datetime import datetime, timezone
from typing import Callable, Union

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.requests import HTTPConnection

from heartline.db.engine import store_session
from heartline.db.models import Notification, NotificationType
from heartline.errors import NotFoundError
from heartline.realtime.cache import FanoutCache
from heartline.realtime.keys import notifications_channel, notifications_key
from heartline.schemas.notification import NotificationView

logger = structlog.get_logger()


class NotificationService:
    """Create, list, mark and delete notifications."""

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        cache: FanoutCache,
        *,
        max_len: int = 100,
        ttl: float = 108000,
    ):
        self.sessions = sessions
        self.cache = cache
        self.max_len = max_len
        self.ttl = ttl

    # ─── Read ────────────────────────────────────────────

    async def get_notifications(self, user_id: int) -> list[NotificationView]:
        """Durable notifications for ``user_id``, newest first."""
        async with store_session(self.sessions) as db:
            result = await db.execute(
                select(Notification)
                .where(Notification.user_id == user_id)
                .order_by(Notification.created_at.desc(), Notification.id.desc())
            )
            return [NotificationView.from_row(n) for n in result.scalars().all()]

    async def get_current_notifications(self, user_id: int) -> list[NotificationView]:
        """The cached recent list, newest first. Empty once it expired."""
        raw = await self.cache.read_recent(notifications_key(user_id))
        return self._decode(user_id, raw)

    # ─── Write ───────────────────────────────────────────

    async def add_notification(
        self,
        user_id: int,
        type: Union[NotificationType, str],
        content: str,
    ) -> NotificationView:
        """Persist, mirror into the recipient's list and wake their stream."""
        type_value = type.value if isinstance(type, NotificationType) else str(type)

        async with store_session(self.sessions) as db:
            row = Notification(user_id=user_id, type=type_value, content=content)
            db.add(row)
            await db.commit()
            view = NotificationView.from_row(row)

        await self.cache.push_recent(
            notifications_key(user_id),
            view.model_dump_json(),
            max_len=self.max_len,
            ttl=self.ttl,
        )
        await self.cache.publish(notifications_channel(user_id))

        logger.info(
            "heartline.notification.added",
            user_id=user_id,
            notification_id=view.id,
            type=type_value,
        )
        return view

    async def mark_notifications(self, user_id: int, notif_type: str) -> int:
        """Mark every notification of ``notif_type`` as read.

        Returns how many durable rows changed.
        """
        async with store_session(self.sessions) as db:
            result = await db.execute(
                update(Notification)
                .where(
                    Notification.user_id == user_id,
                    Notification.type == notif_type,
                    Notification.read_at.is_(None),
                )
                .values(read_at=datetime.now(timezone.utc))
            )
            await db.commit()

        def mark(view: NotificationView) -> NotificationView:
            if view.type == notif_type:
                return view.model_copy(update={"read": True})
            return view

        await self._rewrite_cached(user_id, mark)
        return result.rowcount

    async def delete_notification(self, notification_id: int, user_id: int) -> None:
        """Delete one of ``user_id``'s notifications."""
        async with store_session(self.sessions) as db:
            result = await db.execute(
                delete(Notification).where(
                    Notification.id == notification_id,
                    Notification.user_id == user_id,
                )
            )
            if result.rowcount == 0:
                raise NotFoundError("Notification not found")
            await db.commit()

        await self.cache.invalidate(notifications_key(user_id))

    # ─── Helpers ─────────────────────────────────────────

    async def _rewrite_cached(
        self,
        user_id: int,
        transform: Callable[[NotificationView], NotificationView],
    ) -> None:
        key = notifications_key(user_id)
        raw = await self.cache.read_recent(key)
        if not raw:
            return
        updated = [transform(v).model_dump_json() for v in self._decode(user_id, raw)]
        await self.cache.replace_recent(key, updated, ttl=self.ttl)

    def _decode(self, user_id: int, raw: list[str]) -> list[NotificationView]:
        views = []
        for entry in raw:
            try:
                views.append(NotificationView.model_validate_json(entry))
            except PydanticValidationError as e:
                logger.warning(
                    "heartline.notification.bad_cache_entry",
                    user_id=user_id,
                    error=str(e),
                )
        return views


def get_notification_service(conn: HTTPConnection) -> NotificationService:
    """FastAPI dependency — the NotificationService built in the app lifespan."""
    return conn.app.state.notifications
