"""Chat stream — one participant's live connection to one chat.

Learn: On connect the participant gets the full reconciled history
(``init_messages``). After that, every wake-up on their chat channel reads
their recent list and pushes only the messages this connection hasn't
delivered yet (``new_messages``), then clears the list. If the list is
already gone (expired, or cleared by an earlier wake-up) the session falls
back to a full reconciliation, so a missed signal never loses a message.

Sending a message:
1. notify the other participant (synchronous, so a failure aborts the send)
2. in a sub-task: persist → push the copy to both lists → publish on both
   channels → ack the sender with ``created``

The persist-and-fan-out part is protected: once the other participant has
been notified, a disconnect drops only the ``created`` ack, never the
message itself.
"""

from typing import Iterable, Optional

import structlog

from heartline.auth.dependencies import AuthenticatedRequest
from heartline.db.models import NotificationType
from heartline.errors import AuthorizationError
from heartline.realtime.cache import FanoutCache
from heartline.realtime.keys import chat_channel, chat_recent_key
from heartline.realtime.protocol import Command, ProtocolSession, Transport
from heartline.schemas.chat import MessageView
from heartline.schemas.frames import CreatePayload, DeletePayload, EmptyPayload, ReadPayload
from heartline.services.chat_service import ChatService
from heartline.services.notification_service import NotificationService
from heartline.services.reconciler import MessageReconciler

logger = structlog.get_logger()


def _dump(messages: Iterable[MessageView]) -> list[dict]:
    return [m.model_dump(mode="json") for m in messages]


class ChatSession(ProtocolSession):
    """Streams one chat to one of its participants."""

    kind = "chat"

    def __init__(
        self,
        transport: Transport,
        identity: AuthenticatedRequest,
        chat_id: int,
        *,
        chats: ChatService,
        notifications: NotificationService,
        cache: FanoutCache,
        max_len: int = 100,
        ttl: float = 1800,
        drain_timeout: float = 5.0,
    ):
        super().__init__(transport, identity, cache, drain_timeout=drain_timeout)
        self.chat_id = chat_id
        self.chats = chats
        self.notifications = notifications
        self.reconciler = MessageReconciler(chats, cache)
        self.max_len = max_len
        self.ttl = ttl
        self.participants: Optional[tuple[int, int]] = None
        self.delivered: set[int] = set()

    @property
    def user_id(self) -> int:
        return self.identity.user_id

    def other(self) -> int:
        first, second = self.participants
        return second if self.user_id == first else first

    # ─── Hooks ───────────────────────────────────────────

    async def authorize(self) -> None:
        participants = await self.chats.get_participants(self.chat_id)
        if self.user_id not in participants:
            raise AuthorizationError()
        self.participants = participants

    async def snapshot(self) -> None:
        messages = await self.reconciler.reconcile(self.chat_id, self.participants)
        await self.send({"type": "init_messages", "messages": _dump(messages)})
        self.delivered.update(m.id for m in messages)
        await self.chats.mark_delivered(self.chat_id, self.user_id)

    def channel(self) -> str:
        return chat_channel(self.chat_id, self.user_id)

    async def on_wake_up(self) -> None:
        messages = await self.reconciler.recent(self.chat_id, self.user_id)
        if not messages:
            messages = await self.reconciler.reconcile(self.chat_id, self.participants)

        fresh = [m for m in messages if m.id not in self.delivered]
        if fresh:
            await self.send({"type": "new_messages", "messages": _dump(fresh)})
            self.delivered.update(m.id for m in fresh)
            if any(m.sender_id != self.user_id for m in fresh):
                await self.chats.mark_delivered(self.chat_id, self.user_id)

        await self.cache.invalidate(chat_recent_key(self.chat_id, self.user_id))

    def commands(self) -> dict[str, Command]:
        return {
            "create": Command(CreatePayload, self.create, "Failed to notify", background=False),
            "delete": Command(DeletePayload, self.delete, "Failed to delete message"),
            "get": Command(EmptyPayload, self.get, "Failed to get messages", background=False),
            "read": Command(ReadPayload, self.read, "Failed to update message status"),
        }

    # ─── Commands ────────────────────────────────────────

    def _check_chat(self, chat_id: int) -> None:
        if chat_id != self.chat_id:
            raise AuthorizationError()

    async def create(self, payload: CreatePayload) -> None:
        self._check_chat(payload.chat_id)
        if payload.user_id != self.user_id or payload.user_id not in self.participants:
            raise AuthorizationError()

        await self.notifications.add_notification(
            self.other(),
            NotificationType.MESSAGE,
            f"User {self.user_id} sent you a message!",
        )
        self.spawn(
            self.guarded("create", "Failed to create message", self._persist(payload.content))
        )

    async def _persist(self, content: str) -> None:
        message = await self.protect(self._store(content))
        await self.send({"type": "created", "message_id": message.id})

    async def _store(self, content: str) -> MessageView:
        """Persist, then push to both recent lists and wake both streams."""
        message = await self.chats.create_message(self.chat_id, self.user_id, content)
        data = message.model_dump_json()
        for user_id in self.participants:
            await self.cache.push_recent(
                chat_recent_key(self.chat_id, user_id),
                data,
                max_len=self.max_len,
                ttl=self.ttl,
            )
        for user_id in self.participants:
            await self.cache.publish(chat_channel(self.chat_id, user_id))

        logger.info("heartline.chat.message_created", message_id=message.id)
        return message

    async def delete(self, payload: DeletePayload) -> None:
        self._check_chat(payload.chat_id)
        await self.chats.delete_message(payload.message_id, self.chat_id)
        await self.cache.invalidate(
            *(chat_recent_key(self.chat_id, user_id) for user_id in self.participants)
        )
        await self.send({"type": "deleted", "message_id": payload.message_id})

    async def get(self, payload: EmptyPayload) -> None:
        messages = await self.reconciler.reconcile(self.chat_id, self.participants)
        await self.send({"type": "new_messages", "messages": _dump(messages)})
        self.delivered.update(m.id for m in messages)

    async def read(self, payload: ReadPayload) -> None:
        self._check_chat(payload.chat_id)
        await self.chats.update_delivery_status(self.chat_id, self.user_id)
        await self.send({"type": "status_updated", "chat": self.chat_id})
