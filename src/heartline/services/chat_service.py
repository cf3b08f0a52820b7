"""Chat service — the durable message store.

Learn: Postgres is the source of truth for chats and messages. Everything the
realtime layer keeps in Redis is a disposable copy that can be rebuilt from
here at any time.

Every method opens its own session via store_session(), so two commands
running concurrently on one WebSocket never share a transaction.

Status lifecycle of a message:
  SENT (persisted) → DELIVERED (recipient's connection loaded it) → READ
"""

from typing import Optional

import structlog
from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.requests import HTTPConnection

from heartline.db.engine import store_session
from heartline.db.models import Chat, Message, MessageStatus
from heartline.errors import NotFoundError, ValidationError
from heartline.schemas.chat import ChatSummary, ChatView, MessageView

logger = structlog.get_logger()

PREVIEW_MAX_LEN = 255


def _pair_filter(first_id: int, second_id: int):
    # A pair matches regardless of the order it was created in.
    return or_(
        and_(Chat.first_id == first_id, Chat.second_id == second_id),
        and_(Chat.first_id == second_id, Chat.second_id == first_id),
    )


class ChatService:
    """Chats, their participants and their messages."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self.sessions = sessions

    # ─── Chats ───────────────────────────────────────────

    async def create_chat(self, first_id: int, second_id: int) -> ChatView:
        """Create the chat between two users, or return the existing one."""
        if first_id == second_id:
            raise ValidationError("A chat needs two different participants")

        async with store_session(self.sessions) as db:
            existing = await self._find_pair(db, first_id, second_id)
            if existing is not None:
                return ChatView.model_validate(existing)

            chat = Chat(first_id=first_id, second_id=second_id)
            db.add(chat)
            try:
                await db.commit()
            except IntegrityError:
                # Lost a race with a concurrent create of the same pair.
                await db.rollback()
                existing = await self._find_pair(db, first_id, second_id)
                if existing is None:
                    raise
                return ChatView.model_validate(existing)

            logger.info("heartline.chat.created", chat_id=chat.id)
            return ChatView.model_validate(chat)

    async def delete_chat(self, first_id: int, second_id: int) -> int:
        """Delete the chat between two users together with its messages.

        Returns the id of the deleted chat.
        """
        if first_id == second_id:
            raise ValidationError("A chat needs two different participants")

        async with store_session(self.sessions) as db:
            chat = await self._find_pair(db, first_id, second_id)
            if chat is None:
                raise NotFoundError("Chat not found")
            chat_id = chat.id

            # Messages first: SQLite doesn't enforce the FK cascade.
            await db.execute(delete(Message).where(Message.chat_id == chat_id))
            await db.execute(delete(Chat).where(Chat.id == chat_id))
            await db.commit()

        logger.info("heartline.chat.deleted", chat_id=chat_id)
        return chat_id

    async def list_chats(self, user_id: int) -> list[ChatSummary]:
        """All chats ``user_id`` takes part in, newest first."""
        async with store_session(self.sessions) as db:
            result = await db.execute(
                select(Chat)
                .where(or_(Chat.first_id == user_id, Chat.second_id == user_id))
                .order_by(Chat.id.desc())
            )
            return [
                ChatSummary(
                    chat_id=chat.id,
                    profile_id=chat.other(user_id),
                    last_message=chat.last_message,
                    is_read=chat.is_read_by(user_id),
                )
                for chat in result.scalars().all()
            ]

    async def get_participants(self, chat_id: int) -> tuple[int, int]:
        async with store_session(self.sessions) as db:
            chat = await db.get(Chat, chat_id)
            if chat is None:
                raise NotFoundError("Chat not found")
            return chat.participants()

    # ─── Messages ────────────────────────────────────────

    async def create_message(self, chat_id: int, sender_id: int, content: str) -> MessageView:
        """Persist a message and update the chat preview.

        The recipient's read flag is cleared; the sender's is left alone.
        """
        async with store_session(self.sessions) as db:
            chat = await db.get(Chat, chat_id)
            if chat is None:
                raise NotFoundError("Chat not found")

            message = Message(
                chat_id=chat_id,
                sender_id=sender_id,
                content=content,
                status=int(MessageStatus.SENT),
            )
            db.add(message)
            chat.last_message = content[:PREVIEW_MAX_LEN]
            chat.set_read(chat.other(sender_id), False)
            await db.commit()

            return MessageView.model_validate(message)

    async def list_messages(self, chat_id: int) -> list[MessageView]:
        """Every durable message of the chat, oldest first."""
        async with store_session(self.sessions) as db:
            if await db.get(Chat, chat_id) is None:
                raise NotFoundError("Chat not found")
            result = await db.execute(
                select(Message)
                .where(Message.chat_id == chat_id)
                .order_by(Message.created_at, Message.id)
            )
            return [MessageView.model_validate(m) for m in result.scalars().all()]

    async def delete_message(self, message_id: int, chat_id: int) -> bool:
        """Delete one message. Returns False when nothing matched."""
        async with store_session(self.sessions) as db:
            result = await db.execute(
                delete(Message).where(
                    Message.id == message_id, Message.chat_id == chat_id
                )
            )
            await db.commit()
            return result.rowcount > 0

    async def update_delivery_status(self, chat_id: int, reader_id: int) -> int:
        """Mark everything the other participant sent as READ.

        Also sets the reader's read flag on the chat. Returns how many
        messages changed status.
        """
        async with store_session(self.sessions) as db:
            chat = await db.get(Chat, chat_id)
            if chat is None:
                raise NotFoundError("Chat not found")

            result = await db.execute(
                update(Message)
                .where(
                    Message.chat_id == chat_id,
                    Message.sender_id != reader_id,
                    Message.status != int(MessageStatus.READ),
                )
                .values(status=int(MessageStatus.READ))
            )
            chat.set_read(reader_id, True)
            await db.commit()
            return result.rowcount

    async def mark_delivered(self, chat_id: int, recipient_id: int) -> int:
        """SENT → DELIVERED for messages addressed to ``recipient_id``."""
        async with store_session(self.sessions) as db:
            result = await db.execute(
                update(Message)
                .where(
                    Message.chat_id == chat_id,
                    Message.sender_id != recipient_id,
                    Message.status == int(MessageStatus.SENT),
                )
                .values(status=int(MessageStatus.DELIVERED))
            )
            await db.commit()
            return result.rowcount

    # ─── Helpers ─────────────────────────────────────────

    async def _find_pair(
        self, db: AsyncSession, first_id: int, second_id: int
    ) -> Optional[Chat]:
        result = await db.execute(select(Chat).where(_pair_filter(first_id, second_id)))
        return result.scalars().first()


def get_chat_service(conn: HTTPConnection) -> ChatService:
    """FastAPI dependency — the ChatService built in the app lifespan."""
    return conn.app.state.chats
