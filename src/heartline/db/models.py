"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Relationships, constraints, and indexes defined here.

Key concepts:
- Integer autoincrement ids: message ids are monotonic per store, and the
  reconciliation engine relies on them to deduplicate cached copies
- Participant ids are opaque integers owned by the users service; there is
  no users table here
- Only portable column types, so tests can run the same models on SQLite
"""

import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageStatus(enum.IntEnum):
    """Delivery status of a chat message."""

    SENT = 1
    DELIVERED = 2
    READ = 3


class NotificationType(str, enum.Enum):
    MESSAGE = "message"
    MATCH = "match"
    FLOWERS = "flowers"
    LIKE = "like"


# ══════════════════════════════════════════════════════════════
# Chats + Messages
# ══════════════════════════════════════════════════════════════


class Chat(Base):
    """A one-to-one conversation between exactly two participants.

    Learn: Participants are stored in the order given at creation. Each side
    has its own read flag, so the chat list can show "unread" per user.
    last_message is a denormalized preview updated on every new message.
    """

    __tablename__ = "chats"
    __table_args__ = (
        UniqueConstraint("first_id", "second_id", name="uq_chats_pair"),
        CheckConstraint("first_id <> second_id", name="ck_chats_no_self_chat"),
        Index("idx_chats_first", "first_id"),
        Index("idx_chats_second", "second_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_id: Mapped[int] = mapped_column(Integer, nullable=False)
    second_id: Mapped[int] = mapped_column(Integer, nullable=False)
    first_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    second_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    # Relationships
    messages: Mapped[list["Message"]] = relationship(
        back_populates="chat", passive_deletes=True
    )

    def participants(self) -> tuple[int, int]:
        return self.first_id, self.second_id

    def other(self, user_id: int) -> int:
        """The participant that isn't ``user_id``."""
        return self.second_id if user_id == self.first_id else self.first_id

    def is_read_by(self, user_id: int) -> bool:
        return self.first_read if user_id == self.first_id else self.second_read

    def set_read(self, user_id: int, value: bool) -> None:
        if user_id == self.first_id:
            self.first_read = value
        else:
            self.second_read = value


class Message(Base):
    """A chat message — durable once committed.

    status: SENT → DELIVERED (reached the recipient's connection) → READ
    """

    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_chat_created", "chat_id", "created_at", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[int] = mapped_column(
        Integer, nullable=False, default=MessageStatus.SENT
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    # Relationships
    chat: Mapped["Chat"] = relationship(back_populates="messages")


# ══════════════════════════════════════════════════════════════
# Notifications
# ══════════════════════════════════════════════════════════════


class Notification(Base):
    """A user-level notification (new message, match, flowers, ...).

    Learn: read_at is NULL until the user marks notifications of this type
    as read. The API exposes it as a boolean ``read`` flag.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    read_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
