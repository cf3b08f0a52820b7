"""Pydantic schemas for chats and messages.

Learn: MessageView is the one shape a message takes everywhere outside the
ORM — REST responses, WebSocket frames and the JSON copies kept in the Redis
fan-out lists. Because cached copies and durable rows share it, the
reconciliation engine can merge them without caring where each came from.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator, model_validator


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we emit is UTC-aware.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ─── Chats ───────────────────────────────────────────────

class ChatPair(BaseModel):
    """Body of POST /chats and DELETE /chats."""
    first_id: int = Field(..., ge=1)
    second_id: int = Field(..., ge=1)

    @model_validator(mode="after")
    def check_distinct(self):
        if self.first_id == self.second_id:
            raise ValueError("a chat needs two different participants")
        return self


class ChatView(BaseModel):
    id: int
    first_id: int
    second_id: int
    last_message: str
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: datetime) -> datetime:
        return as_utc(value)


class ChatSummary(BaseModel):
    """One row of a user's chat list."""
    chat_id: int
    profile_id: int  # the other participant
    last_message: str
    is_read: bool


# ─── Messages ────────────────────────────────────────────

class MessageView(BaseModel):
    id: int
    chat_id: int
    sender_id: int
    content: str
    status: int
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: datetime) -> datetime:
        return as_utc(value)

    def sort_key(self) -> tuple[datetime, int]:
        return self.created_at, self.id
