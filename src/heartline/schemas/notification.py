"""Pydantic schemas for notifications."""

from datetime import datetime

from pydantic import BaseModel, field_validator

from heartline.db.models import Notification
from heartline.schemas.chat import as_utc


class NotificationView(BaseModel):
    id: int
    type: str
    content: str
    read: bool = False
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: datetime) -> datetime:
        return as_utc(value)

    @classmethod
    def from_row(cls, row: Notification) -> "NotificationView":
        return cls(
            id=row.id,
            type=row.type,
            content=row.content,
            read=row.read_at is not None,
            created_at=row.created_at,
        )

