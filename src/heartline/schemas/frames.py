"""WebSocket frame schemas.

Learn: Every client frame is ``{"type": <command>, "payload": {...}}``.
The envelope is validated first; the payload is validated against the
command's own model only after the command has been looked up, so an
unknown type is reported as such instead of as a payload error.
"""

from typing import Any

from pydantic import BaseModel, Field


class ClientFrame(BaseModel):
    type: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)


class EmptyPayload(BaseModel):
    """For commands that take no arguments (``get``)."""


# ─── Chat commands ───────────────────────────────────────

class CreatePayload(BaseModel):
    chat_id: int
    user_id: int
    content: str = Field(..., min_length=1, max_length=4000)


class DeletePayload(BaseModel):
    chat_id: int
    message_id: int


class ReadPayload(BaseModel):
    chat_id: int


# ─── Notification commands ───────────────────────────────

class FlowersPayload(BaseModel):
    user_id: int = Field(..., ge=1)


class DeleteNotificationPayload(BaseModel):
    notif_id: int


class ReadNotificationPayload(BaseModel):
    notif_type: str = Field(..., min_length=1)
