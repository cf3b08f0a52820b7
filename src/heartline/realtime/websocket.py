"""WebSocket endpoints — live chat and notification streams.

Learn: Each client connects with ?token=JWT (or a Bearer header). The
handler:
1. Authenticates before accept(); a bad token is closed with 4001
2. Binds user_id (and chat_id) into the structlog context
3. Hands the socket to a session, which authorizes, sends the initial
   snapshot, subscribes and runs the inbound/outbound loops

This is a long-lived connection — one per open chat (or feed) per tab.
"""

import structlog
from fastapi import APIRouter, Depends, WebSocket

from heartline.auth.dependencies import authenticate_websocket
from heartline.config import settings
from heartline.realtime.cache import FanoutCache, get_cache
from heartline.realtime.chat_session import ChatSession
from heartline.realtime.notification_session import NotificationSession
from heartline.realtime.protocol import CLOSE_UNAUTHENTICATED
from heartline.services.chat_service import ChatService, get_chat_service
from heartline.services.notification_service import (
    NotificationService,
    get_notification_service,
)

logger = structlog.get_logger()
router = APIRouter()


@router.websocket("/ws/chats/{chat_id}")
async def chat_websocket(
    websocket: WebSocket,
    chat_id: int,
    chats: ChatService = Depends(get_chat_service),
    notifications: NotificationService = Depends(get_notification_service),
    cache: FanoutCache = Depends(get_cache),
):
    """Live stream of one chat for one of its participants."""
    identity = authenticate_websocket(websocket)
    if identity is None:
        await websocket.close(code=CLOSE_UNAUTHENTICATED, reason="Authentication required")
        return

    await websocket.accept()
    with structlog.contextvars.bound_contextvars(user_id=identity.user_id, chat_id=chat_id):
        session = ChatSession(
            websocket,
            identity,
            chat_id,
            chats=chats,
            notifications=notifications,
            cache=cache,
            max_len=settings.recent_cache_max_len,
            ttl=settings.message_cache_ttl_seconds,
            drain_timeout=settings.session_drain_timeout_seconds,
        )
        await session.run()


@router.websocket("/ws/notifications")
async def notifications_websocket(
    websocket: WebSocket,
    notifications: NotificationService = Depends(get_notification_service),
    cache: FanoutCache = Depends(get_cache),
):
    """Live notification feed of the authenticated user."""
    identity = authenticate_websocket(websocket)
    if identity is None:
        await websocket.close(code=CLOSE_UNAUTHENTICATED, reason="Authentication required")
        return

    await websocket.accept()
    with structlog.contextvars.bound_contextvars(user_id=identity.user_id):
        session = NotificationSession(
            websocket,
            identity,
            notifications=notifications,
            cache=cache,
        )
        await session.run()
