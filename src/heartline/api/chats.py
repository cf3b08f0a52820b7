"""Chat and message API routes.

Learn: These routes are the HTTP side of the message store. The service
layer raises domain errors (heartline.errors); routes translate them to
status codes. Participant checks live here because only the route knows who
is calling.
"""

from fastapi import APIRouter, Depends, HTTPException, Response

from heartline.auth.dependencies import AuthenticatedRequest, get_current_user
from heartline.errors import DependencyError, NotFoundError, ValidationError
from heartline.realtime.cache import FanoutCache, get_cache
from heartline.realtime.keys import chat_recent_key
from heartline.schemas.chat import ChatPair, ChatSummary, ChatView, MessageView
from heartline.services.chat_service import ChatService, get_chat_service
from heartline.services.reconciler import MessageReconciler

router = APIRouter()


def _require_member(body: ChatPair, identity: AuthenticatedRequest) -> None:
    if identity.user_id not in (body.first_id, body.second_id):
        raise HTTPException(status_code=403, detail="You don't have access")


# ═══════════════════════════════════════════════════════════
# Chats
# ═══════════════════════════════════════════════════════════


@router.post("/chats", response_model=ChatView, status_code=201)
async def create_chat(
    body: ChatPair,
    identity: AuthenticatedRequest = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    """Create the chat between two users (returns the existing one if any)."""
    _require_member(body, identity)
    try:
        return await svc.create_chat(body.first_id, body.second_id)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except DependencyError as e:
        raise HTTPException(status_code=503, detail=e.message)


@router.get("/chats", response_model=list[ChatSummary])
async def list_chats(
    identity: AuthenticatedRequest = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    """Chats the caller takes part in, newest first."""
    try:
        return await svc.list_chats(identity.user_id)
    except DependencyError as e:
        raise HTTPException(status_code=503, detail=e.message)


@router.delete("/chats", status_code=204)
async def delete_chat(
    body: ChatPair,
    identity: AuthenticatedRequest = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
    cache: FanoutCache = Depends(get_cache),
):
    """Delete a chat and all of its messages."""
    _require_member(body, identity)
    try:
        chat_id = await svc.delete_chat(body.first_id, body.second_id)
        await cache.invalidate(
            chat_recent_key(chat_id, body.first_id),
            chat_recent_key(chat_id, body.second_id),
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except DependencyError as e:
        raise HTTPException(status_code=503, detail=e.message)
    return Response(status_code=204)


# ═══════════════════════════════════════════════════════════
# Messages
# ═══════════════════════════════════════════════════════════


@router.get("/chats/{chat_id}/messages", response_model=list[MessageView])
async def list_messages(
    chat_id: int,
    identity: AuthenticatedRequest = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
    cache: FanoutCache = Depends(get_cache),
):
    """Reconciled history: durable messages plus not-yet-visible cached ones."""
    try:
        participants = await svc.get_participants(chat_id)
        if identity.user_id not in participants:
            raise HTTPException(status_code=403, detail="You don't have access")
        return await MessageReconciler(svc, cache).reconcile(chat_id, participants)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except DependencyError as e:
        raise HTTPException(status_code=503, detail=e.message)
