"""Message reconciliation — merge durable history with cached copies.

Learn: A message exists in two places for a while after it is sent: the row
in Postgres and JSON copies in both participants' Redis lists. Either side
can be missing a message at any moment (cache expired, or a read raced the
insert), so views are built by merging both and deduplicating by id.

merge_messages() is pure and idempotent:
  1. every durable message, keyed by id
  2. plus each cached entry whose id isn't already there
  3. sorted by (created_at, id)
"""

from typing import Iterable

import structlog
from pydantic import ValidationError as PydanticValidationError

from heartline.realtime.cache import FanoutCache
from heartline.realtime.keys import chat_recent_key
from heartline.schemas.chat import MessageView
from heartline.services.chat_service import ChatService

logger = structlog.get_logger()


def merge_messages(
    durable: Iterable[MessageView],
    cached: Iterable[MessageView],
) -> list[MessageView]:
    """Union by id; a durable message always wins over its cached copy."""
    merged: dict[int, MessageView] = {m.id: m for m in durable}
    for message in cached:
        merged.setdefault(message.id, message)
    return sorted(merged.values(), key=MessageView.sort_key)


class MessageReconciler:
    """Builds message views for a chat from the store and the cache."""

    def __init__(self, chats: ChatService, cache: FanoutCache):
        self.chats = chats
        self.cache = cache

    async def reconcile(
        self, chat_id: int, participants: tuple[int, int]
    ) -> list[MessageView]:
        """Full view: durable history plus both participants' cached lists."""
        durable = await self.chats.list_messages(chat_id)
        cached: list[MessageView] = []
        for user_id in participants:
            cached.extend(await self.recent(chat_id, user_id))
        return merge_messages(durable, cached)

    async def recent(self, chat_id: int, user_id: int) -> list[MessageView]:
        """One participant's cached entries, oldest first."""
        raw = await self.cache.read_recent(chat_recent_key(chat_id, user_id))
        messages = []
        for entry in raw:
            try:
                messages.append(MessageView.model_validate_json(entry))
            except PydanticValidationError as e:
                logger.warning(
                    "heartline.reconciler.bad_cache_entry",
                    chat_id=chat_id,
                    user_id=user_id,
                    error=str(e),
                )
        return merge_messages([], messages)
