"""Message store tests — ChatService against a real SQLite database.

Pattern: Build up data through the service (chat → messages), then check
what the store returns.
"""

import asyncio

import pytest

from conftest import ALICE, BOB, CAROL
from heartline.db.engine import Database
from heartline.db.models import MessageStatus
from heartline.errors import DependencyError, NotFoundError, ValidationError
from heartline.services.chat_service import ChatService


# ═══════════════════════════════════════════════════════════
# Chats
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_chat(chats):
    chat = await chats.create_chat(ALICE, BOB)
    assert chat.id > 0
    assert (chat.first_id, chat.second_id) == (ALICE, BOB)
    assert chat.last_message == ""
    assert chat.created_at.tzinfo is not None


@pytest.mark.asyncio
async def test_create_chat_returns_existing_pair_in_either_order(chats):
    first = await chats.create_chat(ALICE, BOB)
    again = await chats.create_chat(BOB, ALICE)
    assert again.id == first.id


@pytest.mark.asyncio
async def test_create_chat_with_yourself_rejected(chats):
    with pytest.raises(ValidationError):
        await chats.create_chat(ALICE, ALICE)


@pytest.mark.asyncio
async def test_get_participants(chats, chat):
    assert await chats.get_participants(chat.id) == (ALICE, BOB)


@pytest.mark.asyncio
async def test_get_participants_unknown_chat(chats):
    with pytest.raises(NotFoundError):
        await chats.get_participants(999)


@pytest.mark.asyncio
async def test_list_chats_shows_other_side_and_preview(chats, chat):
    other = await chats.create_chat(CAROL, ALICE)
    await chats.create_message(chat.id, BOB, "are you free friday?")

    rows = await chats.list_chats(ALICE)

    assert [r.chat_id for r in rows] == [other.id, chat.id]
    by_id = {r.chat_id: r for r in rows}
    assert by_id[chat.id].profile_id == BOB
    assert by_id[chat.id].last_message == "are you free friday?"
    assert by_id[chat.id].is_read is False
    assert by_id[other.id].profile_id == CAROL
    assert by_id[other.id].is_read is True


@pytest.mark.asyncio
async def test_list_chats_for_stranger_is_empty(chats, chat):
    assert await chats.list_chats(CAROL) == []


@pytest.mark.asyncio
async def test_delete_chat_removes_messages(chats, chat):
    for i in range(3):
        await chats.create_message(chat.id, ALICE, f"message {i}")

    deleted_id = await chats.delete_chat(BOB, ALICE)

    assert deleted_id == chat.id
    with pytest.raises(NotFoundError):
        await chats.list_messages(chat.id)
    assert await chats.list_chats(ALICE) == []


@pytest.mark.asyncio
async def test_delete_missing_chat(chats):
    with pytest.raises(NotFoundError):
        await chats.delete_chat(ALICE, BOB)


@pytest.mark.asyncio
async def test_delete_chat_with_yourself_rejected(chats):
    with pytest.raises(ValidationError):
        await chats.delete_chat(ALICE, ALICE)


# ═══════════════════════════════════════════════════════════
# Messages
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_message(chats, chat):
    message = await chats.create_message(chat.id, ALICE, "hi")

    assert message.chat_id == chat.id
    assert message.sender_id == ALICE
    assert message.content == "hi"
    assert message.status == MessageStatus.SENT

    bob_view = (await chats.list_chats(BOB))[0]
    alice_view = (await chats.list_chats(ALICE))[0]
    assert bob_view.is_read is False
    assert alice_view.is_read is True


@pytest.mark.asyncio
async def test_create_message_in_unknown_chat(chats):
    with pytest.raises(NotFoundError):
        await chats.create_message(999, ALICE, "hello?")


@pytest.mark.asyncio
async def test_list_messages_ordered_and_empty(chats, chat):
    assert await chats.list_messages(chat.id) == []

    ids = []
    for text in ("one", "two", "three"):
        ids.append((await chats.create_message(chat.id, ALICE, text)).id)

    messages = await chats.list_messages(chat.id)
    assert [m.id for m in messages] == ids
    assert [m.content for m in messages] == ["one", "two", "three"]


@pytest.mark.asyncio
async def test_delete_message_is_idempotent(chats, chat):
    message = await chats.create_message(chat.id, ALICE, "oops")

    assert await chats.delete_message(message.id, chat.id) is True
    assert await chats.delete_message(message.id, chat.id) is False
    assert await chats.list_messages(chat.id) == []


@pytest.mark.asyncio
async def test_delete_message_scoped_to_chat(chats, chat):
    other = await chats.create_chat(ALICE, CAROL)
    message = await chats.create_message(chat.id, ALICE, "keep me")

    assert await chats.delete_message(message.id, other.id) is False
    assert len(await chats.list_messages(chat.id)) == 1


@pytest.mark.asyncio
async def test_update_delivery_status_marks_other_side_read(chats, chat):
    await chats.create_message(chat.id, ALICE, "from alice")
    await chats.create_message(chat.id, BOB, "from bob")

    changed = await chats.update_delivery_status(chat.id, BOB)

    assert changed == 1
    statuses = {m.content: m.status for m in await chats.list_messages(chat.id)}
    assert statuses == {"from alice": MessageStatus.READ, "from bob": MessageStatus.SENT}
    assert (await chats.list_chats(BOB))[0].is_read is True


@pytest.mark.asyncio
async def test_mark_delivered_only_touches_sent_messages(chats, chat):
    await chats.create_message(chat.id, ALICE, "first")
    await chats.update_delivery_status(chat.id, BOB)
    await chats.create_message(chat.id, ALICE, "second")
    await chats.create_message(chat.id, BOB, "reply")

    assert await chats.mark_delivered(chat.id, BOB) == 1

    statuses = {m.content: m.status for m in await chats.list_messages(chat.id)}
    assert statuses == {
        "first": MessageStatus.READ,
        "second": MessageStatus.DELIVERED,
        "reply": MessageStatus.SENT,
    }


@pytest.mark.asyncio
async def test_concurrent_writes_use_separate_sessions(chats, chat):
    await asyncio.gather(
        *(chats.create_message(chat.id, ALICE, f"burst {i}") for i in range(5))
    )
    assert len(await chats.list_messages(chat.id)) == 5


@pytest.mark.asyncio
async def test_store_failure_becomes_dependency_error():
    broken = Database.from_url("sqlite+aiosqlite:////nonexistent/dir/heartline.db")
    svc = ChatService(broken.session_factory)
    try:
        with pytest.raises(DependencyError):
            await svc.list_chats(ALICE)
    finally:
        await broken.dispose()
