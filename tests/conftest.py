"""Test fixtures — throwaway SQLite store, fake Redis, in-memory sockets.

Learn: Testing pattern for async SQLAlchemy + Redis + FastAPI:

1. Each test gets its own SQLite file (sqlite+aiosqlite) with the schema
   created from the models, so the services run their real queries.
2. Each test gets its own fakeredis server, so lists, TTLs and pub/sub
   behave like Redis without a running instance.
3. Sessions are driven through FakeTransport, an in-memory stand-in for a
   Starlette WebSocket; REST routes go through httpx's ASGITransport with
   the app's dependencies overridden.
"""

import asyncio
import json
from typing import Callable, Optional

import fakeredis
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from heartline.auth.dependencies import AuthenticatedRequest, get_current_user
from heartline.db.engine import Database, get_database
from heartline.main import app
from heartline.realtime.cache import FanoutCache, get_cache
from heartline.services.chat_service import ChatService, get_chat_service
from heartline.services.notification_service import (
    NotificationService,
    get_notification_service,
)

ALICE = 1
BOB = 2
CAROL = 3

_DISCONNECT = object()


class FakeTransport:
    """In-memory WebSocket: tests push client frames and read what was sent."""

    def __init__(self):
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.close_code: Optional[int] = None

    # ─── Transport protocol ──────────────────────────────

    async def receive(self) -> dict:
        item = await self.inbox.get()
        if item is _DISCONNECT:
            return {"type": "websocket.disconnect", "code": 1000}
        if isinstance(item, bytes):
            return {"type": "websocket.receive", "bytes": item}
        return {"type": "websocket.receive", "text": item}

    async def send_text(self, data: str) -> None:
        if self.close_code is not None:
            raise RuntimeError("Cannot send once the socket is closed")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.close_code = code

    # ─── Test helpers ────────────────────────────────────

    def push(self, frame) -> None:
        self.inbox.put_nowait(frame if isinstance(frame, (str, bytes)) else json.dumps(frame))

    def disconnect(self) -> None:
        self.inbox.put_nowait(_DISCONNECT)

    async def wait_for(self, predicate: Callable[[dict], bool], timeout: float = 3.0) -> dict:
        """First sent frame matching ``predicate``, waiting for it if needed."""

        async def poll():
            while True:
                for frame in self.sent:
                    if predicate(frame):
                        return frame
                await asyncio.sleep(0.01)

        return await asyncio.wait_for(poll(), timeout)

    async def wait_for_type(self, frame_type: str, timeout: float = 3.0) -> dict:
        return await self.wait_for(lambda f: f.get("type") == frame_type, timeout)

    async def wait_for_error(self, message: str, timeout: float = 3.0) -> dict:
        return await self.wait_for(lambda f: f.get("error") == message, timeout)

    def frames(self, frame_type: str) -> list[dict]:
        return [f for f in self.sent if f.get("type") == frame_type]


@pytest_asyncio.fixture()
async def database(tmp_path):
    """Fresh SQLite store per test, schema created from the models."""
    db = Database.from_url(f"sqlite+aiosqlite:///{tmp_path / 'heartline.db'}")
    await db.create_schema()
    try:
        yield db
    finally:
        await db.dispose()


@pytest_asyncio.fixture()
async def redis():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    try:
        yield client
    finally:
        await client.aclose()


@pytest_asyncio.fixture()
async def cache(redis):
    return FanoutCache(redis, subscribe_attempts=2, subscribe_base_delay=0.01)


@pytest_asyncio.fixture()
async def chats(database):
    return ChatService(database.session_factory)


@pytest_asyncio.fixture()
async def notifications(database, cache):
    return NotificationService(database.session_factory, cache, max_len=100, ttl=108000)


@pytest_asyncio.fixture()
async def chat(chats):
    """A chat between ALICE and BOB."""
    return await chats.create_chat(ALICE, BOB)


def _override_services(database, cache, chats, notifications):
    app.dependency_overrides[get_database] = lambda: database
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_chat_service] = lambda: chats
    app.dependency_overrides[get_notification_service] = lambda: notifications


@pytest_asyncio.fixture()
async def client(database, cache, chats, notifications):
    """HTTP client with services overridden and the caller fixed to ALICE.

    Learn: We override get_current_user to return a fixed identity so all
    protected routes work without minting real JWT tokens.
    """
    _override_services(database, cache, chats, notifications)
    app.dependency_overrides[get_current_user] = lambda: AuthenticatedRequest(user_id=ALICE)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def unauthenticated_client(database, cache, chats, notifications):
    """HTTP client WITHOUT the auth override — for testing real JWT flows."""
    _override_services(database, cache, chats, notifications)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
