"""Streaming session scaffold shared by the chat and notification sockets.

Learn: A session is one client connection. It walks through

    CONNECTING → AUTHORIZED → STREAMING → CLOSED

and, while STREAMING, runs exactly two tasks:
1. inbound  — reads client frames and dispatches commands
2. outbound — waits for pub/sub wake-ups and pushes fresh data

When either finishes (usually the client going away) the other is
cancelled, every in-flight command task is cancelled, the subscription is
released and the socket is closed.

Commands that touch the store run as tracked sub-tasks so a slow write
never blocks reading the next frame. All writes to the socket go through
one lock, so frames from different tasks never interleave.

Store writes a command has already committed to go through protect():
cancelling the command only drops its ack, and teardown waits up to
``drain_timeout`` for those writes before closing the socket.
"""

import asyncio
import enum
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from starlette.websockets import WebSocketDisconnect

from heartline.auth.dependencies import AuthenticatedRequest
from heartline.errors import (
    AuthorizationError,
    DependencyError,
    HeartlineError,
    NotFoundError,
    TransportError,
)
from heartline.realtime.cache import FanoutCache, Subscription
from heartline.schemas.frames import ClientFrame

logger = structlog.get_logger()

T = TypeVar("T")

# Close codes
CLOSE_NORMAL = 1000
CLOSE_INTERNAL_ERROR = 1011
CLOSE_UNAUTHENTICATED = 4001
CLOSE_FORBIDDEN = 4403
CLOSE_NOT_FOUND = 4404


class SessionState(str, enum.Enum):
    CONNECTING = "connecting"
    AUTHORIZED = "authorized"
    STREAMING = "streaming"
    CLOSED = "closed"


class Transport(Protocol):
    """What a session needs from a socket. Starlette's WebSocket fits.

    ``receive`` returns raw ASGI messages: ``websocket.receive`` with a
    ``text`` or ``bytes`` key, or ``websocket.disconnect``.
    """

    async def receive(self) -> dict[str, Any]: ...

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


@dataclass
class Command:
    """One client command: its payload model, handler and failure text.

    ``background`` commands run as tracked sub-tasks; the others are awaited
    before the next frame is read.
    """

    payload: type[BaseModel]
    handler: Callable[[Any], Awaitable[None]]
    failure: str
    background: bool = True


class ProtocolSession:
    """Base class. Subclasses fill in the hooks below."""

    kind = "session"

    def __init__(
        self,
        transport: Transport,
        identity: AuthenticatedRequest,
        cache: FanoutCache,
        *,
        drain_timeout: float = 5.0,
    ):
        self.transport = transport
        self.identity = identity
        self.cache = cache
        self.state = SessionState.CONNECTING
        self.close_code: Optional[int] = None
        self._send_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._writes: set[asyncio.Task] = set()
        self.drain_timeout = drain_timeout
        self._subscription: Optional[Subscription] = None

    # ─── Hooks ───────────────────────────────────────────

    async def authorize(self) -> None:
        """Raise AuthorizationError or NotFoundError to refuse the client."""

    async def snapshot(self) -> None:
        """Send the initial state frame."""
        raise NotImplementedError

    def channel(self) -> str:
        raise NotImplementedError

    async def on_wake_up(self) -> None:
        """Called for every marker received on :meth:`channel`."""
        raise NotImplementedError

    def commands(self) -> dict[str, Command]:
        raise NotImplementedError

    # ─── Lifecycle ───────────────────────────────────────

    async def run(self) -> None:
        """Drive the session until the client leaves, then close the socket."""
        code = CLOSE_NORMAL
        try:
            try:
                await self.authorize()
            except AuthorizationError as e:
                await self._refuse(e, CLOSE_FORBIDDEN)
                return
            except NotFoundError as e:
                await self._refuse(e, CLOSE_NOT_FOUND)
                return
            self.state = SessionState.AUTHORIZED

            await self.snapshot()
            subscription = await self.cache.subscribe(self.channel())
            self._subscription = subscription
            self.state = SessionState.STREAMING
            logger.info(f"heartline.{self.kind}.streaming")

            code = await self._stream(subscription)
        except TransportError as e:
            logger.info(f"heartline.{self.kind}.disconnected", reason=e.message)
        except DependencyError as e:
            logger.error(f"heartline.{self.kind}.setup_failed", error=e.message)
            code = CLOSE_INTERNAL_ERROR
            await self._send_final_error(e.message)
        finally:
            await self._teardown(code)

    async def _stream(self, subscription: Subscription) -> int:
        inbound = asyncio.create_task(self._inbound())
        outbound = asyncio.create_task(self._outbound(subscription))

        tasks = {inbound, outbound}
        try:
            # Wait for either to finish (usually client disconnect)
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        code = CLOSE_NORMAL
        for task in done:
            exc = task.exception()
            if exc is None or isinstance(exc, TransportError):
                logger.info(f"heartline.{self.kind}.disconnected")
            elif isinstance(exc, DependencyError):
                logger.error(f"heartline.{self.kind}.updates_lost", error=exc.message)
                code = CLOSE_INTERNAL_ERROR
            else:
                logger.error(
                    f"heartline.{self.kind}.loop_crashed",
                    error=str(exc),
                    exc_info=exc,
                )
                code = CLOSE_INTERNAL_ERROR
        return code

    async def _teardown(self, code: int) -> None:
        self.state = SessionState.CLOSED
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._drain_writes()
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None
        await self._close_transport(code)

    async def _drain_writes(self) -> None:
        """Give protected writes up to ``drain_timeout`` to finish."""
        if not self._writes:
            return
        _, pending = await asyncio.wait(set(self._writes), timeout=self.drain_timeout)
        if pending:
            logger.warning(f"heartline.{self.kind}.writes_abandoned", count=len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def _refuse(self, error: HeartlineError, code: int) -> None:
        logger.info(f"heartline.{self.kind}.refused", reason=error.message, code=code)
        self.state = SessionState.CLOSED
        self.close_code = code
        await self.send_error(error.message)

    async def _send_final_error(self, message: str) -> None:
        try:
            await self.send_error(message)
        except TransportError as e:
            logger.debug(f"heartline.{self.kind}.final_error_undelivered", reason=e.message)

    async def _close_transport(self, code: int) -> None:
        if self.close_code is not None and code == CLOSE_NORMAL:
            code = self.close_code
        self.close_code = code
        try:
            await self.transport.close(code=code)
        except (RuntimeError, WebSocketDisconnect) as e:
            # Already closed by the peer.
            logger.debug(f"heartline.{self.kind}.close_skipped", error=str(e))

    # ─── Loops ───────────────────────────────────────────

    async def _inbound(self) -> None:
        while True:
            text = await self.receive()
            if text is None:
                await self.send_error("Invalid message format")
                continue
            await self.dispatch(text)

    async def _outbound(self, subscription: Subscription) -> None:
        async for _marker in subscription:
            try:
                await self.on_wake_up()
            except DependencyError as e:
                # The next wake-up re-reads everything.
                logger.warning(f"heartline.{self.kind}.push_failed", error=e.message)

    # ─── Dispatch ────────────────────────────────────────

    async def dispatch(self, text: str) -> None:
        """Validate one client frame and run its command."""
        try:
            frame = ClientFrame.model_validate_json(text)
        except PydanticValidationError:
            await self.send_error("Invalid message format")
            return

        command = self.commands().get(frame.type)
        if command is None:
            await self.send_error("Unknown action type")
            return

        try:
            payload = command.payload.model_validate(frame.payload)
        except PydanticValidationError:
            await self.send_error(f"Invalid {frame.type} payload")
            return

        work = self.guarded(frame.type, command.failure, command.handler(payload))
        if command.background:
            self.spawn(work)
        else:
            await work

    async def guarded(self, name: str, failure: str, work: Awaitable[None]) -> None:
        """Run ``work`` and turn its errors into error frames.

        Domain errors are reported with their own message, everything else
        with the command's stable ``failure`` text. TransportError passes
        through: the connection is gone.
        """
        try:
            await work
        except TransportError:
            raise
        except DependencyError as e:
            logger.warning(f"heartline.{self.kind}.command_failed", command=name, error=e.message)
            await self.send_error(failure)
        except HeartlineError as e:
            await self.send_error(e.message)
        except Exception:
            logger.exception(f"heartline.{self.kind}.command_crashed", command=name)
            await self.send_error(failure)

    def spawn(self, work: Awaitable[None]) -> asyncio.Task:
        """Run ``work`` as a sub-task cancelled with the session."""
        task = asyncio.ensure_future(work)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # Only TransportError gets here; the inbound loop sees it too.
            logger.debug(f"heartline.{self.kind}.task_ended", error=str(exc))

    async def protect(self, work: Awaitable[T]) -> T:
        """Run ``work`` to completion even if the caller is cancelled.

        Cancelling the caller only stops it waiting; teardown drains the
        write before the socket is closed.
        """
        task = asyncio.ensure_future(work)
        self._writes.add(task)
        task.add_done_callback(self._write_done)
        return await asyncio.shield(task)

    def _write_done(self, task: asyncio.Task) -> None:
        self._writes.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and self.state == SessionState.CLOSED:
            # The command that started it is gone, so nobody reports this.
            logger.error(f"heartline.{self.kind}.write_failed", error=str(exc), exc_info=exc)

    # ─── Socket I/O ──────────────────────────────────────

    async def receive(self) -> Optional[str]:
        """Next text frame from the client, or None for a binary frame."""
        try:
            message = await self.transport.receive()
        except RuntimeError as e:
            raise TransportError(str(e)) from e
        if message["type"] == "websocket.disconnect":
            raise TransportError(f"Client disconnected ({message.get('code', CLOSE_NORMAL)})")
        return message.get("text")

    async def send(self, frame: dict) -> None:
        data = json.dumps(frame)
        async with self._send_lock:
            try:
                await self.transport.send_text(data)
            except WebSocketDisconnect as e:
                raise TransportError(f"Client disconnected ({e.code})") from e
            except RuntimeError as e:
                raise TransportError(str(e)) from e

    async def send_error(self, message: str) -> None:
        await self.send({"error": message})
