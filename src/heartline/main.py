"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (database, Redis).
Middleware, CORS, and routers all registered here.

The engine, the Redis client and the services built on them live on
``app.state`` for the life of the process. Routes and WebSocket handlers
reach them through dependencies, which tests override.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from heartline import __version__
from heartline.api import api_router
from heartline.config import settings
from heartline.db.engine import Database
from heartline.middleware.request_id import RequestIdMiddleware
from heartline.realtime.cache import FanoutCache, connect_redis
from heartline.realtime.websocket import router as ws_router
from heartline.services.chat_service import ChatService
from heartline.services.notification_service import NotificationService

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: FastAPI lifespan replaces on_event("startup") / on_event("shutdown").
    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    logger.info(
        "heartline.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    database = Database.from_url(settings.database_url, echo=settings.debug)
    if settings.create_schema:
        try:
            await database.create_schema()
        except (SQLAlchemyError, OSError) as e:
            logger.error("heartline.schema_failed", error=str(e))
            await database.dispose()
            raise

    cache = FanoutCache(
        connect_redis(settings.redis_url),
        subscribe_attempts=settings.subscribe_retry_attempts,
        subscribe_base_delay=settings.subscribe_retry_base_delay,
    )
    try:
        await cache.redis.ping()
        logger.info("heartline.redis_connected", url=settings.redis_url)
    except (RedisError, OSError) as e:
        # Streams fail per connection until Redis is back; REST still works.
        logger.warning("heartline.redis_unavailable", error=str(e))

    app.state.database = database
    app.state.cache = cache
    app.state.chats = ChatService(database.session_factory)
    app.state.notifications = NotificationService(
        database.session_factory,
        cache,
        max_len=settings.recent_cache_max_len,
        ttl=settings.notification_cache_ttl_seconds,
    )

    yield

    # Shutdown
    logger.info("heartline.shutdown")
    await cache.close()
    await database.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Heartline",
        description="Real-time chat and notification delivery for a dating app",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(RequestIdMiddleware)

    # Mount API routes
    app.include_router(api_router)

    # Mount WebSocket routes
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: heartline.main:app)
app = create_app()
