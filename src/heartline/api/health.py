"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running
and dependencies (Postgres, Redis) are reachable.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from heartline import __version__
from heartline.db.engine import Database, get_database
from heartline.realtime.cache import FanoutCache, get_cache

router = APIRouter()


@router.get("/health")
async def health_check(
    database: Database = Depends(get_database),
    cache: FanoutCache = Depends(get_cache),
):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Check Postgres
    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["postgres"] = "ok"
    except (SQLAlchemyError, OSError) as e:
        checks["postgres"] = f"error: {e}"

    # Check Redis
    checks["redis"] = "ok" if await cache.ping() else "error: unreachable"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {"status": status, **checks}
