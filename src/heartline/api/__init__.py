"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied at the include_router level using FastAPI's
dependencies parameter. This protects all routes in each router
without modifying individual handlers. Handlers that need the caller's id
ask for get_current_user again; FastAPI resolves it once per request.
Health is open (no auth required).
"""

from fastapi import APIRouter, Depends

from heartline.api.chats import router as chats_router
from heartline.api.health import router as health_router
from heartline.api.notifications import router as notifications_router
from heartline.auth.dependencies import get_current_user

# All protected routers require authentication
_auth = [Depends(get_current_user)]

api_router = APIRouter(prefix="/api/v1")

# Open routes: no auth required
api_router.include_router(health_router, tags=["health"])

# Protected routes: require a valid JWT
api_router.include_router(chats_router, tags=["chats", "messages"], dependencies=_auth)
api_router.include_router(notifications_router, tags=["notifications"], dependencies=_auth)
