"""Notification API routes."""

from fastapi import APIRouter, Depends, HTTPException

from heartline.auth.dependencies import AuthenticatedRequest, get_current_user
from heartline.errors import DependencyError
from heartline.schemas.notification import NotificationView
from heartline.services.notification_service import (
    NotificationService,
    get_notification_service,
)

router = APIRouter()


@router.get("/notifications", response_model=list[NotificationView])
async def list_notifications(
    identity: AuthenticatedRequest = Depends(get_current_user),
    svc: NotificationService = Depends(get_notification_service),
):
    """The caller's notifications, newest first."""
    try:
        return await svc.get_notifications(identity.user_id)
    except DependencyError as e:
        raise HTTPException(status_code=503, detail=e.message)
