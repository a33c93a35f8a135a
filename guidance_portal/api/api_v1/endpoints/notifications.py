from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from typing import List, Dict
from guidance_portal.utils.sse import event_source
from guidance_portal.core.auth import get_current_user
from guidance_portal.schemas.notification import NotificationResponse
from guidance_portal.schemas.user import Account
from guidance_portal.services.event_stream import notification_events
from guidance_portal.services.notification_service import (
    get_notifications, mark_notification_read, mark_all_notifications_read,
    get_unread_notification_count, acknowledge_notification
)

router = APIRouter()

@router.get("/", response_model=List[NotificationResponse])
async def get_user_notifications(
    unread_only: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: Account = Depends(get_current_user)
):
    """
    Get notifications for the current user
    """
    return await get_notifications(current_user.uid, unread_only=unread_only, skip=skip, limit=limit)

@router.get("/count", response_model=Dict[str, int])
async def get_notification_count(current_user: Account = Depends(get_current_user)):
    """
    Get unread notification count for the current user
    """
    count = await get_unread_notification_count(current_user.uid)
    return {"count": count}

@router.get("/stream")
async def stream_notifications(current_user: Account = Depends(get_current_user)):
    """
    Live notifications addressed to the current user
    """
    uid = current_user.uid
    subscription = notification_events.subscribe(lambda event: event.userId == uid)
    return StreamingResponse(event_source(subscription), media_type="text/event-stream")

@router.put("/read-all", response_model=Dict[str, int])
async def mark_all_as_read(current_user: Account = Depends(get_current_user)):
    """
    Mark all notifications as read
    """
    count = await mark_all_notifications_read(current_user.uid)
    return {"count": count}

@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_as_read(
    notification_id: str,
    current_user: Account = Depends(get_current_user)
):
    """
    Mark a notification as read
    """
    return await mark_notification_read(notification_id, current_user.uid)

@router.put("/{notification_id}/acknowledge", response_model=NotificationResponse)
async def acknowledge(
    notification_id: str,
    current_user: Account = Depends(get_current_user)
):
    """
    Acknowledge a notification that requires it
    """
    return await acknowledge_notification(notification_id, current_user.uid)
