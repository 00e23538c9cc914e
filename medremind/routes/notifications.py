import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from medremind.core.auth import get_current_user
from medremind.core.deps import get_clock
from medremind.core.errors import NotFoundError
from medremind.db.database import get_db
from medremind.db.models import User
from medremind.db.schema import NotificationRead, UnreadCount
from medremind.notifications.dispatcher import NotificationDispatcher

router = APIRouter()


def get_dispatcher(db: AsyncSession = Depends(get_db), clock=Depends(get_clock)) -> NotificationDispatcher:
    return NotificationDispatcher(db, clock)


@router.get("/", response_model=List[NotificationRead])
async def list_notifications(
    unread_only: bool = False,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user),
):
    """Newest first."""
    return await dispatcher.list(current_user.id, unread_only=unread_only)


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user),
):
    return UnreadCount(unread=await dispatcher.unread_count(current_user.id))


@router.post("/read-all")
async def mark_all_read(
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user),
):
    updated = await dispatcher.mark_all_read(current_user.id)
    return {"success": True, "updated": updated}


@router.post("/{notification_id}/read", response_model=NotificationRead)
async def mark_read(
    notification_id: uuid.UUID,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user),
):
    try:
        return await dispatcher.mark_read(current_user.id, notification_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: uuid.UUID,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user),
):
    try:
        await dispatcher.delete(current_user.id, notification_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.delete("/")
async def clear_notifications(
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_user),
):
    deleted = await dispatcher.clear(current_user.id)
    return {
        "success": True,
        "message": f"Deleted {deleted} notifications",
        "deleted_count": deleted,
    }
