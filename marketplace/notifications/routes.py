from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from marketplace.common.utils import page_params, success_response
from marketplace.db.dependencies import get_session
from marketplace.notifications.constants import DEFAULT_NOTIFICATION_LIMIT, logger
from marketplace.notifications.repository import count_unread, list_notifications, mark_all_read, mark_read
from marketplace.user.dependencies import Principal, get_principal

notifications_router = APIRouter()


@notifications_router.get("")
async def get_notifications(unreadOnly: Optional[str] = None, limit: Optional[str] = None,
                            principal: Principal = Depends(get_principal),
                            session: AsyncSession = Depends(get_session)):

    _, size, _ = page_params(1, limit, DEFAULT_NOTIFICATION_LIMIT)
    unread_only = (unreadOnly or "").lower() == "true"

    notes = await list_notifications(session, principal.user_id, unread_only, size)
    unread = await count_unread(session, principal.user_id)
    return success_response({"notifications": notes, "unreadCount": unread})


@notifications_router.patch("")
async def update_notifications(payload: Dict[str, Any],
                               principal: Principal = Depends(get_principal),
                               session: AsyncSession = Depends(get_session)):

    ids = payload.get("notificationIds")
    if payload.get("markAllAsRead") is True:
        updated = await mark_all_read(session, principal.user_id)
    elif isinstance(ids, list) and ids:
        updated = await mark_read(session, principal.user_id, ids)
    else:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request")

    await session.commit()
    logger.info("notification.mark_read", extra={"user_id": principal.user_id, "updated": updated})
    return success_response({"message": "Notifications marked as read", "updated": updated})
