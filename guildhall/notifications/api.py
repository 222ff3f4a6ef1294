from typing import List

from fastapi import Depends

from ..errors import NotAuthorizedError, NotFoundError
from ..Progression.engine import utcnow
from ..settings import app, store
from ..User.deps import get_current_user
from ..User.models import Principal
from .models import NotificationResp


@app.get("/api/v1/notifications/", response_model=List[NotificationResp])
async def get_notifications(unread_only: bool = False, principal: Principal = Depends(get_current_user)):
    return store.list_notifications(principal.id, unread_only=unread_only)


@app.post("/api/v1/notifications/read-all")
async def read_all_notifications(principal: Principal = Depends(get_current_user)):
    count = store.mark_all_notifications_read(principal.id, utcnow())
    return {"success": True, "data": {"updated": count}}


@app.post("/api/v1/notifications/{notification_id}/read", response_model=NotificationResp)
async def read_notification(notification_id: str, principal: Principal = Depends(get_current_user)):
    notification = store.get_notification(notification_id)
    if notification is None:
        raise NotFoundError("Notification not found")
    if notification["user_id"] != principal.id:
        raise NotAuthorizedError("You do not have permission to modify this notification")
    if notification.get("read"):
        return notification
    return store.update_notification(notification_id, {"read": True, "read_at": utcnow()})
