"""
Notification endpoints
"""

from fastapi import APIRouter, Depends

from .auth import ExchangeSystem, get_exchange_system, http_error, require_roles
from .schemas import NotificationActionRequest, serialize
from ..errors import ExchangeError


router = APIRouter()

any_user = require_roles()


@router.get("")
async def list_notifications(
    unread_only: bool = False,
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """The user's notifications, newest first"""
    notifications = system.notification_manager.list_for_user(user_id, unread_only=unread_only)
    return {
        "notifications": serialize(notifications),
        "unread_count": system.notification_manager.unread_count(user_id)
    }


@router.post("/read-all")
async def mark_all_as_read(
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    changed = system.notification_manager.mark_all_as_read(user_id)
    return {"updated": changed}


@router.post("/{notification_id}/read")
async def mark_as_read(
    notification_id: str,
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        notification = system.notification_manager.mark_as_read(notification_id, user_id)
    except ExchangeError as e:
        raise http_error(e)
    return serialize(notification)


@router.post("/{notification_id}/action")
async def take_action(
    notification_id: str,
    request: NotificationActionRequest,
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Approve or reject the subject of an actionable notification"""
    try:
        result = system.notification_manager.take_action(
            notification_id, user_id, request.action, request.reason
        )
    except ExchangeError as e:
        raise http_error(e)
    return {"result": serialize(result), "message": f"Action {request.action} applied"}
