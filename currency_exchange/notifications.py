"""
Notification Module

In-app notifications for shop staff. Some notifications ask the recipient
to approve or reject something (a custody hand-off, for example); the owning
module registers an action handler for that notification type.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .errors import InvalidStateError, NotFoundError, ValidationError
from .logging_config import get_logger


logger = get_logger("exchange.notifications")


class NotificationType(Enum):
    """Types of notifications"""
    CUSTODY_REQUEST = "custody_request"
    CUSTODY_APPROVED = "custody_approved"
    CUSTODY_REJECTED = "custody_rejected"
    CUSTODY_RETURNED = "custody_returned"
    TRANSACTION_VALIDATION = "transaction_validation"
    GENERAL = "general"


class NotificationAction(Enum):
    APPROVE = "approve"
    REJECT = "reject"


# handler(reference_id, action, acting_user_id, reason) -> result
ActionHandler = Callable[[Optional[str], NotificationAction, str, Optional[str]], Any]


@dataclass
class Notification(StorageRecord):
    user_id: str
    title: str
    message: str
    type: NotificationType
    reference_id: Optional[str] = None
    requires_action: bool = False
    is_read: bool = False
    action_taken: bool = False


class NotificationManager:
    """
    Stores notifications and dispatches approve/reject actions
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.notifications_table = "notifications"
        self._action_handlers: Dict[NotificationType, ActionHandler] = {}

    def register_action_handler(self, notification_type: NotificationType, handler: ActionHandler) -> None:
        self._action_handlers[notification_type] = handler

    def _save(self, notification: Notification) -> None:
        self.storage.save(self.notifications_table, notification.id, notification.to_dict())

    def create_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        notification_type: Union[str, NotificationType],
        reference_id: Optional[str] = None,
        requires_action: bool = False
    ) -> Notification:
        """
        Create a notification for a user

        Raises:
            ValidationError: If user, title, message or type is missing or the type is unknown
        """
        if not user_id:
            raise ValidationError("User ID is required")
        if not title:
            raise ValidationError("Title is required")
        if not message:
            raise ValidationError("Message is required")
        if not notification_type:
            raise ValidationError("Type is required")
        try:
            notification_type = NotificationType(notification_type)
        except ValueError:
            raise ValidationError(f"Unknown notification type: {notification_type}")

        now = datetime.now(timezone.utc)
        notification = Notification(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            title=title,
            message=message,
            type=notification_type,
            reference_id=reference_id or None,
            requires_action=requires_action
        )
        self._save(notification)
        logger.debug("Notification %s created for user %s", notification.id, user_id)
        return notification

    def get_notification(self, notification_id: str) -> Optional[Notification]:
        data = self.storage.load(self.notifications_table, notification_id)
        return Notification.from_dict(data) if data else None

    def _owned(self, notification_id: str, user_id: str) -> Notification:
        notification = self.get_notification(notification_id)
        # Other users' notifications are reported as missing
        if not notification or notification.user_id != user_id:
            raise NotFoundError(f"Notification {notification_id} not found")
        return notification

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[Notification]:
        """Newest first"""
        notifications = [
            Notification.from_dict(d)
            for d in self.storage.find(self.notifications_table, {"user_id": user_id})
        ]
        if unread_only:
            notifications = [n for n in notifications if not n.is_read]
        notifications.sort(key=lambda n: n.created_at, reverse=True)
        return notifications

    def unread_count(self, user_id: str) -> int:
        return len(self.list_for_user(user_id, unread_only=True))

    def mark_as_read(self, notification_id: str, user_id: str) -> Notification:
        notification = self._owned(notification_id, user_id)
        notification.is_read = True
        notification.updated_at = datetime.now(timezone.utc)
        self._save(notification)
        return notification

    def mark_all_as_read(self, user_id: str) -> int:
        """Returns how many notifications changed"""
        changed = 0
        for notification in self.list_for_user(user_id, unread_only=True):
            notification.is_read = True
            notification.updated_at = datetime.now(timezone.utc)
            self._save(notification)
            changed += 1
        return changed

    def take_action(self, notification_id: str, user_id: str,
                    action: Union[str, NotificationAction], reason: Optional[str] = None) -> Any:
        """
        Approve or reject the subject of an actionable notification

        The handler's work and the notification update happen in one
        storage transaction.

        Raises:
            NotFoundError: Unknown notification or not owned by the user
            InvalidStateError: Notification needs no action or was already actioned
            ValidationError: Unknown action or notification type without a handler
        """
        notification = self._owned(notification_id, user_id)
        if not notification.requires_action:
            raise InvalidStateError("This notification does not require action")
        if notification.action_taken:
            raise InvalidStateError("Action has already been taken on this notification")
        try:
            action = NotificationAction(action)
        except ValueError:
            raise ValidationError(f"Invalid action {action} for {notification.type.value}")

        handler = self._action_handlers.get(notification.type)
        if handler is None:
            raise ValidationError(f"Unsupported notification type: {notification.type.value}")

        with self.storage.atomic():
            result = handler(notification.reference_id, action, user_id, reason)
            notification.action_taken = True
            notification.is_read = True
            notification.updated_at = datetime.now(timezone.utc)
            self._save(notification)
        return result
