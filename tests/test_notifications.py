"""
Tests for notifications and actionable notification dispatch
"""

import pytest

from currency_exchange.storage import InMemoryStorage
from currency_exchange.notifications import (
    NotificationManager, NotificationType, NotificationAction
)
from currency_exchange.errors import InvalidStateError, NotFoundError, ValidationError


class TestNotificationManager:
    """Test notification storage and actions"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.notifications = NotificationManager(self.storage)
        self.calls = []

        def handler(reference_id, action, user_id, reason):
            self.calls.append((reference_id, action, user_id, reason))
            self.storage.save("handled", reference_id, {"id": reference_id})
            return action.value

        self.notifications.register_action_handler(NotificationType.CUSTODY_REQUEST, handler)

    def _actionable(self, user_id="u1"):
        return self.notifications.create_notification(
            user_id, "Custody request", "500 USD", NotificationType.CUSTODY_REQUEST,
            reference_id="c1", requires_action=True
        )

    def test_create_and_list(self):
        self.notifications.create_notification("u1", "Hello", "First", "general")
        self.notifications.create_notification("u1", "Hello", "Second", NotificationType.GENERAL)
        self.notifications.create_notification("u2", "Hello", "Other", "general")

        listed = self.notifications.list_for_user("u1")
        assert {n.message for n in listed} == {"First", "Second"}
        assert listed[0].created_at >= listed[1].created_at
        assert self.notifications.unread_count("u1") == 2

    @pytest.mark.parametrize("user_id,title,message,kind", [
        ("", "t", "m", "general"),
        ("u1", "", "m", "general"),
        ("u1", "t", "", "general"),
        ("u1", "t", "m", ""),
        ("u1", "t", "m", "party"),
    ])
    def test_create_validation(self, user_id, title, message, kind):
        with pytest.raises(ValidationError):
            self.notifications.create_notification(user_id, title, message, kind)

    def test_mark_as_read(self):
        note = self.notifications.create_notification("u1", "t", "m", "general")
        self.notifications.mark_as_read(note.id, "u1")

        assert self.notifications.unread_count("u1") == 0
        assert self.notifications.list_for_user("u1", unread_only=True) == []

    def test_other_users_notification_is_missing(self):
        note = self.notifications.create_notification("u1", "t", "m", "general")
        with pytest.raises(NotFoundError):
            self.notifications.mark_as_read(note.id, "u2")

    def test_mark_all_as_read(self):
        for _ in range(3):
            self.notifications.create_notification("u1", "t", "m", "general")
        assert self.notifications.mark_all_as_read("u1") == 3
        assert self.notifications.mark_all_as_read("u1") == 0

    def test_take_action_dispatches_to_handler(self):
        note = self._actionable()
        result = self.notifications.take_action(note.id, "u1", "approve")

        assert result == "approve"
        assert self.calls == [("c1", NotificationAction.APPROVE, "u1", None)]
        stored = self.notifications.get_notification(note.id)
        assert stored.action_taken and stored.is_read

    def test_action_only_once(self):
        note = self._actionable()
        self.notifications.take_action(note.id, "u1", "reject", reason="Wrong amount")
        with pytest.raises(InvalidStateError):
            self.notifications.take_action(note.id, "u1", "approve")

    def test_action_requires_actionable_notification(self):
        note = self.notifications.create_notification("u1", "t", "m", "general")
        with pytest.raises(InvalidStateError):
            self.notifications.take_action(note.id, "u1", "approve")

    def test_unknown_action(self):
        note = self._actionable()
        with pytest.raises(ValidationError):
            self.notifications.take_action(note.id, "u1", "maybe")

    def test_type_without_handler(self):
        note = self.notifications.create_notification(
            "u1", "t", "m", NotificationType.TRANSACTION_VALIDATION, requires_action=True
        )
        with pytest.raises(ValidationError):
            self.notifications.take_action(note.id, "u1", "approve")

    def test_handler_failure_rolls_back(self):
        def failing(reference_id, action, user_id, reason):
            self.storage.save("handled", "partial", {"id": "partial"})
            raise InvalidStateError("Custody is not pending")

        self.notifications.register_action_handler(NotificationType.CUSTODY_REQUEST, failing)
        note = self._actionable()

        with pytest.raises(InvalidStateError):
            self.notifications.take_action(note.id, "u1", "approve")
        assert not self.storage.exists("handled", "partial")
        assert not self.notifications.get_notification(note.id).action_taken
