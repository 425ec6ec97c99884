"""
Tests for cash custody hand-offs and custody balances
"""

import pytest
from decimal import Decimal

from currency_exchange.storage import InMemoryStorage
from currency_exchange.audit import AuditTrail, AuditEventType
from currency_exchange.currency import CurrencyRegistry
from currency_exchange.users import UserManager, Role
from currency_exchange.notifications import NotificationManager, NotificationType
from currency_exchange.wallets import WalletManager
from currency_exchange.custody import CustodyManager, CustodyStatus, custody_balance_id
from currency_exchange.errors import (
    InsufficientFundsError, InvalidStateError, NotFoundError,
    PermissionDeniedError, ValidationError
)


PASSWORD = "Secret123!"


class TestCustodyLifecycle:
    """Test give, approve, reject and return"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        registry = CurrencyRegistry(self.storage, self.audit)
        registry.seed_defaults()
        self.users = UserManager(self.storage, self.audit)
        self.notifications = NotificationManager(self.storage)
        self.wallets = WalletManager(self.storage, self.audit, registry)
        self.custody = CustodyManager(self.storage, self.audit, self.wallets,
                                      self.users, self.notifications)

        self.treasurer = self.users.create_user("Tariq", "tariq@shop.ly", PASSWORD, Role.TREASURER)
        self.cashier = self.users.create_user("Cala", "cala@shop.ly", PASSWORD, Role.CASHIER)
        self.wallet = self.wallets.create_wallet("Treasury", usd="1000", is_treasury=True)

    def _give(self, amount="300"):
        return self.custody.give_custody(self.treasurer.id, self.cashier.id,
                                         self.wallet.id, "usd", amount, notes="Morning float")

    def _usd(self):
        return self.wallets.get_balance(self.wallet.id, "USD")

    def test_give_creates_pending_request(self):
        record = self._give()

        assert record.status == CustodyStatus.PENDING
        assert record.currency_code == "USD"
        assert self._usd() == Decimal("1000.00")
        note = self.notifications.list_for_user(self.cashier.id)[0]
        assert note.type == NotificationType.CUSTODY_REQUEST
        assert note.reference_id == record.id
        assert note.requires_action

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_give_requires_positive_amount(self, amount):
        with pytest.raises(ValidationError):
            self._give(amount)

    def test_give_requires_treasurer(self):
        with pytest.raises(PermissionDeniedError):
            self.custody.give_custody(self.cashier.id, self.cashier.id, self.wallet.id, "USD", "1")

    def test_give_requires_cashier_recipient(self):
        with pytest.raises(ValidationError):
            self.custody.give_custody(self.treasurer.id, self.treasurer.id, self.wallet.id, "USD", "1")

    def test_give_checks_wallet_balance(self):
        with pytest.raises(InsufficientFundsError):
            self._give("1000.01")

    def test_approve_moves_cash(self):
        record = self._give()
        approved = self.custody.approve_custody(record.id, self.cashier.id)

        assert approved.status == CustodyStatus.ACTIVE
        assert self._usd() == Decimal("700.00")
        assert self.custody.available_custody(self.cashier.id, "USD") == Decimal("300.00")
        balance = self.custody.list_custody_balances(self.cashier.id)[0]
        assert balance.amount == Decimal("300.00")
        treasurer_notes = self.notifications.list_for_user(self.treasurer.id)
        assert treasurer_notes[0].type == NotificationType.CUSTODY_APPROVED

    def test_only_recipient_can_approve(self):
        record = self._give()
        with pytest.raises(PermissionDeniedError):
            self.custody.approve_custody(record.id, self.treasurer.id)

    def test_cannot_approve_twice(self):
        record = self._give()
        self.custody.approve_custody(record.id, self.cashier.id)
        with pytest.raises(InvalidStateError):
            self.custody.approve_custody(record.id, self.cashier.id)

    def test_approval_fails_when_wallet_drained(self):
        record = self._give("600")
        self.wallets.debit(self.wallet.id, "USD", "500")

        with pytest.raises(InsufficientFundsError):
            self.custody.approve_custody(record.id, self.cashier.id)
        assert self.custody.require_custody(record.id).status == CustodyStatus.PENDING
        assert self.custody.list_custody_balances(self.cashier.id) == []

    def test_reject_keeps_reason(self):
        record = self._give()
        rejected = self.custody.reject_custody(record.id, self.cashier.id, "Wrong amount")

        assert rejected.status == CustodyStatus.REJECTED
        assert "Rejection reason: Wrong amount" in rejected.notes
        assert self._usd() == Decimal("1000.00")
        assert "Wrong amount" in self.notifications.list_for_user(self.treasurer.id)[0].message

    def test_take_action_through_notification(self):
        record = self._give()
        note = self.notifications.list_for_user(self.cashier.id)[0]

        result = self.notifications.take_action(note.id, self.cashier.id, "approve")

        assert result.id == record.id
        assert self.custody.require_custody(record.id).status == CustodyStatus.ACTIVE
        assert self.notifications.get_notification(note.id).action_taken

    def test_reject_through_notification(self):
        record = self._give()
        note = self.notifications.list_for_user(self.cashier.id)[0]
        self.notifications.take_action(note.id, self.cashier.id, "reject", reason="Not today")

        assert self.custody.require_custody(record.id).status == CustodyStatus.REJECTED

    def test_return_to_source_wallet(self):
        record = self._give()
        self.custody.approve_custody(record.id, self.cashier.id)
        returned = self.custody.return_custody(record.id, self.cashier.id, notes="End of shift")

        assert returned.status == CustodyStatus.RETURNED
        assert returned.is_returned
        assert returned.return_notes == "End of shift"
        assert self._usd() == Decimal("1000.00")
        assert self.custody.available_custody(self.cashier.id, "USD") == Decimal("0")
        treasurer_types = {n.type for n in self.notifications.list_for_user(self.treasurer.id)}
        assert NotificationType.CUSTODY_RETURNED in treasurer_types

    def test_return_to_other_wallet(self):
        other = self.wallets.create_wallet("Branch")
        record = self._give()
        self.custody.approve_custody(record.id, self.cashier.id)
        self.custody.return_custody(record.id, self.treasurer.id, wallet_id=other.id)

        assert self.wallets.get_balance(other.id, "USD") == Decimal("300.00")

    def test_return_requires_active(self):
        record = self._give()
        with pytest.raises(InvalidStateError):
            self.custody.return_custody(record.id, self.cashier.id)

    def test_return_requires_involved_user(self):
        outsider = self.users.create_user("Omar", "omar@shop.ly", PASSWORD, Role.CASHIER)
        record = self._give()
        self.custody.approve_custody(record.id, self.cashier.id)
        with pytest.raises(PermissionDeniedError):
            self.custody.return_custody(record.id, outsider.id)

    def test_update_status_routes(self):
        record = self._give()
        self.custody.update_custody_status(record.id, "approved", self.cashier.id)
        self.custody.update_custody_status(record.id, "returned", self.cashier.id)

        assert self.custody.require_custody(record.id).status == CustodyStatus.RETURNED
        with pytest.raises(ValidationError):
            self.custody.update_custody_status(record.id, "lost", self.cashier.id)

    def test_missing_record(self):
        with pytest.raises(NotFoundError):
            self.custody.approve_custody("missing", self.cashier.id)
        with pytest.raises(ValidationError):
            self.custody.require_custody("")

    def test_list_for_user(self):
        self._give("100")
        self._give("200")

        assert len(self.custody.list_for_user(self.treasurer.id)["given"]) == 2
        assert len(self.custody.list_for_user(self.cashier.id)["received"]) == 2
        assert self.custody.list_for_user(self.cashier.id)["given"] == []
        assert [u.id for u in self.custody.get_cashiers()] == [self.cashier.id]
        assert [u.id for u in self.custody.get_treasurers()] == [self.treasurer.id]

    def test_audit_events(self):
        record = self._give()
        self.custody.approve_custody(record.id, self.cashier.id)
        events = [e.event_type for e in self.audit.get_events_for_entity("cash_custody", record.id)]

        assert events == [AuditEventType.CUSTODY_REQUESTED, AuditEventType.CUSTODY_APPROVED]


class TestCashierCustody:
    """Test custody created and consumed by cashier transactions"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.users = UserManager(self.storage, self.audit)
        self.wallets = WalletManager(self.storage, self.audit)
        self.custody = CustodyManager(self.storage, self.audit, self.wallets,
                                      self.users, NotificationManager(self.storage))
        self.cashier = self.users.create_user("Cala", "cala@shop.ly", PASSWORD, Role.CASHIER)

    def test_create_active_custody(self):
        record = self.custody.create_active_custody(self.cashier.id, "eur", "50", notes="Buy")

        assert record.status == CustodyStatus.ACTIVE
        assert record.treasurer_id == self.cashier.id
        assert self.custody.available_custody(self.cashier.id, "EUR") == Decimal("50.00")

    def test_consume_oldest_first(self):
        first = self.custody.create_active_custody(self.cashier.id, "USD", "100")
        second = self.custody.create_active_custody(self.cashier.id, "USD", "80")

        consumed = self.custody.consume_custody(self.cashier.id, "USD", "130", client_name="Hadi")

        assert consumed == [
            {"custody_id": first.id, "amount": Decimal("100.00")},
            {"custody_id": second.id, "amount": Decimal("30.00")},
        ]
        used = self.custody.require_custody(first.id)
        assert used.status == CustodyStatus.RETURNED
        assert used.amount == Decimal("0")
        assert "Hadi" in used.return_notes
        partial = self.custody.require_custody(second.id)
        assert partial.status == CustodyStatus.ACTIVE
        assert partial.amount == Decimal("50.00")
        assert "Reduced by 30.00" in partial.notes
        balance = self.custody.list_custody_balances(self.cashier.id)[0]
        assert balance.amount == Decimal("50.00")

    def test_consume_insufficient(self):
        self.custody.create_active_custody(self.cashier.id, "USD", "10")
        with pytest.raises(InsufficientFundsError):
            self.custody.consume_custody(self.cashier.id, "USD", "10.01")
        assert self.custody.available_custody(self.cashier.id, "USD") == Decimal("10.00")

    def test_update_custody_balance(self):
        self.custody.create_active_custody(self.cashier.id, "USD", "10")
        balance_id = custody_balance_id(self.cashier.id, "USD")

        assert self.custody.update_custody_balance(balance_id, "5").amount == Decimal("15.00")
        assert self.custody.update_custody_balance(balance_id, "-15").amount == Decimal("0.00")
        with pytest.raises(InsufficientFundsError):
            self.custody.update_custody_balance(balance_id, "-1")
        with pytest.raises(NotFoundError):
            self.custody.update_custody_balance("nobody:USD", "1")

    def test_custody_options(self):
        self.custody.create_active_custody(self.cashier.id, "USD", "25")
        self.custody.create_active_custody(self.cashier.id, "LYD", "5")
        self.custody.consume_custody(self.cashier.id, "LYD", "5")

        options = self.custody.get_custody_options()
        assert len(options) == 1
        assert options[0]["label"] == "Cala_USD: 25.00"
        assert options[0]["value"] == f"custody:{self.cashier.id}:USD"
        assert len(self.custody.get_custody_options(exclude_empty=False)) == 2
        assert self.custody.get_custody_options("lyd", exclude_empty=False)[0]["balance"] == Decimal("0.00")

    def test_combined_options_include_wallets(self):
        self.custody.create_active_custody(self.cashier.id, "USD", "25")
        branch = self.wallets.create_wallet("Branch", usd="40")
        self.wallets.create_wallet("Vault", usd="999", is_treasury=True)
        self.wallets.create_wallet("Empty")

        options = self.custody.get_combined_options("USD")
        assert [o["type"] for o in options] == ["custody", "wallet"]
        assert options[1]["value"] == f"wallet:{branch.id}"
