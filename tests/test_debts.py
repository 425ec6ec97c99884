"""
Tests for debts and their wallet effects
"""

import pytest
from decimal import Decimal

from currency_exchange.storage import InMemoryStorage
from currency_exchange.audit import AuditTrail, AuditEventType
from currency_exchange.wallets import WalletManager
from currency_exchange.debts import DebtManager
from currency_exchange.errors import (
    InsufficientFundsError, InvalidStateError, NotFoundError,
    PermissionDeniedError, ValidationError
)


class TestDebtManager:
    """Test debt creation, settlement and deletion"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.wallets = WalletManager(self.storage, self.audit)
        self.debts = DebtManager(self.storage, self.audit, self.wallets)
        self.wallet = self.wallets.create_wallet("Treasury", usd="1000", is_treasury=True)

    def _usd(self):
        return self.wallets.get_balance(self.wallet.id, "USD")

    def test_receivable_lends_cash_out(self):
        debt = self.debts.create_debt("t1", "Khaled", self.wallet.id, "usd", "200", notes="Until Friday")

        assert debt.creditor_id == "t1"
        assert debt.debtor_id is None
        assert not debt.is_owed
        assert debt.currency_code == "USD"
        assert self._usd() == Decimal("800.00")

    def test_owed_borrows_cash_in(self):
        debt = self.debts.create_debt("t1", "Khaled", self.wallet.id, "USD", "150", is_owed=True)

        assert debt.is_owed
        assert self._usd() == Decimal("1150.00")

    def test_pay_receivable(self):
        debt = self.debts.create_debt("t1", "Khaled", self.wallet.id, "USD", "200")
        paid = self.debts.mark_paid(debt.id, "t1")

        assert paid.is_paid
        assert paid.paid_at is not None
        assert self._usd() == Decimal("1000.00")

    def test_pay_owed(self):
        debt = self.debts.create_debt("t1", "Khaled", self.wallet.id, "USD", "150", is_owed=True)
        self.debts.mark_paid(debt.id, "t1")

        assert self._usd() == Decimal("1000.00")

    def test_pay_twice(self):
        debt = self.debts.create_debt("t1", "Khaled", self.wallet.id, "USD", "10")
        self.debts.mark_paid(debt.id, "t1")
        with pytest.raises(InvalidStateError):
            self.debts.mark_paid(debt.id, "t1")

    def test_paying_owed_debt_needs_funds(self):
        debt = self.debts.create_debt("t1", "Khaled", self.wallet.id, "USD", "150", is_owed=True)
        self.wallets.debit(self.wallet.id, "USD", "1100")

        with pytest.raises(InsufficientFundsError):
            self.debts.mark_paid(debt.id, "t1")
        assert not self.debts.get_debt(debt.id).is_paid

    def test_receivable_needs_funds(self):
        with pytest.raises(InsufficientFundsError):
            self.debts.create_debt("t1", "Khaled", self.wallet.id, "USD", "1000.01")
        assert self.debts.list_debts("t1")["receivable"] == []

    def test_other_user_cannot_touch_debt(self):
        debt = self.debts.create_debt("t1", "Khaled", self.wallet.id, "USD", "10")
        with pytest.raises(PermissionDeniedError):
            self.debts.mark_paid(debt.id, "t2")
        with pytest.raises(PermissionDeniedError):
            self.debts.delete_debt(debt.id, "t2")

    def test_missing_debt(self):
        with pytest.raises(NotFoundError):
            self.debts.mark_paid("missing", "t1")

    def test_delete_unpaid_reverses_effect(self):
        debt = self.debts.create_debt("t1", "Khaled", self.wallet.id, "USD", "200")
        self.debts.delete_debt(debt.id, "t1")

        assert self.debts.get_debt(debt.id) is None
        assert self._usd() == Decimal("1000.00")

    def test_delete_paid_keeps_balance(self):
        debt = self.debts.create_debt("t1", "Khaled", self.wallet.id, "USD", "200")
        self.debts.mark_paid(debt.id, "t1")
        self.debts.delete_debt(debt.id, "t1")

        assert self._usd() == Decimal("1000.00")
        assert self.audit.get_events_by_type(AuditEventType.DEBT_DELETED)[0].metadata == {"was_paid": True}

    @pytest.mark.parametrize("person,wallet,currency,amount", [
        ("", "W", "USD", "1"),
        ("Khaled", "", "USD", "1"),
        ("Khaled", "W", "", "1"),
        ("Khaled", "W", "USD", "0"),
        ("Khaled", "W", "USD", "-3"),
    ])
    def test_create_validation(self, person, wallet, currency, amount):
        wallet_id = self.wallet.id if wallet else ""
        with pytest.raises(ValidationError):
            self.debts.create_debt("t1", person, wallet_id, currency, amount)

    def test_unknown_wallet(self):
        with pytest.raises(NotFoundError):
            self.debts.create_debt("t1", "Khaled", "missing", "USD", "1")

    def test_list_and_summary(self):
        self.debts.create_debt("t1", "A", self.wallet.id, "USD", "100")
        paid = self.debts.create_debt("t1", "B", self.wallet.id, "USD", "50")
        self.debts.mark_paid(paid.id, "t1")
        self.debts.create_debt("t1", "C", self.wallet.id, "LYD", "70", is_owed=True)
        self.debts.create_debt("t2", "D", self.wallet.id, "USD", "5")

        listed = self.debts.list_debts("t1")
        assert len(listed["receivable"]) == 2
        assert len(listed["owed"]) == 1

        summary = self.debts.get_debt_summary("t1")
        assert summary["total_receivable"] == {"USD": Decimal("100.00")}
        assert summary["total_owed"] == {"LYD": Decimal("70.00")}
        assert summary["count_receivable"] == 1
        assert summary["count_owed"] == 1

    def test_summary_adds_debts_of_one_currency(self):
        self.debts.create_debt("t1", "A", self.wallet.id, "USD", "100.25")
        self.debts.create_debt("t1", "B", self.wallet.id, "usd", "49.75")

        summary = self.debts.get_debt_summary("t1")
        assert summary["total_receivable"] == {"USD": Decimal("150.00")}
        assert summary["total_owed"] == {}
