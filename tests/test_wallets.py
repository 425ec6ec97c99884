"""
Tests for wallets, per-currency balances and custody aggregation
"""

import pytest
from decimal import Decimal
from types import SimpleNamespace

from currency_exchange.storage import InMemoryStorage
from currency_exchange.audit import AuditTrail, AuditEventType
from currency_exchange.currency import CurrencyRegistry
from currency_exchange.wallets import (
    WalletManager, calculate_custody_totals_by_wallet, merge_wallet_with_custody,
    get_custody_summary, wallet_currency_id
)
from currency_exchange.errors import (
    DuplicateError, InsufficientFundsError, InvalidStateError, NotFoundError, ValidationError
)


def custody(wallet_id, code, amount, status="active"):
    return SimpleNamespace(wallet_id=wallet_id, currency_code=code,
                           amount=Decimal(amount), status=status)


class TestWalletManager:
    """Test wallet lifecycle and balance changes"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.registry = CurrencyRegistry(self.storage, self.audit)
        self.registry.seed_defaults()
        self.registry.create_currency_type("EUR", "Euro", "€")
        self.wallets = WalletManager(self.storage, self.audit, self.registry)

    def test_create_wallet(self):
        wallet = self.wallets.create_wallet("Main", usd="100", lyd="500.255",
                                            currencies={"EUR": "20"}, is_treasury=True)

        balances = self.wallets.get_balances(wallet.id)
        assert balances == {"USD": Decimal("100.00"), "LYD": Decimal("500.26"), "EUR": Decimal("20.00")}
        assert wallet.is_treasury
        assert self.audit.get_events_for_entity("wallet", wallet.id)[0].event_type == AuditEventType.WALLET_CREATED

    def test_opening_map_overrides_legacy_columns(self):
        wallet = self.wallets.create_wallet("Main", usd="10", currencies={"USD": "25"})
        assert wallet.usd == Decimal("25.00")
        assert self.wallets.get_balance(wallet.id, "usd") == Decimal("25.00")

    @pytest.mark.parametrize("kwargs", [
        {"name": ""},
        {"name": "W", "usd": "-1"},
        {"name": "W", "currencies": {"EUR": "-5"}},
        {"name": "W", "usd": "abc"},
    ])
    def test_create_validation(self, kwargs):
        with pytest.raises(ValidationError):
            self.wallets.create_wallet(**kwargs)

    def test_unknown_opening_currency(self):
        with pytest.raises(NotFoundError):
            self.wallets.create_wallet("W", currencies={"GBP": "5"})

    def test_legacy_column_used_without_ledger_row(self):
        wallet = self.wallets.create_wallet("Empty")
        assert self.storage.count("wallet_currencies") == 0

        self.wallets.credit(wallet.id, "USD", "40")

        assert self.wallets.require_wallet(wallet.id).usd == Decimal("40.00")
        assert self.wallets.get_balance(wallet.id, "USD") == Decimal("40.00")
        assert self.storage.count("wallet_currencies") == 0

    def test_ledger_row_is_authoritative(self):
        wallet = self.wallets.create_wallet("Main")
        self.wallets.add_currency(wallet.id, "USD", "70")
        self.wallets.debit(wallet.id, "USD", "20")

        assert self.wallets.get_balance(wallet.id, "USD") == Decimal("50.00")
        assert self.wallets.require_wallet(wallet.id).usd == Decimal("0")

    def test_adjust_records_audit(self):
        wallet = self.wallets.create_wallet("Main", lyd="100")
        new_balance = self.wallets.adjust_currency(wallet.id, "LYD", "-30", reason="test", user_id="u1")

        assert new_balance == Decimal("70.00")
        event = self.audit.get_events_by_type(AuditEventType.WALLET_BALANCE_CHANGED)[-1]
        assert event.metadata["previous_balance"] == "100.00"
        assert event.metadata["new_balance"] == "70.00"
        assert event.user_id == "u1"

    def test_oversized_amounts_are_rejected(self):
        wallet = self.wallets.create_wallet("Main", usd="10")
        with pytest.raises(ValidationError):
            self.wallets.adjust_currency(wallet.id, "USD", "1e27")
        with pytest.raises(ValidationError):
            self.wallets.create_wallet("Huge", lyd="1e20")
        assert self.wallets.get_balance(wallet.id, "USD") == Decimal("10.00")

    def test_insufficient_funds(self):
        wallet = self.wallets.create_wallet("Main", usd="10")
        with pytest.raises(InsufficientFundsError):
            self.wallets.debit(wallet.id, "USD", "10.01")
        assert self.wallets.get_balance(wallet.id, "USD") == Decimal("10.00")

    def test_debit_missing_currency(self):
        wallet = self.wallets.create_wallet("Main")
        with pytest.raises(InsufficientFundsError):
            self.wallets.debit(wallet.id, "EUR", "1")

    def test_credit_creates_row_for_new_currency(self):
        wallet = self.wallets.create_wallet("Main")
        self.wallets.credit(wallet.id, "EUR", "15")

        assert self.storage.exists("wallet_currencies", wallet_currency_id(wallet.id, "EUR"))
        assert self.wallets.has_currency(wallet.id, "EUR")

    def test_add_currency_duplicate(self):
        wallet = self.wallets.create_wallet("Main", currencies={"EUR": "1"})
        with pytest.raises(DuplicateError):
            self.wallets.add_currency(wallet.id, "eur")

    def test_set_currency_balance(self):
        wallet = self.wallets.create_wallet("Main", usd="10")

        assert self.wallets.set_currency_balance(wallet.id, "USD", "35") == Decimal("35.00")
        assert self.wallets.set_currency_balance(wallet.id, "EUR", "5") == Decimal("5.00")
        assert self.wallets.get_balances(wallet.id)["EUR"] == Decimal("5.00")
        with pytest.raises(ValidationError):
            self.wallets.set_currency_balance(wallet.id, "USD", "-1")

    def test_remove_currency(self):
        wallet = self.wallets.create_wallet("Main", currencies={"EUR": "3"})
        self.wallets.remove_currency(wallet.id, "EUR")

        assert "EUR" not in self.wallets.get_balances(wallet.id)
        with pytest.raises(NotFoundError):
            self.wallets.remove_currency(wallet.id, "EUR")

    def test_legacy_only_currency_cannot_be_removed(self):
        wallet = self.wallets.create_wallet("Main")
        with pytest.raises(InvalidStateError):
            self.wallets.remove_currency(wallet.id, "LYD")

    def test_update_and_delete(self):
        wallet = self.wallets.create_wallet("Main", currencies={"EUR": "3"})
        updated = self.wallets.update_wallet(wallet.id, name="Front Desk", is_treasury=True)

        assert updated.name == "Front Desk"
        assert self.wallets.get_wallet_by_name("Front Desk").id == wallet.id

        self.wallets.delete_wallet(wallet.id)
        assert self.wallets.get_wallet(wallet.id) is None
        assert self.storage.count("wallet_currencies") == 0

    def test_summary(self):
        self.wallets.create_wallet("A", usd="10", lyd="5")
        self.wallets.create_wallet("B", usd="2.5", currencies={"EUR": "1"})

        summary = self.wallets.get_wallets_summary()
        assert summary["count"] == 2
        assert summary["total_usd"] == Decimal("12.50")
        assert summary["total_lyd"] == Decimal("5.00")
        assert summary["currency_totals"]["EUR"] == Decimal("1.00")

    def test_list_wallets_merges_custody(self):
        treasury = self.wallets.create_wallet("Treasury", usd="100", is_treasury=True)
        self.wallets.create_wallet("Branch")

        views = self.wallets.list_wallets([custody(treasury.id, "USD", "40")])
        assert [v["name"] for v in views] == ["Branch", "Treasury"]
        assert views[1]["total_with_custody"]["USD"] == Decimal("140.00")
        assert "custody_totals" not in views[0]
        assert [v["name"] for v in self.wallets.list_non_treasury_wallets()] == ["Branch"]


class TestCustodyAggregation:
    """Test pure custody aggregation helpers"""

    def test_totals_skip_inactive_and_unknown(self):
        records = [
            custody("w1", "USD", "10"),
            custody("w1", "USD", "5"),
            custody("w1", "LYD", "7"),
            custody("w1", "USD", "99", status="pending"),
            custody("w2", "USD", "0"),
            custody("other", "USD", "3"),
            custody(None, "USD", "3"),
        ]

        totals = calculate_custody_totals_by_wallet(records, ["w1", "w2"])
        assert totals == {"w1": {"USD": Decimal("15"), "LYD": Decimal("7")}}

    def test_merge_without_custody_is_a_copy(self):
        view = {"id": "w1", "currencies": {"USD": Decimal("1")}}
        merged = merge_wallet_with_custody(view, {})

        assert merged == view
        merged["currencies"]["USD"] = Decimal("2")
        assert view["currencies"]["USD"] == Decimal("1")

    def test_merge_adds_new_currencies(self):
        view = {"id": "w1", "currencies": {"USD": Decimal("1")}}
        merged = merge_wallet_with_custody(view, {"w1": {"EUR": Decimal("4")}})

        assert merged["total_with_custody"] == {"USD": Decimal("1"), "EUR": Decimal("4")}

    def test_custody_summary(self):
        summary = get_custody_summary([
            custody("w1", "USD", "10"),
            custody(None, "USD", "5"),
            custody("w1", "USD", "1", status="returned"),
        ])

        assert summary["total_by_currency"] == {"USD": Decimal("15")}
        assert summary["active_count"] == 2
        assert summary["total_count"] == 3
