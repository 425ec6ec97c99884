"""
Tests for currency-pair analysis, exports and wallet statistics
"""

import csv
import io
import json
import pytest
from decimal import Decimal
from datetime import datetime, timedelta, timezone

from currency_exchange.storage import InMemoryStorage
from currency_exchange.audit import AuditTrail
from currency_exchange.users import UserManager, Role
from currency_exchange.notifications import NotificationManager
from currency_exchange.wallets import WalletManager
from currency_exchange.custody import CustodyManager
from currency_exchange.transactions import Transaction, TransactionManager, TransactionType
from currency_exchange.analytics import (
    AnalyticsService, ExportFormat, TABLE_COLUMNS, analyze_currency_pairs,
    calculate_value_with_median_rate, export_currency_pairs, filter_wallet_transactions,
    format_currency_pairs_for_table, median
)


START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def tx(kind, code, amount, exchange_code, rate, minutes=0, wallet_id=None, source="", destination=""):
    created = START + timedelta(minutes=minutes)
    amount = Decimal(amount)
    rate = Decimal(rate) if rate is not None else None
    return Transaction(
        id=f"tx-{minutes}", created_at=created, updated_at=created,
        type=kind, currency_code=code, amount=amount,
        exchange_currency_code=exchange_code, exchange_rate=rate,
        total_amount=amount * rate if rate is not None else None,
        wallet_id=wallet_id, source=source, destination=destination
    )


class TestMedian:
    """Test median"""

    def test_odd_and_even(self):
        assert median([Decimal("3"), Decimal("1"), Decimal("2")]) == Decimal("2")
        assert median([Decimal("4"), Decimal("1"), Decimal("2"), Decimal("3")]) == Decimal("2.5")

    def test_empty(self):
        assert median([]) == Decimal("0")


class TestPairAnalysis:
    """Test grouping transactions by currency pair"""

    def setup_method(self):
        self.transactions = [
            tx(TransactionType.BUY, "USD", "100", "LYD", "5.0", 1),
            tx(TransactionType.BUY, "USD", "200", "LYD", "5.2", 2),
            tx(TransactionType.SELL, "USD", "50", "LYD", "5.5", 3),
            tx(TransactionType.SELL, "EUR", "10", "LYD", "6.0", 4),
            tx(TransactionType.WITHDRAWAL, "USD", "30", None, None, 5),
        ]

    def test_groups_by_pair(self):
        pairs = analyze_currency_pairs(self.transactions)

        assert set(pairs) == {"USD/LYD", "EUR/LYD"}
        usd = pairs["USD/LYD"]
        assert usd["transaction_count"] == 3
        assert usd["buy_count"] == 2
        assert usd["sell_count"] == 1
        assert usd["median_rate"] == Decimal("5.200000")
        assert usd["min_rate"] == Decimal("5.0")
        assert usd["max_rate"] == Decimal("5.5")
        assert usd["total_amount"] == Decimal("350")
        assert usd["average_amount"] == Decimal("116.67")
        assert usd["operation_type"] == "buy"
        assert usd["primary_operation_type"] == "buy"
        assert pairs["EUR/LYD"]["primary_operation_type"] == "sell"

    def test_unrated_transactions_ignored(self):
        pairs = analyze_currency_pairs(self.transactions[-1:])
        assert pairs == {}

    def test_value_with_median_rate(self):
        assert calculate_value_with_median_rate(Decimal("100"), Decimal("5.123")) == Decimal("512.30")

    def test_table_rows(self):
        rows = format_currency_pairs_for_table(analyze_currency_pairs(self.transactions))

        assert [row["pair"] for row in rows] == ["USD/LYD", "EUR/LYD"]
        assert tuple(rows[0]) == TABLE_COLUMNS
        assert "rates" not in rows[0]

    def test_export_csv(self):
        text = export_currency_pairs(analyze_currency_pairs(self.transactions), ExportFormat.CSV)
        rows = list(csv.DictReader(io.StringIO(text)))

        assert len(rows) == 2
        assert rows[0]["pair"] == "USD/LYD"
        assert rows[0]["median_rate"] == "5.200000"

    def test_export_json(self):
        text = export_currency_pairs(analyze_currency_pairs(self.transactions), ExportFormat.JSON)
        assert json.loads(text)[1]["pair"] == "EUR/LYD"

    def test_filter_wallet_transactions(self):
        transactions = [
            tx(TransactionType.BUY, "USD", "1", "LYD", "5", 1, wallet_id="w1"),
            tx(TransactionType.SELL, "USD", "1", "LYD", "5", 2, source="Front Desk"),
            tx(TransactionType.SELL, "USD", "1", "LYD", "5", 3, wallet_id="w2", source="Other"),
            tx(TransactionType.WITHDRAWAL, "USD", "1", None, None, 4, wallet_id="w1"),
        ]

        selected = filter_wallet_transactions(transactions, "w1", "Front Desk")
        assert [t.id for t in selected] == ["tx-1", "tx-2"]


class TestAnalyticsService:
    """Test analyses against stored data"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        audit = AuditTrail(self.storage)
        self.users = UserManager(self.storage, audit)
        self.wallets = WalletManager(self.storage, audit)
        self.custody = CustodyManager(self.storage, audit, self.wallets,
                                      self.users, NotificationManager(self.storage))
        self.transactions = TransactionManager(self.storage, audit, self.wallets, self.custody)
        self.analytics = AnalyticsService(self.wallets, self.transactions, self.custody)

        self.cashier = self.users.create_user("Cala", "cala@shop.ly", "Secret123!", Role.CASHIER)
        self.wallet = self.wallets.create_wallet("Front Desk", usd="1000", lyd="10000")
        self.other = self.wallets.create_wallet("Other", usd="1000", lyd="10000")

    def test_wallet_analysis(self):
        self.transactions.create_buy(self.wallet.id, "USD", "100", "LYD", exchange_rate="5")
        self.transactions.create_sell(self.wallet.id, "USD", "10", "LYD", "55")
        self.transactions.create_buy(self.other.id, "USD", "100", "LYD", exchange_rate="4.9")
        self.transactions.withdraw_currency(self.wallet.id, "USD", "5")

        analysis = self.analytics.wallet_analysis(self.wallet.id)
        assert analysis["wallet_id"] == self.wallet.id
        assert analysis["transaction_count"] == 2
        assert analysis["currency_pairs"]["USD/LYD"]["median_rate"] == Decimal("5.250000")

        overall = self.analytics.overall_analysis()
        assert overall["transaction_count"] == 3

    def test_custody_analysis(self):
        result = self.transactions.execute_sell(self.cashier.id, self.wallet.id, "USD", "100", "LYD",
                                                exchange_rate="5", destination="custody")
        self.transactions.create_buy(self.other.id, "USD", "1", "LYD", exchange_rate="5")

        analysis = self.analytics.custody_analysis(result["custody"].id)
        assert analysis["transaction_count"] == 1
        assert self.analytics.overall_custody_analysis()["transaction_count"] == 1

    def test_wallet_stats(self):
        self.transactions.create_buy(self.wallet.id, "USD", "10", "LYD", exchange_rate="5")
        self.transactions.create_buy(self.wallet.id, "USD", "10", "LYD", exchange_rate="5.4")
        self.transactions.create_buy(self.wallet.id, "USD", "10", "LYD", exchange_rate="5.1")
        self.transactions.execute_sell(self.cashier.id, self.wallet.id, "USD", "10", "LYD",
                                       exchange_rate="5.6")
        treasurer = self.users.create_user("Tara", "tara@shop.ly", "Secret123!", Role.TREASURER)
        given = self.custody.give_custody(treasurer.id, self.cashier.id, self.wallet.id, "LYD", "56")
        self.custody.approve_custody(given.id, self.cashier.id)

        stats = self.analytics.wallet_stats(self.wallet.id)
        assert stats["buy"] == {"min": Decimal("5"), "max": Decimal("5.4"), "median": Decimal("5.100000")}
        assert stats["sell"]["median"] == Decimal("5.600000")
        assert len(stats["transactions"]) == 4
        assert len(stats["custody_records"]) == 1
        assert stats["custody_balances"] == {"LYD": Decimal("56.00")}
        assert stats["wallet"]["custody_balances"] == {"LYD": Decimal("56.00")}

    def test_wallet_stats_without_transactions(self):
        stats = self.analytics.wallet_stats(self.other.id)
        assert stats["buy"] is None
        assert stats["sell"] is None
        assert stats["custody_balances"] == {}

    def test_wallet_stats_window(self):
        analytics = AnalyticsService(self.wallets, self.transactions, self.custody, recent_window=2)
        for rate in ("5", "5.2", "5.4"):
            self.transactions.create_buy(self.wallet.id, "USD", "10", "LYD", exchange_rate=rate)

        stats = analytics.wallet_stats(self.wallet.id)
        assert len(stats["transactions"]) == 2
        assert stats["buy"]["min"] == Decimal("5.2")
