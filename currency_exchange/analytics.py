"""
Analytics Module

Currency-pair exchange-rate analysis over transaction history, and
per-wallet statistics for the dashboard.

Pair keys are "FROM/TO" where FROM is the transaction's currency and TO its
exchange currency, so a buy of EUR for LYD and a sell of EUR for LYD land on
the same pair.
"""

from decimal import Decimal
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence
from enum import Enum
import csv
import io
import json

from .currency import quantize_amount, quantize_rate
from .custody import CashCustody, CustodyManager
from .transactions import Transaction, TransactionManager, TransactionType
from .wallets import WalletManager, calculate_custody_totals_by_wallet


ZERO = Decimal("0")


class ExportFormat(Enum):
    """Output formats for pair tables"""
    DICT = "dict"
    CSV = "csv"
    JSON = "json"


def median(values: Sequence[Decimal]) -> Decimal:
    """Median; the mean of the middle two for an even count, 0 when empty"""
    if not values:
        return ZERO
    ordered = sorted(values)
    middle = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[middle - 1] + ordered[middle]) / 2
    return ordered[middle]


def _has_rate(transaction: Transaction) -> bool:
    return bool(transaction.currency_code and transaction.exchange_currency_code and transaction.exchange_rate)


def analyze_currency_pairs(transactions: Iterable[Transaction]) -> Dict[str, Dict[str, Any]]:
    """
    Group rated transactions by currency pair and compute rate statistics

    Transactions missing a currency, an exchange currency or a rate are
    ignored.
    """
    pairs: Dict[str, Dict[str, Any]] = {}

    for transaction in transactions:
        if not _has_rate(transaction):
            continue
        key = f"{transaction.currency_code}/{transaction.exchange_currency_code}"
        operation = transaction.type.value if transaction.type else "unknown"
        pair = pairs.get(key)
        if pair is None:
            pair = pairs[key] = {
                "rates": [],
                "amounts": [],
                "exchange_amounts": [],
                "transaction_count": 0,
                "from_currency": transaction.currency_code,
                "to_currency": transaction.exchange_currency_code,
                "operation_type": operation,
                "buy_count": 0,
                "sell_count": 0,
            }
        pair["rates"].append(transaction.exchange_rate)
        pair["amounts"].append(transaction.amount)
        pair["exchange_amounts"].append(transaction.total_amount or ZERO)
        pair["transaction_count"] += 1
        if transaction.type == TransactionType.BUY:
            pair["buy_count"] += 1
        elif transaction.type == TransactionType.SELL:
            pair["sell_count"] += 1

    for pair in pairs.values():
        total = sum(pair["amounts"], ZERO)
        pair["median_rate"] = quantize_rate(median(pair["rates"]))
        pair["min_rate"] = min(pair["rates"])
        pair["max_rate"] = max(pair["rates"])
        pair["total_amount"] = total
        pair["total_exchange_amount"] = sum(pair["exchange_amounts"], ZERO)
        pair["average_amount"] = quantize_amount(total / len(pair["amounts"]))
        pair["primary_operation_type"] = "buy" if pair["buy_count"] >= pair["sell_count"] else "sell"

    return pairs


def calculate_value_with_median_rate(amount: Decimal, median_rate: Decimal) -> Decimal:
    return quantize_amount(amount * median_rate)


TABLE_COLUMNS = (
    "pair", "from_currency", "to_currency", "median_rate", "min_rate", "max_rate",
    "transaction_count", "total_amount", "total_exchange_amount", "average_amount",
    "operation_type", "buy_count", "sell_count", "primary_operation_type",
)


def format_currency_pairs_for_table(pairs: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Flatten a pair analysis into one row per pair, without the raw lists"""
    rows = []
    for key, data in pairs.items():
        row = {"pair": key}
        row.update({column: data[column] for column in TABLE_COLUMNS[1:]})
        rows.append(row)
    return rows


def export_currency_pairs(pairs: Dict[str, Dict[str, Any]],
                          export_format: ExportFormat = ExportFormat.DICT) -> Any:
    """Pair table as rows, CSV text or JSON text"""
    rows = format_currency_pairs_for_table(pairs)
    if export_format == ExportFormat.DICT:
        return rows
    if export_format == ExportFormat.JSON:
        return json.dumps(rows, default=str, indent=2)

    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=list(TABLE_COLUMNS))
    writer.writeheader()
    for row in rows:
        writer.writerow({k: str(v) for k, v in row.items()})
    return output.getvalue()


def filter_wallet_transactions(transactions: Iterable[Transaction], wallet_id: str,
                               wallet_name: Optional[str]) -> List[Transaction]:
    """Rated transactions of a wallet, matched by id or by name in source/destination"""
    selected = []
    for transaction in transactions:
        if not _has_rate(transaction):
            continue
        if transaction.wallet_id == wallet_id or (
            wallet_name and wallet_name in (transaction.source, transaction.destination)
        ):
            selected.append(transaction)
    return selected


def _analysis(transactions: List[Transaction], **identity) -> Dict[str, Any]:
    result = dict(identity)
    result.update({
        "transaction_count": len(transactions),
        "currency_pairs": analyze_currency_pairs(transactions),
        "last_analyzed": datetime.now(timezone.utc),
    })
    return result


def wallet_stats(wallet: Dict[str, Any], transactions: Iterable[Transaction],
                 custody_records: Iterable[CashCustody],
                 custody_balances: Dict[str, Decimal], window: int = 30) -> Dict[str, Any]:
    """
    Dashboard statistics for one wallet

    Args:
        wallet: Wallet view
        transactions: Candidate transactions; only the wallet's own count
        custody_records: Custody records; only the wallet's own are kept
        custody_balances: Active custody totals per currency for the wallet
        window: How many of the newest transactions to keep

    Returns:
        The wallet view, its most recent transactions, min/max/median rate
        of its buys and sells (None when there are none), its custody
        records (newest first) and custody balances
    """
    own = [t for t in transactions if t.wallet_id == wallet["id"]]
    own.sort(key=lambda t: t.created_at, reverse=True)
    recent = own[:window]

    def rate_stats(kind: TransactionType) -> Optional[Dict[str, Decimal]]:
        rates = [t.exchange_rate for t in recent if t.type == kind and t.exchange_rate is not None]
        if not rates:
            return None
        return {"min": min(rates), "max": max(rates), "median": quantize_rate(median(rates))}

    records = [r for r in custody_records if r.wallet_id == wallet["id"]]
    records.sort(key=lambda r: r.created_at, reverse=True)

    view = dict(wallet)
    view["custody_balances"] = dict(custody_balances)
    return {
        "wallet": view,
        "transactions": recent,
        "buy": rate_stats(TransactionType.BUY),
        "sell": rate_stats(TransactionType.SELL),
        "custody_records": records,
        "custody_balances": dict(custody_balances),
    }


class AnalyticsService:
    """
    Runs the analyses against stored wallets, transactions and custody
    """

    def __init__(self, wallet_manager: WalletManager, transaction_manager: TransactionManager,
                 custody_manager: CustodyManager, recent_window: int = 30):
        self.wallet_manager = wallet_manager
        self.transaction_manager = transaction_manager
        self.custody_manager = custody_manager
        self.recent_window = recent_window

    def wallet_analysis(self, wallet_id: str) -> Dict[str, Any]:
        wallet = self.wallet_manager.require_wallet(wallet_id)
        transactions = filter_wallet_transactions(
            self.transaction_manager.list_all(), wallet.id, wallet.name
        )
        return _analysis(transactions, wallet_id=wallet_id)

    def custody_analysis(self, custody_id: str) -> Dict[str, Any]:
        """Transactions of the custody record's wallet, plus those referencing the record"""
        record = self.custody_manager.require_custody(custody_id)
        wallet = self.wallet_manager.get_wallet(record.wallet_id) if record.wallet_id else None
        transactions = []
        for transaction in self.transaction_manager.list_all():
            if not _has_rate(transaction):
                continue
            if transaction.reference_custody_id == custody_id:
                transactions.append(transaction)
            elif wallet and filter_wallet_transactions([transaction], wallet.id, wallet.name):
                transactions.append(transaction)
        return _analysis(transactions, custody_id=custody_id)

    def overall_analysis(self) -> Dict[str, Any]:
        transactions = [t for t in self.transaction_manager.list_all() if _has_rate(t)]
        return _analysis(transactions)

    def overall_custody_analysis(self) -> Dict[str, Any]:
        transactions = [
            t for t in self.transaction_manager.list_all()
            if t.reference_custody_id and _has_rate(t)
        ]
        return _analysis(transactions)

    def wallet_stats(self, wallet_id: str) -> Dict[str, Any]:
        wallet = self.wallet_manager.require_wallet(wallet_id)
        records = self.custody_manager.list_all()
        totals = calculate_custody_totals_by_wallet(records, [wallet.id])
        return wallet_stats(
            self.wallet_manager.wallet_view(wallet),
            self.transaction_manager.list_all(),
            records,
            totals.get(wallet.id, {}),
            window=self.recent_window
        )
