"""
Wallet Management Module

Wallets hold balances in several currencies. USD and LYD historically live
in fixed ``usd``/``lyd`` columns on the wallet; every other currency (and any
USD/LYD added later through the ledger) lives in the ``wallet_currencies``
table, one row per wallet and currency.

Reconciliation rule: when a ledger row exists for a currency it is the
balance; otherwise USD and LYD fall back to the legacy column. Writes are
routed the same way, so a wallet never has two live balances for one
currency.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional
import uuid

from .currency import CurrencyRegistry, normalize_code, quantize_amount, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import (
    DuplicateError, InsufficientFundsError, InvalidStateError, NotFoundError, ValidationError
)
from .logging_config import get_logger


logger = get_logger("exchange.wallets")

LEGACY_COLUMNS = {"USD": "usd", "LYD": "lyd"}
ZERO = Decimal("0")


@dataclass
class Wallet(StorageRecord):
    """A wallet; usd/lyd are the legacy balance columns"""
    name: str
    usd: Decimal = ZERO
    lyd: Decimal = ZERO
    is_treasury: bool = False
    user_id: Optional[str] = None

    def legacy_balance(self, code: str) -> Decimal:
        return getattr(self, LEGACY_COLUMNS[code])

    def set_legacy_balance(self, code: str, amount: Decimal) -> None:
        setattr(self, LEGACY_COLUMNS[code], amount)


@dataclass
class WalletCurrency(StorageRecord):
    """Ledger row: balance of one currency in one wallet"""
    wallet_id: str
    currency_code: str
    balance: Decimal


def wallet_currency_id(wallet_id: str, currency_code: str) -> str:
    """Deterministic row id; keeps (wallet_id, currency_code) unique"""
    return f"{wallet_id}:{currency_code}"


def _status_value(status: Any) -> str:
    return getattr(status, "value", status)


def calculate_custody_totals_by_wallet(custody_records: Iterable[Any],
                                       wallet_ids: Iterable[str]) -> Dict[str, Dict[str, Decimal]]:
    """
    Sum active custody amounts per wallet and currency.

    Records without a known wallet, without a currency, with a zero amount
    or in any status other than active are skipped.
    """
    known = set(wallet_ids)
    totals: Dict[str, Dict[str, Decimal]] = {}
    for record in custody_records:
        if not record.wallet_id or record.wallet_id not in known:
            continue
        if not record.currency_code or not record.amount:
            continue
        if _status_value(record.status) != "active":
            continue
        per_wallet = totals.setdefault(record.wallet_id, {})
        per_wallet[record.currency_code] = per_wallet.get(record.currency_code, ZERO) + record.amount
    return totals


def merge_wallet_with_custody(view: Dict[str, Any],
                              custody_totals: Mapping[str, Dict[str, Decimal]]) -> Dict[str, Any]:
    """Copy of a wallet view with custody_totals and total_with_custody added"""
    result = dict(view)
    result["currencies"] = dict(view.get("currencies", {}))
    wallet_custody = custody_totals.get(view["id"])
    if not wallet_custody:
        return result

    result["custody_totals"] = dict(wallet_custody)
    combined = dict(result["currencies"])
    for code, amount in wallet_custody.items():
        combined[code] = combined.get(code, ZERO) + amount
    result["total_with_custody"] = combined
    return result


def get_custody_summary(custody_records: Iterable[Any]) -> Dict[str, Any]:
    """Active custody totals per currency plus record counts"""
    records = list(custody_records)
    summary = {
        "total_by_currency": {},
        "total_count": len(records),
        "active_count": 0,
    }
    for record in records:
        if not record.currency_code or not record.amount:
            continue
        if _status_value(record.status) == "active":
            summary["active_count"] += 1
            totals = summary["total_by_currency"]
            totals[record.currency_code] = totals.get(record.currency_code, ZERO) + record.amount
    return summary


class WalletManager:
    """
    Manages wallets and their per-currency balances
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 currency_registry: Optional[CurrencyRegistry] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.currency_registry = currency_registry
        self.wallets_table = "wallets"
        self.wallet_currencies_table = "wallet_currencies"

    # Wallet records

    def _save_wallet(self, wallet: Wallet) -> None:
        self.storage.save(self.wallets_table, wallet.id, wallet.to_dict())

    def _check_currency(self, code: str) -> str:
        code = normalize_code(code)
        if self.currency_registry is not None:
            self.currency_registry.require_currency(code)
        return code

    def create_wallet(
        self,
        name: str,
        usd=0,
        lyd=0,
        currencies: Optional[Mapping[str, Any]] = None,
        is_treasury: bool = False,
        user_id: Optional[str] = None
    ) -> Wallet:
        """
        Create a wallet

        Args:
            name: Display name, also used as transaction source/destination
            usd: Opening legacy USD balance
            lyd: Opening legacy LYD balance
            currencies: Opening balances keyed by currency code; non-zero ones
                become ledger rows
            is_treasury: Whether this is a treasury wallet
            user_id: Owning user

        Returns:
            Created Wallet
        """
        if not name or not name.strip():
            raise ValidationError("Wallet name is required")
        usd = quantize_amount(to_decimal(usd, "usd"))
        lyd = quantize_amount(to_decimal(lyd, "lyd"))
        if usd < ZERO or lyd < ZERO:
            raise ValidationError("Opening balances cannot be negative")

        opening: Dict[str, Decimal] = {}
        for code, amount in (currencies or {}).items():
            amount = quantize_amount(to_decimal(amount, f"{code} balance"))
            if amount < ZERO:
                raise ValidationError("Opening balances cannot be negative")
            if amount != ZERO:
                opening[self._check_currency(code)] = amount
        # Mirror the legacy columns into the ledger unless the map already has them
        for code, amount in (("USD", usd), ("LYD", lyd)):
            if amount != ZERO and code not in opening:
                opening[code] = amount

        now = datetime.now(timezone.utc)
        wallet = Wallet(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name.strip(),
            usd=opening.get("USD", usd),
            lyd=opening.get("LYD", lyd),
            is_treasury=is_treasury,
            user_id=user_id
        )

        with self.storage.atomic():
            self._save_wallet(wallet)
            for code, amount in opening.items():
                self._save_row(wallet.id, code, amount)
            self.audit_trail.log_event(
                event_type=AuditEventType.WALLET_CREATED,
                entity_type="wallet",
                entity_id=wallet.id,
                metadata={
                    "name": wallet.name,
                    "is_treasury": is_treasury,
                    "opening_balances": opening
                }
            )

        logger.info("Created wallet %s (%s)", wallet.name, wallet.id)
        return wallet

    def get_wallet(self, wallet_id: str) -> Optional[Wallet]:
        data = self.storage.load(self.wallets_table, wallet_id)
        return Wallet.from_dict(data) if data else None

    def require_wallet(self, wallet_id: str) -> Wallet:
        wallet = self.get_wallet(wallet_id)
        if not wallet:
            raise NotFoundError(f"Wallet {wallet_id} not found")
        return wallet

    def get_wallet_by_name(self, name: str) -> Optional[Wallet]:
        matches = self.storage.find(self.wallets_table, {"name": name})
        return Wallet.from_dict(matches[0]) if matches else None

    def list_wallet_records(self) -> List[Wallet]:
        wallets = [Wallet.from_dict(d) for d in self.storage.load_all(self.wallets_table)]
        return sorted(wallets, key=lambda w: w.name.lower())

    def update_wallet(self, wallet_id: str, name: Optional[str] = None,
                      is_treasury: Optional[bool] = None, user_id: Optional[str] = None) -> Wallet:
        """Update wallet attributes; balances change only through the ledger operations"""
        wallet = self.require_wallet(wallet_id)
        if name is not None:
            if not name.strip():
                raise ValidationError("Wallet name is required")
            wallet.name = name.strip()
        if is_treasury is not None:
            wallet.is_treasury = is_treasury
        if user_id is not None:
            wallet.user_id = user_id or None
        wallet.updated_at = datetime.now(timezone.utc)
        self._save_wallet(wallet)

        self.audit_trail.log_event(
            event_type=AuditEventType.WALLET_UPDATED,
            entity_type="wallet",
            entity_id=wallet.id,
            metadata={"name": wallet.name, "is_treasury": wallet.is_treasury, "user_id": wallet.user_id}
        )
        return wallet

    def delete_wallet(self, wallet_id: str) -> None:
        """Delete a wallet and its ledger rows"""
        wallet = self.require_wallet(wallet_id)
        with self.storage.atomic():
            for row in self._rows(wallet_id):
                self.storage.delete(self.wallet_currencies_table, row.id)
            self.storage.delete(self.wallets_table, wallet_id)
            self.audit_trail.log_event(
                event_type=AuditEventType.WALLET_DELETED,
                entity_type="wallet",
                entity_id=wallet_id,
                metadata={"name": wallet.name}
            )

    # Ledger rows

    def _rows(self, wallet_id: str) -> List[WalletCurrency]:
        return [
            WalletCurrency.from_dict(d)
            for d in self.storage.find(self.wallet_currencies_table, {"wallet_id": wallet_id})
        ]

    def _row(self, wallet_id: str, code: str) -> Optional[WalletCurrency]:
        data = self.storage.load(self.wallet_currencies_table, wallet_currency_id(wallet_id, code))
        return WalletCurrency.from_dict(data) if data else None

    def _save_row(self, wallet_id: str, code: str, balance: Decimal,
                  existing: Optional[WalletCurrency] = None) -> WalletCurrency:
        now = datetime.now(timezone.utc)
        row = WalletCurrency(
            id=wallet_currency_id(wallet_id, code),
            created_at=existing.created_at if existing else now,
            updated_at=now,
            wallet_id=wallet_id,
            currency_code=code,
            balance=quantize_amount(balance)
        )
        self.storage.save(self.wallet_currencies_table, row.id, row.to_dict())
        return row

    # Balances

    def _balances(self, wallet: Wallet) -> Dict[str, Decimal]:
        balances = {code: wallet.legacy_balance(code) for code in LEGACY_COLUMNS}
        for row in self._rows(wallet.id):
            balances[row.currency_code] = row.balance
        return balances

    def get_balances(self, wallet_id: str) -> Dict[str, Decimal]:
        """Effective balance of every currency the wallet holds"""
        return self._balances(self.require_wallet(wallet_id))

    def get_balance(self, wallet_id: str, currency_code: str) -> Decimal:
        code = normalize_code(currency_code)
        return self.get_balances(wallet_id).get(code, ZERO)

    def has_currency(self, wallet_id: str, currency_code: str) -> bool:
        code = normalize_code(currency_code)
        return self._row(wallet_id, code) is not None or code in LEGACY_COLUMNS

    def add_currency(self, wallet_id: str, currency_code: str, initial_balance=0) -> WalletCurrency:
        """
        Add a ledger row for a currency the wallet does not track yet

        Raises:
            DuplicateError: The wallet already has a row for this currency
        """
        self.require_wallet(wallet_id)
        code = self._check_currency(currency_code)
        amount = quantize_amount(to_decimal(initial_balance, "initial balance"))
        if amount < ZERO:
            raise ValidationError("Balance cannot be negative")
        if self._row(wallet_id, code):
            raise DuplicateError(f"This wallet already has {code} currency")

        with self.storage.atomic():
            row = self._save_row(wallet_id, code, amount)
            self.audit_trail.log_event(
                event_type=AuditEventType.WALLET_CURRENCY_ADDED,
                entity_type="wallet",
                entity_id=wallet_id,
                metadata={"currency_code": code, "balance": amount}
            )
        return row

    def set_currency_balance(self, wallet_id: str, currency_code: str, balance) -> Decimal:
        """Overwrite a balance, routed by the reconciliation rule"""
        code = normalize_code(currency_code)
        target = quantize_amount(to_decimal(balance, "balance"))
        if target < ZERO:
            raise ValidationError("Balance cannot be negative")
        with self.storage.atomic():
            if not self.has_currency(wallet_id, code):
                self.add_currency(wallet_id, code, target)
                return target
            current = self.get_balance(wallet_id, code)
            if target == current:
                return current
            return self.adjust_currency(wallet_id, code, target - current, reason="set_balance")

    def adjust_currency(self, wallet_id: str, currency_code: str, delta,
                        reason: Optional[str] = None, user_id: Optional[str] = None) -> Decimal:
        """
        Apply a signed change to one currency balance

        Args:
            wallet_id: Wallet to change
            currency_code: Currency to change
            delta: Signed amount
            reason: Free text recorded in the audit event

        Returns:
            New balance

        Raises:
            InsufficientFundsError: The result would be negative, or a debit
                targets a currency the wallet does not hold
        """
        wallet = self.require_wallet(wallet_id)
        code = normalize_code(currency_code)
        delta = quantize_amount(to_decimal(delta, "delta"))

        row = self._row(wallet_id, code)
        if row is not None:
            previous = row.balance
        elif code in LEGACY_COLUMNS:
            previous = wallet.legacy_balance(code)
        else:
            if delta <= ZERO:
                raise InsufficientFundsError(f"Cannot subtract from non-existent currency {code}")
            self._check_currency(code)
            previous = ZERO

        new_balance = previous + delta
        if new_balance < ZERO:
            raise InsufficientFundsError(
                f"Insufficient {code} balance in wallet {wallet.name}: "
                f"available {previous}, required {-delta}"
            )

        if row is None and code in LEGACY_COLUMNS:
            wallet.set_legacy_balance(code, new_balance)
            wallet.updated_at = datetime.now(timezone.utc)
            self._save_wallet(wallet)
        else:
            self._save_row(wallet_id, code, new_balance, existing=row)

        self.audit_trail.log_event(
            event_type=AuditEventType.WALLET_BALANCE_CHANGED,
            entity_type="wallet",
            entity_id=wallet_id,
            metadata={
                "currency_code": code,
                "delta": delta,
                "previous_balance": previous,
                "new_balance": new_balance,
                "reason": reason
            },
            user_id=user_id
        )
        return new_balance

    def debit(self, wallet_id: str, currency_code: str, amount, **kwargs) -> Decimal:
        return self.adjust_currency(wallet_id, currency_code, -to_decimal(amount), **kwargs)

    def credit(self, wallet_id: str, currency_code: str, amount, **kwargs) -> Decimal:
        return self.adjust_currency(wallet_id, currency_code, to_decimal(amount), **kwargs)

    def remove_currency(self, wallet_id: str, currency_code: str) -> None:
        """
        Remove a currency's ledger row

        Raises:
            InvalidStateError: USD/LYD held only in the legacy columns
            NotFoundError: The wallet has no row for the currency
        """
        self.require_wallet(wallet_id)
        code = normalize_code(currency_code)
        row = self._row(wallet_id, code)
        if row is None:
            if code in LEGACY_COLUMNS:
                raise InvalidStateError(f"Cannot remove {code}: it is a built-in wallet balance")
            raise NotFoundError(f"Wallet {wallet_id} has no {code} currency")

        with self.storage.atomic():
            self.storage.delete(self.wallet_currencies_table, row.id)
            self.audit_trail.log_event(
                event_type=AuditEventType.WALLET_CURRENCY_REMOVED,
                entity_type="wallet",
                entity_id=wallet_id,
                metadata={"currency_code": code, "balance": row.balance}
            )

    # Views

    def wallet_view(self, wallet: Wallet) -> Dict[str, Any]:
        balances = self._balances(wallet)
        return {
            "id": wallet.id,
            "name": wallet.name,
            "is_treasury": wallet.is_treasury,
            "user_id": wallet.user_id,
            "usd": balances["USD"],
            "lyd": balances["LYD"],
            "currencies": balances,
            "created_at": wallet.created_at,
        }

    def list_wallets(self, custody_records: Iterable[Any] = ()) -> List[Dict[str, Any]]:
        """Wallet views sorted by name, with active custody merged in"""
        wallets = self.list_wallet_records()
        totals = calculate_custody_totals_by_wallet(custody_records, [w.id for w in wallets])
        return [merge_wallet_with_custody(self.wallet_view(w), totals) for w in wallets]

    def list_non_treasury_wallets(self) -> List[Dict[str, Any]]:
        return [self.wallet_view(w) for w in self.list_wallet_records() if not w.is_treasury]

    def get_wallets_summary(self) -> Dict[str, Any]:
        summary = {
            "count": 0,
            "total_usd": ZERO,
            "total_lyd": ZERO,
            "currency_totals": {},
        }
        for wallet in self.list_wallet_records():
            balances = self._balances(wallet)
            summary["count"] += 1
            summary["total_usd"] += balances["USD"]
            summary["total_lyd"] += balances["LYD"]
            for code, amount in balances.items():
                summary["currency_totals"][code] = summary["currency_totals"].get(code, ZERO) + amount
        return summary
