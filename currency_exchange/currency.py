"""
Currency Support Module

Money values, user input parsing and the registry of currency types the
shop trades. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import DuplicateError, NotFoundError, ValidationError, InvalidStateError
from .logging_config import get_logger

# Set global decimal context for financial precision
getcontext().prec = 28

BASE_CURRENCIES = ("USD", "LYD")
CENTS = Decimal("0.01")
# Amounts are stored as DECIMAL(18,2)
MAX_INTEGER_DIGITS = 16
RATE_PLACES = Decimal("0.000001")

logger = get_logger("exchange.currency")


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """
    Convert user input to Decimal

    Accepts Decimal, int, numeric strings and floats (via their string form).

    Raises:
        ValidationError: If the value is empty, not numeric, not finite or
            has more than MAX_INTEGER_DIGITS integer digits
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number, got {value!r}")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if result and result.adjusted() >= MAX_INTEGER_DIGITS:
        raise ValidationError(f"{field} must have at most {MAX_INTEGER_DIGITS} integer digits")
    return result


def quantize_amount(value: Decimal) -> Decimal:
    """Round to the two decimal places balances are kept in"""
    try:
        return value.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"Amount {value} is out of range")


def quantize_rate(value: Decimal) -> Decimal:
    try:
        return value.quantize(RATE_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"Rate {value} is out of range")


def normalize_code(code: Optional[str]) -> str:
    if not code or not str(code).strip():
        raise ValidationError("Currency code is required")
    return str(code).strip().upper()


@dataclass(frozen=True)
class Money:
    """
    Immutable amount of one currency, rounded to cents.
    """
    amount: Decimal
    currency: str

    def __post_init__(self):
        amount = to_decimal(self.amount)
        object.__setattr__(self, 'amount', quantize_amount(amount))
        object.__setattr__(self, 'currency', normalize_code(self.currency))

    def _check(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency} and {other.currency}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier) -> 'Money':
        return Money(self.amount * to_decimal(multiplier, "multiplier"), self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._check(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        return f"{self.currency} {self.amount:,.2f}"


@dataclass
class CurrencyType(StorageRecord):
    """A currency the shop trades; id is the upper-case code"""
    code: str
    name: str
    symbol: str


class CurrencyRegistry:
    """
    Manages the currency types wallets, rates and transactions refer to
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 dependent_tables: Sequence[str] = ("wallet_currencies", "exchange_rates")):
        self.storage = storage
        self.audit_trail = audit_trail
        self.currency_types_table = "currency_types"
        self.dependent_tables = tuple(dependent_tables)

    def seed_defaults(self) -> None:
        """Make sure the base currencies exist"""
        defaults = (("USD", "US Dollar", "$"), ("LYD", "Libyan Dinar", "LD"))
        for code, name, symbol in defaults:
            if not self.storage.exists(self.currency_types_table, code):
                self.create_currency_type(code, name, symbol)

    def list_currency_types(self) -> List[CurrencyType]:
        types = [CurrencyType.from_dict(d) for d in self.storage.load_all(self.currency_types_table)]
        return sorted(types, key=lambda t: t.code)

    def get_currency_type(self, code: str) -> Optional[CurrencyType]:
        data = self.storage.load(self.currency_types_table, normalize_code(code))
        return CurrencyType.from_dict(data) if data else None

    def require_currency(self, code: str) -> CurrencyType:
        currency = self.get_currency_type(code)
        if not currency:
            raise NotFoundError(f"Currency {normalize_code(code)} not found")
        return currency

    def create_currency_type(self, code: str, name: str, symbol: Optional[str] = None) -> CurrencyType:
        code = normalize_code(code)
        if not name or not name.strip():
            raise ValidationError("Currency name is required")
        if self.storage.exists(self.currency_types_table, code):
            raise DuplicateError(f"Currency {code} already exists")

        now = datetime.now(timezone.utc)
        currency = CurrencyType(
            id=code,
            created_at=now,
            updated_at=now,
            code=code,
            name=name.strip(),
            symbol=(symbol or "").strip() or code
        )
        self.storage.save(self.currency_types_table, code, currency.to_dict())
        self.audit_trail.log_event(
            event_type=AuditEventType.CURRENCY_TYPE_CREATED,
            entity_type="currency_type",
            entity_id=code,
            metadata={"name": currency.name, "symbol": currency.symbol}
        )
        return currency

    def update_currency_type(self, code: str, name: Optional[str] = None,
                             symbol: Optional[str] = None) -> CurrencyType:
        currency = self.require_currency(code)
        if name is not None:
            if not name.strip():
                raise ValidationError("Currency name is required")
            currency.name = name.strip()
        if symbol is not None:
            currency.symbol = symbol.strip() or currency.code
        currency.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.currency_types_table, currency.id, currency.to_dict())
        self.audit_trail.log_event(
            event_type=AuditEventType.CURRENCY_TYPE_UPDATED,
            entity_type="currency_type",
            entity_id=currency.code,
            metadata={"name": currency.name, "symbol": currency.symbol}
        )
        return currency

    def delete_currency_type(self, code: str) -> None:
        """Delete a currency along with wallet ledger rows and rates that use it"""
        currency = self.require_currency(code)
        if currency.code in BASE_CURRENCIES:
            raise InvalidStateError(f"Cannot delete base currency {currency.code}")

        with self.storage.atomic():
            removed = 0
            for table in self.dependent_tables:
                for row in self.storage.find(table, {"currency_code": currency.code}):
                    self.storage.delete(table, row["id"])
                    removed += 1
            self.storage.delete(self.currency_types_table, currency.code)
            self.audit_trail.log_event(
                event_type=AuditEventType.CURRENCY_TYPE_DELETED,
                entity_type="currency_type",
                entity_id=currency.code,
                metadata={"dependent_rows_removed": removed}
            )
        logger.info("Deleted currency %s and %d dependent rows", currency.code, removed)
