"""
Exchange Rate Module

Each currency stores two conversion factors: its rate to USD and its rate
to LYD. Cross rates between any two currencies pivot through USD.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .currency import CurrencyRegistry, normalize_code, quantize_rate, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import DuplicateError, NotFoundError, ValidationError
from .logging_config import get_logger


logger = get_logger("exchange.rates")

ONE = Decimal("1")


@dataclass
class ExchangeRate(StorageRecord):
    """Stored rates of one currency; id is the currency code"""
    currency_code: str
    rate_to_usd: Decimal
    rate_to_lyd: Decimal


def _index(rates: Iterable[ExchangeRate]) -> Dict[str, ExchangeRate]:
    return {r.currency_code: r for r in rates}


def calculate_exchange_rate(from_currency: str, to_currency: str,
                            rates: Iterable[ExchangeRate]) -> Decimal:
    """
    Rate that converts one unit of from_currency into to_currency.

    Conversions go through USD: from.rate_to_usd / to.rate_to_usd. USD
    itself counts as 1 when it has no stored rate. A missing or zero rate
    yields 1 and a warning.
    """
    from_currency = normalize_code(from_currency)
    to_currency = normalize_code(to_currency)
    if from_currency == to_currency:
        return ONE

    by_code = _index(rates)

    def usd_rate(code: str) -> Optional[Decimal]:
        if code in by_code:
            return by_code[code].rate_to_usd
        return ONE if code == "USD" else None

    from_rate = usd_rate(from_currency)
    to_rate = usd_rate(to_currency)
    if not from_rate or not to_rate:
        logger.warning("Exchange rate not found for %s or %s", from_currency, to_currency)
        return ONE
    return quantize_rate(from_rate / to_rate)


def get_sell_rate(currency_code: str, base_currency: str, rates: Iterable[ExchangeRate]) -> Decimal:
    """Rate of the currency being sold against a base currency (USD or LYD)"""
    currency_code = normalize_code(currency_code)
    base_currency = normalize_code(base_currency)
    if currency_code == base_currency:
        return ONE
    rate = _index(rates).get(currency_code)
    if rate is None:
        logger.warning("Exchange rate not found for %s", currency_code)
        return ONE
    if base_currency == "USD":
        return rate.rate_to_usd
    if base_currency == "LYD":
        return rate.rate_to_lyd
    return ONE


def get_buy_rate(currency_code: str, base_currency: str, rates: Iterable[ExchangeRate]) -> Decimal:
    """Inverse of the sell rate, for the currency being bought"""
    sell_rate = get_sell_rate(currency_code, base_currency, rates)
    if not sell_rate:
        return ONE
    return quantize_rate(ONE / sell_rate)


class ExchangeRateManager:
    """
    Stores per-currency exchange rates
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 currency_registry: Optional[CurrencyRegistry] = None,
                 default_rate_to_usd="1.0", default_rate_to_lyd="5.0"):
        self.storage = storage
        self.audit_trail = audit_trail
        self.currency_registry = currency_registry
        self.rates_table = "exchange_rates"
        self.default_rate_to_usd = to_decimal(default_rate_to_usd, "default rate to USD")
        self.default_rate_to_lyd = to_decimal(default_rate_to_lyd, "default rate to LYD")

    def _validate(self, rate_to_usd, rate_to_lyd):
        rate_to_usd = to_decimal(rate_to_usd, "rate_to_usd")
        rate_to_lyd = to_decimal(rate_to_lyd, "rate_to_lyd")
        if rate_to_usd <= 0 or rate_to_lyd <= 0:
            raise ValidationError("Exchange rates must be positive")
        return rate_to_usd, rate_to_lyd

    def _save(self, rate: ExchangeRate, event_type: AuditEventType = AuditEventType.EXCHANGE_RATE_CHANGED) -> None:
        self.storage.save(self.rates_table, rate.id, rate.to_dict())
        self.audit_trail.log_event(
            event_type=event_type,
            entity_type="exchange_rate",
            entity_id=rate.currency_code,
            metadata={"rate_to_usd": rate.rate_to_usd, "rate_to_lyd": rate.rate_to_lyd}
        )

    def list_rates(self) -> List[ExchangeRate]:
        """All stored rates ordered by currency code"""
        rates = [ExchangeRate.from_dict(d) for d in self.storage.load_all(self.rates_table)]
        return sorted(rates, key=lambda r: r.currency_code)

    def find_rate(self, currency_code: str) -> Optional[ExchangeRate]:
        data = self.storage.load(self.rates_table, normalize_code(currency_code))
        return ExchangeRate.from_dict(data) if data else None

    def get_rate(self, currency_code: str) -> ExchangeRate:
        """Stored rate, creating the configured default when none exists"""
        rate = self.find_rate(currency_code)
        if rate is None:
            rate = self.create_rate(currency_code, self.default_rate_to_usd, self.default_rate_to_lyd)
        return rate

    def create_rate(self, currency_code: str, rate_to_usd, rate_to_lyd) -> ExchangeRate:
        code = normalize_code(currency_code)
        if self.currency_registry is not None:
            self.currency_registry.require_currency(code)
        rate_to_usd, rate_to_lyd = self._validate(rate_to_usd, rate_to_lyd)
        if self.storage.exists(self.rates_table, code):
            raise DuplicateError(f"Exchange rate for {code} already exists")

        now = datetime.now(timezone.utc)
        rate = ExchangeRate(
            id=code,
            created_at=now,
            updated_at=now,
            currency_code=code,
            rate_to_usd=rate_to_usd,
            rate_to_lyd=rate_to_lyd
        )
        self._save(rate)
        return rate

    def update_rate(self, currency_code: str, rate_to_usd, rate_to_lyd) -> ExchangeRate:
        rate = self.find_rate(currency_code)
        if rate is None:
            raise NotFoundError(f"Exchange rate for {normalize_code(currency_code)} not found")
        rate.rate_to_usd, rate.rate_to_lyd = self._validate(rate_to_usd, rate_to_lyd)
        rate.updated_at = datetime.now(timezone.utc)
        self._save(rate)
        return rate

    def delete_rate(self, currency_code: str) -> None:
        rate = self.find_rate(currency_code)
        if rate is None:
            raise NotFoundError(f"Exchange rate for {normalize_code(currency_code)} not found")
        self.storage.delete(self.rates_table, rate.id)
        self.audit_trail.log_event(
            event_type=AuditEventType.EXCHANGE_RATE_DELETED,
            entity_type="exchange_rate",
            entity_id=rate.currency_code
        )

    def calculate(self, from_currency: str, to_currency: str) -> Decimal:
        return calculate_exchange_rate(from_currency, to_currency, self.list_rates())

    def sell_rate(self, currency_code: str, base_currency: str) -> Decimal:
        return get_sell_rate(currency_code, base_currency, self.list_rates())

    def buy_rate(self, currency_code: str, base_currency: str) -> Decimal:
        return get_buy_rate(currency_code, base_currency, self.list_rates())
