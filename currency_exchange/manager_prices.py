"""
Manager prices: the shop-wide buy and sell rate for the primary currency pair.

A single record holds the old and new buy/sell prices.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Optional

from .currency import to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import ValidationError


MANAGER_PRICES_ID = "current"


@dataclass
class ManagerPrices(StorageRecord):
    buy_old: Decimal
    buy_new: Decimal
    sell_old: Decimal
    sell_new: Decimal


class ManagerPriceManager:
    """Reads and updates the singleton manager prices record"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 default_buy_price="5.0", default_sell_price="5.5"):
        self.storage = storage
        self.audit_trail = audit_trail
        self.prices_table = "manager_prices"
        self.default_buy_price = to_decimal(default_buy_price, "default buy price")
        self.default_sell_price = to_decimal(default_sell_price, "default sell price")

    def _load(self) -> Optional[ManagerPrices]:
        data = self.storage.load(self.prices_table, MANAGER_PRICES_ID)
        return ManagerPrices.from_dict(data) if data else None

    def _store(self, buy: Decimal, sell: Decimal, existing: Optional[ManagerPrices],
               user_id: Optional[str] = None) -> ManagerPrices:
        now = datetime.now(timezone.utc)
        prices = ManagerPrices(
            id=MANAGER_PRICES_ID,
            created_at=existing.created_at if existing else now,
            updated_at=now,
            buy_old=buy,
            buy_new=buy,
            sell_old=sell,
            sell_new=sell
        )
        self.storage.save(self.prices_table, prices.id, prices.to_dict())
        self.audit_trail.log_event(
            event_type=AuditEventType.MANAGER_PRICES_UPDATED,
            entity_type="manager_prices",
            entity_id=prices.id,
            metadata={"buy_price": buy, "sell_price": sell},
            user_id=user_id
        )
        return prices

    def get_prices(self) -> ManagerPrices:
        """Current prices; the configured defaults are stored on first read"""
        prices = self._load()
        if prices is None:
            prices = self._store(self.default_buy_price, self.default_sell_price, None)
        return prices

    def update_prices(self, buy_price, sell_price, user_id: Optional[str] = None) -> ManagerPrices:
        """Set the buy and sell price; old and new take the same value"""
        buy = to_decimal(buy_price, "buy_price")
        sell = to_decimal(sell_price, "sell_price")
        if buy <= 0 or sell <= 0:
            raise ValidationError("Prices must be positive")
        return self._store(buy, sell, self._load(), user_id=user_id)
