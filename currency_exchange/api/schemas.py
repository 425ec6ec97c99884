"""
Pydantic schemas for API requests, and response serialization
"""

import dataclasses
from decimal import Decimal
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from ..storage import StorageRecord
from ..users import User


def serialize(value: Any) -> Any:
    """
    Convert records, views and Decimals to JSON-safe values.

    Decimals become strings so no precision is lost; users never expose
    their password hash.
    """
    if isinstance(value, User):
        return value.to_public_dict()
    if isinstance(value, StorageRecord):
        return value.to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return serialize(dataclasses.asdict(value))
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value


# Auth schemas
class LoginRequest(BaseModel):
    email: str
    password: str


class SignupRequest(BaseModel):
    name: str
    email: str
    password: str
    phone: Optional[str] = None


# User schemas
class CreateUserRequest(BaseModel):
    name: str
    email: str
    password: str
    role: str = Field("cashier", description="manager, treasurer, cashier or validator")
    phone: Optional[str] = None


class UpdateUserRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    is_active: Optional[bool] = None


class AssignRoleRequest(BaseModel):
    role: str


class ChangePasswordRequest(BaseModel):
    new_password: str


class PasswordCheckRequest(BaseModel):
    password: str


# Currency schemas
class CreateCurrencyTypeRequest(BaseModel):
    code: str
    name: str
    symbol: Optional[str] = None


class UpdateCurrencyTypeRequest(BaseModel):
    name: Optional[str] = None
    symbol: Optional[str] = None


# Wallet schemas
class CreateWalletRequest(BaseModel):
    name: str
    usd: str = "0"  # Decimal as string
    lyd: str = "0"
    currencies: Dict[str, str] = Field(default_factory=dict)
    is_treasury: bool = False
    user_id: Optional[str] = None


class UpdateWalletRequest(BaseModel):
    name: Optional[str] = None
    is_treasury: Optional[bool] = None
    user_id: Optional[str] = None


class AddCurrencyRequest(BaseModel):
    currency_code: str
    initial_balance: str = "0"


class SetBalanceRequest(BaseModel):
    balance: str


class WithdrawRequest(BaseModel):
    currency_code: str
    amount: str
    reason: Optional[str] = None


# Transaction schemas
class BuyRequest(BaseModel):
    wallet_id: str
    currency_code: str
    amount: str
    exchange_currency_code: str
    exchange_rate: Optional[str] = None
    total_amount: Optional[str] = None
    client_name: Optional[str] = None


class SellRequest(BaseModel):
    wallet_id: str
    sell_currency_code: str
    sell_amount: str
    receive_currency_code: str
    receive_amount: str
    client_name: Optional[str] = None


class CashierBuyRequest(BaseModel):
    destination: str = Field(..., description="Wallet id, 'custody' or 'client'")
    currency_code: str
    amount: str
    exchange_currency_code: str
    exchange_rate: Optional[str] = None
    total_amount: Optional[str] = None
    client_name: Optional[str] = None


class CashierSellRequest(BaseModel):
    source: str = Field(..., description="Wallet id, 'custody' or 'client'")
    sell_currency_code: str
    amount: str
    receive_currency_code: str
    exchange_rate: Optional[str] = None
    total_amount: Optional[str] = None
    client_name: Optional[str] = None
    destination: str = "client"


class ValidateTransactionRequest(BaseModel):
    decision: str = Field(..., description="approve or reject")
    notes: str = ""


# Custody schemas
class GiveCustodyRequest(BaseModel):
    cashier_id: str
    wallet_id: str
    currency_code: str
    amount: str
    notes: str = ""


class RejectCustodyRequest(BaseModel):
    reason: Optional[str] = None


class ReturnCustodyRequest(BaseModel):
    notes: Optional[str] = None
    wallet_id: Optional[str] = None


class UpdateCustodyStatusRequest(BaseModel):
    status: str = Field(..., description="approved, rejected or returned")
    notes: Optional[str] = None


class AdjustCustodyBalanceRequest(BaseModel):
    delta: str


# Debt schemas
class CreateDebtRequest(BaseModel):
    person_name: str
    wallet_id: str
    currency_code: str
    amount: str
    notes: Optional[str] = None
    is_owed: bool = False


# Exchange rate schemas
class ExchangeRateRequest(BaseModel):
    currency_code: str
    rate_to_usd: str
    rate_to_lyd: str


class UpdateExchangeRateRequest(BaseModel):
    rate_to_usd: str
    rate_to_lyd: str


# Manager price schemas
class UpdateManagerPricesRequest(BaseModel):
    buy_price: str
    sell_price: str


# Notification schemas
class NotificationActionRequest(BaseModel):
    action: str = Field(..., description="approve or reject")
    reason: Optional[str] = None
