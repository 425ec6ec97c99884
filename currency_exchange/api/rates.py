"""
Currency type, exchange rate and manager price endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import ExchangeSystem, get_exchange_system, http_error, require_roles
from .schemas import (
    CreateCurrencyTypeRequest, ExchangeRateRequest, UpdateCurrencyTypeRequest,
    UpdateExchangeRateRequest, UpdateManagerPricesRequest, serialize
)
from ..errors import ExchangeError
from ..users import Role


currencies_router = APIRouter()
rates_router = APIRouter()
prices_router = APIRouter()

manager = require_roles(Role.MANAGER)
any_user = require_roles()


# Currency types

@currencies_router.get("")
async def list_currency_types(
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    return {"currencies": serialize(system.currency_registry.list_currency_types())}


@currencies_router.post("", status_code=status.HTTP_201_CREATED)
async def create_currency_type(
    request: CreateCurrencyTypeRequest,
    user_id: str = Depends(require_roles(Role.TREASURER)),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        currency = system.currency_registry.create_currency_type(request.code, request.name, request.symbol)
    except ExchangeError as e:
        raise http_error(e)
    return {"currency": serialize(currency), "message": "Currency created successfully"}


@currencies_router.patch("/{code}")
async def update_currency_type(
    code: str,
    request: UpdateCurrencyTypeRequest,
    user_id: str = Depends(require_roles(Role.TREASURER)),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        currency = system.currency_registry.update_currency_type(code, request.name, request.symbol)
    except ExchangeError as e:
        raise http_error(e)
    return {"currency": serialize(currency)}


@currencies_router.delete("/{code}")
async def delete_currency_type(
    code: str,
    user_id: str = Depends(manager),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Delete a currency and every wallet balance and rate that uses it"""
    try:
        system.currency_registry.delete_currency_type(code)
    except ExchangeError as e:
        raise http_error(e)
    return {"message": "Currency deleted successfully"}


# Exchange rates

@rates_router.get("")
async def list_rates(
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    return {"rates": serialize(system.exchange_rate_manager.list_rates())}


@rates_router.get("/calculate")
async def calculate_rate(
    from_currency: str,
    to_currency: str,
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Cross rate between two currencies"""
    rate = system.exchange_rate_manager.calculate(from_currency, to_currency)
    return {"from_currency": from_currency.upper(), "to_currency": to_currency.upper(), "rate": str(rate)}


@rates_router.get("/{currency_code}")
async def get_rate(
    currency_code: str,
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Stored rate; the default rate is created when none exists"""
    try:
        return serialize(system.exchange_rate_manager.get_rate(currency_code))
    except ExchangeError as e:
        raise http_error(e)


@rates_router.post("", status_code=status.HTTP_201_CREATED)
async def create_rate(
    request: ExchangeRateRequest,
    user_id: str = Depends(manager),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        rate = system.exchange_rate_manager.create_rate(
            request.currency_code, request.rate_to_usd, request.rate_to_lyd
        )
    except ExchangeError as e:
        raise http_error(e)
    return serialize(rate)


@rates_router.put("/{currency_code}")
async def update_rate(
    currency_code: str,
    request: UpdateExchangeRateRequest,
    user_id: str = Depends(manager),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        rate = system.exchange_rate_manager.update_rate(currency_code, request.rate_to_usd, request.rate_to_lyd)
    except ExchangeError as e:
        raise http_error(e)
    return serialize(rate)


@rates_router.delete("/{currency_code}")
async def delete_rate(
    currency_code: str,
    user_id: str = Depends(manager),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        system.exchange_rate_manager.delete_rate(currency_code)
    except ExchangeError as e:
        raise http_error(e)
    return {"message": "Exchange rate deleted successfully"}


# Manager prices

@prices_router.get("")
async def get_manager_prices(
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    return serialize(system.manager_price_manager.get_prices())


@prices_router.put("")
async def update_manager_prices(
    request: UpdateManagerPricesRequest,
    user_id: str = Depends(manager),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        prices = system.manager_price_manager.update_prices(request.buy_price, request.sell_price, user_id=user_id)
    except ExchangeError as e:
        raise http_error(e)
    return serialize(prices)
