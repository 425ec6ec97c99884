"""
Transaction endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .auth import ExchangeSystem, get_exchange_system, http_error, require_roles
from .schemas import (
    BuyRequest, CashierBuyRequest, CashierSellRequest, SellRequest,
    ValidateTransactionRequest, serialize
)
from ..errors import ExchangeError
from ..users import Role


router = APIRouter()

cashier = require_roles(Role.CASHIER)
any_user = require_roles()


@router.post("/buy", status_code=status.HTTP_201_CREATED)
async def create_buy(
    request: BuyRequest,
    user_id: str = Depends(require_roles(Role.CASHIER, Role.TREASURER)),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Buy a currency into a wallet"""
    try:
        transaction = system.transaction_manager.create_buy(
            wallet_id=request.wallet_id,
            currency_code=request.currency_code,
            amount=request.amount,
            exchange_currency_code=request.exchange_currency_code,
            exchange_rate=request.exchange_rate,
            total_amount=request.total_amount,
            cashier_id=user_id,
            client_name=request.client_name
        )
    except ExchangeError as e:
        raise http_error(e)
    return {
        "transaction_id": transaction.id,
        "transaction": serialize(transaction),
        "message": "Buy transaction recorded successfully"
    }


@router.post("/sell", status_code=status.HTTP_201_CREATED)
async def create_sell(
    request: SellRequest,
    user_id: str = Depends(require_roles(Role.CASHIER, Role.TREASURER)),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Sell a currency out of a wallet"""
    try:
        transaction = system.transaction_manager.create_sell(
            wallet_id=request.wallet_id,
            sell_currency_code=request.sell_currency_code,
            sell_amount=request.sell_amount,
            receive_currency_code=request.receive_currency_code,
            receive_amount=request.receive_amount,
            cashier_id=user_id,
            client_name=request.client_name
        )
    except ExchangeError as e:
        raise http_error(e)
    return {
        "transaction_id": transaction.id,
        "transaction": serialize(transaction),
        "message": "Sell transaction recorded successfully"
    }


@router.post("/cashier/buy", status_code=status.HTTP_201_CREATED)
async def cashier_buy(
    request: CashierBuyRequest,
    user_id: str = Depends(cashier),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Buy from a client into a wallet, the cashier's custody, or record only"""
    try:
        result = system.transaction_manager.execute_buy(
            cashier_id=user_id,
            destination=request.destination,
            currency_code=request.currency_code,
            amount=request.amount,
            exchange_currency_code=request.exchange_currency_code,
            exchange_rate=request.exchange_rate,
            total_amount=request.total_amount,
            client_name=request.client_name
        )
    except ExchangeError as e:
        raise http_error(e)
    return serialize(result)


@router.post("/cashier/sell", status_code=status.HTTP_201_CREATED)
async def cashier_sell(
    request: CashierSellRequest,
    user_id: str = Depends(cashier),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Sell to a client from a wallet, the cashier's custody, or record only"""
    try:
        result = system.transaction_manager.execute_sell(
            cashier_id=user_id,
            source=request.source,
            sell_currency_code=request.sell_currency_code,
            amount=request.amount,
            receive_currency_code=request.receive_currency_code,
            exchange_rate=request.exchange_rate,
            total_amount=request.total_amount,
            client_name=request.client_name,
            destination=request.destination
        )
    except ExchangeError as e:
        raise http_error(e)
    return serialize(result)


@router.get("")
async def list_transactions(
    limit: int = 30,
    offset: int = 0,
    needs_validation: bool = False,
    wallet_id: Optional[str] = None,
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Recent transactions, newest first"""
    if wallet_id:
        page = system.transaction_manager.list_by_wallet(wallet_id, limit=limit, offset=offset)
    else:
        page = system.transaction_manager.list_recent(
            limit=limit, offset=offset, only_needs_validation=needs_validation
        )
    return serialize(page)


@router.get("/stats")
async def get_transaction_stats(
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Average buy and sell rates over recent transactions"""
    return serialize(system.transaction_manager.get_transaction_stats())


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    transaction = system.transaction_manager.get_transaction(transaction_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return {
        "transaction": serialize(transaction),
        "validations": serialize(system.transaction_manager.list_validations(transaction_id))
    }


@router.post("/{transaction_id}/validate")
async def validate_transaction(
    transaction_id: str,
    request: ValidateTransactionRequest,
    user_id: str = Depends(require_roles(Role.VALIDATOR)),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Approve or reject a transaction"""
    try:
        transaction = system.transaction_manager.validate_transaction(
            transaction_id, user_id, request.decision, request.notes
        )
    except ExchangeError as e:
        raise http_error(e)
    return {
        "transaction": serialize(transaction),
        "message": f"Transaction {transaction.validation_status.value}"
    }
