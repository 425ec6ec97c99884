"""
Wallet management endpoints
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .auth import ExchangeSystem, get_exchange_system, http_error, require_roles
from .schemas import (
    AddCurrencyRequest, CreateWalletRequest, SetBalanceRequest, UpdateWalletRequest,
    WithdrawRequest, serialize
)
from ..errors import ExchangeError
from ..users import Role
from ..wallets import get_custody_summary


router = APIRouter()

can_manage = require_roles(Role.MANAGER, Role.TREASURER)
any_user = require_roles()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_wallet(
    request: CreateWalletRequest,
    user_id: str = Depends(can_manage),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Create a new wallet"""
    try:
        wallet = system.wallet_manager.create_wallet(
            name=request.name,
            usd=request.usd,
            lyd=request.lyd,
            currencies=request.currencies,
            is_treasury=request.is_treasury,
            user_id=request.user_id
        )
    except ExchangeError as e:
        raise http_error(e)
    return {
        "wallet_id": wallet.id,
        "wallet": serialize(system.wallet_manager.wallet_view(wallet)),
        "message": "Wallet created successfully"
    }


@router.get("")
async def list_wallets(
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """All wallets with active custody merged in"""
    wallets = system.wallet_manager.list_wallets(system.custody_manager.list_all())
    return {"wallets": serialize(wallets)}


@router.get("/summary")
async def get_wallets_summary(
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Totals across all wallets, plus the active custody summary"""
    summary = system.wallet_manager.get_wallets_summary()
    summary["custody"] = get_custody_summary(system.custody_manager.list_all())
    return serialize(summary)


@router.get("/non-treasury")
async def list_non_treasury_wallets(
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    return {"wallets": serialize(system.wallet_manager.list_non_treasury_wallets())}


@router.get("/{wallet_id}")
async def get_wallet(
    wallet_id: str,
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Get wallet details"""
    wallet = system.wallet_manager.get_wallet(wallet_id)
    if not wallet:
        raise HTTPException(status_code=404, detail="Wallet not found")
    return serialize(system.wallet_manager.wallet_view(wallet))


@router.patch("/{wallet_id}")
async def update_wallet(
    wallet_id: str,
    request: UpdateWalletRequest,
    user_id: str = Depends(can_manage),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        wallet = system.wallet_manager.update_wallet(
            wallet_id, name=request.name, is_treasury=request.is_treasury, user_id=request.user_id
        )
    except ExchangeError as e:
        raise http_error(e)
    return serialize(system.wallet_manager.wallet_view(wallet))


@router.delete("/{wallet_id}")
async def delete_wallet(
    wallet_id: str,
    user_id: str = Depends(can_manage),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        system.wallet_manager.delete_wallet(wallet_id)
    except ExchangeError as e:
        raise http_error(e)
    return {"message": "Wallet deleted successfully"}


@router.get("/{wallet_id}/balances")
async def get_balances(
    wallet_id: str,
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        return {"wallet_id": wallet_id, "balances": serialize(system.wallet_manager.get_balances(wallet_id))}
    except ExchangeError as e:
        raise http_error(e)


@router.post("/{wallet_id}/currencies", status_code=status.HTTP_201_CREATED)
async def add_currency(
    wallet_id: str,
    request: AddCurrencyRequest,
    user_id: str = Depends(can_manage),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Add a currency to a wallet"""
    try:
        row = system.wallet_manager.add_currency(wallet_id, request.currency_code, request.initial_balance)
    except ExchangeError as e:
        raise http_error(e)
    return serialize(row)


@router.put("/{wallet_id}/currencies/{currency_code}")
async def set_currency_balance(
    wallet_id: str,
    currency_code: str,
    request: SetBalanceRequest,
    user_id: str = Depends(can_manage),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        balance = system.wallet_manager.set_currency_balance(wallet_id, currency_code, request.balance)
    except ExchangeError as e:
        raise http_error(e)
    return {"wallet_id": wallet_id, "currency_code": currency_code.upper(), "balance": str(balance)}


@router.delete("/{wallet_id}/currencies/{currency_code}")
async def remove_currency(
    wallet_id: str,
    currency_code: str,
    user_id: str = Depends(can_manage),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        system.wallet_manager.remove_currency(wallet_id, currency_code)
    except ExchangeError as e:
        raise http_error(e)
    return {"message": "Currency removed successfully"}


@router.post("/{wallet_id}/withdraw")
async def withdraw(
    wallet_id: str,
    request: WithdrawRequest,
    user_id: str = Depends(can_manage),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Withdraw cash from a wallet"""
    try:
        transaction = system.transaction_manager.withdraw_currency(
            wallet_id, request.currency_code, request.amount,
            reason=request.reason, user_id=user_id
        )
    except ExchangeError as e:
        raise http_error(e)
    return {
        "transaction_id": transaction.id,
        "balances": serialize(system.wallet_manager.get_balances(wallet_id)),
        "message": "Withdrawal processed successfully"
    }


@router.get("/{wallet_id}/stats")
async def get_wallet_stats(
    wallet_id: str,
    user_id: str = Depends(any_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Dashboard statistics for a wallet"""
    try:
        return serialize(system.analytics.wallet_stats(wallet_id))
    except ExchangeError as e:
        raise http_error(e)
