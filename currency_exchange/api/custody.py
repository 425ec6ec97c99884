"""
Cash custody endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .auth import ExchangeSystem, get_exchange_system, http_error, require_roles
from .schemas import (
    AdjustCustodyBalanceRequest, GiveCustodyRequest, RejectCustodyRequest,
    ReturnCustodyRequest, UpdateCustodyStatusRequest, serialize
)
from ..errors import ExchangeError
from ..users import Role


router = APIRouter()

custody_user = require_roles(Role.TREASURER, Role.CASHIER)


@router.post("", status_code=status.HTTP_201_CREATED)
async def give_custody(
    request: GiveCustodyRequest,
    user_id: str = Depends(require_roles(Role.TREASURER)),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Offer cash from a wallet to a cashier"""
    try:
        record = system.custody_manager.give_custody(
            treasurer_id=user_id,
            cashier_id=request.cashier_id,
            wallet_id=request.wallet_id,
            currency_code=request.currency_code,
            amount=request.amount,
            notes=request.notes
        )
    except ExchangeError as e:
        raise http_error(e)
    return {
        "custody_id": record.id,
        "custody": serialize(record),
        "message": "Custody request sent"
    }


@router.get("")
async def list_my_custody(
    user_id: str = Depends(custody_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Custody records the user gave and received"""
    return serialize(system.custody_manager.list_for_user(user_id))


@router.get("/all")
async def list_all_custody(
    user_id: str = Depends(require_roles(Role.TREASURER)),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    return {"custody": serialize(system.custody_manager.list_all())}


@router.get("/cashiers")
async def get_cashiers(
    user_id: str = Depends(custody_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    return {"users": serialize(system.custody_manager.get_cashiers())}


@router.get("/treasurers")
async def get_treasurers(
    user_id: str = Depends(custody_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    return {"users": serialize(system.custody_manager.get_treasurers())}


@router.get("/balances")
async def get_custody_balances(
    mine: bool = False,
    user_id: str = Depends(custody_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Per-user custody balances with display names"""
    return {"balances": serialize(system.custody_manager.get_user_custody_records(user_id if mine else None))}


@router.patch("/balances/{balance_id}")
async def update_custody_balance(
    balance_id: str,
    request: AdjustCustodyBalanceRequest,
    user_id: str = Depends(require_roles(Role.TREASURER)),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        balance = system.custody_manager.update_custody_balance(balance_id, request.delta, user_id=user_id)
    except ExchangeError as e:
        raise http_error(e)
    return serialize(balance)


@router.get("/options")
async def get_custody_options(
    currency_code: Optional[str] = None,
    exclude_empty: bool = True,
    include_wallets: bool = False,
    mine: bool = False,
    user_id: str = Depends(custody_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Custody balances, optionally with wallets, as selectable options"""
    owner = user_id if mine else None
    if include_wallets:
        if not currency_code:
            raise HTTPException(status_code=400, detail="currency_code is required with include_wallets")
        options = system.custody_manager.get_combined_options(currency_code, user_id=owner)
    else:
        options = system.custody_manager.get_custody_options(currency_code, exclude_empty, user_id=owner)
    return {"options": serialize(options)}


@router.get("/{custody_id}")
async def get_custody(
    custody_id: str,
    user_id: str = Depends(custody_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    record = system.custody_manager.get_custody(custody_id)
    if not record:
        raise HTTPException(status_code=404, detail="Custody record not found")
    return serialize(record)


@router.post("/{custody_id}/approve")
async def approve_custody(
    custody_id: str,
    user_id: str = Depends(require_roles(Role.CASHIER)),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        record = system.custody_manager.approve_custody(custody_id, user_id)
    except ExchangeError as e:
        raise http_error(e)
    return {"custody": serialize(record), "message": "Custody approved"}


@router.post("/{custody_id}/reject")
async def reject_custody(
    custody_id: str,
    request: RejectCustodyRequest,
    user_id: str = Depends(require_roles(Role.CASHIER)),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        record = system.custody_manager.reject_custody(custody_id, user_id, request.reason)
    except ExchangeError as e:
        raise http_error(e)
    return {"custody": serialize(record), "message": "Custody rejected"}


@router.post("/{custody_id}/return")
async def return_custody(
    custody_id: str,
    request: ReturnCustodyRequest,
    user_id: str = Depends(custody_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Return the remaining amount of an active custody to a wallet"""
    try:
        record = system.custody_manager.return_custody(
            custody_id, user_id, notes=request.notes, wallet_id=request.wallet_id
        )
    except ExchangeError as e:
        raise http_error(e)
    return {"custody": serialize(record), "message": "Custody returned"}


@router.patch("/{custody_id}/status")
async def update_custody_status(
    custody_id: str,
    request: UpdateCustodyStatusRequest,
    user_id: str = Depends(custody_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        record = system.custody_manager.update_custody_status(
            custody_id, request.status, user_id, request.notes
        )
    except ExchangeError as e:
        raise http_error(e)
    return {"custody": serialize(record)}
