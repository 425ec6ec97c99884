"""
Debt management endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import ExchangeSystem, get_exchange_system, http_error, require_roles
from .schemas import CreateDebtRequest, serialize
from ..errors import ExchangeError
from ..users import Role


router = APIRouter()

debt_user = require_roles(Role.TREASURER)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_debt(
    request: CreateDebtRequest,
    user_id: str = Depends(debt_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Record a debt and apply it to the wallet"""
    try:
        debt = system.debt_manager.create_debt(
            user_id=user_id,
            person_name=request.person_name,
            wallet_id=request.wallet_id,
            currency_code=request.currency_code,
            amount=request.amount,
            notes=request.notes,
            is_owed=request.is_owed
        )
    except ExchangeError as e:
        raise http_error(e)
    return {"debt_id": debt.id, "debt": serialize(debt), "message": "Debt created successfully"}


@router.get("")
async def list_debts(
    user_id: str = Depends(debt_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Debts the user owes and debts owed to the user"""
    return serialize(system.debt_manager.list_debts(user_id))


@router.get("/summary")
async def get_debt_summary(
    user_id: str = Depends(debt_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    return serialize(system.debt_manager.get_debt_summary(user_id))


@router.post("/{debt_id}/pay")
async def mark_debt_paid(
    debt_id: str,
    user_id: str = Depends(debt_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        debt = system.debt_manager.mark_paid(debt_id, user_id)
    except ExchangeError as e:
        raise http_error(e)
    return {"debt": serialize(debt), "message": "Debt marked as paid"}


@router.delete("/{debt_id}")
async def delete_debt(
    debt_id: str,
    user_id: str = Depends(debt_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        system.debt_manager.delete_debt(debt_id, user_id)
    except ExchangeError as e:
        raise http_error(e)
    return {"message": "Debt deleted successfully"}
