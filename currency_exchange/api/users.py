"""
User management and navigation endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .auth import ExchangeSystem, get_exchange_system, http_error, require_roles
from .schemas import (
    AssignRoleRequest, ChangePasswordRequest, CreateUserRequest, UpdateUserRequest, serialize
)
from ..errors import ExchangeError
from ..navigation import can_access_menu_item, get_accessible_menu_items
from ..users import Role


router = APIRouter()
navigation_router = APIRouter()

manager = require_roles(Role.MANAGER)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    request: CreateUserRequest,
    user_id: str = Depends(manager),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Create a staff account"""
    try:
        user = system.user_manager.create_user(
            name=request.name,
            email=request.email,
            password=request.password,
            role=request.role,
            phone=request.phone
        )
    except ExchangeError as e:
        raise http_error(e)
    return {"user_id": user.id, "user": user.to_public_dict(), "message": "User created successfully"}


@router.get("")
async def list_users(
    role: Optional[str] = None,
    user_id: str = Depends(manager),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        users = system.user_manager.list_users(role=role)
    except ExchangeError as e:
        raise http_error(e)
    return {"users": serialize(users)}


@router.get("/{target_id}")
async def get_user(
    target_id: str,
    user_id: str = Depends(manager),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    user = system.user_manager.get_user(target_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user.to_public_dict()


@router.patch("/{target_id}")
async def update_user(
    target_id: str,
    request: UpdateUserRequest,
    user_id: str = Depends(manager),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    try:
        user = system.user_manager.update_user(
            target_id, name=request.name, phone=request.phone, is_active=request.is_active
        )
    except ExchangeError as e:
        raise http_error(e)
    return user.to_public_dict()


@router.put("/{target_id}/role")
async def assign_role(
    target_id: str,
    request: AssignRoleRequest,
    user_id: str = Depends(manager),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Change a user's role; only managers may do this"""
    try:
        user = system.user_manager.assign_role(user_id, target_id, request.role)
    except ExchangeError as e:
        raise http_error(e)
    return user.to_public_dict()


@router.put("/{target_id}/password")
async def change_password(
    target_id: str,
    request: ChangePasswordRequest,
    user_id: str = Depends(require_roles()),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Users change their own password; managers may change anyone's"""
    if target_id != user_id and not system.user_manager.user_has_any_role(user_id, [Role.MANAGER]):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    try:
        system.user_manager.change_password(target_id, request.new_password)
    except ExchangeError as e:
        raise http_error(e)
    return {"message": "Password changed successfully"}


@navigation_router.get("/{role}")
async def get_menu(role: str):
    """Menu items a role can open"""
    return {"role": role, "items": serialize(get_accessible_menu_items(role))}


@navigation_router.get("/{role}/{menu_item_id}")
async def check_menu_access(role: str, menu_item_id: str):
    return {"role": role, "menu_item_id": menu_item_id, "allowed": can_access_menu_item(role, menu_item_id)}
