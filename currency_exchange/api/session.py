"""
Login, signup and current-user endpoints
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .auth import (
    ANONYMOUS_USER, ExchangeSystem, create_access_token, get_current_user,
    get_exchange_system, http_error
)
from .schemas import LoginRequest, PasswordCheckRequest, SignupRequest, serialize
from ..errors import ExchangeError
from ..users import Role, validate_password
from ..navigation import get_accessible_menu_items
from ..config import get_config
from ..logging_config import get_logger, log_action


router = APIRouter()
logger = get_logger("exchange.api")


@router.post("/login")
async def login(
    request: LoginRequest,
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Authenticate a user and return a JWT"""
    try:
        user = system.user_manager.authenticate(request.email, request.password)
    except ExchangeError as e:
        log_action(
            logger, "warning", f"Authentication failed: {e}",
            action="login_failed", resource="auth", extra={"email": request.email}
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

    log_action(logger, "info", "User authenticated successfully",
               user_id=user.id, action="login", resource="auth")
    return {
        "access_token": create_access_token(user.id, user.role),
        "token_type": "bearer",
        "expires_in": get_config().jwt_expiry_hours * 3600,
        "user": user.to_public_dict()
    }


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(
    request: SignupRequest,
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Register a new staff account; new accounts start as cashiers"""
    try:
        user = system.user_manager.create_user(
            name=request.name,
            email=request.email,
            password=request.password,
            role=Role.CASHIER,
            phone=request.phone
        )
    except ExchangeError as e:
        raise http_error(e)
    return {"user": user.to_public_dict(), "message": "User created successfully"}


@router.post("/password-check")
async def check_password(request: PasswordCheckRequest):
    """Report password strength without storing anything"""
    return serialize(validate_password(request.password, get_config().password_min_length))


@router.get("/me")
async def get_me(
    user_id: str = Depends(get_current_user),
    system: ExchangeSystem = Depends(get_exchange_system)
):
    """Current user and the menu items their role can open"""
    if user_id == ANONYMOUS_USER:
        return {"user": None, "menu": serialize(get_accessible_menu_items(Role.MANAGER))}
    user = system.user_manager.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": user.to_public_dict(), "menu": serialize(get_accessible_menu_items(user.role))}
