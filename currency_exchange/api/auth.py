"""
System container, authentication and authorization dependencies
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..storage import create_storage
from ..audit import AuditTrail
from ..currency import CurrencyRegistry
from ..wallets import WalletManager
from ..users import Role, UserManager, has_any_role
from ..notifications import NotificationManager
from ..custody import CustodyManager
from ..transactions import TransactionManager
from ..debts import DebtManager
from ..exchange_rates import ExchangeRateManager
from ..manager_prices import ManagerPriceManager
from ..analytics import AnalyticsService
from ..errors import (
    DuplicateError, ExchangeError, InsufficientFundsError, InvalidStateError,
    NotFoundError, PermissionDeniedError
)
from ..config import get_config


class ExchangeSystem:
    """Exchange shop with all components initialized"""

    def __init__(self, database_url: Optional[str] = None):
        config = get_config()

        self.storage = create_storage(database_url or config.database_url)
        self.audit_trail = AuditTrail(self.storage, enabled=config.enable_audit_logging)

        self.currency_registry = CurrencyRegistry(self.storage, self.audit_trail)
        if config.seed_currency_types:
            self.currency_registry.seed_defaults()

        self.user_manager = UserManager(self.storage, self.audit_trail, config.password_min_length)
        self.notification_manager = NotificationManager(self.storage)
        self.wallet_manager = WalletManager(self.storage, self.audit_trail, self.currency_registry)
        self.custody_manager = CustodyManager(
            self.storage, self.audit_trail, self.wallet_manager,
            self.user_manager, self.notification_manager
        )
        self.transaction_manager = TransactionManager(
            self.storage, self.audit_trail, self.wallet_manager, self.custody_manager,
            user_manager=self.user_manager,
            validation_threshold=config.validation_threshold,
            recent_window=config.recent_transactions_window
        )
        self.debt_manager = DebtManager(self.storage, self.audit_trail, self.wallet_manager)
        self.exchange_rate_manager = ExchangeRateManager(
            self.storage, self.audit_trail, self.currency_registry,
            default_rate_to_usd=config.default_rate_to_usd,
            default_rate_to_lyd=config.default_rate_to_lyd
        )
        self.manager_price_manager = ManagerPriceManager(
            self.storage, self.audit_trail,
            default_buy_price=config.default_buy_price,
            default_sell_price=config.default_sell_price
        )
        self.analytics = AnalyticsService(
            self.wallet_manager, self.transaction_manager, self.custody_manager,
            recent_window=config.recent_transactions_window
        )


# Global exchange system instance, built on first use
exchange_system: Optional[ExchangeSystem] = None

AUTH_ENABLED = get_config().auth_enabled

# Acting user when authentication is disabled
ANONYMOUS_USER = "test_user"

security = HTTPBearer(auto_error=False)


def get_exchange_system() -> ExchangeSystem:
    global exchange_system
    if exchange_system is None:
        exchange_system = ExchangeSystem()
    return exchange_system


def http_error(error: ExchangeError) -> HTTPException:
    """Map a domain error onto an HTTP error"""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, PermissionDeniedError):
        return HTTPException(status_code=403, detail=str(error))
    if isinstance(error, (DuplicateError, InvalidStateError)):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, InsufficientFundsError):
        return HTTPException(status_code=422, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


def create_access_token(user_id: str, role: Role) -> str:
    config = get_config()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "role": role.value,
        "exp": now + timedelta(hours=config.jwt_expiry_hours),
        "iat": now
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> str:
    """Dependency that validates the bearer JWT and returns the user id"""
    if not AUTH_ENABLED:
        return ANONYMOUS_USER

    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    config = get_config()
    try:
        payload = jwt.decode(credentials.credentials, config.jwt_secret, algorithms=[config.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return user_id


def require_roles(*roles: Role):
    """Dependency factory; managers always pass, no roles means any signed-in user"""
    def check(user_id: str = Depends(get_current_user),
              system: ExchangeSystem = Depends(get_exchange_system)) -> str:
        if not AUTH_ENABLED:
            return user_id
        user = system.user_manager.get_user(user_id)
        if not user or not user.is_active:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown or inactive user")
        if not has_any_role(user.role, roles):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return user_id
    return check
