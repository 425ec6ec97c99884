"""
Role-based navigation menu
"""

from dataclasses import dataclass
from typing import List, Tuple, Union

from .users import Role, parse_role


@dataclass(frozen=True)
class MenuItem:
    id: str
    path: str
    label: str
    icon: str
    roles: Tuple[Role, ...]


MENU_ITEMS: Tuple[MenuItem, ...] = (
    MenuItem("dashboard", "/", "nav.dashboard", "dashboard", (Role.MANAGER,)),
    MenuItem("withdrawals", "/withdrawals", "nav.withdrawals", "withdrawals",
             (Role.MANAGER, Role.TREASURER)),
    MenuItem("create", "/create", "nav.create", "create", (Role.MANAGER,)),
    MenuItem("cashier", "/cashier", "nav.cashier", "cashier", (Role.MANAGER, Role.CASHIER)),
    MenuItem("treasurer", "/treasurer", "nav.treasurer", "treasurer",
             (Role.MANAGER, Role.TREASURER)),
    MenuItem("dealership-executioner", "/dealership-executioner", "nav.executioner", "executioner",
             (Role.MANAGER, Role.VALIDATOR)),
    MenuItem("debt-management", "/debt-management", "nav.debtManagement", "debtManagement",
             (Role.MANAGER, Role.TREASURER)),
    MenuItem("custody-management", "/custody-management", "nav.cashCustody", "custody",
             (Role.MANAGER, Role.TREASURER, Role.CASHIER)),
    MenuItem("user-management", "/user-management", "nav.userManagement", "userManagement",
             (Role.MANAGER,)),
    MenuItem("wallet-management", "/wallet-management", "nav.walletManagement", "walletManagement",
             (Role.MANAGER, Role.TREASURER)),
)


def get_accessible_menu_items(role: Union[str, Role, None]) -> List[MenuItem]:
    """Managers see every item; no role (or an unknown one) sees nothing"""
    role = parse_role(role)
    if role is None:
        return []
    if role == Role.MANAGER:
        return list(MENU_ITEMS)
    return [item for item in MENU_ITEMS if role in item.roles]


def can_access_menu_item(role: Union[str, Role, None], menu_item_id: str) -> bool:
    role = parse_role(role)
    if role is None:
        return False
    if role == Role.MANAGER:
        return True
    for item in MENU_ITEMS:
        if item.id == menu_item_id:
            return role in item.roles
    return False
