"""
Tests for staff accounts, roles, passwords and the navigation menu
"""

import pytest

from currency_exchange.storage import InMemoryStorage
from currency_exchange.audit import AuditTrail, AuditEventType
from currency_exchange.users import (
    UserManager, Role, parse_role, has_any_role, validate_password, password_strength
)
from currency_exchange.navigation import get_accessible_menu_items, can_access_menu_item
from currency_exchange.errors import (
    DuplicateError, NotFoundError, PermissionDeniedError, ValidationError
)


PASSWORD = "Secret123!"


class TestRoles:
    """Test role parsing and allow-list checks"""

    def test_parse_role(self):
        assert parse_role("Cashier") == Role.CASHIER
        assert parse_role(Role.VALIDATOR) == Role.VALIDATOR
        assert parse_role("owner") is None
        assert parse_role(None) is None

    def test_manager_passes_every_check(self):
        assert has_any_role("manager", [Role.CASHIER])

    def test_allow_list(self):
        assert has_any_role("treasurer", ["cashier", "treasurer"])
        assert not has_any_role("cashier", [Role.TREASURER])
        assert not has_any_role(None, [Role.CASHIER])

    def test_empty_allow_list_admits_everyone(self):
        assert has_any_role("validator", [])
        assert has_any_role(None, [])
        assert has_any_role("owner", [])
        assert not has_any_role("owner", [Role.CASHIER])


class TestPasswordValidation:
    """Test password policy"""

    def test_strong_password(self):
        check = validate_password(PASSWORD)
        assert check.is_valid
        assert check.errors == []
        assert check.suggestions == []

    def test_weak_password_lists_every_problem(self):
        check = validate_password("abc")
        assert not check.is_valid
        assert len(check.errors) == 3
        assert check.suggestions

    def test_strength_ordering(self):
        assert password_strength("") == 0
        assert password_strength("aaaaaaa") < password_strength("Abcdef12")
        assert password_strength("Abcdef12") < password_strength("Abcdef12!xyz")
        assert password_strength("Abcdef12!xyzQRS") <= 100


class TestUserManager:
    """Test account management and authentication"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.users = UserManager(self.storage, self.audit)
        self.manager = self.users.create_user("Mona", "mona@shop.ly", PASSWORD, Role.MANAGER)

    def test_create_user(self):
        user = self.users.create_user("Sami", " Sami@Shop.ly ", PASSWORD, "cashier", phone="0911")

        assert user.email == "sami@shop.ly"
        assert user.role == Role.CASHIER
        assert user.password_hash and PASSWORD not in user.password_hash
        assert "password_hash" not in user.to_public_dict()
        assert self.users.get_user_by_email("SAMI@shop.ly").id == user.id

    def test_default_role_is_cashier(self):
        assert self.users.create_user("Ali", "ali@shop.ly", PASSWORD).role == Role.CASHIER

    @pytest.mark.parametrize("name,email,password,role", [
        ("", "x@shop.ly", PASSWORD, "cashier"),
        ("X", "not-an-email", PASSWORD, "cashier"),
        ("X", "x@shop.ly", "weak", "cashier"),
        ("X", "x@shop.ly", PASSWORD, "owner"),
    ])
    def test_create_validation(self, name, email, password, role):
        with pytest.raises(ValidationError):
            self.users.create_user(name, email, password, role)

    def test_duplicate_email(self):
        with pytest.raises(DuplicateError):
            self.users.create_user("Mona 2", "MONA@shop.ly", PASSWORD)

    def test_authenticate(self):
        user = self.users.authenticate("mona@shop.ly", PASSWORD)
        assert user.id == self.manager.id
        assert self.audit.get_events_by_type(AuditEventType.LOGIN_SUCCESS)

    def test_authenticate_failures(self):
        with pytest.raises(PermissionDeniedError):
            self.users.authenticate("mona@shop.ly", "Wrong1234")
        with pytest.raises(PermissionDeniedError):
            self.users.authenticate("nobody@shop.ly", PASSWORD)
        assert len(self.audit.get_events_by_type(AuditEventType.LOGIN_FAILED)) == 2

    def test_inactive_user_cannot_login(self):
        self.users.update_user(self.manager.id, is_active=False)
        with pytest.raises(PermissionDeniedError):
            self.users.authenticate("mona@shop.ly", PASSWORD)
        assert not self.users.user_has_any_role(self.manager.id, [Role.MANAGER])

    def test_empty_role_list_skips_user_lookup(self):
        assert self.users.user_has_any_role("missing-user", [])
        assert not self.users.user_has_any_role("missing-user", [Role.CASHIER])

    def test_change_password(self):
        self.users.change_password(self.manager.id, "Another456")
        assert self.users.authenticate("mona@shop.ly", "Another456")
        with pytest.raises(ValidationError):
            self.users.change_password(self.manager.id, "short")

    def test_assign_role(self):
        cashier = self.users.create_user("Sami", "sami@shop.ly", PASSWORD)
        updated = self.users.assign_role(self.manager.id, cashier.id, "validator")

        assert updated.role == Role.VALIDATOR
        assert self.users.get_user_role(cashier.id) == Role.VALIDATOR
        event = self.audit.get_events_by_type(AuditEventType.ROLE_ASSIGNED)[0]
        assert event.metadata == {"old_role": "cashier", "new_role": "validator"}

    def test_only_managers_assign_roles(self):
        cashier = self.users.create_user("Sami", "sami@shop.ly", PASSWORD)
        with pytest.raises(PermissionDeniedError):
            self.users.assign_role(cashier.id, cashier.id, "manager")

    def test_list_users_by_role(self):
        self.users.create_user("Zed", "zed@shop.ly", PASSWORD, "cashier")
        self.users.create_user("Amal", "amal@shop.ly", PASSWORD, "cashier")

        assert [u.name for u in self.users.list_users("cashier")] == ["Amal", "Zed"]
        assert len(self.users.list_users()) == 3

    def test_require_missing_user(self):
        with pytest.raises(NotFoundError):
            self.users.require_user("missing")


class TestNavigation:
    """Test role-based menu access"""

    def test_manager_sees_everything(self):
        assert len(get_accessible_menu_items("manager")) == 10

    def test_cashier_menu(self):
        ids = [item.id for item in get_accessible_menu_items(Role.CASHIER)]
        assert ids == ["cashier", "custody-management"]

    def test_unknown_role_sees_nothing(self):
        assert get_accessible_menu_items("owner") == []
        assert get_accessible_menu_items(None) == []

    def test_can_access_menu_item(self):
        assert can_access_menu_item("validator", "dealership-executioner")
        assert not can_access_menu_item("validator", "debt-management")
        assert can_access_menu_item("manager", "anything")
        assert not can_access_menu_item("treasurer", "missing")
