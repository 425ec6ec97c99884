"""
Users and Roles Module

Shop staff accounts, their single role, password handling and the
role checks the rest of the system relies on.
"""

import hashlib
import re
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import (
    DuplicateError, NotFoundError, PermissionDeniedError, ValidationError
)
from .logging_config import get_logger, log_action


logger = get_logger("exchange.users")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
SPECIAL_CHARS = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")


class Role(Enum):
    """Staff roles"""
    MANAGER = "manager"          # Full access
    TREASURER = "treasurer"      # Wallets, withdrawals, debts, gives custody
    CASHIER = "cashier"          # Buys and sells, receives custody
    VALIDATOR = "validator"      # Dealership executioner, validates large deals

    @property
    def description(self) -> str:
        return ROLE_DESCRIPTIONS[self]


ROLE_DESCRIPTIONS = {
    Role.MANAGER: "Full access to every part of the shop",
    Role.TREASURER: "Treasury management, withdrawals, debts and cash custody",
    Role.CASHIER: "Cashier interface and cash custody",
    Role.VALIDATOR: "Dealership executioner: validates large transactions",
}


def parse_role(value: Union[str, Role, None]) -> Optional[Role]:
    """Role from its name; None for empty or unknown values"""
    if isinstance(value, Role):
        return value
    if not value:
        return None
    try:
        return Role(str(value).strip().lower())
    except ValueError:
        return None


def has_any_role(role: Union[str, Role, None], allowed: Iterable[Union[str, Role]]) -> bool:
    """
    Check a role against an allow-list.

    An empty allow-list admits everyone, even a caller without a role.
    Managers pass every other check.
    """
    allowed_roles = [parse_role(r) for r in allowed]
    if not allowed_roles:
        return True
    role = parse_role(role)
    if role is None:
        return False
    return role == Role.MANAGER or role in allowed_roles


@dataclass
class PasswordCheck:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    strength: int = 0


def password_strength(password: str) -> int:
    """Score 0-100 from length, character classes and repeated runs"""
    if not password:
        return 0
    classes = [
        bool(re.search(r"[A-Z]", password)),
        bool(re.search(r"[a-z]", password)),
        bool(re.search(r"[0-9]", password)),
        bool(SPECIAL_CHARS.search(password)),
    ]
    score = min(25, len(password) * 2)
    score += 10 * sum(classes[:3]) + (15 if classes[3] else 0)
    types_count = sum(classes)
    if types_count >= 3:
        score += 10
    if types_count == 4:
        score += 10
    repeats = re.findall(r"((.)\2+)", password)
    if repeats:
        score -= min(20, len(repeats) * 5)
    return max(0, min(100, score))


def validate_password(password: str, min_length: int = 8) -> PasswordCheck:
    """Length, upper, lower and digit are required; a special character is advised"""
    password = password or ""
    errors = []
    if len(password) < min_length:
        errors.append(f"Password must be at least {min_length} characters")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", password):
        errors.append("Password must contain at least one number")
    suggestions = []
    if not SPECIAL_CHARS.search(password):
        suggestions.append("Consider adding a special character for stronger security")
    return PasswordCheck(
        is_valid=not errors,
        errors=errors,
        suggestions=suggestions,
        strength=password_strength(password)
    )


def is_valid_email(email: str) -> bool:
    return bool(email and EMAIL_PATTERN.match(email))


@dataclass
class User(StorageRecord):
    """Shop staff member"""
    name: str
    email: str
    role: Role
    phone: Optional[str] = None
    password_hash: str = ""
    password_salt: str = ""
    is_active: bool = True

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role.value,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
        }


class UserManager:
    """
    Manages staff accounts and role assignment
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail, password_min_length: int = 8):
        self.storage = storage
        self.audit_trail = audit_trail
        self.users_table = "users"
        self.password_min_length = password_min_length

    def _hash_password(self, password: str, salt: str) -> str:
        return hashlib.scrypt(password.encode(), salt=salt.encode(), n=16384, r=8, p=1).hex()

    def _set_password(self, user: User, password: str) -> None:
        check = validate_password(password, self.password_min_length)
        if not check.is_valid:
            raise ValidationError("; ".join(check.errors))
        user.password_salt = secrets.token_hex(16)
        user.password_hash = self._hash_password(password, user.password_salt)

    def _save(self, user: User) -> None:
        self.storage.save(self.users_table, user.id, user.to_dict())

    def create_user(self, name: str, email: str, password: str,
                    role: Union[str, Role] = Role.CASHIER, phone: Optional[str] = None) -> User:
        """
        Create a staff account

        Raises:
            ValidationError: Missing name, malformed email, weak password or unknown role
            DuplicateError: Email already registered
        """
        if not name or not name.strip():
            raise ValidationError("Name is required")
        email = (email or "").strip().lower()
        if not is_valid_email(email):
            raise ValidationError(f"Invalid email address: {email}")
        parsed_role = parse_role(role)
        if parsed_role is None:
            raise ValidationError(f"Unknown role: {role}")
        if self.get_user_by_email(email):
            raise DuplicateError(f"User with email {email} already exists")

        now = datetime.now(timezone.utc)
        user = User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name.strip(),
            email=email,
            role=parsed_role,
            phone=phone
        )
        self._set_password(user, password)
        self._save(user)

        self.audit_trail.log_event(
            event_type=AuditEventType.USER_CREATED,
            entity_type="user",
            entity_id=user.id,
            metadata={"email": email, "role": parsed_role.value}
        )
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        data = self.storage.load(self.users_table, user_id)
        return User.from_dict(data) if data else None

    def require_user(self, user_id: str) -> User:
        user = self.get_user(user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        matches = self.storage.find(self.users_table, {"email": (email or "").strip().lower()})
        return User.from_dict(matches[0]) if matches else None

    def list_users(self, role: Union[str, Role, None] = None) -> List[User]:
        users = [User.from_dict(d) for d in self.storage.load_all(self.users_table)]
        if role is not None:
            wanted = parse_role(role)
            users = [u for u in users if u.role == wanted]
        return sorted(users, key=lambda u: u.name.lower())

    def update_user(self, user_id: str, name: Optional[str] = None,
                    phone: Optional[str] = None, is_active: Optional[bool] = None) -> User:
        """Update profile fields; id, email and role are not editable here"""
        user = self.require_user(user_id)
        if name is not None:
            if not name.strip():
                raise ValidationError("Name is required")
            user.name = name.strip()
        if phone is not None:
            user.phone = phone
        if is_active is not None:
            user.is_active = is_active
        user.updated_at = datetime.now(timezone.utc)
        self._save(user)
        self.audit_trail.log_event(
            event_type=AuditEventType.USER_UPDATED,
            entity_type="user",
            entity_id=user.id,
            metadata={"name": user.name, "phone": user.phone, "is_active": user.is_active}
        )
        return user

    def change_password(self, user_id: str, new_password: str) -> None:
        user = self.require_user(user_id)
        self._set_password(user, new_password)
        user.updated_at = datetime.now(timezone.utc)
        self._save(user)

    def assign_role(self, actor_id: str, user_id: str, role: Union[str, Role]) -> User:
        """Only managers can assign roles"""
        actor = self.require_user(actor_id)
        if actor.role != Role.MANAGER:
            raise PermissionDeniedError("Only managers can assign roles")
        new_role = parse_role(role)
        if new_role is None:
            raise ValidationError(f"Unknown role: {role}")

        user = self.require_user(user_id)
        old_role = user.role
        user.role = new_role
        user.updated_at = datetime.now(timezone.utc)
        self._save(user)

        self.audit_trail.log_event(
            event_type=AuditEventType.ROLE_ASSIGNED,
            entity_type="user",
            entity_id=user.id,
            metadata={"old_role": old_role.value, "new_role": new_role.value},
            user_id=actor_id
        )
        log_action(logger, "info", f"Role {new_role.value} assigned",
                   user_id=actor_id, action="assign_role", resource=f"user:{user.id}")
        return user

    def get_user_role(self, user_id: str) -> Optional[Role]:
        user = self.get_user(user_id)
        return user.role if user else None

    def user_has_any_role(self, user_id: str, roles: Iterable[Union[str, Role]]) -> bool:
        roles = list(roles)
        if not roles:
            return True
        user = self.get_user(user_id)
        if not user or not user.is_active:
            return False
        return has_any_role(user.role, roles)

    def authenticate(self, email: str, password: str) -> User:
        """
        Verify credentials

        Raises:
            PermissionDeniedError: Unknown email, inactive account or wrong password
        """
        user = self.get_user_by_email(email)
        if not user or not user.is_active or not user.password_salt:
            self.audit_trail.log_event(
                event_type=AuditEventType.LOGIN_FAILED,
                entity_type="user",
                entity_id=(email or "").lower(),
                metadata={"reason": "unknown_or_inactive"}
            )
            raise PermissionDeniedError("Invalid email or password")

        expected = self._hash_password(password or "", user.password_salt)
        if not secrets.compare_digest(expected, user.password_hash):
            self.audit_trail.log_event(
                event_type=AuditEventType.LOGIN_FAILED,
                entity_type="user",
                entity_id=user.id,
                metadata={"reason": "bad_password"}
            )
            raise PermissionDeniedError("Invalid email or password")

        self.audit_trail.log_event(
            event_type=AuditEventType.LOGIN_SUCCESS,
            entity_type="user",
            entity_id=user.id,
            user_id=user.id
        )
        return user
