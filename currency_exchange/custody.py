"""
Cash Custody Module

A treasurer hands cash from a wallet to a cashier. The hand-off starts as
pending and the cashier approves or rejects it through a notification.
Approval moves the amount out of the wallet into the cashier's custody;
returning moves whatever is left back into a wallet.

Each cashier also has a running custody balance per currency which always
equals the sum of their active custody records, unless adjusted by hand.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .currency import normalize_code, quantize_amount, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import (
    InsufficientFundsError, InvalidStateError, NotFoundError,
    PermissionDeniedError, ValidationError
)
from .notifications import NotificationAction, NotificationManager, NotificationType
from .users import Role, UserManager, has_any_role
from .wallets import WalletManager
from .logging_config import get_logger, log_action


logger = get_logger("exchange.custody")

ZERO = Decimal("0")


class CustodyStatus(Enum):
    """Cash custody lifecycle"""
    PENDING = "pending"      # Waiting for the cashier
    ACTIVE = "active"        # Cash is with the cashier
    REJECTED = "rejected"    # Cashier declined
    RETURNED = "returned"    # Handed back or fully used


@dataclass
class CashCustody(StorageRecord):
    """One hand-off of cash from a treasurer to a cashier"""
    treasurer_id: str
    cashier_id: str
    currency_code: str
    amount: Decimal
    status: CustodyStatus
    wallet_id: Optional[str] = None
    notes: str = ""
    is_returned: bool = False
    return_notes: Optional[str] = None


@dataclass
class CustodyBalance(StorageRecord):
    """Running custody total of one user in one currency"""
    user_id: str
    currency_code: str
    amount: Decimal
    name: Optional[str] = None


def custody_balance_id(user_id: str, currency_code: str) -> str:
    return f"{user_id}:{currency_code}"


class CustodyManager:
    """
    Manages cash custody hand-offs and per-user custody balances
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        wallet_manager: WalletManager,
        user_manager: UserManager,
        notification_manager: NotificationManager
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.wallet_manager = wallet_manager
        self.user_manager = user_manager
        self.notification_manager = notification_manager
        self.custody_table = "cash_custody"
        self.balances_table = "custody"

        notification_manager.register_action_handler(
            NotificationType.CUSTODY_REQUEST, self._handle_custody_request
        )

    # Records

    def _save(self, record: CashCustody) -> None:
        record.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.custody_table, record.id, record.to_dict())

    def get_custody(self, custody_id: str) -> Optional[CashCustody]:
        data = self.storage.load(self.custody_table, custody_id)
        return CashCustody.from_dict(data) if data else None

    def require_custody(self, custody_id: str) -> CashCustody:
        if not custody_id:
            raise ValidationError("Custody ID is required")
        record = self.get_custody(custody_id)
        if not record:
            raise NotFoundError(f"Custody record {custody_id} not found")
        return record

    def list_all(self) -> List[CashCustody]:
        return [CashCustody.from_dict(d) for d in self.storage.load_all(self.custody_table)]

    def list_active(self, cashier_id: Optional[str] = None,
                    currency_code: Optional[str] = None) -> List[CashCustody]:
        """Active records, oldest first"""
        filters: Dict[str, Any] = {"status": CustodyStatus.ACTIVE.value}
        if cashier_id:
            filters["cashier_id"] = cashier_id
        if currency_code:
            filters["currency_code"] = normalize_code(currency_code)
        records = [CashCustody.from_dict(d) for d in self.storage.find(self.custody_table, filters)]
        records.sort(key=lambda r: r.created_at)
        return records

    def list_for_user(self, user_id: str) -> Dict[str, List[CashCustody]]:
        """Records the user gave (as treasurer) and received (as cashier), newest first"""
        def newest_first(filters):
            records = [CashCustody.from_dict(d) for d in self.storage.find(self.custody_table, filters)]
            records.sort(key=lambda r: r.created_at, reverse=True)
            return records

        return {
            "given": newest_first({"treasurer_id": user_id}),
            "received": newest_first({"cashier_id": user_id}),
        }

    def get_cashiers(self):
        return self.user_manager.list_users(role=Role.CASHIER)

    def get_treasurers(self):
        return self.user_manager.list_users(role=Role.TREASURER)

    # Lifecycle

    def give_custody(
        self,
        treasurer_id: str,
        cashier_id: str,
        wallet_id: str,
        currency_code: str,
        amount,
        notes: str = ""
    ) -> CashCustody:
        """
        Offer cash from a wallet to a cashier

        The record starts pending and the cashier gets a notification asking
        them to approve or reject it. No balances move until approval.

        Raises:
            ValidationError: Missing cashier, wallet, currency or non-positive amount
            PermissionDeniedError: Giver is not a treasurer or recipient not a cashier
            InsufficientFundsError: Wallet balance is below the amount
        """
        if not cashier_id:
            raise ValidationError("Cashier ID is required")
        if not wallet_id:
            raise ValidationError("Wallet ID is required")
        code = normalize_code(currency_code)
        amount = quantize_amount(to_decimal(amount))
        if amount <= ZERO:
            raise ValidationError("Valid amount is required")

        treasurer = self.user_manager.require_user(treasurer_id)
        if not has_any_role(treasurer.role, [Role.TREASURER]):
            raise PermissionDeniedError("Only treasurers can give cash custody")
        cashier = self.user_manager.require_user(cashier_id)
        if cashier.role != Role.CASHIER:
            raise ValidationError(f"User {cashier.name} is not a cashier")

        wallet = self.wallet_manager.require_wallet(wallet_id)
        balance = self.wallet_manager.get_balance(wallet_id, code)
        if balance < amount:
            raise InsufficientFundsError(
                f"Insufficient funds: Wallet has {balance} {code}, but {amount} {code} is required"
            )

        now = datetime.now(timezone.utc)
        record = CashCustody(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            treasurer_id=treasurer_id,
            cashier_id=cashier_id,
            wallet_id=wallet_id,
            currency_code=code,
            amount=amount,
            status=CustodyStatus.PENDING,
            notes=notes or ""
        )

        with self.storage.atomic():
            self._save(record)
            self.notification_manager.create_notification(
                user_id=cashier_id,
                title="Custody Request",
                message=f"{treasurer.name} wants to give you {amount:.2f} {code} from {wallet.name}",
                notification_type=NotificationType.CUSTODY_REQUEST,
                reference_id=record.id,
                requires_action=True
            )
            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTODY_REQUESTED,
                entity_type="cash_custody",
                entity_id=record.id,
                metadata={
                    "cashier_id": cashier_id,
                    "wallet_id": wallet_id,
                    "currency_code": code,
                    "amount": amount
                },
                user_id=treasurer_id
            )

        log_action(logger, "info", f"Custody of {amount} {code} offered to {cashier.name}",
                   user_id=treasurer_id, action="give_custody", resource=f"cash_custody:{record.id}")
        return record

    def _require_pending(self, record: CashCustody) -> None:
        if record.status != CustodyStatus.PENDING:
            raise InvalidStateError(
                f"Custody record {record.id} is {record.status.value}, expected pending"
            )

    def approve_custody(self, custody_id: str, user_id: str) -> CashCustody:
        """Cashier accepts: wallet debited, custody balance credited, record active"""
        record = self.require_custody(custody_id)
        if user_id != record.cashier_id:
            raise PermissionDeniedError("Only the receiving cashier can approve this custody")
        self._require_pending(record)

        with self.storage.atomic():
            if record.wallet_id:
                self.wallet_manager.debit(
                    record.wallet_id, record.currency_code, record.amount,
                    reason=f"custody:{record.id}", user_id=user_id
                )
            self._adjust_balance(record.cashier_id, record.currency_code, record.amount)
            record.status = CustodyStatus.ACTIVE
            self._save(record)
            self.notification_manager.create_notification(
                user_id=record.treasurer_id,
                title="Custody Request Approved",
                message=f"Your custody of {record.amount:.2f} {record.currency_code} was approved",
                notification_type=NotificationType.CUSTODY_APPROVED,
                reference_id=record.id
            )
            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTODY_APPROVED,
                entity_type="cash_custody",
                entity_id=record.id,
                metadata={"amount": record.amount, "currency_code": record.currency_code},
                user_id=user_id
            )
        return record

    def reject_custody(self, custody_id: str, user_id: str, reason: Optional[str] = None) -> CashCustody:
        """Cashier declines; the reason is appended to the notes"""
        record = self.require_custody(custody_id)
        if user_id != record.cashier_id:
            raise PermissionDeniedError("Only the receiving cashier can reject this custody")
        self._require_pending(record)

        with self.storage.atomic():
            record.status = CustodyStatus.REJECTED
            if reason:
                record.notes = f"{record.notes}\nRejection reason: {reason}".strip()
            self._save(record)
            message = f"Your custody of {record.amount:.2f} {record.currency_code} was rejected"
            if reason:
                message += f". Reason: {reason}"
            self.notification_manager.create_notification(
                user_id=record.treasurer_id,
                title="Custody Request Rejected",
                message=message,
                notification_type=NotificationType.CUSTODY_REJECTED,
                reference_id=record.id
            )
            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTODY_REJECTED,
                entity_type="cash_custody",
                entity_id=record.id,
                metadata={"reason": reason},
                user_id=user_id
            )
        return record

    def return_custody(self, custody_id: str, user_id: str, notes: Optional[str] = None,
                       wallet_id: Optional[str] = None) -> CashCustody:
        """
        Hand the remaining amount of an active record back to a wallet

        Args:
            custody_id: Active custody record
            user_id: Cashier, treasurer of the record, or a manager
            notes: Stored as return_notes
            wallet_id: Target wallet; defaults to the record's source wallet
        """
        record = self.require_custody(custody_id)
        actor = self.user_manager.require_user(user_id)
        if user_id not in (record.cashier_id, record.treasurer_id) and actor.role != Role.MANAGER:
            raise PermissionDeniedError("Only the cashier, the treasurer or a manager can return custody")
        if record.status != CustodyStatus.ACTIVE:
            raise InvalidStateError(f"Custody record {record.id} is {record.status.value}, expected active")
        target_wallet = wallet_id or record.wallet_id
        if not target_wallet:
            raise ValidationError("A wallet is required to return custody that has no source wallet")

        with self.storage.atomic():
            remaining = record.amount
            if remaining > ZERO:
                self.wallet_manager.credit(
                    target_wallet, record.currency_code, remaining,
                    reason=f"custody_return:{record.id}", user_id=user_id
                )
                self._adjust_balance(record.cashier_id, record.currency_code, -remaining)
            record.status = CustodyStatus.RETURNED
            record.is_returned = True
            record.return_notes = notes
            self._save(record)
            if user_id != record.treasurer_id:
                self.notification_manager.create_notification(
                    user_id=record.treasurer_id,
                    title="Custody Returned",
                    message=f"{remaining:.2f} {record.currency_code} was returned",
                    notification_type=NotificationType.CUSTODY_RETURNED,
                    reference_id=record.id
                )
            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTODY_RETURNED,
                entity_type="cash_custody",
                entity_id=record.id,
                metadata={"amount": remaining, "wallet_id": target_wallet},
                user_id=user_id
            )
        return record

    def update_custody_status(self, custody_id: str, status: str, user_id: str,
                              notes: Optional[str] = None) -> CashCustody:
        """Route approved, rejected or returned to the matching lifecycle step"""
        if status == "approved":
            return self.approve_custody(custody_id, user_id)
        if status == "rejected":
            return self.reject_custody(custody_id, user_id, notes)
        if status == "returned":
            return self.return_custody(custody_id, user_id, notes)
        raise ValidationError("Invalid status: must be approved, rejected, or returned")

    def _handle_custody_request(self, reference_id: Optional[str], action: NotificationAction,
                                user_id: str, reason: Optional[str]) -> CashCustody:
        if action == NotificationAction.APPROVE:
            return self.approve_custody(reference_id, user_id)
        return self.reject_custody(reference_id, user_id, reason)

    # Cashier-side custody used by transactions

    def create_active_custody(self, cashier_id: str, currency_code: str, amount,
                              notes: str = "") -> CashCustody:
        """
        Record cash a cashier took in directly; active at once, the cashier
        acting as their own treasurer
        """
        code = normalize_code(currency_code)
        amount = quantize_amount(to_decimal(amount))
        if amount <= ZERO:
            raise ValidationError("Valid amount is required")

        now = datetime.now(timezone.utc)
        record = CashCustody(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            treasurer_id=cashier_id,
            cashier_id=cashier_id,
            currency_code=code,
            amount=amount,
            status=CustodyStatus.ACTIVE,
            notes=notes
        )
        with self.storage.atomic():
            self._save(record)
            self._adjust_balance(cashier_id, code, amount)
            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTODY_APPROVED,
                entity_type="cash_custody",
                entity_id=record.id,
                metadata={"amount": amount, "currency_code": code, "auto": True},
                user_id=cashier_id
            )
        return record

    def available_custody(self, cashier_id: str, currency_code: str) -> Decimal:
        return sum((r.amount for r in self.list_active(cashier_id, currency_code)), ZERO)

    def consume_custody(self, cashier_id: str, currency_code: str, amount,
                        client_name: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Take an amount out of a cashier's active custody, oldest record first

        Fully used records become returned with a zero amount; a partly used
        record keeps the remainder and gets a note.

        Returns:
            List of {"custody_id", "amount"} entries that were consumed

        Raises:
            InsufficientFundsError: Active custody is below the amount
        """
        code = normalize_code(currency_code)
        amount = quantize_amount(to_decimal(amount))
        records = self.list_active(cashier_id, code)
        available = sum((r.amount for r in records), ZERO)
        if available < amount:
            raise InsufficientFundsError(
                f"Insufficient funds in custody: have {available} {code}, need {amount}"
            )

        client = client_name or "Unknown"
        consumed = []
        remaining = amount
        with self.storage.atomic():
            for record in records:
                if remaining <= ZERO:
                    break
                reduce_by = min(record.amount, remaining)
                if reduce_by >= record.amount:
                    record.status = CustodyStatus.RETURNED
                    record.is_returned = True
                    record.amount = ZERO
                    record.return_notes = f"Full amount sold to client {client}"
                else:
                    record.amount = record.amount - reduce_by
                    record.notes = f"{record.notes} (Reduced by {reduce_by} from sell to client {client})".strip()
                self._save(record)
                consumed.append({"custody_id": record.id, "amount": reduce_by})
                remaining -= reduce_by
            self._adjust_balance(cashier_id, code, -amount)
            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTODY_CONSUMED,
                entity_type="user",
                entity_id=cashier_id,
                metadata={"currency_code": code, "amount": amount, "records": consumed}
            )
        return consumed

    # Per-user custody balances

    def _load_balance(self, balance_id: str) -> Optional[CustodyBalance]:
        data = self.storage.load(self.balances_table, balance_id)
        return CustodyBalance.from_dict(data) if data else None

    def _adjust_balance(self, user_id: str, currency_code: str, delta: Decimal) -> CustodyBalance:
        balance_id = custody_balance_id(user_id, currency_code)
        existing = self._load_balance(balance_id)
        if existing is None:
            now = datetime.now(timezone.utc)
            existing = CustodyBalance(
                id=balance_id, created_at=now, updated_at=now,
                user_id=user_id, currency_code=currency_code, amount=ZERO
            )
        return self._apply_balance_delta(existing, delta)

    def _apply_balance_delta(self, balance: CustodyBalance, delta: Decimal) -> CustodyBalance:
        new_amount = balance.amount + delta
        if new_amount < ZERO:
            raise InsufficientFundsError(
                f"Insufficient funds in custody. Available: {balance.amount} {balance.currency_code}"
            )
        balance.amount = quantize_amount(new_amount)
        balance.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.balances_table, balance.id, balance.to_dict())
        return balance

    def list_custody_balances(self, user_id: Optional[str] = None) -> List[CustodyBalance]:
        filters = {"user_id": user_id} if user_id else {}
        return [CustodyBalance.from_dict(d) for d in self.storage.find(self.balances_table, filters)]

    def update_custody_balance(self, balance_id: str, delta, user_id: Optional[str] = None) -> CustodyBalance:
        """Add (positive) or subtract (negative) from a custody balance by hand"""
        if not balance_id:
            raise ValidationError("Custody ID is required")
        balance = self._load_balance(balance_id)
        if balance is None:
            raise NotFoundError(f"Custody balance {balance_id} not found")
        delta = quantize_amount(to_decimal(delta))
        with self.storage.atomic():
            balance = self._apply_balance_delta(balance, delta)
            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTODY_BALANCE_CHANGED,
                entity_type="custody_balance",
                entity_id=balance.id,
                metadata={"delta": delta, "amount": balance.amount},
                user_id=user_id
            )
        return balance

    def get_user_custody_records(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Custody balances formatted for selection lists"""
        records = []
        for balance in self.list_custody_balances(user_id):
            owner = self.user_manager.get_user(balance.user_id)
            user_name = owner.name if owner else "Unknown User"
            custody_name = balance.name or f"{user_name}_{balance.currency_code}"
            records.append({
                "id": balance.id,
                "user_id": balance.user_id,
                "currency_code": balance.currency_code,
                "amount": balance.amount,
                "updated_at": balance.updated_at,
                "name": balance.name,
                "display_name": f"{custody_name}: {balance.amount:.2f}",
                "value": f"custody:{balance.id}",
            })
        return records

    def get_custody_options(self, currency_code: Optional[str] = None, exclude_empty: bool = True,
                            user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        records = self.get_user_custody_records(user_id)
        if currency_code:
            records = [r for r in records if r["currency_code"].lower() == currency_code.lower()]
        if exclude_empty:
            records = [r for r in records if r["amount"] > ZERO]
        return [
            {
                "label": r["display_name"],
                "value": r["value"],
                "currency_code": r["currency_code"],
                "balance": r["amount"],
                "type": "custody",
            }
            for r in records
        ]

    def get_combined_options(self, currency_code: str, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Custody options plus non-treasury wallets holding the currency"""
        code = normalize_code(currency_code)
        options = self.get_custody_options(code, user_id=user_id)
        for wallet in self.wallet_manager.list_non_treasury_wallets():
            balance = wallet["currencies"].get(code, ZERO)
            if balance > ZERO:
                options.append({
                    "label": f"{wallet['name']}: {balance:.2f} {code}",
                    "value": f"wallet:{wallet['id']}",
                    "currency_code": code,
                    "balance": balance,
                    "type": "wallet",
                })
        return options
