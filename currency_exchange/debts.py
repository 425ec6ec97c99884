"""
Debt Module

Debts between a shop user and an outside person, each tied to a wallet.

A receivable debt (the person owes the user) is cash lent out of the
wallet: creating it debits the wallet and settling it credits the wallet
back. An owed debt (the user owes the person) is cash borrowed into the
wallet: creating it credits the wallet and settling it debits it.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import uuid

from .currency import Money, normalize_code, quantize_amount, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from .wallets import WalletManager
from .logging_config import get_logger, log_action


logger = get_logger("exchange.debts")

ZERO = Decimal("0")


@dataclass
class Debt(StorageRecord):
    """
    One debt; exactly one of debtor_id and creditor_id names the user,
    the outside party is person_name
    """
    wallet_id: str
    currency_code: str
    amount: Decimal
    person_name: str
    notes: Optional[str] = None
    debtor_id: Optional[str] = None
    creditor_id: Optional[str] = None
    is_paid: bool = False
    paid_at: Optional[datetime] = None

    @property
    def is_owed(self) -> bool:
        """True when the user is the debtor"""
        return self.debtor_id is not None


class DebtManager:
    """
    Manages debts and their wallet effects
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail, wallet_manager: WalletManager):
        self.storage = storage
        self.audit_trail = audit_trail
        self.wallet_manager = wallet_manager
        self.debts_table = "debts"

    def _save(self, debt: Debt) -> None:
        self.storage.save(self.debts_table, debt.id, debt.to_dict())

    def _apply(self, debt: Debt, opening: bool, user_id: str) -> None:
        """Move the debt amount in or out of its wallet"""
        # Opening a receivable and settling an owed debt both take cash out
        outgoing = opening != debt.is_owed
        reason = "debt" if opening else "debt_reversal"
        if outgoing:
            self.wallet_manager.debit(debt.wallet_id, debt.currency_code, debt.amount,
                                      reason=reason, user_id=user_id)
        else:
            self.wallet_manager.credit(debt.wallet_id, debt.currency_code, debt.amount,
                                       reason=reason, user_id=user_id)

    def create_debt(
        self,
        user_id: str,
        person_name: str,
        wallet_id: str,
        currency_code: str,
        amount,
        notes: Optional[str] = None,
        is_owed: bool = False
    ) -> Debt:
        """
        Create a debt and apply its wallet effect

        Args:
            user_id: The shop user party to the debt
            person_name: The outside party
            is_owed: True when the user owes the person

        Raises:
            ValidationError: Missing person, wallet or currency, or a
                non-positive amount
            InsufficientFundsError: A receivable exceeds the wallet balance
        """
        if not person_name:
            raise ValidationError("Person name is required")
        if not wallet_id:
            raise ValidationError("Wallet is required")
        if not currency_code:
            raise ValidationError("Currency is required")
        amount = quantize_amount(to_decimal(amount))
        if amount <= ZERO:
            raise ValidationError("Valid amount is required")
        self.wallet_manager.require_wallet(wallet_id)

        now = datetime.now(timezone.utc)
        debt = Debt(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            wallet_id=wallet_id,
            currency_code=normalize_code(currency_code),
            amount=amount,
            person_name=person_name,
            notes=notes or None,
            debtor_id=user_id if is_owed else None,
            creditor_id=None if is_owed else user_id
        )

        with self.storage.atomic():
            self._apply(debt, opening=True, user_id=user_id)
            self._save(debt)
            self.audit_trail.log_event(
                event_type=AuditEventType.DEBT_CREATED,
                entity_type="debt",
                entity_id=debt.id,
                metadata={
                    "wallet_id": wallet_id,
                    "currency_code": debt.currency_code,
                    "amount": amount,
                    "person_name": person_name,
                    "is_owed": is_owed
                },
                user_id=user_id
            )

        log_action(logger, "info", f"Debt {debt.id} created", user_id=user_id,
                   action="create_debt", resource=f"debt:{debt.id}")
        return debt

    def get_debt(self, debt_id: str) -> Optional[Debt]:
        data = self.storage.load(self.debts_table, debt_id)
        return Debt.from_dict(data) if data else None

    def _require_own(self, debt_id: str, user_id: str) -> Debt:
        debt = self.get_debt(debt_id)
        if not debt:
            raise NotFoundError(f"Debt {debt_id} not found")
        if user_id not in (debt.debtor_id, debt.creditor_id):
            raise PermissionDeniedError("Debt belongs to another user")
        return debt

    def mark_paid(self, debt_id: str, user_id: str) -> Debt:
        """Settle a debt, reversing its wallet effect"""
        debt = self._require_own(debt_id, user_id)
        if debt.is_paid:
            raise InvalidStateError(f"Debt {debt_id} is already paid")

        now = datetime.now(timezone.utc)
        debt.is_paid = True
        debt.paid_at = now
        debt.updated_at = now
        with self.storage.atomic():
            self._apply(debt, opening=False, user_id=user_id)
            self._save(debt)
            self.audit_trail.log_event(
                event_type=AuditEventType.DEBT_PAID,
                entity_type="debt",
                entity_id=debt.id,
                metadata={"amount": debt.amount, "currency_code": debt.currency_code},
                user_id=user_id
            )
        return debt

    def delete_debt(self, debt_id: str, user_id: str) -> None:
        """Delete a debt; an unpaid one has its wallet effect reversed first"""
        debt = self._require_own(debt_id, user_id)
        with self.storage.atomic():
            if not debt.is_paid:
                self._apply(debt, opening=False, user_id=user_id)
            self.storage.delete(self.debts_table, debt.id)
            self.audit_trail.log_event(
                event_type=AuditEventType.DEBT_DELETED,
                entity_type="debt",
                entity_id=debt.id,
                metadata={"was_paid": debt.is_paid},
                user_id=user_id
            )

    def list_debts(self, user_id: str) -> Dict[str, List[Debt]]:
        """Debts the user owes and debts owed to the user, newest first"""
        def newest_first(filters):
            debts = [Debt.from_dict(d) for d in self.storage.find(self.debts_table, filters)]
            return sorted(debts, key=lambda d: d.created_at, reverse=True)

        return {
            "owed": newest_first({"debtor_id": user_id}),
            "receivable": newest_first({"creditor_id": user_id}),
        }

    def get_debt_summary(self, user_id: str) -> Dict[str, Any]:
        """Unpaid totals per currency and unpaid counts"""
        debts = self.list_debts(user_id)

        def totals(items):
            by_currency: Dict[str, Money] = {}
            for debt in items:
                owed = Money(debt.amount, debt.currency_code)
                running = by_currency.get(debt.currency_code)
                by_currency[debt.currency_code] = owed if running is None else running + owed
            return {code: money.amount for code, money in by_currency.items()}

        unpaid_owed = [d for d in debts["owed"] if not d.is_paid]
        unpaid_receivable = [d for d in debts["receivable"] if not d.is_paid]
        return {
            "total_owed": totals(unpaid_owed),
            "total_receivable": totals(unpaid_receivable),
            "count_owed": len(unpaid_owed),
            "count_receivable": len(unpaid_receivable),
        }
