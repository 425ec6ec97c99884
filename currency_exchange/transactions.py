"""
Transaction Module

Buy, sell and withdrawal records with their wallet and custody effects.

A buy takes a currency in from a client and pays out another one; a sell
gives a currency to a client and takes another one in. Cashiers choose
where the cash goes: a wallet, their own custody, or nowhere ("client",
record only). Every operation runs in one storage transaction so the
balances and the record change together or not at all.

Transactions above the configured threshold must be validated by a
validator (dealership executioner) before they count as settled.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from enum import Enum
import uuid

from .currency import normalize_code, quantize_amount, quantize_rate, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .custody import CustodyManager
from .errors import InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from .users import Role, UserManager, has_any_role
from .wallets import WalletManager
from .logging_config import get_logger, log_action


logger = get_logger("exchange.transactions")

ZERO = Decimal("0")
CLIENT = "client"
CUSTODY = "custody"


class TransactionType(Enum):
    BUY = "buy"
    SELL = "sell"
    WITHDRAWAL = "withdrawal"


class ValidationStatus(Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    REJECTED = "rejected"


class ValidationDecision(Enum):
    APPROVE = "approve"
    REJECT = "reject"


@dataclass
class Transaction(StorageRecord):
    """
    A buy, sell or withdrawal

    ``currency_code``/``amount`` is the currency bought or sold;
    ``exchange_currency_code``/``total_amount`` is the other side of the deal.
    """
    type: TransactionType
    currency_code: str
    amount: Decimal
    wallet_id: Optional[str] = None
    exchange_currency_code: Optional[str] = None
    exchange_rate: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    cashier_id: Optional[str] = None
    client_name: Optional[str] = None
    source: str = ""
    destination: str = ""
    reason: Optional[str] = None
    reference_custody_id: Optional[str] = None
    needs_validation: bool = False
    validated: bool = False
    validation_status: Optional[ValidationStatus] = None
    validated_by: Optional[str] = None
    validated_at: Optional[datetime] = None
    validation_notes: Optional[str] = None


@dataclass
class TransactionValidation(StorageRecord):
    """Decision of a validator on one transaction"""
    transaction_id: str
    validator_id: str
    is_approved: bool
    notes: str
    validated_at: datetime


class TransactionManager:
    """
    Records transactions and applies their balance effects
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        wallet_manager: WalletManager,
        custody_manager: CustodyManager,
        user_manager: Optional[UserManager] = None,
        validation_threshold="10000",
        recent_window: int = 30
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.wallet_manager = wallet_manager
        self.custody_manager = custody_manager
        self.user_manager = user_manager
        self.transactions_table = "transactions"
        self.validations_table = "transaction_validations"
        self.validation_threshold = to_decimal(validation_threshold, "validation threshold")
        self.recent_window = recent_window

    # Recording

    def _new_transaction(self, **fields) -> Transaction:
        now = datetime.now(timezone.utc)
        needs_validation = fields["amount"] > self.validation_threshold
        return Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            needs_validation=needs_validation,
            validation_status=ValidationStatus.PENDING if needs_validation else None,
            **fields
        )

    def _record(self, transaction: Transaction, user_id: Optional[str] = None) -> Transaction:
        self.storage.save(self.transactions_table, transaction.id, transaction.to_dict())
        self.audit_trail.log_event(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction.id,
            metadata={
                "type": transaction.type,
                "wallet_id": transaction.wallet_id,
                "currency_code": transaction.currency_code,
                "amount": transaction.amount,
                "exchange_currency_code": transaction.exchange_currency_code,
                "total_amount": transaction.total_amount,
                "source": transaction.source,
                "destination": transaction.destination,
                "needs_validation": transaction.needs_validation
            },
            user_id=user_id or transaction.cashier_id
        )
        log_action(
            logger, "info",
            f"{transaction.type.value} {transaction.amount} {transaction.currency_code} recorded",
            user_id=transaction.cashier_id, action=f"create_{transaction.type.value}",
            resource=f"transaction:{transaction.id}"
        )
        return transaction

    @staticmethod
    def _positive(value, field: str) -> Decimal:
        amount = quantize_amount(to_decimal(value, field))
        if amount <= ZERO:
            raise ValidationError(f"{field} must be positive")
        return amount

    def _deal_terms(self, amount, exchange_rate, total_amount):
        """Resolve amount, rate and total; any two determine the third"""
        amount = self._positive(amount, "amount")
        if total_amount is not None:
            total = self._positive(total_amount, "total_amount")
        elif exchange_rate is not None:
            total = quantize_amount(amount * to_decimal(exchange_rate, "exchange_rate"))
        else:
            raise ValidationError("Either exchange_rate or total_amount is required")
        if exchange_rate is not None:
            rate = to_decimal(exchange_rate, "exchange_rate")
            if rate <= ZERO:
                raise ValidationError("exchange_rate must be positive")
        else:
            rate = quantize_rate(total / amount)
        return amount, rate, total

    def create_buy(
        self,
        wallet_id: str,
        currency_code: str,
        amount,
        exchange_currency_code: str,
        exchange_rate=None,
        total_amount=None,
        cashier_id: Optional[str] = None,
        client_name: Optional[str] = None,
        source: Optional[str] = None,
        destination: Optional[str] = None
    ) -> Transaction:
        """
        Buy a currency into a wallet

        The wallet gains ``amount`` of ``currency_code`` and pays
        ``total_amount`` of ``exchange_currency_code``.
        """
        wallet = self.wallet_manager.require_wallet(wallet_id)
        code = normalize_code(currency_code)
        exchange_code = normalize_code(exchange_currency_code)
        amount, rate, total = self._deal_terms(amount, exchange_rate, total_amount)

        with self.storage.atomic():
            self.wallet_manager.credit(wallet_id, code, amount, reason="buy", user_id=cashier_id)
            self.wallet_manager.debit(wallet_id, exchange_code, total, reason="buy", user_id=cashier_id)
            transaction = self._new_transaction(
                type=TransactionType.BUY,
                wallet_id=wallet_id,
                currency_code=code,
                amount=amount,
                exchange_currency_code=exchange_code,
                exchange_rate=rate,
                total_amount=total,
                cashier_id=cashier_id,
                client_name=client_name,
                source=source or "Client",
                destination=destination or wallet.name
            )
            return self._record(transaction)

    def create_sell(
        self,
        wallet_id: str,
        sell_currency_code: str,
        sell_amount,
        receive_currency_code: str,
        receive_amount,
        cashier_id: Optional[str] = None,
        client_name: Optional[str] = None,
        source: Optional[str] = None,
        destination: Optional[str] = None
    ) -> Transaction:
        """
        Sell a currency out of a wallet

        The wallet loses ``sell_amount`` of the sold currency and gains
        ``receive_amount`` of the received one. The rate is
        receive_amount / sell_amount.
        """
        wallet = self.wallet_manager.require_wallet(wallet_id)
        sell_code = normalize_code(sell_currency_code)
        receive_code = normalize_code(receive_currency_code)
        sell_amount = self._positive(sell_amount, "sell_amount")
        receive_amount = self._positive(receive_amount, "receive_amount")

        with self.storage.atomic():
            self.wallet_manager.debit(wallet_id, sell_code, sell_amount, reason="sell", user_id=cashier_id)
            self.wallet_manager.credit(wallet_id, receive_code, receive_amount,
                                       reason="sell", user_id=cashier_id)
            transaction = self._new_transaction(
                type=TransactionType.SELL,
                wallet_id=wallet_id,
                currency_code=sell_code,
                amount=sell_amount,
                exchange_currency_code=receive_code,
                exchange_rate=quantize_rate(receive_amount / sell_amount),
                total_amount=receive_amount,
                cashier_id=cashier_id,
                client_name=client_name,
                source=source or wallet.name,
                destination=destination or "Client"
            )
            return self._record(transaction)

    def withdraw_currency(self, wallet_id: str, currency_code: str, amount,
                          reason: Optional[str] = None, user_id: Optional[str] = None) -> Transaction:
        """Take cash out of a wallet and record a withdrawal"""
        wallet = self.wallet_manager.require_wallet(wallet_id)
        code = normalize_code(currency_code)
        amount = self._positive(amount, "amount")

        with self.storage.atomic():
            self.wallet_manager.debit(wallet_id, code, amount, reason="withdrawal", user_id=user_id)
            transaction = self._new_transaction(
                type=TransactionType.WITHDRAWAL,
                wallet_id=wallet_id,
                currency_code=code,
                amount=amount,
                cashier_id=user_id,
                source=wallet.name,
                destination="Withdrawal",
                reason=reason or "Withdrawal"
            )
            self._record(transaction, user_id=user_id)
            self.audit_trail.log_event(
                event_type=AuditEventType.WITHDRAWAL_MADE,
                entity_type="wallet",
                entity_id=wallet_id,
                metadata={"currency_code": code, "amount": amount, "transaction_id": transaction.id},
                user_id=user_id
            )
        return transaction

    # Cashier desk routing

    def execute_buy(
        self,
        cashier_id: str,
        destination: str,
        currency_code: str,
        amount,
        exchange_currency_code: str,
        exchange_rate=None,
        total_amount=None,
        client_name: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Buy from a client into a wallet, into the cashier's custody, or
        record only

        Args:
            destination: Wallet id, ``"custody"`` or ``"client"``
        """
        if not destination:
            raise ValidationError("Destination is required")

        if destination == CUSTODY or destination == CLIENT:
            code = normalize_code(currency_code)
            exchange_code = normalize_code(exchange_currency_code)
            amount, rate, total = self._deal_terms(amount, exchange_rate, total_amount)
            with self.storage.atomic():
                custody = None
                if destination == CUSTODY:
                    custody = self.custody_manager.create_active_custody(
                        cashier_id, code, amount,
                        notes=f"Buy transaction from client {client_name or 'Unknown'}"
                    )
                transaction = self._record(self._new_transaction(
                    type=TransactionType.BUY,
                    currency_code=code,
                    amount=amount,
                    exchange_currency_code=exchange_code,
                    exchange_rate=rate,
                    total_amount=total,
                    cashier_id=cashier_id,
                    client_name=client_name,
                    source="Client",
                    destination="Cash Custody" if custody else "Wallet",
                    reference_custody_id=custody.id if custody else None
                ))
            return {"transaction": transaction, "custody": custody, "wallet": None}

        transaction = self.create_buy(
            wallet_id=destination,
            currency_code=currency_code,
            amount=amount,
            exchange_currency_code=exchange_currency_code,
            exchange_rate=exchange_rate,
            total_amount=total_amount,
            cashier_id=cashier_id,
            client_name=client_name
        )
        return {"transaction": transaction, "custody": None,
                "wallet": self.wallet_manager.get_balances(destination)}

    def execute_sell(
        self,
        cashier_id: str,
        source: str,
        sell_currency_code: str,
        amount,
        receive_currency_code: str,
        exchange_rate=None,
        total_amount=None,
        client_name: Optional[str] = None,
        destination: str = CLIENT
    ) -> Dict[str, Any]:
        """
        Sell to a client from a wallet, from the cashier's custody, or
        record only

        Args:
            source: Wallet id, ``"custody"`` or ``"client"``
            destination: ``"custody"`` keeps the received cash in the
                cashier's custody when selling from a wallet
        """
        if not source:
            raise ValidationError("Source is required")
        sell_code = normalize_code(sell_currency_code)
        receive_code = normalize_code(receive_currency_code)
        amount, rate, total = self._deal_terms(amount, exchange_rate, total_amount)

        if source == CLIENT:
            transaction = self._record(self._new_transaction(
                type=TransactionType.SELL,
                currency_code=sell_code,
                amount=amount,
                exchange_currency_code=receive_code,
                exchange_rate=rate,
                total_amount=total,
                cashier_id=cashier_id,
                client_name=client_name,
                source="Wallet",
                destination="Client"
            ))
            return {"transaction": transaction, "custody": None, "wallet": None}

        if source == CUSTODY:
            with self.storage.atomic():
                consumed = self.custody_manager.consume_custody(
                    cashier_id, sell_code, amount, client_name=client_name
                )
                transaction = self._record(self._new_transaction(
                    type=TransactionType.SELL,
                    currency_code=sell_code,
                    amount=amount,
                    exchange_currency_code=receive_code,
                    exchange_rate=rate,
                    total_amount=total,
                    cashier_id=cashier_id,
                    client_name=client_name,
                    source="Cash Custody",
                    destination="Client",
                    reference_custody_id=consumed[0]["custody_id"] if consumed else None
                ))
            return {"transaction": transaction, "custody": consumed, "wallet": None}

        if destination == CUSTODY:
            # The wallet is settled as a plain sell; the cashier also holds the
            # received cash as custody not tied to any wallet
            with self.storage.atomic():
                custody = self.custody_manager.create_active_custody(
                    cashier_id, receive_code, total,
                    notes=f"From wallet-to-custody sell transaction for client {client_name or 'Unknown'}"
                )
                transaction = self.create_sell(
                    wallet_id=source,
                    sell_currency_code=sell_code,
                    sell_amount=amount,
                    receive_currency_code=receive_code,
                    receive_amount=total,
                    cashier_id=cashier_id,
                    client_name=client_name,
                    destination="Cash Custody"
                )
                transaction.reference_custody_id = custody.id
                self.storage.save(self.transactions_table, transaction.id, transaction.to_dict())
            return {"transaction": transaction, "custody": custody,
                    "wallet": self.wallet_manager.get_balances(source)}

        transaction = self.create_sell(
            wallet_id=source,
            sell_currency_code=sell_code,
            sell_amount=amount,
            receive_currency_code=receive_code,
            receive_amount=total,
            cashier_id=cashier_id,
            client_name=client_name
        )
        return {"transaction": transaction, "custody": None,
                "wallet": self.wallet_manager.get_balances(source)}

    # Validation

    def validate_transaction(self, transaction_id: str, validator_id: str,
                             decision: Union[str, ValidationDecision], notes: str = "") -> Transaction:
        """
        Approve or reject a transaction

        Raises:
            NotFoundError: Unknown transaction
            PermissionDeniedError: Validator lacks the validator role
            InvalidStateError: A decision was already recorded
        """
        transaction = self.require_transaction(transaction_id)
        try:
            decision = ValidationDecision(decision)
        except ValueError:
            raise ValidationError(f"Invalid decision: {decision}")
        if self.user_manager is not None:
            validator = self.user_manager.require_user(validator_id)
            if not has_any_role(validator.role, [Role.VALIDATOR]):
                raise PermissionDeniedError("Only validators can validate transactions")
        if transaction.validation_status in (ValidationStatus.VALIDATED, ValidationStatus.REJECTED):
            raise InvalidStateError(
                f"Transaction {transaction_id} is already {transaction.validation_status.value}"
            )

        approved = decision == ValidationDecision.APPROVE
        now = datetime.now(timezone.utc)
        validation = TransactionValidation(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            transaction_id=transaction_id,
            validator_id=validator_id,
            is_approved=approved,
            notes=notes or "",
            validated_at=now
        )

        transaction.validated = approved
        transaction.validation_status = ValidationStatus.VALIDATED if approved else ValidationStatus.REJECTED
        transaction.validated_by = validator_id
        transaction.validated_at = now
        transaction.validation_notes = notes or ""
        transaction.updated_at = now

        with self.storage.atomic():
            self.storage.save(self.validations_table, validation.id, validation.to_dict())
            self.storage.save(self.transactions_table, transaction.id, transaction.to_dict())
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_VALIDATED if approved else AuditEventType.TRANSACTION_REJECTED,
                entity_type="transaction",
                entity_id=transaction_id,
                metadata={"notes": notes},
                user_id=validator_id
            )
        return transaction

    def list_validations(self, transaction_id: str) -> List[TransactionValidation]:
        return [
            TransactionValidation.from_dict(d)
            for d in self.storage.find(self.validations_table, {"transaction_id": transaction_id})
        ]

    # Queries

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        data = self.storage.load(self.transactions_table, transaction_id)
        return Transaction.from_dict(data) if data else None

    def require_transaction(self, transaction_id: str) -> Transaction:
        transaction = self.get_transaction(transaction_id)
        if not transaction:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    def list_all(self) -> List[Transaction]:
        """Every transaction, newest first"""
        # Reversed first so records sharing a timestamp stay newest first
        transactions = [Transaction.from_dict(d) for d in reversed(self.storage.load_all(self.transactions_table))]
        transactions.sort(key=lambda t: t.created_at, reverse=True)
        return transactions

    @staticmethod
    def _page(transactions: List[Transaction], limit: int, offset: int) -> Dict[str, Any]:
        return {"transactions": transactions[offset:offset + limit], "total": len(transactions)}

    def list_recent(self, limit: int = 30, offset: int = 0,
                    only_needs_validation: bool = False) -> Dict[str, Any]:
        transactions = self.list_all()
        if only_needs_validation:
            # Rejected transactions are never validated, so they stay listed
            transactions = [t for t in transactions if t.needs_validation and not t.validated]
        return self._page(transactions, limit, offset)

    def list_by_wallet(self, wallet_id: str, limit: int = 30, offset: int = 0) -> Dict[str, Any]:
        transactions = [t for t in self.list_all() if t.wallet_id == wallet_id]
        return self._page(transactions, limit, offset)

    def get_transaction_stats(self) -> Dict[str, Any]:
        """Average buy and sell exchange rate over the most recent transactions"""
        recent = self.list_all()[:self.recent_window]

        def average(kind: TransactionType) -> Optional[Decimal]:
            rates = [t.exchange_rate for t in recent if t.type == kind and t.exchange_rate is not None]
            if not rates:
                return None
            return quantize_rate(sum(rates, ZERO) / len(rates))

        return {
            "buy_average": average(TransactionType.BUY),
            "sell_average": average(TransactionType.SELL),
            "recent_transactions": recent,
        }
