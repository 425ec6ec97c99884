"""
Audit Trail Module

Hash-chained append-only audit log with SHA-256 for tamper detection.
Every balance or status change in the shop is logged here.
"""

import hashlib
import json
import threading
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal
import uuid

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    # Wallet events
    WALLET_CREATED = "wallet_created"
    WALLET_UPDATED = "wallet_updated"
    WALLET_DELETED = "wallet_deleted"
    WALLET_CURRENCY_ADDED = "wallet_currency_added"
    WALLET_CURRENCY_REMOVED = "wallet_currency_removed"
    WALLET_BALANCE_CHANGED = "wallet_balance_changed"

    # Currency and pricing events
    CURRENCY_TYPE_CREATED = "currency_type_created"
    CURRENCY_TYPE_UPDATED = "currency_type_updated"
    CURRENCY_TYPE_DELETED = "currency_type_deleted"
    EXCHANGE_RATE_CHANGED = "exchange_rate_changed"
    EXCHANGE_RATE_DELETED = "exchange_rate_deleted"
    MANAGER_PRICES_UPDATED = "manager_prices_updated"

    # Transaction events
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_VALIDATED = "transaction_validated"
    TRANSACTION_REJECTED = "transaction_rejected"
    WITHDRAWAL_MADE = "withdrawal_made"

    # Custody events
    CUSTODY_REQUESTED = "custody_requested"
    CUSTODY_APPROVED = "custody_approved"
    CUSTODY_REJECTED = "custody_rejected"
    CUSTODY_RETURNED = "custody_returned"
    CUSTODY_CONSUMED = "custody_consumed"
    CUSTODY_BALANCE_CHANGED = "custody_balance_changed"

    # Debt events
    DEBT_CREATED = "debt_created"
    DEBT_PAID = "debt_paid"
    DEBT_DELETED = "debt_deleted"

    # User events
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    ROLE_ASSIGNED = "role_assigned"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"

    # System events
    AUDIT_INTEGRITY_CHECK = "audit_integrity_check"


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    event_type: AuditEventType
    entity_type: str   # wallet, transaction, custody, debt, user ...
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None

    def __post_init__(self):
        self.metadata = _jsonable(self.metadata or {})

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events",
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled
        self._lock = threading.Lock()
        self._cached_generation = storage.rollback_generation
        self._cached_hash: Optional[str] = self._load_last_hash() if enabled else None

    def _load_last_hash(self) -> str:
        """Hash of the newest stored event"""
        events = self.storage.load_all(self.table_name)
        if not events:
            return ""
        events.sort(key=lambda e: e.get('created_at', ''))
        return events[-1].get('current_hash', "")

    def _last_hash(self) -> str:
        # A rollback may have discarded events this instance wrote
        generation = self.storage.rollback_generation
        if self._cached_hash is None or generation != self._cached_generation:
            self._cached_hash = self._load_last_hash()
            self._cached_generation = generation
        return self._cached_hash

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """
        Append an audit event to the chain

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: ID of user who initiated the action

        Returns:
            Created AuditEvent, or None when auditing is disabled
        """
        if not self.enabled:
            return None

        with self._lock:
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=self._last_hash(),
                current_hash="",
                user_id=user_id,
                metadata=metadata or {}
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
            self._cached_hash = event.current_hash
            return event

    def get_all_events(self) -> List[AuditEvent]:
        """All events in chain order"""
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda e: e.created_at)
        return events

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        events_data = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': entity_id
        })
        events = [AuditEvent.from_dict(data) for data in events_data]
        events.sort(key=lambda e: e.created_at)
        return events

    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [e for e in self.get_all_events() if e.event_type == event_type]

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify every event hash and the continuity of the chain

        Returns:
            Dictionary with valid flag, event count, hash errors and chain breaks
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self.get_all_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        return self.storage.count(self.table_name)
