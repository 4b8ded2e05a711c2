"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every state change in the system (customer review, account lifecycle,
transfers, deposit and loan validation, settings changes) is logged here.
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
    # Customer events
    CUSTOMER_REGISTERED = "customer_registered"
    CUSTOMER_UPDATED = "customer_updated"
    CUSTOMER_APPROVED = "customer_approved"
    CUSTOMER_REJECTED = "customer_rejected"
    ROLE_CHANGED = "role_changed"
    CUSTOMER_SETTINGS_UPDATED = "customer_settings_updated"

    # Account events
    ACCOUNT_OPENED = "account_opened"
    ACCOUNT_APPROVED = "account_approved"
    ACCOUNT_FROZEN = "account_frozen"
    ACCOUNT_UNFROZEN = "account_unfrozen"
    ACCOUNT_CLOSED = "account_closed"

    # Transaction events
    TRANSACTION_RECORDED = "transaction_recorded"
    PAYMENT_SETTLED = "payment_settled"

    # Transfer saga events
    TRANSFER_COMPLETED = "transfer_completed"
    TRANSFER_FAILED = "transfer_failed"
    TRANSFER_COMPENSATED = "transfer_compensated"
    TRANSFER_NEEDS_RECONCILIATION = "transfer_needs_reconciliation"
    TRANSFER_RECONCILED = "transfer_reconciled"

    # Deposit events
    DEPOSIT_REQUESTED = "deposit_requested"
    DEPOSIT_APPROVED = "deposit_approved"
    DEPOSIT_REJECTED = "deposit_rejected"

    # Loan events
    LOAN_APPLIED = "loan_applied"
    LOAN_APPROVED = "loan_approved"
    LOAN_DENIED = "loan_denied"

    # Settings and security events
    SETTING_CHANGED = "setting_changed"
    SECURITY_EVENT_RECORDED = "security_event_recorded"
    SECURITY_EVENT_RESOLVED = "security_event_resolved"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"


def _to_json_value(value):
    if isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, datetime):
        return value.isoformat()
    elif isinstance(value, Enum):
        return value.value
    elif isinstance(value, dict):
        return {k: _to_json_value(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [_to_json_value(v) for v in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    sequence: int  # Position in the chain, starting at 1
    event_type: AuditEventType
    entity_type: str  # customer, account, transfer, deposit, loan, setting...
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None
    session_id: Optional[str] = None

    def __post_init__(self):
        if self.metadata:
            self.metadata = {k: _to_json_value(v) for k, v in self.metadata.items()}

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'session_id': self.session_id,
            'metadata': self.metadata
        }

        # Create deterministic JSON string
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage with proper enum serialization"""
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        """Create AuditEvent from dictionary with proper enum deserialization"""
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self._last_hash: Optional[str] = None
        self._last_sequence = 0
        self._lock = threading.Lock()
        self._load_chain_head()

    def _load_chain_head(self) -> None:
        """Load hash and sequence of the most recent audit event"""
        events = self.storage.load_all(self.table_name)
        if events:
            last = max(events, key=lambda x: x.get('sequence', 0))
            self._last_hash = last.get('current_hash')
            self._last_sequence = last.get('sequence', 0)

    def _load_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda x: x.sequence)
        return events

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: ID of user who initiated the action
            session_id: Session identifier

        Returns:
            Created AuditEvent
        """
        with self._lock:
            now = datetime.now(timezone.utc)

            # Another process may have appended since we last looked
            self._load_chain_head()

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                sequence=self._last_sequence + 1,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=self._last_hash or "",
                current_hash="",
                user_id=user_id,
                session_id=session_id,
                metadata=metadata or {}
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())

            self._last_hash = event.current_hash
            self._last_sequence = event.sequence
            return event

    def get_events_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """
        Get all audit events for a specific entity

        Args:
            entity_type: Type of entity
            entity_id: ID of entity
            limit: Maximum number of events to return (most recent)

        Returns:
            List of AuditEvent objects in chain order
        """
        events_data = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': entity_id
        })
        events = [AuditEvent.from_dict(data) for data in events_data]
        events.sort(key=lambda x: x.sequence)

        if limit:
            events = events[-limit:]
        return events

    def search_events(
        self,
        user_id: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
        entity_type: Optional[str] = None,
        text: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """
        Search the audit log for the admin audit screen.

        `text` matches case-insensitively against the event type, entity
        type, entity id and the serialized metadata. Results are newest first.
        """
        events = self._load_events()

        if user_id:
            events = [e for e in events if e.user_id == user_id]
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        if entity_type:
            events = [e for e in events if e.entity_type == entity_type]
        if start_time:
            events = [e for e in events if e.created_at >= start_time]
        if end_time:
            events = [e for e in events if e.created_at <= end_time]
        if text:
            needle = text.lower()
            events = [
                e for e in events
                if needle in e.event_type.value
                or needle in e.entity_type.lower()
                or needle in e.entity_id.lower()
                or needle in json.dumps(e.metadata, default=str).lower()
            ]

        events.reverse()
        if limit:
            events = events[:limit]
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self._load_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for i, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        """Get total number of audit events"""
        return self.storage.count(self.table_name)
