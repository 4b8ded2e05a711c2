"""
Transaction Log Module

Append-only log of the money movements shown to customers and admins:
transfer legs, external payments and validated deposits. Records are keyed by
a deterministic `transaction_id`, so writing the same leg twice is a no-op.
Only the status of a pending external payment may change afterwards.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import ValidationError, NotFound, RemoteWriteFailure
from .logging_config import get_logger, log_action


class TransactionType(Enum):
    """Types of logged transactions"""
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    PAYMENT = "payment"          # External payment, leaves the bank
    DEPOSIT = "deposit"          # Admin-validated deposit


class TransactionStatus(Enum):
    """Status of a logged transaction"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TransactionRecord(StorageRecord):
    """
    One row of the transaction log.

    `amount` is signed from the point of view of `account_number`, the account
    whose balance the row describes. `from_account` and `to_account` are
    always account numbers; for external payments `to_account` is the
    external number.
    """
    transaction_id: str
    customer_id: str
    account_number: str
    transaction_type: TransactionType
    amount: Money
    from_account: Optional[str]
    to_account: Optional[str]
    status: TransactionStatus
    description: str
    reference: str
    intent_id: Optional[str] = None
    recipient_name: Optional[str] = None
    version: int = 0

    @property
    def is_debit(self) -> bool:
        return self.amount.is_negative()


class TransactionLog:
    """
    Reads and appends transaction log rows
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "transactions"
        self.logger = get_logger("retail_banking.transactions")

    def record(
        self,
        transaction_id: str,
        customer_id: str,
        account_number: str,
        transaction_type: TransactionType,
        amount: Money,
        description: str,
        reference: str,
        from_account: Optional[str] = None,
        to_account: Optional[str] = None,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        intent_id: Optional[str] = None,
        recipient_name: Optional[str] = None,
        created_at: Optional[datetime] = None
    ) -> TransactionRecord:
        """
        Append a row unless one with the same transaction_id exists

        Args:
            transaction_id: Deterministic unique id of the row
            customer_id: Owner of account_number
            account_number: Account whose balance this row describes
            transaction_type: transfer_in, transfer_out, payment or deposit
            amount: Signed amount (negative for debits)
            description: Free text shown to the customer
            reference: Human-facing reference shared by related rows
            from_account: Source account number
            to_account: Destination account number (external for payments)
            status: Initial status
            intent_id: Transfer intent that produced the row
            recipient_name: Recipient name for external payments
            created_at: Override the timestamp (backfilled rows)

        Returns:
            The stored row (the existing one if already present)
        """
        now = created_at or datetime.now(timezone.utc)
        txn = TransactionRecord(
            id=transaction_id,
            created_at=now,
            updated_at=now,
            transaction_id=transaction_id,
            customer_id=customer_id,
            account_number=account_number,
            transaction_type=transaction_type,
            amount=amount,
            from_account=from_account,
            to_account=to_account,
            status=status,
            description=description,
            reference=reference,
            intent_id=intent_id,
            recipient_name=recipient_name
        )

        if not self.storage.insert(self.table_name, transaction_id, self._transaction_to_dict(txn)):
            existing = self.get_by_transaction_id(transaction_id)
            if existing is None:
                raise RemoteWriteFailure(f"Transaction {transaction_id} vanished after insert conflict")
            return existing

        log_action(
            self.logger, "info", f"Transaction recorded: {transaction_type.value}",
            user_id=customer_id, action="record_transaction",
            resource=f"transaction:{transaction_id}",
            extra={
                "amount": amount.to_string(),
                "from_account": from_account,
                "to_account": to_account,
                "reference": reference,
                "status": status.value
            }
        )

        return txn

    def get_by_transaction_id(self, transaction_id: str) -> Optional[TransactionRecord]:
        """Get transaction by ID"""
        data = self.storage.load(self.table_name, transaction_id)
        if data:
            return self._transaction_from_dict(data)
        return None

    def list_for_customer(
        self,
        customer_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        transaction_types: Optional[List[TransactionType]] = None,
        limit: Optional[int] = None
    ) -> List[TransactionRecord]:
        """Rows owned by a customer, most recent first"""
        rows = self.storage.find(self.table_name, {"customer_id": customer_id})
        return self._filter(rows, start_date, end_date, transaction_types, None, limit)

    def list_for_account(
        self,
        account_number: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        transaction_types: Optional[List[TransactionType]] = None,
        limit: Optional[int] = None
    ) -> List[TransactionRecord]:
        """Rows describing one account's balance, most recent first"""
        rows = self.storage.find(self.table_name, {"account_number": account_number})
        return self._filter(rows, start_date, end_date, transaction_types, None, limit)

    def list_all(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        transaction_types: Optional[List[TransactionType]] = None,
        status: Optional[TransactionStatus] = None,
        limit: Optional[int] = None
    ) -> List[TransactionRecord]:
        """Admin transaction log, most recent first"""
        rows = self.storage.load_all(self.table_name)
        return self._filter(rows, start_date, end_date, transaction_types, status, limit)

    def update_payment_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        admin_id: str
    ) -> TransactionRecord:
        """
        Settle a pending external payment.

        Raises:
            NotFound: Unknown transaction
            ValidationError: Not a pending payment, or target status is not final
            RemoteWriteFailure: Concurrent settlement of the same payment
        """
        if status == TransactionStatus.PENDING:
            raise ValidationError("Payment can only be settled to completed or failed")

        txn = self.get_by_transaction_id(transaction_id)
        if not txn:
            raise NotFound(f"Transaction {transaction_id} not found")
        if txn.transaction_type != TransactionType.PAYMENT or txn.status != TransactionStatus.PENDING:
            raise ValidationError(
                f"Transaction {transaction_id} is a {txn.status.value} "
                f"{txn.transaction_type.value}; only pending payments can be settled"
            )

        expected_version = txn.version
        txn.status = status
        txn.version += 1
        txn.updated_at = datetime.now(timezone.utc)
        if not self.storage.save_if_version(
            self.table_name, txn.id, self._transaction_to_dict(txn), expected_version
        ):
            raise RemoteWriteFailure(f"Payment {transaction_id} was settled concurrently")

        self.audit_trail.log_event(
            event_type=AuditEventType.PAYMENT_SETTLED,
            entity_type="transaction",
            entity_id=transaction_id,
            metadata={"status": status.value, "amount": txn.amount.to_string()},
            user_id=admin_id
        )

        return txn

    def _filter(
        self,
        rows: List[Dict],
        start_date: Optional[datetime],
        end_date: Optional[datetime],
        transaction_types: Optional[List[TransactionType]],
        status: Optional[TransactionStatus],
        limit: Optional[int]
    ) -> List[TransactionRecord]:
        transactions = [self._transaction_from_dict(data) for data in rows]

        if start_date:
            transactions = [t for t in transactions if t.created_at >= start_date]
        if end_date:
            transactions = [t for t in transactions if t.created_at <= end_date]
        if transaction_types:
            transactions = [t for t in transactions if t.transaction_type in transaction_types]
        if status:
            transactions = [t for t in transactions if t.status == status]

        transactions.sort(key=lambda x: x.created_at, reverse=True)

        if limit:
            transactions = transactions[:limit]
        return transactions

    def _transaction_to_dict(self, txn: TransactionRecord) -> Dict:
        """Convert TransactionRecord to dictionary for storage"""
        result = txn.to_dict()
        result['transaction_type'] = txn.transaction_type.value
        result['status'] = txn.status.value
        result['amount'] = str(txn.amount.amount)
        result['currency'] = txn.amount.currency.code
        return result

    def _transaction_from_dict(self, data: Dict) -> TransactionRecord:
        """Convert dictionary to TransactionRecord"""
        return TransactionRecord(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            transaction_id=data['transaction_id'],
            customer_id=data['customer_id'],
            account_number=data['account_number'],
            transaction_type=TransactionType(data['transaction_type']),
            amount=Money(Decimal(data['amount']), Currency[data['currency']]),
            from_account=data.get('from_account'),
            to_account=data.get('to_account'),
            status=TransactionStatus(data['status']),
            description=data['description'],
            reference=data['reference'],
            intent_id=data.get('intent_id'),
            recipient_name=data.get('recipient_name'),
            version=data.get('version', 0)
        )
