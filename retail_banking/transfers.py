"""
Transfer and Payment Execution Module

Moves money out of a customer's account, either to another account of the
bank (internal transfer) or to an external account (payment). The data store
has no multi-record transactions, so each transfer runs as a saga driven by a
persisted `TransferIntent`:

    created -> debited -> credited -> completed
                  |           |
                  |           +-> (rows missing) stays credited, reconciled later
                  +-> compensated                  (credit failed, debit reversed)
                  +-> needs_reconciliation         (reversal failed too)

Balance writes are compare-and-swap on the account version, and all writes to
one account from this process are serialized by a per-account lock. Intents
are keyed by the caller's idempotency key, so a resubmitted request is
answered from its intent instead of being executed twice.
"""

from contextlib import contextmanager, ExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union
import hashlib
import secrets
import threading
import uuid
import weakref

from .accounts import Account, AccountManager
from .audit import AuditTrail, AuditEventType
from .currency import Money, Currency, parse_amount
from .errors import (
    BankingError, ValidationError, InvalidAmount, NotAuthorized, NotFound,
    AccountNotEligible, InsufficientFunds, RecipientNotFound,
    SelfTransferRejected, RemoteWriteFailure, PartialTransferFailure
)
from .identity import CurrentIdentity
from .settings import SecurityEventManager, Severity
from .storage import StorageInterface, StorageRecord
from .transactions import TransactionLog, TransactionRecord, TransactionType, TransactionStatus
from .logging_config import get_logger, log_action


# Failures stored on an intent are re-raised by class when the request is replayed
_REPLAYABLE_ERRORS = {
    cls.code: cls for cls in (
        ValidationError, InvalidAmount, NotAuthorized, NotFound,
        AccountNotEligible, InsufficientFunds, RecipientNotFound,
        SelfTransferRejected, RemoteWriteFailure
    )
}


class TransferType(Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"


class IntentState(Enum):
    """Saga states of a transfer intent"""
    CREATED = "created"
    DEBITED = "debited"
    CREDITED = "credited"
    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATED = "compensated"
    NEEDS_RECONCILIATION = "needs_reconciliation"


IN_FLIGHT_STATES = (IntentState.CREATED, IntentState.DEBITED, IntentState.CREDITED)


class RecoveryAction(Enum):
    """What the reconciliation sweep must do for a stuck intent"""
    REFUND_SOURCE = "refund_source"              # Debited, never credited
    RECORD_TRANSACTIONS = "record_transactions"  # Funds moved, rows missing
    MANUAL_REVIEW = "manual_review"              # Outcome unknown


@dataclass
class TransferRequest:
    """A customer's transfer or payment order"""
    from_account_id: str
    transfer_type: Union[TransferType, str]
    recipient_account_number: str
    amount: Any
    recipient_name: Optional[str] = None
    description: Optional[str] = None
    idempotency_key: Optional[str] = None


@dataclass
class TransferIntent(StorageRecord):
    """Persisted saga record for one transfer"""
    idempotency_key: str
    customer_id: str
    transfer_type: TransferType
    from_account_id: str
    from_account_number: str
    recipient_account_number: str
    amount: Money
    description: str
    reference: str
    state: IntentState = IntentState.CREATED
    recipient_name: Optional[str] = None
    to_account_id: Optional[str] = None
    recipient_customer_id: Optional[str] = None
    transaction_ids: List[str] = field(default_factory=list)
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    recovery_action: Optional[RecoveryAction] = None
    version: int = 0

    @property
    def out_transaction_id(self) -> str:
        return f"{self.id}-out"

    @property
    def in_transaction_id(self) -> str:
        return f"{self.id}-in"

    @property
    def payment_transaction_id(self) -> str:
        return f"{self.id}-pay"

    @property
    def refund_marker(self) -> str:
        return f"{self.id}-refund"


@dataclass
class TransferResult:
    intent_id: str
    reference: str
    state: IntentState
    transaction_ids: List[str]
    replayed: bool = False


@dataclass
class ReconciliationReport:
    repaired: List[str] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)


class AccountLocks:
    """Registry of per-account re-entrant locks; a lock lives while someone holds it"""

    def __init__(self):
        self._locks = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def _lock_for(self, account_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[account_id] = lock
            return lock

    @contextmanager
    def hold(self, *account_ids: Optional[str]) -> Iterator[None]:
        """Acquire the locks of all given accounts, ordered by id"""
        ordered = sorted({account_id for account_id in account_ids if account_id})
        with ExitStack() as stack:
            for account_id in ordered:
                stack.enter_context(self._lock_for(account_id))
            yield


def generate_reference() -> str:
    """Human-facing transfer reference: TXN followed by 8 digits"""
    return "TXN" + "".join(str(secrets.randbelow(10)) for _ in range(8))


class TransferExecutor:
    """
    Executes transfers and external payments as intent-driven sagas
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        transaction_log: TransactionLog,
        audit_trail: AuditTrail,
        security_events: Optional[SecurityEventManager] = None,
        currency: Currency = Currency.XAF,
        max_cas_retries: int = 5,
        reconciliation_grace: timedelta = timedelta(seconds=60)
    ):
        self.storage = storage
        self.accounts = account_manager
        self.transactions = transaction_log
        self.audit_trail = audit_trail
        self.security_events = security_events
        self.currency = currency
        self.max_cas_retries = max_cas_retries
        self.reconciliation_grace = reconciliation_grace
        self.table_name = "transfer_intents"
        self.locks = AccountLocks()
        self.logger = get_logger("retail_banking.transfers")

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def execute(self, identity: CurrentIdentity, request: TransferRequest) -> TransferResult:
        """
        Validate and execute a transfer or external payment.

        Business-rule rejections are raised before anything is written.

        Args:
            identity: Authenticated caller
            request: Transfer order

        Returns:
            TransferResult of the new or replayed intent

        Raises:
            ValidationError: Malformed request, or the same key is still in flight
            InvalidAmount: Amount not a positive finite decimal
            NotAuthorized: Caller not an approved customer or admin
            AccountNotEligible: Source not owned by caller or not active;
                recipient pending or closed
            RecipientNotFound: Internal recipient number unknown
            SelfTransferRejected: Recipient is the source account
            InsufficientFunds: Amount exceeds the source balance
            RemoteWriteFailure: Debit could not be written; nothing moved
            PartialTransferFailure: Debit written but the transfer could not
                finish; see `compensated` and `funds_moved`
        """
        transfer_type, amount = self._validate_shape(request)
        identity.require_approved()

        key = request.idempotency_key
        if key:
            existing = self.get_intent(self._intent_id(identity.id, key))
            if existing:
                return self._replay(existing)
        else:
            key = str(uuid.uuid4())

        source = self._check_source(identity, request.from_account_id)
        recipient = None
        if transfer_type == TransferType.INTERNAL:
            recipient = self._resolve_recipient(request.recipient_account_number, source)

        with self.locks.hold(source.id, recipient.id if recipient else None):
            # Re-read under the lock; another transfer may have drained the account
            source = self._check_source(identity, source.id)
            if request.idempotency_key:
                # A submission with the same key may have finished while we waited
                existing = self.get_intent(self._intent_id(identity.id, key))
                if existing:
                    return self._replay(existing)
            self._check_funds(source, amount)

            intent = self._create_intent(identity, request, transfer_type, amount, key, source, recipient)
            if intent is None:
                return self._replay(self.get_intent(self._intent_id(identity.id, key)))

            self._debit_source(intent)

            if transfer_type == TransferType.INTERNAL:
                return self._finish_internal(intent)
            return self._finish_external(intent)

    def settle_payment(
        self,
        identity: CurrentIdentity,
        transaction_id: str,
        succeeded: bool
    ) -> TransactionRecord:
        """
        Settle a pending external payment. A failed payment is refunded to
        its source account.

        Returns:
            The settled TransactionRecord

        Raises:
            NotAuthorized: Caller is not an admin
            PartialTransferFailure: Payment marked failed but the refund
                could not be written
        """
        identity.require_admin()
        status = TransactionStatus.COMPLETED if succeeded else TransactionStatus.FAILED
        txn = self.transactions.update_payment_status(transaction_id, status, identity.id)

        if succeeded:
            return txn

        source = self.accounts.get_account_by_number(txn.account_number)
        if source is None:
            raise NotFound(f"Source account {txn.account_number} of payment {transaction_id} not found")

        with self.locks.hold(source.id):
            try:
                self.accounts.change_balance(source.id, abs(txn.amount), self.max_cas_retries)
            except BankingError as e:
                self._escalate(
                    f"Refund of failed payment {transaction_id} could not be written: {e}",
                    intent_id=txn.intent_id,
                    user_id=identity.id,
                    metadata={"transaction_id": transaction_id, "amount": abs(txn.amount).to_string()}
                )
                raise PartialTransferFailure(
                    f"Payment {transaction_id} failed and its refund could not be written",
                    intent_id=txn.intent_id, compensated=False
                ) from e

        log_action(self.logger, "info", f"Failed payment {transaction_id} refunded",
                   user_id=identity.id, action="refund_payment",
                   resource=f"account:{source.id}",
                   extra={"amount": abs(txn.amount).to_string()})
        return txn

    def reconcile(self, now: Optional[datetime] = None) -> ReconciliationReport:
        """
        Repair intents stuck mid-saga.

        Intents in debited/credited/created state older than the grace
        period, and every intent flagged needs_reconciliation, are examined:

        - debited internal transfer: finished if the recipient account carries
          the intent's credit marker, otherwise the source is refunded
        - debited external payment: append the pending payment row, complete
        - credited, or flagged record_transactions: append rows, complete
        - flagged refund_source: retry the refund
        - recipient account gone, so the credit cannot be checked: manual_review
        - created, or flagged manual_review: outcome unknown, left for an admin
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.reconciliation_grace
        report = ReconciliationReport()

        for intent in self.list_intents():
            if not self._is_stuck(intent, cutoff):
                continue

            with self.locks.hold(intent.from_account_id, intent.to_account_id):
                intent = self.get_intent(intent.id)
                if not self._is_stuck(intent, cutoff):
                    continue
                try:
                    repaired = self._repair(intent)
                except BankingError as e:
                    self.logger.error(f"Reconciliation of intent {intent.id} failed: {e}")
                    repaired = False

            if repaired:
                report.repaired.append(intent.id)
                self.audit_trail.log_event(
                    event_type=AuditEventType.TRANSFER_RECONCILED,
                    entity_type="transfer",
                    entity_id=intent.id,
                    metadata={"final_state": intent.state.value, "reference": intent.reference},
                    user_id=intent.customer_id
                )
            else:
                report.unresolved.append(intent.id)

        log_action(self.logger, "info", "Reconciliation sweep finished",
                   action="reconcile",
                   extra={"repaired": len(report.repaired), "unresolved": len(report.unresolved)})
        return report

    def get_intent(self, intent_id: str) -> Optional[TransferIntent]:
        data = self.storage.load(self.table_name, intent_id)
        return self._intent_from_dict(data) if data else None

    def list_intents(self, state: Optional[IntentState] = None) -> List[TransferIntent]:
        """Intents, oldest first"""
        filters = {"state": state.value} if state else {}
        intents = [self._intent_from_dict(d) for d in self.storage.find(self.table_name, filters)]
        intents.sort(key=lambda i: i.created_at)
        return intents

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_shape(self, request: TransferRequest):
        try:
            transfer_type = TransferType(request.transfer_type)
        except ValueError:
            raise ValidationError(f"Unknown transfer type: {request.transfer_type}")

        if not request.from_account_id:
            raise ValidationError("Source account is required")
        if not request.recipient_account_number or not request.recipient_account_number.strip():
            raise ValidationError("Recipient account number is required")
        if transfer_type == TransferType.EXTERNAL and not (request.recipient_name or "").strip():
            raise ValidationError("Recipient name is required for external payments")

        amount = parse_amount(request.amount, self.currency)
        return transfer_type, amount

    def _check_source(self, identity: CurrentIdentity, account_id: str) -> Account:
        account = self.accounts.get_account(account_id)
        if account is None or account.customer_id != identity.id:
            raise AccountNotEligible("Source account not found for this customer")
        if not account.can_debit():
            raise AccountNotEligible(
                f"Cannot transfer from a {account.state.value} account"
            )
        return account

    def _resolve_recipient(self, account_number: str, source: Account) -> Account:
        recipient = self.accounts.get_account_by_number(account_number.strip())
        if recipient is None:
            raise RecipientNotFound(f"Recipient account {account_number} not found")
        if recipient.id == source.id:
            raise SelfTransferRejected("Cannot transfer to the same account")
        if not recipient.can_credit():
            raise AccountNotEligible(
                f"Recipient account is {recipient.state.value} and cannot receive transfers"
            )
        return recipient

    def _check_funds(self, account: Account, amount: Money) -> None:
        if amount > account.balance:
            raise InsufficientFunds(
                f"Insufficient balance: available {account.balance.to_string()}, "
                f"requested {amount.to_string()}"
            )

    # ------------------------------------------------------------------
    # Saga steps
    # ------------------------------------------------------------------

    def _intent_id(self, customer_id: str, idempotency_key: str) -> str:
        digest = hashlib.sha256(f"{customer_id}:{idempotency_key}".encode()).hexdigest()
        return f"TI{digest[:30]}"

    def _create_intent(
        self,
        identity: CurrentIdentity,
        request: TransferRequest,
        transfer_type: TransferType,
        amount: Money,
        key: str,
        source: Account,
        recipient: Optional[Account]
    ) -> Optional[TransferIntent]:
        """Insert the intent; None if the key was taken concurrently"""
        now = datetime.now(timezone.utc)
        number = request.recipient_account_number.strip()
        intent = TransferIntent(
            id=self._intent_id(identity.id, key),
            created_at=now,
            updated_at=now,
            idempotency_key=key,
            customer_id=identity.id,
            transfer_type=transfer_type,
            from_account_id=source.id,
            from_account_number=source.account_number,
            recipient_account_number=number,
            amount=amount,
            description=(request.description or "").strip() or f"{transfer_type.value} transfer to {number}",
            reference=generate_reference(),
            recipient_name=(request.recipient_name or "").strip() or None,
            to_account_id=recipient.id if recipient else None,
            recipient_customer_id=recipient.customer_id if recipient else None
        )
        if not self.storage.insert(self.table_name, intent.id, self._intent_to_dict(intent)):
            return None

        log_action(self.logger, "info", f"Transfer intent created: {intent.reference}",
                   user_id=identity.id, action="create_transfer_intent",
                   resource=f"transfer:{intent.id}",
                   extra={
                       "transfer_type": transfer_type.value,
                       "amount": amount.to_string(),
                       "from_account": source.account_number,
                       "to_account": number
                   })
        return intent

    def _debit_source(self, intent: TransferIntent) -> None:
        """CAS debit with bounded retries; on failure nothing has moved"""
        try:
            for attempt in range(self.max_cas_retries + 1):
                source = self.accounts.require_account(intent.from_account_id)
                if not source.can_debit():
                    raise AccountNotEligible(f"Cannot transfer from a {source.state.value} account")
                self._check_funds(source, intent.amount)
                if self.accounts.apply_balance_change(source.id, -intent.amount, source.version):
                    return
                self.logger.debug(f"Version conflict debiting {source.account_number}, attempt {attempt + 1}")
            raise RemoteWriteFailure(
                f"Debit of {intent.from_account_number} kept conflicting after {self.max_cas_retries} retries"
            )
        except BankingError as e:
            self._fail(intent, e)
            raise

    def _credit_recipient(self, intent: TransferIntent) -> None:
        for attempt in range(self.max_cas_retries + 1):
            recipient = self.accounts.require_account(intent.to_account_id)
            if not recipient.can_credit():
                raise AccountNotEligible(
                    f"Recipient account is {recipient.state.value} and cannot receive transfers"
                )
            if self.accounts.apply_balance_change(recipient.id, intent.amount, recipient.version, intent.id):
                return
            self.logger.debug(f"Version conflict crediting {recipient.account_number}, attempt {attempt + 1}")
        raise RemoteWriteFailure(
            f"Credit of {intent.recipient_account_number} kept conflicting after {self.max_cas_retries} retries"
        )

    def _finish_internal(self, intent: TransferIntent) -> TransferResult:
        try:
            self._set_state(intent, IntentState.DEBITED)
            self._credit_recipient(intent)
        except BankingError as e:
            self._compensate(intent, e)

        try:
            self._set_state(intent, IntentState.CREDITED)
        except BankingError as e:
            self._flag(intent, RecoveryAction.RECORD_TRANSACTIONS, e)
            raise PartialTransferFailure(
                "Funds reached the recipient but the transfer could not be recorded",
                intent_id=intent.id, compensated=False, funds_moved=True
            ) from e

        try:
            self._record_transfer_rows(intent)
            self._set_state(intent, IntentState.COMPLETED)
        except BankingError as e:
            self._escalate_unrecorded(
                intent, f"Transfer {intent.reference} moved funds but its records could not be written: {e}"
            )
            raise PartialTransferFailure(
                "Funds reached the recipient but the transaction records could not be written",
                intent_id=intent.id, compensated=False, funds_moved=True
            ) from e

        return self._completed(intent)

    def _finish_external(self, intent: TransferIntent) -> TransferResult:
        try:
            self._set_state(intent, IntentState.DEBITED)
            self._record_payment_row(intent)
            self._set_state(intent, IntentState.COMPLETED)
        except BankingError as e:
            self._escalate_unrecorded(intent, f"Payment {intent.reference} debited but not recorded: {e}")
            raise PartialTransferFailure(
                "The payment was debited but could not be recorded",
                intent_id=intent.id, compensated=False, funds_moved=False
            ) from e

        return self._completed(intent)

    def _completed(self, intent: TransferIntent) -> TransferResult:
        self.audit_trail.log_event(
            event_type=AuditEventType.TRANSFER_COMPLETED,
            entity_type="transfer",
            entity_id=intent.id,
            metadata={
                "reference": intent.reference,
                "transfer_type": intent.transfer_type.value,
                "amount": intent.amount.to_string(),
                "from_account": intent.from_account_number,
                "to_account": intent.recipient_account_number
            },
            user_id=intent.customer_id
        )
        log_action(self.logger, "info", f"Transfer completed: {intent.reference}",
                   user_id=intent.customer_id, action="transfer_completed",
                   resource=f"transfer:{intent.id}",
                   extra={"amount": intent.amount.to_string()})
        return TransferResult(
            intent_id=intent.id,
            reference=intent.reference,
            state=intent.state,
            transaction_ids=list(intent.transaction_ids)
        )

    def _compensate(self, intent: TransferIntent, cause: BankingError) -> None:
        """Reverse the debit after a failed credit; always raises"""
        self.logger.warning(f"Credit for transfer {intent.reference} failed, compensating: {cause}")
        try:
            self.accounts.change_balance(
                intent.from_account_id, intent.amount, self.max_cas_retries, intent.refund_marker
            )
        except BankingError as e:
            self._flag(intent, RecoveryAction.REFUND_SOURCE, e)
            raise PartialTransferFailure(
                "The recipient could not be credited and the debit could not be reversed",
                intent_id=intent.id, compensated=False
            ) from cause

        intent.error_code = cause.code
        intent.error_message = str(cause)
        try:
            self._set_state(intent, IntentState.COMPENSATED)
        except BankingError as e:
            log_action(self.logger, "critical",
                       f"Transfer {intent.reference} refunded but intent not updated: {e}",
                       user_id=intent.customer_id, action="compensate_transfer",
                       resource=f"transfer:{intent.id}")
        self.audit_trail.log_event(
            event_type=AuditEventType.TRANSFER_COMPENSATED,
            entity_type="transfer",
            entity_id=intent.id,
            metadata={"reason": str(cause), "amount": intent.amount.to_string()},
            user_id=intent.customer_id
        )
        raise PartialTransferFailure(
            "The recipient could not be credited; the debit was reversed",
            intent_id=intent.id, compensated=True
        ) from cause

    def _fail(self, intent: TransferIntent, error: BankingError) -> None:
        """Record a failure that happened before any money moved"""
        intent.error_code = error.code
        intent.error_message = str(error)
        try:
            self._set_state(intent, IntentState.FAILED)
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSFER_FAILED,
                entity_type="transfer",
                entity_id=intent.id,
                metadata={"error": str(error), "reference": intent.reference},
                user_id=intent.customer_id
            )
        except BankingError as e:
            self.logger.error(f"Could not record failure of intent {intent.id}: {e}")
        log_action(self.logger, "warning", f"Transfer {intent.reference} failed: {error}",
                   user_id=intent.customer_id, action="transfer_failed",
                   resource=f"transfer:{intent.id}")

    def _flag(self, intent: TransferIntent, action: RecoveryAction, cause: BankingError) -> None:
        """Mark an intent for manual reconciliation and raise the alarm"""
        intent.recovery_action = action
        intent.error_code = cause.code
        intent.error_message = str(cause)
        try:
            self._set_state(intent, IntentState.NEEDS_RECONCILIATION)
        except BankingError as e:
            self.logger.error(f"Could not flag intent {intent.id} for reconciliation: {e}")
        self._escalate(
            f"Transfer {intent.reference} needs reconciliation ({action.value}): {cause}",
            intent_id=intent.id,
            user_id=intent.customer_id,
            metadata={
                "recovery_action": action.value,
                "amount": intent.amount.to_string(),
                "from_account": intent.from_account_number,
                "to_account": intent.recipient_account_number
            }
        )

    def _escalate(
        self,
        message: str,
        intent_id: Optional[str],
        user_id: Optional[str],
        metadata: Dict[str, Any]
    ) -> None:
        log_action(self.logger, "critical", message, user_id=user_id,
                   action="partial_transfer_failure",
                   resource=f"transfer:{intent_id}", extra=metadata)
        if self.security_events is None:
            return
        try:
            self.security_events.record_security_event(
                event_type="partial_transfer_failure",
                description=message,
                severity=Severity.CRITICAL,
                user_id=user_id,
                metadata=dict(metadata, intent_id=intent_id)
            )
        except BankingError as e:
            self.logger.error(f"Could not record security event for intent {intent_id}: {e}")

    def _escalate_unrecorded(self, intent: TransferIntent, message: str) -> None:
        """Money moved but the transaction rows are missing"""
        self._escalate(
            message,
            intent_id=intent.id,
            user_id=intent.customer_id,
            metadata={
                "recovery_action": RecoveryAction.RECORD_TRANSACTIONS.value,
                "amount": intent.amount.to_string(),
                "from_account": intent.from_account_number,
                "to_account": intent.recipient_account_number
            }
        )

    def _record_transfer_rows(self, intent: TransferIntent) -> None:
        self.transactions.record(
            transaction_id=intent.out_transaction_id,
            customer_id=intent.customer_id,
            account_number=intent.from_account_number,
            transaction_type=TransactionType.TRANSFER_OUT,
            amount=-intent.amount,
            description=intent.description,
            reference=intent.reference,
            from_account=intent.from_account_number,
            to_account=intent.recipient_account_number,
            intent_id=intent.id
        )
        self.transactions.record(
            transaction_id=intent.in_transaction_id,
            customer_id=intent.recipient_customer_id,
            account_number=intent.recipient_account_number,
            transaction_type=TransactionType.TRANSFER_IN,
            amount=intent.amount,
            description=intent.description,
            reference=intent.reference,
            from_account=intent.from_account_number,
            to_account=intent.recipient_account_number,
            intent_id=intent.id
        )
        intent.transaction_ids = [intent.out_transaction_id, intent.in_transaction_id]

    def _record_payment_row(self, intent: TransferIntent) -> None:
        self.transactions.record(
            transaction_id=intent.payment_transaction_id,
            customer_id=intent.customer_id,
            account_number=intent.from_account_number,
            transaction_type=TransactionType.PAYMENT,
            amount=-intent.amount,
            description=intent.description,
            reference=intent.reference,
            from_account=intent.from_account_number,
            to_account=intent.recipient_account_number,
            status=TransactionStatus.PENDING,
            intent_id=intent.id,
            recipient_name=intent.recipient_name
        )
        intent.transaction_ids = [intent.payment_transaction_id]

    def _set_state(self, intent: TransferIntent, state: IntentState) -> None:
        """Versioned write of the intent's new state"""
        expected_version = intent.version
        previous = intent.state
        intent.state = state
        intent.version = expected_version + 1
        intent.updated_at = datetime.now(timezone.utc)
        saved = False
        try:
            saved = self.storage.save_if_version(
                self.table_name, intent.id, self._intent_to_dict(intent), expected_version
            )
        finally:
            if not saved:
                intent.state = previous
                intent.version = expected_version
        if not saved:
            raise RemoteWriteFailure(f"Transfer intent {intent.id} was modified concurrently")

    # ------------------------------------------------------------------
    # Replay and repair
    # ------------------------------------------------------------------

    def _replay(self, intent: TransferIntent) -> TransferResult:
        log_action(self.logger, "info", f"Replaying transfer {intent.reference}",
                   user_id=intent.customer_id, action="replay_transfer",
                   resource=f"transfer:{intent.id}", extra={"state": intent.state.value})

        if intent.state == IntentState.COMPLETED:
            return TransferResult(
                intent_id=intent.id,
                reference=intent.reference,
                state=intent.state,
                transaction_ids=list(intent.transaction_ids),
                replayed=True
            )
        if intent.state == IntentState.FAILED:
            error_class = _REPLAYABLE_ERRORS.get(intent.error_code, RemoteWriteFailure)
            raise error_class(intent.error_message or "Transfer failed")
        if intent.state == IntentState.COMPENSATED:
            raise PartialTransferFailure(
                "The recipient could not be credited; the debit was reversed",
                intent_id=intent.id, compensated=True
            )
        if intent.state == IntentState.NEEDS_RECONCILIATION:
            raise PartialTransferFailure(
                "This transfer is awaiting manual reconciliation",
                intent_id=intent.id, compensated=False,
                funds_moved=intent.recovery_action == RecoveryAction.RECORD_TRANSACTIONS
            )
        raise ValidationError("Transfer already in progress")

    def _is_stuck(self, intent: TransferIntent, cutoff: datetime) -> bool:
        if intent.state == IntentState.NEEDS_RECONCILIATION:
            return True
        return intent.state in IN_FLIGHT_STATES and intent.updated_at <= cutoff

    def _repair(self, intent: TransferIntent) -> bool:
        """Bring one stuck intent to a final state; False if it needs a human"""
        action = intent.recovery_action
        if intent.state == IntentState.CREATED or action == RecoveryAction.MANUAL_REVIEW:
            if intent.state == IntentState.CREATED:
                self._flag(intent, RecoveryAction.MANUAL_REVIEW,
                           RemoteWriteFailure("Intent abandoned before its debit was confirmed"))
            return False

        refund = (
            action == RecoveryAction.REFUND_SOURCE
            or (intent.state == IntentState.DEBITED and intent.transfer_type == TransferType.INTERNAL)
        )
        if refund and intent.transfer_type == TransferType.INTERNAL:
            credited = self._credit_landed(intent)
            if credited is None:
                self._flag(intent, RecoveryAction.MANUAL_REVIEW,
                           RemoteWriteFailure("Recipient account missing; cannot tell whether it was credited"))
                return False
            refund = not credited

        if refund:
            self.accounts.change_balance(
                intent.from_account_id, intent.amount, self.max_cas_retries, intent.refund_marker
            )
            intent.recovery_action = None
            self._set_state(intent, IntentState.COMPENSATED)
            return True

        if intent.transfer_type == TransferType.EXTERNAL:
            self._record_payment_row(intent)
        else:
            self._record_transfer_rows(intent)
        intent.recovery_action = None
        self._set_state(intent, IntentState.COMPLETED)
        return True

    def _credit_landed(self, intent: TransferIntent) -> Optional[bool]:
        """Whether the recipient balance holds this intent's credit; None if unknowable"""
        recipient = self.accounts.get_account(intent.to_account_id) if intent.to_account_id else None
        if recipient is None:
            return None
        return intent.id in recipient.applied_intents

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def _intent_to_dict(self, intent: TransferIntent) -> Dict:
        result = intent.to_dict()
        result['transfer_type'] = intent.transfer_type.value
        result['state'] = intent.state.value
        result['amount'] = str(intent.amount.amount)
        result['currency'] = intent.amount.currency.code
        result['recovery_action'] = intent.recovery_action.value if intent.recovery_action else None
        return result

    def _intent_from_dict(self, data: Dict) -> TransferIntent:
        recovery_action = None
        if data.get('recovery_action'):
            recovery_action = RecoveryAction(data['recovery_action'])
        return TransferIntent(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            idempotency_key=data['idempotency_key'],
            customer_id=data['customer_id'],
            transfer_type=TransferType(data['transfer_type']),
            from_account_id=data['from_account_id'],
            from_account_number=data['from_account_number'],
            recipient_account_number=data['recipient_account_number'],
            amount=Money(Decimal(data['amount']), Currency[data['currency']]),
            description=data['description'],
            reference=data['reference'],
            state=IntentState(data['state']),
            recipient_name=data.get('recipient_name'),
            to_account_id=data.get('to_account_id'),
            recipient_customer_id=data.get('recipient_customer_id'),
            transaction_ids=data.get('transaction_ids', []),
            error_code=data.get('error_code'),
            error_message=data.get('error_message'),
            recovery_action=recovery_action,
            version=data.get('version', 0)
        )
