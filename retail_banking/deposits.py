"""
Deposit Requests Module

Customers declare deposits (cash at a branch, bank transfer, mobile money,
check); an admin validates each one. Approval credits the account exactly
once and logs a `deposit` transaction.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional
from enum import Enum
import secrets
import string
import uuid

from .accounts import AccountManager
from .audit import AuditTrail, AuditEventType
from .currency import Money, Currency, parse_amount
from .errors import (
    BankingError, ValidationError, NotFound, AccountNotEligible,
    RemoteWriteFailure, PartialTransferFailure
)
from .identity import CurrentIdentity
from .settings import SecurityEventManager, Severity
from .storage import StorageInterface, StorageRecord
from .transactions import TransactionLog, TransactionType
from .transfers import AccountLocks
from .logging_config import get_logger, log_action


REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


class DepositMethod(Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"
    CHECK = "check"


class DepositStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class DepositRequest(StorageRecord):
    customer_id: str
    account_id: str
    account_number: str
    amount: Money
    deposit_method: DepositMethod
    reference_number: str
    description: Optional[str] = None
    status: DepositStatus = DepositStatus.PENDING
    admin_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    validated_by: Optional[str] = None
    validated_at: Optional[datetime] = None
    transaction_id: Optional[str] = None
    version: int = 0


def generate_deposit_reference() -> str:
    """DEP followed by 9 upper-case alphanumerics"""
    return "DEP" + "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(9))


class DepositManager:
    """
    Deposit declaration and admin validation
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        transaction_log: TransactionLog,
        audit_trail: AuditTrail,
        locks: Optional[AccountLocks] = None,
        currency: Currency = Currency.XAF,
        max_cas_retries: int = 5,
        security_events: Optional[SecurityEventManager] = None
    ):
        self.storage = storage
        self.accounts = account_manager
        self.transactions = transaction_log
        self.audit_trail = audit_trail
        self.locks = locks or AccountLocks()
        self.currency = currency
        self.max_cas_retries = max_cas_retries
        self.security_events = security_events
        self.table_name = "deposits"
        self.logger = get_logger("retail_banking.deposits")

    def request_deposit(
        self,
        identity: CurrentIdentity,
        account_id: str,
        amount: Any,
        deposit_method: DepositMethod,
        description: Optional[str] = None
    ) -> DepositRequest:
        """
        Declare a deposit into one of the caller's active accounts

        Raises:
            InvalidAmount: Amount not a positive finite decimal
            NotAuthorized: Caller not approved
            AccountNotEligible: Account not the caller's, or not active
        """
        money = parse_amount(amount, self.currency)
        identity.require_approved()

        account = self.accounts.get_account(account_id)
        if account is None or account.customer_id != identity.id:
            raise AccountNotEligible("Account not found for this customer")
        if not account.can_debit():
            raise AccountNotEligible(f"Cannot deposit into a {account.state.value} account")

        now = datetime.now(timezone.utc)
        deposit = DepositRequest(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            customer_id=identity.id,
            account_id=account.id,
            account_number=account.account_number,
            amount=money,
            deposit_method=deposit_method,
            reference_number=generate_deposit_reference(),
            description=description
        )
        self.storage.save(self.table_name, deposit.id, self._deposit_to_dict(deposit))

        self.audit_trail.log_event(
            event_type=AuditEventType.DEPOSIT_REQUESTED,
            entity_type="deposit",
            entity_id=deposit.id,
            metadata={
                "amount": money.to_string(),
                "account_number": account.account_number,
                "method": deposit_method.value,
                "reference": deposit.reference_number
            },
            user_id=identity.id
        )
        return deposit

    def get_deposit(self, deposit_id: str) -> Optional[DepositRequest]:
        data = self.storage.load(self.table_name, deposit_id)
        return self._deposit_from_dict(data) if data else None

    def list_deposits(
        self,
        status: Optional[DepositStatus] = None,
        customer_id: Optional[str] = None
    ) -> List[DepositRequest]:
        """Deposits, newest first"""
        filters: Dict[str, Any] = {}
        if status:
            filters['status'] = status.value
        if customer_id:
            filters['customer_id'] = customer_id
        deposits = [self._deposit_from_dict(d) for d in self.storage.find(self.table_name, filters)]
        deposits.sort(key=lambda d: d.created_at, reverse=True)
        return deposits

    def approve_deposit(
        self,
        identity: CurrentIdentity,
        deposit_id: str,
        notes: Optional[str] = None
    ) -> DepositRequest:
        """
        Approve a pending deposit and credit its account.

        The status change is claimed first with a versioned write, so a
        deposit is credited at most once even if two admins approve it at
        the same time.

        Raises:
            NotAuthorized: Caller is not an admin
            NotFound: Unknown deposit
            ValidationError: Deposit already validated
            AccountNotEligible: Account can no longer receive credits
            RemoteWriteFailure: Credit could not be written; deposit stays pending
        """
        identity.require_admin()
        deposit = self._require_pending(deposit_id)

        account = self.accounts.require_account(deposit.account_id)
        if not account.can_credit():
            raise AccountNotEligible(
                f"Account {account.account_number} is {account.state.value} and cannot be credited"
            )

        with self.locks.hold(deposit.account_id):
            self._claim(deposit, DepositStatus.APPROVED, identity.id, admin_notes=notes)
            try:
                self.accounts.change_balance(
                    deposit.account_id, deposit.amount, self.max_cas_retries, f"{deposit.id}-dep"
                )
            except BankingError:
                self._release(deposit)
                raise

            try:
                txn = self.transactions.record(
                    transaction_id=f"{deposit.id}-dep",
                    customer_id=deposit.customer_id,
                    account_number=deposit.account_number,
                    transaction_type=TransactionType.DEPOSIT,
                    amount=deposit.amount,
                    description=deposit.description or f"{deposit.deposit_method.value} deposit",
                    reference=deposit.reference_number,
                    to_account=deposit.account_number
                )
            except BankingError as e:
                self._escalate_unrecorded(deposit, identity.id, e)
                raise PartialTransferFailure(
                    "The deposit was credited but its transaction could not be recorded",
                    compensated=False, funds_moved=True
                ) from e

        deposit.transaction_id = txn.transaction_id
        self._save_quietly(deposit)

        self.audit_trail.log_event(
            event_type=AuditEventType.DEPOSIT_APPROVED,
            entity_type="deposit",
            entity_id=deposit.id,
            metadata={"amount": deposit.amount.to_string(), "notes": notes},
            user_id=identity.id
        )
        log_action(self.logger, "info", f"Deposit {deposit.reference_number} approved",
                   user_id=identity.id, action="approve_deposit",
                   resource=f"deposit:{deposit.id}",
                   extra={"amount": deposit.amount.to_string()})
        return deposit

    def reject_deposit(
        self,
        identity: CurrentIdentity,
        deposit_id: str,
        reason: str,
        notes: Optional[str] = None
    ) -> DepositRequest:
        """Reject a pending deposit; nothing is credited"""
        identity.require_admin()
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")

        deposit = self._require_pending(deposit_id)
        deposit.rejection_reason = reason.strip()
        self._claim(deposit, DepositStatus.REJECTED, identity.id, admin_notes=notes)

        self.audit_trail.log_event(
            event_type=AuditEventType.DEPOSIT_REJECTED,
            entity_type="deposit",
            entity_id=deposit.id,
            metadata={"reason": deposit.rejection_reason},
            user_id=identity.id
        )
        return deposit

    def _require_pending(self, deposit_id: str) -> DepositRequest:
        deposit = self.get_deposit(deposit_id)
        if not deposit:
            raise NotFound(f"Deposit {deposit_id} not found")
        if deposit.status != DepositStatus.PENDING:
            raise ValidationError(f"Deposit {deposit.reference_number} is already {deposit.status.value}")
        return deposit

    def _claim(
        self,
        deposit: DepositRequest,
        status: DepositStatus,
        admin_id: str,
        admin_notes: Optional[str] = None
    ) -> None:
        expected_version = deposit.version
        now = datetime.now(timezone.utc)
        deposit.status = status
        deposit.validated_by = admin_id
        deposit.validated_at = now
        deposit.admin_notes = admin_notes
        deposit.updated_at = now
        deposit.version = expected_version + 1
        if not self.storage.save_if_version(
            self.table_name, deposit.id, self._deposit_to_dict(deposit), expected_version
        ):
            raise ValidationError(f"Deposit {deposit.reference_number} was validated concurrently")

    def _release(self, deposit: DepositRequest) -> None:
        """Return a claimed deposit to pending after a failed credit"""
        expected_version = deposit.version
        deposit.status = DepositStatus.PENDING
        deposit.validated_by = None
        deposit.validated_at = None
        deposit.version = expected_version + 1
        if not self.storage.save_if_version(
            self.table_name, deposit.id, self._deposit_to_dict(deposit), expected_version
        ):
            self.logger.error(f"Deposit {deposit.id} could not be returned to pending")

    def _save_quietly(self, deposit: DepositRequest) -> None:
        try:
            self.storage.save(self.table_name, deposit.id, self._deposit_to_dict(deposit))
        except RemoteWriteFailure as e:
            self.logger.error(f"Could not link deposit {deposit.id} to its transaction: {e}")

    def _escalate_unrecorded(self, deposit: DepositRequest, admin_id: str, cause: BankingError) -> None:
        """Credit landed without its deposit transaction"""
        message = f"Deposit {deposit.reference_number} credited but not recorded: {cause}"
        metadata = {
            "deposit_id": deposit.id,
            "account_number": deposit.account_number,
            "amount": deposit.amount.to_string(),
            "transaction_id": f"{deposit.id}-dep"
        }
        log_action(self.logger, "critical", message, user_id=admin_id,
                   action="partial_deposit_failure", resource=f"deposit:{deposit.id}",
                   extra=metadata)
        if self.security_events is None:
            return
        try:
            self.security_events.record_security_event(
                event_type="partial_deposit_failure",
                description=message,
                severity=Severity.CRITICAL,
                user_id=admin_id,
                metadata=metadata
            )
        except BankingError as e:
            self.logger.error(f"Could not record security event for deposit {deposit.id}: {e}")

    def _deposit_to_dict(self, deposit: DepositRequest) -> Dict:
        result = deposit.to_dict()
        result['amount'] = str(deposit.amount.amount)
        result['currency'] = deposit.amount.currency.code
        result['deposit_method'] = deposit.deposit_method.value
        result['status'] = deposit.status.value
        result['validated_at'] = deposit.validated_at.isoformat() if deposit.validated_at else None
        return result

    def _deposit_from_dict(self, data: Dict) -> DepositRequest:
        validated_at = None
        if data.get('validated_at'):
            validated_at = datetime.fromisoformat(data['validated_at'])
        return DepositRequest(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            customer_id=data['customer_id'],
            account_id=data['account_id'],
            account_number=data['account_number'],
            amount=Money(Decimal(data['amount']), Currency[data['currency']]),
            deposit_method=DepositMethod(data['deposit_method']),
            reference_number=data['reference_number'],
            description=data.get('description'),
            status=DepositStatus(data['status']),
            admin_notes=data.get('admin_notes'),
            rejection_reason=data.get('rejection_reason'),
            validated_by=data.get('validated_by'),
            validated_at=validated_at,
            transaction_id=data.get('transaction_id'),
            version=data.get('version', 0)
        )
