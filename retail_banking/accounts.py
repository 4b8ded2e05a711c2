"""
Account Management Module

Manages customer bank accounts: opening (pending admin approval), lifecycle
states, and balance updates. Every balance write is a compare-and-swap on the
account's `version`, so concurrent writers never overwrite each other.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from enum import Enum
import secrets
import uuid

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import (
    ValidationError, NotFound, InsufficientFunds, RemoteWriteFailure
)
from .logging_config import get_logger, log_action


ACCOUNT_NUMBER_PREFIX = "CCMC"
ACCOUNT_NUMBER_DIGITS = 10


class AccountType(Enum):
    """Retail account products"""
    SAVINGS = "savings"
    CHECKING = "checking"
    BUSINESS = "business"


class AccountState(Enum):
    """Account lifecycle states"""
    PENDING = "pending"    # Opened by the customer, awaiting admin approval
    ACTIVE = "active"      # Normal operation
    FROZEN = "frozen"      # Suspended by an admin; may still receive credits
    CLOSED = "closed"      # Permanently closed


@dataclass
class Account(StorageRecord):
    """
    Customer bank account
    """
    account_number: str
    customer_id: str
    account_type: AccountType
    currency: Currency
    name: str
    balance: Money
    state: AccountState = AccountState.PENDING
    version: int = 0
    # Saga steps already applied to this balance, written with the balance itself
    applied_intents: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.balance.currency != self.currency:
            raise ValueError("Balance currency must match account currency")

    def can_debit(self) -> bool:
        """Check if account can be debited"""
        return self.state == AccountState.ACTIVE

    def can_credit(self) -> bool:
        """Check if account can receive credits"""
        return self.state in [AccountState.ACTIVE, AccountState.FROZEN]


class AccountManager:
    """
    Manages account lifecycle and versioned balance updates
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        currency: Currency = Currency.XAF
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.currency = currency
        self.accounts_table = "accounts"
        self.logger = get_logger("retail_banking.accounts")

    def open_account(
        self,
        customer_id: str,
        account_type: AccountType,
        name: Optional[str] = None
    ) -> Account:
        """
        Open a new account in pending state with a zero balance

        Args:
            customer_id: ID of account owner
            account_type: Savings, checking or business
            name: Account name shown to the customer

        Returns:
            Created Account object
        """
        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_number=self._generate_account_number(),
            customer_id=customer_id,
            account_type=account_type,
            currency=self.currency,
            name=(name or f"{account_type.value.title()} Account").strip(),
            balance=Money.zero(self.currency)
        )

        self._save_account(account)

        self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_OPENED,
            entity_type="account",
            entity_id=account.id,
            metadata={
                "account_number": account.account_number,
                "customer_id": customer_id,
                "account_type": account_type.value,
                "currency": self.currency.code,
                "name": account.name
            },
            user_id=customer_id
        )

        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        account_dict = self.storage.load(self.accounts_table, account_id)
        if account_dict:
            return self._account_from_dict(account_dict)
        return None

    def require_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if not account:
            raise NotFound(f"Account {account_id} not found")
        return account

    def get_account_by_number(self, account_number: str) -> Optional[Account]:
        """Get account by account number"""
        accounts = self.storage.find(self.accounts_table, {"account_number": account_number})
        if accounts:
            return self._account_from_dict(accounts[0])
        return None

    def get_customer_accounts(self, customer_id: str) -> List[Account]:
        """Get all accounts for a customer, oldest first"""
        accounts_data = self.storage.find(self.accounts_table, {"customer_id": customer_id})
        accounts = [self._account_from_dict(data) for data in accounts_data]
        accounts.sort(key=lambda a: a.created_at)
        return accounts

    def list_accounts(self, state: Optional[AccountState] = None) -> List[Account]:
        """List all accounts, optionally by state"""
        filters = {"state": state.value} if state else {}
        accounts = [
            self._account_from_dict(data)
            for data in self.storage.find(self.accounts_table, filters)
        ]
        accounts.sort(key=lambda a: a.created_at)
        return accounts

    def get_total_balance(self, customer_id: str) -> Money:
        """Sum of balances over the customer's accounts"""
        total = Money.zero(self.currency)
        for account in self.get_customer_accounts(customer_id):
            total = total + account.balance
        return total

    def approve_account(self, account_id: str, admin_id: str) -> Account:
        """Activate a pending account"""
        return self._transition(
            account_id, {AccountState.PENDING}, AccountState.ACTIVE,
            AuditEventType.ACCOUNT_APPROVED, admin_id, "approved"
        )

    def freeze_account(self, account_id: str, admin_id: str, reason: str = "") -> Account:
        """Freeze an account"""
        return self._transition(
            account_id, {AccountState.ACTIVE}, AccountState.FROZEN,
            AuditEventType.ACCOUNT_FROZEN, admin_id, reason
        )

    def unfreeze_account(self, account_id: str, admin_id: str, reason: str = "") -> Account:
        """Unfreeze an account"""
        return self._transition(
            account_id, {AccountState.FROZEN}, AccountState.ACTIVE,
            AuditEventType.ACCOUNT_UNFROZEN, admin_id, reason
        )

    def close_account(self, account_id: str, admin_id: str, reason: str = "") -> Account:
        """Close an account; only a zero balance can be closed"""
        account = self.require_account(account_id)
        if not account.balance.is_zero():
            raise ValidationError(
                f"Cannot close account with non-zero balance: {account.balance.to_string()}"
            )
        return self._transition(
            account_id,
            {AccountState.PENDING, AccountState.ACTIVE, AccountState.FROZEN},
            AccountState.CLOSED, AuditEventType.ACCOUNT_CLOSED, admin_id, reason
        )

    def _transition(
        self,
        account_id: str,
        allowed_from: set,
        new_state: AccountState,
        event_type: AuditEventType,
        admin_id: str,
        reason: str
    ) -> Account:
        """Move an account between lifecycle states with a versioned write"""
        account = self.require_account(account_id)
        if account.state not in allowed_from:
            raise ValidationError(
                f"Account {account.account_number} is {account.state.value}; "
                f"cannot change to {new_state.value}"
            )

        old_state = account.state
        expected_version = account.version
        account.state = new_state
        account.version += 1
        account.updated_at = datetime.now(timezone.utc)

        if not self.storage.save_if_version(
            self.accounts_table, account.id, self._account_to_dict(account), expected_version
        ):
            raise RemoteWriteFailure(
                f"Account {account.account_number} changed concurrently; retry"
            )

        self.audit_trail.log_event(
            event_type=event_type,
            entity_type="account",
            entity_id=account.id,
            metadata={
                "old_state": old_state.value,
                "new_state": new_state.value,
                "reason": reason
            },
            user_id=admin_id
        )
        log_action(self.logger, "info",
                   f"Account {account.account_number} {old_state.value} -> {new_state.value}",
                   user_id=admin_id, action=event_type.value,
                   resource=f"account:{account.id}")

        return account

    def apply_balance_change(
        self,
        account_id: str,
        delta: Money,
        expected_version: int,
        intent_id: Optional[str] = None
    ) -> Optional[Account]:
        """
        Compare-and-swap a balance change.

        When `intent_id` is given it is stored in `applied_intents` by the
        same write, and a change whose id is already there is not applied
        again; the account is returned as it stands.

        Args:
            account_id: Account to change
            delta: Signed amount; negative for a debit
            expected_version: Version the caller read the balance at
            intent_id: Marker of the saga step making the change

        Returns:
            The updated account, or None when the version moved on

        Raises:
            NotFound: Unknown account
            InsufficientFunds: A debit would make the balance negative
            RemoteWriteFailure: The store rejected the write
        """
        account = self.require_account(account_id)
        if account.version != expected_version:
            return None
        if intent_id and intent_id in account.applied_intents:
            return account

        new_balance = account.balance + delta
        if delta.is_negative() and new_balance.is_negative():
            raise InsufficientFunds(
                f"Insufficient funds in {account.account_number}: "
                f"balance {account.balance.to_string()}, requested {abs(delta).to_string()}"
            )

        account.balance = new_balance
        account.version = expected_version + 1
        if intent_id:
            account.applied_intents.append(intent_id)
        account.updated_at = datetime.now(timezone.utc)

        if not self.storage.save_if_version(
            self.accounts_table, account.id, self._account_to_dict(account), expected_version
        ):
            return None
        return account

    def change_balance(
        self,
        account_id: str,
        delta: Money,
        max_retries: int = 5,
        intent_id: Optional[str] = None
    ) -> Account:
        """
        Apply a balance change against the latest version, retrying on
        version conflicts.

        Raises:
            RemoteWriteFailure: Conflicts persisted past max_retries
        """
        for _ in range(max_retries + 1):
            account = self.require_account(account_id)
            updated = self.apply_balance_change(account_id, delta, account.version, intent_id)
            if updated is not None:
                return updated
        raise RemoteWriteFailure(
            f"Balance update on account {account_id} kept conflicting after {max_retries} retries"
        )

    def _generate_account_number(self) -> str:
        """Generate a unique account number: CCMC followed by 10 digits"""
        while True:
            digits = "".join(str(secrets.randbelow(10)) for _ in range(ACCOUNT_NUMBER_DIGITS))
            number = f"{ACCOUNT_NUMBER_PREFIX}{digits}"
            if not self.get_account_by_number(number):
                return number

    def _save_account(self, account: Account) -> None:
        """Save account to storage"""
        self.storage.save(self.accounts_table, account.id, self._account_to_dict(account))

    def _account_to_dict(self, account: Account) -> Dict:
        """Convert Account to dictionary for storage"""
        result = account.to_dict()
        result['account_type'] = account.account_type.value
        result['currency'] = account.currency.code
        result['state'] = account.state.value
        result['balance'] = str(account.balance.amount)
        return result

    def _account_from_dict(self, data: Dict) -> Account:
        """Convert dictionary to Account"""
        currency = Currency[data['currency']]
        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_number=data['account_number'],
            customer_id=data['customer_id'],
            account_type=AccountType(data['account_type']),
            currency=currency,
            name=data['name'],
            balance=Money(Decimal(data['balance']), currency),
            state=AccountState(data['state']),
            version=data.get('version', 0),
            applied_intents=list(data.get('applied_intents') or [])
        )
