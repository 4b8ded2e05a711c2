"""
Test suite for account management

Opening, admin lifecycle transitions and versioned balance updates.
"""

import re
import pytest
from decimal import Decimal

from retail_banking.accounts import AccountManager, AccountType, AccountState
from retail_banking.audit import AuditTrail, AuditEventType
from retail_banking.currency import Money, Currency
from retail_banking.errors import (
    ValidationError, NotFound, InsufficientFunds, RemoteWriteFailure
)
from retail_banking.storage import InMemoryStorage


def xaf(amount):
    return Money(Decimal(amount), Currency.XAF)


class AlwaysConflictingStorage(InMemoryStorage):
    """Every versioned write on accounts loses the race"""

    def save_if_version(self, table, record_id, data, expected_version):
        if table == "accounts":
            return False
        return super().save_if_version(table, record_id, data, expected_version)


class TestAccountManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.accounts = AccountManager(self.storage, self.audit)

    def open_active(self, customer_id="c1"):
        account = self.accounts.open_account(customer_id, AccountType.CHECKING)
        return self.accounts.approve_account(account.id, "admin-1")

    def test_open_account(self):
        account = self.accounts.open_account("c1", AccountType.SAVINGS, "Holiday fund")
        assert account.state == AccountState.PENDING
        assert account.balance.is_zero()
        assert account.currency == Currency.XAF
        assert account.name == "Holiday fund"
        assert re.fullmatch(r"CCMC\d{10}", account.account_number)
        assert self.accounts.get_account_by_number(account.account_number).id == account.id

    def test_default_name(self):
        account = self.accounts.open_account("c1", AccountType.BUSINESS)
        assert account.name == "Business Account"

    def test_account_numbers_are_unique(self):
        numbers = {self.accounts.open_account("c1", AccountType.SAVINGS).account_number for _ in range(20)}
        assert len(numbers) == 20

    def test_approve(self):
        account = self.open_active()
        assert account.state == AccountState.ACTIVE
        assert account.version == 1
        assert account.can_debit()

        events = self.audit.get_events_for_entity("account", account.id)
        assert [e.event_type for e in events] == [AuditEventType.ACCOUNT_OPENED, AuditEventType.ACCOUNT_APPROVED]

    def test_approve_twice(self):
        account = self.open_active()
        with pytest.raises(ValidationError):
            self.accounts.approve_account(account.id, "admin-1")

    def test_freeze_and_unfreeze(self):
        account = self.open_active()
        frozen = self.accounts.freeze_account(account.id, "admin-1", "Suspicious activity")
        assert frozen.state == AccountState.FROZEN
        assert not frozen.can_debit()
        assert frozen.can_credit()

        active = self.accounts.unfreeze_account(account.id, "admin-1")
        assert active.state == AccountState.ACTIVE

    def test_cannot_freeze_pending(self):
        account = self.accounts.open_account("c1", AccountType.SAVINGS)
        with pytest.raises(ValidationError):
            self.accounts.freeze_account(account.id, "admin-1")

    def test_close_requires_zero_balance(self):
        account = self.open_active()
        self.accounts.change_balance(account.id, xaf("500"))
        with pytest.raises(ValidationError):
            self.accounts.close_account(account.id, "admin-1")

        self.accounts.change_balance(account.id, xaf("-500"))
        closed = self.accounts.close_account(account.id, "admin-1", "Customer request")
        assert closed.state == AccountState.CLOSED
        assert not closed.can_credit()

        with pytest.raises(ValidationError):
            self.accounts.unfreeze_account(account.id, "admin-1")

    def test_unknown_account(self):
        assert self.accounts.get_account("missing") is None
        with pytest.raises(NotFound):
            self.accounts.approve_account("missing", "admin-1")

    def test_apply_balance_change_checks_version(self):
        account = self.open_active()
        updated = self.accounts.apply_balance_change(account.id, xaf("1000"), account.version)
        assert updated.balance == xaf("1000")
        assert updated.version == account.version + 1

        stale = self.accounts.apply_balance_change(account.id, xaf("1000"), account.version)
        assert stale is None
        assert self.accounts.get_account(account.id).balance == xaf("1000")

    def test_marked_change_applies_once(self):
        account = self.open_active()
        first = self.accounts.change_balance(account.id, xaf("1000"), intent_id="TI1")
        assert first.applied_intents == ["TI1"]

        again = self.accounts.change_balance(account.id, xaf("1000"), intent_id="TI1")
        assert again.balance == xaf("1000")
        assert again.version == first.version

        stored = self.accounts.get_account(account.id)
        assert stored.balance == xaf("1000")
        assert stored.applied_intents == ["TI1"]

    def test_debit_cannot_go_negative(self):
        account = self.open_active()
        self.accounts.change_balance(account.id, xaf("1000"))
        with pytest.raises(InsufficientFunds):
            self.accounts.change_balance(account.id, xaf("-1500"))
        assert self.accounts.get_account(account.id).balance == xaf("1000")

        emptied = self.accounts.change_balance(account.id, xaf("-1000"))
        assert emptied.balance.is_zero()

    def test_persistent_conflicts_raise(self):
        storage = AlwaysConflictingStorage()
        accounts = AccountManager(storage, AuditTrail(storage))
        account = accounts.open_account("c1", AccountType.SAVINGS)
        with pytest.raises(RemoteWriteFailure):
            accounts.change_balance(account.id, xaf("100"), max_retries=2)
        with pytest.raises(RemoteWriteFailure):
            accounts.approve_account(account.id, "admin-1")

    def test_customer_accounts_and_total(self):
        first = self.open_active("c1")
        second = self.open_active("c1")
        self.open_active("c2")
        self.accounts.change_balance(first.id, xaf("700"))
        self.accounts.change_balance(second.id, xaf("300"))

        assert [a.id for a in self.accounts.get_customer_accounts("c1")] == [first.id, second.id]
        assert self.accounts.get_total_balance("c1") == xaf("1000")
        assert self.accounts.get_total_balance("nobody").is_zero()

    def test_list_by_state(self):
        active = self.open_active()
        pending = self.accounts.open_account("c1", AccountType.SAVINGS)
        assert [a.id for a in self.accounts.list_accounts(AccountState.PENDING)] == [pending.id]
        assert [a.id for a in self.accounts.list_accounts(AccountState.ACTIVE)] == [active.id]
        assert len(self.accounts.list_accounts()) == 2
