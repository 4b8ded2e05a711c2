"""
Tests for account statements and the customer dashboard
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, timedelta

from retail_banking.accounts import AccountManager, AccountType
from retail_banking.audit import AuditTrail
from retail_banking.currency import Money, Currency
from retail_banking.errors import NotFound
from retail_banking.statements import StatementService
from retail_banking.storage import InMemoryStorage
from retail_banking.transactions import TransactionLog, TransactionType, TransactionStatus


def xaf(amount):
    return Money(Decimal(amount), Currency.XAF)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestStatements:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.accounts = AccountManager(self.storage, self.audit)
        self.log = TransactionLog(self.storage, self.audit)
        self.statements = StatementService(self.accounts, self.log)

        account = self.accounts.open_account("alice", AccountType.CHECKING)
        self.account = self.accounts.approve_account(account.id, "admin-1")

    def add(self, txn_id, txn_type, amount, created_at=None, status=TransactionStatus.COMPLETED):
        return self.log.record(
            transaction_id=txn_id,
            customer_id="alice",
            account_number=self.account.account_number,
            transaction_type=txn_type,
            amount=xaf(amount),
            description=txn_id,
            reference="TXN00000001",
            status=status,
            created_at=created_at
        )

    def build_history(self):
        self.add("jan-dep", TransactionType.DEPOSIT, "10000", utc(2024, 1, 10))
        self.add("feb-out", TransactionType.TRANSFER_OUT, "-3000", utc(2024, 2, 5))
        self.add("feb-pay", TransactionType.PAYMENT, "-2000", utc(2024, 2, 20), TransactionStatus.FAILED)
        self.add("mar-in", TransactionType.TRANSFER_IN, "500", utc(2024, 3, 2))
        self.accounts.change_balance(self.account.id, xaf("7500"))

    def test_monthly_statements_chain_balances(self):
        self.build_history()
        march, february, january = self.statements.monthly_statements(
            self.account.id, months=3, now=utc(2024, 3, 15)
        )

        assert march.period_start == utc(2024, 3, 1)
        assert march.opening_balance == xaf("7000")
        assert march.closing_balance == xaf("7500")
        assert march.total_credits == xaf("500")

        assert february.closing_balance == march.opening_balance
        assert february.opening_balance == xaf("10000")
        assert february.total_debits == xaf("3000")

        assert january.period_start == utc(2024, 1, 1)
        assert january.opening_balance.is_zero()
        assert january.total_credits == xaf("10000")

    def test_failed_payments_are_left_out(self):
        self.build_history()
        february = self.statements.generate_statement(
            self.account.id, utc(2024, 2, 1), utc(2024, 3, 1)
        )
        assert [t.transaction_id for t in february.transactions] == ["feb-out"]

    def test_statement_across_year_boundary(self):
        self.build_history()
        statements = self.statements.monthly_statements(self.account.id, months=4, now=utc(2024, 3, 15))
        december = statements[-1]
        assert december.period_start == utc(2023, 12, 1)
        assert december.period_end == utc(2024, 1, 1)
        assert december.transactions == []
        assert december.closing_balance.is_zero()

    def test_unknown_account(self):
        with pytest.raises(NotFound):
            self.statements.generate_statement("missing", utc(2024, 1, 1), utc(2024, 2, 1))

    def test_dashboard(self):
        now = datetime.now(timezone.utc)
        self.add("dep", TransactionType.DEPOSIT, "20000", now - timedelta(days=45))
        self.add("rent", TransactionType.TRANSFER_OUT, "-6000", now - timedelta(days=3))
        self.add("bill", TransactionType.PAYMENT, "-1500", now - timedelta(days=2))
        self.add("refunded", TransactionType.PAYMENT, "-900", now - timedelta(days=1), TransactionStatus.FAILED)
        self.accounts.change_balance(self.account.id, xaf("12500"))
        self.accounts.open_account("alice", AccountType.SAVINGS)

        summary = self.statements.dashboard_summary("alice", now=now)
        assert summary["total_balance"] == xaf("12500")
        assert summary["active_accounts"] == 1
        assert summary["monthly_spending"] == xaf("7500")
        assert [t.transaction_id for t in summary["recent_transactions"]] == ["refunded", "bill", "rent", "dep"]
