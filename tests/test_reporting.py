"""
Tests for the admin reporting engine
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone

from retail_banking.accounts import AccountManager, AccountType
from retail_banking.audit import AuditTrail
from retail_banking.currency import Money, Currency
from retail_banking.customers import CustomerManager
from retail_banking.deposits import DepositManager, DepositMethod
from retail_banking.identity import Role
from retail_banking.loans import LoanManager, LoanType
from retail_banking.reporting import ReportingEngine
from retail_banking.storage import InMemoryStorage
from retail_banking.transactions import TransactionLog, TransactionType, TransactionStatus


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestReportingEngine:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.customers = CustomerManager(self.storage, self.audit)
        self.accounts = AccountManager(self.storage, self.audit)
        self.log = TransactionLog(self.storage, self.audit)
        self.loans = LoanManager(self.storage, self.audit)
        self.deposits = DepositManager(self.storage, self.accounts, self.log, self.audit)
        self.engine = ReportingEngine(
            self.customers, self.accounts, self.loans, self.deposits, self.log
        )

        self.admin = self.customers.register_customer(
            "Bank", "Admin", "admin@ccmcbank.com", "password123", role=Role.ADMIN
        ).to_identity()
        customer = self.customers.register_customer("Alice", "Fouda", "alice@example.com", "password123")
        self.alice = self.customers.approve_customer(customer.id, self.admin.id).to_identity()
        self.customers.register_customer("Bob", "Eto", "bob@example.com", "password123")

    def add_transaction(self, txn_id, amount, created_at, status=TransactionStatus.COMPLETED):
        self.log.record(
            transaction_id=txn_id,
            customer_id=self.alice.id,
            account_number="CCMC0000000001",
            transaction_type=TransactionType.TRANSFER_OUT,
            amount=Money(Decimal(amount), Currency.XAF),
            description=txn_id,
            reference="TXN00000001",
            status=status,
            created_at=created_at
        )

    def test_monthly_loan_applications(self):
        self.loans.apply_for_loan(self.alice, LoanType.PERSONAL, "500000", 12, credit_score=700)
        self.loans.apply_for_loan(self.alice, LoanType.AUTO, "3000000", 36, credit_score=700)

        report = self.engine.monthly_loan_applications(months=6)
        assert len(report.data) == 6
        assert report.data[-1]["month"] == datetime.now(timezone.utc).strftime("%Y-%m")
        assert report.data[-1]["loans"] == 2
        assert report.totals["loans"] == 2

    def test_loan_type_distribution(self):
        self.loans.apply_for_loan(self.alice, LoanType.PERSONAL, "500000", 12)
        self.loans.apply_for_loan(self.alice, LoanType.PERSONAL, "250000", 24)
        self.loans.apply_for_loan(self.alice, LoanType.HOME, "50000000", 84)

        rows = {row["loan_type"]: row for row in self.engine.loan_type_distribution().data}
        assert rows["personal"]["count"] == 2
        assert rows["personal"]["total_amount"] == Decimal('750000')
        assert rows["home"]["count"] == 1
        assert rows["business"]["count"] == 0

    def test_monthly_transaction_volume(self):
        self.add_transaction("jan", "-3000", utc(2024, 1, 10))
        self.add_transaction("mar-1", "-1000", utc(2024, 3, 2))
        self.add_transaction("mar-2", "2500", utc(2024, 3, 3))
        self.add_transaction("mar-failed", "-9000", utc(2024, 3, 4), TransactionStatus.FAILED)
        self.add_transaction("too-old", "-7000", utc(2023, 6, 1))

        report = self.engine.monthly_transaction_volume(months=3, now=utc(2024, 3, 15))
        assert [row["month"] for row in report.data] == ["2024-01", "2024-02", "2024-03"]
        assert [row["volume"] for row in report.data] == [Decimal('3000'), Decimal('0'), Decimal('3500')]
        assert report.data[2]["transactions"] == 2
        assert report.totals["volume"] == Decimal('6500')

    def test_summary_stats(self):
        scored = self.loans.apply_for_loan(self.alice, LoanType.PERSONAL, "500000", 12, credit_score=700)
        low = self.loans.apply_for_loan(self.alice, LoanType.PERSONAL, "500000", 12, credit_score=500)
        self.loans.approve_loan(self.admin, scored.id)
        self.loans.deny_loan(self.admin, low.id)
        self.loans.apply_for_loan(self.alice, LoanType.AUTO, "2000000", 24)

        account = self.accounts.open_account(self.alice.id, AccountType.SAVINGS)
        self.accounts.approve_account(account.id, self.admin.id)
        self.accounts.open_account(self.alice.id, AccountType.CHECKING)
        deposit = self.deposits.request_deposit(self.alice, account.id, "40000", DepositMethod.CASH)
        self.deposits.approve_deposit(self.admin, deposit.id)
        self.deposits.request_deposit(self.alice, account.id, "1000", DepositMethod.CHECK)

        stats = self.engine.summary_stats()
        assert stats["total_customers"] == 2
        assert stats["pending_approvals"] == 1
        assert stats["pending_loans"] == 1
        assert stats["approved_loans"] == 1
        assert stats["denial_rate"] == Decimal('50.0')
        assert stats["average_credit_score"] == 600
        assert stats["total_deposits_volume"] == Money(Decimal('40000'), Currency.XAF)
        assert stats["pending_deposits"] == 1
        assert stats["pending_accounts"] == 1

    def test_empty_overview(self):
        overview = self.engine.admin_overview()
        assert overview["summary"]["denial_rate"] == Decimal('0')
        assert overview["summary"]["average_credit_score"] == 0
        assert len(overview["monthly_loans"]) == 6
        assert len(overview["loan_types"]) == len(LoanType)
