"""
Test suite for loan applications

Payment formula, term and amount rules, and admin review.
"""

import pytest
from decimal import Decimal

from retail_banking.audit import AuditTrail
from retail_banking.customers import CustomerManager
from retail_banking.errors import ValidationError, NotAuthorized, NotFound
from retail_banking.identity import Role
from retail_banking.loans import (
    LoanManager, LoanType, LoanStatus, calculate_monthly_payment, loan_quote
)
from retail_banking.settings import SettingsManager
from retail_banking.storage import InMemoryStorage


class TestPaymentFormula:

    def test_reference_example(self):
        # 5,000 at 5.99% over 36 months
        assert calculate_monthly_payment(Decimal('5000'), Decimal('5.99'), 36) == Decimal('152.09')

    def test_zero_rate_is_simple_division(self):
        assert calculate_monthly_payment(Decimal('12000'), Decimal('0'), 12) == Decimal('1000.00')

    def test_longer_term_lowers_payment(self):
        short = calculate_monthly_payment(Decimal('1000000'), Decimal('5.99'), 12)
        long = calculate_monthly_payment(Decimal('1000000'), Decimal('5.99'), 84)
        assert long < short

    def test_term_must_be_positive(self):
        with pytest.raises(ValidationError):
            calculate_monthly_payment(Decimal('1000'), Decimal('5.99'), 0)

    def test_quote_totals(self):
        quote = loan_quote(Decimal('5000'), Decimal('5.99'), 36)
        assert quote.monthly_payment == Decimal('152.09')
        assert quote.total_payment == Decimal('5475.24')
        assert quote.total_interest == Decimal('475.24')


class TestLoanManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.settings = SettingsManager(self.storage, self.audit)
        self.customers = CustomerManager(self.storage, self.audit)
        self.loans = LoanManager(self.storage, self.audit, settings=self.settings)

        self.admin = self.customers.register_customer(
            "Bank", "Admin", "admin@ccmcbank.com", "password123", role=Role.ADMIN
        ).to_identity()
        customer = self.customers.register_customer("Jean", "Mbarga", "jean@example.com", "password123")
        self.customer = self.customers.approve_customer(customer.id, self.admin.id).to_identity()

    def apply(self, amount="5000000", term=36, credit_score=720):
        return self.loans.apply_for_loan(
            self.customer, LoanType.AUTO, amount, term,
            purpose="Delivery van", credit_score=credit_score
        )

    def test_application_is_pending_with_payment(self):
        loan = self.apply()
        assert loan.status == LoanStatus.PENDING
        assert loan.annual_interest_rate == Decimal('5.99')
        assert loan.monthly_payment == calculate_monthly_payment(Decimal('5000000'), Decimal('5.99'), 36)
        assert self.loans.get_customer_loans(self.customer.id)[0].id == loan.id

    def test_pending_customer_cannot_apply(self):
        pending = self.customers.register_customer("New", "Person", "new@example.com", "password123")
        with pytest.raises(NotAuthorized):
            self.loans.apply_for_loan(pending.to_identity(), LoanType.PERSONAL, "5000", 12)

    @pytest.mark.parametrize("amount", ["500", "300000000"])
    def test_amount_out_of_range(self, amount):
        with pytest.raises(ValidationError):
            self.apply(amount=amount)

    @pytest.mark.parametrize("term", [6, 18, 96])
    def test_term_rules(self, term):
        with pytest.raises(ValidationError):
            self.apply(term=term)

    def test_credit_score_range(self):
        with pytest.raises(ValidationError):
            self.apply(credit_score=900)

    def test_max_amount_follows_settings(self):
        self.settings.set("max_loan_amount", 1000000, self.admin.id)
        with pytest.raises(ValidationError):
            self.apply(amount="2000000")
        assert self.apply(amount="900000").status == LoanStatus.PENDING

    def test_approve(self):
        loan = self.apply()
        approved = self.loans.approve_loan(self.admin, loan.id, notes="Good history")
        assert approved.status == LoanStatus.APPROVED
        assert approved.reviewed_by == self.admin.id
        assert self.loans.list_loans(LoanStatus.APPROVED)[0].id == loan.id

    def test_low_credit_score_blocks_approval(self):
        loan = self.apply(credit_score=550)
        with pytest.raises(ValidationError):
            self.loans.approve_loan(self.admin, loan.id)
        denied = self.loans.deny_loan(self.admin, loan.id, notes="Score too low")
        assert denied.status == LoanStatus.DENIED

    def test_only_pending_loans_are_reviewed(self):
        loan = self.apply()
        self.loans.deny_loan(self.admin, loan.id)
        with pytest.raises(ValidationError):
            self.loans.approve_loan(self.admin, loan.id)

    def test_customers_cannot_review(self):
        loan = self.apply()
        with pytest.raises(NotAuthorized):
            self.loans.approve_loan(self.customer, loan.id)

    def test_unknown_loan(self):
        with pytest.raises(NotFound):
            self.loans.deny_loan(self.admin, "missing")

    def test_quote_checks_terms(self):
        quote = self.loans.quote("5000", 36)
        assert quote.monthly_payment == Decimal('152.09')
        with pytest.raises(ValidationError):
            self.loans.quote("5000", 30)
