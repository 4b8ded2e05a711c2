"""
Loan Applications Module

Customers apply for personal, auto, home or business loans at the bank's
fixed rate; admins approve or deny. Payments use the standard annuity
formula with monthly compounding.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .audit import AuditTrail, AuditEventType
from .currency import Money, Currency, parse_amount
from .errors import ValidationError, NotFound
from .identity import CurrentIdentity
from .settings import SettingsManager
from .storage import StorageInterface, StorageRecord
from .logging_config import get_logger, log_action


DISPLAY_QUANTUM = Decimal('0.01')
TERM_STEP_MONTHS = 12


class LoanType(Enum):
    PERSONAL = "personal"
    AUTO = "auto"
    HOME = "home"
    BUSINESS = "business"


class LoanStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


@dataclass
class LoanQuote:
    monthly_payment: Decimal
    total_payment: Decimal
    total_interest: Decimal


@dataclass
class LoanApplication(StorageRecord):
    customer_id: str
    loan_type: LoanType
    amount: Money
    term_months: int
    annual_interest_rate: Decimal
    monthly_payment: Decimal
    purpose: Optional[str] = None
    credit_score: Optional[int] = None
    status: LoanStatus = LoanStatus.PENDING
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None


def calculate_monthly_payment(
    principal: Decimal,
    annual_rate_percent: Decimal,
    term_months: int
) -> Decimal:
    """
    Monthly payment of a fully amortizing loan, rounded to cents

    Standard loan payment formula: P * [r(1+r)^n] / [(1+r)^n - 1]
    where r = annual rate / 1200 and n = term in months
    """
    if term_months <= 0:
        raise ValidationError("Loan term must be positive")

    principal = Decimal(principal)
    periodic_rate = Decimal(annual_rate_percent) / Decimal('1200')

    if periodic_rate == Decimal('0'):
        # No interest - simple division
        payment = principal / Decimal(term_months)
    else:
        factor = (Decimal('1') + periodic_rate) ** term_months
        payment = principal * (periodic_rate * factor) / (factor - Decimal('1'))

    return payment.quantize(DISPLAY_QUANTUM, rounding=ROUND_HALF_UP)


def loan_quote(principal: Decimal, annual_rate_percent: Decimal, term_months: int) -> LoanQuote:
    """Monthly payment, total repaid and total interest"""
    monthly = calculate_monthly_payment(principal, annual_rate_percent, term_months)
    total = (monthly * term_months).quantize(DISPLAY_QUANTUM, rounding=ROUND_HALF_UP)
    return LoanQuote(
        monthly_payment=monthly,
        total_payment=total,
        total_interest=total - Decimal(principal)
    )


class LoanManager:
    """
    Loan applications and admin review
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        settings: Optional[SettingsManager] = None,
        annual_interest_rate: Decimal = Decimal('5.99'),
        min_amount: Decimal = Decimal('1000'),
        max_amount: Decimal = Decimal('200000000'),
        min_term_months: int = 12,
        max_term_months: int = 84,
        currency: Currency = Currency.XAF
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.settings = settings
        self.annual_interest_rate = Decimal(annual_interest_rate)
        self.min_amount = Decimal(min_amount)
        self.max_amount = Decimal(max_amount)
        self.min_term_months = min_term_months
        self.max_term_months = max_term_months
        self.currency = currency
        self.table_name = "loans"
        self.logger = get_logger("retail_banking.loans")

    def _max_amount(self) -> Decimal:
        if self.settings:
            return Decimal(str(self.settings.get("max_loan_amount")))
        return self.max_amount

    def quote(self, amount: Any, term_months: int) -> LoanQuote:
        """Quote at the bank's rate, after the same checks as an application"""
        money = self._validate_terms(amount, term_months)
        return loan_quote(money.amount, self.annual_interest_rate, term_months)

    def _validate_terms(self, amount: Any, term_months: int) -> Money:
        money = parse_amount(amount, self.currency)
        max_amount = self._max_amount()
        if money.amount < self.min_amount or money.amount > max_amount:
            raise ValidationError(
                f"Loan amount must be between {Money(self.min_amount, self.currency).to_string()} "
                f"and {Money(max_amount, self.currency).to_string()}"
            )
        if (
            term_months < self.min_term_months
            or term_months > self.max_term_months
            or term_months % TERM_STEP_MONTHS != 0
        ):
            raise ValidationError(
                f"Loan term must be {self.min_term_months} to {self.max_term_months} months "
                f"in steps of {TERM_STEP_MONTHS}"
            )
        return money

    def apply_for_loan(
        self,
        identity: CurrentIdentity,
        loan_type: LoanType,
        amount: Any,
        term_months: int,
        purpose: Optional[str] = None,
        credit_score: Optional[int] = None
    ) -> LoanApplication:
        """
        Submit a loan application for admin review

        Args:
            identity: Applicant; must be an approved customer
            loan_type: Personal, auto, home or business
            amount: Requested principal
            term_months: 12 to 84, in 12-month steps
            purpose: Free text
            credit_score: Self-declared or bureau score

        Returns:
            Pending LoanApplication

        Raises:
            NotAuthorized: Applicant not approved
            ValidationError: Amount or term out of range
        """
        identity.require_approved()
        money = self._validate_terms(amount, term_months)
        if credit_score is not None and not 300 <= credit_score <= 850:
            raise ValidationError("Credit score must be between 300 and 850")

        now = datetime.now(timezone.utc)
        loan = LoanApplication(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            customer_id=identity.id,
            loan_type=loan_type,
            amount=money,
            term_months=term_months,
            annual_interest_rate=self.annual_interest_rate,
            monthly_payment=calculate_monthly_payment(money.amount, self.annual_interest_rate, term_months),
            purpose=purpose,
            credit_score=credit_score
        )
        self.storage.save(self.table_name, loan.id, self._loan_to_dict(loan))

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_APPLIED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "loan_type": loan_type.value,
                "amount": money.to_string(),
                "term_months": term_months,
                "monthly_payment": loan.monthly_payment
            },
            user_id=identity.id
        )
        log_action(self.logger, "info", f"Loan application submitted: {loan.id}",
                   user_id=identity.id, action="apply_for_loan",
                   resource=f"loan:{loan.id}", extra={"amount": money.to_string()})
        return loan

    def get_loan(self, loan_id: str) -> Optional[LoanApplication]:
        data = self.storage.load(self.table_name, loan_id)
        return self._loan_from_dict(data) if data else None

    def list_loans(self, status: Optional[LoanStatus] = None) -> List[LoanApplication]:
        """All applications, newest first"""
        filters = {"status": status.value} if status else {}
        loans = [self._loan_from_dict(d) for d in self.storage.find(self.table_name, filters)]
        loans.sort(key=lambda l: l.created_at, reverse=True)
        return loans

    def get_customer_loans(self, customer_id: str) -> List[LoanApplication]:
        loans = [
            self._loan_from_dict(d)
            for d in self.storage.find(self.table_name, {"customer_id": customer_id})
        ]
        loans.sort(key=lambda l: l.created_at, reverse=True)
        return loans

    def approve_loan(
        self,
        identity: CurrentIdentity,
        loan_id: str,
        notes: Optional[str] = None
    ) -> LoanApplication:
        """
        Approve a pending application. A declared credit score below the
        configured minimum blocks approval.
        """
        identity.require_admin()
        loan = self._require_pending(loan_id)

        if self.settings and loan.credit_score is not None:
            min_score = int(self.settings.get("min_credit_score"))
            if loan.credit_score < min_score:
                raise ValidationError(
                    f"Credit score {loan.credit_score} is below the minimum of {min_score}"
                )

        return self._review(loan, LoanStatus.APPROVED, identity.id, notes)

    def deny_loan(
        self,
        identity: CurrentIdentity,
        loan_id: str,
        notes: Optional[str] = None
    ) -> LoanApplication:
        identity.require_admin()
        loan = self._require_pending(loan_id)
        return self._review(loan, LoanStatus.DENIED, identity.id, notes)

    def _require_pending(self, loan_id: str) -> LoanApplication:
        loan = self.get_loan(loan_id)
        if not loan:
            raise NotFound(f"Loan {loan_id} not found")
        if loan.status != LoanStatus.PENDING:
            raise ValidationError(f"Loan {loan_id} is already {loan.status.value}")
        return loan

    def _review(
        self,
        loan: LoanApplication,
        status: LoanStatus,
        admin_id: str,
        notes: Optional[str]
    ) -> LoanApplication:
        now = datetime.now(timezone.utc)
        loan.status = status
        loan.reviewed_by = admin_id
        loan.reviewed_at = now
        loan.review_notes = notes
        loan.updated_at = now
        self.storage.save(self.table_name, loan.id, self._loan_to_dict(loan))

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_APPROVED if status == LoanStatus.APPROVED else AuditEventType.LOAN_DENIED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={"amount": loan.amount.to_string(), "notes": notes},
            user_id=admin_id
        )
        return loan

    def _loan_to_dict(self, loan: LoanApplication) -> Dict:
        result = loan.to_dict()
        result['loan_type'] = loan.loan_type.value
        result['status'] = loan.status.value
        result['amount'] = str(loan.amount.amount)
        result['currency'] = loan.amount.currency.code
        result['reviewed_at'] = loan.reviewed_at.isoformat() if loan.reviewed_at else None
        return result

    def _loan_from_dict(self, data: Dict) -> LoanApplication:
        reviewed_at = None
        if data.get('reviewed_at'):
            reviewed_at = datetime.fromisoformat(data['reviewed_at'])
        return LoanApplication(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            customer_id=data['customer_id'],
            loan_type=LoanType(data['loan_type']),
            amount=Money(Decimal(data['amount']), Currency[data['currency']]),
            term_months=data['term_months'],
            annual_interest_rate=Decimal(data['annual_interest_rate']),
            monthly_payment=Decimal(data['monthly_payment']),
            purpose=data.get('purpose'),
            credit_score=data.get('credit_score'),
            status=LoanStatus(data['status']),
            reviewed_by=data.get('reviewed_by'),
            reviewed_at=reviewed_at,
            review_notes=data.get('review_notes')
        )
