"""
Reporting Engine Module

Figures for the admin reports screen: loan applications and transaction
volume per month, loan mix, and headline statistics.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from collections import Counter

from .accounts import AccountManager, AccountState
from .currency import Currency, Money
from .customers import CustomerManager
from .deposits import DepositManager, DepositStatus
from .identity import ApprovalStatus, Role
from .loans import LoanManager, LoanStatus, LoanType
from .transactions import TransactionLog, TransactionStatus


@dataclass
class ReportResult:
    """Result of a report execution"""
    report_id: str
    generated_at: datetime
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    data: List[Dict[str, Any]] = field(default_factory=list)
    totals: Dict[str, Any] = field(default_factory=dict)


def _month_starts(now: datetime, months: int) -> List[datetime]:
    """First instant of each of the last `months` calendar months, oldest first"""
    starts = []
    year, month = now.year, now.month
    for _ in range(months):
        starts.append(datetime(year, month, 1, tzinfo=timezone.utc))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    starts.reverse()
    return starts


def _month_key(moment: datetime) -> str:
    return moment.strftime("%Y-%m")


class ReportingEngine:
    """
    Admin reporting over customers, loans, deposits and transactions
    """

    def __init__(
        self,
        customer_manager: CustomerManager,
        account_manager: AccountManager,
        loan_manager: LoanManager,
        deposit_manager: DepositManager,
        transaction_log: TransactionLog,
        currency: Currency = Currency.XAF
    ):
        self.customer_manager = customer_manager
        self.account_manager = account_manager
        self.loan_manager = loan_manager
        self.deposit_manager = deposit_manager
        self.transaction_log = transaction_log
        self.currency = currency

    def monthly_loan_applications(self, months: int = 6, now: Optional[datetime] = None) -> ReportResult:
        """Number of loan applications per calendar month"""
        now = now or datetime.now(timezone.utc)
        starts = _month_starts(now, months)
        counts = Counter(
            _month_key(loan.created_at)
            for loan in self.loan_manager.list_loans()
            if loan.created_at >= starts[0]
        )
        data = [
            {"month": _month_key(start), "label": start.strftime("%b"), "loans": counts.get(_month_key(start), 0)}
            for start in starts
        ]
        return ReportResult(
            report_id="monthly_loan_applications",
            generated_at=now,
            period_start=starts[0],
            period_end=now,
            data=data,
            totals={"loans": sum(row["loans"] for row in data)}
        )

    def loan_type_distribution(self) -> ReportResult:
        """Applications and requested principal per loan type"""
        loans = self.loan_manager.list_loans()
        data = []
        for loan_type in LoanType:
            of_type = [l for l in loans if l.loan_type == loan_type]
            data.append({
                "loan_type": loan_type.value,
                "count": len(of_type),
                "total_amount": sum((l.amount.amount for l in of_type), Decimal('0'))
            })
        return ReportResult(
            report_id="loan_type_distribution",
            generated_at=datetime.now(timezone.utc),
            period_start=None,
            period_end=None,
            data=data,
            totals={"count": len(loans)}
        )

    def monthly_transaction_volume(self, months: int = 6, now: Optional[datetime] = None) -> ReportResult:
        """
        Sum of absolute transaction amounts per calendar month, failed
        payments excluded
        """
        now = now or datetime.now(timezone.utc)
        starts = _month_starts(now, months)
        volumes: Dict[str, Decimal] = {_month_key(start): Decimal('0') for start in starts}
        counts: Counter = Counter()
        for txn in self.transaction_log.list_all(start_date=starts[0]):
            if txn.status == TransactionStatus.FAILED:
                continue
            key = _month_key(txn.created_at)
            if key in volumes:
                volumes[key] += abs(txn.amount.amount)
                counts[key] += 1

        data = [
            {
                "month": _month_key(start),
                "label": start.strftime("%b"),
                "volume": volumes[_month_key(start)],
                "transactions": counts.get(_month_key(start), 0)
            }
            for start in starts
        ]
        return ReportResult(
            report_id="monthly_transaction_volume",
            generated_at=now,
            period_start=starts[0],
            period_end=now,
            data=data,
            totals={"volume": sum(volumes.values(), Decimal('0'))}
        )

    def summary_stats(self) -> Dict[str, Any]:
        """Headline numbers for the admin overview"""
        customers = self.customer_manager.list_customers(role=Role.CUSTOMER)
        loans = self.loan_manager.list_loans()
        deposits = self.deposit_manager.list_deposits()

        approved = [l for l in loans if l.status == LoanStatus.APPROVED]
        denied = [l for l in loans if l.status == LoanStatus.DENIED]
        processed = len(approved) + len(denied)
        scored = [l.credit_score for l in loans if l.credit_score is not None]

        approved_deposits = [d for d in deposits if d.status == DepositStatus.APPROVED]

        return {
            "total_customers": len(customers),
            "pending_approvals": sum(1 for c in customers if c.approval_status == ApprovalStatus.PENDING),
            "pending_loans": sum(1 for l in loans if l.status == LoanStatus.PENDING),
            "approved_loans": len(approved),
            "denial_rate": (
                (Decimal(len(denied)) * 100 / processed).quantize(Decimal('0.1'), rounding=ROUND_HALF_UP)
                if processed else Decimal('0')
            ),
            "average_credit_score": round(sum(scored) / len(scored)) if scored else 0,
            "total_deposits_volume": sum(
                (d.amount for d in approved_deposits), Money.zero(self.currency)
            ),
            "pending_deposits": sum(1 for d in deposits if d.status == DepositStatus.PENDING),
            "pending_accounts": len(self.account_manager.list_accounts(AccountState.PENDING)),
        }

    def admin_overview(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Everything the admin reports screen shows"""
        return {
            "summary": self.summary_stats(),
            "monthly_loans": self.monthly_loan_applications(now=now).data,
            "loan_types": self.loan_type_distribution().data,
            "monthly_transactions": self.monthly_transaction_volume(now=now).data,
        }
