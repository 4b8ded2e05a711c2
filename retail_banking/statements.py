"""
Statements Module

Account statements derived from the transaction log, and the figures shown on
the customer dashboard.
"""

from datetime import datetime, timezone, timedelta
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any

from .accounts import AccountManager, AccountState
from .currency import Money
from .errors import NotFound
from .transactions import TransactionLog, TransactionRecord, TransactionStatus


SPENDING_WINDOW_DAYS = 30
RECENT_TRANSACTIONS = 5


@dataclass
class Statement:
    account_id: str
    account_number: str
    period_start: datetime
    period_end: datetime
    statement_date: datetime
    opening_balance: Money
    closing_balance: Money
    total_credits: Money
    total_debits: Money
    transactions: List[TransactionRecord] = field(default_factory=list)


def _month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _previous_month_start(moment: datetime) -> datetime:
    return _month_start(_month_start(moment) - timedelta(days=1))


def _affects_balance(txn: TransactionRecord) -> bool:
    # Failed payments were refunded, so neither leg shows in the balance
    return txn.status != TransactionStatus.FAILED


class StatementService:
    """
    Builds statements and dashboard summaries
    """

    def __init__(self, account_manager: AccountManager, transaction_log: TransactionLog):
        self.accounts = account_manager
        self.transactions = transaction_log

    def generate_statement(
        self,
        account_id: str,
        period_start: datetime,
        period_end: datetime
    ) -> Statement:
        """
        Statement for [period_start, period_end).

        Balances are worked backwards from the current balance, so the
        closing balance of one period is the opening balance of the next.
        """
        account = self.accounts.get_account(account_id)
        if not account:
            raise NotFound(f"Account {account_id} not found")

        zero = Money.zero(account.currency)
        rows = [t for t in self.transactions.list_for_account(account.account_number) if _affects_balance(t)]

        after_period = sum((t.amount for t in rows if t.created_at >= period_end), zero)
        in_period = [t for t in rows if period_start <= t.created_at < period_end]

        credits = sum((t.amount for t in in_period if t.amount.is_positive()), zero)
        debits = sum((abs(t.amount) for t in in_period if t.amount.is_negative()), zero)

        closing = account.balance - after_period
        opening = closing - credits + debits

        return Statement(
            account_id=account.id,
            account_number=account.account_number,
            period_start=period_start,
            period_end=period_end,
            statement_date=datetime.now(timezone.utc),
            opening_balance=opening,
            closing_balance=closing,
            total_credits=credits,
            total_debits=debits,
            transactions=sorted(in_period, key=lambda t: t.created_at)
        )

    def monthly_statements(
        self,
        account_id: str,
        months: int = 6,
        now: Optional[datetime] = None
    ) -> List[Statement]:
        """One statement per calendar month, current month first"""
        now = now or datetime.now(timezone.utc)
        statements = []
        end = now
        start = _month_start(now)
        for _ in range(months):
            statements.append(self.generate_statement(account_id, start, end))
            end = start
            start = _previous_month_start(start)
        return statements

    def dashboard_summary(
        self,
        customer_id: str,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Total balance, active accounts, spending over the last 30 days and
        the five most recent transactions
        """
        now = now or datetime.now(timezone.utc)
        accounts = self.accounts.get_customer_accounts(customer_id)
        total = self.accounts.get_total_balance(customer_id)

        recent_window = self.transactions.list_for_customer(
            customer_id, start_date=now - timedelta(days=SPENDING_WINDOW_DAYS)
        )
        spending = Money.zero(total.currency)
        for txn in recent_window:
            if txn.amount.is_negative() and _affects_balance(txn):
                spending = spending + abs(txn.amount)

        return {
            "total_balance": total,
            "active_accounts": sum(1 for a in accounts if a.state == AccountState.ACTIVE),
            "monthly_spending": spending,
            "recent_transactions": self.transactions.list_for_customer(
                customer_id, limit=RECENT_TRANSACTIONS
            ),
        }
