"""
Pydantic schemas for API requests and responses
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field

from ..currency import Money
from ..accounts import Account
from ..customers import Customer
from ..deposits import DepositRequest
from ..loans import LoanApplication
from ..statements import Statement
from ..transactions import TransactionRecord
from ..transfers import TransferIntent, TransferResult
from ..settings import SecurityEvent
from ..audit import AuditEvent


# Amounts travel as decimal strings or integers; floats are rejected
AmountField = Union[int, str]


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (XAF, USD, EUR)")
    display: str

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code, display=money.to_string())


# Auth schemas
class RegisterRequest(BaseModel):
    first_name: str
    last_name: str
    email: str
    password: str
    phone: Optional[str] = None
    address: Optional[str] = None


class TokenRequest(BaseModel):
    email: str
    password: str


class UpdateProfileRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class UpdateSettingsRequest(BaseModel):
    email_transaction_alerts: Optional[bool] = None
    email_promotional_offers: Optional[bool] = None
    allow_phone_contact_for_support: Optional[bool] = None
    allow_phone_contact_for_offers: Optional[bool] = None


# Account schemas
class OpenAccountRequest(BaseModel):
    account_type: str = Field(..., description="savings, checking or business")
    name: Optional[str] = None


# Transfer schemas
class TransferRequestModel(BaseModel):
    from_account_id: str
    transfer_type: str = Field(..., description="internal or external")
    recipient_account_number: str
    amount: AmountField
    recipient_name: Optional[str] = None
    description: Optional[str] = None
    idempotency_key: Optional[str] = None


# Deposit schemas
class DepositRequestModel(BaseModel):
    account_id: str
    amount: AmountField
    deposit_method: str = Field(..., description="cash, bank_transfer, mobile_money or check")
    description: Optional[str] = None


# Loan schemas
class LoanApplicationRequest(BaseModel):
    loan_type: str = Field(..., description="personal, auto, home or business")
    amount: AmountField
    term_months: int
    purpose: Optional[str] = None
    credit_score: Optional[int] = None


class LoanQuoteRequest(BaseModel):
    amount: AmountField
    term_months: int


# Admin schemas
class ReviewRequest(BaseModel):
    notes: Optional[str] = None


class RejectRequest(BaseModel):
    reason: str
    notes: Optional[str] = None


class RoleRequest(BaseModel):
    role: str = Field(..., description="customer or admin")


class AccountStateRequest(BaseModel):
    reason: str = ""


class SettlePaymentRequest(BaseModel):
    succeeded: bool


class SettingUpdateRequest(BaseModel):
    value: Any
    description: Optional[str] = None


# Response builders
def customer_response(customer: Customer) -> Dict[str, Any]:
    return {
        "id": customer.id,
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "email": customer.email,
        "phone": customer.phone,
        "address": customer.address,
        "role": customer.role.value,
        "approval_status": customer.approval_status.value,
        "rejection_reason": customer.rejection_reason,
        "reviewed_by": customer.reviewed_by,
        "reviewed_at": customer.reviewed_at.isoformat() if customer.reviewed_at else None,
        "created_at": customer.created_at.isoformat()
    }


def account_response(account: Account) -> Dict[str, Any]:
    return {
        "id": account.id,
        "account_number": account.account_number,
        "customer_id": account.customer_id,
        "name": account.name,
        "account_type": account.account_type.value,
        "state": account.state.value,
        "balance": MoneyModel.from_money(account.balance).model_dump(),
        "created_at": account.created_at.isoformat()
    }


def transaction_response(txn: TransactionRecord) -> Dict[str, Any]:
    return {
        "transaction_id": txn.transaction_id,
        "transaction_type": txn.transaction_type.value,
        "account_number": txn.account_number,
        "amount": MoneyModel.from_money(txn.amount).model_dump(),
        "from_account": txn.from_account,
        "to_account": txn.to_account,
        "recipient_name": txn.recipient_name,
        "status": txn.status.value,
        "description": txn.description,
        "reference": txn.reference,
        "created_at": txn.created_at.isoformat()
    }


def transfer_result_response(result: TransferResult) -> Dict[str, Any]:
    return {
        "intent_id": result.intent_id,
        "reference": result.reference,
        "state": result.state.value,
        "transaction_ids": result.transaction_ids,
        "replayed": result.replayed
    }


def intent_response(intent: TransferIntent) -> Dict[str, Any]:
    return {
        "intent_id": intent.id,
        "reference": intent.reference,
        "customer_id": intent.customer_id,
        "transfer_type": intent.transfer_type.value,
        "from_account": intent.from_account_number,
        "to_account": intent.recipient_account_number,
        "amount": MoneyModel.from_money(intent.amount).model_dump(),
        "state": intent.state.value,
        "recovery_action": intent.recovery_action.value if intent.recovery_action else None,
        "error_message": intent.error_message,
        "created_at": intent.created_at.isoformat(),
        "updated_at": intent.updated_at.isoformat()
    }


def deposit_response(deposit: DepositRequest) -> Dict[str, Any]:
    return {
        "id": deposit.id,
        "customer_id": deposit.customer_id,
        "account_id": deposit.account_id,
        "account_number": deposit.account_number,
        "amount": MoneyModel.from_money(deposit.amount).model_dump(),
        "deposit_method": deposit.deposit_method.value,
        "reference_number": deposit.reference_number,
        "description": deposit.description,
        "status": deposit.status.value,
        "admin_notes": deposit.admin_notes,
        "rejection_reason": deposit.rejection_reason,
        "validated_by": deposit.validated_by,
        "validated_at": deposit.validated_at.isoformat() if deposit.validated_at else None,
        "created_at": deposit.created_at.isoformat()
    }


def loan_response(loan: LoanApplication) -> Dict[str, Any]:
    return {
        "id": loan.id,
        "customer_id": loan.customer_id,
        "loan_type": loan.loan_type.value,
        "amount": MoneyModel.from_money(loan.amount).model_dump(),
        "term_months": loan.term_months,
        "annual_interest_rate": str(loan.annual_interest_rate),
        "monthly_payment": str(loan.monthly_payment),
        "purpose": loan.purpose,
        "credit_score": loan.credit_score,
        "status": loan.status.value,
        "reviewed_by": loan.reviewed_by,
        "review_notes": loan.review_notes,
        "created_at": loan.created_at.isoformat()
    }


def statement_response(statement: Statement) -> Dict[str, Any]:
    return {
        "account_id": statement.account_id,
        "account_number": statement.account_number,
        "period_start": statement.period_start.isoformat(),
        "period_end": statement.period_end.isoformat(),
        "statement_date": statement.statement_date.isoformat(),
        "opening_balance": MoneyModel.from_money(statement.opening_balance).model_dump(),
        "closing_balance": MoneyModel.from_money(statement.closing_balance).model_dump(),
        "total_credits": MoneyModel.from_money(statement.total_credits).model_dump(),
        "total_debits": MoneyModel.from_money(statement.total_debits).model_dump(),
        "transactions": [transaction_response(t) for t in statement.transactions]
    }


def security_event_response(event: SecurityEvent) -> Dict[str, Any]:
    return {
        "id": event.id,
        "event_type": event.event_type,
        "description": event.description,
        "severity": event.severity.value,
        "user_id": event.user_id,
        "ip_address": event.ip_address,
        "metadata": event.metadata,
        "resolved": event.resolved,
        "resolved_by": event.resolved_by,
        "created_at": event.created_at.isoformat()
    }


def audit_event_response(event: AuditEvent) -> Dict[str, Any]:
    return {
        "id": event.id,
        "sequence": event.sequence,
        "event_type": event.event_type.value,
        "entity_type": event.entity_type,
        "entity_id": event.entity_id,
        "user_id": event.user_id,
        "metadata": event.metadata,
        "created_at": event.created_at.isoformat()
    }


def report_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Decimals and Money in report rows rendered as strings"""
    rendered = []
    for row in rows:
        rendered.append({
            key: (MoneyModel.from_money(value).model_dump() if isinstance(value, Money) else
                  str(value) if hasattr(value, "quantize") else value)
            for key, value in row.items()
        })
    return rendered


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Query timestamps without an offset are taken as UTC"""
    if moment is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment
