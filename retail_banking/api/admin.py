"""
Admin endpoints: approvals, account control, payments, reconciliation,
audit, settings, security events and reports
"""

from datetime import datetime
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException

from .auth import BankingSystem, get_banking_system, require_admin
from .errors import to_http_exception
from .schemas import (
    ReviewRequest, RejectRequest, RoleRequest, AccountStateRequest,
    SettlePaymentRequest, SettingUpdateRequest, as_utc,
    customer_response, account_response, transaction_response,
    deposit_response, loan_response, intent_response,
    security_event_response, audit_event_response, report_rows
)
from ..accounts import AccountState
from ..audit import AuditEventType
from ..deposits import DepositStatus
from ..errors import BankingError
from ..identity import ApprovalStatus, CurrentIdentity, Role
from ..loans import LoanStatus
from ..reporting import ReportResult
from ..settings import Severity
from ..transactions import TransactionStatus, TransactionType
from ..transfers import IntentState


router = APIRouter()


def _parse(enum_class, value: Optional[str]):
    if value is None:
        return None
    try:
        return enum_class(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {enum_class.__name__}: {value}")


def _report_response(report: ReportResult) -> Dict[str, Any]:
    return {
        "report_id": report.report_id,
        "generated_at": report.generated_at.isoformat(),
        "period_start": report.period_start.isoformat() if report.period_start else None,
        "period_end": report.period_end.isoformat() if report.period_end else None,
        "data": report_rows(report.data),
        "totals": report_rows([report.totals])[0]
    }


# Customers

@router.get("/customers")
async def list_customers(
    approval_status: Optional[str] = None,
    role: Optional[str] = None,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    customers = system.customer_manager.list_customers(
        status=_parse(ApprovalStatus, approval_status),
        role=_parse(Role, role)
    )
    return {"customers": [customer_response(c) for c in customers]}


@router.post("/customers/{customer_id}/approve")
async def approve_customer(
    customer_id: str,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Approve a pending registration"""
    try:
        customer = system.customer_manager.approve_customer(customer_id, admin.id)
    except BankingError as e:
        raise to_http_exception(e)
    system.identity_cache.expire(customer_id)
    return customer_response(customer)


@router.post("/customers/{customer_id}/reject")
async def reject_customer(
    customer_id: str,
    request: RejectRequest,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    try:
        customer = system.customer_manager.reject_customer(customer_id, admin.id, request.reason)
    except BankingError as e:
        raise to_http_exception(e)
    system.identity_cache.expire(customer_id)
    return customer_response(customer)


@router.put("/customers/{customer_id}/role")
async def set_role(
    customer_id: str,
    request: RoleRequest,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Promote to admin or demote to customer"""
    try:
        customer = system.customer_manager.set_role(customer_id, _parse(Role, request.role), admin.id)
    except BankingError as e:
        raise to_http_exception(e)
    system.identity_cache.expire(customer_id)
    return customer_response(customer)


# Accounts

@router.get("/accounts")
async def list_accounts(
    state: Optional[str] = None,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    accounts = system.account_manager.list_accounts(_parse(AccountState, state))
    return {"accounts": [account_response(a) for a in accounts]}


@router.post("/accounts/{account_id}/{action}")
async def change_account_state(
    account_id: str,
    action: str,
    request: Optional[AccountStateRequest] = None,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Approve, freeze, unfreeze or close an account"""
    reason = request.reason if request else ""
    manager = system.account_manager
    try:
        if action == "approve":
            account = manager.approve_account(account_id, admin.id)
        elif action == "freeze":
            account = manager.freeze_account(account_id, admin.id, reason)
        elif action == "unfreeze":
            account = manager.unfreeze_account(account_id, admin.id, reason)
        elif action == "close":
            account = manager.close_account(account_id, admin.id, reason)
        else:
            raise HTTPException(status_code=404, detail=f"Unknown account action: {action}")
    except BankingError as e:
        raise to_http_exception(e)
    return account_response(account)


# Deposits

@router.get("/deposits")
async def list_deposits(
    status: Optional[str] = None,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    deposits = system.deposit_manager.list_deposits(status=_parse(DepositStatus, status))
    return {"deposits": [deposit_response(d) for d in deposits]}


@router.post("/deposits/{deposit_id}/approve")
async def approve_deposit(
    deposit_id: str,
    request: Optional[ReviewRequest] = None,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Credit the account once the funds have been validated"""
    try:
        deposit = system.deposit_manager.approve_deposit(
            admin, deposit_id, notes=request.notes if request else None
        )
    except BankingError as e:
        raise to_http_exception(e)
    return deposit_response(deposit)


@router.post("/deposits/{deposit_id}/reject")
async def reject_deposit(
    deposit_id: str,
    request: RejectRequest,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    try:
        deposit = system.deposit_manager.reject_deposit(
            admin, deposit_id, request.reason, notes=request.notes
        )
    except BankingError as e:
        raise to_http_exception(e)
    return deposit_response(deposit)


# Loans

@router.get("/loans")
async def list_loans(
    status: Optional[str] = None,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    loans = system.loan_manager.list_loans(_parse(LoanStatus, status))
    return {"loans": [loan_response(l) for l in loans]}


@router.post("/loans/{loan_id}/approve")
async def approve_loan(
    loan_id: str,
    request: Optional[ReviewRequest] = None,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    try:
        loan = system.loan_manager.approve_loan(admin, loan_id, notes=request.notes if request else None)
    except BankingError as e:
        raise to_http_exception(e)
    return loan_response(loan)


@router.post("/loans/{loan_id}/deny")
async def deny_loan(
    loan_id: str,
    request: Optional[ReviewRequest] = None,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    try:
        loan = system.loan_manager.deny_loan(admin, loan_id, notes=request.notes if request else None)
    except BankingError as e:
        raise to_http_exception(e)
    return loan_response(loan)


# Transactions, payments and reconciliation

@router.get("/transactions")
async def transaction_log(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    transaction_type: Optional[str] = None,
    status: Optional[str] = None,
    limit: Optional[int] = 100,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Bank-wide transaction log, newest first"""
    txn_type = _parse(TransactionType, transaction_type)
    transactions = system.transaction_log.list_all(
        start_date=as_utc(start_date),
        end_date=as_utc(end_date),
        transaction_types=[txn_type] if txn_type else None,
        status=_parse(TransactionStatus, status),
        limit=limit
    )
    return {"transactions": [transaction_response(t) for t in transactions]}


@router.post("/payments/{transaction_id}/settle")
async def settle_payment(
    transaction_id: str,
    request: SettlePaymentRequest,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Mark a pending external payment completed, or failed and refunded"""
    try:
        txn = system.transfer_executor.settle_payment(admin, transaction_id, request.succeeded)
    except BankingError as e:
        raise to_http_exception(e)
    return transaction_response(txn)


@router.get("/transfers")
async def list_transfers(
    state: Optional[str] = None,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Transfer intents, oldest first"""
    intents = system.transfer_executor.list_intents(_parse(IntentState, state))
    return {"transfers": [intent_response(i) for i in intents]}


@router.post("/reconcile")
async def reconcile(
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Repair transfers left part-way by a crash or store failure"""
    report = system.transfer_executor.reconcile()
    return {"repaired": report.repaired, "unresolved": report.unresolved}


# Audit

@router.get("/audit")
async def search_audit(
    user_id: Optional[str] = None,
    event_type: Optional[str] = None,
    entity_type: Optional[str] = None,
    text: Optional[str] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    limit: Optional[int] = 100,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    events = system.audit_trail.search_events(
        user_id=user_id,
        event_type=_parse(AuditEventType, event_type),
        entity_type=entity_type,
        text=text,
        start_time=as_utc(start_time),
        end_time=as_utc(end_time),
        limit=limit
    )
    return {"events": [audit_event_response(e) for e in events]}


@router.get("/audit/verify")
async def verify_audit(
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Check the hash chain of the audit trail"""
    return system.audit_trail.verify_integrity()


# Settings and security events

@router.get("/settings")
async def get_settings(
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    return system.settings.all()


@router.put("/settings/{key}")
async def update_setting(
    key: str,
    request: SettingUpdateRequest,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    try:
        setting = system.settings.set(key, request.value, admin.id, description=request.description)
    except BankingError as e:
        raise to_http_exception(e)
    return {"key": setting.key, "value": setting.value, "updated_by": setting.updated_by}


@router.get("/security-events")
async def list_security_events(
    resolved: Optional[bool] = None,
    severity: Optional[str] = None,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    events = system.security_events.list_security_events(
        resolved=resolved, severity=_parse(Severity, severity)
    )
    return {"events": [security_event_response(e) for e in events]}


@router.post("/security-events/{event_id}/resolve")
async def resolve_security_event(
    event_id: str,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    try:
        event = system.security_events.resolve_security_event(event_id, admin.id)
    except BankingError as e:
        raise to_http_exception(e)
    return security_event_response(event)


# Reports

@router.get("/reports/overview")
async def reports_overview(
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Everything the admin reports screen shows"""
    overview = system.reporting_engine.admin_overview()
    return {
        "summary": report_rows([overview["summary"]])[0],
        "monthly_loans": report_rows(overview["monthly_loans"]),
        "loan_types": report_rows(overview["loan_types"]),
        "monthly_transactions": report_rows(overview["monthly_transactions"])
    }


@router.get("/reports/{report_id}")
async def run_report(
    report_id: str,
    months: int = 6,
    admin: CurrentIdentity = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Run a single report"""
    if months < 1 or months > 24:
        raise HTTPException(status_code=400, detail="months must be between 1 and 24")
    engine = system.reporting_engine
    if report_id == "monthly_loan_applications":
        report = engine.monthly_loan_applications(months=months)
    elif report_id == "loan_type_distribution":
        report = engine.loan_type_distribution()
    elif report_id == "monthly_transaction_volume":
        report = engine.monthly_transaction_volume(months=months)
    else:
        raise HTTPException(status_code=404, detail=f"Unknown report: {report_id}")
    return _report_response(report)
