"""
Statement and dashboard endpoints
"""

from datetime import datetime
from fastapi import APIRouter, HTTPException, Depends

from .accounts import load_visible_account
from .auth import BankingSystem, get_banking_system, get_current_identity
from .errors import to_http_exception
from .schemas import MoneyModel, as_utc, statement_response, transaction_response
from ..errors import BankingError
from ..identity import CurrentIdentity


router = APIRouter()


@router.get("/dashboard")
async def dashboard(
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    """Figures for the customer dashboard"""
    summary = system.statement_service.dashboard_summary(identity.id)
    return {
        "total_balance": MoneyModel.from_money(summary["total_balance"]).model_dump(),
        "active_accounts": summary["active_accounts"],
        "monthly_spending": MoneyModel.from_money(summary["monthly_spending"]).model_dump(),
        "recent_transactions": [transaction_response(t) for t in summary["recent_transactions"]]
    }


@router.get("/{account_id}")
async def monthly_statements(
    account_id: str,
    months: int = 6,
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    """One statement per calendar month, current month first"""
    if months < 1 or months > 24:
        raise HTTPException(status_code=400, detail="months must be between 1 and 24")

    account = load_visible_account(system, identity, account_id)
    try:
        statements = system.statement_service.monthly_statements(account.id, months=months)
    except BankingError as e:
        raise to_http_exception(e)
    return {"statements": [statement_response(s) for s in statements]}


@router.get("/{account_id}/period")
async def statement_for_period(
    account_id: str,
    start_date: datetime,
    end_date: datetime,
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    """Statement for an arbitrary period"""
    start_date, end_date = as_utc(start_date), as_utc(end_date)
    if end_date <= start_date:
        raise HTTPException(status_code=400, detail="end_date must be after start_date")

    account = load_visible_account(system, identity, account_id)
    try:
        statement = system.statement_service.generate_statement(account.id, start_date, end_date)
    except BankingError as e:
        raise to_http_exception(e)
    return statement_response(statement)
