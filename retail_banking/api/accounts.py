"""
Account endpoints for customers
"""

from datetime import datetime
from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .auth import BankingSystem, get_banking_system, get_current_identity
from .errors import to_http_exception
from .schemas import OpenAccountRequest, MoneyModel, account_response, as_utc, transaction_response
from ..accounts import Account, AccountType
from ..errors import BankingError
from ..identity import CurrentIdentity


router = APIRouter()


def load_visible_account(system: BankingSystem, identity: CurrentIdentity, account_id: str) -> Account:
    """Account owned by the caller, or any account for an admin"""
    account = system.account_manager.get_account(account_id)
    if not account or (account.customer_id != identity.id and not identity.is_admin):
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.post("", status_code=status.HTTP_201_CREATED)
async def open_account(
    request: OpenAccountRequest,
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    """Open an account; it stays pending until an admin approves it"""
    try:
        identity.require_approved()
        account = system.account_manager.open_account(
            customer_id=identity.id,
            account_type=AccountType(request.account_type),
            name=request.name
        )
    except BankingError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "account": account_response(account),
        "message": "Account opened, awaiting approval"
    }


@router.get("")
async def list_my_accounts(
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    """Accounts owned by the caller"""
    accounts = system.account_manager.get_customer_accounts(identity.id)
    return {
        "accounts": [account_response(a) for a in accounts],
        "total_balance": MoneyModel.from_money(
            system.account_manager.get_total_balance(identity.id)
        ).model_dump()
    }


@router.get("/{account_id}")
async def get_account(
    account_id: str,
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get account details"""
    return account_response(load_visible_account(system, identity, account_id))


@router.get("/{account_id}/transactions")
async def get_account_transactions(
    account_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: Optional[int] = 50,
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    """Transaction history for an account, newest first"""
    account = load_visible_account(system, identity, account_id)
    transactions = system.transaction_log.list_for_account(
        account.account_number,
        start_date=as_utc(start_date),
        end_date=as_utc(end_date),
        limit=limit
    )
    return {"transactions": [transaction_response(t) for t in transactions]}
