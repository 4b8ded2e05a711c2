"""
Deposit request endpoints for customers
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .auth import BankingSystem, get_banking_system, get_current_identity
from .errors import to_http_exception
from .schemas import DepositRequestModel, deposit_response
from ..deposits import DepositMethod, DepositStatus
from ..errors import BankingError
from ..identity import CurrentIdentity


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def request_deposit(
    request: DepositRequestModel,
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    """Ask for a deposit to be credited once an admin has validated the funds"""
    try:
        deposit = system.deposit_manager.request_deposit(
            identity,
            account_id=request.account_id,
            amount=request.amount,
            deposit_method=DepositMethod(request.deposit_method),
            description=request.description
        )
    except BankingError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return deposit_response(deposit)


@router.get("")
async def list_my_deposits(
    status_filter: Optional[str] = None,
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    """Deposit requests made by the caller"""
    try:
        deposit_status = DepositStatus(status_filter) if status_filter else None
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    deposits = system.deposit_manager.list_deposits(status=deposit_status, customer_id=identity.id)
    return {"deposits": [deposit_response(d) for d in deposits]}


@router.get("/{deposit_id}")
async def get_deposit(
    deposit_id: str,
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    deposit = system.deposit_manager.get_deposit(deposit_id)
    if not deposit or (deposit.customer_id != identity.id and not identity.is_admin):
        raise HTTPException(status_code=404, detail="Deposit not found")
    return deposit_response(deposit)
