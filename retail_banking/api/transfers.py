"""
Transfer and external payment endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, Header, status

from .auth import BankingSystem, get_banking_system, get_current_identity
from .errors import to_http_exception
from .schemas import (
    TransferRequestModel, transfer_result_response, intent_response, transaction_response
)
from ..errors import BankingError
from ..identity import CurrentIdentity
from ..transfers import TransferRequest


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_transfer(
    request: TransferRequestModel,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    """
    Move money to another account of this bank, or pay out to an external
    account number.

    Resubmitting with the same Idempotency-Key header (or body field)
    returns the original outcome without moving money again.
    """
    try:
        result = system.transfer_executor.execute(identity, TransferRequest(
            from_account_id=request.from_account_id,
            transfer_type=request.transfer_type,
            recipient_account_number=request.recipient_account_number,
            amount=request.amount,
            recipient_name=request.recipient_name,
            description=request.description,
            idempotency_key=idempotency_key or request.idempotency_key
        ))
    except BankingError as e:
        raise to_http_exception(e)

    return transfer_result_response(result)


@router.get("/{intent_id}")
async def get_transfer(
    intent_id: str,
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    """State of a transfer submitted by the caller"""
    intent = system.transfer_executor.get_intent(intent_id)
    if not intent or (intent.customer_id != identity.id and not identity.is_admin):
        raise HTTPException(status_code=404, detail="Transfer not found")
    return intent_response(intent)


@router.get("")
async def list_my_transactions(
    limit: Optional[int] = 50,
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    """Transactions across all of the caller's accounts, newest first"""
    transactions = system.transaction_log.list_for_customer(identity.id, limit=limit)
    return {"transactions": [transaction_response(t) for t in transactions]}
