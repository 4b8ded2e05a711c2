"""
Loan application endpoints
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .auth import BankingSystem, get_banking_system, get_current_identity
from .errors import to_http_exception
from .schemas import LoanApplicationRequest, LoanQuoteRequest, loan_response
from ..errors import BankingError
from ..identity import CurrentIdentity
from ..loans import LoanType


router = APIRouter()


@router.post("/quote")
async def quote_loan(
    request: LoanQuoteRequest,
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    """Monthly payment, total payment and total interest at the bank's rate"""
    try:
        quote = system.loan_manager.quote(request.amount, request.term_months)
    except BankingError as e:
        raise to_http_exception(e)

    return {
        "annual_interest_rate": str(system.loan_manager.annual_interest_rate),
        "monthly_payment": str(quote.monthly_payment),
        "total_payment": str(quote.total_payment),
        "total_interest": str(quote.total_interest)
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def apply_for_loan(
    request: LoanApplicationRequest,
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    """Submit a loan application for admin review"""
    try:
        loan = system.loan_manager.apply_for_loan(
            identity,
            loan_type=LoanType(request.loan_type),
            amount=request.amount,
            term_months=request.term_months,
            purpose=request.purpose,
            credit_score=request.credit_score
        )
    except BankingError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return loan_response(loan)


@router.get("")
async def list_my_loans(
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    loans = system.loan_manager.get_customer_loans(identity.id)
    return {"loans": [loan_response(l) for l in loans]}


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    identity: CurrentIdentity = Depends(get_current_identity),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get a loan application"""
    loan = system.loan_manager.get_loan(loan_id)
    if not loan or (loan.customer_id != identity.id and not identity.is_admin):
        raise HTTPException(status_code=404, detail="Loan not found")
    return loan_response(loan)
