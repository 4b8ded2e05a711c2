"""
Mapping of domain errors to HTTP errors
"""

from fastapi import HTTPException

from ..errors import (
    BankingError, ValidationError, NotAuthorized, NotFound, AccountNotEligible,
    InsufficientFunds, RecipientNotFound, SelfTransferRejected,
    RemoteWriteFailure, PartialTransferFailure
)
from ..logging_config import get_logger


logger = get_logger("retail_banking.api")

# Most specific class first
STATUS_BY_ERROR = (
    (PartialTransferFailure, 500),
    (ValidationError, 400),
    (NotAuthorized, 403),
    (AccountNotEligible, 403),
    (RecipientNotFound, 404),
    (NotFound, 404),
    (InsufficientFunds, 409),
    (SelfTransferRejected, 409),
    (RemoteWriteFailure, 503),
)


def to_http_exception(error: BankingError) -> HTTPException:
    """Translate a domain error into the HTTPException returned to clients"""
    status_code = 500
    for error_class, code in STATUS_BY_ERROR:
        if isinstance(error, error_class):
            status_code = code
            break

    detail = {"code": error.code, "message": str(error)}
    if isinstance(error, PartialTransferFailure):
        detail.update({
            "severity": "critical",
            "dismissible": False,
            "intent_id": error.intent_id,
            "compensated": error.compensated,
            "funds_moved": error.funds_moved
        })
        logger.critical(f"Partial transfer failure reported to client: {error}")

    return HTTPException(status_code=status_code, detail=detail)
