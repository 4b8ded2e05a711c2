"""
Banking Error Taxonomy

Domain exceptions raised by the managers and the transfer executor. The API
layer maps each one to an HTTP status; business-rule rejections are raised
before any persistent mutation, persistence failures afterwards.
"""

from typing import Optional


class BankingError(Exception):
    """Base class for all domain errors"""
    code = "banking_error"


class ValidationError(BankingError, ValueError):
    """Malformed or missing input, detected before any remote call"""
    code = "validation_error"


class InvalidAmount(ValidationError):
    """Amount is not a positive finite decimal"""
    code = "invalid_amount"


class NotFound(BankingError):
    """Referenced entity does not exist"""
    code = "not_found"


class NotAuthorized(BankingError):
    """Caller's role or approval status does not allow the operation"""
    code = "not_authorized"


class AccountNotEligible(BankingError):
    """Account is not owned by the caller or is not in a usable state"""
    code = "account_not_eligible"


class InsufficientFunds(BankingError):
    """Debit would take the balance below zero"""
    code = "insufficient_funds"


class RecipientNotFound(BankingError):
    """Internal recipient account number does not resolve"""
    code = "recipient_not_found"


class SelfTransferRejected(BankingError):
    """Recipient resolves to the source account"""
    code = "self_transfer_rejected"


class RemoteWriteFailure(BankingError):
    """A persistence call failed"""
    code = "remote_write_failure"


class PartialTransferFailure(BankingError):
    """
    Funds left the source account but the offsetting effect did not complete.

    `compensated` tells whether the debit was reversed; `funds_moved` whether
    money currently sits on the recipient side without its ledger rows. Never
    dismissible: the inconsistency needs manual reconciliation when not
    compensated.
    """
    code = "partial_transfer_failure"
    dismissible = False

    def __init__(
        self,
        message: str,
        intent_id: Optional[str] = None,
        compensated: bool = False,
        funds_moved: bool = False
    ):
        super().__init__(message)
        self.intent_id = intent_id
        self.compensated = compensated
        self.funds_moved = funds_moved
