"""
Error Taxonomy Module

Closed set of error kinds surfaced by the ledger. Every failure leaving the
account store, transaction log, beneficiary registry or transfer engine is a
LedgerError subclass carrying its ErrorKind; raw storage exceptions never
escape.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Kinds of ledger failures"""
    INVALID_INPUT = "invalid_input"
    NOT_AUTHENTICATED = "not_authenticated"
    ACCOUNT_NOT_FOUND = "account_not_found"
    SELF_TRANSFER_REJECTED = "self_transfer_rejected"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    NOT_A_BENEFICIARY = "not_a_beneficiary"
    BENEFICIARY_LIMIT_REACHED = "beneficiary_limit_reached"
    DUPLICATE_BENEFICIARY = "duplicate_beneficiary"
    BENEFICIARY_NOT_FOUND = "beneficiary_not_found"
    DUPLICATE_ACCOUNT_NUMBER = "duplicate_account_number"
    CONFLICT = "conflict"
    STORE_UNAVAILABLE = "store_unavailable"
    CANCELLED = "cancelled"


class LedgerError(Exception):
    """Base exception for all ledger errors"""

    kind: ErrorKind = ErrorKind.INVALID_INPUT
    default_message = "Ledger operation failed"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        """Whether the caller may safely re-run the whole operation"""
        return self.kind == ErrorKind.CONFLICT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "details": self.details,
        }


class InvalidInputError(LedgerError):
    """Malformed account number, bad amount or missing required field"""
    kind = ErrorKind.INVALID_INPUT
    default_message = "Invalid input"


class NotAuthenticatedError(LedgerError):
    """No resolvable caller identity"""
    kind = ErrorKind.NOT_AUTHENTICATED
    default_message = "Caller identity is required"


class AccountNotFoundError(LedgerError):
    kind = ErrorKind.ACCOUNT_NOT_FOUND
    default_message = "Account not found"


class SelfTransferRejectedError(LedgerError):
    kind = ErrorKind.SELF_TRANSFER_REJECTED
    default_message = "Cannot transfer money to yourself"


class InsufficientBalanceError(LedgerError):
    kind = ErrorKind.INSUFFICIENT_BALANCE
    default_message = "Insufficient balance"


class NotABeneficiaryError(LedgerError):
    kind = ErrorKind.NOT_A_BENEFICIARY
    default_message = "Account not found in your beneficiaries"


class BeneficiaryLimitReachedError(LedgerError):
    kind = ErrorKind.BENEFICIARY_LIMIT_REACHED
    default_message = "Maximum number of beneficiaries reached"


class DuplicateBeneficiaryError(LedgerError):
    kind = ErrorKind.DUPLICATE_BENEFICIARY
    default_message = "Beneficiary already exists"


class BeneficiaryNotFoundError(LedgerError):
    kind = ErrorKind.BENEFICIARY_NOT_FOUND
    default_message = "Beneficiary not found"


class DuplicateAccountNumberError(LedgerError):
    kind = ErrorKind.DUPLICATE_ACCOUNT_NUMBER
    default_message = "Account number already in use"


class ConflictError(LedgerError):
    """Concurrent modification detected at commit time"""
    kind = ErrorKind.CONFLICT
    default_message = "Concurrent modification detected, retry the operation"


class StoreUnavailableError(LedgerError):
    """Underlying persistence layer failure"""
    kind = ErrorKind.STORE_UNAVAILABLE
    default_message = "Storage backend unavailable"


class CancelledError(LedgerError):
    """Caller cancelled the operation before commit"""
    kind = ErrorKind.CANCELLED
    default_message = "Operation cancelled before commit"


_ERRORS_BY_KIND = {
    cls.kind: cls for cls in (
        InvalidInputError, NotAuthenticatedError, AccountNotFoundError,
        SelfTransferRejectedError, InsufficientBalanceError, NotABeneficiaryError,
        BeneficiaryLimitReachedError, DuplicateBeneficiaryError,
        BeneficiaryNotFoundError, DuplicateAccountNumberError, ConflictError,
        StoreUnavailableError, CancelledError,
    )
}


def error_for_kind(kind: ErrorKind) -> type:
    """Get the exception class raised for an error kind"""
    return _ERRORS_BY_KIND[kind]
