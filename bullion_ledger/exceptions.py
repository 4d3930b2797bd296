"""
Ledger Errors

Domain exceptions raised by the posting engine. Each error knows the
client-facing status it maps to and renders itself as a structured body.
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base exception for all ledger engine failures."""

    status_code = 500
    code = "LEDGER_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Structured error body"""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class InvalidEntryError(LedgerError, ValueError):
    """Raised when a voucher request fails validation."""

    status_code = 400
    code = "INVALID_ENTRY"


class PDCConfigurationError(InvalidEntryError):
    """Raised when a bank lacks the PDC account or maturity offset a cheque needs."""

    code = "PDC_CONFIGURATION"


class NotFoundError(LedgerError, LookupError):
    """Raised when an entry, cash line, schedule, account or currency is missing."""

    status_code = 404
    code = "NOT_FOUND"


class InvalidStateError(LedgerError, ValueError):
    """Raised when an operation is not allowed from the current state."""

    status_code = 400
    code = "INVALID_STATE"


class DuplicateTransactionError(LedgerError):
    """Raised when a transaction id is already present in the ledger."""

    status_code = 409
    code = "DUPLICATE_TRANSACTION"


class UnbalancedPostingError(LedgerError, ValueError):
    """Raised when the balance-bearing rows of a posting do not net to zero."""

    code = "UNBALANCED_POSTING"


class BalanceConflictError(LedgerError):
    """Raised when an account document keeps changing underneath an update."""

    status_code = 409
    code = "BALANCE_CONFLICT"


class SequenceError(LedgerError):
    """Raised when the transaction id allocator cannot produce an id."""

    status_code = 503
    code = "SEQUENCE_UNAVAILABLE"
