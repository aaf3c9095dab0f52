"""
Ledger Exceptions

Every exception raised by the ledger carries a `title`: the short heading
the front end puts on its error banner. Validation errors are raised
before anything is written; operation errors mean some writes may have
happened and a write intent may still be pending.
"""

from typing import Optional
from uuid import UUID

from allocation_ledger.models.ledger import ValidationIssue, ValidationResult
from allocation_ledger.validation.validator import (
    INSUFFICIENT_ALLOCATION,
    INSUFFICIENT_BALANCE,
    INVALID_AMOUNT,
    INVALID_OPERATION,
    NOT_FOUND,
)


class LedgerError(Exception):
    """Base exception for ledger operations."""

    title = "Transaction Failed"

    def __init__(self, message: str, title: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if title:
            self.title = title


class LedgerValidationError(LedgerError):
    """An operation was refused before its first write."""

    title = "Invalid Operation"

    def __init__(self, issues: list[ValidationIssue]):
        first = issues[0]
        super().__init__(first.message, title=first.title)
        self.issues = issues


class InvalidAmountError(LedgerValidationError):
    title = "Invalid Amount"


class InsufficientBalanceError(LedgerValidationError):
    title = "Insufficient Balance"


class InsufficientAllocationError(LedgerValidationError):
    title = "Insufficient Allocation"


class InvalidOperationError(LedgerValidationError):
    title = "Invalid Operation"


class RecordNotFoundError(LedgerValidationError):
    title = "Not Found"


class LedgerOperationError(LedgerError):
    """
    A gateway call failed partway through an operation.

    Writes before the failing step stay committed. If the operation ran
    under a write intent, `intent_id` names it and recovery will finish it.
    """

    title = "Transaction Failed"

    def __init__(
        self,
        message: str,
        intent_id: Optional[UUID] = None,
        completed_steps: int = 0,
    ):
        super().__init__(message)
        self.intent_id = intent_id
        self.completed_steps = completed_steps


class ConcurrencyConflictError(LedgerOperationError):
    """A row kept changing under a compare-and-swap update."""


class StaleWriteError(Exception):
    """Internal signal: a versioned update matched no row. Retried."""


_ERRORS_BY_ISSUE: dict[str, type[LedgerValidationError]] = {
    INVALID_AMOUNT: InvalidAmountError,
    INSUFFICIENT_BALANCE: InsufficientBalanceError,
    INSUFFICIENT_ALLOCATION: InsufficientAllocationError,
    INVALID_OPERATION: InvalidOperationError,
    NOT_FOUND: RecordNotFoundError,
}


def raise_for_result(result: ValidationResult) -> None:
    """Raise the exception matching the first error of a failed validation."""
    if result.is_valid:
        return

    errors = [issue for issue in result.issues if issue.severity == "error"]
    error_cls = _ERRORS_BY_ISSUE.get(errors[0].issue_type, LedgerValidationError)
    raise error_cls(errors)
