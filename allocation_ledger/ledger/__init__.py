"""
Allocation ledger package.

Withdraw / return / batch return, plus roll-forward of operations
interrupted between their writes.
"""

from allocation_ledger.ledger.allocation_ledger import AllocationLedger
from allocation_ledger.ledger.errors import (
    ConcurrencyConflictError,
    InsufficientAllocationError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidOperationError,
    LedgerError,
    LedgerOperationError,
    LedgerValidationError,
    RecordNotFoundError,
)
from allocation_ledger.ledger.steps import StepRunner

__all__ = [
    "AllocationLedger",
    "StepRunner",
    # Exceptions
    "ConcurrencyConflictError",
    "InsufficientAllocationError",
    "InsufficientBalanceError",
    "InvalidAmountError",
    "InvalidOperationError",
    "LedgerError",
    "LedgerOperationError",
    "LedgerValidationError",
    "RecordNotFoundError",
]
