"""Pre-write validation for ledger operations."""

from allocation_ledger.validation.validator import ISSUE_TITLES, LedgerValidator

__all__ = ["ISSUE_TITLES", "LedgerValidator"]
