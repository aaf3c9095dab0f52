"""
Data Models Package

This package contains all Pydantic models used in the Allocation Ledger system.
All data flowing through the system must conform to these schemas.
"""

from allocation_ledger.models.ledger import (
    UNKNOWN_BANK,
    UNKNOWN_GOAL,
    Allocation,
    Bank,
    BatchReturnResult,
    FailedReturnGroup,
    Goal,
    GoalHistory,
    IntentStep,
    OperationKind,
    RecoveryReport,
    ReturnGroup,
    SelectionSummary,
    StepKind,
    Transaction,
    TransactionPage,
    TransactionView,
    ValidationIssue,
    ValidationResult,
    WriteIntent,
    format_amount,
    to_amount,
    utc_now,
)
from allocation_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "UNKNOWN_BANK",
    "UNKNOWN_GOAL",
    "Allocation",
    "Bank",
    "BatchReturnResult",
    "FailedReturnGroup",
    "Goal",
    "GoalHistory",
    "IntentStep",
    "OperationKind",
    "RecoveryReport",
    "ReturnGroup",
    "SelectionSummary",
    "StepKind",
    "Transaction",
    "TransactionPage",
    "TransactionView",
    "ValidationIssue",
    "ValidationResult",
    "WriteIntent",
    "format_amount",
    "to_amount",
    "utc_now",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
