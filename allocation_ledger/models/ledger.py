"""
Core Data Models for Allocation Ledger

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Support the audit trail

Three views of the same money live side by side:
- Bank.balance (what the institution holds)
- Allocation.amount (how much of it is earmarked for a goal)
- Transaction rows (the withdrawal history)
The ledger keeps them moving together; these models only describe them.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from math import ceil
from typing import Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


CENT = Decimal("0.01")

UNKNOWN_BANK = "Unknown Bank"
UNKNOWN_GOAL = "Unknown Objective"


def utc_now() -> datetime:
    """Timezone-aware current time, used for every created_at."""
    return datetime.now(timezone.utc)


def to_amount(value: Union[Decimal, float, int, str]) -> Decimal:
    """Normalise user input to a two-decimal currency amount."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(amount: Decimal, currency: str) -> str:
    """Render an amount the way messages show it, e.g. '150.00 MAD'."""
    return f"{to_amount(amount):.2f} {currency}"


# =============================================================================
# ENUMS
# =============================================================================

class OperationKind(str, Enum):
    """Multi-step ledger operations that are tracked by a write intent."""
    WITHDRAW = "withdraw"
    SPLIT_WITHDRAW = "split_withdraw"
    RETURN = "return"
    BATCH_RETURN_GROUP = "batch_return_group"


class StepKind(str, Enum):
    """A single gateway write inside an operation."""
    INSERT_TRANSACTION = "insert_transaction"
    DELETE_TRANSACTIONS = "delete_transactions"
    ADJUST_BANK = "adjust_bank"
    ADJUST_ALLOCATION = "adjust_allocation"


# =============================================================================
# STORED RECORDS
# =============================================================================

class Bank(BaseModel):
    """
    A bank account holding a spendable balance.

    `version` and `last_op` are maintained by the ledger:
    - version increases on every ledger update (compare-and-swap)
    - last_op names the intent step that produced the current balance
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=200)
    balance: Decimal = Field(
        ...,
        ge=0,
        decimal_places=2,
        description="Spendable funds held in this bank"
    )
    version: int = Field(default=0, ge=0)
    last_op: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class Goal(BaseModel):
    """A savings objective. Referenced by allocations, never mutated here."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=200)
    target_amount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    created_at: datetime = Field(default_factory=utc_now)


class Allocation(BaseModel):
    """
    The part of a bank's balance earmarked for a goal.

    At most one allocation exists per (goal_id, bank_id) pair.
    """

    id: UUID = Field(default_factory=uuid4)
    goal_id: UUID
    bank_id: UUID
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    version: int = Field(default=0, ge=0)
    last_op: Optional[str] = None


class Transaction(BaseModel):
    """
    A withdrawal (negative amount) or credit (positive amount).

    Withdrawals are created by the ledger and deleted when returned;
    a return never adds an offsetting positive row.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: Optional[str] = None
    goal_id: UUID
    bank_id: UUID
    amount: Decimal = Field(..., decimal_places=2)
    description: str = Field(default="", max_length=500)
    created_at: datetime = Field(default_factory=utc_now)

    # Assigned by the gateway on insert; breaks created_at ties
    seq: Optional[int] = None

    # Set on the remainder record left behind by a partial return
    parent_id: Optional[UUID] = None

    @property
    def is_withdrawal(self) -> bool:
        return self.amount < 0

    @property
    def magnitude(self) -> Decimal:
        return abs(self.amount)


class IntentStep(BaseModel):
    """One write of a multi-step operation, described well enough to replay."""

    kind: StepKind
    transaction: Optional[Transaction] = None
    transaction_ids: list[UUID] = Field(default_factory=list)
    bank_id: Optional[UUID] = None
    goal_id: Optional[UUID] = None
    delta: Decimal = Field(default=Decimal("0"), decimal_places=2)


class WriteIntent(BaseModel):
    """
    Persisted record of an operation in flight.

    Written before the first step, advanced after each step and
    deleted after the last one. Anything still present on the next
    load is an operation that was interrupted and must be finished.
    """

    id: UUID = Field(default_factory=uuid4)
    operation: OperationKind
    steps: list[IntentStep] = Field(default_factory=list)
    completed_steps: int = Field(default=0, ge=0)
    correlation_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_complete(self) -> bool:
        return self.completed_steps >= len(self.steps)

    def op_key(self, index: int) -> str:
        """Marker stamped on rows adjusted by step `index`."""
        return f"{self.id}:{index}"


# =============================================================================
# VIEW MODELS
# =============================================================================

class TransactionView(Transaction):
    """A transaction joined with the names of its bank and goal."""

    bank_name: str = UNKNOWN_BANK
    goal_name: str = UNKNOWN_GOAL


class TransactionPage(BaseModel):
    """One page of transaction history plus the size of the whole result."""

    items: list[TransactionView] = Field(default_factory=list)
    total_count: int = Field(default=0, ge=0)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=15, ge=1)
    withdrawn_only: bool = False

    @property
    def total_pages(self) -> int:
        return ceil(self.total_count / self.page_size) if self.total_count else 0

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total_count

    @property
    def first_index(self) -> int:
        """1-based position of the first row on this page ("Showing 16 to 30")."""
        return (self.page - 1) * self.page_size + 1 if self.items else 0

    @property
    def last_index(self) -> int:
        return min(self.page * self.page_size, self.total_count)


class SelectionSummary(BaseModel):
    """Drives the 'select all' toggle and the batch return total."""

    selected_count: int = Field(ge=0)
    selectable_count: int = Field(ge=0)
    all_selected: bool
    selected_total: Decimal = Decimal("0")


class GoalHistory(BaseModel):
    """Every transaction of one goal, newest first."""

    goal_id: UUID
    goal_name: str = UNKNOWN_GOAL
    items: list[TransactionView] = Field(default_factory=list)
    total_amount: Decimal = Decimal("0")


# =============================================================================
# OPERATION RESULTS
# =============================================================================

class ReturnGroup(BaseModel):
    """Withdrawals of one (bank, goal) pair settled together in a batch return."""

    bank_id: UUID
    goal_id: UUID
    transaction_ids: list[UUID] = Field(default_factory=list)
    total: Decimal = Decimal("0")


class FailedReturnGroup(BaseModel):
    group: ReturnGroup
    error_message: str
    intent_id: Optional[UUID] = None


class BatchReturnResult(BaseModel):
    """Outcome of a batch return. Groups succeed or fail independently."""

    completed: list[ReturnGroup] = Field(default_factory=list)
    failed: list[FailedReturnGroup] = Field(default_factory=list)
    skipped_ids: list[UUID] = Field(
        default_factory=list,
        description="Inputs that were not withdrawals or no longer exist"
    )

    @property
    def total_returned(self) -> Decimal:
        return sum((group.total for group in self.completed), Decimal("0"))

    @property
    def returned_count(self) -> int:
        return sum(len(group.transaction_ids) for group in self.completed)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)


class RecoveryReport(BaseModel):
    """Result of rolling interrupted operations forward."""

    recovered: list[UUID] = Field(default_factory=list)
    failed: dict[str, str] = Field(
        default_factory=dict,
        description="Intent id -> error message for intents still pending"
    )

    @property
    def is_clean(self) -> bool:
        return not self.failed


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single problem found before an operation is allowed to write."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'invalid_amount', 'insufficient_balance')"
    )
    title: str = Field(
        ...,
        description="Short title shown to the user (e.g., 'Insufficient Allocation')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """Result of checking an operation's preconditions."""

    operation: OperationKind
    validated_at: datetime = Field(default_factory=utc_now)
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def first_error(self) -> Optional[ValidationIssue]:
        return next(
            (issue for issue in self.issues if issue.severity == "error"),
            None,
        )
