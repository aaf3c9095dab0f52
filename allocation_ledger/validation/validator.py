"""
Pre-write Validation

DESIGN DECISION: Every ledger operation is checked in full BEFORE its
first write. The checks here are pure: the ledger loads the rows, passes
them in and gets back a ValidationResult. Nothing in this module touches
storage, so a rejected operation provably writes nothing.

Each issue carries the short title the user sees ("Insufficient Balance",
"Insufficient Allocation", ...) plus a message with the concrete amounts.

IMPORTANT: Validation NEVER adjusts an amount to make it fit.
It reports the problem and the operation is refused.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from allocation_ledger.config import LedgerSettings, get_settings
from allocation_ledger.models.ledger import (
    Allocation,
    Bank,
    OperationKind,
    Transaction,
    ValidationIssue,
    ValidationResult,
    format_amount,
)


# Issue types, also used by the ledger to pick the exception class
INVALID_AMOUNT = "invalid_amount"
INSUFFICIENT_BALANCE = "insufficient_balance"
INSUFFICIENT_ALLOCATION = "insufficient_allocation"
INVALID_OPERATION = "invalid_operation"
NOT_FOUND = "not_found"

ISSUE_TITLES = {
    INVALID_AMOUNT: "Invalid Amount",
    INSUFFICIENT_BALANCE: "Insufficient Balance",
    INSUFFICIENT_ALLOCATION: "Insufficient Allocation",
    INVALID_OPERATION: "Invalid Operation",
    NOT_FOUND: "Not Found",
}


def _issue(
    field: str,
    issue_type: str,
    message: str,
    suggested_fix: Optional[str] = None,
) -> ValidationIssue:
    return ValidationIssue(
        field=field,
        issue_type=issue_type,
        title=ISSUE_TITLES[issue_type],
        message=message,
        severity="error",
        suggested_fix=suggested_fix,
    )


class LedgerValidator:
    """
    Checks the preconditions of withdraw, split withdraw and return.

    All methods are synchronous and side-effect free.
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    def _fmt(self, amount: Decimal) -> str:
        return format_amount(amount, self._settings.currency)

    def _check_positive(
        self,
        amount: Decimal,
        field: str = "amount",
    ) -> Optional[ValidationIssue]:
        if amount is None or amount <= 0:
            return _issue(
                field,
                INVALID_AMOUNT,
                "Amount must be greater than zero",
                suggested_fix="Enter a positive amount",
            )
        return None

    def check_withdraw(
        self,
        bank: Optional[Bank],
        allocation: Optional[Allocation],
        amount: Decimal,
    ) -> ValidationResult:
        """
        Validate a single-goal withdrawal.

        Checks, in order:
        - amount > 0
        - bank and allocation rows exist
        - amount <= bank balance
        - amount <= allocation amount
        """
        result = ValidationResult(operation=OperationKind.WITHDRAW)

        invalid = self._check_positive(amount)
        if invalid:
            # Nothing else is meaningful for a non-positive amount
            result.issues.append(invalid)
            return result

        if bank is None:
            result.issues.append(_issue(
                "bank_id",
                NOT_FOUND,
                "The selected bank no longer exists",
            ))
        if allocation is None:
            result.issues.append(_issue(
                "allocation",
                NOT_FOUND,
                "This goal has no allocation in the selected bank",
                suggested_fix="Allocate funds to the goal from this bank first",
            ))
        if result.has_errors:
            return result

        if amount > bank.balance:
            result.issues.append(_issue(
                "amount",
                INSUFFICIENT_BALANCE,
                f"Insufficient balance in selected bank. "
                f"Available: {self._fmt(bank.balance)}",
            ))

        if amount > allocation.amount:
            result.issues.append(_issue(
                "amount",
                INSUFFICIENT_ALLOCATION,
                f"Insufficient allocation for this goal. "
                f"Available: {self._fmt(allocation.amount)}",
            ))

        return result

    def check_split_withdraw(
        self,
        bank: Optional[Bank],
        shares: dict[UUID, Decimal],
        allocations: dict[UUID, Allocation],
        goal_names: Optional[dict[UUID, str]] = None,
    ) -> ValidationResult:
        """
        Validate a withdrawal from one bank spread over several goals.

        Args:
            bank: The bank being drawn from (None if missing)
            shares: goal_id -> amount taken from that goal
            allocations: goal_id -> allocation of that goal in this bank
            goal_names: Optional names used in messages
        """
        result = ValidationResult(operation=OperationKind.SPLIT_WITHDRAW)
        goal_names = goal_names or {}

        if not shares:
            result.issues.append(_issue(
                "shares",
                INVALID_AMOUNT,
                "Select at least one goal and an amount to withdraw",
            ))
            return result

        for goal_id, amount in shares.items():
            invalid = self._check_positive(amount, field=f"shares.{goal_id}")
            if invalid:
                result.issues.append(invalid)
        if result.has_errors:
            return result

        if bank is None:
            result.issues.append(_issue(
                "bank_id",
                NOT_FOUND,
                "The selected bank no longer exists",
            ))
            return result

        total = sum(shares.values(), Decimal("0"))
        if total > bank.balance:
            result.issues.append(_issue(
                "shares",
                INSUFFICIENT_BALANCE,
                f"Insufficient balance in selected bank. "
                f"Available: {self._fmt(bank.balance)}",
            ))

        for goal_id, amount in shares.items():
            name = goal_names.get(goal_id, str(goal_id))
            allocation = allocations.get(goal_id)
            if allocation is None:
                result.issues.append(_issue(
                    f"shares.{goal_id}",
                    NOT_FOUND,
                    f"{name} has no allocation in the selected bank",
                ))
            elif amount > allocation.amount:
                result.issues.append(_issue(
                    f"shares.{goal_id}",
                    INSUFFICIENT_ALLOCATION,
                    f"Insufficient allocation for {name}. "
                    f"Available: {self._fmt(allocation.amount)}",
                ))

        return result

    def check_return(
        self,
        transaction: Transaction,
        stored: Optional[Transaction],
        bank: Optional[Bank],
        allocation: Optional[Allocation],
        return_amount: Decimal,
    ) -> ValidationResult:
        """
        Validate returning (part of) a withdrawal.

        `stored` is the row as currently recorded; None means it was
        already returned or deleted.
        """
        result = ValidationResult(operation=OperationKind.RETURN)

        if not transaction.is_withdrawal:
            result.issues.append(_issue(
                "transaction",
                INVALID_OPERATION,
                "Only withdrawals can be returned",
            ))
            return result

        if stored is None:
            result.issues.append(_issue(
                "transaction",
                INVALID_OPERATION,
                "This transaction has already been returned",
                suggested_fix="Refresh the transaction history",
            ))
            return result

        invalid = self._check_positive(return_amount, field="return_amount")
        if invalid:
            result.issues.append(invalid)
        elif return_amount > stored.magnitude:
            result.issues.append(_issue(
                "return_amount",
                INVALID_AMOUNT,
                f"Cannot return more than was withdrawn "
                f"({self._fmt(stored.magnitude)})",
            ))

        if bank is None:
            result.issues.append(_issue(
                "bank_id",
                NOT_FOUND,
                "The bank of this transaction no longer exists",
            ))
        if allocation is None:
            result.issues.append(_issue(
                "allocation",
                NOT_FOUND,
                "The goal allocation of this transaction no longer exists",
            ))

        return result

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what the front end shows under the error banner.
        """
        if result.is_valid:
            return "✅ All checks passed."

        lines = ["❌ This operation cannot be completed:"]
        for issue in result.issues:
            if issue.severity == "error":
                lines.append(f"   • {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"     💡 {issue.suggested_fix}")

        return "\n".join(lines)
