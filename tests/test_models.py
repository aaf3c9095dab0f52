"""
Tests for Allocation Ledger

Test strategy:
1. Unit tests for individual components (models, validators, filters)
2. Integration tests for flows (against the in-memory gateway)
3. No real API calls in tests (Sheets is replaced by fakes)
"""

import pytest
from datetime import timezone
from decimal import Decimal
from uuid import uuid4

from allocation_ledger.models import (
    UNKNOWN_BANK,
    UNKNOWN_GOAL,
    Bank,
    BatchReturnResult,
    FailedReturnGroup,
    IntentStep,
    OperationKind,
    ReturnGroup,
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


class TestAmountHelpers:
    """Tests for currency amount helpers."""

    def test_to_amount_quantizes_to_cents(self):
        """Test that amounts are rounded half-up to two decimals."""
        assert to_amount("10.005") == Decimal("10.01")
        assert to_amount(150) == Decimal("150.00")
        assert to_amount(0.1) == Decimal("0.10")

    def test_format_amount(self):
        """Test the display format used in messages."""
        assert format_amount(Decimal("150"), "MAD") == "150.00 MAD"

    def test_utc_now_is_timezone_aware(self):
        """Test that timestamps carry a timezone."""
        assert utc_now().tzinfo == timezone.utc


class TestLedgerModels:
    """Tests for ledger Pydantic models."""

    def test_bank_strips_whitespace(self):
        """Test that whitespace is stripped from bank names."""
        bank = Bank(name="  Main Bank  ", balance=Decimal("10.00"))
        assert bank.name == "Main Bank"
        assert bank.version == 0
        assert bank.last_op is None

    def test_bank_rejects_negative_balance(self):
        """Test that a negative balance is rejected."""
        with pytest.raises(ValueError):
            Bank(name="Main Bank", balance=Decimal("-0.01"))

    def test_transaction_withdrawal_properties(self):
        """Test sign helpers on transactions."""
        withdrawal = Transaction(goal_id=uuid4(), bank_id=uuid4(), amount=Decimal("-150.00"))
        credit = Transaction(goal_id=uuid4(), bank_id=uuid4(), amount=Decimal("20.00"))

        assert withdrawal.is_withdrawal
        assert withdrawal.magnitude == Decimal("150.00")
        assert not credit.is_withdrawal

    def test_transaction_rejects_sub_cent_amount(self):
        """Test that amounts with more than two decimals are rejected."""
        with pytest.raises(ValueError):
            Transaction(goal_id=uuid4(), bank_id=uuid4(), amount=Decimal("-1.005"))

    def test_transaction_view_defaults_to_unknown_labels(self):
        """Test placeholder names on joined rows."""
        view = TransactionView(goal_id=uuid4(), bank_id=uuid4(), amount=Decimal("-1.00"))
        assert view.bank_name == UNKNOWN_BANK == "Unknown Bank"
        assert view.goal_name == UNKNOWN_GOAL == "Unknown Objective"

    def test_write_intent_progress(self):
        """Test intent completion and step markers."""
        intent = WriteIntent(
            operation=OperationKind.WITHDRAW,
            steps=[
                IntentStep(kind=StepKind.ADJUST_BANK, bank_id=uuid4(), delta=Decimal("-1.00")),
                IntentStep(kind=StepKind.DELETE_TRANSACTIONS, transaction_ids=[uuid4()]),
            ],
        )
        assert not intent.is_complete
        assert intent.op_key(1) == f"{intent.id}:1"

        intent.completed_steps = 2
        assert intent.is_complete

    def test_write_intent_survives_json_round_trip(self):
        """Test that nested steps serialize for storage."""
        txn = Transaction(goal_id=uuid4(), bank_id=uuid4(), amount=Decimal("-5.00"))
        intent = WriteIntent(
            operation=OperationKind.RETURN,
            steps=[IntentStep(kind=StepKind.INSERT_TRANSACTION, transaction=txn)],
        )
        restored = WriteIntent.model_validate_json(intent.model_dump_json())
        assert restored.steps[0].transaction.id == txn.id
        assert restored.steps[0].transaction.amount == Decimal("-5.00")


class TestResultModels:
    """Tests for page and result models."""

    def test_page_window_arithmetic(self):
        """Test total pages and showing-from/to indices."""
        items = [
            TransactionView(goal_id=uuid4(), bank_id=uuid4(), amount=Decimal("-1.00"))
            for _ in range(15)
        ]
        page = TransactionPage(items=items, total_count=31, page=2, page_size=15)

        assert page.total_pages == 3
        assert page.has_more
        assert page.first_index == 16
        assert page.last_index == 30

    def test_empty_page(self):
        """Test an empty result."""
        page = TransactionPage()
        assert page.total_pages == 0
        assert not page.has_more
        assert page.first_index == 0

    def test_batch_result_totals(self):
        """Test that only completed groups count as returned."""
        done = ReturnGroup(
            bank_id=uuid4(), goal_id=uuid4(),
            transaction_ids=[uuid4(), uuid4()], total=Decimal("150.00"),
        )
        failed = ReturnGroup(
            bank_id=uuid4(), goal_id=uuid4(),
            transaction_ids=[uuid4()], total=Decimal("30.00"),
        )
        result = BatchReturnResult(
            completed=[done],
            failed=[FailedReturnGroup(group=failed, error_message="boom")],
        )

        assert result.total_returned == Decimal("150.00")
        assert result.returned_count == 2
        assert result.has_failures


class TestValidationModels:
    """Tests for validation result models."""

    def test_validation_issue_severity_pattern(self):
        """Test that only known severities are accepted."""
        with pytest.raises(ValueError):
            ValidationIssue(
                field="amount",
                issue_type="invalid_amount",
                title="Invalid Amount",
                message="bad",
                severity="fatal",
            )

    def test_first_error_skips_warnings(self):
        """Test error counting and the first error lookup."""
        result = ValidationResult(
            operation=OperationKind.WITHDRAW,
            issues=[
                ValidationIssue(
                    field="a", issue_type="x", title="Note",
                    message="warn", severity="warning",
                ),
                ValidationIssue(
                    field="b", issue_type="y", title="Invalid Amount",
                    message="err", severity="error",
                ),
            ],
        )
        assert result.has_errors
        assert not result.is_valid
        assert result.error_count == 1
        assert result.first_error.title == "Invalid Amount"


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation with defaults."""
        event = AuditEvent(
            event_type=AuditEventType.WITHDRAWAL_RECORDED,
            description="Withdrawal recorded",
        )
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_withdrawal_recorded_builder(self):
        """Test the withdrawal event builder."""
        correlation_id = uuid4()
        event = AuditEventBuilder.withdrawal_recorded(
            transaction_id=uuid4(),
            bank_id=uuid4(),
            goal_id=uuid4(),
            amount=Decimal("150.00"),
            correlation_id=correlation_id,
        )
        assert event.event_type == AuditEventType.WITHDRAWAL_RECORDED
        assert event.correlation_id == correlation_id

    def test_operation_failed_is_error(self):
        """Test that a failed operation is logged as an error."""
        event = AuditEventBuilder.operation_failed(
            operation="withdraw",
            error_message="boom",
            intent_id=uuid4(),
            completed_steps=1,
            correlation_id=uuid4(),
        )
        assert event.severity == AuditSeverity.ERROR
        assert event.error_message == "boom"

    def test_to_log_dict_is_flat(self):
        """Test that log dicts contain string ids."""
        event = AuditEventBuilder.user_cancelled(operation="return", correlation_id=uuid4())
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == AuditEventType.USER_CANCELLED.value
        assert isinstance(log_dict["event_id"], str)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
