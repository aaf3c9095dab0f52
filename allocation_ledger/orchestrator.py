"""
Main Orchestrator for Allocation Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Withdraw (validate → confirm → write → notify)
2. Return / batch return (confirm → write → notify)
3. History (page → join → display)
4. Recovery of operations interrupted between writes

DESIGN DECISION: The orchestrator enforces the boundaries:
- No money moves without explicit user confirmation
- Every failure reaches the user as a titled error, never a crash
- Every step is audited

The ledger and query layer raise; this layer catches, reports through
the interaction shell and records the outcome in the audit log.
"""

from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional, Union
from uuid import UUID

import structlog

from allocation_ledger.audit import AuditLogger, create_correlation_id
from allocation_ledger.config import LedgerSettings, get_settings
from allocation_ledger.ledger import (
    AllocationLedger,
    LedgerError,
    LedgerOperationError,
    LedgerValidationError,
)
from allocation_ledger.models.ledger import (
    BatchReturnResult,
    GoalHistory,
    RecoveryReport,
    Transaction,
    TransactionPage,
    TransactionView,
    format_amount,
    to_amount,
)
from allocation_ledger.queries import QueryError, TransactionQuery
from allocation_ledger.services.shell import InteractionShell, LoggingShell
from allocation_ledger.services.storage import (
    GatewayAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsGateway,
    InMemoryGateway,
    PersistenceGateway,
)


logger = structlog.get_logger(__name__)

AmountLike = Union[Decimal, int, float, str]


class LedgerFlow:
    """
    Orchestrates money movements.

    Flow for every operation:
    1. Request → audit the request
    2. Validate → refuse early with a titled error
    3. Confirm → ask the user (PAUSE - require confirmation)
    4. Execute → ledger writes
    5. Notify → success or error banner

    Confirmation (step 3) is MANDATORY.
    A declined confirmation writes nothing.
    """

    def __init__(
        self,
        ledger: AllocationLedger,
        shell: InteractionShell,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._ledger = ledger
        self._shell = shell
        self._audit_logger = audit_logger or AuditLogger()
        self._settings = settings or get_settings().ledger

    def _fmt(self, amount: Decimal) -> str:
        return format_amount(amount, self._settings.currency)

    async def _parse_amount(self, value: AmountLike) -> Optional[Decimal]:
        try:
            return to_amount(value)
        except (InvalidOperation, ValueError):
            await self._shell.notify_error("Invalid Amount", "Please enter a valid amount")
            return None

    async def _confirm(
        self,
        operation: str,
        title: str,
        message: str,
        correlation_id: UUID,
    ) -> bool:
        confirmed = await self._shell.confirm(title, message)
        if confirmed:
            await self._audit_logger.log_user_confirmed(operation, correlation_id)
        else:
            await self._audit_logger.log_user_cancelled(operation, correlation_id)
        return confirmed

    async def _report_failure(
        self,
        operation: str,
        error: Exception,
        correlation_id: UUID,
        failure_title: Optional[str] = None,
    ) -> None:
        """Audit a failed operation and show it to the user."""
        if isinstance(error, LedgerValidationError):
            await self._audit_logger.log_validation_failed(
                operation=operation,
                issues=[issue.model_dump() for issue in error.issues],
                correlation_id=correlation_id,
            )
            await self._shell.notify_error(error.title, error.message)
            return

        if isinstance(error, LedgerOperationError):
            await self._audit_logger.log_operation_failed(
                operation=operation,
                error_message=error.message,
                intent_id=error.intent_id,
                completed_steps=error.completed_steps,
                correlation_id=correlation_id,
            )
            await self._shell.notify_error(failure_title or error.title, error.message)
            return

        await self._audit_logger.log_error(
            error_type=type(error).__name__,
            error_message=str(error),
            details={"operation": operation},
            correlation_id=correlation_id,
        )
        await self._shell.notify_error(failure_title or LedgerError.title, str(error))

    # =========================================================================
    # WITHDRAW
    # =========================================================================

    async def withdraw(
        self,
        goal_id: UUID,
        bank_id: UUID,
        amount: AmountLike,
        description: str = "",
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        """
        Withdraw from one goal's allocation in one bank.

        Returns:
            The recorded withdrawal, or None if refused, cancelled or failed
        """
        correlation_id = correlation_id or create_correlation_id()
        operation = "withdraw"

        parsed = await self._parse_amount(amount)
        if parsed is None:
            return None

        await self._audit_logger.log_operation_requested(
            operation,
            {"goal_id": str(goal_id), "bank_id": str(bank_id), "amount": str(parsed)},
            correlation_id,
        )

        try:
            result = await self._ledger.validate_withdraw(goal_id, bank_id, parsed)
        except Exception as e:
            await self._report_failure(operation, e, correlation_id)
            return None

        if not result.is_valid:
            issue = result.first_error
            await self._audit_logger.log_validation_failed(
                operation=operation,
                issues=[i.model_dump() for i in result.issues],
                correlation_id=correlation_id,
            )
            await self._shell.notify_error(
                issue.title,
                self._ledger.validator.get_user_friendly_summary(result),
            )
            return None

        if not await self._confirm(
            operation,
            "Record Withdrawal?",
            f"Are you sure you want to withdraw {self._fmt(parsed)}?",
            correlation_id,
        ):
            return None

        try:
            transaction = await self._ledger.withdraw(
                goal_id,
                bank_id,
                parsed,
                description=description,
                correlation_id=correlation_id,
            )
        except Exception as e:
            await self._report_failure(operation, e, correlation_id)
            return None

        await self._audit_logger.log_withdrawal_recorded(
            transaction_id=transaction.id,
            bank_id=bank_id,
            goal_id=goal_id,
            amount=parsed,
            correlation_id=correlation_id,
        )
        await self._shell.notify_success(
            "Withdrawal Recorded",
            f"{self._fmt(parsed)} has been withdrawn",
        )
        return transaction

    async def withdraw_split(
        self,
        bank_id: UUID,
        shares: dict[UUID, AmountLike],
        description: str = "",
        correlation_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """Withdraw from several goals held in one bank."""
        correlation_id = correlation_id or create_correlation_id()
        operation = "split_withdraw"

        amounts = {}
        for goal_id, value in shares.items():
            parsed = await self._parse_amount(value)
            if parsed is None:
                return []
            amounts[goal_id] = parsed
        total = sum(amounts.values(), Decimal("0"))

        await self._audit_logger.log_operation_requested(
            operation,
            {
                "bank_id": str(bank_id),
                "shares": {str(k): str(v) for k, v in amounts.items()},
            },
            correlation_id,
        )

        if not await self._confirm(
            operation,
            "Record Withdrawal?",
            f"Are you sure you want to withdraw {self._fmt(total)} "
            f"across {len(amounts)} goal(s)?",
            correlation_id,
        ):
            return []

        try:
            transactions = await self._ledger.withdraw_split(
                bank_id,
                amounts,
                description=description,
                correlation_id=correlation_id,
            )
        except Exception as e:
            await self._report_failure(operation, e, correlation_id)
            return []

        for transaction in transactions:
            await self._audit_logger.log_withdrawal_recorded(
                transaction_id=transaction.id,
                bank_id=bank_id,
                goal_id=transaction.goal_id,
                amount=transaction.magnitude,
                correlation_id=correlation_id,
            )
        await self._shell.notify_success(
            "Withdrawal Recorded",
            f"{self._fmt(total)} has been withdrawn",
        )
        return transactions

    # =========================================================================
    # RETURN
    # =========================================================================

    async def return_money(
        self,
        transaction: TransactionView,
        return_amount: Optional[AmountLike] = None,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Return a withdrawal (fully, or partially when `return_amount` is set).

        Returns:
            True if the money was returned
        """
        correlation_id = correlation_id or create_correlation_id()
        operation = "return"

        if not transaction.is_withdrawal:
            await self._shell.notify_error(
                "Invalid Operation",
                "Can only return withdrawal transactions",
            )
            return False

        if return_amount is None:
            amount = transaction.magnitude
        else:
            amount = await self._parse_amount(return_amount)
            if amount is None:
                return False

        await self._audit_logger.log_operation_requested(
            operation,
            {"transaction_id": str(transaction.id), "amount": str(amount)},
            correlation_id,
        )

        if not await self._confirm(
            operation,
            "Return Money?",
            f"Are you sure you want to return {self._fmt(amount)} "
            f"to {transaction.bank_name}?",
            correlation_id,
        ):
            return False

        try:
            remainder = await self._ledger.return_money(
                transaction,
                return_amount=amount,
                correlation_id=correlation_id,
            )
        except Exception as e:
            await self._report_failure(
                operation, e, correlation_id, failure_title="Return Failed"
            )
            return False

        await self._audit_logger.log_money_returned(
            transaction_id=transaction.id,
            amount=amount,
            correlation_id=correlation_id,
            remainder_id=remainder.id if remainder else None,
        )
        await self._shell.notify_success(
            "Money Returned!",
            f"{self._fmt(amount)} has been returned",
        )
        return True

    async def return_selected(
        self,
        transactions: Iterable[Transaction],
        correlation_id: Optional[UUID] = None,
    ) -> Optional[BatchReturnResult]:
        """
        Return every selected withdrawal in one action.

        Returns:
            The batch result, or None if nothing was attempted
        """
        correlation_id = correlation_id or create_correlation_id()
        operation = "batch_return"

        withdrawals = [t for t in transactions if t.is_withdrawal]
        if not withdrawals:
            await self._shell.notify_error(
                "Invalid Operation",
                "Select at least one withdrawal to return",
            )
            return None

        total = sum((t.magnitude for t in withdrawals), Decimal("0"))
        await self._audit_logger.log_operation_requested(
            operation,
            {"transaction_ids": [str(t.id) for t in withdrawals], "total": str(total)},
            correlation_id,
        )

        if not await self._confirm(
            operation,
            "Return Money?",
            f"Are you sure you want to return {self._fmt(total)} "
            f"from {len(withdrawals)} transaction(s)?",
            correlation_id,
        ):
            return None

        try:
            result = await self._ledger.return_batch(
                withdrawals, correlation_id=correlation_id
            )
        except Exception as e:
            await self._report_failure(
                operation, e, correlation_id, failure_title="Return Failed"
            )
            return None

        await self._audit_logger.log_batch_returned(
            returned_count=result.returned_count,
            group_count=len(result.completed) + len(result.failed),
            total=result.total_returned,
            failed_groups=len(result.failed),
            correlation_id=correlation_id,
        )

        if result.completed:
            await self._shell.notify_success(
                "Money Returned!",
                f"{self._fmt(result.total_returned)} has been returned",
            )
        if result.has_failures:
            for failure in result.failed:
                await self._audit_logger.log_operation_failed(
                    operation=operation,
                    error_message=failure.error_message,
                    intent_id=failure.intent_id,
                    completed_steps=0,
                    correlation_id=correlation_id,
                )
            await self._shell.notify_error(
                "Return Failed",
                "; ".join(failure.error_message for failure in result.failed),
            )
        return result

    # =========================================================================
    # RECOVERY
    # =========================================================================

    async def recover_pending(self) -> RecoveryReport:
        """
        Finish operations interrupted on a previous run.

        Called once at startup, before any new operation.
        """
        try:
            report = await self._ledger.recover_pending()
        except LedgerOperationError as e:
            await self._audit_logger.log_external_service_error("storage", e.message)
            return RecoveryReport(failed={"pending_intents": e.message})

        for intent_id in report.recovered:
            await self._audit_logger.log_intent_recovered(
                intent_id=intent_id,
                operation="recover_pending",
                correlation_id=None,
            )
        for intent_id, message in report.failed.items():
            await self._audit_logger.log_intent_recovery_failed(
                intent_id=UUID(intent_id),
                error_message=message,
            )
        return report


class HistoryFlow:
    """
    Orchestrates the read side: transaction history pages and per-goal
    history. Failures become a "Loading Failed" error, never an exception.
    """

    def __init__(
        self,
        query: TransactionQuery,
        shell: InteractionShell,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._query = query
        self._shell = shell
        self._audit_logger = audit_logger or AuditLogger()

    async def load_history(
        self,
        page: int = 1,
        withdrawn_only: bool = False,
        owner_id: Optional[str] = None,
        page_size: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[TransactionPage]:
        correlation_id = correlation_id or create_correlation_id()

        try:
            result = await self._query.fetch(
                page=page,
                page_size=page_size,
                withdrawn_only=withdrawn_only,
                owner_id=owner_id,
            )
        except QueryError as e:
            await self._audit_logger.log_query_failed(str(e), correlation_id)
            await self._shell.notify_error("Loading Failed", str(e))
            return None

        await self._audit_logger.log_query_executed(
            page=page,
            withdrawn_only=withdrawn_only,
            result_count=len(result.items),
            total_count=result.total_count,
            correlation_id=correlation_id,
        )
        return result

    async def load_goal_history(
        self,
        goal_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[GoalHistory]:
        correlation_id = correlation_id or create_correlation_id()

        try:
            return await self._query.list_for_goal(goal_id)
        except QueryError as e:
            await self._audit_logger.log_query_failed(str(e), correlation_id)
            await self._shell.notify_error("Loading Failed", str(e))
            return None


def create_app_components(
    use_storage: bool = True,
    shell: Optional[InteractionShell] = None,
) -> tuple[LedgerFlow, HistoryFlow, PersistenceGateway]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Falls back to in-memory storage when False or when
                    Sheets is not configured.
        shell: Interaction shell; defaults to a non-confirming LoggingShell

    Returns:
        (ledger_flow, history_flow, gateway)
    """
    gateway: PersistenceGateway
    if use_storage:
        try:
            gateway = GoogleSheetsGateway(GoogleSheetsClient())
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            gateway = InMemoryGateway()
    else:
        gateway = InMemoryGateway()

    shell = shell or LoggingShell()
    settings = get_settings().ledger
    audit_logger = AuditLogger(GatewayAuditStorage(gateway))

    ledger_flow = LedgerFlow(
        ledger=AllocationLedger(gateway, settings=settings),
        shell=shell,
        audit_logger=audit_logger,
        settings=settings,
    )
    history_flow = HistoryFlow(
        query=TransactionQuery(gateway, settings=settings),
        shell=shell,
        audit_logger=audit_logger,
    )

    return ledger_flow, history_flow, gateway
