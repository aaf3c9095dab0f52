"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of every money movement
2. Debugging capability when an operation stops halfway
3. User can see history of their interactions, including returned rows
4. A record of what was confirmed and what was cancelled

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from allocation_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from allocation_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("allocation_ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_operation_requested(
        self,
        operation: str,
        details: dict,
        correlation_id: UUID,
    ) -> None:
        """Log that the user asked for an operation."""
        await self.log(AuditEventBuilder.operation_requested(
            operation=operation,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_user_confirmed(
        self,
        operation: str,
        correlation_id: UUID,
    ) -> None:
        """Log user confirmation."""
        await self.log(AuditEventBuilder.user_confirmed(
            operation=operation,
            correlation_id=correlation_id,
        ))

    async def log_user_cancelled(
        self,
        operation: str,
        correlation_id: UUID,
    ) -> None:
        """Log that the user declined the confirmation."""
        await self.log(AuditEventBuilder.user_cancelled(
            operation=operation,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        operation: str,
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        """Log validation failure."""
        await self.log(AuditEventBuilder.validation_failed(
            operation=operation,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_withdrawal_recorded(
        self,
        transaction_id: UUID,
        bank_id: UUID,
        goal_id: UUID,
        amount: Decimal,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.withdrawal_recorded(
            transaction_id=transaction_id,
            bank_id=bank_id,
            goal_id=goal_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_money_returned(
        self,
        transaction_id: UUID,
        amount: Decimal,
        correlation_id: UUID,
        remainder_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.money_returned(
            transaction_id=transaction_id,
            amount=amount,
            correlation_id=correlation_id,
            remainder_id=remainder_id,
        ))

    async def log_batch_returned(
        self,
        returned_count: int,
        group_count: int,
        total: Decimal,
        failed_groups: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.batch_returned(
            returned_count=returned_count,
            group_count=group_count,
            total=total,
            failed_groups=failed_groups,
            correlation_id=correlation_id,
        ))

    async def log_operation_failed(
        self,
        operation: str,
        error_message: str,
        intent_id: Optional[UUID],
        completed_steps: int,
        correlation_id: UUID,
    ) -> None:
        """Log a ledger operation that stopped partway."""
        await self.log(AuditEventBuilder.operation_failed(
            operation=operation,
            error_message=error_message,
            intent_id=intent_id,
            completed_steps=completed_steps,
            correlation_id=correlation_id,
        ))

    async def log_intent_recovered(
        self,
        intent_id: UUID,
        operation: str,
        correlation_id: Optional[UUID],
    ) -> None:
        await self.log(AuditEventBuilder.intent_recovered(
            intent_id=intent_id,
            operation=operation,
            correlation_id=correlation_id,
        ))

    async def log_intent_recovery_failed(
        self,
        intent_id: UUID,
        error_message: str,
    ) -> None:
        await self.log(AuditEventBuilder.intent_recovery_failed(
            intent_id=intent_id,
            error_message=error_message,
        ))

    async def log_query_executed(
        self,
        page: int,
        withdrawn_only: bool,
        result_count: int,
        total_count: int,
        correlation_id: UUID,
    ) -> None:
        """Log query execution."""
        await self.log(AuditEventBuilder.query_executed(
            page=page,
            withdrawn_only=withdrawn_only,
            result_count=result_count,
            total_count=total_count,
            correlation_id=correlation_id,
        ))

    async def log_query_failed(
        self,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.query_failed(
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a batch return).
    Pass it through all subsequent operations.
    """
    return uuid4()
