"""
Audit Models for Allocation Ledger

Every significant action in the system is logged for audit purposes.
This provides:
1. Complete traceability of all money movements
2. Debugging information when a multi-step write stops halfway
3. A record of what the user confirmed or cancelled
4. Ability to reconstruct history after a return deletes a row

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from allocation_ledger.models.ledger import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every stage of a ledger operation has its own event type.
    """
    # User interaction
    OPERATION_REQUESTED = "operation_requested"
    USER_CONFIRMED = "user_confirmed"
    USER_CANCELLED = "user_cancelled"

    # Validation
    VALIDATION_FAILED = "validation_failed"

    # Ledger writes
    WITHDRAWAL_RECORDED = "withdrawal_recorded"
    MONEY_RETURNED = "money_returned"
    BATCH_RETURNED = "batch_returned"
    OPERATION_FAILED = "operation_failed"

    # Recovery of interrupted operations
    INTENT_RECOVERED = "intent_recovered"
    INTENT_RECOVERY_FAILED = "intent_recovery_failed"

    # Query operations
    QUERY_EXECUTED = "query_executed"
    QUERY_FAILED = "query_failed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'intent', 'query')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one return)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    # Additional data (event-specific)
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    # User action tracking
    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.user_confirmed("withdraw", correlation_id)
        event = AuditEventBuilder.money_returned(tx_id, "150.00", correlation_id)
    """

    @staticmethod
    def operation_requested(
        operation: str,
        details: dict,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_REQUESTED,
            entity_type="operation",
            correlation_id=correlation_id,
            description=f"User requested {operation}",
            details={"operation": operation, **details},
            is_user_action=True,
        )

    @staticmethod
    def user_confirmed(
        operation: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_CONFIRMED,
            entity_type="operation",
            correlation_id=correlation_id,
            description=f"User confirmed {operation}",
            details={"operation": operation},
            is_user_action=True,
        )

    @staticmethod
    def user_cancelled(
        operation: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_CANCELLED,
            entity_type="operation",
            correlation_id=correlation_id,
            description=f"User cancelled {operation}",
            details={"operation": operation},
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        operation: str,
        issues: list[dict],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="operation",
            correlation_id=correlation_id,
            description=f"{operation} rejected with {len(issues)} issues",
            details={
                "operation": operation,
                "issues": issues,
            },
        )

    @staticmethod
    def withdrawal_recorded(
        transaction_id: UUID,
        bank_id: UUID,
        goal_id: UUID,
        amount: Decimal,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WITHDRAWAL_RECORDED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Withdrawal recorded: {amount}",
            details={
                "bank_id": str(bank_id),
                "goal_id": str(goal_id),
                "amount": str(amount),
            },
        )

    @staticmethod
    def money_returned(
        transaction_id: UUID,
        amount: Decimal,
        correlation_id: UUID,
        remainder_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONEY_RETURNED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Returned {amount} from withdrawal",
            details={
                "amount": str(amount),
                "remainder_id": str(remainder_id) if remainder_id else None,
            },
        )

    @staticmethod
    def batch_returned(
        returned_count: int,
        group_count: int,
        total: Decimal,
        failed_groups: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BATCH_RETURNED,
            severity=AuditSeverity.WARNING if failed_groups else AuditSeverity.INFO,
            entity_type="batch",
            correlation_id=correlation_id,
            description=f"Batch return of {returned_count} withdrawals in {group_count} groups",
            details={
                "returned_count": returned_count,
                "group_count": group_count,
                "total": str(total),
                "failed_groups": failed_groups,
            },
        )

    @staticmethod
    def operation_failed(
        operation: str,
        error_message: str,
        intent_id: Optional[UUID],
        completed_steps: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="intent",
            entity_id=intent_id,
            correlation_id=correlation_id,
            description=f"{operation} failed after {completed_steps} completed steps",
            error_message=error_message,
            details={
                "operation": operation,
                "completed_steps": completed_steps,
            },
        )

    @staticmethod
    def intent_recovered(
        intent_id: UUID,
        operation: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INTENT_RECOVERED,
            severity=AuditSeverity.WARNING,
            entity_type="intent",
            entity_id=intent_id,
            correlation_id=correlation_id,
            description=f"Interrupted {operation} completed on recovery",
            details={"operation": operation},
        )

    @staticmethod
    def intent_recovery_failed(
        intent_id: UUID,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INTENT_RECOVERY_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="intent",
            entity_id=intent_id,
            description="Interrupted operation could not be completed",
            error_message=error_message,
        )

    @staticmethod
    def query_executed(
        page: int,
        withdrawn_only: bool,
        result_count: int,
        total_count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUERY_EXECUTED,
            severity=AuditSeverity.DEBUG,
            entity_type="query",
            correlation_id=correlation_id,
            description=f"History page {page} returned {result_count} of {total_count} rows",
            details={
                "page": page,
                "withdrawn_only": withdrawn_only,
                "result_count": result_count,
                "total_count": total_count,
            },
        )

    @staticmethod
    def query_failed(
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUERY_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="query",
            correlation_id=correlation_id,
            description="Loading transaction history failed",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
