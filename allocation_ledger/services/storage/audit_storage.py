"""
Audit storage on top of any persistence gateway.

Audit events are just another collection, so the same backend that holds
banks and transactions holds the audit trail too.
"""

from uuid import UUID

import structlog

from allocation_ledger.models.audit import AuditEvent
from allocation_ledger.services.storage.interface import (
    AuditStorageInterface,
    Collection,
    PersistenceGateway,
    StorageError,
)


logger = structlog.get_logger(__name__)


class GatewayAuditStorage(AuditStorageInterface):
    """Append-only audit log stored in the AUDIT_LOG collection."""

    def __init__(self, gateway: PersistenceGateway):
        self._gateway = gateway

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            await self._gateway.insert(Collection.AUDIT_LOG, event)
            return True
        except StorageError as e:
            # Don't raise - audit logging should not break the main flow
            logger.warning(
                "audit_event_not_persisted",
                event_id=str(event.event_id),
                error=str(e),
            )
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID, oldest first."""
        return await self._gateway.get(
            Collection.AUDIT_LOG,
            {"correlation_id": correlation_id},
            order_by=["timestamp"],
        )

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events, newest first."""
        return await self._gateway.get(
            Collection.AUDIT_LOG,
            order_by=["-timestamp"],
            limit=limit,
        )
