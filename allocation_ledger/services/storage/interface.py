"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep ledger logic decoupled from storage implementation

The gateway is intentionally small: get / count / insert / update / delete
over named collections with row-level filters. Every call is an independent
round trip. Nothing here composes calls into a transaction; the ledger
copes with that itself (see allocation_ledger.ledger).

Filters are plain dicts. A key is a field name, optionally followed by an
operator suffix:
    {"bank_id": some_id}            equality
    {"amount__lt": 0}               less than (also __lte, __gt, __gte, __ne)
    {"id__in": [id1, id2]}          membership
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional, Sequence
from uuid import UUID

from pydantic import BaseModel

from allocation_ledger.models.audit import AuditEvent
from allocation_ledger.models.ledger import (
    Allocation,
    Bank,
    Goal,
    Transaction,
    WriteIntent,
)


Filters = dict[str, Any]


class Collection(str, Enum):
    """Record collections the gateway exposes."""
    BANKS = "banks"
    GOALS = "goals"
    ALLOCATIONS = "allocations"
    TRANSACTIONS = "transactions"
    WRITE_INTENTS = "write_intents"
    AUDIT_LOG = "audit_log"


COLLECTION_MODELS: dict[Collection, type[BaseModel]] = {
    Collection.BANKS: Bank,
    Collection.GOALS: Goal,
    Collection.ALLOCATIONS: Allocation,
    Collection.TRANSACTIONS: Transaction,
    Collection.WRITE_INTENTS: WriteIntent,
    Collection.AUDIT_LOG: AuditEvent,
}


def primary_key(collection: Collection) -> str:
    """Name of the identifying field of a collection."""
    return "event_id" if collection == Collection.AUDIT_LOG else "id"


class PersistenceGateway(ABC):
    """
    Abstract interface for ledger record storage.

    Any storage implementation (in-memory, Google Sheets, PostgreSQL, ...)
    must implement these methods. Implementations raise StorageError (or a
    subclass) on failure and never return partial results.
    """

    @abstractmethod
    async def get(
        self,
        collection: Collection,
        filters: Optional[Filters] = None,
        *,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[BaseModel]:
        """
        Read records matching filters.

        Args:
            collection: Collection to read
            filters: Row filters (see module docstring); None reads everything
            order_by: Field names, prefixed with '-' for descending
            limit: Maximum number of records
            offset: Number of records to skip after ordering

        Returns:
            Typed records of the collection's model

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def count(
        self,
        collection: Collection,
        filters: Optional[Filters] = None,
    ) -> int:
        """Count records matching filters."""
        pass

    @abstractmethod
    async def insert(
        self,
        collection: Collection,
        record: BaseModel,
    ) -> BaseModel:
        """
        Insert a new record.

        Records with a `seq` field get the next insertion sequence number.

        Returns:
            The stored record

        Raises:
            DuplicateError: If a record with the same id exists
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def update(
        self,
        collection: Collection,
        filters: Filters,
        patch: dict[str, Any],
    ) -> int:
        """
        Apply a patch to every record matching filters.

        Including a `version` in filters makes the update conditional:
        a stale version simply matches nothing.

        Returns:
            Number of records updated (0 if nothing matched)

        Raises:
            StorageError: If the update fails or filters are empty
        """
        pass

    @abstractmethod
    async def delete(
        self,
        collection: Collection,
        filters: Filters,
    ) -> int:
        """
        Delete every record matching filters.

        Use {"id__in": ids} to delete a batch in one call.

        Returns:
            Number of records deleted

        Raises:
            StorageError: If the delete fails or filters are empty
        """
        pass

    async def get_one(
        self,
        collection: Collection,
        filters: Filters,
    ) -> Optional[BaseModel]:
        """First record matching filters, or None."""
        records = await self.get(collection, filters, limit=1)
        return records[0] if records else None

    async def get_by_id(
        self,
        collection: Collection,
        record_id: UUID,
    ) -> Optional[BaseModel]:
        return await self.get_one(collection, {primary_key(collection): record_id})


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one batch return).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
