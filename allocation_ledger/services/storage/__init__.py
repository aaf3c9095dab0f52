"""
Storage Services Package

Provides the abstract persistence gateway and its implementations.
The in-memory backend serves tests and offline use; Google Sheets is the
hosted backend. Both are interchangeable behind PersistenceGateway.
"""

from allocation_ledger.services.storage.interface import (
    COLLECTION_MODELS,
    AuditStorageInterface,
    Collection,
    ConnectionError,
    DuplicateError,
    Filters,
    NotFoundError,
    PersistenceGateway,
    StorageError,
    primary_key,
)
from allocation_ledger.services.storage.memory import InMemoryGateway
from allocation_ledger.services.storage.audit_storage import GatewayAuditStorage
from allocation_ledger.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsGateway,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "PersistenceGateway",
    "COLLECTION_MODELS",
    "Collection",
    "Filters",
    "primary_key",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "GatewayAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsGateway",
    "InMemoryGateway",
]
