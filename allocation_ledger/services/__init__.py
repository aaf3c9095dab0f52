"""Services package."""

from allocation_ledger.services.shell import InteractionShell, LoggingShell
from allocation_ledger.services.storage import (
    AuditStorageInterface,
    Collection,
    ConnectionError,
    DuplicateError,
    GatewayAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsGateway,
    InMemoryGateway,
    NotFoundError,
    PersistenceGateway,
    StorageError,
)

__all__ = [
    # Shell
    "InteractionShell",
    "LoggingShell",
    # Storage services
    "AuditStorageInterface",
    "Collection",
    "ConnectionError",
    "DuplicateError",
    "GatewayAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsGateway",
    "InMemoryGateway",
    "NotFoundError",
    "PersistenceGateway",
    "StorageError",
]
