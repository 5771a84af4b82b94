"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Ledger and invoice data live in SQLite (or memory for tests); the audit
trail can additionally be mirrored to Google Sheets.
"""

from reno_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    InvoiceNotFoundError,
    InvoiceStorageInterface,
    LedgerStorageInterface,
    NotFoundError,
    ProjectNotFoundError,
    StorageError,
    TransactionNotFoundError,
)
from reno_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryStorage,
)
from reno_ledger.services.storage.sqlite import (
    SqliteAuditStorage,
    SqliteStorage,
)
from reno_ledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "InvoiceStorageInterface",
    "LedgerStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "InvoiceNotFoundError",
    "NotFoundError",
    "ProjectNotFoundError",
    "StorageError",
    "TransactionNotFoundError",
    # Implementations
    "InMemoryAuditStorage",
    "InMemoryStorage",
    "SqliteAuditStorage",
    "SqliteStorage",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
]
