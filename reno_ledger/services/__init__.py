"""Services package."""

from reno_ledger.services.documents import (
    CloudinaryDocumentStore,
    DocumentNotFoundError,
    DocumentStoreError,
    DocumentStoreInterface,
    DocumentUploadError,
)
from reno_ledger.services.ocr import (
    ExtractionFailedError,
    ExtractionServiceInterface,
    GovernedOutcome,
    MindeeExtractionService,
    OCRError,
    OcrBudgetGovernor,
)
from reno_ledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    InMemoryAuditStorage,
    InMemoryStorage,
    InvoiceNotFoundError,
    InvoiceStorageInterface,
    LedgerStorageInterface,
    NotFoundError,
    ProjectNotFoundError,
    SqliteAuditStorage,
    SqliteStorage,
    StorageError,
    TransactionNotFoundError,
)

__all__ = [
    # Document services
    "CloudinaryDocumentStore",
    "DocumentNotFoundError",
    "DocumentStoreError",
    "DocumentStoreInterface",
    "DocumentUploadError",
    # OCR services
    "ExtractionFailedError",
    "ExtractionServiceInterface",
    "GovernedOutcome",
    "MindeeExtractionService",
    "OCRError",
    "OcrBudgetGovernor",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "InMemoryAuditStorage",
    "InMemoryStorage",
    "InvoiceNotFoundError",
    "InvoiceStorageInterface",
    "LedgerStorageInterface",
    "NotFoundError",
    "ProjectNotFoundError",
    "SqliteAuditStorage",
    "SqliteStorage",
    "StorageError",
    "TransactionNotFoundError",
]
