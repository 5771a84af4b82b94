"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the whole core against an in-memory store in tests
2. Persist to SQLite without changing business logic
3. Keep the one operation that MUST be atomic (allocation replace) a
   storage concern rather than a caller concern

The interface is intentionally simple - we're not building a full ORM.
Just the operations the reconciliation core needs.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from reno_ledger.models.audit import AuditEvent
from reno_ledger.models.invoice import Invoice, MonthlyOcrBudget, OcrUsage
from reno_ledger.models.ledger import (
    Allocation,
    Project,
    ProjectStatus,
    Transaction,
    TransactionQuery,
)


# Fields a bulk update may touch (propagation only)
BULK_UPDATABLE_FIELDS = frozenset({"expense_category", "is_fixed"})


class LedgerStorageInterface(ABC):
    """
    Abstract interface for transactions, projects and allocations.

    Any storage implementation must implement these methods.
    """

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_transaction(self, transaction: Transaction) -> Transaction:
        """
        Insert a new transaction and return it with its id assigned.

        Raises:
            DuplicateError: If external_id is already taken
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def get_transaction_by_external_id(
        self,
        external_id: str,
    ) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> Transaction:
        """
        Overwrite a transaction row.

        project_id and has_invoice are NOT written here: the first is owned
        by replace_allocations, the second by set_has_invoice.

        Raises:
            TransactionNotFoundError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        query: Optional[TransactionQuery] = None,
    ) -> list[Transaction]:
        """List transactions matching the query filters."""
        pass

    @abstractmethod
    async def bulk_update_fields(
        self,
        transaction_ids: list[int],
        values: dict[str, Any],
    ) -> list[int]:
        """
        Set the same values on several transactions.

        Only fields in BULK_UPDATABLE_FIELDS are accepted.

        Returns:
            Ids that were actually updated
        """
        pass

    @abstractmethod
    async def set_has_invoice(self, transaction_id: int, has_invoice: bool) -> None:
        pass

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_project(self, project: Project) -> Project:
        pass

    @abstractmethod
    async def get_project(self, project_id: int) -> Optional[Project]:
        pass

    @abstractmethod
    async def list_projects(
        self,
        status: Optional[ProjectStatus] = None,
    ) -> list[Project]:
        pass

    @abstractmethod
    async def update_project(self, project: Project) -> Project:
        """
        Raises:
            ProjectNotFoundError: If the project doesn't exist
        """
        pass

    @abstractmethod
    async def delete_project(self, project_id: int) -> bool:
        """
        Delete a project.

        Returns:
            True if a row was deleted
        """
        pass

    # -------------------------------------------------------------------------
    # Allocations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_allocations(self, transaction_id: int) -> list[Allocation]:
        """Allocations of one transaction, in insertion order."""
        pass

    @abstractmethod
    async def list_allocations(
        self,
        project_id: Optional[int] = None,
    ) -> list[Allocation]:
        pass

    @abstractmethod
    async def count_allocations_for_project(self, project_id: int) -> int:
        pass

    @abstractmethod
    async def replace_allocations(
        self,
        transaction_id: int,
        lines: list[tuple[int, Decimal]],
    ) -> list[Allocation]:
        """
        Atomically replace the allocation set of a transaction.

        In one unit of work: delete the existing rows, insert `lines` in
        order, and set the transaction's project_id to the first line's
        project (or None when `lines` is empty). Either everything is
        applied or nothing is.

        Raises:
            TransactionNotFoundError: If the transaction doesn't exist
        """
        pass


class InvoiceStorageInterface(ABC):
    """
    Abstract interface for invoices and OCR usage accounting.
    """

    @abstractmethod
    async def create_invoice(self, invoice: Invoice) -> Invoice:
        pass

    @abstractmethod
    async def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        pass

    @abstractmethod
    async def update_invoice(self, invoice: Invoice) -> Invoice:
        """
        Overwrite transaction_id and the OCR record of an invoice.

        Raises:
            InvoiceNotFoundError: If the invoice doesn't exist
        """
        pass

    @abstractmethod
    async def delete_invoice(self, invoice_id: int) -> bool:
        pass

    @abstractmethod
    async def list_invoices(
        self,
        transaction_id: Optional[int] = None,
        orphans_only: bool = False,
    ) -> list[Invoice]:
        pass

    @abstractmethod
    async def count_invoices_for_transaction(self, transaction_id: int) -> int:
        pass

    @abstractmethod
    async def record_ocr_usage(self, usage: OcrUsage) -> OcrUsage:
        """Append one extraction call to the usage log."""
        pass

    @abstractmethod
    async def get_monthly_usage(self, month: str) -> MonthlyOcrBudget:
        """
        Aggregate usage rows of a calendar month.

        Args:
            month: "YYYY-MM"
        """
        pass


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
        Get all events for a correlation ID (e.g., one bulk upload).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: int,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity, in chronological order.
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class TransactionNotFoundError(NotFoundError):
    pass


class ProjectNotFoundError(NotFoundError):
    pass


class InvoiceNotFoundError(NotFoundError):
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
