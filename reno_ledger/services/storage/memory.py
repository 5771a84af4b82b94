"""
In-Memory Storage Implementation

Used by the test suite and for local experiments. Every read returns a
copy, so callers can never mutate stored rows behind the store's back.

Atomicity: replace_allocations runs in a single critical section under
an asyncio.Lock with no awaits inside, so no other coroutine can observe
a half-replaced allocation set.
"""

import asyncio
import itertools
from collections import defaultdict
from datetime import datetime
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
    normalize_concept,
)
from reno_ledger.services.storage.interface import (
    BULK_UPDATABLE_FIELDS,
    AuditStorageInterface,
    DuplicateError,
    InvoiceNotFoundError,
    InvoiceStorageInterface,
    LedgerStorageInterface,
    ProjectNotFoundError,
    StorageError,
    TransactionNotFoundError,
)


def matches_query(transaction: Transaction, query: TransactionQuery) -> bool:
    """Apply TransactionQuery filters to a single transaction."""
    if query.expenses_only and transaction.amount >= 0:
        return False
    if not query.include_archived and transaction.is_archived:
        return False
    if query.project_id is not None and transaction.project_id != query.project_id:
        return False
    if query.date_from and transaction.date < query.date_from:
        return False
    if query.date_to and transaction.date > query.date_to:
        return False
    if query.amount_min is not None and transaction.amount < query.amount_min:
        return False
    if query.amount_max is not None and transaction.amount > query.amount_max:
        return False
    if (
        query.normalized_concept is not None
        and transaction.normalized_concept != query.normalized_concept
    ):
        return False
    if transaction.id in query.exclude_ids:
        return False
    return True


class InMemoryStorage(LedgerStorageInterface, InvoiceStorageInterface):
    """
    Dict-backed implementation of ledger and invoice storage.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._transactions: dict[int, Transaction] = {}
        self._projects: dict[int, Project] = {}
        self._allocations: dict[int, Allocation] = {}
        self._invoices: dict[int, Invoice] = {}
        self._usage: list[OcrUsage] = []
        self._ids = defaultdict(lambda: itertools.count(1))

    def _next_id(self, table: str) -> int:
        return next(self._ids[table])

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def create_transaction(self, transaction: Transaction) -> Transaction:
        if transaction.external_id is not None:
            for existing in self._transactions.values():
                if existing.external_id == transaction.external_id:
                    raise DuplicateError(
                        f"Transaction with external_id {transaction.external_id} already exists"
                    )
        stored = transaction.model_copy(
            update={"id": self._next_id("transactions"), "project_id": None, "has_invoice": False},
            deep=True,
        )
        self._transactions[stored.id] = stored
        return stored.model_copy(deep=True)

    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        transaction = self._transactions.get(transaction_id)
        return transaction.model_copy(deep=True) if transaction else None

    async def get_transaction_by_external_id(
        self,
        external_id: str,
    ) -> Optional[Transaction]:
        for transaction in self._transactions.values():
            if transaction.external_id == external_id:
                return transaction.model_copy(deep=True)
        return None

    async def update_transaction(self, transaction: Transaction) -> Transaction:
        current = self._transactions.get(transaction.id)
        if current is None:
            raise TransactionNotFoundError(f"Transaction not found: {transaction.id}")
        stored = transaction.model_copy(
            update={
                "project_id": current.project_id,
                "has_invoice": current.has_invoice,
                "updated_at": datetime.utcnow(),
            },
            deep=True,
        )
        self._transactions[stored.id] = stored
        return stored.model_copy(deep=True)

    async def list_transactions(
        self,
        query: Optional[TransactionQuery] = None,
    ) -> list[Transaction]:
        query = query or TransactionQuery()
        results = [
            t for t in self._transactions.values()
            if matches_query(t, query)
        ]
        if query.order_by == "date_desc":
            results.sort(key=lambda t: (t.date, t.id), reverse=True)
        else:
            results.sort(key=lambda t: t.id)
        if query.limit is not None:
            results = results[:query.limit]
        return [t.model_copy(deep=True) for t in results]

    async def bulk_update_fields(
        self,
        transaction_ids: list[int],
        values: dict[str, Any],
    ) -> list[int]:
        unknown = set(values) - BULK_UPDATABLE_FIELDS
        if unknown:
            raise StorageError(f"Fields cannot be bulk updated: {sorted(unknown)}")

        updated = []
        now = datetime.utcnow()
        for transaction_id in transaction_ids:
            current = self._transactions.get(transaction_id)
            if current is None:
                continue
            self._transactions[transaction_id] = current.model_copy(
                update={**values, "updated_at": now}
            )
            updated.append(transaction_id)
        return updated

    async def set_has_invoice(self, transaction_id: int, has_invoice: bool) -> None:
        current = self._transactions.get(transaction_id)
        if current is None:
            raise TransactionNotFoundError(f"Transaction not found: {transaction_id}")
        self._transactions[transaction_id] = current.model_copy(
            update={"has_invoice": has_invoice}
        )

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    async def create_project(self, project: Project) -> Project:
        stored = project.model_copy(update={"id": self._next_id("projects")}, deep=True)
        self._projects[stored.id] = stored
        return stored.model_copy(deep=True)

    async def get_project(self, project_id: int) -> Optional[Project]:
        project = self._projects.get(project_id)
        return project.model_copy(deep=True) if project else None

    async def list_projects(
        self,
        status: Optional[ProjectStatus] = None,
    ) -> list[Project]:
        return [
            p.model_copy(deep=True)
            for p in sorted(self._projects.values(), key=lambda p: p.id)
            if status is None or p.status == status
        ]

    async def update_project(self, project: Project) -> Project:
        if project.id not in self._projects:
            raise ProjectNotFoundError(f"Project not found: {project.id}")
        self._projects[project.id] = project.model_copy(deep=True)
        return project.model_copy(deep=True)

    async def delete_project(self, project_id: int) -> bool:
        return self._projects.pop(project_id, None) is not None

    # -------------------------------------------------------------------------
    # Allocations
    # -------------------------------------------------------------------------

    async def get_allocations(self, transaction_id: int) -> list[Allocation]:
        return [
            a.model_copy()
            for a in sorted(self._allocations.values(), key=lambda a: a.id)
            if a.transaction_id == transaction_id
        ]

    async def list_allocations(
        self,
        project_id: Optional[int] = None,
    ) -> list[Allocation]:
        return [
            a.model_copy()
            for a in sorted(self._allocations.values(), key=lambda a: a.id)
            if project_id is None or a.project_id == project_id
        ]

    async def count_allocations_for_project(self, project_id: int) -> int:
        return sum(1 for a in self._allocations.values() if a.project_id == project_id)

    async def replace_allocations(
        self,
        transaction_id: int,
        lines: list[tuple[int, Decimal]],
    ) -> list[Allocation]:
        async with self._lock:
            transaction = self._transactions.get(transaction_id)
            if transaction is None:
                raise TransactionNotFoundError(f"Transaction not found: {transaction_id}")

            new_rows = [
                Allocation(
                    id=self._next_id("allocations"),
                    transaction_id=transaction_id,
                    project_id=project_id,
                    amount=amount,
                )
                for project_id, amount in lines
            ]

            # Nothing below can fail, so the swap is all-or-nothing
            self._allocations = {
                k: a for k, a in self._allocations.items()
                if a.transaction_id != transaction_id
            }
            for row in new_rows:
                self._allocations[row.id] = row
            self._transactions[transaction_id] = transaction.model_copy(
                update={
                    "project_id": new_rows[0].project_id if new_rows else None,
                    "updated_at": datetime.utcnow(),
                }
            )
            return [row.model_copy() for row in new_rows]

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    async def create_invoice(self, invoice: Invoice) -> Invoice:
        stored = invoice.model_copy(update={"id": self._next_id("invoices")}, deep=True)
        self._invoices[stored.id] = stored
        return stored.model_copy(deep=True)

    async def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        invoice = self._invoices.get(invoice_id)
        return invoice.model_copy(deep=True) if invoice else None

    async def update_invoice(self, invoice: Invoice) -> Invoice:
        if invoice.id not in self._invoices:
            raise InvoiceNotFoundError(f"Invoice not found: {invoice.id}")
        self._invoices[invoice.id] = invoice.model_copy(deep=True)
        return invoice.model_copy(deep=True)

    async def delete_invoice(self, invoice_id: int) -> bool:
        return self._invoices.pop(invoice_id, None) is not None

    async def list_invoices(
        self,
        transaction_id: Optional[int] = None,
        orphans_only: bool = False,
    ) -> list[Invoice]:
        results = []
        for invoice in sorted(self._invoices.values(), key=lambda i: i.id):
            if orphans_only and invoice.transaction_id is not None:
                continue
            if transaction_id is not None and invoice.transaction_id != transaction_id:
                continue
            results.append(invoice.model_copy(deep=True))
        return results

    async def count_invoices_for_transaction(self, transaction_id: int) -> int:
        return sum(
            1 for i in self._invoices.values()
            if i.transaction_id == transaction_id
        )

    async def record_ocr_usage(self, usage: OcrUsage) -> OcrUsage:
        stored = usage.model_copy(update={"id": self._next_id("ocr_usage")})
        self._usage.append(stored)
        return stored.model_copy()

    async def get_monthly_usage(self, month: str) -> MonthlyOcrBudget:
        rows = [u for u in self._usage if u.month == month]
        return MonthlyOcrBudget(
            month=month,
            spent_cents=sum(u.cost_cents for u in rows),
            call_count=len(rows),
        )


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: int,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
