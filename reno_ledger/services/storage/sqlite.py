"""
SQLite Storage Implementation

DESIGN DECISION: aiosqlite gives us a real relational store with
transactions while keeping the whole core async. Each operation opens
its own connection; the allocation replace runs its delete, insert and
project cache update inside one SQL transaction, so readers never see a
partial allocation set.

Money columns are stored as integer cents so range filters compare
numerically. Concepts are stored next to their normalized form, which
is what propagation matches on.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import aiosqlite
import structlog

from reno_ledger.config import get_settings
from reno_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from reno_ledger.models.invoice import (
    Invoice,
    MonthlyOcrBudget,
    OcrRecord,
    OcrStatus,
    OcrUsage,
)
from reno_ledger.models.ledger import (
    TWO_PLACES,
    Allocation,
    ExpenseCategory,
    Project,
    ProjectStatus,
    Transaction,
    TransactionQuery,
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

logger = structlog.get_logger()


SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS transactions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        external_id TEXT UNIQUE,
        date TEXT NOT NULL,
        amount_cents INTEGER NOT NULL,
        concept TEXT NOT NULL,
        normalized_concept TEXT NOT NULL,
        raw_category TEXT NOT NULL DEFAULT 'Uncategorized',
        expense_category TEXT,
        is_fixed INTEGER NOT NULL DEFAULT 0,
        notes TEXT,
        is_archived INTEGER NOT NULL DEFAULT 0,
        is_manual INTEGER NOT NULL DEFAULT 0,
        project_id INTEGER,
        has_invoice INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_transactions_concept ON transactions(normalized_concept)',
    'CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(date)',
    '''
    CREATE TABLE IF NOT EXISTS projects (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        description TEXT,
        status TEXT NOT NULL,
        total_budget TEXT NOT NULL,
        category_budgets_json TEXT NOT NULL DEFAULT '{}',
        start_date TEXT NOT NULL,
        end_date TEXT,
        created_at TEXT NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS allocations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        transaction_id INTEGER NOT NULL REFERENCES transactions(id),
        project_id INTEGER NOT NULL REFERENCES projects(id),
        amount_cents INTEGER NOT NULL,
        UNIQUE (transaction_id, project_id)
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_allocations_project ON allocations(project_id)',
    '''
    CREATE TABLE IF NOT EXISTS invoices (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        transaction_id INTEGER REFERENCES transactions(id),
        storage_key TEXT NOT NULL,
        file_name TEXT NOT NULL,
        content_type TEXT NOT NULL,
        size_bytes INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        ocr_status TEXT NOT NULL DEFAULT 'NONE',
        ocr_attempt INTEGER NOT NULL DEFAULT 0,
        ocr_amount TEXT,
        ocr_date TEXT,
        ocr_vendor TEXT,
        ocr_invoice_number TEXT,
        ocr_error TEXT,
        ocr_cost_cents INTEGER NOT NULL DEFAULT 0,
        ocr_raw_response TEXT,
        ocr_manually_corrected INTEGER NOT NULL DEFAULT 0
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_invoices_transaction ON invoices(transaction_id)',
    '''
    CREATE TABLE IF NOT EXISTS ocr_usage (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        invoice_id INTEGER,
        month TEXT NOT NULL,
        cost_cents INTEGER NOT NULL,
        created_at TEXT NOT NULL
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_ocr_usage_month ON ocr_usage(month)',
    '''
    CREATE TABLE IF NOT EXISTS audit_log (
        event_id TEXT PRIMARY KEY,
        timestamp TEXT NOT NULL,
        event_type TEXT NOT NULL,
        severity TEXT NOT NULL,
        entity_type TEXT,
        entity_id INTEGER,
        correlation_id TEXT,
        description TEXT NOT NULL,
        details_json TEXT,
        error_message TEXT,
        is_user_action INTEGER NOT NULL DEFAULT 0
    )
    ''',
]

TRANSACTION_COLUMNS = (
    "id, external_id, date, amount_cents, concept, raw_category, expense_category, "
    "is_fixed, notes, is_archived, is_manual, project_id, has_invoice, created_at, updated_at"
)

INVOICE_COLUMNS = (
    "id, transaction_id, storage_key, file_name, content_type, size_bytes, created_at, "
    "ocr_status, ocr_attempt, ocr_amount, ocr_date, ocr_vendor, ocr_invoice_number, "
    "ocr_error, ocr_cost_cents, ocr_raw_response, ocr_manually_corrected"
)


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(TWO_PLACES)


class SqliteStorage(LedgerStorageInterface, InvoiceStorageInterface):
    """
    aiosqlite implementation of ledger and invoice storage.

    Call initialize() once before use.
    """

    def __init__(self, db_file: Optional[str] = None):
        self.db_file = db_file or get_settings().ledger.database_path

    async def initialize(self) -> None:
        """Create tables and indexes if they don't exist."""
        async with aiosqlite.connect(self.db_file) as conn:
            for statement in SCHEMA:
                await conn.execute(statement)
            await conn.commit()
        logger.info("sqlite_storage_ready", db_file=self.db_file)

    # -------------------------------------------------------------------------
    # Row mapping
    # -------------------------------------------------------------------------

    def _row_to_transaction(self, row) -> Transaction:
        return Transaction(
            id=row[0],
            external_id=row[1],
            date=date.fromisoformat(row[2]),
            amount=from_cents(row[3]),
            concept=row[4],
            raw_category=row[5],
            expense_category=ExpenseCategory(row[6]) if row[6] else None,
            is_fixed=bool(row[7]),
            notes=row[8],
            is_archived=bool(row[9]),
            is_manual=bool(row[10]),
            project_id=row[11],
            has_invoice=bool(row[12]),
            created_at=datetime.fromisoformat(row[13]),
            updated_at=datetime.fromisoformat(row[14]),
        )

    def _row_to_project(self, row) -> Project:
        budgets = json.loads(row[5]) if row[5] else {}
        return Project(
            id=row[0],
            name=row[1],
            description=row[2],
            status=ProjectStatus(row[3]),
            total_budget=Decimal(row[4]),
            category_budgets={
                ExpenseCategory(k): Decimal(v) for k, v in budgets.items()
            },
            start_date=date.fromisoformat(row[6]),
            end_date=date.fromisoformat(row[7]) if row[7] else None,
            created_at=datetime.fromisoformat(row[8]),
        )

    def _project_params(self, project: Project) -> tuple:
        return (
            project.name,
            project.description,
            project.status.value,
            str(project.total_budget),
            json.dumps({k.value: str(v) for k, v in project.category_budgets.items()}),
            project.start_date.isoformat(),
            project.end_date.isoformat() if project.end_date else None,
        )

    def _row_to_allocation(self, row) -> Allocation:
        return Allocation(
            id=row[0],
            transaction_id=row[1],
            project_id=row[2],
            amount=from_cents(row[3]),
        )

    def _row_to_invoice(self, row) -> Invoice:
        return Invoice(
            id=row[0],
            transaction_id=row[1],
            storage_key=row[2],
            file_name=row[3],
            content_type=row[4],
            size_bytes=row[5],
            created_at=datetime.fromisoformat(row[6]),
            ocr=OcrRecord(
                status=OcrStatus(row[7]),
                attempt=row[8],
                amount=Decimal(row[9]) if row[9] else None,
                date=date.fromisoformat(row[10]) if row[10] else None,
                vendor=row[11],
                invoice_number=row[12],
                error=row[13],
                cost_cents=row[14],
                raw_response=row[15],
                manually_corrected=bool(row[16]),
            ),
        )

    def _ocr_params(self, ocr: OcrRecord) -> tuple:
        return (
            ocr.status.value,
            ocr.attempt,
            str(ocr.amount) if ocr.amount is not None else None,
            ocr.date.isoformat() if ocr.date else None,
            ocr.vendor,
            ocr.invoice_number,
            ocr.error,
            ocr.cost_cents,
            ocr.raw_response,
            int(ocr.manually_corrected),
        )

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def create_transaction(self, transaction: Transaction) -> Transaction:
        try:
            async with aiosqlite.connect(self.db_file) as conn:
                cursor = await conn.execute(
                    '''
                    INSERT INTO transactions (
                        external_id, date, amount_cents, concept, normalized_concept,
                        raw_category, expense_category, is_fixed, notes, is_archived,
                        is_manual, project_id, has_invoice, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, 0, ?, ?)
                    ''',
                    (
                        transaction.external_id,
                        transaction.date.isoformat(),
                        to_cents(transaction.amount),
                        transaction.concept,
                        transaction.normalized_concept,
                        transaction.raw_category,
                        transaction.expense_category.value if transaction.expense_category else None,
                        int(transaction.is_fixed),
                        transaction.notes,
                        int(transaction.is_archived),
                        int(transaction.is_manual),
                        transaction.created_at.isoformat(),
                        transaction.updated_at.isoformat(),
                    ),
                )
                await conn.commit()
                new_id = cursor.lastrowid
        except aiosqlite.IntegrityError as e:
            raise DuplicateError(
                f"Transaction with external_id {transaction.external_id} already exists"
            ) from e
        return transaction.model_copy(
            update={"id": new_id, "project_id": None, "has_invoice": False}
        )

    async def _fetch_transaction(self, where: str, params: tuple) -> Optional[Transaction]:
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(
                f'SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE {where}',
                params,
            )
            row = await cursor.fetchone()
        return self._row_to_transaction(row) if row else None

    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        return await self._fetch_transaction('id = ?', (transaction_id,))

    async def get_transaction_by_external_id(
        self,
        external_id: str,
    ) -> Optional[Transaction]:
        return await self._fetch_transaction('external_id = ?', (external_id,))

    async def update_transaction(self, transaction: Transaction) -> Transaction:
        now = datetime.utcnow()
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(
                '''
                UPDATE transactions SET
                    date = ?, amount_cents = ?, concept = ?, normalized_concept = ?,
                    raw_category = ?, expense_category = ?, is_fixed = ?, notes = ?,
                    is_archived = ?, updated_at = ?
                WHERE id = ?
                ''',
                (
                    transaction.date.isoformat(),
                    to_cents(transaction.amount),
                    transaction.concept,
                    transaction.normalized_concept,
                    transaction.raw_category,
                    transaction.expense_category.value if transaction.expense_category else None,
                    int(transaction.is_fixed),
                    transaction.notes,
                    int(transaction.is_archived),
                    now.isoformat(),
                    transaction.id,
                ),
            )
            await conn.commit()
            if cursor.rowcount == 0:
                raise TransactionNotFoundError(f"Transaction not found: {transaction.id}")
        stored = await self.get_transaction(transaction.id)
        return stored

    async def list_transactions(
        self,
        query: Optional[TransactionQuery] = None,
    ) -> list[Transaction]:
        query = query or TransactionQuery()
        clauses = []
        params: list[Any] = []

        if query.expenses_only:
            clauses.append('amount_cents < 0')
        if not query.include_archived:
            clauses.append('is_archived = 0')
        if query.project_id is not None:
            clauses.append('project_id = ?')
            params.append(query.project_id)
        if query.date_from:
            clauses.append('date >= ?')
            params.append(query.date_from.isoformat())
        if query.date_to:
            clauses.append('date <= ?')
            params.append(query.date_to.isoformat())
        if query.amount_min is not None:
            clauses.append('amount_cents >= ?')
            params.append(to_cents(query.amount_min))
        if query.amount_max is not None:
            clauses.append('amount_cents <= ?')
            params.append(to_cents(query.amount_max))
        if query.normalized_concept is not None:
            clauses.append('normalized_concept = ?')
            params.append(query.normalized_concept)
        if query.exclude_ids:
            clauses.append(f'id NOT IN ({", ".join("?" for _ in query.exclude_ids)})')
            params.extend(query.exclude_ids)

        sql = f'SELECT {TRANSACTION_COLUMNS} FROM transactions'
        if clauses:
            sql += ' WHERE ' + ' AND '.join(clauses)
        sql += ' ORDER BY date DESC, id DESC' if query.order_by == "date_desc" else ' ORDER BY id'
        if query.limit is not None:
            sql += ' LIMIT ?'
            params.append(query.limit)

        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
        return [self._row_to_transaction(row) for row in rows]

    async def bulk_update_fields(
        self,
        transaction_ids: list[int],
        values: dict[str, Any],
    ) -> list[int]:
        unknown = set(values) - BULK_UPDATABLE_FIELDS
        if unknown:
            raise StorageError(f"Fields cannot be bulk updated: {sorted(unknown)}")
        if not transaction_ids or not values:
            return []

        assignments = []
        params: list[Any] = []
        for field, value in values.items():
            assignments.append(f'{field} = ?')
            if isinstance(value, ExpenseCategory):
                params.append(value.value)
            elif isinstance(value, bool):
                params.append(int(value))
            else:
                params.append(value)
        assignments.append('updated_at = ?')
        params.append(datetime.utcnow().isoformat())

        placeholders = ", ".join("?" for _ in transaction_ids)
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(
                f'SELECT id FROM transactions WHERE id IN ({placeholders}) ORDER BY id',
                transaction_ids,
            )
            existing = [row[0] for row in await cursor.fetchall()]
            await conn.execute(
                f'UPDATE transactions SET {", ".join(assignments)} WHERE id IN ({placeholders})',
                params + list(transaction_ids),
            )
            await conn.commit()
        return existing

    async def set_has_invoice(self, transaction_id: int, has_invoice: bool) -> None:
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(
                'UPDATE transactions SET has_invoice = ? WHERE id = ?',
                (int(has_invoice), transaction_id),
            )
            await conn.commit()
            if cursor.rowcount == 0:
                raise TransactionNotFoundError(f"Transaction not found: {transaction_id}")

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    async def create_project(self, project: Project) -> Project:
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(
                '''
                INSERT INTO projects (
                    name, description, status, total_budget, category_budgets_json,
                    start_date, end_date, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ''',
                self._project_params(project) + (project.created_at.isoformat(),),
            )
            await conn.commit()
            new_id = cursor.lastrowid
        return project.model_copy(update={"id": new_id})

    async def get_project(self, project_id: int) -> Optional[Project]:
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(
                'SELECT id, name, description, status, total_budget, category_budgets_json, '
                'start_date, end_date, created_at FROM projects WHERE id = ?',
                (project_id,),
            )
            row = await cursor.fetchone()
        return self._row_to_project(row) if row else None

    async def list_projects(
        self,
        status: Optional[ProjectStatus] = None,
    ) -> list[Project]:
        sql = (
            'SELECT id, name, description, status, total_budget, category_budgets_json, '
            'start_date, end_date, created_at FROM projects'
        )
        params: tuple = ()
        if status is not None:
            sql += ' WHERE status = ?'
            params = (status.value,)
        sql += ' ORDER BY id'
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
        return [self._row_to_project(row) for row in rows]

    async def update_project(self, project: Project) -> Project:
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(
                '''
                UPDATE projects SET
                    name = ?, description = ?, status = ?, total_budget = ?,
                    category_budgets_json = ?, start_date = ?, end_date = ?
                WHERE id = ?
                ''',
                self._project_params(project) + (project.id,),
            )
            await conn.commit()
            if cursor.rowcount == 0:
                raise ProjectNotFoundError(f"Project not found: {project.id}")
        return project

    async def delete_project(self, project_id: int) -> bool:
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute('DELETE FROM projects WHERE id = ?', (project_id,))
            await conn.commit()
            return cursor.rowcount > 0

    # -------------------------------------------------------------------------
    # Allocations
    # -------------------------------------------------------------------------

    async def get_allocations(self, transaction_id: int) -> list[Allocation]:
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(
                'SELECT id, transaction_id, project_id, amount_cents FROM allocations '
                'WHERE transaction_id = ? ORDER BY id',
                (transaction_id,),
            )
            rows = await cursor.fetchall()
        return [self._row_to_allocation(row) for row in rows]

    async def list_allocations(
        self,
        project_id: Optional[int] = None,
    ) -> list[Allocation]:
        sql = 'SELECT id, transaction_id, project_id, amount_cents FROM allocations'
        params: tuple = ()
        if project_id is not None:
            sql += ' WHERE project_id = ?'
            params = (project_id,)
        sql += ' ORDER BY id'
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
        return [self._row_to_allocation(row) for row in rows]

    async def count_allocations_for_project(self, project_id: int) -> int:
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(
                'SELECT COUNT(*) FROM allocations WHERE project_id = ?',
                (project_id,),
            )
            row = await cursor.fetchone()
        return row[0]

    async def replace_allocations(
        self,
        transaction_id: int,
        lines: list[tuple[int, Decimal]],
    ) -> list[Allocation]:
        async with aiosqlite.connect(self.db_file) as conn:
            try:
                await conn.execute('BEGIN IMMEDIATE')
                cursor = await conn.execute(
                    'SELECT id FROM transactions WHERE id = ?',
                    (transaction_id,),
                )
                if await cursor.fetchone() is None:
                    raise TransactionNotFoundError(f"Transaction not found: {transaction_id}")

                await conn.execute(
                    'DELETE FROM allocations WHERE transaction_id = ?',
                    (transaction_id,),
                )
                created = []
                for project_id, amount in lines:
                    cursor = await conn.execute(
                        'INSERT INTO allocations (transaction_id, project_id, amount_cents) '
                        'VALUES (?, ?, ?)',
                        (transaction_id, project_id, to_cents(amount)),
                    )
                    created.append(Allocation(
                        id=cursor.lastrowid,
                        transaction_id=transaction_id,
                        project_id=project_id,
                        amount=amount,
                    ))
                await conn.execute(
                    'UPDATE transactions SET project_id = ?, updated_at = ? WHERE id = ?',
                    (
                        created[0].project_id if created else None,
                        datetime.utcnow().isoformat(),
                        transaction_id,
                    ),
                )
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise
        return created

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    async def create_invoice(self, invoice: Invoice) -> Invoice:
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(
                '''
                INSERT INTO invoices (
                    transaction_id, storage_key, file_name, content_type, size_bytes,
                    created_at, ocr_status, ocr_attempt, ocr_amount, ocr_date, ocr_vendor,
                    ocr_invoice_number, ocr_error, ocr_cost_cents, ocr_raw_response,
                    ocr_manually_corrected
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ''',
                (
                    invoice.transaction_id,
                    invoice.storage_key,
                    invoice.file_name,
                    invoice.content_type,
                    invoice.size_bytes,
                    invoice.created_at.isoformat(),
                ) + self._ocr_params(invoice.ocr),
            )
            await conn.commit()
            new_id = cursor.lastrowid
        return invoice.model_copy(update={"id": new_id})

    async def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(
                f'SELECT {INVOICE_COLUMNS} FROM invoices WHERE id = ?',
                (invoice_id,),
            )
            row = await cursor.fetchone()
        return self._row_to_invoice(row) if row else None

    async def update_invoice(self, invoice: Invoice) -> Invoice:
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(
                '''
                UPDATE invoices SET
                    transaction_id = ?, ocr_status = ?, ocr_attempt = ?, ocr_amount = ?,
                    ocr_date = ?, ocr_vendor = ?, ocr_invoice_number = ?, ocr_error = ?,
                    ocr_cost_cents = ?, ocr_raw_response = ?, ocr_manually_corrected = ?
                WHERE id = ?
                ''',
                (invoice.transaction_id,) + self._ocr_params(invoice.ocr) + (invoice.id,),
            )
            await conn.commit()
            if cursor.rowcount == 0:
                raise InvoiceNotFoundError(f"Invoice not found: {invoice.id}")
        return invoice

    async def delete_invoice(self, invoice_id: int) -> bool:
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute('DELETE FROM invoices WHERE id = ?', (invoice_id,))
            await conn.commit()
            return cursor.rowcount > 0

    async def list_invoices(
        self,
        transaction_id: Optional[int] = None,
        orphans_only: bool = False,
    ) -> list[Invoice]:
        sql = f'SELECT {INVOICE_COLUMNS} FROM invoices'
        clauses = []
        params: list[Any] = []
        if orphans_only:
            clauses.append('transaction_id IS NULL')
        if transaction_id is not None:
            clauses.append('transaction_id = ?')
            params.append(transaction_id)
        if clauses:
            sql += ' WHERE ' + ' AND '.join(clauses)
        sql += ' ORDER BY id'
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
        return [self._row_to_invoice(row) for row in rows]

    async def count_invoices_for_transaction(self, transaction_id: int) -> int:
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(
                'SELECT COUNT(*) FROM invoices WHERE transaction_id = ?',
                (transaction_id,),
            )
            row = await cursor.fetchone()
        return row[0]

    async def record_ocr_usage(self, usage: OcrUsage) -> OcrUsage:
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(
                'INSERT INTO ocr_usage (invoice_id, month, cost_cents, created_at) '
                'VALUES (?, ?, ?, ?)',
                (usage.invoice_id, usage.month, usage.cost_cents, usage.created_at.isoformat()),
            )
            await conn.commit()
            new_id = cursor.lastrowid
        return usage.model_copy(update={"id": new_id})

    async def get_monthly_usage(self, month: str) -> MonthlyOcrBudget:
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(
                'SELECT COALESCE(SUM(cost_cents), 0), COUNT(*) FROM ocr_usage WHERE month = ?',
                (month,),
            )
            row = await cursor.fetchone()
        return MonthlyOcrBudget(month=month, spent_cents=row[0], call_count=row[1])


class SqliteAuditStorage(AuditStorageInterface):
    """
    Audit log table in the same SQLite file.

    Requires SqliteStorage.initialize() to have created the table.
    """

    def __init__(self, db_file: Optional[str] = None):
        self.db_file = db_file or get_settings().ledger.database_path

    def _row_to_event(self, row) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row[0]),
            timestamp=datetime.fromisoformat(row[1]),
            event_type=AuditEventType(row[2]),
            severity=AuditSeverity(row[3]),
            entity_type=row[4],
            entity_id=row[5],
            correlation_id=UUID(row[6]) if row[6] else None,
            description=row[7],
            details=json.loads(row[8]) if row[8] else {},
            error_message=row[9],
            is_user_action=bool(row[10]),
        )

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            async with aiosqlite.connect(self.db_file) as conn:
                await conn.execute(
                    'INSERT INTO audit_log VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)',
                    (
                        str(event.event_id),
                        event.timestamp.isoformat(),
                        event.event_type.value,
                        event.severity.value,
                        event.entity_type,
                        event.entity_id,
                        str(event.correlation_id) if event.correlation_id else None,
                        event.description,
                        json.dumps(event.details, default=str) if event.details else None,
                        event.error_message,
                        int(event.is_user_action),
                    ),
                )
                await conn.commit()
            return True
        except aiosqlite.Error as e:
            logger.warning("audit_db_write_failed", error=str(e))
            return False

    async def _select(self, where: str, params: tuple, order: str) -> list[AuditEvent]:
        async with aiosqlite.connect(self.db_file) as conn:
            cursor = await conn.execute(
                f'SELECT * FROM audit_log {where} ORDER BY {order}',
                params,
            )
            rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return await self._select(
            'WHERE correlation_id = ?', (str(correlation_id),), 'timestamp'
        )

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: int,
    ) -> list[AuditEvent]:
        return await self._select(
            'WHERE entity_type = ? AND entity_id = ?', (entity_type, entity_id), 'timestamp'
        )

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = await self._select('', (), 'timestamp DESC')
        return events[:limit]
