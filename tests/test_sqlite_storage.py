"""
Tests for the SQLite storage backend.

Each test gets a fresh database file under pytest's tmp_path.
"""

import json
import logging
from datetime import date
from decimal import Decimal

import aiosqlite
import pytest
import pytest_asyncio

from conftest import make_project, make_transaction
from reno_ledger.audit import AuditLogger
from reno_ledger.ledger import AllocationLedger, PropagationEngine
from reno_ledger.models import (
    AuditEventBuilder,
    AuditEventType,
    ExpenseCategory,
    Invoice,
    OcrRecord,
    OcrStatus,
    OcrUsage,
    PropagationField,
    TransactionQuery,
)
from reno_ledger.services.storage import (
    DuplicateError,
    SqliteAuditStorage,
    SqliteStorage,
    TransactionNotFoundError,
)


@pytest_asyncio.fixture
async def sqlite_storage(tmp_path):
    storage = SqliteStorage(str(tmp_path / "ledger.db"))
    await storage.initialize()
    return storage


@pytest.fixture
def sqlite_audit(sqlite_storage):
    return SqliteAuditStorage(sqlite_storage.db_file)


class TestTransactions:

    @pytest.mark.asyncio
    async def test_round_trip(self, sqlite_storage):
        created = await make_transaction(
            sqlite_storage, "-1234.56",
            concept="Leroy Merlin",
            category=ExpenseCategory.MATERIAL_Y_MANO_DE_OBRA,
            external_id="bk-1",
            notes="azulejos",
        )

        loaded = await sqlite_storage.get_transaction(created.id)

        assert loaded.amount == Decimal("-1234.56")
        assert loaded.date == date(2026, 3, 10)
        assert loaded.expense_category == ExpenseCategory.MATERIAL_Y_MANO_DE_OBRA
        assert loaded.notes == "azulejos"
        assert loaded.normalized_concept == "leroy merlin"
        assert (await sqlite_storage.get_transaction_by_external_id("bk-1")).id == created.id

    @pytest.mark.asyncio
    async def test_duplicate_external_id(self, sqlite_storage):
        await make_transaction(sqlite_storage, "-1.00", external_id="bk-1")

        with pytest.raises(DuplicateError):
            await make_transaction(sqlite_storage, "-2.00", external_id="bk-1")

    @pytest.mark.asyncio
    async def test_query_filters(self, sqlite_storage):
        keep = await make_transaction(sqlite_storage, "-50.00", concept="leroy merlin")
        await make_transaction(sqlite_storage, "50.00", concept="LEROY MERLIN")
        await make_transaction(sqlite_storage, "-50.00", concept="LEROY MERLIN", is_archived=True)
        await make_transaction(sqlite_storage, "-50.00", concept="LEROY MERLIN MADRID")

        rows = await sqlite_storage.list_transactions(TransactionQuery(
            expenses_only=True,
            normalized_concept="leroy merlin",
        ))

        assert [t.id for t in rows] == [keep.id]

    @pytest.mark.asyncio
    async def test_propagation_against_sqlite(self, sqlite_storage, audit_logger, ledger_settings):
        source = await make_transaction(
            sqlite_storage, "-10.00", concept="NOMINA", category=ExpenseCategory.SUELDOS
        )
        other = await make_transaction(sqlite_storage, "-11.00", concept="nomina")
        engine = PropagationEngine(sqlite_storage, audit_logger, ledger_settings)

        result = await engine.propagate(source.id, PropagationField.CATEGORY)

        assert result.updated_ids == [other.id]
        assert (await sqlite_storage.get_transaction(other.id)).expense_category == (
            ExpenseCategory.SUELDOS
        )


class TestAllocations:

    @pytest.mark.asyncio
    async def test_replace_allocations(self, sqlite_storage, audit_logger, ledger_settings):
        ledger = AllocationLedger(sqlite_storage, audit_logger, ledger_settings)
        project_a = await make_project(sqlite_storage, "A")
        project_b = await make_project(sqlite_storage, "B")
        tx = await make_transaction(sqlite_storage, "-1000.00")

        await ledger.replace_allocations(tx.id, [
            (project_a.id, Decimal("-600")),
            (project_b.id, Decimal("-400")),
        ])
        await ledger.replace_allocations(tx.id, [(project_b.id, Decimal("-1000"))])

        allocations = await sqlite_storage.get_allocations(tx.id)
        assert [(a.project_id, a.amount) for a in allocations] == [
            (project_b.id, Decimal("-1000.00"))
        ]
        assert (await sqlite_storage.get_transaction(tx.id)).project_id == project_b.id
        assert await sqlite_storage.count_allocations_for_project(project_a.id) == 0

    @pytest.mark.asyncio
    async def test_failed_replace_rolls_back(self, sqlite_storage):
        project_a = await make_project(sqlite_storage, "A")
        project_b = await make_project(sqlite_storage, "B")
        tx = await make_transaction(sqlite_storage, "-100.00")
        original = await sqlite_storage.replace_allocations(tx.id, [
            (project_a.id, Decimal("-60.00")),
            (project_b.id, Decimal("-40.00")),
        ])

        # The storage layer only enforces uniqueness; the ledger validates sums
        with pytest.raises(aiosqlite.IntegrityError):
            await sqlite_storage.replace_allocations(tx.id, [
                (project_a.id, Decimal("-50.00")),
                (project_a.id, Decimal("-50.00")),
            ])

        assert await sqlite_storage.get_allocations(tx.id) == original
        assert (await sqlite_storage.get_transaction(tx.id)).project_id == project_a.id

    @pytest.mark.asyncio
    async def test_replace_on_unknown_transaction(self, sqlite_storage):
        with pytest.raises(TransactionNotFoundError):
            await sqlite_storage.replace_allocations(99, [])

    @pytest.mark.asyncio
    async def test_project_budgets_round_trip(self, sqlite_storage):
        project = await make_project(
            sqlite_storage, "Ático", "25000.00",
            {ExpenseCategory.MATERIAL_Y_MANO_DE_OBRA: "18000.00"},
        )

        loaded = await sqlite_storage.get_project(project.id)

        assert loaded.total_budget == Decimal("25000.00")
        assert loaded.budget_for(ExpenseCategory.MATERIAL_Y_MANO_DE_OBRA) == Decimal("18000.00")
        assert loaded.budget_for(ExpenseCategory.DECORACION) == Decimal("0")


class TestInvoices:

    @pytest.mark.asyncio
    async def test_invoice_ocr_round_trip(self, sqlite_storage):
        tx = await make_transaction(sqlite_storage, "-100.00")
        invoice = await sqlite_storage.create_invoice(Invoice(
            storage_key="invoices/abc_factura.pdf",
            file_name="factura.pdf",
            content_type="application/pdf",
            size_bytes=2048,
            ocr=OcrRecord().start_attempt(),
        ))

        await sqlite_storage.update_invoice(invoice.model_copy(update={
            "transaction_id": tx.id,
            "ocr": OcrRecord(
                status=OcrStatus.COMPLETED,
                attempt=1,
                amount=Decimal("100.00"),
                date=date(2026, 3, 10),
                vendor="Leroy Merlin",
                cost_cents=400,
                manually_corrected=True,
            ),
        }))

        loaded = await sqlite_storage.get_invoice(invoice.id)
        assert loaded.transaction_id == tx.id
        assert loaded.ocr.status == OcrStatus.COMPLETED
        assert loaded.ocr.amount == Decimal("100.00")
        assert loaded.ocr.date == date(2026, 3, 10)
        assert loaded.ocr.manually_corrected is True
        assert await sqlite_storage.count_invoices_for_transaction(tx.id) == 1
        assert await sqlite_storage.list_invoices(orphans_only=True) == []

    @pytest.mark.asyncio
    async def test_monthly_usage(self, sqlite_storage):
        await sqlite_storage.record_ocr_usage(OcrUsage(month="2026-03", cost_cents=400))
        await sqlite_storage.record_ocr_usage(OcrUsage(month="2026-03", cost_cents=250))
        await sqlite_storage.record_ocr_usage(OcrUsage(month="2026-02", cost_cents=999))

        usage = await sqlite_storage.get_monthly_usage("2026-03")

        assert usage.spent_cents == 650
        assert usage.call_count == 2
        assert (await sqlite_storage.get_monthly_usage("2026-04")).spent_cents == 0


class TestSqliteAudit:

    @pytest.mark.asyncio
    async def test_events_round_trip(self, sqlite_audit):
        logger = AuditLogger(sqlite_audit)
        await logger.log(AuditEventBuilder.allocations_replaced(
            transaction_id=7,
            allocations=[{"project_id": 1, "amount": "-10.00"}],
        ))

        events = await sqlite_audit.get_events_by_entity("transaction", 7)

        assert len(events) == 1
        assert events[0].event_type == AuditEventType.ALLOCATIONS_REPLACED
        assert events[0].details["allocations"] == [{"project_id": 1, "amount": "-10.00"}]


class TestLogging:

    @pytest.mark.asyncio
    async def test_ready_event_is_structured(self, tmp_path, caplog):
        db_file = str(tmp_path / "events.db")
        storage = SqliteStorage(db_file)

        with caplog.at_level(logging.INFO):
            await storage.initialize()

        events = [
            json.loads(r.getMessage()) for r in caplog.records
            if r.name.startswith("reno_ledger")
        ]
        ready = [e for e in events if e["event"] == "sqlite_storage_ready"]
        assert ready[0]["db_file"] == db_file
