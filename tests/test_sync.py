"""
Tests for bank feed synchronization.
"""

from datetime import date
from decimal import Decimal

import pytest

from conftest import make_project
from reno_ledger.config import LedgerSettings
from reno_ledger.errors import AllocationSignError, LedgerValidationError
from reno_ledger.ledger import AllocationLedger, BankFeedSync
from reno_ledger.models import (
    AuditEventType,
    BankFeedRecord,
    ExpenseCategory,
    ManualTransactionInput,
    TransactionQuery,
    TransactionUpdate,
)


def feed_record(external_id: str, amount: str = "-42.10", concept: str = "FERRETERIA PACO"):
    return {
        "external_id": external_id,
        "date": "2026-03-02",
        "amount": amount,
        "concept": concept,
        "raw_category": "Compras",
    }


class TestBankFeedSync:

    @pytest.mark.asyncio
    async def test_new_records_are_created(self, storage, bank_sync):
        report = await bank_sync.sync([feed_record("bk-1"), feed_record("bk-2", "1500.00")])

        assert report.total == 2
        assert report.created == 2
        assert report.errors == []

        created = await storage.get_transaction_by_external_id("bk-2")
        assert created.amount == Decimal("1500.00")
        assert created.is_manual is False
        assert created.project_id is None

    @pytest.mark.asyncio
    async def test_resync_is_idempotent(self, storage, bank_sync):
        batch = [feed_record("bk-1"), BankFeedRecord(**feed_record("bk-2"))]

        await bank_sync.sync(batch)
        second = await bank_sync.sync(batch)

        assert second.created == 0
        assert second.updated == 0
        assert second.unchanged == 2
        rows = await storage.list_transactions(TransactionQuery(include_archived=True))
        assert len(rows) == 2

    @pytest.mark.asyncio
    async def test_resync_preserves_user_work(self, storage, bank_sync, transactions):
        project = await make_project(storage)
        await bank_sync.sync([feed_record("bk-1")])
        tx = await storage.get_transaction_by_external_id("bk-1")
        await transactions.update_transaction(tx.id, TransactionUpdate(
            project_id=project.id,
            expense_category="OTROS",
            notes="tornillos",
            is_fixed=True,
        ))

        report = await bank_sync.sync([feed_record("bk-1", concept="FERRETERIA PACO SL")])

        assert report.updated == 1
        refreshed = await storage.get_transaction(tx.id)
        assert refreshed.concept == "FERRETERIA PACO SL"
        assert refreshed.project_id == project.id
        assert refreshed.expense_category == ExpenseCategory.OTROS
        assert refreshed.notes == "tornillos"
        assert refreshed.is_fixed is True

    @pytest.mark.asyncio
    async def test_amount_change_moves_single_allocation(self, storage, bank_sync, ledger):
        project = await make_project(storage)
        await bank_sync.sync([feed_record("bk-1", "-42.10")])
        tx = await storage.get_transaction_by_external_id("bk-1")
        await ledger.assign_project(tx.id, project.id)

        report = await bank_sync.sync([feed_record("bk-1", "-45.00")])

        assert report.updated == 1
        assert [a.amount for a in await storage.get_allocations(tx.id)] == [Decimal("-45.00")]

    @pytest.mark.asyncio
    async def test_amount_change_on_split_is_reported(self, storage, bank_sync, ledger):
        project_a = await make_project(storage, "A")
        project_b = await make_project(storage, "B")
        await bank_sync.sync([feed_record("bk-1", "-100.00")])
        tx = await storage.get_transaction_by_external_id("bk-1")
        await ledger.replace_allocations(tx.id, [
            (project_a.id, Decimal("-60")),
            (project_b.id, Decimal("-40")),
        ])

        report = await bank_sync.sync([feed_record("bk-1", "-110.00")])

        assert report.updated == 1
        assert len(report.errors) == 1
        assert "need review" in report.errors[0]
        # Bank amount wins; the split is left for the user
        assert (await storage.get_transaction(tx.id)).amount == Decimal("-110.00")
        assert len(await storage.get_allocations(tx.id)) == 2

    @pytest.mark.asyncio
    async def test_zero_amount_record_changes_nothing(self, storage, bank_sync, ledger):
        project = await make_project(storage)
        await bank_sync.sync([feed_record("bk-1", "-50.00")])
        tx = await storage.get_transaction_by_external_id("bk-1")
        await ledger.assign_project(tx.id, project.id)

        report = await bank_sync.sync([feed_record("bk-1", "0.00")])

        assert report.skipped == 1
        assert report.updated == 0
        assert (await storage.get_transaction(tx.id)).amount == Decimal("-50.00")
        assert [a.amount for a in await storage.get_allocations(tx.id)] == [Decimal("-50.00")]

    @pytest.mark.asyncio
    async def test_sign_flip_moves_single_allocation(self, storage, bank_sync, ledger):
        project = await make_project(storage)
        await bank_sync.sync([feed_record("bk-1", "-50.00")])
        tx = await storage.get_transaction_by_external_id("bk-1")
        await ledger.assign_project(tx.id, project.id)

        report = await bank_sync.sync([feed_record("bk-1", "50.00")])

        assert report.updated == 1
        assert report.errors == []
        assert [a.amount for a in await storage.get_allocations(tx.id)] == [Decimal("50.00")]

    @pytest.mark.asyncio
    async def test_rejected_rebalance_counts_as_updated(
        self, storage, audit_logger, ledger_settings
    ):
        class RefusingLedger(AllocationLedger):
            async def rebalance_after_amount_change(self, transaction_id, correlation_id=None):
                raise AllocationSignError("Allocation amount cannot be zero")

        sync = BankFeedSync(
            storage, RefusingLedger(storage, audit_logger, ledger_settings),
            audit_logger, ledger_settings,
        )
        await sync.sync([feed_record("bk-1", "-50.00")])

        report = await sync.sync([feed_record("bk-1", "-55.00")])

        assert report.updated == 1
        assert report.skipped == 0
        assert "need review" in report.errors[0]
        tx = await storage.get_transaction_by_external_id("bk-1")
        assert tx.amount == Decimal("-55.00")

    @pytest.mark.asyncio
    async def test_bad_record_does_not_abort_batch(self, storage, bank_sync):
        batch = [
            feed_record("bk-1"),
            {"external_id": "bk-2", "date": "2026-03-02"},
            feed_record("bk-3"),
        ]

        report = await bank_sync.sync(batch)

        assert report.created == 2
        assert report.skipped == 1
        assert len(report.errors) == 1
        assert await storage.get_transaction_by_external_id("bk-3") is not None

    @pytest.mark.asyncio
    async def test_batch_limit(self, storage, ledger, audit_logger):
        sync = BankFeedSync(storage, ledger, audit_logger, LedgerSettings(sync_batch_limit=2))

        with pytest.raises(LedgerValidationError):
            await sync.sync([feed_record(f"bk-{i}") for i in range(3)])

    @pytest.mark.asyncio
    async def test_sync_is_audited(self, bank_sync, audit_storage):
        await bank_sync.sync([feed_record("bk-1")])

        event = audit_storage.events[-1]
        assert event.event_type == AuditEventType.SYNC_COMPLETED
        assert event.details["created"] == 1

    @pytest.mark.asyncio
    async def test_status_counts(self, bank_sync, transactions):
        await bank_sync.sync([feed_record("bk-1"), feed_record("bk-2")])
        await transactions.create_manual(ManualTransactionInput(
            date=date(2026, 3, 3),
            amount=Decimal("-12.00"),
            concept="Caja",
        ))

        status = await bank_sync.get_status()

        assert status.total_transactions == 3
        assert status.synced_transactions == 2
        assert status.manual_transactions == 1
