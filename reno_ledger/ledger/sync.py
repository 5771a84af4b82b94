"""
Bank Feed Synchronization

Upserts bank records by external_id.

IMPORTANT: Sync NEVER overwrites the user's work. On an existing
transaction only date, amount, concept and raw_category are refreshed;
project assignment, expense category, notes, fixed flag, allocations and
invoice links are left alone. Sync never triggers propagation.

Each record is processed on its own: a malformed or failing record is
skipped and reported, the rest of the batch carries on. Re-submitting
the same batch creates nothing and changes nothing.
"""

from typing import Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError

from reno_ledger.audit import AuditLogger
from reno_ledger.config import LedgerSettings, get_settings
from reno_ledger.errors import LedgerValidationError
from reno_ledger.ledger.allocations import AllocationLedger
from reno_ledger.models.ledger import (
    BankFeedRecord,
    SyncReport,
    SyncStatus,
    Transaction,
    TransactionQuery,
)
from reno_ledger.services.storage.interface import LedgerStorageInterface


SYNCED_FIELDS = ("date", "amount", "concept", "raw_category")


class BankFeedSync:
    """
    Applies batches from the bank synchronization transport.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        ledger: Optional[AllocationLedger] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._audit = audit_logger or AuditLogger()
        self._ledger = ledger or AllocationLedger(storage, self._audit, self._settings)
        self._logger = structlog.get_logger()

    async def sync(
        self,
        records: list[Union[BankFeedRecord, dict]],
        correlation_id: Optional[UUID] = None,
    ) -> SyncReport:
        """
        Upsert a batch of bank records.

        Raises:
            LedgerValidationError: If the batch is larger than sync_batch_limit
        """
        if len(records) > self._settings.sync_batch_limit:
            raise LedgerValidationError(
                f"Batch of {len(records)} records exceeds the limit of "
                f"{self._settings.sync_batch_limit}"
            )

        report = SyncReport(total=len(records))

        for raw in records:
            try:
                record = (
                    raw if isinstance(raw, BankFeedRecord)
                    else BankFeedRecord.model_validate(raw)
                )
            except ValidationError as e:
                report.skipped += 1
                report.errors.append(f"Incomplete record {raw!r}: {e.error_count()} error(s)")
                continue

            try:
                outcome = await self._apply(record, report, correlation_id)
            except Exception as e:
                report.skipped += 1
                report.errors.append(f"Error on transaction {record.external_id}: {e}")
                self._logger.error(
                    "sync_record_failed",
                    external_id=record.external_id,
                    error=str(e),
                )
                continue

            if outcome == "created":
                report.created += 1
            elif outcome == "updated":
                report.updated += 1
            else:
                report.unchanged += 1

        await self._audit.log_sync_completed(
            total=report.total,
            created=report.created,
            updated=report.updated,
            skipped=report.skipped,
            correlation_id=correlation_id,
        )
        return report

    async def _apply(
        self,
        record: BankFeedRecord,
        report: SyncReport,
        correlation_id: Optional[UUID],
    ) -> str:
        existing = await self._storage.get_transaction_by_external_id(record.external_id)

        if existing is None:
            await self._storage.create_transaction(Transaction(
                external_id=record.external_id,
                date=record.date,
                amount=record.amount,
                concept=record.concept,
                raw_category=record.raw_category,
                is_manual=False,
            ))
            return "created"

        incoming = {field: getattr(record, field) for field in SYNCED_FIELDS}
        if all(getattr(existing, field) == value for field, value in incoming.items()):
            return "unchanged"

        await self._storage.update_transaction(existing.model_copy(update=incoming))

        if existing.amount != record.amount:
            try:
                await self._ledger.rebalance_after_amount_change(existing.id, correlation_id)
            except LedgerValidationError as e:
                # The bank is authoritative for the amount; the split needs a human
                report.errors.append(
                    f"Transaction {record.external_id} amount changed to {record.amount}; "
                    f"its allocations need review: {e}"
                )
        return "updated"

    async def get_status(self) -> SyncStatus:
        """Counts of synced and manual transactions (archived included)."""
        transactions = await self._storage.list_transactions(
            TransactionQuery(include_archived=True)
        )
        manual = sum(1 for t in transactions if t.is_manual)
        return SyncStatus(
            total_transactions=len(transactions),
            synced_transactions=len(transactions) - manual,
            manual_transactions=manual,
        )
