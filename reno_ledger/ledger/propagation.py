"""
Propagation Engine

When a user categorizes one transaction, the same decision is applied to
every other transaction with the same concept, so recurring charges
(same shop, same payroll line) only need to be categorized once.

Matching is EXACT on the normalized concept (strip + casefold):
"LEROY MERLIN" matches "leroy merlin " but not "LEROY MERLIN MADRID".

One propagation touches at most `propagation_cap` rows, in id order.
Hitting the cap is a bounded success, not an error: the result lists the
rows that were updated and nothing else.

Only manual edits call this module; bank sync never does.
"""

from typing import Any, Optional
from uuid import UUID

from reno_ledger.audit import AuditLogger
from reno_ledger.config import LedgerSettings, get_settings
from reno_ledger.models.ledger import (
    PropagationField,
    PropagationResult,
    Transaction,
    TransactionQuery,
)
from reno_ledger.services.storage.interface import (
    LedgerStorageInterface,
    TransactionNotFoundError,
)


class PropagationEngine:
    """
    Copies a categorical field from one transaction to its look-alikes.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().ledger

    @property
    def cap(self) -> int:
        return self._settings.propagation_cap

    def _value_of(self, transaction: Transaction, field: PropagationField) -> Any:
        return getattr(transaction, field.value)

    async def find_similar(
        self,
        transaction: Transaction,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        """Other transactions with the same normalized concept, by id."""
        return await self._storage.list_transactions(TransactionQuery(
            include_archived=True,
            normalized_concept=transaction.normalized_concept,
            exclude_ids=[transaction.id],
            order_by="id",
            limit=limit,
        ))

    async def propagate(
        self,
        source_transaction_id: int,
        field: PropagationField,
        correlation_id: Optional[UUID] = None,
    ) -> PropagationResult:
        """
        Apply the source transaction's `field` value to similar transactions.

        Raises:
            TransactionNotFoundError: If the source doesn't exist
        """
        field = PropagationField(field)
        source = await self._storage.get_transaction(source_transaction_id)
        if source is None:
            raise TransactionNotFoundError(f"Transaction not found: {source_transaction_id}")

        value = self._value_of(source, field)
        targets = await self.find_similar(source, limit=self.cap)
        updated_ids = await self._storage.bulk_update_fields(
            [t.id for t in targets],
            {field.value: value},
        )

        await self._audit.log_propagation(
            source_transaction_id=source_transaction_id,
            field=field.value,
            value=value.value if hasattr(value, "value") else value,
            updated_count=len(updated_ids),
            correlation_id=correlation_id,
        )

        return PropagationResult(
            source_transaction_id=source_transaction_id,
            field=field,
            value=value,
            updated_ids=updated_ids,
        )
