"""
Allocation Ledger

Splits one transaction's amount across projects.

INVARIANT: for every transaction, either it has zero allocations
("unassigned") or |sum(allocations) - amount| <= tolerance.

The ledger only ever REPLACES the whole set (never patches one line).
Validation runs fully before the storage call; the storage call itself
is atomic and is the only place Transaction.project_id is written.
"""

from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from reno_ledger.audit import AuditLogger
from reno_ledger.config import LedgerSettings, get_settings
from reno_ledger.errors import AllocationMismatchError
from reno_ledger.models.ledger import (
    Allocation,
    AllocationInput,
    Transaction,
    ValidationIssue,
)
from reno_ledger.services.storage.interface import (
    LedgerStorageInterface,
    TransactionNotFoundError,
)
from reno_ledger.validation import AllocationValidator, raise_for_result


AllocationLine = Union[AllocationInput, tuple[int, Decimal]]


def _coerce(line: AllocationLine) -> AllocationInput:
    if isinstance(line, AllocationInput):
        return line
    project_id, amount = line
    return AllocationInput(project_id=project_id, amount=amount)


class AllocationLedger:
    """
    Owns every write to a transaction's allocation set.
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
        self._validator = AllocationValidator(storage, self._settings)

    async def _get_transaction(self, transaction_id: int) -> Transaction:
        transaction = await self._storage.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(f"Transaction not found: {transaction_id}")
        return transaction

    async def replace_allocations(
        self,
        transaction_id: int,
        lines: list[AllocationLine],
        correlation_id: Optional[UUID] = None,
    ) -> list[Allocation]:
        """
        Validate and atomically replace a transaction's allocations.

        On success, project_id becomes the first line's project (or None for
        an empty list).

        Raises:
            TransactionNotFoundError: If the transaction doesn't exist
            AllocationMismatchError: Sum outside tolerance
            AllocationSignError: A line has the wrong sign (or is zero)
            DuplicateAllocationError: Same project twice
            InvalidProjectError: Unknown project
        """
        transaction = await self._get_transaction(transaction_id)
        inputs = [_coerce(line) for line in lines]

        result = await self._validator.validate(transaction, inputs)
        if not result.is_valid:
            await self._audit.log_allocations_rejected(
                transaction_id=transaction_id,
                issues=[issue.model_dump() for issue in result.issues],
                correlation_id=correlation_id,
            )
            raise_for_result(result)

        stored = await self._storage.replace_allocations(
            transaction_id,
            [(line.project_id, line.amount) for line in inputs],
        )

        await self._audit.log_allocations_replaced(
            transaction_id=transaction_id,
            allocations=[
                {"project_id": a.project_id, "amount": str(a.amount)}
                for a in stored
            ],
            correlation_id=correlation_id,
        )
        return stored

    async def assign_project(
        self,
        transaction_id: int,
        project_id: Optional[int],
        correlation_id: Optional[UUID] = None,
    ) -> list[Allocation]:
        """
        Assign the whole transaction to one project (None unassigns).
        """
        if project_id is None:
            return await self.unassign(transaction_id, correlation_id)
        transaction = await self._get_transaction(transaction_id)
        return await self.replace_allocations(
            transaction_id,
            [AllocationInput(project_id=project_id, amount=transaction.amount)],
            correlation_id,
        )

    async def unassign(
        self,
        transaction_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> list[Allocation]:
        return await self.replace_allocations(transaction_id, [], correlation_id)

    async def get_allocations(self, transaction_id: int) -> list[Allocation]:
        await self._get_transaction(transaction_id)
        return await self._storage.get_allocations(transaction_id)

    async def check_amount_change(
        self,
        transaction_id: int,
        new_amount: Decimal,
    ) -> None:
        """
        Refuse an amount change that would break the allocation set.

        A single allocation follows the new amount, so the moved line is
        validated against it. Several allocations cannot be re-split
        automatically.

        Raises:
            AllocationSignError: If a single allocation cannot follow the new
                amount (zero amount)
            AllocationMismatchError: If the transaction is split and the new
                amount no longer matches the split
        """
        allocations = await self._storage.get_allocations(transaction_id)
        if not allocations:
            return
        if len(allocations) == 1:
            transaction = await self._get_transaction(transaction_id)
            result = await self._validator.validate(
                transaction.model_copy(update={"amount": new_amount}),
                [AllocationInput(project_id=allocations[0].project_id, amount=new_amount)],
            )
            raise_for_result(result)
            return
        total = sum((a.amount for a in allocations), Decimal("0"))
        if abs(total - new_amount) > self._settings.allocation_tolerance:
            issue = ValidationIssue(
                field="amount",
                issue_type="sum_mismatch",
                message=(
                    f"Transaction is split across {len(allocations)} projects "
                    f"totalling {total}; new amount {new_amount} needs a new split"
                ),
                severity="error",
                suggested_fix="Send the new allocations together with the amount",
            )
            raise AllocationMismatchError(issue.message, issues=[issue])

    async def rebalance_after_amount_change(
        self,
        transaction_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> list[Allocation]:
        """
        Make a single allocation follow its transaction's (new) amount.

        No-op when the transaction is unassigned or the allocation already
        matches.

        Raises:
            AllocationMismatchError: If a split no longer adds up
            AllocationSignError: If the amount became zero
        """
        transaction = await self._get_transaction(transaction_id)
        allocations = await self._storage.get_allocations(transaction_id)
        if not allocations:
            return allocations

        total = sum((a.amount for a in allocations), Decimal("0"))
        if abs(total - transaction.amount) <= self._settings.allocation_tolerance:
            return allocations

        if len(allocations) > 1:
            await self.check_amount_change(transaction_id, transaction.amount)

        return await self.replace_allocations(
            transaction_id,
            [AllocationInput(project_id=allocations[0].project_id, amount=transaction.amount)],
            correlation_id,
        )
