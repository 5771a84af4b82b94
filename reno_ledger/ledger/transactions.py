"""
Transaction Edits

Manual creation, editing and archiving of transactions.

Everything that can be rejected is checked BEFORE the first write:
category names, the new allocation set (against the new amount), and
whether an amount change would break an existing split. Concurrent edits
of the same transaction are last-write-wins.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from reno_ledger.audit import AuditLogger
from reno_ledger.config import LedgerSettings, get_settings
from reno_ledger.errors import UnknownCategoryError
from reno_ledger.ledger.allocations import AllocationLedger
from reno_ledger.ledger.propagation import PropagationEngine
from reno_ledger.models.ledger import (
    AllocationInput,
    ExpenseCategory,
    ManualTransactionInput,
    PropagationField,
    Transaction,
    TransactionEditResult,
    TransactionUpdate,
    ValidationIssue,
    to_money,
)
from reno_ledger.services.storage.interface import (
    LedgerStorageInterface,
    TransactionNotFoundError,
)
from reno_ledger.validation import AllocationValidator, raise_for_result


def parse_category(value: Optional[str]) -> Optional[ExpenseCategory]:
    """
    Map a category name onto the closed enumeration.

    Raises:
        UnknownCategoryError: If the name is not a known category
    """
    if value is None or value == "":
        return None
    try:
        return ExpenseCategory(value.strip().upper())
    except ValueError:
        issue = ValidationIssue(
            field="expense_category",
            issue_type="unknown_category",
            message=f"Unknown expense category: {value}",
            severity="error",
            suggested_fix=f"Use one of: {', '.join(c.value for c in ExpenseCategory)}",
        )
        raise UnknownCategoryError(issue.message, issues=[issue])


class TransactionService:
    """
    Manual transaction operations.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        ledger: Optional[AllocationLedger] = None,
        propagation: Optional[PropagationEngine] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._audit = audit_logger or AuditLogger()
        self._ledger = ledger or AllocationLedger(storage, self._audit, self._settings)
        self._propagation = propagation or PropagationEngine(storage, self._audit, self._settings)
        self._validator = AllocationValidator(storage, self._settings)

    async def _get(self, transaction_id: int) -> Transaction:
        transaction = await self._storage.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(f"Transaction not found: {transaction_id}")
        return transaction

    async def _check_lines(
        self,
        transaction: Transaction,
        lines: list[AllocationInput],
    ) -> None:
        result = await self._validator.validate(transaction, lines)
        if not result.is_valid:
            raise_for_result(result)

    async def create_manual(
        self,
        data: ManualTransactionInput,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionEditResult:
        """
        Create a transaction by hand, optionally assigned to projects.

        Raises:
            UnknownCategoryError: Unknown category name
            LedgerValidationError: Invalid project assignment (nothing is created)
        """
        category = parse_category(data.expense_category)
        draft = Transaction(
            date=data.date,
            amount=data.amount,
            concept=data.concept,
            raw_category="Manual",
            expense_category=category,
            is_fixed=data.is_fixed,
            notes=data.notes,
            is_manual=True,
        )

        lines = self._requested_lines(draft, data.project_id, data.allocations)
        if lines:
            await self._check_lines(draft, lines)

        created = await self._storage.create_transaction(draft)
        await self._audit.log_transaction_created(
            transaction_id=created.id,
            amount=str(created.amount),
            concept=created.concept,
            correlation_id=correlation_id,
        )

        allocations = []
        if lines:
            allocations = await self._ledger.replace_allocations(
                created.id, lines, correlation_id
            )
            created = await self._get(created.id)

        return TransactionEditResult(
            transaction=created,
            allocations=allocations,
            changed_fields=["created"],
        )

    def _requested_lines(
        self,
        transaction: Transaction,
        project_id: Optional[int],
        allocations: Optional[list[AllocationInput]],
    ) -> Optional[list[AllocationInput]]:
        if allocations is not None:
            return allocations
        if project_id is not None:
            return [AllocationInput(project_id=project_id, amount=transaction.amount)]
        return None

    async def update_transaction(
        self,
        transaction_id: int,
        update: TransactionUpdate,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionEditResult:
        """
        Apply a manual edit.

        Only fields present in the request are changed. With
        apply_to_similar, a changed category or fixed flag is propagated to
        transactions with the same concept.

        Raises:
            TransactionNotFoundError: Unknown transaction
            UnknownCategoryError: Unknown category name
            LedgerValidationError: Invalid project assignment or amount change
        """
        current = await self._get(transaction_id)
        fields_set = update.model_fields_set

        changes = {}
        if "expense_category" in fields_set:
            changes["expense_category"] = parse_category(update.expense_category)
        if "is_fixed" in fields_set and update.is_fixed is not None:
            changes["is_fixed"] = update.is_fixed
        if "notes" in fields_set:
            changes["notes"] = update.notes
        if "date" in fields_set and update.date is not None:
            changes["date"] = update.date
        if "concept" in fields_set and update.concept is not None:
            changes["concept"] = update.concept
        if "amount" in fields_set and update.amount is not None:
            changes["amount"] = to_money(update.amount)

        edited = current.model_copy(update=changes)
        amount_changed = edited.amount != current.amount

        # Validate every assignment-related change before any write
        lines = None
        if update.allocations is not None:
            lines = update.allocations
        elif "project_id" in fields_set:
            lines = self._requested_lines(edited, update.project_id, None) or []

        if lines:
            await self._check_lines(edited, lines)
        elif lines is None and amount_changed:
            await self._ledger.check_amount_change(transaction_id, edited.amount)

        changed_fields = [
            name for name, value in changes.items()
            if getattr(current, name) != value
        ]
        transaction = current
        if changed_fields:
            transaction = await self._storage.update_transaction(edited)

        allocations = None
        if lines is not None:
            allocations = await self._ledger.replace_allocations(
                transaction_id, lines, correlation_id
            )
            changed_fields.append("allocations")
        elif amount_changed:
            allocations = await self._ledger.rebalance_after_amount_change(
                transaction_id, correlation_id
            )

        propagations = []
        if update.apply_to_similar:
            if "expense_category" in changes:
                propagations.append(await self._propagation.propagate(
                    transaction_id, PropagationField.CATEGORY, correlation_id
                ))
            if "is_fixed" in changes:
                propagations.append(await self._propagation.propagate(
                    transaction_id, PropagationField.FIXED_FLAG, correlation_id
                ))

        await self._audit.log_transaction_updated(
            transaction_id=transaction_id,
            changed_fields=changed_fields,
            correlation_id=correlation_id,
        )

        if allocations is None:
            allocations = await self._storage.get_allocations(transaction_id)
        transaction = await self._get(transaction_id)

        return TransactionEditResult(
            transaction=transaction,
            allocations=allocations,
            propagations=propagations,
            changed_fields=changed_fields,
        )

    async def toggle_archive(
        self,
        transaction_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Archive or restore a transaction. Transactions are never deleted.
        """
        current = await self._get(transaction_id)
        toggled = current.model_copy(update={
            "is_archived": not current.is_archived,
            "updated_at": datetime.utcnow(),
        })
        stored = await self._storage.update_transaction(toggled)
        await self._audit.log_transaction_archived(
            transaction_id=transaction_id,
            is_archived=stored.is_archived,
            correlation_id=correlation_id,
        )
        return stored
