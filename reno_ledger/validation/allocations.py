"""
Allocation Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages, and BOTH run
before any write:

STAGE 1 - SHAPE VALIDATION (no storage needed):
- Every line has the same sign as the transaction total
- No project appears twice
- Sum of lines within tolerance of the transaction amount

STAGE 2 - REFERENCE VALIDATION:
- Every referenced project exists

A rejected allocation set therefore never reaches storage, and the
previous allocations stay exactly as they were.

IMPORTANT: Validation NEVER silently fixes issues (no rounding the last
line to make the sum fit). It reports them.
"""

from decimal import Decimal
from typing import Optional

from reno_ledger.config import LedgerSettings, get_settings
from reno_ledger.errors import (
    AllocationMismatchError,
    AllocationSignError,
    DuplicateAllocationError,
    InvalidProjectError,
    LedgerValidationError,
)
from reno_ledger.models.ledger import (
    AllocationInput,
    Transaction,
    ValidationIssue,
    ValidationResult,
)
from reno_ledger.services.storage.interface import LedgerStorageInterface


# Issue type -> exception raised when it is the first error found
ISSUE_ERRORS = {
    "sign": AllocationSignError,
    "zero_amount": AllocationSignError,
    "duplicate_project": DuplicateAllocationError,
    "sum_mismatch": AllocationMismatchError,
    "unknown_project": InvalidProjectError,
}


class AllocationValidator:
    """
    Validates an allocation set against its transaction.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger

    @property
    def tolerance(self) -> Decimal:
        return self._settings.allocation_tolerance

    def _validate_shape(
        self,
        transaction: Transaction,
        lines: list[AllocationInput],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: signs, duplicates and the sum invariant.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        if not lines:
            # Zero allocations means "unassigned", always valid
            return True, issues

        total_is_expense = transaction.amount < 0
        seen = set()

        for index, line in enumerate(lines):
            field = f"allocations[{index}].amount"
            if line.amount == 0:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="zero_amount",
                    message="Allocation amount cannot be zero",
                    severity="error",
                    suggested_fix="Remove the line or give it an amount",
                ))
            elif transaction.amount == 0 or (line.amount < 0) != total_is_expense:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="sign",
                    message=(
                        f"Allocation amount {line.amount} has the opposite sign "
                        f"of the transaction amount {transaction.amount}"
                    ),
                    severity="error",
                    suggested_fix="Use the same sign as the transaction",
                ))

            if line.project_id in seen:
                issues.append(ValidationIssue(
                    field=f"allocations[{index}].project_id",
                    issue_type="duplicate_project",
                    message=f"Project {line.project_id} appears more than once",
                    severity="error",
                    suggested_fix="Merge the lines for the same project",
                ))
            seen.add(line.project_id)

        total = sum((line.amount for line in lines), Decimal("0"))
        difference = abs(total - transaction.amount)
        if difference > self.tolerance:
            issues.append(ValidationIssue(
                field="allocations",
                issue_type="sum_mismatch",
                message=(
                    f"Allocations add up to {total} but the transaction amount "
                    f"is {transaction.amount} (difference {difference})"
                ),
                severity="error",
                suggested_fix="Adjust the amounts so they add up to the transaction total",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    async def _validate_references(
        self,
        lines: list[AllocationInput],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: every project referenced must exist.
        """
        issues = []
        for index, line in enumerate(lines):
            if await self._storage.get_project(line.project_id) is None:
                issues.append(ValidationIssue(
                    field=f"allocations[{index}].project_id",
                    issue_type="unknown_project",
                    message=f"Project {line.project_id} does not exist",
                    severity="error",
                ))
        return not issues, issues

    async def validate(
        self,
        transaction: Transaction,
        lines: list[AllocationInput],
    ) -> ValidationResult:
        """
        Run both stages.

        Stage 2 still runs when stage 1 fails, so the caller sees every
        problem at once.
        """
        shape_valid, shape_issues = self._validate_shape(transaction, lines)
        references_valid, reference_issues = await self._validate_references(lines)
        return ValidationResult(
            transaction_id=transaction.id,
            shape_valid=shape_valid,
            references_valid=references_valid,
            issues=shape_issues + reference_issues,
        )


def raise_for_result(result: ValidationResult) -> None:
    """
    Raise the exception matching the first error-level issue.

    Raises:
        LedgerValidationError: (a subclass of it) if the result has errors
    """
    for issue in result.issues:
        if issue.severity != "error":
            continue
        error_class = ISSUE_ERRORS.get(issue.issue_type, LedgerValidationError)
        raise error_class(issue.message, issues=result.issues)
