"""
Domain Exceptions

Validation errors are raised BEFORE any mutation, so the caller can
resubmit corrected input. Each one carries the ValidationIssue list that
explains what was wrong, in the same shape the validation pipeline uses.

Budget denial for OCR is deliberately absent here: it is a degraded but
successful outcome, not an error.
"""

from typing import Optional


class LedgerError(Exception):
    """Base exception for reconciliation core errors."""
    pass


class LedgerValidationError(LedgerError):
    """Input rejected before any mutation."""

    def __init__(self, message: str, issues: Optional[list] = None):
        self.issues = issues or []
        super().__init__(message)


class AllocationMismatchError(LedgerValidationError):
    """Allocation amounts do not add up to the transaction amount."""
    pass


class AllocationSignError(LedgerValidationError):
    """An allocation line has the opposite sign of the transaction."""
    pass


class DuplicateAllocationError(LedgerValidationError):
    """The same project appears twice in one allocation set."""
    pass


class InvalidProjectError(LedgerValidationError):
    """An allocation references a project that does not exist."""
    pass


class UnknownCategoryError(LedgerValidationError):
    """Expense category is not part of the closed enumeration."""
    pass


class ProjectInUseError(LedgerValidationError):
    """A project that still owns allocations cannot be deleted."""
    pass


class UploadRejectedError(LedgerValidationError):
    """An uploaded file failed type/size checks."""
    pass


class InvalidOcrTransitionError(LedgerError):
    """Illegal OCR status change (e.g. FAILED -> PROCESSING without a new attempt)."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move OCR status from {current} to {requested}")


class OcrNotCompletedError(LedgerError):
    """Suggestions need an invoice whose extraction has completed."""
    pass
