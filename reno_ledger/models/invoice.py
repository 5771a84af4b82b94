"""
Invoice, OCR and Matching Models

An invoice is a stored document reference, optionally linked to a
transaction. Its OCR sub-record follows a closed state machine:

    NONE -> PENDING -> PROCESSING -> {COMPLETED | FAILED | BUDGET_EXCEEDED}

The three right-hand states are terminal for that attempt. Re-extraction
or manual correction opens a NEW attempt (attempt counter + 1); a terminal
state is never mutated in place.
"""

import datetime as _dt
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from reno_ledger.errors import InvalidOcrTransitionError
from reno_ledger.models.ledger import to_money


# =============================================================================
# OCR STATE MACHINE
# =============================================================================

class OcrStatus(str, Enum):
    """Status of the current extraction attempt."""
    NONE = "NONE"
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_OCR_STATUSES


TERMINAL_OCR_STATUSES = frozenset({
    OcrStatus.COMPLETED,
    OcrStatus.FAILED,
    OcrStatus.BUDGET_EXCEEDED,
})

# Transitions allowed within one attempt
OCR_TRANSITIONS: dict[OcrStatus, frozenset[OcrStatus]] = {
    OcrStatus.NONE: frozenset({OcrStatus.PENDING}),
    OcrStatus.PENDING: frozenset({OcrStatus.PROCESSING, OcrStatus.BUDGET_EXCEEDED}),
    OcrStatus.PROCESSING: frozenset({
        OcrStatus.COMPLETED,
        OcrStatus.FAILED,
        OcrStatus.BUDGET_EXCEEDED,
    }),
    OcrStatus.COMPLETED: frozenset(),
    OcrStatus.FAILED: frozenset(),
    OcrStatus.BUDGET_EXCEEDED: frozenset(),
}


class ExtractedInvoiceFields(BaseModel):
    """
    Fields returned by the extraction service (or typed by the user).

    All optional: extraction is fallible.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[Decimal] = Field(default=None, gt=0)
    date: Optional[_dt.date] = None
    vendor: Optional[str] = Field(default=None, max_length=500)
    invoice_number: Optional[str] = Field(default=None, max_length=200)

    @field_validator('amount')
    @classmethod
    def quantize_amount(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return to_money(v) if v is not None else None

    @property
    def is_empty(self) -> bool:
        return self.amount is None and self.date is None and not self.vendor


class OcrRecord(BaseModel):
    """OCR sub-record of an invoice."""

    status: OcrStatus = OcrStatus.NONE
    attempt: int = Field(default=0, ge=0)
    amount: Optional[Decimal] = None
    date: Optional[_dt.date] = None
    vendor: Optional[str] = None
    invoice_number: Optional[str] = None
    error: Optional[str] = None
    cost_cents: int = Field(default=0, ge=0)
    raw_response: Optional[str] = None
    manually_corrected: bool = False

    def transition(self, new_status: OcrStatus) -> 'OcrRecord':
        """Return a copy in `new_status`, refusing moves the machine forbids."""
        if new_status not in OCR_TRANSITIONS[self.status]:
            raise InvalidOcrTransitionError(self.status.value, new_status.value)
        return self.model_copy(update={"status": new_status})

    def start_attempt(self) -> 'OcrRecord':
        """
        Open a new extraction attempt.

        Allowed from NONE or any terminal state; extracted values of the
        previous attempt are cleared.
        """
        if self.status not in TERMINAL_OCR_STATUSES and self.status != OcrStatus.NONE:
            raise InvalidOcrTransitionError(self.status.value, OcrStatus.PENDING.value)
        return OcrRecord(status=OcrStatus.PENDING, attempt=self.attempt + 1)

    def fields(self) -> ExtractedInvoiceFields:
        return ExtractedInvoiceFields(
            amount=self.amount,
            date=self.date,
            vendor=self.vendor,
            invoice_number=self.invoice_number,
        )


class Invoice(BaseModel):
    """A stored invoice document, optionally linked to a transaction."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = None
    transaction_id: Optional[int] = Field(
        default=None,
        description="Linked transaction; None means orphan"
    )
    storage_key: str = Field(..., min_length=1)
    file_name: str = Field(..., min_length=1, max_length=255)
    content_type: str
    size_bytes: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    ocr: OcrRecord = Field(default_factory=OcrRecord)

    @property
    def is_orphan(self) -> bool:
        return self.transaction_id is None


class OcrCorrection(BaseModel):
    """Manual correction of OCR fields; unset fields keep their value."""
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[Decimal] = Field(default=None, gt=0)
    date: Optional[_dt.date] = None
    vendor: Optional[str] = Field(default=None, max_length=500)
    invoice_number: Optional[str] = Field(default=None, max_length=200)


# =============================================================================
# EXTRACTION + BUDGET
# =============================================================================

class ExtractionResult(BaseModel):
    """Successful answer of the extraction service."""

    fields: ExtractedInvoiceFields
    cost_cents: int = Field(default=0, ge=0)
    raw_response: Optional[str] = None


class OcrUsage(BaseModel):
    """One external extraction call, charged against the month it ran in."""

    id: Optional[int] = None
    invoice_id: Optional[int] = None
    month: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    cost_cents: int = Field(..., ge=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class MonthlyOcrBudget(BaseModel):
    """Running counter for one calendar month."""

    month: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    spent_cents: int = Field(default=0, ge=0)
    call_count: int = Field(default=0, ge=0)


class BudgetDecision(BaseModel):
    """Whether one more extraction call fits under the monthly cap."""

    allowed: bool
    month: str
    cost_cents: int
    spent_cents: int
    budget_cents: int

    @property
    def remaining_cents(self) -> int:
        return max(self.budget_cents - self.spent_cents, 0)


class BudgetStatus(BaseModel):
    """Current month's OCR spend summary."""

    month: str
    spent_cents: int
    budget_cents: int
    remaining_cents: int
    call_count: int
    avg_cost_cents: int


# =============================================================================
# MATCHING
# =============================================================================

class ScoreBreakdown(BaseModel):
    amount_score: int = Field(ge=0, le=40)
    date_score: int = Field(ge=0, le=30)
    concept_score: int = Field(ge=0, le=30)


class MatchSuggestion(BaseModel):
    """A candidate transaction for an invoice, with its similarity score."""

    transaction_id: int
    score: int = Field(..., ge=0, le=100)
    breakdown: ScoreBreakdown
    date: date
    amount: Decimal
    concept: str
    has_invoice: bool
    project_id: Optional[int] = None


# =============================================================================
# BULK UPLOAD
# =============================================================================

class UploadedFile(BaseModel):
    """One file of a bulk upload request."""

    file_name: str = Field(..., min_length=1, max_length=255)
    content_type: str
    data: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class UploadItemStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    BUDGET_EXCEEDED = "budget_exceeded"
    REJECTED = "rejected"
    ERROR = "error"


class UploadItemResult(BaseModel):
    """Per-file outcome of a bulk upload."""

    file_name: str
    status: UploadItemStatus
    invoice: Optional[Invoice] = None
    suggestions: list[MatchSuggestion] = Field(default_factory=list)
    error: Optional[str] = None


class BulkUploadResult(BaseModel):
    results: list[UploadItemResult] = Field(default_factory=list)
    budget: Optional[BudgetStatus] = None
