"""
Core Ledger Models for Renovation Ledger

These models define the schemas for transactions, projects and the
allocation rows that split a transaction across projects.

DESIGN DECISION: Allocations are the source of truth for project
assignment. Transaction.project_id is only a denormalized cache of the
first allocation's project, kept for fast filtering. It is rewritten by
the storage layer inside the same atomic replace as the allocations.
"""

import datetime as _dt
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


TWO_PLACES = Decimal("0.01")


def to_money(value) -> Decimal:
    """Quantize a numeric value to two decimal places."""
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ExpenseCategory(str, Enum):
    """
    Expense categories a transaction can be assigned to.

    Some categories are "global": company-wide costs (payroll, loan
    transfers, paperwork) that never count against a project budget.
    """
    MATERIAL_Y_MANO_DE_OBRA = "MATERIAL_Y_MANO_DE_OBRA"
    DECORACION = "DECORACION"
    COMPRA_Y_GASTOS = "COMPRA_Y_GASTOS"
    OTROS = "OTROS"
    GASTOS_PISOS = "GASTOS_PISOS"
    BUROCRACIA = "BUROCRACIA"
    SUELDOS = "SUELDOS"
    PRESTAMOS = "PRESTAMOS"

    @property
    def is_global(self) -> bool:
        return self in GLOBAL_CATEGORIES

    @property
    def is_invoice_exempt(self) -> bool:
        return self in INVOICE_EXEMPT_CATEGORIES


GLOBAL_CATEGORIES = frozenset({
    ExpenseCategory.BUROCRACIA,
    ExpenseCategory.SUELDOS,
    ExpenseCategory.PRESTAMOS,
})

# Payroll and loan transfers never come with an invoice
INVOICE_EXEMPT_CATEGORIES = frozenset({
    ExpenseCategory.SUELDOS,
    ExpenseCategory.PRESTAMOS,
})

PROJECT_CATEGORIES = tuple(c for c in ExpenseCategory if c not in GLOBAL_CATEGORIES)


class ProjectStatus(str, Enum):
    """Lifecycle status of a renovation project."""
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"


class PropagationField(str, Enum):
    """Transaction fields a manual edit may propagate to similar rows."""
    CATEGORY = "expense_category"
    FIXED_FLAG = "is_fixed"


def normalize_concept(concept: str) -> str:
    """Normalization used for exact concept matching during propagation."""
    return concept.strip().casefold()


# =============================================================================
# CORE ENTITIES
# =============================================================================

class Project(BaseModel):
    """
    A renovation project with its budget configuration.

    Budgets are configuration, never computed.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = None
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Project name"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=1000
    )
    status: ProjectStatus = ProjectStatus.ACTIVE
    total_budget: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Total budget for the project"
    )
    category_budgets: dict[ExpenseCategory, Decimal] = Field(
        default_factory=dict,
        description="Budget per expense category"
    )
    start_date: date = Field(default_factory=date.today)
    end_date: Optional[date] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('category_budgets')
    @classmethod
    def validate_category_budgets(
        cls, v: dict[ExpenseCategory, Decimal]
    ) -> dict[ExpenseCategory, Decimal]:
        for category, amount in v.items():
            if amount < 0:
                raise ValueError(f"Budget for {category.value} cannot be negative")
        return v

    def budget_for(self, category: ExpenseCategory) -> Decimal:
        return self.category_budgets.get(category, Decimal("0"))


class Transaction(BaseModel):
    """
    A money movement, synced from the bank or entered manually.

    Amounts are signed: negative amounts are expenses.
    Transactions are archived, never hard-deleted.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = None
    external_id: Optional[str] = Field(
        default=None,
        max_length=500,
        description="Bank feed identifier (None for manual entries)"
    )
    date: date
    amount: Decimal = Field(
        ...,
        decimal_places=2,
        description="Signed amount, negative = expense"
    )
    concept: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Free-text bank concept"
    )
    raw_category: str = Field(
        default="Uncategorized",
        max_length=200,
        description="Category as reported by the bank"
    )
    expense_category: Optional[ExpenseCategory] = None
    is_fixed: bool = False
    notes: Optional[str] = Field(default=None, max_length=1000)
    is_archived: bool = False
    is_manual: bool = False
    project_id: Optional[int] = Field(
        default=None,
        description="Cache of the first allocation's project"
    )
    has_invoice: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_expense(self) -> bool:
        return self.amount < 0

    @property
    def normalized_concept(self) -> str:
        return normalize_concept(self.concept)


class Allocation(BaseModel):
    """One (transaction, project, signed amount) row."""

    id: Optional[int] = None
    transaction_id: int
    project_id: int
    amount: Decimal = Field(..., decimal_places=2)


class AllocationInput(BaseModel):
    """
    A requested split entry, before validation against the transaction.

    The amount is quantized to cents on input, so the sum the tolerance
    check sees is the sum that gets stored.
    """

    project_id: int = Field(..., gt=0)
    amount: Decimal

    @field_validator('amount')
    @classmethod
    def quantize_amount(cls, v: Decimal) -> Decimal:
        return to_money(v)


# =============================================================================
# EDIT / SYNC MODELS
# =============================================================================

class TransactionUpdate(BaseModel):
    """
    A manual edit of a transaction.

    Only fields explicitly set are applied (model_fields_set).
    Project assignment accepts either a single project_id or an explicit
    allocation array, never both.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    date: Optional[_dt.date] = None
    amount: Optional[Decimal] = None
    concept: Optional[str] = Field(default=None, min_length=1, max_length=500)
    project_id: Optional[int] = None
    allocations: Optional[list[AllocationInput]] = None
    expense_category: Optional[str] = None
    is_fixed: Optional[bool] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    apply_to_similar: bool = Field(
        default=False,
        description="Propagate category / fixed flag to same-concept transactions"
    )

    @field_validator('amount')
    @classmethod
    def quantize_amount(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is None:
            return v
        v = to_money(v)
        if v == 0:
            raise ValueError("Amount cannot be zero")
        return v

    @model_validator(mode='after')
    def validate_assignment(self) -> 'TransactionUpdate':
        if 'project_id' in self.model_fields_set and self.allocations is not None:
            raise ValueError("Provide either project_id or allocations, not both")
        return self


class ManualTransactionInput(BaseModel):
    """A transaction entered by hand."""
    model_config = ConfigDict(str_strip_whitespace=True)

    date: date
    amount: Decimal
    concept: str = Field(..., min_length=1, max_length=500)
    project_id: Optional[int] = None
    allocations: Optional[list[AllocationInput]] = None
    expense_category: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    is_fixed: bool = False

    @field_validator('amount')
    @classmethod
    def quantize_amount(cls, v: Decimal) -> Decimal:
        v = to_money(v)
        if v == 0:
            raise ValueError("Amount cannot be zero")
        return v


class BankFeedRecord(BaseModel):
    """One raw record delivered by the bank synchronization transport."""
    model_config = ConfigDict(str_strip_whitespace=True)

    external_id: str = Field(..., min_length=1, max_length=500)
    date: date
    amount: Decimal
    concept: str = Field(..., min_length=1, max_length=500)
    raw_category: str = Field(default="Uncategorized", max_length=200)

    @field_validator('amount')
    @classmethod
    def quantize_amount(cls, v: Decimal) -> Decimal:
        v = to_money(v)
        if v == 0:
            raise ValueError("Amount cannot be zero")
        return v


class SyncReport(BaseModel):
    """Outcome of one bank feed batch."""

    total: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)


class PropagationResult(BaseModel):
    """
    Outcome of a propagation.

    Hitting the cap is not reported: the caller only learns which rows
    were touched.
    """

    source_transaction_id: int
    field: PropagationField
    value: Any = None
    updated_ids: list[int] = Field(default_factory=list)

    @property
    def updated_count(self) -> int:
        return len(self.updated_ids)


class TransactionQuery(BaseModel):
    """Filters understood by the storage layer's transaction listing."""

    expenses_only: bool = False
    include_archived: bool = False
    project_id: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    amount_min: Optional[Decimal] = None
    amount_max: Optional[Decimal] = None
    normalized_concept: Optional[str] = None
    exclude_ids: list[int] = Field(default_factory=list)
    order_by: str = Field(default="id", pattern="^(id|date_desc)$")
    limit: Optional[int] = Field(default=None, ge=1)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'sum_mismatch', 'sign', 'unknown_project')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of validating an allocation set against its transaction.

    Stage 1: Shape checks (signs, duplicates, sum within tolerance)
    Stage 2: Reference checks (projects exist in storage)
    """

    transaction_id: Optional[int] = None
    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )
    shape_valid: bool
    references_valid: bool
    issues: list[ValidationIssue] = Field(
        default_factory=list,
        description="All validation issues found"
    )

    @property
    def is_valid(self) -> bool:
        return self.shape_valid and self.references_valid

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")


class TransactionEditResult(BaseModel):
    """Outcome of a manual create or edit."""

    transaction: Transaction
    allocations: list[Allocation] = Field(default_factory=list)
    propagations: list[PropagationResult] = Field(default_factory=list)
    changed_fields: list[str] = Field(default_factory=list)


class SyncStatus(BaseModel):
    """Counts reported by the sync status check."""

    total_transactions: int = 0
    synced_transactions: int = 0
    manual_transactions: int = 0
    checked_at: datetime = Field(default_factory=datetime.utcnow)
