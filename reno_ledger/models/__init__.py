"""
Data Models Package

This package contains all Pydantic models used by the reconciliation core.
All data flowing through the system must conform to these schemas.
"""

from reno_ledger.models.ledger import (
    GLOBAL_CATEGORIES,
    INVOICE_EXEMPT_CATEGORIES,
    PROJECT_CATEGORIES,
    Allocation,
    AllocationInput,
    BankFeedRecord,
    ExpenseCategory,
    ManualTransactionInput,
    Project,
    ProjectStatus,
    PropagationField,
    PropagationResult,
    SyncReport,
    SyncStatus,
    Transaction,
    TransactionEditResult,
    TransactionQuery,
    TransactionUpdate,
    ValidationIssue,
    ValidationResult,
    normalize_concept,
    to_money,
)
from reno_ledger.models.invoice import (
    OCR_TRANSITIONS,
    TERMINAL_OCR_STATUSES,
    BudgetDecision,
    BudgetStatus,
    BulkUploadResult,
    ExtractedInvoiceFields,
    ExtractionResult,
    Invoice,
    MatchSuggestion,
    MonthlyOcrBudget,
    OcrCorrection,
    OcrRecord,
    OcrStatus,
    OcrUsage,
    ScoreBreakdown,
    UploadedFile,
    UploadItemResult,
    UploadItemStatus,
)
from reno_ledger.models.stats import (
    BudgetAlert,
    CategoryStat,
    DashboardStats,
    FixedVariableSplit,
    ProjectSpend,
    UnbudgetedSpend,
)
from reno_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "GLOBAL_CATEGORIES",
    "INVOICE_EXEMPT_CATEGORIES",
    "PROJECT_CATEGORIES",
    "Allocation",
    "AllocationInput",
    "BankFeedRecord",
    "ExpenseCategory",
    "ManualTransactionInput",
    "Project",
    "ProjectStatus",
    "PropagationField",
    "PropagationResult",
    "SyncReport",
    "SyncStatus",
    "Transaction",
    "TransactionEditResult",
    "TransactionQuery",
    "TransactionUpdate",
    "ValidationIssue",
    "ValidationResult",
    "normalize_concept",
    "to_money",
    # Invoice / OCR models
    "OCR_TRANSITIONS",
    "TERMINAL_OCR_STATUSES",
    "BudgetDecision",
    "BudgetStatus",
    "BulkUploadResult",
    "ExtractedInvoiceFields",
    "ExtractionResult",
    "Invoice",
    "MatchSuggestion",
    "MonthlyOcrBudget",
    "OcrCorrection",
    "OcrRecord",
    "OcrStatus",
    "OcrUsage",
    "ScoreBreakdown",
    "UploadedFile",
    "UploadItemResult",
    "UploadItemStatus",
    # Stats models
    "BudgetAlert",
    "CategoryStat",
    "DashboardStats",
    "FixedVariableSplit",
    "ProjectSpend",
    "UnbudgetedSpend",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
