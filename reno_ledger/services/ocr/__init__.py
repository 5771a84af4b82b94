"""Invoice extraction and its spend control."""

from reno_ledger.services.ocr.interface import (
    ExtractionFailedError,
    ExtractionServiceInterface,
    OCRError,
)
from reno_ledger.services.ocr.mindee_service import MindeeExtractionService
from reno_ledger.services.ocr.budget_governor import (
    GovernedOutcome,
    OcrBudgetGovernor,
    month_key,
)

__all__ = [
    "ExtractionFailedError",
    "ExtractionServiceInterface",
    "GovernedOutcome",
    "MindeeExtractionService",
    "OCRError",
    "OcrBudgetGovernor",
    "month_key",
]
