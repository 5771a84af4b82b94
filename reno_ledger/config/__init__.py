"""Configuration package."""

from reno_ledger.config.settings import (
    DEFAULT_ALLOCATION_TOLERANCE,
    DEFAULT_MATCH_MIN_SCORE,
    DEFAULT_MAX_BULK_FILES,
    DEFAULT_OCR_MONTHLY_BUDGET_CENTS,
    DEFAULT_PROPAGATION_CAP,
    DEFAULT_SUGGESTION_LIMIT,
    CloudinarySettings,
    GoogleSheetsSettings,
    LedgerSettings,
    MindeeSettings,
    OcrSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "DEFAULT_ALLOCATION_TOLERANCE",
    "DEFAULT_MATCH_MIN_SCORE",
    "DEFAULT_MAX_BULK_FILES",
    "DEFAULT_OCR_MONTHLY_BUDGET_CENTS",
    "DEFAULT_PROPAGATION_CAP",
    "DEFAULT_SUGGESTION_LIMIT",
    "CloudinarySettings",
    "GoogleSheetsSettings",
    "LedgerSettings",
    "MindeeSettings",
    "OcrSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
