"""
Configuration Management for Renovation Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The reconciliation constants (allocation tolerance, propagation cap,
OCR monthly cap) live here as named, overridable settings instead of
magic numbers scattered through the code.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Defaults shared with the modules that need them without a settings object
DEFAULT_ALLOCATION_TOLERANCE = Decimal("0.01")
DEFAULT_PROPAGATION_CAP = 500
DEFAULT_OCR_MONTHLY_BUDGET_CENTS = 1000
DEFAULT_SUGGESTION_LIMIT = 10
DEFAULT_MATCH_MIN_SCORE = 20
DEFAULT_MAX_BULK_FILES = 10


class CloudinarySettings(BaseSettings):
    """Cloudinary document store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDINARY_",
        extra="ignore"
    )

    cloud_name: str = Field(
        ...,
        description="Cloudinary cloud name"
    )
    api_key: str = Field(
        ...,
        description="Cloudinary API key"
    )
    api_secret: str = Field(
        ...,
        description="Cloudinary API secret"
    )
    folder: str = Field(
        default="invoices",
        description="Folder prefix for stored invoice documents"
    )


class MindeeSettings(BaseSettings):
    """Mindee extraction service configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MINDEE_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Mindee API key"
    )


class OcrSettings(BaseSettings):
    """Spend control for the external extraction service."""

    model_config = SettingsConfigDict(
        env_prefix="OCR_",
        extra="ignore"
    )

    monthly_budget_cents: int = Field(
        default=DEFAULT_OCR_MONTHLY_BUDGET_CENTS,
        gt=0,
        description="Hard monthly cap on extraction spend, in minor currency units"
    )
    cost_per_call_cents: int = Field(
        default=10,
        ge=0,
        description="Cost charged for one extraction call (per document)"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets audit log configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class LedgerSettings(BaseSettings):
    """
    Main ledger settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    database_path: str = Field(
        default="reno_ledger.db",
        description="SQLite database file used by the relational store"
    )

    # Allocation ledger
    allocation_tolerance: Decimal = Field(
        default=DEFAULT_ALLOCATION_TOLERANCE,
        ge=0,
        description="Maximum allowed difference between allocation sum and transaction amount"
    )

    # Propagation
    propagation_cap: int = Field(
        default=DEFAULT_PROPAGATION_CAP,
        ge=1,
        description="Maximum number of rows one propagation may touch"
    )

    # Matching
    suggestion_limit: int = Field(
        default=DEFAULT_SUGGESTION_LIMIT,
        ge=1,
        le=50,
        description="Number of match suggestions returned per invoice"
    )
    match_min_score: int = Field(
        default=DEFAULT_MATCH_MIN_SCORE,
        ge=0,
        le=100,
        description="Suggestions at or below this score are dropped"
    )
    match_candidate_limit: int = Field(
        default=200,
        ge=1,
        description="Maximum candidate transactions scored per invoice"
    )
    match_date_window_days: int = Field(
        default=30,
        ge=0,
        description="Candidate window around the invoice date, in days"
    )

    # Uploads
    max_bulk_files: int = Field(
        default=DEFAULT_MAX_BULK_FILES,
        ge=1,
        le=50,
        description="Maximum number of files in one bulk invoice upload"
    )
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum upload file size in MB"
    )
    supported_document_types: str = Field(
        default="application/pdf,image/jpeg,image/png,image/webp",
        description="Comma-separated list of accepted invoice content types"
    )
    download_url_ttl_seconds: int = Field(
        default=3600,
        ge=60,
        description="Lifetime of signed invoice download URLs"
    )

    # Bank feed
    sync_batch_limit: int = Field(
        default=5000,
        ge=1,
        description="Maximum records accepted in one bank feed batch"
    )

    @property
    def supported_types_list(self) -> list[str]:
        """Get supported content types as a list."""
        return [t.strip().lower() for t in self.supported_document_types.split(",")]

    @property
    def max_upload_size_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def cloudinary(self) -> CloudinarySettings:
        return CloudinarySettings()

    @property
    def mindee(self) -> MindeeSettings:
        return MindeeSettings()

    @property
    def ocr(self) -> OcrSettings:
        return OcrSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    sections = {
        "cloudinary": lambda: settings.cloudinary,
        "mindee": lambda: settings.mindee,
        "ocr": lambda: settings.ocr,
        "google_sheets": lambda: settings.google_sheets,
        "ledger": lambda: settings.ledger,
    }

    for name, load in sections.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
