"""
Tests for Renovation Ledger models.

Test strategy:
1. Unit tests for individual components (models, validators)
2. Integration tests for flows live in the other test modules
3. No real API calls in tests (use fakes)
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from reno_ledger.models.ledger import (
    GLOBAL_CATEGORIES,
    PROJECT_CATEGORIES,
    AllocationInput,
    BankFeedRecord,
    ExpenseCategory,
    ManualTransactionInput,
    Project,
    Transaction,
    ValidationIssue,
    ValidationResult,
    to_money,
)
from reno_ledger.models.invoice import ExtractedInvoiceFields, OcrStatus
from reno_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestLedgerModels:
    """Tests for ledger Pydantic models."""

    def test_project_creation(self):
        """Test Project model creation."""
        project = Project(
            name="  Piso Calle Mayor  ",
            total_budget=Decimal("30000"),
            category_budgets={ExpenseCategory.DECORACION: Decimal("2000")},
        )
        assert project.name == "Piso Calle Mayor"
        assert project.budget_for(ExpenseCategory.DECORACION) == Decimal("2000")
        assert project.budget_for(ExpenseCategory.OTROS) == Decimal("0")

    def test_project_rejects_negative_budget(self):
        """Test that negative budgets are rejected."""
        with pytest.raises(ValueError):
            Project(name="Ático", total_budget=Decimal("-1"))
        with pytest.raises(ValueError):
            Project(name="Ático", category_budgets={ExpenseCategory.OTROS: Decimal("-5")})

    def test_transaction_normalized_concept(self):
        """Test the concept key used for propagation."""
        tx = Transaction(
            date=date(2026, 3, 1),
            amount=Decimal("-10.00"),
            concept="  Leroy Merlin ",
        )
        assert tx.concept == "Leroy Merlin"
        assert tx.normalized_concept == "leroy merlin"
        assert tx.is_expense is True

    def test_bank_record_amount_is_rounded(self):
        """Test that bank amounts are quantized to cents."""
        record = BankFeedRecord(
            external_id="bk-1",
            date=date(2026, 3, 1),
            amount=Decimal("-10.005"),
            concept="CAFE",
        )
        assert record.amount == Decimal("-10.01")

    def test_manual_transaction_rejects_zero(self):
        """Test that a manual entry must move money."""
        with pytest.raises(ValueError):
            ManualTransactionInput(date=date(2026, 3, 1), amount=Decimal("0"), concept="x")
        with pytest.raises(ValueError):
            ManualTransactionInput(date=date(2026, 3, 1), amount=Decimal("0.004"), concept="x")

    def test_bank_record_rejects_zero(self):
        with pytest.raises(ValueError):
            BankFeedRecord(
                external_id="bk-1",
                date=date(2026, 3, 1),
                amount=Decimal("0.00"),
                concept="CAFE",
            )

    def test_allocation_input_is_rounded(self):
        line = AllocationInput(project_id=1, amount=Decimal("-333.335"))
        assert line.amount == Decimal("-333.34")

    def test_to_money(self):
        assert to_money(Decimal("2.675")) == Decimal("2.68")
        assert to_money(Decimal("-2.675")) == Decimal("-2.68")

    def test_extracted_fields_reject_non_positive_amount(self):
        """Invoice totals are positive; the transaction carries the sign."""
        with pytest.raises(ValueError):
            ExtractedInvoiceFields(amount=Decimal("-100"))

    def test_extracted_fields_empty(self):
        assert ExtractedInvoiceFields().is_empty is True
        assert ExtractedInvoiceFields(vendor="Bauhaus").is_empty is False


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.INVOICE_UPLOADED,
            description="Invoice uploaded",
        )
        assert event.event_type == AuditEventType.INVOICE_UPLOADED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            description="Transaction updated",
            details={"changed_fields": ["notes"]},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "transaction_updated"
        assert log_dict["details"]["changed_fields"] == ["notes"]

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.INVOICE_LINKED,
            description="Invoice linked",
            entity_id=12,
            is_user_action=True,
        )
        row = event.to_sheets_row()
        assert len(row) == 11
        assert row[2] == "invoice_linked"
        assert row[5] == "12"
        assert row[10] == "True"

    def test_audit_event_builder_invoice_linked(self):
        """Test AuditEventBuilder.invoice_linked."""
        correlation_id = uuid4()

        event = AuditEventBuilder.invoice_linked(
            invoice_id=3,
            transaction_id=None,
            previous_transaction_id=8,
            correlation_id=correlation_id,
        )

        assert event.event_type == AuditEventType.INVOICE_UNLINKED
        assert event.entity_id == 3
        assert event.correlation_id == correlation_id
        assert event.details["previous_transaction_id"] == 8

    def test_audit_event_builder_budget_exceeded(self):
        """Budget denials are warnings, not errors."""
        event = AuditEventBuilder.ocr_budget_exceeded(
            invoice_id=5,
            spent_cents=1000,
            budget_cents=1000,
        )

        assert event.event_type == AuditEventType.OCR_BUDGET_EXCEEDED
        assert event.severity == AuditSeverity.WARNING


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            transaction_id=1,
            shape_valid=False,
            references_valid=True,
            issues=[
                ValidationIssue(
                    field="allocations",
                    issue_type="sum_mismatch",
                    message="Allocations sum to -90.00, transaction is -100.00",
                    severity="error",
                ),
            ],
        )
        assert result.is_valid is False
        assert result.has_errors is True
        assert result.error_count == 1

    def test_validation_result_warnings_only(self):
        """Test that warnings don't count as errors."""
        result = ValidationResult(
            shape_valid=True,
            references_valid=True,
            issues=[
                ValidationIssue(
                    field="allocations[0].project_id",
                    issue_type="closed_project",
                    message="Project is completed",
                    severity="warning",
                ),
            ],
        )
        assert result.is_valid is True
        assert result.has_errors is False
        assert result.error_count == 0


class TestCategories:
    """Tests for category and status enums."""

    def test_global_categories(self):
        assert GLOBAL_CATEGORIES == {
            ExpenseCategory.BUROCRACIA,
            ExpenseCategory.SUELDOS,
            ExpenseCategory.PRESTAMOS,
        }
        assert ExpenseCategory.SUELDOS.is_global
        assert not ExpenseCategory.DECORACION.is_global

    def test_project_categories_exclude_global(self):
        assert len(PROJECT_CATEGORIES) == 5
        assert not set(PROJECT_CATEGORIES) & GLOBAL_CATEGORIES

    def test_invoice_exemption(self):
        assert ExpenseCategory.PRESTAMOS.is_invoice_exempt
        assert not ExpenseCategory.BUROCRACIA.is_invoice_exempt

    def test_terminal_ocr_statuses(self):
        assert OcrStatus.BUDGET_EXCEEDED.is_terminal
        assert not OcrStatus.PROCESSING.is_terminal


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
