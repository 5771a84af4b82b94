"""
Audit Models for Renovation Ledger

Every action that changes money attribution or spends money on the
extraction service is logged, so a number on the dashboard can always be
traced back to the edit, sync or upload that produced it.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Ledger
    ALLOCATIONS_REPLACED = "allocations_replaced"
    ALLOCATIONS_REJECTED = "allocations_rejected"
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_ARCHIVED = "transaction_archived"
    PROPAGATION_APPLIED = "propagation_applied"
    SYNC_COMPLETED = "sync_completed"

    # Invoices
    INVOICE_UPLOADED = "invoice_uploaded"
    INVOICE_REJECTED = "invoice_rejected"
    INVOICE_DELETED = "invoice_deleted"
    INVOICE_LINKED = "invoice_linked"
    INVOICE_UNLINKED = "invoice_unlinked"

    # OCR
    OCR_COMPLETED = "ocr_completed"
    OCR_FAILED = "ocr_failed"
    OCR_BUDGET_EXCEEDED = "ocr_budget_exceeded"
    OCR_CORRECTED = "ocr_corrected"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'invoice', 'sync')"
    )
    entity_id: Optional[int] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all files of one bulk upload)"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id is not None else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.allocations_replaced(tx_id, allocations, correlation_id)
        event = AuditEventBuilder.ocr_completed(invoice_id, attempt, cost, correlation_id)
    """

    @staticmethod
    def allocations_replaced(
        transaction_id: int,
        allocations: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALLOCATIONS_REPLACED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Allocations replaced: {len(allocations)} line(s)",
            details={"allocations": allocations},
            is_user_action=True,
        )

    @staticmethod
    def allocations_rejected(
        transaction_id: int,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALLOCATIONS_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Allocation set rejected with {len(issues)} issue(s)",
            details={"issues": issues},
            is_user_action=True,
        )

    @staticmethod
    def transaction_created(
        transaction_id: int,
        amount: str,
        concept: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Manual transaction created: {concept[:100]} {amount}",
            details={"amount": amount, "concept": concept},
            is_user_action=True,
        )

    @staticmethod
    def transaction_updated(
        transaction_id: int,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction updated: {', '.join(changed_fields) or 'no changes'}",
            details={"changed_fields": changed_fields},
            is_user_action=True,
        )

    @staticmethod
    def transaction_archived(
        transaction_id: int,
        is_archived: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_ARCHIVED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Transaction archived" if is_archived else "Transaction restored",
            details={"is_archived": is_archived},
            is_user_action=True,
        )

    @staticmethod
    def propagation_applied(
        source_transaction_id: int,
        field: str,
        value: Any,
        updated_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROPAGATION_APPLIED,
            entity_type="transaction",
            entity_id=source_transaction_id,
            correlation_id=correlation_id,
            description=f"Propagated {field} to {updated_count} similar transaction(s)",
            details={
                "field": field,
                "value": value,
                "updated_count": updated_count,
            },
        )

    @staticmethod
    def sync_completed(
        total: int,
        created: int,
        updated: int,
        skipped: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_COMPLETED,
            severity=AuditSeverity.WARNING if skipped else AuditSeverity.INFO,
            entity_type="sync",
            correlation_id=correlation_id,
            description=f"Bank sync: {created} created, {updated} updated, {skipped} skipped of {total}",
            details={
                "total": total,
                "created": created,
                "updated": updated,
                "skipped": skipped,
            },
        )

    @staticmethod
    def invoice_uploaded(
        invoice_id: int,
        file_name: str,
        size_bytes: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_UPLOADED,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Invoice uploaded: {file_name}",
            details={
                "file_name": file_name,
                "size_bytes": size_bytes,
            },
            is_user_action=True,
        )

    @staticmethod
    def invoice_rejected(
        file_name: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="invoice",
            correlation_id=correlation_id,
            description=f"Upload rejected: {file_name}",
            details={"file_name": file_name, "reason": reason},
            is_user_action=True,
        )

    @staticmethod
    def invoice_deleted(
        invoice_id: int,
        storage_key: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_DELETED,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description="Invoice deleted",
            details={"storage_key": storage_key},
            is_user_action=True,
        )

    @staticmethod
    def invoice_linked(
        invoice_id: int,
        transaction_id: Optional[int],
        previous_transaction_id: Optional[int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        if transaction_id is None:
            event_type = AuditEventType.INVOICE_UNLINKED
            description = "Invoice unlinked"
        else:
            event_type = AuditEventType.INVOICE_LINKED
            description = f"Invoice linked to transaction {transaction_id}"
        return AuditEvent(
            event_type=event_type,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=description,
            details={
                "transaction_id": transaction_id,
                "previous_transaction_id": previous_transaction_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def ocr_completed(
        invoice_id: int,
        attempt: int,
        cost_cents: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCR_COMPLETED,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"OCR completed (attempt {attempt})",
            details={"attempt": attempt, "cost_cents": cost_cents},
        )

    @staticmethod
    def ocr_failed(
        invoice_id: int,
        attempt: int,
        cost_cents: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCR_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"OCR failed (attempt {attempt})",
            error_message=error_message,
            details={"attempt": attempt, "cost_cents": cost_cents},
        )

    @staticmethod
    def ocr_budget_exceeded(
        invoice_id: int,
        spent_cents: int,
        budget_cents: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCR_BUDGET_EXCEEDED,
            severity=AuditSeverity.WARNING,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"OCR skipped: monthly budget used ({spent_cents}/{budget_cents} cents)",
            details={
                "spent_cents": spent_cents,
                "budget_cents": budget_cents,
            },
        )

    @staticmethod
    def ocr_corrected(
        invoice_id: int,
        corrected_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCR_CORRECTED,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description="OCR data corrected manually",
            details={"corrected_fields": corrected_fields},
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
