"""
Audit Logger

DESIGN DECISION: Every action that moves money between projects, touches
many rows at once, or spends extraction budget is logged. This provides:
1. Traceability of dashboard numbers back to edits and syncs
2. Debugging capability for bulk uploads
3. Accountability for manual corrections

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from reno_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from reno_ledger.services.storage.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit storage backend (SQLite table or Google Sheet), if given
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_allocations_replaced(
        self,
        transaction_id: int,
        allocations: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.allocations_replaced(
            transaction_id=transaction_id,
            allocations=allocations,
            correlation_id=correlation_id,
        ))

    async def log_allocations_rejected(
        self,
        transaction_id: int,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.allocations_rejected(
            transaction_id=transaction_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_transaction_created(
        self,
        transaction_id: int,
        amount: str,
        concept: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_created(
            transaction_id=transaction_id,
            amount=amount,
            concept=concept,
            correlation_id=correlation_id,
        ))

    async def log_transaction_updated(
        self,
        transaction_id: int,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_updated(
            transaction_id=transaction_id,
            changed_fields=changed_fields,
            correlation_id=correlation_id,
        ))

    async def log_transaction_archived(
        self,
        transaction_id: int,
        is_archived: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_archived(
            transaction_id=transaction_id,
            is_archived=is_archived,
            correlation_id=correlation_id,
        ))

    async def log_propagation(
        self,
        source_transaction_id: int,
        field: str,
        value: Any,
        updated_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a propagation to similar transactions."""
        await self.log(AuditEventBuilder.propagation_applied(
            source_transaction_id=source_transaction_id,
            field=field,
            value=value,
            updated_count=updated_count,
            correlation_id=correlation_id,
        ))

    async def log_sync_completed(
        self,
        total: int,
        created: int,
        updated: int,
        skipped: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.sync_completed(
            total=total,
            created=created,
            updated=updated,
            skipped=skipped,
            correlation_id=correlation_id,
        ))

    async def log_invoice_uploaded(
        self,
        invoice_id: int,
        file_name: str,
        size_bytes: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.invoice_uploaded(
            invoice_id=invoice_id,
            file_name=file_name,
            size_bytes=size_bytes,
            correlation_id=correlation_id,
        ))

    async def log_invoice_rejected(
        self,
        file_name: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.invoice_rejected(
            file_name=file_name,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_invoice_deleted(
        self,
        invoice_id: int,
        storage_key: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.invoice_deleted(
            invoice_id=invoice_id,
            storage_key=storage_key,
            correlation_id=correlation_id,
        ))

    async def log_invoice_linked(
        self,
        invoice_id: int,
        transaction_id: Optional[int],
        previous_transaction_id: Optional[int],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a link change (transaction_id None means unlinked)."""
        await self.log(AuditEventBuilder.invoice_linked(
            invoice_id=invoice_id,
            transaction_id=transaction_id,
            previous_transaction_id=previous_transaction_id,
            correlation_id=correlation_id,
        ))

    async def log_ocr_completed(
        self,
        invoice_id: int,
        attempt: int,
        cost_cents: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.ocr_completed(
            invoice_id=invoice_id,
            attempt=attempt,
            cost_cents=cost_cents,
            correlation_id=correlation_id,
        ))

    async def log_ocr_failed(
        self,
        invoice_id: int,
        attempt: int,
        cost_cents: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.ocr_failed(
            invoice_id=invoice_id,
            attempt=attempt,
            cost_cents=cost_cents,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_ocr_budget_exceeded(
        self,
        invoice_id: int,
        spent_cents: int,
        budget_cents: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.ocr_budget_exceeded(
            invoice_id=invoice_id,
            spent_cents=spent_cents,
            budget_cents=budget_cents,
            correlation_id=correlation_id,
        ))

    async def log_ocr_corrected(
        self,
        invoice_id: int,
        corrected_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.ocr_corrected(
            invoice_id=invoice_id,
            corrected_fields=corrected_fields,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., bulk upload).
    Pass it through all subsequent operations.
    """
    return uuid4()
