"""
Main Orchestrator for the Renovation Ledger

This module ties together all the components and defines the
end-to-end invoice flows:
1. Bulk upload (validate → store → insert row → governed OCR → suggest)
2. Manual re-extraction
3. Delete and download

DESIGN DECISION: The orchestrator enforces the boundaries:
- No extraction call runs without passing the monthly budget
- One file's failure never aborts the rest of a batch
- No invoice is linked without the user confirming a suggestion
- Every step is audited

The document store and the database are not updated atomically. Writes
are ordered so a failure leaves at worst an orphan document, which is
deleted on a best-effort basis.
"""

from typing import Optional
from uuid import UUID

import structlog

from reno_ledger.audit import AuditLogger, create_correlation_id
from reno_ledger.config import LedgerSettings, get_settings
from reno_ledger.errors import UploadRejectedError
from reno_ledger.ledger import (
    AllocationLedger,
    BankFeedSync,
    ProjectService,
    PropagationEngine,
    TransactionService,
)
from reno_ledger.matching import InvoiceMatcher
from reno_ledger.models.invoice import (
    BulkUploadResult,
    Invoice,
    OcrRecord,
    OcrStatus,
    UploadedFile,
    UploadItemResult,
    UploadItemStatus,
)
from reno_ledger.queries import BudgetAggregator
from reno_ledger.services.documents import (
    CloudinaryDocumentStore,
    DocumentStoreError,
    DocumentStoreInterface,
    make_storage_key,
)
from reno_ledger.services.ocr import (
    ExtractionServiceInterface,
    MindeeExtractionService,
    OcrBudgetGovernor,
)
from reno_ledger.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    InvoiceNotFoundError,
    LedgerStorageInterface,
    SqliteAuditStorage,
    SqliteStorage,
)


STATUS_BY_OCR = {
    OcrStatus.COMPLETED: UploadItemStatus.COMPLETED,
    OcrStatus.FAILED: UploadItemStatus.FAILED,
    OcrStatus.BUDGET_EXCEEDED: UploadItemStatus.BUDGET_EXCEEDED,
}


class InvoiceUploadFlow:
    """
    Orchestrates invoice uploads and extraction.

    Flow per file:
    1. Validate → content type and size
    2. Store → put the document, keyed by a fresh storage key
    3. Record → insert the invoice row (orphan, OCR PENDING)
    4. Extract → governed by the monthly OCR budget
    5. Suggest → ranked transactions if extraction completed

    Linking a suggestion is a separate, explicit user action
    (InvoiceMatcher.link).
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        document_store: Optional[DocumentStoreInterface] = None,
        extraction: Optional[ExtractionServiceInterface] = None,
        governor: Optional[OcrBudgetGovernor] = None,
        matcher: Optional[InvoiceMatcher] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._audit = audit_logger or AuditLogger()
        self._documents = document_store or CloudinaryDocumentStore()
        self._extraction = extraction or MindeeExtractionService()
        self._governor = governor or OcrBudgetGovernor(storage)
        self._matcher = matcher or InvoiceMatcher(
            storage, audit_logger=self._audit, settings=self._settings
        )
        self._logger = structlog.get_logger()

    def _rejection_reason(self, upload: UploadedFile) -> Optional[str]:
        if upload.content_type.lower() not in self._settings.supported_types_list:
            return f"Unsupported file type: {upload.content_type}"
        if upload.size_bytes == 0:
            return "Empty file"
        if upload.size_bytes > self._settings.max_upload_size_bytes:
            return (
                f"File too large: {upload.size_bytes} bytes "
                f"(max {self._settings.max_upload_size_mb} MB)"
            )
        return None

    async def bulk_upload(
        self,
        files: list[UploadedFile],
        correlation_id: Optional[UUID] = None,
    ) -> BulkUploadResult:
        """
        Upload and extract a batch of invoice files.

        Files are processed one at a time, in order, each with its own
        budget check, so file k can be denied while earlier files ran.

        Raises:
            UploadRejectedError: Empty batch or more than max_bulk_files
        """
        if not files:
            raise UploadRejectedError("No files uploaded")
        if len(files) > self._settings.max_bulk_files:
            raise UploadRejectedError(
                f"Too many files: {len(files)} (max {self._settings.max_bulk_files})"
            )

        correlation_id = correlation_id or create_correlation_id()
        results = []
        for upload in files:
            results.append(await self._process_file(upload, correlation_id))

        return BulkUploadResult(
            results=results,
            budget=await self._governor.get_status(),
        )

    async def _process_file(
        self,
        upload: UploadedFile,
        correlation_id: UUID,
    ) -> UploadItemResult:
        reason = self._rejection_reason(upload)
        if reason:
            await self._audit.log_invoice_rejected(
                file_name=upload.file_name,
                reason=reason,
                correlation_id=correlation_id,
            )
            return UploadItemResult(
                file_name=upload.file_name,
                status=UploadItemStatus.REJECTED,
                error=reason,
            )

        key = make_storage_key(upload.file_name)
        try:
            key = await self._documents.put(key, upload.data, upload.content_type)
        except DocumentStoreError as e:
            await self._audit.log_external_service_error(
                service="document_store",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return UploadItemResult(
                file_name=upload.file_name,
                status=UploadItemStatus.ERROR,
                error=f"Could not store file: {e}",
            )

        try:
            invoice = await self._storage.create_invoice(Invoice(
                storage_key=key,
                file_name=upload.file_name,
                content_type=upload.content_type,
                size_bytes=upload.size_bytes,
                ocr=OcrRecord().start_attempt(),
            ))
        except Exception as e:
            await self._discard_document(key)
            await self._audit.log_error(
                error_type="invoice_insert_failed",
                error_message=str(e),
                details={"file_name": upload.file_name},
                correlation_id=correlation_id,
            )
            return UploadItemResult(
                file_name=upload.file_name,
                status=UploadItemStatus.ERROR,
                error=f"Could not save invoice: {e}",
            )

        await self._audit.log_invoice_uploaded(
            invoice_id=invoice.id,
            file_name=invoice.file_name,
            size_bytes=invoice.size_bytes,
            correlation_id=correlation_id,
        )

        return await self._extract_and_suggest(invoice, upload.data, correlation_id)

    async def _extract_and_suggest(
        self,
        invoice: Invoice,
        data: bytes,
        correlation_id: UUID,
    ) -> UploadItemResult:
        try:
            invoice = await self._extract(invoice, data, correlation_id)
        except Exception as e:
            await self._audit.log_external_service_error(
                service="ocr",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return UploadItemResult(
                file_name=invoice.file_name,
                status=UploadItemStatus.ERROR,
                invoice=await self._storage.get_invoice(invoice.id),
                error=str(e),
            )

        suggestions = []
        if invoice.ocr.status == OcrStatus.COMPLETED:
            suggestions = await self._matcher.suggest(invoice.id)

        return UploadItemResult(
            file_name=invoice.file_name,
            status=STATUS_BY_OCR[invoice.ocr.status],
            invoice=invoice,
            suggestions=suggestions,
            error=invoice.ocr.error,
        )

    async def _extract(
        self,
        invoice: Invoice,
        data: bytes,
        correlation_id: UUID,
    ) -> Invoice:
        """
        Run one governed extraction for an invoice whose OCR is PENDING.

        Returns the stored invoice in a terminal OCR state. An unexpected
        extraction error marks the attempt FAILED and is re-raised.
        """
        estimated = self._extraction.estimate_cost_cents(
            invoice.content_type, invoice.size_bytes
        )
        current = invoice

        async def call():
            nonlocal current
            current = await self._storage.update_invoice(current.model_copy(update={
                "ocr": current.ocr.transition(OcrStatus.PROCESSING),
            }))
            return await self._extraction.extract(
                data, invoice.content_type, invoice.file_name
            )

        try:
            outcome = await self._governor.run_governed(invoice.id, estimated, call)
        except Exception as e:
            if current.ocr.status == OcrStatus.PROCESSING:
                await self._storage.update_invoice(current.model_copy(update={
                    "ocr": current.ocr.transition(OcrStatus.FAILED).model_copy(
                        update={"error": str(e), "cost_cents": estimated}
                    ),
                }))
            raise

        ocr = current.ocr
        if not outcome.decision.allowed:
            ocr = ocr.transition(OcrStatus.BUDGET_EXCEEDED).model_copy(update={
                "error": "Monthly OCR budget exceeded",
            })
            await self._audit.log_ocr_budget_exceeded(
                invoice_id=invoice.id,
                spent_cents=outcome.decision.spent_cents,
                budget_cents=outcome.decision.budget_cents,
                correlation_id=correlation_id,
            )
        elif outcome.succeeded:
            ocr = ocr.transition(OcrStatus.COMPLETED).model_copy(update={
                **outcome.result.fields.model_dump(),
                "cost_cents": outcome.cost_cents,
                "raw_response": outcome.result.raw_response,
                "error": None,
            })
            await self._audit.log_ocr_completed(
                invoice_id=invoice.id,
                attempt=ocr.attempt,
                cost_cents=outcome.cost_cents,
                correlation_id=correlation_id,
            )
        else:
            ocr = ocr.transition(OcrStatus.FAILED).model_copy(update={
                "error": outcome.error,
                "cost_cents": outcome.cost_cents,
            })
            await self._audit.log_ocr_failed(
                invoice_id=invoice.id,
                attempt=ocr.attempt,
                cost_cents=outcome.cost_cents,
                error_message=outcome.error or "",
                correlation_id=correlation_id,
            )

        return await self._storage.update_invoice(current.model_copy(update={"ocr": ocr}))

    async def _get_invoice(self, invoice_id: int) -> Invoice:
        invoice = await self._storage.get_invoice(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(f"Invoice not found: {invoice_id}")
        return invoice

    async def retry_extraction(
        self,
        invoice_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> UploadItemResult:
        """
        Manually re-run extraction as a new attempt.

        Raises:
            InvoiceNotFoundError: Unknown invoice
            InvalidOcrTransitionError: An extraction is already in flight
            DocumentNotFoundError: The stored document is gone
        """
        correlation_id = correlation_id or create_correlation_id()
        invoice = await self._get_invoice(invoice_id)
        next_attempt = invoice.ocr.start_attempt()

        data = await self._documents.get(invoice.storage_key)
        invoice = await self._storage.update_invoice(
            invoice.model_copy(update={"ocr": next_attempt})
        )
        return await self._extract_and_suggest(invoice, data, correlation_id)

    async def delete_invoice(
        self,
        invoice_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete an invoice row, then its document.

        The linked transaction's has_invoice flag is recomputed.
        """
        invoice = await self._get_invoice(invoice_id)
        await self._storage.delete_invoice(invoice_id)
        await self._matcher.refresh_has_invoice(invoice.transaction_id)
        await self._discard_document(invoice.storage_key)
        await self._audit.log_invoice_deleted(
            invoice_id=invoice_id,
            storage_key=invoice.storage_key,
            correlation_id=correlation_id,
        )

    async def _discard_document(self, key: str) -> None:
        """Best-effort document removal; failures leave an orphan blob."""
        try:
            await self._documents.delete(key)
        except DocumentStoreError as e:
            self._logger.warning("document_delete_failed", key=key, error=str(e))

    async def download_url(self, invoice_id: int) -> str:
        invoice = await self._get_invoice(invoice_id)
        return await self._documents.signed_download_url(
            invoice.storage_key,
            self._settings.download_url_ttl_seconds,
        )


class AppComponents:
    """Wired services sharing one storage and one audit logger."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: AuditLogger,
        settings: Optional[LedgerSettings] = None,
        document_store: Optional[DocumentStoreInterface] = None,
        extraction: Optional[ExtractionServiceInterface] = None,
    ):
        settings = settings or get_settings().ledger
        self.storage = storage
        self.audit_logger = audit_logger
        self.ledger = AllocationLedger(storage, audit_logger, settings)
        self.propagation = PropagationEngine(storage, audit_logger, settings)
        self.transactions = TransactionService(
            storage, self.ledger, self.propagation, audit_logger, settings
        )
        self.projects = ProjectService(storage)
        self.bank_sync = BankFeedSync(storage, self.ledger, audit_logger, settings)
        self.stats = BudgetAggregator(storage)
        self.governor = OcrBudgetGovernor(storage)
        self.matcher = InvoiceMatcher(storage, audit_logger=audit_logger, settings=settings)
        self.uploads = InvoiceUploadFlow(
            storage,
            document_store=document_store,
            extraction=extraction,
            governor=self.governor,
            matcher=self.matcher,
            audit_logger=audit_logger,
            settings=settings,
        )


async def create_app_components(
    use_sheets_audit: bool = False,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_sheets_audit: Mirror the audit trail to Google Sheets instead
                          of the local SQLite table. Falls back to SQLite
                          if Sheets is not configured.
    """
    storage = SqliteStorage()
    await storage.initialize()

    audit_storage: AuditStorageInterface = SqliteAuditStorage(storage.db_file)
    if use_sheets_audit:
        try:
            sheets_client = GoogleSheetsClient()
            sheets_client.connect()
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Sheets not configured - keep the local audit table
            structlog.get_logger().warning("sheets_audit_unavailable", error=str(e))

    return AppComponents(storage, AuditLogger(audit_storage))
