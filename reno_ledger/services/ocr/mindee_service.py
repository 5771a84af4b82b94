"""
Invoice Extraction using Mindee

DESIGN DECISION: We use Mindee's invoice model because it returns
STRUCTURED fields (total, date, supplier, invoice number) rather than raw
text, which is exactly what matching needs.

Every call is billed, so there is NO automatic retry here: a retry would
spend money the budget governor never authorized. Re-extraction is an
explicit user action that opens a new OCR attempt.
"""

import asyncio
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from mindee import Client
from mindee.product import InvoiceV4

from reno_ledger.config import MindeeSettings, OcrSettings, get_settings
from reno_ledger.models.invoice import ExtractedInvoiceFields, ExtractionResult
from reno_ledger.services.ocr.interface import (
    ExtractionFailedError,
    ExtractionServiceInterface,
)


class MindeeExtractionService(ExtractionServiceInterface):
    """
    Extraction service backed by Mindee InvoiceV4.

    IMPORTANT BOUNDARIES:
    1. This service ONLY extracts data - it does NOT match or validate
    2. Cost is a flat per-document amount taken from OcrSettings
    """

    def __init__(
        self,
        settings: Optional[MindeeSettings] = None,
        ocr_settings: Optional[OcrSettings] = None,
    ):
        self._settings = settings or get_settings().mindee
        self._ocr_settings = ocr_settings or get_settings().ocr
        self._client: Optional[Client] = None

    def _get_client(self) -> Client:
        """Get or create Mindee client."""
        if self._client is None:
            self._client = Client(api_key=self._settings.api_key)
        return self._client

    def _safe_decimal(self, value) -> Optional[Decimal]:
        """Safely convert a value to a positive Decimal."""
        if value is None:
            return None
        try:
            amount = abs(Decimal(str(value)).quantize(Decimal("0.01")))
        except (InvalidOperation, TypeError, ValueError):
            return None
        return amount if amount > 0 else None

    def _safe_date(self, value) -> Optional[date]:
        """Safely convert a value to date."""
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            for fmt in ["%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%Y/%m/%d"]:
                try:
                    return datetime.strptime(value, fmt).date()
                except ValueError:
                    continue
        return None

    def _field_value(self, prediction, name: str):
        field = getattr(prediction, name, None)
        return getattr(field, "value", None) if field is not None else None

    def estimate_cost_cents(self, content_type: str, size_bytes: int) -> int:
        return self._ocr_settings.cost_per_call_cents

    def _parse(self, data: bytes, file_name: str):
        client = self._get_client()
        input_doc = client.source_from_bytes(data, file_name)
        return client.parse(InvoiceV4, input_doc)

    async def extract(
        self,
        data: bytes,
        content_type: str,
        file_name: str,
    ) -> ExtractionResult:
        """
        Extract invoice fields from a document.

        Raises:
            ExtractionFailedError: If the call fails or nothing usable comes back
        """
        cost = self.estimate_cost_cents(content_type, len(data))

        try:
            response = await asyncio.to_thread(self._parse, data, file_name)
            prediction = response.document.inference.prediction
        except Exception as e:
            raise ExtractionFailedError(f"Mindee extraction failed: {e}", cost_cents=cost)

        vendor = self._field_value(prediction, "supplier_name")
        invoice_number = self._field_value(prediction, "invoice_number")

        fields = ExtractedInvoiceFields(
            amount=self._safe_decimal(self._field_value(prediction, "total_amount")),
            date=self._safe_date(self._field_value(prediction, "date")),
            vendor=str(vendor)[:500] if vendor else None,
            invoice_number=str(invoice_number)[:200] if invoice_number else None,
        )

        if fields.is_empty:
            raise ExtractionFailedError(
                "No amount, date or vendor could be read from this document",
                cost_cents=cost,
            )

        # Raw summary for debugging
        raw_parts = []
        if fields.vendor:
            raw_parts.append(f"Vendor: {fields.vendor}")
        if fields.invoice_number:
            raw_parts.append(f"Invoice#: {fields.invoice_number}")
        if fields.date:
            raw_parts.append(f"Date: {fields.date}")
        if fields.amount:
            raw_parts.append(f"Total: {fields.amount}")

        return ExtractionResult(
            fields=fields,
            cost_cents=cost,
            raw_response="\n".join(raw_parts) or None,
        )
