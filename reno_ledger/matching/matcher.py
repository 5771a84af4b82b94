"""
Invoice Matching

Suggests which transaction an invoice belongs to, from its OCR fields.

DESIGN DECISION: Matching only SUGGESTS.
Nothing is linked automatically; the user confirms a suggestion through
link(). Scores are integers in [0, 100]:

    amount  (max 40)  relative difference to the OCR total
    date    (max 30)  distance in days to the OCR date
    concept (max 30)  vendor name vs bank concept

The candidate pool is bounded: expenses only, non-archived, within the
date window and 50-150% of the OCR amount, at most match_candidate_limit
rows.
"""

import re
import unicodedata
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from reno_ledger.audit import AuditLogger
from reno_ledger.config import LedgerSettings, get_settings
from reno_ledger.errors import OcrNotCompletedError
from reno_ledger.models.invoice import (
    ExtractedInvoiceFields,
    Invoice,
    MatchSuggestion,
    OcrCorrection,
    OcrStatus,
    ScoreBreakdown,
)
from reno_ledger.models.ledger import Transaction, TransactionQuery
from reno_ledger.services.storage.interface import (
    InvoiceNotFoundError,
    InvoiceStorageInterface,
    LedgerStorageInterface,
    TransactionNotFoundError,
)


# (max relative difference, points)
AMOUNT_SCORES = (
    (Decimal("0.005"), 40),
    (Decimal("0.02"), 38),
    (Decimal("0.05"), 34),
    (Decimal("0.10"), 28),
    (Decimal("0.20"), 20),
    (Decimal("0.50"), 8),
)

# (max distance in days, points)
DATE_SCORES = (
    (0.5, 30),
    (1.5, 27),
    (2.5, 24),
    (3.5, 20),
    (7, 15),
    (14, 8),
    (30, 3),
)

CONCEPT_MAX_SCORE = 30

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, strip diacritics, replace anything else with spaces."""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return _WHITESPACE.sub(" ", _NON_ALNUM.sub(" ", stripped)).strip()


def score_amount(ocr_amount: Optional[Decimal], transaction_amount: Decimal) -> int:
    if ocr_amount is None:
        return 0
    expected = abs(ocr_amount)
    actual = abs(transaction_amount)
    if expected == 0 or actual == 0:
        return 0

    relative = abs(actual - expected) / expected
    for limit, points in AMOUNT_SCORES:
        if relative <= limit:
            return points
    return 0


def score_date(ocr_date: Optional[date], transaction_date: date) -> int:
    if ocr_date is None:
        return 0
    days = abs((ocr_date - transaction_date).days)
    for limit, points in DATE_SCORES:
        if days <= limit:
            return points
    return 0


def score_concept(vendor: Optional[str], concept: str) -> int:
    """
    Substring match either way scores the maximum; otherwise the Jaccard
    similarity of the words longer than two characters.
    """
    if not vendor:
        return 0
    vendor = normalize_text(vendor)
    concept = normalize_text(concept)
    if not vendor or not concept:
        return 0

    if vendor in concept or concept in vendor:
        return CONCEPT_MAX_SCORE

    vendor_words = {w for w in vendor.split() if len(w) > 2}
    concept_words = {w for w in concept.split() if len(w) > 2}
    if not vendor_words or not concept_words:
        return 0

    shared = vendor_words & concept_words
    if not shared:
        return 0
    jaccard = len(shared) / len(vendor_words | concept_words)
    # Half-up rounding
    return int(jaccard * CONCEPT_MAX_SCORE + 0.5)


def score_transaction(
    fields: ExtractedInvoiceFields,
    transaction: Transaction,
) -> MatchSuggestion:
    breakdown = ScoreBreakdown(
        amount_score=score_amount(fields.amount, transaction.amount),
        date_score=score_date(fields.date, transaction.date),
        concept_score=score_concept(fields.vendor, transaction.concept),
    )
    return MatchSuggestion(
        transaction_id=transaction.id,
        score=breakdown.amount_score + breakdown.date_score + breakdown.concept_score,
        breakdown=breakdown,
        date=transaction.date,
        amount=transaction.amount,
        concept=transaction.concept,
        has_invoice=transaction.has_invoice,
        project_id=transaction.project_id,
    )


class InvoiceMatcher:
    """
    Ranks candidate transactions for an invoice and manages links.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        invoice_storage: Optional[InvoiceStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._invoices = invoice_storage or storage
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().ledger
        self._logger = structlog.get_logger()

    async def _get_invoice(self, invoice_id: int) -> Invoice:
        invoice = await self._invoices.get_invoice(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(f"Invoice not found: {invoice_id}")
        return invoice

    async def suggest(self, invoice_id: int) -> list[MatchSuggestion]:
        """
        Ranked transaction suggestions for an invoice.

        Raises:
            InvoiceNotFoundError: Unknown invoice
            OcrNotCompletedError: The invoice has no completed extraction
        """
        invoice = await self._get_invoice(invoice_id)
        if invoice.ocr.status != OcrStatus.COMPLETED:
            raise OcrNotCompletedError(
                f"Invoice {invoice_id} has OCR status {invoice.ocr.status.value}"
            )
        return await self.find_matches(
            invoice.ocr.fields(),
            exclude_transaction_id=invoice.transaction_id,
        )

    async def find_matches(
        self,
        fields: ExtractedInvoiceFields,
        exclude_transaction_id: Optional[int] = None,
    ) -> list[MatchSuggestion]:
        """Score the candidate pool for a set of invoice fields."""
        if fields.amount is None and fields.date is None:
            return []

        query = TransactionQuery(
            expenses_only=True,
            exclude_ids=[exclude_transaction_id] if exclude_transaction_id else [],
            order_by="date_desc",
            limit=self._settings.match_candidate_limit,
        )
        if fields.date is not None:
            window = timedelta(days=self._settings.match_date_window_days)
            query.date_from = fields.date - window
            query.date_to = fields.date + window
        if fields.amount is not None:
            query.amount_min = -(fields.amount * Decimal("1.5"))
            query.amount_max = -(fields.amount * Decimal("0.5"))

        candidates = await self._storage.list_transactions(query)

        scored = [
            suggestion for suggestion in (
                score_transaction(fields, candidate) for candidate in candidates
            )
            if suggestion.score > self._settings.match_min_score
        ]
        scored.sort(key=lambda s: (s.score, s.date, s.transaction_id), reverse=True)

        self._logger.debug(
            "invoice_matches_scored",
            candidates=len(candidates),
            kept=len(scored),
        )
        return scored[:self._settings.suggestion_limit]

    async def refresh_has_invoice(self, transaction_id: Optional[int]) -> None:
        if transaction_id is None:
            return
        count = await self._invoices.count_invoices_for_transaction(transaction_id)
        await self._storage.set_has_invoice(transaction_id, count > 0)

    async def link(
        self,
        invoice_id: int,
        transaction_id: Optional[int],
        correlation_id: Optional[UUID] = None,
    ) -> Invoice:
        """
        Link an invoice to a transaction (None makes it an orphan again).

        has_invoice is recomputed from the invoice count for both the new
        and the previously linked transaction.

        Raises:
            InvoiceNotFoundError: Unknown invoice
            TransactionNotFoundError: Unknown transaction
        """
        invoice = await self._get_invoice(invoice_id)
        if transaction_id is not None:
            if await self._storage.get_transaction(transaction_id) is None:
                raise TransactionNotFoundError(f"Transaction not found: {transaction_id}")

        previous = invoice.transaction_id
        updated = await self._invoices.update_invoice(
            invoice.model_copy(update={"transaction_id": transaction_id})
        )

        await self.refresh_has_invoice(transaction_id)
        if previous != transaction_id:
            await self.refresh_has_invoice(previous)

        await self._audit.log_invoice_linked(
            invoice_id=invoice_id,
            transaction_id=transaction_id,
            previous_transaction_id=previous,
            correlation_id=correlation_id,
        )
        return updated

    async def unlink(
        self,
        invoice_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> Invoice:
        return await self.link(invoice_id, None, correlation_id)

    async def correct_ocr(
        self,
        invoice_id: int,
        correction: OcrCorrection,
        correlation_id: Optional[UUID] = None,
    ) -> list[MatchSuggestion]:
        """
        Apply manually typed invoice fields and re-run matching.

        A record that is not COMPLETED is moved there through a new
        attempt; values the correction leaves unset are kept from the
        previous attempt.

        Raises:
            InvoiceNotFoundError: Unknown invoice
            InvalidOcrTransitionError: An extraction is still in flight
        """
        invoice = await self._get_invoice(invoice_id)
        previous = invoice.ocr

        values = previous.fields().model_dump()
        corrected = [
            name for name in correction.model_fields_set
            if getattr(correction, name) is not None
        ]
        for name in corrected:
            values[name] = getattr(correction, name)
        fields = ExtractedInvoiceFields.model_validate(values)

        record = previous
        if record.status != OcrStatus.COMPLETED:
            record = (
                record.start_attempt()
                .transition(OcrStatus.PROCESSING)
                .transition(OcrStatus.COMPLETED)
            )
        record = record.model_copy(update={
            **fields.model_dump(),
            "error": None,
            "manually_corrected": True,
        })

        invoice = await self._invoices.update_invoice(
            invoice.model_copy(update={"ocr": record})
        )
        await self._audit.log_ocr_corrected(
            invoice_id=invoice_id,
            corrected_fields=sorted(corrected),
            correlation_id=correlation_id,
        )
        return await self.suggest(invoice.id)
