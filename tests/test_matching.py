"""
Tests for invoice matching and linking.
"""

from datetime import date
from decimal import Decimal

import pytest

from conftest import make_transaction
from reno_ledger.config import LedgerSettings
from reno_ledger.errors import OcrNotCompletedError
from reno_ledger.matching import (
    InvoiceMatcher,
    normalize_text,
    score_amount,
    score_concept,
    score_date,
)
from reno_ledger.models import (
    AuditEventType,
    ExtractedInvoiceFields,
    Invoice,
    OcrCorrection,
    OcrRecord,
    OcrStatus,
)
from reno_ledger.services.storage import InvoiceNotFoundError, TransactionNotFoundError

INVOICE_DATE = date(2026, 3, 10)


async def make_invoice(storage, status=OcrStatus.COMPLETED, **ocr_fields) -> Invoice:
    values = {"amount": Decimal("100.00"), "date": INVOICE_DATE, "vendor": "Leroy Merlin"}
    values.update(ocr_fields)
    return await storage.create_invoice(Invoice(
        storage_key="invoices/test.pdf",
        file_name="factura.pdf",
        content_type="application/pdf",
        ocr=OcrRecord(status=status, attempt=1, **values),
    ))


@pytest.fixture
def matcher(storage, audit_logger, ledger_settings):
    return InvoiceMatcher(storage, audit_logger=audit_logger, settings=ledger_settings)


class TestScoring:

    def test_normalize_text(self):
        assert normalize_text("  Fontanería  Pérez, S.L. ") == "fontaneria perez s l"

    @pytest.mark.parametrize("amount,expected", [
        ("100.00", 40),
        ("100.50", 40),
        ("100.60", 38),
        ("104.00", 34),
        ("109.00", 28),
        ("120.00", 20),
        ("150.00", 8),
        ("151.00", 0),
    ])
    def test_amount_score(self, amount, expected):
        assert score_amount(Decimal("100.00"), Decimal(f"-{amount}")) == expected

    @pytest.mark.parametrize("days,expected", [
        (0, 30), (1, 27), (2, 24), (3, 20), (7, 15), (8, 8), (14, 8), (30, 3), (31, 0),
    ])
    def test_date_score(self, days, expected):
        transaction_date = date.fromordinal(INVOICE_DATE.toordinal() - days)
        assert score_date(INVOICE_DATE, transaction_date) == expected

    def test_missing_fields_score_zero(self):
        assert score_amount(None, Decimal("-10")) == 0
        assert score_date(None, INVOICE_DATE) == 0
        assert score_concept(None, "LEROY MERLIN") == 0

    def test_concept_substring_scores_max(self):
        assert score_concept("Leroy Merlin", "COMPRA TARJ LEROY MERLIN 1234") == 30
        assert score_concept("Fontanería Pérez", "FONTANERIA PEREZ") == 30

    def test_concept_word_overlap(self):
        # {leroy, merlin} shared out of {leroy, merlin, madrid, compra}
        assert score_concept("Leroy Merlin Madrid", "COMPRA LEROY MERLIN") == 15
        # 1/4 of 30 rounds half up
        assert score_concept("alpha beta gamma", "alpha delta") == 8

    def test_short_words_are_ignored(self):
        assert score_concept("Pinturas SA", "ABC SA") == 0


class TestSuggestions:

    @pytest.mark.asyncio
    async def test_ranked_suggestions(self, storage, matcher):
        exact = await make_transaction(storage, "-100.00", concept="LEROY MERLIN")
        close = await make_transaction(
            storage, "-101.00", concept="LEROY MERLIN SL", day=date(2026, 3, 11)
        )
        other_vendor = await make_transaction(storage, "-100.00", concept="MERCADONA")
        await make_transaction(storage, "-140.00", concept="BAR PEPE", day=date(2026, 4, 5))
        await make_transaction(storage, "100.00", concept="LEROY MERLIN DEVOLUCION")
        await make_transaction(storage, "-100.00", concept="LEROY MERLIN", is_archived=True)
        await make_transaction(storage, "-300.00", concept="LEROY MERLIN")
        invoice = await make_invoice(storage)

        suggestions = await matcher.suggest(invoice.id)

        assert [(s.transaction_id, s.score) for s in suggestions] == [
            (exact.id, 100),
            (close.id, 95),
            (other_vendor.id, 70),
        ]
        assert suggestions[1].breakdown.model_dump() == {
            "amount_score": 38,
            "date_score": 27,
            "concept_score": 30,
        }

    @pytest.mark.asyncio
    async def test_suggestions_are_limited(self, storage, matcher):
        for _ in range(12):
            await make_transaction(storage, "-100.00", concept="LEROY MERLIN")
        invoice = await make_invoice(storage)

        suggestions = await matcher.suggest(invoice.id)

        assert len(suggestions) == 10
        ids = [s.transaction_id for s in suggestions]
        # Equal scores and dates fall back to the newest row
        assert ids == sorted(ids, reverse=True)

    @pytest.mark.asyncio
    async def test_linked_transaction_is_not_suggested(self, storage, matcher):
        tx = await make_transaction(storage, "-100.00", concept="LEROY MERLIN")
        invoice = await make_invoice(storage)
        await matcher.link(invoice.id, tx.id)

        assert await matcher.suggest(invoice.id) == []

    @pytest.mark.asyncio
    async def test_min_score_is_configurable(self, storage, audit_logger):
        # Exact amount and date, no concept overlap: 40 + 30 + 0
        tx = await make_transaction(storage, "-100.00", concept="MERCADONA")
        invoice = await make_invoice(storage)

        def matcher_with(min_score):
            return InvoiceMatcher(
                storage, audit_logger=audit_logger,
                settings=LedgerSettings(match_min_score=min_score),
            )

        assert await matcher_with(75).suggest(invoice.id) == []
        assert await matcher_with(70).suggest(invoice.id) == []
        kept = await matcher_with(69).suggest(invoice.id)
        assert [(s.transaction_id, s.score) for s in kept] == [(tx.id, 70)]

    @pytest.mark.asyncio
    async def test_no_amount_and_no_date_means_no_suggestions(self, matcher):
        assert await matcher.find_matches(ExtractedInvoiceFields(vendor="Leroy Merlin")) == []

    @pytest.mark.asyncio
    async def test_ocr_must_be_completed(self, storage, matcher):
        invoice = await make_invoice(storage, status=OcrStatus.FAILED)

        with pytest.raises(OcrNotCompletedError):
            await matcher.suggest(invoice.id)

    @pytest.mark.asyncio
    async def test_unknown_invoice(self, matcher):
        with pytest.raises(InvoiceNotFoundError):
            await matcher.suggest(999)


class TestLinking:

    @pytest.mark.asyncio
    async def test_has_invoice_tracks_linked_invoices(self, storage, matcher):
        tx = await make_transaction(storage, "-100.00")
        other = await make_transaction(storage, "-50.00")
        first = await make_invoice(storage)
        second = await make_invoice(storage)

        await matcher.link(first.id, tx.id)
        await matcher.link(second.id, tx.id)
        assert (await storage.get_transaction(tx.id)).has_invoice is True

        await matcher.unlink(first.id)
        assert (await storage.get_transaction(tx.id)).has_invoice is True

        # Moving the last invoice away clears the old transaction
        await matcher.link(second.id, other.id)
        assert (await storage.get_transaction(tx.id)).has_invoice is False
        assert (await storage.get_transaction(other.id)).has_invoice is True

    @pytest.mark.asyncio
    async def test_link_to_unknown_transaction(self, storage, matcher):
        invoice = await make_invoice(storage)

        with pytest.raises(TransactionNotFoundError):
            await matcher.link(invoice.id, 404)

        assert (await storage.get_invoice(invoice.id)).transaction_id is None

    @pytest.mark.asyncio
    async def test_link_is_audited(self, storage, matcher, audit_storage):
        tx = await make_transaction(storage, "-100.00")
        invoice = await make_invoice(storage)

        await matcher.link(invoice.id, tx.id)
        await matcher.unlink(invoice.id)

        assert [e.event_type for e in audit_storage.events] == [
            AuditEventType.INVOICE_LINKED,
            AuditEventType.INVOICE_UNLINKED,
        ]


class TestManualCorrection:

    @pytest.mark.asyncio
    async def test_correction_completes_failed_extraction(self, storage, matcher, audit_storage):
        tx = await make_transaction(storage, "-230.00", concept="BRICOMART")
        invoice = await make_invoice(
            storage,
            status=OcrStatus.FAILED,
            amount=None,
            date=None,
            vendor=None,
        )

        suggestions = await matcher.correct_ocr(invoice.id, OcrCorrection(
            amount=Decimal("230.00"),
            date=INVOICE_DATE,
            vendor="Bricomart",
        ))

        assert [s.transaction_id for s in suggestions] == [tx.id]
        assert suggestions[0].score == 100

        stored = await storage.get_invoice(invoice.id)
        assert stored.ocr.status == OcrStatus.COMPLETED
        assert stored.ocr.attempt == 2
        assert stored.ocr.manually_corrected is True
        assert audit_storage.events[-1].event_type == AuditEventType.OCR_CORRECTED
        assert audit_storage.events[-1].details["corrected_fields"] == ["amount", "date", "vendor"]

    @pytest.mark.asyncio
    async def test_partial_correction_keeps_extracted_values(self, storage, matcher):
        invoice = await make_invoice(storage, vendor="LM")

        await matcher.correct_ocr(invoice.id, OcrCorrection(vendor="Leroy Merlin"))

        stored = await storage.get_invoice(invoice.id)
        assert stored.ocr.vendor == "Leroy Merlin"
        assert stored.ocr.amount == Decimal("100.00")
        assert stored.ocr.attempt == 1
