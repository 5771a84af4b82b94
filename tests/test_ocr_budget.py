"""
Tests for the OCR budget governor and the OCR state machine.
"""

import asyncio
from datetime import datetime

import pytest

from reno_ledger.config import OcrSettings
from reno_ledger.errors import InvalidOcrTransitionError
from reno_ledger.models import ExtractedInvoiceFields, ExtractionResult, OcrRecord, OcrStatus
from reno_ledger.services.ocr import ExtractionFailedError, OcrBudgetGovernor, month_key


def extraction_call(cost_cents: int = 400):
    async def call():
        await asyncio.sleep(0)
        return ExtractionResult(fields=ExtractedInvoiceFields(vendor="Bauhaus"), cost_cents=cost_cents)
    return call


@pytest.fixture
def governor(storage, ocr_settings, clock):
    return OcrBudgetGovernor(storage, ocr_settings, clock=clock)


class TestOcrBudgetGovernor:

    @pytest.mark.asyncio
    async def test_third_call_is_denied(self, storage, governor):
        outcomes = [
            await governor.run_governed(None, 400, extraction_call())
            for _ in range(3)
        ]

        assert [o.decision.allowed for o in outcomes] == [True, True, False]
        assert outcomes[2].result is None
        usage = await storage.get_monthly_usage("2026-03")
        assert usage.spent_cents == 800
        assert usage.call_count == 2

    @pytest.mark.asyncio
    async def test_exact_fit_is_allowed(self, storage, clock):
        governor = OcrBudgetGovernor(storage, OcrSettings(monthly_budget_cents=800), clock=clock)

        first = await governor.run_governed(None, 400, extraction_call())
        second = await governor.run_governed(None, 400, extraction_call())

        assert first.succeeded and second.succeeded
        assert (await governor.authorize(1)).allowed is False

    @pytest.mark.asyncio
    async def test_failed_extraction_is_still_charged(self, storage, governor):
        async def failing():
            raise ExtractionFailedError("unreadable scan", cost_cents=250)

        outcome = await governor.run_governed(7, 400, failing)

        assert outcome.decision.allowed is True
        assert outcome.succeeded is False
        assert outcome.error == "unreadable scan"
        assert outcome.cost_cents == 250
        assert (await storage.get_monthly_usage("2026-03")).spent_cents == 250

    @pytest.mark.asyncio
    async def test_unexpected_error_charges_estimate_and_propagates(self, storage, governor):
        async def broken():
            raise ConnectionError("reset by peer")

        with pytest.raises(ConnectionError):
            await governor.run_governed(7, 400, broken)

        assert (await storage.get_monthly_usage("2026-03")).spent_cents == 400

    @pytest.mark.asyncio
    async def test_budget_resets_with_new_month(self, storage, governor, clock):
        await governor.run_governed(None, 400, extraction_call())
        await governor.run_governed(None, 400, extraction_call())
        assert (await governor.authorize(400)).allowed is False

        clock.now = datetime(2026, 4, 1, 0, 5)

        decision = await governor.authorize(400)
        assert decision.allowed is True
        assert decision.month == "2026-04"
        assert decision.spent_cents == 0

    @pytest.mark.asyncio
    async def test_concurrent_calls_never_overspend(self, storage, governor):
        outcomes = await asyncio.gather(*[
            governor.run_governed(None, 400, extraction_call())
            for _ in range(5)
        ])

        assert sum(1 for o in outcomes if o.decision.allowed) == 2
        usage = await storage.get_monthly_usage("2026-03")
        assert usage.spent_cents == 800
        assert usage.spent_cents <= governor.budget_cents

    @pytest.mark.asyncio
    async def test_status(self, governor):
        await governor.run_governed(None, 400, extraction_call(cost_cents=300))
        await governor.run_governed(None, 400, extraction_call(cost_cents=400))

        status = await governor.get_status()

        assert status.month == "2026-03"
        assert status.spent_cents == 700
        assert status.remaining_cents == 300
        assert status.call_count == 2
        assert status.avg_cost_cents == 350

    def test_month_key(self):
        assert month_key(datetime(2026, 12, 31, 23, 59)) == "2026-12"


class TestOcrStateMachine:

    def test_happy_path(self):
        record = OcrRecord().start_attempt()
        record = record.transition(OcrStatus.PROCESSING)
        record = record.transition(OcrStatus.COMPLETED)

        assert record.status == OcrStatus.COMPLETED
        assert record.attempt == 1

    def test_budget_exceeded_from_pending(self):
        record = OcrRecord().start_attempt().transition(OcrStatus.BUDGET_EXCEEDED)

        assert record.status.is_terminal

    def test_completed_cannot_move_without_new_attempt(self):
        record = OcrRecord(status=OcrStatus.COMPLETED, attempt=1)

        with pytest.raises(InvalidOcrTransitionError):
            record.transition(OcrStatus.PROCESSING)

    def test_pending_cannot_skip_to_completed(self):
        with pytest.raises(InvalidOcrTransitionError):
            OcrRecord().start_attempt().transition(OcrStatus.COMPLETED)

    def test_retry_clears_previous_values(self):
        record = OcrRecord(
            status=OcrStatus.FAILED,
            attempt=1,
            vendor="Bauhaus",
            error="timeout",
        )

        retried = record.start_attempt()

        assert retried.status == OcrStatus.PENDING
        assert retried.attempt == 2
        assert retried.vendor is None
        assert retried.error is None

    def test_cannot_restart_while_processing(self):
        record = OcrRecord(status=OcrStatus.PROCESSING, attempt=1)

        with pytest.raises(InvalidOcrTransitionError):
            record.start_attempt()
