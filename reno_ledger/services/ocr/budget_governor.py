"""
OCR Budget Governor

Hard monthly cap on extraction spend.

DESIGN DECISION: authorize -> call -> record runs under ONE asyncio.Lock,
so governed extraction calls are fully serialized. Two concurrent uploads
can never both pass the check against the same "spent" figure, which is
the only way a check-then-act budget could be overspent.

Denial is a normal outcome, not an error: the caller marks the invoice
BUDGET_EXCEEDED and moves on. Actual cost is recorded after every call
that ran, whether extraction succeeded or not.

The month key is computed from the injected clock at read time, so the
budget resets implicitly when the calendar month rolls over.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel

from reno_ledger.config import OcrSettings, get_settings
from reno_ledger.models.invoice import (
    BudgetDecision,
    BudgetStatus,
    ExtractionResult,
    OcrUsage,
)
from reno_ledger.services.ocr.interface import ExtractionFailedError
from reno_ledger.services.storage.interface import InvoiceStorageInterface


def month_key(moment: datetime) -> str:
    return moment.strftime("%Y-%m")


class GovernedOutcome(BaseModel):
    """Result of one governed extraction call."""

    decision: BudgetDecision
    result: Optional[ExtractionResult] = None
    error: Optional[str] = None
    cost_cents: int = 0

    @property
    def succeeded(self) -> bool:
        return self.result is not None


class OcrBudgetGovernor:
    """
    Gates extraction calls against the monthly budget.
    """

    def __init__(
        self,
        storage: InvoiceStorageInterface,
        settings: Optional[OcrSettings] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ocr
        self._clock = clock
        self._lock = asyncio.Lock()
        self._logger = structlog.get_logger()

    @property
    def budget_cents(self) -> int:
        return self._settings.monthly_budget_cents

    def current_month(self) -> str:
        return month_key(self._clock())

    async def authorize(self, cost_cents: int) -> BudgetDecision:
        """
        Decide whether a call of `cost_cents` fits in this month's budget.

        Allowed iff spent + cost <= cap. Only atomic with the following call
        when used through run_governed().
        """
        month = self.current_month()
        usage = await self._storage.get_monthly_usage(month)
        return BudgetDecision(
            allowed=usage.spent_cents + cost_cents <= self.budget_cents,
            month=month,
            cost_cents=cost_cents,
            spent_cents=usage.spent_cents,
            budget_cents=self.budget_cents,
        )

    async def record_usage(self, invoice_id: Optional[int], cost_cents: int) -> OcrUsage:
        """Charge an extraction call to the current month."""
        now = self._clock()
        return await self._storage.record_ocr_usage(OcrUsage(
            invoice_id=invoice_id,
            month=month_key(now),
            cost_cents=cost_cents,
            created_at=now,
        ))

    async def run_governed(
        self,
        invoice_id: Optional[int],
        estimated_cost_cents: int,
        call: Callable[[], Awaitable[ExtractionResult]],
    ) -> GovernedOutcome:
        """
        Authorize, run `call` and record its cost as one serialized unit.

        ExtractionFailedError is turned into a failed outcome (its cost is
        still recorded). Any other exception is re-raised after charging
        the estimated cost, since the call may already have been billed.
        """
        async with self._lock:
            decision = await self.authorize(estimated_cost_cents)
            if not decision.allowed:
                self._logger.warning(
                    "ocr_budget_denied",
                    invoice_id=invoice_id,
                    spent_cents=decision.spent_cents,
                    cost_cents=estimated_cost_cents,
                    budget_cents=decision.budget_cents,
                )
                return GovernedOutcome(decision=decision)

            try:
                result = await call()
            except ExtractionFailedError as e:
                await self.record_usage(invoice_id, e.cost_cents)
                return GovernedOutcome(
                    decision=decision,
                    error=str(e),
                    cost_cents=e.cost_cents,
                )
            except Exception:
                await self.record_usage(invoice_id, estimated_cost_cents)
                raise

            await self.record_usage(invoice_id, result.cost_cents)
            return GovernedOutcome(
                decision=decision,
                result=result,
                cost_cents=result.cost_cents,
            )

    async def get_status(self) -> BudgetStatus:
        """Spend summary of the current month."""
        month = self.current_month()
        usage = await self._storage.get_monthly_usage(month)
        avg = round(usage.spent_cents / usage.call_count) if usage.call_count else 0
        return BudgetStatus(
            month=month,
            spent_cents=usage.spent_cents,
            budget_cents=self.budget_cents,
            remaining_cents=max(self.budget_cents - usage.spent_cents, 0),
            call_count=usage.call_count,
            avg_cost_cents=avg,
        )
