"""
Shared fixtures for the Renovation Ledger test suite.

Test strategy:
1. Unit tests for individual components (models, validators, scoring)
2. Integration tests for flows against InMemoryStorage or a temp SQLite file
3. No real API calls in tests (document store and extraction are fakes)
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import pytest

from reno_ledger.audit import AuditLogger
from reno_ledger.config import LedgerSettings, OcrSettings
from reno_ledger.ledger import (
    AllocationLedger,
    BankFeedSync,
    PropagationEngine,
    TransactionService,
)
from reno_ledger.models import (
    ExpenseCategory,
    ExtractedInvoiceFields,
    ExtractionResult,
    Project,
    ProjectStatus,
    Transaction,
)
from reno_ledger.services.documents import (
    DocumentNotFoundError,
    DocumentStoreError,
    DocumentStoreInterface,
    DocumentUploadError,
)
from reno_ledger.services.ocr import ExtractionServiceInterface
from reno_ledger.services.storage import InMemoryAuditStorage, InMemoryStorage


class FakeDocumentStore(DocumentStoreInterface):
    """Dict-backed document store."""

    def __init__(self, fail_put: bool = False, fail_delete: bool = False):
        self.documents: dict[str, bytes] = {}
        self.fail_put = fail_put
        self.fail_delete = fail_delete

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        if self.fail_put:
            raise DocumentUploadError("upload refused")
        self.documents[key] = data
        return key

    async def get(self, key: str) -> bytes:
        try:
            return self.documents[key]
        except KeyError:
            raise DocumentNotFoundError(key)

    async def delete(self, key: str) -> None:
        if self.fail_delete:
            raise DocumentStoreError("delete refused")
        self.documents.pop(key, None)

    async def signed_download_url(self, key: str, ttl_seconds: int) -> str:
        return f"https://files.example.test/{key}?ttl={ttl_seconds}"


class FakeExtractionService(ExtractionServiceInterface):
    """
    Returns queued outcomes in order, then `default`.

    An outcome is either ExtractedInvoiceFields or an exception to raise.
    """

    def __init__(
        self,
        cost_cents: int = 400,
        outcomes: Optional[list] = None,
        default: Optional[ExtractedInvoiceFields] = None,
    ):
        self.cost_cents = cost_cents
        self.outcomes = list(outcomes or [])
        self.default = default or ExtractedInvoiceFields(
            amount=Decimal("100.00"),
            date=date(2026, 3, 10),
            vendor="Leroy Merlin",
        )
        self.calls = 0

    def estimate_cost_cents(self, content_type: str, size_bytes: int) -> int:
        return self.cost_cents

    async def extract(
        self,
        data: bytes,
        content_type: str,
        file_name: str,
    ) -> ExtractionResult:
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return ExtractionResult(
            fields=outcome,
            cost_cents=self.cost_cents,
            raw_response="{}",
        )


class MutableClock:
    """Callable clock tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


async def make_project(
    storage,
    name: str = "Piso Calle Mayor",
    total_budget: str = "0",
    category_budgets: Optional[dict] = None,
    status: ProjectStatus = ProjectStatus.ACTIVE,
) -> Project:
    return await storage.create_project(Project(
        name=name,
        total_budget=Decimal(total_budget),
        category_budgets={
            category: Decimal(amount)
            for category, amount in (category_budgets or {}).items()
        },
        status=status,
    ))


async def make_transaction(
    storage,
    amount: str,
    concept: str = "COMPRA TARJETA",
    day: date = date(2026, 3, 10),
    category: Optional[ExpenseCategory] = None,
    **fields,
) -> Transaction:
    return await storage.create_transaction(Transaction(
        date=day,
        amount=Decimal(amount),
        concept=concept,
        raw_category="Compras",
        expense_category=category,
        **fields,
    ))


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def ledger_settings():
    return LedgerSettings()


@pytest.fixture
def ocr_settings():
    return OcrSettings(monthly_budget_cents=1000, cost_per_call_cents=400)


@pytest.fixture
def clock():
    return MutableClock(datetime(2026, 3, 15, 12, 0))


@pytest.fixture
def ledger(storage, audit_logger, ledger_settings):
    return AllocationLedger(storage, audit_logger, ledger_settings)


@pytest.fixture
def propagation(storage, audit_logger, ledger_settings):
    return PropagationEngine(storage, audit_logger, ledger_settings)


@pytest.fixture
def transactions(storage, ledger, propagation, audit_logger, ledger_settings):
    return TransactionService(storage, ledger, propagation, audit_logger, ledger_settings)


@pytest.fixture
def bank_sync(storage, ledger, audit_logger, ledger_settings):
    return BankFeedSync(storage, ledger, audit_logger, ledger_settings)


@pytest.fixture
def document_store():
    return FakeDocumentStore()


@pytest.fixture
def extraction():
    return FakeExtractionService()
