"""
Extraction Service Interface

Any invoice extraction backend (Mindee, a test double, ...) implements
this. Failures are reported through ExtractionFailedError, which carries
the cost already incurred so it can still be charged to the monthly
budget.
"""

from abc import ABC, abstractmethod

from reno_ledger.models.invoice import ExtractionResult


class OCRError(Exception):
    """Base exception for OCR errors."""
    pass


class ExtractionFailedError(OCRError):
    """The extraction call ran (or was attempted) and did not produce data."""

    def __init__(self, message: str, cost_cents: int = 0):
        self.cost_cents = cost_cents
        super().__init__(message)


class ExtractionServiceInterface(ABC):

    @abstractmethod
    def estimate_cost_cents(self, content_type: str, size_bytes: int) -> int:
        """Expected cost of one extract() call, used for budget gating."""
        pass

    @abstractmethod
    async def extract(
        self,
        data: bytes,
        content_type: str,
        file_name: str,
    ) -> ExtractionResult:
        """
        Extract invoice fields from a document.

        Raises:
            ExtractionFailedError: If extraction fails
        """
        pass
