"""
Invoice-to-transaction matching.
"""

from reno_ledger.matching.matcher import (
    InvoiceMatcher,
    normalize_text,
    score_amount,
    score_concept,
    score_date,
    score_transaction,
)

__all__ = [
    "InvoiceMatcher",
    "normalize_text",
    "score_amount",
    "score_concept",
    "score_date",
    "score_transaction",
]
