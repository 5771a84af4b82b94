"""
Ledger package: allocation ledger, propagation, manual edits, bank sync.
"""

from reno_ledger.ledger.allocations import AllocationLedger
from reno_ledger.ledger.projects import ProjectService
from reno_ledger.ledger.propagation import PropagationEngine
from reno_ledger.ledger.sync import BankFeedSync
from reno_ledger.ledger.transactions import TransactionService, parse_category

__all__ = [
    "AllocationLedger",
    "BankFeedSync",
    "ProjectService",
    "PropagationEngine",
    "TransactionService",
    "parse_category",
]
