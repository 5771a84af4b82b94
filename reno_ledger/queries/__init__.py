"""
Read-only queries over the ledger.
"""

from reno_ledger.queries.stats import BudgetAggregator

__all__ = ["BudgetAggregator"]
