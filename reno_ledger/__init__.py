"""
Renovation Ledger - Source Package

Reconciliation core for a renovation business: bank transactions split
across projects, budget consumption, and invoices matched to spending.

DESIGN PRINCIPLES:
1. Allocations are the source of truth for project spend
2. Reject invalid input before any write
3. Bulk changes are bounded and audited
4. Extraction spend never exceeds the monthly cap
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Renovation Ledger Team"
