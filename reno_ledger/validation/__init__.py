"""Validation package."""

from reno_ledger.validation.allocations import AllocationValidator, raise_for_result

__all__ = ["AllocationValidator", "raise_for_result"]
