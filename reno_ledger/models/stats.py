"""
Dashboard Statistics Models

Everything here is derived, never stored. The aggregator recomputes the
whole structure from allocations, transactions and project budgets on
every call.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from reno_ledger.models.ledger import ExpenseCategory


ZERO = Decimal("0.00")


class ProjectSpend(BaseModel):
    """Spend credited to one project through its allocations."""

    project_id: int
    project_name: str
    budget: Decimal = ZERO
    spent: Decimal = ZERO
    percentage: Decimal = ZERO
    by_category: dict[ExpenseCategory, Decimal] = Field(default_factory=dict)


class CategoryStat(BaseModel):
    """Budget versus spend for one project-level category."""

    category: ExpenseCategory
    budget: Decimal = ZERO
    spent: Decimal = ZERO
    percentage: Decimal = ZERO


class UnbudgetedSpend(BaseModel):
    """Spend on a category the project has no budget for."""

    project_id: int
    project_name: str
    category: ExpenseCategory
    spent: Decimal


class BudgetAlert(BaseModel):
    """
    A project that spent more than budgeted.

    category is None for the project-wide alert (total spend above total
    budget).
    """

    project_id: int
    project_name: str
    category: Optional[ExpenseCategory] = None
    budget: Decimal
    spent: Decimal
    percentage: int


class FixedVariableSplit(BaseModel):
    fixed: Decimal = ZERO
    variable: Decimal = ZERO


class DashboardStats(BaseModel):
    """Budget and consumption KPIs for the dashboard."""

    project_id: Optional[int] = Field(
        default=None,
        description="Project the stats are scoped to; None for all"
    )
    project_spend: list[ProjectSpend] = Field(default_factory=list)
    category_stats: list[CategoryStat] = Field(default_factory=list)
    global_spend: dict[ExpenseCategory, Decimal] = Field(default_factory=dict)
    unbudgeted_spend: list[UnbudgetedSpend] = Field(default_factory=list)
    budget_alerts: list[BudgetAlert] = Field(default_factory=list)
    fixed_variable: FixedVariableSplit = Field(default_factory=FixedVariableSplit)
    fixed_by_category: dict[ExpenseCategory, Decimal] = Field(default_factory=dict)

    # KPIs
    total_budget: Decimal = ZERO
    total_spent: Decimal = ZERO
    total_budget_percentage: Decimal = ZERO
    total_spent_this_month: Decimal = ZERO
    transactions_without_invoice: int = 0
    transactions_without_project: int = 0
    active_projects: int = 0

    def spend_for(self, project_id: int) -> Decimal:
        for entry in self.project_spend:
            if entry.project_id == project_id:
                return entry.spent
        return ZERO
