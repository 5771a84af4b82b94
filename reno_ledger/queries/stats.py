"""
Budget Aggregation

DESIGN DECISION: Stats are DERIVED, never stored.
Every figure on the dashboard is recomputed from transactions,
allocations and project budgets on each call, so there is no cached
number that can drift from the ledger.

Accounting rules:
- A project is credited only with its own allocation amounts, never with
  the full transaction amount of a split.
- Archived transactions are excluded from every sum.
- Global categories (payroll, loans, paperwork) are never credited to a
  project; they are summed company-wide in global_spend.
- Budgets, budget alerts and unbudgeted spend only consider ACTIVE
  projects. A closed project still shows its spend.
"""

from collections import defaultdict
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional

import structlog

from reno_ledger.models.ledger import (
    PROJECT_CATEGORIES,
    Allocation,
    ExpenseCategory,
    Project,
    ProjectStatus,
    Transaction,
    TransactionQuery,
    to_money,
)
from reno_ledger.models.stats import (
    ZERO,
    BudgetAlert,
    CategoryStat,
    DashboardStats,
    FixedVariableSplit,
    ProjectSpend,
    UnbudgetedSpend,
)
from reno_ledger.services.storage.interface import LedgerStorageInterface


def percentage_of(spent: Decimal, budget: Decimal) -> Decimal:
    """spent / budget x 100 at two decimals; zero when there is no budget."""
    if budget <= 0:
        return ZERO
    return (spent / budget * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def whole_percentage(spent: Decimal, budget: Decimal) -> int:
    return int((spent / budget * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class BudgetAggregator:
    """
    Computes budget-vs-consumption statistics.

    GUARANTEES:
    - Read-only: never writes to storage
    - Deterministic for a given ledger state and clock
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._storage = storage
        self._clock = clock
        self._logger = structlog.get_logger()

    async def compute_stats(self, project_id: Optional[int] = None) -> DashboardStats:
        """
        Compute dashboard statistics, optionally scoped to one project.

        Company-wide figures (global_spend, transactions_without_project,
        active_projects) are never narrowed by the project filter.
        """
        projects = await self._storage.list_projects()
        expenses = await self._storage.list_transactions(
            TransactionQuery(expenses_only=True)
        )
        allocations = await self._storage.list_allocations(project_id)

        by_id = {t.id: t for t in expenses}
        scoped_projects = [
            p for p in projects
            if project_id is None or p.id == project_id
        ]
        active = [p for p in scoped_projects if p.status == ProjectStatus.ACTIVE]

        # Only expense allocations on live transactions count as spend
        spend_allocations = [
            a for a in allocations
            if a.amount < 0 and a.transaction_id in by_id
        ]

        project_spend = self._project_spend(scoped_projects, spend_allocations, by_id)
        spend_by_project = {entry.project_id: entry for entry in project_spend}

        category_stats = self._category_stats(active, spend_by_project)
        alerts = self._budget_alerts(active, spend_by_project)
        unbudgeted = self._unbudgeted_spend(active, spend_by_project)

        if project_id is None:
            fixed_variable, fixed_by_category = self._fixed_split(
                (t.is_fixed, t.expense_category, -t.amount) for t in expenses
            )
            total_spent = to_money(sum((-t.amount for t in expenses), ZERO))
        else:
            fixed_variable, fixed_by_category = self._fixed_split(
                (
                    by_id[a.transaction_id].is_fixed,
                    by_id[a.transaction_id].expense_category,
                    -a.amount,
                )
                for a in spend_allocations
            )
            total_spent = to_money(sum((-a.amount for a in spend_allocations), ZERO))

        total_budget = to_money(sum((p.total_budget for p in active), ZERO))

        stats = DashboardStats(
            project_id=project_id,
            project_spend=project_spend,
            category_stats=category_stats,
            global_spend=self._global_spend(expenses),
            unbudgeted_spend=unbudgeted,
            budget_alerts=alerts,
            fixed_variable=fixed_variable,
            fixed_by_category=fixed_by_category,
            total_budget=total_budget,
            total_spent=total_spent,
            total_budget_percentage=percentage_of(total_spent, total_budget),
            total_spent_this_month=self._spent_this_month(
                project_id, expenses, spend_allocations, by_id
            ),
            transactions_without_invoice=await self._count_without_invoice(
                project_id, expenses
            ),
            transactions_without_project=await self._count_without_project(expenses),
            active_projects=sum(1 for p in projects if p.status == ProjectStatus.ACTIVE),
        )

        self._logger.debug(
            "stats_computed",
            project_id=project_id,
            total_spent=str(stats.total_spent),
            alerts=len(stats.budget_alerts),
        )
        return stats

    def _project_spend(
        self,
        projects: list[Project],
        allocations: list[Allocation],
        transactions: dict[int, Transaction],
    ) -> list[ProjectSpend]:
        totals: dict[int, Decimal] = defaultdict(lambda: ZERO)
        by_category: dict[int, dict[ExpenseCategory, Decimal]] = defaultdict(
            lambda: defaultdict(lambda: ZERO)
        )

        for allocation in allocations:
            category = transactions[allocation.transaction_id].expense_category
            if category is not None and category.is_global:
                continue
            totals[allocation.project_id] += -allocation.amount
            if category is not None:
                by_category[allocation.project_id][category] += -allocation.amount

        result = []
        for project in sorted(projects, key=lambda p: p.id):
            spent = to_money(totals[project.id])
            result.append(ProjectSpend(
                project_id=project.id,
                project_name=project.name,
                budget=project.total_budget,
                spent=spent,
                percentage=percentage_of(spent, project.total_budget),
                by_category={
                    category: to_money(amount)
                    for category, amount in by_category[project.id].items()
                },
            ))
        return result

    def _category_stats(
        self,
        active: list[Project],
        spend_by_project: dict[int, ProjectSpend],
    ) -> list[CategoryStat]:
        stats = []
        for category in PROJECT_CATEGORIES:
            budget = sum(
                (p.budget_for(category) for p in active),
                ZERO,
            )
            spent = sum(
                (entry.by_category.get(category, ZERO) for entry in spend_by_project.values()),
                ZERO,
            )
            stats.append(CategoryStat(
                category=category,
                budget=to_money(budget),
                spent=to_money(spent),
                percentage=percentage_of(spent, budget),
            ))
        return stats

    def _budget_alerts(
        self,
        active: list[Project],
        spend_by_project: dict[int, ProjectSpend],
    ) -> list[BudgetAlert]:
        alerts = []
        for project in sorted(active, key=lambda p: p.id):
            entry = spend_by_project[project.id]

            if project.total_budget > 0 and entry.spent > project.total_budget:
                alerts.append(BudgetAlert(
                    project_id=project.id,
                    project_name=project.name,
                    category=None,
                    budget=project.total_budget,
                    spent=entry.spent,
                    percentage=whole_percentage(entry.spent, project.total_budget),
                ))

            for category in PROJECT_CATEGORIES:
                budget = project.budget_for(category)
                if budget <= 0:
                    continue
                spent = entry.by_category.get(category, ZERO)
                if spent > budget:
                    alerts.append(BudgetAlert(
                        project_id=project.id,
                        project_name=project.name,
                        category=category,
                        budget=budget,
                        spent=spent,
                        percentage=whole_percentage(spent, budget),
                    ))
        return alerts

    def _unbudgeted_spend(
        self,
        active: list[Project],
        spend_by_project: dict[int, ProjectSpend],
    ) -> list[UnbudgetedSpend]:
        result = []
        for project in sorted(active, key=lambda p: p.id):
            entry = spend_by_project[project.id]
            for category in PROJECT_CATEGORIES:
                spent = entry.by_category.get(category, ZERO)
                if spent > 0 and project.budget_for(category) <= 0:
                    result.append(UnbudgetedSpend(
                        project_id=project.id,
                        project_name=project.name,
                        category=category,
                        spent=spent,
                    ))
        return result

    def _global_spend(self, expenses: list[Transaction]) -> dict[ExpenseCategory, Decimal]:
        totals: dict[ExpenseCategory, Decimal] = {
            category: ZERO for category in ExpenseCategory if category.is_global
        }
        for transaction in expenses:
            category = transaction.expense_category
            if category is not None and category.is_global:
                totals[category] += -transaction.amount
        return {category: to_money(amount) for category, amount in totals.items()}

    def _fixed_split(self, rows) -> tuple[FixedVariableSplit, dict[ExpenseCategory, Decimal]]:
        """rows: (is_fixed, category, positive amount) tuples."""
        fixed = ZERO
        variable = ZERO
        fixed_by_category: dict[ExpenseCategory, Decimal] = defaultdict(lambda: ZERO)
        for is_fixed, category, amount in rows:
            if is_fixed:
                fixed += amount
                if category is not None:
                    fixed_by_category[category] += amount
            else:
                variable += amount
        split = FixedVariableSplit(fixed=to_money(fixed), variable=to_money(variable))
        return split, {c: to_money(a) for c, a in fixed_by_category.items()}

    def _spent_this_month(
        self,
        project_id: Optional[int],
        expenses: list[Transaction],
        allocations: list[Allocation],
        transactions: dict[int, Transaction],
    ) -> Decimal:
        today = self._clock().date()

        def in_month(day: date) -> bool:
            return day.year == today.year and day.month == today.month

        if project_id is None:
            total = sum((-t.amount for t in expenses if in_month(t.date)), ZERO)
        else:
            total = sum(
                (
                    -a.amount for a in allocations
                    if in_month(transactions[a.transaction_id].date)
                ),
                ZERO,
            )
        return to_money(total)

    async def _count_without_invoice(
        self,
        project_id: Optional[int],
        expenses: list[Transaction],
    ) -> int:
        candidates = [
            t for t in expenses
            if not t.has_invoice
            and not (t.expense_category is not None and t.expense_category.is_invoice_exempt)
        ]
        if project_id is None:
            return len(candidates)

        count = 0
        for transaction in candidates:
            allocations = await self._storage.get_allocations(transaction.id)
            if any(a.project_id == project_id for a in allocations):
                count += 1
        return count

    async def _count_without_project(self, expenses: list[Transaction]) -> int:
        assigned = {a.transaction_id for a in await self._storage.list_allocations()}
        return sum(1 for t in expenses if t.id not in assigned)
