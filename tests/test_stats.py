"""
Tests for budget aggregation.

Scenario (clock: 2026-03-15):
    A  ACTIVE     budget 550,  MATERIAL 500
    B  ACTIVE     budget 1000, MATERIAL 1000
    C  COMPLETED  budget 100,  MATERIAL 50

    t1  -1000  03-10  MATERIAL    split A -600 / B -400
    t2   -200  02-01  DECORACION  B, fixed
    t3   -300  03-05  SUELDOS     A, fixed (global category)
    t4    -80  03-01  MATERIAL    C
    t5    -50  03-02  MATERIAL    A, archived
    t6   +500  03-03  income, unassigned
    t7    -40  03-04  OTROS       unassigned
"""

from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio

from conftest import make_project, make_transaction
from reno_ledger.models import ExpenseCategory, ProjectStatus
from reno_ledger.queries import BudgetAggregator

MATERIAL = ExpenseCategory.MATERIAL_Y_MANO_DE_OBRA


@pytest_asyncio.fixture
async def scenario(storage, ledger):
    a = await make_project(storage, "A", "550", {MATERIAL: "500"})
    b = await make_project(storage, "B", "1000", {MATERIAL: "1000"})
    c = await make_project(
        storage, "C", "100", {MATERIAL: "50"}, status=ProjectStatus.COMPLETED
    )

    t1 = await make_transaction(storage, "-1000.00", day=date(2026, 3, 10), category=MATERIAL)
    await ledger.replace_allocations(t1.id, [(a.id, Decimal("-600")), (b.id, Decimal("-400"))])

    t2 = await make_transaction(
        storage, "-200.00", day=date(2026, 2, 1),
        category=ExpenseCategory.DECORACION, is_fixed=True,
    )
    await ledger.assign_project(t2.id, b.id)

    t3 = await make_transaction(
        storage, "-300.00", day=date(2026, 3, 5),
        category=ExpenseCategory.SUELDOS, is_fixed=True,
    )
    await ledger.assign_project(t3.id, a.id)

    t4 = await make_transaction(storage, "-80.00", day=date(2026, 3, 1), category=MATERIAL)
    await ledger.assign_project(t4.id, c.id)

    t5 = await make_transaction(
        storage, "-50.00", day=date(2026, 3, 2), category=MATERIAL, is_archived=True
    )
    await ledger.assign_project(t5.id, a.id)

    await make_transaction(storage, "500.00", concept="INGRESO", day=date(2026, 3, 3))
    await make_transaction(
        storage, "-40.00", day=date(2026, 3, 4), category=ExpenseCategory.OTROS
    )

    return {"A": a, "B": b, "C": c}


@pytest.fixture
def aggregator(storage, clock):
    return BudgetAggregator(storage, clock=clock)


class TestCompanyWideStats:

    @pytest.mark.asyncio
    async def test_projects_are_credited_their_allocations_only(self, scenario, aggregator):
        stats = await aggregator.compute_stats()

        assert stats.spend_for(scenario["A"].id) == Decimal("600.00")
        assert stats.spend_for(scenario["B"].id) == Decimal("600.00")
        assert stats.spend_for(scenario["C"].id) == Decimal("80.00")

        spend_b = next(s for s in stats.project_spend if s.project_id == scenario["B"].id)
        assert spend_b.by_category == {
            MATERIAL: Decimal("400.00"),
            ExpenseCategory.DECORACION: Decimal("200.00"),
        }

    @pytest.mark.asyncio
    async def test_global_categories_are_company_wide(self, scenario, aggregator):
        stats = await aggregator.compute_stats()

        assert stats.global_spend[ExpenseCategory.SUELDOS] == Decimal("300.00")
        assert stats.global_spend[ExpenseCategory.PRESTAMOS] == Decimal("0.00")
        spend_a = next(s for s in stats.project_spend if s.project_id == scenario["A"].id)
        assert ExpenseCategory.SUELDOS not in spend_a.by_category

    @pytest.mark.asyncio
    async def test_category_stats(self, scenario, aggregator):
        stats = await aggregator.compute_stats()
        by_category = {s.category: s for s in stats.category_stats}

        assert ExpenseCategory.SUELDOS not in by_category
        assert by_category[MATERIAL].budget == Decimal("1500.00")
        assert by_category[MATERIAL].spent == Decimal("1080.00")
        assert by_category[MATERIAL].percentage == Decimal("72.00")
        assert by_category[ExpenseCategory.DECORACION].percentage == Decimal("0")

    @pytest.mark.asyncio
    async def test_budget_alerts(self, scenario, aggregator):
        stats = await aggregator.compute_stats()

        alerts = [
            (alert.project_id, alert.category, alert.percentage)
            for alert in stats.budget_alerts
        ]
        assert alerts == [
            (scenario["A"].id, None, 109),
            (scenario["A"].id, MATERIAL, 120),
        ]

    @pytest.mark.asyncio
    async def test_spend_without_budget_is_not_an_alert(self, scenario, aggregator):
        stats = await aggregator.compute_stats()

        assert [
            (u.project_id, u.category, u.spent) for u in stats.unbudgeted_spend
        ] == [(scenario["B"].id, ExpenseCategory.DECORACION, Decimal("200.00"))]

    @pytest.mark.asyncio
    async def test_fixed_variable_split(self, scenario, aggregator):
        stats = await aggregator.compute_stats()

        assert stats.fixed_variable.fixed == Decimal("500.00")
        assert stats.fixed_variable.variable == Decimal("1120.00")
        assert stats.fixed_by_category == {
            ExpenseCategory.DECORACION: Decimal("200.00"),
            ExpenseCategory.SUELDOS: Decimal("300.00"),
        }

    @pytest.mark.asyncio
    async def test_kpis(self, scenario, aggregator):
        stats = await aggregator.compute_stats()

        assert stats.total_budget == Decimal("1550.00")
        assert stats.total_spent == Decimal("1620.00")
        assert stats.total_budget_percentage == Decimal("104.52")
        assert stats.total_spent_this_month == Decimal("1420.00")
        assert stats.transactions_without_invoice == 4
        assert stats.transactions_without_project == 1
        assert stats.active_projects == 2

    @pytest.mark.asyncio
    async def test_empty_ledger(self, aggregator):
        stats = await aggregator.compute_stats()

        assert stats.project_spend == []
        assert stats.budget_alerts == []
        assert stats.total_spent == Decimal("0")
        assert stats.total_budget_percentage == Decimal("0")


class TestProjectScopedStats:

    @pytest.mark.asyncio
    async def test_scoped_to_one_project(self, scenario, aggregator):
        project_a = scenario["A"]

        stats = await aggregator.compute_stats(project_a.id)

        assert stats.project_id == project_a.id
        assert [s.project_id for s in stats.project_spend] == [project_a.id]
        assert stats.total_budget == Decimal("550.00")
        # Project totals include every allocation, global categories too
        assert stats.total_spent == Decimal("900.00")
        assert stats.fixed_variable.fixed == Decimal("300.00")
        assert stats.fixed_variable.variable == Decimal("600.00")
        assert stats.total_spent_this_month == Decimal("900.00")
        assert stats.transactions_without_invoice == 1

    @pytest.mark.asyncio
    async def test_closed_project_has_spend_but_no_alerts(self, scenario, aggregator):
        project_c = scenario["C"]

        stats = await aggregator.compute_stats(project_c.id)

        assert stats.spend_for(project_c.id) == Decimal("80.00")
        assert stats.budget_alerts == []
        assert stats.total_budget == Decimal("0")

    @pytest.mark.asyncio
    async def test_archiving_removes_spend(self, storage, scenario, aggregator, transactions):
        [t1] = [
            t for t in await storage.list_transactions()
            if t.amount == Decimal("-1000.00")
        ]
        await transactions.toggle_archive(t1.id)

        stats = await aggregator.compute_stats()

        assert stats.spend_for(scenario["A"].id) == Decimal("0")
        assert stats.budget_alerts == []
