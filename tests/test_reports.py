"""Financial summary, category and monthly spend, balance overview and reconciliation."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, timedelta
from decimal import Decimal

import pytest

from pettycash.models.enums import UserRole
from pettycash.models.transaction import Transaction
from pettycash.models.user import User
from pettycash.services import ServiceContainer
from pettycash.services.reports import ReportService


@pytest.fixture
def reports(services: ServiceContainer) -> ReportService:
    return services["report_service"]


@pytest.fixture
def ledger_activity(
    services: ServiceContainer,
    admin: User,
    make_user: Callable[..., User],
    claim: Callable[..., Transaction],
    fund: Callable[[Decimal], None],
) -> dict[str, User]:
    """Fund 1000; one approved (300), one rejected (50), one pending (120)
    for an employee, plus one pending (40) for somebody else."""
    fund(Decimal("1000"))
    workflow = services["transaction_workflow_service"]
    employee = make_user(UserRole.EMPLOYEE)
    other = make_user(UserRole.EMPLOYEE)

    approved = claim(employee, amount="300")
    assert workflow.approve_transaction(approved.id, admin).success
    rejected = claim(employee, amount="50")
    assert workflow.reject_transaction(rejected.id, admin, "personal expense").success
    claim(employee, amount="120")
    claim(other, amount="40")
    return {"employee": employee, "other": other}


class TestFinancialSummary:

    def test_admin_sees_everything_and_fund_totals(
        self, reports: ReportService, admin: User, ledger_activity: dict[str, User],
    ) -> None:
        summary = reports.financial_summary(admin).data

        assert summary.pending.count == 2
        assert summary.pending.total == Decimal("160.00")
        assert summary.approved.total == Decimal("300.00")
        assert summary.rejected.total == Decimal("50.00")
        assert summary.fund_transfers is not None
        assert summary.fund_transfers.total_amount == Decimal("1000.00")

    def test_employee_summary_is_scoped_without_fund_totals(
        self, reports: ReportService, ledger_activity: dict[str, User],
    ) -> None:
        summary = reports.financial_summary(ledger_activity["employee"]).data

        assert summary.pending.count == 1
        assert summary.pending.total == Decimal("120.00")
        assert summary.approved.count == 1
        assert summary.rejected.count == 1
        assert summary.fund_transfers is None

    def test_date_range_excludes_todays_claims(
        self, reports: ReportService, admin: User, ledger_activity: dict[str, User],
    ) -> None:
        yesterday = date.today() - timedelta(days=1)
        summary = reports.financial_summary(admin, end=yesterday).data
        assert summary.pending.count == 0
        assert summary.approved.count == 0


class TestBalanceOverview:

    def test_committed_is_the_pending_total(
        self, reports: ReportService, ledger_activity: dict[str, User],
    ) -> None:
        overview = reports.balance_overview().data

        assert overview.current_balance == Decimal("700.00")
        assert overview.committed_expenses == Decimal("160.00")
        assert overview.available_funds == Decimal("540.00")
        assert overview.total_received == Decimal("1000.00")
        assert overview.total_spent == Decimal("300.00")


class TestReconciliation:

    def test_balanced_ledger(
        self, reports: ReportService, ledger_activity: dict[str, User],
    ) -> None:
        report = reports.reconciliation(actual_cash=Decimal("690")).data

        assert report.expected_balance == Decimal("700.00")
        assert report.system_discrepancy == Decimal("0.00")
        assert report.ledger_drift == Decimal("0.00")
        assert report.cash_discrepancy == Decimal("-10.00")

    def test_without_cash_count(self, reports: ReportService) -> None:
        report = reports.reconciliation().data
        assert report.actual_cash is None
        assert report.cash_discrepancy is None

    def test_deleted_transfer_shows_drift(
        self, services: ServiceContainer, reports: ReportService, admin: User,
    ) -> None:
        transfers = services["fund_transfer_service"]
        added = transfers.add_funds(
            {"transfer_type": "cash", "amount": "1000", "transfer_date": "2024-05-01"}, admin,
        )
        transfers.delete_fund_transfer(added.data.id, admin)

        report = reports.reconciliation().data

        assert report.total_transfers == Decimal("0")
        assert report.system_balance == Decimal("0.00")
        assert report.system_discrepancy == Decimal("0.00")
        assert report.ledger_drift == Decimal("-1000.00")

    def test_cleared_history_shows_system_discrepancy(
        self, services: ServiceContainer, reports: ReportService, admin: User,
        fund: Callable[[Decimal], None],
    ) -> None:
        fund(Decimal("500"))
        services["fund_transfer_service"].clear_history(admin)

        report = reports.reconciliation().data
        assert report.system_discrepancy == Decimal("500.00")
        assert report.ledger_drift == Decimal("0.00")


@pytest.fixture
def spend_history(
    services: ServiceContainer,
    admin: User,
    make_user: Callable[..., User],
    claim: Callable[..., Transaction],
    fund: Callable[[Decimal], None],
) -> dict[str, User]:
    """Approved spend across a manager's team and one outsider, dated in 2023 and 2024."""
    fund(Decimal("5000"))
    workflow = services["transaction_workflow_service"]
    manager = make_user(UserRole.MANAGER)
    employee = make_user(UserRole.EMPLOYEE, manager=manager)
    outsider = make_user(UserRole.EMPLOYEE)

    def approved(user: User, amount: str, category: str, on: str) -> Transaction:
        txn = claim(user, amount=amount, category=category, transaction_date=on)
        assert workflow.approve_transaction(txn.id, admin).success
        return txn

    approved(employee, "100", "Travel", "2024-03-05")
    approved(employee, "300", "Travel", "2024-03-20")
    approved(employee, "50", "Meals", "2024-07-01")
    approved(employee, "70", "Travel", "2023-12-30")
    approved(manager, "200", "Meals", "2024-07-15")
    office = approved(outsider, "1000", "Office", "2024-11-02")
    assert workflow.mark_as_paid(office.id, admin).success
    claim(employee, amount="999", category="Travel", transaction_date="2024-03-10")
    return {"manager": manager, "employee": employee, "outsider": outsider}


_YEAR_2024 = {"start": date(2024, 1, 1), "end": date(2024, 12, 31)}


class TestCategoryBreakdown:

    def test_admin_sees_every_category_largest_first(
        self, reports: ReportService, admin: User, spend_history: dict[str, User],
    ) -> None:
        rows = reports.category_breakdown(admin, **_YEAR_2024).data

        assert [(r.category, r.count, r.total) for r in rows] == [
            ("Office", 1, Decimal("1000.00")),
            ("Travel", 2, Decimal("400.00")),
            ("Meals", 2, Decimal("250.00")),
        ]
        travel = rows[1]
        assert (travel.average, travel.minimum, travel.maximum) == (
            Decimal("200.00"), Decimal("100.00"), Decimal("300.00"),
        )

    def test_employee_sees_only_own_spend(
        self, reports: ReportService, spend_history: dict[str, User],
    ) -> None:
        rows = reports.category_breakdown(spend_history["employee"], **_YEAR_2024).data
        assert [(r.category, r.total) for r in rows] == [
            ("Travel", Decimal("400.00")),
            ("Meals", Decimal("50.00")),
        ]

    def test_manager_sees_own_and_team_spend(
        self, reports: ReportService, spend_history: dict[str, User],
    ) -> None:
        rows = reports.category_breakdown(spend_history["manager"], **_YEAR_2024).data
        assert {r.category: r.total for r in rows} == {
            "Travel": Decimal("400.00"),
            "Meals": Decimal("250.00"),
        }

    def test_pending_claims_are_not_spend(
        self, reports: ReportService, admin: User, spend_history: dict[str, User],
    ) -> None:
        rows = reports.category_breakdown(admin).data
        travel = next(r for r in rows if r.category == "Travel")
        assert travel.count == 3
        assert travel.total == Decimal("470.00")


class TestMonthlyTrend:

    def test_admin_trend_covers_all_twelve_months(
        self, reports: ReportService, admin: User, spend_history: dict[str, User],
    ) -> None:
        trend = reports.monthly_trend(admin, 2024).data

        assert trend.year == 2024
        assert [m.month_number for m in trend.months] == list(range(1, 13))
        by_month = {m.month: (m.count, m.total) for m in trend.months}
        assert by_month["March"] == (2, Decimal("400.00"))
        assert by_month["July"] == (2, Decimal("250.00"))
        assert by_month["November"] == (1, Decimal("1000.00"))
        assert by_month["January"] == (0, Decimal("0.00"))

    def test_employee_and_manager_trends_are_scoped(
        self, reports: ReportService, spend_history: dict[str, User],
    ) -> None:
        employee = reports.monthly_trend(spend_history["employee"], 2024).data
        manager = reports.monthly_trend(spend_history["manager"], 2024).data

        assert employee.months[6].total == Decimal("50.00")
        assert employee.months[10].count == 0
        assert manager.months[6].total == Decimal("250.00")
        assert manager.months[10].count == 0

    def test_other_year(
        self, reports: ReportService, admin: User, spend_history: dict[str, User],
    ) -> None:
        trend = reports.monthly_trend(admin, 2023).data
        assert trend.months[11].total == Decimal("70.00")
        assert sum(m.count for m in trend.months) == 1

    def test_out_of_range_year_is_rejected(self, reports: ReportService, admin: User) -> None:
        assert reports.monthly_trend(admin, 0).status_code == 400
