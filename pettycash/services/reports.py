"""
Report Service.

Read-only aggregates over claims, transfers and the ledger row.  Expense
figures always go through :class:`TransactionQuery`, so a report can
never show more than the acting user could list.
"""

from __future__ import annotations

import calendar
from datetime import date
from decimal import Decimal
from typing import Optional

from pettycash.exceptions import PettyCashError, ValidationError
from pettycash.logger import StructuredLogger
from pettycash.models.access import VisibilityScope
from pettycash.models.enums import ScopeKind, TransactionStatus, UserRole
from pettycash.models.service_models import (
    BalanceOverview,
    CategoryTotal,
    ExpenseBucket,
    FinancialSummary,
    MonthlyTrend,
    MonthTotal,
    ReconciliationReport,
    ServiceResult,
)
from pettycash.models.user import User
from pettycash.repositories.transaction_query import TransactionQuery
from pettycash.repositories.transaction_repository import TransactionRepository
from pettycash.services.balance_ledger import BalanceLedgerService
from pettycash.services.base_service import BaseService
from pettycash.services.fund_transfer import FundTransferService
from pettycash.services.role_hierarchy import RoleHierarchyResolver
from pettycash.utils.general import utc_now
from pettycash.utils.money import round_money

# Report buckets.  Every open approval state counts as committed money.
PENDING_BUCKET: tuple[TransactionStatus, ...] = (
    TransactionStatus.PENDING,
    TransactionStatus.PENDING_APPROVAL,
    TransactionStatus.PENDING_MANAGER,
    TransactionStatus.PENDING_FINANCE,
    TransactionStatus.INFO_REQUESTED,
)
APPROVED_BUCKET: tuple[TransactionStatus, ...] = (
    TransactionStatus.APPROVED,
    TransactionStatus.PAID,
)
REJECTED_BUCKET: tuple[TransactionStatus, ...] = (TransactionStatus.REJECTED,)

_FUND_REPORT_ROLES: frozenset[UserRole] = frozenset({UserRole.ADMIN, UserRole.MANAGER})
_SYSTEM_SCOPE = VisibilityScope(kind=ScopeKind.ALL, user_id="system")


def _bucket(
    totals: dict[TransactionStatus, tuple[int, Decimal]],
    statuses: tuple[TransactionStatus, ...],
) -> ExpenseBucket:
    count = 0
    total = Decimal("0")
    for status in statuses:
        n, amount = totals.get(status, (0, Decimal("0")))
        count += n
        total += amount
    return ExpenseBucket(count=count, total=round_money(total))


class ReportService(BaseService):
    """Financial summary, spend breakdowns, balance overview and reconciliation."""

    def __init__(
        self,
        transaction_repo: TransactionRepository,
        resolver: RoleHierarchyResolver,
        ledger: BalanceLedgerService,
        fund_transfers: FundTransferService,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._tx_repo = transaction_repo
        self._resolver = resolver
        self._ledger = ledger
        self._fund_transfers = fund_transfers

    def financial_summary(
        self,
        current_user: User,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> ServiceResult[FinancialSummary]:
        """
        Expense totals grouped into pending, approved and rejected.

        Expense figures are limited to the user's visibility scope.  Fund
        transfer totals are only included for admins and managers.
        """
        try:
            self._require_active(current_user)
            query = TransactionQuery.for_scope(
                self._resolver.resolve_scope(current_user)
            ).with_date_range(start, end)
            totals = self._tx_repo.totals_by_status(query)

            fund_stats = None
            if current_user.role in _FUND_REPORT_ROLES:
                fund_stats = self._fund_transfers.compute_stats(start, end)

            return ServiceResult(
                success=True,
                data=FinancialSummary(
                    start_date=start,
                    end_date=end,
                    fund_transfers=fund_stats,
                    pending=_bucket(totals, PENDING_BUCKET),
                    approved=_bucket(totals, APPROVED_BUCKET),
                    rejected=_bucket(totals, REJECTED_BUCKET),
                ),
            )
        except PettyCashError as exc:
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("build financial summary", exc)

    def category_breakdown(
        self,
        current_user: User,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> ServiceResult[list[CategoryTotal]]:
        """Approved and paid spend per category, largest first, within the user's scope."""
        try:
            query = self._approved_spend(current_user).with_date_range(start, end)
            rows = self._tx_repo.totals_by_category(query)
            return ServiceResult(
                success=True,
                data=[
                    CategoryTotal(
                        category=category,
                        count=count,
                        total=total,
                        average=round_money(total / count),
                        minimum=low,
                        maximum=high,
                    )
                    for category, count, total, low, high in rows
                ],
            )
        except PettyCashError as exc:
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("build category report", exc)

    def monthly_trend(
        self, current_user: User, year: Optional[int] = None,
    ) -> ServiceResult[MonthlyTrend]:
        """Approved and paid spend for each month of *year* (default: this year)."""
        try:
            target = year if year is not None else utc_now().year
            if not date.min.year <= target <= date.max.year:
                raise ValidationError(f"year: {target} is out of range")
            query = self._approved_spend(current_user).with_date_range(
                date(target, 1, 1), date(target, 12, 31),
            )
            by_month = self._tx_repo.totals_by_month(query)
            months = []
            for number in range(1, 13):
                count, total = by_month.get(number, (0, Decimal("0.00")))
                months.append(
                    MonthTotal(
                        month=calendar.month_name[number],
                        month_number=number,
                        count=count,
                        total=total,
                    )
                )
            return ServiceResult(success=True, data=MonthlyTrend(year=target, months=months))
        except PettyCashError as exc:
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("build monthly trend", exc)

    def balance_overview(self) -> ServiceResult[BalanceOverview]:
        """Current balance less money committed to open claims."""
        try:
            balance = self._ledger.ensure_exists()
            totals = self._tx_repo.totals_by_status(TransactionQuery.for_scope(_SYSTEM_SCOPE))
            committed = _bucket(totals, PENDING_BUCKET).total
            return ServiceResult(
                success=True,
                data=BalanceOverview(
                    current_balance=balance.current_balance,
                    committed_expenses=committed,
                    available_funds=balance.current_balance - committed,
                    total_received=balance.total_received,
                    total_spent=balance.total_spent,
                ),
            )
        except Exception as exc:
            return self._unexpected_result("build balance overview", exc)

    def reconciliation(
        self, actual_cash: Optional[Decimal] = None,
    ) -> ServiceResult[ReconciliationReport]:
        """
        Compare expected cash with the ledger and, optionally, a cash count.

        ``expected = opening + completed transfers - approved/paid claims``.
        Transfers deleted or cleared since they were credited no longer
        count towards ``expected``; ``ledger_drift`` shows what the stored
        totals disagree on.
        """
        try:
            balance = self._ledger.ensure_exists()
            transfers = self._fund_transfers.compute_stats().total_amount
            totals = self._tx_repo.totals_by_status(TransactionQuery.for_scope(_SYSTEM_SCOPE))
            expenses = _bucket(totals, APPROVED_BUCKET).total
            expected = round_money(balance.opening_balance + transfers - expenses)

            cash: Optional[Decimal] = None
            cash_gap: Optional[Decimal] = None
            if actual_cash is not None:
                cash = round_money(actual_cash)
                cash_gap = cash - expected

            report = ReconciliationReport(
                opening_balance=balance.opening_balance,
                total_transfers=transfers,
                total_expenses=expenses,
                expected_balance=expected,
                system_balance=balance.current_balance,
                system_discrepancy=balance.current_balance - expected,
                ledger_drift=balance.drift,
                actual_cash=cash,
                cash_discrepancy=cash_gap,
            )
            if report.system_discrepancy or report.ledger_drift:
                self._logger.warning(
                    "Reconciliation mismatch: system discrepancy %s, ledger drift %s",
                    report.system_discrepancy,
                    report.ledger_drift,
                )
            return ServiceResult(success=True, data=report)
        except Exception as exc:
            return self._unexpected_result("reconcile balance", exc)

    def _approved_spend(self, current_user: User) -> TransactionQuery:
        self._require_active(current_user)
        return TransactionQuery.for_scope(
            self._resolver.resolve_scope(current_user)
        ).with_status(*APPROVED_BUCKET)
