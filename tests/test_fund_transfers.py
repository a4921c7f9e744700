"""Fund transfers: credit, reversal, history clearing and stats."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from pettycash.models.enums import TransferType, UserRole
from pettycash.models.user import User
from pettycash.services import ServiceContainer
from pettycash.services.fund_transfer import FundTransferService
from pettycash.utils.general import utc_now


@pytest.fixture
def transfers(services: ServiceContainer) -> FundTransferService:
    return services["fund_transfer_service"]


def _bank(amount: str, **extra: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "transfer_type": "bank",
        "amount": amount,
        "transfer_date": "2024-05-03",
        "bank_name": "HDFC",
        "from_account": "XX-1234",
        "transaction_reference": "UTR998877",
    }
    payload.update(extra)
    return payload


def _cash(amount: str) -> dict[str, object]:
    return {"transfer_type": "cash", "amount": amount, "transfer_date": "2024-05-04"}


def _current(transfers: FundTransferService) -> Decimal:
    return transfers.get_current_balance().data.current_balance


class TestAddFunds:

    def test_add_then_delete_is_net_zero(
        self, transfers: FundTransferService, admin: User,
    ) -> None:
        before = _current(transfers)
        added = transfers.add_funds(_bank("1000"), admin)
        assert added.status_code == 201
        assert _current(transfers) == before + Decimal("1000")

        removed = transfers.delete_fund_transfer(added.data.id, admin)
        assert removed.success, removed.error
        assert removed.data.current_balance == before
        assert transfers.get_fund_transfer(added.data.id).status_code == 404

    def test_transfer_number_uses_ft_prefix(
        self, transfers: FundTransferService, admin: User,
    ) -> None:
        result = transfers.add_funds(_cash("10"), admin)
        assert result.data.transfer_id == f"FT{utc_now().strftime('%Y%m')}0001"

    def test_bank_transfer_needs_bank_details(
        self, transfers: FundTransferService, admin: User,
    ) -> None:
        result = transfers.add_funds(_bank("100", bank_name=None), admin)
        assert result.status_code == 400
        assert _current(transfers) == Decimal("0.00")

    @pytest.mark.parametrize("amount", ["0.001", "0.004"])
    def test_sub_cent_transfer_is_rejected(
        self, transfers: FundTransferService, admin: User, amount: str,
    ) -> None:
        result = transfers.add_funds(_cash(amount), admin)
        assert result.status_code == 400
        assert "amount" in result.error
        assert _current(transfers) == Decimal("0.00")

    def test_transfer_amount_is_rounded_to_cents(
        self, transfers: FundTransferService, admin: User,
    ) -> None:
        added = transfers.add_funds(_cash("250.005"), admin)

        assert added.data.amount == Decimal("250.01")
        assert transfers.get_fund_transfer(added.data.id).data.amount == Decimal("250.01")
        assert _current(transfers) == Decimal("250.01")

    @pytest.mark.parametrize("role", [UserRole.EMPLOYEE, UserRole.FINANCE, UserRole.AUDITOR])
    def test_only_admin_and_manager_may_fund(
        self,
        transfers: FundTransferService,
        make_user: Callable[..., User],
        role: UserRole,
    ) -> None:
        result = transfers.add_funds(_cash("50"), make_user(role))
        assert result.status_code == 403

    def test_manager_may_fund(
        self, transfers: FundTransferService, make_user: Callable[..., User],
    ) -> None:
        assert transfers.add_funds(_cash("50"), make_user(UserRole.MANAGER)).success

    def test_preserve_timestamp_keeps_created_at(
        self, transfers: FundTransferService, admin: User,
    ) -> None:
        original = datetime(2023, 1, 15, 9, 30, tzinfo=timezone.utc)
        result = transfers.add_funds(
            {**_cash("20"), "preserve_timestamp": original.isoformat()}, admin,
        )
        stored = transfers.get_fund_transfer(result.data.id).data
        assert stored.created_at == original

    def test_delete_unknown_transfer(
        self, transfers: FundTransferService, admin: User,
    ) -> None:
        assert transfers.delete_fund_transfer("missing", admin).status_code == 404


class TestHistoryAndStats:

    def test_clear_history_leaves_balance(
        self, transfers: FundTransferService, admin: User,
    ) -> None:
        transfers.add_funds(_cash("300"), admin)
        transfers.add_funds(_bank("700"), admin)

        result = transfers.clear_history(admin)

        assert result.success
        assert result.data["deleted"] == 2
        assert result.data["unreversed_total"] == Decimal("1000.00")
        assert _current(transfers) == Decimal("1000.00")
        assert transfers.list_fund_transfers().data.total == 0

    def test_stats_by_type(self, transfers: FundTransferService, admin: User) -> None:
        transfers.add_funds(_cash("100"), admin)
        transfers.add_funds(_cash("50"), admin)
        transfers.add_funds(_bank("1000"), admin)

        stats = transfers.get_stats().data

        assert stats.total_amount == Decimal("1150.00")
        assert stats.transfer_count == 3
        by_type = {row.transfer_type: row for row in stats.by_type}
        assert by_type[TransferType.CASH].count == 2
        assert by_type[TransferType.CASH].total == Decimal("150.00")
        assert by_type[TransferType.BANK].total == Decimal("1000.00")

    def test_stats_respect_date_range(
        self, transfers: FundTransferService, admin: User,
    ) -> None:
        transfers.add_funds(_bank("1000"), admin)
        transfers.add_funds(_cash("100"), admin)

        stats = transfers.compute_stats(date(2024, 5, 4), date(2024, 5, 4))
        assert stats.total_amount == Decimal("100.00")

    def test_list_filters_by_type(
        self, transfers: FundTransferService, admin: User,
    ) -> None:
        transfers.add_funds(_bank("10"), admin)
        transfers.add_funds(_cash("20"), admin)

        page = transfers.list_fund_transfers({"transfer_type": "cash"}).data
        assert page.total == 1
        assert page.items[0].transfer_type == TransferType.CASH
