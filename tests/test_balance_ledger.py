"""Balance ledger: atomic credit/debit, reversal, seeding and rollback."""

from __future__ import annotations

from decimal import Decimal

import pytest

from pettycash.config import AppConfig
from pettycash.database import DatabaseManager
from pettycash.exceptions import InsufficientBalanceError, ValidationError
from pettycash.logger import StructuredLogger
from pettycash.repositories.balance_repository import BalanceRepository
from pettycash.services import ServiceContainer
from pettycash.services.balance_ledger import BalanceLedgerService
from pettycash.utils.audit import fetch_audit_trail


@pytest.fixture
def ledger(services: ServiceContainer) -> BalanceLedgerService:
    return services["balance_ledger"]


class TestBalanceLedger:

    def test_ensure_exists_seeds_configured_opening_balance(
        self, db: DatabaseManager, logger: StructuredLogger,
    ) -> None:
        config = AppConfig(_env_file=None, DEFAULT_OPENING_BALANCE=Decimal("250"))
        ledger = BalanceLedgerService(BalanceRepository(db, logger), config, logger)

        balance = ledger.ensure_exists()
        assert balance.current_balance == Decimal("250.00")
        assert balance.opening_balance == Decimal("250.00")
        assert ledger.ensure_exists().version == balance.version

    def test_credit_then_debit(self, ledger: BalanceLedgerService) -> None:
        ledger.credit(Decimal("1000"), "admin")
        balance = ledger.debit(Decimal("250.50"), "admin")

        assert balance.current_balance == Decimal("749.50")
        assert balance.total_received == Decimal("1000.00")
        assert balance.total_spent == Decimal("250.50")
        assert balance.version == 2
        assert balance.drift == Decimal("0")

    def test_debit_beyond_balance_changes_nothing(self, ledger: BalanceLedgerService) -> None:
        ledger.credit(Decimal("100"), "admin")

        with pytest.raises(InsufficientBalanceError) as excinfo:
            ledger.debit(Decimal("100.01"), "admin")

        assert excinfo.value.current_balance == Decimal("100.00")
        assert excinfo.value.required == Decimal("100.01")
        balance = ledger.ensure_exists()
        assert balance.current_balance == Decimal("100.00")
        assert balance.total_spent == Decimal("0.00")

    def test_debit_of_exact_balance_reaches_zero(self, ledger: BalanceLedgerService) -> None:
        ledger.credit(Decimal("75"), "admin")
        assert ledger.debit(Decimal("75"), "admin").current_balance == Decimal("0.00")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
    def test_non_positive_amounts_are_rejected(
        self, ledger: BalanceLedgerService, amount: Decimal,
    ) -> None:
        with pytest.raises(ValidationError):
            ledger.credit(amount, "admin")
        with pytest.raises(ValidationError):
            ledger.debit(amount, "admin")

    def test_reverse_credit_leaves_total_received_and_logs_adjustment(
        self, ledger: BalanceLedgerService, db: DatabaseManager,
    ) -> None:
        ledger.credit(Decimal("500"), "admin")
        balance = ledger.reverse_credit(Decimal("500"), "admin", "FT2024050001")

        assert balance.current_balance == Decimal("0.00")
        assert balance.total_received == Decimal("500.00")
        assert balance.drift == Decimal("-500.00")
        adjustments = fetch_audit_trail(db.sqlite, "Balance", action="LEDGER_ADJUSTMENT")
        assert len(adjustments) == 1
        assert adjustments[0].details["reference"] == "FT2024050001"
        assert adjustments[0].details["amount"] == "-500.00"

    def test_reverse_credit_can_go_negative(self, ledger: BalanceLedgerService) -> None:
        ledger.credit(Decimal("10"), "admin")
        ledger.debit(Decimal("10"), "admin")
        assert ledger.reverse_credit(Decimal("10"), "admin", "FT1").current_balance == Decimal("-10.00")

    def test_atomic_block_rolls_back_credit(
        self, ledger: BalanceLedgerService, db: DatabaseManager,
    ) -> None:
        ledger.ensure_exists()
        with pytest.raises(RuntimeError):
            with db.atomic():
                ledger.credit(Decimal("300"), "admin")
                raise RuntimeError("boom")

        assert ledger.ensure_exists().current_balance == Decimal("0.00")

    def test_get_current_balance_envelope(self, ledger: BalanceLedgerService) -> None:
        result = ledger.get_current_balance()
        assert result.success
        assert result.data.current_balance == Decimal("0.00")
