"""
Balance Ledger Service.

Owns every mutation of the singleton petty cash balance.  Debits go
through one conditional ``UPDATE`` so the balance can never drop below
zero, even with two approvals racing.

Internal callers (workflows, fund transfers) use :meth:`credit`,
:meth:`debit` and :meth:`reverse_credit`, which raise domain exceptions
and are meant to run inside ``DatabaseManager.atomic()``.
:meth:`get_current_balance` is the public, envelope-returning read.
"""

from __future__ import annotations

from decimal import Decimal

from pettycash.config import AppConfig
from pettycash.exceptions import InsufficientBalanceError, NotFoundError, ValidationError
from pettycash.logger import StructuredLogger
from pettycash.models.balance import Balance
from pettycash.models.service_models import ServiceResult
from pettycash.repositories.balance_repository import BalanceRepository
from pettycash.services.base_service import BaseService
from pettycash.utils.audit import log_audit_event
from pettycash.utils.money import round_money

_SYSTEM_ACTOR: str = "system"


class BalanceLedgerService(BaseService):
    """Credit, debit and adjustment operations on the shared balance."""

    def __init__(
        self,
        balance_repo: BalanceRepository,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._repo = balance_repo
        self._opening_balance: Decimal = round_money(config.DEFAULT_OPENING_BALANCE)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def ensure_exists(self) -> Balance:
        """Get-or-create the ledger row.

        Never raises: a storage failure is logged and answered with an
        unsaved zero balance so read paths keep working.
        """
        try:
            existing = self._repo.get()
            if existing is not None:
                return existing
            return self._repo.create_if_missing(self._opening_balance, _SYSTEM_ACTOR)
        except Exception as exc:
            self._logger.error("Could not load or create balance: %s", exc, exc_info=True)
            return Balance()

    def get_current_balance(self) -> ServiceResult[Balance]:
        try:
            return ServiceResult(success=True, data=self.ensure_exists())
        except Exception as exc:
            return self._unexpected_result("load the current balance", exc)

    # ------------------------------------------------------------------
    # Mutations (raise; call inside db.atomic())
    # ------------------------------------------------------------------

    def credit(self, amount: Decimal, actor_id: str) -> Balance:
        """Add *amount* to the current balance and to ``total_received``."""
        amount = self._positive(amount)
        self.ensure_exists()
        balance = self._repo.credit(amount, actor_id)
        if balance is None:
            raise NotFoundError("Balance record not found.")
        self._logger.info("Balance credited %s by %s -> %s", amount, actor_id, balance.current_balance)
        return balance

    def debit(self, amount: Decimal, actor_id: str) -> Balance:
        """Subtract *amount* and add it to ``total_spent``.

        Raises:
            InsufficientBalanceError: If the balance does not cover
                *amount*; the ledger is left untouched.
        """
        amount = self._positive(amount)
        current = self.ensure_exists()
        balance = self._repo.debit_if_sufficient(amount, actor_id)
        if balance is None:
            latest = self._repo.get() or current
            raise InsufficientBalanceError(latest.current_balance, amount)
        self._logger.info("Balance debited %s by %s -> %s", amount, actor_id, balance.current_balance)
        return balance

    def reverse_credit(self, amount: Decimal, actor_id: str, reference: str) -> Balance:
        """Take back a previously credited *amount* from the current balance.

        No sufficiency check and ``total_received`` is left as it was; the
        resulting drift shows up in the reconciliation report.  Recorded as
        a ``LEDGER_ADJUSTMENT`` audit event against *reference*.
        """
        amount = self._positive(amount)
        self.ensure_exists()
        balance = self._repo.adjust_current(-amount, actor_id)
        if balance is None:
            raise NotFoundError("Balance record not found.")
        self._logger.warning(
            "Ledger adjustment: reversed %s for %s; total_received unchanged.",
            amount,
            reference,
        )
        log_audit_event(
            logger=self._logger,
            action="LEDGER_ADJUSTMENT",
            entity_type="Balance",
            entity_id=str(balance.id),
            user_id=actor_id,
            details={
                "reference": reference,
                "amount": str(-amount),
                "current_balance": str(balance.current_balance),
                "drift": str(balance.drift),
            },
            conn=self._repo.sqlite,
        )
        return balance

    @staticmethod
    def _positive(amount: Decimal) -> Decimal:
        value = round_money(amount)
        if value <= 0:
            raise ValidationError("Amount must be greater than zero.")
        return value
