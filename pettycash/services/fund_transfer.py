"""
Fund Transfer Service.

Records bank and cash top-ups of the petty cash pool.  Every recorded
transfer credits the shared balance in the same SQLite transaction as the
insert; deleting a transfer takes the amount back out the same way.

Bulk history clearing deliberately leaves the balance alone; the warning
it logs names the total that was not reversed.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from pettycash.config import AppConfig
from pettycash.database import DatabaseManager
from pettycash.exceptions import AuthorizationError, NotFoundError, PettyCashError
from pettycash.logger import StructuredLogger
from pettycash.models.balance import Balance
from pettycash.models.enums import UserRole
from pettycash.models.fund_transfer import FundTransfer
from pettycash.models.service_models import (
    FundTransferInput,
    FundTransferListFilters,
    FundTransferStats,
    PaginatedResult,
    ServiceResult,
    TransferTypeTotal,
)
from pettycash.models.user import User
from pettycash.repositories.fund_transfer_repository import FundTransferRepository
from pettycash.services.balance_ledger import BalanceLedgerService
from pettycash.services.base_service import BaseService
from pettycash.services.numbering import DocumentNumberService
from pettycash.utils.audit import log_audit_event
from pettycash.utils.general import new_id, utc_now

_FUNDING_ROLES: frozenset[UserRole] = frozenset({UserRole.ADMIN, UserRole.MANAGER})


class FundTransferService(BaseService):
    """Service for recording, listing and removing fund transfers."""

    def __init__(
        self,
        db: DatabaseManager,
        transfer_repo: FundTransferRepository,
        ledger: BalanceLedgerService,
        numbering: DocumentNumberService,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._db = db
        self._repo = transfer_repo
        self._ledger = ledger
        self._numbering = numbering
        self._config = config

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_funds(
        self, payload: dict[str, object], current_user: User,
    ) -> ServiceResult[FundTransfer]:
        """
        Record a top-up and credit the balance by its amount.

        Bank transfers need ``bank_name``, ``from_account`` and
        ``transaction_reference``.  ``preserve_timestamp`` keeps an
        imported record's original ``created_at``.

        Returns:
            ServiceResult with the stored transfer and status 201.
        """
        try:
            self._require_funding_role(current_user)
            data = self._validate(FundTransferInput, payload)

            now = utc_now()
            with self._db.atomic():
                transfer = FundTransfer(
                    id=new_id(),
                    transfer_id=self._numbering.next_number(
                        self._config.FUND_TRANSFER_PREFIX, now.date(),
                    ),
                    **data.model_dump(exclude={"preserve_timestamp"}),
                    initiated_by=current_user.id,
                    created_at=data.preserve_timestamp or now,
                )
                self._repo.create(transfer)
                balance = self._ledger.credit(transfer.amount, current_user.id)
                log_audit_event(
                    logger=self._logger,
                    action="ADD_FUNDS",
                    entity_type="FundTransfer",
                    entity_id=transfer.id,
                    user_id=current_user.id,
                    details={
                        "transfer_id": transfer.transfer_id,
                        "transfer_type": str(transfer.transfer_type),
                        "amount": str(transfer.amount),
                        "balance_after": str(balance.current_balance),
                    },
                    conn=self._db.sqlite,
                )

            self._logger.info(
                "Fund transfer %s recorded: %s %s",
                transfer.transfer_id,
                transfer.currency,
                transfer.amount,
            )
            return ServiceResult(success=True, data=transfer, status_code=201)

        except PettyCashError as exc:
            self._logger.warning("Fund transfer refused for %s: %s", current_user.id, exc.message)
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("add funds", exc)

    def delete_fund_transfer(
        self, transfer_pk: str, current_user: User,
    ) -> ServiceResult[Balance]:
        """Remove one transfer and take its amount back off the balance.

        The reversal moves ``current_balance`` only, with no floor check;
        see :meth:`BalanceLedgerService.reverse_credit`.
        """
        try:
            self._require_funding_role(current_user)
            with self._db.atomic():
                transfer = self._repo.get_by_id(transfer_pk)
                if transfer is None:
                    raise NotFoundError("Fund transfer not found.")
                self._repo.delete(transfer.id)
                balance = self._ledger.reverse_credit(
                    transfer.amount, current_user.id, transfer.transfer_id,
                )
                log_audit_event(
                    logger=self._logger,
                    action="DELETE_FUND_TRANSFER",
                    entity_type="FundTransfer",
                    entity_id=transfer.id,
                    user_id=current_user.id,
                    details={
                        "transfer_id": transfer.transfer_id,
                        "amount": str(transfer.amount),
                        "balance_after": str(balance.current_balance),
                    },
                    conn=self._db.sqlite,
                )
            return ServiceResult(success=True, data=balance)
        except PettyCashError as exc:
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("delete fund transfer", exc)

    def clear_history(self, current_user: User) -> ServiceResult[dict[str, object]]:
        """Delete every transfer record without touching the balance."""
        try:
            self._require_funding_role(current_user)
            with self._db.atomic():
                count, total = self._repo.delete_all()
                log_audit_event(
                    logger=self._logger,
                    action="CLEAR_FUND_HISTORY",
                    entity_type="FundTransfer",
                    entity_id="*",
                    user_id=current_user.id,
                    details={"deleted": count, "unreversed_total": str(total)},
                    conn=self._db.sqlite,
                )
            self._logger.warning(
                "Fund transfer history cleared by %s: %d records removed; "
                "%s credited to the balance was not reversed.",
                current_user.id,
                count,
                total,
            )
            return ServiceResult(
                success=True, data={"deleted": count, "unreversed_total": total},
            )
        except PettyCashError as exc:
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("clear fund transfer history", exc)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_fund_transfers(
        self, filters: Optional[dict[str, object]] = None,
    ) -> ServiceResult[PaginatedResult[FundTransfer]]:
        try:
            opts = self._validate(FundTransferListFilters, filters)
            items, total = self._repo.list_transfers(
                transfer_type=opts.transfer_type,
                start=opts.start_date,
                end=opts.end_date,
                limit=opts.per_page,
                offset=(opts.page - 1) * opts.per_page,
            )
            return ServiceResult(
                success=True,
                data=PaginatedResult[FundTransfer](
                    items=items, total=total, page=opts.page, per_page=opts.per_page,
                ),
            )
        except PettyCashError as exc:
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("list fund transfers", exc)

    def get_fund_transfer(self, transfer_pk: str) -> ServiceResult[FundTransfer]:
        try:
            transfer = self._repo.get_by_id(transfer_pk)
            if transfer is None:
                raise NotFoundError("Fund transfer not found.")
            return ServiceResult(success=True, data=transfer)
        except PettyCashError as exc:
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("retrieve fund transfer", exc)

    def get_stats(
        self, start: Optional[date] = None, end: Optional[date] = None,
    ) -> ServiceResult[FundTransferStats]:
        try:
            return ServiceResult(success=True, data=self.compute_stats(start, end))
        except Exception as exc:
            return self._unexpected_result("compute fund transfer stats", exc)

    def compute_stats(
        self, start: Optional[date] = None, end: Optional[date] = None,
    ) -> FundTransferStats:
        """Completed-transfer totals by type; raises on storage errors."""
        by_type = self._repo.totals_by_type(start, end)
        rows = [
            TransferTypeTotal(transfer_type=kind, count=count, total=total)
            for kind, (count, total) in sorted(by_type.items())
        ]
        return FundTransferStats(
            total_amount=sum((r.total for r in rows), Decimal("0")),
            transfer_count=sum(r.count for r in rows),
            by_type=rows,
        )

    def get_current_balance(self) -> ServiceResult[Balance]:
        return self._ledger.get_current_balance()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_funding_role(self, current_user: User) -> None:
        self._require_active(current_user)
        if current_user.role not in _FUNDING_ROLES:
            raise AuthorizationError("Only admins and managers can manage fund transfers.")
