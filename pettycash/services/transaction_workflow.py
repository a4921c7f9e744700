"""
Transaction Workflow Service.

State transitions on expense claims: submit, approve, reject, request
information and mark as paid.  Each transition follows the same shape:

1. Inside ``DatabaseManager.atomic()``: load the claim, let its
   :class:`ApprovalWorkflow` apply the guards and mutate it (debiting the
   balance where the protocol says so), then compare-and-swap the status
   write and record the audit event.  Any failure rolls everything back,
   including the debit.
2. After commit: notify the owner or approvers.  Notification failures
   are logged and never change the result.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from pettycash.database import DatabaseManager
from pettycash.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PettyCashError,
)
from pettycash.logger import StructuredLogger
from pettycash.models.balance import Balance
from pettycash.models.enums import ApprovalWorkflowKind, TransactionStatus, UserRole
from pettycash.models.service_models import ServiceResult
from pettycash.models.transaction import Transaction
from pettycash.models.user import User
from pettycash.repositories.budget_repository import BudgetRepository
from pettycash.repositories.transaction_repository import TransactionRepository
from pettycash.repositories.user_repository import UserRepository
from pettycash.services.approval_workflows import ApprovalWorkflow
from pettycash.services.base_service import BaseService
from pettycash.services.notification_service import Notifier
from pettycash.services.role_hierarchy import RoleHierarchyResolver
from pettycash.utils.audit import log_audit_event
from pettycash.utils.general import utc_now

_PAYMENT_ROLES: frozenset[UserRole] = frozenset({UserRole.ADMIN, UserRole.FINANCE})


class TransactionWorkflowService(BaseService):
    """Service handling claim state transitions."""

    def __init__(
        self,
        db: DatabaseManager,
        transaction_repo: TransactionRepository,
        user_repo: UserRepository,
        budget_repo: BudgetRepository,
        resolver: RoleHierarchyResolver,
        workflows: dict[ApprovalWorkflowKind, ApprovalWorkflow],
        notifier: Notifier,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._db = db
        self._tx_repo = transaction_repo
        self._user_repo = user_repo
        self._budget_repo = budget_repo
        self._resolver = resolver
        self._workflows = workflows
        self._notifier = notifier

    # ------------------------------------------------------------------
    # Public: submit_transaction
    # ------------------------------------------------------------------

    def submit_transaction(
        self, transaction_id: str, current_user: User,
    ) -> ServiceResult[Transaction]:
        """Move a draft claim into its protocol's first approval state."""
        try:
            self._require_active(current_user)
            with self._db.atomic():
                transaction = self._load(transaction_id)
                expected = transaction.status
                self._workflow_for(transaction).submit(transaction, current_user)
                self._save(transaction, expected)
                self._audit("SUBMIT", transaction, current_user, expected)

            submitter = self._owner_of(transaction) or current_user
            self._fire_and_forget(
                "Submission notification",
                self._notifier.notify_submitted,
                transaction,
                submitter,
                self._approvers_for(transaction, submitter),
            )
            return ServiceResult(success=True, data=transaction)
        except PettyCashError as exc:
            return self._rejected("submit", transaction_id, current_user, exc)
        except Exception as exc:
            return self._unexpected_result("submit transaction", exc)

    # ------------------------------------------------------------------
    # Public: approve_transaction
    # ------------------------------------------------------------------

    def approve_transaction(
        self,
        transaction_id: str,
        current_user: User,
        comments: Optional[str] = None,
    ) -> ServiceResult[Transaction]:
        """Approve a claim under its protocol.

        For simple claims the balance debit and the status change commit
        together; an insufficient balance leaves both untouched.
        """
        try:
            self._require_active(current_user)
            with self._db.atomic():
                transaction = self._load(transaction_id)
                expected = transaction.status
                owner = self._owner_of(transaction)
                balance: Optional[Balance] = self._workflow_for(transaction).approve(
                    transaction, current_user, comments,
                )
                self._save(transaction, expected)
                details: dict[str, Optional[str]] = {}
                if balance is not None:
                    details = {
                        "debited": str(transaction.post_tax_amount),
                        "balance_after": str(balance.current_balance),
                    }
                self._audit("APPROVE", transaction, current_user, expected, details)

            self._fire_and_forget(
                "Status notification",
                self._notifier.notify_status_update,
                transaction,
                owner,
                current_user,
                transaction.status,
                comments,
            )
            return ServiceResult(success=True, data=transaction)
        except PettyCashError as exc:
            return self._rejected("approve", transaction_id, current_user, exc)
        except Exception as exc:
            return self._unexpected_result("approve transaction", exc)

    # ------------------------------------------------------------------
    # Public: reject_transaction
    # ------------------------------------------------------------------

    def reject_transaction(
        self,
        transaction_id: str,
        current_user: User,
        comments: Optional[str] = None,
    ) -> ServiceResult[Transaction]:
        try:
            self._require_active(current_user)
            with self._db.atomic():
                transaction = self._load(transaction_id)
                expected = transaction.status
                owner = self._owner_of(transaction)
                self._workflow_for(transaction).reject(transaction, current_user, comments)
                self._save(transaction, expected)
                self._audit(
                    "REJECT", transaction, current_user, expected,
                    {"reason": transaction.rejection_reason},
                )

            self._fire_and_forget(
                "Status notification",
                self._notifier.notify_status_update,
                transaction,
                owner,
                current_user,
                transaction.status,
                transaction.rejection_reason,
            )
            return ServiceResult(success=True, data=transaction)
        except PettyCashError as exc:
            return self._rejected("reject", transaction_id, current_user, exc)
        except Exception as exc:
            return self._unexpected_result("reject transaction", exc)

    # ------------------------------------------------------------------
    # Public: request_info
    # ------------------------------------------------------------------

    def request_info(
        self,
        transaction_id: str,
        current_user: User,
        message: Optional[str],
    ) -> ServiceResult[Transaction]:
        """Return a pending claim to its owner with a question attached."""
        try:
            self._require_active(current_user)
            with self._db.atomic():
                transaction = self._load(transaction_id)
                expected = transaction.status
                owner = self._owner_of(transaction)
                self._workflow_for(transaction).request_info(transaction, current_user, message)
                self._save(transaction, expected)
                self._audit("REQUEST_INFO", transaction, current_user, expected)

            self._fire_and_forget(
                "Info request notification",
                self._notifier.notify_info_requested,
                transaction,
                owner,
                current_user,
                transaction.notes[-1].message,
            )
            return ServiceResult(success=True, data=transaction)
        except PettyCashError as exc:
            return self._rejected("request info on", transaction_id, current_user, exc)
        except Exception as exc:
            return self._unexpected_result("request information", exc)

    # ------------------------------------------------------------------
    # Public: mark_as_paid
    # ------------------------------------------------------------------

    def mark_as_paid(
        self,
        transaction_id: str,
        current_user: User,
        paid_on: Optional[date] = None,
    ) -> ServiceResult[Transaction]:
        """``approved -> paid``; adds the amount to the month's category budget."""
        try:
            self._require_active(current_user)
            if current_user.role not in _PAYMENT_ROLES:
                raise AuthorizationError("Only admin or finance can mark transactions as paid.")
            with self._db.atomic():
                transaction = self._load(transaction_id)
                expected = transaction.status
                if expected != TransactionStatus.APPROVED:
                    raise ConflictError(
                        "Only approved transactions can be marked as paid. "
                        f"Current status: {expected}."
                    )
                owner = self._owner_of(transaction)
                now = utc_now()
                transaction.status = TransactionStatus.PAID
                transaction.paid_date = now
                transaction.updated_at = now
                if paid_on is not None:
                    transaction.payment_date = paid_on
                self._save(transaction, expected)
                budget_hit = self._budget_repo.increment_spent(
                    transaction.category,
                    transaction.transaction_date.month,
                    transaction.transaction_date.year,
                    transaction.post_tax_amount,
                )
                self._audit(
                    "MARK_PAID", transaction, current_user, expected,
                    {"budget_updated": str(budget_hit).lower()},
                )

            self._fire_and_forget(
                "Status notification",
                self._notifier.notify_status_update,
                transaction,
                owner,
                current_user,
                transaction.status,
                None,
            )
            return ServiceResult(success=True, data=transaction)
        except PettyCashError as exc:
            return self._rejected("mark paid", transaction_id, current_user, exc)
        except Exception as exc:
            return self._unexpected_result("mark transaction as paid", exc)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _load(self, transaction_id: str) -> Transaction:
        transaction = self._tx_repo.get_by_id(transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction not found.")
        return transaction

    def _workflow_for(self, transaction: Transaction) -> ApprovalWorkflow:
        return self._workflows[transaction.workflow]

    def _save(self, transaction: Transaction, expected: TransactionStatus) -> None:
        if not self._tx_repo.save_if_status(transaction, expected):
            current = self._tx_repo.get_by_id(transaction.id)
            status = current.status if current else "deleted"
            raise ConflictError(
                f"Transaction was modified concurrently. Current status: {status}."
            )

    def _owner_of(self, transaction: Transaction) -> Optional[User]:
        owner_id = transaction.owner_id
        return self._user_repo.get_by_id(owner_id) if owner_id else None

    def _approvers_for(self, transaction: Transaction, submitter: User) -> list[User]:
        """First-step approvers: the assigned manager, else level-one defaults."""
        step = transaction.pending_step()
        if step is not None and step.approver_id:
            manager = self._user_repo.get_by_id(step.approver_id)
            if manager is not None:
                return [manager]
        if transaction.status == TransactionStatus.PENDING_FINANCE:
            return self._user_repo.list_active_by_roles([UserRole.FINANCE])
        return self._resolver.level_one_approvers(submitter)

    def _audit(
        self,
        action: str,
        transaction: Transaction,
        actor: User,
        previous: TransactionStatus,
        extra: Optional[dict[str, Optional[str]]] = None,
    ) -> None:
        details: dict[str, Optional[str]] = {
            "transaction_number": transaction.transaction_number,
            "from_status": str(previous),
            "to_status": str(transaction.status),
            "amount": str(transaction.post_tax_amount),
        }
        details.update(extra or {})
        log_audit_event(
            logger=self._logger,
            action=action,
            entity_type="Transaction",
            entity_id=transaction.id,
            user_id=actor.id,
            details=details,
            conn=self._db.sqlite,
        )

    def _rejected(
        self, verb: str, transaction_id: str, actor: User, exc: PettyCashError,
    ) -> ServiceResult:
        self._logger.warning(
            "Refused to %s transaction %s for %s: %s",
            verb,
            transaction_id,
            actor.id,
            exc.message,
        )
        return self._error_result(exc)
