"""
Transaction CRUD Service.

Handles creation, retrieval, listing, update and deletion of expense
claims.  State transitions (approve, reject, ...) live in
:mod:`pettycash.services.transaction_workflow`.

Visibility comes from :class:`RoleHierarchyResolver` in both directions:
single-record reads use ``can_access`` and listings compile the same
scope into SQL through :class:`TransactionQuery`.
"""

from __future__ import annotations

from typing import Optional

from pettycash.config import AppConfig
from pettycash.database import DatabaseManager
from pettycash.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PettyCashError,
    ValidationError,
)
from pettycash.logger import StructuredLogger
from pettycash.models.enums import (
    EDITABLE_STATUSES,
    ApprovalWorkflowKind,
    TransactionStatus,
    UserRole,
)
from pettycash.models.service_models import (
    PaginatedResult,
    ServiceResult,
    TransactionCreateInput,
    TransactionListFilters,
    TransactionUpdateInput,
)
from pettycash.models.transaction import Transaction
from pettycash.models.user import User
from pettycash.repositories.transaction_query import TransactionQuery
from pettycash.repositories.transaction_repository import TransactionRepository
from pettycash.repositories.user_repository import UserRepository
from pettycash.services.approval_workflows import ApprovalWorkflow
from pettycash.services.base_service import BaseService
from pettycash.services.notification_service import Notifier
from pettycash.services.numbering import DocumentNumberService
from pettycash.services.role_hierarchy import RoleHierarchyResolver
from pettycash.utils.audit import AuditEvent, fetch_audit_trail, log_audit_event
from pettycash.utils.general import new_id, utc_now


class TransactionCrudService(BaseService):
    """
    Service handling transaction CRUD operations.

    Dependencies are injected via __init__; no global state.
    """

    def __init__(
        self,
        db: DatabaseManager,
        transaction_repo: TransactionRepository,
        user_repo: UserRepository,
        resolver: RoleHierarchyResolver,
        numbering: DocumentNumberService,
        workflows: dict[ApprovalWorkflowKind, ApprovalWorkflow],
        notifier: Notifier,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._db = db
        self._tx_repo = transaction_repo
        self._user_repo = user_repo
        self._resolver = resolver
        self._numbering = numbering
        self._workflows = workflows
        self._notifier = notifier
        self._config = config

    # ------------------------------------------------------------------
    # Public: create_transaction
    # ------------------------------------------------------------------

    def create_transaction(
        self, payload: dict[str, object], current_user: User,
    ) -> ServiceResult[Transaction]:
        """
        Validate and store a new expense claim.

        The claim starts as ``pending`` under the simple protocol, or as
        ``draft`` under the hierarchical one (or when ``as_draft`` is set).
        ``requested_by`` may name another user: admins can file for anyone
        active, managers for their direct reports only.

        Returns:
            ServiceResult with the stored transaction and status 201.
        """
        try:
            self._require_active(current_user)
            data = self._validate(TransactionCreateInput, payload)
            requester = self._resolve_requester(data.requested_by, current_user)
            kind = data.workflow or self._config.DEFAULT_APPROVAL_WORKFLOW
            workflow = self._workflows[kind]

            now = utc_now()
            with self._db.atomic():
                number = self._numbering.next_number(
                    self._config.TRANSACTION_NUMBER_PREFIX, now.date(),
                )
                transaction = Transaction(
                    id=new_id(),
                    transaction_number=number,
                    **data.model_dump(exclude={"requested_by", "workflow", "as_draft"}),
                    submitted_by=current_user.id,
                    requested_by=requester.id,
                    status=workflow.initial_status(data.as_draft),
                    workflow=kind,
                    created_at=now,
                    updated_at=now,
                )
                self._tx_repo.create(transaction)
                log_audit_event(
                    logger=self._logger,
                    action="CREATE",
                    entity_type="Transaction",
                    entity_id=transaction.id,
                    user_id=current_user.id,
                    details={
                        "transaction_number": number,
                        "status": str(transaction.status),
                        "workflow": str(kind),
                        "amount": str(transaction.post_tax_amount),
                        "requested_by": requester.id,
                    },
                    conn=self._db.sqlite,
                )

            if transaction.status != TransactionStatus.DRAFT:
                self._fire_and_forget(
                    "Submission notification",
                    self._notifier.notify_submitted,
                    transaction,
                    requester,
                    self._resolver.level_one_approvers(requester),
                )
            return ServiceResult(success=True, data=transaction, status_code=201)

        except PettyCashError as exc:
            self._logger.warning("Transaction not created for %s: %s", current_user.id, exc.message)
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("create transaction", exc)

    # ------------------------------------------------------------------
    # Public: get_transaction
    # ------------------------------------------------------------------

    def get_transaction(
        self, transaction_id: str, current_user: User,
    ) -> ServiceResult[Transaction]:
        try:
            self._require_active(current_user)
            transaction = self._load(transaction_id)
            if not self._resolver.can_access(current_user, transaction):
                raise AuthorizationError("You are not authorized to view this transaction.")
            return ServiceResult(success=True, data=transaction)
        except PettyCashError as exc:
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("retrieve transaction", exc)

    def get_transaction_history(
        self, transaction_id: str, current_user: User,
    ) -> ServiceResult[list[AuditEvent]]:
        """Audit trail of one claim, oldest first, for anyone who may view it."""
        try:
            self._require_active(current_user)
            transaction = self._load(transaction_id)
            if not self._resolver.can_access(current_user, transaction):
                raise AuthorizationError("You are not authorized to view this transaction.")
            events = fetch_audit_trail(self._db.sqlite, "Transaction", transaction.id)
            return ServiceResult(success=True, data=events)
        except PettyCashError as exc:
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("load transaction history", exc)

    # ------------------------------------------------------------------
    # Public: list_transactions
    # ------------------------------------------------------------------

    def list_transactions(
        self,
        current_user: User,
        filters: Optional[dict[str, object]] = None,
    ) -> ServiceResult[PaginatedResult[Transaction]]:
        """
        Return one page of the claims *current_user* may see.

        Status, category, date range and free-text search narrow the
        role scope; they never widen it.
        """
        try:
            self._require_active(current_user)
            opts = self._validate(TransactionListFilters, filters)
            query = (
                TransactionQuery.for_scope(self._resolver.resolve_scope(current_user))
                .with_status(*(opts.status or ()))
                .with_category(opts.category)
                .with_date_range(opts.start_date, opts.end_date)
                .with_search(opts.search)
            )
            total = self._tx_repo.count(query)
            items = self._tx_repo.find(
                query,
                limit=opts.per_page,
                offset=(opts.page - 1) * opts.per_page,
            )
            return ServiceResult(
                success=True,
                data=PaginatedResult[Transaction](
                    items=items, total=total, page=opts.page, per_page=opts.per_page,
                ),
            )
        except PettyCashError as exc:
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("list transactions", exc)

    # ------------------------------------------------------------------
    # Public: update_transaction
    # ------------------------------------------------------------------

    def update_transaction(
        self,
        transaction_id: str,
        payload: dict[str, object],
        current_user: User,
    ) -> ServiceResult[Transaction]:
        """
        Edit a claim that is still ``draft``, ``pending`` or ``info_requested``.

        Editing an ``info_requested`` claim resubmits it: it returns to the
        state its protocol resumes from.
        """
        try:
            self._require_active(current_user)
            data = self._validate(TransactionUpdateInput, payload)
            changes = data.model_dump(exclude_unset=True)

            with self._db.atomic():
                transaction = self._load(transaction_id)
                self._require_owner_or_admin(transaction, current_user, "edit")
                expected = transaction.status
                if expected not in EDITABLE_STATUSES:
                    raise ConflictError(
                        "Transaction cannot be edited. "
                        f"Current status: {expected}."
                    )
                for field, value in changes.items():
                    setattr(transaction, field, value)
                if transaction.post_tax_amount <= 0:
                    raise ValidationError("post_tax_amount: must be greater than zero")

                resubmitted = expected == TransactionStatus.INFO_REQUESTED
                if resubmitted:
                    transaction.status = self._workflows[transaction.workflow].resubmit_status()
                transaction.updated_at = utc_now()

                if not self._tx_repo.save_if_status(transaction, expected):
                    raise ConflictError(
                        "Transaction was modified concurrently; reload and try again."
                    )
                log_audit_event(
                    logger=self._logger,
                    action="RESUBMIT" if resubmitted else "UPDATE",
                    entity_type="Transaction",
                    entity_id=transaction.id,
                    user_id=current_user.id,
                    details={
                        "fields": ", ".join(sorted(changes)),
                        "from_status": str(expected),
                        "to_status": str(transaction.status),
                    },
                    conn=self._db.sqlite,
                )

            if resubmitted and transaction.status != TransactionStatus.DRAFT:
                requester = self._user_repo.get_by_id(transaction.owner_id or "") or current_user
                self._fire_and_forget(
                    "Resubmission notification",
                    self._notifier.notify_submitted,
                    transaction,
                    requester,
                    self._resolver.level_one_approvers(requester),
                )
            return ServiceResult(success=True, data=transaction)

        except PettyCashError as exc:
            self._logger.warning(
                "Transaction %s not updated for %s: %s",
                transaction_id, current_user.id, exc.message,
            )
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("update transaction", exc)

    # ------------------------------------------------------------------
    # Public: delete_transaction
    # ------------------------------------------------------------------

    def delete_transaction(
        self, transaction_id: str, current_user: User,
    ) -> ServiceResult[None]:
        """Delete a draft.  Submitted claims are never deleted."""
        try:
            self._require_active(current_user)
            with self._db.atomic():
                transaction = self._load(transaction_id)
                self._require_owner_or_admin(transaction, current_user, "delete")
                if transaction.status != TransactionStatus.DRAFT:
                    raise ConflictError(
                        "Only draft transactions can be deleted. "
                        f"Current status: {transaction.status}."
                    )
                if not self._tx_repo.delete_if_status(transaction.id, TransactionStatus.DRAFT):
                    raise ConflictError(
                        "Transaction was modified concurrently; reload and try again."
                    )
                log_audit_event(
                    logger=self._logger,
                    action="DELETE",
                    entity_type="Transaction",
                    entity_id=transaction.id,
                    user_id=current_user.id,
                    details={"transaction_number": transaction.transaction_number},
                    conn=self._db.sqlite,
                )
            return ServiceResult(success=True)
        except PettyCashError as exc:
            return self._error_result(exc)
        except Exception as exc:
            return self._unexpected_result("delete transaction", exc)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _load(self, transaction_id: str) -> Transaction:
        transaction = self._tx_repo.get_by_id(transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction not found.")
        return transaction

    @staticmethod
    def _require_owner_or_admin(transaction: Transaction, actor: User, verb: str) -> None:
        if actor.role != UserRole.ADMIN and actor.id not in transaction.owner_ids:
            raise AuthorizationError(f"Only the owner or an admin can {verb} this transaction.")

    def _resolve_requester(self, requested_by: Optional[str], actor: User) -> User:
        """Who the claim is filed for.

        Admins may file for any active user; managers only for their
        direct reports; everyone else only for themselves.
        """
        if not requested_by or requested_by == actor.id:
            return actor
        if actor.role not in (UserRole.ADMIN, UserRole.MANAGER):
            raise AuthorizationError("You can only create transactions for yourself.")

        requester = self._user_repo.get_by_id(requested_by)
        if requester is None:
            raise NotFoundError("Requested user not found.")
        if not requester.is_active:
            raise ValidationError("Cannot create a transaction for a deactivated user.")
        if actor.role == UserRole.MANAGER and requester.manager_id != actor.id:
            raise AuthorizationError(
                "Managers can only create transactions for their direct reports."
            )
        return requester
