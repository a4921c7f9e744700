"""
Approval Workflows.

Two approval protocols sit behind one :class:`ApprovalWorkflow` interface
and are picked per transaction by its ``workflow`` tag:

``SimpleApproval``
    ``pending -> approved | rejected``.  An admin, or the submitter's
    manager, approves; approval debits the balance in the same SQLite
    transaction as the status write.

``HierarchicalApproval``
    ``draft -> pending_manager -> pending_finance -> approved``, with
    rejection allowed at either step by the role the step waits on.
    Debiting on the final step is controlled by
    ``AppConfig.DEBIT_ON_FINAL_HIERARCHICAL_APPROVAL``.

Workflows mutate the :class:`Transaction` they are handed and raise domain
exceptions on any guard failure.  They never persist; the calling service
wraps them in ``DatabaseManager.atomic()`` together with the status write.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import ClassVar, Optional

from pettycash.exceptions import AuthorizationError, ConflictError, ValidationError
from pettycash.logger import StructuredLogger
from pettycash.models.balance import Balance
from pettycash.models.enums import (
    ApprovalStepRole,
    ApprovalStepStatus,
    ApprovalWorkflowKind,
    NoteKind,
    TransactionStatus,
    UserRole,
)
from pettycash.models.transaction import ApprovalStep, Transaction, TransactionNote
from pettycash.models.user import User
from pettycash.services.balance_ledger import BalanceLedgerService
from pettycash.services.role_hierarchy import RoleHierarchyResolver
from pettycash.utils.general import utc_now

# Roles allowed to ask the submitter for more information.
_INFO_REQUEST_ROLES: frozenset[UserRole] = frozenset({UserRole.APPROVER, UserRole.ADMIN})

RETURNED_FOR_INFORMATION = "Returned for information"


def _clean(text: Optional[str]) -> str:
    return (text or "").strip()


class ApprovalWorkflow(ABC):
    """Common interface and shared guards for approval protocols."""

    kind: ClassVar[ApprovalWorkflowKind]
    info_request_statuses: ClassVar[frozenset[TransactionStatus]]

    def __init__(
        self,
        resolver: RoleHierarchyResolver,
        ledger: BalanceLedgerService,
        logger: StructuredLogger,
    ) -> None:
        self._resolver = resolver
        self._ledger = ledger
        self._logger = logger

    # ------------------------------------------------------------------
    # Protocol-specific transitions
    # ------------------------------------------------------------------

    @abstractmethod
    def initial_status(self, as_draft: bool) -> TransactionStatus:
        """Status a freshly created claim starts in."""

    @abstractmethod
    def resubmit_status(self) -> TransactionStatus:
        """Status an ``info_requested`` claim returns to once edited."""

    @abstractmethod
    def submit(self, transaction: Transaction, actor: User) -> None:
        """Move a draft into the approval queue."""

    @abstractmethod
    def approve(
        self, transaction: Transaction, actor: User, comments: Optional[str],
    ) -> Optional[Balance]:
        """Apply one approval; returns the balance when it was debited."""

    @abstractmethod
    def reject(self, transaction: Transaction, actor: User, comments: Optional[str]) -> None:
        """Reject the claim.  A non-empty comment is mandatory."""

    # ------------------------------------------------------------------
    # Shared transitions
    # ------------------------------------------------------------------

    def request_info(self, transaction: Transaction, actor: User, message: Optional[str]) -> None:
        """Send the claim back to its owner with a structured note."""
        text = _clean(message)
        if not text:
            raise ValidationError("A message is required when requesting information.")
        if transaction.status not in self.info_request_statuses:
            raise ConflictError(
                "Cannot request information for this transaction. "
                f"Current status: {transaction.status}."
            )
        allowed = actor.role in _INFO_REQUEST_ROLES or (
            actor.role == UserRole.MANAGER and self._resolver.can_access(actor, transaction)
        )
        if not allowed:
            raise AuthorizationError(
                "You are not authorized to request information for this transaction."
            )

        now = utc_now()
        transaction.notes.append(
            TransactionNote(
                actor_id=actor.id,
                actor_name=actor.name,
                timestamp=now,
                message=text,
                kind=NoteKind.INFO_REQUEST,
            )
        )
        transaction.status = TransactionStatus.INFO_REQUESTED
        transaction.updated_at = now

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_owner_or_admin(transaction: Transaction, actor: User) -> None:
        if actor.role != UserRole.ADMIN and actor.id not in transaction.owner_ids:
            raise AuthorizationError("Only the owner or an admin can submit this transaction.")

    @staticmethod
    def _mark_approved(transaction: Transaction, actor: User, comments: str, now: datetime) -> None:
        transaction.status = TransactionStatus.APPROVED
        transaction.approved_by = actor.id
        transaction.approved_at = now
        transaction.updated_at = now
        if comments:
            transaction.admin_comment = comments

    @staticmethod
    def _mark_rejected(transaction: Transaction, actor: User, comments: str, now: datetime) -> None:
        transaction.status = TransactionStatus.REJECTED
        transaction.rejected_by = actor.id
        transaction.rejected_at = now
        transaction.rejection_reason = comments
        transaction.admin_comment = comments
        transaction.updated_at = now


class SimpleApproval(ApprovalWorkflow):
    """Single-step approval with an immediate balance debit."""

    kind = ApprovalWorkflowKind.SIMPLE
    info_request_statuses = frozenset({
        TransactionStatus.PENDING,
        TransactionStatus.PENDING_APPROVAL,
    })

    _STEP_ROLE: ClassVar[dict[UserRole, ApprovalStepRole]] = {
        UserRole.ADMIN: ApprovalStepRole.ADMIN,
        UserRole.MANAGER: ApprovalStepRole.MANAGER,
    }

    def initial_status(self, as_draft: bool) -> TransactionStatus:
        return TransactionStatus.DRAFT if as_draft else TransactionStatus.PENDING

    def resubmit_status(self) -> TransactionStatus:
        return TransactionStatus.PENDING

    def submit(self, transaction: Transaction, actor: User) -> None:
        if transaction.status != TransactionStatus.DRAFT:
            raise ConflictError(
                "Only draft transactions can be submitted. "
                f"Current status: {transaction.status}."
            )
        self._require_owner_or_admin(transaction, actor)
        transaction.status = TransactionStatus.PENDING
        transaction.updated_at = utc_now()

    def approve(
        self, transaction: Transaction, actor: User, comments: Optional[str],
    ) -> Optional[Balance]:
        if not self._resolver.can_act_on(actor, transaction):
            raise AuthorizationError("You are not authorized to approve this transaction.")
        if transaction.status != TransactionStatus.PENDING:
            raise ConflictError(
                "Transaction cannot be approved. "
                f"Current status: {transaction.status}. "
                "Only pending transactions can be approved."
            )

        balance = self._ledger.debit(transaction.post_tax_amount, actor.id)

        now = utc_now()
        text = _clean(comments)
        transaction.approvals.append(
            ApprovalStep(
                approver_id=actor.id,
                role=self._STEP_ROLE[actor.role],
                level=1,
                status=ApprovalStepStatus.APPROVED,
                comments=text or None,
                action_date=now,
            )
        )
        self._mark_approved(transaction, actor, text, now)
        return balance

    def reject(self, transaction: Transaction, actor: User, comments: Optional[str]) -> None:
        if not self._resolver.can_act_on(actor, transaction):
            raise AuthorizationError("You are not authorized to reject this transaction.")
        if transaction.status != TransactionStatus.PENDING:
            raise ConflictError(
                "Transaction cannot be rejected. "
                f"Current status: {transaction.status}. "
                "Only pending transactions can be rejected."
            )
        text = _clean(comments)
        if not text:
            raise ValidationError("Rejection comments are required.")

        now = utc_now()
        transaction.approvals.append(
            ApprovalStep(
                approver_id=actor.id,
                role=self._STEP_ROLE[actor.role],
                level=1,
                status=ApprovalStepStatus.REJECTED,
                comments=text,
                action_date=now,
            )
        )
        self._mark_rejected(transaction, actor, text, now)


class HierarchicalApproval(ApprovalWorkflow):
    """Manager step, then finance step.

    Admins may act on either step in place of the expected role.
    """

    kind = ApprovalWorkflowKind.HIERARCHICAL
    info_request_statuses = frozenset({
        TransactionStatus.PENDING,
        TransactionStatus.PENDING_APPROVAL,
        TransactionStatus.PENDING_MANAGER,
        TransactionStatus.PENDING_FINANCE,
    })

    _APPROVER_ROLES: ClassVar[frozenset[UserRole]] = frozenset({
        UserRole.MANAGER,
        UserRole.FINANCE,
        UserRole.ADMIN,
    })

    def __init__(
        self,
        resolver: RoleHierarchyResolver,
        ledger: BalanceLedgerService,
        logger: StructuredLogger,
        debit_on_final_approval: bool = False,
    ) -> None:
        super().__init__(resolver, ledger, logger)
        self._debit_on_final_approval = debit_on_final_approval

    def initial_status(self, as_draft: bool) -> TransactionStatus:
        return TransactionStatus.DRAFT

    def resubmit_status(self) -> TransactionStatus:
        # The chain restarts from the manager step on the next submit.
        return TransactionStatus.DRAFT

    def submit(self, transaction: Transaction, actor: User) -> None:
        if transaction.status != TransactionStatus.DRAFT:
            raise ConflictError(
                "Only draft transactions can be submitted. "
                f"Current status: {transaction.status}."
            )
        if actor.id != transaction.requested_by:
            raise AuthorizationError("Only the requester can submit this transaction.")

        now = utc_now()
        # A resubmitted claim keeps its history; the step it was returned from is closed.
        for step in transaction.approvals:
            if step.status == ApprovalStepStatus.PENDING:
                step.status = ApprovalStepStatus.REJECTED
                step.comments = RETURNED_FOR_INFORMATION
                step.action_date = now
        transaction.approvals.append(
            ApprovalStep(
                approver_id=actor.manager_id,
                role=ApprovalStepRole.MANAGER,
                level=1,
                status=ApprovalStepStatus.PENDING,
            )
        )
        transaction.status = TransactionStatus.PENDING_MANAGER
        transaction.updated_at = now

    def approve(
        self, transaction: Transaction, actor: User, comments: Optional[str],
    ) -> Optional[Balance]:
        if actor.role not in self._APPROVER_ROLES:
            raise AuthorizationError("Only managers, finance or admins can approve.")
        step = self._current_step(transaction, "approved")
        self._authorize_step(step, transaction, actor)

        now = utc_now()
        text = _clean(comments)
        step.status = ApprovalStepStatus.APPROVED
        step.approver_id = actor.id
        step.comments = text or None
        step.action_date = now

        if transaction.status == TransactionStatus.PENDING_MANAGER:
            transaction.approvals.append(
                ApprovalStep(
                    role=ApprovalStepRole.FINANCE,
                    level=2,
                    status=ApprovalStepStatus.PENDING,
                )
            )
            transaction.status = TransactionStatus.PENDING_FINANCE
            transaction.updated_at = now
            return None

        balance: Optional[Balance] = None
        if self._debit_on_final_approval:
            balance = self._ledger.debit(transaction.post_tax_amount, actor.id)
        self._mark_approved(transaction, actor, text, now)
        return balance

    def reject(self, transaction: Transaction, actor: User, comments: Optional[str]) -> None:
        step = self._current_step(transaction, "rejected")
        self._authorize_step(step, transaction, actor)
        text = _clean(comments)
        if not text:
            raise ValidationError("Rejection comments are required.")

        now = utc_now()
        step.status = ApprovalStepStatus.REJECTED
        step.approver_id = actor.id
        step.comments = text
        step.action_date = now
        self._mark_rejected(transaction, actor, text, now)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _current_step(transaction: Transaction, verb: str) -> ApprovalStep:
        if transaction.status not in (
            TransactionStatus.PENDING_MANAGER,
            TransactionStatus.PENDING_FINANCE,
        ):
            raise ConflictError(
                f"Transaction cannot be {verb}. Current status: {transaction.status}."
            )
        step = transaction.pending_step()
        if step is None:
            raise ConflictError(
                f"Transaction has no pending approval step. Current status: {transaction.status}."
            )
        return step

    def _authorize_step(self, step: ApprovalStep, transaction: Transaction, actor: User) -> None:
        if actor.role == UserRole.ADMIN:
            return
        if step.role == ApprovalStepRole.FINANCE and actor.role == UserRole.FINANCE:
            return
        if step.role == ApprovalStepRole.MANAGER and actor.role == UserRole.MANAGER:
            if step.approver_id is not None and step.approver_id == actor.id:
                return
            if step.approver_id is None and self._resolver.can_access(actor, transaction):
                return
        raise AuthorizationError(
            f"This step is waiting on the {step.role} role; you cannot act on it."
        )
