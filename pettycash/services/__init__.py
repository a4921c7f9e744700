"""
Business Logic Services Package.

Services depend on the repository layer for data access and receive the
acting :class:`~pettycash.models.user.User` on every call.

The ``create_services()`` factory wires every repository and service
together, returning a typed dict the application layer can consume
without knowing the internal dependency graph.
"""

from __future__ import annotations

from typing import Optional, TypedDict

from pettycash.config import AppConfig
from pettycash.database import DatabaseManager
from pettycash.logger import get_logger
from pettycash.models.enums import ApprovalWorkflowKind
from pettycash.repositories.balance_repository import BalanceRepository
from pettycash.repositories.budget_repository import BudgetRepository
from pettycash.repositories.fund_transfer_repository import FundTransferRepository
from pettycash.repositories.sequence_repository import SequenceRepository
from pettycash.repositories.transaction_repository import TransactionRepository
from pettycash.repositories.user_repository import UserRepository
from pettycash.services.approval_workflows import (
    ApprovalWorkflow,
    HierarchicalApproval,
    SimpleApproval,
)
from pettycash.services.balance_ledger import BalanceLedgerService
from pettycash.services.email_service import EmailService
from pettycash.services.fund_transfer import FundTransferService
from pettycash.services.notification_service import NotificationService, Notifier
from pettycash.services.numbering import DocumentNumberService
from pettycash.services.reports import ReportService
from pettycash.services.role_hierarchy import RoleHierarchyResolver
from pettycash.services.sync_worker import SyncWorkerService
from pettycash.services.transaction_crud import TransactionCrudService
from pettycash.services.transaction_workflow import TransactionWorkflowService
from pettycash.services.users import UserService


class ServiceContainer(TypedDict):
    """Typed container for all application services."""

    role_resolver: RoleHierarchyResolver
    balance_ledger: BalanceLedgerService
    numbering_service: DocumentNumberService
    notifier: Notifier
    user_service: UserService
    transaction_crud_service: TransactionCrudService
    transaction_workflow_service: TransactionWorkflowService
    fund_transfer_service: FundTransferService
    report_service: ReportService
    sync_worker: SyncWorkerService


def create_services(
    db: DatabaseManager,
    config: AppConfig,
    notifier: Optional[Notifier] = None,
) -> ServiceContainer:
    """
    Wire all repositories and services together.

    This is the single composition root for the service layer.  The
    entry point calls it once at startup.

    Args:
        db: Initialised DatabaseManager with the schema in place.
        config: Application configuration.
        notifier: Notification dispatcher; defaults to the email-backed
            :class:`NotificationService`.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = get_logger("pettycash.services")

    # ------------------------------------------------------------------
    # 1. Repositories (data-access layer)
    # ------------------------------------------------------------------
    user_repo = UserRepository(db=db, logger=logger)
    transaction_repo = TransactionRepository(db=db, logger=logger)
    transfer_repo = FundTransferRepository(db=db, logger=logger)
    balance_repo = BalanceRepository(db=db, logger=logger)
    sequence_repo = SequenceRepository(db=db, logger=logger)
    budget_repo = BudgetRepository(db=db, logger=logger)

    # ------------------------------------------------------------------
    # 2. Leaf services
    # ------------------------------------------------------------------
    resolver = RoleHierarchyResolver(user_repo=user_repo, logger=logger)
    ledger = BalanceLedgerService(balance_repo=balance_repo, config=config, logger=logger)
    numbering = DocumentNumberService(sequence_repo=sequence_repo, logger=logger)
    if notifier is None:
        notifier = NotificationService(
            email_service=EmailService(config=config, logger=logger),
            logger=logger,
        )
    user_service = UserService(repo=user_repo, logger=logger)

    workflows: dict[ApprovalWorkflowKind, ApprovalWorkflow] = {
        ApprovalWorkflowKind.SIMPLE: SimpleApproval(
            resolver=resolver, ledger=ledger, logger=logger,
        ),
        ApprovalWorkflowKind.HIERARCHICAL: HierarchicalApproval(
            resolver=resolver,
            ledger=ledger,
            logger=logger,
            debit_on_final_approval=config.DEBIT_ON_FINAL_HIERARCHICAL_APPROVAL,
        ),
    }

    # ------------------------------------------------------------------
    # 3. Orchestration services
    # ------------------------------------------------------------------
    transaction_crud_service = TransactionCrudService(
        db=db,
        transaction_repo=transaction_repo,
        user_repo=user_repo,
        resolver=resolver,
        numbering=numbering,
        workflows=workflows,
        notifier=notifier,
        config=config,
        logger=logger,
    )
    transaction_workflow_service = TransactionWorkflowService(
        db=db,
        transaction_repo=transaction_repo,
        user_repo=user_repo,
        budget_repo=budget_repo,
        resolver=resolver,
        workflows=workflows,
        notifier=notifier,
        logger=logger,
    )
    fund_transfer_service = FundTransferService(
        db=db,
        transfer_repo=transfer_repo,
        ledger=ledger,
        numbering=numbering,
        config=config,
        logger=logger,
    )
    report_service = ReportService(
        transaction_repo=transaction_repo,
        resolver=resolver,
        ledger=ledger,
        fund_transfers=fund_transfer_service,
        logger=logger,
    )

    # ------------------------------------------------------------------
    # 4. Infrastructure
    # ------------------------------------------------------------------
    sync_worker = SyncWorkerService(db=db, config=config, logger=logger)

    return ServiceContainer(
        role_resolver=resolver,
        balance_ledger=ledger,
        numbering_service=numbering,
        notifier=notifier,
        user_service=user_service,
        transaction_crud_service=transaction_crud_service,
        transaction_workflow_service=transaction_workflow_service,
        fund_transfer_service=fund_transfer_service,
        report_service=report_service,
        sync_worker=sync_worker,
    )
