"""
Notification Dispatcher.

Fire-and-forget messages about claim activity.  Every public method
catches and logs its own failures: a broken mail server must never undo
or fail a state transition that has already been committed.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Optional, Protocol

from pettycash.logger import StructuredLogger
from pettycash.models.enums import TransactionStatus
from pettycash.models.transaction import Transaction
from pettycash.models.user import User
from pettycash.services.base_service import BaseService
from pettycash.services.email_service import EmailService


class Notifier(Protocol):
    """What the workflow services need from a notification dispatcher."""

    def notify_submitted(
        self, transaction: Transaction, submitter: User, approvers: Sequence[User],
    ) -> None: ...

    def notify_status_update(
        self,
        transaction: Transaction,
        owner: Optional[User],
        actor: User,
        new_status: TransactionStatus,
        comment: Optional[str],
    ) -> None: ...

    def notify_info_requested(
        self,
        transaction: Transaction,
        owner: Optional[User],
        actor: User,
        message: str,
    ) -> None: ...


class NotificationService(BaseService):
    """Email-backed :class:`Notifier`."""

    def __init__(self, email_service: EmailService, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._email = email_service

    def notify_submitted(
        self, transaction: Transaction, submitter: User, approvers: Sequence[User],
    ) -> None:
        recipients = [u.email for u in approvers if u.email]
        if not recipients:
            self._logger.info(
                "No approvers to notify for %s.", transaction.transaction_number
            )
            return
        subject = f"Expense claim {transaction.transaction_number} awaits approval"
        body = (
            f"{submitter.name} submitted claim {transaction.transaction_number} "
            f"for {transaction.currency} {transaction.post_tax_amount} "
            f"({transaction.category}).\n\nPurpose: {transaction.purpose or '-'}"
        )
        self._send(recipients, subject, body, transaction)

    def notify_status_update(
        self,
        transaction: Transaction,
        owner: Optional[User],
        actor: User,
        new_status: TransactionStatus,
        comment: Optional[str],
    ) -> None:
        if owner is None or not owner.email:
            self._logger.info(
                "No owner email for %s; status update not sent.",
                transaction.transaction_number,
            )
            return
        subject = f"Expense claim {transaction.transaction_number}: {new_status}"
        body = (
            f"Your claim {transaction.transaction_number} is now {new_status} "
            f"(updated by {actor.name})."
        )
        if comment:
            body += f"\n\nComments:\n{comment}"
        self._send([owner.email], subject, body, transaction)

    def notify_info_requested(
        self,
        transaction: Transaction,
        owner: Optional[User],
        actor: User,
        message: str,
    ) -> None:
        if owner is None or not owner.email:
            self._logger.info(
                "No owner email for %s; info request not sent.",
                transaction.transaction_number,
            )
            return
        subject = f"More information needed for {transaction.transaction_number}"
        body = (
            f"{actor.name} needs more information about claim "
            f"{transaction.transaction_number}:\n\n{message}"
        )
        self._send([owner.email], subject, body, transaction)

    def _send(
        self, recipients: list[str], subject: str, body: str, transaction: Transaction,
    ) -> None:
        try:
            result = self._email.send_email(recipients, subject, body)
            if not result.success:
                self._logger.warning(
                    "Notification for %s not delivered: %s",
                    transaction.transaction_number,
                    result.error,
                )
        except Exception as exc:
            self._logger.error(
                "Notification for %s failed: %s",
                transaction.transaction_number,
                exc,
                exc_info=True,
            )
