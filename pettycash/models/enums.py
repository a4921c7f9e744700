"""
Shared Enumerations for Petty Cash Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents,
so stored values like ``'pending'`` round-trip without conversion.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Union


class UserRole(StrEnum):
    """Valid user roles in the system.

    Users are deactivated rather than removed so that historical claims
    and approvals keep resolving to a known actor.
    """

    ADMIN = "admin"
    CEO = "ceo"
    MANAGER = "manager"
    EMPLOYEE = "employee"
    INTERN = "intern"
    APPROVER = "approver"
    AUDITOR = "auditor"
    FINANCE = "finance"


# Deprecated stored role names and the role they now mean.
LEGACY_ROLE_ALIASES: dict[str, UserRole] = {
    "custodian": UserRole.EMPLOYEE,
    "handler": UserRole.EMPLOYEE,
}


def normalize_role(value: Union[str, UserRole]) -> UserRole:
    """Map a stored role string onto :class:`UserRole`.

    Legacy ``custodian`` / ``handler`` values become ``employee``.
    Matching is case-insensitive and ignores surrounding whitespace.

    Raises:
        ValueError: If *value* is neither a current nor a legacy role.
    """
    if isinstance(value, UserRole):
        return value
    key = str(value).strip().lower()
    if key in LEGACY_ROLE_ALIASES:
        return LEGACY_ROLE_ALIASES[key]
    try:
        return UserRole(key)
    except ValueError:
        raise ValueError(f"Unknown user role: {value!r}") from None


class ScopeKind(StrEnum):
    """Breadth of the transaction set a user may see."""

    OWN = "own"
    TEAM = "team"
    ALL = "all"


class TransactionStatus(StrEnum):
    """Expense claim lifecycle states.

    ``PENDING_APPROVAL`` is a legacy alias of ``PENDING`` kept for rows
    written by older clients.
    """

    DRAFT = "draft"
    PENDING = "pending"
    PENDING_APPROVAL = "pending_approval"
    PENDING_MANAGER = "pending_manager"
    PENDING_FINANCE = "pending_finance"
    INFO_REQUESTED = "info_requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


TERMINAL_STATUSES: frozenset[TransactionStatus] = frozenset({
    TransactionStatus.APPROVED,
    TransactionStatus.REJECTED,
    TransactionStatus.PAID,
})

EDITABLE_STATUSES: frozenset[TransactionStatus] = frozenset({
    TransactionStatus.DRAFT,
    TransactionStatus.PENDING,
    TransactionStatus.INFO_REQUESTED,
})


class ApprovalWorkflowKind(StrEnum):
    """Which approval protocol governs a transaction."""

    SIMPLE = "simple"
    HIERARCHICAL = "hierarchical"


class ApprovalStepRole(StrEnum):
    """Role expected to act on an approval step."""

    MANAGER = "manager"
    FINANCE = "finance"
    ADMIN = "admin"
    APPROVER = "approver"


class ApprovalStepStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class NoteKind(StrEnum):
    INFO_REQUEST = "info_request"
    COMMENT = "comment"


class PaymentMethod(StrEnum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"
    GPAY = "gpay"
    PAYTM = "paytm"
    CARD = "card"
    OTHER = "other"


class Currency(StrEnum):
    """Supported currencies."""

    INR = "INR"
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    AED = "AED"
    SGD = "SGD"
    MYR = "MYR"


class TransferType(StrEnum):
    """How money reached the petty cash pool."""

    BANK = "bank"
    CASH = "cash"


class TransferStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
