"""
Data Models Package.

Re-exports the domain models for short imports:
    from pettycash.models import Transaction, FundTransfer, User, Balance
    from pettycash.models import UserRole, TransactionStatus, normalize_role
"""

from __future__ import annotations

from pettycash.models.enums import (
    ApprovalStepRole,
    ApprovalStepStatus,
    ApprovalWorkflowKind,
    Currency,
    NoteKind,
    PaymentMethod,
    ScopeKind,
    TransactionStatus,
    TransferStatus,
    TransferType,
    UserRole,
    normalize_role,
)
from pettycash.models.user import User
from pettycash.models.transaction import ApprovalStep, Transaction, TransactionNote
from pettycash.models.fund_transfer import FundTransfer
from pettycash.models.balance import Balance, Budget
from pettycash.models.access import VisibilityScope

__all__ = [
    "ApprovalStep",
    "ApprovalStepRole",
    "ApprovalStepStatus",
    "ApprovalWorkflowKind",
    "Balance",
    "Budget",
    "Currency",
    "FundTransfer",
    "NoteKind",
    "PaymentMethod",
    "ScopeKind",
    "Transaction",
    "TransactionNote",
    "TransactionStatus",
    "TransferStatus",
    "TransferType",
    "User",
    "UserRole",
    "VisibilityScope",
    "normalize_role",
]
