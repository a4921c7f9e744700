"""
Transaction Model.

Pydantic models for an expense claim, its ordered approval history and
its append-only note trail.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from pettycash.models.enums import (
    ApprovalStepRole,
    ApprovalStepStatus,
    ApprovalWorkflowKind,
    Currency,
    NoteKind,
    PaymentMethod,
    TransactionStatus,
)


class ApprovalStep(BaseModel):
    """One entry in a transaction's approval history."""

    approver_id: Optional[str] = None
    role: ApprovalStepRole
    level: int = Field(ge=1, le=2)
    status: ApprovalStepStatus = ApprovalStepStatus.PENDING
    comments: Optional[str] = None
    action_date: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TransactionNote(BaseModel):
    """Structured note appended by an actor (info requests, comments)."""

    actor_id: str
    actor_name: str
    timestamp: datetime
    message: str
    kind: NoteKind = NoteKind.COMMENT

    model_config = {"from_attributes": True}


class Transaction(BaseModel):
    """Represents a petty cash expense claim.

    ``post_tax_amount`` is the authoritative payable amount and the only
    figure that touches the balance.
    """

    id: str
    transaction_number: str
    category: str
    pre_tax_amount: Optional[Decimal] = None
    tax_amount: Decimal = Decimal("0")
    post_tax_amount: Decimal = Field(gt=0)
    currency: Currency = Currency.INR
    exchange_rate: Decimal = Field(default=Decimal("1"), gt=0)
    transaction_date: date
    invoice_date: Optional[date] = None
    payment_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    payee_client_name: Optional[str] = None
    purpose: str = ""
    has_gst_invoice: bool = False

    submitted_by: Optional[str] = None
    requested_by: Optional[str] = None
    approved_by: Optional[str] = None
    rejected_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    paid_date: Optional[datetime] = None

    status: TransactionStatus = TransactionStatus.PENDING
    workflow: ApprovalWorkflowKind = ApprovalWorkflowKind.SIMPLE
    approvals: list[ApprovalStep] = Field(default_factory=list)
    rejection_reason: Optional[str] = None
    admin_comment: Optional[str] = None
    notes: list[TransactionNote] = Field(default_factory=list)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @property
    def owner_ids(self) -> frozenset[str]:
        """Users that own this claim (submitter and requester)."""
        return frozenset(
            uid for uid in (self.submitted_by, self.requested_by) if uid
        )

    @property
    def owner_id(self) -> Optional[str]:
        """The user notified about status changes."""
        return self.requested_by or self.submitted_by

    def pending_step(self) -> Optional[ApprovalStep]:
        """Return the first approval step still awaiting action."""
        for step in self.approvals:
            if step.status == ApprovalStepStatus.PENDING:
                return step
        return None
