"""
Service Layer Data Transfer Objects.

Pydantic models for validated input/output at service boundaries.
Services accept raw payload dicts and validate them into these models
before any repository is touched.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Generic, Optional, TypeVar, Union

from pydantic import AfterValidator, BaseModel, Field, field_validator, model_validator

from pettycash.models.enums import (
    ApprovalWorkflowKind,
    Currency,
    PaymentMethod,
    TransactionStatus,
    TransferType,
    UserRole,
    normalize_role,
)
from pettycash.utils.money import TWO_PLACES, round_money

T = TypeVar("T")

_EMAIL_RE: re.Pattern[str] = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)


def _clean_email(value: str) -> str:
    email = str(value).strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValueError("Invalid email address")
    return email


def _whole_cents(value: Optional[Decimal]) -> Optional[Decimal]:
    """Quantize to the stored precision; nothing may round down to zero."""
    if value is None:
        return None
    rounded = round_money(value)
    if rounded < TWO_PLACES:
        raise ValueError(f"Amount must be at least {TWO_PLACES}")
    return rounded


# Positive money accepted at the boundary, already at storage precision.
CentAmount = Annotated[Decimal, Field(gt=0), AfterValidator(_whole_cents)]


__all__ = [
    "BalanceOverview",
    "CategoryTotal",
    "ExpenseBucket",
    "FinancialSummary",
    "FundTransferInput",
    "FundTransferListFilters",
    "FundTransferStats",
    "MonthTotal",
    "MonthlyTrend",
    "PaginatedResult",
    "ReconciliationReport",
    "ServiceResult",
    "TransactionCreateInput",
    "TransactionListFilters",
    "TransactionUpdateInput",
    "TransferTypeTotal",
    "UserCreateInput",
    "UserUpdateInput",
]


# ---------------------------------------------------------------------------
# Transaction input models
# ---------------------------------------------------------------------------

class TransactionCreateInput(BaseModel):
    """Validated payload for a new expense claim."""

    category: str = Field(min_length=1)
    pre_tax_amount: Optional[Decimal] = Field(default=None, ge=0)
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0)
    post_tax_amount: CentAmount
    currency: Currency = Currency.INR
    exchange_rate: Decimal = Field(default=Decimal("1"), gt=0)
    transaction_date: date
    invoice_date: Optional[date] = None
    payment_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    payee_client_name: Optional[str] = None
    purpose: str = ""
    has_gst_invoice: bool = False
    requested_by: Optional[str] = None
    workflow: Optional[ApprovalWorkflowKind] = None
    as_draft: bool = False


# Columns a partial update may change but never clear.
_NON_NULLABLE_UPDATES: tuple[str, ...] = (
    "category",
    "tax_amount",
    "post_tax_amount",
    "currency",
    "exchange_rate",
    "transaction_date",
    "purpose",
    "has_gst_invoice",
)


class TransactionUpdateInput(BaseModel):
    """Partial update of an editable claim; only set fields are applied.

    Optional fields of the claim may be cleared with an explicit ``None``;
    required ones may not.
    """

    category: Optional[str] = Field(default=None, min_length=1)
    pre_tax_amount: Optional[Decimal] = Field(default=None, ge=0)
    tax_amount: Optional[Decimal] = Field(default=None, ge=0)
    post_tax_amount: Optional[CentAmount] = None
    currency: Optional[Currency] = None
    exchange_rate: Optional[Decimal] = Field(default=None, gt=0)
    transaction_date: Optional[date] = None
    invoice_date: Optional[date] = None
    payment_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    payee_client_name: Optional[str] = None
    purpose: Optional[str] = None
    has_gst_invoice: Optional[bool] = None

    @model_validator(mode="after")
    def _required_fields_not_cleared(self) -> "TransactionUpdateInput":
        cleared = [
            name for name in _NON_NULLABLE_UPDATES
            if name in self.model_fields_set and getattr(self, name) is None
        ]
        if cleared:
            raise ValueError(f"{', '.join(cleared)}: may not be null")
        return self


class TransactionListFilters(BaseModel):
    status: Optional[list[TransactionStatus]] = None
    category: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    search: Optional[str] = None
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=20, ge=1, le=200)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(
        cls, value: Union[None, str, list[str]],
    ) -> Optional[list[str]]:
        if value is None or isinstance(value, list):
            return value
        return [value]


# ---------------------------------------------------------------------------
# Fund transfer input models
# ---------------------------------------------------------------------------

class FundTransferInput(BaseModel):
    """Validated payload for recording a top-up.

    ``preserve_timestamp`` lets an import keep the original ``created_at``.
    """

    transfer_type: TransferType
    amount: CentAmount
    currency: Currency = Currency.INR
    exchange_rate: Decimal = Field(default=Decimal("1"), gt=0)
    transfer_date: date
    bank_name: Optional[str] = None
    from_account: Optional[str] = None
    transaction_reference: Optional[str] = None
    recipient_id: Optional[str] = None
    recipient_name: Optional[str] = None
    purpose: Optional[str] = None
    notes: Optional[str] = None
    preserve_timestamp: Optional[datetime] = None

    @model_validator(mode="after")
    def _bank_details_required(self) -> "FundTransferInput":
        if self.transfer_type == TransferType.BANK and not (
            self.bank_name and self.from_account and self.transaction_reference
        ):
            raise ValueError(
                "Bank name, account number and transaction reference are "
                "required for bank transfers"
            )
        return self


class FundTransferListFilters(BaseModel):
    transfer_type: Optional[TransferType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=20, ge=1, le=200)


# ---------------------------------------------------------------------------
# User input models
# ---------------------------------------------------------------------------

class UserCreateInput(BaseModel):
    name: str = Field(min_length=1)
    email: str
    role: UserRole = UserRole.EMPLOYEE
    manager_id: Optional[str] = None
    department: Optional[str] = None
    phone: Optional[str] = None
    approval_limit: Optional[Decimal] = Field(default=None, ge=0)

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: Union[str, UserRole]) -> UserRole:
        return normalize_role(value)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return _clean_email(value)


class UserUpdateInput(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[str] = None
    role: Optional[UserRole] = None
    manager_id: Optional[str] = None
    department: Optional[str] = None
    phone: Optional[str] = None
    approval_limit: Optional[Decimal] = Field(default=None, ge=0)
    is_active: Optional[bool] = None

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(
        cls, value: Union[None, str, UserRole],
    ) -> Optional[UserRole]:
        return None if value is None else normalize_role(value)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _clean_email(value)


# ---------------------------------------------------------------------------
# Report output models
# ---------------------------------------------------------------------------

class PaginatedResult(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        return (self.total + self.per_page - 1) // self.per_page if self.total else 0


class TransferTypeTotal(BaseModel):
    transfer_type: TransferType
    count: int
    total: Decimal


class FundTransferStats(BaseModel):
    total_amount: Decimal
    transfer_count: int
    by_type: list[TransferTypeTotal] = Field(default_factory=list)


class ExpenseBucket(BaseModel):
    count: int = 0
    total: Decimal = Decimal("0")


class FinancialSummary(BaseModel):
    """Role-scoped expense totals, plus fund totals for privileged roles."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    fund_transfers: Optional[FundTransferStats] = None
    pending: ExpenseBucket = Field(default_factory=ExpenseBucket)
    approved: ExpenseBucket = Field(default_factory=ExpenseBucket)
    rejected: ExpenseBucket = Field(default_factory=ExpenseBucket)


class CategoryTotal(BaseModel):
    """Approved spend in one category."""

    category: str
    count: int
    total: Decimal
    average: Decimal
    minimum: Decimal
    maximum: Decimal


class MonthTotal(BaseModel):
    month: str
    month_number: int = Field(ge=1, le=12)
    count: int = 0
    total: Decimal = Decimal("0.00")


class MonthlyTrend(BaseModel):
    """Approved spend per calendar month; months without claims show zero."""

    year: int
    months: list[MonthTotal]


class BalanceOverview(BaseModel):
    current_balance: Decimal
    committed_expenses: Decimal
    available_funds: Decimal
    total_received: Decimal
    total_spent: Decimal


class ReconciliationReport(BaseModel):
    """Expected cash versus what the ledger and the drawer say.

    ``ledger_drift`` is non-zero after fund transfer reversals, since
    those adjust ``current_balance`` without touching ``total_received``.
    """

    opening_balance: Decimal
    total_transfers: Decimal
    total_expenses: Decimal
    expected_balance: Decimal
    system_balance: Decimal
    system_discrepancy: Decimal
    ledger_drift: Decimal
    actual_cash: Optional[Decimal] = None
    cash_discrepancy: Optional[Decimal] = None


# ---------------------------------------------------------------------------
# Generic service models
# ---------------------------------------------------------------------------

class ServiceResult(BaseModel, Generic[T]):
    """
    Standard service return envelope.

    All public service methods return this, giving the calling layer a
    single contract.  ``error_code`` is the machine-readable counterpart
    of ``error``; ``debug`` carries a traceback outside production only.
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    status_code: int = 200
    debug: Optional[str] = None
