"""
Fund Transfer Model.

An inbound crediting event to the shared petty cash balance.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from pettycash.models.enums import Currency, TransferStatus, TransferType


class FundTransfer(BaseModel):
    """Represents a recorded bank or cash top-up.

    ``exchange_rate`` is informational; ``amount`` is credited as-is.
    """

    id: str
    transfer_id: str
    transfer_type: TransferType
    amount: Decimal = Field(gt=0)
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
    initiated_by: str
    status: TransferStatus = TransferStatus.COMPLETED
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
