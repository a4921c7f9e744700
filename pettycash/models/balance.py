"""
Balance and Budget Models.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class Balance(BaseModel):
    """The singleton petty cash ledger row (``id`` is always 1).

    ``current_balance`` is expected to equal
    ``opening_balance + total_received - total_spent``; fund transfer
    reversals only move ``current_balance``, and the reconciliation
    report surfaces the resulting drift.
    """

    id: int = 1
    current_balance: Decimal = Decimal("0")
    total_received: Decimal = Decimal("0")
    total_spent: Decimal = Decimal("0")
    opening_balance: Decimal = Decimal("0")
    last_updated: Optional[datetime] = None
    updated_by: Optional[str] = None
    version: int = 0

    model_config = {"from_attributes": True}

    @property
    def drift(self) -> Decimal:
        """Difference between the stored balance and its components."""
        expected = self.opening_balance + self.total_received - self.total_spent
        return self.current_balance - expected


class Budget(BaseModel):
    """Monthly spending envelope for one expense category."""

    category: str
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2000)
    budget_amount: Decimal = Decimal("0")
    spent_amount: Decimal = Decimal("0")

    model_config = {"from_attributes": True}
