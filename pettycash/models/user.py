"""
User Model.

Pydantic model for a petty cash user account.  Stored role strings pass
through :func:`normalize_role` on the way in, so legacy aliases never
reach the service layer.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, field_validator, model_validator

from pettycash.models.enums import UserRole, normalize_role


class User(BaseModel):
    """Represents a user account.

    ``manager_id`` links an employee or intern to the manager who sees
    and approves their claims.  ``approval_limit`` only carries meaning
    for the legacy ``approver`` role.
    """

    id: str
    name: str
    email: str
    role: UserRole
    manager_id: Optional[str] = None
    is_active: bool = True
    approval_limit: Optional[Decimal] = None
    department: Optional[str] = None
    phone: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: Union[str, UserRole]) -> UserRole:
        return normalize_role(value)

    @field_validator("email", mode="before")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return str(value).strip().lower()

    @model_validator(mode="after")
    def _not_own_manager(self) -> "User":
        if self.manager_id is not None and self.manager_id == self.id:
            raise ValueError("A user cannot be their own manager")
        return self
