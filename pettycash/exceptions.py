"""
Domain Exceptions.

Services raise these internally and convert them into a failed
:class:`~pettycash.models.service_models.ServiceResult` at their public
boundary.  Each class carries the status code and machine-readable
``error_code`` used for that conversion.
"""

from __future__ import annotations

from decimal import Decimal


class PettyCashError(Exception):
    """Base class for every expected business-rule failure."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message


class ValidationError(PettyCashError):
    """Missing or invalid input.  Raised before any mutation."""

    status_code = 400
    error_code = "VALIDATION_ERROR"


class NotFoundError(PettyCashError):
    status_code = 404
    error_code = "NOT_FOUND"


class AuthorizationError(PettyCashError):
    """The actor's role or scope does not permit the action."""

    status_code = 403
    error_code = "FORBIDDEN"


class ConflictError(PettyCashError):
    """The entity is not in a state that permits the action."""

    status_code = 409
    error_code = "INVALID_STATE"


class InsufficientBalanceError(PettyCashError):
    """A debit exceeds the current petty cash balance."""

    status_code = 400
    error_code = "INSUFFICIENT_BALANCE"

    def __init__(self, current_balance: Decimal, required: Decimal) -> None:
        super().__init__(
            f"Insufficient balance. Current balance: {current_balance}, "
            f"required: {required}"
        )
        self.current_balance: Decimal = current_balance
        self.required: Decimal = required
