"""
Base Service Class.

Standardizes the logger pattern and the conversion of domain exceptions
into :class:`ServiceResult` envelopes at each service's public boundary.
"""

from __future__ import annotations

import traceback
from collections.abc import Callable
from typing import Optional, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from pettycash.config import get_config
from pettycash.exceptions import AuthorizationError, PettyCashError, ValidationError
from pettycash.logger import StructuredLogger
from pettycash.models.service_models import ServiceResult
from pettycash.models.user import User

M = TypeVar("M", bound=BaseModel)


class BaseService:
    """Base class for all service classes. Provides a logger."""

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger

    # ------------------------------------------------------------------
    # Input helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(model_cls: type[M], payload: Optional[dict[str, object]]) -> M:
        """Validate a raw payload, re-raising failures as :class:`ValidationError`."""
        try:
            return model_cls.model_validate(payload or {})
        except PydanticValidationError as exc:
            messages = []
            for err in exc.errors():
                field = ".".join(str(part) for part in err["loc"])
                msg = str(err["msg"]).removeprefix("Value error, ")
                messages.append(f"{field}: {msg}" if field else msg)
            raise ValidationError("; ".join(messages)) from exc

    @staticmethod
    def _require_active(current_user: User) -> None:
        if not current_user.is_active:
            raise AuthorizationError("Account is deactivated.")

    def _fire_and_forget(
        self, description: str, callback: Callable[..., object], *args: object,
    ) -> None:
        """Call a collaborator after the primary write; log, never raise."""
        try:
            callback(*args)
        except Exception as exc:
            self._logger.error(
                "%s failed after the primary operation succeeded: %s",
                description,
                exc,
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Result helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _error_result(exc: PettyCashError) -> ServiceResult:
        return ServiceResult(
            success=False,
            error=exc.message,
            error_code=exc.error_code,
            status_code=exc.status_code,
        )

    def _unexpected_result(self, action: str, exc: Exception) -> ServiceResult:
        """Log an unexpected failure and return a 500 envelope.

        The traceback travels in ``debug`` outside production only.
        """
        self._logger.error("Unexpected error during %s: %s", action, exc, exc_info=True)
        debug: Optional[str] = None
        if not get_config().is_production:
            debug = traceback.format_exc()
        return ServiceResult(
            success=False,
            error=f"Failed to {action}.",
            error_code=PettyCashError.error_code,
            status_code=500,
            debug=debug,
        )
