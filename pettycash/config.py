"""
Application Configuration.

Pydantic Settings model for the Petty Cash Gatekeeper.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from decimal import Decimal
from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings

from pettycash.models.enums import ApprovalWorkflowKind, Currency


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Runtime ---
    ENVIRONMENT: str = "development"

    # --- Supabase (outbound replica) ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")

    # --- Local store ---
    SQLITE_PATH: str = "pettycash_local.db"

    # --- Email / SMTP ---
    MAIL_SERVER: str = "smtp.gmail.com"
    MAIL_PORT: int = 587
    MAIL_USERNAME: str = ""
    MAIL_PASSWORD: SecretStr = SecretStr("")
    MAIL_DEFAULT_SENDER: str = ""
    ADMIN_REPORT_RECIPIENT: str = ""

    # --- Logging ---
    LOG_FILE: str = "pettycash.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    # --- Ledger ---
    DEFAULT_OPENING_BALANCE: Decimal = Field(default=Decimal("0"), ge=0)
    BASE_CURRENCY: Currency = Currency.INR

    # --- Approval workflow ---
    DEFAULT_APPROVAL_WORKFLOW: ApprovalWorkflowKind = ApprovalWorkflowKind.SIMPLE
    DEBIT_ON_FINAL_HIERARCHICAL_APPROVAL: bool = False

    # --- Document numbering ---
    TRANSACTION_NUMBER_PREFIX: str = "PC"
    FUND_TRANSFER_PREFIX: str = "FT"

    # --- Sync worker ---
    SYNC_INTERVAL_S: float = 30.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when critical configuration is empty.

        Pydantic silently falls back to defaults when ``.env`` is missing,
        so operators get a log line telling them which features are off.
        """
        _log = logging.getLogger("pettycash.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "environment variables or defaults."
            )

        if not self.SUPABASE_URL:
            _log.warning(
                "SUPABASE_URL is empty; replication is disabled and the "
                "ledger runs in local-only mode."
            )

        if not self.MAIL_USERNAME:
            _log.warning("MAIL_USERNAME is empty; email notifications are disabled.")

        return self

    @property
    def is_production(self) -> bool:
        """``True`` when tracebacks must not leave the service layer."""
        return self.ENVIRONMENT.strip().lower() == "production"

    # --- Email Validation ---
    def validate_email_config(self) -> None:
        """Validate that email configuration is complete.

        Raises:
            ValueError: If required email settings are missing.
        """
        if not self.MAIL_USERNAME or not self.MAIL_PASSWORD.get_secret_value():
            raise ValueError("MAIL_USERNAME and MAIL_PASSWORD must be set")
        if not self.MAIL_SERVER:
            raise ValueError("MAIL_SERVER must be set")


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    Uses a check-lock-check pattern so the fast path stays lock-free
    while first initialisation remains thread-safe.

    Prefer constructor injection of ``AppConfig``; this factory serves
    modules (logger, services' debug switch) that need settings before
    the composition root has run.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
