"""
Outbound mail for claim and fund notifications.

Plain-text messages over SMTP with STARTTLS.  A failed send is reported
as an unsuccessful :class:`ServiceResult`; the notification dispatcher
logs it and moves on.
"""

from __future__ import annotations

import smtplib
from email.message import EmailMessage
from typing import Optional, Union

from pettycash.config import AppConfig
from pettycash.logger import StructuredLogger
from pettycash.models.service_models import ServiceResult
from pettycash.services.base_service import BaseService
from pettycash.utils.audit import log_audit_event


class EmailService(BaseService):
    """Plain-text mail over SMTP with STARTTLS."""

    def __init__(self, config: AppConfig, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._config = config
        self._settings_checked: bool = False

    @property
    def is_configured(self) -> bool:
        return bool(self._config.MAIL_USERNAME)

    def send_email(
        self,
        to_addresses: Union[str, list[str]],
        subject: str,
        body_text: str,
    ) -> ServiceResult:
        """Send *body_text* to every non-empty address in *to_addresses*.

        Mail settings are checked on the first call only.
        """
        if not self._settings_checked:
            try:
                self._config.validate_email_config()
            except ValueError as exc:
                self._logger.error("Mail settings incomplete: %s", exc)
                return ServiceResult(
                    success=False,
                    error=f"Email configuration error: {exc}",
                    error_code="EMAIL_NOT_CONFIGURED",
                    status_code=500,
                )
            self._settings_checked = True

        if isinstance(to_addresses, str):
            to_addresses = [to_addresses]
        recipients = [addr for addr in to_addresses if addr]
        if not recipients:
            return ServiceResult(
                success=False,
                error="No recipients.",
                error_code="VALIDATION_ERROR",
                status_code=400,
            )

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self._config.MAIL_DEFAULT_SENDER or self._config.MAIL_USERNAME
        message["To"] = ", ".join(recipients)
        message.set_content(body_text)

        log_audit_event(
            logger=self._logger,
            action="EMAIL_SEND_ATTEMPT",
            entity_type="Email",
            entity_id=subject,
            user_id="system",
            details={"to": message["To"], "subject": subject},
        )
        return self._deliver(message)

    def _deliver(self, message: EmailMessage) -> ServiceResult:
        cfg = self._config
        smtp: Optional[smtplib.SMTP] = None
        try:
            smtp = smtplib.SMTP(cfg.MAIL_SERVER, cfg.MAIL_PORT, timeout=30)
            smtp.starttls()
            smtp.login(cfg.MAIL_USERNAME, cfg.MAIL_PASSWORD.get_secret_value())
            smtp.send_message(message)
        except smtplib.SMTPAuthenticationError as exc:
            return self._failed(f"SMTP authentication failed for {cfg.MAIL_USERNAME}", exc)
        except smtplib.SMTPException as exc:
            return self._failed(f"SMTP error sending to {message['To']}", exc)
        except OSError as exc:
            return self._failed(f"Cannot reach {cfg.MAIL_SERVER}:{cfg.MAIL_PORT}", exc)
        finally:
            if smtp is not None:
                try:
                    smtp.quit()
                except (smtplib.SMTPException, OSError):
                    self._logger.debug("SMTP quit failed.", exc_info=True)

        self._logger.info("Mail delivered to %s", message["To"])
        return ServiceResult(success=True)

    def _failed(self, reason: str, exc: Exception) -> ServiceResult:
        self._logger.error("%s: %s", reason, exc)
        return ServiceResult(
            success=False,
            error=f"{reason}: {exc}",
            error_code="EMAIL_FAILED",
            status_code=500,
        )
