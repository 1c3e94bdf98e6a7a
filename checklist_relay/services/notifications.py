"""Email notifications sent after successful uploads."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

from starlette.concurrency import run_in_threadpool

from ..config import Settings
from ..observability import metrics_registry

log = logging.getLogger("checklist_relay.notifications")


class NotificationSender:
    """Send plain-text email over SMTP; failures are logged and dropped."""

    def __init__(
        self,
        *,
        host: str | None,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        sender: str | None = None,
        default_recipient: str | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender or username
        self.default_recipient = default_recipient
        self.timeout_s = timeout_s

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationSender":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender=settings.email_from,
            default_recipient=settings.notify_email_to,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.sender)

    async def notify(self, recipient: str | None, subject: str, body: str) -> None:
        to_address = recipient or self.default_recipient
        if not self.enabled or not to_address:
            log.debug("Email notifications disabled; skipping %r", subject)
            return

        try:
            message = EmailMessage()
            message["Subject"] = subject
            message["From"] = self.sender
            message["To"] = to_address
            message.set_content(body)
            await run_in_threadpool(self._send, message)
        except (smtplib.SMTPException, OSError) as exc:
            metrics_registry.record("notification_failures")
            log.error("Error sending email to %s: %s", to_address, exc)
            return
        except Exception:
            # Notifications never fail the upload that triggered them.
            metrics_registry.record("notification_failures")
            log.exception("Unexpected error sending email to %s", to_address)
            return
        metrics_registry.record("notifications_sent")
        log.info("Email sent to %s: %s", to_address, subject)

    def _send(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout_s) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(message)


__all__ = ["NotificationSender"]
