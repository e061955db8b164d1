"""Invoice notification emails.

Building the message is pure; delivery goes through a transport. The public
entry point, send_invoice_notification, never raises: any delivery failure is
returned as a NotificationResult so the billing loop can keep going.
"""

import html
import smtplib
from email.message import EmailMessage
from typing import Protocol

import structlog
from pydantic import BaseModel

from backend.app.core.settings import Settings, get_settings
from backend.app.services.errors import NotificationError

logger = structlog.get_logger(__name__)


class InvoiceNotification(BaseModel):
    customer_name: str
    contact_name: str
    email: str
    invoice_number: str
    total: str
    issue_date: str
    due_date: str
    item_count: int


class NotificationResult(BaseModel):
    success: bool
    error: str | None = None


class MailTransport(Protocol):
    def send(self, message: EmailMessage) -> None: ...

    def verify(self) -> None: ...


class SMTPTransport:
    """Deliver through an SMTP relay, implicit TLS or STARTTLS."""

    def __init__(
        self,
        host: str,
        port: int = 465,
        username: str = "",
        password: str = "",
        use_ssl: bool = True,
        timeout: int = 10,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SMTPTransport":
        return cls(
            host=settings.mail_host,
            port=settings.mail_port,
            username=settings.mail_user,
            password=settings.mail_password,
            use_ssl=settings.mail_use_ssl,
            timeout=settings.mail_timeout,
        )

    def _connect(self) -> smtplib.SMTP:
        if self.use_ssl:
            server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            if not self.use_ssl:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
        except Exception:
            server.close()
            raise
        return server

    def send(self, message: EmailMessage) -> None:
        try:
            server = self._connect()
            try:
                server.send_message(message)
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(str(exc)) from exc

    def verify(self) -> None:
        try:
            server = self._connect()
            try:
                server.noop()
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(str(exc)) from exc


class LogTransport:
    """Stand-in used when no SMTP host is configured: messages are logged, not sent."""

    def __init__(self):
        self.sent: list[EmailMessage] = []

    def send(self, message: EmailMessage) -> None:
        self.sent.append(message)
        logger.info("Email not sent (no SMTP host configured)", to=message["To"], subject=message["Subject"])

    def verify(self) -> None:
        return None


def get_transport(settings: Settings | None = None) -> MailTransport:
    settings = settings or get_settings()
    if settings.mail_host:
        return SMTPTransport.from_settings(settings)
    return LogTransport()


def build_invoice_email(notification: InvoiceNotification, settings: Settings | None = None) -> EmailMessage:
    settings = settings or get_settings()
    company = settings.company_name
    safe_name = html.escape(notification.contact_name)
    safe_company = html.escape(notification.customer_name)

    text_body = "\n".join(
        [
            f"NEW INVOICE FROM {company}",
            "=======================",
            "",
            f"Hello {notification.contact_name},",
            "",
            f"A new invoice has been generated for {notification.customer_name}.",
            "",
            f"Amount: ${notification.total}",
            f"Invoice #: {notification.invoice_number}",
            f"Issue Date: {notification.issue_date}",
            f"Due Date: {notification.due_date}",
            f"Items: {notification.item_count} service(s)",
            "",
            "Please review your invoice and arrange payment by the due date.",
            f"For questions, contact {settings.billing_contact_email}.",
            "",
            f"{company} | {settings.company_tagline} | {settings.company_location}",
        ]
    )

    html_body = f"""<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #1e3a5f;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="font-size: 20px;">New Invoice from {html.escape(company)}</h1>
    <p>Hello {safe_name},</p>
    <p>A new invoice has been generated for <strong>{safe_company}</strong>.</p>
    <div style="font-size: 28px; font-weight: bold;">${html.escape(notification.total)}</div>
    <div><strong>Invoice #:</strong> {html.escape(notification.invoice_number)}</div>
    <div><strong>Issue Date:</strong> {html.escape(notification.issue_date)}</div>
    <div><strong>Due Date:</strong> {html.escape(notification.due_date)}</div>
    <div><strong>Items:</strong> {notification.item_count} service(s)</div>
    <p>Please review your invoice and arrange payment by the due date. For questions, contact {html.escape(settings.billing_contact_email)}.</p>
    <p style="font-size: 12px; color: #94a3b8;">{html.escape(company)} | {html.escape(settings.company_tagline)} | {html.escape(settings.company_location)}<br>This is an automated notification.</p>
  </div>
</body>
</html>
"""

    message = EmailMessage()
    message["Subject"] = f"Invoice {notification.invoice_number} - {company}"
    message["From"] = f'"{company} Billing" <{settings.mail_from}>'
    message["To"] = notification.email
    message.set_content(text_body)
    message.add_alternative(html_body, subtype="html")
    return message


def send_invoice_notification(
    notification: InvoiceNotification,
    transport: MailTransport | None = None,
    settings: Settings | None = None,
) -> NotificationResult:
    """Single delivery attempt; failures come back in the result, never as exceptions."""
    try:
        transport = transport or get_transport(settings)
        message = build_invoice_email(notification, settings)
        transport.send(message)
    except Exception as exc:
        logger.error(
            "Failed to send invoice email",
            to=notification.email,
            invoice_number=notification.invoice_number,
            error=str(exc),
        )
        return NotificationResult(success=False, error=str(exc))

    logger.info("Invoice notification sent", to=notification.email, invoice_number=notification.invoice_number)
    return NotificationResult(success=True)


def verify_transport(transport: MailTransport | None = None) -> bool:
    try:
        (transport or get_transport()).verify()
    except Exception as exc:
        logger.error("SMTP connection failed", error=str(exc))
        return False
    logger.info("SMTP connection verified")
    return True
