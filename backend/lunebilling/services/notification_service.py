# Overview: Outbound email notifications; fire-and-forget, never fails the caller.

"""
Notification Service

Senders:
- LogEmailSender: default. Logs the message and keeps it in an in-memory
  outbox (the test suite inspects it).
- SendGridEmailSender: used when SENDGRID_API_KEY is configured.

Every notify_* helper catches and logs delivery failures. A failed email
never rolls back or fails the operation that triggered it.

Bodies are built with markupsafe.Markup.format, so office names, usernames
and other user-supplied values are HTML-escaped before they reach the mail.
"""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from flask import current_app
from markupsafe import Markup
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import (
    Attachment,
    Content,
    Disposition,
    Email,
    FileContent,
    FileName,
    FileType,
    Mail,
    To,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailAttachment:
    filename: str
    content: bytes
    mime_type: str = "application/pdf"


@dataclass
class EmailMessage:
    to_email: str
    subject: str
    html_content: str
    attachments: list[EmailAttachment] = field(default_factory=list)


class EmailSender(ABC):
    is_log_only = False

    @abstractmethod
    def send(self, message: EmailMessage) -> bool:
        """Deliver the message; True when the provider accepted it."""


@dataclass
class LogEmailSender(EmailSender):
    is_log_only = True
    outbox: list[EmailMessage] = field(default_factory=list)

    def send(self, message: EmailMessage) -> bool:
        logger.info(
            "Email (not delivered, no provider configured) to %s: %s (%d attachments)",
            message.to_email, message.subject, len(message.attachments),
        )
        self.outbox.append(message)
        return True


class SendGridEmailSender(EmailSender):
    def __init__(self, api_key: str, sender: str, sender_name: str):
        self.api_key = api_key
        self.sender = sender
        self.sender_name = sender_name

    def send(self, message: EmailMessage) -> bool:
        mail = Mail(
            from_email=Email(self.sender, self.sender_name),
            to_emails=To(message.to_email),
            subject=message.subject,
            html_content=Content("text/html", message.html_content),
        )
        for attachment in message.attachments:
            mail.add_attachment(Attachment(
                FileContent(base64.b64encode(attachment.content).decode("ascii")),
                FileName(attachment.filename),
                FileType(attachment.mime_type),
                Disposition("attachment"),
            ))
        response = SendGridAPIClient(self.api_key).send(mail)
        if response.status_code in (200, 202):
            logger.info("Email sent to %s: %s", message.to_email, message.subject)
            return True
        logger.error("SendGrid rejected email to %s: status %s", message.to_email, response.status_code)
        return False


def build_email_sender(config) -> EmailSender:
    api_key = config.get("SENDGRID_API_KEY")
    if api_key:
        return SendGridEmailSender(
            api_key,
            config.get("MAIL_SENDER"),
            config.get("MAIL_SENDER_NAME"),
        )
    return LogEmailSender()


def get_email_sender() -> EmailSender:
    return current_app.extensions["email_sender"]


def _dispatch(
    to_email: str | None,
    subject: str,
    html_content: str,
    attachments: list[EmailAttachment] | None = None,
) -> bool:
    if not to_email:
        return False
    try:
        return get_email_sender().send(EmailMessage(to_email, subject, html_content, attachments or []))
    except Exception:
        logger.exception("Failed to send email to %s: %s", to_email, subject)
        return False


_LAYOUT = Markup("""
    <html>
    <body style="font-family: Arial, sans-serif; color: #1f2937;">
        <h2>{title}</h2>
        {body}
        <p style="font-size: 12px; color: #6b7280;">EnamelPure Lune Billing</p>
    </body>
    </html>
    """)


def _layout(title: str, body: Markup) -> str:
    return str(_LAYOUT.format(title=title, body=body))


def _dollars(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def notify_welcome(user) -> bool:
    if not user.email_notifications:
        return False
    return _dispatch(
        user.email,
        "Welcome to Lune Billing",
        _layout(
            "Welcome!",
            Markup("<p>Hi {}, your account <strong>{}</strong> is ready.</p>").format(
                user.full_name or user.username, user.username
            ),
        ),
    )


def notify_password_reset(user, token: str, expiry_minutes: int) -> bool:
    reset_url = f"{current_app.config['FRONTEND_URL']}/reset-password?token={token}"
    return _dispatch(
        user.email,
        "Password reset request",
        _layout(
            "Reset your password",
            Markup(
                '<p><a href="{}">Reset password</a></p>'
                "<p>This link expires in {} minutes. "
                "If you did not request a reset, ignore this email.</p>"
            ).format(reset_url, expiry_minutes),
        ),
    )


def notify_password_changed(user) -> bool:
    if not user.email_notifications:
        return False
    return _dispatch(
        user.email,
        "Your password was changed",
        _layout("Password changed", Markup("<p>If this was not you, contact an administrator immediately.</p>")),
    )


def notify_invoice_generated(invoice, office) -> bool:
    return _dispatch(
        office.email,
        f"Invoice {invoice.invoice_number}",
        _layout(
            f"Invoice {invoice.invoice_number}",
            Markup(
                "<p>{}: a new invoice for {:02d}/{} totalling <strong>{}</strong> is available.</p>"
            ).format(office.name, invoice.month, invoice.year, _dollars(invoice.total_amount_cents)),
        ),
    )


def notify_payment_received(invoice, office) -> bool:
    return _dispatch(
        office.email,
        f"Payment received for {invoice.invoice_number}",
        _layout(
            "Payment received",
            Markup("<p>Thank you. {} was received for invoice {}.</p>").format(
                _dollars(invoice.total_amount_cents), invoice.invoice_number
            ),
        ),
    )


def send_invoice_email(invoice, office, to_email: str, pdf_content: bytes | None = None) -> bool:
    """
    Email an invoice on request, with the client-rendered PDF attached when
    one is supplied. Returns False when delivery failed.
    """
    data = invoice.invoice_data or {}
    attachments = []
    if pdf_content:
        attachments.append(EmailAttachment(f"{invoice.invoice_number}.pdf", pdf_content))

    rows = Markup("").join(
        Markup("<tr><td>{}</td><td><strong>{}</strong></td></tr>").format(label, value)
        for label, value in (
            ("Office", office.name),
            ("Invoice number", invoice.invoice_number),
            ("Period", f"{invoice.month:02d}/{invoice.year}"),
            ("Issue date", data.get("issue_date") or "-"),
            ("Due date", data.get("due_date") or "-"),
            ("Total", _dollars(invoice.total_amount_cents)),
        )
    )
    note = Markup("<p>The invoice is attached as a PDF.</p>") if attachments else Markup("")
    return _dispatch(
        to_email,
        f"Invoice {invoice.invoice_number} from EnamelPure",
        _layout(
            f"Invoice {invoice.invoice_number}",
            Markup("<table>{}</table>{}").format(rows, note),
        ),
        attachments,
    )
