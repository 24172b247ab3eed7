import html
import logging
import os
import re
import smtplib
import ssl
from email.message import EmailMessage
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from config import Settings
from errors import NotificationError
from ledger import CertificateRecord

logger = logging.getLogger("certportal.mailer")

DEFAULT_SUBJECT = "Your Certificate"
DEFAULT_MESSAGE = "Please find your certificate attached."

_PLACEHOLDER = re.compile(r"\{([^{}]+)\}")


# ----------- Data models -----------

class EmailConfig(BaseModel):
    # Per-request overrides of the SMTP settings
    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = None
    sender: Optional[str] = Field(default=None, alias="from")

    model_config = ConfigDict(populate_by_name=True)


class SendResult(BaseModel):
    email: str
    status: str                      # "sent" or "failed"
    error: Optional[str] = None


# ----------- Transport -----------

class SmtpMailer:
    def __init__(self, host: str, port: int, user: Optional[str], password: Optional[str], sender: Optional[str]):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user

    @classmethod
    def from_settings(cls, settings: Settings, overrides: Optional[EmailConfig] = None) -> "SmtpMailer":
        overrides = overrides or EmailConfig()
        mailer = cls(
            host=overrides.host or settings.smtp_host,
            port=overrides.port or settings.smtp_port,
            user=overrides.user or settings.email_user,
            password=overrides.password or settings.email_pass,
            sender=overrides.sender or settings.email_from,
        )
        if not mailer.host or not mailer.sender:
            raise NotificationError("Email is not configured: set EMAIL_USER / EMAIL_FROM and SMTP_HOST")
        return mailer

    def _connect(self) -> smtplib.SMTP:
        if self.port == 465:
            return smtplib.SMTP_SSL(self.host, self.port, context=ssl.create_default_context())
        server = smtplib.SMTP(self.host, self.port)
        if self.port == 587:
            server.starttls(context=ssl.create_default_context())
        return server

    def send(self, to: str, subject: str, html_body: str, attachment: bytes, attachment_name: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg.set_content("Your certificate is attached.")
        msg.add_alternative(html_body, subtype="html")
        msg.add_attachment(attachment, maintype="image", subtype="png", filename=attachment_name)

        with self._connect() as server:
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(msg)


# ----------- Bulk notifier -----------

def fill_placeholders(template: str, values: Dict[str, Any]) -> str:
    """
    Replace {name} with values[name]; unknown placeholders stay as written.
    """
    def _sub(match):
        key = match.group(1)
        return str(values[key]) if key in values else match.group(0)
    return _PLACEHOLDER.sub(_sub, template)


def build_body(record: CertificateRecord, message: str) -> str:
    items = "".join(
        f"<li><strong>{html.escape(field)}:</strong> {html.escape(value)}</li>"
        for field, value in record.data.items()
    )
    return (
        "<h2>Congratulations!</h2>"
        f"<p>{html.escape(message)}</p>"
        "<p>Certificate Details:</p>"
        f"<ul>{items}</ul>"
        "<p>Best regards!</p>"
    )


def notify_all(
    records: List[CertificateRecord],
    mailer,
    certificates_dir: str,
    subject_template: Optional[str] = None,
    body_template: Optional[str] = None,
) -> List[SendResult]:
    """
    Send each certificate to its recipient, one at a time.

    Records whose image is gone from disk are skipped without a result entry.
    A failed send is recorded and the loop carries on.
    """
    results = []
    for record in records:
        path = os.path.join(certificates_dir, record.file_name)
        if not os.path.exists(path):
            logger.warning("Certificate file not found: %s", record.file_name)
            continue

        values = dict(record.data)
        values["email"] = record.email
        subject = fill_placeholders(subject_template or DEFAULT_SUBJECT, values)
        message = fill_placeholders(body_template or DEFAULT_MESSAGE, values)

        try:
            with open(path, "rb") as f:
                attachment = f.read()
            mailer.send(
                to=record.email,
                subject=subject,
                html_body=build_body(record, message),
                attachment=attachment,
                attachment_name=f"certificate_{record.email}.png",
            )
        except Exception as e:
            logger.error("Email failed for %s: %s", record.email, e)
            results.append(SendResult(email=record.email, status="failed", error=str(e)))
            continue

        logger.info("Email sent to: %s", record.email)
        results.append(SendResult(email=record.email, status="sent"))

    return results
