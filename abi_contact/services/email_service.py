"""Email notification of accepted contact form submissions."""

import html
from collections.abc import Mapping
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path

import aiosmtplib
import structlog
from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup, escape
from opentelemetry.trace import SpanKind

from abi_contact.core.config import settings
from abi_contact.core.telemetry import service_span
from abi_contact.services.errors import NotificationDeliveryError
from abi_contact.utils.pii import hash_pii

logger = structlog.get_logger(__name__)

# Standard SMTP port for implicit TLS (SMTPS)
SMTPS_PORT = 465


def get_tls_settings(port: int, require_tls: bool) -> tuple[bool, bool | None]:
    """
    Determine TLS settings based on port and require_tls flag.

    Port 465 always uses implicit TLS. Other ports auto-upgrade via STARTTLS
    when offered, or insist on it when require_tls is set.

    Returns:
        Tuple of (use_tls, start_tls) for aiosmtplib.SMTP
    """
    if port == SMTPS_PORT:
        return (True, None)
    return (False, True if require_tls else None)


def nl2br(value: str) -> Markup:
    """Escape value and turn line breaks into <br> tags."""
    return Markup("<br>\n").join(escape(value).splitlines())


# Autoescape re-escapes every interpolated field, including ones that were
# already HTML-escaped during sanitisation.
template_dir = Path(__file__).parent.parent / "templates" / "email"
jinja_env = Environment(
    loader=FileSystemLoader(str(template_dir)),
    autoescape=select_autoescape(["html", "xml"]),
)
jinja_env.filters["nl2br"] = nl2br


class ContactNotifier:
    """Send the cleaned submission to the site's contact mailbox."""

    def __init__(self) -> None:
        self.smtp_host = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_user = settings.SMTP_USER
        self.smtp_password = settings.SMTP_PASSWORD
        self.smtp_timeout = settings.SMTP_TIMEOUT
        self.require_tls = settings.SMTP_REQUIRE_TLS
        self.recipient = settings.CONTACT_RECIPIENT_EMAIL
        self.from_address = formataddr((settings.CONTACT_FROM_NAME, settings.CONTACT_FROM_EMAIL))
        self.subject = settings.CONTACT_SUBJECT

    def build_message(
        self,
        submission: Mapping[str, str],
        client_ip: str,
        submitted_at: datetime,
    ) -> EmailMessage:
        """
        Build the notification email.

        Args:
            submission: Sanitised fields (firstName, lastName, email, phone, message)
            client_ip: Submitter IP address
            submitted_at: Submission time shown in the body

        Returns:
            Multipart message with plain text and HTML alternatives
        """
        context = {
            "first_name": submission["firstName"],
            "last_name": submission["lastName"],
            "email": submission["email"],
            "phone": submission["phone"],
            "message": submission["message"],
            "submitted_at": f"{submitted_at:%Y-%m-%d %H:%M:%S}",
            "client_ip": client_ip,
        }
        html_content = jinja_env.get_template("contact_submission.html").render(**context)
        text_content = f"""
New contact form submission

Name: {context["first_name"]} {context["last_name"]}
Email: {context["email"]}
Phone: {context["phone"]}

Message:
{html.unescape(submission["message"])}

Submitted: {context["submitted_at"]}
IP Address: {client_ip}
        """.strip()

        message = EmailMessage()
        message["Subject"] = self.subject
        message["From"] = self.from_address
        message["To"] = self.recipient
        message["Reply-To"] = submission["email"]
        message.set_content(text_content)
        message.add_alternative(html_content, subtype="html")
        return message

    async def send_submission(
        self,
        submission: Mapping[str, str],
        client_ip: str,
        submitted_at: datetime | None = None,
    ) -> None:
        """
        Deliver a submission over SMTP.

        Raises:
            NotificationDeliveryError: If the SMTP transport fails for any reason
        """
        message = self.build_message(submission, client_ip, submitted_at or datetime.now())
        sender_hash = hash_pii(submission["email"])

        with service_span("email.send", "smtp", kind=SpanKind.CLIENT) as span:
            span.set_attribute("smtp.host", self.smtp_host)
            span.set_attribute("smtp.port", self.smtp_port)
            span.set_attribute("email.reply_to_hash", sender_hash)
            try:
                use_tls, start_tls = get_tls_settings(self.smtp_port, self.require_tls)
                async with aiosmtplib.SMTP(
                    hostname=self.smtp_host,
                    port=self.smtp_port,
                    timeout=self.smtp_timeout,
                    use_tls=use_tls,
                    start_tls=start_tls,
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        await server.login(self.smtp_user, self.smtp_password)
                    await server.send_message(message)
            except TimeoutError as e:
                logger.error("contact_email_send_timeout", reply_to_hash=sender_hash, error=str(e))
                msg = "Failed to send email: timeout"
                raise NotificationDeliveryError(msg) from e
            except OSError as e:
                # ConnectionRefusedError, ConnectionResetError, socket errors
                logger.error("contact_email_send_network_error", reply_to_hash=sender_hash, error=str(e))
                msg = "Failed to send email: network error"
                raise NotificationDeliveryError(msg) from e
            except aiosmtplib.SMTPException as e:
                logger.error("contact_email_send_failed", reply_to_hash=sender_hash, error=str(e))
                msg = "Failed to send email"
                raise NotificationDeliveryError(msg) from e

        logger.info("contact_email_sent", reply_to_hash=sender_hash, recipient=self.recipient)
