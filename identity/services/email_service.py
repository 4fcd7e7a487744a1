import logging
import os
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

from identity.core.config import settings
from identity.services.notification_dispatcher import EmailMessage

logger = logging.getLogger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")


class EmailNotConfiguredError(RuntimeError):
    pass


def load_template(name: str) -> str:
    path = os.path.join(TEMPLATE_DIR, name)
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except FileNotFoundError:
        logger.error(f"Email template not found: {path}")
        return ""


def render(template: str, **kwargs) -> str:
    for key, value in kwargs.items():
        template = template.replace("{{" + key + "}}", str(value))
    return template


def _send_via_sendgrid(message: EmailMessage) -> None:
    """Send via SendGrid API."""
    from sendgrid import SendGridAPIClient
    from sendgrid.helpers.mail import Mail

    mail = Mail(
        from_email=(settings.from_email, settings.from_name),
        to_emails=message.to_email,
        subject=message.subject,
        html_content=message.html_content,
    )
    sg = SendGridAPIClient(settings.sendgrid_api_key)
    response = sg.send(mail)
    if response.status_code >= 400:
        raise RuntimeError(f"SendGrid responded with status {response.status_code}")
    logger.info(f"Email sent via SendGrid to {message.to_email} | status={response.status_code}")


def _send_via_smtp(message: EmailMessage) -> None:
    """Send via SMTP with STARTTLS."""
    msg = MIMEMultipart("alternative")
    msg["From"] = f"{settings.from_name} <{settings.from_email}>"
    msg["To"] = message.to_email
    msg["Subject"] = message.subject
    msg.attach(MIMEText(message.html_content, "html"))

    with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
        server.starttls()
        server.login(settings.smtp_user, settings.smtp_password)
        server.send_message(msg)

    logger.info(f"Email sent via SMTP to {message.to_email} | subject={message.subject}")


class EmailMailer:
    """Mail transport for the notification dispatcher.

    Uses SendGrid if configured, otherwise SMTP. Raises on failure so the
    dispatcher can apply its retry policy.
    """

    def send(self, message: EmailMessage) -> None:
        if settings.sendgrid_api_key:
            _send_via_sendgrid(message)
        elif settings.smtp_user and settings.smtp_password:
            _send_via_smtp(message)
        else:
            raise EmailNotConfiguredError(
                "No email provider configured (set SENDGRID_API_KEY or SMTP_USER+SMTP_PASSWORD)"
            )
