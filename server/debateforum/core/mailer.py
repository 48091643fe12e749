"""Outgoing account emails over SMTP.

Sending is best effort: every failure is logged and reported as ``False``,
never raised, so a broken mail relay cannot fail a signup or reset.
"""

import asyncio
import logging
import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

logger = logging.getLogger(__name__)

PASSWORD_RESET_TEMPLATE = """\
Hello {{name}},

Someone asked to reset the password for your account. Use the link below
within 24 hours to choose a new password:

{{reset_url}}

If you did not ask for this, you can ignore this email.
"""

WELCOME_TEMPLATE = """\
Welcome {{name}}!

Your account is ready. Sign in and start your first debate:

{{login_url}}
"""


def render_template(template_content: str, variables: dict[str, str]) -> str:
    """Replace ``{{variable}}`` placeholders."""
    result = template_content
    for key, value in variables.items():
        result = result.replace(f"{{{{{key}}}}}", value)
    return result


class EmailService:
    """Service for sending emails via SMTP."""

    def __init__(self, smtp_server: str, smtp_port: int, smtp_user: str,
                 smtp_password: str, from_email: str, from_name: str,
                 frontend_url: str, enabled: bool = True, use_tls: bool = True):
        self.smtp_server = smtp_server
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = from_email
        self.from_name = from_name
        self.frontend_url = frontend_url.rstrip("/")
        self.enabled = enabled
        self.use_tls = use_tls

    @classmethod
    def from_env(cls) -> "EmailService":
        smtp_server = os.environ.get("SMTP_SERVER", "")
        enabled = os.environ.get("SMTP_ENABLED", "true").lower() == "true"
        if enabled and not smtp_server:
            logger.warning("SMTP_SERVER not set, email service disabled")
            enabled = False
        return cls(
            smtp_server=smtp_server,
            smtp_port=int(os.environ.get("SMTP_PORT", 587)),
            smtp_user=os.environ.get("SMTP_USER", ""),
            smtp_password=os.environ.get("SMTP_PASSWORD", ""),
            from_email=os.environ.get("SMTP_FROM_EMAIL", "noreply@localhost"),
            from_name=os.environ.get("SMTP_FROM_NAME", "Debate Forum"),
            frontend_url=os.environ.get("FRONTEND_URL", "http://localhost:3000"),
            enabled=enabled,
            use_tls=os.environ.get("SMTP_USE_TLS", "true").lower() == "true",
        )

    def send_email(self, to_email: str, subject: str, text_body: str,
                   html_body: str | None = None) -> bool:
        """Send an email via SMTP. Returns True if it was handed to the relay."""
        if not self.enabled:
            logger.warning(f"Email service disabled. Would send to {to_email}: {subject}")
            return False

        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = f"{self.from_name} <{self.from_email}>"
            msg["To"] = to_email
            msg.attach(MIMEText(text_body, "plain"))
            if html_body:
                msg.attach(MIMEText(html_body, "html"))

            with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=30) as server:
                if self.use_tls:
                    server.starttls()
                if self.smtp_user:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)

            logger.info(f"Email sent successfully to {to_email}")
            return True

        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed: {e}")
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP error sending email to {to_email}: {e}")
            return False

    async def send_password_reset_email(self, to_email: str, reset_url: str,
                                        name: str | None = None) -> bool:
        body = render_template(
            PASSWORD_RESET_TEMPLATE, {"name": name or "there", "reset_url": reset_url}
        )
        return await asyncio.to_thread(
            self.send_email, to_email, "Reset Your Password", body
        )

    async def send_welcome_email(self, to_email: str, name: str) -> bool:
        body = render_template(
            WELCOME_TEMPLATE,
            {"name": name, "login_url": f"{self.frontend_url}/auth/signin"},
        )
        return await asyncio.to_thread(
            self.send_email, to_email, "Welcome to Debate Forum!", body
        )

    def reset_url(self, token: str) -> str:
        return f"{self.frontend_url}/auth/reset-password?token={token}"
