"""
Transactional email.

Supports multiple email providers:
- SMTP (aiosmtplib)
- SendGrid API
- Resend API
- Console (development fallback)

Templates cover member verification, password reset, VIP alerts to the
concierge desk, partner invitations and service request updates.
"""

import html
import logging
import secrets
import string
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import aiosmtplib
import httpx

from aurelia.core.config import settings

logger = logging.getLogger("aurelia.email")


class EmailProvider(ABC):
    """Abstract base class for email providers."""

    @abstractmethod
    async def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> bool:
        """Send an email."""
        pass


class SMTPProvider(EmailProvider):
    """SMTP email provider using aiosmtplib."""

    async def send_email(self, to: str, subject: str, html_body: str, text_body: str | None = None) -> bool:
        if not settings.SMTP_HOST:
            logger.warning("SMTP_HOST not configured")
            return False

        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = settings.EMAIL_FROM
        message["To"] = to
        if text_body:
            message.attach(MIMEText(text_body, "plain"))
        message.attach(MIMEText(html_body, "html"))

        try:
            await aiosmtplib.send(
                message,
                hostname=settings.SMTP_HOST,
                port=settings.SMTP_PORT,
                username=settings.SMTP_USER,
                password=settings.SMTP_PASSWORD,
                start_tls=True,
            )
            return True
        except aiosmtplib.SMTPException as e:
            logger.error("SMTP email error: %s", e)
            return False


class HTTPEmailProvider(EmailProvider):
    """Shared plumbing for JSON-over-HTTP providers."""

    url: str = ""
    accepted_statuses: tuple[int, ...] = (200,)

    def __init__(self, api_key: str, transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key
        self.transport = transport

    def build_payload(self, to: str, subject: str, html_body: str, text_body: str | None) -> dict:
        raise NotImplementedError

    async def send_email(self, to: str, subject: str, html_body: str, text_body: str | None = None) -> bool:
        try:
            async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, transport=self.transport) as client:
                response = await client.post(
                    self.url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=self.build_payload(to, subject, html_body, text_body),
                )
        except httpx.HTTPError as e:
            logger.error("%s email error: %s", type(self).__name__, e)
            return False

        if response.status_code not in self.accepted_statuses:
            logger.error("%s rejected email (%s): %s", type(self).__name__, response.status_code, response.text[:200])
            return False
        return True


class SendGridProvider(HTTPEmailProvider):
    url = "https://api.sendgrid.com/v3/mail/send"
    accepted_statuses = (200, 202)

    def build_payload(self, to: str, subject: str, html_body: str, text_body: str | None) -> dict:
        return {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": settings.EMAIL_FROM},
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": text_body or html_body},
                {"type": "text/html", "value": html_body},
            ],
        }


class ResendProvider(HTTPEmailProvider):
    url = "https://api.resend.com/emails"

    def build_payload(self, to: str, subject: str, html_body: str, text_body: str | None) -> dict:
        return {
            "from": settings.EMAIL_FROM,
            "to": [to],
            "subject": subject,
            "html": html_body,
            "text": text_body,
        }


class ConsoleProvider(EmailProvider):
    """Logs the email instead of sending it (development)."""

    async def send_email(self, to: str, subject: str, html_body: str, text_body: str | None = None) -> bool:
        logger.info("EMAIL TO: %s | SUBJECT: %s\n%s", to, subject, text_body or html_body)
        return True


def _render(heading: str, paragraphs: list[str], highlight: str | None = None, action: tuple[str, str] | None = None):
    """
    Build matching HTML and plain-text bodies in the house style.

    ``paragraphs`` are plain text and get escaped; ``action`` is a
    (label, url) call-to-action button.
    """
    escaped = "".join(f"<p>{html.escape(p)}</p>" for p in paragraphs)
    highlight_html = f'<div class="highlight">{html.escape(highlight)}</div>' if highlight else ""
    action_html = ""
    if action:
        label, url = action
        action_html = f'<p><a class="button" href="{html.escape(url, quote=True)}">{html.escape(label)}</a></p>'

    html_body = f"""
    <!DOCTYPE html>
    <html>
    <head>
        <style>
            body {{ font-family: Georgia, serif; line-height: 1.7; color: #15233A; background: #faf8f3; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 32px; background: #ffffff; }}
            .brand {{ color: #D4AF37; letter-spacing: 6px; text-transform: uppercase; text-align: center; }}
            .highlight {{ font-size: 28px; font-weight: bold; letter-spacing: 6px; text-align: center;
                          padding: 20px; background: #f5efe0; border-radius: 8px; margin: 20px 0; }}
            .button {{ display: inline-block; padding: 14px 40px; background: #D4AF37; color: #15233A;
                       text-decoration: none; letter-spacing: 3px; text-transform: uppercase; }}
            .footer {{ font-size: 12px; color: #7a8a9a; margin-top: 30px; text-align: center; }}
        </style>
    </head>
    <body>
        <div class="container">
            <h1 class="brand">Aurelia</h1>
            <h2>{html.escape(heading)}</h2>
            {escaped}
            {highlight_html}
            {action_html}
            <div class="footer"><p>{html.escape(settings.PROJECT_NAME)}</p></div>
        </div>
    </body>
    </html>
    """

    text_lines = [heading, ""] + paragraphs
    if highlight:
        text_lines += ["", highlight]
    if action:
        text_lines += ["", f"{action[0]}: {action[1]}"]
    text_lines += ["", "---", settings.PROJECT_NAME]
    return html_body, "\n".join(text_lines)


class EmailService:
    """
    Sends templated emails through the configured provider.

    Provider selection happens lazily so tests can swap settings first.
    """

    def __init__(self):
        self._provider: EmailProvider | None = None

    def _get_provider(self) -> EmailProvider:
        if self._provider is None:
            provider_type = settings.EMAIL_PROVIDER.lower()

            if provider_type == "sendgrid" and settings.SENDGRID_API_KEY:
                self._provider = SendGridProvider(settings.SENDGRID_API_KEY)
            elif provider_type == "resend" and settings.RESEND_API_KEY:
                self._provider = ResendProvider(settings.RESEND_API_KEY)
            elif provider_type == "smtp" and settings.SMTP_HOST:
                self._provider = SMTPProvider()
            else:
                logger.warning("No email provider configured, using console output")
                self._provider = ConsoleProvider()

        return self._provider

    @staticmethod
    def generate_verification_code() -> str:
        """Generate a 6-digit verification code."""
        return "".join(secrets.choice(string.digits) for _ in range(6))

    async def send(self, to: str, subject: str, html_body: str, text_body: str | None = None) -> bool:
        return await self._get_provider().send_email(to, subject, html_body, text_body)

    async def send_verification_email(self, email: str, code: str) -> bool:
        html_body, text_body = _render(
            "Verify your email address",
            [
                "Welcome to Aurelia. Please use the following code to verify your email:",
                f"This code will expire in {settings.VERIFICATION_CODE_EXPIRE_MINUTES} minutes.",
                "If you didn't create an account, you can safely ignore this email.",
            ],
            highlight=code,
        )
        return await self.send(email, f"Verify your email - {settings.PROJECT_NAME}", html_body, text_body)

    async def send_password_reset_email(self, email: str, code: str) -> bool:
        html_body, text_body = _render(
            "Reset your password",
            [
                "We received a request to reset your password. Use this code:",
                f"This code will expire in {settings.VERIFICATION_CODE_EXPIRE_MINUTES} minutes.",
                "If you didn't request a password reset, please ignore this email and ensure your account is secure.",
            ],
            highlight=code,
        )
        return await self.send(email, f"Reset your password - {settings.PROJECT_NAME}", html_body, text_body)

    async def send_vip_alert(
        self,
        alert_type: str,
        score: int,
        tier: str,
        breakdown: dict[str, int],
        session_id: str,
        email: str | None = None,
    ) -> bool:
        """Alert the concierge desk about a high-intent visitor."""
        urgency = "URGENT" if alert_type == "ultra_high_intent" else "Priority"
        lines = [f"Lead score: {score}/100", f"Tier: {tier.upper()}"]
        if email:
            lines.append(f"Email: {email}")
        lines.append(f"Session: {session_id[:20]}")
        lines.extend(f"{key.replace('_', ' ')}: +{value} points" for key, value in breakdown.items())

        html_body, text_body = _render(
            f"{urgency}: VIP detected",
            lines,
            action=("Open VIP dashboard", f"{settings.SITE_URL}/admin/vip"),
        )
        subject = f"{urgency}: {tier.upper()} Lead Detected (Score: {score})"
        return await self.send(settings.ADMIN_NOTIFICATION_EMAIL, subject, html_body, text_body)

    async def send_partner_invite(
        self,
        email: str,
        company_name: str,
        invite_token: str,
        contact_name: str | None = None,
        category: str | None = None,
        match_reason: str | None = None,
        subject: str | None = None,
    ) -> bool:
        greeting = f"Dear {contact_name.split(' ')[0]}," if contact_name else f"Dear {company_name} Team,"
        category_display = (category or "luxury services").replace("_", " ").title()
        paragraphs = [
            greeting,
            f"As a distinguished provider in {category_display}, Aurelia invites you to join our private "
            "network of partners serving discerning members worldwide.",
        ]
        if match_reason:
            paragraphs.append(match_reason)

        html_body, text_body = _render(
            "An invitation to the Aurelia partner network",
            paragraphs,
            action=("Apply now", f"{settings.SITE_URL}/partner/apply?invite={invite_token}"),
        )
        return await self.send(email, subject or "Exclusive Invitation from Aurelia", html_body, text_body)

    async def send_partner_application_notice(self, company_name: str, email: str | None, category: str) -> bool:
        html_body, text_body = _render(
            "New partner application",
            [f"Company: {company_name}", f"Category: {category}", f"Contact: {email or 'not provided'}"],
            action=("Review applications", f"{settings.SITE_URL}/admin/partners"),
        )
        return await self.send(
            settings.ADMIN_NOTIFICATION_EMAIL, f"Partner application: {company_name}", html_body, text_body
        )

    async def send_request_status_email(self, email: str, title: str, status: str) -> bool:
        html_body, text_body = _render(
            "Your request has been updated",
            [f"Request: {title}", f"Status: {status.replace('_', ' ')}"],
            action=("View request", f"{settings.SITE_URL}/dashboard/requests"),
        )
        return await self.send(email, f"Update on your request - {title}", html_body, text_body)


# Global instance
email_service = EmailService()
