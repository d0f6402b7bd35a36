"""
Email service - handles sending notification emails.
Currently supports: Mock (development) and SMTP (production ready).
"""
import asyncio
import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import formataddr
from typing import Optional, List, Tuple
from abc import ABC, abstractmethod

from daily_outreach.config import settings

logger = logging.getLogger(__name__)


class EmailService(ABC):
    """Base email service interface."""

    @abstractmethod
    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        html: Optional[str] = None
    ) -> bool:
        """Send an email."""
        pass

    def build_contacts_ready_email(
        self,
        secure_token: str,
        prospects: List[dict],
        base_url: str,
        name: Optional[str] = None
    ) -> Tuple[str, str, str]:
        """
        (subject, plain body, html) telling the user today's batch is waiting.

        `prospects` holds one dict per item with the keys `name`, `company`
        and optionally `role`.
        """
        batch_link = f"{base_url}/outreach/daily/{secure_token}"

        lines = []
        for prospect in prospects:
            line = f"- {prospect['name']} @ {prospect['company']}"
            if prospect.get("role"):
                line += f" ({prospect['role']})"
            lines.append(line)
        prospect_text = "\n".join(lines)

        rows = "".join(
            f"<li><strong>{prospect['name']}</strong> @ {prospect['company']}"
            f"{'<br><small>' + prospect['role'] + '</small>' if prospect.get('role') else ''}</li>"
            for prospect in prospects
        )

        subject = f"Your {len(prospects)} prospects for today are ready"
        body = f"""
Hi {name or 'there'},

Your daily outreach emails are written and waiting for you.

Your prospects for today:
{prospect_text}

Review and send them here:

{batch_link}

This link expires at the end of tomorrow.

Best regards,
{settings.EMAIL_FROM_NAME}
        """

        html = f"""
        <html>
        <body>
            <h2>Your prospects for today are ready</h2>
            <p>Hi {name or 'there'},</p>
            <ul>{rows}</ul>
            <p>
                <a href="{batch_link}"
                   style="background-color: #0066FF; color: white; padding: 14px 25px;
                          text-decoration: none; display: inline-block; border-radius: 4px;">
                    Review &amp; Send
                </a>
            </p>
            <p>Or copy this link: {batch_link}</p>
            <p><small>This link expires at the end of tomorrow.</small></p>
        </body>
        </html>
        """

        return subject, body, html

    async def send_contacts_ready_email(
        self,
        to: str,
        secure_token: str,
        prospects: List[dict],
        base_url: str,
        name: Optional[str] = None
    ) -> bool:
        """Tell the user today's batch is waiting."""
        subject, body, html = self.build_contacts_ready_email(secure_token, prospects, base_url, name)
        return await self.send_email(to, subject, body, html)

    async def send_need_more_contacts_email(
        self,
        to: str,
        available: int,
        required: int,
        base_url: str,
        name: Optional[str] = None
    ) -> bool:
        """Nudge the user to add prospects when the pool runs dry."""
        search_link = f"{base_url}/app"

        subject = "Time to refill your sales pipeline"
        body = f"""
Hi {name or 'there'},

You're running low on contacts to reach out to: {available} available, {required} needed for a daily batch.

Search for new leads here:

{search_link}

Quick tip: search for 10-15 new companies to keep a healthy pipeline.

Best regards,
{settings.EMAIL_FROM_NAME}
        """

        html = f"""
        <html>
        <body>
            <h2>Time to find new prospects</h2>
            <p>Hi {name or 'there'},</p>
            <p>You're running low on contacts to reach out to
               ({available} available, {required} needed for a daily batch).</p>
            <p>
                <a href="{search_link}"
                   style="background-color: #0066FF; color: white; padding: 14px 25px;
                          text-decoration: none; display: inline-block; border-radius: 4px;">
                    Search for New Leads
                </a>
            </p>
        </body>
        </html>
        """

        return await self.send_email(to, subject, body, html)


class MockEmailService(EmailService):
    """
    Mock email service for development.
    Logs emails instead of sending.
    """

    def __init__(self):
        # Store sent emails for testing/debugging
        self.sent_emails: list = []

    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        html: Optional[str] = None
    ) -> bool:
        """Mock send - logs and stores for debugging."""
        email_data = {
            "to": to,
            "subject": subject,
            "body": body,
            "html": html
        }
        self.sent_emails.append(email_data)

        logger.info(f"MOCK EMAIL to {to}: {subject}")
        logger.debug(body)

        return True

    def get_last_email(self) -> Optional[dict]:
        """Get the last sent email (for testing)."""
        return self.sent_emails[-1] if self.sent_emails else None


class SMTPEmailService(EmailService):
    """
    SMTP email service for production.
    Configure with environment variables:
    - SMTP_HOST
    - SMTP_PORT
    - SMTP_USER
    - SMTP_PASSWORD
    - EMAIL_FROM
    - EMAIL_FROM_NAME
    """

    def __init__(self):
        self.host = settings.SMTP_HOST
        self.port = settings.SMTP_PORT
        self.user = settings.SMTP_USER
        self.password = settings.SMTP_PASSWORD
        self.from_email = settings.EMAIL_FROM
        self.from_name = settings.EMAIL_FROM_NAME

    def _deliver(self, to: str, message: str) -> None:
        with smtplib.SMTP(self.host, self.port) as server:
            server.starttls()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.sendmail(self.from_email, to, message)

    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        html: Optional[str] = None
    ) -> bool:
        """Send email via SMTP."""
        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = formataddr((self.from_name, self.from_email))
            msg['To'] = to

            # Add plain text
            msg.attach(MIMEText(body, 'plain'))

            # Add HTML if provided
            if html:
                msg.attach(MIMEText(html, 'html'))

            await asyncio.to_thread(self._deliver, to, msg.as_string())

            logger.info(f"Email sent to {to}: {subject}")
            return True

        except Exception as e:
            logger.error(f"Failed to send email to {to}: {e}")
            return False


# =============================================================================
# EMAIL SERVICE SINGLETON
# =============================================================================

_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """Get the email service instance."""
    global _email_service

    if _email_service is None:
        if settings.SMTP_HOST:
            logger.info("Using SMTP Email Service")
            _email_service = SMTPEmailService()
        else:
            logger.info("Using Mock Email Service (emails are logged)")
            _email_service = MockEmailService()

    return _email_service
