from __future__ import annotations

import asyncio
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional, Tuple

from sessionauth.logging import get_logger

logger = get_logger(__name__)

_VERIFY_HTML = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #1f2933; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 40px 20px; }}
        .button {{ display: inline-block; background: #2563eb; color: white; padding: 12px 24px; border-radius: 8px; text-decoration: none; font-weight: 600; }}
        .footer {{ margin-top: 40px; font-size: 12px; color: #5b6470; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>Hi {name},</h1>
        <p>Please confirm your email address to finish setting up your account.</p>
        <p style="margin: 30px 0;">
            <a href="{verification_url}" class="button">Verify Email</a>
        </p>
        <p>If you didn't create an account, you can ignore this email.</p>
        <div class="footer">
            <p>If the button doesn't work, copy and paste this URL: {verification_url}</p>
            <p>&copy; {year}</p>
        </div>
    </div>
</body>
</html>
"""

_VERIFY_TEXT = """Hi {name},

Please confirm your email address by visiting the link below:

{verification_url}

If you didn't create an account, you can ignore this email.

(c) {year}
"""

# template name -> (html, text)
TEMPLATES: Dict[str, Tuple[str, str]] = {
    "verify": (_VERIFY_HTML, _VERIFY_TEXT),
}


class EmailService:
    """Sends templated transactional mail over SMTP.

    When SMTP is not configured the message is logged instead of sent, which
    is what local development and tests rely on.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _redact_email(self, email: str) -> str:
        if "@" not in email:
            return "redacted"
        local, domain = email.split("@", 1)
        return f"{local[:2]}***@{domain}"

    @staticmethod
    def render(template: str, context: Dict[str, Any]) -> Tuple[str, str]:
        try:
            html, text = TEMPLATES[template]
        except KeyError:
            raise ValueError(f"unknown email template: {template}") from None
        return html.format_map(context), text.format_map(context)

    def _send_email(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        if not self.is_configured:
            logger.info(
                "email_dev_mode",
                to=self._redact_email(to_email),
                subject=subject,
                body_preview=text_body[:200],
            )
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        if self.smtp_use_tls:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                server.starttls(context=context)
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())
        else:
            with smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, context=context, timeout=30
            ) as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())

        logger.info("email_sent", to=self._redact_email(to_email), subject=subject)
        return True

    async def send_mail(
        self, to: str, subject: str, template: str, context: Dict[str, Any]
    ) -> bool:
        """Render ``template`` with ``context`` and deliver it.

        Delivery failures are logged and reported as ``False``; they never
        propagate to the caller.
        """

        try:
            html_body, text_body = self.render(template, context)
            return await asyncio.to_thread(self._send_email, to, subject, html_body, text_body)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                to=self._redact_email(to),
                host=self.smtp_host,
                error=str(e),
                error_code=getattr(e, "smtp_code", None),
            )
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(
                "email_recipient_refused",
                to=self._redact_email(to),
                error=str(e),
            )
        except smtplib.SMTPException as e:
            logger.error(
                "email_smtp_error",
                to=self._redact_email(to),
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
        except (ssl.SSLError, TimeoutError, OSError) as e:
            logger.error(
                "email_connect_failed",
                to=self._redact_email(to),
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
        except Exception as e:
            logger.error(
                "email_send_failed",
                to=self._redact_email(to),
                template=template,
                error_type=type(e).__name__,
                error=str(e),
            )
        return False
