"""
Email delivery over SMTP.

send_email never raises: every outcome comes back as a SendResult so the
queue processor can feed failures into the retry path.
"""

import logging
import smtplib
import socket
from email.mime.text import MIMEText
from typing import Optional

from sourcing.outreach.config import OUTREACH_CONFIG

logger = logging.getLogger(__name__)


class SendResult:
    """Result of an email send attempt."""
    def __init__(
        self,
        success: bool,
        message: str = "",
        error: Optional[str] = None,
        error_type: Optional[str] = None,
        bounced: bool = False,
    ):
        self.success = success
        self.message = message
        self.error = error
        self.error_type = error_type   # config_error, refused, timeout, smtp_error, unexpected
        self.bounced = bounced

    def __repr__(self) -> str:
        return f"SendResult(success={self.success!r}, error={self.error!r})"


def send_email(
    to_email: str,
    subject: str,
    body: str,
    dry_run: bool = False,
) -> SendResult:
    """
    Send a single plain-text email.

    Args:
        to_email: Recipient (replaced by TEST_RECIPIENT_OVERRIDE when set)
        subject: Email subject
        body: Plain text body
        dry_run: If True, don't actually send

    Returns:
        SendResult with success/failure info
    """
    override = OUTREACH_CONFIG.get('TEST_RECIPIENT_OVERRIDE')
    if override:
        logger.info("Test override: redirecting %s to %s", to_email, override)
        subject = f"[TEST to {to_email}] {subject}"
        to_email = override

    if dry_run or OUTREACH_CONFIG.get('DRY_RUN', False):
        logger.info("[DRY RUN] Would send email to %s: %s", to_email, subject)
        return SendResult(
            success=True,
            message=f"[DRY RUN] Would send to {to_email}",
        )

    smtp_host = OUTREACH_CONFIG.get('SMTP_HOST', 'smtp.gmail.com')
    smtp_port = OUTREACH_CONFIG.get('SMTP_PORT', 587)
    smtp_user = OUTREACH_CONFIG.get('SMTP_USER', '')
    smtp_password = OUTREACH_CONFIG.get('SMTP_PASSWORD', '')
    sender_email = OUTREACH_CONFIG.get('SENDER_EMAIL') or smtp_user
    sender_name = OUTREACH_CONFIG.get('SENDER_NAME', '')
    timeout = OUTREACH_CONFIG.get('SMTP_TIMEOUT_SECONDS', 30)

    if not smtp_user or not smtp_password:
        return SendResult(
            success=False,
            message="SMTP credentials not configured",
            error="SMTP credentials not configured",
            error_type="config_error",
        )

    msg = MIMEText(body, 'plain', 'utf-8')
    if sender_name:
        msg['From'] = f"{sender_name} <{sender_email}>"
    else:
        msg['From'] = sender_email
    msg['To'] = to_email
    msg['Subject'] = subject or ""

    try:
        with smtplib.SMTP(smtp_host, smtp_port, timeout=timeout) as server:
            server.ehlo()
            server.starttls()
            server.ehlo()
            server.login(smtp_user, smtp_password)
            server.sendmail(sender_email, [to_email], msg.as_string())

        logger.info("Email sent to %s", to_email)
        return SendResult(
            success=True,
            message=f"Sent to {to_email}",
        )

    except smtplib.SMTPRecipientsRefused as e:
        logger.error("Recipients refused: %s", e)
        return SendResult(
            success=False,
            message="Recipients refused",
            error=str(e),
            error_type="refused",
            bounced=True,
        )
    except (socket.timeout, TimeoutError) as e:
        logger.error("SMTP timeout after %ss: %s", timeout, e)
        return SendResult(
            success=False,
            message="SMTP timeout",
            error=f"timeout: {e}",
            error_type="timeout",
        )
    except (smtplib.SMTPException, OSError) as e:
        logger.error("SMTP error: %s", e)
        return SendResult(
            success=False,
            message="SMTP error",
            error=str(e),
            error_type="smtp_error",
        )
    except Exception as e:
        logger.error("Unexpected error sending email: %s", e)
        return SendResult(
            success=False,
            message="Unexpected error",
            error=str(e),
            error_type="unexpected",
        )
