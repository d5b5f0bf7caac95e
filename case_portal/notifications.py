"""
Owner Notifications
===================

Tells a case owner that a lawyer asked for access to their case.
Sends over SMTP when configured, otherwise logs the message (dev mode).
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


class OwnerNotifier:
    """Email notifier for access-request events"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def send_email(self, to_email: str, subject: str, text_body: str) -> bool:
        """
        Send a plain-text email.

        Returns True if sent (or logged in dev mode), False on SMTP failure.
        """
        cfg = self.settings
        if not cfg.smtp_configured:
            logger.info(f"[DEV MODE] Email would be sent to {to_email}: {subject}")
            logger.debug(f"[DEV MODE] Email body: {text_body[:200]}")
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = cfg.smtp_from
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain", "utf-8"))

        try:
            with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port) as server:
                if cfg.smtp_use_tls:
                    server.starttls()
                server.login(cfg.smtp_user, cfg.smtp_password)
                server.sendmail(cfg.smtp_from, to_email, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to_email}: {e.__class__.__name__}")
            return False

        logger.info(f"Email sent successfully to {to_email}")
        return True

    def access_requested(self, owner, lawyer, case) -> bool:
        """Notify ``owner`` that ``lawyer`` requested access to ``case``."""
        if not self.settings.notify_owner_on_request:
            return False
        if owner is None or not owner.email:
            logger.warning(f"Case {case.id} has no reachable owner; skipping notification")
            return False

        link = f"{self.settings.app_url.rstrip('/')}/case/{case.id}"
        lawyer_name = lawyer.full_name if lawyer is not None else "A lawyer"
        text_body = (
            f"Hello {owner.first_name},\n\n"
            f"{lawyer_name} has requested access to your case \"{case.title}\".\n"
            f"Review the request here: {link}\n"
        )
        return self.send_email(
            to_email=owner.email,
            subject=f"Access request for \"{case.title}\"",
            text_body=text_body,
        )
