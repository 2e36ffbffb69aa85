"""
Email delivery using Resend, or the configured SMTP server when no Resend key is set
"""

import logging
import smtplib
import ssl
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Union

import resend

from ..config import (
    EMAIL_FROM_ADDRESS,
    RESEND_API_KEY,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USER,
)

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


def send_via_smtp(
    to: list[str],
    subject: str,
    html_content: str,
    from_address: str,
) -> dict:
    """Send email via the configured SMTP server"""
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = from_address
    msg["To"] = ", ".join(to)
    msg.attach(MIMEText(html_content, "html"))

    if SMTP_PORT == 465:
        context = ssl.create_default_context()
        server = smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT, context=context, timeout=30)
    else:
        server = smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=30)
        server.starttls(context=ssl.create_default_context())

    try:
        server.login(SMTP_USER, SMTP_PASSWORD)
        server.sendmail(from_address.split("<")[-1].rstrip(">"), to, msg.as_string())
    finally:
        server.quit()

    logger.info(f"✅ SMTP email sent successfully via {SMTP_HOST}")
    return {"id": f"smtp-{datetime.utcnow().timestamp()}", "success": True}


def send_email(
    to: Union[str, list[str]],
    subject: str,
    html_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email using Resend, or SMTP when Resend is not configured

    Raises on delivery failure; callers decide whether that matters.
    """
    recipients = [to] if isinstance(to, str) else to
    sender = from_address or EMAIL_FROM_ADDRESS

    if not RESEND_API_KEY:
        if not SMTP_USER:
            logger.error("❌ No email service configured - RESEND_API_KEY and SMTP_USER missing")
            raise RuntimeError("Email service not configured")
        logger.info(f"📧 Sending email via SMTP to: {recipients}")
        return send_via_smtp(recipients, subject, html_content, sender)

    logger.info(f"📧 Sending email via Resend to: {recipients}")
    response = resend.Emails.send(
        {
            "from": sender,
            "to": recipients,
            "subject": subject,
            "html": html_content,
        }
    )
    logger.info(f"✅ Email sent successfully via Resend: {response}")
    return response
