import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

import requests

from rentflow.core.config import settings
from rentflow.core.exceptions import EmailDeliveryError

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


def send_email(to_email: str, subject: str, body: str, reply_to: Optional[str] = None) -> None:
    """Deliver one plain-text booking mail.

    SendGrid when SENDGRID_API_KEY is set, SMTP otherwise. Raises
    EmailDeliveryError when the transport refuses the message.
    """
    if not settings.SEND_EMAILS:
        logger.info("SEND_EMAILS disabled; dropping %r to %s", subject, to_email)
        return
    if settings.SENDGRID_API_KEY:
        _deliver_sendgrid(to_email, subject, body, reply_to)
    else:
        _deliver_smtp(to_email, subject, body, reply_to)


def _deliver_smtp(to_email: str, subject: str, body: str, reply_to: Optional[str]) -> None:
    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    if reply_to:
        msg["Reply-To"] = reply_to
    msg.set_content(body)

    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.HTTP_TIMEOUT_SECONDS) as smtp:
            if settings.SMTP_USERNAME:
                smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise EmailDeliveryError(f"SMTP delivery to {to_email} failed: {e}") from e


def _deliver_sendgrid(to_email: str, subject: str, body: str, reply_to: Optional[str]) -> None:
    payload = {
        "personalizations": [{"to": [{"email": to_email}]}],
        "from": {"email": settings.SENDGRID_FROM_EMAIL or settings.SMTP_FROM},
        "subject": subject,
        "content": [{"type": "text/plain", "value": body}],
    }
    if reply_to:
        payload["reply_to"] = {"email": reply_to}

    try:
        r = requests.post(
            SENDGRID_SEND_URL,
            json=payload,
            headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise EmailDeliveryError(f"SendGrid unreachable: {e}") from e
    if r.status_code >= 400:
        raise EmailDeliveryError(f"SendGrid error {r.status_code}: {r.text[:300]}")
