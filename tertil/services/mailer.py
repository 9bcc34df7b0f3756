# services/mailer.py
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from tertil.settings.config import settings

logger = logging.getLogger(__name__)


def send_email(
    to_email: str,
    subject: str,
    text_body: str,
    html_body: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> bool:
    """
    Sends an email using SMTP or 'dummy' transport (logs only).
    Uses STARTTLS/SSL based on settings; logs in if SMTP_USERNAME is provided.
    Keeps From == authenticated user for Gmail; puts branded address in Reply-To.
    """
    transport = (settings.EMAIL_TRANSPORT or "smtp").lower()

    if transport == "dummy":
        logger.info("Dummy email to %s: %s\n%s", to_email, subject, text_body)
        return True

    from_addr = (settings.SMTP_FROM or settings.SMTP_USERNAME or "").strip()

    # Gmail enforces From to match the authenticated account; push branded address into Reply-To
    if settings.SMTP_USERNAME and from_addr and from_addr.lower() != settings.SMTP_USERNAME.lower():
        if not reply_to:
            reply_to = from_addr
        from_addr = settings.SMTP_USERNAME

    msg = MIMEMultipart("alternative")
    msg["From"] = f"{settings.APP_NAME} <{from_addr}>" if from_addr else settings.APP_NAME
    msg["To"] = to_email
    msg["Subject"] = subject
    if reply_to:
        msg["Reply-To"] = reply_to

    msg.attach(MIMEText(text_body or "", "plain", "utf-8"))
    if html_body:
        msg.attach(MIMEText(html_body, "html", "utf-8"))

    host = settings.SMTP_HOST
    port = int(settings.SMTP_PORT or 587)

    try:
        if settings.SMTP_USE_SSL:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(host, port, context=context, timeout=30) as s:
                if settings.SMTP_USERNAME:
                    s.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD or "")
                s.sendmail(from_addr, [to_email], msg.as_string())
        else:
            with smtplib.SMTP(host, port, timeout=30) as s:
                s.ehlo()
                if settings.SMTP_USE_TLS:
                    s.starttls(context=ssl.create_default_context())
                    s.ehlo()
                if settings.SMTP_USERNAME:
                    s.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD or "")
                s.sendmail(from_addr, [to_email], msg.as_string())
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.warning("send_email to %s failed: %s", to_email, e)
        return False
