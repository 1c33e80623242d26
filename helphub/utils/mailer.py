import logging
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid
from flask import current_app

logger = logging.getLogger(__name__)


def send_email(to: str, subject: str, html: str, text: str = None):
    """Send one HTML email over SMTP. Raises on transport failure."""
    cfg = current_app.config
    if not cfg.get("MAIL_ENABLED"):
        logger.info("Mail disabled, skipping email to %s (%s)", to, subject)
        return False

    msg = EmailMessage()
    msg["From"] = f"{cfg['EMAIL_FROM_NAME']} <{cfg['EMAIL_FROM_ADDRESS']}>"
    msg["To"] = to
    msg["Subject"] = subject
    msg["Reply-To"] = cfg["EMAIL_FROM_ADDRESS"]
    msg["Message-ID"] = make_msgid(domain=cfg["EMAIL_FROM_ADDRESS"].split("@")[-1])

    msg.set_content(text or "This is an automated message. Please view in HTML.")
    msg.add_alternative(html, subtype="html")

    smtp_cls = smtplib.SMTP_SSL if cfg["SMTP_USE_SSL"] else smtplib.SMTP
    logger.debug("Connecting to SMTP %s:%s", cfg["SMTP_HOST"], cfg["SMTP_PORT"])

    with smtp_cls(cfg["SMTP_HOST"], cfg["SMTP_PORT"]) as server:
        if not cfg["SMTP_USE_SSL"]:
            server.starttls()
        if cfg.get("SMTP_USERNAME"):
            server.login(cfg["SMTP_USERNAME"], cfg["SMTP_PASSWORD"])
        server.send_message(msg)

    logger.info("Email sent to %s", to)
    return True
