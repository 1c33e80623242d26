import logging
from flask import current_app
from twilio.rest import Client

logger = logging.getLogger(__name__)


def send_sms(to: str, body: str):
    """Send a text message through Twilio. Returns the message sid, or None when disabled."""
    cfg = current_app.config
    if not cfg.get("SMS_ENABLED"):
        logger.info("SMS disabled, skipping message to %s", to)
        return None

    if not (cfg.get("TWILIO_ACCOUNT_SID") and cfg.get("TWILIO_AUTH_TOKEN") and cfg.get("TWILIO_PHONE_NUMBER")):
        logger.warning("SMS enabled but Twilio credentials are missing")
        return None

    client = Client(cfg["TWILIO_ACCOUNT_SID"], cfg["TWILIO_AUTH_TOKEN"])
    result = client.messages.create(body=body, from_=cfg["TWILIO_PHONE_NUMBER"], to=to)
    logger.info("SMS sent: %s", result.sid)
    return result.sid
