# kht/sms.py
import logging
import re
from urllib.parse import quote

from twilio.rest import Client

from . import config

logger = logging.getLogger(__name__)

E164 = re.compile(r"^\+\d{8,15}$")

INVITE_MESSAGE = (
    "Join me on KHT to better monitor your medical history. "
    "Download the app here: [App Store Link]"
)

_client = None


def normalize_phone(phone: str) -> str:
    return re.sub(r"\s+", "", phone or "")


def is_valid_phone(phone: str) -> bool:
    return bool(E164.match(phone))


def invite_url(phone: str) -> str:
    """sms: deep link the doctor's device opens to invite an unregistered patient."""
    return f"sms:{phone}?body={quote(INVITE_MESSAGE)}"


def _twilio_client():
    global _client
    if _client is None:
        _client = Client(config.TWILIO_ACCOUNT_SID, config.TWILIO_AUTH_TOKEN)
    return _client


def twilio_configured() -> bool:
    return bool(config.TWILIO_ACCOUNT_SID and config.TWILIO_AUTH_TOKEN and config.TWILIO_PHONE_NUMBER)


def send_sms(to_phone_number: str, message: str) -> bool:
    """
    Sends an SMS through Twilio. Without Twilio credentials the message is only
    logged, which is how local development receives OTP codes.
    """
    if not twilio_configured():
        logger.warning("Twilio not configured, mock SMS to %s: %s", to_phone_number, message)
        return True

    try:
        response = _twilio_client().messages.create(
            to=to_phone_number,
            from_=config.TWILIO_PHONE_NUMBER,
            body=message,
        )
    except Exception:
        logger.exception("Failed to send SMS via Twilio to %s", to_phone_number)
        return False

    logger.info("SMS accepted by Twilio for %s, sid=%s", to_phone_number, response.sid)
    return True
