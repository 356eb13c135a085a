"""
TwiML response builders.
"""

import re
from urllib.parse import urlencode
from uuid import UUID

VOICE = "alice"
RECORD_MAX_LENGTH_SECONDS = 60

GREETING = (
    "Hello! You've reached {name}. We are currently assisting other clients. "
    "Please leave your name and how we can help, and I will have a team member "
    "text you back immediately."
)
NOT_CONFIGURED = "We're sorry, this number is not configured correctly. Goodbye."
TECHNICAL_DIFFICULTIES = "We're sorry, we're experiencing technical difficulties. Please try again later."
VERIFICATION_CONFIRMED = (
    "This is a verification call from LeadCatcher. "
    "Your call forwarding is working correctly. Goodbye."
)

_UNSAFE_NAME_CHARS = re.compile(r"[<>&\"']")


def _twiml(body: str) -> str:
    return '<?xml version="1.0" encoding="UTF-8"?>\n<Response>' + body + "</Response>"


def _xml_escape(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def safe_spoken_name(name: str | None) -> str:
    """Strip markup characters from a business name before it is spoken."""
    cleaned = _UNSAFE_NAME_CHARS.sub("", name or "").strip()
    return cleaned or "our business"


def empty_response() -> str:
    return _twiml("")


def say_and_hangup(text: str) -> str:
    return _twiml(f'<Say voice="{VOICE}">{_xml_escape(text)}</Say><Hangup/>')


def transcription_callback_url(base_url: str, business_id: UUID, caller: str, called: str) -> str:
    query = urlencode({"businessId": str(business_id), "caller": caller, "called": called})
    return f"{base_url.rstrip('/')}/webhooks/twilio/transcription?{query}"


def record_voicemail(business_name: str | None, callback_url: str) -> str:
    """Greeting, then a transcribed recording that calls back ``callback_url``."""
    greeting = GREETING.format(name=safe_spoken_name(business_name))
    return _twiml(
        f'<Say voice="{VOICE}">{_xml_escape(greeting)}</Say>'
        f'<Record transcribe="true" transcribeCallback="{_xml_escape(callback_url)}" '
        f'maxLength="{RECORD_MAX_LENGTH_SECONDS}" playBeep="true"/>'
        "<Hangup/>"
    )
