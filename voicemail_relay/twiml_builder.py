"""TwiML generation utilities.

Handles:
- XML escaping for all dynamic content
- Proper URL encoding for the recording callback
- Unicode normalization and control character removal
"""

import re
import unicodedata
from urllib.parse import urlencode
import xml.sax.saxutils as saxutils

SAY_VOICE = "Polly.Matthew-Neural"
RECORD_MAX_LENGTH_SECONDS = 120
RECORD_SILENCE_TIMEOUT_SECONDS = 10
RECORDING_CALLBACK_PATH = "/v1/webhooks/twilio/recording"
UNAVAILABLE_MESSAGE = "Sorry, we are unable to process your call right now."


def sanitize_say_text(text: str, fallback: str = UNAVAILABLE_MESSAGE) -> str:
    """
    Sanitize text for Twilio <Say> tags.

    - Normalizes Unicode (NFKC)
    - Removes control characters (keeps basic whitespace)
    - Collapses whitespace
    - Escapes for XML
    - Returns fallback if empty
    """
    t = unicodedata.normalize("NFKC", text or "")
    t = "".join(ch for ch in t if ch in ["\n", "\t"] or ord(ch) >= 32)
    t = re.sub(r"\s+", " ", t).strip()
    if not t:
        t = fallback
    return saxutils.escape(t, {'"': "&quot;", "'": "&apos;"})


def recording_callback_url(base_url: str, from_phone: str, to_phone: str) -> str:
    """Callback URL carrying caller/callee so the recording webhook needs no lookup."""
    query = urlencode({"from": from_phone or "", "to": to_phone or ""})
    return f"{base_url.rstrip('/')}{RECORDING_CALLBACK_PATH}?{query}"


def build_voicemail_twiml(greeting: str, callback_url: str) -> str:
    """
    Build the answer TwiML: play the consent greeting, then record a voicemail.

    Args:
        greeting: Consent script read to the caller
        callback_url: recordingStatusCallback target (unescaped)

    Returns:
        Complete TwiML XML string
    """
    greeting_escaped = sanitize_say_text(greeting)
    callback_escaped = saxutils.escape(callback_url, {'"': "&quot;"})

    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Say voice="{SAY_VOICE}">{greeting_escaped}</Say>
    <Record maxLength="{RECORD_MAX_LENGTH_SECONDS}" timeout="{RECORD_SILENCE_TIMEOUT_SECONDS}" playBeep="true" transcribe="false" recordingStatusCallback="{callback_escaped}" recordingStatusCallbackEvent="completed" />
</Response>"""


def build_unavailable_twiml(message: str = UNAVAILABLE_MESSAGE) -> str:
    """Apologize and hang up."""
    msg_escaped = sanitize_say_text(message)

    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Say>{msg_escaped}</Say>
    <Hangup/>
</Response>"""
