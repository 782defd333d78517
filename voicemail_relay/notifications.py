"""Twilio SMS notifications.

Two kinds of texts leave this service:
1. Missed-call follow-up to the caller
2. Voicemail / lead alert to the business owner
"""

from typing import Optional

from pydantic import BaseModel
from twilio.base.exceptions import TwilioRestException

from voicemail_relay.db_models import UNKNOWN
from voicemail_relay.logging_config import get_logger, mask_phone

logger = get_logger(__name__)

FOOTER = "Msg&data rates may apply. Reply STOP to opt out."
MAX_SMS_BODY = 1600  # Twilio Messages API limit
ELLIPSIS = "..."


class SmsResult(BaseModel):
    ok: bool
    message_id: Optional[str] = None
    detail: Optional[str] = None


def fit_message_body(message: str, footer: str = FOOTER, max_length: int = MAX_SMS_BODY) -> str:
    """Return a body that carries the footer exactly once and fits max_length."""
    content = message.replace(footer, "") if footer in message else message
    content = content.rstrip()
    suffix = f"\n\n{footer}"

    if len(content) + len(suffix) > max_length:
        keep = max(0, max_length - len(suffix) - len(ELLIPSIS))
        content = content[:keep].rstrip() + ELLIPSIS

    return f"{content}{suffix}"


class TwilioSmsGateway:
    """Thin wrapper over twilio.rest.Client, built once from config."""

    def __init__(self, account_sid: str, auth_token: str, timeout_s: float = 10.0, http_client=None):
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._timeout_s = timeout_s
        self._http_client = http_client
        self._client = None

    @property
    def configured(self) -> bool:
        return bool(self._account_sid and self._auth_token)

    def _get_twilio_client(self):
        if self._client is None:
            from twilio.rest import Client
            from twilio.http.http_client import TwilioHttpClient

            http_client = self._http_client or TwilioHttpClient(timeout=self._timeout_s)
            self._client = Client(self._account_sid, self._auth_token, http_client=http_client)
        return self._client

    def send_sms(self, to: str, from_: str, body: str) -> SmsResult:
        message = self._get_twilio_client().messages.create(to=to, from_=from_, body=body)
        return SmsResult(ok=True, message_id=message.sid)


class NotificationDispatcher:
    """Sends texts. Never raises: a failed send is logged and reported as ok=False."""

    def __init__(self, gateway: TwilioSmsGateway, default_sender: str = "", max_length: int = MAX_SMS_BODY):
        self._gateway = gateway
        self._default_sender = default_sender
        self._max_length = max_length

    def is_configured(self) -> bool:
        return self._gateway.configured

    def send(self, recipient: Optional[str], body: str, sender: Optional[str] = None) -> SmsResult:
        """Send one SMS to one recipient."""
        sender = sender or self._default_sender
        if not recipient or recipient == UNKNOWN or not sender:
            logger.warning("sms_skipped_missing_phone", to=mask_phone(recipient), has_sender=bool(sender))
            return SmsResult(ok=False, detail="missing_sms_phone")

        if not self._gateway.configured:
            logger.warning("sms_skipped_not_configured", to=mask_phone(recipient))
            return SmsResult(ok=False, detail="missing_twilio_credentials")

        text = fit_message_body(body, max_length=self._max_length)
        try:
            result = self._gateway.send_sms(recipient, sender, text)
        except TwilioRestException as e:
            logger.error("sms_send_failed", to=mask_phone(recipient), status=e.status, code=e.code, error=e.msg)
            return SmsResult(ok=False, detail=f"twilio_sms_failed_{e.status}")
        except Exception as e:
            logger.error("sms_send_error", to=mask_phone(recipient), error=str(e), error_type=type(e).__name__)
            return SmsResult(ok=False, detail="twilio_sms_error")

        if result.ok:
            logger.info("sms_sent", to=mask_phone(recipient), sid=result.message_id, chars=len(text))
        else:
            logger.error("sms_send_failed", to=mask_phone(recipient), detail=result.detail)
        return result

    def send_many(self, recipients: list[Optional[str]], body: str, sender: Optional[str] = None) -> list[SmsResult]:
        """Attempt every recipient even when an earlier send fails."""
        return [self.send(recipient, body, sender=sender) for recipient in recipients]
