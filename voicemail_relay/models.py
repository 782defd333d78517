"""Data models for the voicemail relay.

Every Twilio callback is turned into one typed event here, once, at the HTTP
boundary. Handlers never read raw form fields.
"""

from datetime import datetime
import json
from typing import Mapping, Optional
import uuid

from pydantic import BaseModel, ConfigDict

from voicemail_relay.db_models import UNKNOWN

TWILIO_PROVIDER = "twilio"
SIMULATOR_PROVIDER = "simulate"
SIMULATOR_REQUIRED_FIELDS = "callSid, caller, toPhone, and recordingUrl are required"


def _field(params: Mapping[str, str], name: str) -> str:
    value = params.get(name)
    return value.strip() if isinstance(value, str) else ""


def normalize_status(value: Optional[str]) -> str:
    return (value or "").strip().lower()


class CallKey(BaseModel):
    """Composite identity of a call record."""
    model_config = ConfigDict(frozen=True)

    provider: str = TWILIO_PROVIDER
    provider_call_id: str


class CallRecord(BaseModel):
    """Read model of a row in the calls table."""
    model_config = ConfigDict(from_attributes=True)

    provider: str
    provider_call_id: str
    call_sid: Optional[str] = None
    from_phone: str = UNKNOWN
    to_phone: str = UNKNOWN
    status: str = UNKNOWN
    recording_url: Optional[str] = None
    transcription: Optional[str] = None
    raw_json: Optional[str] = None
    missed_at: Optional[datetime] = None
    followup_sent_at: Optional[datetime] = None
    followup_message_id: Optional[str] = None

    @property
    def key(self) -> CallKey:
        return CallKey(provider=self.provider, provider_call_id=self.provider_call_id)

    def has_voicemail(self) -> bool:
        return bool(self.recording_url or self.transcription)


class VoiceCallEvent(BaseModel):
    """POST /voice - Twilio asks what to do with a ringing call."""
    call_sid: str = ""
    from_phone: str = ""
    to_phone: str = ""

    @classmethod
    def from_form(cls, params: Mapping[str, str]) -> "VoiceCallEvent":
        return cls(
            call_sid=_field(params, "CallSid"),
            from_phone=_field(params, "From"),
            to_phone=_field(params, "To"),
        )


class StatusCallbackEvent(BaseModel):
    """POST /status - call progress / terminal status."""
    call_sid: str = ""
    parent_call_sid: str = ""
    from_phone: str = ""
    to_phone: str = ""
    raw_status: str = ""
    status: str = UNKNOWN
    recording_sid: str = ""
    recording_url: str = ""
    recording_duration: str = ""
    provider_call_id: str

    @classmethod
    def from_form(cls, params: Mapping[str, str]) -> "StatusCallbackEvent":
        call_sid = _field(params, "CallSid")
        parent_call_sid = _field(params, "ParentCallSid")
        raw_status = _field(params, "CallStatus") or _field(params, "DialCallStatus")
        return cls(
            call_sid=call_sid,
            parent_call_sid=parent_call_sid,
            from_phone=_field(params, "From"),
            to_phone=_field(params, "To"),
            raw_status=raw_status,
            status=normalize_status(raw_status) or UNKNOWN,
            recording_sid=_field(params, "RecordingSid"),
            recording_url=_field(params, "RecordingUrl"),
            recording_duration=_field(params, "RecordingDuration"),
            provider_call_id=call_sid or parent_call_sid or str(uuid.uuid4()),
        )

    @property
    def key(self) -> CallKey:
        return CallKey(provider=TWILIO_PROVIDER, provider_call_id=self.provider_call_id)

    def has_voicemail(self) -> bool:
        """A recording id, a recording URL or a non-zero duration in the payload."""
        if self.recording_sid or self.recording_url:
            return True
        return self.recording_duration not in ("", "0")

    def raw_json(self) -> str:
        return json.dumps(
            {
                "source": "twilio_status_webhook",
                "callSid": self.call_sid,
                "fromPhone": self.from_phone,
                "toPhone": self.to_phone,
                "callStatus": self.raw_status,
            }
        )


class RecordingCallbackEvent(BaseModel):
    """POST /recording - a <Record> finished and the audio is available."""
    provider: str = TWILIO_PROVIDER
    call_sid: str = ""
    recording_sid: str = ""
    recording_url: str = ""
    recording_duration: str = ""
    from_phone: str = UNKNOWN
    to_phone: str = UNKNOWN
    provider_call_id: str

    @classmethod
    def from_form(
        cls, params: Mapping[str, str], query: Mapping[str, str]
    ) -> "RecordingCallbackEvent":
        call_sid = _field(params, "CallSid")
        recording_sid = _field(params, "RecordingSid")
        return cls(
            call_sid=call_sid,
            recording_sid=recording_sid,
            recording_url=_field(params, "RecordingUrl"),
            recording_duration=_field(params, "RecordingDuration"),
            # Caller/callee ride along on the callback URL built by the voice webhook.
            from_phone=_field(query, "from") or _field(params, "From") or UNKNOWN,
            to_phone=_field(query, "to") or _field(params, "To") or UNKNOWN,
            provider_call_id=call_sid or recording_sid or str(uuid.uuid4()),
        )

    @property
    def key(self) -> CallKey:
        return CallKey(provider=self.provider, provider_call_id=self.provider_call_id)

    def raw_json(self) -> str:
        return json.dumps(
            {
                "source": "twilio_recording_webhook",
                "recordingSid": self.recording_sid,
                "callSid": self.call_sid,
                "from": self.from_phone,
                "to": self.to_phone,
                "recordingUrl": self.recording_url,
                "recordingDuration": self.recording_duration,
            }
        )


class InboundSmsEvent(BaseModel):
    """POST /sms - a lead texted the business number."""
    from_phone: str = UNKNOWN
    body: str = ""

    @classmethod
    def from_form(cls, params: Mapping[str, str]) -> "InboundSmsEvent":
        return cls(
            from_phone=_field(params, "From") or UNKNOWN,
            body=params.get("Body") or "",
        )


class SimulateCallbackRequest(BaseModel):
    """Body of POST /test/simulate-callback."""
    call_sid: str
    caller: str
    to_phone: str
    recording_url: str

    @classmethod
    def from_json(cls, body) -> Optional["SimulateCallbackRequest"]:
        """Returns None when any required field is missing."""
        if not isinstance(body, dict):
            return None
        values = {
            "call_sid": body.get("callSid"),
            "caller": body.get("caller"),
            "to_phone": body.get("toPhone") or body.get("to"),
            "recording_url": body.get("recordingUrl"),
        }
        if not all(isinstance(v, str) and v.strip() for v in values.values()):
            return None
        return cls(**{k: v.strip() for k, v in values.items()})

    def to_recording_event(self) -> RecordingCallbackEvent:
        return RecordingCallbackEvent(
            provider=SIMULATOR_PROVIDER,
            call_sid=self.call_sid,
            recording_url=self.recording_url,
            from_phone=self.caller,
            to_phone=self.to_phone,
            provider_call_id=self.call_sid,
        )


class RecordingOutcome(BaseModel):
    """What the recording pipeline did for one callback."""
    skipped: bool = False
    transcription: Optional[str] = None
    caller_notified: bool = False
    owner_notified: bool = False
