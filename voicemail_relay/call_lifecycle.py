"""Call lifecycle coordination.

Twilio reports one call through several independent callbacks:
- voice:     the call is ringing; we answer with a greeting and <Record>
- recording: the voicemail audio is ready
- status:    the call ended (completed / no-answer / busy / canceled)

They can arrive in any order and may be redelivered. Each handler merges what
it learned into the call row and decides on its own whether a text is owed.
Duplicate texts are prevented by the set-if-null follow-up markers, not by
locking.
"""

from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from voicemail_relay import metrics
from voicemail_relay.call_store import CallRecordStore
from voicemail_relay.config import Config
from voicemail_relay.logging_config import get_logger, mask_phone
from voicemail_relay.models import (
    CallKey,
    InboundSmsEvent,
    RecordingCallbackEvent,
    RecordingOutcome,
    SimulateCallbackRequest,
    StatusCallbackEvent,
    VoiceCallEvent,
)
from voicemail_relay.notifications import NotificationDispatcher, SmsResult
from voicemail_relay.recordings import (
    PLACEHOLDER_TRANSCRIPT,
    AudioRetriever,
    Transcriber,
    TranscriptionError,
    UntrustedRecordingSource,
    recording_host,
)
from voicemail_relay.tenants_store import TenantDirectory
from voicemail_relay.twiml_builder import build_voicemail_twiml, recording_callback_url

logger = get_logger(__name__)

MISSED_STATUSES = frozenset({"no-answer", "busy", "canceled"})

STATUS_INITIATED = "initiated"
STATUS_RECORDED = "recorded"
STATUS_COMPLETED = "completed"


def voicemail_message(business_name: str, transcript: str) -> str:
    return (
        f"Hi, this is the team at {business_name}. "
        f'We missed your call regarding: "{transcript}". We will follow up shortly!'
    )


def lead_captured_message(from_phone: str, body: str) -> str:
    return f"💰 Lead Captured!\nFrom: {from_phone}\nSays: {body}\n\nCall them back!"


class CallLifecycleCoordinator:
    """Turns Twilio callbacks into call-record updates and texts."""

    def __init__(
        self,
        config: Config,
        store: CallRecordStore,
        tenants: TenantDirectory,
        retriever: AudioRetriever,
        transcriber: Transcriber,
        dispatcher: NotificationDispatcher,
    ):
        self.config = config
        self.store = store
        self.tenants = tenants
        self.retriever = retriever
        self.transcriber = transcriber
        self.dispatcher = dispatcher

    # ------------------------------------------------------------------
    # voice
    # ------------------------------------------------------------------

    def build_voice_response(self, event: VoiceCallEvent, request_base_url: str) -> str:
        """Greeting + <Record>. No database work: this runs while the caller waits."""
        base_url = self.config.PUBLIC_BASE_URL or request_base_url
        callback_url = recording_callback_url(base_url, event.from_phone, event.to_phone)
        logger.info(
            "voice_webhook_accepted",
            call_sid=event.call_sid or "unknown",
            from_number=mask_phone(event.from_phone),
            to_number=mask_phone(event.to_phone),
        )
        return build_voicemail_twiml(self.config.consent_script(), callback_url)

    # ------------------------------------------------------------------
    # status
    # ------------------------------------------------------------------

    def handle_status(self, event: StatusCallbackEvent) -> dict:
        """Record the status and send the missed-call follow-up if one is owed."""
        key = event.key
        status = event.status

        self.store.upsert_from_callback(
            key,
            {
                "call_sid": event.call_sid or None,
                "from_phone": event.from_phone or "unknown",
                "to_phone": event.to_phone or "unknown",
                "status": status,
                "raw_json": event.raw_json(),
            },
        )

        missed_call = status in MISSED_STATUSES
        voicemail_found = status == STATUS_COMPLETED and (
            event.has_voicemail() or self._voicemail_on_record(key, event.call_sid)
        )
        if not (missed_call or voicemail_found):
            return {"ok": True, "ignored": True, "status": status}

        existing = self.store.find_by_key(key)
        if existing is not None and existing.followup_sent_at is not None:
            logger.info("missed_call_sms_deduped", call_sid=event.call_sid or "unknown", status=status)
            return {"ok": True, "deduped": True, "status": status}

        sms_to = event.from_phone
        sms_from = self.config.sms_sender() or event.to_phone
        if not sms_to or not sms_from:
            logger.error(
                "missed_call_sms_missing_phone",
                call_sid=event.call_sid or "unknown",
                from_number=mask_phone(event.from_phone),
                to_number=mask_phone(event.to_phone),
            )
            return {"ok": False, "error": "missing_sms_phone"}

        if not self.dispatcher.is_configured():
            return {"ok": False, "error": "missing_twilio_credentials"}

        business_name = self.tenants.business_name(event.to_phone, self.config.DEFAULT_BUSINESS_NAME)
        message = self.config.missed_call_script().replace("{business_name}", business_name)

        sms = self.dispatcher.send(sms_to, message, sender=sms_from)
        metrics.sms_dispatch.labels(outcome="ok" if sms.ok else "failed").inc()
        if not sms.ok:
            # No markers: a redelivered callback gets another chance.
            logger.error(
                "missed_call_sms_failed",
                call_sid=event.call_sid or "unknown",
                status=status,
                detail=sms.detail or "unknown",
            )
            return {"ok": False, "error": "sms_failed"}

        self.store.mark_followup(key, sms.message_id)

        reason = "missed_status" if missed_call else "completed_with_voicemail"
        metrics.followups_sent.labels(reason=reason).inc()
        logger.info(
            "missed_call_sms_sent",
            call_sid=event.call_sid or "unknown",
            status=status,
            reason=reason,
            to=mask_phone(sms_to),
            sid=sms.message_id or "unknown",
        )
        return {
            "ok": True,
            "missed": True,
            "status": status,
            "voicemailFound": voicemail_found,
            "messageSid": sms.message_id,
        }

    def _voicemail_on_record(self, key: CallKey, call_sid: str) -> bool:
        """Did an earlier recording callback already store audio for this call?"""
        try:
            record = self.store.find_by_key(key)
            if record is not None and record.has_voicemail():
                return True
            if call_sid and call_sid != key.provider_call_id:
                record = self.store.find_by_call_sid(key.provider, call_sid)
                if record is not None and record.has_voicemail():
                    return True
        except SQLAlchemyError as e:
            logger.warning("voicemail_lookup_failed", call_sid=call_sid or "unknown", error=str(e))
        return False

    # ------------------------------------------------------------------
    # recording
    # ------------------------------------------------------------------

    def handle_recording(self, event: RecordingCallbackEvent) -> RecordingOutcome:
        """Fetch, transcribe, persist and notify.

        Enrichment is best effort: only an untrusted recording host in
        production stops the pipeline (UntrustedRecordingSource).
        """
        key = event.key
        if self.config.is_production and not self.retriever.is_trusted(event.recording_url):
            host = recording_host(event.recording_url)
            logger.error("recording_host_blocked", host=host, call_sid=event.call_sid or "unknown")
            raise UntrustedRecordingSource(host)

        if self._current_status(key) == STATUS_COMPLETED:
            logger.info("recording_skipped_already_completed", call_sid=event.call_sid or "unknown")
            return RecordingOutcome(skipped=True)

        logger.info(
            "recording_processing_started",
            call_sid=event.call_sid or "unknown",
            from_number=mask_phone(event.from_phone),
            to_number=mask_phone(event.to_phone),
            duration=event.recording_duration or "unknown",
        )

        self._safe_upsert(
            key,
            {
                "call_sid": event.call_sid or None,
                "from_phone": event.from_phone,
                "to_phone": event.to_phone,
                "status": STATUS_RECORDED,
                "recording_url": event.recording_url,
                "raw_json": event.raw_json(),
            },
        )

        business_name = self.tenants.business_name(event.to_phone, self.config.DEFAULT_BUSINESS_NAME)
        transcript = self.transcribe_recording(event.recording_url)
        self._safe_upsert(key, {"transcription": transcript})

        message = voicemail_message(business_name, transcript)
        caller_sms, owner_sms = self.dispatcher.send_many([event.from_phone, self.config.owner_number()], message)
        if caller_sms.ok:
            self._safe_mark_followup(key, caller_sms.message_id)
        for sms in (caller_sms, owner_sms):
            metrics.sms_dispatch.labels(outcome="ok" if sms.ok else "failed").inc()

        # Both sends were attempted; this pipeline never retries, so close the call.
        self._safe_upsert(key, {"status": STATUS_COMPLETED})

        logger.info(
            "recording_processing_finished",
            call_sid=event.call_sid or "unknown",
            caller_notified=caller_sms.ok,
            owner_notified=owner_sms.ok,
            transcript_chars=len(transcript),
        )
        return RecordingOutcome(
            transcription=transcript,
            caller_notified=caller_sms.ok,
            owner_notified=owner_sms.ok,
        )

    def transcribe_recording(self, recording_url: str) -> str:
        """Audio -> text, or the placeholder when either stage fails."""
        audio = self.retriever.fetch(recording_url)
        if not audio.ok:
            logger.warning("recording_audio_unavailable", status=audio.status_code)
            metrics.transcriptions.labels(outcome="no_audio").inc()
            return PLACEHOLDER_TRANSCRIPT

        try:
            text = self.transcriber.transcribe(audio.content)
        except TranscriptionError as e:
            logger.error("transcription_failed", error=str(e))
            metrics.transcriptions.labels(outcome="failed").inc()
            return PLACEHOLDER_TRANSCRIPT

        if not text.strip():
            metrics.transcriptions.labels(outcome="empty").inc()
            return PLACEHOLDER_TRANSCRIPT

        metrics.transcriptions.labels(outcome="ok").inc()
        logger.info("transcription_complete", chars=len(text))
        return text.strip()

    def _current_status(self, key: CallKey) -> Optional[str]:
        try:
            return self.store.find_status(key.provider_call_id, provider=key.provider)
        except SQLAlchemyError as e:
            logger.warning("call_status_lookup_failed", provider_call_id=key.provider_call_id, error=str(e))
            return None

    def _safe_upsert(self, key: CallKey, fields: dict) -> None:
        try:
            self.store.upsert_from_callback(key, fields)
        except SQLAlchemyError as e:
            logger.error("call_upsert_failed", provider_call_id=key.provider_call_id, columns=sorted(fields), error=str(e))

    def _safe_mark_followup(self, key: CallKey, message_id: Optional[str]) -> None:
        try:
            self.store.mark_followup(key, message_id)
        except SQLAlchemyError as e:
            logger.error("followup_mark_failed", provider_call_id=key.provider_call_id, error=str(e))

    # ------------------------------------------------------------------
    # inbound sms
    # ------------------------------------------------------------------

    def handle_inbound_sms(self, event: InboundSmsEvent) -> SmsResult:
        """Forward a lead's text reply to the business owner."""
        result = self.dispatcher.send(self.config.owner_number(), lead_captured_message(event.from_phone, event.body))
        metrics.sms_dispatch.labels(outcome="ok" if result.ok else "failed").inc()
        if result.ok:
            logger.info("owner_notified_of_lead", from_number=mask_phone(event.from_phone))
        return result

    # ------------------------------------------------------------------
    # simulator
    # ------------------------------------------------------------------

    def start_simulated_call(self, request: SimulateCallbackRequest) -> RecordingCallbackEvent:
        """Seed the call row the way a real voice webhook would have left it."""
        event = request.to_recording_event()
        self.store.insert_if_absent(
            event.key,
            {
                "call_sid": request.call_sid,
                "from_phone": request.caller,
                "to_phone": request.to_phone,
                "status": STATUS_INITIATED,
            },
        )
        return event
