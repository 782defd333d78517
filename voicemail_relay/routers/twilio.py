from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response

from voicemail_relay import metrics
from voicemail_relay.config import Config
from voicemail_relay.deps import get_config, get_coordinator
from voicemail_relay.logging_config import logger
from voicemail_relay.models import (
    InboundSmsEvent,
    RecordingCallbackEvent,
    StatusCallbackEvent,
    VoiceCallEvent,
)
from voicemail_relay.recordings import UntrustedRecordingSource
from voicemail_relay.security import (
    SIGNATURE_HEADER,
    SignatureCheck,
    check_signature,
    read_form_params,
    signed_url,
)
from voicemail_relay.twiml_builder import build_unavailable_twiml

router = APIRouter(tags=["Twilio"])


def _check(request: Request, config: Config, params: dict, endpoint: str) -> SignatureCheck:
    metrics.webhooks_received.labels(endpoint=endpoint).inc()
    sig = check_signature(config, signed_url(request, config), params, request.headers.get(SIGNATURE_HEADER))
    if not sig.ok:
        metrics.signature_rejections.labels(endpoint=endpoint, reason=sig.reason or "unknown").inc()
        logger.error("twilio_signature_rejected", endpoint=endpoint, mode=sig.mode, reason=sig.reason)
    return sig


# POST /v1/webhooks/twilio/voice   (alias: /voice)
# Gets: Twilio form fields (CallSid, From, To, ...)
# Returns: TwiML (application/xml) - greeting + <Record> with the recording callback URL
# Example:
#   curl -X POST http://localhost:8000/v1/webhooks/twilio/voice -d 'CallSid=CAxxx&From=%2B1555&To=%2B1666'
@router.post("/v1/webhooks/twilio/voice")
@router.post("/voice", include_in_schema=False)
async def twilio_voice(
    request: Request,
    config: Config = Depends(get_config),
    coordinator=Depends(get_coordinator),
):
    """Answer the call fast: greeting, then record a voicemail."""

    try:
        params = await read_form_params(request)
        # Fail open: a rejected signature still gets the greeting rather than a
        # hangup the caller cannot make sense of.
        _check(request, config, params, "voice")

        event = VoiceCallEvent.from_form(params)
        twiml = coordinator.build_voice_response(event, str(request.base_url))
        return Response(content=twiml, media_type="application/xml")

    except Exception as e:
        logger.error("voice_webhook_error", error=str(e), error_type=type(e).__name__)
        return Response(content=build_unavailable_twiml(), media_type="application/xml")


# POST /v1/webhooks/twilio/recording?from=...&to=...   (alias: /recording)
# Gets: Twilio form fields (RecordingUrl, RecordingSid, CallSid, RecordingDuration) + query from/to
# Returns: {"success": true} | {"success": false, "error": ...}
# Example:
#   curl -X POST 'http://localhost:8000/v1/webhooks/twilio/recording?from=%2B1555&to=%2B1666' \
#     -d 'CallSid=CAxxx&RecordingSid=RExxx&RecordingUrl=https://api.twilio.com/.../Recordings/RExxx'
@router.post("/v1/webhooks/twilio/recording")
@router.post("/recording", include_in_schema=False)
async def twilio_recording(
    request: Request,
    config: Config = Depends(get_config),
    coordinator=Depends(get_coordinator),
):
    """Voicemail is ready: transcribe it and text the caller and the owner."""

    try:
        params = await read_form_params(request)
        sig = _check(request, config, params, "recording")
        if not sig.ok:
            return JSONResponse({"success": False, "error": "unauthorized"}, status_code=401)

        event = RecordingCallbackEvent.from_form(params, request.query_params)
        if not event.recording_url:
            logger.error("recording_callback_missing_url", call_sid=event.call_sid or "unknown")
            return {"success": False, "error": "missing_recording"}

        await run_in_threadpool(coordinator.handle_recording, event)
        return {"success": True}

    except UntrustedRecordingSource:
        return {"success": False, "error": "invalid_recording_host"}
    except Exception as e:
        logger.error("recording_webhook_error", error=str(e), error_type=type(e).__name__)
        return {"success": False, "error": "processing_failed"}


# POST /v1/webhooks/twilio/status   (alias: /status)
# Gets: Twilio form fields (CallSid, From, To, CallStatus / DialCallStatus, ParentCallSid, ...)
# Returns: {"ok": true, ...} describing whether a follow-up text went out
# Example:
#   curl -X POST http://localhost:8000/v1/webhooks/twilio/status -d 'CallSid=CAxxx&CallStatus=no-answer&From=%2B1555&To=%2B1666'
@router.post("/v1/webhooks/twilio/status")
@router.post("/status", include_in_schema=False)
async def twilio_call_status(
    request: Request,
    config: Config = Depends(get_config),
    coordinator=Depends(get_coordinator),
):
    """Receive call status updates; text the caller back on a missed call."""

    try:
        params = await read_form_params(request)
        sig = _check(request, config, params, "status")
        if not sig.ok:
            return JSONResponse({"ok": False, "error": "unauthorized"}, status_code=401)

        event = StatusCallbackEvent.from_form(params)
        logger.info("call_status", call_sid=event.call_sid or "unknown", call_status=event.status)
        return await run_in_threadpool(coordinator.handle_status, event)

    except Exception as e:
        logger.error("status_webhook_error", error=str(e), error_type=type(e).__name__)
        return {"ok": False, "error": "processing_failed"}


# POST /v1/webhooks/twilio/sms
# Gets: Twilio form fields (From, Body, ...)
# Returns: empty 200 (Twilio retries anything else)
# Example:
#   curl -X POST http://localhost:8000/v1/webhooks/twilio/sms -d 'From=%2B1555&Body=Need+a+quote'
@router.post("/v1/webhooks/twilio/sms")
async def twilio_sms(
    request: Request,
    config: Config = Depends(get_config),
    coordinator=Depends(get_coordinator),
):
    """Forward a lead's reply to the business owner."""

    try:
        params = await read_form_params(request)
        sig = _check(request, config, params, "sms")
        if not sig.ok:
            return JSONResponse({"error": "unauthorized"}, status_code=401)

        event = InboundSmsEvent.from_form(params)
        await run_in_threadpool(coordinator.handle_inbound_sms, event)

    except Exception as e:
        logger.error("sms_webhook_error", error=str(e), error_type=type(e).__name__)

    return Response(content="", status_code=200)
