from conftest import BUSINESS, CALLER, OWNER, RECORDING_URL, TRANSCRIPT, sign
from voicemail_relay.models import CallKey
from voicemail_relay.recordings import PLACEHOLDER_TRANSCRIPT

STATUS_PATH = "/v1/webhooks/twilio/status"
RECORDING_PATH = "/v1/webhooks/twilio/recording"
VOICE_PATH = "/v1/webhooks/twilio/voice"
SMS_PATH = "/v1/webhooks/twilio/sms"

NO_ANSWER = {"CallSid": "CA200", "CallStatus": "no-answer", "From": CALLER, "To": BUSINESS}
RECORDING = {"CallSid": "CA200", "RecordingSid": "RE200", "RecordingUrl": RECORDING_URL, "RecordingDuration": "9"}
KEY = CallKey(provider="twilio", provider_call_id="CA200")


def test_voice_returns_greeting_and_record(harness):
    resp = harness.client.post(VOICE_PATH, data={"CallSid": "CA200", "From": CALLER, "To": BUSINESS})

    assert resp.status_code == 200
    assert "application/xml" in resp.headers["content-type"]
    assert "<Say" in resp.text
    assert "<Record" in resp.text
    assert 'recordingStatusCallback="http://testserver/v1/webhooks/twilio/recording?from=%2B15551230001&amp;to=%2B15559870002"' in resp.text


def test_voice_alias_uses_public_base_url(make_harness):
    harness = make_harness(PUBLIC_BASE_URL="https://relay.example.com")

    resp = harness.client.post("/voice", data={"CallSid": "CA200", "From": CALLER, "To": BUSINESS})

    assert 'recordingStatusCallback="https://relay.example.com/v1/webhooks/twilio/recording?' in resp.text


def test_voice_answers_even_with_bad_signature(make_harness):
    harness = make_harness(TWILIO_SIGNATURE_MODE="enforce")

    resp = harness.client.post(VOICE_PATH, data={"CallSid": "CA200", "From": CALLER}, headers={"X-Twilio-Signature": "bogus"})

    assert resp.status_code == 200
    assert "<Record" in resp.text


def test_voice_uses_configured_greeting(make_harness):
    harness = make_harness(VOICE_CONSENT_SCRIPT="You reached Acme. Leave a message.")

    resp = harness.client.post(VOICE_PATH, data={"CallSid": "CA200"})

    assert "You reached Acme. Leave a message." in resp.text


def test_no_answer_texts_caller_once(harness):
    first = harness.client.post(STATUS_PATH, data=NO_ANSWER)
    second = harness.client.post(STATUS_PATH, data=NO_ANSWER)

    assert first.status_code == 200
    assert first.json()["missed"] is True
    assert first.json()["messageSid"] == "SM0001"
    assert second.json() == {"ok": True, "deduped": True, "status": "no-answer"}
    assert len(harness.gateway.sent) == 1
    assert harness.store.find_by_key(KEY).followup_sent_at is not None


def test_status_alias_path(harness):
    resp = harness.client.post("/status", data={**NO_ANSWER, "CallStatus": "ringing"})

    assert resp.json() == {"ok": True, "ignored": True, "status": "ringing"}


def test_status_sms_failure_reports_error(harness):
    harness.gateway.fail_for.add(CALLER)

    resp = harness.client.post(STATUS_PATH, data=NO_ANSWER)

    assert resp.status_code == 200
    assert resp.json() == {"ok": False, "error": "sms_failed"}
    assert harness.store.find_by_key(KEY).followup_sent_at is None


def test_status_rejects_bad_signature_when_enforced(make_harness):
    harness = make_harness(TWILIO_SIGNATURE_MODE="enforce")

    resp = harness.client.post(STATUS_PATH, data=NO_ANSWER, headers={"X-Twilio-Signature": "bogus"})

    assert resp.status_code == 401
    assert resp.json() == {"ok": False, "error": "unauthorized"}
    assert harness.gateway.sent == []
    assert harness.store.find_by_key(KEY) is None


def test_status_accepts_signed_request(make_harness):
    harness = make_harness(TWILIO_SIGNATURE_MODE="enforce")

    resp = harness.client.post(
        STATUS_PATH,
        data=NO_ANSWER,
        headers=sign("http://testserver" + STATUS_PATH, NO_ANSWER),
    )

    assert resp.status_code == 200
    assert resp.json()["missed"] is True


def test_status_signature_checked_against_public_url(make_harness):
    harness = make_harness(TWILIO_SIGNATURE_MODE="enforce", PUBLIC_BASE_URL="https://relay.example.com")

    resp = harness.client.post(
        STATUS_PATH,
        data=NO_ANSWER,
        headers=sign("https://relay.example.com" + STATUS_PATH, NO_ANSWER),
    )

    assert resp.status_code == 200


def test_status_log_mode_lets_unsigned_through(make_harness):
    harness = make_harness(TWILIO_SIGNATURE_MODE="log")

    resp = harness.client.post(STATUS_PATH, data=NO_ANSWER)

    assert resp.status_code == 200
    assert resp.json()["missed"] is True


def test_recording_webhook_processes_voicemail(harness):
    resp = harness.client.post(RECORDING_PATH, params={"from": CALLER, "to": BUSINESS}, data=RECORDING)

    assert resp.json() == {"success": True}
    assert [m["to"] for m in harness.gateway.sent] == [CALLER, OWNER]
    assert TRANSCRIPT in harness.gateway.sent[0]["body"]
    record = harness.store.find_by_key(KEY)
    assert record.status == "completed"
    assert record.from_phone == CALLER
    assert record.to_phone == BUSINESS


def test_recording_audio_missing_still_notifies(harness):
    harness.recordings.status_code = 404

    resp = harness.client.post(RECORDING_PATH, params={"from": CALLER, "to": BUSINESS}, data=RECORDING)

    assert resp.json() == {"success": True}
    assert len(harness.gateway.sent) == 2
    assert harness.store.find_by_key(KEY).transcription == PLACEHOLDER_TRANSCRIPT


def test_recording_without_url(harness):
    resp = harness.client.post(RECORDING_PATH, data={"CallSid": "CA200"})

    assert resp.json() == {"success": False, "error": "missing_recording"}
    assert harness.gateway.sent == []


def test_recording_untrusted_host_in_production(make_harness):
    harness = make_harness(ENVIRONMENT="production", TWILIO_SIGNATURE_MODE="off")

    resp = harness.client.post(
        RECORDING_PATH,
        params={"from": CALLER, "to": BUSINESS},
        data={**RECORDING, "RecordingUrl": "https://recordings.example.com/RE200"},
    )

    assert resp.status_code == 200
    assert resp.json() == {"success": False, "error": "invalid_recording_host"}
    assert harness.recordings.requests == []
    assert harness.gateway.sent == []


def test_recording_rejects_unsigned_when_enforced(make_harness):
    harness = make_harness(TWILIO_SIGNATURE_MODE="enforce")

    resp = harness.client.post(RECORDING_PATH, data=RECORDING)

    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "unauthorized"}
    assert harness.recordings.requests == []


def test_recording_then_completed_status_is_deduped(harness):
    harness.client.post(RECORDING_PATH, params={"from": CALLER, "to": BUSINESS}, data=RECORDING)
    resp = harness.client.post(STATUS_PATH, data={**NO_ANSWER, "CallStatus": "completed", "RecordingSid": "RE200"})

    assert resp.json()["deduped"] is True
    assert len(harness.gateway.sent_to(CALLER)) == 1


def test_inbound_sms_forwards_to_owner(harness):
    resp = harness.client.post(SMS_PATH, data={"From": CALLER, "Body": "Can you come Tuesday?"})

    assert resp.status_code == 200
    assert resp.text == ""
    assert harness.gateway.sent[0]["to"] == OWNER
    assert "Can you come Tuesday?" in harness.gateway.sent[0]["body"]


def test_inbound_sms_rejected_without_valid_signature(make_harness):
    harness = make_harness(TWILIO_SIGNATURE_MODE="enforce")

    resp = harness.client.post(SMS_PATH, data={"From": CALLER, "Body": "hi"}, headers={"X-Twilio-Signature": "bogus"})

    assert resp.status_code == 401
    assert harness.gateway.sent == []


def test_inbound_sms_send_failure_still_returns_200(harness):
    harness.gateway.fail_for.add(OWNER)

    resp = harness.client.post(SMS_PATH, data={"From": CALLER, "Body": "hi"})

    assert resp.status_code == 200


def test_signature_rejections_are_counted(make_harness):
    harness = make_harness(TWILIO_SIGNATURE_MODE="enforce")
    harness.client.post(STATUS_PATH, data=NO_ANSWER)

    metrics = harness.client.get("/metrics").text

    assert 'signature_rejections_total{endpoint="status",reason="missing_signature"}' in metrics
