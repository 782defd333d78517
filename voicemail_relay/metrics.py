"""Prometheus metrics."""

from prometheus_client import Counter

webhooks_received = Counter("webhooks_received_total", "Twilio webhooks received", ["endpoint"])
signature_rejections = Counter(
    "signature_rejections_total", "Webhooks rejected by signature policy", ["endpoint", "reason"]
)
followups_sent = Counter("followups_sent_total", "Missed-call follow-up texts sent", ["reason"])
sms_dispatch = Counter("sms_dispatch_total", "Outbound SMS attempts", ["outcome"])
transcriptions = Counter("transcriptions_total", "Voicemail transcription attempts", ["outcome"])
