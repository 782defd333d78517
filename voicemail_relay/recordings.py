"""Voicemail audio helpers (Twilio Recording -> text).

Flow:
- Twilio posts RecordingUrl/RecordingSid to our recording webhook
- We download the audio from Twilio using HTTP basic auth (trusted hosts only)
- We transcribe it using OpenAI audio transcription
"""

from __future__ import annotations

from typing import Optional, Tuple
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel

from voicemail_relay.logging_config import get_logger

logger = get_logger(__name__)

PLACEHOLDER_TRANSCRIPT = "Voice message received"


class TranscriptionError(Exception):
    """Speech-to-text failed or was not attempted; callers fall back to the placeholder."""


class UntrustedRecordingSource(Exception):
    """Recording URL is not served by the trusted provider domain."""

    def __init__(self, host: str):
        super().__init__(f"Untrusted recording host: {host or '<none>'}")
        self.host = host


class AudioFetchResult(BaseModel):
    content: Optional[bytes] = None
    status_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return bool(self.content) and self.status_code == 200


def recording_host(recording_url: str) -> str:
    try:
        return (urlsplit(recording_url).hostname or "").lower()
    except ValueError:
        return ""


def is_trusted_recording_url(recording_url: str, trusted_domain: str) -> bool:
    """HTTPS on the provider domain itself or one of its subdomains."""
    domain = (trusted_domain or "").strip().lower().lstrip(".")
    if not recording_url or not domain:
        return False
    try:
        parts = urlsplit(recording_url.strip())
    except ValueError:
        return False
    host = (parts.hostname or "").lower()
    return parts.scheme == "https" and (host == domain or host.endswith("." + domain))


def media_url(recording_url: str) -> str:
    url = (recording_url or "").strip()
    # Twilio sends RecordingUrl without extension.
    if url.lower().endswith(".wav"):
        return url
    return url + ".wav"


class AudioRetriever:
    """Downloads recording audio. Never raises; failures come back as an empty result."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        trusted_domain: str = "twilio.com",
        timeout_s: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self._credentials: Optional[Tuple[str, str]] = (
            (account_sid, auth_token) if account_sid and auth_token else None
        )
        self.trusted_domain = trusted_domain
        self._timeout_s = timeout_s
        self._client = client

    def is_trusted(self, recording_url: str) -> bool:
        return is_trusted_recording_url(recording_url, self.trusted_domain)

    def fetch(self, recording_url: str) -> AudioFetchResult:
        audio_url = media_url(recording_url)
        if not audio_url or audio_url == ".wav":
            return AudioFetchResult()

        # Never hand the account credentials to a host we do not trust.
        auth = self._credentials if self.is_trusted(audio_url) else None
        logger.info("recording_fetch_started", host=recording_host(audio_url), auth_attached=auth is not None)

        try:
            if self._client is not None:
                resp = self._client.get(audio_url, auth=auth, timeout=self._timeout_s)
            else:
                with httpx.Client(timeout=self._timeout_s, follow_redirects=True) as client:
                    resp = client.get(audio_url, auth=auth)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            # InvalidURL and UnicodeError (bad port, bad IDNA host) are not HTTPError subclasses.
            logger.error("recording_fetch_error", error=str(e), error_type=type(e).__name__)
            return AudioFetchResult()

        if resp.status_code != 200:
            logger.error("recording_fetch_failed", status=resp.status_code)
            return AudioFetchResult(status_code=resp.status_code)

        logger.info("recording_fetched", size_bytes=len(resp.content))
        return AudioFetchResult(content=resp.content, status_code=resp.status_code)


class Transcriber:
    """OpenAI speech-to-text with a bounded timeout."""

    def __init__(
        self,
        api_key: str,
        model: str = "whisper-1",
        language: str = "en",
        timeout_s: float = 30.0,
        client=None,
    ):
        self._api_key = api_key
        self._model = model
        self._language = language
        self._timeout_s = timeout_s
        self._client = client

    def _get_openai_client(self):
        if self._client is None:
            from openai import OpenAI

            # One attempt per stage: retries would blow the webhook's time budget.
            self._client = OpenAI(api_key=self._api_key, timeout=self._timeout_s, max_retries=0)
        return self._client

    def transcribe(self, audio_bytes: bytes, *, filename: str = "recording.wav", mime_type: str = "audio/wav") -> str:
        """Transcribe audio bytes to text.

        Raises TranscriptionError on empty audio, missing key, timeout or API error.
        """
        if not audio_bytes:
            raise TranscriptionError("No audio to transcribe")
        if not self._api_key and self._client is None:
            raise TranscriptionError("OpenAI API key not configured")

        from openai import OpenAIError

        try:
            result = self._get_openai_client().audio.transcriptions.create(
                model=self._model,
                file=(filename, audio_bytes, mime_type),
                language=self._language,
            )
        except OpenAIError as e:
            raise TranscriptionError(f"{type(e).__name__}: {e}") from e

        text = getattr(result, "text", None)
        return text.strip() if isinstance(text, str) else ""
