import base64

import httpx
import openai
import pytest

from conftest import ACCOUNT_SID, AUTH_TOKEN, RECORDING_URL, FakeRecordingHost
from voicemail_relay.recordings import (
    AudioRetriever,
    Transcriber,
    TranscriptionError,
    is_trusted_recording_url,
    media_url,
)


@pytest.fixture
def host():
    return FakeRecordingHost()


@pytest.fixture
def retriever(host):
    return AudioRetriever(ACCOUNT_SID, AUTH_TOKEN, trusted_domain="twilio.com", client=host.client())


def test_media_url_appends_wav_once():
    assert media_url(RECORDING_URL) == RECORDING_URL + ".wav"
    assert media_url(RECORDING_URL + ".wav") == RECORDING_URL + ".wav"


@pytest.mark.parametrize(
    "url,trusted",
    [
        ("https://api.twilio.com/2010-04-01/Recordings/RE1", True),
        ("https://twilio.com/RE1", True),
        ("http://api.twilio.com/RE1", False),
        ("https://evil-twilio.com/RE1", False),
        ("https://api.twilio.com.evil.io/RE1", False),
        ("https://recordings.example.com/RE1", False),
        ("not a url", False),
        ("", False),
    ],
)
def test_trusted_recording_hosts(url, trusted):
    assert is_trusted_recording_url(url, "twilio.com") is trusted


def test_fetch_attaches_basic_auth_for_trusted_host(retriever, host):
    result = retriever.fetch(RECORDING_URL)

    assert result.ok
    assert result.content == host.content
    assert str(host.requests[0].url) == RECORDING_URL + ".wav"
    expected = base64.b64encode(f"{ACCOUNT_SID}:{AUTH_TOKEN}".encode()).decode()
    assert host.requests[0].headers["Authorization"] == f"Basic {expected}"


def test_fetch_never_sends_credentials_elsewhere(retriever, host):
    retriever.fetch("https://recordings.example.com/RE1")

    assert len(host.requests) == 1
    assert "Authorization" not in host.requests[0].headers


def test_fetch_not_found_returns_empty_result(retriever, host):
    host.status_code = 404

    result = retriever.fetch(RECORDING_URL)

    assert not result.ok
    assert result.content is None
    assert result.status_code == 404


def test_fetch_timeout_returns_empty_result(retriever, host):
    host.timeout = True

    result = retriever.fetch(RECORDING_URL)

    assert not result.ok
    assert result.status_code is None


def test_fetch_empty_body_is_not_ok(retriever, host):
    host.content = b""

    assert not retriever.fetch(RECORDING_URL).ok


class _FakeTranscriptions:
    def __init__(self, text="  call me back  ", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return type("Transcription", (), {"text": self.text})()


class _FakeOpenAI:
    def __init__(self, transcriptions):
        self.audio = type("Audio", (), {"transcriptions": transcriptions})()


def test_transcribe_returns_stripped_text():
    transcriptions = _FakeTranscriptions()
    transcriber = Transcriber("sk-test", model="whisper-1", language="en", client=_FakeOpenAI(transcriptions))

    assert transcriber.transcribe(b"RIFF") == "call me back"
    call = transcriptions.calls[0]
    assert call["model"] == "whisper-1"
    assert call["language"] == "en"
    assert call["file"] == ("recording.wav", b"RIFF", "audio/wav")


def test_transcribe_rejects_empty_audio():
    transcriber = Transcriber("sk-test", client=_FakeOpenAI(_FakeTranscriptions()))

    with pytest.raises(TranscriptionError):
        transcriber.transcribe(b"")


def test_transcribe_without_key_fails_fast():
    with pytest.raises(TranscriptionError):
        Transcriber("").transcribe(b"RIFF")


def test_transcribe_wraps_openai_timeout():
    error = openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions"))
    transcriber = Transcriber("sk-test", client=_FakeOpenAI(_FakeTranscriptions(error=error)))

    with pytest.raises(TranscriptionError):
        transcriber.transcribe(b"RIFF")


def test_fetch_malformed_url_returns_empty_result(retriever, host):
    # Host parses as trusted, but the port is not a number.
    result = retriever.fetch("https://api.twilio.com:abc/Recordings/RE1")

    assert not result.ok
    assert result.status_code is None
    assert host.requests == []


def test_transcribe_result_without_text_is_empty():
    transcriber = Transcriber("sk-test", client=_FakeOpenAI(_FakeTranscriptions(text=None)))

    assert transcriber.transcribe(b"RIFF") == ""
