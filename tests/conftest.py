import os

# Keep the module-level engine off disk; tests build their own engines anyway.
os.environ.setdefault("DATABASE_URL", "sqlite://")

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from twilio.base.exceptions import TwilioRestException

from voicemail_relay.call_lifecycle import CallLifecycleCoordinator
from voicemail_relay.call_store import CallRecordStore
from voicemail_relay.config import Config
from voicemail_relay.database import build_engine, build_session_factory, get_db, init_db
from voicemail_relay.deps import get_config, get_coordinator
from voicemail_relay.notifications import NotificationDispatcher, SmsResult
from voicemail_relay.recordings import AudioRetriever
from voicemail_relay.security import compute_signature
from voicemail_relay.tenants_store import TenantDirectory

AUTH_TOKEN = "test_auth_token"
ACCOUNT_SID = "ACtest"
CALLER = "+15551230001"
BUSINESS = "+15559870002"
OWNER = "+15550000003"
SENDER = "+15550009999"
RECORDING_URL = "https://api.twilio.com/2010-04-01/Accounts/ACtest/Recordings/REtest"
TRANSCRIPT = "Hi, my kitchen sink is leaking, please call me back."


def make_config(**overrides) -> Config:
    """Deterministic, offline-safe config. Signatures are off unless a test opts in."""
    values = dict(
        ENVIRONMENT="development",
        TWILIO_ACCOUNT_SID=ACCOUNT_SID,
        TWILIO_AUTH_TOKEN=AUTH_TOKEN,
        TWILIO_PHONE_NUMBER=SENDER,
        TWILIO_SIGNATURE_MODE="off",
        OWNER_PHONE=OWNER,
        OPENAI_API_KEY="sk-test",
    )
    values.update(overrides)
    return Config(**values)


def sign(url: str, params: dict, token: str = AUTH_TOKEN) -> dict:
    return {"X-Twilio-Signature": compute_signature(token, url, params)}


class FakeSmsGateway:
    """Stands in for TwilioSmsGateway; records every send."""

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.sent: list[dict] = []
        self.fail_for: set[str] = set()

    def send_sms(self, to, from_, body):
        sid = f"SM{len(self.sent) + 1:04d}"
        self.sent.append({"to": to, "from": from_, "body": body, "sid": sid})
        if to in self.fail_for:
            raise TwilioRestException(status=400, uri="/Messages.json", msg="Invalid 'To' Phone Number", code=21211)
        return SmsResult(ok=True, message_id=sid)

    def sent_to(self, number: str) -> list[dict]:
        return [m for m in self.sent if m["to"] == number]


class FakeTranscriber:
    def __init__(self, text: str = TRANSCRIPT):
        self.text = text
        self.error = None
        self.calls: list[bytes] = []

    def transcribe(self, audio_bytes: bytes, **kwargs) -> str:
        self.calls.append(audio_bytes)
        if self.error is not None:
            raise self.error
        return self.text


class FakeRecordingHost:
    """httpx.MockTransport handler that serves (or refuses) recording audio."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.content = b"RIFF\x24\x00\x00\x00WAVEfmt "
        self.timeout = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.timeout:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(self.status_code, content=self.content)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


class Harness:
    """Coordinator + FastAPI client wired to fakes and an in-memory database."""

    def __init__(self, config: Config, session_factory):
        from voicemail_relay.main import app

        self.config = config
        self.session_factory = session_factory
        self.store = CallRecordStore(session_factory)
        self.tenants = TenantDirectory(session_factory)
        self.recordings = FakeRecordingHost()
        self.transcriber = FakeTranscriber()
        self.gateway = FakeSmsGateway(configured=config.has_twilio_auth())
        self.coordinator = CallLifecycleCoordinator(
            config=config,
            store=self.store,
            tenants=self.tenants,
            retriever=AudioRetriever(
                config.TWILIO_ACCOUNT_SID,
                config.TWILIO_AUTH_TOKEN,
                trusted_domain=config.TRUSTED_RECORDING_DOMAIN,
                client=self.recordings.client(),
            ),
            transcriber=self.transcriber,
            dispatcher=NotificationDispatcher(self.gateway, default_sender=config.sms_sender()),
        )

        def _db():
            db = session_factory()
            try:
                yield db
            finally:
                db.close()

        self.app = app
        app.dependency_overrides[get_config] = lambda: config
        app.dependency_overrides[get_coordinator] = lambda: self.coordinator
        app.dependency_overrides[get_db] = _db
        self.client = TestClient(app)


@pytest.fixture
def make_harness(session_factory):
    created = []

    def _make(**config_overrides) -> Harness:
        harness = Harness(make_config(**config_overrides), session_factory)
        created.append(harness)
        return harness

    yield _make

    for harness in created:
        harness.app.dependency_overrides.clear()


@pytest.fixture
def harness(make_harness) -> Harness:
    return make_harness()
