"""Configuration management for the voicemail relay."""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

DEFAULT_CONSENT_SCRIPT = (
    "Thanks for calling. We are currently on a job site or helping another customer right now. "
    "Please leave a brief message with your name and what you need help with. "
    "To get you scheduled quickly, we will send a follow-up text to this number. "
    "By leaving a message, you consent to receive text messages from us regarding your inquiry. "
    "Please leave your message after the tone."
)

DEFAULT_MISSED_CALL_SCRIPT = (
    "Hi, this is {business_name}. Sorry we missed your call! How can we help you today?"
)


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


class Config(BaseModel):
    """Application configuration.

    Built once at startup and handed to every component; instances are frozen.
    """

    model_config = ConfigDict(frozen=True)

    # Deployment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    DATABASE_URL: str = "sqlite:///./voicemail_relay.db"
    # Public origin Twilio calls us on (ngrok / load balancer URL). Used both to
    # rebuild the signed URL and to build the recording callback URL.
    PUBLIC_BASE_URL: str = ""

    # Twilio
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_PHONE_NUMBER: str = ""
    TWILIO_SIGNATURE_MODE: str = ""
    TRUSTED_RECORDING_DOMAIN: str = "twilio.com"

    # Numbers
    PLATFORM_NUMBER: str = ""
    OWNER_PHONE: str = ""

    # Speech-to-text
    OPENAI_API_KEY: str = ""
    OPENAI_TRANSCRIBE_MODEL: str = "whisper-1"
    TRANSCRIBE_LANGUAGE: str = "en"

    # Outbound timeouts (seconds)
    AUDIO_FETCH_TIMEOUT_SECONDS: float = 10.0
    TRANSCRIBE_TIMEOUT_SECONDS: float = 30.0
    SMS_TIMEOUT_SECONDS: float = 10.0

    # Test entry point
    SIMULATOR_API_KEY: str = ""

    # Caller-facing copy
    VOICE_CONSENT_SCRIPT: str = ""
    MISSED_CALL_SMS_SCRIPT: str = ""
    DEFAULT_BUSINESS_NAME: str = "the office"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from the environment (and a local .env file)."""
        load_dotenv()
        return cls(
            ENVIRONMENT=os.getenv("ENVIRONMENT", "development"),
            DEBUG=_env_bool("DEBUG"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
            DATABASE_URL=os.getenv("DATABASE_URL", "sqlite:///./voicemail_relay.db"),
            PUBLIC_BASE_URL=os.getenv("PUBLIC_BASE_URL", "").rstrip("/"),
            TWILIO_ACCOUNT_SID=os.getenv("TWILIO_ACCOUNT_SID", ""),
            TWILIO_AUTH_TOKEN=os.getenv("TWILIO_AUTH_TOKEN", ""),
            TWILIO_PHONE_NUMBER=os.getenv("TWILIO_PHONE_NUMBER", ""),
            TWILIO_SIGNATURE_MODE=os.getenv("TWILIO_SIGNATURE_MODE", ""),
            TRUSTED_RECORDING_DOMAIN=os.getenv("TRUSTED_RECORDING_DOMAIN", "twilio.com"),
            PLATFORM_NUMBER=os.getenv("PLATFORM_NUMBER", ""),
            OWNER_PHONE=os.getenv("OWNER_PHONE", ""),
            OPENAI_API_KEY=os.getenv("OPENAI_API_KEY", ""),
            OPENAI_TRANSCRIBE_MODEL=os.getenv("OPENAI_TRANSCRIBE_MODEL", "whisper-1"),
            TRANSCRIBE_LANGUAGE=os.getenv("TRANSCRIBE_LANGUAGE", "en"),
            AUDIO_FETCH_TIMEOUT_SECONDS=_env_float("AUDIO_FETCH_TIMEOUT_SECONDS", 10.0),
            TRANSCRIBE_TIMEOUT_SECONDS=_env_float("TRANSCRIBE_TIMEOUT_SECONDS", 30.0),
            SMS_TIMEOUT_SECONDS=_env_float("SMS_TIMEOUT_SECONDS", 10.0),
            SIMULATOR_API_KEY=os.getenv("SIMULATOR_API_KEY", ""),
            VOICE_CONSENT_SCRIPT=os.getenv("VOICE_CONSENT_SCRIPT", ""),
            MISSED_CALL_SMS_SCRIPT=os.getenv("MISSED_CALL_SMS_SCRIPT", ""),
            DEFAULT_BUSINESS_NAME=os.getenv("DEFAULT_BUSINESS_NAME", "the office"),
        )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.strip().lower() == "production"

    def has_twilio_auth(self) -> bool:
        """Check if Twilio auth is available (for fetching recordings, sending SMS)."""
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN)

    def has_openai_key(self) -> bool:
        """Check if OpenAI API key is configured."""
        return bool(self.OPENAI_API_KEY)

    def sms_sender(self) -> str:
        return self.TWILIO_PHONE_NUMBER or self.PLATFORM_NUMBER

    def owner_number(self) -> Optional[str]:
        return self.OWNER_PHONE or self.PLATFORM_NUMBER or None

    def consent_script(self) -> str:
        return self.VOICE_CONSENT_SCRIPT.strip() or DEFAULT_CONSENT_SCRIPT

    def missed_call_script(self) -> str:
        return self.MISSED_CALL_SMS_SCRIPT.strip() or DEFAULT_MISSED_CALL_SCRIPT


# Process-wide instance used for wiring (database engine, logging, FastAPI deps).
config = Config.from_env()
