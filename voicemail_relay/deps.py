"""FastAPI dependencies.

Collaborators are built once from the validated config and reused by every
request. Tests swap them through app.dependency_overrides.
"""

from functools import lru_cache

from voicemail_relay.config import Config, config as app_config


def get_config() -> Config:
    return app_config


def build_coordinator(config: Config, session_factory):
    """Wire the coordinator and its gateways from one config value."""
    from voicemail_relay.call_lifecycle import CallLifecycleCoordinator
    from voicemail_relay.call_store import CallRecordStore
    from voicemail_relay.notifications import NotificationDispatcher, TwilioSmsGateway
    from voicemail_relay.recordings import AudioRetriever, Transcriber
    from voicemail_relay.tenants_store import TenantDirectory

    return CallLifecycleCoordinator(
        config=config,
        store=CallRecordStore(session_factory),
        tenants=TenantDirectory(session_factory),
        retriever=AudioRetriever(
            config.TWILIO_ACCOUNT_SID,
            config.TWILIO_AUTH_TOKEN,
            trusted_domain=config.TRUSTED_RECORDING_DOMAIN,
            timeout_s=config.AUDIO_FETCH_TIMEOUT_SECONDS,
        ),
        transcriber=Transcriber(
            config.OPENAI_API_KEY,
            model=config.OPENAI_TRANSCRIBE_MODEL,
            language=config.TRANSCRIBE_LANGUAGE,
            timeout_s=config.TRANSCRIBE_TIMEOUT_SECONDS,
        ),
        dispatcher=NotificationDispatcher(
            TwilioSmsGateway(
                config.TWILIO_ACCOUNT_SID,
                config.TWILIO_AUTH_TOKEN,
                timeout_s=config.SMS_TIMEOUT_SECONDS,
            ),
            default_sender=config.sms_sender(),
        ),
    )


@lru_cache(maxsize=1)
def get_coordinator():
    from voicemail_relay.database import SessionLocal

    return build_coordinator(app_config, SessionLocal)
