"""Main FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from voicemail_relay.config import config
from voicemail_relay.database import init_db
from voicemail_relay.health import VERSION, router as health_router
from voicemail_relay.logging_config import logger
from voicemail_relay.routers.simulator import router as simulator_router
from voicemail_relay.routers.twilio import router as twilio_router
from voicemail_relay.security import resolve_signature_mode


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("application_starting", version=VERSION, environment=config.ENVIRONMENT)
    init_db()
    logger.info("database_initialized")
    logger.info("twilio_configured", configured=config.has_twilio_auth())
    logger.info("openai_configured", configured=config.has_openai_key())
    logger.info("signature_mode", mode=resolve_signature_mode(config))

    yield

    logger.info("application_shutting_down")


app = FastAPI(
    title="Voicemail Relay API",
    description="Missed-call and voicemail follow-up texts for Twilio numbers",
    version=VERSION,
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(twilio_router)
app.include_router(simulator_router)
