"""
structlog setup for the voicemail relay.

Events are snake_case names with keyword context. Caller and business numbers
never reach the output in full: handlers pass them through mask_phone, and
redact_phone_numbers catches any raw E.164 value that slips through.
"""

import logging
import re
import sys
from typing import Any, Optional

import structlog

from voicemail_relay.config import config

E164_PATTERN = re.compile(r"^\+\d{7,15}$")

# HTTP clients and SDKs used for audio, transcription and SMS log every request at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "twilio", "urllib3")


def mask_phone(phone: Optional[str]) -> str:
    """Keep only the last four digits of a phone number for log output."""
    if not phone:
        return "unknown"
    digits = re.sub(r"\D", "", phone)
    if len(digits) <= 4:
        return "***"
    return f"***{digits[-4:]}"


def redact_phone_numbers(logger, method_name: str, event_dict: dict) -> dict:
    """structlog processor: mask any context value that is a bare E.164 number."""
    for key, value in event_dict.items():
        if key != "event" and isinstance(value, str) and E164_PATTERN.match(value):
            event_dict[key] = mask_phone(value)
    return event_dict


def configure_logging(level: str = "INFO", debug: bool = False):
    """
    Route structlog through the standard library logger on stdout.

    DEBUG gives colored console lines for local ngrok sessions; otherwise one
    JSON object per event for the log shipper.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level, logging.INFO),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        redact_phone_numbers,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None) -> Any:
    """
    Usage:
        logger = get_logger(__name__)
        logger.info("missed_call_sms_sent", call_sid="CA123", to=mask_phone(phone))
    """
    return structlog.get_logger(name)


configure_logging(level=config.LOG_LEVEL, debug=config.DEBUG)

logger = get_logger("voicemail_relay")
