"""
Webhook security.
- Twilio request signature verification (X-Twilio-Signature)
- Enforcement policy (off / log / enforce)
- Simulator API key
"""

import hmac
from typing import Mapping, Optional

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import APIKeyHeader
from pydantic import BaseModel
from twilio.request_validator import RequestValidator

from voicemail_relay.config import Config
from voicemail_relay.deps import get_config
from voicemail_relay.logging_config import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Twilio-Signature"
SIGNATURE_MODES = ("off", "log", "enforce")

MISSING_SIGNATURE = "missing_signature"
INVALID_SIGNATURE = "invalid_signature"


class SignatureCheck(BaseModel):
    ok: bool
    mode: str
    reason: Optional[str] = None


def compute_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    """The X-Twilio-Signature value Twilio would send for this request."""
    return RequestValidator(auth_token).compute_signature(url, dict(params))


def verify_signature(auth_token: str, url: str, params: Mapping[str, str], signature: str) -> bool:
    """Check a Twilio signature header (constant-time compare inside the SDK)."""
    if not auth_token or not signature:
        return False

    return RequestValidator(auth_token).validate(url, dict(params), signature)


def resolve_signature_mode(config: Config) -> str:
    """Explicit TWILIO_SIGNATURE_MODE wins; otherwise enforce only in production."""
    configured = (config.TWILIO_SIGNATURE_MODE or "").strip().lower()
    if configured in SIGNATURE_MODES:
        return configured
    return "enforce" if config.is_production else "off"


def check_signature(
    config: Config,
    url: str,
    params: Mapping[str, str],
    signature: Optional[str],
) -> SignatureCheck:
    """Apply the enforcement policy to one inbound webhook request."""
    mode = resolve_signature_mode(config)
    if mode == "off":
        return SignatureCheck(ok=True, mode=mode)

    if not signature:
        if mode == "log":
            logger.warning("twilio_signature_missing", url=url)
        return SignatureCheck(ok=mode != "enforce", mode=mode, reason=MISSING_SIGNATURE)

    if verify_signature(config.TWILIO_AUTH_TOKEN, url, params, signature):
        return SignatureCheck(ok=True, mode=mode)

    if mode == "log":
        logger.warning("twilio_signature_invalid", url=url)
    return SignatureCheck(ok=mode == "log", mode=mode, reason=INVALID_SIGNATURE)


def signed_url(request: Request, config: Config) -> str:
    """The URL Twilio signed: the public origin when we sit behind a proxy."""
    if not config.PUBLIC_BASE_URL:
        return str(request.url)

    url = config.PUBLIC_BASE_URL.rstrip("/") + request.url.path
    if request.url.query:
        url += "?" + request.url.query
    return url


async def read_form_params(request: Request) -> dict[str, str]:
    """Flatten the urlencoded body; the last value wins for repeated names."""
    form_data = await request.form()
    return {key: value for key, value in form_data.multi_items() if isinstance(value, str)}


# Simulator authentication scheme
simulator_key_header = APIKeyHeader(name="x-simulator-key", auto_error=False)


async def verify_simulator_key(
    provided_key: Optional[str] = Security(simulator_key_header),
    config: Config = Depends(get_config),
) -> str:
    """
    Guard for the test-only simulator endpoint.

    Usage:
        @router.post("/test/simulate-callback")
        async def simulate(_: str = Depends(verify_simulator_key)):
            ...
    """
    if config.is_production:
        raise HTTPException(status_code=404, detail="not_found")

    if not config.SIMULATOR_API_KEY:
        # No key configured: open in development
        return "development"

    if not provided_key or not hmac.compare_digest(provided_key, config.SIMULATOR_API_KEY):
        logger.warning("simulator_key_rejected", provided=bool(provided_key))
        raise HTTPException(status_code=401, detail="unauthorized")

    return provided_key
