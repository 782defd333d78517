"""
Health check and monitoring endpoints for production.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from voicemail_relay.config import Config
from voicemail_relay.database import get_db
from voicemail_relay.deps import get_config
from voicemail_relay.logging_config import logger

router = APIRouter(tags=["Health & Monitoring"])

SERVICE_NAME = "voicemail-relay"
VERSION = "1.0.0"


# GET /health
# Gets: nothing
# Returns: {status, service, version}
# Example:
#   curl http://localhost:8000/health
@router.get("/health")
async def health_check():
    """
    Basic health check - returns 200 if service is running.
    Use this for basic liveness probes.
    """
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
    }


# GET /health/ready
# Gets: nothing
# Returns: dependency readiness checks; 503 when the database is unreachable
# Example:
#   curl http://localhost:8000/health/ready
@router.get("/health/ready")
def readiness_check(db: Session = Depends(get_db), config: Config = Depends(get_config)):
    """
    Readiness check - verifies the database answers.

    Twilio and OpenAI are reported but do not gate readiness: the webhooks
    degrade without them.
    """
    checks = {
        "database": False,
        "twilio": config.has_twilio_auth() or "not_configured",
        "openai": config.has_openai_key() or "not_configured",
        "ready": False,
    }

    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True
    except SQLAlchemyError as e:
        logger.warning("readiness_check_database", status="error", error=str(e))

    checks["ready"] = checks["database"] is True
    return JSONResponse(checks, status_code=200 if checks["ready"] else 503)


# GET /metrics
# Gets: nothing
# Returns: Prometheus text exposition
# Example:
#   curl http://localhost:8000/metrics
@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
