"""
SQLAlchemy database models.
One row per call leg, plus the read-only tenant directory.
"""

from datetime import datetime, timezone
import uuid

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from voicemail_relay.database import Base

UNKNOWN = "unknown"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DBCall(Base):
    """
    Call record - merged view of every Twilio callback for one call.
    Keyed by (provider, provider_call_id); rows are upserted, never deleted.
    """
    __tablename__ = "calls"
    __table_args__ = (
        UniqueConstraint("provider", "provider_call_id", name="uq_calls_provider_call"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    provider = Column(String(32), nullable=False, default="twilio")
    provider_call_id = Column(String(100), nullable=False, index=True)
    call_sid = Column(String(100), nullable=True, index=True)  # Twilio Call SID

    from_phone = Column(String(50), nullable=False, default=UNKNOWN, server_default=UNKNOWN)
    to_phone = Column(String(50), nullable=False, default=UNKNOWN, server_default=UNKNOWN)
    status = Column(String(32), nullable=False, default=UNKNOWN, server_default=UNKNOWN)

    recording_url = Column(String(500), nullable=True)
    transcription = Column(Text, nullable=True)
    raw_json = Column(Text, nullable=True)  # Triggering callback, for diagnostics

    # Follow-up markers (set once, see CallRecordStore.mark_followup)
    missed_at = Column(DateTime(timezone=True), nullable=True)
    followup_sent_at = Column(DateTime(timezone=True), nullable=True)
    followup_message_id = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class DBTenant(Base):
    """Business that owns a Twilio number. Read-only from the webhook side."""
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    phone_number = Column(String(50), unique=True, nullable=False, index=True)
    company_name = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
