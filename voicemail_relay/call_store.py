"""Persistent call records.

All writes are upserts keyed by (provider, provider_call_id). Correctness under
duplicate or concurrent Twilio deliveries relies on the database applying each
statement atomically to a single row, not on locking here.
"""

from datetime import datetime, timezone
from typing import Any, Optional
import uuid

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from voicemail_relay.db_models import DBCall
from voicemail_relay.logging_config import get_logger
from voicemail_relay.models import CallKey, CallRecord

logger = get_logger(__name__)

# Columns a callback may write. Follow-up markers only go through mark_followup.
CALLBACK_COLUMNS = frozenset(
    {
        "call_sid",
        "from_phone",
        "to_phone",
        "status",
        "recording_url",
        "transcription",
        "raw_json",
    }
)


def _insert_for(session: Session):
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


class CallRecordStore:
    """Upserts and point reads on the calls table."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def upsert_from_callback(self, key: CallKey, fields: dict[str, Any]) -> None:
        """Insert the row, or overwrite only the columns this callback mentions."""
        unknown = set(fields) - CALLBACK_COLUMNS
        if unknown:
            raise ValueError(f"Not a callback column: {sorted(unknown)}")

        with self._session_factory() as db:
            insert = _insert_for(db)
            stmt = insert(DBCall).values(
                id=str(uuid.uuid4()),
                provider=key.provider,
                provider_call_id=key.provider_call_id,
                **fields,
            )
            if fields:
                set_ = {name: stmt.excluded[name] for name in fields}
                set_["updated_at"] = datetime.now(timezone.utc)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["provider", "provider_call_id"],
                    set_=set_,
                )
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=["provider", "provider_call_id"])
            db.execute(stmt)
            db.commit()

        logger.debug("call_upserted", provider=key.provider, provider_call_id=key.provider_call_id, columns=sorted(fields))

    def insert_if_absent(self, key: CallKey, fields: dict[str, Any]) -> None:
        """Create the row unless one already exists for the key."""
        with self._session_factory() as db:
            insert = _insert_for(db)
            stmt = insert(DBCall).values(
                id=str(uuid.uuid4()),
                provider=key.provider,
                provider_call_id=key.provider_call_id,
                **fields,
            ).on_conflict_do_nothing(index_elements=["provider", "provider_call_id"])
            db.execute(stmt)
            db.commit()

    def mark_followup(self, key: CallKey, message_id: Optional[str]) -> None:
        """Record that the missed-call follow-up went out.

        Each marker is only written while still NULL, so a second delivery of
        the same callback can never move them.
        """
        now = datetime.now(timezone.utc)
        with self._session_factory() as db:
            db.execute(
                update(DBCall)
                .where(
                    DBCall.provider == key.provider,
                    DBCall.provider_call_id == key.provider_call_id,
                )
                .values(
                    missed_at=func.coalesce(DBCall.missed_at, now),
                    followup_sent_at=func.coalesce(DBCall.followup_sent_at, now),
                    followup_message_id=func.coalesce(DBCall.followup_message_id, message_id),
                    updated_at=now,
                )
            )
            db.commit()

        logger.info("followup_marked", provider=key.provider, provider_call_id=key.provider_call_id)

    def find_by_key(self, key: CallKey) -> Optional[CallRecord]:
        with self._session_factory() as db:
            row = db.execute(
                select(DBCall).where(
                    DBCall.provider == key.provider,
                    DBCall.provider_call_id == key.provider_call_id,
                )
            ).scalar_one_or_none()
            return CallRecord.model_validate(row) if row is not None else None

    def find_by_call_sid(self, provider: str, call_sid: str) -> Optional[CallRecord]:
        with self._session_factory() as db:
            row = db.execute(
                select(DBCall)
                .where(DBCall.provider == provider, DBCall.call_sid == call_sid)
                .limit(1)
            ).scalars().first()
            return CallRecord.model_validate(row) if row is not None else None

    def find_status(self, provider_call_id: str, provider: Optional[str] = None) -> Optional[str]:
        """Current status of a call, or None when there is no row yet."""
        query = select(DBCall.status).where(DBCall.provider_call_id == provider_call_id)
        if provider:
            query = query.where(DBCall.provider == provider)
        with self._session_factory() as db:
            status = db.execute(query.limit(1)).scalars().first()
        return str(status) if status else None
