"""Tenant directory: which business owns the number a caller dialled."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from voicemail_relay.db_models import DBTenant
from voicemail_relay.logging_config import get_logger, mask_phone

logger = get_logger(__name__)


class TenantDirectory:
    """Read-only lookups against the tenants table."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def business_name(self, to_phone: Optional[str], fallback: str) -> str:
        """Display name for the dialled number; never raises."""
        if not to_phone:
            return fallback

        # company_name is the curated display name; name is the signup-time label.
        for column in (DBTenant.company_name, DBTenant.name):
            try:
                with self._session_factory() as db:
                    value = db.execute(
                        select(column).where(DBTenant.phone_number == to_phone).limit(1)
                    ).scalars().first()
            except SQLAlchemyError as e:
                logger.warning("tenant_lookup_failed", to=mask_phone(to_phone), column=column.key, error=str(e))
                continue
            if value:
                return str(value)

        return fallback

    def add_tenant(self, phone_number: str, company_name: Optional[str] = None, name: Optional[str] = None) -> DBTenant:
        """Register a business number (seeding and tests)."""
        with self._session_factory() as db:
            tenant = DBTenant(phone_number=phone_number, company_name=company_name, name=name)
            db.add(tenant)
            db.commit()
            db.refresh(tenant)

        logger.info("tenant_created", tenant_id=tenant.id, phone=mask_phone(phone_number))
        return tenant
