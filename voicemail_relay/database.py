"""
Database configuration and session management.
Uses SQLAlchemy; SQLite for local development, PostgreSQL in production.
"""

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from voicemail_relay.config import config

# Base class for all models
Base = declarative_base()


def build_engine(database_url: str, echo: bool = False, **kwargs) -> Engine:
    """Create an engine with the pool settings appropriate to the backend."""
    if database_url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        # Webhook handlers run in FastAPI's threadpool.
        connect_args.setdefault("check_same_thread", False)
        return create_engine(database_url, connect_args=connect_args, **kwargs)

    return create_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=10,
        max_overflow=20,
        echo=echo,
        **kwargs,
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = build_engine(config.DATABASE_URL, echo=config.DEBUG)

SessionLocal = build_session_factory(engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database sessions.

    Usage in FastAPI:
        @router.get("/health/ready")
        def ready(db: Session = Depends(get_db)):
            db.execute(text("SELECT 1"))
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine = None):
    """
    Initialize database - create all tables.
    Should be called on application startup.
    """
    from voicemail_relay import db_models  # noqa: F401  (registers tables)

    Base.metadata.create_all(bind=bind or engine)
