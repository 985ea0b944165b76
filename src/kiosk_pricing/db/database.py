"""
Database configuration for the pricing core.
- SQLite for local development and tests
- PostgreSQL in production via KIOSK_PRICING_DATABASE_URL
"""
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config.settings import get_settings

Base = declarative_base()

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def make_engine(database_url: str) -> Engine:
    """Create an engine with pool options suited to the backend."""
    if database_url.startswith("postgresql"):
        return create_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
            pool_size=10,
            max_overflow=20,
            pool_recycle=3600,
        )
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection so every session sees the same in-memory db
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    return create_engine(
        database_url,
        connect_args={"check_same_thread": False},
        echo=False,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_engine() -> Engine:
    """Engine for the configured database, created on first use."""
    global _engine
    if _engine is None:
        _engine = make_engine(get_settings().database_url)
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory(get_engine())
    return _session_factory


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding a session that is always closed."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for scripts; commits nothing on its own."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Optional[Engine] = None):
    """
    Create every table defined in the models.
    Call once when setting up a fresh database.
    """
    from . import tables  # noqa: F401  (registers the models on Base.metadata)

    Base.metadata.create_all(bind=engine or get_engine())
