from __future__ import annotations

import logging
from collections.abc import Generator, Iterator
from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from flowpath.settings import get_settings

logger = logging.getLogger(__name__)

SessionFactory = sessionmaker[Session]


def build_engine(url: str, *, echo: bool = False) -> Engine:
    if url in ("sqlite://", "sqlite:///:memory:"):
        # In-memory SQLite lives on a single shared connection
        return create_engine(
            url, echo=echo, connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_recycle=3600,
        pool_timeout=30,
        echo=echo,
    )


def build_session_factory(engine: Engine) -> SessionFactory:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@lru_cache(maxsize=1)
def _engine() -> Engine:
    settings = get_settings()
    url = settings.sqlalchemy_database_url
    if url is None:
        raise RuntimeError("DATABASE_URL is not configured")
    return build_engine(url, echo=settings.development_mode)


@lru_cache(maxsize=1)
def _session_factory() -> SessionFactory:
    return build_session_factory(_engine())


def get_engine() -> Engine:
    """Get the SQLAlchemy engine configured from settings."""
    return _engine()


def get_session_factory() -> SessionFactory:
    return _session_factory()


def get_db_session() -> Generator[Session, None, None]:
    session = _session_factory()()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def db_session(factory: SessionFactory | None = None) -> Iterator[Session]:
    """
    Context manager for read sessions with guaranteed cleanup.

    Usage:
        with db_session() as session:
            record = session.get(FlowRecord, flow_id)
    """
    session = (factory or _session_factory())()
    try:
        yield session
    except Exception as e:
        logger.warning("Database session error, rolling back: %s", e)
        session.rollback()
        raise
    finally:
        try:
            session.close()
        except Exception as e:
            logger.error("Failed to close database session: %s", e)


@contextmanager
def db_transaction(factory: SessionFactory | None = None) -> Iterator[Session]:
    """
    Context manager for database transactions with automatic commit/rollback.

    Usage:
        with db_transaction() as session:
            session.add(record)
            # Automatically commits here if no exception
    """
    session = (factory or _session_factory())()
    try:
        yield session
        session.commit()
        logger.debug("Database transaction committed successfully")
    except Exception as e:
        logger.warning("Database transaction failed, rolling back: %s", e)
        session.rollback()
        raise
    finally:
        try:
            session.close()
        except Exception as e:
            logger.error("Failed to close database session: %s", e)
