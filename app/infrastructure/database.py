"""Database configuration and session management."""

from __future__ import annotations

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from app.config import Settings, get_settings


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


settings = get_settings()

logger = logging.getLogger(__name__)


def _is_sqlite(database_url: str) -> bool:
    return make_url(database_url).get_backend_name() == "sqlite"


def build_engine(settings: Settings) -> Engine:
    """Create the SQLAlchemy engine for the configured database."""

    if _is_sqlite(settings.database_url):
        # Repositories run in worker threads, so the connection must not be
        # pinned to the thread that opened it.
        new_engine = create_engine(
            settings.database_url,
            connect_args={"check_same_thread": False},
        )
        event.listen(new_engine, "connect", _enable_sqlite_foreign_keys)
        return new_engine
    return create_engine(settings.database_url, pool_pre_ping=True)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    """Turn on ``ON DELETE CASCADE`` support for SQLite connections."""

    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


engine = build_engine(settings)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def initialize_database() -> None:
    """Ensure all ORM models have corresponding database tables."""

    from app.infrastructure import models  # noqa: F401  # ensure models are imported

    Base.metadata.create_all(bind=engine, checkfirst=True)
    logger.debug("Database schema ensured for %s", engine.url.render_as_string())

