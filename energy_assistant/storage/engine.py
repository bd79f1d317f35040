"""SQLAlchemy engine construction."""

from __future__ import annotations

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from .schema import metadata

logger = logging.getLogger(__name__)


def normalize_database_url(url: str) -> str:
    """Accept the ``postgres://`` scheme some hosting providers hand out."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def make_engine(url: str, pool_size: int = 5) -> Engine:
    """Create the pooled engine used for telemetry and chat history.

    Pool sizing options are only applied to server databases; SQLite uses
    its own single-file pool.
    """
    url = normalize_database_url(url)
    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(
            url,
            pool_pre_ping=True,
            pool_size=pool_size,
            max_overflow=pool_size * 2,
            pool_recycle=3600,
        )
    logger.info(
        "storage.engine.created",
        extra={"dialect": engine.dialect.name, "pool_size": pool_size},
    )
    return engine


def create_schema(engine: Engine) -> None:
    """Create any missing tables (development and tests)."""
    metadata.create_all(engine)
