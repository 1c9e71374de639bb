"""
Database engine management — SQLAlchemy + psycopg2.
"""
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """A storage read or write failed."""


class StorageUnavailableError(StorageError):
    """The database cannot be reached at startup."""


def make_engine(database_url: str) -> Engine:
    """Create the single connection pool shared by every pipeline component."""
    if database_url.startswith("sqlite"):
        return create_engine(database_url)
    return create_engine(database_url, pool_pre_ping=True, pool_recycle=300)


def check_connection(engine: Engine) -> None:
    """
    Verify the database answers a trivial query.

    Raises:
        StorageUnavailableError: If no connection can be established.
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Database connection failed: %s", e)
        raise StorageUnavailableError(f"Database unavailable: {e}") from e
    logger.info("Database connection established")
