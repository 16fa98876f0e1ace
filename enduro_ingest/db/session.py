from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from enduro_ingest.config.settings import settings
from enduro_ingest.core.errors import InvalidTransitionError


def _is_postgresql(database_url: str) -> bool:
    lowered = database_url.lower()
    return "postgresql" in lowered or "postgres" in lowered


def _validate_postgresql_driver() -> None:
    """Validate PostgreSQL driver is installed when using PostgreSQL.

    Must actually import psycopg2 (not just find_spec it) because SQLAlchemy
    will try to import it when creating the engine.
    """
    try:
        import psycopg2  # noqa: F401

        logger.info("PostgreSQL driver (psycopg2) is available")
    except ImportError as e:
        logger.error("PostgreSQL driver (psycopg2) is not installed! Install it with: pip install psycopg2-binary")
        raise ImportError("PostgreSQL driver required. Install with: pip install psycopg2-binary") from e


def check_database_connection() -> None:
    """Run a trivial query to verify the database is reachable."""
    try:
        with _get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection test successful")
    except Exception as e:
        logger.error(f"Database connection test failed: {e}")
        raise


# Lazy initialization to avoid import-time database connections
_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None


def _get_engine() -> Engine:
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        logger.info(f"Initializing database engine: {settings.database_url}")

        is_postgresql = _is_postgresql(settings.database_url)
        if is_postgresql:
            _validate_postgresql_driver()
            logger.info("Using PostgreSQL database")
        else:
            logger.warning("Using SQLite database (local development only)")

        connect_args = {}
        if "sqlite" in settings.database_url.lower():
            connect_args = {"check_same_thread": False}
        elif is_postgresql:
            connect_args = {
                "connect_timeout": 10,
                "application_name": "enduro-ingest",
            }

        _engine = create_engine(
            settings.database_url,
            connect_args=connect_args,
            echo=False,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
        logger.info("Database engine initialized")
    return _engine


def get_engine() -> Engine:
    """Public wrapper around _get_engine()."""
    return _get_engine()


def _get_session_local() -> sessionmaker:
    """Get or create the session factory (lazy initialization)."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_get_engine())
        logger.info("Database session factory initialized")
    return _SessionLocal


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get database session context manager.

    Commits when the block exits cleanly. InvalidTransitionError is re-raised without
    logging (an expected lifecycle outcome); anything else is logged as a database
    error and rolled back.
    """
    session = _get_session_local()()
    try:
        yield session
        session.commit()
        logger.debug("Database session committed")
    except InvalidTransitionError:
        session.rollback()
        raise
    except Exception as e:
        logger.error(f"Database session error, rolling back: {e}. Error type: {type(e).__name__}")
        session.rollback()
        raise
    finally:
        session.close()
