import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

from irefair.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


def _build_engine():
    url = settings.sqlalchemy_url
    if url.startswith("sqlite"):
        # Local runs and tests; the app serves requests from worker threads
        return create_engine(url, connect_args={"check_same_thread": False}, echo=settings.debug)
    # pool_size=5: maintain 5 connections ready
    # max_overflow=10: allow 10 extra connections under load
    return create_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        echo=settings.debug  # Log SQL queries in debug mode
    )


engine = _build_engine()

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.
    Usage:
        with get_db_session() as db:
            db.execute(text("SELECT * FROM applicants"))
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def test_postgres_connection() -> bool:
    """
    Test if the database is reachable.
    Returns True if connection successful, False otherwise.
    """
    try:
        with get_db_session() as db:
            result = db.execute(text("SELECT 1 as test"))
            row = result.fetchone()
            return row[0] == 1
    except Exception as e:
        logger.error("Database connection failed: %s", e)
        return False



def insert_row(db, table: str, values: dict) -> None:
    """INSERT one row inside the caller's session. Column names come from code, never from input."""
    columns = ", ".join(values)
    placeholders = ", ".join(f":{column}" for column in values)
    db.execute(text(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"), values)


def update_row(db, table: str, key_column: str, key, fields: dict) -> int:
    """UPDATE the given columns of one row inside the caller's session."""
    if not fields:
        return 0
    assignments = ", ".join(f"{column} = :{column}" for column in fields)
    params = dict(fields)
    params["key_value"] = key
    result = db.execute(
        text(f"UPDATE {table} SET {assignments} WHERE {key_column} = :key_value"),
        params,
    )
    return result.rowcount
