"""
Database connection and session management for LeadFlow.

Provides:
- engine / SessionLocal: built from DATABASE_URL
- get_db(): Context manager for DB sessions (workers, scripts)
- get_db_session(): Bare session (API dependency)
- init_db(): Create every table the engine reads or writes
- check_database_connection(): SELECT 1 probe for health endpoints

Postgres in production, SQLite for local runs and tests.
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session

load_dotenv()

logger = logging.getLogger(__name__)


def normalize_database_url(url: str) -> str:
    """
    Rewrite the legacy postgres:// scheme (still handed out by hosted
    Postgres providers) to the postgresql:// scheme SQLAlchemy expects.

    Example:
        >>> normalize_database_url("postgres://u:p@host/db")
        'postgresql://u:p@host/db'
    """
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    raise ValueError(
        "DATABASE_URL environment variable not set. "
        "Please configure it in .env file."
    )

DATABASE_URL = normalize_database_url(DATABASE_URL)

_engine_options = {"pool_pre_ping": True, "echo": False}
if DATABASE_URL.startswith("sqlite"):
    # API threads and Celery threads share the connection pool
    _engine_options["connect_args"] = {"check_same_thread": False}

engine = create_engine(DATABASE_URL, **_engine_options)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with get_db() as db:
            WorkflowEngine(db).execute_pending()

    Rolls back on error and always closes the session.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_db_session() -> Session:
    """Bare session; the caller closes it"""
    return SessionLocal()


def init_db(bind=None) -> list:
    """
    Create any missing LeadFlow tables.

    Returns:
        Names of all tables known to the models, in dependency order
    """
    from .models import Base

    Base.metadata.create_all(bind=bind or engine)
    tables = [table.name for table in Base.metadata.sorted_tables]
    logger.info(f"Database initialized ({len(tables)} tables)")
    return tables


def check_database_connection(db: Optional[Session] = None) -> bool:
    """True when a trivial query succeeds on db (or a fresh session)"""
    session = db or SessionLocal()
    try:
        session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
    finally:
        if db is None:
            session.close()
