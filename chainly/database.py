"""
Database connection and session management for Chainly.

Provides:
- SessionLocal: Factory for creating database sessions
- get_db(): Context manager for DB sessions
- engine: SQLAlchemy engine instance (None until DATABASE_URL is set)
"""

import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from contextlib import contextmanager
from typing import Generator, Optional

from dotenv import load_dotenv
load_dotenv()


def normalize_database_url(url: Optional[str]) -> Optional[str]:
    """Hosted Postgres often hands out ``postgres://``, SQLAlchemy wants ``postgresql://``."""
    if url and url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


DATABASE_URL = normalize_database_url(os.getenv("DATABASE_URL"))

# pool_pre_ping=True ensures connections are valid before using them
engine = create_engine(DATABASE_URL, pool_pre_ping=True, echo=False) if DATABASE_URL else None

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db_session() -> Session:
    """
    Get a new database session (without context manager).

    Note: You must manually close the session after use.
    Prefer using get_db() context manager when possible.
    """
    if engine is None:
        raise ValueError(
            "DATABASE_URL environment variable not set. "
            "Please configure it in .env file."
        )
    return SessionLocal()


@contextmanager
def get_db() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with get_db() as db:
            run = db.query(Execution).filter(Execution.id == 1).first()

    The session is rolled back if an exception occurs and always closed.
    """
    db = get_db_session()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
