"""
Database configuration and session management.

This module sets up a SQLAlchemy engine pointing at an SQLite database by default.
You can switch the database URL via the `DATABASE_URL` environment variable.

The record store opens one session per operation through `get_db`.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import settings

DATABASE_URL: str = settings.DATABASE_URL


def build_engine(url: str) -> Engine:
    """Create an engine, handling the SQLite quirks.

    `check_same_thread` is needed for SQLite because FastAPI runs sync endpoints
    in a thread pool.  An in-memory SQLite database only lives as long as its
    connection, so it is pinned to a single shared connection.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)
    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


engine = build_engine(DATABASE_URL)

# Create a configured "Session" class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for declarative class definitions.
Base = declarative_base()


@contextmanager
def get_db(session_factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations.

    Example:
        with get_db() as db:
            # use db session here
    """
    db: Session = (session_factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
