"""
SQLAlchemy database engine and session management.
"""
from __future__ import annotations

import os
import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./data/rxtriage.db")

# Hosted Postgres providers hand out postgres:// but SQLAlchemy 2.0 requires postgresql://
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

IS_SQLITE = DATABASE_URL.startswith("sqlite")

# Batch workers share the engine across threads
engine = create_engine(
    DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False} if IS_SQLITE else {},
    pool_pre_ping=not IS_SQLITE,
)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
logger = logging.getLogger("rxtriage.db")


def _ensure_sqlite_dir() -> None:
    if not DATABASE_URL.startswith("sqlite:///") or DATABASE_URL.endswith(":memory:"):
        return
    path = DATABASE_URL[len("sqlite:///"):]
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)


def init_db() -> None:
    """Create the adherence_results table and its indexes if missing."""
    from packages.db.models import Base  # noqa: F811
    _ensure_sqlite_dir()
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready")


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Context manager that yields a DB session and handles commit/rollback."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency; same transaction rules as ``get_session``."""
    with get_session() as session:
        yield session
