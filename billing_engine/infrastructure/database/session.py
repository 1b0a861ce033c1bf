"""Database engine, session factory and transaction boundary"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from billing_engine.domain.exceptions import TransactionConflict

# serialization_failure, deadlock_detected, lock_not_available
CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}


def create_db_engine(database_url: str) -> Engine:
    """Build an engine; pooling options only apply to server databases"""
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})

    # Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
    return create_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=10,
        max_overflow=10,
        pool_recycle=3600,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def is_conflict(error: DBAPIError) -> bool:
    """True when the store rejected the statement because of a concurrent transaction"""
    sqlstate = getattr(error.orig, "pgcode", None) or getattr(error.orig, "sqlstate", None)
    if sqlstate in CONFLICT_SQLSTATES:
        return True
    return "database is locked" in str(error.orig)


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Run a block as one all-or-nothing transaction.

    Commits when the block finishes, rolls back on any exception. Lock and
    serialization failures are re-raised as TransactionConflict so the caller
    can retry the whole operation.
    """
    try:
        yield db
        db.commit()
    except DBAPIError as e:
        db.rollback()
        if is_conflict(e):
            raise TransactionConflict(f"Concurrent update detected: {e.orig}") from e
        raise
    except Exception:
        db.rollback()
        raise
