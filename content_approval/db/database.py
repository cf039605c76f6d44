"""
Database engine, session factory and session helpers.

Every request and every batch unit of work gets its own Session; nothing is
shared in memory between them.
"""
import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from content_approval.core.config import get_settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL.

    SQLite connections are opened with check_same_thread disabled (batch units
    run in worker threads) and a busy timeout so concurrent writers queue for
    the database lock instead of failing.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


_settings = get_settings()
engine = build_engine(_settings.database_url, echo=_settings.db_echo)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Context manager for one unit of work.

    Commits on success, rolls back on any exception and always closes the
    session.

    Usage:
        with session_scope() as db:
            db.query(ApprovalSession).all()
    """
    factory = session_factory or SessionLocal
    db = factory()

    try:
        yield db
        db.commit()
    except Exception as e:
        logger.debug(f"Rolling back unit of work: {type(e).__name__}: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def create_all_tables(bind: Optional[Engine] = None) -> None:
    """Create every table on the given engine (development and tests; production uses alembic)"""
    from content_approval.db import models  # noqa: F401  registers mappers

    Base.metadata.create_all(bind=bind or engine)
