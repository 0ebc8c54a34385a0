"""Database session management."""

import logging
from collections.abc import Generator, Iterator
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from stock_ledger.core.config import settings
from stock_ledger.db.base import Base

logger = logging.getLogger(__name__)

# Create engine - handle SQLite specially for check_same_thread
connect_args = {}
pool_config = {}

if settings.is_sqlite:
    connect_args = {"check_same_thread": False}
    pool_config = {
        "pool_pre_ping": True,
        "pool_recycle": 1800,  # Recycle connections every 30 minutes
    }
else:
    # PostgreSQL connection pooling configuration
    pool_config = {
        "pool_size": 20,
        "max_overflow": 40,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=settings.debug,
    **pool_config,
)

# Enable foreign key enforcement for SQLite
if settings.is_sqlite:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a session and always close it (request-scoped dependency)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Optional[Engine] = None) -> None:
    """Create all tables. Safe to call repeatedly."""
    from stock_ledger import models  # noqa: F401  registers every model on Base

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Stock ledger tables initialized")


@contextmanager
def atomic(db: Session, lock_timeout_ms: Optional[int] = None) -> Iterator[Session]:
    """Run a block as one all-or-nothing unit of work.

    Commits when the block exits normally; on any exception (including
    KeyboardInterrupt or a caller-side cancellation) the whole unit is rolled
    back and the exception propagates. On PostgreSQL a ``lock_timeout`` bounds
    how long any row lock inside the unit may be waited for.
    """
    try:
        if lock_timeout_ms and db.get_bind().dialect.name == "postgresql":
            db.execute(text(f"SET LOCAL lock_timeout = '{int(lock_timeout_ms)}ms'"))
        yield db
        db.commit()
    except BaseException:
        db.rollback()
        raise
