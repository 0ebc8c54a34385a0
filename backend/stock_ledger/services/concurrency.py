"""Locking, atomic units and retry for stock mutations."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, Iterator, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stock_ledger.core.config import settings
from stock_ledger.db.session import atomic
from stock_ledger.models.stock import StockItem
from stock_ledger.services.stock_errors import ConcurrencyConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL lock_not_available, deadlock_detected, serialization_failure
CONFLICT_PGCODES = {"55P03", "40P01", "40001"}
CONFLICT_MARKERS = (
    "database is locked",
    "deadlock",
    "lock timeout",
    "could not obtain lock",
    "could not serialize access",
)


def lock_for_update(stmt):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE (the whole database is locked
    by the writer instead); PostgreSQL honours it.
    """
    return stmt.with_for_update()


def lock_stock_items(db: Session, stock_item_ids: Iterable[int]) -> Dict[int, StockItem]:
    """Lock the given stock items in ascending id order and return them by id.

    A stable lock order keeps two batches touching overlapping items from
    deadlocking. Ids that do not exist are simply absent from the result.
    """
    ids = sorted({int(i) for i in stock_item_ids})
    if not ids:
        return {}
    stmt = lock_for_update(
        select(StockItem).where(StockItem.id.in_(ids)).order_by(StockItem.id)
    )
    # populate_existing refreshes rows already in the identity map with
    # the values read under the lock
    items = db.scalars(stmt.execution_options(populate_existing=True)).all()
    return {item.id: item for item in items}


def is_concurrency_conflict(exc: OperationalError) -> bool:
    """True for lock timeouts, deadlocks and busy databases; false for other operational failures."""
    if getattr(exc.orig, "pgcode", None) in CONFLICT_PGCODES:
        return True
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in CONFLICT_MARKERS)


@contextmanager
def stock_unit_of_work(db: Session, lock_timeout_ms: Optional[int] = None) -> Iterator[Session]:
    """All-or-nothing unit for stock mutations.

    Commits on success, rolls back on any failure, and reports lock timeouts,
    deadlocks and lost optimistic-version races as ConcurrencyConflictError.
    """
    try:
        with atomic(db, lock_timeout_ms=lock_timeout_ms or settings.stock_lock_timeout_ms):
            yield db
    except StaleDataError as exc:
        logger.warning(f"Stock unit of work aborted by a stale version: {exc}")
        raise ConcurrencyConflictError(original=exc) from exc
    except OperationalError as exc:
        if not is_concurrency_conflict(exc):
            raise
        logger.warning(f"Stock unit of work aborted by concurrency conflict: {exc}")
        raise ConcurrencyConflictError(original=exc) from exc


def run_with_retry(
    func: Callable[[], T],
    *,
    attempts: Optional[int] = None,
    backoff_base: Optional[float] = None,
) -> T:
    """
    Execute a stock operation with retry on concurrency conflicts.

    Only ConcurrencyConflictError is retried; the failed unit has already been
    rolled back, so each attempt starts from committed state.
    """
    attempts = attempts or settings.stock_retry_attempts
    backoff_base = settings.stock_retry_backoff_seconds if backoff_base is None else backoff_base

    for attempt in range(attempts):
        try:
            return func()
        except ConcurrencyConflictError:
            if attempt >= attempts - 1:
                raise
            delay = backoff_base * (2 ** attempt)
            logger.info(f"Retrying stock operation after conflict (attempt {attempt + 2}/{attempts}) in {delay:.2f}s")
            time.sleep(delay)
    raise ConcurrencyConflictError("Stock operation was not attempted")
