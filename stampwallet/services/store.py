# Overview: Store layer; transaction boundary, row locking, soft deletion and retry for the ledger core.

"""
Store: the transactional boundary of the ledger core.

RULES:
- Every mutating core operation runs inside exactly one `transaction()` block.
- Rows that are mutated are re-read with `lock_for_update` inside that block;
  objects handed in by callers are only used for their ids.
- Soft-deleted rows (deleted_at set) are invisible to `live()` queries.
- Retryable failures (lost optimistic update, lock/serialization failure)
  surface as `Conflict`; `run_with_retry` re-runs the whole operation.
- An OperationContext carries the per-request deadline and cancellation
  signal; it is checked when the transaction opens, at checkpoints and
  before commit. Any failure rolls the transaction back.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterable, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import Cancelled, Conflict, StoreError, Timeout
from ..extensions import db


logger = logging.getLogger(__name__)

T = TypeVar("T")


class OperationContext:
    """
    Deadline and cancellation signal for one core operation.

    deadline is a time.monotonic() timestamp; None means no deadline.
    """

    def __init__(self, deadline: float | None = None, cancel_event: threading.Event | None = None):
        self.deadline = deadline
        self.cancel_event = cancel_event or threading.Event()

    @classmethod
    def with_timeout(cls, seconds: float | None) -> "OperationContext":
        if seconds is None:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check(self) -> None:
        if self.cancelled:
            raise Cancelled("Operation cancelled")
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise Timeout("Operation deadline exceeded")


def checkpoint(ctx: OperationContext | None) -> None:
    """Observe the deadline/cancellation signal between steps."""
    if ctx is not None:
        ctx.check()


def _is_timeout(exc: OperationalError) -> bool:
    message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    return "timeout" in message or "canceling statement" in message


@contextmanager
def transaction(ctx: OperationContext | None = None):
    """
    Run the enclosed block as one Store transaction.

    Commits on normal exit, rolls back on any exception. Store-level
    exceptions are translated into the ledger taxonomy.
    """
    checkpoint(ctx)
    try:
        yield db.session
        checkpoint(ctx)
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.info("Optimistic update lost, rolling back: %s", exc)
        raise Conflict("Concurrent update") from exc
    except IntegrityError as exc:
        # Unique indexes over live rows are the last line of defence against
        # racing writers; the retried operation observes the winner.
        db.session.rollback()
        logger.info("Integrity conflict, rolling back: %s", exc.orig)
        raise Conflict("Concurrent insert") from exc
    except OperationalError as exc:
        db.session.rollback()
        if _is_timeout(exc):
            raise Timeout("Store operation timed out") from exc
        logger.warning("Store operational error, rolling back: %s", exc.orig)
        raise Conflict("Store lock or serialization failure") from exc
    except BaseException:
        db.session.rollback()
        raise


def run_with_retry(func: Callable[[], T], *, attempts: int = 3, backoff_base: float = 0.05) -> T:
    """
    Execute a Store operation with retry on Conflict.

    The callable must open its own `transaction()` so every attempt starts
    from a clean session.
    """
    for attempt in range(attempts):
        try:
            return func()
        except Conflict:
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    raise StoreError("Retry loop exhausted")


# =============================================================================
# QUERIES
# =============================================================================

def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Version counters on VirtualCard, OwnedItem, ItemDefinition and
    Transaction still catch lost updates there.
    Locked rows overwrite whatever the identity map held for them.
    """
    return query.with_for_update().populate_existing()


def live(model):
    """Query over rows that are not soft-deleted."""
    return db.session.query(model).filter(model.deleted_at.is_(None))


def find_live(model, **conds):
    """First live row matching equality conditions, or None."""
    return live(model).filter_by(**conds).first()


def lock_live(model, row_id: int):
    """Re-read a live row by internal id under a row lock."""
    return lock_for_update(live(model).filter(model.id == row_id)).first()


def soft_delete(query, now) -> int:
    """Mark every row of the query deleted. Returns the number of rows touched."""
    return query.update({"deleted_at": now}, synchronize_session=False)


def compare_and_set(model, ids: Iterable[int], column, expected: Iterable[str], values: dict) -> int:
    """
    Conditional bulk update: only rows whose `column` is still in `expected`
    are changed. Returns the number of rows that won the compare-and-set.
    """
    ids = list(ids)
    if not ids:
        return 0
    return (
        db.session.query(model)
        .filter(model.id.in_(ids))
        .filter(column.in_(list(expected)))
        .update(values, synchronize_session=False)
    )
