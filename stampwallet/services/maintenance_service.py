# Overview: Service-layer operations for maintenance; transaction expiry sweep and token cleanup.

from __future__ import annotations

import logging
import time
from typing import Callable

from . import session_service
from .store import OperationContext
from .transaction_service import DEFAULT_SWEEP_BATCH_SIZE, TransactionManager


logger = logging.getLogger(__name__)


def expire_transactions(manager: TransactionManager, *, batch_size: int = DEFAULT_SWEEP_BATCH_SIZE) -> int:
    """One sweep over every active transaction past its TTL."""
    return manager.expire_stale(batch_size=batch_size)


def run_sweeper(
    manager: TransactionManager,
    *,
    interval: float,
    batch_size: int = DEFAULT_SWEEP_BATCH_SIZE,
    ctx: OperationContext | None = None,
    iterations: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Sweep every `interval` seconds until ctx is cancelled (or `iterations` runs).

    A failed sweep is logged and retried on the next tick.
    Returns the total number of transactions expired.
    """
    ctx = ctx or OperationContext()
    total = 0
    runs = 0
    while not ctx.cancelled:
        try:
            total += manager.expire_stale(batch_size=batch_size)
        except Exception:
            logger.exception("Transaction sweep failed")
        runs += 1
        if iterations is not None and runs >= iterations:
            break
        sleep(interval)
    return total


def cleanup_tokens() -> int:
    """Delete expired, recalled and used tokens past the retention window."""
    return session_service.cleanup_expired_tokens()
