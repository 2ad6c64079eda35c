# Overview: Services bundle handed explicitly to every ledger manager.

"""
LedgerServices: configuration, clock and loggers for the ledger core.

Managers receive this bundle in their constructor instead of reading
Flask config or module globals; tests inject a controllable clock and
different TTLs through it.

Also home of the point-movement primitives shared by every manager that
touches a card balance, and of lazy transaction expiry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from ..errors import InvalidPoints, InvariantViolation, NotEnoughPoints
from ..extensions import db
from ..models import Transaction, VirtualCard
from ..models.cards import MAX_POINTS
from ..models.transactions import TX_ACTIVE_STATES, TX_STATE_EXPIRED
from ..time_utils import utcnow
from . import store


# Config minimums
MIN_TRANSACTION_TTL_SECONDS = 60
MIN_TRANSACTION_CODE_SPACE = 10 ** 6


@dataclass
class LedgerServices:
    transaction_ttl: timedelta = timedelta(minutes=15)
    transaction_code_length: int = 10
    transaction_code_alphabet: str = "0123456789"
    max_menu_images_per_business: int = 10
    clock: Callable[[], datetime] = utcnow
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("stampwallet"))

    def __post_init__(self):
        if self.transaction_ttl.total_seconds() < MIN_TRANSACTION_TTL_SECONDS:
            raise ValueError(
                f"transaction TTL must be at least {MIN_TRANSACTION_TTL_SECONDS} seconds"
            )
        if len(set(self.transaction_code_alphabet)) != len(self.transaction_code_alphabet):
            raise ValueError("transaction code alphabet contains duplicate characters")
        if self.transaction_code_length < 1 or not self.transaction_code_alphabet:
            raise ValueError("transaction code length and alphabet must be non-empty")
        code_space = len(self.transaction_code_alphabet) ** self.transaction_code_length
        if code_space < MIN_TRANSACTION_CODE_SPACE:
            raise ValueError(
                f"transaction code space {code_space} is below {MIN_TRANSACTION_CODE_SPACE}"
            )
        if self.max_menu_images_per_business < 0:
            raise ValueError("max menu images per business must be >= 0")

    @classmethod
    def from_config(cls, config, **overrides) -> "LedgerServices":
        values = dict(
            transaction_ttl=timedelta(seconds=int(config["TRANSACTION_TTL_SECONDS"])),
            transaction_code_length=int(config["TRANSACTION_CODE_LENGTH"]),
            transaction_code_alphabet=config["TRANSACTION_CODE_ALPHABET"],
            max_menu_images_per_business=int(config["MAX_MENU_IMAGES_PER_BUSINESS"]),
        )
        values.update(overrides)
        return cls(**values)

    def now(self) -> datetime:
        return self.clock()

    def child_logger(self, name: str) -> logging.Logger:
        return self.logger.getChild(name)


# =============================================================================
# POINT MOVEMENT
# =============================================================================

def credit(card: VirtualCard, amount: int) -> None:
    """Add points to a locked card. The balance never leaves [0, MAX_POINTS]."""
    balance = card.points + amount
    if balance > MAX_POINTS:
        raise InvalidPoints("Card balance would exceed the maximum", card=card.public_id)
    card.points = balance


def debit(card: VirtualCard, amount: int) -> None:
    if card.points < amount:
        raise NotEnoughPoints(card=card.public_id, balance=card.points, price=amount)
    card.points -= amount


def ensure_points_invariant(card: VirtualCard, logger: logging.Logger) -> None:
    # Reading an expired card must not flush the bad balance into the CHECK
    with db.session.no_autoflush:
        if 0 <= card.points <= MAX_POINTS:
            return
        public_id = card.public_id
    logger.error(
        "Card balance out of range",
        extra={"card": public_id, "points": card.points},
    )
    raise InvariantViolation("Card balance out of range", card=public_id)


# =============================================================================
# LAZY EXPIRATION
# =============================================================================

def is_overdue(tx: Transaction, now: datetime, ttl: timedelta) -> bool:
    return tx.state in TX_ACTIVE_STATES and now - tx.started_at > ttl


def expire_overdue(
    services: LedgerServices,
    ctx=None,
    *,
    transaction_id: int | None = None,
    card_id: int | None = None,
) -> int:
    """
    Expire the addressed transaction (or the card's active one) if it outlived the TTL.

    Runs in its own Store transaction so the expiry sticks even when the
    operation that touched the transaction is then rejected.
    """
    def _op():
        with store.transaction(ctx) as session:
            query = session.query(Transaction).filter(
                Transaction.deleted_at.is_(None),
                Transaction.state.in_(TX_ACTIVE_STATES),
            )
            if transaction_id is not None:
                query = query.filter(Transaction.id == transaction_id)
            if card_id is not None:
                query = query.filter(Transaction.virtual_card_id == card_id)

            now = services.now()
            expired = 0
            for tx in store.lock_for_update(query).all():
                if is_overdue(tx, now, services.transaction_ttl):
                    tx.state = TX_STATE_EXPIRED
                    tx.finished_at = now
                    expired += 1
                    services.logger.info("Transaction %s expired on touch", tx.public_id)
            return expired

    return store.run_with_retry(_op)
