# Overview: Service-layer operations for transactions; the point-award and redemption state machine.

"""
Transaction Manager

A transaction is the handoff between a card holder and the business: the
user stages owned items and shows the business a short code; the business
looks the code up, decides what happens to each item, optionally awards
points, and finalizes.

LIFECYCLE:
    (none) --start--> STARTED --business fetch--> PROCESSING
    STARTED|PROCESSING --finalize--> FINISHED
    STARTED|PROCESSING --cancel-->   CANCELLED
    STARTED|PROCESSING --timeout-->  EXPIRED

FINISHED, CANCELLED and EXPIRED are absorbing. At most one STARTED or
PROCESSING transaction exists per card, and its code is unique among
active transactions (both enforced by partial unique indexes).

FINALIZE ACTIONS (per staged item):
- REDEEMED:  item -> USED
- RECALLED:  item -> USED, card credited the definition's price
- CANCELLED: item unchanged (also applied to items the business left out)
An item withdrawn while staged has already been refunded and moved to
WITHDRAWN; it is recorded as RECALLED with no second credit.

EXPIRATION:
Transactions active for longer than the TTL (measured from started_at) are
moved to EXPIRED by expire_stale, or lazily by whichever operation touches
them first. Items stay OWNED and no points move.
"""

from __future__ import annotations

import secrets

from ..errors import (
    AlreadyActive,
    Conflict,
    InvalidItem,
    InvalidPoints,
    InvariantViolation,
    NotFinalizable,
    NotFound,
    UnknownItem,
)
from ..models import Business, OwnedItem, Transaction, TransactionDetail, User, VirtualCard
from ..models.items import ITEM_STATUS_OWNED, ITEM_STATUS_USED, ITEM_STATUS_WITHDRAWN
from ..models.transactions import (
    ACTION_CANCELLED,
    ACTION_NONE,
    ACTION_RECALLED,
    FINALIZE_ACTIONS,
    TX_ACTIVE_STATES,
    TX_STATE_CANCELLED,
    TX_STATE_EXPIRED,
    TX_STATE_FINISHED,
    TX_STATE_PROCESSING,
    TX_STATE_STARTED,
)
from . import store
from .accessors import TransactionAccessor
from .ledger import LedgerServices, credit, ensure_points_invariant, expire_overdue


# Fresh codes tried per start before giving up with a retryable Conflict
CODE_GENERATION_ATTEMPTS = 10

DEFAULT_SWEEP_BATCH_SIZE = 100


class TransactionManager:
    def __init__(self, services: LedgerServices, accessor: TransactionAccessor | None = None):
        self.services = services
        self.accessor = accessor or TransactionAccessor()
        self.logger = services.child_logger("transactions")

    # =========================================================================
    # CODES
    # =========================================================================

    def _new_code(self) -> str:
        alphabet = self.services.transaction_code_alphabet
        return "".join(secrets.choice(alphabet) for _ in range(self.services.transaction_code_length))

    def _generate_unique_code(self, session) -> str:
        for _ in range(CODE_GENERATION_ATTEMPTS):
            code = self._new_code()
            taken = session.query(Transaction.id).filter(
                Transaction.code == code,
                Transaction.deleted_at.is_(None),
                Transaction.state.in_(TX_ACTIVE_STATES),
            ).first()
            if taken is None:
                return code
        # Unique index still guards the insert; the retry loop picks new codes
        raise Conflict("Could not generate a free transaction code")

    # =========================================================================
    # START
    # =========================================================================

    def start(self, card: VirtualCard, item_public_ids, ctx=None) -> Transaction:
        """
        Stage owned items in a new STARTED transaction.

        Raises:
            NotFound: card gone
            AlreadyActive: card already has a STARTED or PROCESSING transaction
            InvalidItem: an id is duplicated, unknown on this card, or not OWNED
        """
        item_public_ids = list(item_public_ids or [])
        if len(set(item_public_ids)) != len(item_public_ids):
            raise InvalidItem("Duplicate item id")

        expire_overdue(self.services, ctx, card_id=card.id)

        def _op():
            with store.transaction(ctx) as session:
                locked = store.lock_live(VirtualCard, card.id)
                if locked is None:
                    raise NotFound("Virtual card not found")

                active = store.live(Transaction).filter(
                    Transaction.virtual_card_id == locked.id,
                    Transaction.state.in_(TX_ACTIVE_STATES),
                ).first()
                if active is not None:
                    raise AlreadyActive(transaction=active.public_id)

                items = []
                if item_public_ids:
                    items = store.live(OwnedItem).filter(
                        OwnedItem.virtual_card_id == locked.id,
                        OwnedItem.public_id.in_(item_public_ids),
                    ).all()
                if len(items) != len(item_public_ids):
                    raise InvalidItem("Unknown item id")
                for item in items:
                    if item.status != ITEM_STATUS_OWNED:
                        raise InvalidItem("Item is not owned", item=item.public_id, status=item.status)

                now = self.services.now()
                tx = Transaction(
                    virtual_card_id=locked.id,
                    code=self._generate_unique_code(session),
                    state=TX_STATE_STARTED,
                    added_points=0,
                    started_at=now,
                )
                session.add(tx)
                session.flush()

                by_public_id = {item.public_id: item for item in items}
                for public_id in item_public_ids:
                    session.add(TransactionDetail(
                        transaction_id=tx.id,
                        owned_item_id=by_public_id[public_id].id,
                        action=ACTION_NONE,
                    ))
                session.flush()
                self.logger.info(
                    "Transaction %s started on card %s with %d items",
                    tx.public_id, locked.public_id, len(items),
                )
                return tx

        return store.run_with_retry(_op)

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def get_active(self, card: VirtualCard, ctx=None) -> Transaction | None:
        expire_overdue(self.services, ctx, card_id=card.id)
        return store.live(Transaction).filter(
            Transaction.virtual_card_id == card.id,
            Transaction.state.in_(TX_ACTIVE_STATES),
        ).first()

    def get_for_user(self, user: User, code: str, ctx=None) -> Transaction:
        tx = self.accessor.get_for_user(user, code)
        if expire_overdue(self.services, ctx, transaction_id=tx.id):
            return self.accessor.get_for_user(user, code)
        return tx

    def fetch_for_business(self, business: Business, code: str, ctx=None) -> Transaction:
        """
        Business-side lookup by code.

        The first fetch moves STARTED to PROCESSING; PROCESSING is left as is
        and terminal transactions are returned unchanged for display.
        """
        tx = self.accessor.get_for_business(business, code)
        expire_overdue(self.services, ctx, transaction_id=tx.id)

        def _op():
            with store.transaction(ctx):
                locked = store.lock_live(Transaction, tx.id)
                if locked is None:
                    raise NotFound("Transaction not found")
                if locked.state == TX_STATE_STARTED:
                    locked.state = TX_STATE_PROCESSING
                    self.logger.info("Transaction %s is processing", locked.public_id)

        store.run_with_retry(_op)
        return self.accessor.get_for_business(business, code)

    # =========================================================================
    # FINALIZE / CANCEL
    # =========================================================================

    def finalize(self, transaction: Transaction, item_actions: dict | None, added_points, ctx=None) -> Transaction:
        """
        Apply the business's decision to an active transaction.

        Args:
            transaction: resolved through TransactionAccessor.get_for_business
            item_actions: owned-item public id -> REDEEMED | RECALLED | CANCELLED
            added_points: non-negative integer awarded to the card

        Raises:
            InvalidPoints: added_points negative, not an integer, or the
                resulting balance would exceed the maximum
            InvalidItem: unknown action name
            UnknownItem: an item id that is not staged in this transaction
            NotFinalizable: transaction already terminal (or just expired)
        """
        item_actions = dict(item_actions or {})
        if not isinstance(added_points, int) or isinstance(added_points, bool) or added_points < 0:
            raise InvalidPoints("added_points must be a non-negative integer")
        for action in item_actions.values():
            if action not in FINALIZE_ACTIONS:
                raise InvalidItem("Unknown item action", action=action)

        expire_overdue(self.services, ctx, transaction_id=transaction.id)

        def _op():
            with store.transaction(ctx) as session:
                tx = store.lock_live(Transaction, transaction.id)
                if tx is None:
                    raise NotFound("Transaction not found")
                if tx.state not in TX_ACTIVE_STATES:
                    raise NotFinalizable(transaction=tx.public_id, state=tx.state)

                card = store.lock_live(VirtualCard, tx.virtual_card_id)
                if card is None:
                    raise NotFound("Virtual card not found")

                details = store.live(TransactionDetail).filter(
                    TransactionDetail.transaction_id == tx.id
                ).order_by(TransactionDetail.id).all()
                staged = {detail.owned_item.public_id: detail for detail in details}

                unknown = set(item_actions) - set(staged)
                if unknown:
                    raise UnknownItem(items=sorted(unknown))

                now = self.services.now()
                refund = 0
                for public_id, detail in staged.items():
                    store.checkpoint(ctx)
                    item = detail.owned_item
                    if item.virtual_card_id != card.id:
                        self.logger.error(
                            "Transaction detail points at another card's item",
                            extra={"transaction": tx.public_id, "item": public_id, "card": card.public_id},
                        )
                        raise InvariantViolation("Staged item belongs to another card", item=public_id)

                    requested = item_actions.get(public_id, ACTION_CANCELLED)
                    detail.requested_action = requested

                    if requested == ACTION_CANCELLED:
                        detail.action = ACTION_CANCELLED
                        continue

                    if item.status == ITEM_STATUS_WITHDRAWN:
                        detail.action = ACTION_RECALLED
                        continue

                    if item.status != ITEM_STATUS_OWNED:
                        self.logger.error(
                            "Staged item left OWNED while its transaction was active",
                            extra={"transaction": tx.public_id, "item": public_id, "status": item.status},
                        )
                        raise InvariantViolation("Staged item is terminal", item=public_id)

                    item.status = ITEM_STATUS_USED
                    item.used_at = now
                    detail.action = requested
                    if requested == ACTION_RECALLED:
                        refund += item.definition.price

                credit(card, refund + added_points)
                ensure_points_invariant(card, self.logger)

                tx.state = TX_STATE_FINISHED
                tx.added_points = added_points
                tx.finished_at = now
                session.flush()
                self.logger.info(
                    "Transaction %s finished on card %s: +%d points, %d refunded",
                    tx.public_id, card.public_id, added_points, refund,
                )
                return tx

        return store.run_with_retry(_op)

    def cancel(self, transaction: Transaction, ctx=None) -> Transaction:
        """
        Cancel an active transaction. Items stay OWNED, no points move.

        Raises:
            NotFinalizable: transaction already terminal (or just expired)
        """
        expire_overdue(self.services, ctx, transaction_id=transaction.id)

        def _op():
            with store.transaction(ctx):
                tx = store.lock_live(Transaction, transaction.id)
                if tx is None:
                    raise NotFound("Transaction not found")
                if tx.state not in TX_ACTIVE_STATES:
                    raise NotFinalizable(transaction=tx.public_id, state=tx.state)

                for detail in store.live(TransactionDetail).filter(TransactionDetail.transaction_id == tx.id):
                    detail.action = ACTION_CANCELLED
                tx.state = TX_STATE_CANCELLED
                tx.finished_at = self.services.now()
                self.logger.info("Transaction %s cancelled", tx.public_id)
                return tx

        return store.run_with_retry(_op)

    # =========================================================================
    # EXPIRATION SWEEP
    # =========================================================================

    def expire_stale(self, batch_size: int = DEFAULT_SWEEP_BATCH_SIZE, ctx=None) -> int:
        """
        Move every active transaction older than the TTL to EXPIRED.

        Works in batches; each batch is a compare-and-set on the active
        states, so concurrent sweepers (or a racing finalize) never
        double-expire. Returns the number of transactions this call expired.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        def _batch():
            with store.transaction(ctx) as session:
                now = self.services.now()
                cutoff = now - self.services.transaction_ttl
                ids = [
                    row.id
                    for row in session.query(Transaction.id)
                    .filter(
                        Transaction.deleted_at.is_(None),
                        Transaction.state.in_(TX_ACTIVE_STATES),
                        Transaction.started_at < cutoff,
                    )
                    .order_by(Transaction.id)
                    .limit(batch_size)
                ]
                won = store.compare_and_set(
                    Transaction,
                    ids,
                    Transaction.state,
                    TX_ACTIVE_STATES,
                    {
                        Transaction.state: TX_STATE_EXPIRED,
                        Transaction.finished_at: now,
                        Transaction.version_id: Transaction.version_id + 1,
                    },
                )
                return len(ids), won

        total = 0
        while True:
            selected, won = store.run_with_retry(_batch)
            total += won
            if selected < batch_size:
                break
        if total:
            self.logger.info("Expired %d stale transactions", total)
        return total
