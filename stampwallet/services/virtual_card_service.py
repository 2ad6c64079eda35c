# Overview: Service-layer operations for virtual cards; points ledger and owned-item inventory.

"""
Virtual Card Manager

A virtual card is a user's points balance at one business plus the items
bought with those points.

DESIGN PRINCIPLES:
- Every operation runs in one Store transaction.
- The card row is locked before any balance or inventory change; the card
  passed in by the caller is only used for its id.
- Points move only through ledger.credit / ledger.debit.
- Item status is monotone: OWNED -> USED | RETURNED | WITHDRAWN.

PURCHASE CHECK ORDER (first failure wins):
Withdrawn, Unavailable, BeforeStartDate / AfterEndDate, NotEnoughPoints,
AboveMaxAmount.
"""

from __future__ import annotations

from ..errors import (
    AboveMaxAmount,
    AfterEndDate,
    AlreadyExists,
    BeforeStartDate,
    InUse,
    ItemAlreadyTerminal,
    NotEnoughPoints,
    NotFound,
    Unavailable,
    Withdrawn,
)
from ..models import Business, ItemDefinition, OwnedItem, Transaction, TransactionDetail, User, VirtualCard
from ..models.items import ITEM_STATUS_OWNED, ITEM_STATUS_RETURNED
from ..models.transactions import TX_ACTIVE_STATES
from . import store
from .ledger import LedgerServices, credit, debit, ensure_points_invariant, expire_overdue


class VirtualCardManager:
    def __init__(self, services: LedgerServices):
        self.services = services
        self.logger = services.child_logger("virtual_cards")

    # =========================================================================
    # CARD LIFECYCLE
    # =========================================================================

    def create(self, user: User, business_public_id: str, ctx=None) -> VirtualCard:
        """
        Create the user's card at a business with a zero balance.

        Raises:
            NotFound: no live business with that public id
            AlreadyExists: the user already holds a live card there
        """
        def _op():
            with store.transaction(ctx) as session:
                business = store.find_live(Business, public_id=business_public_id)
                if business is None:
                    raise NotFound("Business not found")

                existing = store.find_live(VirtualCard, owner_id=user.id, business_id=business.id)
                if existing is not None:
                    raise AlreadyExists("Virtual card already exists")

                card = VirtualCard(owner_id=user.id, business_id=business.id, points=0)
                session.add(card)
                session.flush()
                self.logger.info("Virtual card %s created for business %s", card.public_id, business.public_id)
                return card

        return store.run_with_retry(_op)

    def remove(self, card: VirtualCard, ctx=None) -> None:
        """
        Soft-delete the card with its owned items, transactions and transaction details.

        Raises:
            NotFound: the card no longer exists
            InUse: the card has a STARTED or PROCESSING transaction
        """
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
                    raise InUse("Virtual card has an active transaction", transaction=active.public_id)

                now = self.services.now()
                tx_ids = [
                    row.id
                    for row in session.query(Transaction.id).filter(Transaction.virtual_card_id == locked.id)
                ]
                if tx_ids:
                    store.soft_delete(
                        store.live(TransactionDetail).filter(TransactionDetail.transaction_id.in_(tx_ids)), now
                    )
                    store.soft_delete(store.live(Transaction).filter(Transaction.id.in_(tx_ids)), now)
                store.soft_delete(store.live(OwnedItem).filter(OwnedItem.virtual_card_id == locked.id), now)
                locked.deleted_at = now
                self.logger.info("Virtual card %s removed", locked.public_id)

        store.run_with_retry(_op)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_for_user(self, user: User) -> list[VirtualCard]:
        return store.live(VirtualCard).filter(VirtualCard.owner_id == user.id).order_by(VirtualCard.id).all()

    def get_owned_items(self, card: VirtualCard) -> list[OwnedItem]:
        return (
            store.live(OwnedItem)
            .filter(OwnedItem.virtual_card_id == card.id)
            .order_by(OwnedItem.id)
            .all()
        )

    def filter_owned_items(self, card: VirtualCard, public_ids) -> list[OwnedItem]:
        """Items of this card among public_ids. Unknown ids are dropped silently."""
        public_ids = list(public_ids)
        if not public_ids:
            return []
        return (
            store.live(OwnedItem)
            .filter(OwnedItem.virtual_card_id == card.id, OwnedItem.public_id.in_(public_ids))
            .order_by(OwnedItem.id)
            .all()
        )

    # =========================================================================
    # PURCHASE / RETURN
    # =========================================================================

    def buy_item(self, card: VirtualCard, definition_public_id: str, ctx=None) -> OwnedItem:
        """
        Buy one item for points.

        The definition row is locked before the card, the same order
        withdraw_item uses.

        Raises:
            NotFound: card gone, or no such definition at the card's business
            Withdrawn, Unavailable, BeforeStartDate, AfterEndDate,
            NotEnoughPoints, AboveMaxAmount
        """
        def _op():
            with store.transaction(ctx) as session:
                definition = store.lock_for_update(
                    store.live(ItemDefinition).filter(ItemDefinition.public_id == definition_public_id)
                ).first()
                locked = store.lock_live(VirtualCard, card.id)
                if locked is None:
                    raise NotFound("Virtual card not found")
                if definition is None or definition.business_id != locked.business_id:
                    raise NotFound("Item definition not found")

                now = self.services.now()
                if definition.withdrawn:
                    raise Withdrawn(definition=definition.public_id)
                if not definition.available:
                    raise Unavailable(definition=definition.public_id)
                if definition.start_date is not None and now < definition.start_date:
                    raise BeforeStartDate(definition=definition.public_id)
                if definition.end_date is not None and now > definition.end_date:
                    raise AfterEndDate(definition=definition.public_id)
                if locked.points < definition.price:
                    raise NotEnoughPoints(card=locked.public_id, balance=locked.points, price=definition.price)

                if definition.max_amount > 0:
                    held = store.live(OwnedItem).filter(
                        OwnedItem.virtual_card_id == locked.id,
                        OwnedItem.definition_id == definition.id,
                        OwnedItem.status == ITEM_STATUS_OWNED,
                    ).count()
                    if held >= definition.max_amount:
                        raise AboveMaxAmount(definition=definition.public_id, held=held)

                debit(locked, definition.price)
                ensure_points_invariant(locked, self.logger)

                item = OwnedItem(
                    definition_id=definition.id,
                    virtual_card_id=locked.id,
                    status=ITEM_STATUS_OWNED,
                    created_at=now,
                )
                session.add(item)
                session.flush()
                self.logger.info(
                    "Card %s bought item %s (%s) for %d points",
                    locked.public_id, item.public_id, definition.public_id, definition.price,
                )
                return item

        return store.run_with_retry(_op)

    def return_item(self, owned_item: OwnedItem, ctx=None) -> OwnedItem:
        """
        Return an OWNED item for a refund of its definition's price.

        Raises:
            NotFound: item or card gone
            ItemAlreadyTerminal: item is USED, RETURNED or WITHDRAWN
            InUse: item is staged in a STARTED or PROCESSING transaction
        """
        expire_overdue(self.services, ctx, card_id=owned_item.virtual_card_id)

        def _op():
            with store.transaction(ctx):
                card = store.lock_live(VirtualCard, owned_item.virtual_card_id)
                item = store.lock_live(OwnedItem, owned_item.id)
                if card is None or item is None:
                    raise NotFound("Owned item not found")
                if item.is_terminal:
                    raise ItemAlreadyTerminal(item=item.public_id, status=item.status)

                staged = (
                    store.live(TransactionDetail)
                    .join(Transaction, Transaction.id == TransactionDetail.transaction_id)
                    .filter(
                        TransactionDetail.owned_item_id == item.id,
                        Transaction.deleted_at.is_(None),
                        Transaction.state.in_(TX_ACTIVE_STATES),
                    )
                    .first()
                )
                if staged is not None:
                    raise InUse("Item is staged in an active transaction", item=item.public_id)

                item.status = ITEM_STATUS_RETURNED
                item.used_at = self.services.now()
                credit(card, item.definition.price)
                ensure_points_invariant(card, self.logger)
                self.logger.info(
                    "Card %s returned item %s for %d points",
                    card.public_id, item.public_id, item.definition.price,
                )
                return item

        return store.run_with_retry(_op)
