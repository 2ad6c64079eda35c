# Overview: Service-layer operations for item definitions; catalogue entries, availability windows and withdrawal.

"""
Item Definition Manager

An item definition is a business's catalogue entry: a price in points, an
optional availability window, an optional per-card cap (max_amount, 0 means
unbounded) and an availability flag.

LIFECYCLE:
1. add_item: created available, not withdrawn, with an image file stub
2. change_item_details: partial update, full record re-validated
3. withdraw_item: terminal. Every OWNED item minted from the definition
   becomes WITHDRAWN and its card is refunded the price, in the same
   Store transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime

from ..errors import InvalidItemDetails, NotFound, Withdrawn
from ..models import Business, ItemDefinition, OwnedItem, VirtualCard
from ..models.items import ITEM_STATUS_OWNED, ITEM_STATUS_WITHDRAWN
from . import store
from .file_storage_service import FileStorage
from .ledger import LedgerServices, credit, ensure_points_invariant


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET = _Unset()

# Fields a partial update may set back to None
CLEARABLE_FIELDS = frozenset({"start_date", "end_date"})


@dataclass
class ItemDetails:
    """
    Requested item attributes. UNSET means "not provided"; None clears the
    window dates and is ignored elsewhere.
    """
    name: str | None | _Unset = UNSET
    description: str | None | _Unset = UNSET
    price: int | None | _Unset = UNSET
    start_date: datetime | None | _Unset = UNSET
    end_date: datetime | None | _Unset = UNSET
    max_amount: int | None | _Unset = UNSET
    available: bool | None | _Unset = UNSET

    def provided(self) -> dict:
        record = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is UNSET or (value is None and f.name not in CLEARABLE_FIELDS):
                continue
            record[f.name] = value
        return record


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_item_record(record: dict) -> None:
    """
    Validate a complete item record.

    Raises InvalidItemDetails naming the first offending field.
    """
    name = record.get("name")
    if not isinstance(name, str) or not name.strip():
        raise InvalidItemDetails("name is required", field="name")

    price = record.get("price")
    if not _is_int(price) or price < 0:
        raise InvalidItemDetails("price must be a non-negative integer", field="price")

    max_amount = record.get("max_amount", 0)
    if not _is_int(max_amount) or max_amount < 0:
        raise InvalidItemDetails("max_amount must be a non-negative integer", field="max_amount")

    start_date = record.get("start_date")
    end_date = record.get("end_date")
    if start_date is not None and end_date is not None and start_date > end_date:
        raise InvalidItemDetails("start_date is after end_date", field="start_date")

    available = record.get("available", True)
    if not isinstance(available, bool):
        raise InvalidItemDetails("available must be a boolean", field="available")


class ItemDefinitionManager:
    def __init__(self, services: LedgerServices, file_storage: FileStorage):
        self.services = services
        self.file_storage = file_storage
        self.logger = services.child_logger("item_definitions")

    def add_item(self, business: Business, details: ItemDetails, ctx=None) -> ItemDefinition:
        record = details.provided()
        record.setdefault("description", "")
        record.setdefault("max_amount", 0)
        record.setdefault("available", True)
        validate_item_record(record)

        def _op():
            with store.transaction(ctx) as session:
                owner = store.find_live(Business, id=business.id)
                if owner is None:
                    raise NotFound("Business not found")

                image = self.file_storage.create_stub(owner.owner_id)
                definition = ItemDefinition(
                    business_id=owner.id,
                    image_id=image.public_id,
                    withdrawn=False,
                    **record,
                )
                session.add(definition)
                session.flush()
                self.logger.info(
                    "Item definition %s added to business %s (price %d)",
                    definition.public_id, owner.public_id, definition.price,
                )
                return definition

        return store.run_with_retry(_op)

    def change_item_details(self, item: ItemDefinition, details: ItemDetails, ctx=None) -> ItemDefinition:
        """
        Apply the provided fields only.

        Raises:
            NotFound: definition gone
            Withdrawn: definition is withdrawn
            InvalidItemDetails: merged record is invalid
        """
        changes = details.provided()

        def _op():
            with store.transaction(ctx):
                definition = store.lock_live(ItemDefinition, item.id)
                if definition is None:
                    raise NotFound("Item definition not found")
                if definition.withdrawn:
                    raise Withdrawn(definition=definition.public_id)

                record = {
                    "name": definition.name,
                    "description": definition.description,
                    "price": definition.price,
                    "start_date": definition.start_date,
                    "end_date": definition.end_date,
                    "max_amount": definition.max_amount,
                    "available": definition.available,
                }
                record.update(changes)
                validate_item_record(record)

                for key, value in changes.items():
                    setattr(definition, key, value)
                self.logger.info(
                    "Item definition %s changed (%s)", definition.public_id, ", ".join(sorted(changes)) or "no fields"
                )
                return definition

        return store.run_with_retry(_op)

    def withdraw_item(self, item: ItemDefinition, ctx=None) -> ItemDefinition:
        """
        Withdraw a definition and refund every OWNED item minted from it.

        Raises:
            NotFound: definition gone
            Withdrawn: already withdrawn (no ledger effect)
        """
        def _op():
            with store.transaction(ctx) as session:
                definition = store.lock_live(ItemDefinition, item.id)
                if definition is None:
                    raise NotFound("Item definition not found")
                if definition.withdrawn:
                    raise Withdrawn(definition=definition.public_id)

                now = self.services.now()
                definition.withdrawn = True
                definition.available = False

                # Lock the cards, then re-read item status under those locks.
                card_ids = sorted(
                    card_id for (card_id,) in (
                        store.live(OwnedItem)
                        .with_entities(OwnedItem.virtual_card_id)
                        .filter(OwnedItem.definition_id == definition.id, OwnedItem.status == ITEM_STATUS_OWNED)
                        .distinct()
                        .all()
                    )
                )
                cards = {}
                for card_id in card_ids:
                    store.checkpoint(ctx)
                    card = store.lock_live(VirtualCard, card_id)
                    if card is not None:
                        cards[card_id] = card

                owned = []
                if cards:
                    owned = store.lock_for_update(
                        store.live(OwnedItem)
                        .filter(
                            OwnedItem.definition_id == definition.id,
                            OwnedItem.virtual_card_id.in_(list(cards)),
                            OwnedItem.status == ITEM_STATUS_OWNED,
                        )
                        .order_by(OwnedItem.virtual_card_id, OwnedItem.id)
                    ).all()

                refunded = 0
                for owned_item in owned:
                    card = cards[owned_item.virtual_card_id]
                    owned_item.status = ITEM_STATUS_WITHDRAWN
                    owned_item.used_at = now
                    credit(card, definition.price)
                    refunded += 1

                for card in cards.values():
                    ensure_points_invariant(card, self.logger)

                session.flush()
                self.logger.info(
                    "Item definition %s withdrawn; %d owned items refunded across %d cards",
                    definition.public_id, refunded, len(cards),
                )
                return definition

        return store.run_with_retry(_op)

    def get_for_business(self, business: Business) -> list[ItemDefinition]:
        """All live definitions of the business, withdrawn ones included."""
        return (
            store.live(ItemDefinition)
            .filter(ItemDefinition.business_id == business.id)
            .order_by(ItemDefinition.id)
            .all()
        )
