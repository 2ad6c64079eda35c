# Overview: Authorization accessors; resolve an entity only for the principal that owns it.

"""
Authorization Accessors

Rule of thumb: if a manager method takes an entity object, the caller
obtained it through one of these accessors, which checked ownership.
If a manager takes only a public id (e.g. buying an item by definition id),
the action is open to anyone holding the card.

CONTRACT (every accessor):
- NotFound: no live row matches the lookup descriptor.
- NoAccess: a row matches but its ownership field is not the principal's id.
- Otherwise the entity is returned. Accessors are pure reads.
"""

from __future__ import annotations

from sqlalchemy.orm import selectinload

from ..errors import NoAccess, NotFound
from ..models import (
    Business,
    FileMetadata,
    ItemDefinition,
    LocalCard,
    MenuImage,
    OwnedItem,
    Transaction,
    TransactionDetail,
    User,
    VirtualCard,
)
from ..extensions import db
from ..models.transactions import TX_ACTIVE_STATES
from .store import live


def _owned(entity, owner_id: int, principal_id: int, what: str):
    if entity is None:
        raise NotFound(f"{what} not found")
    if owner_id != principal_id:
        raise NoAccess(f"{what} belongs to another principal")
    return entity


# =============================================================================
# USER-OWNED ENTITIES
# =============================================================================

class UserAuthorizedAccessor:
    """Entities whose ownership field is a user id."""

    def get_virtual_card(
        self,
        user: User,
        public_id: str | None = None,
        business_public_id: str | None = None,
    ) -> VirtualCard:
        """
        Resolve a card by its own public id, or by the public id of its business.

        Looking up by business id only ever matches the caller's own card, so
        it reports NotFound rather than NoAccess for other users' cards.
        """
        if public_id is not None:
            card = live(VirtualCard).filter(VirtualCard.public_id == public_id).first()
            return _owned(card, card.owner_id if card else None, user.id, "Virtual card")

        if business_public_id is not None:
            business = live(Business).filter(Business.public_id == business_public_id).first()
            if business is None:
                raise NotFound("Business not found")
            card = live(VirtualCard).filter(
                VirtualCard.owner_id == user.id,
                VirtualCard.business_id == business.id,
            ).first()
            if card is None:
                raise NotFound("Virtual card not found")
            return card

        raise NotFound("Virtual card not found")

    def get_virtual_cards(self, user: User) -> list[VirtualCard]:
        return (
            live(VirtualCard)
            .options(selectinload(VirtualCard.business))
            .filter(VirtualCard.owner_id == user.id)
            .order_by(VirtualCard.id)
            .all()
        )

    def get_owned_item(self, user: User, public_id: str) -> OwnedItem:
        """Owned items are reached through their card: item -> card -> owner."""
        row = (
            db.session.query(OwnedItem, VirtualCard.owner_id)
            .join(VirtualCard, VirtualCard.id == OwnedItem.virtual_card_id)
            .filter(OwnedItem.public_id == public_id)
            .filter(OwnedItem.deleted_at.is_(None), VirtualCard.deleted_at.is_(None))
            .first()
        )
        if row is None:
            raise NotFound("Owned item not found")
        item, owner_id = row
        return _owned(item, owner_id, user.id, "Owned item")

    def get_local_card(self, user: User, public_id: str) -> LocalCard:
        card = live(LocalCard).filter(LocalCard.public_id == public_id).first()
        return _owned(card, card.owner_id if card else None, user.id, "Local card")

    def get_local_cards(self, user: User) -> list[LocalCard]:
        return live(LocalCard).filter(LocalCard.owner_id == user.id).order_by(LocalCard.id).all()

    def get_file(self, user: User, public_id: str) -> FileMetadata:
        meta = live(FileMetadata).filter(FileMetadata.public_id == public_id).first()
        return _owned(meta, meta.owner_id if meta else None, user.id, "File")

    def get_business(self, user: User) -> Business:
        """The business owned by user. Users own at most one, so this is NotFound or the business."""
        business = live(Business).filter(Business.owner_id == user.id).first()
        if business is None:
            raise NotFound("Business not found")
        return business


# =============================================================================
# BUSINESS-OWNED ENTITIES
# =============================================================================

class BusinessAuthorizedAccessor:
    """Entities whose ownership field is a business id."""

    def get_item_definition(self, business: Business, public_id: str) -> ItemDefinition:
        definition = live(ItemDefinition).filter(ItemDefinition.public_id == public_id).first()
        return _owned(
            definition, definition.business_id if definition else None, business.id, "Item definition"
        )

    def get_item_definitions(self, business: Business) -> list[ItemDefinition]:
        return (
            live(ItemDefinition)
            .filter(ItemDefinition.business_id == business.id)
            .order_by(ItemDefinition.id)
            .all()
        )

    def get_menu_image(self, business: Business, file_id: str) -> MenuImage:
        image = db.session.query(MenuImage).filter(MenuImage.file_id == file_id).first()
        return _owned(image, image.business_id if image else None, business.id, "Menu image")

    def get_menu_images(self, business: Business) -> list[MenuImage]:
        return (
            db.session.query(MenuImage)
            .filter(MenuImage.business_id == business.id)
            .order_by(MenuImage.id)
            .all()
        )


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionAccessor:
    """
    Resolve a transaction by its business-visible code for either principal.

    Codes are unique only among active transactions; terminal ones may share
    a code. Among matching rows the principal's own rows win (active first,
    then newest). NoAccess only when every matching row belongs to someone else.
    """

    def _candidates(self, code: str, owner_column):
        return (
            db.session.query(Transaction, owner_column)
            .join(VirtualCard, VirtualCard.id == Transaction.virtual_card_id)
            .options(
                selectinload(Transaction.details)
                .selectinload(TransactionDetail.owned_item)
                .selectinload(OwnedItem.definition),
                selectinload(Transaction.virtual_card),
            )
            .filter(Transaction.code == code)
            .filter(Transaction.deleted_at.is_(None), VirtualCard.deleted_at.is_(None))
            .all()
        )

    def _pick(self, rows, principal_id: int) -> Transaction:
        if not rows:
            raise NotFound("Transaction not found")
        own = [tx for tx, owner_id in rows if owner_id == principal_id]
        if not own:
            raise NoAccess("Transaction belongs to another principal")
        own.sort(key=lambda tx: (tx.state in TX_ACTIVE_STATES, tx.started_at, tx.id), reverse=True)
        return own[0]

    def get_for_business(self, business: Business, code: str) -> Transaction:
        """code -> Transaction -> VirtualCard -> Business"""
        return self._pick(self._candidates(code, VirtualCard.business_id), business.id)

    def get_for_user(self, user: User, code: str) -> Transaction:
        """code -> Transaction -> VirtualCard -> User"""
        return self._pick(self._candidates(code, VirtualCard.owner_id), user.id)
