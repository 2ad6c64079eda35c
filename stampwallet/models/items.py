from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .columns import new_public_id


# Owned item statuses. OWNED is the only non-terminal one.
ITEM_STATUS_OWNED = "OWNED"
ITEM_STATUS_USED = "USED"
ITEM_STATUS_RETURNED = "RETURNED"
ITEM_STATUS_WITHDRAWN = "WITHDRAWN"

ITEM_TERMINAL_STATUSES = {ITEM_STATUS_USED, ITEM_STATUS_RETURNED, ITEM_STATUS_WITHDRAWN}


class ItemDefinition(db.Model):
    """
    A business's catalogue entry that users buy with points.

    max_amount = 0 means no per-card cap. withdrawn is terminal.
    """
    __tablename__ = "item_definitions"
    __table_args__ = (
        db.CheckConstraint("price >= 0", name="ck_item_definitions_price_nonnegative"),
        db.CheckConstraint("max_amount >= 0", name="ck_item_definitions_max_amount_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    public_id = db.Column(db.String(32), nullable=False, unique=True, default=new_public_id)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    image_id = db.Column(db.String(32), nullable=True, unique=True)

    price = db.Column(db.Integer, nullable=False)
    start_date = db.Column(db.DateTime, nullable=True)
    end_date = db.Column(db.DateTime, nullable=True)
    max_amount = db.Column(db.Integer, nullable=False, default=0)

    available = db.Column(db.Boolean, nullable=False, default=True)
    withdrawn = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<ItemDefinition id={self.id} name={self.name!r} price={self.price}>"

    def to_dict(self) -> dict:
        return {
            "public_id": self.public_id,
            "name": self.name,
            "description": self.description,
            "image_id": self.image_id,
            "price": self.price,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "max_amount": self.max_amount,
            "available": self.available,
            "withdrawn": self.withdrawn,
        }


class OwnedItem(db.Model):
    """
    An item a user bought with a virtual card.

    Status is monotone: OWNED -> USED | RETURNED | WITHDRAWN, never back.
    used_at is set exactly when the item reaches a terminal status.
    """
    __tablename__ = "owned_items"
    __table_args__ = (
        db.Index("ix_owned_items_card_definition_status", "virtual_card_id", "definition_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    public_id = db.Column(db.String(32), nullable=False, unique=True, default=new_public_id)
    definition_id = db.Column(db.Integer, db.ForeignKey("item_definitions.id"), nullable=False, index=True)
    virtual_card_id = db.Column(db.Integer, db.ForeignKey("virtual_cards.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=ITEM_STATUS_OWNED)
    used_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True)

    definition = db.relationship("ItemDefinition")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_terminal(self) -> bool:
        return self.status in ITEM_TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<OwnedItem id={self.id} status={self.status} card_id={self.virtual_card_id}>"

    def to_dict(self) -> dict:
        return {
            "public_id": self.public_id,
            "definition_id": self.definition.public_id if self.definition else None,
            "status": self.status,
            "used_at": to_utc_z(self.used_at),
            "created_at": to_utc_z(self.created_at),
        }
