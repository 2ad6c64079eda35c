from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .columns import new_public_id, live_only


# Transaction states
TX_STATE_STARTED = "STARTED"
TX_STATE_PROCESSING = "PROCESSING"
TX_STATE_FINISHED = "FINISHED"
TX_STATE_EXPIRED = "EXPIRED"
TX_STATE_CANCELLED = "CANCELLED"

TX_ACTIVE_STATES = (TX_STATE_STARTED, TX_STATE_PROCESSING)
TX_TERMINAL_STATES = (TX_STATE_FINISHED, TX_STATE_EXPIRED, TX_STATE_CANCELLED)

# Detail actions
ACTION_NONE = "NONE"
ACTION_REDEEMED = "REDEEMED"
ACTION_RECALLED = "RECALLED"
ACTION_CANCELLED = "CANCELLED"

FINALIZE_ACTIONS = (ACTION_REDEEMED, ACTION_RECALLED, ACTION_CANCELLED)

_ACTIVE_PREDICATE = "state IN ('STARTED', 'PROCESSING')"


class Transaction(db.Model):
    """
    Point-of-sale handoff between a card holder and the card's business.

    INVARIANTS (partial unique indexes over live, active rows):
    - at most one STARTED/PROCESSING transaction per card
    - code unique among STARTED/PROCESSING transactions
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("uq_transactions_card_active", "virtual_card_id", unique=True, **live_only(_ACTIVE_PREDICATE)),
        db.Index("uq_transactions_code_active", "code", unique=True, **live_only(_ACTIVE_PREDICATE)),
        db.Index("ix_transactions_state_started", "state", "started_at"),
        db.Index("ix_transactions_code", "code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    public_id = db.Column(db.String(32), nullable=False, unique=True, default=new_public_id)
    virtual_card_id = db.Column(db.Integer, db.ForeignKey("virtual_cards.id"), nullable=False, index=True)

    code = db.Column(db.String(32), nullable=False)
    state = db.Column(db.String(16), nullable=False, default=TX_STATE_STARTED)
    added_points = db.Column(db.Integer, nullable=False, default=0)

    started_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    finished_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    deleted_at = db.Column(db.DateTime, nullable=True)

    virtual_card = db.relationship("VirtualCard")
    details = db.relationship("TransactionDetail", order_by="TransactionDetail.id")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.state in TX_ACTIVE_STATES

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} code={self.code!r} state={self.state}>"

    def to_dict(self) -> dict:
        return {
            "public_id": self.public_id,
            "code": self.code,
            "state": self.state,
            "added_points": self.added_points,
            "virtual_card_id": self.virtual_card.public_id if self.virtual_card else None,
            "started_at": to_utc_z(self.started_at),
            "finished_at": to_utc_z(self.finished_at),
            "items": [d.to_dict() for d in self.details],
        }


class TransactionDetail(db.Model):
    """
    One owned item staged in a transaction.

    action is what finalize applied; requested_action is what the business asked for
    (they differ when a redeemed item turned out to be withdrawn).
    """
    __tablename__ = "transaction_details"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "owned_item_id", name="uq_transaction_details_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    owned_item_id = db.Column(db.Integer, db.ForeignKey("owned_items.id"), nullable=False, index=True)

    action = db.Column(db.String(16), nullable=False, default=ACTION_NONE)
    requested_action = db.Column(db.String(16), nullable=True)

    deleted_at = db.Column(db.DateTime, nullable=True)

    owned_item = db.relationship("OwnedItem")

    def to_dict(self) -> dict:
        item = self.owned_item
        return {
            "item_id": item.public_id if item else None,
            "item_definition_id": item.definition.public_id if item and item.definition else None,
            "action": self.action,
            "requested_action": self.requested_action,
        }
