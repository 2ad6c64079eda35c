from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .columns import new_public_id, live_only


# Points are stored in a 32-bit signed column on every supported engine
MAX_POINTS = 2_147_483_647


class VirtualCard(db.Model):
    """
    Per-user, per-business points ledger.

    INVARIANTS:
    - points >= 0 (CHECK constraint, verified by managers before flush)
    - one live card per (owner, business) (partial unique index)
    """
    __tablename__ = "virtual_cards"
    __table_args__ = (
        db.CheckConstraint("points >= 0", name="ck_virtual_cards_points_nonnegative"),
        db.Index("uq_virtual_cards_owner_business_live", "owner_id", "business_id", unique=True, **live_only()),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    public_id = db.Column(db.String(32), nullable=False, unique=True, default=new_public_id)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    points = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True)

    business = db.relationship("Business")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<VirtualCard id={self.id} owner_id={self.owner_id} business_id={self.business_id} points={self.points}>"

    def to_dict(self) -> dict:
        return {
            "public_id": self.public_id,
            "business": self.business.to_short_dict() if self.business else None,
            "points": self.points,
            "created_at": to_utc_z(self.created_at),
        }


class LocalCard(db.Model):
    """Third-party loyalty card stored for the user. No ledger semantics."""
    __tablename__ = "local_cards"
    __table_args__ = (
        db.Index("uq_local_cards_owner_type_code_live", "owner_id", "type", "code", unique=True, **live_only()),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    public_id = db.Column(db.String(32), nullable=False, unique=True, default=new_public_id)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    type = db.Column(db.String(64), nullable=False)
    code = db.Column(db.String(128), nullable=False)
    name = db.Column(db.String(255), nullable=False, default="")

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "public_id": self.public_id,
            "type": self.type,
            "code": self.code,
            "name": self.name,
        }
