from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .columns import new_public_id, live_only


class Business(db.Model):
    """
    A participating business. At most one live business per user.

    Owns item definitions and menu images; virtual cards point at it.
    """
    __tablename__ = "businesses"
    __table_args__ = (
        db.Index("uq_businesses_owner_live", "owner_id", unique=True, **live_only()),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    public_id = db.Column(db.String(32), nullable=False, unique=True, default=new_public_id)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False, default="")
    address = db.Column(db.String(255), nullable=False)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)

    # Regulatory identifiers
    nip = db.Column(db.String(16), nullable=False, unique=True)
    krs = db.Column(db.String(16), nullable=False, unique=True)
    regon = db.Column(db.String(16), nullable=False, unique=True)
    owner_name = db.Column(db.String(255), nullable=False)

    banner_image_id = db.Column(db.String(32), nullable=False, unique=True)
    icon_image_id = db.Column(db.String(32), nullable=False, unique=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Business id={self.id} name={self.name!r} owner_id={self.owner_id}>"

    def gps_coordinates(self) -> str | None:
        if self.latitude is None or self.longitude is None:
            return None
        return f"{self.latitude:.6f},{self.longitude:.6f}"

    def to_short_dict(self) -> dict:
        return {
            "public_id": self.public_id,
            "name": self.name,
            "description": self.description,
            "gps_coordinates": self.gps_coordinates(),
            "banner_image_id": self.banner_image_id,
            "icon_image_id": self.icon_image_id,
        }

    def to_dict(self) -> dict:
        data = self.to_short_dict()
        data.update({
            "address": self.address,
            "nip": self.nip,
            "krs": self.krs,
            "regon": self.regon,
            "owner_name": self.owner_name,
            "created_at": to_utc_z(self.created_at),
        })
        return data


class MenuImage(db.Model):
    __tablename__ = "menu_images"
    __table_args__ = (
        db.UniqueConstraint("business_id", "file_id", name="uq_menu_images_business_file"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    file_id = db.Column(db.String(32), nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
