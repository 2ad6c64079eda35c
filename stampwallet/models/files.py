from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .columns import new_public_id


class FileMetadata(db.Model):
    """
    Metadata of a user-owned blob (business banner/icon, item image, menu image).

    A row is created as a stub (uploaded_at NULL) and filled on upload.
    """
    __tablename__ = "file_metadata"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    public_id = db.Column(db.String(32), nullable=False, unique=True, default=new_public_id)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    content_type = db.Column(db.String(64), nullable=True)
    uploaded_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "public_id": self.public_id,
            "content_type": self.content_type,
            "uploaded_at": to_utc_z(self.uploaded_at),
        }
