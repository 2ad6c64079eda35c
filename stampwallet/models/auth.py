from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .columns import new_public_id


# Token purposes
TOKEN_PURPOSE_SESSION = "SESSION"
TOKEN_PURPOSE_EMAIL = "EMAIL"


class User(db.Model):
    """
    Wallet account. Owns virtual cards, local cards, files and at most one business.

    The auth subsystem creates users; the ledger core only reads them as principals.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    public_id = db.Column(db.String(32), nullable=False, unique=True, default=new_public_id)

    email = db.Column(db.String(255), nullable=False, unique=True, index=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)
    email_verified = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r}>"

    def to_dict(self) -> dict:
        return {
            "public_id": self.public_id,
            "email": self.email,
            "email_verified": self.email_verified,
            "created_at": to_utc_z(self.created_at),
        }


class Token(db.Model):
    """
    Session and email-confirmation tokens.

    Only the SHA-256 hash of the secret is stored. The client holds
    "<token_id>:<secret>".
    """
    __tablename__ = "tokens"
    __table_args__ = (
        db.Index("ix_tokens_owner_purpose", "owner_id", "purpose"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    token_id = db.Column(db.String(32), nullable=False, unique=True, default=new_public_id)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    token_hash = db.Column(db.String(64), nullable=False)
    purpose = db.Column(db.String(16), nullable=False)  # SESSION, EMAIL
    expires_at = db.Column(db.DateTime, nullable=False)
    used = db.Column(db.Boolean, nullable=False, default=False)
    recalled = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime, nullable=True)

    user = db.relationship("User")

    def is_valid(self, now) -> bool:
        return not self.recalled and not self.used and self.expires_at > now

    def __repr__(self) -> str:
        return f"<Token id={self.id} purpose={self.purpose} owner_id={self.owner_id}>"
