# Overview: Service-layer operations for tokens; session and email-confirmation credentials.

"""
Token Management Service

Tokens replace user credentials where a temporary, disposable credential
is needed: the login session and the link in the confirmation email.

SECURITY FEATURES:
- Cryptographically secure random secrets (32 bytes)
- Secrets hashed with SHA-256 before storage (tokens are high-entropy)
- Clients hold "<token_id>:<secret>"; the token id is not secret
- SESSION tokens slide: every successful check moves expiry forward
- EMAIL tokens are single use
- Revocable (recalled) on logout
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta

from ..extensions import db
from ..models import Token
from ..models.auth import TOKEN_PURPOSE_EMAIL, TOKEN_PURPOSE_SESSION
from ..time_utils import utcnow


# Tokens that are expired or recalled are deleted after this grace period
TOKEN_RETENTION = timedelta(days=30)


def generate_secret() -> str:
    """64-character hex string (32 bytes of entropy). Never stored."""
    return secrets.token_hex(32)


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def format_credential(token: Token, secret: str) -> str:
    return f"{token.token_id}:{secret}"


def parse_credential(value: str) -> tuple[str, str] | None:
    """Split "<token_id>:<secret>". Returns None when malformed."""
    token_id, sep, secret = (value or "").partition(":")
    if not sep or not token_id or not secret:
        return None
    return token_id, secret


def create_token(user_id: int, purpose: str, ttl: timedelta, now: datetime | None = None) -> tuple[Token, str]:
    """
    Create a token. Returns (token_record, plaintext_secret).

    Joins the caller's transaction; the caller commits.
    """
    now = now or utcnow()
    secret = generate_secret()
    token = Token(
        owner_id=user_id,
        token_hash=hash_secret(secret),
        purpose=purpose,
        expires_at=now + ttl,
        used=False,
        recalled=False,
        created_at=now,
    )
    db.session.add(token)
    db.session.flush()
    return token, secret


def check_token(
    token_id: str,
    secret: str,
    purpose: str,
    session_ttl: timedelta | None = None,
    now: datetime | None = None,
) -> Token | None:
    """
    Validate a token and consume or refresh it according to its purpose.

    Returns None if the token is unknown, of another purpose, expired,
    recalled, already used (EMAIL) or the secret does not match.
    """
    now = now or utcnow()
    token = db.session.query(Token).filter_by(token_id=token_id, purpose=purpose, recalled=False).first()
    if token is None:
        return None
    if not hmac.compare_digest(token.token_hash, hash_secret(secret)):
        return None
    if not token.is_valid(now):
        return None

    if purpose == TOKEN_PURPOSE_EMAIL:
        token.used = True
    elif purpose == TOKEN_PURPOSE_SESSION and session_ttl is not None:
        token.expires_at = now + session_ttl
    token.last_used_at = now
    db.session.commit()
    return token


def recall_token(token: Token) -> Token:
    token.recalled = True
    db.session.commit()
    return token


def recall_user_tokens(user_id: int, purpose: str) -> int:
    """Recall every live token of a purpose. Returns count recalled."""
    count = (
        db.session.query(Token)
        .filter_by(owner_id=user_id, purpose=purpose, recalled=False)
        .update({"recalled": True}, synchronize_session=False)
    )
    db.session.commit()
    return count


def cleanup_expired_tokens(now: datetime | None = None) -> int:
    """
    Delete tokens that expired, were recalled or used more than TOKEN_RETENTION ago.

    Run this periodically (flask maintenance cleanup-tokens).
    """
    now = now or utcnow()
    cutoff = now - TOKEN_RETENTION
    deleted = db.session.query(Token).filter(
        db.or_(
            Token.expires_at < cutoff,
            db.and_(db.or_(Token.recalled.is_(True), Token.used.is_(True)), Token.created_at < cutoff),
        )
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
