# Overview: Service-layer operations for accounts; registration, login, email confirmation and credential changes.

"""
Authentication Service

Accounts are identified by email. New accounts start unverified; a
single-use EMAIL token is mailed to the user, and confirming it sets
email_verified. Most wallet routes require a verified email.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters required
- Login and session checks report one generic failure (Unauthorized)
- Changing the email resets verification and mails a new token
"""

from __future__ import annotations

import logging
import re
from datetime import timedelta

import bcrypt

from ..errors import AlreadyExists, InvalidRequest, Unauthorized
from ..extensions import db
from ..models import Token, User
from ..models.auth import TOKEN_PURPOSE_EMAIL, TOKEN_PURPOSE_SESSION
from . import session_service


logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_email(email) -> str:
    if not isinstance(email, str) or not _EMAIL_RE.match(email.strip()):
        raise InvalidRequest("email is invalid")
    return email.strip().lower()


def validate_password(password) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidRequest(f"password must be at least {MIN_PASSWORD_LENGTH} characters long")


def hash_password(password: str) -> str:
    """Hash password using bcrypt with cost factor 12. Validated first."""
    validate_password(password)
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def _send_confirmation(user: User, email_service, email_token_ttl: timedelta, backend_url: str, subject: str):
    token, secret = session_service.create_token(user.id, TOKEN_PURPOSE_EMAIL, email_token_ttl)
    db.session.commit()
    credential = session_service.format_credential(token, secret)
    link = f"{backend_url.rstrip('/')}/auth/account/emailConfirmation?token={credential}"
    email_service.send(
        user.email,
        subject,
        f"<p>Confirm your StampWallet account: <a href=\"{link}\">{link}</a></p>"
        f"<p>Confirmation token: {credential}</p>",
    )
    return token, secret


def create_user(email: str, password: str, *, email_service, email_token_ttl: timedelta,
                backend_url: str, subject: str) -> User:
    """
    Create an unverified account and mail its confirmation token.

    Raises:
        InvalidRequest: malformed email or weak password
        AlreadyExists: email already registered
    """
    email = validate_email(email)
    password_hash = hash_password(password)

    if db.session.query(User).filter_by(email=email).first() is not None:
        raise AlreadyExists("Email already registered")

    user = User(email=email, password_hash=password_hash, email_verified=False)
    db.session.add(user)
    db.session.commit()
    logger.info("User %s created", user.public_id)

    _send_confirmation(user, email_service, email_token_ttl, backend_url, subject)
    return user


def confirm_email(token_id: str, secret: str) -> User:
    token = session_service.check_token(token_id, secret, TOKEN_PURPOSE_EMAIL)
    if token is None:
        raise Unauthorized("Invalid or expired confirmation token")
    user = token.user
    user.email_verified = True
    db.session.commit()
    logger.info("User %s confirmed email", user.public_id)
    return user


def login(email: str, password: str, session_ttl: timedelta) -> tuple[User, Token, str]:
    """Returns (user, session_token, plaintext_secret)."""
    user = db.session.query(User).filter_by(email=(email or "").strip().lower(), deleted_at=None).first()
    if user is None or not verify_password(password or "", user.password_hash):
        raise Unauthorized("Invalid email or password")
    token, secret = session_service.create_token(user.id, TOKEN_PURPOSE_SESSION, session_ttl)
    db.session.commit()
    logger.info("User %s logged in", user.public_id)
    return user, token, secret


def authenticate(credential: str, session_ttl: timedelta) -> User:
    """Resolve the user behind a "<token_id>:<secret>" session credential."""
    parsed = session_service.parse_credential(credential)
    if parsed is None:
        raise Unauthorized("Malformed session token")
    token = session_service.check_token(parsed[0], parsed[1], TOKEN_PURPOSE_SESSION, session_ttl=session_ttl)
    if token is None or token.user is None or token.user.deleted_at is not None:
        raise Unauthorized("Invalid or expired session")
    return token.user


def logout(credential: str) -> User:
    parsed = session_service.parse_credential(credential)
    if parsed is None:
        raise Unauthorized("Malformed session token")
    token = session_service.check_token(parsed[0], parsed[1], TOKEN_PURPOSE_SESSION)
    if token is None:
        raise Unauthorized("Invalid or expired session")
    session_service.recall_token(token)
    logger.info("User %s logged out", token.user.public_id)
    return token.user


def change_password(user: User, old_password: str, new_password: str) -> User:
    """Changing the password recalls every session of the user."""
    if not verify_password(old_password or "", user.password_hash):
        raise Unauthorized("Invalid password")
    user.password_hash = hash_password(new_password)
    db.session.commit()
    session_service.recall_user_tokens(user.id, TOKEN_PURPOSE_SESSION)
    logger.info("User %s changed password", user.public_id)
    return user


def change_email(user: User, new_email: str, *, email_service, email_token_ttl: timedelta,
                 backend_url: str, subject: str) -> User:
    new_email = validate_email(new_email)
    existing = db.session.query(User).filter_by(email=new_email).first()
    if existing is not None and existing.id != user.id:
        raise AlreadyExists("Email already registered")

    user.email = new_email
    user.email_verified = False
    db.session.commit()
    session_service.recall_user_tokens(user.id, TOKEN_PURPOSE_EMAIL)
    _send_confirmation(user, email_service, email_token_ttl, backend_url, subject)
    logger.info("User %s changed email", user.public_id)
    return user


def get_user_by_email(email: str) -> User | None:
    return db.session.query(User).filter_by(email=(email or "").strip().lower()).first()