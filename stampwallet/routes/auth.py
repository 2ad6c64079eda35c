# Overview: Flask API routes for accounts and sessions; parses input and returns JSON responses.

"""
Authentication API routes

- POST   /auth/account                    create account, mail confirmation token
- POST   /auth/account/emailConfirmation  confirm email with "<token_id>:<secret>"
- POST   /auth/account/password           change password (auth)
- POST   /auth/account/email              change email, re-verification required (auth)
- POST   /auth/sessions                   login, returns session token
- DELETE /auth/sessions                   logout (auth)
"""

from datetime import timedelta

from flask import Blueprint, current_app, g, request

from ..decorators import require_auth, wallet
from ..errors import InvalidRequest, LedgerError, Unauthorized
from ..responses import error_response, internal_error, ok
from ..services import auth_service, session_service
from ..time_utils import to_utc_z
from ..validation import parse_required_str, require_object


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _email_settings() -> dict:
    config = current_app.config
    return {
        "email_service": wallet().email,
        "email_token_ttl": timedelta(seconds=config["EMAIL_TOKEN_TTL_SECONDS"]),
        "backend_url": config["BACKEND_URL"],
        "subject": config["VERIFICATION_EMAIL_SUBJECT"],
    }


@auth_bp.post("/account")
def create_account_route():
    """
    Request body:
    {
        "email": "user@example.com",
        "password": "at least 8 characters"
    }

    Returns:
        201: account created (unverified)
        400: invalid email or password
        409: email already registered
    """
    try:
        data = require_object(request.get_json(silent=True))
        user = auth_service.create_user(
            parse_required_str(data, "email"),
            data.get("password"),
            **_email_settings(),
        )
        return ok({"user": user.to_dict()}, 201)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create account")
        return internal_error()


@auth_bp.post("/account/emailConfirmation")
def confirm_email_route():
    """Body {"token": "<token_id>:<secret>"} (or ?token= from the mailed link)."""
    try:
        data = require_object(request.get_json(silent=True))
        credential = data.get("token") or request.args.get("token")
        parsed = session_service.parse_credential(credential or "")
        if parsed is None:
            raise InvalidRequest("token is required")
        user = auth_service.confirm_email(*parsed)
        return ok({"user": user.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm email")
        return internal_error()


@auth_bp.post("/account/password")
@require_auth
def change_password_route():
    try:
        data = require_object(request.get_json(silent=True))
        auth_service.change_password(g.current_user, data.get("old_password"), data.get("password"))
        return ok()
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change password")
        return internal_error()


@auth_bp.post("/account/email")
@require_auth
def change_email_route():
    try:
        data = require_object(request.get_json(silent=True))
        user = auth_service.change_email(g.current_user, parse_required_str(data, "email"), **_email_settings())
        return ok({"user": user.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change email")
        return internal_error()


@auth_bp.post("/sessions")
def login_route():
    """
    Authenticate and create a session token.

    The token goes into "Authorization: Bearer <token>" on protected routes.
    Unverified accounts may log in; wallet routes then answer EMAIL_NOT_VERIFIED.
    """
    try:
        data = require_object(request.get_json(silent=True))
        email = data.get("email")
        password = data.get("password")
        if not email or not password:
            raise InvalidRequest("email and password required")

        session_ttl = timedelta(seconds=current_app.config["SESSION_TTL_SECONDS"])
        user, token, secret = auth_service.login(email, password, session_ttl)
        return ok({
            "token": session_service.format_credential(token, secret),
            "expires_at": to_utc_z(token.expires_at),
            "email_verified": user.email_verified,
        })
    except Unauthorized as e:
        current_app.logger.info("Failed login attempt")
        return error_response(e)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to log in")
        return internal_error()


@auth_bp.delete("/sessions")
@require_auth
def logout_route():
    try:
        auth_service.logout(g.session_credential)
        return ok()
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to log out")
        return internal_error()
