# Overview: Request decorators for API routes; session authentication, email verification and business resolution.

from datetime import timedelta
from functools import wraps

from flask import current_app, g, request

from .errors import EmailNotVerified, LedgerError, NotFound, Unauthorized
from .responses import error_response
from .services import auth_service
from .services.store import OperationContext


def wallet():
    """Per-app bundle of managers and accessors (see create_app)."""
    return current_app.extensions["stampwallet"]


def operation_context() -> OperationContext:
    """Deadline for the Store work of the current request."""
    return OperationContext.with_timeout(current_app.config.get("STORE_REQUEST_TIMEOUT_SECONDS"))


def require_auth(f):
    """
    Require a session token: "Authorization: Bearer <token_id>:<secret>".

    Sets g.current_user. Returns 401 UNAUTHORIZED if the header is missing
    or the token is unknown, expired or recalled.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        try:
            if not auth_header or not auth_header.startswith("Bearer "):
                raise Unauthorized("Authentication required")
            credential = auth_header.split(" ", 1)[1].strip()
            session_ttl = timedelta(seconds=current_app.config["SESSION_TTL_SECONDS"])
            g.current_user = auth_service.authenticate(credential, session_ttl)
            g.session_credential = credential
        except LedgerError as e:
            return error_response(e)
        return f(*args, **kwargs)

    return decorated_function


def require_verified_email(f):
    """Requires @require_auth first. 403 EMAIL_NOT_VERIFIED otherwise."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not hasattr(g, "current_user"):
            return error_response(Unauthorized("Authentication required"))
        if not g.current_user.email_verified:
            return error_response(EmailNotVerified())
        return f(*args, **kwargs)

    return decorated_function


def require_business(f):
    """Requires @require_auth first. Sets g.business to the user's business, 404 if none."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not hasattr(g, "current_user"):
            return error_response(Unauthorized("Authentication required"))
        try:
            g.business = wallet().user_accessor.get_business(g.current_user)
        except NotFound as e:
            return error_response(e)
        return f(*args, **kwargs)

    return decorated_function
