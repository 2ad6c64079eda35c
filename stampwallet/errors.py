# Overview: Error taxonomy shared by the ledger core and the HTTP adapters.

"""
Ledger error taxonomy.

Every failure a manager or accessor reports is one of the classes below.
Each class carries:
- kind:        machine-readable error kind (sent to clients as "message")
- http_status: status code used by the HTTP adapter
- api_status:  coarse status enum of the JSON envelope

Anything raised across the HTTP boundary that is not a LedgerError is
treated as Internal by the app error handler.
"""

from __future__ import annotations


# JSON envelope status values
API_OK = "OK"
API_INVALID_REQUEST = "INVALID_REQUEST"
API_NOT_FOUND = "NOT_FOUND"
API_FORBIDDEN = "FORBIDDEN"
API_ALREADY_EXISTS = "ALREADY_EXISTS"
API_UNAUTHORIZED = "UNAUTHORIZED"
API_UNKNOWN_ERROR = "UNKNOWN_ERROR"


class LedgerError(Exception):
    """Base class of every core error kind."""

    kind = "Internal"
    http_status = 500
    api_status = API_UNKNOWN_ERROR
    # Whether the kind string is sent to clients
    expose_kind = False

    def __init__(self, detail: str | None = None, **context):
        self.detail = detail or self.kind
        self.context = context
        super().__init__(self.detail)

    def to_response(self) -> dict:
        body = {"status": self.api_status}
        if self.expose_kind:
            body["message"] = self.kind
        return body


# =============================================================================
# AUTHORIZATION
# =============================================================================

class NotFound(LedgerError):
    kind = "NotFound"
    http_status = 404
    api_status = API_NOT_FOUND


class NoAccess(LedgerError):
    kind = "NoAccess"
    http_status = 403
    api_status = API_FORBIDDEN


class AlreadyExists(LedgerError):
    kind = "AlreadyExists"
    http_status = 409
    api_status = API_ALREADY_EXISTS


class Unauthorized(LedgerError):
    """Missing, expired or unknown session token."""
    kind = "Unauthorized"
    http_status = 401
    api_status = API_UNAUTHORIZED


class EmailNotVerified(LedgerError):
    kind = "EMAIL_NOT_VERIFIED"
    http_status = 403
    api_status = API_FORBIDDEN
    expose_kind = True


# =============================================================================
# INVALID INPUT (400)
# =============================================================================

class InvalidRequest(LedgerError):
    """Malformed payload. The detail names the offending field."""
    kind = "InvalidRequest"
    http_status = 400
    api_status = API_INVALID_REQUEST

    def to_response(self) -> dict:
        return {"status": self.api_status, "message": self.detail}


class BusinessRuleError(LedgerError):
    """400-level rejection whose kind is reported as the message."""
    http_status = 400
    api_status = API_INVALID_REQUEST
    expose_kind = True


class InvalidItemDetails(BusinessRuleError):
    kind = "InvalidItemDetails"


class InvalidPoints(BusinessRuleError):
    kind = "InvalidPoints"


class InvalidItem(BusinessRuleError):
    kind = "InvalidItem"


class UnknownItem(BusinessRuleError):
    kind = "UnknownItem"


class AlreadyActive(BusinessRuleError):
    kind = "AlreadyActive"


class InUse(BusinessRuleError):
    kind = "InUse"


class Withdrawn(BusinessRuleError):
    kind = "Withdrawn"


class Unavailable(BusinessRuleError):
    kind = "Unavailable"


class BeforeStartDate(BusinessRuleError):
    kind = "BeforeStartDate"


class AfterEndDate(BusinessRuleError):
    kind = "AfterEndDate"


class NotEnoughPoints(BusinessRuleError):
    kind = "NotEnoughPoints"


class AboveMaxAmount(BusinessRuleError):
    kind = "AboveMaxAmount"


class ItemAlreadyTerminal(BusinessRuleError):
    kind = "ItemAlreadyTerminal"


class NotFinalizable(BusinessRuleError):
    kind = "NotFinalizable"


class LimitExceeded(BusinessRuleError):
    kind = "LimitExceeded"


# =============================================================================
# STORE (503, retryable at the caller's discretion)
# =============================================================================

class StoreError(LedgerError):
    kind = "StoreError"
    http_status = 503
    api_status = API_UNKNOWN_ERROR
    expose_kind = True


class Timeout(StoreError):
    kind = "Timeout"


class Cancelled(StoreError):
    kind = "Cancelled"


class Conflict(StoreError):
    """Concurrent writer won; the operation rolled back and may be retried."""
    kind = "Conflict"


# =============================================================================
# INTERNAL
# =============================================================================

class InvariantViolation(LedgerError):
    """A persisted-state invariant was found broken. Always fatal for the request."""
    kind = "Internal"
