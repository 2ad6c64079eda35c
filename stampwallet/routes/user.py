# Overview: Flask API routes for card holders; virtual cards, purchases, transactions, local cards and search.

"""
User API Routes

All routes require a session and a verified email. Virtual cards are
addressed by the public id of their business, since a user holds at most
one card per business.
"""

from flask import Blueprint, current_app, g, request

from ..decorators import operation_context, require_auth, require_verified_email, wallet
from ..errors import InvalidRequest, LedgerError, NotFound
from ..responses import error_response, internal_error, ok
from ..services import local_card_service
from ..validation import coerce_str, parse_query_int, parse_required_str, require_object


user_bp = Blueprint("user", __name__, url_prefix="/user")


def _card_for(business_id: str):
    return wallet().user_accessor.get_virtual_card(g.current_user, business_public_id=business_id)


@user_bp.get("/cards")
@require_auth
@require_verified_email
def list_cards_route():
    try:
        w = wallet()
        virtual_cards = w.user_accessor.get_virtual_cards(g.current_user)
        local_cards = w.user_accessor.get_local_cards(g.current_user)
        return ok({
            "virtual_cards": [c.to_dict() for c in virtual_cards],
            "local_cards": [c.to_dict() for c in local_cards],
        })
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list cards")
        return internal_error()


# =============================================================================
# VIRTUAL CARDS
# =============================================================================

@user_bp.post("/cards/virtual/<business_id>")
@require_auth
@require_verified_email
def create_virtual_card_route(business_id: str):
    try:
        card = wallet().virtual_cards.create(g.current_user, business_id, ctx=operation_context())
        return ok({"virtual_card": card.to_dict()}, 201)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create virtual card")
        return internal_error()


@user_bp.get("/cards/virtual/<business_id>")
@require_auth
@require_verified_email
def get_virtual_card_route(business_id: str):
    """Card with its owned items and the business's item definitions."""
    try:
        w = wallet()
        card = _card_for(business_id)
        data = card.to_dict()
        data["owned_items"] = [i.to_dict() for i in w.virtual_cards.get_owned_items(card)]
        data["item_definitions"] = [d.to_dict() for d in w.item_definitions.get_for_business(card.business)]
        return ok({"virtual_card": data})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get virtual card")
        return internal_error()


@user_bp.delete("/cards/virtual/<business_id>")
@require_auth
@require_verified_email
def remove_virtual_card_route(business_id: str):
    try:
        wallet().virtual_cards.remove(_card_for(business_id), ctx=operation_context())
        return ok()
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove virtual card")
        return internal_error()


@user_bp.post("/cards/virtual/<business_id>/items/<definition_id>")
@require_auth
@require_verified_email
def buy_item_route(business_id: str, definition_id: str):
    """
    Returns:
        201: item bought
        400: Withdrawn, Unavailable, BeforeStartDate, AfterEndDate,
             NotEnoughPoints or AboveMaxAmount
        404: no card at this business, or no such definition there
    """
    try:
        card = _card_for(business_id)
        item = wallet().virtual_cards.buy_item(card, definition_id, ctx=operation_context())
        return ok({"item": item.to_dict()}, 201)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to buy item")
        return internal_error()


@user_bp.delete("/cards/virtual/<business_id>/items/<item_id>")
@require_auth
@require_verified_email
def return_item_route(business_id: str, item_id: str):
    try:
        w = wallet()
        card = _card_for(business_id)
        item = w.user_accessor.get_owned_item(g.current_user, item_id)
        if item.virtual_card_id != card.id:
            raise NotFound("Owned item not found")
        item = w.virtual_cards.return_item(item, ctx=operation_context())
        return ok({"item": item.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to return item")
        return internal_error()


# =============================================================================
# TRANSACTIONS
# =============================================================================

@user_bp.post("/cards/virtual/<business_id>/transaction")
@require_auth
@require_verified_email
def start_transaction_route(business_id: str):
    """
    Request body:
    {
        "item_ids": ["<owned item id>", ...]   (may be empty)
    }

    Returns:
        201: transaction STARTED; show "code" to the business
        400: AlreadyActive or InvalidItem
    """
    try:
        data = require_object(request.get_json(silent=True))
        item_ids = data.get("item_ids") or []
        if not isinstance(item_ids, list):
            raise InvalidRequest("item_ids must be a list")
        item_ids = [coerce_str("item_ids", i) for i in item_ids]

        card = _card_for(business_id)
        tx = wallet().transactions.start(card, item_ids, ctx=operation_context())
        return ok({"transaction": tx.to_dict()}, 201)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start transaction")
        return internal_error()


@user_bp.get("/cards/virtual/<business_id>/transaction")
@require_auth
@require_verified_email
def get_active_transaction_route(business_id: str):
    try:
        card = _card_for(business_id)
        tx = wallet().transactions.get_active(card, ctx=operation_context())
        if tx is None:
            raise NotFound("No active transaction")
        return ok({"transaction": tx.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get transaction")
        return internal_error()


@user_bp.delete("/cards/virtual/<business_id>/transaction")
@require_auth
@require_verified_email
def cancel_active_transaction_route(business_id: str):
    try:
        w = wallet()
        card = _card_for(business_id)
        active = w.transactions.get_active(card, ctx=operation_context())
        if active is None:
            raise NotFound("No active transaction")
        tx = w.transactions.get_for_user(g.current_user, active.code, ctx=operation_context())
        tx = w.transactions.cancel(tx, ctx=operation_context())
        return ok({"transaction": tx.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel transaction")
        return internal_error()


# =============================================================================
# LOCAL CARDS
# =============================================================================

@user_bp.get("/cards/local")
@require_auth
@require_verified_email
def list_local_cards_route():
    try:
        cards = wallet().user_accessor.get_local_cards(g.current_user)
        return ok({"local_cards": [c.to_dict() for c in cards]})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list local cards")
        return internal_error()


@user_bp.post("/cards/local")
@require_auth
@require_verified_email
def create_local_card_route():
    """Body {"type": "biedronka", "code": "...", "name": "..."}."""
    try:
        data = require_object(request.get_json(silent=True))
        card = local_card_service.create_local_card(
            g.current_user,
            parse_required_str(data, "type"),
            parse_required_str(data, "code"),
            coerce_str("name", data.get("name") or ""),
            ctx=operation_context(),
        )
        return ok({"local_card": card.to_dict()}, 201)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create local card")
        return internal_error()


@user_bp.get("/cards/local/types")
@require_auth
@require_verified_email
def local_card_types_route():
    base_url = current_app.config["BACKEND_URL"].rstrip("/") + "/static/cards/"
    return ok({"types": local_card_service.get_card_types(base_url)})


@user_bp.delete("/cards/local/<card_id>")
@require_auth
@require_verified_email
def remove_local_card_route(card_id: str):
    try:
        card = wallet().user_accessor.get_local_card(g.current_user, card_id)
        local_card_service.remove_local_card(card, ctx=operation_context())
        return ok()
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove local card")
        return internal_error()


# =============================================================================
# SEARCH
# =============================================================================

@user_bp.get("/search")
@require_auth
@require_verified_email
def search_businesses_route():
    """Query: text, offset (default 0), limit (default 50, max 100)."""
    try:
        businesses = wallet().businesses.search(
            request.args.get("text"),
            offset=parse_query_int(request.args, "offset", 0),
            limit=parse_query_int(request.args, "limit", 50),
        )
        return ok({"businesses": [b.to_short_dict() for b in businesses]})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to search businesses")
        return internal_error()
