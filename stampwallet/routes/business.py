# Overview: Flask API routes for business accounts; item definitions, menu images and the business side of transactions.

"""
Business API Routes

All routes require a session and a verified email. Everything except
POST /business/account also requires the user to own a business.

DESIGN:
- Ownership is resolved through the authorization accessors before any
  manager is called; managers re-read and lock what they mutate.
- Transactions are addressed by the code the user shows at the counter.
"""

from flask import Blueprint, current_app, g, request

from ..decorators import operation_context, require_auth, require_business, require_verified_email, wallet
from ..errors import InvalidRequest, LedgerError
from ..responses import error_response, internal_error, ok
from ..services.business_service import BusinessDetails, parse_gps_coordinates
from ..validation import coerce_int, coerce_str, parse_item_details, parse_required_str, require_object


business_bp = Blueprint("business", __name__, url_prefix="/business")


# =============================================================================
# ACCOUNT
# =============================================================================

@business_bp.post("/account")
@require_auth
@require_verified_email
def create_business_route():
    """
    Request body:
    {
        "name": "Cafe", "description": "...", "address": "...",
        "gps_coordinates": "52.2297,21.0122",
        "nip": "...", "krs": "...", "regon": "...", "owner_name": "..."
    }

    Returns:
        201: business created with banner/icon file stubs to upload
        400: invalid input
        409: user already owns a business, or identifiers taken
    """
    try:
        data = require_object(request.get_json(silent=True))
        latitude, longitude = parse_gps_coordinates(data.get("gps_coordinates"))
        details = BusinessDetails(
            name=parse_required_str(data, "name"),
            description=coerce_str("description", data.get("description") or ""),
            address=parse_required_str(data, "address"),
            nip=parse_required_str(data, "nip"),
            krs=parse_required_str(data, "krs"),
            regon=parse_required_str(data, "regon"),
            owner_name=parse_required_str(data, "owner_name"),
            latitude=latitude,
            longitude=longitude,
        )
        if not details.name:
            raise InvalidRequest("name must not be empty")

        business = wallet().businesses.create(g.current_user, details, ctx=operation_context())
        return ok({
            "public_id": business.public_id,
            "banner_image_id": business.banner_image_id,
            "icon_image_id": business.icon_image_id,
        }, 201)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create business")
        return internal_error()


@business_bp.get("/account")
@require_auth
@require_verified_email
@require_business
def get_business_route():
    """Business details with its item definitions and menu image ids."""
    try:
        w = wallet()
        data = g.business.to_dict()
        data["item_definitions"] = [d.to_dict() for d in w.item_definitions.get_for_business(g.business)]
        data["menu_image_ids"] = [m.file_id for m in w.business_accessor.get_menu_images(g.business)]
        return ok({"business": data})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get business")
        return internal_error()


@business_bp.patch("/account")
@require_auth
@require_verified_email
@require_business
def change_business_route():
    try:
        data = require_object(request.get_json(silent=True))
        name = coerce_str("name", data["name"]) if data.get("name") else None
        description = coerce_str("description", data["description"]) if data.get("description") else None
        business = wallet().businesses.change_details(
            g.business, name=name, description=description, ctx=operation_context()
        )
        return ok({"business": business.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change business details")
        return internal_error()


# =============================================================================
# MENU IMAGES
# =============================================================================

@business_bp.post("/menuImages")
@require_auth
@require_verified_email
@require_business
def add_menu_image_route():
    try:
        image = wallet().businesses.add_menu_image(g.business, ctx=operation_context())
        return ok({"file_id": image.file_id}, 201)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add menu image")
        return internal_error()


@business_bp.delete("/menuImages/<file_id>")
@require_auth
@require_verified_email
@require_business
def remove_menu_image_route(file_id: str):
    try:
        w = wallet()
        image = w.business_accessor.get_menu_image(g.business, file_id)
        w.businesses.remove_menu_image(image, ctx=operation_context())
        return ok()
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove menu image")
        return internal_error()


# =============================================================================
# ITEM DEFINITIONS
# =============================================================================

@business_bp.get("/itemDefinitions")
@require_auth
@require_verified_email
@require_business
def list_item_definitions_route():
    try:
        definitions = wallet().item_definitions.get_for_business(g.business)
        return ok({"item_definitions": [d.to_dict() for d in definitions]})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list item definitions")
        return internal_error()


@business_bp.post("/itemDefinitions")
@require_auth
@require_verified_email
@require_business
def add_item_definition_route():
    """
    Request body:
    {
        "name": "Free coffee",
        "price": 10,
        "description": "...",          (optional)
        "start_date": "2024-01-01T00:00:00Z",  (optional)
        "end_date": "2024-12-31T23:59:59Z",    (optional)
        "max_amount": 5,               (optional, 0 = no cap)
        "available": true              (optional)
    }

    Returns:
        201: definition created; image_id is a file stub to upload
        400: InvalidItemDetails or malformed input
    """
    try:
        details = parse_item_details(request.get_json(silent=True), partial=False)
        definition = wallet().item_definitions.add_item(g.business, details, ctx=operation_context())
        return ok({"item_definition": definition.to_dict()}, 201)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add item definition")
        return internal_error()


@business_bp.route("/itemDefinitions/<definition_id>", methods=["PATCH", "PUT"])
@require_auth
@require_verified_email
@require_business
def change_item_definition_route(definition_id: str):
    """Partial update; only the provided fields change."""
    try:
        w = wallet()
        definition = w.business_accessor.get_item_definition(g.business, definition_id)
        details = parse_item_details(request.get_json(silent=True), partial=True)
        definition = w.item_definitions.change_item_details(definition, details, ctx=operation_context())
        return ok({"item_definition": definition.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change item definition")
        return internal_error()


@business_bp.delete("/itemDefinitions/<definition_id>")
@require_auth
@require_verified_email
@require_business
def withdraw_item_definition_route(definition_id: str):
    """Withdraw: terminal, refunds every owned copy."""
    try:
        w = wallet()
        definition = w.business_accessor.get_item_definition(g.business, definition_id)
        definition = w.item_definitions.withdraw_item(definition, ctx=operation_context())
        return ok({"item_definition": definition.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to withdraw item definition")
        return internal_error()


# =============================================================================
# TRANSACTIONS
# =============================================================================

def _parse_item_actions(data: dict) -> dict:
    """
    Accepts {"item_actions": {"<item_id>": "REDEEMED", ...}} or
    {"items": [{"item_id": "...", "action": "REDEEMED"}, ...]}.
    """
    if data.get("item_actions") is not None:
        actions = data["item_actions"]
        if not isinstance(actions, dict):
            raise InvalidRequest("item_actions must be an object")
        return {coerce_str("item_id", k): coerce_str("action", v) for k, v in actions.items()}

    items = data.get("items") or []
    if not isinstance(items, list):
        raise InvalidRequest("items must be a list")
    actions = {}
    for entry in items:
        if not isinstance(entry, dict):
            raise InvalidRequest("items entries must be objects")
        item_id = parse_required_str(entry, "item_id")
        if item_id in actions:
            raise InvalidRequest(f"duplicate item_id {item_id}")
        actions[item_id] = parse_required_str(entry, "action")
    return actions


@business_bp.get("/transaction/<code>")
@require_auth
@require_verified_email
@require_business
def fetch_transaction_route(code: str):
    """First fetch moves a STARTED transaction to PROCESSING."""
    try:
        tx = wallet().transactions.fetch_for_business(g.business, code, ctx=operation_context())
        return ok({"transaction": tx.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to fetch transaction")
        return internal_error()


@business_bp.post("/transaction/<code>")
@require_auth
@require_verified_email
@require_business
def finalize_transaction_route(code: str):
    """
    Request body:
    {
        "items": [{"item_id": "...", "action": "REDEEMED" | "RECALLED" | "CANCELLED"}],
        "added_points": 30
    }

    Items left out are CANCELLED.
    """
    try:
        w = wallet()
        data = require_object(request.get_json(silent=True))
        actions = _parse_item_actions(data)
        added_points = data.get("added_points", 0)
        if isinstance(added_points, str):
            added_points = coerce_int("added_points", added_points)

        tx = w.transaction_accessor.get_for_business(g.business, code)
        tx = w.transactions.finalize(tx, actions, added_points, ctx=operation_context())
        return ok({"transaction": tx.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to finalize transaction")
        return internal_error()


@business_bp.delete("/transaction/<code>")
@require_auth
@require_verified_email
@require_business
def cancel_transaction_route(code: str):
    try:
        w = wallet()
        tx = w.transaction_accessor.get_for_business(g.business, code)
        tx = w.transactions.cancel(tx, ctx=operation_context())
        return ok({"transaction": tx.to_dict()})
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel transaction")
        return internal_error()
