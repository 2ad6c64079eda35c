from __future__ import annotations

from datetime import datetime
from typing import Any

from .errors import InvalidRequest
from .services.item_definition_service import CLEARABLE_FIELDS, ItemDetails
from .time_utils import parse_iso_datetime


ITEM_DETAIL_FIELDS = {
    "name": "str",
    "description": "str",
    "price": "int",
    "start_date": "datetime",
    "end_date": "datetime",
    "max_amount": "int",
    "available": "bool",
}


def require_object(payload: Any) -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise InvalidRequest("Invalid JSON payload")
    return payload


def coerce_int(key: str, value: Any) -> int:
    """Strict integer: rejects floats, booleans and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        try:
            return int(stripped)
        except ValueError:
            pass
        try:
            float(stripped)
        except ValueError:
            raise InvalidRequest(f"{key} must be an integer")
        if "e" in stripped.lower():
            raise InvalidRequest(f"{key} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise InvalidRequest(f"{key} must be an integer (no decimals)")
        raise InvalidRequest(f"{key} must be an integer")
    if isinstance(value, float):
        raise InvalidRequest(f"{key} must be an integer, not a decimal")
    raise InvalidRequest(f"{key} must be an integer")


def coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise InvalidRequest(f"{key} must be a boolean")


def coerce_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise InvalidRequest(f"{key} must be an ISO-8601 datetime")
        if dt is None:
            raise InvalidRequest(f"{key} must be an ISO-8601 datetime")
        return dt
    raise InvalidRequest(f"{key} must be an ISO-8601 datetime")


def coerce_str(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise InvalidRequest(f"{key} must be a string")
    return value.strip()


_COERCERS = {
    "int": coerce_int,
    "bool": coerce_bool,
    "datetime": coerce_datetime,
    "str": coerce_str,
}


def parse_item_details(payload: Any, *, partial: bool) -> ItemDetails:
    """
    Build ItemDetails from a JSON body.

    partial=False: create semantics (name and price required)
    partial=True: patch semantics (validate only provided keys)
    Null values mean "not provided", except for the window dates where
    null removes the bound.
    """
    payload = require_object(payload)
    for key in payload:
        if key not in ITEM_DETAIL_FIELDS:
            raise InvalidRequest(f"Field not allowed: {key}")

    if not partial:
        missing = [f for f in ("name", "price") if payload.get(f) is None]
        if missing:
            raise InvalidRequest(f"Missing required fields: {', '.join(missing)}")

    values = {}
    for key, kind in ITEM_DETAIL_FIELDS.items():
        if payload.get(key) is None:
            if key in payload and key in CLEARABLE_FIELDS:
                values[key] = None
            continue
        values[key] = _COERCERS[kind](key, payload[key])
    return ItemDetails(**values)


def parse_required_str(payload: dict, key: str) -> str:
    value = payload.get(key)
    if value is None:
        raise InvalidRequest(f"Missing required fields: {key}")
    return coerce_str(key, value)


def parse_query_int(args, key: str, default: int) -> int:
    raw = args.get(key)
    if raw is None or raw == "":
        return default
    value = coerce_int(key, raw)
    if value < 0:
        raise InvalidRequest(f"{key} must be non-negative")
    return value
