# Overview: JSON response envelopes shared by all routes.

from __future__ import annotations

from flask import current_app, jsonify

from .errors import API_OK, API_UNKNOWN_ERROR, LedgerError


def ok(payload: dict | None = None, status: int = 200):
    body = {"status": API_OK}
    if payload:
        body.update(payload)
    return jsonify(body), status


def error_response(exc: LedgerError):
    if exc.http_status >= 500:
        current_app.logger.warning("%s: %s %s", exc.kind, exc.detail, exc.context or "")
    else:
        current_app.logger.info("Rejected with %s: %s", exc.kind, exc.detail)
    return jsonify(exc.to_response()), exc.http_status


def internal_error():
    return jsonify({"status": API_UNKNOWN_ERROR}), 500
