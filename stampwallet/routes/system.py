# stampwallet/routes/system.py
"""
System health endpoint.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Business, Token, Transaction, User
from ..models.transactions import TX_ACTIVE_STATES
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity with a few cheap counts.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        user_count = db.session.query(func.count(User.id)).scalar()
        business_count = db.session.query(func.count(Business.id)).filter(Business.deleted_at.is_(None)).scalar()
        active_transactions = (
            db.session.query(func.count(Transaction.id))
            .filter(Transaction.state.in_(TX_ACTIVE_STATES), Transaction.deleted_at.is_(None))
            .scalar()
        )
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "businesses": business_count,
                "active_transactions": active_transactions,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_token_health() -> dict:
    """Count tokens that expired and wait for `maintenance cleanup-tokens`."""
    start_time = time.time()
    try:
        expired = db.session.query(func.count(Token.id)).filter(Token.expires_at < utcnow()).scalar()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"expired_pending_cleanup": expired},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Token health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Token store error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: all checks healthy
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "tokens": check_token_health(),
    }
    healthy = all(check["status"] == "healthy" for check in checks.values())

    response = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }
    return response, 200 if healthy else 503
