# Overview: Column helpers shared by the wallet models.

from __future__ import annotations

import secrets

from ..extensions import db


def new_public_id() -> str:
    """Opaque, URL-safe public identifier (22 characters)."""
    return secrets.token_urlsafe(16)


def live_only(*state_clauses: str):
    """
    Partial-index predicate restricting a unique index to live rows.

    Soft-deleted rows (deleted_at set) never take part in uniqueness.
    Extra SQL clauses are ANDed in (e.g. an active-state filter).
    """
    clauses = ["deleted_at IS NULL", *state_clauses]
    predicate = db.text(" AND ".join(clauses))
    return {"sqlite_where": predicate, "postgresql_where": predicate}
