# Overview: Pytest coverage for the Store layer, the services bundle and the error taxonomy.

"""
Store, Configuration and Error Tests

Covers:
- OperationContext deadlines and cancellation
- Rollback on failure and Conflict retry
- Soft deletion and compare-and-set
- LedgerServices validation at startup
- Error envelopes
"""

import time
from datetime import timedelta

import pytest

from stampwallet import create_app
from stampwallet.errors import (
    Cancelled,
    Conflict,
    EmailNotVerified,
    InvalidRequest,
    InvariantViolation,
    NotEnoughPoints,
    NotFound,
    Timeout,
)
from stampwallet.models import LocalCard, User, VirtualCard
from stampwallet.services import ledger, store
from stampwallet.services.ledger import LedgerServices
from stampwallet.services.store import OperationContext


class TestOperationContext:
    def test_no_deadline(self):
        OperationContext().check()
        OperationContext.with_timeout(None).check()

    def test_expired_deadline(self):
        ctx = OperationContext(deadline=time.monotonic() - 1)
        with pytest.raises(Timeout):
            ctx.check()

    def test_cancelled(self):
        ctx = OperationContext.with_timeout(60)
        ctx.cancel()
        assert ctx.cancelled
        with pytest.raises(Cancelled):
            ctx.check()

    def test_manager_observes_cancellation(self, wallet, user, business, make_card):
        card = make_card(user, business)
        ctx = OperationContext()
        ctx.cancel()
        with pytest.raises(Cancelled):
            wallet.transactions.start(card, [], ctx=ctx)
        assert wallet.transactions.get_active(card) is None

    def test_manager_observes_deadline(self, wallet, user, business, make_definition, make_card):
        card = make_card(user, business, points=10)
        definition = make_definition(business, price=10)
        with pytest.raises(Timeout):
            wallet.virtual_cards.buy_item(card, definition.public_id, ctx=OperationContext(deadline=0))
        assert card.points == 10


class TestTransactionBoundary:
    def test_commit_on_success(self, db_session, password_hash):
        with store.transaction() as session:
            session.add(User(email="commit@example.com", password_hash=password_hash))
        db_session.expunge_all()
        assert db_session.query(User).filter_by(email="commit@example.com").count() == 1

    def test_rollback_on_error(self, db_session, password_hash):
        with pytest.raises(NotFound):
            with store.transaction() as session:
                session.add(User(email="rollback@example.com", password_hash=password_hash))
                session.flush()
                raise NotFound("gone")
        assert db_session.query(User).filter_by(email="rollback@example.com").count() == 0

    def test_integrity_error_becomes_conflict(self, db_session, password_hash, user):
        with pytest.raises(Conflict):
            with store.transaction() as session:
                session.add(User(email=user.email, password_hash=password_hash))

    def test_cancel_before_commit_rolls_back(self, db_session, password_hash):
        ctx = OperationContext()
        with pytest.raises(Cancelled):
            with store.transaction(ctx) as session:
                session.add(User(email="late@example.com", password_hash=password_hash))
                ctx.cancel()
        assert db_session.query(User).filter_by(email="late@example.com").count() == 0


class TestRetry:
    def test_retries_conflict(self):
        attempts = []

        def op():
            attempts.append(1)
            if len(attempts) < 3:
                raise Conflict()
            return "done"

        assert store.run_with_retry(op, backoff_base=0) == "done"
        assert len(attempts) == 3

    def test_gives_up(self):
        attempts = []

        def op():
            attempts.append(1)
            raise Conflict()

        with pytest.raises(Conflict):
            store.run_with_retry(op, attempts=2, backoff_base=0)
        assert len(attempts) == 2

    def test_other_errors_not_retried(self):
        attempts = []

        def op():
            attempts.append(1)
            raise NotFound()

        with pytest.raises(NotFound):
            store.run_with_retry(op, backoff_base=0)
        assert len(attempts) == 1


class TestQueries:
    def test_soft_deleted_rows_hidden(self, db_session, clock, user):
        kept = LocalCard(owner_id=user.id, type="biedronka", code="1")
        gone = LocalCard(owner_id=user.id, type="biedronka", code="2", deleted_at=clock.now)
        db_session.add_all([kept, gone])
        db_session.commit()

        assert [c.code for c in store.live(LocalCard).all()] == ["1"]
        assert store.find_live(LocalCard, code="2") is None
        assert store.lock_live(LocalCard, gone.id) is None
        assert store.lock_live(LocalCard, kept.id).id == kept.id

    def test_compare_and_set_only_matching_rows(self, db_session, user, make_business, make_card):
        cards = [make_card(user, make_business(), points=p) for p in (1, 2, 3)]
        ids = [c.id for c in cards]

        won = store.compare_and_set(VirtualCard, ids, VirtualCard.points, [1, 3], {VirtualCard.points: 9})
        db_session.commit()

        assert won == 2
        assert [c.points for c in cards] == [9, 2, 9]
        assert store.compare_and_set(VirtualCard, [], VirtualCard.points, [1], {VirtualCard.points: 0}) == 0


class TestPointPrimitives:
    def test_debit_below_zero(self, user, business, make_card):
        card = make_card(user, business, points=3)
        with pytest.raises(NotEnoughPoints):
            ledger.debit(card, 4)
        assert card.points == 3

    def test_invariant_violation_logged(self, wallet, user, business, make_card, caplog):
        card = make_card(user, business)
        card.points = -1
        with pytest.raises(InvariantViolation):
            ledger.ensure_points_invariant(card, wallet.services.logger)
        assert "Card balance out of range" in caplog.text


class TestLedgerServicesConfig:
    def test_defaults(self):
        services = LedgerServices()
        assert services.transaction_ttl == timedelta(minutes=15)
        assert services.transaction_code_length == 10

    @pytest.mark.parametrize("overrides", [
        {"transaction_ttl": timedelta(seconds=59)},
        {"transaction_code_length": 5},
        {"transaction_code_alphabet": "0012345678"},
        {"transaction_code_alphabet": ""},
        {"max_menu_images_per_business": -1},
    ])
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValueError):
            LedgerServices(**overrides)

    def test_minimum_code_space_accepted(self):
        services = LedgerServices(transaction_code_length=6)
        assert len(services.transaction_code_alphabet) ** services.transaction_code_length == 10 ** 6

    def test_invalid_config_fails_app_start(self, tmp_path):
        with pytest.raises(ValueError):
            create_app({
                'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
                'FILE_STORAGE_PATH': str(tmp_path),
                'TRANSACTION_TTL_SECONDS': 30,
            })

    def test_request_body_limit_follows_upload_limit(self, tmp_path):
        app = create_app({
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'FILE_STORAGE_PATH': str(tmp_path),
            'FILE_UPLOAD_LIMIT_BYTES': 2048,
        })
        assert app.config['MAX_CONTENT_LENGTH'] == 2048 + 64 * 1024

    def test_explicit_request_body_limit_kept(self, tmp_path):
        app = create_app({
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'FILE_STORAGE_PATH': str(tmp_path),
            'MAX_CONTENT_LENGTH': 4096,
        })
        assert app.config['MAX_CONTENT_LENGTH'] == 4096

    def test_from_config(self, app):
        services = LedgerServices.from_config(app.config, transaction_ttl=timedelta(minutes=2))
        assert services.transaction_ttl == timedelta(minutes=2)
        assert services.max_menu_images_per_business == app.config['MAX_MENU_IMAGES_PER_BUSINESS']


class TestErrorEnvelope:
    def test_business_rule_kind_is_message(self):
        exc = NotEnoughPoints(card="c1")
        assert exc.http_status == 400
        assert exc.to_response() == {"status": "INVALID_REQUEST", "message": "NotEnoughPoints"}
        assert exc.context == {"card": "c1"}

    def test_not_found_has_no_message(self):
        assert NotFound("secret detail").to_response() == {"status": "NOT_FOUND"}

    def test_invalid_request_carries_detail(self):
        assert InvalidRequest("price must be an integer").to_response()["message"] == "price must be an integer"

    def test_store_errors_are_503(self):
        assert Conflict().http_status == 503
        assert Timeout().to_response() == {"status": "UNKNOWN_ERROR", "message": "Timeout"}

    def test_invariant_violation_is_internal(self):
        exc = InvariantViolation("broken")
        assert exc.http_status == 500
        assert exc.to_response() == {"status": "UNKNOWN_ERROR"}

    def test_email_not_verified(self):
        assert EmailNotVerified().to_response() == {"status": "FORBIDDEN", "message": "EMAIL_NOT_VERIFIED"}
