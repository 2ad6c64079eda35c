"""
Pytest fixtures for StampWallet tests.

Provides the application on an in-memory database, a per-test table wipe,
factories for the wallet entities, a controllable clock and auth helpers.
"""

import itertools
from datetime import datetime, timedelta

import pytest

from stampwallet import create_app
from stampwallet.extensions import db
from stampwallet.models import User
from stampwallet.models.auth import TOKEN_PURPOSE_SESSION
from stampwallet.services import session_service
from stampwallet.services.auth_service import hash_password
from stampwallet.services.business_service import BusinessDetails
from stampwallet.services.item_definition_service import ItemDetails


TEST_PASSWORD = "Password123!"

# PNG signature followed by filler; only the magic bytes are sniffed
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 56


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'FILE_STORAGE_PATH': str(tmp_path_factory.mktemp('files')),
        'BACKEND_URL': 'http://wallet.test/',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(TEST_PASSWORD)


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def wallet(app, db_session):
    return app.extensions['stampwallet']


class FakeClock:
    """Callable clock; tests move it forward explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(scope='function')
def clock(wallet):
    """Install a FakeClock in the ledger services bundle for one test."""
    fake = FakeClock(datetime(2024, 6, 1, 12, 0, 0))
    original = wallet.services.clock
    wallet.services.clock = fake
    yield fake
    wallet.services.clock = original


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture(scope='function')
def make_user(db_session, password_hash):
    counter = itertools.count(1)

    def _make(email=None, verified=True):
        n = next(counter)
        user = User(
            email=email or f"user{n}@example.com",
            password_hash=password_hash,
            email_verified=verified,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def make_business(wallet, make_user):
    counter = itertools.count(1)

    def _make(owner=None, name=None, description=""):
        n = next(counter)
        owner = owner or make_user()
        details = BusinessDetails(
            name=name or f"Cafe {n}",
            description=description,
            address=f"Main Street {n}",
            nip=f"NIP{n:07d}",
            krs=f"KRS{n:07d}",
            regon=f"REGON{n:05d}",
            owner_name="Jan Kowalski",
            latitude=52.2297,
            longitude=21.0122,
        )
        return wallet.businesses.create(owner, details)

    return _make


@pytest.fixture(scope='function')
def make_definition(wallet):
    def _make(business, name="Free coffee", price=10, **fields):
        return wallet.item_definitions.add_item(business, ItemDetails(name=name, price=price, **fields))

    return _make


@pytest.fixture(scope='function')
def make_card(wallet, db_session):
    def _make(user, business, points=0):
        card = wallet.virtual_cards.create(user, business.public_id)
        if points:
            card.points = points
            db_session.commit()
        return card

    return _make


@pytest.fixture(scope='function')
def user(make_user):
    return make_user(email="holder@example.com")


@pytest.fixture(scope='function')
def owner(make_user):
    return make_user(email="owner@example.com")


@pytest.fixture(scope='function')
def business(make_business, owner):
    return make_business(owner=owner, name="Green Bean")


# =============================================================================
# AUTH HELPERS
# =============================================================================

def auth_headers(user, ttl=timedelta(hours=1)) -> dict:
    """Mint a session token for user and return the Authorization header."""
    token, secret = session_service.create_token(user.id, TOKEN_PURPOSE_SESSION, ttl)
    db.session.commit()
    return {'Authorization': f'Bearer {session_service.format_credential(token, secret)}'}
