"""
Pytest fixtures for the grocery tap backend tests.

Provides test database setup, user/tag factories, and test client.
"""

import uuid
from datetime import timedelta

import pytest
from app import create_app
from app.extensions import db
from app.models import NfcTag, TagBatch, TapEvent
from app.services import session_service
from app.services.auth_service import create_user
from app.time_utils import utcnow


PASSWORD = "Password123!"
TAG_UUID = "aaaaaaaa-0000-4000-8000-000000000001"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'IP_HASH_SALT': 'test-salt',
        'BCRYPT_LOG_ROUNDS': 4,
        'PUBLIC_BASE_URL': '',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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
def make_user(db_session):
    def _make(email: str, role: str = "user", password: str = PASSWORD, name: str | None = None):
        return create_user(email, password, name=name, role=role)
    return _make


@pytest.fixture(scope='function')
def user(make_user):
    return make_user("alice@example.com", name="Alice")


@pytest.fixture(scope='function')
def other_user(make_user):
    return make_user("bob@example.com", name="Bob")


@pytest.fixture(scope='function')
def admin_user(make_user):
    return make_user("admin@example.com", role="admin", name="Admin")


@pytest.fixture(scope='function')
def batch(db_session):
    batch = TagBatch(slug="store-1", name="Store 1")
    db_session.add(batch)
    db_session.commit()
    return batch


@pytest.fixture(scope='function')
def make_tag(db_session, batch):
    def _make(public_uuid: str | None = None, target_batch=None, **fields):
        tag = NfcTag(
            public_uuid=public_uuid or str(uuid.uuid4()),
            batch_id=(target_batch or batch).id,
            **fields,
        )
        db_session.add(tag)
        db_session.commit()
        return tag
    return _make


@pytest.fixture(scope='function')
def tag(make_tag):
    return make_tag(TAG_UUID, label="Dairy aisle")


@pytest.fixture(scope='function')
def make_tap(db_session):
    """Insert a TapEvent directly, minutes_ago before now."""
    def _make(tag, minutes_ago: float = 0, **fields):
        event = TapEvent(
            tag_id=tag.id,
            batch_id=tag.batch_id,
            occurred_at=utcnow() - timedelta(minutes=minutes_ago),
            **fields,
        )
        db_session.add(event)
        db_session.commit()
        return event
    return _make


@pytest.fixture(scope='function')
def login_token(db_session):
    """Factory: create a session directly and return its plaintext token."""
    def _token(user) -> str:
        _, token = session_service.create_session(user.id)
        return token
    return _token


@pytest.fixture(scope='function')
def user_headers(user, login_token):
    return auth_headers(login_token(user))


@pytest.fixture(scope='function')
def other_headers(other_user, login_token):
    return auth_headers(login_token(other_user))


@pytest.fixture(scope='function')
def admin_headers(admin_user, login_token):
    return auth_headers(login_token(admin_user))


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
