"""Shared fixtures: temporary database and storage root, users, tokens, client."""

import os
import shutil
import tempfile

# Settings are read at import time, so point them at scratch locations first
_TMP_DIR = tempfile.mkdtemp(prefix="drive-tests-")
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_TMP_DIR, "test.db")
os.environ["STORAGE_ROOT"] = os.path.join(_TMP_DIR, "storage")
os.environ["SKIP_DB_INIT"] = "true"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["STORAGE_RETRY_DELAY"] = "0"
os.environ["MAX_UPLOAD_SIZE_BYTES"] = str(1024 * 1024)
os.environ["UPLOAD_SLOT_TIMEOUT"] = "0.1"
os.environ["MAX_FOLDER_DEPTH"] = "8"

import pytest
from fastapi.testclient import TestClient

from config import SESSION_COOKIE_NAME, STORAGE_ROOT
from database import Base, SessionLocal, engine
from main import app
from services import accounts, session_store

PASSWORD = "correct-horse"


@pytest.fixture(autouse=True)
def _reset_state():
    """Fresh tables and an empty storage root for every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    shutil.rmtree(STORAGE_ROOT, ignore_errors=True)
    yield
    shutil.rmtree(STORAGE_ROOT, ignore_errors=True)


@pytest.fixture
def db():
    """Database session for direct service calls.

    Yields:
        SQLAlchemy session, closed after the test.
    """
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def user(db):
    """Registered test user."""
    return accounts.register(db, "Alice", "alice@example.com", PASSWORD)


@pytest.fixture
def other_user(db):
    """Second user for isolation tests."""
    return accounts.register(db, "Bob", "bob@example.com", PASSWORD)


@pytest.fixture
def token(db, user):
    return session_store.issue(db, user.id)


@pytest.fixture
def other_token(db, other_user):
    return session_store.issue(db, other_user.id)


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_headers(other_token):
    return {"Authorization": f"Bearer {other_token}"}


@pytest.fixture
def client():
    """HTTP client for the app; cookies persist for the life of the fixture."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def session_cookie_name():
    return SESSION_COOKIE_NAME
