import secrets

import pytest
from fastapi.testclient import TestClient

from linkshortener.main import app
from linkshortener.api.deps import api_rate_limiter, get_geo_locator, redirect_rate_limiter
from linkshortener.core.config import settings
from linkshortener.db.session import Database, get_database
from linkshortener.services.link_store import LinkStore
from linkshortener.services.tracking_store import TrackingStore


TEST_API_KEY = "sk_test_" + secrets.token_urlsafe(24)


@pytest.fixture(autouse=True)
def configured_settings(monkeypatch):
    monkeypatch.setattr(settings, "api_key", TEST_API_KEY)
    monkeypatch.setattr(settings, "public_base_url", None)
    monkeypatch.setattr(settings, "trust_forwarded_for", False)


@pytest.fixture()
def db(tmp_path):
    """
    Full test isolation: a fresh SQLite file per test.
    File-backed so threads in the concurrency tests share one database.
    """
    database = Database(f"sqlite:///{tmp_path / 'links.db'}", timeout_seconds=30)
    database.init()
    yield database
    database.dispose()


@pytest.fixture()
def broken_db(tmp_path):
    # parent directory does not exist, so every connect fails
    return Database(f"sqlite:///{tmp_path / 'missing' / 'links.db'}", timeout_seconds=1)


@pytest.fixture()
def link_store(db) -> LinkStore:
    return LinkStore(db.session_factory)


@pytest.fixture()
def tracking_store(db) -> TrackingStore:
    return TrackingStore(db.session_factory)


def _client(database: Database, api_key: str | None) -> TestClient:
    app.dependency_overrides[get_database] = lambda: database
    # rate limiters need redis; covered by unit tests instead
    app.dependency_overrides[redirect_rate_limiter] = lambda: None
    app.dependency_overrides[api_rate_limiter] = lambda: None
    app.dependency_overrides[get_geo_locator] = lambda: None

    c = TestClient(app)
    if api_key:
        c.headers.update({"Authorization": api_key})
    return c


@pytest.fixture()
def client(db):
    yield _client(db, TEST_API_KEY)
    app.dependency_overrides.clear()


@pytest.fixture()
def anon_client(db):
    yield _client(db, None)
    app.dependency_overrides.clear()


@pytest.fixture()
def broken_client(broken_db):
    yield _client(broken_db, TEST_API_KEY)
    app.dependency_overrides.clear()
