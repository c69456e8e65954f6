import os
import pytest
import requests
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure background jobs stay disabled during tests
os.environ.setdefault("ENABLE_BACKGROUND_JOBS", "false")
os.environ.setdefault("IDENTITY_BACKEND", "local")

from app.database import Base, _engine_options, get_db
from app.main import app
from app.middleware.security import CSRF_HEADER_NAME, CsrfGuard
from app.models.user import User
from app.services.identity_backend import LocalIdentityBackend
from app.services.session_store import SessionStore
from app.services.tmdb_service import TMDBClient
from app.utils.audit import RecordingAuditSink

SQLALCHEMY_DATABASE_URL = "sqlite://"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

DEFAULT_PASSWORD = "secret123"


class FakeResponse:
    def __init__(self, status_code=200, payload=None, headers=None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeHttp:
    """Stands in for requests.Session; records every GET."""

    def __init__(self):
        self.calls = []
        self.response = FakeResponse(200, {"results": [], "total_results": 0})
        self.error = None

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def db_session():
    """Provide a clean database session for each test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def audit():
    return RecordingAuditSink()


@pytest.fixture
def tmdb_http():
    return FakeHttp()


@pytest.fixture
def identity_backend():
    return LocalIdentityBackend(TestingSessionLocal)


@pytest.fixture
def session_store():
    return SessionStore()


@pytest.fixture
def client(db_session, monkeypatch, audit, tmdb_http, identity_backend, session_store):
    """FastAPI test client with the database and collaborators overridden."""
    yield from _serve(TestingSessionLocal, monkeypatch, audit, tmdb_http, identity_backend, session_store)


@pytest.fixture
def file_session_factory(tmp_path):
    """
    File-backed SQLite with the application's own engine options, so every
    session gets its own connection and SQLite's write lock applies.
    """
    url = f"sqlite:///{tmp_path / 'watchlist.db'}"
    file_engine = create_engine(url, **_engine_options(url))
    Base.metadata.create_all(bind=file_engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    finally:
        file_engine.dispose()


@pytest.fixture
def file_client(file_session_factory, monkeypatch, audit, tmdb_http, session_store):
    """Test client over the file-backed database and a local identity backend bound to it."""
    yield from _serve(
        file_session_factory,
        monkeypatch,
        audit,
        tmdb_http,
        LocalIdentityBackend(file_session_factory),
        session_store,
    )


def _serve(session_factory, monkeypatch, audit, tmdb_http, identity_backend, session_store):
    def override_get_db():
        test_db = session_factory()
        try:
            yield test_db
        finally:
            test_db.close()

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setenv("ENABLE_BACKGROUND_JOBS", "false")
    monkeypatch.setattr(app.state, "session_store", session_store, raising=False)
    monkeypatch.setattr(app.state, "csrf_guard", CsrfGuard(session_store), raising=False)
    monkeypatch.setattr(app.state, "audit_sink", audit, raising=False)
    monkeypatch.setattr(app.state, "identity_backend", identity_backend, raising=False)
    monkeypatch.setattr(
        app.state,
        "metadata_client",
        TMDBClient(api_key="test-tmdb-key", base_url="https://tmdb.test/3", http=tmdb_http),
        raising=False,
    )

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.pop(get_db, None)


# ==================== HELPERS ====================

def register(client, email="viewer@example.com", password=DEFAULT_PASSWORD):
    return client.post("/auth/register", json={"email": email, "password": password})


def login(client, email="viewer@example.com", password=DEFAULT_PASSWORD):
    return client.post("/auth/login", json={"email": email, "password": password})


def csrf_headers(token):
    return {CSRF_HEADER_NAME: token}


@pytest.fixture
def auth_headers(client):
    """Register and log in a user; returns headers carrying the CSRF token."""
    assert register(client).status_code == 200
    response = login(client)
    assert response.status_code == 200
    return csrf_headers(response.json()["csrf_token"])


def create_user(session, user_id="user-1", email="user1@example.com"):
    user = User(id=user_id, email=email)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def network_error():
    return requests.exceptions.ConnectionError(
        "HTTPSConnectionPool(host='tmdb.test'): /3/search/movie?api_key=test-tmdb-key"
    )
