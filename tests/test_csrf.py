import pytest
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

from app.main import app
from app.middleware.security import CSRF_EXEMPT_ROUTES, SAFE_METHODS, CsrfGuard
from app.services.session_store import SessionStore
from app.utils.errors import InvalidCsrfToken

from conftest import csrf_headers

MOVIE = {"title": "Dune", "genre": "Sci-Fi", "desireScale": 4}


def test_exempt_routes_are_only_the_anonymous_auth_endpoints():
    assert CSRF_EXEMPT_ROUTES == {"register", "login", "logout"}


def test_every_mutating_route_is_protected():
    mutating = {
        route.name
        for route in app.routes
        if isinstance(route, APIRoute) and route.methods - SAFE_METHODS
    }

    assert CSRF_EXEMPT_ROUTES <= mutating
    assert {"add_movie", "mark_watched", "update_review", "delete_account"} <= mutating - CSRF_EXEMPT_ROUTES


def test_mutation_without_token_is_rejected_despite_valid_session(client, auth_headers, audit):
    response = client.post("/watchlist", json=MOVIE)

    assert response.status_code == 403
    assert response.json()["error"] == "invalid_csrf_token"
    assert "csrf.rejected" in audit.names()
    assert client.get("/watchlist").json()["total"] == 0


def test_mutation_with_wrong_token_is_rejected(client, auth_headers):
    response = client.post("/watchlist", json=MOVIE, headers=csrf_headers("not-the-token"))

    assert response.status_code == 403
    assert client.get("/watchlist").json()["total"] == 0


@pytest.mark.parametrize("method, path", [
    ("put", "/watchlist/1/watched"),
    ("delete", "/watchlist/1"),
    ("post", "/watchlist/clear"),
    ("put", "/watched/1/review"),
    ("post", "/auth/password"),
])
def test_all_mutating_routes_check_token(client, auth_headers, method, path):
    response = client.request(method.upper(), path, json={})

    assert response.status_code == 403


def test_token_from_another_session_is_rejected(client, auth_headers):
    other = TestClient(app)
    other.post("/auth/register", json={"email": "other@example.com", "password": "secret123"})
    other_token = other.post(
        "/auth/login", json={"email": "other@example.com", "password": "secret123"}
    ).json()["csrf_token"]

    response = client.post("/watchlist", json=MOVIE, headers=csrf_headers(other_token))

    assert response.status_code == 403


def test_safe_methods_need_no_token(client, auth_headers):
    assert client.get("/watchlist").status_code == 200
    assert client.get("/watched").status_code == 200


def test_valid_token_is_accepted(client, auth_headers):
    response = client.post("/watchlist", json=MOVIE, headers=auth_headers)

    assert response.status_code == 200


# ==================== GUARD ====================

def _store_with_session():
    from datetime import datetime, timedelta, timezone
    from app.services.session_store import AuthContext, Session

    store = SessionStore()
    store.save(Session(
        session_id="sid-1",
        user_id="user-1",
        email="user1@example.com",
        auth=AuthContext(
            access_token="access",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        ),
    ))
    return store


def test_guard_issues_one_token_per_session():
    guard = CsrfGuard(_store_with_session())

    first = guard.issue("sid-1")

    assert first
    assert guard.issue("sid-1") == first
    assert guard.validate("sid-1", first).user_id == "user-1"


def test_guard_rejects_unknown_session():
    guard = CsrfGuard(_store_with_session())
    token = guard.issue("sid-1")

    with pytest.raises(InvalidCsrfToken):
        guard.validate("sid-2", token)
    with pytest.raises(InvalidCsrfToken):
        guard.issue("sid-2")


def test_guard_rejects_missing_token():
    guard = CsrfGuard(_store_with_session())
    guard.issue("sid-1")

    with pytest.raises(InvalidCsrfToken):
        guard.validate("sid-1", None)
    with pytest.raises(InvalidCsrfToken):
        guard.validate("sid-1", "")
