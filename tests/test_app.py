import logging

from app.middleware.security import SESSION_COOKIE_NAME


def test_access_log_records_request(client, caplog):
    with caplog.at_level(logging.INFO, logger="app.access"):
        client.get("/watchlist")

    lines = [r.getMessage() for r in caplog.records if r.name == "app.access"]
    assert len(lines) == 1
    assert lines[0].startswith("GET /watchlist 401 ")
    assert "user=-" in lines[0]
    assert "session=none" in lines[0]


def test_access_log_names_user_and_redacts_session(client, auth_headers, caplog):
    user_id = client.get("/auth/me").json()["id"]
    session_id = client.cookies.get(SESSION_COOKIE_NAME)

    with caplog.at_level(logging.INFO, logger="app.access"):
        client.post(
            "/watchlist",
            json={"title": "Dune", "genre": "Sci-Fi", "desireScale": 4},
            headers=auth_headers,
        )

    line = next(r.getMessage() for r in caplog.records if r.name == "app.access")
    assert line.startswith("POST /watchlist 200 ")
    assert f"user={user_id}" in line
    assert f"session={session_id[:8]}..." in line
    assert session_id not in line


def test_error_envelope_for_unknown_route(client):
    response = client.get("/no-such-route")

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"
