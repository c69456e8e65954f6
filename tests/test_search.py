import pytest

from app.services.tmdb_service import TMDBClient
from app.utils.errors import NotFound, RateLimited, UpstreamUnavailable, ValidationError

from conftest import FakeHttp, FakeResponse, network_error

MATRIX = {
    "id": 603,
    "title": "The Matrix",
    "overview": "A hacker learns the truth about his reality.",
    "poster_path": "/f89U3ADr1oiB1s9GkdPOEpXUk5H.jpg",
    "release_date": "1999-03-30",
    "vote_average": 8.2,
}


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def tmdb(http):
    return TMDBClient(api_key="test-tmdb-key", base_url="https://tmdb.test/3", http=http)


# ==================== CLIENT ====================

def test_search_by_title_returns_envelope(tmdb, http):
    http.response = FakeResponse(200, {"results": [MATRIX], "total_results": 1})

    result = tmdb.search_by_title("  Matrix ")

    assert result == {"results": [MATRIX], "total_results": 1, "query": "Matrix"}
    call = http.calls[0]
    assert call["url"] == "https://tmdb.test/3/search/movie"
    assert call["params"]["query"] == "Matrix"
    assert call["params"]["api_key"] == "test-tmdb-key"
    assert "api_key" not in result


@pytest.mark.parametrize("query", [None, "", "   "])
def test_search_rejects_empty_query_without_calling_upstream(tmdb, http, query):
    with pytest.raises(ValidationError):
        tmdb.search_by_title(query)
    assert http.calls == []


def test_rate_limit_is_surfaced_not_retried(tmdb, http):
    http.response = FakeResponse(429, {"status_message": "slow down"}, headers={"Retry-After": "10"})

    with pytest.raises(RateLimited) as exc_info:
        tmdb.search_by_title("Matrix")

    assert exc_info.value.headers == {"Retry-After": "10"}
    assert len(http.calls) == 1


def test_network_error_is_upstream_unavailable(tmdb, http):
    http.error = network_error()

    with pytest.raises(UpstreamUnavailable) as exc_info:
        tmdb.get_popular()

    assert "test-tmdb-key" not in str(exc_info.value.detail)


def test_server_error_is_upstream_unavailable(tmdb, http):
    http.response = FakeResponse(500, {"status_message": "boom"})

    with pytest.raises(UpstreamUnavailable):
        tmdb.search_by_title("Matrix")


def test_invalid_json_is_upstream_unavailable(tmdb, http):
    http.response = FakeResponse(200, None)

    with pytest.raises(UpstreamUnavailable):
        tmdb.get_popular()


def test_get_by_id(tmdb, http):
    http.response = FakeResponse(200, MATRIX)

    assert tmdb.get_by_id("603") == MATRIX
    assert http.calls[0]["url"] == "https://tmdb.test/3/movie/603"


def test_get_by_id_not_found(tmdb, http):
    http.response = FakeResponse(404, {"status_message": "missing"})

    with pytest.raises(NotFound):
        tmdb.get_by_id(999999)


@pytest.mark.parametrize("external_id", ["abc", "0", "-5", "", "012", 0, True, "12345678901"])
def test_get_by_id_rejects_invalid_ids(tmdb, http, external_id):
    with pytest.raises(ValidationError):
        tmdb.get_by_id(external_id)
    assert http.calls == []


def test_missing_api_key_is_upstream_unavailable(http):
    client = TMDBClient(api_key=None, http=http)

    with pytest.raises(UpstreamUnavailable):
        client.get_popular()
    assert http.calls == []


# ==================== HTTP ====================

def test_search_requires_session(client):
    assert client.get("/search", params={"query": "Matrix"}).status_code == 401


def test_search_over_http(client, auth_headers, tmdb_http):
    tmdb_http.response = FakeResponse(200, {"results": [MATRIX], "total_results": 1})

    response = client.get("/search", params={"query": "Matrix"})

    assert response.status_code == 200
    body = response.json()
    assert body["total_results"] == 1
    assert body["results"][0]["title"] == "The Matrix"
    assert "test-tmdb-key" not in response.text


def test_empty_search_over_http(client, auth_headers, tmdb_http):
    response = client.get("/search", params={"query": " "})

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"
    assert tmdb_http.calls == []


def test_rate_limit_over_http(client, auth_headers, tmdb_http):
    tmdb_http.response = FakeResponse(429, {}, headers={"Retry-After": "30"})

    response = client.get("/search", params={"query": "Matrix"})

    assert response.status_code == 429
    assert response.json()["error"] == "rate_limited"
    assert response.headers["retry-after"] == "30"


def test_upstream_failure_over_http_hides_key(client, auth_headers, tmdb_http):
    tmdb_http.error = network_error()

    response = client.get("/search/popular")

    assert response.status_code == 502
    assert response.json()["error"] == "upstream_unavailable"
    assert "test-tmdb-key" not in response.text


def test_movie_details_over_http(client, auth_headers, tmdb_http):
    tmdb_http.response = FakeResponse(200, MATRIX)

    response = client.get("/search/movies/603")

    assert response.status_code == 200
    assert response.json()["title"] == "The Matrix"


def test_movie_details_invalid_id_over_http(client, auth_headers, tmdb_http):
    assert client.get("/search/movies/not-a-number").status_code == 400
    assert tmdb_http.calls == []


def test_unconfigured_search_over_http(client, auth_headers, tmdb_http, monkeypatch):
    monkeypatch.setattr(client.app.state, "metadata_client", TMDBClient(api_key=None, http=tmdb_http))

    response = client.get("/search", params={"query": "Matrix"})

    assert response.status_code == 502
    assert response.json()["error"] == "upstream_unavailable"
    assert tmdb_http.calls == []
