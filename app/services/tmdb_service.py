import requests
import os
from typing import Dict, Optional, Union
from app.schemas.validation import is_valid_external_id
from app.utils.errors import NotFound, RateLimited, UpstreamUnavailable, ValidationError
import logging

logger = logging.getLogger(__name__)

TMDB_BASE_URL = os.getenv("TMDB_BASE_URL", "https://api.themoviedb.org/3")
TMDB_TIMEOUT_SECONDS = int(os.getenv("TMDB_TIMEOUT_SECONDS", "10"))


# Client for The Movie Database API
class TMDBClient:
    """
    Stateless TMDB lookups.

    The API key is attached here and never leaves the server: it is not
    echoed in results, error messages or logs. No retries are attempted;
    RateLimited is raised as-is so the caller can decide.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = TMDB_BASE_URL,
        http: Optional[requests.Session] = None,
        timeout: int = TMDB_TIMEOUT_SECONDS,
    ):
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._http = http or requests.Session()
        self._timeout = timeout

    def _make_request(self, endpoint: str, params: Dict = None, not_found_is_error: bool = False) -> Dict:
        """
        Make HTTP request to TMDB API.

        Args:
            endpoint: API endpoint (e.g., "/movie/popular")
            params: Query parameters
            not_found_is_error: map an upstream 404 to NotFound

        Returns:
            JSON response from TMDB

        Raises:
            RateLimited: upstream answered 429
            NotFound: upstream answered 404 and not_found_is_error is set
            UpstreamUnavailable: any other failure
        """
        if not self._api_key or self._api_key == "your_tmdb_api_key_here":
            logger.error("TMDB_API_KEY is not configured")
            raise UpstreamUnavailable("Movie search is not available")

        params = dict(params or {})
        params['api_key'] = self._api_key
        url = f"{self.base_url}{endpoint}"

        try:
            response = self._http.get(url, params=params, timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            # The exception text can contain the full URL, key included
            logger.error(f"TMDB API unreachable for {endpoint}: {type(e).__name__}")
            raise UpstreamUnavailable()

        if response.status_code == 429:
            logger.warning(f"TMDB API rate limit hit for {endpoint}")
            retry_after = response.headers.get("Retry-After")
            raise RateLimited(headers={"Retry-After": retry_after} if retry_after else None)
        if response.status_code == 404 and not_found_is_error:
            raise NotFound("Movie not found")
        if not 200 <= response.status_code < 300:
            logger.error(f"TMDB API error for {endpoint}: HTTP {response.status_code}")
            raise UpstreamUnavailable()

        try:
            data = response.json()
        except ValueError:
            logger.error(f"TMDB API returned invalid JSON for {endpoint}")
            raise UpstreamUnavailable()
        logger.debug(f"TMDB API request successful: {endpoint}")
        return data

    @staticmethod
    def _envelope(data: Dict, query: Optional[str] = None) -> Dict:
        results = data.get('results') or []
        envelope = {
            'results': results,
            'total_results': data.get('total_results', len(results)) or 0,
        }
        if query is not None:
            envelope['query'] = query
        return envelope

    def search_by_title(self, query: Optional[str], page: int = 1) -> Dict:
        """Search movies by title; an empty query is rejected."""
        if query is None or not query.strip():
            raise ValidationError("Search query is required")
        query = query.strip()
        data = self._make_request("/search/movie", {
            'query': query,
            'page': page,
            'language': 'en-US',
            'include_adult': 'false',
        })
        return self._envelope(data, query)

    def get_by_id(self, external_id: Union[int, str]) -> Dict:
        """Get a single movie by its TMDB id."""
        if not is_valid_external_id(external_id):
            raise ValidationError("Valid movie ID is required")
        return self._make_request(
            f"/movie/{int(external_id)}",
            {'language': 'en-US'},
            not_found_is_error=True,
        )

    def get_popular(self, page: int = 1) -> Dict:
        """Get popular movies."""
        data = self._make_request("/movie/popular", {'language': 'en-US', 'page': page})
        return self._envelope(data)


def build_tmdb_client() -> TMDBClient:
    return TMDBClient(api_key=os.getenv("TMDB_API_KEY"))
